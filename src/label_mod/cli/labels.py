"""Label commands: remove-labels, update-labels, modify-labels and test.

Example:
    $ label-mod remove-labels registry.example.com/app:v1 maintainer vendor
    $ label-mod update-labels registry.example.com/app:v1 version=2 --tag v2
    $ label-mod modify-labels registry.example.com/app@sha256:... -r old -u new=1 -t fixed
    $ label-mod test registry.example.com/app:v1
"""

from __future__ import annotations

import click

from label_mod.cli.utils import CliState, parse_assignments, parse_keys, run_with_engine
from label_mod.schemas.outcome import LabelDelta

TAG_HELP = (
    "Also publish the result under this tag in the same repository. "
    "Repeatable; required when IMAGE is a digest reference."
)


@click.command(
    name="remove-labels",
    help="""\b
Remove labels from an image and republish it.

Only the image config changes; layers are never downloaded or uploaded.
Removing labels that do not exist is an error unless at least one
label is actually removed.

Examples:
    $ label-mod remove-labels registry.example.com/app:v1 maintainer
    $ label-mod remove-labels registry.example.com/app:v1 a b --tag v1-clean
""",
)
@click.argument("image")
@click.argument("labels", nargs=-1, required=True, callback=parse_keys)
@click.option("--tag", "-t", "tags", multiple=True, help=TAG_HELP)
@click.pass_obj
def remove_labels_command(
    state: CliState,
    image: str,
    labels: tuple[str, ...],
    tags: tuple[str, ...],
) -> None:
    """Remove labels from IMAGE."""
    run_with_engine(state, image, lambda engine: engine.remove_labels(image, labels, tags))


@click.command(
    name="update-labels",
    help="""\b
Set label values on an image and republish it.

Each LABEL is KEY=VALUE. Existing labels with the same key are
overwritten; new keys are added.

Examples:
    $ label-mod update-labels registry.example.com/app:v1 version=2
    $ label-mod update-labels registry.example.com/app@sha256:... team=data --tag v1
""",
)
@click.argument("image")
@click.argument("labels", nargs=-1, required=True, callback=parse_assignments)
@click.option("--tag", "-t", "tags", multiple=True, help=TAG_HELP)
@click.pass_obj
def update_labels_command(
    state: CliState,
    image: str,
    labels: dict[str, str],
    tags: tuple[str, ...],
) -> None:
    """Set labels on IMAGE."""
    run_with_engine(state, image, lambda engine: engine.update_labels(image, labels, tags))


@click.command(
    name="modify-labels",
    help="""\b
Remove and set labels on an image in a single republish.

Removals are applied before updates.

Examples:
    $ label-mod modify-labels registry.example.com/app:v1 -r old -u new=1
""",
)
@click.argument("image")
@click.option(
    "--remove",
    "-r",
    "removals",
    multiple=True,
    callback=parse_keys,
    help="Label key to remove. Repeatable.",
)
@click.option(
    "--update",
    "-u",
    "updates",
    multiple=True,
    callback=parse_assignments,
    help="KEY=VALUE label to set. Repeatable.",
)
@click.option("--tag", "-t", "tags", multiple=True, help=TAG_HELP)
@click.pass_obj
def modify_labels_command(
    state: CliState,
    image: str,
    removals: tuple[str, ...],
    updates: dict[str, str],
    tags: tuple[str, ...],
) -> None:
    """Remove and set labels on IMAGE."""
    run_with_engine(
        state,
        image,
        lambda engine: engine.mutate(image, LabelDelta(removals=removals, updates=updates), tags),
    )


@click.command(
    name="test",
    help="""\b
Show the current labels and manifest digest of an image.

Read-only: nothing is pushed.

Examples:
    $ label-mod test registry.example.com/app:v1
""",
)
@click.argument("image")
@click.pass_obj
def inspect_command(state: CliState, image: str) -> None:
    """Show labels of IMAGE."""
    run_with_engine(state, image, lambda engine: engine.inspect(image))


__all__ = [
    "inspect_command",
    "modify_labels_command",
    "remove_labels_command",
    "update_labels_command",
]
