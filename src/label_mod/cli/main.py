"""Main entry point for the label-mod CLI.

Commands:
    label-mod remove-labels: Remove labels and republish
    label-mod update-labels: Set labels and republish
    label-mod modify-labels: Remove and set labels in one republish
    label-mod test (alias: inspect): Show current labels and digest

Example:
    $ label-mod --help
    $ label-mod --insecure-registry localhost:5000 test localhost:5000/app:v1
"""

from __future__ import annotations

import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version
from pathlib import Path

import click

from label_mod.cli.labels import (
    inspect_command,
    modify_labels_command,
    remove_labels_command,
    update_labels_command,
)
from label_mod.cli.utils import CliState
from label_mod.observability import LOG_LEVELS, configure_logging


def _get_version() -> str:
    """Return the installed label-mod version, or 'unknown'."""
    try:
        return get_version("label-mod")
    except PackageNotFoundError:
        return "unknown"


@click.group(
    name="label-mod",
    help="label-mod - Edit OCI image labels in place on a remote registry.",
    epilog="Use 'label-mod <command> --help' for command-specific help.",
    context_settings={
        "help_option_names": ["-h", "--help"],
    },
)
@click.version_option(
    version=_get_version(),
    prog_name="label-mod",
    message="%(prog)s %(version)s",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="YAML settings file (default: $LABEL_MOD_CONFIG).",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Minimum level for logs written to stderr.",
)
@click.option(
    "--log-json/--log-console",
    default=False,
    help="Write logs as JSON lines instead of console format.",
)
@click.option(
    "--tag-workers",
    type=click.IntRange(1, 20),
    default=None,
    help="Parallel pushes for --tag targets (default: 1, sequential).",
)
@click.option(
    "--insecure-registry",
    "insecure_registries",
    multiple=True,
    help="Registry host to reach over plain HTTP. Repeatable.",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    log_level: str,
    log_json: bool,
    tag_workers: int | None,
    insecure_registries: tuple[str, ...],
) -> None:
    """Root command group for the label-mod CLI."""
    configure_logging(log_level=log_level, json_output=log_json)
    if ctx.obj is None:
        ctx.obj = CliState()
    ctx.obj.config_path = config_path
    ctx.obj.tag_workers = tag_workers
    ctx.obj.insecure_registries = insecure_registries


cli.add_command(remove_labels_command)
cli.add_command(update_labels_command)
cli.add_command(modify_labels_command)
cli.add_command(inspect_command)
cli.add_command(inspect_command, name="inspect")


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the label-mod CLI.

    Args:
        argv: Command-line arguments (uses sys.argv if None).
    """
    try:
        cli(args=argv, standalone_mode=False)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except click.Abort:
        click.echo("Aborted!", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
