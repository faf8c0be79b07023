"""Shared helpers for the label-mod command line.

Output Convention:
    stdout carries exactly one JSON document (the MutationOutcome).
    Diagnostics and logs go to stderr.
    The exit status is 0 on success, otherwise the failing error's exit code.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import click

from label_mod.engine import LabelMutationEngine
from label_mod.errors import LabelModError
from label_mod.schemas.config import RegistrySettings
from label_mod.schemas.outcome import MutationOutcome

if TYPE_CHECKING:
    from collections.abc import Callable


@dataclass
class CliState:
    """Options collected by the root command and shared with subcommands.

    Attributes:
        config_path: Settings file given with --config.
        tag_workers: Override for registry.max_tag_workers.
        insecure_registries: Extra hosts reached over plain HTTP.
        engine_factory: Builds the engine from settings.
    """

    config_path: Path | None = None
    tag_workers: int | None = None
    insecure_registries: tuple[str, ...] = ()
    engine_factory: Callable[[RegistrySettings], LabelMutationEngine] = field(
        default=LabelMutationEngine.from_settings
    )

    def load_settings(self) -> RegistrySettings:
        """Load settings from file and environment, then apply CLI overrides.

        Raises:
            ConfigurationError: If the settings are invalid.
        """
        settings = RegistrySettings.load(self.config_path)
        update: dict[str, object] = {}
        if self.tag_workers is not None:
            update["max_tag_workers"] = self.tag_workers
        if self.insecure_registries:
            update["insecure_registries"] = tuple(
                dict.fromkeys(settings.insecure_registries + self.insecure_registries)
            )
        if update:
            settings = settings.model_copy(update=update)
        return settings

    def create_engine(self) -> LabelMutationEngine:
        return self.engine_factory(self.load_settings())


def parse_assignments(
    ctx: click.Context,  # noqa: ARG001
    param: click.Parameter,
    values: tuple[str, ...],
) -> dict[str, str]:
    """Click callback turning ``KEY=VALUE`` arguments into a mapping.

    The value may itself contain ``=``; only the first one splits. Later
    assignments to the same key win.

    Raises:
        click.BadParameter: If an item has no ``=``, an empty key or text that
            is not valid Unicode.
    """
    assignments: dict[str, str] = {}
    for item in values:
        _require_unicode(item, param)
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {item!r}", param=param)
        assignments[key] = value
    return assignments


def parse_keys(
    ctx: click.Context,  # noqa: ARG001
    param: click.Parameter,
    values: tuple[str, ...],
) -> tuple[str, ...]:
    """Click callback rejecting empty label keys.

    Raises:
        click.BadParameter: If any key is empty or not valid Unicode.
    """
    if any(not key for key in values):
        raise click.BadParameter("label keys must be non-empty", param=param)
    for key in values:
        _require_unicode(key, param)
    return values


def _require_unicode(text: str, param: click.Parameter) -> None:
    # Undecodable argv bytes arrive as lone surrogates.
    try:
        text.encode("utf-8")
    except UnicodeEncodeError:
        raise click.BadParameter(f"not valid Unicode: {text!r}", param=param) from None


def emit_outcome(outcome: MutationOutcome) -> None:
    """Print the outcome as JSON on stdout and exit non-zero on failure.

    Raises:
        SystemExit: When the outcome is a failure.
    """
    click.echo(outcome.to_json())
    if not outcome.success:
        error(outcome.error or "operation failed", code=outcome.error_code)
        sys.exit(outcome.exit_code)


def run_with_engine(
    state: CliState,
    image: str,
    operation: Callable[[LabelMutationEngine], MutationOutcome],
) -> None:
    """Build the engine, run ``operation`` and emit its outcome.

    Configuration and credential-source failures are reported as a failed
    outcome so stdout always carries a JSON document.
    """
    try:
        engine = state.create_engine()
    except LabelModError as e:
        emit_outcome(
            MutationOutcome(success=False, error=str(e), error_code=e.code, image_ref=image)
        )
        return
    try:
        outcome = operation(engine)
    finally:
        engine.close()
    emit_outcome(outcome)


def error(message: str, **context: str | int | bool | None) -> None:
    """Print an error message to stderr.

    Example:
        error("Manifest not found", code="not_found")
        # Output: Error: Manifest not found (code=not_found)
    """
    if context:
        context_str = ", ".join(f"{k}={v}" for k, v in context.items() if v is not None)
        full_message = f"Error: {message} ({context_str})"
    else:
        full_message = f"Error: {message}"

    click.echo(full_message, err=True)


__all__ = [
    "CliState",
    "emit_outcome",
    "error",
    "parse_assignments",
    "parse_keys",
    "run_with_engine",
]
