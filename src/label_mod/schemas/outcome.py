"""Label delta and operation outcome schemas.

LabelDelta describes what to change; MutationOutcome is the single structured
result of an inspect or mutate run and the only thing printed to stdout.
"""

from __future__ import annotations

from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict, Field, field_validator

from label_mod.errors import exit_code_for


def _require_unicode(texts: Iterable[str]) -> None:
    for text in texts:
        try:
            text.encode("utf-8")
        except UnicodeEncodeError as e:
            raise ValueError(f"label text must be valid Unicode: {text!r}") from e


class LabelDelta(BaseModel):
    """Label keys to remove and label values to set.

    Removals are applied before updates.

    Examples:
        >>> delta = LabelDelta(removals=("maintainer",), updates={"version": "2"})
        >>> delta.removals
        ('maintainer',)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    removals: tuple[str, ...] = Field(default=(), description="Label keys to delete")
    updates: dict[str, str] = Field(default_factory=dict, description="Label values to set")

    @field_validator("removals")
    @classmethod
    def validate_removals(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Reject empty or non-Unicode label keys."""
        if any(not key for key in v):
            raise ValueError("label keys must be non-empty")
        _require_unicode(v)
        return v

    @field_validator("updates")
    @classmethod
    def validate_updates(cls, v: dict[str, str]) -> dict[str, str]:
        """Reject empty keys and non-Unicode label text."""
        if any(not key for key in v):
            raise ValueError("label keys must be non-empty")
        _require_unicode([*v, *v.values()])
        return v


class MutationOutcome(BaseModel):
    """Result of one inspect or mutate invocation.

    Fields left as None are omitted from the JSON form. A failed mutate still
    carries whatever was established before the failure.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    success: bool = Field(..., description="Whether the operation completed")
    error: str | None = Field(default=None, description="Human-readable error")
    error_code: str | None = Field(default=None, description="Stable error identifier")
    image_ref: str = Field(..., description="Reference as supplied by the caller")
    old_digest: str | None = Field(default=None, description="Manifest digest before mutation")
    new_digest: str | None = Field(default=None, description="Manifest digest now published")
    removed: list[str] | None = Field(default=None, description="Label keys actually removed")
    updated: dict[str, str] | None = Field(default=None, description="Label values actually set")
    current: dict[str, str] | None = Field(default=None, description="Labels found on inspect")
    tagged_as: list[str] | None = Field(default=None, description="Extra tags pushed")

    @property
    def exit_code(self) -> int:
        """Process exit status for this outcome."""
        return exit_code_for(self.error_code)

    def to_json(self) -> str:
        """Serialize to indented JSON, omitting unset fields."""
        return self.model_dump_json(indent=2, exclude_none=True)


__all__ = ["LabelDelta", "MutationOutcome"]
