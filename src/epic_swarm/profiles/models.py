"""Profile models for swarm worker definitions."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator


class ChecklistItem(BaseModel):
    """A step the worker must complete before it reports itself done."""

    id: str = Field(..., description="Stable identifier for the checklist item.")
    description: str = Field(..., description="Human-friendly description of the action.")
    required: bool = Field(
        default=True,
        description="Whether the worker must complete this item before finishing.",
    )

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Checklist item id must not be empty")
        return normalized


class WorkerProfile(BaseModel):
    """Configuration describing how a worker is briefed and launched."""

    id: str = Field(..., description="Unique identifier for the profile.")
    title: str = Field(..., description="Display title for the worker profile.")
    system_prompt: str = Field(
        ...,
        description="Instructions placed at the top of every brief handed to the worker.",
    )
    goalset: list[str] = Field(
        default_factory=list,
        description="Ordered list of high-level goals the worker must achieve.",
    )
    constraints: list[str] = Field(
        default_factory=list,
        description="Constraints or guardrails imposed on the worker.",
    )
    checklist: list[ChecklistItem] = Field(
        default_factory=list,
        description="Steps rendered at the end of the brief as the completion checklist.",
    )
    flags: list[str] = Field(
        default_factory=list,
        description="Extra command-line flags passed to the worker executable.",
    )
    model: str | None = Field(
        default=None,
        description="Model override; falls back to WORKER_DEFAULT_MODEL when unset.",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Arbitrary metadata attached to run events for search and filtering.",
    )

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Worker profile id must not be empty")
        return normalized

    @field_validator("goalset", "constraints", "flags", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):  # type: ignore[override]
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value]
        raise TypeError("Goalset, constraints and flags must be sequences of strings")

    def command_flags(self, default_model: str | None = None) -> list[str]:
        """Flags for the worker executable, including ``--model`` when one applies."""

        flags = list(self.flags)
        model = self.model or default_model
        if model and "--model" not in flags:
            flags = ["--model", model, *flags]
        return flags


__all__ = ["ChecklistItem", "WorkerProfile"]
