"""Decision models produced by the classification pipeline."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, field_validator, model_validator

Action = Literal["assign", "create", "skip"]


class Decision(BaseModel):
    """Outcome of classifying a single item.

    Exactly one of `folder_id` and `new_folder_path` is populated for `assign`
    and `create` decisions; both are None for `skip`.

    Attributes:
        action: What to do with the item.
        folder_id: Existing folder to link the item to (`assign` only).
        new_folder_path: Slash-separated path to create (`create` only).
        confidence: Confidence score between 0 and 1.
        reason: Human-readable explanation, including diagnostics on failure.
        visual_description: Optional description of the image returned by the AI.
        item_id: Identifier of the classified item.
        filename: Display filename of the classified item.
        folder_name: Display name of the target folder or path.
    """

    action: Action = "skip"
    folder_id: Optional[int] = None
    new_folder_path: Optional[str] = None
    confidence: float = 0.0
    reason: str = ""
    visual_description: Optional[str] = None
    item_id: Optional[int] = None
    filename: Optional[str] = None
    folder_name: Optional[str] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: object) -> float:
        try:
            number = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 0.0
        return max(0.0, min(1.0, number))

    @model_validator(mode="after")
    def _check_target(self) -> "Decision":
        if self.action == "assign":
            if self.folder_id is None or self.new_folder_path is not None:
                raise ValueError("assign decisions require folder_id and no new_folder_path")
        elif self.action == "create":
            if self.folder_id is not None or not (self.new_folder_path or "").strip():
                raise ValueError("create decisions require a non-empty new_folder_path")
        elif self.folder_id is not None or self.new_folder_path is not None:
            raise ValueError("skip decisions cannot carry a folder target")
        return self

    @classmethod
    def assign(cls, folder_id: int, confidence: float, reason: str, **extra: object) -> "Decision":
        """Build an `assign` decision."""
        return cls(action="assign", folder_id=folder_id, confidence=confidence, reason=reason, **extra)

    @classmethod
    def create(cls, path: str, confidence: float, reason: str, **extra: object) -> "Decision":
        """Build a `create` decision."""
        return cls(
            action="create", new_folder_path=path, confidence=confidence, reason=reason, **extra
        )

    @classmethod
    def skip(cls, reason: str, confidence: float = 0.0, **extra: object) -> "Decision":
        """Build a `skip` decision."""
        return cls(action="skip", confidence=confidence, reason=reason, **extra)

    @property
    def actionable(self) -> bool:
        """Return True when applying the decision would change the folder tree."""
        return self.action in ("assign", "create")


__all__ = ["Action", "Decision"]
