from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..errors import ValidationError


@dataclass(frozen=True, slots=True)
class SkillTitle:
    value: str

    def __post_init__(self) -> None:
        v = " ".join(self.value.split())
        if not v:
            raise ValidationError("Skill name cannot be empty")
        if len(v) > 100:
            raise ValidationError("Skill name must be 1..100 chars")
        object.__setattr__(self, "value", v)

    @property
    def key(self) -> str:
        """Case-insensitive identity used for the existence check."""
        return self.value.casefold()

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class Rating:
    value: int

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, int) or not (1 <= self.value <= 5):
            raise ValidationError("Choose between 1 and 5 stars.")

    def __int__(self) -> int:
        return self.value


@dataclass(frozen=True, slots=True)
class TimeRange:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValidationError("Start and end must carry a timezone")
        if self.end <= self.start:
            raise ValidationError("End must be after start.")
