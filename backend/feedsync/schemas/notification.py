from pydantic import BaseModel, Field, field_validator
import re

_CLOCK_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class QuietHours(BaseModel):
    enabled: bool = False
    start: str = "22:00"
    end: str = "08:00"

    @field_validator("start", "end")
    @classmethod
    def validate_clock(cls, value: str) -> str:
        if not _CLOCK_PATTERN.match(value):
            raise ValueError("Time must use the HH:MM 24-hour format")
        return value


class GlobalNotificationSettings(BaseModel):
    enabled: bool = True
    max_per_batch: int = Field(5, ge=1)
    grouping: bool = True
    quiet_hours: QuietHours = Field(default_factory=QuietHours)
