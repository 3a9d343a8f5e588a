import datetime
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ValidationError, field_validator


class Settings(BaseModel):
    api_url: str = "http://localhost:3001"
    api_token: Optional[str] = None
    request_timeout: float = 10.0
    reload_delay: float = 1.0
    history_days: int = 90
    histogram_thresholds: List[int] = [0, 3, 6, 10]
    timezone: str = "local"
    backend: str = "sqlite"
    db_path: str = "liftlog.db"
    spreadsheet_id: str = ""
    credentials_file: str = "service-account.json"
    draft_path: str = "draft.json"

    @field_validator("request_timeout", "reload_delay")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("history_days")
    @classmethod
    def _positive_days(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("histogram_thresholds")
    @classmethod
    def _ascending(cls, value: List[int]) -> List[int]:
        if list(value) != sorted(value):
            raise ValueError("thresholds must be ascending")
        return value

    @field_validator("backend")
    @classmethod
    def _known_backend(cls, value: str) -> str:
        if value not in {"sqlite", "sheets"}:
            raise ValueError("backend must be 'sqlite' or 'sheets'")
        return value

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        if value != "local":
            try:
                ZoneInfo(value)
            except (ZoneInfoNotFoundError, ValueError):
                raise ValueError(f"unknown timezone {value!r}") from None
        return value

    def tzinfo(self) -> Optional[datetime.tzinfo]:
        """Zone for day bucketing; ``None`` means the process local zone."""
        if self.timezone == "local":
            return None
        return ZoneInfo(self.timezone)


def validate_settings(data: dict) -> None:
    try:
        Settings(**data)
    except ValidationError as e:
        raise ValueError(str(e))
