"""Scheduler admin schemas"""
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator


class JobScheduleRequest(BaseModel):
    """按每日 hour:minute 重设任务，生成 crontab `minute hour * * *`"""
    hour: int = Field(..., ge=0, le=23, description="每日执行的小时")
    minute: int = Field(0, ge=0, le=59, description="每日执行的分钟")
    timezone: Optional[str] = Field(None, description="解释 hour/minute 的时区，默认 CRON_TIMEZONE")

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone: {value}")
        return value

    @property
    def cron_expr(self) -> str:
        return f"{self.minute} {self.hour} * * *"
