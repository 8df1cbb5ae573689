"""Webhook config schemas"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, HttpUrl, field_validator

from shelfwatch.models.webhook_config import DEFAULT_CONTENT_TEMPLATE, DEFAULT_TITLE_TEMPLATE
from shelfwatch.services.template_renderer import PLACEHOLDER_RE, TEMPLATE_VARIABLES


def _check_placeholders(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    unknown = sorted({m.group(1) for m in PLACEHOLDER_RE.finditer(value)} - set(TEMPLATE_VARIABLES))
    if unknown:
        raise ValueError(f"unknown placeholder(s): {', '.join(unknown)}")
    return value


class WebhookCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    url: HttpUrl
    enabled: bool = True
    title_template: str = Field(DEFAULT_TITLE_TEMPLATE, min_length=1, max_length=200)
    content_template: str = Field(DEFAULT_CONTENT_TEMPLATE, min_length=1, max_length=1000)
    title_key: str = Field("title", min_length=1, max_length=50)
    content_key: str = Field("content", min_length=1, max_length=50)

    validate_templates = field_validator("title_template", "content_template")(_check_placeholders)

    def to_model_fields(self) -> dict:
        data = self.model_dump()
        data["url"] = str(self.url)
        return data


class WebhookUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    url: Optional[HttpUrl] = None
    enabled: Optional[bool] = None
    title_template: Optional[str] = Field(None, min_length=1, max_length=200)
    content_template: Optional[str] = Field(None, min_length=1, max_length=1000)
    title_key: Optional[str] = Field(None, min_length=1, max_length=50)
    content_key: Optional[str] = Field(None, min_length=1, max_length=50)

    validate_templates = field_validator("title_template", "content_template")(_check_placeholders)

    def to_model_fields(self) -> dict:
        data = self.model_dump(exclude_none=True)
        if self.url is not None:
            data["url"] = str(self.url)
        return data


class WebhookView(BaseModel):
    id: int
    user_id: str
    name: str
    url: str
    enabled: bool
    title_template: str
    content_template: str
    title_key: str
    content_key: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class WebhookListResponse(BaseModel):
    status: str = "ok"
    total: int = 0
    items: list[WebhookView] = []


class WebhookTestResponse(BaseModel):
    success: bool
    status: str
    http_status: Optional[int] = None
    error: Optional[str] = None
    duration_ms: int = 0
