"""Pydantic schemas for request/response validation in the URL shortener.

Schema Hierarchy
=================
::
    ShortenRequest (Input)
    └─ url: str (validated by the service, not here)

    ShortenResponse (Output)
    └─ url: str (the short code)

    URLListResponse (Output)
    └─ urls: list[URLItem]
        ├─ code: str
        ├─ originURL: str
        ├─ hits: int
        └─ createdAt: datetime

    DeleteResponse (Output)
    └─ code: str

    AuthCheckResponse (Output)
    └─ id: str (the caller's user id)

    HealthResponse (Output)
    ├─ status, database, cache: HealthStatus

    CachedURLPayload (Redis value)
    ├─ code: str
    └─ origin_url: str

Key Behaviours
===============
- ``url`` is accepted as any string so that an empty or malformed URL reaches
  the service and is rejected there with a 400, like every other entry point.
- List items serialize with the camelCase keys clients already consume.
"""

import datetime

from pydantic import BaseModel, ConfigDict, Field

from shortener.enums import HealthStatus
from shortener.models import ShortURL

__all__ = [
    "AuthCheckResponse",
    "CachedURLPayload",
    "DeleteResponse",
    "HealthResponse",
    "ShortenRequest",
    "ShortenResponse",
    "URLItem",
    "URLListResponse",
]


class ShortenRequest(BaseModel):
    url: str = Field(..., description="Absolute http(s) URL to shorten, e.g. 'https://www.google.com'")


class ShortenResponse(BaseModel):
    url: str = Field(..., description="Short code assigned to the URL")


class URLItem(BaseModel):
    code: str
    origin_url: str = Field(..., alias="originURL")
    hits: int
    created_at: datetime.datetime = Field(..., alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_model(cls, short_url: ShortURL) -> "URLItem":
        return cls(
            code=short_url.code,
            origin_url=short_url.origin_url,
            hits=short_url.hits,
            created_at=short_url.created_at,
        )


class URLListResponse(BaseModel):
    urls: list[URLItem]


class DeleteResponse(BaseModel):
    code: str


class AuthCheckResponse(BaseModel):
    id: str = Field(..., description="Authenticated user id")


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus


class CachedURLPayload(BaseModel):
    """Redis cache payload for a resolvable short code."""

    code: str
    origin_url: str
