"""Destination parsing and request/response schemas.

Untyped input is turned into a ``Destination`` in exactly one place,
``parse_destination``; everything past that boundary can trust the value.

Schema Hierarchy
=================
::
    ShortenRequest (Input)
    ├─ url: str (parsed by AllocationService against the configured limit)
    └─ expires_at: datetime | None (optional, must be in the future)

    ShortenResponse (Output)
    ├─ code: str
    ├─ short_url: str
    ├─ destination: str
    └─ expires_at: datetime | None

    LinkResponse (Output)
    └─ ShortenResponse + created_at

    HealthResponse (Output)
    ├─ status
    ├─ store
    └─ cache

Key Behaviours
===============
- URL validation uses the validators library for RFC compliance.
- Only absolute http/https URLs up to the configured length are accepted.
- Validation failures raise DestinationValidationError; the shorten route
  reports it as a 422.
- ShortenRequest only checks the body shape. The URL itself is parsed by
  the allocation service, which knows MAX_DESTINATION_LENGTH.
"""

import datetime
from dataclasses import dataclass
from urllib.parse import urlsplit

import validators
from pydantic import BaseModel

from shortener.enums import HealthStatus
from shortener.exceptions import DestinationValidationError

__all__ = [
    "ALLOWED_SCHEMES",
    "DEFAULT_MAX_DESTINATION_LENGTH",
    "Destination",
    "parse_destination",
    "ShortenRequest",
    "ShortenResponse",
    "LinkResponse",
    "HealthResponse",
]

ALLOWED_SCHEMES = ("http", "https")
DEFAULT_MAX_DESTINATION_LENGTH = 2048


@dataclass(frozen=True, slots=True)
class Destination:
    url: str

    def __str__(self) -> str:
        return self.url


def parse_destination(raw: object, max_length: int = DEFAULT_MAX_DESTINATION_LENGTH) -> Destination:
    if isinstance(raw, Destination):
        raw = raw.url
    if not isinstance(raw, str):
        raise DestinationValidationError("URL must be a string")

    url = raw.strip()
    if not url:
        raise DestinationValidationError("URL is required")
    if len(url) > max_length:
        raise DestinationValidationError(f"URL is too long (max {max_length} characters)")

    scheme = urlsplit(url).scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        raise DestinationValidationError("URL must use http or https")
    if not validators.url(url):
        raise DestinationValidationError("Invalid URL provided")
    return Destination(url)


class ShortenRequest(BaseModel):
    url: str
    expires_at: datetime.datetime | None = None


class ShortenResponse(BaseModel):
    code: str
    short_url: str
    destination: str
    expires_at: datetime.datetime | None = None


class LinkResponse(BaseModel):
    code: str
    short_url: str
    destination: str
    created_at: datetime.datetime
    expires_at: datetime.datetime | None = None


class HealthResponse(BaseModel):
    status: HealthStatus
    store: HealthStatus
    cache: HealthStatus
