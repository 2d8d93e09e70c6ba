import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Self

from pydantic import BaseModel

from .base import CamelModel

PB_AUTH_PATTERN = re.compile(r"(?:^|[;,]\s*)pb_auth=([^;,\s]+)")
EXPIRES_PATTERN = re.compile(r"Expires=([^;]+)", re.IGNORECASE)
# requests joins repeated Set-Cookie headers with ", "; a comma followed by
# name= starts the next cookie (the comma inside an Expires date never does)
NEXT_COOKIE_PATTERN = re.compile(r",\s*[\w!#$%&'*+.^`|~-]+=")


def parse_expires(value: str) -> datetime | None:
    """Parse an HTTP date (``Wed, 01 Jan 2030 00:00:00 GMT``) as an aware UTC datetime."""
    try:
        parsed = parsedate_to_datetime(value.strip())
    except (TypeError, ValueError, IndexError):
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class Session(CamelModel):
    token: str
    expiration_date: datetime | None = None

    @classmethod
    def from_set_cookie(cls, header: str | None) -> Self | None:
        """Extract the pb_auth session from a ``Set-Cookie`` header value."""
        if not header:
            return None
        match = PB_AUTH_PATTERN.search(header)
        if not match:
            return None

        attributes = header[match.end() :]
        next_cookie = NEXT_COOKIE_PATTERN.search(attributes)
        if next_cookie:
            attributes = attributes[: next_cookie.start()]

        expiration_date = None
        expires = EXPIRES_PATTERN.search(attributes)
        if expires:
            expiration_date = parse_expires(expires.group(1))
        return cls(token=match.group(1), expiration_date=expiration_date)

    @property
    def cookie_header(self) -> str:
        return f"pb_auth={self.token}"

    @property
    def is_expired(self) -> bool:
        if self.expiration_date is None:
            return False
        return self.expiration_date <= datetime.now(timezone.utc)


class User(CamelModel):
    id: str
    name: str
    email: str
    username: str
    is_admin: bool = False
    registration_date: datetime | None = None


class LoginResponse(BaseModel):
    data: dict[str, Any]
    header: str | None = None
