from datetime import datetime
from typing import Literal

from pydantic import Field

from .base import CamelModel


class UserStatus(CamelModel):
    signed_up: bool = False
    signup_id: str | None = None
    on_waitlist: bool = False
    waitlist_id: str | None = None


class Activity(CamelModel):
    id: str
    title: str
    description: str
    starts_at: datetime = Field(alias="datetime")
    expiration_date: datetime | None = None
    committee: str
    poster: str | None = None
    total_sign_ups: int = 0
    user_status: UserStatus = Field(default_factory=UserStatus)


class ActivitySignup(CamelModel):
    type: Literal["signup", "waitlist"] = "signup"
    answers: dict[str, str] = Field(default_factory=dict)


class RemoveRegistration(CamelModel):
    type: Literal["signout"] = "signout"
    id: str
