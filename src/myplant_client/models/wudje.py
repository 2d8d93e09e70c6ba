from datetime import datetime

from .base import CamelModel


class Author(CamelModel):
    id: str
    name: str
    username: str


class Wud(CamelModel):
    id: str
    message: str
    created: datetime
    author: Author


class PostWudjeRequest(CamelModel):
    message: str
