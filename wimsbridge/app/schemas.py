from __future__ import annotations

from pydantic import BaseModel


class ClassOwner(BaseModel):
    """Teacher who supervises a class created on the server."""

    supervisor: str
    firstname: str
    lastname: str
    email: str
    institution: str = ''


class StudentIdentity(BaseModel):
    login: str
    firstname: str
    lastname: str


class SheetIndex(BaseModel):
    worksheets: dict[int | str, dict[str, str]]
    exams: dict[int | str, dict[str, str]]
