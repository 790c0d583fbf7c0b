"""Pydantic models and result types for the WIMS ``adm/raw`` protocol.

Two families live here.  Reply schemas validate the JSON documents returned by
each job so that a server speaking a different dialect is caught at decode
time instead of surfacing as a ``KeyError`` deep in an accessor.  Payload
models describe the ``key=value`` blocks sent as ``data1``/``data2`` by the
mutation jobs; their field declaration order *is* the wire order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Annotated, Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

Scalar = str | int | float | None


class CallStatus(StrEnum):
    """Outcome of a single round trip."""

    OK = 'OK'
    TRANSPORT_FAILURE = 'TRANSPORT_FAILURE'
    SERVICE_FAILURE = 'SERVICE_FAILURE'


class ResponseFormat(StrEnum):
    LINES = 'lines'
    JSON = 'json'


@dataclass(frozen=True, slots=True)
class CallResult:
    """Tagged result of one protocol call.

    ``lines`` is populated for the line format and for transport failures
    (where it carries the diagnostic), ``document`` for decoded JSON replies.
    """

    status: CallStatus
    job: str
    code: str
    raw: str = ''
    lines: list[str] = field(default_factory=list)
    document: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return self.status is CallStatus.OK

    @property
    def diagnostic(self) -> list[str]:
        if self.document is not None:
            return [f'{key}: {value}' for key, value in self.document.items()]
        return list(self.lines)


@dataclass(frozen=True, slots=True)
class ClassRef:
    """Identifies a class on the server: numeric class id plus binding string."""

    qcl: str
    rcl: str


# -- Reply schemas ----------------------------------------------------------


class WimsReplyModel(BaseModel):
    """Base for JSON replies; unknown keys are kept so property bags survive."""

    model_config = ConfigDict(extra='allow', populate_by_name=True)


class WimsReply(WimsReplyModel):
    """Envelope shared by every JSON reply."""

    status: str
    code: Annotated[int | str | None, Field(description='Correlation code echoed from the request.')] = None
    message: Annotated[Any, Field(description='Human readable reason given on ERROR replies.')] = None
    job: str | None = None


class AuthUserReply(WimsReply):
    home_url: Annotated[str, Field(min_length=1, description='Session URL for the authenticated login.')]


class SheetListReply(WimsReply):
    nbsheet: Annotated[int, Field(ge=0)]
    sheetlist: list[int | str]
    sheettitlelist: list[str]

    @model_validator(mode='after')
    def _check_lengths(self) -> SheetListReply:
        if min(len(self.sheetlist), len(self.sheettitlelist)) < self.nbsheet:
            raise ValueError('sheetlist and sheettitlelist must hold at least nbsheet entries.')
        return self


class ExamListReply(WimsReply):
    nbexam: Annotated[int, Field(ge=0)]
    examlist: list[int | str]
    examtitlelist: list[str]

    @model_validator(mode='after')
    def _check_lengths(self) -> ExamListReply:
        if min(len(self.examlist), len(self.examtitlelist)) < self.nbexam:
            raise ValueError('examlist and examtitlelist must hold at least nbexam entries.')
        return self


class SheetPropertiesReply(WimsReply):
    sheet_status: Scalar
    sheet_expiration: Scalar
    sheet_title: Scalar
    sheet_description: Scalar

    def to_properties(self) -> dict[str, Any]:
        return {
            'status': self.sheet_status,
            'expiration': self.sheet_expiration,
            'title': self.sheet_title,
            'description': self.sheet_description,
        }


class ExamPropertiesReply(WimsReply):
    exam_opening: Scalar
    exam_status: Scalar
    exam_duration: Scalar
    exam_attempts: Scalar
    exam_title: Scalar
    exam_description: Scalar
    exam_cut_hours: Scalar
    # Older servers emit the key with a trailing space; the first alias wins.
    exam_expiration: Annotated[
        Scalar,
        Field(validation_alias=AliasChoices('exam_expiration', 'exam_expiration ')),
    ] = None

    def to_properties(self) -> dict[str, Any]:
        properties: dict[str, Any] = {
            'opening': self.exam_opening,
            'status': self.exam_status,
            'duration': self.exam_duration,
            'attempts': self.exam_attempts,
            'title': self.exam_title,
            'description': self.exam_description,
            'cut_hours': self.exam_cut_hours,
        }
        if self.exam_expiration is not None:
            properties['expiration'] = self.exam_expiration
        return properties


class ScoresReply(WimsReply):
    data_scores: Annotated[list[dict[str, Any]], Field(description='One record per user, passed through untouched.')]


class SheetSummary(BaseModel):
    """Entry of a worksheet or exam listing."""

    model_config = ConfigDict(frozen=True)

    title: str
    state: str


# -- Mutation payloads ------------------------------------------------------


class WimsPayloadModel(BaseModel):
    """Base for ``data1``/``data2`` blocks; declaration order is wire order."""

    model_config = ConfigDict(extra='forbid', populate_by_name=True, str_strip_whitespace=True)


class NewClassData(WimsPayloadModel):
    description: str
    institution: str
    supervisor: str
    email: str
    password: str
    lang: str
    secure: str = 'all'


class NewSupervisorData(WimsPayloadModel):
    lastname: str
    firstname: str
    password: str


class ClassUpdate(WimsPayloadModel):
    description: str | None = None
    institution: str | None = None
    supervisor: str | None = None
    email: str | None = None
    lang: str | None = None
    expiration: str | None = None


class SupervisorUpdate(WimsPayloadModel):
    lastname: str | None = None
    firstname: str | None = None
    email: str | None = None


class NewUserData(WimsPayloadModel):
    firstname: str
    lastname: str
    password: str


__all__ = [
    'AuthUserReply',
    'CallResult',
    'CallStatus',
    'ClassRef',
    'ClassUpdate',
    'ExamListReply',
    'ExamPropertiesReply',
    'NewClassData',
    'NewSupervisorData',
    'NewUserData',
    'ResponseFormat',
    'ScoresReply',
    'SheetListReply',
    'SheetPropertiesReply',
    'SheetSummary',
    'SupervisorUpdate',
    'WimsPayloadModel',
    'WimsReply',
    'WimsReplyModel',
]
