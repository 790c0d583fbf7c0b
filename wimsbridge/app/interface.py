"""Host-facing facade composing :class:`~wimsbridge.wims.WimsClient` calls.

The host application keeps its own records (course modules, user profiles) and
hands this layer the identifiers the server knows: a :class:`ClassRef`, a
login, an owner record.  Every operation returns a value or ``True`` on
success and ``None`` on failure, leaving the failing call's diagnostic in
:attr:`WimsInterface.error_messages`.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Iterable, Mapping
from enum import IntEnum
from typing import Any

from pydantic import BaseModel

from wimsbridge.app.config import Settings, settings
from wimsbridge.app.schemas import ClassOwner, SheetIndex, StudentIdentity
from wimsbridge.wims import (
    SUPERVISOR_LOGIN,
    ClassRef,
    ClassUpdate,
    NewClassData,
    NewSupervisorData,
    SupervisorUpdate,
    WimsClient,
    WimsProtocolError,
)

logger = logging.getLogger(__name__)

# Worksheet scores come back in tenths of a point.
WORKSHEET_SCORE_SCALE = 0.1


class UrlType(IntEnum):
    HOME_PAGE = 1
    GRADE_PAGE = 2
    WORKSHEET = 3
    EXAM = 4


def _random_password() -> str:
    return f'Pwd{secrets.randbelow(900000) + 100000}'


def _pick(data: Mapping[str, Any], model: type[BaseModel]) -> dict[str, Any]:
    """Select the fields ``model`` declares, in its declaration order."""

    return {name: data[name] for name in model.model_fields if data.get(name) is not None}


def _as_score(value: Any) -> float:
    """Numeric score; blanks and placeholders such as ``'-'`` count as 0."""

    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _score_map(job: str, records: list[dict[str, Any]], field: str, scale: float | None = None) -> dict[Any, Any]:
    scores: dict[Any, Any] = {}
    for record in records:
        if 'id' not in record or field not in record:
            raise WimsProtocolError(job, f'score record without id/{field}: {record!r}')
        value = record[field]
        scores[record['id']] = _as_score(value) * scale if scale is not None else value
    return scores


class WimsInterface:
    """Class-level operations a host application performs against one server."""

    def __init__(self, client: WimsClient, *, default_lang: str = 'en') -> None:
        self.client = client
        self.default_lang = default_lang
        self.error_messages: list[str] = []

    @classmethod
    def from_settings(cls, config: Settings = settings, **client_options: Any) -> WimsInterface:
        client = WimsClient(
            config.server_url,
            config.server_password,
            allow_self_signed=config.allow_self_signed_certs,
            debug=config.debug,
            service_name=config.service_name,
            timeout=config.timeout,
            **client_options,
        )
        return cls(client, default_lang=config.lang)

    def __enter__(self) -> WimsInterface:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.client.close()

    # -- Connection and class provisioning ------------------------------

    def test_connection(self) -> bool | None:
        """Check both reply formats; both must succeed."""

        lines_ok = self.client.check_ident_lines()
        json_ok = self.client.check_ident_json()
        if lines_ok and json_ok:
            return True

        self.error_messages = ['WIMS connection test failed:']
        if not lines_ok:
            self.error_messages.append('- WIMS interface: FAILED')
        if not json_ok:
            self.error_messages.append('- JSON interface: FAILED')
        logger.warning('%s', ' '.join(self.error_messages))
        return None

    def select_class(self, ref: ClassRef, owner: ClassOwner, *, name: str, lang: str | None = None) -> bool | None:
        """Make sure the class exists, creating and opening it to this bridge if needed."""

        if self.client.check_class(ref):
            return True

        class_data = NewClassData(
            description=name,
            institution=owner.institution,
            supervisor=owner.supervisor,
            email=owner.email,
            password=_random_password(),
            lang=lang or self.default_lang,
        )
        supervisor = NewSupervisorData(lastname=owner.lastname, firstname=owner.firstname, password=_random_password())
        if not self.client.add_class(ref, class_data, supervisor):
            return self._fail('addclass')

        if not self.client.update_class(ref, {'connections': self.connections_line(ref)}):
            return self._fail('modclass')
        return True

    def verify_class_accessible(self, ref: ClassRef) -> bool | None:
        return True if self.client.check_class(ref, extended=True) else None

    def connections_line(self, ref: ClassRef) -> str:
        """Grant every identity this bridge may call with access to the class."""

        service = self.client.service_name
        identities = (service, f'{service}json', f'{service}https', f'{service}jsonhttps')
        return ' '.join(f'+{identity}/{ref.rcl}+' for identity in identities)

    # -- Session URLs ---------------------------------------------------

    def get_student_url(
        self,
        ref: ClassRef,
        student: StudentIdentity,
        lang: str | None = None,
        url_type: UrlType = UrlType.HOME_PAGE,
        arg: int | str | None = None,
        *,
        origin: str = '',
    ) -> str | None:
        if not self.client.check_user(ref, student.login):
            if not self.client.add_user(ref, student.firstname, student.lastname, student.login):
                return self._fail('adduser')
        return self._url_for_login(ref, student.login, lang, url_type, arg, origin)

    def get_teacher_url(
        self,
        ref: ClassRef,
        lang: str | None = None,
        url_type: UrlType = UrlType.HOME_PAGE,
        arg: int | str | None = None,
        *,
        origin: str = '',
    ) -> str | None:
        return self._url_for_login(ref, SUPERVISOR_LOGIN, lang, url_type, arg, origin)

    def _url_for_login(
        self,
        ref: ClassRef,
        login: str,
        lang: str | None,
        url_type: UrlType,
        arg: int | str | None,
        origin: str,
    ) -> str | None:
        url_type = UrlType(url_type)
        lang = lang or self.default_lang
        if url_type in (UrlType.WORKSHEET, UrlType.EXAM) and arg is None:
            msg = f'{url_type.name} URLs need the item identifier.'
            raise ValueError(msg)

        if url_type is UrlType.HOME_PAGE:
            url = self.client.get_home_page_url(ref, login, lang, origin=origin)
        elif url_type is UrlType.GRADE_PAGE:
            url = self.client.get_score_page_url(ref, login, lang, origin=origin)
        elif url_type is UrlType.WORKSHEET:
            url = self.client.get_worksheet_url(ref, login, lang, arg, origin=origin)
        else:
            url = self.client.get_exam_url(ref, login, lang, arg, origin=origin)

        if url is None:
            return self._fail('authuser')
        return url

    # -- Class configuration --------------------------------------------

    def get_class_config(self, ref: ClassRef) -> dict[str, Any] | None:
        """Class config merged over the supervisor's config, with every sheet and exam detailed."""

        class_config = self.client.get_class_config(ref)
        if class_config is None:
            return self._fail('getclass')
        user_config = self.client.get_user_config(ref, SUPERVISOR_LOGIN)
        if user_config is None:
            return self._fail('getuser')
        result: dict[str, Any] = {**user_config, **class_config}

        worksheets = self.client.get_worksheet_list(ref)
        if worksheets is None:
            return self._fail('listsheets')
        result['worksheets'] = {}
        for sheet_id in worksheets:
            properties = self.client.get_worksheet_properties(ref, sheet_id)
            if properties is None:
                return self._fail('getsheet')
            result['worksheets'][sheet_id] = properties

        exams = self.client.get_exam_list(ref)
        if exams is None:
            return self._fail('listexams')
        result['exams'] = {}
        for exam_id in exams:
            properties = self.client.get_exam_properties(ref, exam_id)
            if properties is None:
                return self._fail('getexam')
            result['exams'][exam_id] = properties

        return result

    def update_class_config(self, ref: ClassRef, data: Mapping[str, Any]) -> bool | None:
        class_fields = _pick(data, ClassUpdate)
        if class_fields and not self.client.update_class(ref, class_fields):
            return self._fail('modclass')

        supervisor_fields = _pick(data, SupervisorUpdate)
        if supervisor_fields and not self.client.update_class_supervisor(ref, supervisor_fields):
            return self._fail('moduser')

        for sheet_id, properties in data.get('worksheets', {}).items():
            if properties and not self.client.update_worksheet_properties(ref, sheet_id, properties):
                return self._fail('modsheet')

        for exam_id, properties in data.get('exams', {}).items():
            if properties and not self.client.update_exam_properties(ref, exam_id, properties):
                return self._fail('modexam')

        return True

    # -- Sheets and scores ----------------------------------------------

    def get_sheet_index(self, ref: ClassRef) -> SheetIndex | None:
        worksheets = self.client.get_worksheet_list(ref)
        if worksheets is None:
            return self._fail('listsheets')
        exams = self.client.get_exam_list(ref)
        if exams is None:
            return self._fail('listexams')
        return SheetIndex(
            worksheets={key: summary.model_dump() for key, summary in worksheets.items()},
            exams={key: summary.model_dump() for key, summary in exams.items()},
        )

    def get_sheet_scores(self, ref: ClassRef, required: Mapping[str, Iterable[int | str]]) -> dict[str, dict] | None:
        """Fetch scores for the requested ``worksheets`` and ``exams``.

        Worksheet scores are converted from tenths to points; exam scores are
        returned as the server sends them.
        """

        result: dict[str, dict] = {}

        if 'worksheets' in required:
            result['worksheets'] = {}
            for sheet_id in required['worksheets']:
                records = self.client.get_worksheet_scores(ref, sheet_id)
                if records is None:
                    return self._fail('getsheetscores')
                result['worksheets'][sheet_id] = _score_map(
                    'getsheetscores', records, 'user_percent', WORKSHEET_SCORE_SCALE
                )

        if 'exams' in required:
            result['exams'] = {}
            for exam_id in required['exams']:
                records = self.client.get_exam_scores(ref, exam_id)
                if records is None:
                    return self._fail('getexamscores')
                result['exams'][exam_id] = _score_map('getexamscores', records, 'score')

        return result

    def _fail(self, job: str) -> None:
        last = self.client.last_result
        self.error_messages = last.diagnostic if last is not None else [f'WIMS {job} failed']
        logger.warning('WIMS %s failed: %s', job, ' | '.join(self.error_messages))
        return None


__all__ = ['WORKSHEET_SCORE_SCALE', 'UrlType', 'WimsInterface']
