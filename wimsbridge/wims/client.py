"""Blocking client for the WIMS ``module=adm/raw`` remote administration API.

:class:`WimsClient` speaks both reply dialects the server offers: the legacy
newline-delimited one (first line ``OK <code>``) and the JSON one.  Every call
carries a fresh three digit correlation code which the server must echo back;
a reply with a different code is treated as a service failure even when its
status claims success.

Expected failures never raise.  Each call produces a :class:`CallResult`
which is also kept as :attr:`WimsClient.last_result`, and the public
operations return ``None`` so the caller can log ``last_result.diagnostic``.
Only contract violations (a non-JSON body where JSON was requested, or a
reply missing the fields its job promises) raise :class:`WimsProtocolError`.

One instance is meant for one logical flow; it keeps no locks.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
from collections.abc import Mapping
from itertools import dropwhile
from typing import Any, TypeVar
from urllib.parse import quote_plus

import httpx
from pydantic import BaseModel, ValidationError

from .models import (
    AuthUserReply,
    CallResult,
    CallStatus,
    ClassRef,
    ClassUpdate,
    ExamListReply,
    ExamPropertiesReply,
    NewClassData,
    NewSupervisorData,
    NewUserData,
    ResponseFormat,
    ScoresReply,
    SheetListReply,
    SheetPropertiesReply,
    SheetSummary,
    SupervisorUpdate,
    WimsReply,
)
from .transport import WIMS_CHARSET, FetchResult, WimsTransport, redact_url

logger = logging.getLogger(__name__)

ReplyT = TypeVar('ReplyT', bound=WimsReply)

NOTHING_DONE = 'nothing done'
SUPERVISOR_LOGIN = 'supervisor'

_IP_MISMATCH_RE = re.compile(r'IP \(([0-9.]+) !=')
_CLASS_CONFIG_HIDDEN = ('status', 'code', 'job', 'query_class', 'rclass', 'password')
_USER_CONFIG_HIDDEN = ('status', 'code', 'job', 'query_class', 'queryuser')


class WimsClientError(RuntimeError):
    """Base error raised by the WIMS integration."""


class WimsProtocolError(WimsClientError):
    """The server answered outside the protocol contract for ``job``."""

    def __init__(self, job: str, reason: str, raw: str = ''):
        self.job = job
        self.raw = raw
        super().__init__(f'WIMS server broke the protocol for job {job!r}: {reason}')


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return '1' if value else '0'
    return str(value)


def wims_encode(value: Any) -> str:
    """Encode a parameter value the way the server decodes it (Latin-1, form style)."""

    return quote_plus(_stringify(value).encode(WIMS_CHARSET, errors='replace'))


def format_data_block(fields: Mapping[str, Any] | BaseModel) -> str:
    """Render ``key=value`` lines for a ``data1``/``data2`` parameter.

    Payload models emit their declared fields in declaration order; plain
    mappings keep their own order.  ``None`` values are skipped.
    """

    if isinstance(fields, BaseModel):
        items = fields.model_dump(exclude_none=True).items()
    else:
        items = ((key, value) for key, value in fields.items() if value is not None)
    return ''.join(f'{key}={_stringify(value)}\n' for key, value in items)


def _lines_accepted(lines: list[str], code: str) -> bool:
    significant = [line.strip() for line in dropwhile(lambda line: not line.strip(), lines)]
    if not significant:
        return False
    if significant[0] == f'OK {code}':
        return True
    return significant[0] == 'ERROR' and len(significant) > 1 and significant[1] == NOTHING_DONE


def _summaries(ids: list[int | str], titles: list[str], count: int) -> dict[int | str, SheetSummary]:
    result: dict[int | str, SheetSummary] = {}
    for item_id, raw_title in zip(ids[:count], titles[:count], strict=True):
        # "<prefix>:<title>:<state>"; the prefix is not used.
        parts = raw_title.split(':') + ['', '']
        result[item_id] = SheetSummary(title=parts[1].strip(), state=parts[2].strip())
    return result


class WimsClient:
    """High-level helper for the subset of the WIMS raw API the bridge relies on."""

    def __init__(
        self,
        base_url: str,
        service_password: str,
        *,
        allow_self_signed: bool = False,
        debug: bool = False,
        service_name: str = 'moodle',
        timeout: float | httpx.Timeout | None = None,
        transport: httpx.BaseTransport | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url
        self.service_name = service_name
        self.debug = debug
        self.secure = base_url.startswith('https')
        self._service_password = service_password
        self._transport = WimsTransport(
            verify=not allow_self_signed,
            timeout=timeout,
            transport=transport,
            http_client=http_client,
        )
        self._access_urls: dict[tuple[str, str, str], str] = {}
        self.last_result: CallResult | None = None

    def __enter__(self) -> WimsClient:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self._transport.close()

    @property
    def status(self) -> CallStatus:
        return self.last_result.status if self.last_result is not None else CallStatus.OK

    def service_identity(self, fmt: ResponseFormat) -> str:
        """Return the ``ident`` value for a call in the given reply format.

        Only JSON identities carry the ``https`` suffix; line-format calls use
        the bare service name whatever the base URL scheme.
        """

        if fmt is ResponseFormat.JSON:
            return f'{self.service_name}json' + ('https' if self.secure else '')
        return self.service_name

    # -- Connectivity ---------------------------------------------------

    def check_ident_lines(self) -> bool | None:
        return True if self._execute_lines('checkident').ok else None

    def check_ident_json(self) -> bool | None:
        return True if self._execute_json('checkident').ok else None

    def check_class(self, ref: ClassRef, *, extended: bool = False) -> bool | None:
        """Check that the class exists; ``extended`` fetches the full record quietly."""

        job = 'getclass' if extended else 'checkclass'
        return True if self._execute_json(job, self._class_params(ref), silent=extended).ok else None

    def check_user(self, ref: ClassRef, login: str) -> bool | None:
        if (ref.qcl, ref.rcl, login) in self._access_urls:
            return True
        return True if self._execute_lines('checkuser', self._class_params(ref, quser=login)).ok else None

    # -- Mutations ------------------------------------------------------

    def add_class(self, ref: ClassRef, class_data: NewClassData, supervisor: NewSupervisorData) -> bool | None:
        params = self._class_params(ref, data1=format_data_block(class_data), data2=format_data_block(supervisor))
        return True if self._execute_lines('addclass', params).ok else None

    def update_class(self, ref: ClassRef, fields: ClassUpdate | Mapping[str, Any]) -> bool | None:
        params = self._class_params(ref, data1=format_data_block(fields))
        return True if self._execute_lines('modclass', params).ok else None

    def update_class_supervisor(self, ref: ClassRef, fields: SupervisorUpdate | Mapping[str, Any]) -> bool | None:
        params = self._class_params(ref, data1=format_data_block(fields), quser=SUPERVISOR_LOGIN)
        return True if self._execute_lines('moduser', params).ok else None

    def add_user(
        self,
        ref: ClassRef,
        firstname: str,
        lastname: str,
        login: str,
        *,
        password: str | None = None,
    ) -> bool | None:
        if password is None:
            digits = secrets.randbelow(9000) + 1000
            password = f'{digits}{digits}'
        data = NewUserData(firstname=firstname, lastname=lastname, password=password)
        params = self._class_params(ref, quser=login, data1=format_data_block(data))
        return True if self._execute_lines('adduser', params).ok else None

    def update_worksheet_properties(self, ref: ClassRef, sheet: int | str, fields: Mapping[str, Any]) -> bool | None:
        params = self._class_params(ref, qsheet=sheet, data1=format_data_block(fields))
        return True if self._execute_lines('modsheet', params).ok else None

    def update_exam_properties(self, ref: ClassRef, exam: int | str, fields: Mapping[str, Any]) -> bool | None:
        params = self._class_params(ref, qexam=exam, data1=format_data_block(fields))
        return True if self._execute_lines('modexam', params).ok else None

    # -- Session URLs ---------------------------------------------------

    def get_home_page_url(self, ref: ClassRef, login: str, lang: str, *, origin: str = '') -> str | None:
        """Open a session for ``login`` and return its home page URL.

        ``origin`` is the caller's best guess of the address the user's browser
        will come from.  When the server disagrees it names the address it
        expects, and the call is repeated once with that address.  Successful
        URLs are cached per ``(class, binding, login)`` for the lifetime of
        the client.
        """

        key = (ref.qcl, ref.rcl, login)
        home_url = self._access_urls.get(key)
        if home_url is None:
            home_url = self._authenticate(ref, login, origin)
            if home_url is None:
                return None
            self._access_urls[key] = home_url
        return f'{home_url}&lang={lang}'

    def get_score_page_url(self, ref: ClassRef, login: str, lang: str, *, origin: str = '') -> str | None:
        url = self.get_home_page_url(ref, login, lang, origin=origin)
        if url is None:
            return None
        return f'{url}&module=adm/class/userscore'

    def get_worksheet_url(self, ref: ClassRef, login: str, lang: str, sheet: int | str, *, origin: str = '') -> str | None:
        url = self.get_home_page_url(ref, login, lang, origin=origin)
        if url is None:
            return None
        return f'{url}&module=adm/sheet&sh={sheet}'

    def get_exam_url(self, ref: ClassRef, login: str, lang: str, exam: int | str, *, origin: str = '') -> str | None:
        url = self.get_home_page_url(ref, login, lang, origin=origin)
        if url is None:
            return None
        return f'{url}&module=adm/class/exam&exam={exam}'

    # -- Accessors ------------------------------------------------------

    def get_class_config(self, ref: ClassRef) -> dict[str, Any] | None:
        result = self._execute_json('getclass', self._class_params(ref))
        if not result.ok:
            return None
        return {key: value for key, value in result.document.items() if key not in _CLASS_CONFIG_HIDDEN}

    def get_user_config(self, ref: ClassRef, login: str) -> dict[str, Any] | None:
        result = self._execute_json('getuser', self._class_params(ref, quser=login))
        if not result.ok:
            return None
        return {key: value for key, value in result.document.items() if key not in _USER_CONFIG_HIDDEN}

    def get_worksheet_list(self, ref: ClassRef) -> dict[int | str, SheetSummary] | None:
        result = self._execute_json('listsheets', self._class_params(ref))
        if not result.ok:
            return None
        reply = self._decode(result, SheetListReply)
        return _summaries(reply.sheetlist, reply.sheettitlelist, reply.nbsheet)

    def get_exam_list(self, ref: ClassRef) -> dict[int | str, SheetSummary] | None:
        result = self._execute_json('listexams', self._class_params(ref))
        if not result.ok:
            return None
        reply = self._decode(result, ExamListReply)
        return _summaries(reply.examlist, reply.examtitlelist, reply.nbexam)

    def get_worksheet_properties(self, ref: ClassRef, sheet: int | str) -> dict[str, Any] | None:
        result = self._execute_json('getsheet', self._class_params(ref, qsheet=sheet))
        if not result.ok:
            return None
        return self._decode(result, SheetPropertiesReply).to_properties()

    def get_exam_properties(self, ref: ClassRef, exam: int | str) -> dict[str, Any] | None:
        result = self._execute_json('getexam', self._class_params(ref, qexam=exam))
        if not result.ok:
            return None
        return self._decode(result, ExamPropertiesReply).to_properties()

    def get_worksheet_scores(self, ref: ClassRef, sheet: int | str) -> list[dict[str, Any]] | None:
        """Return the per-user records of a worksheet; ``user_percent`` is in tenths of a point."""

        result = self._execute_json('getsheetscores', self._class_params(ref, qsheet=sheet))
        if not result.ok:
            return None
        return self._decode(result, ScoresReply).data_scores

    def get_exam_scores(self, ref: ClassRef, exam: int | str) -> list[dict[str, Any]] | None:
        result = self._execute_json('getexamscores', self._class_params(ref, qexam=exam))
        if not result.ok:
            return None
        return self._decode(result, ScoresReply).data_scores

    # -- Internal helpers -----------------------------------------------

    @staticmethod
    def _class_params(ref: ClassRef, **extra: Any) -> dict[str, Any]:
        return {'qclass': ref.qcl, 'rclass': ref.rcl, **extra}

    def _trace(self, msg: str, *args: Any) -> None:
        logger.log(logging.INFO if self.debug else logging.DEBUG, msg, *args)

    def _record(self, result: CallResult) -> CallResult:
        self.last_result = result
        return result

    def _build_url(self, job: str, code: str, ident: str, params: Mapping[str, Any]) -> str:
        query = f'module=adm/raw&job={job}&code={code}&ident={ident}&passwd={wims_encode(self._service_password)}'
        for key, value in params.items():
            if value is not None:
                query += f'&{key}={wims_encode(value)}'
        return f'{self.base_url}?{query}'

    def _execute(self, job: str, fmt: ResponseFormat, params: Mapping[str, Any] | None) -> tuple[str, FetchResult]:
        code = str(secrets.randbelow(900) + 100)
        url = self._build_url(job, code, self.service_identity(fmt), params or {})
        self._trace('WIMS execute: %s', redact_url(url))
        return code, self._transport.fetch(url)

    def _execute_lines(self, job: str, params: Mapping[str, Any] | None = None) -> CallResult:
        code, fetched = self._execute(job, ResponseFormat.LINES, params)
        if not fetched.ok:
            return self._record(CallResult(CallStatus.TRANSPORT_FAILURE, job, code, lines=fetched.diagnostic))

        lines = fetched.text.split('\n')
        if _lines_accepted(lines, code):
            self._trace('WIMS %s: status OK', job)
            return self._record(CallResult(CallStatus.OK, job, code, raw=fetched.text, lines=lines))

        logger.warning('WIMS %s: OK code not matched (expecting "OK %s"): %r', job, code, fetched.text[:200])
        return self._record(CallResult(CallStatus.SERVICE_FAILURE, job, code, raw=fetched.text, lines=lines))

    def _execute_json(self, job: str, params: Mapping[str, Any] | None = None, *, silent: bool = False) -> CallResult:
        code, fetched = self._execute(job, ResponseFormat.JSON, params)
        if not fetched.ok:
            return self._record(CallResult(CallStatus.TRANSPORT_FAILURE, job, code, lines=fetched.diagnostic))

        try:
            document = json.loads(fetched.text)
        except ValueError as exc:
            raise WimsProtocolError(job, 'reply is not valid JSON', fetched.text) from exc
        if not isinstance(document, dict):
            raise WimsProtocolError(job, f'expected a JSON object, got {type(document).__name__}', fetched.text)

        try:
            envelope = WimsReply.model_validate(document)
        except ValidationError as exc:
            raise WimsProtocolError(job, str(exc), fetched.text) from exc

        code_matches = envelope.code is not None and str(envelope.code) == code
        noop = envelope.status == 'ERROR' and envelope.message == NOTHING_DONE
        if code_matches and (envelope.status == 'OK' or noop):
            self._trace('WIMS %s: JSON status OK', job)
            return self._record(CallResult(CallStatus.OK, job, code, raw=fetched.text, document=document))

        if silent:
            self._trace('WIMS %s: JSON reply rejected (code %s): %s', job, code, document)
        else:
            logger.warning('WIMS %s: JSON reply rejected (code %s): %s', job, code, document)
        return self._record(CallResult(CallStatus.SERVICE_FAILURE, job, code, raw=fetched.text, document=document))

    def _decode(self, result: CallResult, model: type[ReplyT]) -> ReplyT:
        try:
            return model.model_validate(result.document)
        except ValidationError as exc:
            raise WimsProtocolError(result.job, f'reply does not match {model.__name__}: {exc}', result.raw) from exc

    def _authenticate(self, ref: ClassRef, login: str, origin: str) -> str | None:
        params = self._class_params(ref, quser=login, data1=origin)
        result = self._execute_json('authuser', params)
        if result.status is CallStatus.TRANSPORT_FAILURE:
            return None

        if not result.ok:
            message = (result.document or {}).get('message')
            match = _IP_MISMATCH_RE.search(message) if isinstance(message, str) else None
            if match is None:
                self._trace('authuser refused and no expected address given, not retrying')
                return None
            self._trace('authuser refused origin %r, retrying with %s from %r', origin, match.group(1), message)
            result = self._execute_json('authuser', {**params, 'data1': match.group(1)})
            if not result.ok:
                return None

        return self._decode(result, AuthUserReply).home_url


__all__ = [
    'NOTHING_DONE',
    'SUPERVISOR_LOGIN',
    'WimsClient',
    'WimsClientError',
    'WimsProtocolError',
    'format_data_block',
    'wims_encode',
]
