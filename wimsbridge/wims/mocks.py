"""Light-weight helpers to mock a WIMS server for unit tests.

Replies are callables receiving the outgoing :class:`httpx.Request`, so they
can echo the request's correlation code the way the real server does.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from .transport import WIMS_CHARSET

Reply = Callable[[httpx.Request], httpx.Response]


@dataclass(slots=True)
class RecordedCall:
    """Simple container capturing an outgoing request for assertions."""

    method: str
    url: httpx.URL
    headers: httpx.Headers

    @property
    def job(self) -> str | None:
        return self.url.params.get('job')

    @property
    def code(self) -> str | None:
        return self.url.params.get('code')

    @property
    def params(self) -> httpx.QueryParams:
        return self.url.params


def _request_code(request: httpx.Request) -> str:
    return request.url.params.get('code', '')


def json_reply(*, status: str = 'OK', code: str | int | None = None, **fields: Any) -> Reply:
    """JSON reply echoing the request code unless ``code`` is forced."""

    def reply(request: httpx.Request) -> httpx.Response:
        echoed = _request_code(request) if code is None else code
        return httpx.Response(200, json={'status': status, 'code': echoed, **fields})

    return reply


def json_error(message: str, *, code: str | int | None = None, **fields: Any) -> Reply:
    return json_reply(status='ERROR', code=code, message=message, **fields)


def lines_ok(*lines: str, code: str | int | None = None) -> Reply:
    def reply(request: httpx.Request) -> httpx.Response:
        echoed = _request_code(request) if code is None else code
        body = '\n'.join([f'OK {echoed}', *lines]) + '\n'
        return httpx.Response(200, content=body.encode(WIMS_CHARSET))

    return reply


def lines_error(*lines: str) -> Reply:
    return raw_reply('\n'.join(['ERROR', *lines]) + '\n')


def raw_reply(body: str | bytes, *, status_code: int = 200) -> Reply:
    content = body if isinstance(body, bytes) else body.encode(WIMS_CHARSET)

    def reply(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, content=content)

    return reply


def create_mock_transport(**replies: Reply | Sequence[Reply]) -> tuple[httpx.MockTransport, list[RecordedCall]]:
    """Create an :class:`httpx.MockTransport` answering per ``job``.

    A job mapped to a sequence answers with its items in order and keeps
    repeating the last one.
    """

    queues: MutableMapping[str, list[Reply]] = {}
    for job, value in replies.items():
        queues[job] = list(value) if isinstance(value, Sequence) else [value]
        if not queues[job]:
            msg = f'No replies given for job {job!r}.'
            raise ValueError(msg)

    calls: list[RecordedCall] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(RecordedCall(method=request.method, url=request.url, headers=httpx.Headers(request.headers)))

        job = request.url.params.get('job')
        if job is None:
            return httpx.Response(400, text='missing job')

        queue = queues.get(job)
        if queue is None:
            return httpx.Response(404, text=f'unhandled job {job}')

        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        return reply(request)

    return httpx.MockTransport(handler), calls


def make_score_records(scores: Mapping[str, Any], *, field: str = 'score') -> list[dict[str, Any]]:
    return [{'id': user_id, field: value} for user_id, value in scores.items()]


__all__ = [
    'RecordedCall',
    'Reply',
    'create_mock_transport',
    'json_error',
    'json_reply',
    'lines_error',
    'lines_ok',
    'make_score_records',
    'raw_reply',
]
