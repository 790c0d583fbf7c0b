"""Single-shot blocking HTTP GET used by :class:`~wimsbridge.wims.client.WimsClient`.

The transport knows nothing about the WIMS payload: it fetches a fully
assembled URL, decodes the body with the server's legacy charset and reports
whether the round trip completed.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

import httpx

logger = logging.getLogger(__name__)

USER_AGENT = 'Moodle'
WIMS_CHARSET = 'iso-8859-1'

_PASSWD_RE = re.compile(r'(passwd=)[^&]*')


def redact_url(url: str) -> str:
    """Hide the service password in a request URL before it is logged."""

    return _PASSWD_RE.sub(r'\1***', url)


@dataclass(frozen=True, slots=True)
class FetchResult:
    ok: bool
    url: str
    text: str = ''
    diagnostic: list[str] = field(default_factory=list)


class WimsTransport:
    """Owns the ``httpx.Client`` and performs one GET per :meth:`fetch`."""

    def __init__(
        self,
        *,
        verify: bool = True,
        timeout: float | httpx.Timeout | None = None,
        transport: httpx.BaseTransport | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        if http_client is not None and transport is not None:
            msg = 'Pass either `transport` or a pre-configured `http_client`, not both.'
            raise ValueError(msg)

        self._own_client = http_client is None
        if http_client is None:
            self._client = httpx.Client(verify=verify, timeout=timeout, transport=transport)
        else:
            self._client = http_client

    def __enter__(self) -> WimsTransport:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._own_client:
            self._client.close()

    def fetch(self, url: str) -> FetchResult:
        shown = redact_url(url)
        response: httpx.Response | None = None
        try:
            response = self._client.get(url, headers={'User-Agent': USER_AGENT})
            response.raise_for_status()
            text = response.content.decode(WIMS_CHARSET)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            reason = redact_url(str(exc))
            logger.warning('WIMS comms error for %s: %s', shown, reason)
            return FetchResult(
                ok=False,
                url=shown,
                diagnostic=[f'Error while fetching URL: {shown}', f'Error {type(exc).__name__}: {reason}'],
            )
        finally:
            if response is not None:
                response.close()

        return FetchResult(ok=True, url=shown, text=text)


__all__ = ['USER_AGENT', 'WIMS_CHARSET', 'FetchResult', 'WimsTransport', 'redact_url']
