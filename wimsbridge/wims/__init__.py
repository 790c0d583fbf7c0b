"""Protocol client and typed primitives for the WIMS remote administration API."""

from .client import (
    NOTHING_DONE,
    SUPERVISOR_LOGIN,
    WimsClient,
    WimsClientError,
    WimsProtocolError,
    format_data_block,
    wims_encode,
)
from .mocks import (
    RecordedCall,
    create_mock_transport,
    json_error,
    json_reply,
    lines_error,
    lines_ok,
    make_score_records,
    raw_reply,
)
from .models import (
    CallResult,
    CallStatus,
    ClassRef,
    ClassUpdate,
    NewClassData,
    NewSupervisorData,
    NewUserData,
    ResponseFormat,
    SheetSummary,
    SupervisorUpdate,
)
from .transport import USER_AGENT, FetchResult, WimsTransport, redact_url

__all__ = [
    'NOTHING_DONE',
    'SUPERVISOR_LOGIN',
    'USER_AGENT',
    'CallResult',
    'CallStatus',
    'ClassRef',
    'ClassUpdate',
    'FetchResult',
    'NewClassData',
    'NewSupervisorData',
    'NewUserData',
    'RecordedCall',
    'ResponseFormat',
    'SheetSummary',
    'SupervisorUpdate',
    'WimsClient',
    'WimsClientError',
    'WimsProtocolError',
    'WimsTransport',
    'create_mock_transport',
    'format_data_block',
    'json_error',
    'json_reply',
    'lines_error',
    'lines_ok',
    'make_score_records',
    'raw_reply',
    'redact_url',
    'wims_encode',
]
