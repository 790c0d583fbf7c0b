from __future__ import annotations

from wimsbridge.app.config import Settings, settings
from wimsbridge.app.interface import WORKSHEET_SCORE_SCALE, UrlType, WimsInterface
from wimsbridge.app.schemas import ClassOwner, SheetIndex, StudentIdentity

__all__ = [
    'WORKSHEET_SCORE_SCALE',
    'ClassOwner',
    'Settings',
    'SheetIndex',
    'StudentIdentity',
    'UrlType',
    'WimsInterface',
    'settings',
]
