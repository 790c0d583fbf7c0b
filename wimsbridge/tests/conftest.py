# wimsbridge/tests/conftest.py
# ruff: noqa: E402
from __future__ import annotations

import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from wimsbridge.wims import ClassRef


@pytest.fixture()
def ref() -> ClassRef:
    return ClassRef(qcl='1000007', rcl='moodle_7')
