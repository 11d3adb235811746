from __future__ import annotations

from datetime import datetime, timezone

import pytest

from pinintel.core.storage import connect_sqlite, ensure_schema

from fakes import FixedClock


@pytest.fixture
def conn(tmp_path):
    c = connect_sqlite(str(tmp_path / "pinintel.db"))
    ensure_schema(c)
    yield c
    c.close()


@pytest.fixture
def clock():
    return FixedClock(datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc))
