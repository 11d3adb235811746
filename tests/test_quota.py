from __future__ import annotations

import sqlite3
from datetime import timedelta

import pytest

from pinintel.core.keying import client_key
from pinintel.services.quota import QuotaGuard, QuotaStorageError


def test_allows_up_to_the_ceiling_then_denies(conn, clock):
    guard = QuotaGuard(conn, daily_limit=3, clock=clock)
    decisions = [guard.check_and_increment("a:1.2.3.4:abc") for _ in range(5)]

    assert [d.allowed for d in decisions] == [True, True, True, False, False]
    assert [d.remaining for d in decisions] == [2, 1, 0, 0, 0]
    # Denied calls never push the counter past the ceiling
    assert guard.used_today("a:1.2.3.4:abc") == 3


def test_counters_are_per_client(conn, clock):
    guard = QuotaGuard(conn, daily_limit=1, clock=clock)
    assert guard.check_and_increment("u:alice").allowed
    assert guard.check_and_increment("u:bob").allowed
    assert not guard.check_and_increment("u:alice").allowed


def test_new_utc_day_starts_a_new_counter(conn, clock):
    guard = QuotaGuard(conn, daily_limit=1, clock=clock)
    assert guard.check_and_increment("k").allowed
    assert not guard.check_and_increment("k").allowed

    clock.now = clock.now + timedelta(days=1)
    assert guard.check_and_increment("k").allowed


def test_zero_limit_denies_without_touching_storage(conn, clock):
    guard = QuotaGuard(conn, daily_limit=0, clock=clock)
    d = guard.check_and_increment("k")
    assert not d.allowed and d.remaining == 0
    assert guard.used_today("k") == 0


def test_storage_failure_raises_quota_storage_error(tmp_path, clock):
    broken = sqlite3.connect(str(tmp_path / "empty.db"), isolation_level=None)
    guard = QuotaGuard(broken, daily_limit=5, clock=clock)
    with pytest.raises(QuotaStorageError):
        guard.check_and_increment("k")
    broken.close()


def test_client_key_never_contains_the_raw_user_agent():
    ua = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X)"
    key = client_key(None, "10.0.0.1", ua)
    assert key.startswith("a:10.0.0.1:")
    assert "Mozilla" not in key
    assert client_key(None, "10.0.0.1", ua) == key


def test_client_key_prefers_user_id():
    assert client_key("user-42", "10.0.0.1", "ua").startswith("u:")
    assert client_key("user-42", "10.0.0.1", "ua") == client_key("user-42", "10.9.9.9", "other")
