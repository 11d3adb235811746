from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Callable, Optional

from pinintel.core.contracts import QuotaDecision
from pinintel.core.storage import get_quota_count, increment_quota_row
from pinintel.core.time import utc_day_key, utc_now

logger = logging.getLogger(__name__)


class QuotaStorageError(RuntimeError):
    """The counter store could not be read or written."""


class QuotaGuard:
    """
    Per-client daily ceiling on the paid provider.

    Counters are keyed by (client_key, UTC day) so a new day simply starts a
    new row. The increment is a single guarded upsert, so concurrent requests
    can never push a counter past the ceiling.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        daily_limit: int,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.conn = conn
        self.daily_limit = max(0, int(daily_limit))
        self._clock = clock or utc_now

    def _day(self) -> str:
        return utc_day_key(self._clock())

    def check_and_increment(self, client_key: str) -> QuotaDecision:
        """
        Raises QuotaStorageError when the counter store fails; callers treat
        that as a denial.
        """
        if self.daily_limit <= 0:
            return QuotaDecision(allowed=False, remaining=0)

        try:
            incremented, count = increment_quota_row(
                self.conn,
                client_key=client_key,
                day=self._day(),
                ceiling=self.daily_limit,
            )
        except sqlite3.Error as e:
            logger.warning("quota_storage_error key=%s err=%r", client_key, e)
            raise QuotaStorageError(str(e)) from e

        if not incremented:
            logger.info("quota_exhausted key=%s count=%d", client_key, count)
            return QuotaDecision(allowed=False, remaining=0)

        return QuotaDecision(allowed=True, remaining=max(0, self.daily_limit - count))

    def used_today(self, client_key: str) -> int:
        return get_quota_count(self.conn, client_key=client_key, day=self._day())
