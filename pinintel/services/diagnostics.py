from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from pinintel.core.contracts import Diagnostics, QuotaDecision, UploadFailure

# Response payload cap; the collector itself keeps everything for logging
MAX_UPLOAD_FAILURES = 10


class DiagnosticsCollector:
    """
    Request-scoped accumulator for timings, fallback decisions, upload
    failures and per-capability call counts.

    Only `build()` leaves this object; the returned Diagnostics is frozen.
    """

    def __init__(self) -> None:
        self._started = time.perf_counter()
        self.provider: Optional[str] = None
        self.cache_hit: bool = False
        self.quota: Optional[QuotaDecision] = None
        self.timings_ms: Dict[str, float] = {}
        self.fallbacks_used: List[str] = []
        self.upload_failures: List[UploadFailure] = []
        self.provider_calls: Dict[str, int] = {}

    @contextmanager
    def timer(self, name: str) -> Iterator[None]:
        t0 = time.perf_counter()
        try:
            yield
        finally:
            elapsed = (time.perf_counter() - t0) * 1000.0
            self.timings_ms[name] = round(self.timings_ms.get(name, 0.0) + elapsed, 2)

    def fallback(self, reason: str) -> None:
        self.fallbacks_used.append(reason)

    def call(self, capability: str) -> None:
        self.provider_calls[capability] = self.provider_calls.get(capability, 0) + 1

    def calls(self, capability: str) -> int:
        return self.provider_calls.get(capability, 0)

    def upload_failed(self, failure: UploadFailure) -> None:
        self.upload_failures.append(failure)

    def build(self) -> Diagnostics:
        timings = dict(self.timings_ms)
        timings["total_ms"] = round((time.perf_counter() - self._started) * 1000.0, 2)
        return Diagnostics(
            provider=self.provider,
            cache_hit=self.cache_hit,
            quota=self.quota,
            timings_ms=timings,
            fallbacks_used=list(self.fallbacks_used),
            upload_failures=list(self.upload_failures[:MAX_UPLOAD_FAILURES]),
            provider_calls=dict(self.provider_calls),
        )
