from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Callable, Optional

from pydantic import ValidationError

from pinintel.core.contracts import CacheEntry, Place
from pinintel.core.keying import coord_bucket
from pinintel.core.storage import get_photos_by_source_id, get_place_row, put_place_row
from pinintel.core.time import parse_iso, utc_now

logger = logging.getLogger(__name__)


class PlaceCache:
    """
    Coordinate-bucketed store of paid-provider identities and their hosted
    photo URLs.

    A stale row is a miss but stays on disk until the next put for the same
    bucket overwrites it. Storage failures never escape: reads degrade to a
    miss and writes to a no-op.
    """

    def __init__(self, conn: sqlite3.Connection, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.conn = conn
        self._clock = clock or utc_now

    def now(self) -> datetime:
        return self._clock()

    def get(self, lat: float, lon: float, ttl_days: int) -> Optional[CacheEntry]:
        bucket = coord_bucket(lat, lon)
        try:
            row = get_place_row(self.conn, bucket)
        except sqlite3.Error as e:
            logger.warning("place_cache_read_failed bucket=%s err=%r", bucket, e)
            return None
        if row is None:
            return None

        inserted_at, place_obj, photo_urls = row
        inserted = parse_iso(inserted_at)
        if inserted is None:
            return None
        if self._clock() - inserted >= timedelta(days=int(ttl_days)):
            logger.info("place_cache_stale bucket=%s inserted_at=%s", bucket, inserted_at)
            return None

        try:
            place = Place.model_validate(place_obj)
        except ValidationError as e:
            logger.warning("place_cache_corrupt bucket=%s err=%s", bucket, e)
            return None

        return CacheEntry(
            bucket=bucket,
            place=place,
            photo_urls=[str(u) for u in (photo_urls or []) if u],
            inserted_at=inserted_at,
        )

    def photos_for_source(self, source_id: str, ttl_days: int) -> list[str]:
        """
        Hosted photos already stored for the same provider place under any
        bucket. Stale, empty or unreadable rows give [].
        """
        try:
            row = get_photos_by_source_id(self.conn, source_id)
        except (sqlite3.Error, ValueError) as e:
            logger.warning("place_cache_source_read_failed source_id=%s err=%r", source_id, e)
            return []
        if row is None:
            return []
        inserted_at, photo_urls = row
        inserted = parse_iso(inserted_at)
        if inserted is None or self._clock() - inserted >= timedelta(days=int(ttl_days)):
            return []
        if not isinstance(photo_urls, list):
            return []
        return [u for u in photo_urls if isinstance(u, str) and u]

    def put(self, lat: float, lon: float, entry: CacheEntry) -> None:
        bucket = coord_bucket(lat, lon)
        try:
            nbytes = put_place_row(
                self.conn,
                bucket=bucket,
                source_id=entry.place.source_id,
                inserted_at=entry.inserted_at,
                place=entry.place.model_dump(mode="json"),
                photo_urls=list(entry.photo_urls),
            )
        except sqlite3.Error as e:
            logger.warning("place_cache_write_failed bucket=%s err=%r", bucket, e)
            return
        logger.info("place_cache_put bucket=%s source_id=%s bytes=%d", bucket, entry.place.source_id, nbytes)
