"""Homepage photo gallery, a single blob in the content store."""

from __future__ import annotations

import logging
from typing import Any

from ..errors import ValidationError
from ..records import CONTENT, GALLERY_KEY, Clock, to_iso, utc_now
from ..store.base import RecordStore

logger = logging.getLogger(__name__)

MAX_PHOTOS = 12


class GalleryService:
    def __init__(self, store: RecordStore, clock: Clock = utc_now) -> None:
        self.store = store
        self._clock = clock

    async def get_gallery(self) -> dict[str, Any]:
        """Current gallery; empty when never set."""
        data = await self.store.get(CONTENT, GALLERY_KEY)
        if not isinstance(data, dict) or not isinstance(data.get("photos"), list):
            return {"photos": [], "lastUpdated": None}
        return data

    async def replace_gallery(self, photos: Any) -> dict[str, Any]:
        """Replace the whole gallery.

        Raises:
            ValidationError: If photos is not a list or holds more than 12 entries
        """
        if not isinstance(photos, list):
            raise ValidationError("Photos must be an array", "photos")
        if len(photos) > MAX_PHOTOS:
            raise ValidationError(f"Maximum {MAX_PHOTOS} photos allowed", "photos")
        data = {"photos": photos, "lastUpdated": to_iso(self._clock())}
        await self.store.set(CONTENT, GALLERY_KEY, data)
        logger.info(f"Gallery updated with {len(photos)} photos")
        return data
