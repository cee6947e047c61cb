from __future__ import annotations

import asyncio
from typing import Dict, Optional, Set, Tuple

from loguru import logger

from takeoff.geometry import contract
from takeoff.vector.extractor import ExtractionLimits, VectorIndex, extract_vectors

CacheKey = Tuple[str, int]


class VectorIndexCache:
    """
    Memoized vector indexes per (document id, page).

    Extraction runs in a worker thread. A request for a key that is already
    being extracted is dropped and returns None.
    """

    def __init__(
        self,
        *,
        base_scale: float = contract.BASE_RENDER_SCALE,
        limits: Optional[ExtractionLimits] = None,
    ) -> None:
        self.base_scale = base_scale
        self.limits = limits or ExtractionLimits()
        self._indexes: Dict[CacheKey, VectorIndex] = {}
        self._in_flight: Set[CacheKey] = set()

    def get(self, document_id: str, page: int) -> Optional[VectorIndex]:
        return self._indexes.get((document_id, page))

    def put(self, document_id: str, page: int, index: VectorIndex) -> None:
        self._indexes[(document_id, page)] = index

    def is_extracting(self, document_id: str, page: int) -> bool:
        return (document_id, page) in self._in_flight

    def extract_sync(self, document_id: str, pdf_bytes: bytes, page: int) -> Optional[VectorIndex]:
        key = (document_id, page)
        cached = self._indexes.get(key)
        if cached is not None:
            return cached
        if key in self._in_flight:
            return None
        self._in_flight.add(key)
        try:
            index = extract_vectors(pdf_bytes, page, base_scale=self.base_scale, limits=self.limits)
        except Exception as exc:
            logger.error("Failed to extract document snap data for {} page {}: {}", document_id, page, exc)
            return None
        finally:
            self._in_flight.discard(key)
        self._indexes[key] = index
        return index

    async def ensure(self, document_id: str, pdf_bytes: bytes, page: int) -> Optional[VectorIndex]:
        key = (document_id, page)
        cached = self._indexes.get(key)
        if cached is not None:
            return cached
        if key in self._in_flight:
            logger.debug("Extraction for {} page {} already running; request dropped", document_id, page)
            return None
        self._in_flight.add(key)
        try:
            index = await asyncio.to_thread(
                extract_vectors,
                pdf_bytes,
                page,
                base_scale=self.base_scale,
                limits=self.limits,
            )
        except Exception as exc:
            logger.error("Failed to extract document snap data for {} page {}: {}", document_id, page, exc)
            return None
        finally:
            self._in_flight.discard(key)
        self._indexes[key] = index
        return index

    def evict_document(self, document_id: str) -> None:
        for key in [k for k in self._indexes if k[0] == document_id]:
            del self._indexes[key]

    def clear(self) -> None:
        self._indexes.clear()


__all__ = ["CacheKey", "VectorIndexCache"]
