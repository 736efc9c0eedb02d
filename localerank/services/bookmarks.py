# localerank/services/bookmarks.py
"""Saved locales, persisted as one JSON array under a single key.

The stored list is kept deduplicated by id and ordered newest first. A save
for an id that is already being saved is refused instead of queued, so a
double tap can never write two entries. Mutations of different ids queue
behind each other, each one a whole read, modify and write of the list.
"""
import asyncio
import json
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Set, TypeVar

import structlog
from pydantic import ValidationError

from localerank.core.config import settings
from localerank.models.dto import Locale, RankedLocale
from localerank.services.kv_store import KeyValueStore, read_json
from localerank.services.sorter import sort_locales

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class SaveResult(str, Enum):
    SAVED = "saved"
    ALREADY_SAVED = "already_saved"
    BUSY = "busy"


class BookmarkStore:
    def __init__(self, store: KeyValueStore, key: str = settings.BOOKMARKS_KEY):
        self.store = store
        self.key = key
        self._in_flight: Set[str] = set()
        # Completion future of the last queued mutation
        self._tail: Optional[asyncio.Future] = None

    async def _one_at_a_time(self, mutation: Callable[[], Awaitable[T]]) -> T:
        previous = self._tail
        turn = asyncio.get_running_loop().create_future()
        self._tail = turn
        try:
            if previous is not None and not previous.done():
                await asyncio.shield(previous)
            return await mutation()
        finally:
            if previous is not None and not previous.done():
                # Cancelled while queued: hand over only once the predecessor finishes
                previous.add_done_callback(lambda _: turn.done() or turn.set_result(None))
            else:
                turn.set_result(None)

    async def list(self) -> List[Locale]:
        raw = await read_json(self.store, self.key, [])
        if not isinstance(raw, list):
            logger.warning("bookmark_store_corrupt", key=self.key, kind=type(raw).__name__)
            await self.store.set(self.key, "[]")
            return []

        locales: List[Locale] = []
        for item in raw:
            try:
                locales.append(Locale.model_validate(item))
            except ValidationError:
                logger.warning("bookmark_entry_dropped", key=self.key)
        return self._normalize(locales)

    async def is_saved(self, locale_id: str) -> bool:
        return any(locale.id == locale_id for locale in await self.list())

    async def save(self, locale: Locale) -> SaveResult:
        if locale.id in self._in_flight:
            logger.info("bookmark_save_busy", locale_id=locale.id)
            return SaveResult.BUSY
        self._in_flight.add(locale.id)

        async def add() -> SaveResult:
            current = await self.list()
            if any(saved.id == locale.id for saved in current):
                return SaveResult.ALREADY_SAVED
            await self._write(current + [locale])
            logger.info("bookmark_saved", locale_id=locale.id, total=len(current) + 1)
            return SaveResult.SAVED

        try:
            return await self._one_at_a_time(add)
        finally:
            self._in_flight.discard(locale.id)

    async def unsave(self, locale_id: str) -> bool:
        if locale_id in self._in_flight:
            logger.info("bookmark_unsave_busy", locale_id=locale_id)
            return False
        self._in_flight.add(locale_id)

        async def remove() -> bool:
            current = await self.list()
            remaining = [locale for locale in current if locale.id != locale_id]
            if len(remaining) == len(current):
                return False
            await self._write(remaining)
            logger.info("bookmark_removed", locale_id=locale_id, total=len(remaining))
            return True

        try:
            return await self._one_at_a_time(remove)
        finally:
            self._in_flight.discard(locale_id)

    async def _write(self, locales: List[Locale]) -> None:
        payload = [locale.model_dump(mode="json") for locale in self._normalize(locales)]
        await self.store.set(self.key, json.dumps(payload))

    @staticmethod
    def _normalize(locales: List[Locale]) -> List[Locale]:
        # Later duplicates win, then newest first
        by_id = {locale.id: locale for locale in locales}
        ranked = sort_locales([RankedLocale(locale=locale) for locale in by_id.values()], None)
        return [item.locale for item in ranked]
