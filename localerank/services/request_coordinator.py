# localerank/services/request_coordinator.py
"""Owns every outbound locale list query of a discovery session.

Each query runs as a QueryCycle with an explicit lifecycle:

    IDLE -> DEBOUNCING -> IN_FLIGHT -> SETTLED | ABORTED | FAILED

Ordering within a cycle is fixed: the debounce timer elapses, then the
FetchKey dedup check runs, then the request is dispatched. At most one cycle
is in flight: user-intent triggers (search, filter, refresh) abort the
previous one, passive triggers (focus, pagination, background refresh) are
ignored while it runs. Results of aborted cycles and of cycles finishing after
`unmount()` are discarded.
"""
import asyncio
import itertools
from enum import Enum
from typing import Callable, Dict, List, Optional

import structlog

from localerank.core.abort import AbortSignal
from localerank.core.config import settings
from localerank.core.errors import FetchAborted, LocaleProviderError
from localerank.models.dto import FilterAction, FilterState, Locale, LocalePage
from localerank.services.filters import build_fetch_key, initial_filter_state, reduce_filters
from localerank.services.providers import LocaleListProvider

logger = structlog.get_logger(__name__)


class CyclePhase(str, Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    IN_FLIGHT = "in_flight"
    SETTLED = "settled"
    ABORTED = "aborted"
    FAILED = "failed"


_TRANSITIONS: Dict[CyclePhase, frozenset] = {
    CyclePhase.IDLE: frozenset({CyclePhase.DEBOUNCING, CyclePhase.IN_FLIGHT, CyclePhase.ABORTED}),
    CyclePhase.DEBOUNCING: frozenset({CyclePhase.IN_FLIGHT, CyclePhase.ABORTED}),
    CyclePhase.IN_FLIGHT: frozenset({CyclePhase.SETTLED, CyclePhase.ABORTED, CyclePhase.FAILED}),
    CyclePhase.SETTLED: frozenset(),
    CyclePhase.ABORTED: frozenset(),
    CyclePhase.FAILED: frozenset(),
}


class FetchTrigger(str, Enum):
    SEARCH = "search"
    FILTER = "filter"
    REFRESH = "refresh"
    PAGINATE = "paginate"
    FOCUS = "focus"
    BACKGROUND = "background"


SUPERSEDING_TRIGGERS = frozenset({FetchTrigger.SEARCH, FetchTrigger.FILTER, FetchTrigger.REFRESH})


class InvalidTransition(RuntimeError):
    pass


class QueryCycle:
    _ids = itertools.count(1)

    def __init__(
        self,
        trigger: FetchTrigger,
        search_query: str,
        filters: FilterState,
        page: int,
        force: bool = False,
    ):
        self.id = next(self._ids)
        self.trigger = trigger
        self.search_query = search_query
        self.filters = filters
        self.page = page
        self.force = force
        self.fetch_key = build_fetch_key(search_query, filters, page)
        self.phase = CyclePhase.IDLE
        self.signal = AbortSignal()
        self.reason: Optional[str] = None
        self.error: Optional[str] = None
        self.task: Optional[asyncio.Task] = None

    @property
    def done(self) -> bool:
        return not _TRANSITIONS[self.phase]

    @property
    def is_search(self) -> bool:
        return bool(self.search_query.strip())

    def transition(self, phase: CyclePhase) -> None:
        if phase not in _TRANSITIONS[self.phase]:
            raise InvalidTransition(f"cycle {self.id}: {self.phase.value} -> {phase.value}")
        self.phase = phase

    def abort(self, reason: str) -> None:
        if self.done:
            return
        self.reason = reason
        self.signal.abort(reason)
        self.transition(CyclePhase.ABORTED)

    def __repr__(self) -> str:
        return f"QueryCycle(id={self.id}, trigger={self.trigger.value}, phase={self.phase.value}, key={self.fetch_key!r})"


Listener = Callable[[List[Locale], QueryCycle], None]


def merge_by_id(existing: List[Locale], incoming: List[Locale]) -> List[Locale]:
    """Append new ids in arrival order; a repeated id replaces its earlier record in place."""
    merged = list(existing)
    index = {locale.id: i for i, locale in enumerate(merged)}
    for locale in incoming:
        if locale.id in index:
            merged[index[locale.id]] = locale
        else:
            index[locale.id] = len(merged)
            merged.append(locale)
    return merged


class RequestCoordinator:
    def __init__(
        self,
        provider: LocaleListProvider,
        filters: Optional[FilterState] = None,
        debounce_seconds: float = settings.SEARCH_DEBOUNCE_SECONDS,
        page_size: int = settings.PAGE_SIZE,
        include_inactive: bool = settings.INCLUDE_INACTIVE,
    ):
        self.provider = provider
        self.filters = filters if filters is not None else initial_filter_state()
        self.debounce_seconds = debounce_seconds
        self.page_size = page_size
        self.include_inactive = include_inactive

        self.search_query = ""
        self.page = 1
        self.total_pages = 1
        self.locales: List[Locale] = []
        self.error: Optional[str] = None

        self._mounted = False
        self._last_fetch_key: Optional[str] = None
        self._pending: Optional[QueryCycle] = None
        self._debounce_task: Optional[asyncio.Task] = None
        self._active: Optional[QueryCycle] = None
        self._listeners: List[Listener] = []

    # --- lifecycle ---

    @property
    def mounted(self) -> bool:
        return self._mounted

    def mount(self) -> None:
        self._mounted = True

    def unmount(self) -> None:
        self._mounted = False
        self._cancel_debounce("unmounted")
        if self._active is not None:
            self._active.abort("unmounted")

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    @property
    def phase(self) -> CyclePhase:
        if self._pending is not None:
            return self._pending.phase
        if self._active is not None:
            return self._active.phase
        return CyclePhase.IDLE

    @property
    def is_fetching(self) -> bool:
        return self._active is not None and self._active.phase is CyclePhase.IN_FLIGHT

    @property
    def has_more(self) -> bool:
        return self.page < self.total_pages

    # --- triggers ---

    def set_search_text(self, text: str) -> None:
        """Record a keystroke; the fetch starts once typing pauses for the debounce interval."""
        if not self._mounted:
            return
        self.search_query = text
        self._cancel_debounce("superseded")
        cycle = QueryCycle(FetchTrigger.SEARCH, text, self.filters, page=1)
        cycle.transition(CyclePhase.DEBOUNCING)
        self._pending = cycle
        self._debounce_task = asyncio.get_running_loop().create_task(self._debounce_then_dispatch(cycle))

    def dispatch_filter(self, action: FilterAction) -> Optional[QueryCycle]:
        updated = reduce_filters(self.filters, action)
        if updated == self.filters:
            return None
        self.filters = updated
        return self.submit(FetchTrigger.FILTER)

    def refresh(self) -> Optional[QueryCycle]:
        return self.submit(FetchTrigger.REFRESH, force=True)

    def load_next_page(self) -> Optional[QueryCycle]:
        if not self.has_more:
            return None
        return self.submit(FetchTrigger.PAGINATE)

    def on_focus(self) -> Optional[QueryCycle]:
        return self.submit(FetchTrigger.FOCUS)

    def submit(self, trigger: FetchTrigger, force: bool = False) -> Optional[QueryCycle]:
        if not self._mounted:
            logger.debug("fetch_ignored_unmounted", trigger=trigger.value)
            return None
        if trigger is FetchTrigger.PAGINATE:
            page = self.page + 1
        elif trigger in SUPERSEDING_TRIGGERS:
            page = 1
        else:
            page = self.page
        return self._dispatch(QueryCycle(trigger, self.search_query, self.filters, page, force))

    # --- internals ---

    async def _debounce_then_dispatch(self, cycle: QueryCycle) -> None:
        await asyncio.sleep(self.debounce_seconds)
        if self._pending is not cycle:
            return
        self._pending = None
        self._debounce_task = None
        self._dispatch(cycle)

    def _cancel_debounce(self, reason: str) -> None:
        if self._debounce_task is not None:
            self._debounce_task.cancel()
            self._debounce_task = None
        if self._pending is not None:
            self._pending.abort(reason)
            self._pending = None

    def _dispatch(self, cycle: QueryCycle) -> Optional[QueryCycle]:
        if not self._mounted:
            cycle.abort("unmounted")
            return None

        active = self._active
        if active is not None and active.phase is CyclePhase.IN_FLIGHT:
            if cycle.fetch_key == active.fetch_key or cycle.trigger not in SUPERSEDING_TRIGGERS:
                logger.debug("fetch_skipped_busy", trigger=cycle.trigger.value, active_cycle=active.id)
                cycle.abort("busy")
                return None
        elif cycle.fetch_key == self._last_fetch_key and not cycle.force:
            logger.debug("fetch_skipped_duplicate", trigger=cycle.trigger.value, fetch_key=cycle.fetch_key)
            cycle.abort("duplicate")
            return None

        if cycle is not self._pending:
            self._cancel_debounce("superseded")
        if active is not None and active.phase is CyclePhase.IN_FLIGHT:
            logger.info("fetch_superseded", cycle=active.id, by=cycle.id)
            active.abort("superseded")

        self._last_fetch_key = cycle.fetch_key
        self._active = cycle
        cycle.transition(CyclePhase.IN_FLIGHT)
        logger.info(
            "fetch_started",
            cycle=cycle.id,
            trigger=cycle.trigger.value,
            page=cycle.page,
            search=cycle.search_query,
        )
        cycle.task = asyncio.get_running_loop().create_task(self._run(cycle))
        return cycle

    async def _run(self, cycle: QueryCycle) -> None:
        try:
            result = await self.provider.list_locales(
                search=cycle.search_query,
                country_code=cycle.filters.country_code,
                state_code=cycle.filters.state_code,
                spot_types=sorted(cycle.filters.spot_types),
                page=cycle.page,
                page_size=self.page_size,
                include_inactive=self.include_inactive,
                signal=cycle.signal,
            )
        except FetchAborted:
            logger.debug("fetch_aborted", cycle=cycle.id, reason=cycle.reason)
            return
        except LocaleProviderError as e:
            if cycle.done or not self._mounted:
                return
            cycle.error = str(e)
            cycle.transition(CyclePhase.FAILED)
            self._on_failure(cycle)
            return

        if cycle.done or not self._mounted:
            logger.debug("fetch_result_discarded", cycle=cycle.id, phase=cycle.phase.value)
            return
        cycle.transition(CyclePhase.SETTLED)
        self._on_settled(cycle, result)

    def _on_settled(self, cycle: QueryCycle, result: LocalePage) -> None:
        self.error = None
        self.total_pages = max(result.pagination.total_pages, 1)
        incoming = result.locales

        if cycle.page == 1:
            if not incoming and not cycle.is_search and self.locales:
                logger.info("empty_result_preserved", cycle=cycle.id, kept=len(self.locales))
                self.page = 1
                return
            self.locales = merge_by_id([], incoming)
        else:
            self.locales = merge_by_id(self.locales, incoming)
        self.page = cycle.page

        logger.info("fetch_settled", cycle=cycle.id, received=len(incoming), total=len(self.locales))
        self._notify(cycle)

    def _on_failure(self, cycle: QueryCycle) -> None:
        # Forget the key so the same query can be retried
        if self._last_fetch_key == cycle.fetch_key:
            self._last_fetch_key = None

        if cycle.is_search:
            logger.warning("fetch_failed_cleared", cycle=cycle.id, error=cycle.error)
            self.locales = []
            self.error = "Could not load locales. Pull to refresh to try again."
            self._notify(cycle)
        else:
            logger.warning("fetch_failed_kept_previous", cycle=cycle.id, error=cycle.error)

    def _notify(self, cycle: QueryCycle) -> None:
        for listener in list(self._listeners):
            listener(list(self.locales), cycle)

    async def wait_idle(self) -> None:
        """Wait until no debounce timer is pending and no cycle is in flight."""
        while True:
            if self._debounce_task is not None and not self._debounce_task.done():
                await asyncio.gather(self._debounce_task, return_exceptions=True)
                continue
            active = self._active
            if active is not None and active.task is not None and not active.task.done():
                await asyncio.gather(active.task, return_exceptions=True)
                continue
            return
