"""Debounced journal search with order-preserving result hydration.

Flow for one request:
1. Query text and filter go to the semantic search endpoint
2. The ranked entry ids come back with scores and snippets
3. One bulk fetch loads the full entries
4. Entries are put back into ranking order; ids that no longer resolve
   are dropped

Typing is debounced so only the latest text reaches the backend, and a
response that arrives after a newer query was issued is discarded.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Set, Union

from loguru import logger

from .api import JournalAPI
from .bus import EventBus
from .config import SearchConfig
from .errors import ApiError
from .filters import FeedFilter, PrivacyFilter, TagFilter
from .history import SearchHistory
from .models import Citation, JournalEntry, SearchOutcome, SearchResult, SearchStatus


AnyFilter = Union[FeedFilter, TagFilter, PrivacyFilter]
OutcomeListener = Callable[[SearchOutcome], Any]

FILTER_ONLY_QUERY = "*"


def hydrate(entry_ids: Sequence[str], entries: Iterable[JournalEntry]) -> List[JournalEntry]:
    """
    Reorder fetched entries to match the ranked id list.

    Each id maps to at most one entry. Ids with no fetched entry are
    skipped, as are repeated ids after their first position.
    """
    by_id: Dict[str, JournalEntry] = {}
    for entry in entries:
        by_id.setdefault(entry.id, entry)

    ordered = []
    seen: Set[str] = set()
    for entry_id in entry_ids:
        if entry_id in seen:
            continue
        seen.add(entry_id)
        entry = by_id.get(entry_id)
        if entry is not None:
            ordered.append(entry)
    return ordered


class Debouncer:
    """Runs a coroutine once input has been quiet for `delay` seconds."""

    def __init__(self, delay: float, callback: Callable[[], Awaitable[Any]]):
        self.delay = delay
        self.callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self._inflight: Set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        task = asyncio.ensure_future(self.callback())
        self._inflight.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Debounced call failed: {task.exception()}")

    async def wait(self) -> None:
        """Wait until no timer is pending and every fired call has finished."""
        loop = asyncio.get_running_loop()
        while self._handle is not None or self._inflight:
            if self._handle is not None:
                await asyncio.sleep(max(0.0, self._handle.when() - loop.time()) + 0.001)
            else:
                await asyncio.gather(*list(self._inflight), return_exceptions=True)


class SearchOrchestrator:
    """
    Owns one search session: current query, filter, mode and last outcome.

    type() and set_filter() are debounced; submit() fires at once and
    cancels anything pending. Only the newest request may update
    `outcome`; older responses settle as SUPERSEDED.
    """

    def __init__(
        self,
        api: JournalAPI,
        config: SearchConfig,
        history: Optional[SearchHistory] = None,
        bus: Optional[EventBus] = None,
        on_outcome: Optional[OutcomeListener] = None,
    ):
        self.api = api
        self.config = config
        self.history = history
        self.bus = bus or EventBus()
        self.on_outcome = on_outcome

        self.query = ""
        self.filter: AnyFilter = FeedFilter()
        self.mode = config.mode
        self.outcome: Optional[SearchOutcome] = None
        self.conversation: List[Dict[str, str]] = []

        self._generation = 0
        self._query_debouncer = Debouncer(config.debounce_ms / 1000, self._run_search)
        self._filter_debouncer = Debouncer(config.filter_debounce_ms / 1000, self._run_search)

    @property
    def has_active_filter(self) -> bool:
        return self.filter.is_active

    @property
    def is_pending(self) -> bool:
        return self._query_debouncer.pending or self._filter_debouncer.pending

    def type(self, text: str) -> None:
        """Record a keystroke; searches after the typing debounce window."""
        self.query = text
        self._cancel_pending()
        if not self._has_criteria():
            self._clear()
            return
        self._query_debouncer.trigger()

    def set_filter(self, search_filter: AnyFilter) -> None:
        """Change the filter; searches after the (longer) filter debounce window."""
        self.filter = search_filter
        self._cancel_pending()
        if not self._has_criteria():
            self._clear()
            return
        self._filter_debouncer.trigger()

    def set_mode(self, mode: str) -> None:
        if mode not in ("hybrid", "vector", "conversational"):
            raise ValueError(f"Unknown search mode: {mode}")
        self.mode = mode

    async def submit(self, text: Optional[str] = None) -> SearchOutcome:
        """Search immediately, bypassing and cancelling any debounced call."""
        if text is not None:
            self.query = text
        self._cancel_pending()
        if self.history is not None and self.query.strip():
            self.history.record(self.query)
        return await self._run_search()

    async def ask(self, question: str) -> SearchOutcome:
        """Conversational search: an answer plus the entries it cites."""
        self.set_mode("conversational")
        return await self.submit(question)

    async def retry(self) -> SearchOutcome:
        self._cancel_pending()
        return await self._run_search()

    async def wait_idle(self) -> None:
        await self._query_debouncer.wait()
        await self._filter_debouncer.wait()

    def close(self) -> None:
        self._cancel_pending()

    def _has_criteria(self) -> bool:
        return bool(self.query.strip()) or self.has_active_filter

    def _cancel_pending(self) -> None:
        self._query_debouncer.cancel()
        self._filter_debouncer.cancel()
        # Anything already in flight now answers an outdated query
        self._generation += 1

    def _clear(self) -> None:
        logger.debug("Search cleared")
        self.outcome = None

    async def _run_search(self) -> SearchOutcome:
        self._generation += 1
        generation = self._generation

        query = self.query.strip()
        search_filter = self.filter
        mode = self.mode

        if not query and not search_filter.is_active:
            return await self._settle(generation, SearchOutcome(status=SearchStatus.EMPTY, query=query))

        await self.bus.publish("search.requested", source="search", query=query, mode=mode)
        started = time.perf_counter()

        try:
            data = await self.api.search(
                query or FILTER_ONLY_QUERY,
                mode,
                self.config.limit,
                search_filter.to_payload(),
                previous_messages=self.conversation if mode == "conversational" else None,
            )
            results = self._parse_results(data, mode)
        except ApiError as e:
            logger.error(f"Search failed for '{query}': {e.message}")
            return await self._settle(generation, SearchOutcome(
                status=SearchStatus.FAILED, query=query, error=e.message,
            ))
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Malformed search response for '{query}': {e}")
            return await self._settle(generation, SearchOutcome(
                status=SearchStatus.FAILED, query=query, error="Malformed search response",
            ))

        if generation != self._generation:
            return await self._settle(generation, SearchOutcome(status=SearchStatus.SUPERSEDED, query=query))

        outcome = SearchOutcome(
            status=SearchStatus.EMPTY,
            query=query,
            results=results,
            answer=data.get("answer"),
            confidence=data.get("confidence"),
        )

        if results:
            entry_ids = [r.entry_id for r in results]
            try:
                records = await self.api.fetch_entries(list(dict.fromkeys(entry_ids)))
            except ApiError as e:
                logger.error(f"Hydration failed for '{query}': {e.message}")
                outcome.status = SearchStatus.FAILED
                outcome.error = e.message
                outcome.execution_ms = (time.perf_counter() - started) * 1000
                return await self._settle(generation, outcome)

            fetched = [JournalEntry.from_api(r) for r in records if r.get("id") is not None]
            outcome.entries = hydrate(entry_ids, fetched)
            if len(outcome.entries) < len(set(entry_ids)):
                logger.debug(
                    f"{len(set(entry_ids)) - len(outcome.entries)} search hits no longer resolve"
                )
            if outcome.entries:
                outcome.status = SearchStatus.RESULTS

        if mode == "conversational":
            outcome.citations = self._link_citations(results, outcome.entries)
            if outcome.answer:
                self.conversation.append({"role": "user", "content": query})
                self.conversation.append({"role": "assistant", "content": outcome.answer})

        outcome.execution_ms = (time.perf_counter() - started) * 1000
        return await self._settle(generation, outcome)

    @staticmethod
    def _parse_results(data: Dict[str, Any], mode: str) -> List[SearchResult]:
        key = "relevantEntries" if mode == "conversational" else "results"
        return [SearchResult.from_api(r) for r in data.get(key) or []]

    @staticmethod
    def _link_citations(results: List[SearchResult], entries: List[JournalEntry]) -> List[Citation]:
        by_id = {e.id: e for e in entries}
        citations = []
        seen: Set[str] = set()
        for r in results:
            if r.entry_id in seen:
                continue
            seen.add(r.entry_id)
            citations.append(Citation(
                entry_id=r.entry_id,
                similarity=r.similarity,
                snippet=r.snippet,
                entry=by_id.get(r.entry_id),
            ))
        return citations

    async def _settle(self, generation: int, outcome: SearchOutcome) -> SearchOutcome:
        if generation != self._generation:
            logger.warning(f"Discarding superseded response for '{outcome.query}'")
            superseded = SearchOutcome(status=SearchStatus.SUPERSEDED, query=outcome.query)
            await self.bus.publish("search.superseded", source="search", query=outcome.query)
            return superseded

        self.outcome = outcome
        if outcome.status is SearchStatus.FAILED:
            await self.bus.publish("search.failed", source="search", query=outcome.query, error=outcome.error)
        else:
            logger.info(
                f"Search: {len(outcome.entries)} entries for '{outcome.query[:50]}' ({outcome.status.value})"
            )
            await self.bus.publish(
                "search.completed",
                source="search",
                query=outcome.query,
                status=outcome.status.value,
                entry_ids=[e.id for e in outcome.entries],
            )

        if self.on_outcome is not None:
            result = self.on_outcome(outcome)
            if asyncio.iscoroutine(result):
                await result
        return outcome
