"""Tests for search orchestration and result hydration."""

import asyncio
import json

import httpx
import pytest

from nestnotes.journal.bus import EventBus
from nestnotes.journal.filters import FeedFilter, TagFilter
from nestnotes.journal.history import MemoryStore, SearchHistory
from nestnotes.journal.models import JournalEntry, SearchStatus
from nestnotes.journal.search import SearchOrchestrator, hydrate

from .conftest import entry, hit


SEARCH = "/api/search/enhanced"
BULK = "/api/journal/entries/bulk"


def results(*ids):
    return httpx.Response(200, json={"results": [hit(i) for i in ids], "totalResults": len(ids)})


def make_entries(*ids):
    return [JournalEntry.from_api(entry(i)) for i in ids]


class TestHydrate:
    def test_follows_ranking_not_fetch_order(self):
        hydrated = hydrate(["C", "A", "B"], make_entries("A", "B", "C"))
        assert [e.id for e in hydrated] == ["C", "A", "B"]

    def test_unresolvable_ids_are_dropped(self):
        hydrated = hydrate(["C", "D", "A", "B"], make_entries("A", "B", "C"))
        assert [e.id for e in hydrated] == ["C", "A", "B"]

    def test_repeated_ids_keep_first_position(self):
        hydrated = hydrate(["B", "A", "B"], make_entries("A", "B"))
        assert [e.id for e in hydrated] == ["B", "A"]

    def test_duplicate_records_map_to_one_entry(self):
        first = JournalEntry.from_api(entry("A", title="first"))
        second = JournalEntry.from_api(entry("A", title="second"))
        hydrated = hydrate(["A"], [first, second])
        assert hydrated == [first]

    def test_nothing_fetched(self):
        assert hydrate(["A", "B"], []) == []


@pytest.mark.asyncio
async def test_submit_hydrates_in_ranking_order(api, backend, search_config):
    backend.route("POST", SEARCH, results("C", "A", "B", "D"))
    backend.serve_entries([entry("A"), entry("B"), entry("C")])
    search = SearchOrchestrator(api, search_config)

    outcome = await search.submit("beach")

    assert outcome.status is SearchStatus.RESULTS
    assert [e.id for e in outcome.entries] == ["C", "A", "B"]
    assert [r.entry_id for r in outcome.results] == ["C", "A", "B", "D"]
    assert backend.json_bodies("POST", BULK) == [{"entryIds": ["C", "A", "B", "D"]}]
    assert search.outcome is outcome


@pytest.mark.asyncio
async def test_search_payload_uses_config(api, backend, search_config):
    backend.route("POST", SEARCH, results())
    search_config.limit = 5
    search_config.mode = "vector"
    search = SearchOrchestrator(api, search_config)

    await search.submit("  dinner  ")

    assert backend.json_bodies("POST", SEARCH) == [
        {"query": "dinner", "mode": "vector", "limit": 5, "filters": {"type": "feed"}}
    ]


@pytest.mark.asyncio
async def test_five_keystrokes_make_one_request(api, backend, search_config):
    backend.route("POST", SEARCH, results("A"))
    backend.serve_entries([entry("A")])
    search = SearchOrchestrator(api, search_config)

    for text in ["b", "be", "bea", "beac", "beach"]:
        search.type(text)
        await asyncio.sleep(0.01)
    await search.wait_idle()

    assert [b["query"] for b in backend.json_bodies("POST", SEARCH)] == ["beach"]
    assert search.outcome.status is SearchStatus.RESULTS


@pytest.mark.asyncio
async def test_submit_cancels_pending_keystroke(api, backend, search_config):
    backend.route("POST", SEARCH, results())
    search = SearchOrchestrator(api, search_config)

    search.type("bea")
    await search.submit("beach")
    await search.wait_idle()

    assert [b["query"] for b in backend.json_bodies("POST", SEARCH)] == ["beach"]
    assert not search.is_pending


@pytest.mark.asyncio
async def test_empty_results_are_not_a_failure(api, backend, search_config):
    backend.route("POST", SEARCH, results())
    search = SearchOrchestrator(api, search_config)

    outcome = await search.submit("unicorns")

    assert outcome.status is SearchStatus.EMPTY
    assert not outcome.can_retry
    assert backend.calls("POST", BULK) == []


@pytest.mark.asyncio
async def test_search_failure_is_distinct_from_empty(api, backend, search_config):
    backend.route("POST", SEARCH, httpx.Response(500, json={"error": "Search failed"}))
    search = SearchOrchestrator(api, search_config)

    outcome = await search.submit("beach")

    assert outcome.status is SearchStatus.FAILED
    assert outcome.error == "Search failed"
    assert outcome.can_retry
    assert backend.calls("POST", BULK) == []


@pytest.mark.asyncio
async def test_retry_after_failure(api, backend, search_config):
    responses = [httpx.Response(503), results("A")]
    backend.route("POST", SEARCH, lambda request: responses.pop(0))
    backend.serve_entries([entry("A")])
    search = SearchOrchestrator(api, search_config)

    assert (await search.submit("beach")).status is SearchStatus.FAILED
    outcome = await search.retry()

    assert outcome.status is SearchStatus.RESULTS
    assert [e.id for e in outcome.entries] == ["A"]


@pytest.mark.asyncio
async def test_hydration_failure_keeps_ranked_results(api, backend, search_config):
    backend.route("POST", SEARCH, results("A", "B"))
    backend.route("POST", BULK, httpx.Response(500))
    search = SearchOrchestrator(api, search_config)

    outcome = await search.submit("beach")

    assert outcome.status is SearchStatus.FAILED
    assert [r.entry_id for r in outcome.results] == ["A", "B"]
    assert outcome.entries == []


@pytest.mark.asyncio
async def test_malformed_response_is_a_failure(api, backend, search_config):
    backend.route("POST", SEARCH, httpx.Response(200, json={"results": [{"similarity": 0.5}]}))
    search = SearchOrchestrator(api, search_config)

    outcome = await search.submit("beach")

    assert outcome.status is SearchStatus.FAILED
    assert outcome.error == "Malformed search response"


@pytest.mark.asyncio
async def test_all_hits_stale_is_empty(api, backend, search_config):
    backend.route("POST", SEARCH, results("gone"))
    backend.serve_entries([])
    search = SearchOrchestrator(api, search_config)

    outcome = await search.submit("beach")

    assert outcome.status is SearchStatus.EMPTY
    assert len(backend.calls("POST", BULK)) == 1


@pytest.mark.asyncio
async def test_slow_older_response_is_superseded(api, backend, search_config):
    release = asyncio.Event()

    async def respond(request):
        if json.loads(request.content)["query"] == "old":
            await release.wait()
            return results("OLD")
        return results("NEW")

    backend.route("POST", SEARCH, respond)
    backend.serve_entries([entry("OLD"), entry("NEW")])
    bus = EventBus()
    superseded = []
    bus.subscribe("search.superseded", superseded.append)
    search = SearchOrchestrator(api, search_config, bus=bus)

    first = asyncio.create_task(search.submit("old"))
    await asyncio.sleep(0.01)
    newer = await search.submit("new")
    release.set()
    older = await first

    assert older.status is SearchStatus.SUPERSEDED
    assert search.outcome is newer
    assert [e.id for e in search.outcome.entries] == ["NEW"]
    assert backend.json_bodies("POST", BULK) == [{"entryIds": ["NEW"]}]
    assert len(superseded) == 1


@pytest.mark.asyncio
async def test_keystroke_discards_in_flight_response(api, backend, search_config):
    release = asyncio.Event()

    async def respond(request):
        if json.loads(request.content)["query"] == "be":
            await release.wait()
        return results()

    backend.route("POST", SEARCH, respond)
    search = SearchOrchestrator(api, search_config)

    first = asyncio.create_task(search.submit("be"))
    await asyncio.sleep(0.01)
    search.type("beach")
    release.set()

    assert (await first).status is SearchStatus.SUPERSEDED
    await search.wait_idle()
    assert search.outcome.query == "beach"


@pytest.mark.asyncio
async def test_filter_only_search_uses_wildcard(api, backend, search_config):
    backend.route("POST", SEARCH, results())
    search = SearchOrchestrator(api, search_config)

    search.set_filter(FeedFilter(people=["alice"]))
    assert search.is_pending
    await search.wait_idle()

    assert backend.json_bodies("POST", SEARCH) == [{
        "query": "*",
        "mode": "hybrid",
        "limit": 20,
        "filters": {"type": "feed", "people": ["alice"]},
    }]


@pytest.mark.asyncio
async def test_tag_filter_payload(api, backend, search_config):
    backend.route("POST", SEARCH, results())
    search = SearchOrchestrator(api, search_config)
    search.filter = TagFilter(tags=["travel"])

    await search.submit("beach")

    assert backend.json_bodies("POST", SEARCH)[0]["filters"] == {"type": "tags", "tags": ["travel"]}


@pytest.mark.asyncio
async def test_clearing_query_makes_no_request(api, backend, search_config):
    backend.route("POST", SEARCH, results())
    search = SearchOrchestrator(api, search_config)

    search.type("b")
    search.type("")
    await search.wait_idle()

    assert backend.requests == []
    assert search.outcome is None


@pytest.mark.asyncio
async def test_empty_submit_makes_no_request(api, backend, search_config):
    search = SearchOrchestrator(api, search_config)

    outcome = await search.submit("   ")

    assert outcome.status is SearchStatus.EMPTY
    assert backend.requests == []


@pytest.mark.asyncio
async def test_submit_records_history(api, backend, search_config):
    backend.route("POST", SEARCH, results())
    history = SearchHistory(MemoryStore(), max_items=search_config.history_size)
    search = SearchOrchestrator(api, search_config, history=history)

    search.type("typed only")
    await search.wait_idle()
    await search.submit("beach")
    await search.submit("park")
    await search.submit("beach")

    assert history.items() == ["beach", "park"]


@pytest.mark.asyncio
async def test_conversational_answer_with_citations(api, backend, search_config):
    backend.route("POST", SEARCH, httpx.Response(200, json={
        "answer": "You went hiking twice in May.",
        "relevantEntries": [hit("B", 0.92), hit("A", 0.81), hit("X", 0.5)],
        "confidence": 0.8,
        "totalResults": 3,
    }))
    backend.serve_entries([entry("A"), entry("B")])
    search = SearchOrchestrator(api, search_config)

    outcome = await search.ask("When did I go hiking?")
    await search.ask("Where?")

    assert outcome.status is SearchStatus.RESULTS
    assert outcome.answer == "You went hiking twice in May."
    assert outcome.confidence == 0.8
    assert [c.entry_id for c in outcome.citations] == ["B", "A", "X"]
    assert [c.entry.id if c.entry else None for c in outcome.citations] == ["B", "A", None]

    bodies = backend.json_bodies("POST", SEARCH)
    assert bodies[0]["mode"] == "conversational"
    assert "previousMessages" not in bodies[0]
    assert bodies[1]["previousMessages"] == [
        {"role": "user", "content": "When did I go hiking?"},
        {"role": "assistant", "content": "You went hiking twice in May."},
    ]


@pytest.mark.asyncio
async def test_events_and_listener(api, backend, search_config):
    backend.route("POST", SEARCH, results("A"))
    backend.serve_entries([entry("A")])
    bus = EventBus()
    events = []
    bus.subscribe("search.*", events.append)
    seen = []
    search = SearchOrchestrator(api, search_config, bus=bus, on_outcome=seen.append)

    outcome = await search.submit("beach")

    assert [e.type for e in events] == ["search.requested", "search.completed"]
    assert events[1].data["entry_ids"] == ["A"]
    assert seen == [outcome]


@pytest.mark.asyncio
async def test_close_cancels_pending_search(api, backend, search_config):
    backend.route("POST", SEARCH, results())
    search = SearchOrchestrator(api, search_config)

    search.type("beach")
    search.close()
    await asyncio.sleep(search_config.debounce_ms / 1000 + 0.05)

    assert backend.requests == []
