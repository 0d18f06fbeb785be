"""Tests for the ingestion engine: window selection, dedup and partial failure."""
from zoneinfo import ZoneInfo

import httpx
import pytest

from conftest import FIXED_NOW, FakeSource, make_entry, make_payload
from lifelog_ingestor.db import InMemoryLifelogStore
from lifelog_ingestor.pipeline.client import LimitlessClient
from lifelog_ingestor.pipeline.ingest import IngestionEngine, local_timezone_name
from lifelog_ingestor.utils.errors import FetchError, IngestionError, StorageError
from lifelog_ingestor.utils.schemas import IngestionWindow


def engine_for(store, source, **kwargs) -> IngestionEngine:
    kwargs.setdefault("default_timezone", "UTC")
    return IngestionEngine(store=store, source=source, clock=lambda: FIXED_NOW, **kwargs)


class FlakyStore(InMemoryLifelogStore):
    """Raises StorageError on the n-th upsert."""

    def __init__(self, fail_on: int):
        super().__init__()
        self.fail_on = fail_on
        self.calls = 0

    def upsert_if_absent(self, entry):
        self.calls += 1
        if self.calls == self.fail_on:
            raise StorageError("disk I/O error")
        return super().upsert_if_absent(entry)


class TestWindow:
    def test_bootstrap_on_empty_store(self, store):
        source = FakeSource()
        engine_for(store, source).run()
        assert source.windows[0].start == "2024-03-08"

    def test_catch_up_from_latest_record(self, store):
        store.upsert_if_absent(make_entry("old", "2024-01-01T00:00:00Z"))
        store.upsert_if_absent(make_entry("latest", "2024-02-10T15:30:00Z"))
        source = FakeSource()

        engine_for(store, source).run()

        assert source.windows[0].start == "2024-02-09"

    def test_explicit_date_is_not_overridden(self, store):
        store.upsert_if_absent(make_entry("latest", "2024-02-10T15:30:00Z"))
        source = FakeSource()

        engine_for(store, source).run(IngestionWindow(date="2023-12-25"))

        assert source.windows[0].date == "2023-12-25"
        assert source.windows[0].start is None

    def test_explicit_start_and_end_pass_through(self, store):
        source = FakeSource()
        engine_for(store, source).run(IngestionWindow(start="2024-01-01", end="2024-01-31"))
        assert (source.windows[0].start, source.windows[0].end) == ("2024-01-01", "2024-01-31")

    def test_timezone_defaults_to_configured(self, store):
        source = FakeSource()
        engine_for(store, source, default_timezone="America/New_York").run()
        assert source.windows[0].timezone == "America/New_York"

    def test_timezone_falls_back_to_process_timezone(self, store, monkeypatch):
        monkeypatch.setenv("TZ", "Asia/Tokyo")
        source = FakeSource()
        engine_for(store, source, default_timezone=None).run()
        assert source.windows[0].timezone == "Asia/Tokyo"

    def test_explicit_timezone_wins(self, store):
        source = FakeSource()
        engine_for(store, source).run(IngestionWindow(timezone="Europe/Paris"))
        assert source.windows[0].timezone == "Europe/Paris"

    def test_caller_options_are_not_mutated(self, store):
        options = IngestionWindow(end="2024-01-31")
        engine_for(store, FakeSource()).run(options)
        assert options == IngestionWindow(end="2024-01-31")


def test_local_timezone_name_reads_tz(monkeypatch):
    monkeypatch.setenv("TZ", ":Europe/Madrid")
    assert local_timezone_name() == "Europe/Madrid"


@pytest.mark.parametrize("posix_tz", ["UTC0", "CET-1CEST,M3.5.0,M10.5.0/3", "Not/A_Zone"])
def test_local_timezone_name_skips_non_zone_keys(monkeypatch, posix_tz):
    monkeypatch.setenv("TZ", posix_tz)
    name = local_timezone_name()
    assert name != posix_tz
    ZoneInfo(name)


def test_local_timezone_name_falls_back_to_utc(monkeypatch, tmp_path):
    monkeypatch.setenv("TZ", "UTC0")
    monkeypatch.setattr("lifelog_ingestor.pipeline.ingest.Path", lambda _: tmp_path / "no-localtime")
    assert local_timezone_name() == "UTC"


class TestRun:
    def test_rerun_skips_everything(self, store):
        source = FakeSource([make_payload("a"), make_payload("b", "2024-01-02T00:00:00Z")])
        engine = engine_for(store, source)

        first = engine.run()
        second = engine.run()

        assert (first.stored_count, first.skipped_count) == (2, 0)
        assert (second.stored_count, second.skipped_count) == (0, 2)
        assert store.compute_stats().total == 2

    def test_overlapping_windows_never_duplicate(self, store):
        engine_for(store, FakeSource([make_payload("a"), make_payload("b"), make_payload("c")])).run(
            IngestionWindow(start="2024-01-01", end="2024-01-03")
        )
        result = engine_for(store, FakeSource([make_payload("c"), make_payload("d"), make_payload("e")])).run(
            IngestionWindow(start="2024-01-02", end="2024-01-05")
        )

        assert (result.stored_count, result.skipped_count) == (2, 1)
        ids = [r.id for r in store.list_records(limit=100)]
        assert sorted(ids) == ["a", "b", "c", "d", "e"]
        assert len(ids) == len(set(ids))

    def test_success_is_recorded(self, store):
        result = engine_for(store, FakeSource([make_payload("a")])).run()
        assert result.status == "success"
        assert result.fetched_count == 1
        runs = store.list_runs()
        assert [r.run_id for r in runs] == [result.run_id]
        assert runs[0].window.start == "2024-03-08"

    def test_fetch_error_is_wrapped(self, store):
        engine = engine_for(store, FakeSource(error=FetchError("API error (401)", status_code=401)))

        with pytest.raises(IngestionError) as exc:
            engine.run()

        assert isinstance(exc.value.__cause__, FetchError)
        assert exc.value.result.status == "failed"
        assert exc.value.result.stored_count == 0
        assert store.list_runs()[0].status == "failed"

    def test_storage_error_keeps_partial_tally(self):
        store = FlakyStore(fail_on=3)
        store.upsert_if_absent(make_entry("a"))
        store.calls = 0
        source = FakeSource([make_payload("a"), make_payload("b"), make_payload("c"), make_payload("d")])

        with pytest.raises(IngestionError) as exc:
            engine_for(store, source).run(IngestionWindow(start="2024-01-01"))

        result = exc.value.result
        assert (result.stored_count, result.skipped_count) == (1, 1)
        assert "disk I/O error" in result.error
        # What was stored before the failure stays stored; a re-run completes the batch.
        assert {r.id for r in store.list_records()} == {"a", "b"}
        rerun = engine_for(store, source).run(IngestionWindow(start="2024-01-01"))
        assert (rerun.stored_count, rerun.skipped_count) == (2, 2)

    def test_malformed_upstream_is_an_empty_successful_run(self, store):
        def handler(request):
            return httpx.Response(200, json={"data": {"something_else": []}})

        client = LimitlessClient(api_key="k", transport=httpx.MockTransport(handler))
        result = engine_for(store, client).run()

        assert result.status == "success"
        assert (result.fetched_count, result.stored_count) == (0, 0)


def test_page_limit_fails_the_run_without_storing(sqlite_store):
    # Upstream pages newest first; the oldest record sits behind the limit.
    pages = {
        None: {"data": {"lifelogs": [make_payload("new", "2024-01-03T00:00:00Z")]}, "meta": {"lifelogs": {"nextCursor": "c1"}}},
        "c1": {"data": {"lifelogs": [make_payload("mid", "2024-01-02T00:00:00Z")]}, "meta": {"lifelogs": {"nextCursor": "c2"}}},
        "c2": {"data": {"lifelogs": [make_payload("old", "2024-01-01T00:00:00Z")]}},
    }

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=pages[request.url.params.get("cursor")])

    client = LimitlessClient(api_key="k", max_pages=2, transport=httpx.MockTransport(handler))

    with pytest.raises(IngestionError) as exc:
        engine_for(sqlite_store, client).run(IngestionWindow(start="2023-12-31"))

    assert isinstance(exc.value.__cause__, FetchError)
    assert exc.value.result.status == "failed"
    assert sqlite_store.compute_stats().total == 0
    assert sqlite_store.latest_created_at() is None


def test_end_to_end_against_mocked_upstream(sqlite_store):
    payloads = [
        {"id": "a", "createdAt": "2024-01-01T00:00:00Z"},
        {"id": "b", "createdAt": "2024-01-02T00:00:00Z"},
    ]
    starts = []

    def handler(request: httpx.Request) -> httpx.Response:
        starts.append(request.url.params.get("start"))
        return httpx.Response(200, json={"data": {"lifelogs": payloads}})

    client = LimitlessClient(api_key="k", transport=httpx.MockTransport(handler))
    engine = engine_for(sqlite_store, client)

    first = engine.run()
    second = engine.run()

    assert (first.stored_count, first.skipped_count) == (2, 0)
    assert (second.stored_count, second.skipped_count) == (0, 2)
    assert starts == ["2024-03-08", "2024-01-01"]
    stats = sqlite_store.compute_stats()
    assert (stats.total, stats.unparsed) == (2, 2)
