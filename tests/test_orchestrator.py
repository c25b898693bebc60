from __future__ import annotations

import dataclasses
import json
from pathlib import Path

import pytest
from conftest import API, CATALOG, PORTAL, FakeTransport, json_reply, text_reply

from pyopendata._cache import CacheStore, MemoryCacheBackend
from pyopendata.config import OpenDataConfig
from pyopendata.exceptions import FailureKind, OpenDataStorageError
from pyopendata.materializer import ResourceMaterializer
from pyopendata.models.listing import DatasetListing
from pyopendata.models.payload import FetchedPayload
from pyopendata.orchestrator import SyncOrchestrator
from pyopendata.resolver import RemoteResolver
from pyopendata.state.models import DatasetRecordState, SyncState
from pyopendata.state.policy import ChangeKind
from pyopendata.state.registry import DiscoveredDataset, DiscoveryRegistry, DiscoveryState
from pyopendata.state.store import SyncStateStore
from pyopendata.state.update_log import UpdateLog


class _Sleeps:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class _CountingStore(SyncStateStore):
    """Records the dataset ids held by the state at every save."""

    def __init__(self, path: Path) -> None:
        super().__init__(path)
        self.snapshots: list[set[str]] = []

    def save(self, state: SyncState) -> None:
        self.snapshots.append(set(state.datasets))
        super().save(state)


class _FailingStore(SyncStateStore):
    def save(self, state: SyncState) -> None:
        raise OpenDataStorageError(f"Cannot save sync state to {self.path}: disk full", endpoint=str(self.path))


class _FailingRegistry(DiscoveryRegistry):
    def save(self, state: DiscoveryState) -> None:
        raise OpenDataStorageError(f"Cannot save discovery registry to {self.path}: disk full")


@dataclasses.dataclass
class _RecordingTransport(FakeTransport):
    """Remembers how many requests preceded each session refresh."""

    refreshed_after: list[int] = dataclasses.field(default_factory=list)

    async def refresh_session(self) -> None:
        self.refreshed_after.append(len(self.calls))
        await super().refresh_session()


def _csv_url(dataset_id: str) -> str:
    return f"https://open.data.gov.sa/files/{dataset_id}.csv"


def _list_url(page: int, size: int = 2) -> str:
    return f"{CATALOG}/datasets/list?size={size}&page={page}&sort=updatedAt,DESC"


def _route_dataset(
    transport: FakeTransport,
    dataset_id: str,
    token: str,
    *,
    csv: str = "name,value\nx,1\n",
) -> None:
    transport.route(
        "GET",
        f"{API}/datasets?version=-1&dataset={dataset_id}",
        json_reply({"id": dataset_id, "titleAr": f"عنوان {dataset_id}", "providerNameAr": "جهة", "updatedAt": token}),
    )
    transport.route(
        "GET",
        f"{API}/datasets/resources?version=-1&dataset={dataset_id}",
        json_reply({"resources": [{"id": "r", "format": "CSV", "downloadUrl": _csv_url(dataset_id)}]}),
    )
    transport.route("GET", _csv_url(dataset_id), text_reply(csv))


def _listing_page(ids: list[str], total: int) -> dict:
    return {"totalElements": total, "content": [{"id": i, "titleAr": i} for i in ids]}


def _orchestrator(
    config: OpenDataConfig,
    transport: FakeTransport,
    *,
    sleeps: _Sleeps | None = None,
    listing_cache: CacheStore[DatasetListing] | None = None,
    state_store: SyncStateStore | None = None,
    registry: DiscoveryRegistry | None = None,
) -> SyncOrchestrator:
    return SyncOrchestrator(
        config,
        RemoteResolver(config, transport),
        ResourceMaterializer(transport, data_dir=config.data_dir),
        state_store or SyncStateStore(config.state_file),
        payload_cache=CacheStore(MemoryCacheBackend(), FetchedPayload, ttl=3600, prefix="dataset_cache_"),
        listing_cache=listing_cache,
        update_log=UpdateLog(config.update_log_file),
        registry=registry,
        sleep=sleeps or _Sleeps(),
    )


# ---------------------------------------------------------------------------
# sync_all
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_first_sync_records_new_datasets(config: OpenDataConfig, fake_transport: FakeTransport) -> None:
    _route_dataset(fake_transport, "ds-1", "t1")
    _route_dataset(fake_transport, "ds-2", "t1")

    report = await _orchestrator(config, fake_transport).sync_all(["ds-1", "ds-2"])

    assert [change.id for change in report.new] == ["ds-1", "ds-2"]
    assert report.failed == []
    assert report.total_processed == 2
    state = SyncStateStore(config.state_file).load()
    record = state.datasets["ds-1"]
    assert record.last_known_update == "t1"
    assert record.local_resource_ref == "ds-1.csv"
    assert record.provider_name == "جهة"
    assert (config.data_dir / "ds-1.csv").is_file()
    assert state.last_full_sync is not None


@pytest.mark.asyncio
async def test_second_run_with_same_tokens_is_idempotent(
    config: OpenDataConfig, fake_transport: FakeTransport
) -> None:
    _route_dataset(fake_transport, "ds-1", "t1")
    _route_dataset(fake_transport, "ds-2", "t1")
    orchestrator = _orchestrator(config, fake_transport)

    await orchestrator.sync_all(["ds-1", "ds-2"])
    before = SyncStateStore(config.state_file).load().datasets
    second = await orchestrator.sync_all(["ds-1", "ds-2"])

    assert second.unchanged == ["ds-1", "ds-2"]
    assert second.new == [] and second.updated == []
    assert fake_transport.calls_to(_csv_url("ds-1")) == 1
    assert SyncStateStore(config.state_file).load().datasets == before


@pytest.mark.asyncio
async def test_changed_token_is_reported_as_update(config: OpenDataConfig, fake_transport: FakeTransport) -> None:
    state = SyncState()
    state.datasets["ds-1"] = DatasetRecordState(id="ds-1", last_known_update="2025-01-01")
    SyncStateStore(config.state_file).save(state)
    _route_dataset(fake_transport, "ds-1", "2025-02-01")

    report = await _orchestrator(config, fake_transport).sync_all(["ds-1"])

    assert len(report.updated) == 1
    change = report.updated[0]
    assert change.kind == ChangeKind.UPDATED
    assert change.previous_update == "2025-01-01"
    assert change.new_update == "2025-02-01"
    log = json.loads(config.update_log_file.read_text(encoding="utf-8"))
    assert log[-1]["updates"][0]["previousUpdate"] == "2025-01-01"


@pytest.mark.asyncio
async def test_one_failing_dataset_does_not_stop_the_batch(
    config: OpenDataConfig, fake_transport: FakeTransport
) -> None:
    ids = [f"ds-{n}" for n in range(1, 6)]
    for dataset_id in ids:
        if dataset_id != "ds-3":
            _route_dataset(fake_transport, dataset_id, "t1")
    sleeps = _Sleeps()

    report = await _orchestrator(config, fake_transport, sleeps=sleeps).sync_all(ids)

    assert report.failed_ids == ["ds-3"]
    assert report.total_processed == 5
    assert len(report.new) == 4
    assert report.failed[0].kind == FailureKind.UPSTREAM_REJECTION
    assert "ds-3" not in SyncStateStore(config.state_file).load().datasets
    # A pause between consecutive ids, none before the first.
    assert len(sleeps.calls) == 4


@pytest.mark.asyncio
async def test_failed_materialization_keeps_previous_token(
    config: OpenDataConfig, fake_transport: FakeTransport
) -> None:
    state = SyncState()
    state.datasets["ds-1"] = DatasetRecordState(id="ds-1", last_known_update="t1", local_resource_ref="ds-1.csv")
    SyncStateStore(config.state_file).save(state)
    _route_dataset(fake_transport, "ds-1", "t2", csv="<html><body>Request Rejected</body></html>")

    report = await _orchestrator(config, fake_transport).sync_all(["ds-1"])

    assert report.failed_ids == ["ds-1"]
    assert report.failed[0].kind == FailureKind.CHALLENGE_BLOCKED
    record = SyncStateStore(config.state_file).load().datasets["ds-1"]
    assert record.last_known_update == "t1"
    assert record.local_resource_ref == "ds-1.csv"
    assert record.last_error is not None and record.last_error.startswith("challenge_blocked")
    assert record.last_error_time is not None


@pytest.mark.asyncio
async def test_dataset_without_resources_fails_with_no_resources(
    config: OpenDataConfig, fake_transport: FakeTransport
) -> None:
    _route_dataset(fake_transport, "ds-1", "t1")
    fake_transport.route("GET", f"{API}/datasets/resources?version=-1&dataset=ds-1", json_reply({"resources": []}))
    fake_transport.route("GET", f"{CATALOG}/datasets/ds-1", json_reply({"id": "ds-1", "titleAr": "x"}))

    report = await _orchestrator(config, fake_transport).sync_all(["ds-1"])

    assert report.failed[0].kind == FailureKind.NO_RESOURCES


@pytest.mark.asyncio
async def test_duplicate_ids_are_processed_once(config: OpenDataConfig, fake_transport: FakeTransport) -> None:
    _route_dataset(fake_transport, "ds-1", "t1")

    report = await _orchestrator(config, fake_transport).sync_all(["ds-1", " ds-1 ", "ds-1"])

    assert report.total_processed == 1


@pytest.mark.asyncio
async def test_default_ids_come_from_config(config: OpenDataConfig, fake_transport: FakeTransport) -> None:
    _route_dataset(fake_transport, "ds-9", "t1")
    configured = dataclasses.replace(config, dataset_ids=("ds-9",))

    report = await _orchestrator(configured, fake_transport).sync_all()

    assert [change.id for change in report.new] == ["ds-9"]


@pytest.mark.asyncio
async def test_persist_each_dataset_saves_after_every_success(
    config: OpenDataConfig, fake_transport: FakeTransport
) -> None:
    _route_dataset(fake_transport, "ds-1", "t1")
    _route_dataset(fake_transport, "ds-2", "t1")
    store = _CountingStore(config.state_file)
    checkpointing = dataclasses.replace(config, persist_each_dataset=True)

    await _orchestrator(checkpointing, fake_transport, state_store=store).sync_all(["ds-1", "missing", "ds-2"])

    # One checkpoint per successful dataset, then the end-of-pass save.
    assert store.snapshots == [{"ds-1"}, {"ds-1", "ds-2"}, {"ds-1", "ds-2"}]


@pytest.mark.asyncio
async def test_without_checkpoints_the_state_is_saved_once(
    config: OpenDataConfig, fake_transport: FakeTransport
) -> None:
    _route_dataset(fake_transport, "ds-1", "t1")
    _route_dataset(fake_transport, "ds-2", "t1")
    store = _CountingStore(config.state_file)

    await _orchestrator(config, fake_transport, state_store=store).sync_all(["ds-1", "ds-2"])

    assert store.snapshots == [{"ds-1", "ds-2"}]


@pytest.mark.asyncio
async def test_failed_final_save_is_reported_not_raised(
    config: OpenDataConfig, fake_transport: FakeTransport
) -> None:
    _route_dataset(fake_transport, "ds-1", "t1")

    report = await _orchestrator(config, fake_transport, state_store=_FailingStore(config.state_file)).sync_all(
        ["ds-1"]
    )

    assert [change.id for change in report.new] == ["ds-1"]
    assert report.finished_at is not None
    assert report.save_error is not None
    assert report.save_error.kind == FailureKind.STORAGE_FAILURE
    assert report.save_error.target == str(config.state_file)
    assert not config.state_file.exists()
    # The detected changes still reach the update log.
    assert config.update_log_file.exists()


@pytest.mark.asyncio
async def test_successful_pass_has_no_save_error(config: OpenDataConfig, fake_transport: FakeTransport) -> None:
    _route_dataset(fake_transport, "ds-1", "t1")

    report = await _orchestrator(config, fake_transport).sync_all(["ds-1"])

    assert report.save_error is None


# ---------------------------------------------------------------------------
# check_only
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_check_only_downloads_and_saves_nothing(config: OpenDataConfig, fake_transport: FakeTransport) -> None:
    _route_dataset(fake_transport, "ds-1", "t1")
    _route_dataset(fake_transport, "ds-2", "t1")

    changes = await _orchestrator(config, fake_transport).check_only(["ds-1", "ds-2", "missing"])

    assert [(change.id, change.kind) for change in changes] == [("ds-1", ChangeKind.NEW), ("ds-2", ChangeKind.NEW)]
    assert not config.state_file.exists()
    assert not config.update_log_file.exists()
    assert fake_transport.calls_to(_csv_url("ds-1")) == 0


# ---------------------------------------------------------------------------
# discover
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_discovery_walks_pages_and_dedupes(config: OpenDataConfig, fake_transport: FakeTransport) -> None:
    fake_transport.route("POST", _list_url(0), json_reply(_listing_page(["a", "b"], total=3)))
    fake_transport.route("POST", _list_url(1), json_reply(_listing_page(["b", "c"], total=3)))

    report = await _orchestrator(config, fake_transport).discover(["Health"], page_size=2)

    assert report.dataset_ids == ["a", "b", "c"]
    assert report.per_category == {"Health": 3}
    assert report.pages_fetched == 2
    assert report.abandoned == []
    assert report.sync is None
    assert SyncStateStore(config.state_file).load().last_discovery is not None


@pytest.mark.asyncio
async def test_ids_shared_between_categories_count_once(
    config: OpenDataConfig, fake_transport: FakeTransport
) -> None:
    pages = [json_reply(_listing_page(["a", "b"], total=2)), json_reply(_listing_page(["b", "c"], total=2))]
    fake_transport.route("POST", _list_url(0), *pages)

    report = await _orchestrator(config, fake_transport).discover(["Health", "Education"], page_size=2)

    assert report.dataset_ids == ["a", "b", "c"]
    assert report.per_category == {"Health": 2, "Education": 1}


@pytest.mark.asyncio
async def test_failed_page_is_retried_after_session_refresh(
    config: OpenDataConfig, fake_transport: FakeTransport
) -> None:
    fake_transport.route(
        "POST",
        _list_url(0),
        text_reply("<html>Request Rejected</html>"),
        json_reply(_listing_page(["a", "b"], total=2)),
    )
    sleeps = _Sleeps()

    report = await _orchestrator(config, fake_transport, sleeps=sleeps).discover(["Health"], page_size=2)

    assert report.dataset_ids == ["a", "b"]
    assert report.abandoned == []
    assert fake_transport.refreshes == 1
    assert config.refresh_delay in sleeps.calls


@pytest.mark.asyncio
async def test_second_page_failure_abandons_rest_of_category(
    config: OpenDataConfig, fake_transport: FakeTransport
) -> None:
    fake_transport.route("POST", _list_url(0), json_reply(_listing_page(["a", "b"], total=6)))
    fake_transport.route("POST", _list_url(1), text_reply("blocked", status=403))

    report = await _orchestrator(config, fake_transport).discover(["Health"], page_size=2)

    assert report.dataset_ids == ["a", "b"]
    assert len(report.abandoned) == 1
    assert report.abandoned[0].target == "Health"
    assert fake_transport.refreshes == 1
    assert fake_transport.calls_to(_list_url(2)) == 0


@pytest.mark.asyncio
async def test_listing_cache_serves_repeated_discovery(
    config: OpenDataConfig, fake_transport: FakeTransport
) -> None:
    fake_transport.route("POST", _list_url(0), json_reply(_listing_page(["a"], total=1)))
    cache: CacheStore[DatasetListing] = CacheStore(
        MemoryCacheBackend(), DatasetListing, ttl=3600, prefix="datasets_list_"
    )
    orchestrator = _orchestrator(config, fake_transport, listing_cache=cache)

    await orchestrator.discover(["Health"], page_size=2)
    again = await orchestrator.discover(["Health"], page_size=2)

    assert again.dataset_ids == ["a"]
    assert fake_transport.calls_to(_list_url(0)) == 1


@pytest.mark.asyncio
async def test_discover_with_sync_runs_a_pass(config: OpenDataConfig, fake_transport: FakeTransport) -> None:
    fake_transport.route("POST", _list_url(0), json_reply(_listing_page(["ds-1"], total=1)))
    _route_dataset(fake_transport, "ds-1", "t1")

    report = await _orchestrator(config, fake_transport).discover(["Health"], sync=True, page_size=2)

    assert report.sync is not None
    assert [change.id for change in report.sync.new] == ["ds-1"]
    state = SyncStateStore(config.state_file).load()
    assert state.last_discovery is not None
    assert state.last_discovery == state.last_full_sync


@pytest.mark.asyncio
async def test_session_is_refreshed_every_n_categories(config: OpenDataConfig) -> None:
    transport = _RecordingTransport()
    transport.route("POST", _list_url(0), json_reply(_listing_page(["a"], total=1)))
    sleeps = _Sleeps()
    every_three = dataclasses.replace(config, session_refresh_every=3, refresh_delay=7.0)

    orchestrator = _orchestrator(every_three, transport, sleeps=sleeps)
    report = await orchestrator.discover(["c1", "c2", "c3", "c4"], page_size=2)

    # Categories 1 to 3 take one request each; the refresh comes before the fourth.
    assert transport.refreshed_after == [3]
    assert sleeps.calls.count(7.0) == 1
    assert report.pages_fetched == 4


@pytest.mark.asyncio
async def test_periodic_refresh_can_be_disabled(config: OpenDataConfig) -> None:
    transport = _RecordingTransport()
    transport.route("POST", _list_url(0), json_reply(_listing_page(["a"], total=1)))
    never = dataclasses.replace(config, session_refresh_every=0)

    await _orchestrator(never, transport).discover(["c1", "c2", "c3", "c4"], page_size=2)

    assert transport.refreshed_after == []


def _uuid(n: int) -> str:
    return f"{n:08x}-0000-4000-8000-{n:012x}"


def _html_page(ids: list[str]) -> str:
    links = "".join(f'<li><a href="/ar/datasets/view/{dataset_id}">dataset</a></li>' for dataset_id in ids)
    return f"<html><body><ul>{links}</ul></body></html>"


@pytest.mark.asyncio
async def test_html_only_discovery_walks_every_page(config: OpenDataConfig, fake_transport: FakeTransport) -> None:
    # Only the HTML listing answers; it shows 20 links per page whatever the page size.
    first = [_uuid(n) for n in range(1, 21)]
    second = [_uuid(n) for n in range(21, 41)]
    fake_transport.route("GET", f"{PORTAL}/ar/datasets?page=1", text_reply(_html_page(first)))
    fake_transport.route("GET", f"{PORTAL}/ar/datasets?page=2", text_reply(_html_page(second)))
    fake_transport.route("GET", f"{PORTAL}/ar/datasets?page=3", text_reply(_html_page([])))

    report = await _orchestrator(config, fake_transport).discover([None], page_size=100)

    assert report.dataset_ids == first + second
    assert report.pages_fetched == 2
    assert report.abandoned == []
    assert fake_transport.refreshes == 0
    assert fake_transport.calls_to(f"{PORTAL}/ar/datasets?page=2") == 1
    assert fake_transport.calls_to(f"{PORTAL}/ar/datasets?page=3") == 1
    assert fake_transport.calls_to(f"{PORTAL}/ar/datasets?page=4") == 0


@pytest.mark.asyncio
async def test_empty_last_page_is_not_cached(config: OpenDataConfig, fake_transport: FakeTransport) -> None:
    fake_transport.route("GET", f"{PORTAL}/ar/datasets?page=1", text_reply(_html_page([_uuid(1)])))
    fake_transport.route("GET", f"{PORTAL}/ar/datasets?page=2", text_reply(_html_page([])))
    cache: CacheStore[DatasetListing] = CacheStore(
        MemoryCacheBackend(), DatasetListing, ttl=3600, prefix="datasets_list_"
    )

    await _orchestrator(config, fake_transport, listing_cache=cache).discover([None], page_size=100)

    assert cache.get("*:0:100") is not None
    assert cache.get("*:1:100") is None


@pytest.mark.asyncio
async def test_discovery_registers_found_ids(config: OpenDataConfig, fake_transport: FakeTransport) -> None:
    fake_transport.route("POST", _list_url(0), json_reply(_listing_page(["a", "b"], total=2)))
    registry = DiscoveryRegistry(config.discovery_file)
    orchestrator = _orchestrator(config, fake_transport, registry=registry)

    first = await orchestrator.discover(["Health"], page_size=2)
    second = await orchestrator.discover(["Health"], page_size=2)

    assert first.registered == 2
    assert second.registered == 0
    state = DiscoveryRegistry(config.discovery_file).load()
    assert state.ids == ["a", "b"]
    assert {entry.source for entry in state.discovered} == {"portal"}
    assert {entry.category for entry in state.discovered} == {"Health"}
    assert state.discovered[0].title_primary == "a"


@pytest.mark.asyncio
async def test_registry_save_failure_is_reported(config: OpenDataConfig, fake_transport: FakeTransport) -> None:
    fake_transport.route("POST", _list_url(0), json_reply(_listing_page(["a"], total=1)))
    registry = _FailingRegistry(config.discovery_file)

    report = await _orchestrator(config, fake_transport, registry=registry).discover(["Health"], page_size=2)

    assert report.dataset_ids == ["a"]
    assert report.registered == 0
    assert report.save_error is not None
    assert report.save_error.kind == FailureKind.STORAGE_FAILURE


@pytest.mark.asyncio
async def test_register_verifies_ids_before_adding(config: OpenDataConfig, fake_transport: FakeTransport) -> None:
    _route_dataset(fake_transport, "ds-1", "t1")
    registry = DiscoveryRegistry(config.discovery_file)
    registry.add([DiscoveredDataset(id="known")])

    added, failures = await _orchestrator(config, fake_transport, registry=registry).register(
        ["ds-1", "missing", "known"]
    )

    assert [entry.id for entry in added] == ["ds-1"]
    assert added[0].source == "manual"
    assert added[0].provider_name == "جهة"
    assert [failure.target for failure in failures] == ["missing"]
    assert registry.ids() == ["known", "ds-1"]


@pytest.mark.asyncio
async def test_reset_keeps_the_discovery_registry(config: OpenDataConfig, fake_transport: FakeTransport) -> None:
    registry = DiscoveryRegistry(config.discovery_file)
    registry.add([DiscoveredDataset(id="a")])

    _orchestrator(config, fake_transport, registry=registry).reset()

    assert registry.ids() == ["a"]


# ---------------------------------------------------------------------------
# reset
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_reset_clears_state_and_history(config: OpenDataConfig, fake_transport: FakeTransport) -> None:
    state = SyncState()
    state.datasets["ds-1"] = DatasetRecordState(id="ds-1", last_known_update="old")
    SyncStateStore(config.state_file).save(state)
    _route_dataset(fake_transport, "ds-1", "new")
    orchestrator = _orchestrator(config, fake_transport)
    await orchestrator.sync_all(["ds-1"])
    assert config.update_log_file.exists()

    orchestrator.reset()

    assert not config.state_file.exists()
    assert not config.update_log_file.exists()
