"""
Integration tests for the download stage against an in-memory API
"""

from unittest.mock import AsyncMock

import pytest

from core.exceptions import (
    APIRequestError,
    AuthenticationError,
    NetworkError,
    RateLimitError,
)
from ingestion.checkpoint import CheckpointStore, DOWNLOAD_CHECKPOINT_FILE
from ingestion.download import DownloadStage
from ingestion.sources import CustomerSource, OrderSource
from ingestion.store import DurableUnitStore
from models.base import EntityKind, ErrorLevel
from models.checkpoint import DownloadCheckpoint
from models.unit import DurableUnit
from models.entity import Order


class SimulatedCrash(Exception):
    """Stands in for the process dying mid-run"""


def make_stage(settings, client, store, checkpoints, source_class=OrderSource):
    return DownloadStage(settings, source_class(client), store, checkpoints, sleep=AsyncMock())


class TestDownloadStage:
    """Test paging, enrichment and persistence"""

    @pytest.mark.asyncio
    async def test_downloads_every_page(
        self, settings, fake_client_factory, order_factory, order_store, download_checkpoints
    ):
        """Test that total 3 with page size 2 yields two pages and three units"""
        client = fake_client_factory(orders=[order_factory(i) for i in (3, 2, 1)])
        stage = make_stage(settings, client, order_store, download_checkpoints)

        checkpoint = await stage.run()

        # Assertions
        assert client.pages_requested() == [1, 2]
        assert order_store.list() == ["unit-1", "unit-2", "unit-3"]
        assert checkpoint.completed is True
        assert checkpoint.last_cursor == 2
        assert checkpoint.processed_count == 3
        assert checkpoint.total_expected == 3
        assert download_checkpoints.load().completed is True

    @pytest.mark.asyncio
    async def test_units_carry_dependent_resources(
        self, settings, fake_client_factory, order_factory, order_store, download_checkpoints
    ):
        client = fake_client_factory(orders=[order_factory(4, status="complete"), order_factory(3)])
        stage = make_stage(settings, client, order_store, download_checkpoints)

        await stage.run()

        shipped = order_store.get("unit-4").entity()
        pending = order_store.get("unit-3").entity()
        assert [t.transaction_id for t in shipped.transactions] == [40]
        assert [s.entity_id for s in shipped.shipments] == [400]
        # Shipments are only looked up for fulfilled orders
        assert pending.shipments == []
        assert client.calls_for("shipments") == [4]

    @pytest.mark.asyncio
    async def test_embedded_shipments_skip_lookup(
        self, settings, fake_client_factory, order_factory, order_store, download_checkpoints
    ):
        record = order_factory(1, status="complete", extension_attributes={
            "shipments": [{"entity_id": 77, "created_at": "2024-05-01 10:00:00"}]
        })
        client = fake_client_factory(orders=[record])
        stage = make_stage(settings, client, order_store, download_checkpoints)

        await stage.run()

        assert client.calls_for("shipments") == []
        assert [s.entity_id for s in order_store.get("unit-1").entity().shipments] == [77]

    @pytest.mark.asyncio
    async def test_malformed_embedded_shipments_fall_back_to_lookup(
        self, settings, fake_client_factory, order_factory, order_store, download_checkpoints
    ):
        """Test that unreadable embedded shipments are a warning, not a lost order"""
        record = order_factory(1, status="complete", extension_attributes={"shipments": ["oops"]})
        client = fake_client_factory(orders=[record])
        stage = make_stage(settings, client, order_store, download_checkpoints)

        checkpoint = await stage.run()

        assert order_store.list() == ["unit-1"]
        assert client.calls_for("shipments") == [1]
        assert [s.entity_id for s in order_store.get("unit-1").entity().shipments] == [100]
        assert checkpoint.processed_count == 1
        assert [(e.key, e.level) for e in checkpoint.errors] == [("unit-1", ErrorLevel.WARNING)]

    @pytest.mark.asyncio
    async def test_sub_resource_failure_still_persists(
        self, settings, fake_client_factory, order_factory, order_store, download_checkpoints
    ):
        """Test that a failed shipments lookup is a warning, not a lost order"""
        client = fake_client_factory(
            orders=[order_factory(2, status="complete"), order_factory(1, status="shipped")],
            shipment_errors={2},
            transaction_errors={1},
        )
        stage = make_stage(settings, client, order_store, download_checkpoints)

        checkpoint = await stage.run()

        assert order_store.list() == ["unit-1", "unit-2"]
        assert order_store.get("unit-2").entity().shipments == []
        assert order_store.get("unit-1").entity().transactions == []
        assert checkpoint.processed_count == 2
        assert {(e.key, e.level) for e in checkpoint.errors} == {
            ("unit-2", ErrorLevel.WARNING),
            ("unit-1", ErrorLevel.WARNING),
        }

    @pytest.mark.asyncio
    async def test_existing_units_are_skipped(
        self, settings, fake_client_factory, order_factory, order_store, download_checkpoints
    ):
        order_store.ensure()
        order_store.put(
            "unit-2",
            DurableUnit.wrap(EntityKind.ORDERS, Order.model_validate(order_factory(2))),
        )
        client = fake_client_factory(orders=[order_factory(i) for i in (3, 2, 1)])
        stage = make_stage(settings, client, order_store, download_checkpoints)

        checkpoint = await stage.run()

        assert client.calls_for("transactions") == [3, 1]
        assert checkpoint.processed_count == 2
        assert order_store.list() == ["unit-1", "unit-2", "unit-3"]

    @pytest.mark.asyncio
    async def test_bad_record_is_isolated(
        self, settings, fake_client_factory, order_factory, order_store, download_checkpoints
    ):
        orders = [
            order_factory(3),
            {"increment_id": "no-id"},
            order_factory(2, items="not a list"),
            order_factory(1),
        ]
        client = fake_client_factory(orders=orders)
        stage = make_stage(settings, client, order_store, download_checkpoints)

        checkpoint = await stage.run()

        assert order_store.list() == ["unit-1", "unit-3"]
        assert checkpoint.completed is True
        assert checkpoint.processed_count == 2
        assert [e.key for e in checkpoint.errors] == ["unit-", "unit-2"]
        assert all(e.level == ErrorLevel.ERROR for e in checkpoint.errors)

    @pytest.mark.asyncio
    async def test_empty_collection(
        self, settings, fake_client_factory, order_store, download_checkpoints
    ):
        client = fake_client_factory(orders=[])
        stage = make_stage(settings, client, order_store, download_checkpoints)

        checkpoint = await stage.run()

        assert checkpoint.completed is True
        assert checkpoint.processed_count == 0
        assert order_store.is_available()
        assert order_store.list() == []

    @pytest.mark.asyncio
    async def test_customers(
        self, settings, fake_client_factory, mock_customers
    ):
        """Test that customers missing addresses are loaded individually"""
        customers = mock_customers + [{"id": 3, "email": "kay@example.com"}]
        client = fake_client_factory(customers=customers)
        cache = settings.cache_dir("customers")
        store = DurableUnitStore(cache)
        checkpoints = CheckpointStore(cache / DOWNLOAD_CHECKPOINT_FILE, DownloadCheckpoint)
        stage = make_stage(settings, client, store, checkpoints, source_class=CustomerSource)

        checkpoint = await stage.run()

        assert client.pages_requested("customers") == [1, 2]
        assert client.calls_for("customer") == [3]
        assert store.list() == ["unit-1", "unit-2", "unit-3"]
        assert store.get("unit-3").entity().addresses[0].city == "Lyon"
        assert checkpoint.kind == EntityKind.CUSTOMERS


class TestDownloadFailures:
    """Test retries, fatal errors and resume"""

    @pytest.mark.asyncio
    async def test_auth_failure_stops_and_resume_continues(
        self, settings, fake_client_factory, order_factory, order_store, download_checkpoints
    ):
        """Test that a 401 on page 2 of 5 leaves the cursor on page 1"""
        orders = [order_factory(i) for i in range(10, 0, -1)]
        client = fake_client_factory(
            orders=orders,
            page_errors={2: [AuthenticationError("Authentication failed")]},
        )
        stage = make_stage(settings, client, order_store, download_checkpoints)

        with pytest.raises(AuthenticationError):
            await stage.run()

        saved = download_checkpoints.load()
        assert saved.last_cursor == 1
        assert saved.processed_count == 2
        assert saved.completed is False
        assert saved.errors[0].key == "page 2"
        assert client.pages_requested() == [1, 2]

        # Resume with working credentials
        client = fake_client_factory(orders=orders)
        stage = make_stage(settings, client, order_store, download_checkpoints)

        checkpoint = await stage.run(resume=True)

        assert client.pages_requested() == [2, 3, 4, 5]
        assert checkpoint.completed is True
        assert checkpoint.processed_count == 10
        assert checkpoint.total_expected == 10
        assert len(order_store.list()) == 10

    @pytest.mark.asyncio
    async def test_transient_errors_retry_same_page(
        self, settings, fake_client_factory, order_factory, order_store, download_checkpoints
    ):
        client = fake_client_factory(
            orders=[order_factory(i) for i in (3, 2, 1)],
            page_errors={2: [NetworkError("reset"), RateLimitError("slow down", retry_after=3)]},
        )
        stage = make_stage(settings, client, order_store, download_checkpoints)

        checkpoint = await stage.run()

        assert client.pages_requested() == [1, 2, 2, 2]
        assert checkpoint.completed is True
        assert len(order_store.list()) == 3
        assert [e.key for e in checkpoint.errors] == ["page 2", "page 2"]
        stage._sleep.assert_awaited_once_with(3)

    @pytest.mark.asyncio
    async def test_retries_exhausted(
        self, settings, fake_client_factory, order_factory, order_store, download_checkpoints
    ):
        client = fake_client_factory(
            orders=[order_factory(1)],
            page_errors={1: [NetworkError("down") for _ in range(4)]},
        )
        stage = make_stage(settings, client, order_store, download_checkpoints)

        with pytest.raises(NetworkError):
            await stage.run()

        saved = download_checkpoints.load()
        assert client.pages_requested() == [1, 1, 1, 1]
        assert saved.completed is False
        assert saved.last_cursor == 0
        assert len(saved.errors) == 4

    @pytest.mark.asyncio
    async def test_non_transient_page_error_is_not_retried(
        self, settings, fake_client_factory, order_factory, order_store, download_checkpoints
    ):
        """Test that a 400 on a page stops the run instead of re-issuing it"""
        client = fake_client_factory(
            orders=[order_factory(1)],
            page_errors={1: [APIRequestError("400 bad request")]},
        )
        stage = make_stage(settings, client, order_store, download_checkpoints)

        with pytest.raises(APIRequestError):
            await stage.run()

        saved = download_checkpoints.load()
        assert client.pages_requested() == [1]
        assert saved.completed is False
        assert saved.last_cursor == 0
        assert [e.key for e in saved.errors] == ["page 1"]
        stage._sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_programming_error_propagates_with_checkpoint_saved(
        self, settings, fake_client_factory, order_factory, order_store, download_checkpoints
    ):
        """Test that a bug in enrichment is not recorded as a per-entity error"""
        client = fake_client_factory(orders=[order_factory(i) for i in (3, 2, 1)])
        source = OrderSource(client)
        source.enrich = AsyncMock(side_effect=AttributeError("boom"))
        stage = DownloadStage(settings, source, order_store, download_checkpoints, sleep=AsyncMock())

        with pytest.raises(AttributeError):
            await stage.run()

        saved = download_checkpoints.load()
        assert saved is not None
        assert saved.completed is False
        assert saved.last_cursor == 0
        assert saved.errors == []
        assert order_store.list() == []

    @pytest.mark.asyncio
    async def test_resume_after_crash_matches_uninterrupted_run(
        self, settings, fake_client_factory, order_factory, order_store, download_checkpoints, tmp_path
    ):
        """Test that replaying an already stored page creates no duplicates"""
        orders = [order_factory(i) for i in range(6, 0, -1)]

        crashing = fake_client_factory(orders=orders, page_errors={3: [SimulatedCrash()]})
        with pytest.raises(SimulatedCrash):
            await make_stage(settings, crashing, order_store, download_checkpoints).run()

        # Lose the page 2 checkpoint update, as a hard kill would
        saved = download_checkpoints.load()
        assert saved.last_cursor == 2
        saved.last_cursor = 1
        saved.processed_count = 2
        download_checkpoints.save(saved)

        client = fake_client_factory(orders=orders)
        resumed = await make_stage(settings, client, order_store, download_checkpoints).run(resume=True)

        reference_store = DurableUnitStore(tmp_path / "reference")
        reference_checkpoints = CheckpointStore(
            tmp_path / "reference" / DOWNLOAD_CHECKPOINT_FILE, DownloadCheckpoint
        )
        await make_stage(
            settings, fake_client_factory(orders=orders), reference_store, reference_checkpoints
        ).run()

        assert client.pages_requested() == [2, 3]
        assert client.calls_for("transactions") == [2, 1]
        assert resumed.completed is True
        assert order_store.list() == reference_store.list()
        for name in reference_store.list():
            assert order_store.get(name).document == reference_store.get(name).document

    @pytest.mark.asyncio
    async def test_completed_download_is_not_repeated(
        self, settings, fake_client_factory, order_factory, order_store, download_checkpoints
    ):
        orders = [order_factory(i) for i in (2, 1)]
        await make_stage(settings, fake_client_factory(orders=orders), order_store, download_checkpoints).run()

        client = fake_client_factory(orders=orders)
        checkpoint = await make_stage(settings, client, order_store, download_checkpoints).run(resume=True)

        assert client.calls == []
        assert checkpoint.completed is True

        # Forcing starts over from page 1; stored units are skipped
        client = fake_client_factory(orders=orders)
        checkpoint = await make_stage(settings, client, order_store, download_checkpoints).run(
            resume=True, force=True
        )

        assert client.pages_requested() == [1]
        assert checkpoint.completed is True
        assert checkpoint.processed_count == 0
