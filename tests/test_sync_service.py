from datetime import datetime, timedelta, timezone

import pytest

from services.document_sync.SyncService import SyncService
from shared.cache.TypedCache import TypedCache
from shared.errors import InvalidSyncInputError, RegistryRequestError, SyncFailedError
from shared.models.submission import SubmissionStatus
from shared.models.sync import SyncMode, SyncOptions, SyncSource
from sync_fakes import InMemoryStore, ScriptedRegistryClient, at, make_doc, make_page


def _service(helper_config, client, store, sleep, now: datetime | None = None) -> SyncService:
    return SyncService(
        helper_config,
        registry_client=client,
        store=store,
        cache=TypedCache(helper_config),
        sleep=sleep,
        clock=lambda: now or datetime.now(timezone.utc) + timedelta(days=1),
    )


def _uuids(result) -> list[str]:
    return [doc.uuid for doc in result.documents]


class TestDoSync:
    async def test_live_result_is_saved_and_cached(self, helper_config, store, fake_sleep):
        client = ScriptedRegistryClient(pages={1: [make_page([make_doc("a", 2), make_doc("b", 1)])]})
        service = _service(helper_config, client, store, fake_sleep)

        first = await service.do_sync()
        second = await service.do_sync()

        assert first.source == SyncSource.API
        assert first.cached is False
        assert first.stats.write_result.success_count == 2
        assert store.docs["a"].sync_status == "success"
        assert second.cached is True
        assert second.source == SyncSource.API
        assert _uuids(second) == ["a", "b"]
        assert client.page_calls == [1]

    async def test_cache_is_scoped_by_owner(self, helper_config, store, fake_sleep):
        client = ScriptedRegistryClient(pages={1: [make_page([make_doc("a", 2)])]})
        service = _service(helper_config, client, store, fake_sleep)

        await service.do_sync(SyncOptions(owner_id="C111", mode=SyncMode.FULL))
        other = await service.do_sync(SyncOptions(owner_id="C222", mode=SyncMode.FULL))

        assert other.cached is False
        assert client.page_calls == [1, 1]

    async def test_recent_database_sync_is_served_without_registry(self, helper_config, fake_sleep):
        store = InMemoryStore([make_doc("s1", 1, last_sync_date=at(50))])
        client = ScriptedRegistryClient()

        result = await _service(helper_config, client, store, fake_sleep, now=at(55)).do_sync()

        assert result.source == SyncSource.DATABASE
        assert _uuids(result) == ["s1"]
        assert client.page_calls == []

    async def test_stale_database_triggers_live_sync(self, helper_config, fake_sleep):
        store = InMemoryStore([make_doc("s1", 1, last_sync_date=at(50))])
        client = ScriptedRegistryClient(pages={1: [make_page([make_doc("n2", 2)])]})

        result = await _service(helper_config, client, store, fake_sleep, now=at(70)).do_sync()

        assert result.source == SyncSource.API
        assert _uuids(result) == ["n2"]

    async def test_force_refresh_bypasses_cache_and_database(self, helper_config, fake_sleep):
        store = InMemoryStore([make_doc("s1", 1, last_sync_date=at(50))])
        client = ScriptedRegistryClient(pages={1: [make_page([make_doc("n2", 2)])]})
        service = _service(helper_config, client, store, fake_sleep, now=at(55))

        assert (await service.do_sync()).source == SyncSource.DATABASE
        forced = await service.do_sync(SyncOptions(force_refresh=True))

        assert forced.source == SyncSource.API
        assert forced.cached is False
        assert client.page_calls == [1]

    async def test_fallback_result_is_not_written_back(self, helper_config, fake_sleep, monkeypatch):
        monkeypatch.setenv("SYNC_MAX_RETRIES", "0")
        store = InMemoryStore([make_doc("s1", 1)])
        failure = RegistryRequestError("bad request", status_code=400)
        client = ScriptedRegistryClient(pages={n: [failure] for n in range(1, 6)})

        result = await _service(helper_config, client, store, fake_sleep).do_sync()

        assert result.source == SyncSource.FALLBACK
        assert _uuids(result) == ["s1"]
        assert result.stats.write_result is None
        assert store.upsert_calls == []

    async def test_empty_everything_raises(self, helper_config, store, fake_sleep):
        client = ScriptedRegistryClient()
        with pytest.raises(SyncFailedError):
            await _service(helper_config, client, store, fake_sleep).do_sync()

    async def test_open_submissions_are_polled_after_save(self, helper_config, store, fake_sleep):
        client = ScriptedRegistryClient(
            pages={1: [make_page([
                make_doc("n1", 30, submissionUid="S1", status="Submitted"),
                make_doc("n2", 29, submissionUid="S1", status="Valid"),
                make_doc("n3", 28, submissionUid="S2", status="Valid"),
            ])]},
            submissions={"S1": [SubmissionStatus(
                submission_uid="S1",
                overall_status="Valid",
                document_count=1,
                documents=[{"uuid": "n1", "status": "Valid"}],
            )]},
        )

        result = await _service(helper_config, client, store, fake_sleep).do_sync()

        assert client.submission_calls == ["S1"]
        assert result.stats.polled_submissions == 1
        assert store.docs["n1"].status == "Valid"
        assert store.docs["n1"].submissionUid == "S1"

    async def test_polled_summary_keeps_listing_totals(self, helper_config, store, fake_sleep):
        client = ScriptedRegistryClient(
            pages={1: [make_page([make_doc("D1", 30, submissionUid="S1", status="Submitted", totalSales=250)])]},
            submissions={"S1": [SubmissionStatus(
                submission_uid="S1",
                overall_status="Valid",
                document_count=1,
                documents=[{"uuid": "D1", "status": "Valid", "totalPayableAmount": 250}],
            )]},
        )

        await _service(helper_config, client, store, fake_sleep).do_sync(
            SyncOptions(mode=SyncMode.FULL, force_refresh=True)
        )

        assert client.submission_calls == ["S1"]
        assert store.docs["D1"].status == "Valid"
        assert store.docs["D1"].totalSales == 250
        assert store.docs["D1"].totalPayableAmount == 250

    async def test_background_sync_is_small_and_incremental(self, helper_config, fake_sleep):
        store = InMemoryStore([make_doc("s0", 0)])
        client = ScriptedRegistryClient(pages={
            n: [make_page([make_doc(f"p{n}", 100 - n)], page_no=n, has_more=True)] for n in range(1, 10)
        })

        result = await _service(helper_config, client, store, fake_sleep).do_background_sync()

        assert client.page_calls == [1, 2, 3]
        assert result.stats.mode == SyncMode.INCREMENTAL


class TestLookups:
    async def test_document_details_are_cached(self, helper_config, store, fake_sleep):
        client = ScriptedRegistryClient(details={"D1": {"uuid": "D1", "validationResults": {"status": "Valid"}}})
        service = _service(helper_config, client, store, fake_sleep)

        first = await service.get_document_details("D1")
        first["validationResults"]["status"] = "changed"
        second = await service.get_document_details("D1")

        assert second["validationResults"]["status"] == "Valid"
        assert client.details_calls == ["D1"]

    async def test_document_details_errors_propagate(self, helper_config, store, fake_sleep):
        client = ScriptedRegistryClient(details={"D1": RegistryRequestError("not found", status_code=404)})
        with pytest.raises(RegistryRequestError):
            await _service(helper_config, client, store, fake_sleep).get_document_details("D1")

    async def test_document_details_rejects_blank_uuid(self, helper_config, store, fake_sleep):
        with pytest.raises(InvalidSyncInputError):
            await _service(helper_config, ScriptedRegistryClient(), store, fake_sleep).get_document_details(" ")

    async def test_total_count(self, helper_config, fake_sleep):
        store = InMemoryStore([make_doc("a", 1), make_doc("b", 2)])
        assert await _service(helper_config, ScriptedRegistryClient(), store, fake_sleep).get_total_count() == 2

    def test_sync_config_reports_effective_settings(self, helper_config, store, fake_sleep, monkeypatch):
        monkeypatch.setenv("SYNC_PAGE_SIZE", "50")
        config = _service(helper_config, ScriptedRegistryClient(), store, fake_sleep).get_sync_config()

        assert config["pageSize"] == 50
        assert config["maxIncrementalPages"] == 5
        assert config["maxFullPages"] == 100
        assert config["earlyStopThreshold"] == 10
        assert config["syncThresholdMinutes"] == 15
        assert config["backgroundMaxPages"] == 3
        assert config["cache"]["size"] == 0
