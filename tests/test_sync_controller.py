import pytest

from services.document_sync.BackoffPolicy import BackoffPolicy
from services.document_sync.SyncController import (
    EARLY_STOP_CONSECUTIVE,
    EARLY_STOP_MAJORITY,
    STOP_AUTH_FAILED,
    STOP_CONSECUTIVE_ERRORS,
    STOP_EARLY,
    STOP_MAX_PAGES,
    STOP_NO_MORE_PAGES,
    SyncController,
)
from shared.errors import (
    InvalidSyncInputError,
    RegistryAuthError,
    RegistryRateLimitError,
    RegistryTransientError,
    SyncFailedError,
)
from shared.models.registry import RateLimitInfo
from shared.models.sync import SyncMode, SyncSource
from sync_fakes import (
    BASE_TIME,
    FakeTokenProvider,
    InMemoryStore,
    ScriptedRegistryClient,
    make_doc,
    make_page,
)


@pytest.fixture(autouse=True)
def no_page_jitter(monkeypatch):
    monkeypatch.setenv("SYNC_PAGE_DELAY_JITTER", "0")


def _controller(helper_config, client, store, sleep) -> SyncController:
    return SyncController(
        helper_config,
        registry_client=client,
        store=store,
        backoff=BackoffPolicy(base_delay=1.0, max_delay=60.0, jitter=0),
        rate_limit_backoff=BackoffPolicy(base_delay=2.0, max_delay=60.0, jitter=0, clock=lambda: BASE_TIME),
        sleep=sleep,
    )


def _uuids(result) -> list[str]:
    return [doc.uuid for doc in result.documents]


def _synced_store(*minutes: int) -> InMemoryStore:
    return InMemoryStore([make_doc(f"s{m}", m) for m in minutes])


def _transient() -> RegistryTransientError:
    return RegistryTransientError("gateway timeout", status_code=504)


def _rate_limited(retry_after: float = 3) -> RegistryRateLimitError:
    return RegistryRateLimitError("too many requests", rate_limit=RateLimitInfo(retry_after=retry_after))


##########################################
############## INCREMENTAL ###############
##########################################

class TestIncremental:
    async def test_returns_only_documents_newer_than_cursor(self, helper_config, fake_sleep):
        store = _synced_store(0, 5, 10)
        client = ScriptedRegistryClient(pages={1: [make_page([make_doc("v15", 15), make_doc("v10", 10), make_doc("v5", 5)])]})

        result = await _controller(helper_config, client, store, fake_sleep).sync()

        assert _uuids(result) == ["v15"]
        assert result.source == SyncSource.API
        assert client.page_calls == [1]
        assert result.stats.mode == SyncMode.INCREMENTAL
        assert result.stats.new_count == 1
        assert result.stats.not_newer_count == 2
        assert result.stats.stop_reason == STOP_NO_MORE_PAGES
        assert result.stats.early_stop_reason is None

    async def test_keeps_newer_documents_across_pages_until_majority_stop(self, helper_config, fake_sleep):
        store = _synced_store(10)
        client = ScriptedRegistryClient(pages={
            1: [make_page([make_doc("n40", 40), make_doc("n35", 35), make_doc("n30", 30)], page_no=1, has_more=True)],
            2: [make_page([make_doc("n20", 20)] + [make_doc(f"o{m}", m) for m in (9, 8, 7, 6, 5)], page_no=2, has_more=True)],
            3: [make_page([make_doc("o1", 1)], page_no=3)],
        })

        result = await _controller(helper_config, client, store, fake_sleep).sync()

        assert _uuids(result) == ["n40", "n35", "n30", "n20"]
        assert client.page_calls == [1, 2]
        assert result.stats.stop_reason == STOP_EARLY
        assert result.stats.early_stop_reason == EARLY_STOP_MAJORITY
        assert fake_sleep.calls == [0.5]

    async def test_consecutive_counter_spans_pages(self, helper_config, fake_sleep, monkeypatch):
        monkeypatch.setenv("SYNC_EARLY_STOP_CONSECUTIVE", "4")
        monkeypatch.setenv("SYNC_EARLY_STOP_MAJORITY_MIN", "100")
        store = _synced_store(10)
        client = ScriptedRegistryClient(pages={
            1: [make_page([make_doc("n30", 30), make_doc("n25", 25), make_doc("o9", 9), make_doc("o8", 8)], has_more=True)],
            2: [make_page([make_doc("o7", 7), make_doc("o6", 6), make_doc("o5", 5)], page_no=2, has_more=True)],
        })

        result = await _controller(helper_config, client, store, fake_sleep).sync()

        assert _uuids(result) == ["n30", "n25"]
        assert client.page_calls == [1, 2]
        assert result.stats.early_stop_reason == EARLY_STOP_CONSECUTIVE

    async def test_documents_at_the_cursor_count_as_synced(self, helper_config, fake_sleep, monkeypatch):
        monkeypatch.setenv("SYNC_EARLY_STOP_CONSECUTIVE", "3")
        monkeypatch.setenv("SYNC_EARLY_STOP_MAJORITY_MIN", "100")
        store = _synced_store(10)
        client = ScriptedRegistryClient(pages={
            1: [make_page([make_doc("o10a", 10), make_doc("o10b", 10), make_doc("o10c", 10)], has_more=True)],
        })

        result = await _controller(helper_config, client, store, fake_sleep).sync()

        assert result.documents == []
        assert result.source == SyncSource.API
        assert result.stats.early_stop_reason == EARLY_STOP_CONSECUTIVE
        assert client.page_calls == [1]

    async def test_out_of_order_listing_disables_early_stop(self, helper_config, fake_sleep):
        store = _synced_store(10)
        client = ScriptedRegistryClient(pages={
            1: [make_page(
                [make_doc("n30", 30), make_doc("o5", 5), make_doc("n20", 20)] + [make_doc(f"o{m}", m) for m in (4, 3, 2, 1)],
                has_more=True,
            )],
            2: [make_page([make_doc("o0", 0)], page_no=2)],
        })

        result = await _controller(helper_config, client, store, fake_sleep).sync()

        assert _uuids(result) == ["n30", "n20"]
        assert client.page_calls == [1, 2]
        assert result.stats.early_stop_reason is None
        assert result.stats.stop_reason == STOP_NO_MORE_PAGES

    async def test_ordering_checked_across_page_boundary(self, helper_config, fake_sleep, monkeypatch):
        monkeypatch.setenv("SYNC_EARLY_STOP_MAJORITY_MIN", "1")
        store = _synced_store(10)
        client = ScriptedRegistryClient(pages={
            1: [make_page([make_doc("n20", 20)], has_more=True)],
            2: [make_page([make_doc("n25", 25), make_doc("o5", 5), make_doc("o4", 4)], page_no=2, has_more=True)],
            3: [make_page([make_doc("o3", 3)], page_no=3)],
        })

        result = await _controller(helper_config, client, store, fake_sleep).sync()

        assert _uuids(result) == ["n20", "n25"]
        assert client.page_calls == [1, 2, 3]

    async def test_nothing_new_is_an_empty_api_result(self, helper_config, fake_sleep):
        store = _synced_store(10)
        client = ScriptedRegistryClient(pages={1: [make_page([make_doc("o5", 5)])]})

        result = await _controller(helper_config, client, store, fake_sleep).sync()

        assert result.documents == []
        assert result.source == SyncSource.API

    async def test_default_incremental_page_cap(self, helper_config, fake_sleep):
        store = _synced_store(0)
        client = ScriptedRegistryClient(pages={
            n: [make_page([make_doc(f"p{n}", 100 - n)], page_no=n, has_more=True)] for n in range(1, 10)
        })

        result = await _controller(helper_config, client, store, fake_sleep).sync()

        assert client.page_calls == [1, 2, 3, 4, 5]
        assert result.stats.stop_reason == STOP_MAX_PAGES
        assert len(result.documents) == 5

    async def test_unreadable_cursor_runs_full_sync(self, helper_config, fake_sleep):
        store = _synced_store(10)

        async def broken_cursor():
            raise RuntimeError("connection reset")

        store.find_most_recent_sync_timestamp = broken_cursor
        client = ScriptedRegistryClient(pages={1: [make_page([make_doc("o5", 5)])]})

        result = await _controller(helper_config, client, store, fake_sleep).sync()

        assert _uuids(result) == ["o5"]
        assert result.stats.mode == SyncMode.FULL


##########################################
################## FULL ##################
##########################################

class TestFull:
    async def test_returns_every_document(self, helper_config, fake_sleep):
        store = _synced_store(50)
        client = ScriptedRegistryClient(pages={
            1: [make_page([make_doc("a", 40), make_doc("b", 30)], has_more=True)],
            2: [make_page([make_doc("c", 20)], page_no=2)],
        })

        result = await _controller(helper_config, client, store, fake_sleep).sync(mode=SyncMode.FULL)

        assert _uuids(result) == ["a", "b", "c"]
        assert result.stats.mode == SyncMode.FULL
        assert result.stats.new_count == 3

    async def test_max_pages_caps_full_sync(self, helper_config, fake_sleep, store):
        client = ScriptedRegistryClient(pages={
            n: [make_page([make_doc(f"p{n}", 100 - n)], page_no=n, has_more=True)] for n in range(1, 10)
        })

        result = await _controller(helper_config, client, store, fake_sleep).sync(mode=SyncMode.FULL, max_pages=2)

        assert client.page_calls == [1, 2]
        assert result.stats.stop_reason == STOP_MAX_PAGES

    async def test_empty_registry_and_empty_store_fails(self, helper_config, fake_sleep, store):
        client = ScriptedRegistryClient()
        with pytest.raises(SyncFailedError):
            await _controller(helper_config, client, store, fake_sleep).sync(mode=SyncMode.FULL)

    @pytest.mark.parametrize("max_pages", [0, -3])
    async def test_rejects_page_cap_below_one(self, helper_config, fake_sleep, store, max_pages):
        client = ScriptedRegistryClient()
        with pytest.raises(InvalidSyncInputError):
            await _controller(helper_config, client, store, fake_sleep).sync(max_pages=max_pages)
        assert client.page_calls == []


##########################################
################# RETRY ##################
##########################################

class TestRetry:
    async def test_transient_failures_are_retried_with_backoff(self, helper_config, fake_sleep, store):
        client = ScriptedRegistryClient(pages={1: [_transient(), _transient(), make_page([make_doc("a", 1)])]})

        result = await _controller(helper_config, client, store, fake_sleep).sync()

        assert _uuids(result) == ["a"]
        assert client.page_calls == [1, 1, 1]
        assert fake_sleep.calls == [1.0, 2.0]

    async def test_exhausted_page_is_skipped(self, helper_config, fake_sleep, store, monkeypatch):
        monkeypatch.setenv("SYNC_MAX_RETRIES", "1")
        client = ScriptedRegistryClient(pages={
            1: [_transient()],
            2: [make_page([make_doc("b", 1)], page_no=2)],
        })

        result = await _controller(helper_config, client, store, fake_sleep).sync()

        assert _uuids(result) == ["b"]
        assert client.page_calls == [1, 1, 2]
        assert result.stats.pages_failed == 1
        assert result.stats.pages_fetched == 1

    async def test_consecutive_failures_fall_back_to_store(self, helper_config, fake_sleep, monkeypatch):
        monkeypatch.setenv("SYNC_MAX_RETRIES", "0")
        store = _synced_store(1, 2)
        client = ScriptedRegistryClient(pages={n: [_transient()] for n in range(1, 10)})

        result = await _controller(helper_config, client, store, fake_sleep).sync()

        assert client.page_calls == [1, 2, 3]
        assert result.source == SyncSource.FALLBACK
        assert _uuids(result) == ["s2", "s1"]
        assert result.stats.stop_reason == STOP_CONSECUTIVE_ERRORS
        assert "page 3" in result.stats.error

    async def test_consecutive_failures_without_store_raise(self, helper_config, fake_sleep, store, monkeypatch):
        monkeypatch.setenv("SYNC_MAX_RETRIES", "0")
        client = ScriptedRegistryClient(pages={n: [_transient()] for n in range(1, 10)})

        with pytest.raises(SyncFailedError):
            await _controller(helper_config, client, store, fake_sleep).sync()

    async def test_rate_limit_waits_do_not_consume_retries(self, helper_config, fake_sleep, store, monkeypatch):
        monkeypatch.setenv("SYNC_MAX_RETRIES", "0")
        client = ScriptedRegistryClient(pages={1: [_rate_limited(), _rate_limited(), make_page([make_doc("a", 1)])]})

        result = await _controller(helper_config, client, store, fake_sleep).sync()

        assert _uuids(result) == ["a"]
        assert fake_sleep.calls == [3.5, 3.5]
        assert result.stats.pages_failed == 0
        assert result.stats.rate_limit_waits == 2

    async def test_rate_limit_waits_are_capped_per_page(self, helper_config, fake_sleep, store, monkeypatch):
        monkeypatch.setenv("SYNC_MAX_RATE_LIMIT_WAITS", "2")
        client = ScriptedRegistryClient(pages={
            1: [_rate_limited()],
            2: [make_page([make_doc("b", 1)], page_no=2)],
        })

        result = await _controller(helper_config, client, store, fake_sleep).sync()

        assert client.page_calls == [1, 1, 1, 2]
        assert fake_sleep.calls == [3.5, 3.5]
        assert result.stats.pages_failed == 1
        assert _uuids(result) == ["b"]
        assert result.stats.rate_limit_waits == 2

    async def test_exhausted_quota_waits_for_reset(self, helper_config, fake_sleep, store):
        client = ScriptedRegistryClient(pages={
            1: [make_page([make_doc("a", 2)], has_more=True, remaining=0)],
            2: [make_page([make_doc("b", 1)], page_no=2)],
        })

        await _controller(helper_config, client, store, fake_sleep).sync()

        # critical page delay, then wait for the unknown reset: base 2.0 + 1.0 buffer
        assert fake_sleep.calls == [2.0, 3.0]

    async def test_page_delay_adapts_to_remaining_quota(self, helper_config, fake_sleep, store):
        client = ScriptedRegistryClient(pages={
            1: [make_page([make_doc("a", 4)], page_no=1, has_more=True, remaining=100)],
            2: [make_page([make_doc("b", 3)], page_no=2, has_more=True, remaining=30)],
            3: [make_page([make_doc("c", 2)], page_no=3, has_more=True, remaining=5)],
            4: [make_page([make_doc("d", 1)], page_no=4)],
        })

        await _controller(helper_config, client, store, fake_sleep).sync()

        assert fake_sleep.calls == [0.5, 1.0, 2.0]


##########################################
################# AUTH ###################
##########################################

class TestAuth:
    async def test_single_refresh_recovers(self, helper_config, fake_sleep, store):
        client = ScriptedRegistryClient(pages={1: [RegistryAuthError("expired", status_code=401), make_page([make_doc("a", 1)])]})

        result = await _controller(helper_config, client, store, fake_sleep).sync()

        assert _uuids(result) == ["a"]
        assert client.token_provider.refresh_calls == 1

    async def test_second_rejection_falls_back(self, helper_config, fake_sleep):
        store = _synced_store(1)
        client = ScriptedRegistryClient(pages={1: [RegistryAuthError("expired", status_code=401)]})

        result = await _controller(helper_config, client, store, fake_sleep).sync()

        assert client.page_calls == [1, 1]
        assert client.token_provider.refresh_calls == 1
        assert result.source == SyncSource.FALLBACK
        assert result.stats.stop_reason == STOP_AUTH_FAILED

    async def test_failed_refresh_without_store_raises_auth_error(self, helper_config, fake_sleep, store):
        client = ScriptedRegistryClient(
            pages={1: [RegistryAuthError("expired", status_code=401)]},
            token_provider=FakeTokenProvider(fail_refresh=True),
        )

        with pytest.raises(RegistryAuthError):
            await _controller(helper_config, client, store, fake_sleep).sync()
        assert client.page_calls == [1]
