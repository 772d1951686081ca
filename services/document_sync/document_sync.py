"""Document sync runner.

Builds one sync engine from the environment. Run directly for a one-shot
background sync (incremental, a few pages), e.g. from cron:

Usage:
    python -m services.document_sync.document_sync
"""

import asyncio

import httpx

from services.document_sync.SyncService import SyncService
from shared.cache.TypedCache import TypedCache
from shared.clients.registry.RegistryClientManager import RegistryClientManager
from shared.errors import SyncError
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.store.sqlalchemy.DocumentStoreSQLAlchemy import DocumentStoreSQLAlchemy


def build_sync_service(
    helper_config: HelperConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> tuple[SyncService, RegistryClientManager]:
    """Wire registry clients, store and cache into one SyncService.

    Returns:
        tuple[SyncService, RegistryClientManager]: The service and the manager owning its HTTP clients.
            Both need boot() before use and close() afterwards.
    """
    registry_manager = RegistryClientManager(helper_config=helper_config, transport=transport)
    sync_service = SyncService(
        helper_config=helper_config,
        registry_client=registry_manager.get_client(),
        store=DocumentStoreSQLAlchemy(helper_config=helper_config),
        cache=TypedCache(helper_config=helper_config),
    )
    return sync_service, registry_manager


async def main() -> int:
    """Run one background sync. Returns a process exit code."""
    logger = setup_logging()
    config = HelperConfig(logger=logger)
    sync_service, registry_manager = build_sync_service(config)

    try:
        await registry_manager.boot()
        await sync_service.boot()
        result = await sync_service.do_background_sync()
        logger.info(
            "Background sync done: %d documents from %s (%s).",
            len(result.documents), result.source.value, result.stats.stop_reason,
            color="green",
        )
        return 0
    except SyncError as e:
        logger.error("Background sync failed: %s", e)
        return 1
    finally:
        await sync_service.close()
        await registry_manager.close()


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
