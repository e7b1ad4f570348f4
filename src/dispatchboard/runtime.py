from __future__ import annotations

import logging
from dataclasses import dataclass

from .app_logging import log_with_fields, setup_logger
from .cache import DispatchCache
from .config import AppConfig, ensure_local_paths
from .dispatcher import Dispatcher
from .loader import ProgressCallback, ProgressiveLoader
from .mapping import JobMapper
from .remote import RemoteServices
from .store import LocalScheduleOverrideStore, LocalStore, TechnicianMetadataStore


@dataclass(slots=True)
class BoardRuntime:
    config: AppConfig
    store: LocalStore
    cache: DispatchCache
    mapper: JobMapper
    dispatcher: Dispatcher
    loader: ProgressiveLoader
    logger: logging.Logger

    def close(self) -> None:
        self.store.close()
        log_with_fields(self.logger, logging.INFO, "board_closed")


def open_board(
    config: AppConfig,
    remote: RemoteServices,
    on_progress: ProgressCallback | None = None,
) -> BoardRuntime:
    """Wire one board session: local store, shared cache, mapper, dispatcher and loader."""
    ensure_local_paths(config)
    logger = setup_logger(config.paths.log)
    store = LocalStore(config.paths.local_store)
    store.init_schema()

    cache = DispatchCache(config.cache)
    overrides = LocalScheduleOverrideStore(store)
    mapper = JobMapper(
        cache,
        remote,
        overrides,
        config=config,
        technician_meta=TechnicianMetadataStore(store),
        logger=logger,
    )
    dispatcher = Dispatcher(config, cache, remote, mapper, logger=logger)
    loader = ProgressiveLoader(cache, mapper, on_progress=on_progress, logger=logger)
    log_with_fields(
        logger,
        logging.INFO,
        "board_opened",
        local_store=str(config.paths.local_store),
        overrides=len(overrides),
    )
    return BoardRuntime(
        config=config,
        store=store,
        cache=cache,
        mapper=mapper,
        dispatcher=dispatcher,
        loader=loader,
        logger=logger,
    )
