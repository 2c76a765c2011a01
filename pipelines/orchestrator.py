"""Sync orchestrator.

Runs the declared sources of a project through the ingestion pipeline,
one source after the other, within a single sync context.
"""

import logging
from typing import Callable, Dict, List, Optional

from config import Settings
from observability.logging import state_logger
from sources.loader import ProjectConfig
from .adapters import SourceClients, get_adapter
from .errors import QuotaExceededError, SourceLevelError
from .ingest import IngestionPipeline
from .processor import EmbeddingProcessor
from .state import StateObserver, SyncContext, TrainingState

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Owns one ``SyncContext`` per project and runs its syncs."""

    def __init__(self,
                 store,
                 processor: EmbeddingProcessor,
                 clients: SourceClients,
                 settings: Optional[Settings] = None,
                 observer: Optional[StateObserver] = None):
        self.store = store
        self.processor = processor
        self.clients = clients
        self.settings = settings or clients.settings
        self.observer = observer
        self._contexts: Dict[str, SyncContext] = {}

    def get_context(self, project_id: str) -> SyncContext:
        if project_id not in self._contexts:
            context = SyncContext(project_id, observer=state_logger(project_id))
            if self.observer is not None:
                context.subscribe(self.observer)
            self._contexts[project_id] = context
        return self._contexts[project_id]

    async def train_all_sources(self,
                                project: ProjectConfig,
                                on_file_processed: Optional[Callable[[], None]] = None,
                                on_error: Optional[Callable[[str], None]] = None) -> List[str]:
        """Sync every source of ``project``.

        A source that fails as a whole is reported once through
        ``on_error`` and the next source is synced.

        Returns:
            The aggregate error list of the sync

        Raises:
            SyncInProgressError: a sync is already running for the project
            QuotaExceededError: the content quota was hit; remaining
                sources are not synced
        """
        context = self.get_context(project.id)
        context.begin()
        logger.info(f"Starting sync of project {project.id} ({len(project.sources)} sources)")

        clients = SourceClients(
            settings=self.clients.settings,
            github=self.clients.github,
            motif=self.clients.motif,
            page_fetcher=self.clients.page_fetcher,
            use_custom_page_fetcher=project.custom_page_fetcher
        )

        try:
            context.set_state(TrainingState.fetching_data())
            for source in project.sources:
                await self.store.upsert_source(project.id, source)

            pipeline = IngestionPipeline(
                self.processor,
                context,
                self.store.load_checksums,
                include_globs=project.include,
                exclude_globs=project.exclude,
                concurrency_limit=self.settings.concurrency_limit,
                adapter_factory=lambda source: get_adapter(source, clients)
            )

            for source in project.sources:
                if context.token.cancelled:
                    logger.info(f"Sync of project {project.id} cancelled")
                    break
                try:
                    await pipeline.sync(source, on_file_processed=on_file_processed)
                except SourceLevelError as e:
                    message = str(e)
                    context.add_error(message)
                    if on_error is not None:
                        on_error(message)
                except QuotaExceededError as e:
                    logger.warning(f"Sync of project {project.id} halted: {e}")
                    raise
        finally:
            context.set_state(TrainingState.idle())
            context.end()

        logger.info(f"Sync of project {project.id} finished with {len(context.errors)} errors")
        return list(context.errors)
