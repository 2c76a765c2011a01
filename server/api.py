from fastapi import FastAPI, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from typing import Optional
from contextlib import asynccontextmanager
import datetime, logging

from config import Settings, get_settings
from indexer.sqlite_adapter import SQLiteAdapter
from observability.logging import setup_logging_from_settings
from pipelines.adapters import SourceClients
from pipelines.errors import QuotaExceededError, SearchBackendError, SyncInProgressError
from pipelines.orchestrator import SyncOrchestrator
from pipelines.processor import EmbeddingProcessor, HttpEmbeddingProcessor, StoreProcessor
from pipelines.state import TrainingState
from server.search import DEFAULT_SEARCH_LIMIT, SearchService
from sources.loader import ProjectLoader

logger = logging.getLogger(__name__)


def _parse_limit(value: Optional[str]) -> int:
    try:
        return int(value) if value is not None else DEFAULT_SEARCH_LIMIT
    except ValueError:
        return DEFAULT_SEARCH_LIMIT


def create_app(settings: Optional[Settings] = None,
               store: Optional[SQLiteAdapter] = None,
               processor: Optional[EmbeddingProcessor] = None,
               clients: Optional[SourceClients] = None,
               project_loader: Optional[ProjectLoader] = None,
               configure_logging: bool = False) -> FastAPI:
    """Build the API around a store, an embedding processor and source clients.

    Collaborators not given are created from ``settings``: a SQLite store
    at ``db_path``, the remote embedding processor when ``processor_url``
    is set (the local store processor otherwise), and the default HTTP
    clients of each source type.
    """
    settings = settings or get_settings()
    if configure_logging:
        setup_logging_from_settings(settings)

    store = store or SQLiteAdapter(settings.db_path)
    if processor is None:
        if settings.processor_url:
            processor = HttpEmbeddingProcessor(settings, store=store)
        else:
            processor = StoreProcessor(store, token_quota=settings.token_quota)
    clients = clients or SourceClients.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Open the store on startup, release sessions and the store on shutdown."""
        if store.conn is None:
            await store.initialize()
        logger.info(f"Store ready: {settings.db_path}")
        try:
            yield
        finally:
            await clients.close()
            await processor.close()
            await store.close()

    app = FastAPI(title="CorpusForge API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.processor = processor
    app.state.clients = clients
    app.state.projects = project_loader or ProjectLoader(settings.projects_dir)
    app.state.orchestrator = SyncOrchestrator(store, processor, clients, settings)
    app.state.search = SearchService(store)

    async def get_orchestrator(request: Request) -> SyncOrchestrator:
        return request.app.state.orchestrator

    @app.get("/health")
    async def health(request: Request):
        stats = await request.app.state.store.get_database_stats()
        return {"status": "ok", "time": datetime.datetime.utcnow().isoformat() + "Z", "store": stats}

    @app.get("/v1/search")
    async def search(request: Request,
                     query: Optional[str] = None,
                     project_id: str = Query(..., alias="projectId"),
                     limit: Optional[str] = None):
        """Full-text search over the sections of a project."""
        if not query or not query.strip():
            return {"data": []}

        try:
            results, debug = await request.app.state.search.search_with_debug(
                query, project_id, _parse_limit(limit)
            )
        except SearchBackendError as e:
            return JSONResponse(status_code=400, content={"error": str(e)})

        return {"debug": debug, "data": results}

    @app.post("/v1/projects/{project_id}/train")
    async def train(project_id: str, request: Request,
                    orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
        """Sync all sources of a project and report the errors encountered."""
        project = request.app.state.projects.load_project(project_id)
        if project is None:
            raise HTTPException(status_code=404, detail=f"Project {project_id} not found")

        try:
            errors = await orchestrator.train_all_sources(project)
        except SyncInProgressError as e:
            return JSONResponse(status_code=409, content={"error": str(e)})
        except QuotaExceededError as e:
            return JSONResponse(status_code=e.status, content={"error": str(e), "name": e.name})

        return TrainingState.complete(errors).to_dict()

    @app.post("/v1/projects/{project_id}/train/cancel")
    async def cancel_training(project_id: str,
                              orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
        context = orchestrator.get_context(project_id)
        if not context.running:
            return JSONResponse(status_code=409, content={"error": "No sync is running"})
        context.cancel()
        return context.state.to_dict()

    @app.get("/v1/projects/{project_id}/train")
    async def training_status(project_id: str,
                              orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
        context = orchestrator.get_context(project_id)
        return {
            **context.state.to_dict(),
            "message": context.message,
            "running": context.running,
            "errors": list(context.errors)
        }

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(configure_logging=True), host="0.0.0.0", port=8001)
