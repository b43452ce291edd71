"""
vectorindex HTTP API

- /health: liveness
- /search: tenant scoped similarity search
- /index/*: single record indexing, entry inspection, purge
- /reindex: bulk reindex and cancellation

The VectorIndexService comes from the `get_vector_service` dependency so
tests (and embedding applications) can override it.
"""
from typing import List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from vectorindex import __version__
from vectorindex.bootstrap import load_service
from vectorindex.config import settings
from vectorindex.core.exceptions import (
    ConfigurationError, DriverCapabilityError, DriverNotRegisteredError, VectorIndexError,
)
from vectorindex.core.logging import get_logger, setup_logging
from vectorindex.core.reindex import DispatchedReindex
from vectorindex.core.service import VectorIndexService
from vectorindex.schema import VectorIndexEntry, VectorIndexOperationResult, VectorSearchHit

# Initialize logging before app creation
setup_logging()
logger = get_logger(__name__)


# ============================================
# DEPENDENCY INJECTION
# ============================================

def get_vector_service() -> VectorIndexService:
    """Vector index service dependency."""
    return load_service()


# ============================================
# PYDANTIC MODELS (Request/Response)
# ============================================

class IndexRecordRequest(BaseModel):
    entity_id: str
    record_id: str
    tenant_id: str
    organization_id: Optional[str] = None


class ReindexRequest(BaseModel):
    entity_id: Optional[str] = None
    tenant_id: Optional[str] = None
    organization_id: Optional[str] = None
    purge_first: bool = False


class CancelReindexRequest(BaseModel):
    tenant_id: str
    organization_id: Optional[str] = None


class IndexEntryResponse(VectorIndexEntry):
    """Stored entry as returned over HTTP, without its vector."""
    embedding: List[float] = Field(default_factory=list, exclude=True)


class SearchResponse(BaseModel):
    query: str
    hits: List[VectorSearchHit]


class CountResponse(BaseModel):
    count: int


class PurgeResponse(BaseModel):
    purged: List[str]


class CancelReindexResponse(BaseModel):
    cancelled: int


# ============================================
# ERROR MAPPING
# ============================================

ERROR_STATUS = (
    (ConfigurationError, 503),
    (DriverCapabilityError, 501),
    (DriverNotRegisteredError, 404),
)


async def vector_index_error_handler(request: Request, exc: VectorIndexError):
    status_code = next((code for error_type, code in ERROR_STATUS if isinstance(exc, error_type)), 500)
    logger.error(
        "api_request_failed",
        path=request.url.path,
        status_code=status_code,
        error=str(exc),
        error_type=type(exc).__name__,
    )
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "error": type(exc).__name__})


# ============================================
# APP
# ============================================

def create_app() -> FastAPI:
    app = FastAPI(
        title="vectorindex API",
        version=__version__,
        description="Tenant scoped vector search indexing and query engine",
    )
    app.add_exception_handler(VectorIndexError, vector_index_error_handler)

    @app.on_event("startup")
    async def startup_event():
        logger.info("api_startup", version=__version__, env=settings.APP_ENV)

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("api_shutdown")

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "version": __version__}

    @app.get("/search", response_model=SearchResponse)
    async def search(
        q: str = Query(..., min_length=1),
        tenant_id: str = Query(...),
        organization_id: Optional[str] = None,
        limit: int = Query(10, ge=1, le=100),
        driver_id: Optional[str] = None,
        entity_id: Optional[List[str]] = Query(None),
        service: VectorIndexService = Depends(get_vector_service),
    ):
        hits = await service.search(q, tenant_id, organization_id, limit, driver_id, entity_id)
        return SearchResponse(query=q, hits=hits)

    @app.post("/index/records", response_model=VectorIndexOperationResult)
    async def index_record(request: IndexRecordRequest, service: VectorIndexService = Depends(get_vector_service)):
        return await service.index_record(
            request.entity_id, request.record_id, request.tenant_id, request.organization_id
        )

    @app.delete("/index/records", response_model=VectorIndexOperationResult)
    async def delete_record(
        entity_id: str,
        record_id: str,
        tenant_id: str,
        organization_id: Optional[str] = None,
        service: VectorIndexService = Depends(get_vector_service),
    ):
        return await service.delete_record(entity_id, record_id, tenant_id, organization_id)

    @app.get("/index/entries", response_model=List[IndexEntryResponse])
    async def list_entries(
        tenant_id: str,
        organization_id: Optional[str] = None,
        entity_id: Optional[str] = None,
        limit: int = Query(50, ge=1, le=1000),
        offset: int = Query(0, ge=0),
        driver_id: Optional[str] = None,
        service: VectorIndexService = Depends(get_vector_service),
    ):
        return await service.list_index_entries(tenant_id, organization_id, entity_id, limit, offset, driver_id)

    @app.get("/index/entries/count", response_model=CountResponse)
    async def count_entries(
        tenant_id: str,
        organization_id: Optional[str] = None,
        entity_id: Optional[str] = None,
        driver_id: Optional[str] = None,
        service: VectorIndexService = Depends(get_vector_service),
    ):
        total = await service.count_index_entries(tenant_id, organization_id, entity_id, driver_id)
        return CountResponse(count=total)

    @app.delete("/index", response_model=PurgeResponse)
    async def purge_index(
        tenant_id: str,
        organization_id: Optional[str] = None,
        entity_id: Optional[str] = None,
        service: VectorIndexService = Depends(get_vector_service),
    ):
        return PurgeResponse(purged=await service.purge_index(tenant_id, organization_id, entity_id))

    @app.post("/reindex", status_code=202)
    async def reindex(
        request: ReindexRequest,
        background_tasks: BackgroundTasks,
        service: VectorIndexService = Depends(get_vector_service),
    ):
        """
        Dispatched mode emits the reindex events before responding. Inline
        mode validates the request and runs the walk as a background task.
        """
        if isinstance(service.reindexer.mode, DispatchedReindex):
            reports = await _reindex(service, request)
            return {"status": "dispatched", "reports": [report.model_dump(mode="json") for report in reports]}

        if not request.tenant_id:
            raise ConfigurationError("Reindex without tenant_id requires event dispatch")
        background_tasks.add_task(_reindex, service, request)
        return {"status": "accepted", "entity_id": request.entity_id, "tenant_id": request.tenant_id}

    @app.post("/reindex/cancel", response_model=CancelReindexResponse)
    async def cancel_reindex(request: CancelReindexRequest, service: VectorIndexService = Depends(get_vector_service)):
        return CancelReindexResponse(cancelled=service.cancel_reindex(request.tenant_id, request.organization_id))

    return app


async def _reindex(service: VectorIndexService, request: ReindexRequest):
    if request.entity_id:
        return [await service.reindex_entity(
            request.entity_id, request.tenant_id, request.organization_id, request.purge_first
        )]
    return await service.reindex_all(request.tenant_id, request.organization_id, request.purge_first)


app = create_app()
