import asyncio
import json
from typing import Optional

import typer
from vectorindex.core.logging import setup_logging, get_logger
from vectorindex.core.exceptions import VectorIndexError

# Initialize logging before anything else
setup_logging()
logger = get_logger(__name__)

app = typer.Typer(help="Vector search index: indexing, reindexing and similarity queries.")


def _service():
    from vectorindex.bootstrap import load_service
    return load_service()


def _run(coro_factory):
    """Run one async service call, turning engine errors into exit code 1."""
    try:
        return asyncio.run(coro_factory(_service()))
    except VectorIndexError as e:
        logger.error("cli_command_failed", error=str(e), error_type=type(e).__name__)
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)


def _dump(value):
    if isinstance(value, list):
        value = [item.model_dump(mode="json") if hasattr(item, "model_dump") else item for item in value]
    elif hasattr(value, "model_dump"):
        value = value.model_dump(mode="json")
    print(json.dumps(value, indent=2, ensure_ascii=False))


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind address"),
    port: int = typer.Option(8000, help="Port"),
    reload: bool = typer.Option(False, help="Auto-reload on code changes"),
):
    """Start the API server."""
    import uvicorn
    logger.info("starting_api_server", host=host, port=port)
    uvicorn.run("vectorindex.api.app:app", host=host, port=port, reload=reload)


@app.command()
def version():
    """Show version."""
    from vectorindex import __version__
    print(f"vectorindex v{__version__}")


@app.command()
def search(
    query: str = typer.Argument(..., help="Free text query"),
    tenant: str = typer.Option(..., help="Tenant id"),
    org: Optional[str] = typer.Option(None, help="Organization id"),
    limit: int = typer.Option(10, help="Maximum hits"),
    driver: Optional[str] = typer.Option(None, help="Driver id (defaults to the configured driver)"),
):
    """Similarity search within one tenant."""
    hits = _run(lambda service: service.search(query, tenant, org, limit, driver))
    _dump(hits)


@app.command()
def index_record(
    entity: str = typer.Argument(..., help="Entity id, e.g. customers:customer_person"),
    record_id: str = typer.Argument(..., help="Record id"),
    tenant: str = typer.Option(..., help="Tenant id"),
    org: Optional[str] = typer.Option(None, help="Organization id"),
):
    """Index (or refresh) a single record."""
    _dump(_run(lambda service: service.index_record(entity, record_id, tenant, org)))


@app.command()
def delete_record(
    entity: str = typer.Argument(..., help="Entity id"),
    record_id: str = typer.Argument(..., help="Record id"),
    tenant: str = typer.Option(..., help="Tenant id"),
    org: Optional[str] = typer.Option(None, help="Organization id"),
):
    """Remove a single record from the index."""
    _dump(_run(lambda service: service.delete_record(entity, record_id, tenant, org)))


@app.command()
def reindex(
    entity: Optional[str] = typer.Option(None, help="Entity id (all enabled entities when omitted)"),
    tenant: Optional[str] = typer.Option(None, help="Tenant id (required for inline reindex)"),
    org: Optional[str] = typer.Option(None, help="Organization id"),
    purge: bool = typer.Option(False, "--purge", help="Purge existing entries first"),
):
    """Re-walk the record source and rebuild entries."""
    if entity:
        result = _run(lambda service: service.reindex_entity(entity, tenant, org, purge_first=purge))
    else:
        result = _run(lambda service: service.reindex_all(tenant, org, purge_first=purge))
    _dump(result)


@app.command()
def purge(
    tenant: str = typer.Option(..., help="Tenant id"),
    org: Optional[str] = typer.Option(None, help="Organization id"),
    entity: Optional[str] = typer.Option(None, help="Entity id (all enabled entities when omitted)"),
):
    """Delete every index entry of a tenant."""
    _dump({"purged": _run(lambda service: service.purge_index(tenant, org, entity))})


@app.command()
def count(
    tenant: str = typer.Option(..., help="Tenant id"),
    org: Optional[str] = typer.Option(None, help="Organization id"),
    entity: Optional[str] = typer.Option(None, help="Entity id"),
):
    """Count index entries."""
    _dump({"count": _run(lambda service: service.count_index_entries(tenant, org, entity))})


@app.command()
def cancel_reindex(
    tenant: str = typer.Option(..., help="Tenant id"),
    org: Optional[str] = typer.Option(None, help="Organization id"),
):
    """Cancel running reindex walks of this process for a tenant."""
    try:
        signalled = _service().cancel_reindex(tenant, org)
    except VectorIndexError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    _dump({"cancelled": signalled})


if __name__ == "__main__":
    app()
