"""CLI command for running the API server."""

import click
import uvicorn

from ..config import get_settings


@click.command(name="serve")
@click.option("--host", default=None, help="Bind address (default: API_HOST)")
@click.option("--port", type=int, default=None, help="Port (default: API_PORT)")
@click.option("--reload", is_flag=True, help="Reload on code changes")
def serve(host: str | None, port: int | None, reload: bool):
    """Run the partner API with uvicorn."""
    settings = get_settings()
    uvicorn.run(
        "main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
        log_config=None,
    )
