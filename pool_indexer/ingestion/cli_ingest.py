import logging

import typer

from pool_indexer.config.logging_config import setup_logging
from pool_indexer.config.settings import Settings, load_settings
from pool_indexer.ingestion.runner import build_scheduler, build_sink
from pool_indexer.utils.errors import ConfigError, IndexerError

log = logging.getLogger(__name__)

app = typer.Typer(help="Pool discovery, swap ingestion and reserve reconciliation")


def _settings() -> Settings:
    try:
        settings = load_settings()
    except ConfigError as exc:
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(code=2)
    setup_logging(settings.log_level)
    return settings


@app.command("run")
def run():
    """Run the poll loop until SIGINT/SIGTERM."""
    settings = _settings()
    try:
        scheduler = build_scheduler(settings)
    except IndexerError as exc:
        log.error(f"Startup failed: {exc}")
        raise typer.Exit(code=1)
    scheduler.install_signal_handlers()
    scheduler.run_forever()


@app.command("once")
def once():
    """Run a single discovery → ingestion → reconciliation cycle."""
    settings = _settings()
    try:
        scheduler = build_scheduler(settings)
    except IndexerError as exc:
        log.error(f"Startup failed: {exc}")
        raise typer.Exit(code=1)
    report = scheduler.run_locked_cycle()
    if report is not None and report.failures:
        raise typer.Exit(code=1)


@app.command("init-db")
def init_db():
    """Create the tables (idempotent)."""
    settings = _settings()
    try:
        build_sink(settings).create_schema()
    except IndexerError as exc:
        log.error(f"Schema creation failed: {exc}")
        raise typer.Exit(code=1)
    log.info("✅ Schema ready")


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind address"),
    port: int = typer.Option(8000, help="Bind port"),
):
    """Serve the read API."""
    import uvicorn

    settings = _settings()
    uvicorn.run("pool_indexer.main:app", host=host, port=port, log_config=None, log_level=settings.log_level.lower())


def main():
    app()


if __name__ == "__main__":
    main()
