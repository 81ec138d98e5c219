import asyncio
import logging
import time
from pathlib import Path

import click
import uvicorn
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from credind.core.config import IndexerConfig, load_api_config_from_env, load_config_from_env
from credind.core.errors import CredindError
from credind.core.use_cases.index_chain import IndexStats
from credind.storage.directories import export_directory
from credind.storage.entity_store import DuckDBEntityStore
from credind.storage.export import export_snapshot
from credind.storage.schema import TABLES

console = Console()
logger = logging.getLogger("credind")


def _load_indexer_config(db_path: str | None, follow: bool) -> IndexerConfig:
    config = load_config_from_env()
    if not config.chains:
        raise click.UsageError("No chain configured; set CREDIND_RPC_URL_<chainId>")
    return IndexerConfig(
        chains=config.chains,
        db_path=Path(db_path) if db_path else config.db_path,
        out_root=config.out_root,
        poll_interval_s=config.poll_interval_s,
        follow=follow,
    )


def _print_stats(results: dict[int, IndexStats], elapsed: float) -> None:
    table = Table(title=f"indexed in {elapsed:.2f}s")
    for col in ("chain", "chunks ok", "chunks failed", "splits", "logs", "applied", "discarded", "failed", "last block"):
        table.add_column(col, justify="right")
    for chain_id, s in results.items():
        table.add_row(
            str(chain_id), str(s.chunks_ok), f"[red]{s.chunks_failed}[/]" if s.chunks_failed else "0",
            str(s.splits), str(s.total_logs), f"[green]{s.applied}[/]", str(s.discarded),
            f"[red]{s.failed_events}[/]" if s.failed_events else "0", str(s.last_block),
        )
    console.print(table)


class UvicornServer:
    """uvicorn server that can share the event loop with the indexer."""

    def __init__(self, app, host: str, port: int) -> None:
        self.config = uvicorn.Config(app, host=host, port=port, log_level="info")
        self.server = uvicorn.Server(self.config)

    async def run(self) -> None:
        await self.server.serve()

    def stop(self) -> None:
        self.server.should_exit = True


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
)
def cli(log_level: str) -> None:
    """credind: credential and resolver indexer with a read API."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


@cli.command("index")
@click.option("--db", "db_path", type=str, default=None, help="DuckDB file (default: CREDIND_DB_PATH)")
@click.option("--follow/--no-follow", default=False, show_default=True, help="Keep polling the chain head")
def index_cmd(db_path: str | None, follow: bool) -> None:
    """Index every configured chain into the entity store."""
    from credind.orchestration.orchestrator import run_indexer

    config = _load_indexer_config(db_path, follow)
    store = DuckDBEntityStore(config.db_path)
    t0 = time.time()
    try:
        results = asyncio.run(run_indexer(config, store))
    except CredindError as e:
        raise click.ClickException(str(e)) from e
    except KeyboardInterrupt:
        console.print("[yellow]interrupted[/]")
        return
    finally:
        store.close()
    _print_stats(results, time.time() - t0)


@cli.command("serve")
@click.option("--db", "db_path", type=str, default=None, help="DuckDB file (default: CREDIND_DB_PATH)")
@click.option("--host", type=str, default=None)
@click.option("--port", type=int, default=None)
def serve_cmd(db_path: str | None, host: str | None, port: int | None) -> None:
    """Serve the read API over an existing store (read-only)."""
    from credind.api.app import create_app

    api_config = load_api_config_from_env()
    path = Path(db_path) if db_path else load_config_from_env().db_path
    try:
        store = DuckDBEntityStore(path, read_only=True)
    except CredindError as e:
        raise click.ClickException(str(e)) from e
    try:
        uvicorn.run(create_app(store, api_config), host=host or api_config.host, port=port or api_config.port)
    finally:
        store.close()


@cli.command("run")
@click.option("--db", "db_path", type=str, default=None, help="DuckDB file (default: CREDIND_DB_PATH)")
@click.option("--follow/--no-follow", default=True, show_default=True)
def run_cmd(db_path: str | None, follow: bool) -> None:
    """Index and serve the API from one process sharing one store."""
    from credind.api.app import create_app
    from credind.orchestration.orchestrator import run_indexer

    config = _load_indexer_config(db_path, follow)
    api_config = load_api_config_from_env()
    store = DuckDBEntityStore(config.db_path)
    server = UvicornServer(create_app(store, api_config), api_config.host, api_config.port)

    async def main() -> dict[int, IndexStats]:
        api_task = asyncio.create_task(server.run())
        try:
            results = await run_indexer(config, store)
            logger.info("Indexing finished; API still serving")
            await api_task
            return results
        finally:
            server.stop()
            await asyncio.gather(api_task, return_exceptions=True)

    t0 = time.time()
    try:
        results = asyncio.run(main())
    except CredindError as e:
        raise click.ClickException(str(e)) from e
    except KeyboardInterrupt:
        console.print("[yellow]interrupted[/]")
        return
    finally:
        store.close()
    _print_stats(results, time.time() - t0)


@cli.command("stats")
@click.option("--db", "db_path", type=str, default=None, help="DuckDB file (default: CREDIND_DB_PATH)")
def stats_cmd(db_path: str | None) -> None:
    """Print row counts for every table."""
    path = Path(db_path) if db_path else load_config_from_env().db_path
    try:
        store = DuckDBEntityStore(path, read_only=True)
    except CredindError as e:
        raise click.ClickException(str(e)) from e
    try:
        table = Table(title=str(path))
        table.add_column("table")
        table.add_column("rows", justify="right")
        for name in TABLES:
            table.add_row(name, f"{store.count(name):,}")
        console.print(table)
    finally:
        store.close()


@cli.command("export")
@click.option("--db", "db_path", type=str, default=None, help="DuckDB file (default: CREDIND_DB_PATH)")
@click.option("--out", "out_dir", type=str, default=None, help="Target directory (default: <out_root>/exports/<ts>)")
@click.option("--codec", type=click.Choice(["zstd", "snappy", "gzip", "none"]), default="zstd", show_default=True)
def export_cmd(db_path: str | None, out_dir: str | None, codec: str) -> None:
    """Write a Parquet snapshot of every table."""
    config = load_config_from_env()
    path = Path(db_path) if db_path else config.db_path
    target = Path(out_dir) if out_dir else export_directory(config.out_root)
    try:
        store = DuckDBEntityStore(path, read_only=True)
    except CredindError as e:
        raise click.ClickException(str(e)) from e
    try:
        written = export_snapshot(store, target, codec=codec)
    finally:
        store.close()
    for name, p in written.items():
        console.print(f"[green]{name}[/] → {p}")


if __name__ == "__main__":
    cli()
