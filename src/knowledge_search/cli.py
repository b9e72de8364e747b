"""CLI commands for knowledge search."""

import asyncio
import logging
import re
import sys

import click

from knowledge_search.config import settings


class SecretRedactingFilter(logging.Filter):
    """Filter to redact sensitive information from logs."""

    # Patterns for common secrets
    SECRET_PATTERNS = [
        (re.compile(r"(api[_-]?key[\s:=]+)[\w-]{20,}", re.IGNORECASE), r"\1[REDACTED]"),
        (re.compile(r"(token[\s:=]+)[\w-]{20,}", re.IGNORECASE), r"\1[REDACTED]"),
        (re.compile(r"(password[\s:=]+)\S+", re.IGNORECASE), r"\1[REDACTED]"),
        (re.compile(r"(secret[\s:=]+)\S+", re.IGNORECASE), r"\1[REDACTED]"),
        (re.compile(r"(bearer\s+)[\w.-]+", re.IGNORECASE), r"\1[REDACTED]"),
        (re.compile(r"\bsk-[\w-]{20,}"), "[REDACTED]"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact secrets from log messages."""
        if isinstance(record.msg, str):
            for pattern, replacement in self.SECRET_PATTERNS:
                record.msg = pattern.sub(replacement, record.msg)
        return True


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    root = logging.getLogger()
    if not any(isinstance(f, SecretRedactingFilter) for f in root.filters):
        root.addFilter(SecretRedactingFilter())


logger = logging.getLogger(__name__)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
def cli(verbose: bool) -> None:
    """Knowledge Search CLI."""
    configure_logging(logging.DEBUG if verbose else logging.INFO)


@cli.command(name="init-db")
def init_database() -> None:
    """Initialize the database schema."""
    asyncio.run(_init_database())


async def _init_database() -> None:
    """Async implementation of init-db command."""
    from knowledge_search.db.database import init_db

    await init_db()
    click.echo("Database initialized successfully!")


@cli.command()
@click.option("--force", "-f", is_flag=True, help="Insert even if entries already exist")
def seed(force: bool) -> None:
    """Load the default knowledge entries."""
    asyncio.run(_seed(force))


async def _seed(force: bool) -> None:
    """Async implementation of seed command."""
    from knowledge_search.db.database import async_session_maker, init_db
    from knowledge_search.search.seed import seed_knowledge_base

    await init_db()
    async with async_session_maker() as session:
        inserted = await seed_knowledge_base(session, force=force)

    if inserted:
        click.echo(f"Seeded {inserted} knowledge entries")
    else:
        click.echo("Knowledge base already populated (use --force to add the defaults again)")


@cli.command(name="check-services")
def check_services() -> None:
    """Check the LLM and every configured image provider."""
    asyncio.run(_check_services())


async def _check_services() -> None:
    """Async implementation of check-services command."""
    from knowledge_search.images.manager import build_manager
    from knowledge_search.rag.exceptions import LLMError
    from knowledge_search.rag.factory import get_llm

    failures = 0

    click.echo("LLM:")
    try:
        llm = await get_llm()
        healthy = await llm.check_health()
        click.echo(f"  {llm.provider_name}: {'ok' if healthy else 'unhealthy'}")
        failures += 0 if healthy else 1
    except LLMError as e:
        click.echo(f"  not available: {e}")
        failures += 1

    manager = build_manager()
    click.echo("\nImage providers:")
    if not manager.has_services:
        click.echo("  none configured")
        sys.exit(1)

    for check in await manager.perform_health_check():
        status = "ok" if check["is_healthy"] else f"unhealthy ({check['error'] or 'no response'})"
        click.echo(f"  {check['service_name']}: {status} in {check['response_time']:.2f}s")
        failures += 0 if check["is_healthy"] else 1

    if failures:
        sys.exit(1)


@cli.command()
@click.option(
    "--cache-days",
    type=int,
    default=settings.PROMPT_CACHE_RETENTION_DAYS,
    show_default=True,
    help="Drop prompt cache entries unused for N days",
)
@click.option(
    "--cache-keep",
    type=int,
    default=None,
    help="Keep only the N most used prompt cache entries",
)
@click.option(
    "--failed-days",
    type=int,
    default=settings.FAILED_IMAGE_RETENTION_DAYS,
    show_default=True,
    help="Delete failed image records older than N days",
)
@click.option(
    "--audit-days",
    type=int,
    default=settings.AUDIT_RETENTION_DAYS,
    show_default=True,
    help="Delete security audit logs older than N days",
)
def cleanup(cache_days: int, cache_keep: int | None, failed_days: int, audit_days: int) -> None:
    """Clean up the prompt cache, failed images and audit logs."""
    asyncio.run(_cleanup(cache_days, cache_keep, failed_days, audit_days))


async def _cleanup(
    cache_days: int, cache_keep: int | None, failed_days: int, audit_days: int
) -> None:
    """Async implementation of cleanup command."""
    from knowledge_search.db.database import async_session_maker, init_db
    from knowledge_search.images.prompts.cache import PromptCacheService
    from knowledge_search.images.repository import GeneratedImageRepository
    from knowledge_search.security.manager import SecurityManager

    await init_db()
    async with async_session_maker() as session:
        cache = PromptCacheService(session)
        cached = await cache.cleanup_old(cache_days)
        if cache_keep is not None:
            cached += await cache.keep_most_used(cache_keep)
        failed = await GeneratedImageRepository(session).cleanup_failed(failed_days)
        audit = await SecurityManager(session).cleanup_audit_logs(audit_days)

    click.echo("\nCleanup complete!")
    click.echo(f"  Prompt cache entries: {cached}")
    click.echo(f"  Failed images: {failed}")
    click.echo(f"  Audit log entries: {audit}")


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", type=int, default=8000, show_default=True)
@click.option("--reload", is_flag=True, help="Reload on code changes")
def serve(host: str, port: int, reload: bool) -> None:
    """Run the API server."""
    import uvicorn

    uvicorn.run("knowledge_search.main:app", host=host, port=port, reload=reload)


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
