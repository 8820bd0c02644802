"""
main.py — Dependency Wiring (Composition Root)
------------------------------------------------
This file has ONE job: wire all the pieces together and run the collector.

It does NOT contain any business logic. It just:
  1. Reads configuration from environment variables (and CLI flags)
  2. Creates concrete implementations of each interface
  3. Injects them into the classes that need them
  4. Calls the top-level use case (CollectApplicationService.execute)
  5. Reports the result to whoever triggered the run

Two ways in:
  - handle_pubsub(event, context): Cloud Functions background entry point,
    fired by a Pub/Sub message. The payload is ignored. A failed run raises
    so the platform records the failure and applies its retry policy.
  - python main.py: manual / cron run, exits 1 on failure.

Dependency graph (what depends on what):
                         main.py  (wires everything)
                            │
              ┌─────────────┴──────────────┐
              ▼                            ▼
   CollectApplicationService        SnapshotPublisher
              │                            │
              ▼                            ▼
       VersionResolver               IBlobStorage
              │                   (GCS / Postgres / Local)
    ┌─────────┼──────────┐
    ▼         ▼          ▼
Registry  ReleaseQueryBuilder  IReleaseFetcher
                               (GitHub GraphQL)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import httpx
import psycopg2
from google.cloud import storage as gcs

from agent_versions.application.collect_service import CollectApplicationService
from agent_versions.application.publisher import SnapshotPublisher, WriteMode
from agent_versions.application.query_builder import AutoVersionMode, ReleaseQueryBuilder
from agent_versions.application.resolver import VersionResolver
from agent_versions.config import BACKENDS, Settings
from agent_versions.domain.entities import CollectionResult, Snapshot
from agent_versions.domain.errors import ConfigError, StorageError, VersionCollectorError
from agent_versions.domain.registry import Registry
from agent_versions.infrastructure.gcs_storage import GCSBlobStorage
from agent_versions.infrastructure.github_client import GitHubReleaseClient
from agent_versions.infrastructure.local_storage import LocalBlobStorage
from agent_versions.infrastructure.postgres_storage import PostgresBlobStorage

log = logging.getLogger("agent_versions")

# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(level: str = "INFO") -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )
    # basicConfig does nothing when the runtime already installed handlers.
    log.setLevel(numeric)
    # httpx logs every request URL at INFO; keep it to warnings.
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Dependency wiring
# ---------------------------------------------------------------------------


def _build_resolver(settings: Settings, client: httpx.AsyncClient, registry: Registry) -> VersionResolver:
    github_client = GitHubReleaseClient(
        token   = settings.github_token,
        client  = client,               # injected, not created here
        api_url = settings.graphql_url,
        timeout = settings.http_timeout,
    )
    builder = ReleaseQueryBuilder(registry, auto_mode=settings.auto_mode)
    return VersionResolver(fetcher=github_client, registry=registry, builder=builder)


async def build_and_run(
    settings:  Settings,
    registry:  Registry | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> CollectionResult:
    """
    Wires all dependencies together and executes one collection run.

    This is the Composition Root — the only place that knows which
    concrete class implements each interface.
    """
    if registry is None:
        registry = Registry.default()
    client   = httpx.AsyncClient(transport=transport)
    conn     = None

    try:
        # --- Wire the dependency graph bottom-up ---
        if settings.backend == "postgres":
            try:
                conn = psycopg2.connect(settings.database_url)
            except psycopg2.Error as exc:
                raise StorageError(f"Could not connect to PostgreSQL: {exc}") from exc
            storage = PostgresBlobStorage(conn, settings.bucket, timeout=settings.storage_timeout)
            storage.create_table()
        elif settings.backend == "local":
            storage = LocalBlobStorage(settings.local_root, settings.bucket)
        else:
            storage = GCSBlobStorage(gcs.Client(), settings.bucket, timeout=settings.storage_timeout)

        publisher = SnapshotPublisher(storage, settings.object_key, write_mode=settings.write_mode)
        service   = CollectApplicationService(
            resolver  = _build_resolver(settings, client, registry),
            publisher = publisher,
        )

        # --- Execute ---
        result = await service.execute()

        # --- Report ---
        if result.succeeded:
            log.info(
                "✅ Success | %d entries | %d misses | %.1fs | %s",
                result.entries,
                result.misses,
                result.elapsed_secs,
                result.object_key,
            )
        else:
            log.error("❌ Failed | error: %s", result.error)
        return result

    finally:
        # Always clean up connections, even if an exception occurred
        await client.aclose()
        if conn is not None:
            conn.close()


async def dry_run(
    settings:  Settings,
    registry:  Registry | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Snapshot:
    """Resolve without touching storage."""
    if registry is None:
        registry = Registry.default()
    async with httpx.AsyncClient(transport=transport) as client:
        return await _build_resolver(settings, client, registry).resolve()


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def handle_pubsub(event, context) -> None:
    """
    Triggered from a message on a Cloud Pub/Sub topic.

    The event payload is not inspected; every message means "run now".
    """
    settings = Settings.from_env()
    _setup_logging(settings.log_level)
    log.info("Triggered by Pub/Sub event %s", getattr(context, "event_id", "?"))

    result = asyncio.run(build_and_run(settings))
    if not result.succeeded:
        raise result.error


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Publish the latest release version of every tracked agent and OpenTelemetry SDK"
    )
    parser.add_argument("--backend", choices=BACKENDS, help="Storage backend (default: $STORAGE_BACKEND or gcs)")
    parser.add_argument(
        "--auto-mode",
        choices=[m.value for m in AutoVersionMode],
        help="Source of auto_latest_version (default: $AUTO_VERSION_MODE or mirror)",
    )
    parser.add_argument(
        "--write-mode",
        choices=[m.value for m in WriteMode],
        help="How the published object is replaced (default: $WRITE_MODE or overwrite)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the document instead of publishing it (VERSIONS_BUCKET not required)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    try:
        settings = Settings.from_env(require_bucket=not args.dry_run).with_overrides(
            backend    = args.backend,
            auto_mode  = AutoVersionMode(args.auto_mode) if args.auto_mode else None,
            write_mode = WriteMode(args.write_mode) if args.write_mode else None,
        )
    except ConfigError as exc:
        _setup_logging()
        log.error("%s", exc)
        return 1

    _setup_logging(settings.log_level)

    if args.dry_run:
        try:
            snapshot = asyncio.run(dry_run(settings))
        except VersionCollectorError as exc:
            log.error("Dry run failed: %s", exc)
            return 1
        sys.stdout.write(snapshot.to_json().decode("utf-8") + "\n")
        return 0

    try:
        result = asyncio.run(build_and_run(settings))
    except VersionCollectorError as exc:
        log.error("Could not set up the run: %s", exc)
        return 1
    return 0 if result.succeeded else 1


if __name__ == "__main__":
    sys.exit(main())
