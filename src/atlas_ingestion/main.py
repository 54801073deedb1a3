"""Command-line entry point.

Usage:
    python -m atlas_ingestion watch --project docs ./docs
    python -m atlas_ingestion embed --project docs
    python -m atlas_ingestion rebuild --project docs
    python -m atlas_ingestion stats --project docs
"""

import argparse
import asyncio
import contextlib
import signal
import sys
from pathlib import Path
from typing import List, Optional

from atlas_ingestion.config import get_settings
from atlas_ingestion.repositories.project_repository import ProjectRepository
from atlas_ingestion.service import AtlasIngestionService
from atlas_ingestion.utils.errors import IngestionException
from atlas_ingestion.utils.logging import get_logger, log_error, setup_logging

logger = get_logger("main")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="atlas-ingestion",
        description="Ingest documents into per-project vector indexes",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    watch = subparsers.add_parser("watch", help="Watch a directory and ingest its files")
    watch.add_argument("path", help="Directory to watch")
    watch.add_argument("--project", required=True, help="Project name (created if missing)")

    for name, help_text in (
        ("embed", "Embed every chunk of a project that has no embedding yet"),
        ("rebuild", "Rebuild a project's vector index from stored embeddings"),
        ("stats", "Print a project's vector index statistics"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--project", required=True, help="Project name")

    return parser


async def resolve_project(
    service: AtlasIngestionService, name: str, watch_path: Optional[str] = None, create: bool = False
) -> str:
    """Find a project by name, optionally creating it. Returns its ID."""
    async with service.database.session() as session:
        repo = ProjectRepository(session)
        project = await repo.get_by_name(name)
        if project is None:
            if not create:
                raise IngestionException(f"Project not found: {name}", status_code=404)
            project = await repo.create_project(name=name, watch_path=watch_path)
            logger.info(f"Created project {name} ({project.id})")
        return project.id


async def wait_for_shutdown_signal() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on Windows event loops; Ctrl+C still raises KeyboardInterrupt
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)
    await stop.wait()


async def run(args: argparse.Namespace) -> int:
    async with AtlasIngestionService(get_settings()) as service:
        if args.command == "watch":
            path = str(Path(args.path).resolve())
            project_id = await resolve_project(service, args.project, watch_path=path, create=True)
            await service.watch_project_directory(project_id, path)
            logger.info("Watching for changes, press Ctrl+C to stop")
            await wait_for_shutdown_signal()
            return 0

        project_id = await resolve_project(service, args.project)

        if args.command == "embed":
            result = await service.generate_embeddings_for_project(project_id)
            print(
                f"{result.outcome.value}: {result.completed} embedded, "
                f"{result.failed} failed of {result.total}"
            )
        elif args.command == "rebuild":
            count = await service.rebuild_vector_index_from_db(project_id)
            print(f"Rebuilt index with {count} vectors")
        elif args.command == "stats":
            stats = await service.get_project_index_stats(project_id)
            print(stats.model_dump_json(indent=2))
        return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130
    except IngestionException as e:
        log_error(e, {"command": args.command})
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
