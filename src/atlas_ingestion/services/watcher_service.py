"""Directory watching that turns file events into document ingestion."""

import asyncio
import contextlib
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

from watchfiles import Change, awatch

from atlas_ingestion.config import WatcherSettings
from atlas_ingestion.database.connection import Database
from atlas_ingestion.models.document import DocumentStatus
from atlas_ingestion.repositories.document_repository import DocumentRepository
from atlas_ingestion.services.ingestion_service import IngestionCoordinator
from atlas_ingestion.services.parser_service import detect_file_type, is_file_supported
from atlas_ingestion.utils.errors import NotFoundError
from atlas_ingestion.utils.logging import get_logger
from atlas_ingestion.utils.tasks import BackgroundTaskRunner

logger = get_logger("watcher_service")

# Batching window of the underlying watchfiles loop, in milliseconds
AWATCH_DEBOUNCE_MS = 100


class Debouncer:
    """
    Per-key trailing-edge debounce.

    Each key owns at most one pending timer. Scheduling a key again cancels
    its timer and starts a new one; the action runs only after ``delay``
    seconds without another schedule for that key.
    """

    def __init__(self, delay: float, on_fire: Callable[[str, Awaitable[None]], None]):
        """
        Args:
            delay: Quiet period in seconds
            on_fire: Receives the key and the action coroutine once the timer expires
        """
        self.delay = delay
        self._on_fire = on_fire
        self._timers: Dict[str, asyncio.Task] = {}

    def schedule(self, key: str, action: Callable[[], Awaitable[None]]) -> None:
        previous = self._timers.pop(key, None)
        if previous is not None:
            previous.cancel()
        self._timers[key] = asyncio.create_task(self._wait(key, action), name=f"debounce:{key}")

    async def _wait(self, key: str, action: Callable[[], Awaitable[None]]) -> None:
        await asyncio.sleep(self.delay)
        if self._timers.get(key) is asyncio.current_task():
            del self._timers[key]
        try:
            self._on_fire(key, action())
        except RuntimeError as e:
            logger.warning(f"Dropped debounced event for {key}: {e}")

    @property
    def pending(self) -> List[str]:
        return list(self._timers)

    def cancel_all(self) -> int:
        """Cancel every pending timer. Returns how many were cancelled."""
        timers = list(self._timers.values())
        self._timers.clear()
        for timer in timers:
            timer.cancel()
        return len(timers)


@dataclass
class WatcherState:
    """Everything owned by one project's watcher."""

    project_id: str
    path: Path
    debouncer: Debouncer
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None


class DirectoryWatcher:
    """
    Watches project directories and feeds file events into ingestion.

    At most one watcher runs per project. Events are filtered, debounced per
    file path, and acted on only once the file has stopped changing.
    """

    def __init__(
        self,
        database: Database,
        ingestion: IngestionCoordinator,
        tasks: BackgroundTaskRunner,
        settings: Optional[WatcherSettings] = None,
    ):
        self.database = database
        self.ingestion = ingestion
        self.tasks = tasks
        self.settings = settings or WatcherSettings()
        self._watchers: Dict[str, WatcherState] = {}
        self._path_locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._path_lock_users: Dict[Tuple[str, str], int] = {}

    # ------------------------------------------------------------- lifecycle

    async def watch_project_directory(self, project_id: str, path: str) -> WatcherState:
        """
        Start watching ``path`` for a project, replacing any existing watcher.

        Raises:
            NotFoundError: If the directory does not exist
        """
        if project_id in self._watchers:
            await self.stop_watching(project_id)

        root = Path(path).resolve()
        if not root.is_dir():
            raise NotFoundError("Directory", str(root))

        def _fire(key: str, action: Awaitable[None]) -> None:
            self.tasks.spawn(f"watch:{project_id}:{key}", action)

        state = WatcherState(
            project_id=project_id,
            path=root,
            debouncer=Debouncer(self.settings.debounce_delay, _fire),
        )
        state.task = asyncio.create_task(self._watch_loop(state), name=f"watcher:{project_id}")
        self._watchers[project_id] = state
        logger.info(f"Watching directory for project {project_id}: {root}")
        return state

    async def stop_watching(self, project_id: str) -> bool:
        """Stop a project's watcher and cancel its pending timers. Returns False if none ran."""
        state = self._watchers.pop(project_id, None)
        if state is None:
            return False

        cancelled = state.debouncer.cancel_all()
        state.stop_event.set()
        if state.task is not None and not state.task.done():
            state.task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await state.task

        logger.info(
            f"Stopped watching project {project_id} ({cancelled} pending event(s) cancelled)"
        )
        return True

    async def stop_all(self) -> None:
        for project_id in list(self._watchers):
            await self.stop_watching(project_id)

    def active_watchers(self) -> List[str]:
        return list(self._watchers)

    def get_state(self, project_id: str) -> Optional[WatcherState]:
        return self._watchers.get(project_id)

    # -------------------------------------------------------------- filtering

    def should_process(self, root: Path, path: Path) -> bool:
        """Whether a file under ``root`` is eligible: no dotfile parts, within depth, supported type."""
        try:
            relative = path.relative_to(root)
        except ValueError:
            return False

        if any(part.startswith(".") for part in relative.parts):
            return False
        # Parts beyond the file name are directories below the root
        if len(relative.parts) - 1 > self.settings.max_depth:
            return False
        return is_file_supported(path)

    def _scan_existing(self, root: Path) -> List[Path]:
        found = []
        for dirpath, dirnames, filenames in os.walk(root):
            current = Path(dirpath)
            depth = len(current.relative_to(root).parts)
            dirnames[:] = [
                d for d in dirnames if not d.startswith(".") and depth < self.settings.max_depth
            ]
            for name in filenames:
                file_path = current / name
                if self.should_process(root, file_path):
                    found.append(file_path)
        return sorted(found)

    # ------------------------------------------------------------ event loop

    async def _watch_loop(self, state: WatcherState) -> None:
        root = state.path

        def _filter(change: Change, raw_path: str) -> bool:
            return change != Change.deleted and self.should_process(root, Path(raw_path))

        try:
            if self.settings.scan_existing:
                existing = await asyncio.to_thread(self._scan_existing, root)
                logger.info(f"Found {len(existing)} existing file(s) under {root}")
                for file_path in existing:
                    self.handle_event(state, Change.added, file_path)

            async for changes in awatch(
                root,
                watch_filter=_filter,
                debounce=AWATCH_DEBOUNCE_MS,
                stop_event=state.stop_event,
                recursive=True,
                ignore_permission_denied=True,
            ):
                for change, raw_path in changes:
                    self.handle_event(state, change, Path(raw_path))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Watcher for project {state.project_id} stopped: {e}", exc_info=True)

    def handle_event(self, state: WatcherState, change: Change, path: Path) -> bool:
        """
        Debounce one filesystem event. Returns False when the event is ignored.

        The latest event for a path decides whether the coalesced action is an
        add or a change.
        """
        if change == Change.deleted or not self.should_process(state.path, path):
            return False

        project_id = state.project_id
        state.debouncer.schedule(str(path), lambda: self._process_file(project_id, path, change))
        return True

    async def _process_file(self, project_id: str, path: Path, change: Change) -> None:
        if not await self._wait_until_stable(path):
            logger.debug(f"File disappeared before it settled: {path}")
            return

        if change == Change.added:
            await self.handle_add(project_id, path)
        else:
            await self.handle_change(project_id, path)

    # ---------------------------------------------------------------- settle

    @staticmethod
    def _stat(path: Path) -> Optional[Tuple[int, float]]:
        try:
            stat = path.stat()
        except OSError:
            return None
        return stat.st_size, stat.st_mtime

    async def _wait_until_stable(self, path: Path) -> bool:
        """Wait until (size, mtime) stays unchanged for the stability threshold."""
        loop = asyncio.get_running_loop()
        last = await asyncio.to_thread(self._stat, path)
        if last is None:
            return False

        stable_since = loop.time()
        while loop.time() - stable_since < self.settings.stability_threshold:
            await asyncio.sleep(self.settings.poll_interval)
            current = await asyncio.to_thread(self._stat, path)
            if current is None:
                return False
            if current != last:
                last = current
                stable_since = loop.time()
        return True

    # -------------------------------------------------------------- handlers

    @contextlib.asynccontextmanager
    async def _path_lock(self, project_id: str, file_path: str) -> AsyncIterator[None]:
        """Serialize add/change handling of one file within a project."""
        key = (project_id, file_path)
        lock = self._path_locks.setdefault(key, asyncio.Lock())
        self._path_lock_users[key] = self._path_lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._path_lock_users[key] -= 1
            if not self._path_lock_users[key]:
                del self._path_lock_users[key]
                del self._path_locks[key]

    async def handle_add(self, project_id: str, path: Path) -> Optional[str]:
        """
        Create and ingest a document for a new file.

        Returns:
            The new document ID, or None when the path is already tracked
        """
        async with self._path_lock(project_id, str(path)):
            return await self._add_document(project_id, path)

    async def handle_change(self, project_id: str, path: Path) -> Optional[str]:
        """Re-ingest a tracked file, or treat an untracked one as new."""
        async with self._path_lock(project_id, str(path)):
            return await self._reingest_document(project_id, path)

    async def _add_document(self, project_id: str, path: Path) -> Optional[str]:
        file_path = str(path)
        stat = await asyncio.to_thread(self._stat, path)

        async with self.database.session() as session:
            repo = DocumentRepository(session)
            if await repo.get_by_file_path(project_id, file_path) is not None:
                logger.debug(f"File already tracked, skipping: {file_path}")
                return None

            document = await repo.create(
                project_id=project_id,
                name=path.name,
                file_path=file_path,
                file_type=detect_file_type(path).value,
                file_size=stat[0] if stat else None,
                status=DocumentStatus.PENDING.value,
                metadata_json={},
            )
            document_id = document.id

        logger.info(f"New file detected, created document {document_id}: {file_path}")
        await self.ingestion.ingest_document(document_id)
        return document_id

    async def _reingest_document(self, project_id: str, path: Path) -> Optional[str]:
        file_path = str(path)
        stat = await asyncio.to_thread(self._stat, path)

        async with self.database.session() as session:
            repo = DocumentRepository(session)
            document = await repo.get_by_file_path(project_id, file_path)
            if document is not None:
                document_id = document.id
                await repo.update(
                    document_id,
                    status=DocumentStatus.PENDING.value,
                    error_message=None,
                    file_size=stat[0] if stat else document.file_size,
                )

        if document is None:
            return await self._add_document(project_id, path)

        logger.info(f"File changed, re-ingesting document {document_id}: {file_path}")
        await self.ingestion.ingest_document(document_id)
        return document_id
