"""Cartridge watcher that syncs local changes to an instance over WebDAV.

Filesystem events are collected into a pending upload set and a pending delete
set. Each event restarts a short debounce timer; when it fires, one flush zips
every surviving upload into a single archive, deploys it with a server-side
unzip, then deletes the remote copies of removed files.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from watchfiles import Change, awatch

from b2c_tooling.archive import ArchiveTransport, build_archive, deploy_archive
from b2c_tooling.cartridges import CartridgeMapping, find_cartridges, resolve_cartridge_path
from b2c_tooling.errors import WatchError
from b2c_tooling.settings import WatchSettings
from b2c_tooling.versions import get_active_code_version

if TYPE_CHECKING:
    from b2c_tooling.instance import B2CInstance

logger = logging.getLogger(__name__)

FilesCallback = Callable[[list[str]], Any]
ErrorCallback = Callable[[Exception], Any]


class ChangeKind(str, Enum):
    """Normalized filesystem change reported to the batcher."""

    ADDED = "added"
    CHANGED = "changed"
    REMOVED = "removed"


CHANGE_KINDS = {
    Change.added: ChangeKind.ADDED,
    Change.modified: ChangeKind.CHANGED,
    Change.deleted: ChangeKind.REMOVED,
}


@dataclass
class PendingChanges:
    """Absolute paths waiting for the next flush.

    A path may be in both sets; the flush decides by checking the disk.
    """

    to_upload: set[Path] = field(default_factory=set)
    to_delete: set[Path] = field(default_factory=set)

    def take(self) -> tuple[set[Path], set[Path]]:
        """Return both sets and leave empty ones in their place."""
        uploads, deletes = self.to_upload, self.to_delete
        self.to_upload, self.to_delete = set(), set()
        return uploads, deletes

    @property
    def empty(self) -> bool:
        return not self.to_upload and not self.to_delete


@dataclass
class FlushBatch:
    """Resolved work for one flush."""

    uploads: list[tuple[Path, str]] = field(default_factory=list)
    deletes: list[str] = field(default_factory=list)

    @property
    def upload_destinations(self) -> set[str]:
        return {dest for _, dest in self.uploads}


class ChangeBatcher:
    """Collect change events and trigger one flush per quiet period."""

    def __init__(
        self,
        pending: PendingChanges,
        flush: Callable[[], Awaitable[None]],
        debounce: float = 0.1,
    ):
        self.pending = pending
        self.debounce = debounce
        self._flush = flush
        self._timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    def on_event(self, kind: ChangeKind, path: Path | str) -> None:
        path = Path(path)
        if kind is ChangeKind.REMOVED:
            self.pending.to_delete.add(path)
        else:
            self.pending.to_upload.add(path)
        self._schedule()

    @property
    def scheduled(self) -> bool:
        return self._timer is not None

    def cancel(self) -> None:
        """Drop a scheduled flush. Already running flushes are left alone."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def drain(self) -> None:
        """Wait for flushes that have already started."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _schedule(self) -> None:
        self.cancel()
        self._timer = asyncio.get_running_loop().call_later(self.debounce, self._fire)

    def _fire(self) -> None:
        self._timer = None
        task = asyncio.create_task(self._flush())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


class SyncEngine:
    """Apply pending changes to ``Cartridges/<code version>`` on the instance.

    Flushes are serialized. After a failed upload every flush is skipped until
    ``error_cooldown`` seconds have passed; skipped changes stay pending.
    """

    def __init__(
        self,
        webdav: ArchiveTransport,
        code_version: str,
        cartridges: list[CartridgeMapping],
        pending: PendingChanges,
        *,
        on_upload: FilesCallback | None = None,
        on_delete: FilesCallback | None = None,
        on_error: ErrorCallback | None = None,
        error_cooldown: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.webdav = webdav
        self.location = f"Cartridges/{code_version}"
        self.cartridges = cartridges
        self.pending = pending
        self.on_upload = on_upload
        self.on_delete = on_delete
        self.on_error = on_error
        self.error_cooldown = error_cooldown
        self.last_error_time: float | None = None
        self._clock = clock
        self._lock = asyncio.Lock()
        self._closed = False
        self._callback_tasks: set[asyncio.Future[Any]] = set()

    def close(self) -> None:
        """Refuse further flushes. A flush already in progress completes."""
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def rate_limited(self, now: float) -> bool:
        return self.last_error_time is not None and now - self.last_error_time < self.error_cooldown

    async def flush(self) -> None:
        async with self._lock:
            if self._closed:
                return

            if self.rate_limited(self._clock()):
                logger.debug("Rate limiting after recent error, waiting...")
                return

            uploads, deletes = self.pending.take()
            batch = self.build_batch(uploads, deletes)

            if batch.uploads:
                uploaded = await self._upload(batch.uploads)
                if uploaded:
                    self.notify(self.on_upload, uploaded)

            if batch.deletes:
                await self._delete(batch.deletes)
                self.notify(self.on_delete, batch.deletes)

    def build_batch(self, uploads: Iterable[Path], deletes: Iterable[Path]) -> FlushBatch:
        """Resolve absolute paths to remote destinations.

        Uploads must still be regular files on disk. A delete is dropped when
        the same destination is being uploaded in this batch.
        """
        batch = FlushBatch()

        for path in sorted(uploads):
            dest = resolve_cartridge_path(path, self.cartridges)
            if dest is None:
                continue
            if not path.exists():
                logger.debug("Skipping missing file", extra={"file": str(path)})
                continue
            if path.is_file():
                batch.uploads.append((path, dest))

        upload_destinations = batch.upload_destinations
        for path in sorted(deletes):
            dest = resolve_cartridge_path(path, self.cartridges)
            if dest is None or dest in upload_destinations or dest in batch.deletes:
                continue
            batch.deletes.append(dest)

        return batch

    async def _upload(self, files: list[tuple[Path, str]]) -> list[str]:
        upload_path = f"{self.location}/_upload-{int(time.time() * 1000)}.zip"

        try:
            data, written = await asyncio.to_thread(build_archive, files)
            if not written:
                return []
            await deploy_archive(self.webdav, upload_path, data)
        except Exception as exc:
            self.last_error_time = self._clock()
            logger.error("Upload error: %s", exc, extra={"upload_path": upload_path})
            self.notify(self.on_error, exc)
            return []

        logger.debug("Uploaded %d file(s)", len(written), extra={"file_count": len(written)})
        return written

    async def _delete(self, destinations: list[str]) -> None:
        logger.debug("Deleting %d file(s)", len(destinations), extra={"file_count": len(destinations)})

        for dest in destinations:
            remote_path = f"{self.location}/{dest}"
            try:
                await self.webdav.delete(remote_path)
                logger.info("Deleted: %s", remote_path, extra={"file": remote_path})
            except Exception as exc:
                logger.debug("Failed to delete %s", remote_path, extra={"file": remote_path, "error": str(exc)})

    def notify(self, callback: Callable[..., Any] | None, *args: Any) -> None:
        """Invoke a caller callback without waiting on it."""
        if callback is None:
            return

        try:
            result = callback(*args)
        except Exception:
            logger.exception("Watch callback failed")
            return

        if inspect.isawaitable(result):
            future = asyncio.ensure_future(result)
            self._callback_tasks.add(future)
            future.add_done_callback(self._callback_done)

    def _callback_done(self, future: asyncio.Future[Any]) -> None:
        self._callback_tasks.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.error("Watch callback failed", exc_info=future.exception())


class CartridgeWatcher:
    """Feed ``watchfiles`` events for cartridge directories into a batcher."""

    def __init__(
        self,
        cartridges: list[CartridgeMapping],
        batcher: ChangeBatcher,
        *,
        on_error: ErrorCallback | None = None,
        stop_event: asyncio.Event | None = None,
        retry_delay: float = 1.0,
        max_retries: int = 5,
        **watch_options: Any,
    ):
        self.cartridges = cartridges
        self.batcher = batcher
        self.on_error = on_error
        self.stop_event = stop_event or asyncio.Event()
        self.retry_delay = retry_delay
        self.max_retries = max_retries
        self.watch_options = watch_options
        self.started: asyncio.Future[None] = asyncio.get_running_loop().create_future()

    def mark_started(self) -> None:
        if not self.started.done():
            self.started.set_result(None)

    async def wait_started(self, timeout: float) -> None:
        """Wait for an early startup failure; no failure within ``timeout`` counts as started.

        Raises:
            WatchError: The first watch attempt failed.
        """
        try:
            await asyncio.wait_for(asyncio.shield(self.started), timeout)
        except asyncio.TimeoutError:
            self.mark_started()

    async def watch(self) -> None:
        """Watch until the stop event is set.

        A failure before the watcher has started ends the watch and is
        reported through :attr:`started`. Later errors are passed to
        ``on_error`` and the watcher restarts, giving up after
        ``max_retries`` consecutive failures.
        """
        paths = [cartridge.src for cartridge in self.cartridges]
        failures = 0

        while not self.stop_event.is_set():
            try:
                async for changes in awatch(*paths, stop_event=self.stop_event, **self.watch_options):
                    self.mark_started()
                    failures = 0
                    for change_type, path_str in changes:
                        self.handle_change(change_type, Path(path_str))
                return
            except Exception as exc:
                if not self.started.done():
                    logger.error("Watcher failed to start", exc_info=exc)
                    self.started.set_exception(WatchError(f"Watcher failed to start: {exc}"))
                    return

                failures += 1
                logger.error("Watcher error", exc_info=exc)
                if failures > self.max_retries:
                    error = WatchError(f"Watcher stopped after {failures} consecutive errors: {exc}")
                    logger.error("%s", error)
                    if self.on_error is not None:
                        self.on_error(error)
                    return
                if self.on_error is not None:
                    self.on_error(exc)

            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self.stop_event.wait(), self.retry_delay)

    def handle_change(self, change_type: Change, path: Path) -> None:
        """Route a single watchfiles change to the batcher."""
        kind = CHANGE_KINDS.get(change_type)
        if kind is None:
            return

        logger.info("File event: %s %s", kind.value, path, extra={"event": kind.value, "path": str(path)})
        self.batcher.on_event(kind, path)


class WatchSession:
    """Handle for a running watch, returned by :func:`watch_cartridges`."""

    def __init__(
        self,
        cartridges: list[CartridgeMapping],
        code_version: str,
        watcher: CartridgeWatcher,
        engine: SyncEngine,
        *,
        stop_timeout: float = 5.0,
    ):
        self.cartridges = cartridges
        self.code_version = code_version
        self.watcher = watcher
        self.engine = engine
        self.stop_timeout = stop_timeout
        self._task = asyncio.create_task(watcher.watch())
        self._stopped = False

    @property
    def batcher(self) -> ChangeBatcher:
        return self.watcher.batcher

    @property
    def stopped(self) -> bool:
        return self._stopped

    async def stop(self) -> None:
        """Close the filesystem watcher and let a running sync finish. Safe to call more than once."""
        if self._stopped:
            return
        self._stopped = True

        self.watcher.stop_event.set()
        self.batcher.cancel()
        self.engine.close()

        try:
            await asyncio.wait_for(self._task, self.stop_timeout)
        except asyncio.TimeoutError:
            logger.warning("Watcher did not stop in time and was cancelled")

        try:
            await asyncio.wait_for(self.batcher.drain(), self.stop_timeout)
        except asyncio.TimeoutError:
            logger.warning("Sync still in progress after %.1fs; abandoning it", self.stop_timeout)
        logger.debug("Watcher stopped")


async def resolve_code_version(instance: B2CInstance) -> str:
    """Configured code version, or the instance's active one."""
    if instance.config.code_version:
        return instance.config.code_version

    logger.debug("No code version specified, getting active version...")
    active = await get_active_code_version(instance)
    if active is None or not active.id:
        raise WatchError("No code version specified and no active code version found")

    instance.config.code_version = active.id
    return active.id


async def watch_cartridges(
    instance: B2CInstance,
    directory: Path | str,
    *,
    include: Iterable[str] | None = None,
    exclude: Iterable[str] | None = None,
    debounce_time: int | None = None,
    error_cooldown: int | None = None,
    on_upload: FilesCallback | None = None,
    on_delete: FilesCallback | None = None,
    on_error: ErrorCallback | None = None,
    finder: Callable[..., list[CartridgeMapping]] = find_cartridges,
    startup_timeout: float = 0.25,
    **watch_options: Any,
) -> WatchSession:
    """Watch cartridge directories and sync their changes to ``instance``.

    ``debounce_time`` and ``error_cooldown`` are milliseconds and default to
    the ``SFCC_UPLOAD_*`` settings. Extra keyword arguments go to
    ``watchfiles.awatch`` (e.g. ``force_polling``).

    Raises:
        WatchError: No code version could be determined, no cartridges were
            found, a cartridge directory does not exist, or the file watcher
            failed to start.
    """
    settings = WatchSettings()
    effective = WatchSettings(
        debounce_time=debounce_time if debounce_time is not None else settings.debounce_time,
        error_cooldown=error_cooldown if error_cooldown is not None else settings.error_cooldown,
    )

    code_version = await resolve_code_version(instance)

    logger.debug("Finding cartridges to watch...", extra={"directory": str(directory)})
    cartridges = finder(directory, include=include, exclude=exclude)
    if not cartridges:
        raise WatchError(f"No cartridges found in {directory}")

    for cartridge in cartridges:
        if not Path(cartridge.src).is_dir():
            raise WatchError(f"Cartridge directory does not exist: {cartridge.src}")
        logger.info("  %s", cartridge.name, extra={"cartridge": cartridge.name, "path": str(cartridge.src)})

    pending = PendingChanges()
    engine = SyncEngine(
        instance.webdav,
        code_version,
        cartridges,
        pending,
        on_upload=on_upload,
        on_delete=on_delete,
        on_error=on_error,
        error_cooldown=effective.error_cooldown / 1000,
    )
    batcher = ChangeBatcher(pending, engine.flush, debounce=effective.debounce_time / 1000)
    watcher = CartridgeWatcher(
        cartridges,
        batcher,
        on_error=functools.partial(engine.notify, on_error),
        **watch_options,
    )

    logger.debug(
        "Watching for changes...",
        extra={"hostname": instance.config.hostname, "code_version": code_version},
    )
    session = WatchSession(cartridges, code_version, watcher, engine)
    try:
        await watcher.wait_started(startup_timeout)
    except WatchError:
        await session.stop()
        raise
    return session
