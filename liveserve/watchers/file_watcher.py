"""
File Watcher for the live-reload server

This module turns raw watchdog notifications for a watch root into debounced
ChangeEvents, optionally runs the on-change command, and publishes each
confirmed change on the Change Bus.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from liveserve.live.change_bus import ChangeBus, ChangeEvent
from liveserve.utils.command_runner import CommandRunner


@dataclass
class WatchConfig:
    """Configuration for one watch root."""

    root: Path
    command: str | None = None
    recursive: bool = True

    # How often the loop checks that the observer thread is still alive
    health_check_interval: float = 1.0

    def __post_init__(self) -> None:
        if isinstance(self.root, str):
            self.root = Path(self.root)

        if self.health_check_interval <= 0:
            raise ValueError("Health check interval must be positive")


@dataclass
class RawChange:
    """A notification as reported by the watch primitive, before debouncing."""

    name: str | None
    event_type: str
    timestamp: float


class DebounceState:
    """
    Last seen modification time per file identity.

    Only the owning watcher loop touches this, and never across an await,
    so no locking is needed.
    """

    def __init__(self) -> None:
        self._mtimes: dict[tuple[str, str], int] = {}

    def record(self, root: Path, name: str, mtime: int) -> bool:
        """
        Store the observed mtime and report whether it is new.

        Returns:
            True if the change should be forwarded, False for a duplicate
        """
        key = (str(root), name)
        previous = self._mtimes.get(key)
        self._mtimes[key] = mtime
        return previous != mtime

    def __len__(self) -> int:
        return len(self._mtimes)


class FileWatchEventHandler(FileSystemEventHandler):  # type: ignore[misc]
    """Forwards watchdog events from the observer thread into the watcher's loop."""

    def __init__(self, watcher: "FileWatcher"):
        super().__init__()
        self.watcher = watcher
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle file modification events."""
        if not event.is_directory:
            self._handle_file_event(os.fsdecode(event.src_path), "modified")

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle file creation events."""
        if not event.is_directory:
            self._handle_file_event(os.fsdecode(event.src_path), "created")

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle file move events, reported under the new name."""
        if not event.is_directory:
            self._handle_file_event(os.fsdecode(event.dest_path or event.src_path), "moved")

    def _handle_file_event(self, src_path: str, event_type: str) -> None:
        try:
            name = self.watcher.relative_name(src_path) if src_path else None
            if name is None and src_path:
                # Outside the watched file (sibling of a single-file root)
                return

            self.watcher.notify(RawChange(name=name, event_type=event_type, timestamp=time.time()))
        except Exception as e:
            self.logger.error(f"Error handling file event: {e}")


class FileWatcher:
    """
    Debounced watcher for one watch root.

    changes() yields one ChangeEvent per distinguishable change; run() drives
    it, running the configured command and publishing each change on the bus.
    A watcher cannot be restarted once stopped.
    """

    def __init__(
        self, config: WatchConfig, bus: ChangeBus | None = None, command_runner: CommandRunner | None = None
    ) -> None:
        self.config = config
        self.bus = bus
        self.command_runner = command_runner or CommandRunner()
        self.logger = logging.getLogger(__name__)

        self.root = config.root
        self.is_file_root = self.root.is_file()
        self.watch_directory = self.root.parent if self.is_file_root else self.root

        self.debounce = DebounceState()
        self.loop: asyncio.AbstractEventLoop | None = None
        self.observer: Any = None
        self._raw_events: asyncio.Queue[RawChange | None] = asyncio.Queue()

        self.is_watching = False
        self.stopped = False
        self.start_time: float | None = None
        self.stats = {
            "raw_events": 0,
            "forwarded": 0,
            "suppressed": 0,
            "stat_failures": 0,
        }

    def relative_name(self, src_path: str) -> str | None:
        """Name of a reported path relative to the watch root, None if it is not ours."""
        path = Path(src_path)
        if self.is_file_root:
            return self.root.name if path.name == self.root.name else None

        try:
            return path.relative_to(self.watch_directory).as_posix()
        except ValueError:
            return path.name

    def notify(self, change: RawChange) -> None:
        """Queue a raw notification; callable from any thread."""
        if self.loop is None:
            self.logger.warning("No event loop running, dropping file event")
            return

        self.loop.call_soon_threadsafe(self._raw_events.put_nowait, change)

    def should_forward(self, change: RawChange) -> bool:
        """
        Debounce decision for one raw notification.

        Notifications without a file name, and files whose mtime cannot be
        read, are always forwarded.
        """
        if change.name is None:
            return True

        try:
            mtime = (self.watch_directory / change.name).stat().st_mtime_ns
        except OSError as e:
            self.stats["stat_failures"] += 1
            self.logger.debug(f"Cannot stat {change.name} ({e}), forwarding anyway")
            return True

        if self.debounce.record(self.root, change.name, mtime):
            return True

        self.stats["suppressed"] += 1
        self.logger.debug(f"Duplicate change suppressed: {change.name}")
        return False

    def _start_observer(self) -> None:
        self.observer = Observer()
        self.observer.schedule(
            FileWatchEventHandler(self),
            str(self.watch_directory),
            recursive=self.config.recursive and not self.is_file_root,
        )
        self.observer.start()

    def _stop_observer(self) -> None:
        if self.observer is not None and self.observer.is_alive():
            self.observer.stop()
            self.observer.join(timeout=5.0)

    async def changes(self) -> AsyncIterator[ChangeEvent]:
        """
        Lazily yield debounced changes until stop() is called.

        Raises:
            RuntimeError: If the watcher has already been stopped
        """
        if self.stopped:
            raise RuntimeError(f"Watcher for {self.root} has been stopped")

        self.loop = asyncio.get_running_loop()

        try:
            self._start_observer()
        except Exception as e:
            self.logger.error(f"Failed to watch {self.root}: {e}")
            self._stop_observer()
            self.stopped = True
            return

        self.is_watching = True
        self.start_time = time.time()

        try:
            while True:
                try:
                    change = await asyncio.wait_for(self._raw_events.get(), timeout=self.config.health_check_interval)
                except asyncio.TimeoutError:
                    if not self.observer.is_alive():
                        self.logger.error(f"Watch primitive for {self.root} stopped unexpectedly")
                        break
                    continue

                if change is None:
                    break

                self.stats["raw_events"] += 1
                if not self.should_forward(change):
                    continue

                self.stats["forwarded"] += 1
                yield ChangeEvent(root=self.root, name=change.name, timestamp=change.timestamp)
        finally:
            self.logger.info(f"[live] closing watcher for {self.root}")
            self.is_watching = False
            self.stopped = True
            self._stop_observer()

    async def run(self) -> None:
        """Watch loop: command (if configured), then publish, for every change."""
        if self.stopped:
            # Stopped before the task got to run
            return

        try:
            async for event in self.changes():
                self.logger.info(f"[live] changes detected ({event.describe()})")

                if self.config.command:
                    await self.command_runner.run(self.config.command)

                if self.bus is not None:
                    self.bus.publish(event)
        except Exception as e:
            self.logger.error(f"Watch loop for {self.root} failed: {e}")

    def stop(self) -> None:
        """Ask the watch loop to finish after the current step."""
        if self.stopped:
            return

        self.stopped = True
        if self.loop is not None and not self.loop.is_closed():
            self.loop.call_soon_threadsafe(self._raw_events.put_nowait, None)

    def get_status(self) -> dict[str, Any]:
        """Get current watcher status and statistics."""
        uptime = time.time() - self.start_time if self.start_time else 0

        return {
            "root": str(self.root),
            "is_watching": self.is_watching,
            "uptime_seconds": uptime,
            "tracked_files": len(self.debounce),
            "statistics": self.stats.copy(),
        }


def start_watchers(
    roots: list[Path], bus: ChangeBus, command: str | None = None
) -> list[tuple[FileWatcher, "asyncio.Task[None]"]]:
    """
    Start one independent watch task per root on the running loop.

    Args:
        roots: Files or directories to watch
        bus: Bus every confirmed change is published on
        command: Optional command to run before each publish

    Returns:
        (watcher, task) pairs, in the order of roots
    """
    runner = CommandRunner()
    started = []
    for root in roots:
        watcher = FileWatcher(WatchConfig(root=root, command=command), bus, runner)
        task = asyncio.create_task(watcher.run(), name=f"watch:{root}")
        started.append((watcher, task))
    return started
