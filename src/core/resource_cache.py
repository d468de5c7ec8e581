"""
Media Resource Cache - reference-counted pool of decodable handles.

One cache instance is owned by the application and shared by the preview
and export drivers. Every entry records which owners hold it; a handle is
closed only when its last owner lets go, so an entry in use by one driver is
never evicted by the other.

All loading happens in background threads; every wait is bounded by a
timeout and a failed or slow load only makes the item absent, never raises.
"""
from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional
import logging
import threading

from config import (
    RESOURCE_LOAD_TIMEOUT,
    RESOURCE_LOADER_WORKERS,
    PRELOAD_WINDOW,
    PRELOAD_PARALLEL_CAP,
)
from core.media_handles import MediaHandle
from models.media import MediaKind

logger = logging.getLogger(__name__)

# Owner tags
PREVIEW = "preview"
EXPORT = "export"


@dataclass
class _Entry:
    handle: MediaHandle
    owners: set[str] = field(default_factory=set)


class MediaResourceCache:
    """
    Memoized, owner-counted handle pool keyed by timeline item id.

    Args:
        loader: Callable creating a handle for an item (runs on a worker thread)
        timeout: Default bound for acquire() waits, in seconds
        max_workers: Loader thread count
    """

    def __init__(
        self,
        loader: Callable[[object], Optional[MediaHandle]],
        timeout: float = RESOURCE_LOAD_TIMEOUT,
        max_workers: int = RESOURCE_LOADER_WORKERS,
    ):
        self._loader = loader
        self.timeout = timeout
        self._lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}
        self._pending: dict[str, Future] = {}
        self._pending_owners: dict[str, set[str]] = {}
        self._pending_kinds: dict[str, MediaKind] = {}
        self._failed: dict[str, str] = {}
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="media-loader")
        self._is_running = True

    # -- Acquisition -------------------------------------------------------

    def acquire(self, item, owner: str, timeout: Optional[float] = None) -> Optional[MediaHandle]:
        """Get the handle for *item*, loading it if needed.

        Returns None when the item has no resource (effects), failed to load,
        or did not become ready within *timeout*. A timed-out load keeps
        running and is picked up by a later call.
        """
        if item.is_effect or not self._is_running:
            return None

        item_id = item.uuid
        with self._lock:
            entry = self._entries.get(item_id)
            if entry is not None:
                entry.owners.add(owner)
                return entry.handle
            if item_id in self._failed:
                return None
            future, is_new = self._submit_locked(item, owner)
        if is_new:
            self._watch(item_id, future)

        wait = self.timeout if timeout is None else timeout
        try:
            future.result(timeout=wait)
        except FutureTimeout:
            # A zero wait is a poll, not a stall
            log = logger.debug if wait == 0 else logger.warning
            log("Resource for item %s not ready after %.1fs, skipping for now", item_id, wait)
            return None
        except Exception:
            # Failure is recorded by _settle
            pass

        self._settle(item_id, future)
        with self._lock:
            entry = self._entries.get(item_id)
            if entry is None:
                return None
            entry.owners.add(owner)
            return entry.handle

    def peek(self, item_id: str) -> Optional[MediaHandle]:
        """Return a loaded handle without waiting or registering an owner."""
        with self._lock:
            entry = self._entries.get(item_id)
            return entry.handle if entry is not None else None

    def preload(self, items: Iterable, time: float, owner: str, window: float = PRELOAD_WINDOW) -> int:
        """Start background loads for items near *time* without waiting.

        Video and audio loads are capped at PRELOAD_PARALLEL_CAP in flight.

        Returns:
            Number of loads started
        """
        started: list[tuple[str, Future]] = []
        with self._lock:
            if not self._is_running:
                return 0
            heavy_in_flight = sum(
                1 for kind in self._pending_kinds.values()
                if kind in (MediaKind.VIDEO, MediaKind.AUDIO)
            )
            upcoming = sorted(
                (item for item in items
                 if not item.is_effect
                 and item.end_time >= time - window
                 and item.start_time <= time + window),
                key=lambda item: (abs(item.start_time - time), item.track),
            )
            for item in upcoming:
                item_id = item.uuid
                if item_id in self._entries:
                    self._entries[item_id].owners.add(owner)
                    continue
                if item_id in self._pending:
                    self._pending_owners[item_id].add(owner)
                    continue
                if item_id in self._failed:
                    continue
                if item.media.kind in (MediaKind.VIDEO, MediaKind.AUDIO):
                    if heavy_in_flight >= PRELOAD_PARALLEL_CAP:
                        continue
                    heavy_in_flight += 1
                future, _ = self._submit_locked(item, owner)
                started.append((item_id, future))
        for item_id, future in started:
            self._watch(item_id, future)
        return len(started)

    def _submit_locked(self, item, owner: str) -> tuple[Future, bool]:
        item_id = item.uuid
        future = self._pending.get(item_id)
        is_new = future is None
        if is_new:
            future = self._executor.submit(self._loader, item)
            self._pending[item_id] = future
            self._pending_owners[item_id] = set()
            self._pending_kinds[item_id] = item.media.kind
        self._pending_owners[item_id].add(owner)
        return future, is_new

    def _watch(self, item_id: str, future: Future) -> None:
        # Must be called without the lock: the callback runs inline if already done
        future.add_done_callback(lambda f: self._settle(item_id, f))

    def _settle(self, item_id: str, future: Future) -> None:
        """Move a finished load into the entry table (idempotent)."""
        orphan: Optional[MediaHandle] = None
        with self._lock:
            if self._pending.get(item_id) is not future:
                return
            del self._pending[item_id]
            owners = self._pending_owners.pop(item_id, set())
            self._pending_kinds.pop(item_id, None)

            error = future.exception() if not future.cancelled() else None
            if future.cancelled():
                return
            if error is not None:
                self._failed[item_id] = str(error)
                logger.warning("Failed to load resource for item %s: %s", item_id, error)
                return

            handle = future.result()
            if handle is None:
                return
            if owners and self._is_running:
                self._entries[item_id] = _Entry(handle=handle, owners=set(owners))
            else:
                # Everyone let go while it was loading
                orphan = handle
        if orphan is not None:
            self._close(item_id, orphan)

    # -- Release -----------------------------------------------------------

    def release(self, item_id: str, owner: str) -> None:
        """Drop *owner*'s reference; close the handle if nobody else holds it."""
        to_close: Optional[MediaHandle] = None
        with self._lock:
            entry = self._entries.get(item_id)
            if entry is not None:
                entry.owners.discard(owner)
                if not entry.owners:
                    del self._entries[item_id]
                    to_close = entry.handle
            elif item_id in self._pending_owners:
                self._pending_owners[item_id].discard(owner)
        if to_close is not None:
            self._close(item_id, to_close)

    def evict(self, present_ids: Iterable[str], owner: str) -> None:
        """Release *owner*'s references to every id not in *present_ids*."""
        present = set(present_ids)
        with self._lock:
            stale = [
                item_id for item_id, entry in self._entries.items()
                if item_id not in present and owner in entry.owners
            ]
            stale += [
                item_id for item_id, owners in self._pending_owners.items()
                if item_id not in present and owner in owners
            ]
            # Failures are retried once the item comes back
            for item_id in [i for i in self._failed if i not in present]:
                del self._failed[item_id]
        for item_id in stale:
            self.release(item_id, owner)

    def release_owner(self, owner: str) -> None:
        """Drop every reference held by *owner*."""
        with self._lock:
            held = [item_id for item_id, entry in self._entries.items() if owner in entry.owners]
            held += [item_id for item_id, owners in self._pending_owners.items() if owner in owners]
        for item_id in held:
            self.release(item_id, owner)

    def _close(self, item_id: str, handle: MediaHandle) -> None:
        try:
            handle.close()
        except Exception as e:
            logger.warning("Error closing resource for item %s: %s", item_id, e)

    # -- Introspection -----------------------------------------------------

    def owners(self, item_id: str) -> set[str]:
        with self._lock:
            entry = self._entries.get(item_id)
            return set(entry.owners) if entry is not None else set()

    def is_pending(self, item_id: str) -> bool:
        with self._lock:
            return item_id in self._pending

    def failure(self, item_id: str) -> Optional[str]:
        with self._lock:
            return self._failed.get(item_id)

    def __contains__(self, item_id: str) -> bool:
        with self._lock:
            return item_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # -- Shutdown ----------------------------------------------------------

    def clear(self) -> None:
        """Close every handle regardless of owners."""
        with self._lock:
            entries = list(self._entries.items())
            self._entries.clear()
            self._failed.clear()
        for item_id, entry in entries:
            self._close(item_id, entry.handle)

    def shutdown(self) -> None:
        """Cleanup resources"""
        self._is_running = False
        self._executor.shutdown(wait=True, cancel_futures=True)
        self.clear()
