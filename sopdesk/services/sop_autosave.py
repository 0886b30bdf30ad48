"""
SOP editor autosave — a debounced, cancellable write buffer.

Rich-text edits are not written per keystroke.  Each edit lands in a
single pending slot for its node and (re)starts that node's timer; the
write happens once the node has been quiet for ``delay`` seconds.  Rapid
edits therefore produce zero writes until editing pauses, then exactly one.

    buffer = AutosaveBuffer(save_fn, delay=1.5)
    buffer.edit(tenant_id, node_id, "<p>Draft</p>")      # timer starts
    buffer.edit(tenant_id, node_id, "<p>Draft 2</p>")    # timer restarts
    ...1.5 s of silence...                               # one save_fn call

Navigation policy (SOP_AUTOSAVE_ON_NAVIGATE):
    flush    navigate_away() writes the pending edit immediately (default)
    discard  navigate_away() drops it

Dropped edits:
    Errors listed in ``drop_on`` (the node or its document is gone, or the
    document is archived) can never succeed on retry, so the edit is
    dropped instead of being kept pending.

Generations:
    Every edit gets a new generation number.  A timer only saves if its
    generation is still the one in the slot, so a timer that was
    cancelled too late to stop its thread still cannot write stale text.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Callable

from flask import Flask, current_app, has_app_context

logger = logging.getLogger(__name__)

NAVIGATE_POLICIES = ("flush", "discard")

SaveFn = Callable[[int, str, str], object]


@dataclass
class _PendingEdit:
    content: str
    generation: int
    timer: object | None = None
    failed: bool = False


class AutosaveBuffer:
    """One pending edit per (tenant_id, node_id), written after a quiet period.

    Args:
        save_fn: ``save_fn(tenant_id, node_id, content)`` performing the write.
        delay: Quiet period in seconds before the pending edit is written.
        on_navigate: "flush" or "discard" — what navigate_away() does.
        timer_factory: ``threading.Timer``-compatible factory (tests inject a
                       manual timer).
        drop_on: Exception types after which a failed save is dropped, not retried.
    """

    def __init__(
        self,
        save_fn: SaveFn,
        *,
        delay: float = 1.5,
        on_navigate: str = "flush",
        timer_factory=threading.Timer,
        drop_on: tuple[type[BaseException], ...] = (),
    ) -> None:
        if on_navigate not in NAVIGATE_POLICIES:
            raise ValueError(f"on_navigate must be one of {NAVIGATE_POLICIES}, got {on_navigate!r}")
        self._save_fn = save_fn
        self.delay = delay
        self.on_navigate = on_navigate
        self._timer_factory = timer_factory
        self._drop_on = tuple(drop_on)
        self._lock = threading.Lock()
        self._slots: dict[tuple[int, str], _PendingEdit] = {}
        self._generations = itertools.count(1)

    # ── Editing ─────────────────────────────────────────────────────────

    def edit(self, tenant_id: int, node_id: str, content: str) -> int:
        """Record an edit and restart the node's quiet-period timer.

        Returns the generation number of the new pending edit.
        """
        key = (tenant_id, node_id)
        with self._lock:
            previous = self._slots.get(key)
            if previous is not None and previous.timer is not None:
                previous.timer.cancel()
            generation = next(self._generations)
            timer = self._timer_factory(self.delay, self._fire, args=(key, generation))
            timer.daemon = True
            self._slots[key] = _PendingEdit(content=content, generation=generation, timer=timer)
            timer.start()
        return generation

    def _fire(self, key: tuple[int, str], generation: int) -> None:
        with self._lock:
            slot = self._slots.get(key)
            if slot is None or slot.generation != generation:
                return
            del self._slots[key]
        try:
            self._save_fn(key[0], key[1], slot.content)
        except self._drop_on as exc:
            logger.warning("Autosave dropped edit for node %s: %s", key[1], exc)
        except Exception:
            # Timer threads have no caller to raise to; keep the text for flush()
            logger.exception("Autosave failed for node %s; edit kept pending", key[1])
            self._requeue(key, slot)

    def _requeue(self, key: tuple[int, str], slot: _PendingEdit) -> None:
        with self._lock:
            if key not in self._slots:
                self._slots[key] = _PendingEdit(
                    content=slot.content,
                    generation=slot.generation,
                    timer=None,
                    failed=True,
                )

    def _take(self, key: tuple[int, str]) -> _PendingEdit | None:
        with self._lock:
            slot = self._slots.pop(key, None)
        if slot is not None and slot.timer is not None:
            slot.timer.cancel()
        return slot

    # ── Explicit control ────────────────────────────────────────────────

    def flush(self, tenant_id: int, node_id: str) -> bool:
        """Write the pending edit now.  Returns False when nothing was pending.

        On failure the edit is put back (without a timer) and the error is raised;
        errors in ``drop_on`` drop the edit before being raised.
        """
        key = (tenant_id, node_id)
        slot = self._take(key)
        if slot is None:
            return False
        try:
            self._save_fn(tenant_id, node_id, slot.content)
        except self._drop_on:
            logger.warning("Autosave dropped edit for node %s on flush", node_id)
            raise
        except Exception:
            self._requeue(key, slot)
            raise
        return True

    def discard(self, tenant_id: int, node_id: str) -> bool:
        """Drop the pending edit without writing.  Returns False when nothing was pending."""
        slot = self._take((tenant_id, node_id))
        if slot is not None:
            logger.info("Autosave edit discarded for node %s", node_id)
        return slot is not None

    def navigate_away(self, tenant_id: int, node_id: str) -> dict:
        """Apply the navigation policy to the node being left."""
        if self.on_navigate == "flush":
            return {"policy": "flush", "saved": self.flush(tenant_id, node_id)}
        return {"policy": "discard", "discarded": self.discard(tenant_id, node_id)}

    def flush_all(self) -> int:
        """Write every pending edit; returns how many were written."""
        with self._lock:
            keys = list(self._slots)
        return sum(1 for tenant_id, node_id in keys if self.flush(tenant_id, node_id))

    def discard_many(self, tenant_id: int, node_ids) -> int:
        """Drop pending edits for several nodes (e.g. a deleted document); returns how many."""
        return sum(1 for node_id in node_ids if self.discard(tenant_id, node_id))

    def flush_many(self, tenant_id: int, node_ids) -> int:
        """Write pending edits for several nodes now; returns how many were written."""
        return sum(1 for node_id in node_ids if self.flush(tenant_id, node_id))

    # ── Introspection ───────────────────────────────────────────────────

    def pending_content(self, tenant_id: int, node_id: str) -> str | None:
        with self._lock:
            slot = self._slots.get((tenant_id, node_id))
            return slot.content if slot else None

    def has_pending(self, tenant_id: int, node_id: str) -> bool:
        with self._lock:
            return (tenant_id, node_id) in self._slots

    def status(self, tenant_id: int, node_id: str) -> dict:
        with self._lock:
            slot = self._slots.get((tenant_id, node_id))
            return {
                "node_id": node_id,
                "pending": slot is not None,
                "generation": slot.generation if slot else None,
                "failed": slot.failed if slot else False,
            }


def make_app_autosave(app: Flask, *, timer_factory=threading.Timer) -> AutosaveBuffer:
    """Build the app-wide buffer and register it as app.extensions["sop_autosave"].

    Timer callbacks run on their own thread, so the save pushes an app
    context when it is not already running inside this app's context.
    """
    from sopdesk.core.exceptions import DocumentArchivedError, NotFoundError
    from sopdesk.services.sop_content_service import save_rich_content

    def _save(tenant_id: int, node_id: str, content: str):
        if has_app_context() and current_app._get_current_object() is app:
            return save_rich_content(tenant_id, node_id, content)
        with app.app_context():
            return save_rich_content(tenant_id, node_id, content)

    buffer = AutosaveBuffer(
        _save,
        delay=app.config.get("SOP_AUTOSAVE_DELAY_SECONDS", 1.5),
        on_navigate=app.config.get("SOP_AUTOSAVE_ON_NAVIGATE", "flush"),
        timer_factory=timer_factory,
        drop_on=(DocumentArchivedError, NotFoundError),
    )
    app.extensions["sop_autosave"] = buffer
    app.logger.info(
        "SOP autosave: delay=%.2fs on_navigate=%s", buffer.delay, buffer.on_navigate
    )
    return buffer


def get_autosave(app: Flask | None = None) -> AutosaveBuffer:
    """Return the buffer registered on ``app`` (defaults to current_app)."""
    app = app or current_app
    return app.extensions["sop_autosave"]
