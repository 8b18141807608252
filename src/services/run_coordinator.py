from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any, Dict, Optional, Set, Tuple

from src.core.config import get_settings
from src.core.errors import ConflictError, ProcessingLogError
from src.models.engagement import ProcessingLogRecord
from src.repositories.processing_log_repository import ProcessingLogRepository
from src.schemas.trends import SnapshotType

logger = logging.getLogger(__name__)

MAX_ERROR_MESSAGE_LENGTH = 2000

WindowKey = Tuple[str, datetime]


@dataclass
class RunHandle:
    log: ProcessingLogRecord
    window_key: WindowKey = field(repr=False)

    @property
    def run_id(self) -> str:
        return self.log.id


@dataclass(frozen=True)
class RunGate:
    handle: Optional[RunHandle] = None
    covered_by: Optional[ProcessingLogRecord] = None

    @property
    def skipped(self) -> bool:
        return self.handle is None


class RunCoordinator:
    """Brackets a calculation window with a processing log row.

    ``pending`` is written before any snapshot work and moves to ``completed``
    or ``failed`` once the batch returns. A completed row whose window reaches
    at least as far as the requested end makes a non-forced run a no-op.
    """

    _active_windows: Set[WindowKey] = set()
    _active_lock: Lock = Lock()

    def __init__(self, repository: ProcessingLogRepository) -> None:
        self.repository = repository
        self.settings = get_settings()

    @staticmethod
    def _now_utc() -> datetime:
        return datetime.now(timezone.utc)

    def begin_run(
        self,
        snapshot_type: SnapshotType,
        window_start: datetime,
        window_end: datetime,
        force: bool = False,
    ) -> RunGate:
        if not force:
            try:
                latest = self.repository.find_latest_completed_log(snapshot_type)
            except Exception as exc:
                logger.error("Failed to read %s processing log: %s", snapshot_type, exc, exc_info=True)
                raise ProcessingLogError(f"Failed to read processing log: {exc}") from exc
            if latest is not None and latest.end_date >= window_end:
                logger.info(
                    "Skipping %s run for %s..%s: already covered by log %s ending %s",
                    snapshot_type,
                    window_start.isoformat(),
                    window_end.isoformat(),
                    latest.id,
                    latest.end_date.isoformat(),
                )
                return RunGate(covered_by=latest)

        window_key: WindowKey = (snapshot_type, window_start)
        with self._active_lock:
            if window_key in self._active_windows:
                raise ConflictError(
                    f"A {snapshot_type} run for the window starting {window_start.isoformat()} "
                    "is already in progress"
                )
            self._active_windows.add(window_key)

        try:
            self._expire_stale_pending(snapshot_type, window_start)
            log = self.repository.create_log(
                {
                    "snapshot_type": snapshot_type,
                    "processing_date": self._now_utc().isoformat(),
                    "start_date": window_start.isoformat(),
                    "end_date": window_end.isoformat(),
                    "status": "pending",
                    "version": 0,
                }
            )
        except ConflictError as exc:
            self._release(window_key)
            raise ConflictError(
                f"A {snapshot_type} run for the window starting {window_start.isoformat()} "
                "is already pending"
            ) from exc
        except Exception as exc:
            self._release(window_key)
            logger.error("Failed to create %s processing log: %s", snapshot_type, exc, exc_info=True)
            raise ProcessingLogError(f"Failed to create processing log: {exc}") from exc

        logger.debug("Created %s processing log %s", snapshot_type, log.id)
        return RunGate(handle=RunHandle(log=log, window_key=window_key))

    def complete_run(self, handle: RunHandle) -> bool:
        return self._finalize(
            handle,
            {"status": "completed", "completed_at": self._now_utc().isoformat()},
        )

    def fail_run(self, handle: RunHandle, error: str) -> bool:
        return self._finalize(
            handle,
            {
                "status": "failed",
                "completed_at": self._now_utc().isoformat(),
                "error_message": (error or "Unknown error")[:MAX_ERROR_MESSAGE_LENGTH],
            },
        )

    def _finalize(self, handle: RunHandle, payload: Dict[str, Any]) -> bool:
        # Snapshots already written stand whether or not this update lands.
        try:
            updated = self.repository.update_log(handle.log.id, handle.log.version, payload)
        except Exception as exc:
            logger.error(
                "Failed to mark processing log %s as %s: %s",
                handle.log.id,
                payload["status"],
                exc,
                exc_info=True,
            )
            return False
        finally:
            self._release(handle.window_key)
        if updated is None:
            logger.warning(
                "Processing log %s changed concurrently; %s status not recorded",
                handle.log.id,
                payload["status"],
            )
            return False
        handle.log = updated
        return True

    def _expire_stale_pending(self, snapshot_type: SnapshotType, window_start: datetime) -> None:
        pending = self.repository.find_pending_log(snapshot_type, window_start)
        if pending is None:
            return
        stale_before = self._now_utc() - timedelta(minutes=self.settings.trend_stale_pending_minutes)
        if pending.processing_date > stale_before:
            # Left in place: the insert below hits the unique index and is rejected.
            return
        logger.warning(
            "Marking abandoned %s processing log %s (started %s) as failed",
            snapshot_type,
            pending.id,
            pending.processing_date.isoformat(),
        )
        self.repository.update_log(
            pending.id,
            pending.version,
            {
                "status": "failed",
                "completed_at": self._now_utc().isoformat(),
                "error_message": "Run abandoned before completion",
            },
        )

    def _release(self, window_key: WindowKey) -> None:
        with self._active_lock:
            self._active_windows.discard(window_key)
