"""
Threat event recording, decoupled from the decision path.

Detectors hand a ThreatFinding to `threat_recorder.submit()`; a single worker task
drains the queue and persists the event plus its companion audit entry. Nothing
here raises into a caller.
"""
import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable

from sqlmodel import Session

from vaultguard.core.config import settings
from vaultguard.core.database import engine
from vaultguard.core.timeutil import utcnow
from vaultguard.models import AuditStatus, ThreatEvent, ThreatSeverity, ThreatType
from vaultguard.services.audit import record_audit

log = logging.getLogger("vaultguard.threat.recorder")


@dataclass(frozen=True)
class ThreatFinding:
    threat_type: ThreatType
    severity: ThreatSeverity
    user_id: int | None = None
    company_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "threat_type", ThreatType(self.threat_type))
        object.__setattr__(self, "severity", ThreatSeverity(self.severity))


class ThreatEventRecorder:
    def __init__(self, session_factory: Callable[[], Session] | None = None, maxsize: int = 1000):
        self._session_factory = session_factory or (lambda: Session(engine))
        self._maxsize = maxsize
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue | None = None
        self._worker: asyncio.Task | None = None
        self.stats: Counter = Counter(recorded=0, failed=0, orphaned=0, dropped=0)

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def record(self, finding: ThreatFinding) -> int | None:
        """Persists the event, then its THREAT_* audit entry. Returns the event id or None."""
        event_id = None
        try:
            with self._session_factory() as db:
                event = ThreatEvent(
                    threat_type=ThreatType(finding.threat_type).value,
                    severity=ThreatSeverity(finding.severity).value,
                    user_id=finding.user_id,
                    company_id=finding.company_id or None,
                    ip_address=finding.ip_address or None,
                    user_agent=finding.user_agent or None,
                    details=finding.details or None,
                    created_at=utcnow(),
                )
                db.add(event)
                db.commit()
                db.refresh(event)
                event_id = event.id
        except Exception:
            self.stats["failed"] += 1
            log.exception(
                "threat event write failed type=%s severity=%s user_id=%s ip=%s",
                finding.threat_type.value,
                finding.severity.value,
                finding.user_id,
                finding.ip_address,
            )
            return None

        try:
            with self._session_factory() as db:
                record_audit(
                    db,
                    action=f"THREAT_{finding.threat_type.value}",
                    resource="Security",
                    resource_id=str(event_id),
                    status=AuditStatus.WARNING,
                    user_id=finding.user_id,
                    company_id=finding.company_id,
                    ip_address=finding.ip_address,
                    user_agent=finding.user_agent,
                    details={
                        "threatType": finding.threat_type.value,
                        "severity": finding.severity.value,
                        **finding.details,
                    },
                )
        except Exception:
            # Event exists without its audit row; reconciliation keys off this line
            self.stats["orphaned"] += 1
            log.exception(
                "threat audit write failed, event orphaned event_id=%s type=%s",
                event_id,
                finding.threat_type.value,
            )
            return event_id

        self.stats["recorded"] += 1
        log.info(
            "threat recorded event_id=%s type=%s severity=%s user_id=%s ip=%s",
            event_id,
            finding.threat_type.value,
            finding.severity.value,
            finding.user_id,
            finding.ip_address,
        )
        return event_id

    def submit(self, finding: ThreatFinding) -> None:
        """Never blocks the caller: queued when the worker runs, inline otherwise."""
        if not self.running:
            self.record(finding)
            return
        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None
        if current is self._loop:
            self._enqueue(finding)
            return
        try:
            # Sync handlers run in the threadpool; asyncio.Queue is not thread-safe
            self._loop.call_soon_threadsafe(self._enqueue, finding)
        except RuntimeError:
            # Loop closed without stop(): nothing will drain the queue
            log.warning("threat recorder loop closed, recording inline type=%s", finding.threat_type.value)
            self.record(finding)

    def _enqueue(self, finding: ThreatFinding) -> None:
        try:
            self._queue.put_nowait(finding)
        except asyncio.QueueFull:
            self.stats["dropped"] += 1
            log.warning(
                "threat recorder queue full, finding dropped type=%s severity=%s",
                finding.threat_type.value,
                finding.severity.value,
            )

    async def _run(self) -> None:
        while True:
            finding = await self._queue.get()
            try:
                await asyncio.to_thread(self.record, finding)
            finally:
                self._queue.task_done()

    async def start(self) -> None:
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self._maxsize)
        self._worker = asyncio.create_task(self._run(), name="threat-recorder")
        log.info("threat recorder started maxsize=%s", self._maxsize)

    async def join(self) -> None:
        """Waits until every queued finding has been written (or failed)."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> None:
        if self._worker is None:
            return
        if self.running:
            await self.join()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        self._queue = None
        self._loop = None
        log.info("threat recorder stopped stats=%s", dict(self.stats))


threat_recorder = ThreatEventRecorder(maxsize=settings.threat_recorder_queue_size)


def create_threat_event(finding: ThreatFinding) -> None:
    threat_recorder.submit(finding)
