"""Audit emitter: turns decisions and administrative mutations into events.

Events are handed to an ``AuditSink`` (the external audit-log collaborator)
on a background task.  Delivery is best-effort: a failing sink is logged and
never affects the caller.

Severity is metadata for the downstream collaborator, taken from a simple
rule table (SEVERITY_RULES) plus one dynamic rule: a user who keeps getting
denied within a sliding window escalates to HIGH.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Protocol

import redis.asyncio as redis

if TYPE_CHECKING:
    from accesscore.auth.resolver import Decision

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("accesscore.audit")


class Severity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AuditAction:
    DECISION_ALLOWED = "authorization.allowed"
    PERMISSION_DENIED = "security.permission_denied"
    REPEATED_DENIAL = "security.repeated_denial"

    ROLE_CREATE = "role.create"
    ROLE_UPDATE = "role.update"
    ROLE_DELETE = "role.delete"
    ROLE_PERMISSION_CHANGE = "role.permission_change"
    USER_ROLE_CHANGE = "user.role_change"

    ORG_CREATE = "organization.create"
    ORG_MOVE = "organization.move"
    ORG_DEACTIVATE = "organization.deactivate"
    ORG_DELETE = "organization.delete"


SEVERITY_RULES: dict[str, Severity] = {
    AuditAction.DECISION_ALLOWED: Severity.LOW,
    AuditAction.PERMISSION_DENIED: Severity.MEDIUM,
    AuditAction.REPEATED_DENIAL: Severity.HIGH,
    AuditAction.ROLE_CREATE: Severity.MEDIUM,
    AuditAction.ROLE_UPDATE: Severity.MEDIUM,
    AuditAction.ROLE_DELETE: Severity.HIGH,
    AuditAction.ROLE_PERMISSION_CHANGE: Severity.HIGH,
    AuditAction.USER_ROLE_CHANGE: Severity.HIGH,
    AuditAction.ORG_CREATE: Severity.MEDIUM,
    AuditAction.ORG_MOVE: Severity.HIGH,
    AuditAction.ORG_DEACTIVATE: Severity.CRITICAL,
    AuditAction.ORG_DELETE: Severity.CRITICAL,
}


def classify(action: str, recent_denials: int = 0, threshold: int = 5) -> Severity:
    """Severity for an action, escalating repeated denials."""
    if action == AuditAction.PERMISSION_DENIED and recent_denials >= threshold:
        return SEVERITY_RULES[AuditAction.REPEATED_DENIAL]
    return SEVERITY_RULES.get(action, Severity.LOW)


@dataclass
class AuditEvent:
    action: str
    entity_type: str
    entity_id: str | None = None
    actor_id: str | None = None
    organization_id: str | None = None
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    severity: Severity = Severity.LOW
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        data["created_at"] = self.created_at.isoformat()
        return data


# ── Sinks ──────────────────────────────────────────────────────


class AuditSink(Protocol):
    async def record(self, event: AuditEvent) -> None:
        ...


class LoggingAuditSink:
    """Writes events to the ``accesscore.audit`` logger."""

    async def record(self, event: AuditEvent) -> None:
        audit_logger.info(
            "Audit event %s on %s %s",
            event.action,
            event.entity_type,
            event.entity_id,
            extra={"audit": event.to_dict()},
        )
        if event.severity in (Severity.HIGH, Severity.CRITICAL):
            audit_logger.warning(
                "High risk audit event: %s by %s in %s (%s)",
                event.action,
                event.actor_id,
                event.organization_id,
                event.severity.value,
            )


# ── Denial trackers ────────────────────────────────────────────


class DenialTracker(Protocol):
    async def record_denial(self, user_id: str) -> int:
        """Record one denial; return the count inside the current window."""
        ...


class InMemoryDenialTracker:
    def __init__(self, window_seconds: int = 300, clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}

    async def record_denial(self, user_id: str) -> int:
        now = self._clock()
        hits = self._hits.setdefault(user_id, deque())
        while hits and hits[0] <= now - self.window_seconds:
            hits.popleft()
        hits.append(now)
        return len(hits)


class RedisDenialTracker:
    """Sliding-window denial counter shared across processes."""

    def __init__(self, client: redis.Redis, window_seconds: int = 300):
        self.client = client
        self.window_seconds = window_seconds

    async def record_denial(self, user_id: str) -> int:
        current_time = time.time()
        key = f"denials:{user_id}"

        await self.client.zremrangebyscore(key, 0, current_time - self.window_seconds)
        await self.client.zadd(key, {f"{current_time:.6f}": current_time})
        await self.client.expire(key, self.window_seconds)
        return await self.client.zcard(key)


# ── Emitter ────────────────────────────────────────────────────


class AuditEmitter:
    def __init__(
        self,
        sink: AuditSink,
        denial_tracker: DenialTracker | None = None,
        *,
        repeated_denial_threshold: int = 5,
        enabled: bool = True,
    ) -> None:
        self.sink = sink
        self.denial_tracker = denial_tracker
        self.repeated_denial_threshold = repeated_denial_threshold
        self.enabled = enabled
        self._pending: set[asyncio.Task] = set()

    def emit_decision(self, decision: "Decision") -> None:
        """Schedule a decision event.  Never raises."""
        if self.enabled:
            self._schedule(self._deliver_decision(decision))

    def emit(
        self,
        action: str,
        entity_type: str,
        entity_id: str | None = None,
        *,
        actor_id: str | None = None,
        organization_id: str | None = None,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Schedule an administrative event.  Never raises."""
        if not self.enabled:
            return
        event = AuditEvent(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            organization_id=organization_id,
            before=before,
            after=after,
            metadata=metadata or {},
            severity=classify(action),
        )
        self._schedule(self._deliver(event))

    async def drain(self) -> None:
        """Wait for every scheduled delivery (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # -- internals ---------------------------------------------

    def _schedule(self, coro) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning("No running event loop; audit event dropped")
            return
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver_decision(self, decision: "Decision") -> None:
        try:
            action = (
                AuditAction.DECISION_ALLOWED if decision.allowed
                else AuditAction.PERMISSION_DENIED
            )
            recent = 0
            if not decision.allowed and self.denial_tracker is not None:
                try:
                    recent = await self.denial_tracker.record_denial(decision.user_id)
                except Exception:
                    logger.error("Denial tracker failed", exc_info=True)

            event = AuditEvent(
                action=action,
                entity_type="permission",
                entity_id=decision.permission,
                actor_id=decision.user_id,
                organization_id=decision.organization_id,
                metadata={
                    "allowed": decision.allowed,
                    "reason": decision.reason.value if decision.reason else None,
                    "matched_grant": str(decision.matched_grant) if decision.matched_grant else None,
                    "role": decision.role_slug,
                    "source_organization_id": decision.source_organization_id,
                    "recent_denials": recent,
                },
                severity=classify(action, recent, self.repeated_denial_threshold),
            )
        except Exception:
            logger.error("Failed to build audit event for decision", exc_info=True)
            return
        await self._deliver(event)

    async def _deliver(self, event: AuditEvent) -> None:
        try:
            await self.sink.record(event)
        except Exception:
            logger.error(
                "Audit sink failed for %s on %s %s",
                event.action,
                event.entity_type,
                event.entity_id,
                exc_info=True,
            )
