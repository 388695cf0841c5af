"""
Audit recorder.

Synchronous durability: `record` returns only after the entry is committed.
Transient database errors are retried with exponential backoff; when the
retries run out the caller gets AuditWriteFailure and must fail the request
that triggered the write. A duplicate entry after a retried commit is
acceptable, a lost one is not.

Call it after the business mutation has committed, on a session with no
pending work: a failed attempt rolls the session back.
"""
import logging
from typing import Any, Dict, Optional
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from app.core import config
from app.core.errors import AuditWriteFailure
from app.features.audit.models import AuditDecision, AuditEntry
from app.features.audit.schemas import AuditEntryDraft
from app.features.authorization.capabilities import Action
from app.features.authorization.evaluator import ActorLike
from app.features.authorization.schemas import Decision, ResourceRef
from app.utils import get_logger


log = get_logger(__name__)


RETRYABLE_ERRORS = (OperationalError, InterfaceError)

# Blocks other appenders until commit, not readers
APPEND_LOCK = text(f"LOCK TABLE {AuditEntry.__tablename__} IN SHARE ROW EXCLUSIVE MODE")


async def _serialize_appends(db: AsyncSession) -> None:
    """
    Make ids commit in allocation order.

    Cursor readers rely on no smaller id becoming visible after a larger
    one. SQLite has a single writer, so this already holds there; PostgreSQL
    hands out sequence values before commit, so appends take a table lock.
    """
    if db.get_bind().dialect.name == "postgresql":
        await db.execute(APPEND_LOCK)


async def _write_once(db: AsyncSession, draft: AuditEntryDraft) -> AuditEntry:
    entry = AuditEntry(**draft.model_dump(mode="json"))
    try:
        await _serialize_appends(db)
        db.add(entry)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise
    return entry


async def record(db: AsyncSession, draft: AuditEntryDraft) -> AuditEntry:
    """
    Append one entry to the audit trail.

    Raises:
        AuditWriteFailure: the entry could not be committed
    """
    attempts = max(1, config.AUDIT_WRITE_MAX_ATTEMPTS)
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential_jitter(initial=0.05, max=config.AUDIT_RETRY_MAX_WAIT),
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        before_sleep=before_sleep_log(log, logging.WARNING),
    )

    try:
        async for attempt in retrying:
            with attempt:
                entry = await _write_once(db, draft)
    except RetryError as exc:
        log.critical(
            f"AUDIT WRITE LOST after {attempts} attempts: actor={draft.actor_id} action={draft.action} "
            f"resource={draft.resource_type}:{draft.resource_id} error={exc.last_attempt.exception()!r}"
        )
        raise AuditWriteFailure(draft.action, attempts) from exc
    except DBAPIError as exc:
        log.critical(
            f"AUDIT WRITE REJECTED: actor={draft.actor_id} action={draft.action} "
            f"resource={draft.resource_type}:{draft.resource_id} error={exc!r}"
        )
        raise AuditWriteFailure(draft.action, 1) from exc

    log.info(
        f"Audit #{entry.id}: actor={entry.actor_id} action={entry.action} "
        f"resource={entry.resource_type}:{entry.resource_id} decision={entry.decision}"
    )
    return entry


async def record_decision(
    db: AsyncSession,
    actor: ActorLike,
    action: Action | str,
    resource: ResourceRef,
    decision: Decision,
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> AuditEntry:
    """
    Record the outcome of an evaluated request.

    `action` is the audited action name; usually the evaluated capability,
    but workflows may record a more specific verb.
    """
    entry_details: Dict[str, Any] = dict(details or {})
    for key, value in decision.audit_details().items():
        entry_details.setdefault(key, value)
    action_name = action.value if isinstance(action, Action) else action

    draft = AuditEntryDraft(
        actor_id=actor.id,
        actor_role=actor.role,
        action=action_name,
        resource_type=resource.resource_type.value,
        resource_id=resource.resource_id,
        property_id=resource.property_id,
        decision=AuditDecision.ALLOWED if decision.allowed else AuditDecision.DENIED,
        deny_reason=None if decision.allowed else decision.reason.value,
        details=entry_details,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return await record(db, draft)
