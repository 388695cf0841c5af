# tests/test_audit_recorder.py

"""
Tests for the audit recorder.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError

from app.core import config
from app.core.errors import AuditWriteFailure
from app.features.audit.models import AuditDecision, AuditEntry, ImmutableAuditEntry
from app.features.audit.recorder import record, record_decision
from app.features.audit.schemas import AuditEntryDraft
from app.features.authorization.capabilities import Action
from app.features.authorization.evaluator import decide

from conftest import property_resource


def draft(**overrides) -> AuditEntryDraft:
    values = dict(
        actor_id="actor-1",
        actor_role="property_owner",
        action="edit_property",
        resource_type="property",
        resource_id="prop-1",
        property_id="prop-1",
        decision=AuditDecision.ALLOWED,
    )
    values.update(overrides)
    return AuditEntryDraft(**values)


def transient_error() -> OperationalError:
    return OperationalError("INSERT INTO audit_entries", {}, Exception("database is locked"))


@pytest.fixture
def fast_retries(monkeypatch):
    """Keep backoff waits negligible."""
    monkeypatch.setattr(config, "AUDIT_RETRY_MAX_WAIT", 0.01)
    monkeypatch.setattr(config, "AUDIT_WRITE_MAX_ATTEMPTS", 3)


def failing_session(commit_side_effect) -> MagicMock:
    session = MagicMock()
    session.commit = AsyncMock(side_effect=commit_side_effect)
    session.rollback = AsyncMock()
    return session


def postgres_session() -> MagicMock:
    session = MagicMock()
    session.get_bind.return_value.dialect.name = "postgresql"
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    return session


class TestRecord:

    @pytest.mark.asyncio
    async def test_ids_are_monotonic(self, db):
        first = await record(db, draft())
        second = await record(db, draft(action="view"))

        assert second.id > first.id
        assert second.timestamp >= first.timestamp

    def test_deny_reason_only_on_denials(self):
        with pytest.raises(ValueError):
            draft(deny_reason="NoGrant")

    @pytest.mark.asyncio
    async def test_entries_cannot_be_updated(self, db):
        entry = await record(db, draft())
        entry_id = entry.id

        entry.action = "something_else"
        with pytest.raises(ImmutableAuditEntry):
            await db.flush()
        await db.rollback()

        row = await db.execute(select(AuditEntry.action).where(AuditEntry.id == entry_id))
        assert row.scalar_one() == "edit_property"

    @pytest.mark.asyncio
    async def test_entries_cannot_be_deleted(self, db):
        entry = await record(db, draft())

        await db.delete(entry)
        with pytest.raises(ImmutableAuditEntry):
            await db.flush()

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, fast_retries):
        """A locked database is retried until the commit goes through."""
        session = failing_session([transient_error(), transient_error(), None])

        entry = await record(session, draft())

        assert session.commit.await_count == 3
        assert session.rollback.await_count == 2
        assert entry.action == "edit_property"

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_audit_write_failure(self, fast_retries):
        """Losing an entry is fatal for the request."""
        session = failing_session(transient_error())

        with pytest.raises(AuditWriteFailure) as exc_info:
            await record(session, draft())

        assert exc_info.value.attempts == 3
        assert exc_info.value.status_code == 503
        assert exc_info.value.retryable
        assert session.commit.await_count == 3

    @pytest.mark.asyncio
    async def test_permanent_failures_are_not_retried(self, fast_retries):
        session = failing_session(IntegrityError("INSERT INTO audit_entries", {}, Exception("constraint")))

        with pytest.raises(AuditWriteFailure) as exc_info:
            await record(session, draft())

        assert exc_info.value.attempts == 1
        assert session.commit.await_count == 1


    @pytest.mark.asyncio
    async def test_postgres_appends_take_the_table_lock(self):
        """Ids must become visible in order for cursor readers."""
        session = postgres_session()

        await record(session, draft())

        [call] = session.execute.await_args_list
        assert "LOCK TABLE audit_entries" in str(call.args[0])
        assert session.commit.await_count == 1

    @pytest.mark.asyncio
    async def test_sqlite_appends_take_no_lock(self, fast_retries):
        session = failing_session([None])
        session.get_bind.return_value.dialect.name = "sqlite"

        await record(session, draft())

        assert not session.execute.called


class TestRecordDecision:

    @pytest.mark.asyncio
    async def test_denial_carries_reason(self, db, prop, vendor):
        resource = property_resource(prop)
        decision = decide(vendor, Action.RECORD_PAYMENT, resource)

        entry = await record_decision(db, vendor, Action.RECORD_PAYMENT, resource, decision, ip_address="10.0.0.1")

        assert entry.decision == AuditDecision.DENIED.value
        assert entry.deny_reason == "NoGrant"
        assert entry.action == "record_payment"
        assert entry.resource_type == "property"
        assert entry.property_id == prop.id
        assert entry.actor_role == "vendor"
        assert entry.ip_address == "10.0.0.1"
        assert entry.details["reason"] == "NoGrant"

    @pytest.mark.asyncio
    async def test_allow_records_basis_and_custom_verb(self, db, prop, owner):
        resource = property_resource(prop)
        decision = decide(owner, Action.ASSIGN_MANAGER, resource)

        entry = await record_decision(
            db, owner, "subscribe_manager", resource, decision, details={"subject_id": "m-1"}
        )

        assert entry.decision == AuditDecision.ALLOWED.value
        assert entry.deny_reason is None
        assert entry.action == "subscribe_manager"
        assert entry.details == {"subject_id": "m-1", "basis": "ownership"}
