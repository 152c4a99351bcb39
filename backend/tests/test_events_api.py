from __future__ import annotations

import uuid
from datetime import datetime, timezone

import pytest

pytest.importorskip("fastapi")
pytest.importorskip("sqlalchemy")
pytest.importorskip("asyncpg")

from fastapi import HTTPException
from sqlalchemy.exc import OperationalError

from omnitech import events as events_api
from omnitech.analysis.errors import PersistenceFailed
from omnitech.models import SafetyEvent


def build_event(
    *,
    event_id: uuid.UUID | None = None,
    user_id: str = "firebase-user",
    status: str = "SAFE",
) -> SafetyEvent:
    event = SafetyEvent(
        id=event_id or uuid.uuid4(),
        user_id=user_id,
        mode="safety_check",
        status=status,
        headline="Panel Isolated",
        reasoning="Breaker is off.",
        action_required="Proceed.",
        payload={"status": status, "repair_steps": []},
        model_id="gemini-2.5-flash",
    )
    event.created_at = datetime.now(timezone.utc)
    return event


class FakeScalarList:
    def __init__(self, values: list[SafetyEvent]) -> None:
        self._values = values

    def all(self) -> list[SafetyEvent]:
        return self._values


class FakeResult:
    def __init__(
        self,
        *,
        scalar: SafetyEvent | None = None,
        values: list[SafetyEvent] | None = None,
    ) -> None:
        self._scalar = scalar
        self._values = values or []

    def scalar_one_or_none(self) -> SafetyEvent | None:
        return self._scalar

    def scalars(self) -> FakeScalarList:
        return FakeScalarList(self._values)


class FakeExecuteDB:
    def __init__(self, result: FakeResult | None = None) -> None:
        self.result = result or FakeResult()
        self.executed = []

    async def execute(self, statement) -> FakeResult:
        self.executed.append(statement)
        return self.result


class FakeWriteSession:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.added: SafetyEvent | None = None
        self.commit_calls = 0

    async def __aenter__(self) -> "FakeWriteSession":
        return self

    async def __aexit__(self, *_exc_info) -> bool:
        return False

    def add(self, instance: SafetyEvent) -> None:
        self.added = instance

    async def commit(self) -> None:
        self.commit_calls += 1
        if self.error is not None:
            raise self.error


RECORD = {
    "user_id": "firebase-user",
    "mode": "diagnosis",
    "model_id": "gemini-2.5-flash",
    "status": "DANGER",
    "headline": "Scorched Terminal",
    "reasoning": "Burn marks around the live terminal.",
    "action_required": "Isolate power at the breaker.",
    "repair_steps": [],
}


@pytest.mark.asyncio
async def test_list_events_serializes_owned_events() -> None:
    events = [build_event(status="DANGER"), build_event(status="SAFE")]
    db = FakeExecuteDB(FakeResult(values=events))

    result = await events_api.list_events(
        limit=10,
        current_user={"uid": "firebase-user"},
        db=db,
    )

    assert [item.status for item in result] == ["DANGER", "SAFE"]
    assert result[0].payload == {"status": "DANGER", "repair_steps": []}
    assert len(db.executed) == 1


@pytest.mark.asyncio
async def test_get_owned_event_raises_not_found() -> None:
    db = FakeExecuteDB(FakeResult(scalar=None))

    with pytest.raises(HTTPException) as exc_info:
        await events_api._get_owned_event(db, uuid.uuid4(), "firebase-user")

    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_get_owned_event_raises_forbidden_for_wrong_user() -> None:
    db = FakeExecuteDB(FakeResult(scalar=build_event(user_id="another-user")))

    with pytest.raises(HTTPException) as exc_info:
        await events_api._get_owned_event(db, uuid.uuid4(), "firebase-user")

    assert exc_info.value.status_code == 403


@pytest.mark.asyncio
async def test_get_event_returns_owned_event() -> None:
    event = build_event()
    db = FakeExecuteDB(FakeResult(scalar=event))

    result = await events_api.get_event(
        event_id=event.id,
        current_user={"uid": "firebase-user"},
        db=db,
    )

    assert result.id == event.id
    assert result.headline == "Panel Isolated"


@pytest.mark.asyncio
async def test_store_persists_columns_and_payload() -> None:
    session = FakeWriteSession()
    store = events_api.SqlEventStore(session_factory=lambda: session)

    await store.persist(dict(RECORD))

    assert session.commit_calls == 1
    event = session.added
    assert event.user_id == "firebase-user"
    assert event.mode == "diagnosis"
    assert event.status == "DANGER"
    assert event.model_id == "gemini-2.5-flash"
    assert "user_id" not in event.payload
    assert event.payload["action_required"] == "Isolate power at the breaker."


@pytest.mark.asyncio
async def test_store_wraps_database_errors() -> None:
    session = FakeWriteSession(error=OperationalError("INSERT", {}, Exception("connection lost")))
    store = events_api.SqlEventStore(session_factory=lambda: session)

    with pytest.raises(PersistenceFailed) as exc_info:
        await store.persist(dict(RECORD))

    assert exc_info.value.kind == "PersistenceFailed"
