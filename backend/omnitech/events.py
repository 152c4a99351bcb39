import uuid
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import auth as auth_utils
from .analysis.errors import PersistenceFailed
from .db import AsyncSessionLocal, get_db
from .models import SafetyEvent
from .schemas import SafetyEventOut


router = APIRouter(prefix="/api/events", tags=["events"])


class SqlEventStore:
    """Durable store for genuine analysis results."""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None) -> None:
        self._session_factory = session_factory or AsyncSessionLocal

    async def persist(self, record: dict[str, Any]) -> None:
        event = SafetyEvent(
            user_id=record["user_id"],
            mode=record["mode"],
            status=record["status"],
            headline=record.get("headline"),
            reasoning=record.get("reasoning"),
            action_required=record.get("action_required"),
            payload={
                key: value
                for key, value in record.items()
                if key not in {"user_id", "model_id"}
            },
            model_id=record.get("model_id"),
        )
        try:
            async with self._session_factory() as db:
                db.add(event)
                await db.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceFailed(f"Could not store safety event: {exc}") from exc


async def _get_owned_event(
    db: AsyncSession,
    event_id: uuid.UUID,
    user_id: str,
) -> SafetyEvent:
    result = await db.execute(select(SafetyEvent).where(SafetyEvent.id == event_id))
    event = result.scalar_one_or_none()
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    if event.user_id != user_id:
        raise HTTPException(status_code=403, detail="Not authorised to access this event")
    return event


@router.get("", response_model=list[SafetyEventOut])
async def list_events(
    limit: int = Query(50, ge=1, le=500),
    current_user: dict = Depends(auth_utils.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[SafetyEventOut]:
    """List persisted safety events for the authenticated user, newest first."""
    result = await db.execute(
        select(SafetyEvent)
        .where(SafetyEvent.user_id == current_user["uid"])
        .order_by(SafetyEvent.created_at.desc())
        .limit(limit)
    )
    events = result.scalars().all()
    return [SafetyEventOut.model_validate(event) for event in events]


@router.get("/{event_id}", response_model=SafetyEventOut)
async def get_event(
    event_id: uuid.UUID,
    current_user: dict = Depends(auth_utils.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> SafetyEventOut:
    """Fetch one event by id for the authenticated user."""
    event = await _get_owned_event(db, event_id, current_user["uid"])
    return SafetyEventOut.model_validate(event)
