"""SQLAlchemy models for the OmniTech backend.

Only genuine classifications are stored.  Each row is one safety check
or diagnosis produced by the vision service for an
identified user, with the full result kept as JSON next to the columns
the events API filters and sorts on.
"""

import uuid
from typing import Optional

from sqlalchemy import Column, DateTime, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class SafetyEvent(Base):
    """A persisted analysis result.

    The `user_id` stores the Firebase UID of the authenticated user.
    `mode` is the operating mode of the request and `status` the
    classification.  `payload` keeps the complete result.  Repair guides
    are session-only and never stored.
    """

    __tablename__ = "safety_events"

    id: uuid.UUID = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: str = Column(String, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    mode: str = Column(String(32), nullable=False)
    status: str = Column(String(16), nullable=False)
    headline: Optional[str] = Column(String(256), nullable=True)
    reasoning: Optional[str] = Column(Text, nullable=True)
    action_required: Optional[str] = Column(Text, nullable=True)

    payload: Optional[dict] = Column(JSONB, nullable=True)
    model_id: Optional[str] = Column(String(128), nullable=True)
