"""
Call record database model.
"""

import enum
import uuid
from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Enum, JSON
from sqlalchemy.orm import relationship

from models.database import Base


class TranscriptionStatus(enum.Enum):
    """Transcription lifecycle of a call."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class CallStatus(enum.Enum):
    """Lifecycle of the call itself."""
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def new_call_id() -> str:
    return uuid.uuid4().hex


class Call(Base):
    """A recorded call and its transcription state."""

    __tablename__ = "calls"

    id = Column(String(32), primary_key=True, default=new_call_id)
    title = Column(String(100), nullable=False)
    duration = Column(Integer, default=0)  # seconds
    participants = Column(JSON, default=list)
    status = Column(Enum(CallStatus), default=CallStatus.SCHEDULED, index=True)
    notes = Column(String(500), nullable=True)
    audio_file_url = Column(String(500), default="")

    transcription_text = Column(Text, default="", nullable=False)
    transcription_status = Column(
        Enum(TranscriptionStatus), default=TranscriptionStatus.PENDING, nullable=False, index=True
    )
    transcription_retry_count = Column(Integer, default=0, nullable=False)
    transcription_error = Column(Text, default="", nullable=False)

    scheduled_at = Column(DateTime, default=datetime.utcnow, index=True)
    started_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    owner = relationship("User", back_populates="calls")

    def refresh_duration(self) -> None:
        """Derive the duration in seconds from the start and end times."""
        if self.started_at and self.ended_at:
            self.duration = int((self.ended_at - self.started_at).total_seconds())
