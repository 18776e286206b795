"""
Persisted transcription job rows backing the job queue.
"""

import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, Enum, Index, text

from models.database import Base


class JobState(enum.Enum):
    """Queue-internal job state, distinct from the call's transcription status."""
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


# A call has at most one job in these states
OPEN_JOB_STATES = (JobState.WAITING, JobState.ACTIVE)


class QueueJob(Base):
    """One transcription job; retries reuse the row with a higher attempt."""

    __tablename__ = "queue_jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    call_id = Column(String(32), nullable=False, index=True)  # not a foreign key: validated lazily by workers
    attempt = Column(Integer, nullable=False, default=1)
    max_attempts = Column(Integer, nullable=False, default=3)
    state = Column(Enum(JobState), nullable=False, default=JobState.WAITING)
    run_at = Column(DateTime, nullable=False)
    error = Column(Text, nullable=True)
    worker_id = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)
    finished_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_queue_jobs_state_run_at", "state", "run_at"),
        # Enum columns store member names
        Index(
            "uq_queue_jobs_open_call",
            "call_id",
            unique=True,
            sqlite_where=text("state IN ('WAITING', 'ACTIVE')"),
        ),
    )
