"""
Database models package.
"""

from models.database import Base, engine, get_db, async_session, init_db
from models.user import User
from models.call import Call, CallStatus, TranscriptionStatus
from models.queue_job import QueueJob, JobState, OPEN_JOB_STATES

__all__ = [
    "Base",
    "engine",
    "get_db",
    "async_session",
    "init_db",
    "User",
    "Call",
    "CallStatus",
    "TranscriptionStatus",
    "QueueJob",
    "JobState",
    "OPEN_JOB_STATES",
]
