"""
Persistence interface the transcription core uses for call records.

Each status write is a single conditional UPDATE: the row only changes if
its current status is an allowed source for the target status. Methods
return False when no row matched (missing call or disallowed transition).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from engine.state_machine import allowed_sources
from models.call import Call, TranscriptionStatus
from models.queue_job import QueueJob, OPEN_JOB_STATES

logger = logging.getLogger(__name__)


@dataclass
class StatusProjection:
    """Narrow view of a call's transcription state."""
    call_id: str
    status: TranscriptionStatus
    text: str
    retry_count: int
    error: str


@dataclass
class TranscriptionRequest:
    """What a Transcriber needs to know about a call."""
    call_id: str
    title: str = ""
    participants: List[Dict[str, Any]] = field(default_factory=list)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


class CallStore:
    """CallStore backed by the ``calls`` table."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    def session(self) -> AsyncSession:
        """A session for grouping several writes into one transaction."""
        return self._session_factory()

    async def exists(self, call_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(select(Call.id).where(Call.id == call_id))
            return result.scalar_one_or_none() is not None

    async def get_status_projection(self, call_id: str) -> Optional[StatusProjection]:
        async with self._session_factory() as session:
            call = await session.get(Call, call_id)
            if call is None:
                return None
            return StatusProjection(
                call_id=call.id,
                status=call.transcription_status,
                text=call.transcription_text or "",
                retry_count=call.transcription_retry_count or 0,
                error=call.transcription_error or "",
            )

    async def get_transcription_request(self, call_id: str) -> Optional[TranscriptionRequest]:
        async with self._session_factory() as session:
            call = await session.get(Call, call_id)
            if call is None:
                return None
            return TranscriptionRequest(
                call_id=call.id,
                title=call.title,
                participants=list(call.participants or []),
                started_at=call.started_at,
                ended_at=call.ended_at,
            )

    async def list_ids_with_status(self, status: TranscriptionStatus) -> List[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Call.id).where(Call.transcription_status == status)
            )
            return list(result.scalars().all())

    async def set_processing(self, call_id: str, is_retry: bool = False) -> bool:
        """Enter ``processing``; automatic retry attempts also bump the retry count."""
        values = {"transcription_status": TranscriptionStatus.PROCESSING}
        if is_retry:
            values["transcription_retry_count"] = Call.transcription_retry_count + 1
        return await self._transition(call_id, TranscriptionStatus.PROCESSING, values)

    async def set_completed(self, call_id: str, text: str) -> bool:
        return await self._transition(call_id, TranscriptionStatus.COMPLETED, {
            "transcription_status": TranscriptionStatus.COMPLETED,
            "transcription_text": text,
            "transcription_error": "",
        })

    async def set_failed(self, call_id: str, error: str) -> bool:
        return await self._transition(call_id, TranscriptionStatus.FAILED, {
            "transcription_status": TranscriptionStatus.FAILED,
            "transcription_error": error or "Transcription failed",
        })

    async def reset_for_retry(self, call_id: str, session: Optional[AsyncSession] = None) -> bool:
        """
        Back to ``pending`` with the error cleared; the retry count only grows.

        Only matches while the call has no waiting or active job. Pass
        ``session`` to make the reset part of a larger transaction; the
        caller then commits.
        """
        no_open_job = ~exists().where(
            QueueJob.call_id == call_id,
            QueueJob.state.in_(OPEN_JOB_STATES),
        )
        return await self._transition(call_id, TranscriptionStatus.PENDING, {
            "transcription_status": TranscriptionStatus.PENDING,
            "transcription_error": "",
            "transcription_retry_count": Call.transcription_retry_count + 1,
        }, conditions=[no_open_job], session=session)

    async def _transition(
        self,
        call_id: str,
        target: TranscriptionStatus,
        values: Dict[str, Any],
        conditions: Sequence[Any] = (),
        session: Optional[AsyncSession] = None,
    ) -> bool:
        statement = (
            update(Call)
            .where(
                Call.id == call_id,
                Call.transcription_status.in_(allowed_sources(target)),
                *conditions,
            )
            .values(updated_at=datetime.utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if session is not None:
            result = await session.execute(statement)
        else:
            async with self._session_factory() as own_session:
                result = await own_session.execute(statement)
                await own_session.commit()

        if result.rowcount != 1:
            logger.warning(f"Status write to {target.value} rejected for call_id={call_id}")
            return False
        logger.debug(f"Call {call_id} -> {target.value}")
        return True
