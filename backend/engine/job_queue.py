"""
Durable job queue for transcription processing.

Jobs live in the ``queue_jobs`` table. A job becomes eligible once its
``run_at`` has passed; eligible jobs are handed out oldest-first, with
insertion order breaking ties. Failed attempts are re-scheduled with
exponential backoff until ``max_attempts`` is reached, after which the job
is dead-lettered.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.queue_job import QueueJob, JobState, OPEN_JOB_STATES
from utils.exceptions import ConflictError, QueueUnavailableError

logger = logging.getLogger(__name__)



@dataclass
class TranscriptionJob:
    """A claimed (or inspected) job in the transcription queue."""
    job_id: int
    call_id: str
    attempt: int
    max_attempts: int
    state: JobState
    run_at: datetime
    error: Optional[str] = None

    @classmethod
    def from_row(cls, row: QueueJob) -> "TranscriptionJob":
        return cls(
            job_id=row.id,
            call_id=row.call_id,
            attempt=row.attempt,
            max_attempts=row.max_attempts,
            state=row.state,
            run_at=row.run_at,
            error=row.error,
        )


@dataclass
class RetryDecision:
    """Outcome of reporting a failed attempt to the queue."""
    retried: bool
    dead_lettered: bool
    next_attempt: Optional[int] = None
    delay_ms: Optional[int] = None


IGNORED = RetryDecision(retried=False, dead_lettered=False)


class JobQueue:
    """
    SQLite-backed delayed queue with retry and dead-lettering.

    Claims are made with a conditional UPDATE, so two workers can never
    hold the same job at once.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        max_attempts: int = 3,
        backoff_ms: int = 2000,
        keep_completed: Optional[int] = 10,
        keep_failed: Optional[int] = 5,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._session_factory = session_factory
        self.max_attempts = max_attempts
        self.backoff_ms = backoff_ms
        self.keep_completed = keep_completed
        self.keep_failed = keep_failed
        self._clock = clock

    def backoff_delay_ms(self, attempt: int) -> int:
        """Delay before the attempt following a failed ``attempt``."""
        return self.backoff_ms * 2 ** (attempt - 1)

    async def enqueue(self, call_id: str, delay_ms: int = 0, session: Optional[AsyncSession] = None) -> int:
        """
        Add a job for ``call_id`` that becomes eligible after ``delay_ms``.

        With ``session`` the job is only flushed; the caller owns the commit.
        Raises ConflictError if the call already has a waiting or active job.
        """
        now = self._clock()
        job = QueueJob(
            call_id=call_id,
            attempt=1,
            max_attempts=self.max_attempts,
            state=JobState.WAITING,
            run_at=now + timedelta(milliseconds=delay_ms),
            created_at=now,
            updated_at=now,
        )
        try:
            if session is not None:
                session.add(job)
                await session.flush()
            else:
                async with self._session_factory() as own_session:
                    own_session.add(job)
                    await own_session.commit()
        except IntegrityError as e:
            logger.warning(f"Call {call_id} already has an open job: {e}")
            raise ConflictError("Transcription job already queued for this call") from e
        except SQLAlchemyError as e:
            logger.error(f"Failed to enqueue job for call_id={call_id}: {e}")
            raise QueueUnavailableError(f"Could not enqueue transcription job: {e}") from e

        logger.info(f"Job enqueued: job_id={job.id}, call_id={call_id}, delay_ms={delay_ms}")
        return job.id

    async def dequeue(self, worker_id: str) -> Optional[TranscriptionJob]:
        """
        Claim the next eligible job, or return None.

        Returns None both when nothing is eligible and when another worker
        claimed the candidate first.
        """
        now = self._clock()
        async with self._session_factory() as session:
            result = await session.execute(
                select(QueueJob.id)
                .where(QueueJob.state == JobState.WAITING, QueueJob.run_at <= now)
                .order_by(QueueJob.run_at, QueueJob.id)
                .limit(1)
            )
            job_id = result.scalar_one_or_none()
            if job_id is None:
                return None

            claimed = await session.execute(
                update(QueueJob)
                .where(QueueJob.id == job_id, QueueJob.state == JobState.WAITING)
                .values(state=JobState.ACTIVE, worker_id=worker_id, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            if claimed.rowcount != 1:
                logger.debug(f"Lost claim race: job_id={job_id}, worker={worker_id}")
                return None

            row = await session.get(QueueJob, job_id, populate_existing=True)
            job = TranscriptionJob.from_row(row)

        logger.info(
            f"Job claimed: job_id={job.job_id}, call_id={job.call_id}, "
            f"attempt={job.attempt}/{job.max_attempts}, worker={worker_id}"
        )
        return job

    async def complete(self, job_id: int) -> bool:
        """Mark an active job as done. Returns False if it was not active."""
        now = self._clock()
        async with self._session_factory() as session:
            result = await session.execute(
                update(QueueJob)
                .where(QueueJob.id == job_id, QueueJob.state == JobState.ACTIVE)
                .values(state=JobState.COMPLETED, error=None, finished_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        if result.rowcount != 1:
            logger.debug(f"Complete ignored for job_id={job_id} (not active)")
            return False

        logger.info(f"Job completed: job_id={job_id}")
        await self._prune(JobState.COMPLETED, self.keep_completed)
        return True

    async def fail(self, job_id: int, error: str, retryable: bool = True) -> RetryDecision:
        """
        Report a failed attempt.

        Re-schedules the job with exponential backoff while attempts remain
        and ``retryable`` is set; otherwise dead-letters it.
        """
        now = self._clock()
        async with self._session_factory() as session:
            row = await session.get(QueueJob, job_id)
            if row is None or row.state != JobState.ACTIVE:
                logger.debug(f"Fail ignored for job_id={job_id} (not active)")
                return IGNORED

            attempt = row.attempt
            if retryable and attempt < row.max_attempts:
                delay_ms = self.backoff_delay_ms(attempt)
                values = dict(
                    state=JobState.WAITING,
                    attempt=attempt + 1,
                    run_at=now + timedelta(milliseconds=delay_ms),
                    worker_id=None,
                    error=error,
                    updated_at=now,
                )
                decision = RetryDecision(
                    retried=True, dead_lettered=False, next_attempt=attempt + 1, delay_ms=delay_ms
                )
            else:
                values = dict(state=JobState.FAILED, error=error, finished_at=now, updated_at=now)
                decision = RetryDecision(retried=False, dead_lettered=True)

            result = await session.execute(
                update(QueueJob)
                .where(QueueJob.id == job_id, QueueJob.state == JobState.ACTIVE)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        if result.rowcount != 1:
            return IGNORED

        if decision.retried:
            logger.warning(
                f"Job failed, retry scheduled: job_id={job_id}, call_id={row.call_id}, "
                f"next_attempt={decision.next_attempt}, delay_ms={decision.delay_ms}, error={error}"
            )
        else:
            logger.error(
                f"Job dead-lettered: job_id={job_id}, call_id={row.call_id}, "
                f"attempt={attempt}, error={error}"
            )
            await self._prune(JobState.FAILED, self.keep_failed)
        return decision

    async def get_job(self, job_id: int) -> Optional[TranscriptionJob]:
        async with self._session_factory() as session:
            row = await session.get(QueueJob, job_id)
            return TranscriptionJob.from_row(row) if row else None

    async def open_job_for_call(self, call_id: str) -> Optional[TranscriptionJob]:
        """The waiting or active job for a call, if there is one."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(QueueJob)
                .where(QueueJob.call_id == call_id, QueueJob.state.in_(OPEN_JOB_STATES))
                .order_by(QueueJob.id)
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return TranscriptionJob.from_row(row) if row else None

    async def jobs_for_call(self, call_id: str) -> List[TranscriptionJob]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(QueueJob).where(QueueJob.call_id == call_id).order_by(QueueJob.id)
            )
            return [TranscriptionJob.from_row(row) for row in result.scalars().all()]

    async def release_orphaned_jobs(self, reason: str) -> List[str]:
        """
        Dead-letter jobs left ``active`` by workers that no longer exist.

        Only safe while no worker of this process is running. Returns the
        call ids of the released jobs.
        """
        now = self._clock()
        async with self._session_factory() as session:
            result = await session.execute(
                select(QueueJob).where(QueueJob.state == JobState.ACTIVE)
            )
            orphaned = result.scalars().all()
            for row in orphaned:
                logger.warning(f"Releasing orphaned job: job_id={row.id}, call_id={row.call_id}")
                row.state = JobState.FAILED
                row.error = reason
                row.finished_at = now
                row.updated_at = now
            await session.commit()
        return [row.call_id for row in orphaned]

    async def counts(self) -> Dict[str, int]:
        """Number of jobs per queue state."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(QueueJob.state, func.count(QueueJob.id)).group_by(QueueJob.state)
            )
            by_state = {state: count for state, count in result.all()}
        return {state.value: by_state.get(state, 0) for state in JobState}

    async def _prune(self, state: JobState, keep: Optional[int]) -> None:
        """Drop finished jobs in ``state`` beyond the newest ``keep``."""
        if keep is None or keep < 0:
            return
        newest = (
            select(QueueJob.id)
            .where(QueueJob.state == state)
            .order_by(QueueJob.finished_at.desc(), QueueJob.id.desc())
            .limit(keep)
        )
        async with self._session_factory() as session:
            await session.execute(
                delete(QueueJob)
                .where(QueueJob.state == state, QueueJob.id.not_in(newest))
                .execution_options(synchronize_session=False)
            )
            await session.commit()


async def enqueue_transcription(queue: JobQueue, call_id: str, delay_ms: int = 0) -> int:
    """
    Submit a transcription job for a call.

    This is the entry point the API layer uses for adding transcription work.
    Raises QueueUnavailableError when the queue backend cannot be reached.
    """
    job_id = await queue.enqueue(call_id, delay_ms=delay_ms)
    logger.info(f"Transcription queued: call_id={call_id}, job_id={job_id}")
    return job_id
