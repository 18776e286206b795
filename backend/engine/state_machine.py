"""
Transcription status lifecycle of a call.

    pending -> processing -> completed | failed
    failed  -> processing      (automatic retry attempt begins)
    failed | completed | pending -> pending   (explicit retry request)

The CallStore applies every status write as a conditional update whose
WHERE clause is built from ``allowed_sources``; the API layer goes through
``request_retry`` for manual retries. A call in ``processing`` cannot be
entered again, so a duplicate delivery is dropped by the worker.
"""

import logging
from typing import Dict, FrozenSet

from models.call import TranscriptionStatus
from utils.exceptions import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

PENDING = TranscriptionStatus.PENDING
PROCESSING = TranscriptionStatus.PROCESSING
COMPLETED = TranscriptionStatus.COMPLETED
FAILED = TranscriptionStatus.FAILED

ALLOWED_TRANSITIONS: Dict[TranscriptionStatus, FrozenSet[TranscriptionStatus]] = {
    PENDING: frozenset({PROCESSING, PENDING}),
    PROCESSING: frozenset({COMPLETED, FAILED}),
    FAILED: frozenset({PROCESSING, PENDING}),
    COMPLETED: frozenset({PENDING}),
}


def can_transition(source: TranscriptionStatus, target: TranscriptionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(source, frozenset())


def allowed_sources(target: TranscriptionStatus) -> FrozenSet[TranscriptionStatus]:
    """All statuses from which ``target`` may be entered."""
    return frozenset(
        source for source, targets in ALLOWED_TRANSITIONS.items() if target in targets
    )


async def request_retry(call_id: str, store, queue, delay_ms: int = 0) -> int:
    """
    Reset a call to ``pending`` and submit exactly one new job for it.

    Rejected while the call is processing or already has a waiting/active
    job, so a call never has two jobs in flight. The reset and the new job
    are written in one transaction; the reset only matches while the call
    has no open job, so of two concurrent requests exactly one wins.
    Returns the new job id.
    """
    projection = await store.get_status_projection(call_id)
    if projection is None:
        raise NotFoundError("Call not found")

    if projection.status == PROCESSING:
        raise ConflictError("Transcription is already in progress")

    open_job = await queue.open_job_for_call(call_id)
    if open_job is not None:
        raise ConflictError(
            f"Transcription job {open_job.job_id} is already {open_job.state.value} for this call"
        )

    async with store.session() as session:
        if not await store.reset_for_retry(call_id, session=session):
            # Another retry won, a worker picked the call up, or it was deleted
            raise ConflictError("Transcription state changed, retry rejected")
        job_id = await queue.enqueue(call_id, delay_ms=delay_ms, session=session)
        await session.commit()

    logger.info(f"Manual retry submitted: call_id={call_id}, job_id={job_id}")
    return job_id
