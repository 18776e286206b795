"""
Fixed-size pool of asyncio workers draining the transcription queue.

Each worker loops: dequeue -> process -> report the outcome to the queue.
Per-job errors are caught at the job boundary and turned into call status
plus a queue retry decision; they never stop a worker.
"""

import asyncio
import logging
from typing import List, Optional

from engine.job_queue import JobQueue, TranscriptionJob
from services.call_store import CallStore
from services.transcription_service import Transcriber, TranscriptionError
from models.call import TranscriptionStatus
from utils.perf_logger import perf_logger

logger = logging.getLogger(__name__)

CALL_NOT_FOUND = "Call not found"
INTERRUPTED = "Interrupted: worker stopped during transcription"


class WorkerPool:
    """
    Runs ``concurrency`` independent worker loops against one JobQueue.

    Lifecycle: ``start()`` reconciles state left by a previous process and
    spawns the workers; ``stop()`` drains in-flight jobs (or cancels them).
    """

    def __init__(
        self,
        queue: JobQueue,
        store: CallStore,
        transcriber: Transcriber,
        concurrency: int = 5,
        poll_interval: float = 0.5,
        submit_delay_ms: int = 1000,
        timeout_seconds: Optional[float] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.queue = queue
        self.store = store
        self.transcriber = transcriber
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.submit_delay_ms = submit_delay_ms
        self.timeout_seconds = timeout_seconds

        self._tasks: List[asyncio.Task] = []
        self._stopping = asyncio.Event()
        self._running = False
        self._in_flight = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> int:
        """Number of jobs currently being processed."""
        return self._in_flight

    async def start(self) -> None:
        """Reconcile leftovers, then start the worker loops."""
        if self._running:
            logger.warning("Worker pool already running")
            return

        await self.reconcile()

        self._stopping.clear()
        self._running = True
        self._tasks = [
            asyncio.create_task(self._worker_loop(f"worker-{i + 1}"), name=f"transcription-worker-{i + 1}")
            for i in range(self.concurrency)
        ]
        logger.info(f"Worker pool started (concurrency={self.concurrency}, transcriber={self.transcriber.name})")

    async def stop(self, wait_for_current: bool = True) -> None:
        """
        Stop the worker loops.

        Args:
            wait_for_current: If True, let in-flight jobs finish; otherwise cancel them
        """
        if not self._running:
            return
        self._running = False
        self._stopping.set()

        if not wait_for_current:
            for task in self._tasks:
                task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Worker pool stopped")

    async def reconcile(self) -> int:
        """
        Repair state left behind by a crashed process.

        Jobs still marked active have no worker anymore and are dead-lettered.
        Calls stuck in ``processing`` without an open job are marked failed
        and retried once with a fresh job. Returns the number of calls retried.
        """
        orphaned = await self.queue.release_orphaned_jobs(INTERRUPTED)

        retried = 0
        for call_id in await self.store.list_ids_with_status(TranscriptionStatus.PROCESSING):
            if await self.queue.open_job_for_call(call_id) is not None:
                continue
            logger.warning(f"Recovering stuck call: call_id={call_id} (was PROCESSING)")
            await self.store.set_failed(call_id, INTERRUPTED)
            if await self.store.reset_for_retry(call_id):
                await self.queue.enqueue(call_id, delay_ms=self.submit_delay_ms)
                retried += 1

        if orphaned or retried:
            logger.info(f"Reconciliation complete: {len(orphaned)} orphaned jobs released, {retried} calls re-queued")
        return retried

    async def _worker_loop(self, worker_id: str) -> None:
        """Main worker loop - processes one job at a time."""
        while not self._stopping.is_set():
            try:
                job = await self.queue.dequeue(worker_id)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"{worker_id}: dequeue failed: {e}")
                job = None

            if job is None:
                await self._idle()
                continue

            self._in_flight += 1
            try:
                await self.process_job(job)
            except asyncio.CancelledError:
                logger.info(f"{worker_id}: cancelled while processing job_id={job.job_id}")
                break
            except Exception as e:
                logger.exception(f"{worker_id}: unexpected error on job_id={job.job_id}: {e}")
                await self._fail_quietly(job, str(e) or type(e).__name__)
            finally:
                self._in_flight -= 1

    async def _idle(self) -> None:
        """Wait for the poll interval, waking early on shutdown."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass

    async def process_job(self, job: TranscriptionJob) -> None:
        """Run one attempt of a job and record its outcome."""
        call_id = job.call_id

        request = await self.store.get_transcription_request(call_id)
        if request is None:
            # The call can never appear, so retrying is pointless
            logger.error(f"Transcription job {job.job_id} references missing call_id={call_id}")
            await self.queue.fail(job.job_id, CALL_NOT_FOUND, retryable=False)
            return

        if not await self.store.set_processing(call_id, is_retry=job.attempt > 1):
            logger.warning(f"Call {call_id} cannot enter processing, dropping stale job_id={job.job_id}")
            await self.queue.complete(job.job_id)
            return

        phase = f"Transcription (job {job.job_id}, call {call_id}, attempt {job.attempt})"
        perf_logger.start_phase(phase)
        try:
            text = await self._transcribe(request)
        except Exception as e:
            error = str(e) or type(e).__name__
            perf_logger.end_phase(phase, f"FAILED: {error}")
            await self.store.set_failed(call_id, error)
            decision = await self.queue.fail(job.job_id, error)
            if decision.dead_lettered:
                logger.error(f"Transcription failed permanently for call: {call_id}")
            return

        perf_logger.end_phase(phase, "COMPLETED")
        if not await self.store.set_completed(call_id, text):
            logger.warning(f"Transcript for call {call_id} was not stored (call changed or deleted)")
        await self.queue.complete(job.job_id)
        logger.info(f"Transcription completed for call: {call_id}")

    async def _transcribe(self, request) -> str:
        if self.timeout_seconds:
            try:
                text = await asyncio.wait_for(self.transcriber.transcribe(request), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                raise TranscriptionError(f"Transcription timed out after {self.timeout_seconds}s")
        else:
            text = await self.transcriber.transcribe(request)

        if not text or not text.strip():
            raise TranscriptionError("Transcriber returned an empty transcript")
        return text

    async def _fail_quietly(self, job: TranscriptionJob, error: str) -> None:
        try:
            await self.queue.fail(job.job_id, error)
        except Exception as e:
            logger.error(f"Could not report failure for job_id={job.job_id}: {e}")
