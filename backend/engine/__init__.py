"""
Engine package for transcription processing.
Contains the durable job queue and the call transcription state machine.
The worker pool lives in ``engine.worker_pool``.
"""

from engine.job_queue import JobQueue, TranscriptionJob, RetryDecision, enqueue_transcription
from engine.state_machine import ALLOWED_TRANSITIONS, can_transition, allowed_sources, request_retry

__all__ = [
    "JobQueue",
    "TranscriptionJob",
    "RetryDecision",
    "enqueue_transcription",
    "ALLOWED_TRANSITIONS",
    "can_transition",
    "allowed_sources",
    "request_retry",
]
