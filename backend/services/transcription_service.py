"""
Transcription backends.

The worker pool only depends on the ``Transcriber`` interface. Two
implementations ship with the service:

- ``MockTranscriber`` simulates a real backend: it waits a random 2-10
  seconds, fails about 5% of the time and produces placeholder text.
- ``StaticTranscriber`` is deterministic (fixed text, explicit failure
  switch) and is meant for tests and local debugging.
"""

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from typing import Optional

from services.call_store import TranscriptionRequest

logger = logging.getLogger(__name__)


class TranscriptionError(Exception):
    """Base exception for transcription errors."""
    pass


class Transcriber(ABC):
    """Turns a call into transcript text."""

    name = "base"

    @abstractmethod
    async def transcribe(self, request: TranscriptionRequest) -> str:
        """Return the transcript text, or raise TranscriptionError."""


def generate_mock_transcription(request: TranscriptionRequest) -> str:
    """Placeholder transcript built from the call's metadata."""
    participants = ", ".join(p.get("name", "") for p in request.participants if p.get("name"))
    duration = 0
    if request.started_at and request.ended_at:
        duration = int((request.ended_at - request.started_at).total_seconds() // 60)

    return (
        f"This is a mock transcription for call {request.call_id}.\n"
        f"Meeting participants: {participants or 'Unknown'}\n"
        f"Duration: {duration or 15} minutes\n"
        "Key topics discussed: Project planning, timeline, deliverables\n"
        "Action items: Follow up on budget, schedule next meeting"
    )


class MockTranscriber(Transcriber):
    """Simulated backend with random latency and random failures."""

    name = "mock"

    def __init__(
        self,
        min_seconds: float = 2.0,
        max_seconds: float = 10.0,
        failure_rate: float = 0.05,
        rng: Optional[random.Random] = None,
    ):
        if min_seconds > max_seconds:
            raise ValueError("min_seconds must not exceed max_seconds")
        self.min_seconds = min_seconds
        self.max_seconds = max_seconds
        self.failure_rate = failure_rate
        self._rng = rng or random.Random()

    async def transcribe(self, request: TranscriptionRequest) -> str:
        processing_time = self._rng.uniform(self.min_seconds, self.max_seconds)
        logger.debug(f"Simulating {processing_time:.1f}s of transcription for call {request.call_id}")
        await asyncio.sleep(processing_time)

        if self._rng.random() < self.failure_rate:
            raise TranscriptionError("Simulated transcription failure")

        return generate_mock_transcription(request)


class StaticTranscriber(Transcriber):
    """Deterministic test double."""

    name = "static"

    def __init__(self, text: str = "Static transcript for call {call_id}.", fail: bool = False,
                 error_message: str = "Static transcriber configured to fail"):
        self.text = text
        self.fail = fail
        self.error_message = error_message
        self.calls = 0

    async def transcribe(self, request: TranscriptionRequest) -> str:
        self.calls += 1
        if self.fail:
            raise TranscriptionError(self.error_message)
        # Only {call_id} is substituted; other braces are kept verbatim
        return self.text.replace("{call_id}", request.call_id)


def build_transcriber(settings) -> Transcriber:
    """Select the Transcriber named by ``settings.transcriber_backend``."""
    backend = settings.transcriber_backend
    if backend == "mock":
        return MockTranscriber(
            min_seconds=settings.mock_min_seconds,
            max_seconds=settings.mock_max_seconds,
            failure_rate=settings.mock_failure_rate,
        )
    if backend == "static":
        return StaticTranscriber(text=settings.static_transcript_text, fail=settings.static_fail)
    raise ValueError(f"Unknown transcriber backend: {backend}")
