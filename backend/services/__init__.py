"""
Services package.
"""

from services.call_store import CallStore, StatusProjection, TranscriptionRequest
from services.transcription_service import (
    Transcriber,
    MockTranscriber,
    StaticTranscriber,
    TranscriptionError,
    build_transcriber,
)
from services.auth_service import Authenticator

__all__ = [
    "CallStore",
    "StatusProjection",
    "TranscriptionRequest",
    "Transcriber",
    "MockTranscriber",
    "StaticTranscriber",
    "TranscriptionError",
    "build_transcriber",
    "Authenticator",
]
