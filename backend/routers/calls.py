"""
Call CRUD, transcription status and retry endpoints.
"""

import logging
import math
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from engine.job_queue import JobQueue, enqueue_transcription
from engine.state_machine import request_retry
from models import get_db, Call, CallStatus, TranscriptionStatus, User
from routers.deps import get_call_store, get_current_user, get_queue
from services.call_store import CallStore
from utils.exceptions import ForbiddenError, NotFoundError, QueueUnavailableError, ValidationError

logger = logging.getLogger(__name__)
router = APIRouter()

SORTABLE_FIELDS = {
    "created_at": Call.created_at,
    "updated_at": Call.updated_at,
    "scheduled_at": Call.scheduled_at,
    "title": Call.title,
    "duration": Call.duration,
}


class Participant(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=3, max_length=255)
    role: Literal["host", "participant"] = "participant"

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class CallCreate(BaseModel):
    title: Optional[str] = None
    participants: List[Participant] = []
    scheduled_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    notes: Optional[str] = None
    audio_file_url: Optional[str] = None


class CallUpdate(BaseModel):
    title: Optional[str] = None
    participants: Optional[List[Participant]] = None
    status: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    notes: Optional[str] = None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() + "Z" if value else None


def call_to_dict(call: Call) -> dict:
    return {
        "id": call.id,
        "title": call.title,
        "duration": call.duration,
        "participants": call.participants or [],
        "status": call.status.value,
        "notes": call.notes,
        "audio_file_url": call.audio_file_url,
        "transcription_status": call.transcription_status.value,
        "transcription_text": call.transcription_text,
        "transcription_retry_count": call.transcription_retry_count,
        "transcription_error": call.transcription_error,
        "scheduled_at": _iso(call.scheduled_at),
        "started_at": _iso(call.started_at),
        "ended_at": _iso(call.ended_at),
        "created_by": call.created_by,
        "created_at": _iso(call.created_at),
        "updated_at": _iso(call.updated_at),
    }


def validate_title(title: Optional[str]) -> str:
    if title is None or not title.strip():
        raise ValidationError("Title is required")
    title = title.strip()
    if len(title) > 100:
        raise ValidationError("Title cannot be more than 100 characters")
    return title


def validate_notes(notes: Optional[str]) -> Optional[str]:
    if notes is not None and len(notes) > 500:
        raise ValidationError("Notes cannot be more than 500 characters")
    return notes


def parse_enum(enum_cls, value: str, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {label} '{value}', expected one of: {allowed}")


async def get_owned_call(call_id: str, user: User, db: AsyncSession, action: str = "access") -> Call:
    call = await db.get(Call, call_id)
    if not call:
        raise NotFoundError("Call not found")
    if call.created_by != user.id:
        raise ForbiddenError(f"Not authorized to {action} this call")
    return call


@router.post("", status_code=201)
async def create_call(
    body: CallCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    queue: JobQueue = Depends(get_queue),
):
    """Create a call record and queue its transcription."""
    call = Call(
        title=validate_title(body.title),
        participants=[p.model_dump() for p in body.participants],
        scheduled_at=body.scheduled_at or datetime.utcnow(),
        started_at=body.started_at,
        ended_at=body.ended_at,
        notes=validate_notes(body.notes),
        audio_file_url=body.audio_file_url or "",
        transcription_status=TranscriptionStatus.PENDING,
        transcription_retry_count=0,
        created_by=user.id,
    )
    call.refresh_duration()
    db.add(call)
    await db.flush()
    await db.refresh(call)

    # Commit before enqueueing so the worker can see the call
    await db.commit()

    try:
        await enqueue_transcription(queue, call.id, delay_ms=settings.transcription_submit_delay_ms)
    except QueueUnavailableError as e:
        # The call stays pending until a manual retry
        logger.error(f"Error queuing transcription job for call {call.id}: {e}")

    return call_to_dict(call)


@router.get("")
async def list_calls(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    transcription_status: Optional[str] = None,
    search: Optional[str] = None,
    sort: str = "-created_at",
):
    """List the caller's calls with filtering, search and pagination."""
    conditions = [Call.created_by == user.id]
    if status:
        conditions.append(Call.status == parse_enum(CallStatus, status, "status"))
    if transcription_status:
        conditions.append(
            Call.transcription_status == parse_enum(TranscriptionStatus, transcription_status, "transcription status")
        )
    if search:
        search_term = f"%{search}%"
        conditions.append(or_(Call.title.ilike(search_term), Call.notes.ilike(search_term)))

    descending = sort.startswith("-")
    sort_column = SORTABLE_FIELDS.get(sort.lstrip("-"))
    if sort_column is None:
        raise ValidationError(f"Cannot sort by '{sort.lstrip('-')}'")
    order = sort_column.desc() if descending else sort_column.asc()

    total = (await db.execute(select(func.count(Call.id)).where(*conditions))).scalar_one()
    result = await db.execute(
        select(Call)
        .where(*conditions)
        .order_by(order, Call.id)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    calls = result.scalars().all()

    return {
        "count": len(calls),
        "total": total,
        "page": page,
        "pages": math.ceil(total / limit),
        "data": [call_to_dict(c) for c in calls],
    }


@router.get("/{call_id}")
async def get_call(
    call_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    call = await get_owned_call(call_id, user, db)
    return call_to_dict(call)


@router.put("/{call_id}")
async def update_call(
    call_id: str,
    body: CallUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Update call metadata. Transcription fields are owned by the pipeline."""
    call = await get_owned_call(call_id, user, db, action="update")
    changes = body.model_dump(exclude_unset=True)

    if "title" in changes:
        call.title = validate_title(changes["title"])
    if "participants" in changes and body.participants is not None:
        call.participants = [p.model_dump() for p in body.participants]
    if "status" in changes and changes["status"] is not None:
        call.status = parse_enum(CallStatus, changes["status"], "status")
    if "notes" in changes:
        call.notes = validate_notes(changes["notes"])
    if "started_at" in changes:
        call.started_at = changes["started_at"]
    if "ended_at" in changes:
        call.ended_at = changes["ended_at"]
    call.refresh_duration()

    await db.flush()
    await db.refresh(call)
    await db.commit()
    return call_to_dict(call)


@router.delete("/{call_id}")
async def delete_call(
    call_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    call = await get_owned_call(call_id, user, db, action="delete")
    await db.delete(call)
    await db.commit()
    logger.info(f"Call deleted: {call_id}")
    return {"message": "Call deleted successfully"}


@router.get("/{call_id}/transcription")
async def get_call_transcription(
    call_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Transcription status, text, retry count and last error."""
    call = await get_owned_call(call_id, user, db)
    return {
        "call_id": call.id,
        "title": call.title,
        "transcription_status": call.transcription_status.value,
        "transcription_text": call.transcription_text,
        "transcription_retry_count": call.transcription_retry_count,
        "transcription_error": call.transcription_error,
        "created_at": _iso(call.created_at),
        "updated_at": _iso(call.updated_at),
    }


@router.post("/{call_id}/retry-transcription")
async def retry_transcription(
    call_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    store: CallStore = Depends(get_call_store),
    queue: JobQueue = Depends(get_queue),
):
    """Reset the transcription to pending and queue a fresh job."""
    await get_owned_call(call_id, user, db, action="retry transcription for")
    job_id = await request_retry(call_id, store, queue, delay_ms=settings.transcription_submit_delay_ms)
    return {
        "message": "Transcription retry initiated",
        "call_id": call_id,
        "job_id": job_id,
        "transcription_status": TranscriptionStatus.PENDING.value,
    }
