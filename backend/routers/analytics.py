"""
Per-user call and transcription statistics.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from models import get_db, Call, CallStatus, TranscriptionStatus, User
from routers.deps import get_current_user

router = APIRouter()


@router.get("/calls-summary")
async def get_calls_summary(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Totals per transcription status and the transcription success rate."""
    total_calls = (await db.execute(
        select(func.count(Call.id)).where(Call.created_by == user.id)
    )).scalar_one()
    completed_calls = (await db.execute(
        select(func.count(Call.id)).where(Call.created_by == user.id, Call.status == CallStatus.COMPLETED)
    )).scalar_one()

    result = await db.execute(
        select(Call.transcription_status, func.count(Call.id))
        .where(Call.created_by == user.id)
        .group_by(Call.transcription_status)
    )
    by_status = {status: count for status, count in result.all()}
    completed_transcriptions = by_status.get(TranscriptionStatus.COMPLETED, 0)

    return {
        "total_calls": total_calls,
        "completed_calls": completed_calls,
        "pending_transcriptions": by_status.get(TranscriptionStatus.PENDING, 0),
        "processing_transcriptions": by_status.get(TranscriptionStatus.PROCESSING, 0),
        "completed_transcriptions": completed_transcriptions,
        "failed_transcriptions": by_status.get(TranscriptionStatus.FAILED, 0),
        "transcription_success_rate": round(completed_transcriptions / total_calls * 100) if total_calls else 0,
    }
