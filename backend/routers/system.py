from fastapi import APIRouter, Depends, Request

from engine.job_queue import JobQueue
from routers.deps import get_queue

router = APIRouter()


@router.get("/queue")
async def get_queue_status(request: Request, queue: JobQueue = Depends(get_queue)):
    """Job counts per queue state and worker pool state."""
    pool = getattr(request.app.state, "worker_pool", None)
    return {
        "jobs": await queue.counts(),
        "workers": {
            "running": bool(pool and pool.is_running),
            "concurrency": pool.concurrency if pool else 0,
            "in_flight": pool.in_flight if pool else 0,
        },
    }
