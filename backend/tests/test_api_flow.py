import asyncio

import pytest
from httpx import AsyncClient

from main import app
from engine.worker_pool import WorkerPool
from models import JobState
from utils.exceptions import QueueUnavailableError

from conftest import CALL_PAYLOAD, register, wait_until


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    """Test the health check endpoint."""
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["queue"] == {"waiting": 0, "active": 0, "completed": 0, "failed": 0}
    assert data["worker_running"] is False


@pytest.mark.asyncio
async def test_register_login_and_me(client: AsyncClient):
    headers = await register(client, email="Someone@Example.com")

    me = await client.get("/api/auth/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["email"] == "someone@example.com"

    login = await client.post("/api/auth/login", json={"email": "someone@example.com", "password": "123456"})
    assert login.status_code == 200
    assert login.json()["token"]

    bad = await client.post("/api/auth/login", json={"email": "someone@example.com", "password": "wrong"})
    assert bad.status_code == 401


@pytest.mark.asyncio
async def test_duplicate_registration_conflicts(client: AsyncClient):
    await register(client, email="dup@example.com")
    response = await client.post(
        "/api/auth/register",
        json={"name": "Again", "email": "dup@example.com", "password": "123456"},
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_calls_require_token(client: AsyncClient):
    response = await client.get("/api/calls")
    assert response.status_code == 401
    assert response.json()["detail"] == "Not authorized, no token"

    response = await client.get("/api/calls", headers={"Authorization": "Bearer garbage"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Not authorized, invalid token"


@pytest.mark.asyncio
async def test_create_call_starts_pending_and_queues_job(client: AsyncClient, auth_headers):
    response = await client.post("/api/calls", json=CALL_PAYLOAD, headers=auth_headers)

    assert response.status_code == 201, response.text
    data = response.json()
    assert data["title"] == "Test Meeting"
    assert data["transcription_status"] == "pending"
    assert data["transcription_retry_count"] == 0
    assert data["transcription_text"] == ""
    assert data["participants"][0]["email"] == "john@example.com"

    job = await app.state.queue.open_job_for_call(data["id"])
    assert job is not None
    assert job.state == JobState.WAITING
    assert job.attempt == 1


@pytest.mark.asyncio
async def test_create_call_survives_queue_outage(client: AsyncClient, auth_headers, monkeypatch):
    async def unavailable(*args, **kwargs):
        raise QueueUnavailableError("queue down")

    monkeypatch.setattr(app.state.queue, "enqueue", unavailable)

    response = await client.post("/api/calls", json=CALL_PAYLOAD, headers=auth_headers)

    assert response.status_code == 201
    assert response.json()["transcription_status"] == "pending"


@pytest.mark.asyncio
async def test_transcription_lifecycle(client: AsyncClient, auth_headers):
    """
    Test the full transcription lifecycle:
    1. Create call
    2. Worker pool processes the queued job
    3. Transcription endpoint reports the result
    """
    create = await client.post("/api/calls", json=CALL_PAYLOAD, headers=auth_headers)
    call_id = create.json()["id"]

    pool: WorkerPool = app.state.worker_pool
    pool.poll_interval = 0.01
    await pool.start()

    async def completed():
        res = await client.get(f"/api/calls/{call_id}/transcription", headers=auth_headers)
        return res.json() if res.json()["transcription_status"] == "completed" else None

    try:
        data = await wait_until(completed)
    finally:
        await pool.stop()

    assert data["call_id"] == call_id
    assert data["transcription_text"] == f"Transcript of call {call_id}."
    assert data["transcription_error"] == ""
    assert data["transcription_retry_count"] == 0


@pytest.mark.asyncio
async def test_retry_rejected_while_job_is_open(client: AsyncClient, auth_headers):
    create = await client.post("/api/calls", json=CALL_PAYLOAD, headers=auth_headers)
    call_id = create.json()["id"]

    response = await client.post(f"/api/calls/{call_id}/retry-transcription", headers=auth_headers)

    assert response.status_code == 409
    assert len(await app.state.queue.jobs_for_call(call_id)) == 1


@pytest.mark.asyncio
async def test_retry_rejected_while_processing(client: AsyncClient, auth_headers):
    create = await client.post("/api/calls", json=CALL_PAYLOAD, headers=auth_headers)
    call_id = create.json()["id"]
    queue = app.state.queue
    store = app.state.call_store

    job = await queue.dequeue("w1")
    await store.set_processing(call_id)
    await queue.complete(job.job_id)  # job gone, status still processing

    response = await client.post(f"/api/calls/{call_id}/retry-transcription", headers=auth_headers)
    assert response.status_code == 409
    assert "in progress" in response.json()["detail"]


@pytest.mark.asyncio
async def test_retry_after_dead_letter(client: AsyncClient, auth_headers):
    create = await client.post("/api/calls", json=CALL_PAYLOAD, headers=auth_headers)
    call_id = create.json()["id"]
    queue = app.state.queue
    store = app.state.call_store

    job = await queue.dequeue("w1")
    await store.set_processing(call_id)
    await store.set_failed(call_id, "Simulated transcription failure")
    await queue.fail(job.job_id, "Simulated transcription failure", retryable=False)

    failed = await client.get(f"/api/calls/{call_id}/transcription", headers=auth_headers)
    assert failed.json()["transcription_status"] == "failed"
    assert failed.json()["transcription_error"] == "Simulated transcription failure"

    response = await client.post(f"/api/calls/{call_id}/retry-transcription", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["message"] == "Transcription retry initiated"

    status = await client.get(f"/api/calls/{call_id}/transcription", headers=auth_headers)
    data = status.json()
    assert data["transcription_status"] == "pending"
    assert data["transcription_error"] == ""
    assert data["transcription_retry_count"] == 1

    open_jobs = [j for j in await queue.jobs_for_call(call_id) if j.state == JobState.WAITING]
    assert [j.job_id for j in open_jobs] == [response.json()["job_id"]]


@pytest.mark.asyncio
async def test_retry_surfaces_queue_outage(client: AsyncClient, auth_headers, monkeypatch):
    create = await client.post("/api/calls", json=CALL_PAYLOAD, headers=auth_headers)
    call_id = create.json()["id"]
    queue = app.state.queue
    job = await queue.dequeue("w1")
    await queue.fail(job.job_id, "gone", retryable=False)

    async def unavailable(*args, **kwargs):
        raise QueueUnavailableError("queue down")

    monkeypatch.setattr(queue, "enqueue", unavailable)

    response = await client.post(f"/api/calls/{call_id}/retry-transcription", headers=auth_headers)
    assert response.status_code == 503
    assert response.json()["type"] == "QueueUnavailableError"


@pytest.mark.asyncio
async def test_concurrent_retry_requests(client: AsyncClient, auth_headers):
    create = await client.post("/api/calls", json=CALL_PAYLOAD, headers=auth_headers)
    call_id = create.json()["id"]
    queue = app.state.queue
    store = app.state.call_store

    job = await queue.dequeue("w1")
    await store.set_processing(call_id)
    await store.set_failed(call_id, "boom")
    await queue.fail(job.job_id, "boom", retryable=False)

    url = f"/api/calls/{call_id}/retry-transcription"
    responses = await asyncio.gather(
        client.post(url, headers=auth_headers),
        client.post(url, headers=auth_headers),
    )

    assert sorted(r.status_code for r in responses) == [200, 409]
    waiting = [j for j in await queue.jobs_for_call(call_id) if j.state == JobState.WAITING]
    assert len(waiting) == 1
    status = await client.get(f"/api/calls/{call_id}/transcription", headers=auth_headers)
    assert status.json()["transcription_retry_count"] == 1
