import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from mediashelf.database import get_db
from mediashelf.main import register_routes
from mediashelf.services.import_jobs import ImportProcessor, ImportQueue


@pytest_asyncio.fixture
async def app(seeded, cache, mailer):
    app = FastAPI()
    register_routes(app)
    app.state.cache = cache
    app.state.metadata = None
    app.state.import_queue = ImportQueue(ImportProcessor(seeded, cache, mailer), backoff_seconds=0)
    app.state.integrations = {"redis": {"status": "ok"}, "jikan": {"status": "ok"}}

    async def override_get_db():
        async with seeded() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.mark.asyncio
async def test_health(client):
    r = await client.get("/api/v1/health")
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "ok"
    assert data["database"] == "ok"
    assert data["cache"] == "ok"
    assert data["integrations"]["jikan"]["status"] == "ok"


@pytest.mark.asyncio
async def test_upsert_then_status_change(client):
    body = {"media_id": 1, "media_type": "anime", "status": "watching", "rating": 3.5}
    r = await client.post("/api/v1/users/1/collection", json=body)
    assert r.status_code == 200
    assert r.json()["created"] is True
    assert r.json()["entry"]["rating"] == 3.5

    r = await client.post("/api/v1/users/1/collection", json={**body, "status": "completed", "rating": None})
    assert r.json()["created"] is False
    assert r.json()["entry"]["status"] == "completed"
    assert r.json()["entry"]["rating"] == 3.5

    r = await client.get("/api/v1/users/1/collection/check/anime/1")
    assert r.json()["in_collection"] is True
    assert r.json()["entry"]["status"] == "completed"


@pytest.mark.asyncio
async def test_write_errors_map_to_status_codes(client):
    body = {"media_id": 2, "media_type": "anime", "status": "watching"}
    assert (await client.post("/api/v1/users/1/collection/add", json=body)).status_code == 201

    r = await client.post("/api/v1/users/1/collection/add", json=body)
    assert r.status_code == 409
    assert "already in the collection" in r.json()["detail"]

    r = await client.post("/api/v1/users/1/collection", json={**body, "media_id": 999})
    assert r.status_code == 404

    r = await client.post("/api/v1/users/1/collection", json={**body, "rating": 7})
    assert r.status_code == 422

    r = await client.patch("/api/v1/users/1/collection/rating",
                           json={"media_id": 2, "media_type": "anime", "rating": 3.3})
    assert r.status_code == 400

    r = await client.patch("/api/v1/users/1/collection/rating",
                           json={"media_id": 2, "media_type": "anime", "rating": 4.5})
    assert r.json() == {"status": "ok", "rating": 4.5}


@pytest.mark.asyncio
async def test_remove(client):
    await client.post("/api/v1/users/1/collection",
                      json={"media_id": 1, "media_type": "manga", "status": "watching"})
    assert (await client.delete("/api/v1/users/1/collection/manga/1")).status_code == 204
    assert (await client.delete("/api/v1/users/1/collection/manga/1")).status_code == 404
    r = await client.get("/api/v1/users/1/collection/check/manga/1")
    assert r.json() == {"in_collection": False, "entry": None}


@pytest.mark.asyncio
async def test_read_endpoints(client):
    for media_id, status, rating in [(1, "completed", 5), (3, "completed", 4), (4, "dropped", None)]:
        await client.post("/api/v1/users/1/collection",
                          json={"media_id": media_id, "media_type": "anime", "status": status, "rating": rating})
    await client.post("/api/v1/users/2/collection",
                      json={"media_id": 1, "media_type": "anime", "status": "watching", "rating": 3})

    r = await client.post("/api/v1/users/1/collection/check-bulk",
                          json={"media_type": "anime", "media_ids": [1, 2, 3]})
    assert r.json() == {"found_ids": [1, 3]}

    r = await client.get("/api/v1/users/1/collection/items", params={"status": "completed", "limit": 1})
    assert r.json()["pagination"] == {"page": 1, "limit": 1, "total": 2, "total_pages": 2}

    r = await client.get("/api/v1/users/1/collection/summary", params={"view": "public"})
    assert r.json()["totals"] == {"anime": 3, "manga": 0, "game": 0}

    r = await client.get("/api/v1/users/1/collection/anime/ratings")
    assert r.json()["meta"]["total_rated"] == 2
    assert r.json()["meta"]["unrated"] == 1

    r = await client.get("/api/v1/media/anime/1/collectors")
    assert {u["username"] for u in r.json()["users"]} == {"alice", "bob"}

    r = await client.get("/api/v1/media/anime/1")
    assert r.json()["collection_count"] == 2
    assert r.json()["average_rating"] == 4.0

    assert (await client.get("/api/v1/media/movie/1")).status_code == 422


@pytest.mark.asyncio
async def test_import_inline(client):
    r = await client.post("/api/v1/users/1/import/mal", params={"wait": "true"}, json={"items": [
        {"type": "anime", "title": "Naruto", "status": "Completed", "score": 10},
        {"type": "manga", "title": "Unknown Manga", "status": "Reading"},
    ]})
    assert r.status_code == 200
    data = r.json()
    assert (data["imported"], data["failed"], data["not_found"], data["total"]) == (1, 1, 1, 2)

    r = await client.get("/api/v1/users/1/collection/check/anime/1")
    assert r.json()["entry"]["rating"] == 5.0


@pytest.mark.asyncio
async def test_import_job_lifecycle(client, app, mailer):
    r = await client.post("/api/v1/users/1/import/mal", json={"items": [
        {"type": "anime", "title": "Your Name", "status": "Plan to Watch"},
    ]})
    assert r.status_code == 202
    job_id = r.json()["job_id"]

    r = await client.get(f"/api/v1/import/jobs/{job_id}")
    assert r.json()["status"] == "queued"

    queue = app.state.import_queue
    await queue.run_job(queue.get(job_id))

    r = await client.get(f"/api/v1/import/jobs/{job_id}")
    assert r.json()["status"] == "completed"
    assert r.json()["result"]["imported"] == 1
    assert len(mailer.summaries) == 1

    r = await client.get("/api/v1/import/stats")
    assert r.json()["completed"] == 1

    assert (await client.get("/api/v1/import/jobs/missing")).status_code == 404
    assert (await client.post("/api/v1/users/99/import/mal", json={"items": []})).status_code == 404


@pytest.mark.asyncio
async def test_export_download(client):
    await client.post("/api/v1/users/1/collection",
                      json={"media_id": 2, "media_type": "manga", "status": "completed", "rating": 4})

    r = await client.get("/api/v1/users/1/export/mal", params={"media_type": "manga"})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("application/xml")
    assert r.headers["content-disposition"].startswith('attachment; filename="mangalist_')
    assert r.headers["content-disposition"].endswith('_-_1.xml"')
    assert "<manga_title>One Piece</manga_title>" in r.text
    assert "<my_score>8</my_score>" in r.text

    assert (await client.get("/api/v1/users/1/export/mal", params={"media_type": "game"})).status_code == 422
