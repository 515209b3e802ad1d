# backend/tests/test_wiki_api.py
"""Wiki API tests."""

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from kwiki.api.deps import get_app_context
from kwiki.generation import PageType, Wiki, WikiPage, WikiStatus
from kwiki.main import app
from kwiki.state import AppContext


@pytest.fixture
def make_ctx(make_config, make_registry, make_stub, templates):
    """Factory for an application context around stub providers."""

    def _make(*providers, **generator_overrides):
        providers = providers or (make_stub(),)
        return AppContext(
            make_config(**generator_overrides), registry=make_registry(*providers), templates=templates
        )

    return _make


@pytest.fixture
async def ctx(make_ctx):
    context = make_ctx()
    await context.start()
    app.dependency_overrides[get_app_context] = lambda: context
    yield context
    app.dependency_overrides.clear()
    await context.stop()


@pytest.fixture
async def client(ctx):
    """Create async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


def _completed_wiki():
    wiki = Wiki(
        id="github.com/owner/repo",
        repository_url="https://github.com/owner/repo",
        package_path="github.com/owner/repo",
        title="Repo",
        description="Documentation for owner/repo",
        languages=["en"],
    )
    wiki.add_page(WikiPage("project-overview_en", "Project Overview", "Hello", PageType.OVERVIEW, 1, 1))
    wiki.set_status(WikiStatus.COMPLETED)
    return wiki


async def _generate(client, ctx, **body):
    payload = {"repository_url": "template-docs", "languages": ["zh"], "settings": {"ai_provider": "stub"}}
    payload.update(body)
    response = await client.post("/api/wiki/generate", json=payload)
    if response.status_code == 202:
        await ctx.generator.wait_for(response.json()["wiki_id"])
    return response


async def test_generate_template_docs(client, ctx):
    response = await _generate(client, ctx)

    assert response.status_code == 202
    data = response.json()
    assert data["wiki_id"] == "template-docs/example"
    assert data["status"] == "pending"


async def test_generated_wiki_can_be_read(client, ctx):
    await _generate(client, ctx)

    detail = await client.get("/api/wiki/template-docs/example")
    assert detail.status_code == 200
    body = detail.json()
    assert body["status"] == "completed"
    assert body["page_count"] == 3
    assert body["tags"] == ["template-docs"]
    assert [page["id"] for page in body["pages"]] == ["overview_zh", "guide_zh", "architecture_zh"]

    pages = await client.get("/api/wiki/template-docs/example/pages", params={"language": "zh"})
    assert len(pages.json()) == 3
    assert "content" not in pages.json()[0]

    page = await client.get("/api/wiki/template-docs/example/page/overview_zh")
    assert page.status_code == 200
    assert page.json()["content"] == "X"
    assert page.json()["language"] == "zh"

    progress = await client.get("/api/wiki/template-docs/example/progress")
    assert progress.json()["progress"] == 100

    logs = await client.get("/api/wiki/template-docs/example/logs")
    assert logs.json()["logs"]

    listing = await client.get("/api/wikis")
    assert [wiki["id"] for wiki in listing.json()] == ["template-docs/example"]


async def test_generate_rejects_unknown_provider(client, ctx):
    response = await _generate(client, ctx, settings={"ai_provider": "ghost"})

    assert response.status_code == 400
    assert "ghost" in response.json()["detail"]


async def test_generate_rejects_unavailable_provider(make_ctx, make_stub):
    context = make_ctx(make_stub(), make_stub(name="offline", available=False))
    app.dependency_overrides[get_app_context] = lambda: context
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.post(
                "/api/wiki/generate",
                json={"repository_url": "template-docs", "settings": {"ai_provider": "offline"}},
            )
    finally:
        app.dependency_overrides.clear()
        await context.stop()

    assert response.status_code == 400
    assert "not available" in response.json()["detail"]


async def test_generate_rejects_blank_target(client):
    response = await client.post("/api/wiki/generate", json={"repository_url": ""})

    assert response.status_code == 422


async def test_duplicate_generation_conflicts(make_ctx, make_stub):
    context = make_ctx(make_stub(delay=0.3), use_streaming=False)
    app.dependency_overrides[get_app_context] = lambda: context
    payload = {"repository_url": "https://github.com/owner/repo", "settings": {"ai_provider": "stub"}}
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            first = await client.post("/api/wiki/generate", json=payload)
            second = await client.post("/api/wiki/generate", json=payload)
            busy_delete = await client.delete("/api/wiki/github.com/owner/repo")
            await context.generator.wait_for("github.com/owner/repo")
    finally:
        app.dependency_overrides.clear()
        await context.stop()

    assert first.status_code == 202
    assert second.status_code == 409
    detail = second.json()["detail"]
    assert detail["existing_wiki_id"] == "github.com/owner/repo"
    assert detail["status"] in ("pending", "analyzing", "generating")
    assert busy_delete.status_code == 400


async def test_unknown_wiki_is_404(client):
    assert (await client.get("/api/wiki/github.com/nobody/nothing")).status_code == 404
    assert (await client.get("/api/wiki/github.com/nobody/nothing/progress")).status_code == 404
    assert (await client.delete("/api/wiki/github.com/nobody/nothing")).status_code == 404


async def test_unknown_page_is_404(client, ctx):
    ctx.generator.adopt(_completed_wiki())

    response = await client.get("/api/wiki/github.com/owner/repo/page/missing_en")

    assert response.status_code == 404


async def test_delete_finished_wiki(client, ctx):
    wiki = _completed_wiki()
    ctx.storage.save_wiki(wiki)
    ctx.generator.adopt(wiki)

    response = await client.delete("/api/wiki/github.com/owner/repo")

    assert response.status_code == 200
    assert response.json()["wiki_id"] == "github.com/owner/repo"
    assert ctx.storage.load_wiki("github.com/owner/repo") is None
    assert (await client.get("/api/wiki/github.com/owner/repo")).status_code == 404


async def test_stream_reports_completion(client, ctx):
    ctx.generator.adopt(_completed_wiki())

    response = await client.get("/api/wiki/github.com/owner/repo/stream")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert "event: complete" in response.text
    assert '"progress": 100' in response.text


async def test_stream_reports_failure(client, ctx):
    wiki = _completed_wiki()
    wiki.status = WikiStatus.FAILED
    wiki.error = "All page generations failed"
    ctx.generator.adopt(wiki)

    response = await client.get("/api/wiki/github.com/owner/repo/stream")

    assert "event: error" in response.text
    assert "All page generations failed" in response.text


async def test_providers_models_and_info(client):
    providers = await client.get("/api/providers")
    assert [provider["name"] for provider in providers.json()] == ["stub"]
    assert providers.json()[0]["available"] is True

    models = await client.get("/api/models")
    assert models.json() == {"stub": ["stub-model"]}

    info = await client.get("/api/info")
    body = info.json()
    assert body["name"] == "kwiki"
    assert body["default_provider"] == "stub"
    assert "zh" in body["config"]["supported_languages"]


def test_websocket_sends_status_of_finished_wiki(make_ctx):
    context = make_ctx()
    context.generator.adopt(_completed_wiki())
    app.dependency_overrides[get_app_context] = lambda: context
    try:
        client = TestClient(app)
        with client.websocket_connect("/ws/github.com/owner/repo") as websocket:
            message = websocket.receive_json()
    finally:
        app.dependency_overrides.clear()

    assert message["type"] == "status"
    assert message["status"] == "completed"
    assert message["progress"] == 100


def test_websocket_reports_unknown_wiki(make_ctx):
    context = make_ctx()
    app.dependency_overrides[get_app_context] = lambda: context
    try:
        client = TestClient(app)
        with client.websocket_connect("/ws/github.com/nobody/nothing") as websocket:
            message = websocket.receive_json()
    finally:
        app.dependency_overrides.clear()

    assert message == {"type": "error", "wiki_id": "github.com/nobody/nothing", "error": "Wiki not found"}
