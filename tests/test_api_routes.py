import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from api_handler import CompletionError, CompletionResult
from kalligram import create_app
from kalligram.config import TestConfig
from kalligram.extensions import db
from kalligram.models import Chapter, Project, User
from kalligram.services import story_store, text_generation


@pytest.fixture
def app_instance():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    db.create_all()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def client(app_instance):
    return app_instance.test_client()


@pytest.fixture
def user(app_instance):
    user = User(email="user@example.com", first_name="Ana")
    user.set_password("password123")
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def project(app_instance, user):
    project = Project(title="Demo Project", description="Desc", owner=user)
    db.session.add(project)
    db.session.commit()
    return project


def _login(client, user):
    client.post(
        "/login",
        data={"email": user.email, "password": "password123"},
        follow_redirects=True,
    )


class DummyClient:
    def __init__(self, text="The lantern flickered. And", error=None):
        self.text = text
        self.error = error
        self.calls = []

    def complete(self, messages_or_prompt, **kwargs):
        self.calls.append((messages_or_prompt, kwargs))
        if self.error is not None:
            raise self.error
        return CompletionResult(text=self.text, usage={"total_tokens": 17})


@pytest.fixture
def dummy_client(monkeypatch):
    dummy = DummyClient()
    monkeypatch.setattr(text_generation, "_get_completion_client", lambda provider: dummy)
    return dummy


# ------------------------------------------------------------------ auth


def test_api_requires_login(client):
    response = client.post("/api/generate-text-simple", json={"prompt": "Hi"})

    assert response.status_code == 401
    assert response.get_json()["success"] is False


def test_get_env_reports_missing_variables(client):
    response = client.get("/api/get-env")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["status"] == "missing_vars"
    assert payload["missing"] == ["SUPABASE_URL", "SUPABASE_ANON_KEY"]
    assert payload["SUPABASE_URL"] is None
    assert response.headers["Cache-Control"] == "no-store, no-cache, must-revalidate, proxy-revalidate"


def test_get_env_returns_public_keys(app_instance, client):
    app_instance.config["SUPABASE_URL"] = "https://demo.supabase.co"
    app_instance.config["SUPABASE_ANON_KEY"] = "anon-key"

    payload = client.get("/api/get-env").get_json()

    assert payload == {
        "SUPABASE_URL": "https://demo.supabase.co",
        "SUPABASE_ANON_KEY": "anon-key",
        "status": "success",
        "missing": [],
    }
    assert "DEEPSEEK_API_KEY" not in payload


def test_get_env_allows_any_origin(client):
    response = client.get("/api/get-env", headers={"Origin": "https://writer.example"})

    assert response.headers["Access-Control-Allow-Origin"] in ("*", "https://writer.example")


def test_models_lists_configured_models(client):
    payload = client.get("/api/models").get_json()

    assert payload["default"] == "deepseek-chat"
    assert "distilgpt2" in payload["huggingface"]
    assert payload["local"] is False


# ------------------------------------------------------------------ generation


def test_generate_text_simple_success(client, user, dummy_client):
    _login(client, user)

    response = client.post(
        "/api/generate-text-simple",
        json={"prompt": "Light the lantern", "mode": "chat", "length": "120"},
    )

    assert response.status_code == 200
    payload = response.get_json()
    assert payload == {
        "success": True,
        "text": "The lantern flickered.",
        "model": "deepseek-chat",
        "userName": "Ana",
        "mode": "chat",
        "contextProvided": False,
        "previousChaptersProvided": False,
        "usage": {"total_tokens": 17},
        "requestedWords": 120,
        "actualWords": 3,
        "actualTokens": 17,
    }


def test_generate_text_simple_rejects_get(client, user):
    _login(client, user)

    response = client.get("/api/generate-text-simple")

    assert response.status_code == 405
    assert response.get_json()["error"] == "Method not allowed. Please use POST."


def test_generate_text_simple_validates_body(client, user, dummy_client):
    _login(client, user)

    missing = client.post("/api/generate-text-simple", data="", content_type="application/json")
    invalid = client.post("/api/generate-text-simple", data="{oops", content_type="application/json")
    no_prompt = client.post("/api/generate-text-simple", json={"prompt": ""})

    assert missing.status_code == 400
    assert missing.get_json()["error"] == "Missing request body"
    assert invalid.get_json()["error"] == "Invalid JSON in request body"
    assert no_prompt.get_json()["error"] == "Prompt is required"
    assert dummy_client.calls == []


def test_generate_text_simple_unknown_project_is_404(client, user, dummy_client):
    _login(client, user)

    response = client.post(
        "/api/generate-text-simple",
        json={"prompt": "Go", "project_id": "does-not-exist"},
    )

    assert response.status_code == 404
    assert dummy_client.calls == []


def test_generate_text_simple_uses_project_context(client, user, project, dummy_client):
    story_store.create_character(project, "Mira", "A cartographer")
    chapter = story_store.create_chapter(project, "Opening", "<p>It began at sea.</p>")
    db.session.commit()
    _login(client, user)

    response = client.post(
        "/api/generate-text-simple",
        json={"prompt": "Continue", "project_id": project.id, "chapter_id": chapter.id},
    )

    payload = response.get_json()
    assert payload["contextProvided"] is True
    assert payload["previousChaptersProvided"] is False
    assert "- Mira (supporting): A cartographer" in dummy_client.calls[0][0][0]["content"]


def test_generate_text_simple_maps_rate_limit(client, user, monkeypatch):
    error = CompletionError("API request failed with status 429: busy", status_code=429)
    monkeypatch.setattr(text_generation, "_get_completion_client", lambda provider: DummyClient(error=error))
    _login(client, user)

    response = client.post("/api/generate-text-simple", json={"prompt": "Go"})

    assert response.status_code == 429
    payload = response.get_json()
    assert payload["success"] is False
    assert payload["error"] == "Rate limit exceeded. Please try again in a few minutes."
    assert payload["debug"]["error"] == "API request failed with status 429: busy"
    assert payload["debug"]["stack"] is None


def test_generate_text_returns_completion(client, user, dummy_client):
    _login(client, user)

    response = client.post("/api/generate-text?model=distilgpt2", json={"prompt": "Begin", "length": 50})

    assert response.status_code == 200
    assert response.get_json() == {
        "success": True,
        "text": "The lantern flickered. And",
        "model": "distilgpt2",
        "usage": {"total_tokens": 17},
    }
    prompt, kwargs = dummy_client.calls[0]
    assert prompt == "Begin"
    assert kwargs["max_tokens"] == 50


def test_generate_text_error_body(client, user, monkeypatch):
    error = CompletionError("API request failed with status 500: upstream")
    monkeypatch.setattr(text_generation, "_get_completion_client", lambda provider: DummyClient(error=error))
    _login(client, user)

    response = client.post("/api/generate-text", json={"prompt": "Begin"})

    assert response.status_code == 500
    assert response.get_json() == {
        "success": False,
        "error": "API request failed with status 500: upstream",
        "model": "error",
    }


# ------------------------------------------------------------------ chapters


def test_chapter_autosave_flow(client, user, project):
    _login(client, user)

    created = client.post(f"/api/projects/{project.id}/chapters", json={"title": "Opening"})
    assert created.status_code == 201
    chapter_id = created.get_json()["chapter"]["id"]

    saved = client.patch(
        f"/api/projects/{project.id}/chapters/{chapter_id}",
        json={"content": "<p>Three words here.</p>"},
    )
    assert saved.status_code == 200
    payload = saved.get_json()
    assert payload["save_status"] == "saved"
    assert payload["chapter"]["word_count"] == 3
    assert payload["project_word_count"] == 3

    fetched = client.get(f"/api/projects/{project.id}/chapters/{chapter_id}").get_json()
    assert fetched["chapter"]["content"] == "<p>Three words here.</p>"


def test_chapter_create_defaults_title(client, user, project):
    _login(client, user)

    payload = client.post(f"/api/projects/{project.id}/chapters", json={}).get_json()

    assert payload["chapter"]["title"] == "Chapter 1"
    assert payload["chapter"]["order_index"] == 0


def test_chapter_update_rejects_empty_patch(client, user, project):
    chapter = story_store.create_chapter(project, "Opening")
    db.session.commit()
    _login(client, user)

    response = client.patch(f"/api/projects/{project.id}/chapters/{chapter.id}", json={})

    assert response.status_code == 400
    assert response.get_json()["save_status"] == "error"


def test_chapter_content_must_be_text(client, user, project):
    chapter = story_store.create_chapter(project, "Opening", "<p>Kept.</p>")
    db.session.commit()
    _login(client, user)

    patched = client.patch(f"/api/projects/{project.id}/chapters/{chapter.id}", json={"content": 5})
    created = client.post(f"/api/projects/{project.id}/chapters", json={"title": "X", "content": {"a": 1}})

    assert patched.status_code == 400
    assert patched.get_json() == {
        "success": False,
        "error": "Chapter content must be text.",
        "save_status": "error",
    }
    assert created.status_code == 400
    assert created.get_json()["error"] == "Chapter content must be text."
    assert Chapter.query.count() == 1
    assert db.session.get(Chapter, chapter.id).content == "<p>Kept.</p>"


def test_reorder_chapters(client, user, project):
    first = story_store.create_chapter(project, "One")
    second = story_store.create_chapter(project, "Two")
    db.session.commit()
    _login(client, user)

    response = client.post(
        f"/api/projects/{project.id}/chapters/order",
        json={"chapters": [{"id": first.id, "order_index": 1}, {"id": second.id, "order_index": 0}]},
    )

    assert response.status_code == 200
    assert [item["title"] for item in response.get_json()["chapters"]] == ["Two", "One"]
    listing = client.get(f"/api/projects/{project.id}/chapters").get_json()
    assert [item["id"] for item in listing["chapters"]] == [second.id, first.id]


def test_chapters_of_other_users_are_hidden(client, project):
    intruder = User(email="intruder@example.com")
    intruder.set_password("password123")
    db.session.add(intruder)
    db.session.commit()
    _login(client, intruder)

    response = client.get(f"/api/projects/{project.id}/chapters")

    assert response.status_code == 404
    assert Chapter.query.count() == 0


def test_project_context_items(client, user, project):
    story_store.create_character(project, "Mira")
    story_store.create_location(project, "Port")
    story_store.create_timeline_event(project, "Departure")
    db.session.commit()
    _login(client, user)

    items = client.get(f"/api/projects/{project.id}/context").get_json()["items"]

    assert [(item["type"], item["name"]) for item in items] == [
        ("character", "Mira"),
        ("location", "Port"),
        ("timeline_event", "Departure"),
    ]
    assert all(item["id"] for item in items)
