import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from kalligram import create_app
from kalligram.config import TestConfig
from kalligram.extensions import db
from kalligram.models import Chapter, Character, CharacterRelationship, Location, Project, TimelineEvent, User
from kalligram.services import story_store


@pytest.fixture
def app_instance():
    app = create_app(TestConfig)
    app.config["WTF_CSRF_ENABLED"] = False
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
    user = User(email="user@example.com", first_name="Test")
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


# ------------------------------------------------------------------ auth & dashboard


def test_register_login_and_dashboard(client, app_instance):
    response = client.post(
        "/register",
        data={
            "first_name": "Ana",
            "last_name": "",
            "email": "Ana@Example.com",
            "password": "password123",
            "confirm_password": "password123",
        },
        follow_redirects=True,
    )
    assert b"Account created successfully. Please sign in." in response.data
    assert User.query.filter_by(email="ana@example.com").count() == 1

    response = client.post(
        "/login",
        data={"email": "ana@example.com", "password": "password123"},
        follow_redirects=True,
    )
    assert b"Welcome back, Ana!" in response.data
    assert b"Your projects" in response.data


def test_login_rejects_wrong_password(client, user):
    response = client.post(
        "/login",
        data={"email": user.email, "password": "wrong-password"},
        follow_redirects=True,
    )

    assert b"Invalid email or password." in response.data


def test_pages_require_login(client, project):
    response = client.get(f"/projects/{project.id}")

    assert response.status_code == 302
    assert "/login" in response.headers["Location"]


def test_landing_redirects_signed_in_users(client, user):
    assert b"Write your story" in client.get("/").data

    _login(client, user)
    response = client.get("/")

    assert response.status_code == 302
    assert response.headers["Location"].endswith("/dashboard")


def test_dashboard_creates_project(client, user):
    _login(client, user)

    response = client.post(
        "/dashboard",
        data={"title": "  Salt Roads  ", "description": "Smugglers"},
        follow_redirects=True,
    )

    assert b"Project created." in response.data
    project = Project.query.filter_by(user_id=user.id).one()
    assert project.title == "Salt Roads"


def test_profile_update(client, user):
    _login(client, user)

    response = client.post(
        "/profile",
        data={"first_name": "Ana", "last_name": "Lind", "profile_picture_url": ""},
        follow_redirects=True,
    )

    assert b"Profile updated." in response.data
    db.session.refresh(user)
    assert (user.first_name, user.last_name, user.profile_picture_url) == ("Ana", "Lind", None)


# ------------------------------------------------------------------ workspace


def test_other_users_cannot_open_project(client, project):
    intruder = User(email="intruder@example.com")
    intruder.set_password("password123")
    db.session.add(intruder)
    db.session.commit()
    _login(client, intruder)

    assert client.get(f"/projects/{project.id}").status_code == 403
    assert client.get("/projects/missing").status_code == 404


def test_chapter_submission_creates_and_updates(client, user, project):
    _login(client, user)

    response = client.post(
        f"/projects/{project.id}",
        data={
            "chapter-chapter_id": "",
            "chapter-title": "Harbour",
            "chapter-content": "<p>The tide went out.</p>",
            "chapter-submit": "Save chapter",
        },
        follow_redirects=True,
    )

    assert b"Chapter added to the project." in response.data
    chapter = Chapter.query.one()
    assert chapter.word_count == 4

    response = client.post(
        f"/projects/{project.id}",
        data={
            "chapter-chapter_id": chapter.id,
            "chapter-title": "Harbour at Dawn",
            "chapter-content": "<p>The tide went out again.</p>",
            "chapter-submit": "Save chapter",
        },
        follow_redirects=True,
    )

    assert b"Chapter saved." in response.data
    db.session.refresh(chapter)
    assert chapter.title == "Harbour at Dawn"
    assert chapter.word_count == 5


def test_chapter_without_title_shows_flash(client, user, project):
    _login(client, user)

    response = client.post(
        f"/projects/{project.id}",
        data={"chapter-title": "", "chapter-content": "text", "chapter-submit": "Save chapter"},
        follow_redirects=True,
    )

    assert b"Give the chapter a title before saving." in response.data
    assert Chapter.query.count() == 0


def test_invalid_character_submission_shows_flash(client, user, project):
    _login(client, user)

    response = client.post(
        f"/projects/{project.id}",
        data={
            "character-name": "",
            "character-role": "supporting",
            "character-description": "",
            "character-submit": "Save character",
        },
        follow_redirects=True,
    )

    assert b"Add a character name before saving." in response.data
    assert Character.query.count() == 0


def test_valid_character_submission_creates_character(client, user, project):
    _login(client, user)

    response = client.post(
        f"/projects/{project.id}",
        data={
            "character-name": "Nova",
            "character-role": "protagonist",
            "character-description": "Raised among smugglers.",
            "character-submit": "Save character",
        },
        follow_redirects=True,
    )

    assert b"Character added to the project." in response.data
    character = Character.query.one()
    assert (character.name, character.role) == ("Nova", "protagonist")


def test_relationship_submission(client, user, project):
    mira = story_store.create_character(project, "Mira")
    tomas = story_store.create_character(project, "Tomas")
    db.session.commit()
    _login(client, user)

    response = client.post(
        f"/projects/{project.id}",
        data={
            "relationship-character_a_id": mira.id,
            "relationship-character_b_id": tomas.id,
            "relationship-relationship_type": "Siblings",
            "relationship-description": "",
            "relationship-submit": "Add relationship",
        },
        follow_redirects=True,
    )

    assert b"Relationship added." in response.data
    assert CharacterRelationship.query.count() == 1

    response = client.post(
        f"/projects/{project.id}",
        data={
            "relationship-character_a_id": mira.id,
            "relationship-character_b_id": mira.id,
            "relationship-relationship_type": "Self",
            "relationship-submit": "Add relationship",
        },
        follow_redirects=True,
    )

    assert b"A relationship needs two different characters." in response.data
    assert CharacterRelationship.query.count() == 1


def test_location_and_timeline_submissions(client, user, project):
    _login(client, user)

    client.post(
        f"/projects/{project.id}",
        data={
            "location-name": "Lighthouse",
            "location-description": "Abandoned",
            "location-submit": "Save location",
        },
    )
    response = client.post(
        f"/projects/{project.id}",
        data={
            "timeline-title": "The Flood",
            "timeline-event_date": "Year 0",
            "timeline-order_index": "",
            "timeline-description": "",
            "timeline-submit": "Save event",
        },
        follow_redirects=True,
    )

    assert b"Timeline event added." in response.data
    assert Location.query.one().name == "Lighthouse"
    event = TimelineEvent.query.one()
    assert (event.title, event.event_date, event.order_index) == ("The Flood", "Year 0", 0)


def test_delete_item_routes(client, user, project):
    character = story_store.create_character(project, "Mira")
    chapter = story_store.create_chapter(project, "One", "Some words")
    db.session.commit()
    _login(client, user)

    response = client.post(
        f"/projects/{project.id}/characters/{character.id}/delete",
        follow_redirects=True,
    )
    assert b"Character deleted." in response.data

    client.post(f"/projects/{project.id}/chapters/{chapter.id}/delete")
    missing = client.post(f"/projects/{project.id}/locations/nope/delete", follow_redirects=True)

    assert b"We couldn&#39;t find that location." in missing.data
    assert client.post(f"/projects/{project.id}/spells/x/delete").status_code == 404
    assert Character.query.count() == 0
    assert Chapter.query.count() == 0


def test_settings_and_delete_project(client, user, project):
    _login(client, user)

    response = client.post(
        f"/projects/{project.id}/settings",
        data={"title": "Renamed", "description": "New synopsis"},
        follow_redirects=True,
    )
    assert b"Project settings saved." in response.data
    db.session.refresh(project)
    assert project.title == "Renamed"

    response = client.post(f"/projects/{project.id}/delete", follow_redirects=True)
    assert b"Deleted project" in response.data
    assert Project.query.count() == 0


# ------------------------------------------------------------------ export


def test_export_project_pdf(client, user, project):
    story_store.create_chapter(project, "One", "<p>First chapter text.</p>")
    story_store.create_chapter(project, "Two", "<p>Second chapter text.</p>")
    db.session.commit()
    _login(client, user)

    response = client.get(f"/projects/{project.id}/export?format=pdf&scope=project")

    assert response.status_code == 200
    assert response.mimetype == "application/pdf"
    assert response.data.startswith(b"%PDF")
    assert "demo-project.pdf" in response.headers["Content-Disposition"]


def test_export_single_chapter_txt(client, user, project):
    story_store.create_chapter(project, "One", "<p>First chapter text.</p>")
    second = story_store.create_chapter(project, "Two", "<p>Second chapter text.</p>")
    db.session.commit()
    _login(client, user)

    response = client.get(
        f"/projects/{project.id}/export?format=txt&scope=chapter&chapter_id={second.id}"
    )

    body = response.data.decode("utf-8")
    assert response.status_code == 200
    assert "demo-project.txt" in response.headers["Content-Disposition"]
    assert body.startswith("Chapter 2: Two")
    assert "Second chapter text." in body
    assert "First chapter text." not in body
    assert "Created:" not in body


def test_export_without_chapters_flashes_error(client, user, project):
    _login(client, user)

    response = client.get(f"/projects/{project.id}/export?format=pdf", follow_redirects=True)

    assert b"No chapters found to export" in response.data


def test_export_uses_fallback_filename(client, user):
    project = story_store.create_project(user, "!!!")
    story_store.create_chapter(project, "One", "Text")
    db.session.commit()
    _login(client, user)

    response = client.get(f"/projects/{project.id}/export?format=txt&titles=0&metadata=0")

    assert "story-export.txt" in response.headers["Content-Disposition"]
    assert response.data.decode("utf-8") == "Text\n"
