"""Data access helpers for projects and their story data.

Every lookup is scoped to the signed-in user so a route can never reach a row
from someone else's project. Helpers add and flush; committing is left to the
caller so a route can group several changes in one transaction.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional

from ..extensions import db
from ..models import (
    CHARACTER_ROLES,
    Chapter,
    Character,
    CharacterRelationship,
    Location,
    Project,
    TimelineEvent,
    User,
)
from ..text_utils import count_words


class StoreError(RuntimeError):
    """Raised when a data operation cannot be applied."""


class RecordNotFoundError(StoreError):
    """Raised when a record does not exist or belongs to another user."""


_PROJECT_FIELDS = ("title", "description")
_CHAPTER_FIELDS = ("title", "content", "order_index")
_CHARACTER_FIELDS = ("name", "description", "role")
_LOCATION_FIELDS = ("name", "description")
_TIMELINE_FIELDS = ("title", "description", "event_date", "order_index")
_PROFILE_FIELDS = ("first_name", "last_name", "profile_picture_url")


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def _require_text(value: Optional[str], label: str) -> str:
    cleaned = _clean(value)
    if not cleaned:
        raise StoreError(f"{label} is required.")
    return cleaned


def _apply_fields(record: Any, fields: Mapping[str, Any], allowed: Iterable[str]) -> None:
    allowed_set = set(allowed)
    unknown = set(fields) - allowed_set
    if unknown:
        raise StoreError(f"Unsupported fields: {', '.join(sorted(unknown))}")
    for key, value in fields.items():
        setattr(record, key, value)


def _chapter_content(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise StoreError("Chapter content must be text.")
    return value


# ---------------------------------------------------------------- projects


def list_projects(user: User) -> List[Project]:
    return (
        Project.query.filter_by(user_id=user.id)
        .order_by(Project.created_at.desc())
        .all()
    )


def get_project(user: User, project_id: str) -> Project:
    project = Project.query.filter_by(id=project_id, user_id=user.id).first()
    if project is None:
        raise RecordNotFoundError("We couldn't find that project.")
    return project


def create_project(user: User, title: str, description: Optional[str] = None) -> Project:
    project = Project(
        owner=user,
        title=_require_text(title, "A project title"),
        description=_clean(description),
    )
    db.session.add(project)
    db.session.flush()
    return project


def update_project(project: Project, **fields: Any) -> Project:
    if "title" in fields:
        fields["title"] = _require_text(fields["title"], "A project title")
    if "description" in fields:
        fields["description"] = _clean(fields["description"])
    _apply_fields(project, fields, _PROJECT_FIELDS)
    project.updated_at = datetime.utcnow()
    db.session.flush()
    return project


def delete_project(project: Project) -> None:
    db.session.delete(project)
    db.session.flush()


# ---------------------------------------------------------------- chapters


def list_chapters(project: Project) -> List[Chapter]:
    return (
        Chapter.query.filter_by(project_id=project.id)
        .order_by(Chapter.order_index.asc(), Chapter.created_at.asc())
        .all()
    )


def get_chapter(project: Project, chapter_id: str) -> Chapter:
    chapter = Chapter.query.filter_by(id=chapter_id, project_id=project.id).first()
    if chapter is None:
        raise RecordNotFoundError("We couldn't find that chapter.")
    return chapter


def create_chapter(
    project: Project,
    title: str,
    content: str = "",
    order_index: Optional[int] = None,
) -> Chapter:
    if order_index is None:
        last = (
            Chapter.query.filter_by(project_id=project.id)
            .order_by(Chapter.order_index.desc())
            .first()
        )
        order_index = last.order_index + 1 if last else 0

    content = _chapter_content(content)

    chapter = Chapter(
        project=project,
        title=_require_text(title, "A chapter title"),
        content=content,
        order_index=order_index,
        word_count=count_words(content),
    )
    db.session.add(chapter)
    db.session.flush()
    _touch_project(project)
    return chapter


def update_chapter(chapter: Chapter, **fields: Any) -> Chapter:
    if "title" in fields:
        fields["title"] = _require_text(fields["title"], "A chapter title")
    if "content" in fields:
        fields["content"] = _chapter_content(fields["content"])
    _apply_fields(chapter, fields, _CHAPTER_FIELDS)
    chapter.word_count = count_words(chapter.content)
    chapter.updated_at = datetime.utcnow()
    db.session.flush()
    _touch_project(chapter.project)
    return chapter


def update_chapter_order(project: Project, updates: Iterable[Mapping[str, Any]]) -> List[Chapter]:
    """Apply a batch of ``{"id", "order_index"}`` changes to ``project``'s chapters."""

    chapters = {chapter.id: chapter for chapter in list_chapters(project)}
    pending = []
    for entry in updates:
        chapter_id = entry.get("id")
        chapter = chapters.get(chapter_id)
        if chapter is None:
            raise RecordNotFoundError(f"Chapter {chapter_id!r} is not part of this project.")
        try:
            order_index = int(entry.get("order_index"))
        except (TypeError, ValueError) as exc:
            raise StoreError("Each chapter needs a numeric order_index.") from exc
        pending.append((chapter, order_index))

    now = datetime.utcnow()
    for chapter, order_index in pending:
        chapter.order_index = order_index
        chapter.updated_at = now
    db.session.flush()
    return list_chapters(project)


def delete_chapter(chapter: Chapter) -> None:
    project = chapter.project
    db.session.delete(chapter)
    db.session.flush()
    _touch_project(project)


def _touch_project(project: Project) -> None:
    total = (
        db.session.query(db.func.coalesce(db.func.sum(Chapter.word_count), 0))
        .filter(Chapter.project_id == project.id)
        .scalar()
    )
    now = datetime.utcnow()
    project.word_count = int(total or 0)
    project.last_edited = now
    project.updated_at = now
    db.session.flush()


# ---------------------------------------------------------------- characters


def _validate_role(role: Optional[str]) -> str:
    cleaned = (role or "supporting").strip().lower()
    if cleaned not in CHARACTER_ROLES:
        raise StoreError(f"Character role must be one of: {', '.join(CHARACTER_ROLES)}.")
    return cleaned


def list_characters(project: Project) -> List[Character]:
    return (
        Character.query.filter_by(project_id=project.id)
        .order_by(Character.created_at.desc())
        .all()
    )


def get_character(project: Project, character_id: str) -> Character:
    character = Character.query.filter_by(id=character_id, project_id=project.id).first()
    if character is None:
        raise RecordNotFoundError("We couldn't find that character.")
    return character


def create_character(
    project: Project,
    name: str,
    description: Optional[str] = None,
    role: Optional[str] = None,
) -> Character:
    character = Character(
        project=project,
        name=_require_text(name, "A character name"),
        description=_clean(description),
        role=_validate_role(role),
    )
    db.session.add(character)
    db.session.flush()
    return character


def update_character(character: Character, **fields: Any) -> Character:
    if "name" in fields:
        fields["name"] = _require_text(fields["name"], "A character name")
    if "description" in fields:
        fields["description"] = _clean(fields["description"])
    if "role" in fields:
        fields["role"] = _validate_role(fields["role"])
    _apply_fields(character, fields, _CHARACTER_FIELDS)
    db.session.flush()
    return character


def delete_character(character: Character) -> None:
    db.session.delete(character)
    db.session.flush()


def list_relationships(project: Project) -> List[CharacterRelationship]:
    return (
        CharacterRelationship.query.join(
            Character, CharacterRelationship.character_a_id == Character.id
        )
        .filter(Character.project_id == project.id)
        .order_by(CharacterRelationship.created_at.asc())
        .all()
    )


def create_relationship(
    project: Project,
    character_a_id: str,
    character_b_id: str,
    relationship_type: str,
    description: Optional[str] = None,
) -> CharacterRelationship:
    if character_a_id == character_b_id:
        raise StoreError("A relationship needs two different characters.")
    character_a = get_character(project, character_a_id)
    character_b = get_character(project, character_b_id)
    relationship = CharacterRelationship(
        character_a=character_a,
        character_b=character_b,
        relationship_type=_require_text(relationship_type, "A relationship type"),
        description=_clean(description),
    )
    db.session.add(relationship)
    db.session.flush()
    return relationship


def delete_relationship(project: Project, relationship_id: str) -> None:
    relationship = next(
        (item for item in list_relationships(project) if item.id == relationship_id),
        None,
    )
    if relationship is None:
        raise RecordNotFoundError("We couldn't find that relationship.")
    db.session.delete(relationship)
    db.session.flush()


# ---------------------------------------------------------------- locations


def list_locations(project: Project) -> List[Location]:
    return (
        Location.query.filter_by(project_id=project.id)
        .order_by(Location.created_at.desc())
        .all()
    )


def get_location(project: Project, location_id: str) -> Location:
    location = Location.query.filter_by(id=location_id, project_id=project.id).first()
    if location is None:
        raise RecordNotFoundError("We couldn't find that location.")
    return location


def create_location(project: Project, name: str, description: Optional[str] = None) -> Location:
    location = Location(
        project=project,
        name=_require_text(name, "A location name"),
        description=_clean(description),
    )
    db.session.add(location)
    db.session.flush()
    return location


def update_location(location: Location, **fields: Any) -> Location:
    if "name" in fields:
        fields["name"] = _require_text(fields["name"], "A location name")
    if "description" in fields:
        fields["description"] = _clean(fields["description"])
    _apply_fields(location, fields, _LOCATION_FIELDS)
    db.session.flush()
    return location


def delete_location(location: Location) -> None:
    db.session.delete(location)
    db.session.flush()


# ---------------------------------------------------------------- timeline


def list_timeline_events(project: Project) -> List[TimelineEvent]:
    return (
        TimelineEvent.query.filter_by(project_id=project.id)
        .order_by(TimelineEvent.order_index.asc(), TimelineEvent.created_at.asc())
        .all()
    )


def get_timeline_event(project: Project, event_id: str) -> TimelineEvent:
    event = TimelineEvent.query.filter_by(id=event_id, project_id=project.id).first()
    if event is None:
        raise RecordNotFoundError("We couldn't find that timeline event.")
    return event


def create_timeline_event(
    project: Project,
    title: str,
    description: Optional[str] = None,
    event_date: Optional[str] = None,
    order_index: Optional[int] = None,
) -> TimelineEvent:
    if order_index is None:
        order_index = TimelineEvent.query.filter_by(project_id=project.id).count()
    event = TimelineEvent(
        project=project,
        title=_require_text(title, "An event title"),
        description=_clean(description),
        event_date=_clean(event_date),
        order_index=order_index,
    )
    db.session.add(event)
    db.session.flush()
    return event


def update_timeline_event(event: TimelineEvent, **fields: Any) -> TimelineEvent:
    if "title" in fields:
        fields["title"] = _require_text(fields["title"], "An event title")
    for key in ("description", "event_date"):
        if key in fields:
            fields[key] = _clean(fields[key])
    if "order_index" in fields and fields["order_index"] is None:
        fields.pop("order_index")
    _apply_fields(event, fields, _TIMELINE_FIELDS)
    db.session.flush()
    return event


def delete_timeline_event(event: TimelineEvent) -> None:
    db.session.delete(event)
    db.session.flush()


# ---------------------------------------------------------------- profiles


def get_profile(user: User) -> User:
    return user


def update_profile(user: User, **fields: Any) -> User:
    cleaned = {key: _clean(value) for key, value in fields.items()}
    _apply_fields(user, cleaned, _PROFILE_FIELDS)
    user.updated_at = datetime.utcnow()
    db.session.flush()
    return user
