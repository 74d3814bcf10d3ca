from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from flask import current_app

from ..models import Chapter, Character, Location, Project, TimelineEvent
from ..text_utils import excerpt, html_to_text
from . import story_store


CONTEXT_ITEM_TYPES = ("character", "location", "timeline_event")


@dataclass
class ContextItem:
    id: Optional[str]
    name: str
    type: str
    description: str = ""
    extra: Dict[str, str] = field(default_factory=dict)


@dataclass
class StoryContext:
    text: str
    has_context: bool
    has_previous_chapters: bool


def context_items_for_project(project: Project) -> List[ContextItem]:
    """Return every character, location and timeline event as a context item."""

    items: List[ContextItem] = []
    for character in story_store.list_characters(project):
        items.append(_character_item(character))
    for location in story_store.list_locations(project):
        items.append(_location_item(location))
    for event in story_store.list_timeline_events(project):
        items.append(_event_item(event))
    return items


def resolve_context_items(
    raw_items: Any,
    project: Optional[Project] = None,
) -> List[ContextItem]:
    """Turn request ``context`` entries into :class:`ContextItem` objects.

    Entries referencing a stored row by ``id`` are looked up in ``project``;
    entries without a resolvable row fall back to their inline ``name`` and
    ``description``. Unknown types and empty entries are skipped.
    """

    if not isinstance(raw_items, (list, tuple)):
        return []

    lookup: Dict[tuple, ContextItem] = {}
    if project is not None:
        lookup = {(item.type, item.id): item for item in context_items_for_project(project)}

    resolved: List[ContextItem] = []
    for raw in raw_items:
        if not isinstance(raw, Mapping):
            continue
        item_type = str(raw.get("type") or "").strip()
        if item_type not in CONTEXT_ITEM_TYPES:
            continue

        item_id = raw.get("id")
        stored = lookup.get((item_type, str(item_id))) if item_id else None
        if stored is not None:
            resolved.append(stored)
            continue

        data = raw.get("data") if isinstance(raw.get("data"), Mapping) else {}
        name = str(raw.get("name") or data.get("name") or data.get("title") or "").strip()
        if not name:
            continue
        description = str(raw.get("description") or data.get("description") or "").strip()
        resolved.append(ContextItem(id=None, name=name, type=item_type, description=description))
    return resolved


def build_project_context(
    project: Project,
    *,
    chapter_id: Optional[str] = None,
    items: Optional[Sequence[ContextItem]] = None,
    previous_chapter_count: Optional[int] = None,
    chapter_char_limit: Optional[int] = None,
) -> StoryContext:
    """Assemble the story context block for a generation request.

    When ``items`` is ``None`` every stored character, location and timeline
    event is included; otherwise only the given items are.
    """

    config = current_app.config
    if previous_chapter_count is None:
        previous_chapter_count = int(config.get("CONTEXT_PREVIOUS_CHAPTERS", 2))
    if chapter_char_limit is None:
        chapter_char_limit = int(config.get("CONTEXT_CHAPTER_CHAR_LIMIT", 4000))

    selected = list(items) if items is not None else context_items_for_project(project)
    sections: List[str] = []

    header = f"Project: {project.title}"
    if project.description:
        header += f"\nSynopsis: {project.description}"

    for item_type, heading in (
        ("character", "Characters"),
        ("location", "Locations"),
        ("timeline_event", "Timeline"),
    ):
        lines = [_format_item(item) for item in selected if item.type == item_type]
        if lines:
            sections.append(heading + ":\n" + "\n".join(lines))

    previous = _previous_chapters(project, chapter_id, previous_chapter_count)
    if previous:
        chapter_blocks = []
        for chapter in previous:
            body = excerpt(html_to_text(chapter.content), chapter_char_limit) or "(empty)"
            chapter_blocks.append(f"### {chapter.title}\n{body}")
        sections.append("Previous chapters:\n" + "\n\n".join(chapter_blocks))

    if not sections:
        return StoryContext(text="", has_context=False, has_previous_chapters=False)

    return StoryContext(
        text="\n\n".join([header] + sections),
        has_context=True,
        has_previous_chapters=bool(previous),
    )


def render_inline_context(items: Iterable[ContextItem]) -> str:
    """Render context items that are not tied to a stored project."""

    lines = [_format_item(item) for item in items]
    if not lines:
        return ""
    return "Story context:\n" + "\n".join(lines)


def _previous_chapters(project: Project, chapter_id: Optional[str], limit: int) -> List[Chapter]:
    if limit <= 0:
        return []
    chapters = story_store.list_chapters(project)
    if chapter_id:
        current = next((chapter for chapter in chapters if chapter.id == chapter_id), None)
        if current is None:
            return []
        chapters = [chapter for chapter in chapters if chapter.order_index < current.order_index]
    return chapters[-limit:]


def _format_item(item: ContextItem) -> str:
    label = item.name
    role = item.extra.get("role")
    when = item.extra.get("event_date")
    if role:
        label += f" ({role})"
    if when:
        label += f" [{when}]"
    if item.description:
        return f"- {label}: {item.description}"
    return f"- {label}"


def _character_item(character: Character) -> ContextItem:
    return ContextItem(
        id=character.id,
        name=character.name,
        type="character",
        description=character.description or "",
        extra={"role": character.role},
    )


def _location_item(location: Location) -> ContextItem:
    return ContextItem(
        id=location.id,
        name=location.name,
        type="location",
        description=location.description or "",
    )


def _event_item(event: TimelineEvent) -> ContextItem:
    extra = {"event_date": event.event_date} if event.event_date else {}
    return ContextItem(
        id=event.id,
        name=event.title,
        type="timeline_event",
        description=event.description or "",
        extra=extra,
    )
