from __future__ import annotations

from io import BytesIO

from flask import (
    abort,
    current_app,
    flash,
    redirect,
    render_template,
    request,
    send_file,
    url_for,
)
from flask_login import current_user, login_required

from pdf_handler import PAGE_SIZES, PDFExportError, PdfExportOptions, export_chapters_to_pdf
from text_exporter import TextExportError, export_chapters_to_txt

from ..extensions import db
from ..models import Project
from ..services import story_store
from ..services.story_store import RecordNotFoundError, StoreError
from ..text_utils import slugify
from . import bp
from .forms import (
    ChapterForm,
    CharacterForm,
    LocationForm,
    ProjectSettingsForm,
    RelationshipForm,
    TimelineEventForm,
)


EXPORT_FORMATS = {
    "pdf": "application/pdf",
    "txt": "text/plain; charset=utf-8",
}

_FALSE_FLAGS = {"0", "false", "no", "off"}


def _owned_project(project_id: str) -> Project:
    project = Project.query.get_or_404(project_id)
    if project.user_id != current_user.id:
        abort(403)
    return project


def _redirect_to_project(project: Project, **params):
    return redirect(url_for("projects.detail", project_id=project.id, **params))


def _flash_form_errors(form, required_messages: dict[str, str] | None = None) -> None:
    required_messages = required_messages or {}
    for field_name, errors in form.errors.items():
        for error in errors:
            if field_name in required_messages and "required" in error.strip().lower():
                flash(required_messages[field_name], "danger")
            else:
                flash(error, "danger")


def _flag(name: str, default: bool = True) -> bool:
    value = request.args.get(name)
    if value is None:
        return default
    cleaned = value.strip().lower()
    return bool(cleaned) and cleaned not in _FALSE_FLAGS


@bp.route("/<project_id>", methods=["GET", "POST"])
@login_required
def detail(project_id: str):
    project = _owned_project(project_id)

    chapter_form = ChapterForm(prefix="chapter")
    character_form = CharacterForm(prefix="character")
    relationship_form = RelationshipForm(prefix="relationship")
    location_form = LocationForm(prefix="location")
    timeline_form = TimelineEventForm(prefix="timeline")

    characters = story_store.list_characters(project)
    character_choices = [(character.id, character.name) for character in characters]
    relationship_form.character_a_id.choices = character_choices
    relationship_form.character_b_id.choices = character_choices

    if chapter_form.submit.data and chapter_form.validate_on_submit():
        chapter_id = (chapter_form.chapter_id.data or "").strip()
        try:
            if chapter_id:
                chapter = story_store.get_chapter(project, chapter_id)
                story_store.update_chapter(
                    chapter,
                    title=chapter_form.title.data,
                    content=chapter_form.content.data or "",
                )
                message = "Chapter saved."
            else:
                chapter = story_store.create_chapter(
                    project,
                    chapter_form.title.data,
                    chapter_form.content.data or "",
                )
                message = "Chapter added to the project."
        except StoreError as exc:
            db.session.rollback()
            flash(str(exc), "danger")
        else:
            db.session.commit()
            flash(message, "success")
            return _redirect_to_project(project, chapter_id=chapter.id)
    elif chapter_form.submit.data:
        _flash_form_errors(chapter_form, {"title": "Give the chapter a title before saving."})

    if character_form.submit.data and character_form.validate_on_submit():
        character_id = (character_form.character_id.data or "").strip()
        name = (character_form.name.data or "").strip()
        if not name:
            flash("Add a character name before saving.", "danger")
        else:
            try:
                if character_id:
                    character = story_store.get_character(project, character_id)
                    story_store.update_character(
                        character,
                        name=name,
                        role=character_form.role.data,
                        description=character_form.description.data,
                    )
                    message = "Character updated."
                else:
                    story_store.create_character(
                        project,
                        name,
                        description=character_form.description.data,
                        role=character_form.role.data,
                    )
                    message = "Character added to the project."
            except StoreError as exc:
                db.session.rollback()
                flash(str(exc), "danger")
            else:
                db.session.commit()
                flash(message, "success")
                return _redirect_to_project(project, tab="characters")
    elif character_form.submit.data:
        _flash_form_errors(character_form)

    if relationship_form.submit.data and relationship_form.validate_on_submit():
        try:
            story_store.create_relationship(
                project,
                relationship_form.character_a_id.data,
                relationship_form.character_b_id.data,
                relationship_form.relationship_type.data,
                relationship_form.description.data,
            )
        except StoreError as exc:
            db.session.rollback()
            flash(str(exc), "danger")
        else:
            db.session.commit()
            flash("Relationship added.", "success")
            return _redirect_to_project(project, tab="characters")
    elif relationship_form.submit.data:
        _flash_form_errors(relationship_form)

    if location_form.submit.data and location_form.validate_on_submit():
        location_id = (location_form.location_id.data or "").strip()
        name = (location_form.name.data or "").strip()
        if not name:
            flash("Add a location name before saving.", "danger")
        else:
            try:
                if location_id:
                    location = story_store.get_location(project, location_id)
                    story_store.update_location(
                        location,
                        name=name,
                        description=location_form.description.data,
                    )
                    message = "Location updated."
                else:
                    story_store.create_location(project, name, location_form.description.data)
                    message = "Location added to the project."
            except StoreError as exc:
                db.session.rollback()
                flash(str(exc), "danger")
            else:
                db.session.commit()
                flash(message, "success")
                return _redirect_to_project(project, tab="locations")
    elif location_form.submit.data:
        _flash_form_errors(location_form)

    if timeline_form.submit.data and timeline_form.validate_on_submit():
        event_id = (timeline_form.event_id.data or "").strip()
        title = (timeline_form.title.data or "").strip()
        if not title:
            flash("Add an event title before saving.", "danger")
        else:
            try:
                if event_id:
                    event = story_store.get_timeline_event(project, event_id)
                    story_store.update_timeline_event(
                        event,
                        title=title,
                        description=timeline_form.description.data,
                        event_date=timeline_form.event_date.data,
                        order_index=timeline_form.order_index.data,
                    )
                    message = "Timeline event updated."
                else:
                    story_store.create_timeline_event(
                        project,
                        title,
                        description=timeline_form.description.data,
                        event_date=timeline_form.event_date.data,
                        order_index=timeline_form.order_index.data,
                    )
                    message = "Timeline event added."
            except StoreError as exc:
                db.session.rollback()
                flash(str(exc), "danger")
            else:
                db.session.commit()
                flash(message, "success")
                return _redirect_to_project(project, tab="timeline")
    elif timeline_form.submit.data:
        _flash_form_errors(timeline_form)

    chapters = story_store.list_chapters(project)
    selected_id = request.args.get("chapter_id")
    selected_chapter = next((chapter for chapter in chapters if chapter.id == selected_id), None)
    if selected_chapter is None and chapters and selected_id != "new":
        selected_chapter = chapters[0]

    if request.method == "GET" and selected_chapter is not None:
        chapter_form.chapter_id.data = selected_chapter.id
        chapter_form.title.data = selected_chapter.title
        chapter_form.content.data = selected_chapter.content

    return render_template(
        "projects/project_detail.html",
        project=project,
        chapters=chapters,
        selected_chapter=selected_chapter,
        characters=characters,
        relationships=story_store.list_relationships(project),
        locations=story_store.list_locations(project),
        timeline_events=story_store.list_timeline_events(project),
        chapter_form=chapter_form,
        character_form=character_form,
        relationship_form=relationship_form,
        location_form=location_form,
        timeline_form=timeline_form,
        page_sizes=PAGE_SIZES,
        active_tab=request.args.get("tab", "chapters"),
    )


@bp.route("/<project_id>/settings", methods=["GET", "POST"])
@login_required
def settings(project_id: str):
    project = _owned_project(project_id)
    form = ProjectSettingsForm(obj=project)
    if form.validate_on_submit():
        try:
            story_store.update_project(
                project,
                title=form.title.data,
                description=form.description.data,
            )
        except StoreError as exc:
            db.session.rollback()
            flash(str(exc), "danger")
        else:
            db.session.commit()
            flash("Project settings saved.", "success")
            return _redirect_to_project(project)

    return render_template("projects/settings.html", project=project, form=form)


@bp.route("/<project_id>/delete", methods=["POST"])
@login_required
def delete(project_id: str):
    project = _owned_project(project_id)
    title = project.title
    story_store.delete_project(project)
    db.session.commit()
    flash(f"Deleted project '{title}'.", "info")
    return redirect(url_for("main.dashboard"))


_ITEM_DELETERS = {
    "chapters": (
        lambda project, item_id: story_store.delete_chapter(story_store.get_chapter(project, item_id)),
        "Chapter deleted.",
        "chapters",
    ),
    "characters": (
        lambda project, item_id: story_store.delete_character(story_store.get_character(project, item_id)),
        "Character deleted.",
        "characters",
    ),
    "relationships": (
        story_store.delete_relationship,
        "Relationship removed.",
        "characters",
    ),
    "locations": (
        lambda project, item_id: story_store.delete_location(story_store.get_location(project, item_id)),
        "Location deleted.",
        "locations",
    ),
    "timeline": (
        lambda project, item_id: story_store.delete_timeline_event(
            story_store.get_timeline_event(project, item_id)
        ),
        "Timeline event deleted.",
        "timeline",
    ),
}


@bp.route("/<project_id>/<kind>/<item_id>/delete", methods=["POST"])
@login_required
def delete_item(project_id: str, kind: str, item_id: str):
    project = _owned_project(project_id)
    entry = _ITEM_DELETERS.get(kind)
    if entry is None:
        abort(404)

    deleter, message, tab = entry
    try:
        deleter(project, item_id)
    except RecordNotFoundError as exc:
        db.session.rollback()
        flash(str(exc), "danger")
    else:
        db.session.commit()
        flash(message, "success")
    return _redirect_to_project(project, tab=tab)


@bp.route("/<project_id>/export")
@login_required
def export(project_id: str):
    project = _owned_project(project_id)

    export_format = (request.args.get("format") or "pdf").strip().lower()
    if export_format not in EXPORT_FORMATS:
        flash(f"Unsupported export format '{export_format}'.", "danger")
        return _redirect_to_project(project)

    scope = (request.args.get("scope") or "project").strip().lower()
    chapters = story_store.list_chapters(project)
    chapter_numbers = None
    if scope == "chapter":
        chapter_id = request.args.get("chapter_id")
        position = next((index for index, chapter in enumerate(chapters) if chapter.id == chapter_id), None)
        if position is None:
            flash("Select a chapter to export.", "warning")
            return _redirect_to_project(project)
        chapters = [chapters[position]]
        chapter_numbers = [position + 1]

    options = PdfExportOptions(
        include_chapter_titles=_flag("titles"),
        include_metadata=scope == "project" and _flag("metadata"),
        page_size=(request.args.get("page_size") or "a4").strip().lower(),
        author=current_user.display_name,
    )

    try:
        if export_format == "pdf":
            data = export_chapters_to_pdf(project, chapters, options=options, chapter_numbers=chapter_numbers)
        else:
            text = export_chapters_to_txt(project, chapters, options=options, chapter_numbers=chapter_numbers)
            data = text.encode("utf-8")
    except (PDFExportError, TextExportError) as exc:
        current_app.logger.warning("Export failed for project %s: %s", project.id, exc)
        flash(str(exc), "danger")
        return _redirect_to_project(project)

    filename = f"{slugify(project.title)}.{export_format}"
    return send_file(
        BytesIO(data),
        mimetype=EXPORT_FORMATS[export_format],
        as_attachment=True,
        download_name=filename,
    )
