from __future__ import annotations

from typing import Any, Dict, Optional

from flask import current_app, jsonify, request
from flask_login import current_user, login_required

from ..extensions import db
from ..models import Chapter
from ..services import story_store, text_generation
from ..services.story_context import context_items_for_project
from ..services.story_store import RecordNotFoundError, StoreError
from ..services.text_generation import GenerationError
from . import bp


NO_CACHE = "no-store, no-cache, must-revalidate, proxy-revalidate"


def _serialize_chapter(chapter: Chapter, *, include_content: bool = True) -> Dict[str, Any]:
    data = {
        "id": chapter.id,
        "project_id": chapter.project_id,
        "title": chapter.title,
        "order_index": chapter.order_index,
        "word_count": chapter.word_count,
        "created_at": chapter.created_at.isoformat() if chapter.created_at else None,
        "updated_at": chapter.updated_at.isoformat() if chapter.updated_at else None,
    }
    if include_content:
        data["content"] = chapter.content or ""
    return data


def _json_payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _project_from_payload(payload: Dict[str, Any]):
    project_id = str(payload.get("project_id") or "").strip()
    if not project_id:
        return None
    return story_store.get_project(current_user, project_id)


def _simple_error(message: str, status_code: int, *, detail: Optional[str] = None, stack: Optional[str] = None):
    return (
        jsonify(
            {
                "error": message,
                "success": False,
                "debug": {"error": detail or message, "stack": stack},
            }
        ),
        status_code,
    )


# ------------------------------------------------------------------ generation


@bp.route("/generate-text", methods=["POST"])
@login_required
def generate_text():
    try:
        payload = text_generation.parse_request_body(request.get_data(as_text=True))
        project = _project_from_payload(payload)
        result = text_generation.generate_text(
            payload,
            model_name=request.args.get("model"),
            project=project,
        )
    except RecordNotFoundError as exc:
        return jsonify({"success": False, "error": str(exc), "model": "error"}), 404
    except GenerationError as exc:
        return jsonify({"success": False, "error": str(exc), "model": "error"}), exc.status_code
    except Exception:  # pragma: no cover - unexpected provider states
        current_app.logger.exception("Unexpected error in generate-text")
        return jsonify({"success": False, "error": "Unexpected error while generating text.", "model": "error"}), 500

    return jsonify({"success": True, "text": result.text, "model": result.model, "usage": result.usage})


@bp.route("/generate-text-simple", methods=["GET", "POST"])
@login_required
def generate_text_simple():
    if request.method != "POST":
        return jsonify({"error": "Method not allowed. Please use POST.", "success": False}), 405

    try:
        payload = text_generation.parse_request_body(request.get_data(as_text=True))
        project = _project_from_payload(payload)
        result = text_generation.generate_text_simple(
            payload,
            user_name=current_user.display_name or "User",
            project=project,
        )
    except RecordNotFoundError as exc:
        return _simple_error(str(exc), 404)
    except GenerationError as exc:
        return _simple_error(str(exc), exc.status_code, detail=exc.detail, stack=exc.stack)
    except Exception as exc:  # pragma: no cover - unexpected provider states
        current_app.logger.exception("Unexpected error in generate-text-simple")
        return _simple_error("Unexpected error while generating text.", 500, detail=str(exc))

    return jsonify(
        {
            "success": True,
            "text": result.text,
            "model": result.model,
            "userName": result.user_name,
            "mode": result.mode,
            "contextProvided": result.context_provided,
            "previousChaptersProvided": result.previous_chapters_provided,
            "usage": result.usage,
            "requestedWords": result.requested_words,
            "actualWords": result.actual_words,
            "actualTokens": result.actual_tokens,
        }
    )


@bp.route("/models")
def models():
    return jsonify(text_generation.available_models())


@bp.route("/get-env")
def get_env():
    config = current_app.config
    keys = list(config.get("CLIENT_ENV_KEYS", ()))
    payload: Dict[str, Any] = {key: config.get(key) or None for key in keys}
    missing = [key for key in keys if not payload[key]]

    if missing:
        current_app.logger.warning("Missing environment variables: %s", ", ".join(missing))
    else:
        current_app.logger.info("All required environment variables are available")

    payload["status"] = "missing_vars" if missing else "success"
    payload["missing"] = missing

    response = jsonify(payload)
    response.headers["Cache-Control"] = NO_CACHE
    return response


# ------------------------------------------------------------------ chapters


@bp.route("/projects/<project_id>/chapters", methods=["GET"])
@login_required
def list_chapters(project_id: str):
    try:
        project = story_store.get_project(current_user, project_id)
    except RecordNotFoundError as exc:
        return jsonify({"success": False, "error": str(exc)}), 404

    chapters = story_store.list_chapters(project)
    return jsonify(
        {
            "success": True,
            "project_id": project.id,
            "word_count": project.word_count,
            "chapters": [_serialize_chapter(chapter, include_content=False) for chapter in chapters],
        }
    )


@bp.route("/projects/<project_id>/chapters", methods=["POST"])
@login_required
def create_chapter(project_id: str):
    payload = _json_payload()
    try:
        project = story_store.get_project(current_user, project_id)
        chapter = story_store.create_chapter(
            project,
            title=payload.get("title") or f"Chapter {len(project.chapters) + 1}",
            content=payload.get("content") or "",
        )
        db.session.commit()
    except RecordNotFoundError as exc:
        return jsonify({"success": False, "error": str(exc)}), 404
    except StoreError as exc:
        db.session.rollback()
        return jsonify({"success": False, "error": str(exc)}), 400

    return jsonify({"success": True, "chapter": _serialize_chapter(chapter)}), 201


@bp.route("/projects/<project_id>/chapters/<chapter_id>", methods=["GET"])
@login_required
def get_chapter(project_id: str, chapter_id: str):
    try:
        project = story_store.get_project(current_user, project_id)
        chapter = story_store.get_chapter(project, chapter_id)
    except RecordNotFoundError as exc:
        return jsonify({"success": False, "error": str(exc)}), 404
    return jsonify({"success": True, "chapter": _serialize_chapter(chapter)})


@bp.route("/projects/<project_id>/chapters/<chapter_id>", methods=["PATCH"])
@login_required
def update_chapter(project_id: str, chapter_id: str):
    payload = _json_payload()
    fields = {key: payload[key] for key in ("title", "content") if key in payload}
    if not fields:
        return jsonify({"success": False, "error": "Nothing to update.", "save_status": "error"}), 400

    try:
        project = story_store.get_project(current_user, project_id)
        chapter = story_store.get_chapter(project, chapter_id)
        story_store.update_chapter(chapter, **fields)
        db.session.commit()
    except RecordNotFoundError as exc:
        return jsonify({"success": False, "error": str(exc), "save_status": "error"}), 404
    except StoreError as exc:
        db.session.rollback()
        return jsonify({"success": False, "error": str(exc), "save_status": "error"}), 400

    return jsonify(
        {
            "success": True,
            "save_status": "saved",
            "chapter": _serialize_chapter(chapter, include_content=False),
            "project_word_count": project.word_count,
        }
    )


@bp.route("/projects/<project_id>/chapters/order", methods=["POST"])
@login_required
def reorder_chapters(project_id: str):
    updates = _json_payload().get("chapters")
    if not isinstance(updates, list):
        return jsonify({"success": False, "error": "Provide a list of chapters to reorder."}), 400

    try:
        project = story_store.get_project(current_user, project_id)
        chapters = story_store.update_chapter_order(
            project,
            [entry for entry in updates if isinstance(entry, dict)],
        )
        db.session.commit()
    except RecordNotFoundError as exc:
        db.session.rollback()
        return jsonify({"success": False, "error": str(exc)}), 404
    except StoreError as exc:
        db.session.rollback()
        return jsonify({"success": False, "error": str(exc)}), 400

    return jsonify(
        {
            "success": True,
            "chapters": [_serialize_chapter(chapter, include_content=False) for chapter in chapters],
        }
    )


@bp.route("/projects/<project_id>/context", methods=["GET"])
@login_required
def project_context(project_id: str):
    try:
        project = story_store.get_project(current_user, project_id)
    except RecordNotFoundError as exc:
        return jsonify({"success": False, "error": str(exc)}), 404

    items = [
        {"id": item.id, "name": item.name, "type": item.type}
        for item in context_items_for_project(project)
    ]
    return jsonify({"success": True, "items": items})
