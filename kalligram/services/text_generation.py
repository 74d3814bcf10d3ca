"""Request shaping for the text-generation endpoints.

The helpers here turn a writer's request (prompt, mode, tone, desired length
and optional story context) into a provider-specific completion call and turn
provider failures into :class:`GenerationError` instances carrying the HTTP
status the API blueprint should answer with.
"""
from __future__ import annotations

import json
import math
import re
import traceback
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from flask import current_app

from api_handler import (
    CompletionError,
    CompletionTimeoutError,
    DeepSeekChatClient,
    HuggingFaceInferenceClient,
)
from system_prompts import get_prompt_max_words, get_system_prompt

from ..models import Project
from .story_context import build_project_context, render_inline_context, resolve_context_items


CLIENT_CACHE_KEY = "kalligram.completion_clients"
SIMPLE_MODEL = "deepseek-chat"

BASE_TIMEOUT = 20.0
MAX_TIMEOUT = 110.0
MIN_TIMEOUT = 10.0
SECONDS_PER_TOKEN = 0.075
NON_CHAT_SECONDS_PER_TOKEN = 0.05
NON_CHAT_MAX_TIMEOUT = 90.0
CHAT_TIMEOUT = 25.0
GENERATE_TIMEOUT = 45.0

MAX_PROXY_TOKENS = 800
SENTENCE_ENDINGS = (". ", "! ", "? ", '."', '!"', '?"', ".\n", "!\n", "?\n")

TIMEOUT_MESSAGE = (
    "The request is taking longer than expected. Please try with a shorter length or a faster model."
)
RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again in a few minutes."
UNAVAILABLE_MESSAGE = "The AI service is currently unavailable. Please try again later."
MISSING_KEY_MESSAGE = "DEEPSEEK_API_KEY is not configured. Please set this environment variable."

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


class GenerationError(RuntimeError):
    """Raised when a generation request cannot be fulfilled."""

    def __init__(self, message: str, status_code: int = 500, *, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail or message
        self.stack: Optional[str] = None


@dataclass
class TextGenerationResult:
    text: str
    model: str
    usage: Optional[Dict[str, Any]]


@dataclass
class SimpleGenerationResult:
    text: str
    model: str
    user_name: str
    mode: str
    context_provided: bool
    previous_chapters_provided: bool
    usage: Optional[Dict[str, Any]]
    requested_words: int
    actual_words: int
    actual_tokens: Optional[int]


# ------------------------------------------------------------------ helpers


def parse_request_body(raw_body: Optional[str]) -> Dict[str, Any]:
    if not raw_body or not raw_body.strip():
        raise GenerationError("Missing request body", 400)
    try:
        parsed = json.loads(raw_body)
    except json.JSONDecodeError as exc:
        raise GenerationError("Invalid JSON in request body", 400) from exc
    if not isinstance(parsed, dict):
        raise GenerationError("Invalid JSON in request body", 400)
    return parsed


def parse_length(value: Any, default: int) -> int:
    """Read a length the way the browser client sends it: "500", 500 or "500 words"."""

    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        parsed = int(value)
    else:
        match = _LEADING_INT.match(str(value or ""))
        if not match:
            return default
        parsed = int(match.group(1))
    return parsed if parsed > 0 else default


def calculate_timeout(max_tokens: int, mode: str, is_deepseek: bool) -> float:
    """Return the upstream timeout in seconds for a request of ``max_tokens``."""

    if mode == "chat" and is_deepseek:
        scaled = BASE_TIMEOUT + max_tokens * SECONDS_PER_TOKEN
        return min(MAX_TIMEOUT, max(MIN_TIMEOUT, scaled))
    if is_deepseek:
        scaled = BASE_TIMEOUT + max_tokens * NON_CHAT_SECONDS_PER_TOKEN
        return min(NON_CHAT_MAX_TIMEOUT, max(MIN_TIMEOUT, scaled))
    return CHAT_TIMEOUT if mode == "chat" else GENERATE_TIMEOUT


def words_to_tokens(word_count: int) -> int:
    return math.ceil(word_count * 1.3 * 1.2)


def clamp_desired_words(length: Any, mode: str) -> int:
    if mode == "chat":
        minimum, maximum, default = 50, 500, 200
    else:
        minimum, maximum, default = 100, 5000, 500
    return min(max(parse_length(length, default), minimum), maximum)


def ensure_complete_sentence(text: Optional[str]) -> Optional[str]:
    """Trim ``text`` after its last complete sentence."""

    if not text:
        return text

    last_end = -1
    for ending in SENTENCE_ENDINGS:
        index = text.rfind(ending)
        if index != -1 and index + len(ending) > last_end:
            last_end = index + len(ending)

    if last_end > -1:
        return text[:last_end].strip()
    return text.strip()


def create_system_message(mode: str, user_name: str, desired_words: int, tone: str = "") -> str:
    intro = get_system_prompt("intro").format(user_name=user_name)
    tone_clause = f" in a {tone} tone" if tone else ""
    if mode == "chat":
        word_limit = min(desired_words, get_prompt_max_words("chat", 300))
        body = get_system_prompt("chat").format(word_limit=word_limit, tone_clause=tone_clause)
    else:
        body = get_system_prompt("generate").format(desired_words=desired_words, tone_clause=tone_clause)
    return f"{intro} {body}"


def provider_for_model(model_name: str) -> str:
    if model_name == "local":
        return "local"
    if "deepseek" in model_name:
        return "deepseek"
    return "huggingface"


def available_models() -> Dict[str, Any]:
    config = current_app.config
    models = {
        "default": config.get("DEFAULT_MODEL"),
        "deepseek": list(config.get("DEEPSEEK_MODELS", [])),
        "huggingface": list(config.get("HUGGING_FACE_MODELS", [])),
        "local": bool(config.get("LOCAL_MODEL_PATH")),
    }
    return models


def _get_completion_client(provider: str) -> Any:
    app = current_app
    cache = app.extensions.setdefault(CLIENT_CACHE_KEY, {})
    if provider in cache:
        return cache[provider]

    if provider == "deepseek":
        client = DeepSeekChatClient(
            app.config.get("DEEPSEEK_API_KEY", ""),
            base_url=app.config.get("DEEPSEEK_API_BASE", "https://api.deepseek.com"),
        )
    elif provider == "huggingface":
        client = HuggingFaceInferenceClient(
            app.config.get("HF_API_KEY", ""),
            base_url=app.config.get("HF_API_BASE", "https://api-inference.huggingface.co/models"),
        )
    elif provider == "local":
        model_path = app.config.get("LOCAL_MODEL_PATH")
        if not model_path:
            raise GenerationError("LOCAL_MODEL_PATH is not configured.", 400)
        from text_generator import TextGenerator

        app.logger.info("Initialising local text generator with model path: %s", model_path)
        client = TextGenerator(model_path=model_path)
    else:
        raise GenerationError(f"Unknown completion provider '{provider}'.", 400)

    cache[provider] = client
    return client


def _require_prompt(payload: Mapping[str, Any]) -> str:
    prompt = payload.get("prompt") or ""
    if not isinstance(prompt, str):
        prompt = str(prompt)
    if not prompt:
        raise GenerationError("Prompt is required", 400)
    return prompt


def _chat_messages(system_message: str, prompt: str) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": system_message},
        {"role": "user", "content": prompt},
    ]


def _context_for_request(
    payload: Mapping[str, Any],
    project: Optional[Project],
):
    """Return ``(context_text, has_context, has_previous_chapters)``."""

    raw_items = payload.get("context")
    if project is not None:
        items = resolve_context_items(raw_items, project) if raw_items else None
        chapter_id = str(payload.get("chapter_id") or "").strip() or None
        context = build_project_context(project, chapter_id=chapter_id, items=items)
        return context.text, context.has_context, context.has_previous_chapters

    inline = render_inline_context(resolve_context_items(raw_items))
    return inline, bool(inline), False


# ------------------------------------------------------------------ operations


def generate_text(
    payload: Mapping[str, Any],
    *,
    model_name: Optional[str] = None,
    project: Optional[Project] = None,
) -> TextGenerationResult:
    """Forward a prompt to the selected model and return its completion."""

    prompt = _require_prompt(payload)
    mode = str(payload.get("mode") or "generate")
    tone = str(payload.get("tone") or "").strip()

    model_name = (model_name or current_app.config.get("DEFAULT_MODEL") or SIMPLE_MODEL).strip()
    provider = provider_for_model(model_name)
    is_deepseek = provider == "deepseek"

    max_tokens = min(parse_length(payload.get("length"), 200), MAX_PROXY_TOKENS)
    timeout = calculate_timeout(max_tokens, mode, is_deepseek)

    context_text, _, _ = _context_for_request(payload, project)
    parts = [context_text] if context_text else []
    parts.append(prompt)
    if tone:
        parts.append(f"Write in a {tone} tone.")
    full_prompt = "\n\n".join(parts)

    current_app.logger.info(
        "generate-text request: model=%s mode=%s max_tokens=%s timeout=%.1fs",
        model_name,
        mode,
        max_tokens,
        timeout,
    )

    try:
        client = _get_completion_client(provider)
        if is_deepseek:
            result = client.complete(
                _chat_messages(get_system_prompt("creative_assistant"), full_prompt),
                model=model_name,
                max_tokens=max_tokens,
                temperature=0.7,
                top_p=0.9,
                timeout=timeout,
            )
        else:
            result = client.complete(
                full_prompt,
                model=model_name,
                max_tokens=max_tokens,
                temperature=0.7,
                top_p=0.9,
                timeout=timeout,
            )
    except CompletionTimeoutError as exc:
        current_app.logger.warning("generate-text timed out after %.1fs for model %s", timeout, model_name)
        raise GenerationError(TIMEOUT_MESSAGE, 408, detail=str(exc)) from exc
    except CompletionError as exc:
        current_app.logger.error("Error in generate-text: %s", exc)
        raise GenerationError(str(exc), 500) from exc

    text = (result.text or "").strip()
    if not text:
        raise GenerationError("No text was generated", 500)

    return TextGenerationResult(text=text, model=model_name, usage=result.usage or None)


def generate_text_simple(
    payload: Mapping[str, Any],
    *,
    user_name: str = "User",
    project: Optional[Project] = None,
) -> SimpleGenerationResult:
    """Draft or brainstorm with DeepSeek using a word budget and mode-specific system message."""

    prompt = _require_prompt(payload)
    mode = str(payload.get("mode") or "generate")
    tone = str(payload.get("tone") or "").strip()
    model_name = SIMPLE_MODEL

    current_app.logger.info(
        "Request parameters: prompt=%r mode=%s tone=%s length=%s project_id=%s",
        prompt[:100] + "...",
        mode,
        tone,
        payload.get("length"),
        payload.get("project_id") or "",
    )

    if not (current_app.config.get("DEEPSEEK_API_KEY") or "").strip():
        current_app.logger.error("API key validation failed: %s", MISSING_KEY_MESSAGE)
        raise GenerationError(MISSING_KEY_MESSAGE, 401)

    desired_words = clamp_desired_words(payload.get("length"), mode)
    max_tokens = words_to_tokens(desired_words)
    current_app.logger.info("Calculated parameters: desired_words=%s max_tokens=%s", desired_words, max_tokens)

    system_message = create_system_message(mode, user_name, desired_words, tone)
    context_text, context_provided, previous_provided = _context_for_request(payload, project)
    if context_text:
        system_message += "\n\n" + get_system_prompt("story_context").format(context=context_text)

    is_chat = mode == "chat"
    try:
        client = _get_completion_client("deepseek")
        result = client.complete(
            _chat_messages(system_message, prompt),
            model=model_name,
            max_tokens=max_tokens,
            temperature=0.9 if is_chat else 0.8,
            top_p=0.95,
            timeout=calculate_timeout(max_tokens, mode, True),
            presence_penalty=0.8 if is_chat else 0.5,
            frequency_penalty=0.7 if is_chat else 0.5,
            stop=["###"],
        )
    except CompletionError as exc:
        raise _map_simple_error(exc) from exc

    text = ensure_complete_sentence(result.text or "")
    if not text:
        current_app.logger.error("No text generated from API response")
        raise GenerationError("No text was generated from the API response", 500)

    actual_words = len(text.split())
    usage = result.usage or None
    actual_tokens = usage.get("total_tokens") if isinstance(usage, dict) else None
    current_app.logger.info("Generation successful: actual_words=%s tokens_used=%s", actual_words, actual_tokens)

    return SimpleGenerationResult(
        text=text,
        model=model_name,
        user_name=user_name,
        mode=mode,
        context_provided=context_provided,
        previous_chapters_provided=previous_provided,
        usage=usage,
        requested_words=desired_words,
        actual_words=actual_words,
        actual_tokens=actual_tokens,
    )


def _map_simple_error(exc: CompletionError) -> GenerationError:
    current_app.logger.error("Error in generate-text-simple: %s", exc)
    message = str(exc)
    status_code = exc.status_code

    if isinstance(exc, CompletionTimeoutError):
        error = GenerationError(TIMEOUT_MESSAGE, 408, detail=message)
    elif "API key" in message or "API_KEY" in message:
        error = GenerationError(f"API key error: {message}", 401, detail=message)
    elif status_code == 429:
        error = GenerationError(RATE_LIMIT_MESSAGE, 429, detail=message)
    elif status_code is not None and 500 <= status_code < 600:
        error = GenerationError(UNAVAILABLE_MESSAGE, 503, detail=message)
    else:
        error = GenerationError(message, 500, detail=message)

    if current_app.debug:
        error.stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return error
