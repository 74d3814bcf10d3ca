"""Central configuration for system prompts sent to the completion APIs."""

from __future__ import annotations

SYSTEM_PROMPTS = {
    "creative_assistant": {
        "base": "You are a creative writing assistant that creates imaginative and engaging content.",
    },
    "intro": {
        "base": "You are an AI writing assistant helping {user_name} with a creative writing project.",
    },
    "chat": {
        "max_words": 300,
        "base": (
            "You are in BRAINSTORMING MODE.\n\n"
            "As a brainstorming assistant, help the user explore ideas, develop characters, and plan plot points.\n\n"
            "GUIDELINES:\n"
            "1. Focus on DISCUSSING rather than CREATING final content.\n"
            "2. Ask thoughtful questions to help develop ideas.\n"
            "3. Provide concise, helpful suggestions.\n"
            "4. Respond conversationally with shorter answers.\n\n"
            "Keep responses under {word_limit} words{tone_clause}."
        ),
    },
    "generate": {
        "base": (
            "You are in WRITING MODE.\n\n"
            "Write a creative story continuation of {desired_words} words{tone_clause}.\n"
            "Your writing must:\n"
            "1. Be engaging and creative\n"
            "2. Use vivid language and well-structured paragraphs\n"
            "3. Follow the user's specific instructions\n"
            "4. Show, don't tell\n\n"
            "Create compelling narrative content based on the user's prompt."
        ),
    },
    "story_context": {
        "base": (
            "Use the following details from the writer's project to stay consistent with "
            "established characters, places, and events. Do not contradict them.\n\n"
            "{context}"
        ),
    },
}


def get_system_prompt(name: str) -> str:
    """Return the base text configured for ``name``."""

    entry = SYSTEM_PROMPTS.get(name)
    if not isinstance(entry, dict) or "base" not in entry:
        raise KeyError(f"No system prompt configured for '{name}'.")
    return entry["base"]


def get_prompt_max_words(name: str, fallback: int | None = None) -> int | None:
    """Return the configured ``max_words`` for ``name`` if available."""

    entry = SYSTEM_PROMPTS.get(name)
    if not isinstance(entry, dict):
        return fallback

    raw_value = entry.get("max_words")
    if raw_value is None:
        return fallback

    try:
        words = int(raw_value)
    except (TypeError, ValueError):
        return fallback

    if words <= 0:
        return fallback

    return words
