# api_handler.py
"""HTTP clients for the hosted completion APIs used by the writing assistant.

Two providers are supported:

- DeepSeek chat completions, reached through the ``openai`` SDK because the
  DeepSeek endpoint speaks the OpenAI wire format.
- The Hugging Face inference API, reached with plain ``requests`` calls.

Both clients expose ``complete(...)`` returning a :class:`CompletionResult`
and raise :class:`CompletionError` / :class:`CompletionTimeoutError` so the
Flask layer can map failures to HTTP status codes without knowing which
provider was used.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import openai
import requests


LOGGER = logging.getLogger(__name__)


class CompletionError(RuntimeError):
    """Raised when a completion API call fails."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CompletionTimeoutError(CompletionError):
    """Raised when a completion API call exceeds its timeout."""

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or "Request timed out", status_code=408)


@dataclass
class CompletionResult:
    text: str
    usage: Optional[Dict[str, Any]] = None
    raw: Any = None


class DeepSeekChatClient:
    """Chat completions against the DeepSeek OpenAI-compatible endpoint."""

    def __init__(self, api_key: str, *, base_url: str = "https://api.deepseek.com", max_retries: int = 0) -> None:
        self.api_key = (api_key or "").strip()
        if not self.api_key:
            raise CompletionError(
                "DEEPSEEK_API_KEY is not configured. Please set this environment variable.",
                status_code=401,
            )
        self.base_url = base_url
        self._client = openai.OpenAI(api_key=self.api_key, base_url=base_url, max_retries=max_retries)

    def complete(
        self,
        messages: List[Dict[str, str]],
        *,
        model: str,
        max_tokens: int,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        timeout: Optional[float] = None,
        **extra_parameters: Any,
    ) -> CompletionResult:
        kwargs: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": int(max_tokens),
            "stream": False,
        }
        if temperature is not None:
            kwargs["temperature"] = float(temperature)
        if top_p is not None:
            kwargs["top_p"] = float(top_p)
        for key, value in extra_parameters.items():
            if value is not None:
                kwargs[key] = value

        client = self._client.with_options(timeout=timeout) if timeout else self._client
        try:
            resp = client.chat.completions.create(**kwargs)
        except openai.APITimeoutError as exc:
            raise CompletionTimeoutError() from exc
        except openai.APIStatusError as exc:
            body = _shorten_debug(getattr(exc.response, "text", "") or str(exc))
            raise CompletionError(
                f"API request failed with status {exc.status_code}: {body}",
                status_code=exc.status_code,
            ) from exc
        except openai.APIConnectionError as exc:
            raise CompletionError(f"Could not reach the completion API: {exc}") from exc

        text = self._extract_text_from_chat(resp)
        if not text:
            LOGGER.error("Unexpected API response: %s", _shorten_debug(str(resp)))
            raise CompletionError("Invalid response format from API")
        return CompletionResult(text=text, usage=_usage_to_dict(getattr(resp, "usage", None)), raw=resp)

    def _extract_text_from_chat(self, resp: Any) -> str:
        choices = getattr(resp, "choices", []) or []
        if not choices:
            return ""
        msg = getattr(choices[0], "message", None)
        if isinstance(msg, dict):
            content = msg.get("content")
        else:
            content = getattr(msg, "content", None)
        return str(content or "")


class HuggingFaceInferenceClient:
    """Text generation through the Hugging Face hosted inference API."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api-inference.huggingface.co/models",
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.base_url = base_url.rstrip("/")
        self._session = session or requests.Session()

    def endpoint_for(self, model: str) -> str:
        return f"{self.base_url}/{model}"

    def complete(
        self,
        prompt: str,
        *,
        model: str,
        max_tokens: int,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        timeout: Optional[float] = None,
        **extra_parameters: Any,
    ) -> CompletionResult:
        parameters: Dict[str, Any] = {"max_length": int(max_tokens), "do_sample": True}
        if temperature is not None:
            parameters["temperature"] = float(temperature)
        if top_p is not None:
            parameters["top_p"] = float(top_p)
        for key, value in extra_parameters.items():
            if value is not None:
                parameters[key] = value

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = self._session.post(
                self.endpoint_for(model),
                json={"inputs": prompt, "parameters": parameters},
                headers=headers,
                timeout=timeout,
            )
        except requests.Timeout as exc:
            raise CompletionTimeoutError() from exc
        except requests.RequestException as exc:
            raise CompletionError(f"Could not reach the completion API: {exc}") from exc

        if not response.ok:
            raise CompletionError(
                f"API request failed with status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            result = response.json()
        except ValueError as exc:
            raise CompletionError("Invalid response format from API") from exc

        text = extract_generated_text(result)
        if text is None:
            raise CompletionError("Invalid response format from API")
        return CompletionResult(text=text, usage=None, raw=result)


def extract_generated_text(result: Any) -> Optional[str]:
    """Return ``generated_text`` from a list or object inference response."""

    if isinstance(result, list) and result and isinstance(result[0], dict):
        value = result[0].get("generated_text")
        if value:
            return str(value)
    if isinstance(result, dict) and result.get("generated_text"):
        return str(result["generated_text"])
    return None


def _usage_to_dict(usage: Any) -> Optional[Dict[str, Any]]:
    if usage is None:
        return None
    if isinstance(usage, dict):
        return usage
    dump = getattr(usage, "model_dump", None)
    if callable(dump):
        return dump()
    return {
        key: getattr(usage, key)
        for key in ("prompt_tokens", "completion_tokens", "total_tokens")
        if getattr(usage, key, None) is not None
    }


def _shorten_debug(s: str, limit: int = 1200) -> str:
    s = s.replace("\n", " ")
    return (s[:limit] + "…") if len(s) > limit else s
