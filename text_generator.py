"""Local large language model backend for the writing assistant.

:class:`TextGenerator` wraps a Hugging Face Transformers causal language model
so self-hosted deployments can serve ``model=local`` requests without a
hosted completion API. It follows the same ``complete(...)`` contract as the
clients in :mod:`api_handler`:

* 4-bit loading is used only when ``bitsandbytes`` and a GPU are available.
* Sampling parameters (temperature, top-p, penalties) can be overridden per
  call.
* The pad token falls back to EOS so ``generate`` does not warn.

``torch`` and ``transformers`` ship in the optional ``local`` extra; the Flask
app imports this module lazily, only when ``LOCAL_MODEL_PATH`` is configured.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import torch
from transformers import AutoModelForCausalLM, AutoTokenizer, BitsAndBytesConfig

from api_handler import CompletionError, CompletionResult, CompletionTimeoutError


LOGGER = logging.getLogger(__name__)

# Hosted-API parameters that ``generate`` does not understand.
_UNSUPPORTED_PARAMETERS = {"presence_penalty", "frequency_penalty", "stop", "stream", "max_length"}


class TextGenerator:
    def __init__(
        self,
        model_path: str,
        *,
        temperature: Optional[float] = 0.8,
        top_p: Optional[float] = 0.95,
        max_new_tokens: int = 512,
        seed: int = 42,
        device_map: str | Dict[str, Any] | None = "auto",
        use_4bit: bool = True,
        trust_remote_code: bool = False,
    ):
        self.model_path = model_path
        self.temperature = temperature
        self.top_p = top_p
        self.max_new_tokens = max_new_tokens
        self.use_4bit = use_4bit

        torch.manual_seed(seed)
        if torch.cuda.is_available():
            torch.cuda.manual_seed_all(seed)

        model_kwargs: Dict[str, Any] = {
            "device_map": device_map,
            "torch_dtype": "auto",
            "trust_remote_code": trust_remote_code,
        }
        quantization_config = self._build_quantization_config()
        if quantization_config is not None:
            model_kwargs["quantization_config"] = quantization_config

        self.model = AutoModelForCausalLM.from_pretrained(model_path, **model_kwargs)
        self.model.eval()

        self.tokenizer = AutoTokenizer.from_pretrained(model_path, trust_remote_code=trust_remote_code)
        if self.tokenizer.pad_token is None:
            self.tokenizer.pad_token = self.tokenizer.eos_token
        if self.tokenizer.padding_side != "left":
            self.tokenizer.padding_side = "left"

    def _build_quantization_config(self) -> Optional[BitsAndBytesConfig]:
        """Return a 4-bit quantisation config when the hardware supports it."""

        if not self.use_4bit:
            return None

        if not torch.cuda.is_available():
            LOGGER.info("CUDA is not available; skipping 4-bit quantisation.")
            return None

        try:
            import bitsandbytes  # type: ignore  # noqa: F401
        except ImportError:
            LOGGER.info("bitsandbytes not installed; using full precision model loading.")
            return None

        LOGGER.info("Loading model with 4-bit quantisation enabled.")
        return BitsAndBytesConfig(
            load_in_4bit=True,
            bnb_4bit_use_double_quant=True,
            bnb_4bit_quant_type="nf4",
            bnb_4bit_compute_dtype=torch.float16,
        )

    def complete(
        self,
        prompt: str,
        *,
        model: str = "local",
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        timeout: Optional[float] = None,
        **extra_parameters: Any,
    ) -> CompletionResult:
        """Generate a continuation of ``prompt`` without echoing it back.

        ``timeout`` is checked after generation finishes; a local model cannot
        be interrupted mid-call, but slow generations still surface as
        :class:`CompletionTimeoutError` so the caller answers consistently.
        """

        tokens_to_generate = self.max_new_tokens if max_tokens is None else int(max_tokens)
        if tokens_to_generate <= 0:
            raise CompletionError("max_tokens must be a positive integer", status_code=400)

        generation_kwargs: Dict[str, Any] = {
            "max_new_tokens": tokens_to_generate,
            "temperature": self.temperature if temperature is None else temperature,
            "top_p": self.top_p if top_p is None else top_p,
            "do_sample": True,
            "pad_token_id": self.tokenizer.pad_token_id,
        }
        for key, value in extra_parameters.items():
            if value is not None and key not in _UNSUPPORTED_PARAMETERS:
                generation_kwargs[key] = value
        generation_kwargs = {key: value for key, value in generation_kwargs.items() if value is not None}

        enc = self.tokenizer(prompt, return_tensors="pt").to(self.model.device)
        started = time.perf_counter()
        try:
            with torch.no_grad():
                out = self.model.generate(**enc, **generation_kwargs)
        except RuntimeError as exc:
            raise CompletionError(f"Local generation failed: {exc}") from exc
        elapsed = time.perf_counter() - started
        if timeout is not None and elapsed > timeout:
            LOGGER.warning("Local generation took %.1fs (timeout %.1fs)", elapsed, timeout)
            raise CompletionTimeoutError()

        prompt_len = enc["input_ids"].shape[-1]
        generated_ids = out[0, prompt_len:]
        text = self.tokenizer.decode(generated_ids, skip_special_tokens=True).strip()
        usage = {
            "prompt_tokens": int(prompt_len),
            "completion_tokens": int(generated_ids.numel()),
            "total_tokens": int(prompt_len + generated_ids.numel()),
        }
        return CompletionResult(text=text, usage=usage, raw=None)
