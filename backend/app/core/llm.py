"""Central LLM client: OpenAI primary, Gemini fallback.

Used by CV analysis and CV suggestions (JSON mode) and by the cover letter /
outreach writer (plain text). OpenAI calls go through the Langfuse wrapper
so every generation is traced; transient network errors are retried with
tenacity.

After MAX_OPENAI_FAILURES consecutive OpenAI failures the client stops
trying OpenAI for OPENAI_COOLDOWN_SECONDS and goes straight to Gemini.
Callers get None when no provider produced a usable answer and decide the
HTTP outcome themselves.
"""

import asyncio
import json
import time
from dataclasses import dataclass

import httpx
import openai as openai_errors
from langfuse.openai import AsyncOpenAI
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from app.config import load_settings
from app.core.constants import MAX_OPENAI_FAILURES, OPENAI_COOLDOWN_SECONDS
from app.core.logger import logger

_RETRYABLE = (httpx.TimeoutException, httpx.ConnectError, openai_errors.APITimeoutError)
_OPENAI_ERRORS = (openai_errors.APIError, httpx.HTTPError, ValueError)
_GEMINI_ERRORS = (httpx.HTTPError, ValueError, RuntimeError)


def _strip_code_fences(text: str) -> str:
    """Gemini sometimes wraps JSON in ```json fences despite instructions."""
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()


def parse_json_object(text: str | None, provider: str) -> dict | None:
    """Parse an LLM reply that must be a single JSON object."""
    if not text:
        return None
    try:
        parsed = json.loads(_strip_code_fences(text))
    except json.JSONDecodeError as e:
        logger.error(f"{provider} returned invalid JSON: {e}\nContent: {text[:200]}")
        return None
    if not isinstance(parsed, dict):
        logger.error(f"{provider} returned JSON {type(parsed).__name__}, expected object")
        return None
    return parsed


@dataclass
class ProviderUsage:
    calls: int = 0
    failures: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0


class LLMClient:
    """OpenAI primary, Gemini fallback."""

    def __init__(self):
        settings = load_settings()
        self.openai_client = AsyncOpenAI(api_key=settings.openai_api_key) if settings.openai_api_key else None
        self.gemini_available = bool(settings.google_ai_api_key)
        self._gemini_api_key = settings.google_ai_api_key
        self._gemini_model = settings.gemini_model
        self.model = settings.llm_model

        self.openai_failures = 0
        self._openai_paused_until = 0.0
        self.last_provider: str | None = None
        self.usage = {"openai": ProviderUsage(), "gemini": ProviderUsage()}

    @property
    def configured(self) -> bool:
        return self.openai_client is not None or self.gemini_available

    def _openai_usable(self) -> bool:
        return self.openai_client is not None and time.monotonic() >= self._openai_paused_until

    def _record_openai_failure(self, error: Exception) -> None:
        self.openai_failures += 1
        self.usage["openai"].failures += 1
        logger.warning(f"OpenAI failed ({self.openai_failures}x in a row): {error}")
        if self.openai_failures >= MAX_OPENAI_FAILURES:
            self._openai_paused_until = time.monotonic() + OPENAI_COOLDOWN_SECONDS
            self.openai_failures = 0
            logger.error(f"OpenAI paused for {OPENAI_COOLDOWN_SECONDS}s after {MAX_OPENAI_FAILURES} failures")

    async def call(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: float = 0.7,
        max_tokens: int = 1000,
        name: str | None = None,
    ) -> str | None:
        """Make a plain-text LLM call. Returns response text or None."""
        return await self._complete(prompt, system_prompt, temperature, max_tokens, name, json_mode=False)

    async def call_json(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: float = 0.1,
        max_tokens: int = 4000,
        name: str | None = None,
    ) -> dict | None:
        """Make an LLM call that returns structured JSON (a dict) or None."""
        return await self._complete(prompt, system_prompt, temperature, max_tokens, name, json_mode=True)

    async def _complete(self, prompt, system_prompt, temperature, max_tokens, name, json_mode):
        if self._openai_usable():
            try:
                text = await self._call_openai(prompt, system_prompt, temperature, max_tokens, name, json_mode)
                result = parse_json_object(text, "OpenAI") if json_mode else text
                if result is None and json_mode:
                    raise ValueError("OpenAI returned no usable JSON object")
                self.openai_failures = 0
                self.last_provider = "openai"
                return result
            except _OPENAI_ERRORS as e:
                self._record_openai_failure(e)

        if self.gemini_available:
            try:
                text = await self._call_gemini(prompt, system_prompt, temperature, max_tokens, json_mode)
                result = parse_json_object(text, "Gemini") if json_mode else text
                if result is not None:
                    self.last_provider = "gemini"
                    return result
            except _GEMINI_ERRORS as e:
                self.usage["gemini"].failures += 1
                logger.warning(f"Gemini fallback failed: {e}")

        logger.error(f"All LLM providers failed ({'JSON' if json_mode else 'text'} call{f' {name}' if name else ''})")
        return None

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(min=1, max=5),
        retry=retry_if_exception_type(_RETRYABLE),
    )
    async def _call_openai(
        self,
        prompt: str,
        system_prompt: str,
        temperature: float,
        max_tokens: int,
        name: str | None,
        json_mode: bool,
    ) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        kwargs = dict(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        if name:
            # generation name shown in Langfuse traces
            kwargs["name"] = name

        response = await self.openai_client.chat.completions.create(**kwargs)
        if not response.choices:
            raise ValueError("LLM returned no choices")

        usage = self.usage["openai"]
        usage.calls += 1
        if response.usage:
            usage.prompt_tokens += response.usage.prompt_tokens or 0
            usage.completion_tokens += response.usage.completion_tokens or 0
        return response.choices[0].message.content

    async def _call_gemini(
        self,
        prompt: str,
        system_prompt: str,
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> str:
        import google.generativeai as genai

        genai.configure(api_key=self._gemini_api_key)
        generation_config = {"temperature": temperature, "max_output_tokens": max_tokens}
        if json_mode:
            generation_config["response_mime_type"] = "application/json"
        model = genai.GenerativeModel(
            self._gemini_model,
            system_instruction=system_prompt or None,
            generation_config=generation_config,
        )

        response = await model.generate_content_async(prompt)
        usage = self.usage["gemini"]
        usage.calls += 1
        metadata = getattr(response, "usage_metadata", None)
        if metadata:
            usage.prompt_tokens += metadata.prompt_token_count or 0
            usage.completion_tokens += metadata.candidates_token_count or 0
        return response.text

    def status(self) -> dict:
        """Provider availability and usage since startup."""
        return {
            "openai": {
                "configured": self.openai_client is not None,
                "paused": self.openai_client is not None and not self._openai_usable(),
                **vars(self.usage["openai"]),
            },
            "gemini": {"configured": self.gemini_available, **vars(self.usage["gemini"])},
            "last_provider": self.last_provider,
        }


_client: LLMClient | None = None
_lock = asyncio.Lock()


async def get_llm_client() -> LLMClient:
    """Get or create the singleton LLM client."""
    global _client
    if _client is None:
        async with _lock:
            if _client is None:
                _client = LLMClient()
    return _client
