"""Langfuse prompt management + tracing.

Prompts live in Langfuse under the names in PROMPT_NAMES and are fetched at
runtime with the configured label. When Langfuse is not configured, or a
fetch fails, the embedded copy in fallback_prompts.py is used instead, so
the API never depends on Langfuse being up.

Exports:
- observe: decorator for tracing service entrypoints
- load_prompt: compiled (system, user, config) for a prompt
- tag_trace: attach the developer and feature to the current trace
- flush: send pending traces (end of request / background task)

Env vars: LANGFUSE_PUBLIC_KEY, LANGFUSE_SECRET_KEY, LANGFUSE_HOST, LANGFUSE_PROMPT_LABEL
"""

import threading

from langfuse import Langfuse, observe  # noqa: F401  (observe re-exported)

from app.config import load_settings
from app.core.constants import PROMPT_CACHE_TTL
from app.core.fallback_prompts import FALLBACK_PROMPTS
from app.core.logger import logger

PROMPT_NAMES = tuple(FALLBACK_PROMPTS)

_client: Langfuse | None = None
_initialized = False
_lock = threading.Lock()


def _get_client() -> Langfuse | None:
    """Langfuse client singleton, or None when no keys are configured."""
    global _client, _initialized

    if _initialized:
        return _client

    with _lock:
        if _initialized:
            return _client

        _initialized = True
        settings = load_settings()
        if not settings.langfuse_public_key or not settings.langfuse_secret_key:
            logger.info("Langfuse: no keys configured — using embedded prompts, tracing off")
            return None

        try:
            _client = Langfuse(
                public_key=settings.langfuse_public_key,
                secret_key=settings.langfuse_secret_key,
                host=settings.langfuse_host,
            )
        except Exception as e:
            logger.warning(f"Langfuse: failed to initialize client: {e}")
            return None
        logger.info(f"Langfuse: client initialized (prompt label '{settings.langfuse_prompt_label}')")
        return _client


def _split_messages(messages: list[dict]) -> tuple[str, str]:
    system_content = ""
    user_content = ""
    for msg in messages:
        if msg.get("role") == "system":
            system_content = msg.get("content", "")
        elif msg.get("role") == "user":
            user_content = msg.get("content", "")
    return system_content, user_content


def _fetch_prompt(prompt_name: str, variables: dict) -> tuple[str, str, dict] | None:
    client = _get_client()
    if not client:
        return None

    try:
        prompt = client.get_prompt(
            prompt_name,
            type="chat",
            label=load_settings().langfuse_prompt_label,
            cache_ttl_seconds=PROMPT_CACHE_TTL,
        )
        system_content, user_content = _split_messages(prompt.compile(**variables))
    except (ValueError, KeyError, TypeError, RuntimeError) as e:
        logger.warning(f"Langfuse: failed to fetch prompt '{prompt_name}': {e}")
        return None

    if not user_content:
        logger.warning(f"Langfuse: prompt '{prompt_name}' v{prompt.version} has no user message")
        return None
    logger.debug(f"Langfuse: using prompt '{prompt_name}' v{prompt.version}")
    return system_content, user_content, prompt.config or {}


def load_prompt(prompt_name: str, variables: dict) -> tuple[str, str, dict]:
    """Return (system, user, config) from Langfuse or the embedded fallback.

    The fallback user template uses str.format placeholders; Langfuse uses
    {{mustache}} variables, so both are compiled from the same dict. Config
    keys missing from the Langfuse prompt are filled from the fallback.

    Raises:
        KeyError: unknown prompt name.
    """
    if prompt_name not in FALLBACK_PROMPTS:
        raise KeyError(f"Unknown prompt '{prompt_name}' (known: {', '.join(PROMPT_NAMES)})")
    fallback = FALLBACK_PROMPTS[prompt_name]

    fetched = _fetch_prompt(prompt_name, variables)
    if fetched:
        system_prompt, user_prompt, config = fetched
        return system_prompt, user_prompt, {**fallback["config"], **config}

    return fallback["system"], fallback["user"].format(**variables), fallback["config"]


def tag_trace(feature: str, developer_id: str | None = None, **metadata) -> None:
    """Label the current trace so costs can be grouped by developer and feature."""
    client = _get_client()
    if not client:
        return
    try:
        client.update_current_trace(
            user_id=developer_id,
            tags=[feature],
            metadata=metadata or None,
        )
    except Exception as e:
        logger.debug(f"Langfuse: could not tag trace for {feature}: {e}")


def flush() -> None:
    """Flush pending Langfuse traces."""
    client = _get_client()
    if client:
        try:
            client.flush()
        except Exception as e:
            logger.warning(f"Langfuse: flush failed: {e}")
