"""Text completion via the Anthropic Messages API."""

import logging
from typing import Optional

import anthropic

from notebridge import config
from notebridge.errors import CompletionError

log = logging.getLogger(__name__)


def complete(
    prompt: str,
    api_key: str,
    model: Optional[str] = None,
    system_prompt: Optional[str] = None,
) -> str:
    """Send ``prompt`` and return the reply text.

    Raises CompletionError with a readable message on any API failure or
    when the response carries no text. No retries: a failed call is
    surfaced to the note, not repeated.
    """
    use_model = model or config.COMPLETION_MODEL
    kwargs = {
        "model": use_model,
        "max_tokens": config.COMPLETION_MAX_TOKENS,
        "messages": [{"role": "user", "content": prompt}],
    }
    if system_prompt:
        kwargs["system"] = system_prompt

    try:
        client = anthropic.Anthropic(
            api_key=api_key,
            timeout=config.COMPLETION_TIMEOUT,
            max_retries=0,
        )
        response = client.messages.create(**kwargs)
    except anthropic.APIStatusError as e:
        raise CompletionError(_status_message(e)) from e
    except anthropic.APIConnectionError as e:
        raise CompletionError(f"could not reach the completion service ({e})") from e
    except anthropic.APIError as e:
        raise CompletionError(str(e)) from e

    blocks = getattr(response, "content", None) or []
    text = getattr(blocks[0], "text", None) if blocks else None
    if not isinstance(text, str) or not text.strip():
        raise CompletionError("empty response from the completion service")

    text = text.strip()
    log.info("Generated reply (%d chars, model=%s)", len(text), use_model)
    return text


def _status_message(exc: "anthropic.APIStatusError") -> str:
    body = exc.body if isinstance(exc.body, dict) else {}
    error = body.get("error")
    if isinstance(error, dict) and error.get("message"):
        return f"{error['message']} (HTTP {exc.status_code})"
    return f"HTTP {exc.status_code}: {exc.message}"


def error_reply(exc: Exception) -> str:
    """Text written into the note in place of a reply when the call failed."""
    return f"❌ Completion error: {exc}"
