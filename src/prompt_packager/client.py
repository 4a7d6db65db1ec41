# AI gateway client
# OpenAI-compatible chat completions behind a hosted gateway
# Integrates LangSmith tracing (no-op unless LANGSMITH_TRACING is set)

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional

from dotenv import load_dotenv
from langsmith import traceable
from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI

logger = logging.getLogger(__name__)

# Load .env file
env_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(env_path)

DEFAULT_BASE_URL = "https://ai.gateway.lovable.dev/v1"
DEFAULT_MODEL = "google/gemini-2.5-flash"

# Async (system, message) -> text; the pipeline only depends on this shape
ChatFn = Callable[[str, str], Awaitable[str]]


class GatewayError(RuntimeError):
    """AI gateway call failed (missing key, non-2xx, or transport error)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class GatewayConfig:
    """Connection settings for the AI gateway.

    Built once per process and passed to every call.
    """

    api_key: str = ""
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    timeout_seconds: float = 120.0
    max_retries: int = 0
    max_tokens: Optional[int] = None

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        """Read AI_GATEWAY_* variables (LOVABLE_API_KEY is accepted for the key)."""
        max_tokens = os.environ.get("AI_MAX_TOKENS", "")
        return cls(
            api_key=os.environ.get("AI_GATEWAY_API_KEY") or os.environ.get("LOVABLE_API_KEY", ""),
            base_url=os.environ.get("AI_GATEWAY_BASE_URL", DEFAULT_BASE_URL),
            model=os.environ.get("AI_MODEL", DEFAULT_MODEL),
            timeout_seconds=float(os.environ.get("AI_TIMEOUT_SECONDS", "120")),
            max_retries=int(os.environ.get("AI_MAX_RETRIES", "0")),
            max_tokens=int(max_tokens) if max_tokens else None,
        )


def get_gateway_client(config: GatewayConfig) -> AsyncOpenAI:
    """Get async client for the gateway's OpenAI-compatible API."""
    if not config.api_key:
        raise GatewayError("AI gateway API key not set")
    return AsyncOpenAI(
        api_key=config.api_key,
        base_url=config.base_url,
        timeout=config.timeout_seconds,
        max_retries=config.max_retries,
    )


@traceable(run_type="llm", name="AI Gateway")
async def call_ai(
    config: GatewayConfig,
    system_prompt: str,
    user_message: str,
    max_tokens: Optional[int] = None,
) -> str:
    """Send one system + user message pair and return the reply text.

    Returns an empty string when the model answers without content.

    Raises:
        GatewayError: key missing, non-2xx response (status and body in the
            message), timeout or connection failure.
    """
    client = get_gateway_client(config)

    kwargs = {}
    limit = max_tokens or config.max_tokens
    if limit:
        kwargs["max_tokens"] = limit

    try:
        response = await client.chat.completions.create(
            model=config.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
            **kwargs,
        )
    except APIStatusError as e:
        raise GatewayError(
            f"AI call failed ({e.status_code}): {e.response.text}",
            status_code=e.status_code,
        ) from e
    except APITimeoutError as e:
        raise GatewayError(f"AI call timed out after {config.timeout_seconds}s") from e
    except APIConnectionError as e:
        raise GatewayError(f"AI call failed: {e}") from e

    if not response.choices:
        return ""
    text = response.choices[0].message.content or ""

    usage = getattr(response, "usage", None)
    if usage is not None:
        logger.debug(
            "AI gateway call complete",
            extra={
                "model": config.model,
                "input_tokens": usage.prompt_tokens,
                "output_tokens": usage.completion_tokens,
            },
        )
    return text


def make_chat_fn(config: GatewayConfig) -> ChatFn:
    """Bind a config to call_ai for use as the pipeline's ChatFn."""

    async def _chat(system_prompt: str, user_message: str) -> str:
        return await call_ai(config, system_prompt, user_message)

    return _chat
