"""
Generation service - ordered provider chain with fallback.
Primary: OpenAI with the tenant's own key. Fallback: platform-wide provider
(OpenAI-compatible gateway or Anthropic).
Hard timeout on every call. Tracks cost, latency and token usage.
"""
import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

# Cost per million tokens (input/output)
COST_TABLE = {
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "google/gemini-2.5-flash": {"input": 0.30, "output": 2.50},
    "claude-haiku-4-5-20251001": {"input": 1.00, "output": 5.00},
}

PROVIDER_OPENAI = "openai"
PROVIDER_ANTHROPIC = "anthropic"


@dataclass(frozen=True)
class ProviderSpec:
    """One link of the provider chain."""
    kind: str  # openai, anthropic
    api_key: Optional[str]
    model: str
    base_url: Optional[str] = None
    label: str = ""  # tenant, platform

    @property
    def name(self) -> str:
        return f"{self.label}:{self.kind}" if self.label else self.kind


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Calculate cost in USD for a given model and token count."""
    costs = COST_TABLE.get(model, {"input": 1.0, "output": 5.0})
    return (input_tokens * costs["input"] + output_tokens * costs["output"]) / 1_000_000


def _sanitize_output_text(text: Optional[str]) -> str:
    """Drop hidden reasoning blocks and wrapping quotes some models add."""
    if not text:
        return ""
    cleaned = re.sub(r"<think>.*?</think>", "", text, flags=re.DOTALL | re.IGNORECASE)
    cleaned = cleaned.strip()
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in "\"'“”":
        cleaned = cleaned[1:-1].strip()
    elif cleaned.startswith("“") and cleaned.endswith("”"):
        cleaned = cleaned[1:-1].strip()
    return cleaned


def _error_result(error_msg: str) -> dict:
    """Return a standardized error result dict."""
    return {
        "content": "",
        "provider": "none",
        "model": "none",
        "latency_ms": 0,
        "cost_usd": 0.0,
        "input_tokens": 0,
        "output_tokens": 0,
        "error": error_msg,
    }


async def generate_response(
    system_prompt: str,
    user_message: str,
    providers: list[ProviderSpec],
    max_tokens: Optional[int] = None,
    temperature: Optional[float] = None,
) -> dict:
    """
    Generate text with the first provider that succeeds.

    A provider is skipped when it has no key, raises, times out or returns
    empty text. Never raises; on total failure the result carries "error".

    Returns:
        {
            "content": str,
            "provider": str,
            "model": str,
            "latency_ms": int,
            "cost_usd": float,
            "input_tokens": int,
            "output_tokens": int,
            "error": str|None,
        }
    """
    from reengage.config import get_settings
    settings = get_settings()

    tokens = max_tokens or settings.ai_max_tokens
    temp = settings.ai_temperature if temperature is None else temperature
    errors = []

    for spec in providers:
        if not spec.api_key:
            logger.debug("Provider %s has no credential, skipping", spec.name)
            errors.append(f"{spec.name}: no credential")
            continue

        caller = _CALLERS.get(spec.kind)
        if caller is None:
            logger.error("Unknown generation provider kind: %s", spec.kind)
            errors.append(f"{spec.name}: unknown provider")
            continue

        try:
            result = await asyncio.wait_for(
                caller(spec, system_prompt, user_message, tokens, temp),
                timeout=settings.ai_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Provider %s timed out after %ds", spec.name, settings.ai_timeout_seconds)
            errors.append(f"{spec.name}: timeout")
            continue
        except Exception as e:
            logger.warning("Provider %s failed: %s", spec.name, str(e))
            errors.append(f"{spec.name}: {e}")
            continue

        if not result["content"]:
            logger.warning("Provider %s returned empty output", spec.name)
            errors.append(f"{spec.name}: empty output")
            continue

        result["provider"] = spec.name
        return result

    return _error_result("; ".join(errors) or "No generation provider configured")


async def _generate_openai(
    spec: ProviderSpec,
    system_prompt: str,
    user_message: str,
    max_tokens: int,
    temperature: float,
) -> dict:
    """OpenAI chat completions (also any OpenAI-compatible gateway via base_url)."""
    from openai import AsyncOpenAI
    from reengage.config import get_settings

    client = AsyncOpenAI(
        api_key=spec.api_key,
        base_url=(spec.base_url or None),
        timeout=get_settings().ai_timeout_seconds,
        max_retries=0,
    )

    start = time.monotonic()
    response = await client.chat.completions.create(
        model=spec.model,
        max_tokens=max_tokens,
        temperature=temperature,
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_message},
        ],
    )
    latency_ms = int((time.monotonic() - start) * 1000)

    content = response.choices[0].message.content if response.choices else ""
    content = _sanitize_output_text(content)
    input_tokens = response.usage.prompt_tokens if response.usage else 0
    output_tokens = response.usage.completion_tokens if response.usage else 0

    return {
        "content": content,
        "provider": PROVIDER_OPENAI,
        "model": spec.model,
        "latency_ms": latency_ms,
        "cost_usd": calculate_cost(spec.model, input_tokens, output_tokens),
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "error": None,
    }


async def _generate_anthropic(
    spec: ProviderSpec,
    system_prompt: str,
    user_message: str,
    max_tokens: int,
    temperature: float,
) -> dict:
    """Anthropic messages API."""
    from anthropic import AsyncAnthropic
    from reengage.config import get_settings

    client = AsyncAnthropic(
        api_key=spec.api_key,
        timeout=get_settings().ai_timeout_seconds,
        max_retries=0,
    )

    start = time.monotonic()
    response = await client.messages.create(
        model=spec.model,
        max_tokens=max_tokens,
        temperature=temperature,
        system=system_prompt,
        messages=[{"role": "user", "content": user_message}],
    )
    latency_ms = int((time.monotonic() - start) * 1000)

    content = ""
    for block in response.content:
        if block.type == "text":
            content += block.text
    content = _sanitize_output_text(content)

    input_tokens = response.usage.input_tokens if response.usage else 0
    output_tokens = response.usage.output_tokens if response.usage else 0

    return {
        "content": content,
        "provider": PROVIDER_ANTHROPIC,
        "model": spec.model,
        "latency_ms": latency_ms,
        "cost_usd": calculate_cost(spec.model, input_tokens, output_tokens),
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "error": None,
    }


_CALLERS = {
    PROVIDER_OPENAI: _generate_openai,
    PROVIDER_ANTHROPIC: _generate_anthropic,
}
