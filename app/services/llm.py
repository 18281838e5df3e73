import asyncio
import json
import logging
import re

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from app import config
from app.errors import Timeout

logger = logging.getLogger(__name__)


_ANTHROPIC_DEFAULTS = {
    "fast": "claude-3-haiku-20240307",
    "standard": "claude-3-5-sonnet-20240620",
    "high": "claude-3-5-sonnet-20240620",
}

_OPENAI_DEFAULTS = {
    "fast": "gpt-4o-mini",
    "standard": "gpt-4o",
    "high": "gpt-4o",
}


class LLMUnavailable(RuntimeError):
    """No language-model provider is configured."""


def strip_json(text: str) -> str:
    """Drop markdown code fences and anything outside the outermost braces."""
    text = text.strip()
    if text.startswith("```"):
        text = re.sub(r"^```(?:json)?\s*", "", text)
        text = re.sub(r"\s*```$", "", text)
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end != -1 and end > start:
        return text[start:end + 1]
    return text


def parse_json_object(text: str) -> dict:
    """Parse model output into a dict. Raises ``ValueError`` when it is not one."""
    data = json.loads(strip_json(text))
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data


class LLMClient:
    def __init__(self) -> None:
        provider = (config.LLM_PROVIDER or "auto").lower()
        if provider == "auto":
            if config.ANTHROPIC_API_KEY:
                provider = "anthropic"
            elif config.OPENAI_API_KEY:
                provider = "openai"
            else:
                provider = "dummy"
        self.provider = provider

        self._anthropic = AsyncAnthropic(api_key=config.ANTHROPIC_API_KEY) if config.ANTHROPIC_API_KEY else None
        self._openai = AsyncOpenAI(api_key=config.OPENAI_API_KEY) if config.OPENAI_API_KEY else None

    def available(self) -> bool:
        if self.provider == "anthropic":
            return self._anthropic is not None
        if self.provider == "openai":
            return self._openai is not None
        return False

    def model_for_tier(self, tier: str | None) -> str:
        tier = (tier or config.LLM_DEFAULT_TIER or "fast").lower()
        if tier not in ("fast", "standard", "high"):
            tier = "standard"

        if tier == "fast" and config.LLM_MODEL_FAST:
            return config.LLM_MODEL_FAST
        if tier == "standard" and config.LLM_MODEL_STANDARD:
            return config.LLM_MODEL_STANDARD
        if tier == "high" and config.LLM_MODEL_HIGH:
            return config.LLM_MODEL_HIGH

        if self.provider == "anthropic":
            return _ANTHROPIC_DEFAULTS[tier]
        return _OPENAI_DEFAULTS[tier]

    async def _anthropic_text(self, model: str, system: str, user: str, temperature: float, max_tokens: int) -> str:
        message = await self._anthropic.messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system,
            messages=[{"role": "user", "content": user}],
        )
        raw = ""
        for block in message.content:
            if hasattr(block, "text"):
                raw += block.text
        return raw

    async def _openai_text(self, model: str, system: str, user: str, temperature: float, max_tokens: int) -> str:
        response = await self._openai.chat.completions.create(
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        )
        return response.choices[0].message.content or ""

    async def complete_text(
        self,
        *,
        system: str,
        user: str,
        temperature: float = 0.1,
        max_tokens: int = 1024,
        tier: str | None = None,
    ) -> str:
        """Return the raw completion text. Callers own parsing."""
        if not self.available():
            raise LLMUnavailable("LLM provider unavailable")

        model = self.model_for_tier(tier)
        if self.provider == "anthropic":
            call = self._anthropic_text(model, system, user, temperature, max_tokens)
        else:
            call = self._openai_text(model, system, user, temperature, max_tokens)

        try:
            return await asyncio.wait_for(call, timeout=config.LLM_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.error("LLM call to %s exceeded %.0fs", model, config.LLM_TIMEOUT_SECONDS)
            raise Timeout(f"Language model call exceeded {config.LLM_TIMEOUT_SECONDS:.0f}s") from None


_client: LLMClient | None = None


def get_llm_client() -> LLMClient:
    global _client
    if _client is None:
        _client = LLMClient()
    return _client
