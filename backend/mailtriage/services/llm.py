"""LLM client — prompt in, text out, across one or more generation backends."""

import logging
import time
from typing import Optional

import httpx

from mailtriage.config import Settings
from mailtriage.errors import UpstreamError

logger = logging.getLogger(__name__)


class OllamaBackend:
    """Local generation via Ollama's /api/generate."""

    name = "ollama"

    def __init__(self, client: httpx.AsyncClient, base_url: str, model: str, temperature: float = 0.1):
        self._client = client
        self._base_url = base_url
        self._temperature = temperature
        self.model = model
        self.cooldown_until = 0.0

    async def generate(self, prompt: str, json_mode: bool = False) -> str:
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": self._temperature,
                "num_predict": 1024,
            },
        }
        if json_mode:
            payload["format"] = "json"

        response = await self._client.post(f"{self._base_url}/api/generate", json=payload)
        response.raise_for_status()
        return (response.json().get("response") or "").strip()


class GeminiBackend:
    """Hosted generation via the Gemini generateContent endpoint."""

    name = "gemini"

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        model: str,
        api_key: str,
        temperature: float = 0.1,
    ):
        self._client = client
        self._base_url = base_url
        self._api_key = api_key
        self._temperature = temperature
        self.model = model
        self.cooldown_until = 0.0

    async def generate(self, prompt: str, json_mode: bool = False) -> str:
        config = {"temperature": self._temperature, "maxOutputTokens": 1024}
        if json_mode:
            config["responseMimeType"] = "application/json"

        response = await self._client.post(
            f"{self._base_url}/models/{self.model}:generateContent",
            params={"key": self._api_key},
            json={
                "contents": [{"role": "user", "parts": [{"text": prompt}]}],
                "generationConfig": config,
            },
        )
        response.raise_for_status()
        candidates = response.json().get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts).strip()


class LLMClient:
    """Tries each backend in order, skipping any that is cooling down after a rate limit."""

    def __init__(self, backends: list, rate_limit_cooldown: float = 60.0):
        self._backends = backends
        self._cooldown = rate_limit_cooldown

    @property
    def model(self) -> str:
        return ",".join(f"{b.name}/{b.model}" for b in self._backends)

    async def complete(self, prompt: str, json_mode: bool = False) -> str:
        errors: list[str] = []
        for backend in self._backends:
            if backend.cooldown_until > time.monotonic():
                errors.append(f"{backend.name}: rate limited")
                continue
            try:
                text = await backend.generate(prompt, json_mode=json_mode)
                if not text:
                    raise UpstreamError(f"{backend.name} returned an empty response")
                return text
            except httpx.HTTPStatusError as e:
                if e.response.status_code == 429:
                    backend.cooldown_until = time.monotonic() + self._cooldown
                    logger.warning(f"{backend.name} rate limited, cooling down for {self._cooldown:.0f}s")
                else:
                    logger.error(f"{backend.name} HTTP error: {e}")
                errors.append(f"{backend.name}: HTTP {e.response.status_code}")
            except httpx.TimeoutException:
                logger.error(f"{backend.name} request timed out")
                errors.append(f"{backend.name}: timeout")
            except (httpx.HTTPError, ValueError, UpstreamError) as e:
                logger.error(f"{backend.name} call failed: {e}")
                errors.append(f"{backend.name}: {e}")

        raise UpstreamError("All LLM providers failed (" + "; ".join(errors) + ")")


def build_llm_client(settings: Settings, client: httpx.AsyncClient) -> Optional[LLMClient]:
    backends = []
    for name in settings.llm_provider_list:
        if name == "ollama":
            backends.append(OllamaBackend(client, settings.ollama_url, settings.ollama_model, settings.llm_temperature))
        elif name == "gemini":
            if not settings.gemini_api_key:
                logger.warning("Gemini listed in LLM_PROVIDERS but GEMINI_API_KEY is empty — skipping")
                continue
            backends.append(GeminiBackend(
                client, settings.gemini_url, settings.gemini_model, settings.gemini_api_key, settings.llm_temperature,
            ))
        else:
            logger.warning(f"Unknown LLM provider '{name}' — skipping")

    if not backends:
        logger.info("No LLM providers configured — cascade will stop at the regex tier")
        return None
    return LLMClient(backends, rate_limit_cooldown=settings.llm_rate_limit_cooldown_seconds)
