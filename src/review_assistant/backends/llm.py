"""
Judge client: one prompt in, text out.

Supports Anthropic, OpenAI-compatible and Gemini endpoints over httpx. Planning,
critique and scoring run on the fast model; report synthesis on the smart model.
"""

import json
import logging
from typing import Any, Optional

import httpx

from review_assistant.config import Settings
from review_assistant.errors import (
    AuthenticationError,
    ConfigurationError,
    MalformedResponseError,
    ProviderError,
)

logger = logging.getLogger(__name__)

JSON_FORMAT = {"type": "json_object"}


class LLMResponse:
    """Response from LLM."""
    def __init__(self, content: str, model: str = ""):
        self.content = content
        self.model = model


class LLMClient:
    """Minimal multi-provider chat wrapper."""

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        if not settings.llm_api_key:
            raise ConfigurationError(f"No API key configured for LLM provider {settings.llm_provider!r}")
        self.provider = settings.llm_provider
        self.api_key = settings.llm_api_key
        self.endpoint, self.fast_model, self.smart_model = settings.resolved_llm()
        self.client = http_client or httpx.AsyncClient(timeout=180.0)

    async def generate(
        self,
        prompt: str,
        response_format: dict = None,
        label: str = None,
        smart: bool = False,
    ) -> LLMResponse:
        """Call the configured provider and return its text."""
        model = self.smart_model if smart else self.fast_model
        if label:
            logger.info(f"LLM ({model}): {label}")
        else:
            prompt_preview = prompt[:60].replace('\n', ' ') + "..." if len(prompt) > 60 else prompt
            logger.info(f"LLM call ({model}): {prompt_preview}")

        wants_json = bool(response_format and response_format.get("type") == "json_object")
        try:
            if self.provider == "anthropic":
                content = await self._call_anthropic(prompt, model, wants_json)
            elif self.provider == "openai":
                content = await self._call_openai(prompt, model, wants_json)
            else:
                content = await self._call_gemini(prompt, model, wants_json)
        except httpx.RequestError as e:
            raise ProviderError(f"{self.provider} request failed: {e}") from e
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            # 200 with a body that is JSON but not the provider's shape
            raise ProviderError(f"{self.provider} API returned an unexpected response: {e!r}") from e
        if not isinstance(content, str):
            raise ProviderError(f"{self.provider} API returned non-text content")

        logger.info(f"LLM response: {len(content)} chars")
        return LLMResponse(content=content, model=model)

    async def _call_anthropic(self, prompt: str, model: str, wants_json: bool) -> str:
        payload = {
            "model": model,
            "max_tokens": 8192,
            "messages": [{"role": "user", "content": prompt}],
        }
        if wants_json:
            payload["system"] = "Respond with valid JSON only."

        r = await self.client.post(
            f"{self.endpoint}/messages",
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": "2023-06-01",
                "Content-Type": "application/json",
            },
            json=payload,
        )
        _raise_for_status(r, "Anthropic")
        data = _json_body(r, "Anthropic")
        blocks = [b.get("text", "") for b in data.get("content", []) if b.get("type") == "text"]
        if not blocks:
            raise ProviderError("Anthropic API returned no text content")
        return "".join(blocks)

    async def _call_openai(self, prompt: str, model: str, wants_json: bool) -> str:
        payload: dict[str, Any] = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
        }
        if wants_json:
            payload["response_format"] = JSON_FORMAT

        r = await self.client.post(
            f"{self.endpoint}/chat/completions",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            json=payload,
        )
        _raise_for_status(r, "OpenAI")
        data = _json_body(r, "OpenAI")
        if not data.get("choices"):
            raise ProviderError("OpenAI API returned no choices")
        return data["choices"][0]["message"]["content"] or ""

    async def _call_gemini(self, prompt: str, model: str, wants_json: bool) -> str:
        payload: dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
        if wants_json:
            payload["generationConfig"] = {"responseMimeType": "application/json"}

        r = await self.client.post(
            f"{self.endpoint}/models/{model}:generateContent",
            params={"key": self.api_key},
            json=payload,
        )
        _raise_for_status(r, "Gemini")
        data = _json_body(r, "Gemini")
        candidates = data.get("candidates") or []
        if not candidates or not candidates[0].get("content"):
            block_reason = (data.get("promptFeedback") or {}).get("blockReason", "unknown")
            raise ProviderError(f"Gemini API returned no content (block reason: {block_reason})")
        return "".join(p.get("text", "") for p in candidates[0]["content"].get("parts", []))

    async def close(self):
        await self.client.aclose()


def _raise_for_status(response: httpx.Response, provider: str) -> None:
    if response.is_success:
        return
    try:
        body = response.json()
        error = body.get("error") if isinstance(body, dict) else None
        message = error.get("message") if isinstance(error, dict) else (error or response.reason_phrase)
    except ValueError:
        message = response.reason_phrase
    if response.status_code in (401, 403):
        raise AuthenticationError(f"{provider} API rejected the API key: {message}", response.status_code)
    raise ProviderError(f"{provider} API error ({response.status_code}): {message}", response.status_code)


def _json_body(response: httpx.Response, provider: str) -> dict:
    try:
        data = response.json()
    except ValueError as e:
        raise ProviderError(f"{provider} API returned a non-JSON body: {response.text[:100]!r}") from e
    if not isinstance(data, dict):
        raise ProviderError(f"{provider} API returned {type(data).__name__} instead of an object")
    return data


def parse_json_response(response: LLMResponse) -> Any:
    """Decode structured judge output, tolerating a markdown code fence around it."""
    content = response.content.strip()
    if content.startswith("```"):
        lines = content.split("\n")[1:]
        if lines and lines[-1].strip().startswith("```"):
            lines = lines[:-1]
        content = "\n".join(lines).strip()
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        logger.warning(f"Unparseable model output ({e}): {content[:200]!r}")
        raise MalformedResponseError(str(e)) from e
