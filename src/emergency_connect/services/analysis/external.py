"""Analyzers backed by remote LLM providers.

Each call either returns a validated result or raises. Quota accounting,
timeouts and fallback are handled by the analysis engine, not here.
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

import httpx
from pydantic import ValidationError

from emergency_connect.schemas.analysis import AnalysisResult, ConversationMessage, UrgencyResult

from .base import format_for_prompt
from .prompts import (
    ANALYSIS_SYSTEM_PROMPT,
    ANALYSIS_USER_PREFIX,
    URGENCY_SYSTEM_PROMPT,
    URGENCY_USER_PREFIX,
)

logger = logging.getLogger(__name__)


class ExternalAnalyzerError(RuntimeError):
    """Raised when a provider response is missing, malformed or rejected."""


class ExternalAnalyzer(ABC):
    """Base class for analyzers that delegate to an HTTP completion API."""

    name: str = "external"

    def __init__(self, *, client: httpx.AsyncClient | None = None, timeout: float = 15.0) -> None:
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if this analyzer created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @abstractmethod
    async def _complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int | None = None,
    ) -> str:
        """Return the raw JSON text produced by the provider."""

    async def analyze(self, messages: Sequence[ConversationMessage]) -> AnalysisResult:
        user_prompt = f"{ANALYSIS_USER_PREFIX}\n{format_for_prompt(messages)}"
        raw = await self._complete(ANALYSIS_SYSTEM_PROMPT, user_prompt, temperature=0.3)
        data = self._load_json(raw)
        try:
            result = AnalysisResult.model_validate(data)
        except ValidationError as err:
            raise ExternalAnalyzerError(f"{self.name} analysis missing required fields") from err
        return result.model_copy(update={"source": self.name})

    async def assess_urgency(self, messages: Sequence[ConversationMessage]) -> UrgencyResult:
        user_prompt = f"{URGENCY_USER_PREFIX}\n{format_for_prompt(messages)}"
        raw = await self._complete(
            URGENCY_SYSTEM_PROMPT,
            user_prompt,
            temperature=0.2,
            max_tokens=100,
        )
        data = self._load_json(raw)
        if isinstance(data, dict) and data.get("reason") is None:
            data["reason"] = ""
        try:
            result = UrgencyResult.model_validate(data)
        except ValidationError as err:
            raise ExternalAnalyzerError(f"Invalid urgency level from {self.name}") from err
        return result.model_copy(update={"source": self.name})

    def _load_json(self, raw: str) -> Any:
        try:
            return json.loads(raw)
        except json.JSONDecodeError as err:
            raise ExternalAnalyzerError(f"{self.name} returned non-JSON content") from err


class GeminiAnalyzer(ExternalAnalyzer):
    """Google Gemini via the Generative Language REST API."""

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gemini-2.0-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
    ) -> None:
        if not api_key:
            raise ValueError("GEMINI_API_KEY is not set")
        super().__init__(client=client, timeout=timeout)
        self._api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")

    async def _complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int | None = None,
    ) -> str:
        generation_config: dict[str, Any] = {
            "responseMimeType": "application/json",
            "temperature": temperature,
        }
        if max_tokens is not None:
            generation_config["maxOutputTokens"] = max_tokens

        response = await self._http().post(
            f"{self.base_url}/models/{self.model}:generateContent",
            params={"key": self._api_key},
            json={
                "contents": [{"parts": [{"text": f"{system_prompt}\n\n{user_prompt}"}]}],
                "generationConfig": generation_config,
            },
        )
        response.raise_for_status()
        payload = response.json()
        try:
            text = payload["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as err:
            raise ExternalAnalyzerError("Gemini returned an unexpected response format") from err
        if not text:
            raise ExternalAnalyzerError("Gemini returned empty response")
        return str(text)


class OpenAIAnalyzer(ExternalAnalyzer):
    """Any OpenAI-compatible chat completions endpoint."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
    ) -> None:
        if not api_key:
            raise ValueError("OPENAI_API_KEY is not set")
        super().__init__(client=client, timeout=timeout)
        self._api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")

    async def _complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int | None = None,
    ) -> str:
        body: dict[str, Any] = {
            "model": self.model,
            "temperature": temperature,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if max_tokens is not None:
            body["max_tokens"] = max_tokens

        response = await self._http().post(
            f"{self.base_url}/chat/completions",
            headers={"Authorization": f"Bearer {self._api_key}"},
            json=body,
        )
        response.raise_for_status()
        payload = response.json()
        try:
            text = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as err:
            raise ExternalAnalyzerError("OpenAI returned an unexpected response format") from err
        if not text:
            raise ExternalAnalyzerError("OpenAI returned empty response")
        return str(text)
