from __future__ import annotations

import asyncio
import json
import random
import re
from typing import Any, Dict, List

import aiohttp

SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)

RETRIABLE_STATUSES = frozenset({408, 409, 500, 502, 503, 504})


class GeminiRateLimitError(RuntimeError):
    """Quota or resource exhaustion reported by the backend for the current key."""


class _RetriableStatus(RuntimeError):
    pass


def is_rate_limit_error(exc: BaseException) -> bool:
    if isinstance(exc, GeminiRateLimitError):
        return True
    text = str(exc)
    return "quota" in text.casefold() or "RESOURCE_EXHAUSTED" in text


class GeminiClient:
    backend_name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout_seconds: int,
        temperature: float,
        max_output_tokens: int,
        base_url: str = "https://generativelanguage.googleapis.com",
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.temperature = temperature
        self.max_output_tokens: int | None = int(max_output_tokens) if int(max_output_tokens) > 0 else None
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    def set_api_key(self, api_key: str) -> None:
        self.api_key = api_key

    def _endpoint(self) -> str:
        return f"{self.base_url}/v1beta/models/{self.model}:generateContent?key={self.api_key}"

    def build_payload(
        self,
        prompt: str,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        permissive_safety: bool = False,
    ) -> Dict[str, Any]:
        generation_config: Dict[str, Any] = {
            "temperature": self.temperature if temperature is None else temperature,
        }
        selected_tokens = self.max_output_tokens if max_output_tokens is None else max_output_tokens
        if selected_tokens is not None and int(selected_tokens) > 0:
            generation_config["maxOutputTokens"] = int(selected_tokens)

        payload: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
        }
        if permissive_safety:
            payload["safetySettings"] = [
                {"category": category, "threshold": "BLOCK_NONE"} for category in SAFETY_CATEGORIES
            ]
        return payload

    @staticmethod
    def _error_for_status(status: int, body: str) -> Exception:
        """Map a non-200 reply to the exception ``_request`` should surface or retry on."""
        if status == 429 or "RESOURCE_EXHAUSTED" in body:
            return GeminiRateLimitError(f"Gemini quota error {status}: {body}")
        if status in RETRIABLE_STATUSES:
            return _RetriableStatus(f"Gemini retriable error {status}: {body}")
        return RuntimeError(f"Gemini error {status}: {body}")

    async def _request(self, payload: Dict[str, Any], retries: int = 3) -> Dict[str, Any]:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None

        url = self._endpoint()
        failure: Exception | None = None

        for attempt in range(1, retries + 1):
            try:
                async with self._session.post(url, json=payload) as response:
                    body = await response.text()
                    if response.status == 200:
                        return json.loads(body)
                    raise self._error_for_status(response.status, body)
            except (_RetriableStatus, aiohttp.ClientError, asyncio.TimeoutError) as exc:
                failure = exc

            if attempt < retries:
                await asyncio.sleep(min(4.0, 0.35 * attempt + random.random() * 0.2))

        raise RuntimeError(f"Gemini request failed after {retries} attempts: {failure}")

    @staticmethod
    def _extract_text(data: Dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            prompt_feedback = data.get("promptFeedback") or {}
            block_reason = prompt_feedback.get("blockReason")
            if block_reason:
                raise RuntimeError(f"Gemini blocked response: {block_reason}")
            return ""

        first = candidates[0]
        content = first.get("content") or {}
        parts = content.get("parts") or []
        chunks: List[str] = []

        for part in parts:
            text = part.get("text")
            if isinstance(text, str) and text.strip():
                chunks.append(text.strip())

        return "\n".join(chunks).strip()

    async def generate(
        self,
        prompt: str,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        permissive_safety: bool = False,
    ) -> str:
        payload = self.build_payload(
            prompt,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            permissive_safety=permissive_safety,
        )
        data = await self._request(payload)
        return self._extract_text(data)

    @staticmethod
    def strip_json_fences(text: str) -> str:
        return re.sub(r"```(?:json)?", "", text or "", flags=re.IGNORECASE).strip()
