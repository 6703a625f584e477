"""Structured (JSON-mode) completions via the OpenAI chat API."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

from openai import APIError, AsyncOpenAI, OpenAIError
from pydantic import BaseModel, ValidationError

from app.clients.errors import LLMProviderError, LLMValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
Message = dict[str, str]

DEFAULT_TEMPERATURE = 0.3


class OpenAIStructuredClient:
    """Ask the model for JSON, validate it against a Pydantic schema, retry on failure."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gpt-4o",
        timeout: float = 60.0,
        retry_delay_seconds: float = 1.0,
        client: AsyncOpenAI | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if client is None and not api_key:
            raise ValueError("OPENAI_API_KEY is required for online mode.")
        self._client = client or AsyncOpenAI(api_key=api_key, timeout=timeout)
        self._model = model
        self._retry_delay = retry_delay_seconds
        self._sleep = sleep

    async def complete_structured(
        self,
        messages: Sequence[Message],
        *,
        schema: type[ModelT],
        schema_name: str,
        max_retries: int = 3,
        temperature: float | None = None,
    ) -> ModelT:
        attempts = max(max_retries, 1)
        instructions = {"role": "system", "content": _schema_instructions(schema, schema_name)}
        payload = [instructions, *messages]
        last_error: Exception | None = None
        for attempt in range(attempts):
            try:
                raw_text = await self._complete(payload, temperature=temperature)
                return _validate(raw_text, schema, schema_name)
            except LLMProviderError as exc:
                last_error = exc
                logger.warning(
                    "llm.structured_retry",
                    extra={"schema": schema_name, "attempt": attempt + 1, "code": exc.code},
                )
            if attempt < attempts - 1:
                await self._sleep(self._retry_delay * (attempt + 1))
        raise LLMProviderError(
            f"Failed to get valid structured response after {attempts} attempts: {last_error}",
            code=getattr(last_error, "code", "LLM_PROVIDER_ERROR"),
        )

    async def _complete(self, messages: list[Message], *, temperature: float | None) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,  # type: ignore[arg-type]
                temperature=DEFAULT_TEMPERATURE if temperature is None else temperature,
                response_format={"type": "json_object"},
            )
        except APIError as exc:
            status = getattr(exc, "status_code", None)
            code = "429_RATE_LIMIT" if status == 429 else "502_OPENAI_UPSTREAM"
            raise LLMProviderError(f"OpenAI request failed: {exc}", code=code) from exc
        except OpenAIError as exc:
            raise LLMProviderError(f"OpenAI request failed: {exc}", code="502_OPENAI_UPSTREAM") from exc

        choices = getattr(response, "choices", None) or []
        content = choices[0].message.content if choices else None
        if not content:
            raise LLMProviderError(
                "OpenAI response did not include text output.", code="502_OPENAI_UPSTREAM"
            )
        return content


def _schema_instructions(schema: type[BaseModel], schema_name: str) -> str:
    json_schema = json.dumps(schema.model_json_schema(by_alias=True))
    return (
        f'Respond with a single JSON object that is a valid "{schema_name}".\n'
        "Return ONLY the JSON object: no markdown fences, no commentary.\n"
        f"JSON schema: {json_schema}"
    )


def _validate(raw_text: str, schema: type[ModelT], schema_name: str) -> ModelT:
    try:
        payload = parse_json_payload(raw_text)
    except ValueError as exc:
        raise LLMValidationError(f"Invalid JSON response: {raw_text[:200]}") from exc
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise LLMValidationError(f"{schema_name} failed validation: {exc}") from exc


def parse_json_payload(raw_text: str) -> dict[str, Any]:
    """Best-effort JSON decoding that tolerates code fences or prose."""
    candidate = raw_text.strip()
    if candidate.startswith("```"):
        candidate = "\n".join(
            line for line in candidate.splitlines() if not line.strip().startswith("```")
        ).strip()
    if candidate.startswith("{") and candidate.endswith("}"):
        return json.loads(candidate)
    start = candidate.find("{")
    end = candidate.rfind("}")
    if start != -1 and end != -1 and end > start:
        return json.loads(candidate[start : end + 1])
    raise ValueError("Response did not contain JSON object.")
