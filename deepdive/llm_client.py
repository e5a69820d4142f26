"""OpenRouter-backed text generation behind one narrow interface.

Reflection, synthesis, summarization and recall answering all go through
`TextGenerator`, so the control flow around them can be tested with a stub.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, AsyncIterator, Protocol

from deepdive.config import settings
from deepdive.errors import GenerationError
from deepdive.services import logger as log_service


class TextGenerator(Protocol):
    async def generate(
        self,
        prompt: str,
        *,
        temperature: float = 0.0,
        max_tokens: int = 1024,
        system: str = "",
        caller: str = "generate",
    ) -> str: ...

    def stream(
        self,
        prompt: str,
        *,
        temperature: float = 0.0,
        max_tokens: int = 4096,
        system: str = "",
        caller: str = "stream",
    ) -> AsyncIterator[str]: ...


def _to_openai_messages(system: str, prompt: str) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})
    return messages


def _temperature_for_model(model: str, requested: float) -> float:
    # Some OpenAI GPT-5-compatible gateways reject any temperature but 1.
    if "gpt-5" in (model or "").lower():
        return 1
    return requested


class OpenRouterTextGenerator:
    def __init__(
        self,
        openai_client: Any,
        model: str,
        *,
        timeout_s: float | None = None,
    ):
        self._client = openai_client
        self.model = model
        self.timeout_s = timeout_s if timeout_s is not None else settings.llm_timeout_seconds

    async def generate(
        self,
        prompt: str,
        *,
        temperature: float = 0.0,
        max_tokens: int = 1024,
        system: str = "",
        caller: str = "generate",
    ) -> str:
        t0 = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self.model,
                    messages=_to_openai_messages(system, prompt),
                    max_tokens=max_tokens,
                    temperature=_temperature_for_model(self.model, temperature),
                ),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError as exc:
            self._log(caller, t0, len(prompt), 0, error=f"timeout after {self.timeout_s}s")
            raise GenerationError(f"{caller}: generation timed out") from exc
        except Exception as exc:
            self._log(caller, t0, len(prompt), 0, error=str(exc))
            raise GenerationError(f"{caller}: {exc}") from exc

        choices = getattr(response, "choices", None) or []
        text = getattr(choices[0].message, "content", None) if choices else None
        if not isinstance(text, str) or not text.strip():
            self._log(caller, t0, len(prompt), 0, error="empty response")
            raise GenerationError(f"{caller}: empty response")
        self._log(caller, t0, len(prompt), len(text))
        return text

    async def stream(
        self,
        prompt: str,
        *,
        temperature: float = 0.0,
        max_tokens: int = 4096,
        system: str = "",
        caller: str = "stream",
    ) -> AsyncIterator[str]:
        t0 = time.monotonic()
        produced = 0
        try:
            stream = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self.model,
                    messages=_to_openai_messages(system, prompt),
                    max_tokens=max_tokens,
                    temperature=_temperature_for_model(self.model, temperature),
                    stream=True,
                ),
                timeout=self.timeout_s,
            )
        except Exception as exc:
            self._log(caller, t0, len(prompt), 0, error=str(exc) or type(exc).__name__)
            raise GenerationError(f"{caller}: {exc}") from exc

        chunks = stream.__aiter__()
        try:
            while True:
                # Timeout applies per chunk.
                try:
                    chunk = await asyncio.wait_for(chunks.__anext__(), timeout=self.timeout_s)
                except StopAsyncIteration:
                    break
                except asyncio.TimeoutError as exc:
                    raise GenerationError(f"no chunk within {self.timeout_s}s") from exc
                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                delta = getattr(choices[0], "delta", None)
                text = getattr(delta, "content", None) if delta else None
                if text:
                    produced += len(text)
                    yield text
        except Exception as exc:
            self._log(caller, t0, len(prompt), produced, error=str(exc))
            raise GenerationError(f"{caller}: stream interrupted: {exc}") from exc
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                await close()
        self._log(caller, t0, len(prompt), produced)

    def _log(
        self,
        caller: str,
        t0: float,
        input_chars: int,
        output_chars: int,
        error: str | None = None,
    ) -> None:
        log_service.log_llm_call(
            model=self.model,
            caller=caller,
            duration_ms=int((time.monotonic() - t0) * 1000),
            input_chars=input_chars,
            output_chars=output_chars,
            status="error" if error else "success",
            error=error,
        )


def get_model() -> str:
    """Get the active OpenRouter model id."""
    if settings.openrouter_model:
        return settings.openrouter_model
    return settings.default_model


def get_text_generator(model: str | None = None) -> OpenRouterTextGenerator:
    """Build a generator over the OpenAI-compatible SDK pointed at OpenRouter."""
    from openai import AsyncOpenAI

    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    openai_client = AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=base_url,
    )
    return OpenRouterTextGenerator(openai_client, model or get_model())


_generator: OpenRouterTextGenerator | None = None


def generator() -> OpenRouterTextGenerator:
    """Get or create the shared text generator."""
    global _generator
    if _generator is None:
        _generator = get_text_generator()
    return _generator
