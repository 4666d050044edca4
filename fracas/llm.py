"""Structured LLM calls with validation-aware retries.

Remote providers go through Mirascope's `llm.call` decorator; the `ollama`
provider talks to a local Ollama server over HTTP. Schema failures are retried
with the validation errors appended to the prompt so the model can self-correct.
"""

from __future__ import annotations

import asyncio
import json
import os
from dataclasses import dataclass
from typing import Any, Callable, Sequence, TypeVar
from urllib import error, request

from mirascope import llm
from pydantic import BaseModel, Field, ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from fracas.logging_utils import log_error, log_llm


ModelT = TypeVar("ModelT", bound=BaseModel)
LLM_TIMEOUT_SECONDS = 30.0
DEFAULT_OLLAMA_BASE_URL = "http://127.0.0.1:11434"


class NarrativeLine(BaseModel):
    """Structured output for every narrative request."""

    text: str = Field(..., description="The line(s) to post, in character, emotes wrapped in *asterisks*")


class LocalLLMError(RuntimeError):
    """Raised when a local Ollama invocation fails."""


@dataclass(slots=True)
class ValidationFeedback:
    """Retry guidance for the model plus the issues for logging."""

    llm_text: str
    issues: Sequence[str]


def _preview(value: Any, limit: int = 80) -> str:
    text = "null" if value is None else repr(value)
    return text if len(text) <= limit else text[: limit - 3] + "..."


def inject_validation_feedback(error: ValidationError) -> ValidationFeedback:
    """Turn a Pydantic ValidationError into prompt text the model can act on."""

    issues: list[str] = []
    for err in error.errors(include_url=False):
        # loc is a path like ("text",); render as dot notation
        loc = ".".join(str(part) for part in err.get("loc", ())) or "root"
        detail = f"{loc}: {err.get('msg', 'validation error')}"
        if err.get("type"):
            detail += f" [type={err['type']}]"
        if "input" in err:
            detail += f" | received={_preview(err['input'])}"
        issues.append(detail)

    if not issues:
        issues.append("root: response did not match the expected schema")

    lines = [
        "Your previous JSON response failed schema validation.",
        "Return only corrected JSON, no commentary and no code fences.",
        "Issues detected:",
        *(f"- {issue}" for issue in issues),
    ]
    return ValidationFeedback(llm_text="\n".join(lines), issues=issues)


def _ollama_request(payload: dict[str, Any], base_url: str, timeout: float) -> str:
    url = f"{base_url.rstrip('/')}/api/chat"
    req = request.Request(
        url,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    try:
        with request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read().decode("utf-8")
    except error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore") if exc.fp else ""
        raise LocalLLMError(f"Ollama returned status {exc.code}: {body or exc.reason}") from exc
    except error.URLError as exc:
        raise LocalLLMError(f"Could not reach Ollama at {url}: {exc.reason}") from exc

    try:
        content = (json.loads(raw).get("message") or {}).get("content")
    except json.JSONDecodeError as exc:
        raise LocalLLMError("Ollama returned non-JSON response.") from exc
    if not content:
        raise LocalLLMError("Ollama response did not include assistant content.")
    return content


async def call_ollama_chat(
    *,
    system_prompt: str,
    user_prompt: str,
    llm_model: str,
    base_url: str | None = None,
    timeout: float = LLM_TIMEOUT_SECONDS,
) -> str:
    """Invoke a local Ollama model and return the assistant text."""

    if not user_prompt.strip():
        raise LocalLLMError("Cannot call Ollama with an empty user prompt.")

    messages = []
    if system_prompt.strip():
        messages.append({"role": "system", "content": system_prompt.strip()})
    messages.append({"role": "user", "content": user_prompt.strip()})

    resolved = base_url or os.getenv("OLLAMA_BASE_URL") or DEFAULT_OLLAMA_BASE_URL
    payload = {"model": llm_model, "messages": messages, "stream": False, "format": "json"}
    return await asyncio.to_thread(_ollama_request, payload, resolved, timeout)


async def call_llm_with_retries(
    *,
    system_prompt: str,
    user_prompt: str,
    llm_provider: str,
    llm_model: str,
    response_model: type[ModelT],
    max_attempts: int = 3,
    timeout: float = LLM_TIMEOUT_SECONDS,
    feedback_builder: Callable[[ValidationError], ValidationFeedback] = inject_validation_feedback,
) -> ModelT:
    """Invoke a structured LLM call, retrying only on schema validation errors.

    Validation feedback is appended to the original user prompt so the model keeps
    its context. Timeouts and provider errors propagate immediately.
    """

    system_prompt = system_prompt.strip()
    base_user_prompt = user_prompt.strip()
    feedback: ValidationFeedback | None = None
    use_local = llm_provider.lower() == "ollama"

    remote_invoke: Callable[[str], Any] | None = None
    if not use_local:
        @llm.call(provider=llm_provider, model=llm_model, response_model=response_model)
        async def _invoke(prompt: str) -> str:
            return prompt

        remote_invoke = _invoke

    attempt_number = 0
    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(ValidationError),
        stop=stop_after_attempt(max_attempts),
        reraise=True,
    ):
        with attempt:
            attempt_number += 1
            if attempt_number > 1:
                log_llm(
                    f"Retry {attempt_number}/{max_attempts} for {response_model.__name__} "
                    "with schema feedback"
                )
            user_section = "\n\n".join(
                part for part in (base_user_prompt, feedback.llm_text if feedback else "") if part
            )
            try:
                if use_local:
                    raw = await asyncio.wait_for(
                        call_ollama_chat(
                            system_prompt=system_prompt,
                            user_prompt=user_section,
                            llm_model=llm_model,
                            timeout=timeout,
                        ),
                        timeout=timeout,
                    )
                    return response_model.model_validate_json(raw)

                if remote_invoke is None:
                    raise RuntimeError("Remote LLM invoke is not initialized.")
                prompt = "\n\n".join(part for part in (system_prompt, user_section) if part)
                return await asyncio.wait_for(remote_invoke(prompt), timeout=timeout)
            except ValidationError as exc:
                feedback = feedback_builder(exc)
                log_error(
                    f"Schema validation failed for {response_model.__name__} "
                    f"(attempt {attempt_number}/{max_attempts})"
                )
                for issue in feedback.issues:
                    log_error(f"    - {issue}")
                raise
            except asyncio.TimeoutError:
                log_error(f"LLM call timed out after {timeout:g}s for {response_model.__name__}")
                raise
            except LocalLLMError as exc:
                raise RuntimeError(f"Local LLM provider error ({llm_provider}): {exc}") from exc

    raise RuntimeError("LLM retry loop exited unexpectedly")
