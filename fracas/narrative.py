"""
Narrative text for confrontations and fights.

The engine treats narrative as optional decoration: every request carries a
deterministic fallback, and any generator failure (timeout, provider error,
unparseable output) takes the fallback branch explicitly. Consequences never
depend on narrative text.
"""

from __future__ import annotations

import asyncio
import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Literal, Optional, Union

from pydantic import BaseModel

from fracas.llm import NarrativeLine, call_llm_with_retries
from fracas.logging_utils import log_error, log_llm
from fracas.schemas import CombatProfile, Severity


FIGHT_FALLBACK = "*{aggressor} and {defender} clash in a sudden burst of violence. The room goes silent.*"
PROVOCATION_FALLBACK = "*{aggressor} turns to {defender}, jaw tight.* We need to settle this. Now."

SEVERITY_FLAVOR = {
    Severity.STANDOFF: "Neither backs down. A tense, electric standoff, nobody lands a clean hit.",
    Severity.SCUFFLE: "A brief shoving match. Quick, messy, over almost before it started.",
    Severity.FIGHT: "A real fight. Blows land, furniture moves, people scatter.",
    Severity.BEATDOWN: "One-sided. Decisive. The loser does not get back up quickly.",
}

SYSTEM_PROMPT = (
    "You narrate physical confrontations between coworkers on an office floor. "
    "Write in present tense, emotes wrapped in *asterisks*. No gore, no slurs, "
    "nobody dies. Respond with JSON: {\"text\": \"...\"}."
)


class NarrativeUnavailableError(RuntimeError):
    """Raised by generators when no usable text could be produced."""

    def __init__(self, kind: str, reason: str):
        self.kind = kind
        self.reason = reason
        super().__init__(
            f"Narrative for '{kind}' unavailable: {reason}. "
            "The deterministic fallback line will be used instead."
        )


class NarrativePrompt(BaseModel):
    kind: Literal["provocation", "fight"]
    user_prompt: str
    system_prompt: str = SYSTEM_PROMPT
    max_chars: int = 600


# ============================================================================
# Parsing
# ============================================================================


@dataclass(frozen=True)
class ParsedNarrative:
    text: str


@dataclass(frozen=True)
class NarrativeParseError:
    reason: str
    raw: str


_FENCE = re.compile(r"^```[a-zA-Z]*\s*\n?(.*?)\n?```$", re.DOTALL)


def parse_narrative(raw: Optional[str], max_chars: int = 600) -> Union[ParsedNarrative, NarrativeParseError]:
    """Clean generator output into postable text.

    Strips code fences, unwraps `{"text": ...}` JSON, and removes one layer of
    surrounding quotes. Empty or over-long results are parse errors.
    """
    if raw is None or not raw.strip():
        return NarrativeParseError(reason="empty", raw=raw or "")

    text = raw.strip()
    fenced = _FENCE.match(text)
    if fenced:
        text = fenced.group(1).strip()

    if text.startswith("{"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return NarrativeParseError(reason="malformed_json", raw=raw)
        value = next(
            (data.get(key) for key in ("text", "narrative", "line") if isinstance(data.get(key), str)),
            None,
        )
        if value is None:
            return NarrativeParseError(reason="missing_text_field", raw=raw)
        text = value.strip()

    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
        text = text[1:-1].strip()

    if not text:
        return NarrativeParseError(reason="empty", raw=raw)
    if len(text) > max_chars:
        return NarrativeParseError(reason="too_long", raw=raw)
    return ParsedNarrative(text=text)


# ============================================================================
# Generators
# ============================================================================


class NarrativeGenerator(ABC):
    @abstractmethod
    async def generate(self, prompt: NarrativePrompt, timeout: float) -> str:
        """Return postable text or raise NarrativeUnavailableError."""
        pass


class LLMNarrativeGenerator(NarrativeGenerator):
    """Narrative via call_llm_with_retries (remote provider or local Ollama)."""

    def __init__(self, llm_provider: str, llm_model: str, max_attempts: int = 2):
        self.llm_provider = llm_provider
        self.llm_model = llm_model
        self.max_attempts = max_attempts

    async def generate(self, prompt: NarrativePrompt, timeout: float) -> str:
        log_llm(f"Requesting {prompt.kind} narrative from {self.llm_provider}/{self.llm_model}")
        try:
            line = await asyncio.wait_for(
                call_llm_with_retries(
                    system_prompt=prompt.system_prompt,
                    user_prompt=prompt.user_prompt,
                    llm_provider=self.llm_provider,
                    llm_model=self.llm_model,
                    response_model=NarrativeLine,
                    max_attempts=self.max_attempts,
                    timeout=timeout,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise NarrativeUnavailableError(prompt.kind, f"timed out after {timeout:g}s") from exc
        except Exception as exc:  # noqa: BLE001 - provider errors all mean "use the fallback"
            raise NarrativeUnavailableError(prompt.kind, str(exc) or type(exc).__name__) from exc

        parsed = parse_narrative(line.text, prompt.max_chars)
        if isinstance(parsed, NarrativeParseError):
            raise NarrativeUnavailableError(prompt.kind, f"unusable output ({parsed.reason})")
        return parsed.text


async def narrate(
    generator: Optional[NarrativeGenerator],
    prompt: NarrativePrompt,
    fallback: str,
    timeout: float,
) -> str:
    """Generate text, or return the fallback when no generator is set or it fails."""
    if generator is None:
        return fallback
    try:
        return await asyncio.wait_for(generator.generate(prompt, timeout), timeout=timeout)
    except NarrativeUnavailableError as exc:
        log_error(str(exc))
        return fallback
    except asyncio.TimeoutError:
        log_error(f"Narrative for '{prompt.kind}' timed out after {timeout:g}s, using fallback")
        return fallback
    except Exception as exc:  # noqa: BLE001 - generator errors never block consequences
        log_error(f"Narrative for '{prompt.kind}' failed: {type(exc).__name__}: {exc}, using fallback")
        return fallback


# ============================================================================
# Prompts and fallbacks
# ============================================================================


def provocation_fallback(profile: Optional[CombatProfile], aggressor: str, defender: str) -> str:
    template = profile.emotes.get("initiate") if profile else None
    if template:
        return template.format(opponent=defender, name=aggressor)
    return PROVOCATION_FALLBACK.format(aggressor=aggressor, defender=defender)


def fight_fallback(aggressor: str, defender: str) -> str:
    return FIGHT_FALLBACK.format(aggressor=aggressor, defender=defender)


def _style(profile: Optional[CombatProfile]) -> str:
    if profile is None:
        return "unknown"
    if profile.style_description:
        return f"{profile.fighting_style} ({profile.style_description})"
    return profile.fighting_style


def provocation_prompt(
    aggressor: str,
    defender: str,
    reason: str,
    aggressor_profile: Optional[CombatProfile],
) -> NarrativePrompt:
    return NarrativePrompt(
        kind="provocation",
        max_chars=280,
        user_prompt=(
            f"{aggressor} is about to pick a fight with {defender}.\n"
            f"Why: {reason or 'long-simmering hostility'}.\n"
            f"{aggressor}'s style: {_style(aggressor_profile)}.\n"
            f"Write ONE short provocation from {aggressor}: an emote and at most one line of speech. "
            "No punches yet."
        ),
    )


def fight_prompt(
    *,
    aggressor: str,
    defender: str,
    aggressor_profile: Optional[CombatProfile],
    defender_profile: Optional[CombatProfile],
    severity: Severity,
    winner: Optional[str],
    critical_hit: bool,
    critical_fail: Optional[str],
    reason: str = "",
) -> NarrativePrompt:
    outcome = f"{winner} wins." if winner else "Nobody wins. Standoff."
    moments = []
    if critical_hit:
        moments.append("a devastating critical hit lands")
    if critical_fail:
        moments.append(f"{critical_fail} stumbles badly at the worst moment")
    return NarrativePrompt(
        kind="fight",
        user_prompt=(
            f"Fight: {aggressor} (aggressor) vs {defender}.\n"
            f"Trigger: {reason or 'tension boiled over'}.\n"
            f"{aggressor}'s style: {_style(aggressor_profile)}.\n"
            f"{defender}'s style: {_style(defender_profile)}.\n"
            f"Severity: {severity.value}. {SEVERITY_FLAVOR[severity]}\n"
            f"Outcome: {outcome}\n"
            f"Critical moments: {', '.join(moments) if moments else 'none'}.\n"
            "Write 3-4 short lines of emote narration describing the fight and how it ends."
        ),
    )
