"""
Model Layer — provider transport and tier escalation for the NLU stages.

Responsibility:
- Abstract specific LLM client details (OpenAI-compatible/xAI, Anthropic, Ollama)
- Enforce timeouts and retries per policy
- Two-tier escalation: fast model first, slower model on failure or low confidence
- JSON validation helper

The classifier and the extractor reach models only through ModelSelector.
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Generic, Sequence, TypeVar

import httpx

from observability.logger import Observability
from shared.errors import ModelNotConfiguredError, ModelUnavailableError
from shared.models import ModelPolicy

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.x.ai"

T = TypeVar("T")


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def build_tier_policies(max_tokens: int, temperature: float = 0.1) -> list[ModelPolicy]:
    """Fast tier first, escalation tier second (unless disabled)."""
    fast = ModelPolicy(
        model_name=os.getenv("FAST_MODEL_NAME", "grok-3-mini").strip() or "grok-3-mini",
        temperature=temperature,
        timeout_seconds=max(1.0, float(os.getenv("FAST_MODEL_TIMEOUT_SECONDS", "10"))),
        max_retries=max(1, int(os.getenv("FAST_MODEL_MAX_RETRIES", "1"))),
        json_mode=True,
        max_tokens=max_tokens,
    )
    if not _env_flag("MODEL_ESCALATION_ENABLED", "true"):
        return [fast]
    escalation = ModelPolicy(
        model_name=os.getenv("ESCALATION_MODEL_NAME", "grok-3").strip() or "grok-3",
        temperature=temperature,
        timeout_seconds=max(1.0, float(os.getenv("ESCALATION_MODEL_TIMEOUT_SECONDS", "30"))),
        max_retries=max(1, int(os.getenv("ESCALATION_MODEL_MAX_RETRIES", "1"))),
        json_mode=True,
        max_tokens=max_tokens,
    )
    return [fast, escalation]


def escalation_threshold() -> float:
    return float(os.getenv("ESCALATION_CONFIDENCE_THRESHOLD", "0.75"))


@dataclass(frozen=True)
class TierResult(Generic[T]):
    value: T
    model: str
    confidence: float
    escalated: bool


class ModelSelector:
    """JSON model calls with per-tier retry policies and confidence escalation."""

    def __init__(self, base_url: str | None = None):
        configured_base_url = os.getenv("MODEL_BASE_URL", "").strip()
        self.base_url = (configured_base_url or base_url or DEFAULT_BASE_URL).rstrip("/")
        provider_raw = os.getenv("MODEL_PROVIDER", "auto").strip().lower()
        if provider_raw not in {"auto", "ollama", "openai_compatible", "anthropic"}:
            provider_raw = "auto"
        self.provider = self._resolve_provider(provider_raw, self.base_url)
        self.api_key = os.getenv("MODEL_API_KEY", "").strip()
        if not self.api_key:
            if self.provider == "anthropic":
                self.api_key = os.getenv("ANTHROPIC_API_KEY", "").strip()
            elif self.provider == "openai_compatible":
                self.api_key = (
                    os.getenv("XAI_API_KEY", "").strip() or os.getenv("OPENAI_API_KEY", "").strip()
                )

        base_headers: dict[str, str] = {}
        if self.provider == "openai_compatible" and self.api_key:
            base_headers["Authorization"] = f"Bearer {self.api_key}"

        # Persistent client with connection pooling
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=60.0,  # default, overridden by policy
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            headers=base_headers,
        )

    @property
    def is_configured(self) -> bool:
        """Hosted providers need an API key; local Ollama does not."""
        return self.provider == "ollama" or bool(self.api_key)

    async def generate(
        self,
        messages: list[dict],
        policy: ModelPolicy,
        session_id: str | None = None,
    ) -> dict[str, Any] | str:
        """
        Execute LLM generation with retry/timeout policy.
        Returns parsed dict if json_mode=True, else string.
        """
        obs = Observability(session_id)

        attempt = 0
        last_error: Exception | None = None

        while attempt < policy.max_retries:
            attempt += 1
            try:
                with obs.measure(
                    "model_call",
                    {
                        "model": policy.model_name,
                        "attempt": attempt,
                        "provider": self.provider,
                    },
                ):
                    response_text = await self._call_model(messages, policy)

                if policy.json_mode:
                    return self._parse_json(response_text)
                return response_text

            except (httpx.HTTPError, ValueError, RuntimeError) as e:
                last_error = e
                logger.warning(
                    "Model call failed (attempt %d/%d, model=%s): %s",
                    attempt,
                    policy.max_retries,
                    policy.model_name,
                    e,
                )
                if attempt >= policy.max_retries:
                    obs.log_event(
                        "model_failure",
                        {"error": str(e), "error_type": type(e).__name__, "policy": policy.model_dump()},
                        level="ERROR",
                    )
                    raise

        raise last_error or RuntimeError("Unknown model failure")

    async def generate_with_escalation(
        self,
        messages: list[dict],
        policies: Sequence[ModelPolicy],
        parse: Callable[[Any], T],
        confidence_of: Callable[[T], float],
        threshold: float,
        session_id: str | None = None,
    ) -> TierResult[T]:
        """
        Walk the tiers in order until one returns a confident, well-formed answer.

        A tier escalates on transport/timeout failure, on malformed output
        (``parse`` raising ``ValueError``) and on confidence below ``threshold``.
        A later tier only replaces an earlier answer when it is more confident.
        Raises ModelUnavailableError when no tier produced a usable answer.
        """
        if not policies:
            raise ValueError("At least one model policy is required")
        if not self.is_configured:
            raise ModelNotConfiguredError(
                f"No API key configured for provider '{self.provider}' (set MODEL_API_KEY or XAI_API_KEY)."
            )

        obs = Observability(session_id)
        best: TierResult[T] | None = None
        attempts: list[dict] = []

        for tier, policy in enumerate(policies, start=1):
            try:
                raw = await self.generate(messages, policy, session_id=session_id)
                value = parse(raw)
            except (httpx.HTTPError, ValueError, RuntimeError) as e:
                attempts.append({"model": policy.model_name, "error": str(e)})
                if tier < len(policies):
                    obs.log_event(
                        "model_escalation",
                        {"from_model": policy.model_name, "reason": "error", "error": str(e)},
                        level="WARNING",
                    )
                continue

            confidence = confidence_of(value)
            attempts.append({"model": policy.model_name, "confidence": confidence})
            if best is None or confidence > best.confidence:
                best = TierResult(value=value, model=policy.model_name, confidence=confidence, escalated=tier > 1)
            if confidence >= threshold:
                break
            if tier < len(policies):
                obs.log_event(
                    "model_escalation",
                    {"from_model": policy.model_name, "reason": "low_confidence", "confidence": confidence},
                )

        if best is None:
            detail = "; ".join(f"{a['model']}: {a.get('error', '?')}" for a in attempts)
            raise ModelUnavailableError(f"All model tiers failed ({detail})", attempts=attempts)
        return best

    def _resolve_provider(self, provider_raw: str, base_url: str) -> str:
        if provider_raw != "auto":
            return provider_raw

        lowered = (base_url or "").strip().lower()
        if "anthropic.com" in lowered:
            return "anthropic"
        if "x.ai" in lowered or "openai.com" in lowered or lowered.endswith("/v1"):
            return "openai_compatible"
        return "ollama"

    async def _call_model(self, messages: list[dict], policy: ModelPolicy) -> str:
        """Low-level model API call dispatching by configured provider."""
        if self.provider == "anthropic":
            return await self._call_anthropic_messages(messages, policy)
        if self.provider == "openai_compatible":
            return await self._call_openai_chat(messages, policy)
        return await self._call_ollama_chat(messages, policy)

    async def _call_anthropic_messages(self, messages: list[dict], policy: ModelPolicy) -> str:
        """Low-level Anthropic /v1/messages call."""
        if not self.api_key:
            raise ModelNotConfiguredError(
                "ANTHROPIC_API_KEY (or MODEL_API_KEY) is required when MODEL_PROVIDER=anthropic."
            )

        payload_messages: list[dict[str, str]] = []
        system_parts: list[str] = []
        for message in messages:
            role = str(message.get("role", "user")).strip().lower()
            text = str(message.get("content", "")).strip()
            if not text:
                continue
            if role == "system":
                system_parts.append(text)
                continue
            if role not in {"user", "assistant"}:
                role = "user"
            payload_messages.append({"role": role, "content": text})

        system_prompt = "\n\n".join(system_parts).strip()
        if policy.json_mode:
            json_guard = "Return ONLY a valid JSON object."
            system_prompt = f"{system_prompt}\n\n{json_guard}".strip() if system_prompt else json_guard

        payload: dict[str, Any] = {
            "model": policy.model_name,
            "messages": payload_messages,
            "temperature": policy.temperature,
            "max_tokens": policy.max_tokens,
        }
        if system_prompt:
            payload["system"] = system_prompt

        response = await self._client.post(
            "/v1/messages",
            json=payload,
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": os.getenv("ANTHROPIC_VERSION", "2023-06-01"),
            },
            timeout=policy.timeout_seconds,
        )
        response.raise_for_status()
        data = response.json()
        text_parts = [
            str(block.get("text", "")).strip()
            for block in data.get("content") or []
            if isinstance(block, dict) and block.get("type") == "text" and str(block.get("text", "")).strip()
        ]
        if not text_parts:
            raise ValueError("Anthropic response missing text content")
        return "\n".join(text_parts)

    async def _call_ollama_chat(self, messages: list[dict], policy: ModelPolicy) -> str:
        """Low-level Ollama /api/chat call."""
        payload: dict[str, Any] = {
            "model": policy.model_name,
            "messages": messages,
            "stream": False,
            "options": {
                "temperature": policy.temperature,
                "num_predict": policy.max_tokens,
            },
        }
        if policy.json_mode:
            payload["format"] = "json"

        response = await self._client.post(
            "/api/chat",
            json=payload,
            timeout=policy.timeout_seconds,
        )
        response.raise_for_status()
        return response.json().get("message", {}).get("content", "")

    async def _call_openai_chat(self, messages: list[dict], policy: ModelPolicy) -> str:
        """OpenAI-compatible /chat/completions call (xAI, OpenAI, local gateways)."""
        payload: dict[str, Any] = {
            "model": policy.model_name,
            "messages": messages,
            "temperature": policy.temperature,
            "max_tokens": policy.max_tokens,
            "stream": False,
        }
        if policy.json_mode:
            payload["response_format"] = {"type": "json_object"}

        path = "/chat/completions" if self.base_url.endswith("/v1") else "/v1/chat/completions"
        response = await self._client.post(
            path,
            json=payload,
            timeout=policy.timeout_seconds,
        )
        response.raise_for_status()
        data = response.json()
        choices = data.get("choices") or []
        if not choices:
            raise ValueError("OpenAI-compatible response missing choices")
        message = choices[0].get("message") or {}
        return str(message.get("content", ""))

    def _parse_json(self, text: str) -> dict[str, Any]:
        """Parse JSON response, handling markdown fences and surrounding prose."""
        clean_text = text.strip()
        if clean_text.startswith("```"):
            clean_text = clean_text.split("\n", 1)[-1].rsplit("```", 1)[0].strip()
        if not clean_text.startswith("{"):
            start, end = clean_text.find("{"), clean_text.rfind("}")
            if start != -1 and end > start:
                clean_text = clean_text[start : end + 1]

        try:
            parsed = json.loads(clean_text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON from model: {e}") from e
        if not isinstance(parsed, dict):
            raise ValueError("Model returned non-object JSON")
        return parsed

    async def close(self) -> None:
        """Close persistent connections."""
        await self._client.aclose()
