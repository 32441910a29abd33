from __future__ import annotations

import asyncio

import httpx
import pytest

from models.selector import ModelSelector, build_tier_policies, escalation_threshold
from shared.errors import ModelNotConfiguredError, ModelUnavailableError
from shared.models import ModelPolicy


class ScriptedSelector(ModelSelector):
    """Answers per model name; an Exception value is raised instead of returned."""

    def __init__(self, script: dict[str, object]):
        super().__init__(base_url="https://api.x.ai")
        self.script = script
        self.calls: list[str] = []

    async def _call_model(self, messages, policy):
        self.calls.append(policy.model_name)
        answer = self.script[policy.model_name]
        if isinstance(answer, Exception):
            raise answer
        return answer


def _tiers() -> list[ModelPolicy]:
    return [
        ModelPolicy(model_name="fast", max_retries=1, timeout_seconds=10),
        ModelPolicy(model_name="slow", max_retries=1, timeout_seconds=30),
    ]


def _run(selector: ScriptedSelector, threshold: float = 0.75):
    return asyncio.run(
        selector.generate_with_escalation(
            messages=[{"role": "user", "content": "add 5 nuts"}],
            policies=_tiers(),
            parse=lambda payload: payload,
            confidence_of=lambda payload: float(payload["confidence"]),
            threshold=threshold,
        )
    )


@pytest.fixture(autouse=True)
def _api_key(monkeypatch):
    for name in ("MODEL_PROVIDER", "MODEL_BASE_URL", "OPENAI_API_KEY", "ANTHROPIC_API_KEY", "MODEL_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XAI_API_KEY", "xai-key")


def test_confident_fast_tier_does_not_escalate():
    selector = ScriptedSelector({"fast": '{"confidence": 0.9}', "slow": '{"confidence": 0.99}'})
    result = _run(selector)
    assert selector.calls == ["fast"]
    assert result.model == "fast"
    assert result.escalated is False


def test_low_confidence_escalates_and_keeps_more_confident_answer():
    selector = ScriptedSelector({"fast": '{"confidence": 0.5}', "slow": '{"confidence": 0.8}'})
    result = _run(selector)
    assert selector.calls == ["fast", "slow"]
    assert result.model == "slow"
    assert result.confidence == 0.8
    assert result.escalated is True


def test_less_confident_escalation_answer_does_not_replace_fast_answer():
    selector = ScriptedSelector({"fast": '{"confidence": 0.6}', "slow": '{"confidence": 0.4}'})
    result = _run(selector)
    assert result.model == "fast"
    assert result.confidence == 0.6


def test_fast_tier_timeout_escalates():
    selector = ScriptedSelector({"fast": httpx.ReadTimeout("timed out"), "slow": '{"confidence": 0.7}'})
    result = _run(selector)
    assert selector.calls == ["fast", "slow"]
    assert result.model == "slow"


def test_malformed_fast_output_escalates():
    selector = ScriptedSelector({"fast": "not json at all", "slow": '{"confidence": 0.9}'})
    result = _run(selector)
    assert result.model == "slow"


def test_both_tiers_failing_raises_model_unavailable():
    selector = ScriptedSelector({"fast": httpx.ConnectError("down"), "slow": httpx.ReadTimeout("slow")})
    with pytest.raises(ModelUnavailableError) as excinfo:
        _run(selector)
    assert [a["model"] for a in excinfo.value.attempts] == ["fast", "slow"]


def test_missing_api_key_raises_not_configured(monkeypatch):
    monkeypatch.delenv("XAI_API_KEY", raising=False)
    selector = ScriptedSelector({"fast": '{"confidence": 0.9}'})
    with pytest.raises(ModelNotConfiguredError):
        _run(selector)
    assert selector.calls == []


def test_tier_policies_follow_environment(monkeypatch):
    monkeypatch.setenv("FAST_MODEL_NAME", "mini")
    monkeypatch.setenv("ESCALATION_MODEL_TIMEOUT_SECONDS", "45")
    monkeypatch.setenv("ESCALATION_CONFIDENCE_THRESHOLD", "0.8")
    policies = build_tier_policies(max_tokens=200)
    assert [p.model_name for p in policies] == ["mini", "grok-3"]
    assert policies[0].timeout_seconds == 10.0
    assert policies[1].timeout_seconds == 45.0
    assert all(p.max_tokens == 200 for p in policies)
    assert escalation_threshold() == 0.8


def test_escalation_can_be_disabled(monkeypatch):
    monkeypatch.setenv("MODEL_ESCALATION_ENABLED", "false")
    policies = build_tier_policies(max_tokens=300)
    assert len(policies) == 1
