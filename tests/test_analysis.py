import asyncio
import json

import httpx
import pytest

from analysis import (
    INSIGHTS_HEADING,
    AnalysisOrchestrator,
    build_analysis_prompt,
    content_stats,
    has_minimum_content,
)
from errors import ContentValidationError, ProviderHttpError, ProviderUnavailableError, QuotaError
from http_client import ProviderClient, RetryPolicy
from llm import AnthropicProvider, TogetherProvider

from conftest import (
    ANTHROPIC,
    TOGETHER,
    FakeUpstream,
    anthropic_error,
    anthropic_message,
    anthropic_models,
    make_analysis_text,
    together_completion,
    together_models,
)

GOOD = make_analysis_text()
SHORT = "# SEO Analysis\n\n- too short\n"


def _orchestrator(upstream, sleeps, primary=True, fallback=True, supplementary=False, attempts=5):
    http = httpx.AsyncClient(transport=upstream.transport)

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return AnalysisOrchestrator(
        AnthropicProvider("sk-ant-test", http, "claude-sonnet-4-6") if primary else None,
        TogetherProvider("tg-test", ProviderClient(http)) if fallback else None,
        RetryPolicy(max_attempts=attempts, base_delay=1, max_delay=30, sleep=fake_sleep),
        supplementary=supplementary,
    )


def _prompt_of(request: httpx.Request) -> str:
    body = json.loads(request.content)
    return body["messages"][-1]["content"]


# ---------------------------------------------------------------------------
# Validation gate
# ---------------------------------------------------------------------------

def test_good_document_passes():
    stats = content_stats(GOOD)
    assert stats["length"] >= 1000
    assert stats["total_sections"] == 5
    assert stats["bullet_points"] == 15
    assert has_minimum_content(GOOD)


@pytest.mark.parametrize(
    "text",
    [
        SHORT,
        make_analysis_text(bullets=9),
        GOOD.replace("SEO Analysis", "Site Review"),
        "x" * 1200,
        GOOD.replace("## ", "").replace("# ", ""),
    ],
)
def test_incomplete_documents_fail(text):
    assert not has_minimum_content(text)


def test_bold_and_numbered_headers_count_as_sections():
    text = "**Overview**\n1. **Speed**\n## Links\n"
    stats = content_stats(text)
    assert stats["bold_sections"] == 1
    assert stats["numbered_sections"] == 1
    assert stats["sections"] == 1
    assert stats["total_sections"] == 3


def test_prompt_embeds_url_and_keyword():
    with_keyword = build_analysis_prompt("https://www.example.com", "widgets")
    assert "https://www.example.com" in with_keyword
    assert "# SEO Analysis for example.com" in with_keyword
    assert '"widgets"' in with_keyword
    assert "## Semantic Keywords" in with_keyword
    assert "## Final Verdict" in with_keyword

    without = build_analysis_prompt("https://example.com")
    assert "Semantic Keywords" not in without
    assert "Target Keyword" not in without


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

def test_short_response_is_retried_not_accepted():
    upstream = FakeUpstream()
    upstream.add(ANTHROPIC, "/v1/models", anthropic_models("claude-sonnet-4-6"))
    upstream.add(ANTHROPIC, "/v1/messages", anthropic_message(SHORT), anthropic_message(GOOD))
    sleeps = []

    result = asyncio.run(_orchestrator(upstream, sleeps).analyze("https://example.com", "widgets"))

    assert result == GOOD
    assert upstream.count(ANTHROPIC, "/v1/messages") == 2
    assert sleeps == [1]


def test_validation_failures_exhaust_budget():
    upstream = FakeUpstream()
    upstream.add(ANTHROPIC, "/v1/models", anthropic_models("claude-sonnet-4-6"))
    upstream.add(ANTHROPIC, "/v1/messages", anthropic_message(SHORT))
    sleeps = []

    with pytest.raises(ContentValidationError):
        asyncio.run(_orchestrator(upstream, sleeps).analyze("https://example.com"))
    assert upstream.count(ANTHROPIC, "/v1/messages") == 5
    assert sleeps == [1, 2, 4, 8]
    assert upstream.calls_to(TOGETHER) == []


def test_rate_limit_backoff_uses_retry_after():
    upstream = FakeUpstream()
    upstream.add(ANTHROPIC, "/v1/models", anthropic_models("claude-sonnet-4-6"))
    upstream.add(
        ANTHROPIC,
        "/v1/messages",
        anthropic_error(429, "rate_limit_error", headers={"retry-after": "3"}),
        anthropic_message(GOOD),
    )
    sleeps = []

    assert asyncio.run(_orchestrator(upstream, sleeps).analyze("https://example.com")) == GOOD
    assert sleeps == [3]


def test_quota_failure_moves_whole_analysis_to_fallback():
    upstream = FakeUpstream()
    upstream.add(ANTHROPIC, "/v1/models", anthropic_models("claude-sonnet-4-6"))
    upstream.add(
        ANTHROPIC, "/v1/messages", anthropic_error(400, "Your credit balance is too low to access the API.")
    )
    upstream.add(TOGETHER, "/v1/models", together_models("mistralai/Mixtral-8x7B-Instruct-v0.1"))
    upstream.add(
        TOGETHER, "/v1/chat/completions", together_completion(GOOD), together_completion("Use HTTP/2.")
    )
    sleeps = []

    result = asyncio.run(
        _orchestrator(upstream, sleeps, supplementary=True).analyze("https://example.com", "widgets")
    )

    # quota is not retried on the primary
    assert upstream.count(ANTHROPIC, "/v1/messages") == 1
    completions = [r for r in upstream.calls_to(TOGETHER) if r.url.path == "/v1/chat/completions"]
    assert len(completions) == 2
    assert "detailed SEO analysis" in _prompt_of(completions[0])
    assert "technical SEO insights" in _prompt_of(completions[1])
    assert result == f"{GOOD}\n\n---\n\n{INSIGHTS_HEADING}\n\nUse HTTP/2."
    assert sleeps == []


def test_supplementary_prompt_goes_to_fallback_when_primary_is_healthy():
    upstream = FakeUpstream()
    upstream.add(ANTHROPIC, "/v1/models", anthropic_models("claude-sonnet-4-6"))
    upstream.add(ANTHROPIC, "/v1/messages", anthropic_message(GOOD))
    upstream.add(TOGETHER, "/v1/models", together_models("meta-llama/Llama-2-70b-chat-hf"))
    upstream.add(TOGETHER, "/v1/chat/completions", together_completion("Add schema markup."))
    sleeps = []

    result = asyncio.run(_orchestrator(upstream, sleeps, supplementary=True).analyze("https://example.com"))

    assert result.startswith(GOOD)
    assert result.endswith("Add schema markup.")
    completion = next(r for r in upstream.calls_to(TOGETHER) if r.url.path == "/v1/chat/completions")
    # first preference is not listed, so the second one is picked
    assert json.loads(completion.content)["model"] == "meta-llama/Llama-2-70b-chat-hf"


def test_quota_without_fallback_is_terminal():
    upstream = FakeUpstream()
    upstream.add(ANTHROPIC, "/v1/models", anthropic_models("claude-sonnet-4-6"))
    upstream.add(ANTHROPIC, "/v1/messages", anthropic_error(402, "payment required"))

    with pytest.raises(QuotaError):
        asyncio.run(_orchestrator(upstream, [], fallback=False).analyze("https://example.com"))


def test_model_probe_failure_uses_first_preference():
    upstream = FakeUpstream()
    upstream.add(TOGETHER, "/v1/models", httpx.Response(500, text="models endpoint down"))
    upstream.add(TOGETHER, "/v1/chat/completions", together_completion(GOOD))

    asyncio.run(_orchestrator(upstream, [], primary=False).analyze("https://example.com"))

    completion = next(r for r in upstream.calls_to(TOGETHER) if r.url.path == "/v1/chat/completions")
    assert json.loads(completion.content)["model"] == "mistralai/Mixtral-8x7B-Instruct-v0.1"


def test_other_errors_are_retried_then_surfaced():
    upstream = FakeUpstream()
    upstream.add(ANTHROPIC, "/v1/models", anthropic_models("claude-sonnet-4-6"))
    upstream.add(ANTHROPIC, "/v1/messages", anthropic_error(400, "invalid_request_error: bad model"))
    sleeps = []

    with pytest.raises(ProviderHttpError) as info:
        asyncio.run(_orchestrator(upstream, sleeps, attempts=3).analyze("https://example.com"))
    assert info.value.status == 400
    assert upstream.count(ANTHROPIC, "/v1/messages") == 3
    assert sleeps == [1, 2]


def test_no_provider_configured():
    with pytest.raises(ProviderUnavailableError):
        asyncio.run(_orchestrator(FakeUpstream(), [], primary=False, fallback=False).analyze("https://x.com"))


def test_provider_text_is_returned_verbatim():
    padded = f"\n{GOOD}\n\n"
    upstream = FakeUpstream()
    upstream.add(ANTHROPIC, "/v1/models", anthropic_models("claude-sonnet-4-6"))
    upstream.add(ANTHROPIC, "/v1/messages", anthropic_message(padded))

    assert asyncio.run(_orchestrator(upstream, []).analyze("https://example.com")) == padded
