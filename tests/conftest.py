"""Shared fixtures: a scripted fake upstream behind httpx.MockTransport."""

from collections import defaultdict, deque

import httpx
import pytest
from fastapi.testclient import TestClient

from main import create_app
from settings import Settings

ANTHROPIC = "api.anthropic.com"
TOGETHER = "api.together.xyz"
GOOGLE = "www.googleapis.com"
SERPAPI = "serpapi.com"
SIMILARWEB = "api.similarweb.com"


class FakeUpstream:
    """
    Routes requests by (host, path). Each route holds a queue of responses;
    the last one repeats. A response may be an httpx.Response, an exception
    instance (raised) or a callable taking the request.
    Unrouted requests get a 404.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], deque] = {}
        self.calls: list[httpx.Request] = []
        self.counts: dict[tuple[str, str], int] = defaultdict(int)

    def add(self, host: str, path: str, *responses) -> "FakeUpstream":
        self.routes[(host, path)] = deque(responses)
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        key = (request.url.host, request.url.path)
        self.calls.append(request)
        self.counts[key] += 1
        queue = self.routes.get(key)
        if not queue:
            return httpx.Response(404, text=f"no route for {key}")
        response = queue.popleft() if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(request)
        return response

    def count(self, host: str, path: str) -> int:
        return self.counts[(host, path)]

    def calls_to(self, host: str) -> list[httpx.Request]:
        return [r for r in self.calls if r.url.host == host]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


# ---------------------------------------------------------------------------
# Response builders
# ---------------------------------------------------------------------------

def anthropic_message(text: str) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "id": "msg_test",
            "type": "message",
            "role": "assistant",
            "model": "claude-sonnet-4-6",
            "content": [{"type": "text", "text": text}],
            "stop_reason": "end_turn",
            "stop_sequence": None,
            "usage": {"input_tokens": 10, "output_tokens": 10},
        },
    )


def anthropic_models(*ids: str) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "data": [
                {"id": i, "type": "model", "display_name": i, "created_at": "2025-01-01T00:00:00Z"}
                for i in ids
            ],
            "has_more": False,
            "first_id": ids[0] if ids else None,
            "last_id": ids[-1] if ids else None,
        },
    )


def anthropic_error(status: int, message: str, headers: dict | None = None) -> httpx.Response:
    return httpx.Response(
        status,
        json={"type": "error", "error": {"type": "api_error", "message": message}},
        headers=headers,
    )


def together_completion(text: str) -> httpx.Response:
    return httpx.Response(
        200,
        json={"choices": [{"index": 0, "message": {"role": "assistant", "content": text}}]},
    )


def together_models(*names: str) -> httpx.Response:
    return httpx.Response(200, json=[{"id": n, "object": "model"} for n in names])


def make_analysis_text(bullets: int = 15, min_length: int = 1200) -> str:
    """Markdown that passes the structural checks: 5 headers, `bullets` bullets."""
    lines = ["# SEO Analysis for example.com", ""]
    per_section = -(-bullets // 4)
    written = 0
    for n in range(1, 5):
        lines.append(f"## Section {n}")
        for _ in range(per_section):
            if written == bullets:
                break
            written += 1
            lines.append(f"- Observation {written} about the page and what to change next")
        lines.append("")
    text = "\n".join(lines)
    filler = "The site loads quickly and the copy is clear, but headings could carry more intent. "
    while len(text) < min_length:
        text += filler
    return text


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return _sleep


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        anthropic_api_key="sk-ant-test",
        claude_model="claude-sonnet-4-6",
        together_api_key="together-test",
        google_api_key="google-test",
        google_cx="cx-test",
        serpapi_key="serp-test",
        similarweb_api_key="sw-test",
        database_url=f"sqlite:///{tmp_path / 'history.db'}",
        supplementary_insights=False,
        moz_scrape_enabled=False,
    )


@pytest.fixture
def make_client(upstream, fake_sleep):
    def _make(settings: Settings) -> TestClient:
        return TestClient(create_app(settings, transport=upstream.transport, sleep=fake_sleep))

    return _make


@pytest.fixture
def client(make_client, settings) -> TestClient:
    return make_client(settings)
