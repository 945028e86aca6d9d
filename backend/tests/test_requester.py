"""Tests for provider requests: retry, error mapping, limits and caching."""

import json

import httpx
import openai
import pytest

from conftest import ScriptedLLM
from learnpath.core.errors import ProviderError, ProviderUnavailable
from learnpath.engine.course_graph import CourseGraph
from learnpath.engine.rate_limit import SlidingWindowRateLimiter, TTLResponseCache
from learnpath.engine.requester import RoadmapRequester, build_roadmap_prompt
from learnpath.schemas.student import StudentContext

REPLY = json.dumps({"learning_path": [], "personalization_reasoning": "ok"})
REQUEST = httpx.Request("POST", "https://provider.test/v1/chat/completions")


def _status_error(cls: type[openai.APIStatusError], status: int) -> openai.APIStatusError:
    return cls("provider said no", response=httpx.Response(status, request=REQUEST), body=None)


def _requester(llm: ScriptedLLM, **kwargs) -> RoadmapRequester:
    kwargs.setdefault("retry_backoff_seconds", 0)
    return RoadmapRequester(llm, **kwargs)


@pytest.fixture
def context() -> StudentContext:
    return StudentContext(student_id="s1", knowledge_gaps=frozenset({"algebra"}))


@pytest.mark.asyncio
async def test_success_returns_raw_payload(context: StudentContext, course_graph: CourseGraph):
    llm = ScriptedLLM(REPLY)
    payload = await _requester(llm).request_roadmap(context, course_graph)

    assert payload.content == REPLY
    assert payload.model == "scripted-model"
    assert not payload.cached
    assert len(llm.calls) == 1


@pytest.mark.asyncio
async def test_connection_error_retried_once(context: StudentContext, course_graph: CourseGraph):
    llm = ScriptedLLM(openai.APIConnectionError(request=REQUEST), REPLY)
    payload = await _requester(llm).request_roadmap(context, course_graph)

    assert payload.content == REPLY
    assert len(llm.calls) == 2


@pytest.mark.asyncio
async def test_two_connection_errors_surface_unavailable(context: StudentContext, course_graph: CourseGraph):
    llm = ScriptedLLM(openai.APIConnectionError(request=REQUEST))
    with pytest.raises(ProviderUnavailable):
        await _requester(llm).request_roadmap(context, course_graph)
    assert len(llm.calls) == 2


@pytest.mark.asyncio
async def test_client_error_not_retried(context: StudentContext, course_graph: CourseGraph):
    llm = ScriptedLLM(_status_error(openai.BadRequestError, 400))
    with pytest.raises(ProviderError) as exc_info:
        await _requester(llm).request_roadmap(context, course_graph)

    assert exc_info.value.status_code == 400
    assert len(llm.calls) == 1


@pytest.mark.asyncio
async def test_server_error_retried(context: StudentContext, course_graph: CourseGraph):
    llm = ScriptedLLM(_status_error(openai.InternalServerError, 503), REPLY)
    payload = await _requester(llm).request_roadmap(context, course_graph)

    assert payload.content == REPLY
    assert len(llm.calls) == 2


@pytest.mark.asyncio
async def test_explicit_error_payload(context: StudentContext, course_graph: CourseGraph):
    llm = ScriptedLLM('{"error": "catalog too small"}')
    with pytest.raises(ProviderError, match="catalog too small"):
        await _requester(llm).request_roadmap(context, course_graph)
    assert len(llm.calls) == 1


@pytest.mark.asyncio
async def test_timeout_maps_to_unavailable(context: StudentContext, course_graph: CourseGraph):
    llm = ScriptedLLM(REPLY, delay=0.2)
    with pytest.raises(ProviderUnavailable, match="timed out"):
        await _requester(llm, timeout_seconds=0.05).request_roadmap(context, course_graph)
    assert len(llm.calls) == 2


@pytest.mark.asyncio
async def test_local_rate_limit_denies_without_calling(context: StudentContext, course_graph: CourseGraph):
    clock = lambda: 100.0  # noqa: E731
    limiter = SlidingWindowRateLimiter(requests_per_minute=1, tokens_per_minute=1_000_000, clock=clock)
    limiter.record_request(10)
    llm = ScriptedLLM(REPLY)

    with pytest.raises(ProviderUnavailable) as exc_info:
        await _requester(llm, rate_limiter=limiter).request_roadmap(context, course_graph)

    assert exc_info.value.retry_after == 60
    assert llm.calls == []


@pytest.mark.asyncio
async def test_successful_call_recorded_by_limiter(context: StudentContext, course_graph: CourseGraph):
    limiter = SlidingWindowRateLimiter(requests_per_minute=10, tokens_per_minute=1_000_000)
    await _requester(ScriptedLLM(REPLY), rate_limiter=limiter).request_roadmap(context, course_graph)
    assert limiter.get_stats()["requests_in_last_minute"] == 1


@pytest.mark.asyncio
async def test_cached_response_reused(context: StudentContext, course_graph: CourseGraph):
    llm = ScriptedLLM(REPLY)
    requester = _requester(llm, cache=TTLResponseCache(ttl_seconds=60, max_size=10))

    first = await requester.request_roadmap(context, course_graph)
    second = await requester.request_roadmap(context, course_graph)

    assert not first.cached
    assert second.cached
    assert second.content == REPLY
    assert len(llm.calls) == 1


def test_prompt_is_deterministic(context: StudentContext, course_graph: CourseGraph):
    first = build_roadmap_prompt(context, course_graph, target_skills=["b", "a"])
    second = build_roadmap_prompt(context, course_graph, target_skills=["a", "b"])

    assert first == second
    assert "stats-preview" not in first
    assert '"algebra"' in first
