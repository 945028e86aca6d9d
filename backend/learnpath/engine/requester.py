"""Roadmap requests to the external reasoning provider.

Builds prompts from the student context and catalog, enforces the per-call
timeout, retries once on transient failures, and maps every provider
failure onto ``ProviderUnavailable`` or ``ProviderError``.
"""

import asyncio
import hashlib
import json
from dataclasses import dataclass
from typing import Any

import openai
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from learnpath.core.errors import ProviderError, ProviderFailure, ProviderUnavailable
from learnpath.core.logging import get_logger
from learnpath.engine.course_graph import CourseGraph
from learnpath.engine.llm_utils import parse_llm_json_response
from learnpath.engine.rate_limit import RateLimiter, ResponseCache
from learnpath.schemas.roadmap import Roadmap
from learnpath.schemas.student import StudentContext, TimeConstraints

logger = get_logger(__name__)


@dataclass(frozen=True)
class RawPayload:
    """Unvalidated provider output."""

    content: str
    model: str | None = None
    cached: bool = False


# ============================================================================
# Prompts
# ============================================================================

ROADMAP_SYSTEM_PROMPT = """
You are an expert educational advisor. Build a personalized learning roadmap
for one student using ONLY the catalog content listed in the request.

Rules:
1. Reference catalog items by their exact id in "content_id"
2. Place prerequisites before the content that needs them
3. Address the student's knowledge gaps early
4. Respect the student's pace and time budget
5. Explain each choice briefly in "personalization_notes"

Respond with valid JSON only, using exactly these field names:
{
  "learning_path": [
    {
      "content_id": "course_or_lesson_id",
      "content_type": "course|lesson|assessment|remedial",
      "title": "Content Title",
      "estimated_time": 60,
      "difficulty_level": "beginner|intermediate|advanced",
      "personalization_notes": "Why this is recommended for this student",
      "topics": ["topic"]
    }
  ],
  "personalization_reasoning": "Why this path was chosen",
  "alternative_paths": ["Brief description of an alternative approach"],
  "success_metrics": ["How to measure progress"],
  "difficulty_progression": {"start": "beginner", "end": "advanced"}
}

If you cannot produce a roadmap, respond with {"error": "<reason>"}.
"""

REMEDIAL_SYSTEM_PROMPT = """
You are an expert tutor. A student just failed an assessment. Propose at most
{max_items} short remedial items that close the listed knowledge gaps.

Rules:
- Prefer catalog items (exact id in "content_id") the student has not seen
- Otherwise omit "content_id" and describe a focused review activity
- Every item needs "personalization_notes" explaining the remedial purpose

Respond with valid JSON only:
{{
  "remedial_items": [
    {{
      "content_id": "optional_catalog_id",
      "title": "Review: topic",
      "estimated_time": 30,
      "difficulty_level": "beginner",
      "personalization_notes": "What this fixes",
      "topics": ["topic"]
    }}
  ]
}}
"""


def _catalog_excerpt(graph: CourseGraph) -> list[dict[str, Any]]:
    return [
        {
            "id": course.id,
            "title": course.title,
            "difficulty": course.difficulty.value,
            "prerequisites": sorted(course.prerequisites),
            "estimated_minutes": course.estimated_duration,
            "topics": sorted(course.topics),
            "content_types": sorted(course.tags),
            "lessons": [lesson.id for lesson in course.lessons],
        }
        for course in graph.courses
    ]


def _student_excerpt(context: StudentContext) -> dict[str, Any]:
    prefs = context.preferences
    return {
        "knowledge_profile": context.knowledge_profile,
        "knowledge_gaps": sorted(context.knowledge_gaps),
        "pace": prefs.pace.value,
        "learning_style": prefs.style.value,
        "preferred_media": sorted(prefs.preferred_media),
        "completed_content": sorted(context.completed_content),
        "in_progress_content": sorted(context.in_progress_content),
        "assessments_taken": len(context.assessment_history),
    }


def build_roadmap_prompt(
    context: StudentContext,
    graph: CourseGraph,
    target_skills: list[str] | None = None,
    time_constraints: TimeConstraints | None = None,
) -> str:
    request: dict[str, Any] = {
        "student": _student_excerpt(context),
        "catalog": _catalog_excerpt(graph),
    }
    if target_skills:
        request["target_skills"] = sorted(target_skills)
    if time_constraints:
        request["time_constraints"] = time_constraints.model_dump(mode="json")
    return "Create a personalized learning roadmap.\n\n" + json.dumps(request, indent=2, sort_keys=True)


def build_remedial_prompt(
    context: StudentContext,
    graph: CourseGraph,
    roadmap: Roadmap,
    gap_topics: list[str],
) -> str:
    request = {
        "student": _student_excerpt(context),
        "gap_topics": sorted(gap_topics),
        "current_path": roadmap.references(),
        "catalog": [entry for entry in _catalog_excerpt(graph) if entry["id"] not in context.completed_content],
    }
    return "Propose remedial content.\n\n" + json.dumps(request, indent=2, sort_keys=True)


# ============================================================================
# Requester
# ============================================================================


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(str(part.get("text", "")))
        return "".join(parts)
    return str(content)


def _explicit_error(text: str) -> str | None:
    """Error message when the provider answered with an error object instead of a roadmap."""
    try:
        data = parse_llm_json_response(text)
    except ValueError:
        return None
    if isinstance(data, dict) and "error" in data and not (
        "learning_path" in data or "remedial_items" in data
    ):
        error = data["error"]
        if isinstance(error, dict):
            return str(error.get("message") or error)
        return str(error)
    return None


class RoadmapRequester:
    """Calls the reasoning provider with timeout, single retry, and local limits."""

    def __init__(
        self,
        llm: BaseChatModel,
        *,
        timeout_seconds: float = 10.0,
        retry_backoff_seconds: float = 1.0,
        rate_limiter: RateLimiter | None = None,
        cache: ResponseCache | None = None,
        max_remedial_items: int = 3,
    ) -> None:
        self.llm = llm
        self.timeout_seconds = timeout_seconds
        self.retry_backoff_seconds = retry_backoff_seconds
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.max_remedial_items = max_remedial_items

    @property
    def model_name(self) -> str | None:
        return getattr(self.llm, "model_name", None)

    async def request_roadmap(
        self,
        context: StudentContext,
        graph: CourseGraph,
        *,
        target_skills: list[str] | None = None,
        time_constraints: TimeConstraints | None = None,
    ) -> RawPayload:
        prompt = build_roadmap_prompt(context, graph, target_skills, time_constraints)
        return await self._invoke(ROADMAP_SYSTEM_PROMPT, prompt, student_id=context.student_id)

    async def request_remedial(
        self,
        context: StudentContext,
        graph: CourseGraph,
        roadmap: Roadmap,
        gap_topics: list[str],
    ) -> RawPayload:
        system = REMEDIAL_SYSTEM_PROMPT.format(max_items=self.max_remedial_items)
        prompt = build_remedial_prompt(context, graph, roadmap, gap_topics)
        return await self._invoke(system, prompt, student_id=context.student_id)

    async def _invoke(self, system_prompt: str, user_prompt: str, *, student_id: str) -> RawPayload:
        cache_key = hashlib.sha256(f"{system_prompt}\n{user_prompt}".encode()).hexdigest()
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info("Provider response served from cache", student_id=student_id)
                return RawPayload(content=cached, model=self.model_name, cached=True)

        messages = [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)]
        estimated_tokens = (len(system_prompt) + len(user_prompt)) // 4 + 2000

        for attempt in (1, 2):
            try:
                content = await self._call_once(messages, estimated_tokens)
            except ProviderFailure as e:
                transient = isinstance(e, ProviderUnavailable) or (
                    isinstance(e, ProviderError) and e.retryable
                )
                logger.warning(
                    "Provider call failed",
                    student_id=student_id,
                    attempt=attempt,
                    error_code=e.code,
                    error=str(e),
                )
                if attempt == 1 and transient:
                    await asyncio.sleep(self.retry_backoff_seconds)
                    continue
                raise
            if self.cache is not None:
                self.cache.set(cache_key, content)
            logger.info("Provider call succeeded", student_id=student_id, attempt=attempt)
            return RawPayload(content=content, model=self.model_name)

        raise ProviderUnavailable()  # pragma: no cover

    async def _call_once(self, messages: list, estimated_tokens: int) -> str:
        if self.rate_limiter is not None:
            decision = self.rate_limiter.check_limit(estimated_tokens)
            if not decision.allowed:
                raise ProviderUnavailable("Local rate limit reached", retry_after=decision.retry_after)

        try:
            response = await asyncio.wait_for(self.llm.ainvoke(messages), timeout=self.timeout_seconds)
        except TimeoutError as e:
            raise ProviderUnavailable(f"Provider timed out after {self.timeout_seconds:g}s") from e
        except openai.APIConnectionError as e:
            raise ProviderUnavailable(f"Provider connection failed: {e}") from e
        except openai.APIStatusError as e:
            raise ProviderError(f"Provider returned HTTP {e.status_code}", status_code=e.status_code) from e
        except openai.OpenAIError as e:
            raise ProviderError(f"Provider error: {e}") from e

        text = _message_text(response.content)
        if self.rate_limiter is not None:
            usage = getattr(response, "usage_metadata", None) or {}
            self.rate_limiter.record_request(int(usage.get("total_tokens") or estimated_tokens))

        message = _explicit_error(text)
        if message is not None:
            raise ProviderError(f"Provider reported an error: {message}")
        return text
