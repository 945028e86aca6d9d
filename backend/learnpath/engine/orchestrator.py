"""Generation orchestration graph.

Flow:
1. start - decide whether the reasoning provider is used
2. request_ai - call the provider under the overall request timeout
3. validate - validate and normalize the payload
4. rule_based - deterministic fallback, only when the AI branch failed or is disabled
5. finish

Every path ends in DONE with a roadmap (or remedial item list); provider and
payload failures never escape.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, StateGraph
from langgraph.graph.state import CompiledStateGraph
from pydantic import ValidationError

from learnpath.core.config import EngineConfig
from learnpath.core.errors import (
    InvalidPayload,
    ProviderError,
    ProviderFailure,
    ProviderUnavailable,
    SchemaViolation,
)
from learnpath.core.logging import get_logger
from learnpath.engine.course_graph import CourseGraph
from learnpath.engine.requester import RoadmapRequester
from learnpath.engine.rule_based import build_remedial_items, generate_rule_based_roadmap
from learnpath.engine.state import GenerationMode, GenerationPhase, GenerationState
from learnpath.engine.validator import (
    RejectedPayload,
    Repair,
    validate_remedial_payload,
    validate_roadmap_payload,
)
from learnpath.schemas.roadmap import GenerationStrategy, LearningPathItem, Roadmap
from learnpath.schemas.student import StudentContext, TimeConstraints

logger = get_logger(__name__)

RemedialFallback = Callable[
    [StudentContext, CourseGraph, Roadmap, list[str], EngineConfig],
    list[LearningPathItem],
]


@dataclass(frozen=True)
class GenerationOutcome:
    roadmap: Roadmap
    transitions: tuple[GenerationPhase, ...]
    failure: str | None = None
    repairs: tuple[Repair, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def strategy(self) -> GenerationStrategy:
        return self.roadmap.generation_strategy


@dataclass(frozen=True)
class RemedialOutcome:
    items: list[LearningPathItem] = field(default_factory=list)
    strategy: GenerationStrategy | None = None
    transitions: tuple[GenerationPhase, ...] = ()
    failure: str | None = None
    degraded_reason: str | None = None
    repairs: tuple[Repair, ...] = ()
    warnings: tuple[str, ...] = ()


def _deps(config: RunnableConfig) -> dict[str, Any]:
    return config.get("configurable", {})


def _describe(error: Exception) -> str:
    code = getattr(error, "code", type(error).__name__)
    return f"{code}: {error}"


# ============================================================================
# Nodes
# ============================================================================


async def start_node(state: GenerationState, config: RunnableConfig) -> dict[str, Any]:
    deps = _deps(config)
    engine_config: EngineConfig = deps["engine_config"]
    use_ai = engine_config.ai_enabled and deps.get("requester") is not None
    logger.info(
        "Generation started",
        student_id=state["context"].student_id,
        mode=state["mode"].value,
        use_ai=use_ai,
    )
    return {"phase": GenerationPhase.START, "transitions": [GenerationPhase.START], "use_ai": use_ai}


async def request_ai_node(state: GenerationState, config: RunnableConfig) -> dict[str, Any]:
    deps = _deps(config)
    requester: RoadmapRequester = deps["requester"]
    graph: CourseGraph = deps["course_graph"]
    engine_config: EngineConfig = deps["engine_config"]
    context = state["context"]

    if state["mode"] == GenerationMode.REMEDIAL:
        call = requester.request_remedial(context, graph, state["roadmap"], state["gap_topics"])
    else:
        call = requester.request_roadmap(
            context,
            graph,
            target_skills=state.get("target_skills"),
            time_constraints=state.get("time_constraints"),
        )

    try:
        payload = await asyncio.wait_for(call, timeout=engine_config.request_timeout_seconds)
    except TimeoutError:
        error: Exception = ProviderUnavailable(
            f"Request timed out after {engine_config.request_timeout_seconds:g}s"
        )
    except ProviderFailure as e:
        error = e
    except Exception as e:
        logger.error("Unexpected provider failure", student_id=context.student_id, error=str(e), exc_info=True)
        error = ProviderError(str(e))
    else:
        return {
            "phase": GenerationPhase.AI_REQUESTED,
            "transitions": [GenerationPhase.AI_REQUESTED],
            "raw_payload": payload,
        }

    logger.warning("AI request failed, falling back", student_id=context.student_id, failure=_describe(error))
    return {
        "phase": GenerationPhase.AI_FAILED,
        "transitions": [GenerationPhase.AI_REQUESTED, GenerationPhase.AI_FAILED],
        "failure": _describe(error),
    }


async def validate_node(state: GenerationState, config: RunnableConfig) -> dict[str, Any]:
    deps = _deps(config)
    graph: CourseGraph = deps["course_graph"]
    engine_config: EngineConfig = deps["engine_config"]
    context = state["context"]
    payload = state["raw_payload"]
    if payload is None:
        error = SchemaViolation("<payload>", "No provider payload to validate")
        return {
            "phase": GenerationPhase.AI_FAILED,
            "transitions": [GenerationPhase.AI_FAILED],
            "failure": _describe(error),
        }

    try:
        if state["mode"] == GenerationMode.REMEDIAL:
            remedial = validate_remedial_payload(
                payload,
                context=context,
                graph=graph,
                roadmap=state["roadmap"],
                config=engine_config,
            )
            return {
                "phase": GenerationPhase.AI_VALIDATED,
                "transitions": [GenerationPhase.AI_VALIDATED],
                "validated_remedial": remedial,
                "remedial_items": remedial.items,
                "strategy": remedial.strategy,
            }

        validated = validate_roadmap_payload(
            payload,
            context=context,
            graph=graph,
            config=engine_config,
            target_skills=state.get("target_skills"),
            time_constraints=state.get("time_constraints"),
            now=deps.get("now"),
        )
    except (InvalidPayload, ValidationError) as e:
        error = e if isinstance(e, InvalidPayload) else InvalidPayload(str(e))
        logger.warning("AI payload rejected", student_id=context.student_id, failure=_describe(error))
        return {
            "phase": GenerationPhase.AI_FAILED,
            "transitions": [GenerationPhase.AI_FAILED],
            "rejected": RejectedPayload(payload=payload, error=error),
            "failure": _describe(error),
        }

    return {
        "phase": GenerationPhase.AI_VALIDATED,
        "transitions": [GenerationPhase.AI_VALIDATED],
        "validated": validated,
        "result": validated.roadmap,
        "strategy": validated.roadmap.generation_strategy,
    }


async def rule_based_node(state: GenerationState, config: RunnableConfig) -> dict[str, Any]:
    deps = _deps(config)
    graph: CourseGraph = deps["course_graph"]
    engine_config: EngineConfig = deps["engine_config"]
    context = state["context"]
    update: dict[str, Any] = {
        "phase": GenerationPhase.RULE_BASED,
        "transitions": [GenerationPhase.RULE_BASED],
        "strategy": GenerationStrategy.RULE_BASED,
    }

    if state["mode"] == GenerationMode.ROADMAP:
        update["result"] = generate_rule_based_roadmap(
            context,
            graph,
            engine_config,
            target_skills=state.get("target_skills"),
            time_constraints=state.get("time_constraints"),
            now=deps.get("now"),
        )
        return update

    fallback: RemedialFallback = deps.get("remedial_fallback") or build_remedial_items
    try:
        items = fallback(context, graph, state["roadmap"], state["gap_topics"], engine_config)
    except Exception as e:
        logger.error("Rule-based remedial generation failed", student_id=context.student_id, error=str(e), exc_info=True)
        update.update(remedial_items=[], strategy=None, degraded_reason=f"Remedial generation failed: {e}")
        return update

    if not items:
        update.update(strategy=None, degraded_reason="No remedial content could be generated")
    update["remedial_items"] = items[: engine_config.max_remedial_items]
    return update


async def finish_node(state: GenerationState, config: RunnableConfig) -> dict[str, Any]:
    logger.info(
        "Generation finished",
        student_id=state["context"].student_id,
        mode=state["mode"].value,
        strategy=state.get("strategy"),
        transitions=[p.value for p in state["transitions"]] + [GenerationPhase.DONE.value],
    )
    return {"phase": GenerationPhase.DONE, "transitions": [GenerationPhase.DONE]}


# ============================================================================
# Routing
# ============================================================================


def route_after_start(state: GenerationState) -> str:
    return "request_ai" if state.get("use_ai") else "rule_based"


def route_after_request(state: GenerationState) -> str:
    return "validate" if state["phase"] == GenerationPhase.AI_REQUESTED else "rule_based"


def route_after_validate(state: GenerationState) -> str:
    return "finish" if state["phase"] == GenerationPhase.AI_VALIDATED else "rule_based"


def create_generation_graph() -> CompiledStateGraph:
    workflow = StateGraph(GenerationState)

    workflow.add_node("start", start_node)
    workflow.add_node("request_ai", request_ai_node)
    workflow.add_node("validate", validate_node)
    workflow.add_node("rule_based", rule_based_node)
    workflow.add_node("finish", finish_node)

    workflow.set_entry_point("start")

    workflow.add_conditional_edges(
        "start",
        route_after_start,
        {"request_ai": "request_ai", "rule_based": "rule_based"},
    )
    workflow.add_conditional_edges(
        "request_ai",
        route_after_request,
        {"validate": "validate", "rule_based": "rule_based"},
    )
    workflow.add_conditional_edges(
        "validate",
        route_after_validate,
        {"finish": "finish", "rule_based": "rule_based"},
    )
    workflow.add_edge("rule_based", "finish")
    workflow.add_edge("finish", END)

    return workflow.compile()


_graph = None


def get_generation_graph() -> CompiledStateGraph:
    """Get or create the global generation graph."""
    global _graph
    if _graph is None:
        _graph = create_generation_graph()
        logger.info("Generation graph created")
    return _graph


# ============================================================================
# Entry points
# ============================================================================


async def generate_roadmap(
    context: StudentContext,
    graph: CourseGraph,
    config: EngineConfig,
    requester: RoadmapRequester | None,
    *,
    target_skills: list[str] | None = None,
    time_constraints: TimeConstraints | None = None,
    now: datetime | None = None,
) -> GenerationOutcome:
    """Generate a roadmap, preferring the provider and falling back to rules."""
    state: GenerationState = {
        "mode": GenerationMode.ROADMAP,
        "context": context,
        "target_skills": target_skills,
        "time_constraints": time_constraints,
        "transitions": [],
    }
    final = await get_generation_graph().ainvoke(
        state,
        config={
            "configurable": {
                "course_graph": graph,
                "engine_config": config,
                "requester": requester,
                "now": now,
            }
        },
    )
    validated = final.get("validated")
    return GenerationOutcome(
        roadmap=final["result"],
        transitions=tuple(final["transitions"]),
        failure=final.get("failure"),
        repairs=validated.repairs if validated else (),
        warnings=validated.warnings if validated else (),
    )


async def generate_remedial(
    context: StudentContext,
    graph: CourseGraph,
    config: EngineConfig,
    requester: RoadmapRequester | None,
    roadmap: Roadmap,
    gap_topics: list[str],
    *,
    remedial_fallback: RemedialFallback | None = None,
) -> RemedialOutcome:
    """Generate remedial items for ``gap_topics`` through the same state machine."""
    state: GenerationState = {
        "mode": GenerationMode.REMEDIAL,
        "context": context,
        "roadmap": roadmap,
        "gap_topics": gap_topics,
        "transitions": [],
    }
    final = await get_generation_graph().ainvoke(
        state,
        config={
            "configurable": {
                "course_graph": graph,
                "engine_config": config,
                "requester": requester,
                "remedial_fallback": remedial_fallback,
            }
        },
    )
    remedial = final.get("validated_remedial")
    return RemedialOutcome(
        items=final.get("remedial_items", []),
        strategy=final.get("strategy"),
        transitions=tuple(final["transitions"]),
        failure=final.get("failure"),
        degraded_reason=final.get("degraded_reason"),
        repairs=remedial.repairs if remedial else (),
        warnings=remedial.warnings if remedial else (),
    )
