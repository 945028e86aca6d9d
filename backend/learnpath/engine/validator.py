"""Validation and normalization of provider roadmap payloads.

Untrusted ``RawPayload`` content becomes either a ``ValidatedRoadmap`` or a
``RejectedPayload``; nothing downstream reads provider output directly.
Rules run in a fixed order:

1. required top-level fields are present
2. unresolvable catalog references are dropped with a warning
3. positions are re-derived from array order
4. items are moved after prerequisites that appear later (repair)
5. prerequisites that are neither completed nor in the path are inserted
   from the catalog (repair); items needing content outside the catalog
   are dropped
6. non-positive times are replaced by the catalog estimate (repair)
7. a reversed difficulty progression is swapped (repair)

When the share of touched items exceeds ``max_repair_ratio`` the payload is
rejected as low confidence.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from learnpath.core.config import EngineConfig
from learnpath.core.errors import InvalidPayload, LowConfidenceOutput, SchemaViolation
from learnpath.core.logging import get_logger
from learnpath.engine.course_graph import CourseGraph
from learnpath.engine.llm_utils import parse_llm_json_response
from learnpath.engine.requester import RawPayload
from learnpath.engine.rule_based import build_personalization_factors, default_success_metrics
from learnpath.schemas.course import Difficulty
from learnpath.schemas.roadmap import (
    DifficultyProgression,
    GenerationStrategy,
    ItemKind,
    LearningPathItem,
    Roadmap,
    renumber,
    utcnow,
)
from learnpath.schemas.student import StudentContext, TimeConstraints

logger = get_logger(__name__)

# Payloads of at most SMALL_PAYLOAD_ITEMS items are judged as if they had
# MIN_REPAIR_SAMPLE items, so a single repair in a two-item path is not enough
# to reject it. Larger payloads use their own item count.
SMALL_PAYLOAD_ITEMS = 2
MIN_REPAIR_SAMPLE = 5

_FIELD_ALIASES = {
    "learningPath": "learning_path",
    "difficultyProgression": "difficulty_progression",
    "personalizationReasoning": "personalization_reasoning",
    "alternativePaths": "alternative_paths",
    "successMetrics": "success_metrics",
    "remedialItems": "remedial_items",
}


@dataclass(frozen=True)
class Repair:
    """One deterministic fix applied to provider output."""

    reference: str | None
    field: str
    detail: str


@dataclass(frozen=True)
class ValidatedRoadmap:
    roadmap: Roadmap
    repairs: tuple[Repair, ...] = ()
    warnings: tuple[str, ...] = ()
    repair_ratio: float = 0.0


@dataclass(frozen=True)
class ValidatedRemedial:
    items: list[LearningPathItem]
    repairs: tuple[Repair, ...] = ()
    warnings: tuple[str, ...] = ()
    repair_ratio: float = 0.0

    @property
    def strategy(self) -> GenerationStrategy:
        return GenerationStrategy.HYBRID if (self.repairs or self.warnings) else GenerationStrategy.AI


@dataclass(frozen=True)
class RejectedPayload:
    payload: RawPayload
    error: InvalidPayload


@dataclass
class _Draft:
    """Mutable working copy of one provider item."""

    source_index: int
    reference: str
    kind: ItemKind
    title: str
    estimated_time: int
    difficulty: Difficulty
    rationale: str
    topics: list[str] = field(default_factory=list)


# ============================================================================
# Decoding
# ============================================================================


def decode_payload(payload: RawPayload | dict[str, Any] | str) -> dict[str, Any]:
    """Decode provider content to a top-level object with canonical field names."""
    if isinstance(payload, RawPayload):
        payload = payload.content
    if isinstance(payload, str):
        try:
            data = parse_llm_json_response(payload)
        except ValueError as e:
            raise SchemaViolation("<payload>", f"Payload is not decodable JSON: {e}") from e
    else:
        data = payload
    if isinstance(data, list):
        data = {"learning_path": data}
    if not isinstance(data, dict):
        raise SchemaViolation("<payload>", "Payload must be a JSON object")
    return {_FIELD_ALIASES.get(k, k): v for k, v in data.items()}


def _first(item: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = item.get(key)
        if value not in (None, ""):
            return value
    return None


def _str_list(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


def _minutes(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return round(float(value))
    except (TypeError, ValueError):
        return None


def _difficulty_field(raw: Any, name: str) -> Difficulty:
    difficulty = Difficulty.parse(raw)
    if difficulty is None:
        raise SchemaViolation(f"difficulty_progression.{name}")
    return difficulty


# ============================================================================
# Item rules
# ============================================================================


def _draft_items(
    raw_items: list[Any],
    graph: CourseGraph,
    config: EngineConfig,
    repairs: list[Repair],
    warnings: list[str],
    touched: set[int],
) -> list[_Draft]:
    """Apply reference, kind and time rules; drop items that cannot be kept."""
    drafts: list[_Draft] = []
    seen: set[str] = set()

    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            warnings.append(f"Dropped item {index}: not an object")
            touched.add(index)
            continue

        reference = _first(raw, "reference", "content_id", "id")
        reference = str(reference).strip() if reference is not None else None
        declared_kind = str(_first(raw, "kind", "content_type", "type") or "").strip().lower()
        rationale = str(_first(raw, "rationale", "personalization_notes", "reason") or "").strip()
        topics = _str_list(raw.get("topics"))

        if declared_kind == ItemKind.REMEDIAL and not (reference and reference in graph):
            if not rationale:
                warnings.append(f"Dropped remedial item {index}: missing rationale")
                touched.add(index)
                continue
            title = str(_first(raw, "title") or (f"Review: {topics[0]}" if topics else "Review"))
            reference = reference or f"remedial:{index}"
            if reference in seen:
                reference = f"{reference}#{index}"
            minutes = _minutes(_first(raw, "estimated_time", "estimated_minutes"))
            if minutes is not None and minutes <= 0:
                repairs.append(Repair(reference, "estimated_time", f"{minutes} -> {config.default_remedial_minutes}"))
                touched.add(index)
                minutes = None
            drafts.append(
                _Draft(
                    source_index=index,
                    reference=reference,
                    kind=ItemKind.REMEDIAL,
                    title=title,
                    estimated_time=minutes or config.default_remedial_minutes,
                    difficulty=Difficulty.parse(_first(raw, "difficulty", "difficulty_level"), Difficulty.BEGINNER),
                    rationale=rationale,
                    topics=[t.lower() for t in topics],
                )
            )
            seen.add(reference)
            continue

        course = graph.course(reference) if reference else None
        actual_kind = graph.kind_of(reference) if reference else None
        if course is None or actual_kind is None:
            warnings.append(f"Dropped item {index}: unknown reference {reference!r}")
            touched.add(index)
            continue
        if reference in seen:
            warnings.append(f"Dropped item {index}: duplicate reference {reference!r}")
            touched.add(index)
            continue

        kind = actual_kind
        if declared_kind in (ItemKind.ASSESSMENT, ItemKind.REMEDIAL):
            kind = ItemKind(declared_kind)
        elif declared_kind and declared_kind != actual_kind:
            repairs.append(Repair(reference, "kind", f"{declared_kind} -> {actual_kind.value}"))
            touched.add(index)

        catalog_minutes = graph.estimated_duration(reference) or config.default_course_minutes
        minutes = _minutes(_first(raw, "estimated_time", "estimated_minutes"))
        if minutes is None:
            minutes = catalog_minutes
        elif minutes <= 0:
            repairs.append(Repair(reference, "estimated_time", f"{minutes} -> {catalog_minutes}"))
            touched.add(index)
            minutes = catalog_minutes

        drafts.append(
            _Draft(
                source_index=index,
                reference=reference,
                kind=kind,
                title=str(_first(raw, "title") or graph.title(reference)),
                estimated_time=minutes,
                difficulty=course.difficulty,
                rationale=rationale,
                topics=graph.topics(reference) or [t.lower() for t in topics],
            )
        )
        seen.add(reference)

    return drafts


def _catalog_prerequisites(draft: _Draft, graph: CourseGraph) -> frozenset[str]:
    if draft.reference not in graph:
        return frozenset()
    return graph.prerequisites(draft.reference)


def enforce_prerequisite_order(
    drafts: list[_Draft],
    graph: CourseGraph,
    repairs: list[Repair],
    touched: set[int],
) -> list[_Draft]:
    """Move each item directly after the last of its prerequisites present later in the path.

    Stable: items that need no move keep their relative order. Terminates
    because the prerequisite relation is acyclic.
    """
    ordered = list(drafts)
    limit = len(ordered) ** 2 + 1
    for _ in range(limit):
        positions = {d.reference: i for i, d in enumerate(ordered)}
        moved = False
        for i, draft in enumerate(ordered):
            later = [positions[p] for p in _catalog_prerequisites(draft, graph) if positions.get(p, -1) > i]
            if not later:
                continue
            target = max(later)
            ordered.insert(target, ordered.pop(i))
            repairs.append(
                Repair(draft.reference, "position", f"moved after prerequisite {ordered[target - 1].reference}")
            )
            touched.add(draft.source_index)
            moved = True
            break
        if not moved:
            return ordered
    raise SchemaViolation("learning_path", "Could not order items after their prerequisites")


def _unmet_prerequisites(reference: str, graph: CourseGraph, placed: set[str]) -> list[str] | None:
    """Prerequisites of ``reference`` not yet placed, prerequisites first.

    Walks back from ``reference`` and stops at completed or placed courses.
    None if the chain reaches a course outside the loaded catalog.
    """
    needed: set[str] = set()
    pending = list(graph.prerequisites(reference))
    while pending:
        prereq = pending.pop()
        if prereq in placed or prereq in needed:
            continue
        if graph.kind_of(prereq) != ItemKind.COURSE:
            return None
        needed.add(prereq)
        pending.extend(graph.prerequisites(prereq))
    return graph.topological_order(needed, key=lambda cid: cid)


def _catalog_draft(reference: str, dependent: _Draft, graph: CourseGraph, config: EngineConfig) -> _Draft:
    return _Draft(
        source_index=dependent.source_index,
        reference=reference,
        kind=ItemKind.COURSE,
        title=graph.title(reference),
        estimated_time=graph.estimated_duration(reference) or config.default_course_minutes,
        difficulty=graph.difficulty(reference) or Difficulty.BEGINNER,
        rationale=f"Prerequisite for {dependent.title}",
        topics=graph.topics(reference),
    )


def resolve_missing_prerequisites(
    drafts: list[_Draft],
    graph: CourseGraph,
    completed: frozenset[str],
    config: EngineConfig,
    repairs: list[Repair],
    warnings: list[str],
    touched: set[int],
) -> list[_Draft]:
    """Make every catalog prerequisite completed or earlier in the path.

    A prerequisite further down the path is pulled forward; one the path
    omits is inserted from the catalog. Items whose prerequisites lie
    outside the catalog are dropped.
    """
    remaining = list(drafts)
    resolved: list[_Draft] = []
    placed = set(completed)

    while remaining:
        draft = remaining.pop(0)
        if draft.reference not in graph:
            resolved.append(draft)
            placed.add(draft.reference)
            continue

        chain = _unmet_prerequisites(draft.reference, graph, placed)
        if chain is None:
            warnings.append(f"Dropped item {draft.source_index}: {draft.reference!r} needs content outside the catalog")
            touched.add(draft.source_index)
            continue

        for prereq in chain:
            later = next((d for d in remaining if d.reference == prereq), None)
            if later is not None:
                remaining.remove(later)
                resolved.append(later)
                repairs.append(Repair(prereq, "position", f"moved before dependent {draft.reference}"))
                touched.add(later.source_index)
            else:
                resolved.append(_catalog_draft(prereq, draft, graph, config))
                repairs.append(Repair(draft.reference, "prerequisites", f"inserted missing prerequisite {prereq}"))
            placed.add(prereq)
        if chain:
            touched.add(draft.source_index)

        resolved.append(draft)
        placed.add(draft.reference)

    return resolved


def _to_items(drafts: list[_Draft]) -> list[LearningPathItem]:
    return renumber(
        [
            LearningPathItem(
                position=0,
                reference=d.reference,
                kind=d.kind,
                title=d.title,
                estimated_time=d.estimated_time,
                difficulty=d.difficulty,
                rationale=d.rationale,
                topics=d.topics,
            )
            for d in drafts
        ]
    )


def _check_confidence(
    source_count: int,
    touched: set[int],
    repairs: list[Repair],
    config: EngineConfig,
) -> float:
    sample = MIN_REPAIR_SAMPLE if source_count <= SMALL_PAYLOAD_ITEMS else source_count
    ratio = round(len(touched) / sample, 4)
    if ratio > config.max_repair_ratio:
        raise LowConfidenceOutput(ratio, config.max_repair_ratio, repairs)
    return ratio


# ============================================================================
# Public API
# ============================================================================


def validate_roadmap_payload(
    payload: RawPayload | dict[str, Any] | str,
    *,
    context: StudentContext,
    graph: CourseGraph,
    config: EngineConfig,
    target_skills: list[str] | None = None,
    time_constraints: TimeConstraints | None = None,
    now: datetime | None = None,
) -> ValidatedRoadmap:
    """Turn provider output into a trustworthy roadmap.

    Raises:
        SchemaViolation: required fields missing or unusable.
        LowConfidenceOutput: too many items needed repair.
    """
    data = decode_payload(payload)

    for required in ("learning_path", "difficulty_progression", "personalization_reasoning"):
        if required not in data or data[required] is None:
            raise SchemaViolation(required)
    raw_items = data["learning_path"]
    if not isinstance(raw_items, list):
        raise SchemaViolation("learning_path", "learning_path must be an array")
    progression = data["difficulty_progression"]
    if not isinstance(progression, dict):
        raise SchemaViolation("difficulty_progression")
    start = _difficulty_field(progression.get("start"), "start")
    end = _difficulty_field(progression.get("end"), "end")
    reasoning = data["personalization_reasoning"]
    if not isinstance(reasoning, str):
        raise SchemaViolation("personalization_reasoning")

    repairs: list[Repair] = []
    warnings: list[str] = []
    touched: set[int] = set()

    drafts = _draft_items(raw_items, graph, config, repairs, warnings, touched)
    if not drafts:
        raise SchemaViolation("learning_path", "No usable items in learning_path")
    drafts = enforce_prerequisite_order(drafts, graph, repairs, touched)
    drafts = resolve_missing_prerequisites(
        drafts, graph, context.completed_content, config, repairs, warnings, touched
    )
    if not drafts:
        raise SchemaViolation("learning_path", "No usable items in learning_path")

    if start.rank > end.rank:
        repairs.append(Repair(None, "difficulty_progression", f"swapped {start.value}/{end.value}"))
        start, end = end, start

    ratio = _check_confidence(len(raw_items), touched, repairs, config)
    items = _to_items(drafts)

    filled: list[str] = []
    success_metrics = _str_list(data.get("success_metrics"))
    if not success_metrics:
        success_metrics = default_success_metrics(items, context)
        filled.append("success_metrics")

    strategy = GenerationStrategy.HYBRID if (repairs or warnings or filled) else GenerationStrategy.AI
    roadmap = Roadmap(
        student_id=context.student_id,
        learning_path=items,
        personalization_reasoning=reasoning.strip(),
        alternative_paths=_str_list(data.get("alternative_paths")),
        success_metrics=success_metrics,
        difficulty_progression=DifficultyProgression(start=start, end=end),
        personalization_factors=build_personalization_factors(context, target_skills, time_constraints),
        generation_strategy=strategy,
        created_at=now or utcnow(),
    )

    for warning in warnings:
        logger.warning("Provider item dropped", student_id=context.student_id, detail=warning)
    logger.info(
        "Provider roadmap validated",
        student_id=context.student_id,
        items=len(items),
        repairs=len(repairs),
        dropped=len(warnings),
        repair_ratio=ratio,
        strategy=strategy.value,
    )
    return ValidatedRoadmap(
        roadmap=roadmap,
        repairs=tuple(repairs),
        warnings=tuple(warnings),
        repair_ratio=ratio,
    )


def validate_remedial_payload(
    payload: RawPayload | dict[str, Any] | str,
    *,
    context: StudentContext,
    graph: CourseGraph,
    roadmap: Roadmap,
    config: EngineConfig,
) -> ValidatedRemedial:
    """Validate provider remedial suggestions.

    Catalog items must be unseen and have completed prerequisites; every
    item becomes kind ``remedial``. At most ``max_remedial_items`` are kept.
    Dropped or repaired suggestions make the result hybrid.
    """
    data = decode_payload(payload)
    raw_items = data.get("remedial_items", data.get("learning_path"))
    if not isinstance(raw_items, list):
        raise SchemaViolation("remedial_items")

    repairs: list[Repair] = []
    warnings: list[str] = []
    touched: set[int] = set()
    marked = [dict(item, kind=ItemKind.REMEDIAL.value) if isinstance(item, dict) else item for item in raw_items]
    drafts = _draft_items(marked, graph, config, repairs, warnings, touched)

    seen = set(context.completed_content) | set(context.in_progress_content) | set(roadmap.references())
    kept: list[_Draft] = []
    for draft in drafts:
        if draft.reference in graph:
            if draft.reference in seen:
                warnings.append(f"Dropped remedial {draft.reference!r}: already seen")
                touched.add(draft.source_index)
                continue
            if not graph.prerequisites(draft.reference) <= context.completed_content:
                warnings.append(f"Dropped remedial {draft.reference!r}: prerequisites not completed")
                touched.add(draft.source_index)
                continue
            draft.title = draft.title if draft.title.lower().startswith("review") else f"Review: {draft.title}"
        draft.kind = ItemKind.REMEDIAL
        kept.append(draft)

    if not kept:
        raise SchemaViolation("remedial_items", "No usable remedial items")
    ratio = _check_confidence(len(raw_items), touched, repairs, config)

    if len(kept) > config.max_remedial_items:
        warnings.append(f"Trimmed {len(kept) - config.max_remedial_items} remedial items over the cap")
        kept = kept[: config.max_remedial_items]

    for warning in warnings:
        logger.warning("Provider remedial item dropped", student_id=context.student_id, detail=warning)
    return ValidatedRemedial(
        items=_to_items(kept),
        repairs=tuple(repairs),
        warnings=tuple(warnings),
        repair_ratio=ratio,
    )
