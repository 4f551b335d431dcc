"""Serialization utilities for the product research engine.

Provides ``to_dict`` / ``from_dict`` conversion for the domain value
objects and entities that end up in run rows and checkpoints, plus the
versioned checkpoint envelope used by the orchestrator.

Design goals:
- Every ``to_dict`` output is JSON-serializable (enums as values, tuples as
  lists, no numpy scalars).
- ``from_dict`` reconstructors accept permissive input and raise
  ``ValueError`` for truly unrecoverable data.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import yaml

from product_research.domain.entities import FieldState, ResearchRun
from product_research.domain.enums import (
    ConflictSeverity,
    Disposition,
    EvaluationDecision,
    RunStatus,
    StepOutcome,
)
from product_research.domain.exceptions import CheckpointError
from product_research.domain.values import (
    Conflict,
    CrossValidationResult,
    FieldEvaluation,
    ResearchAction,
    Source,
    StepRecord,
)

logger = logging.getLogger(__name__)

CHECKPOINT_VERSION = 1


# =========================================================================== #
#  Generic helpers                                                             #
# =========================================================================== #

def _plain(value: Any) -> Any:
    """Make *value* JSON-friendly: tuples/sets become lists, enums values."""
    if hasattr(value, "value") and hasattr(value, "name") and type(value).__module__ != "builtins":
        return value.value
    if isinstance(value, (tuple, list, set, frozenset)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if hasattr(value, "item") and callable(value.item):
        # numpy scalar
        return value.item()
    return value


# =========================================================================== #
#  Evidence                                                                    #
# =========================================================================== #

def source_to_dict(s: Source) -> dict[str, Any]:
    return {
        "source_type": s.source_type,
        "value": _plain(s.value),
        "base_confidence": s.base_confidence,
        "group": s.group,
        "timestamp": s.timestamp,
        "payload": _plain(dict(s.payload)),
    }


def source_from_dict(data: dict[str, Any]) -> Source:
    return Source(
        source_type=str(data["source_type"]),
        value=data.get("value"),
        base_confidence=float(data.get("base_confidence", 0.5)),
        group=str(data.get("group", "")),
        timestamp=float(data.get("timestamp", 0.0)),
        payload=dict(data.get("payload", {})),
    )


def conflict_to_dict(c: Conflict) -> dict[str, Any]:
    return {
        "value_a": _plain(c.value_a),
        "value_b": _plain(c.value_b),
        "source_a": c.source_a,
        "source_b": c.source_b,
        "group_a": c.group_a,
        "group_b": c.group_b,
        "severity": c.severity.value,
        "detected_at": c.detected_at,
    }


def conflict_from_dict(data: dict[str, Any]) -> Conflict:
    return Conflict(
        value_a=data.get("value_a"),
        value_b=data.get("value_b"),
        source_a=str(data["source_a"]),
        source_b=str(data["source_b"]),
        group_a=str(data["group_a"]),
        group_b=str(data["group_b"]),
        severity=ConflictSeverity(data["severity"]),
        detected_at=float(data.get("detected_at", 0.0)),
    )


def validation_to_dict(r: CrossValidationResult) -> dict[str, Any]:
    return {
        "base_multiplier": r.base_multiplier,
        "multiplier": r.multiplier,
        "confidence": r.confidence,
        "group_count": r.group_count,
        "groups": list(r.groups),
        "conflicts": [conflict_to_dict(c) for c in r.conflicts],
        "agreement_score": r.agreement_score,
        "cross_group_pairs": r.cross_group_pairs,
    }


def validation_from_dict(data: dict[str, Any]) -> CrossValidationResult:
    return CrossValidationResult(
        base_multiplier=float(data["base_multiplier"]),
        multiplier=float(data["multiplier"]),
        confidence=float(data["confidence"]),
        group_count=int(data["group_count"]),
        groups=tuple(data.get("groups", ())),
        conflicts=tuple(conflict_from_dict(c) for c in data.get("conflicts", ())),
        agreement_score=float(data.get("agreement_score", 1.0)),
        cross_group_pairs=int(data.get("cross_group_pairs", 0)),
    )


def field_state_to_dict(f: FieldState) -> dict[str, Any]:
    return {
        "name": f.name,
        "required": f.required,
        "importance": f.importance,
        "value": _plain(f.value),
        "confidence": f.confidence,
        "sources": [source_to_dict(s) for s in f.sources],
        "complete": f.complete,
        "attempts": f.attempts,
        "validation": validation_to_dict(f.validation) if f.validation else None,
    }


def field_state_from_dict(data: dict[str, Any]) -> FieldState:
    value = data.get("value")
    if isinstance(value, list):
        value = tuple(value)
    validation = data.get("validation")
    return FieldState(
        name=str(data["name"]),
        required=bool(data.get("required", False)),
        importance=float(data.get("importance", 1.0)),
        value=value,
        confidence=float(data.get("confidence", 0.0)),
        sources=[source_from_dict(s) for s in data.get("sources", [])],
        complete=bool(data.get("complete", False)),
        attempts=int(data.get("attempts", 0)),
        validation=validation_from_dict(validation) if validation else None,
    )


# =========================================================================== #
#  Planner output                                                              #
# =========================================================================== #

def research_action_to_dict(a: ResearchAction) -> dict[str, Any]:
    return {
        "tool": a.tool,
        "target_field": a.target_field,
        "target_fields": list(a.target_fields),
        "estimated_cost": a.estimated_cost,
        "estimated_time_ms": a.estimated_time_ms,
        "score": a.score,
        "reasoning": a.reasoning,
    }


def research_action_from_dict(data: dict[str, Any]) -> ResearchAction:
    return ResearchAction(
        tool=str(data["tool"]),
        target_field=str(data["target_field"]),
        target_fields=tuple(data.get("target_fields", ())),
        estimated_cost=float(data.get("estimated_cost", 0.0)),
        estimated_time_ms=int(data.get("estimated_time_ms", 0)),
        score=float(data.get("score", 0.0)),
        reasoning=str(data.get("reasoning", "")),
    )


def field_evaluation_to_dict(e: FieldEvaluation) -> dict[str, Any]:
    return {
        "decision": e.decision.value,
        "reason": e.reason,
        "fields_needing_work": e.fields_needing_work,
        "completion_score": e.completion_score,
        "budget_remaining": e.budget_remaining,
        "iterations_remaining": e.iterations_remaining,
    }


def field_evaluation_from_dict(data: dict[str, Any]) -> FieldEvaluation:
    return FieldEvaluation(
        decision=EvaluationDecision(data["decision"]),
        reason=str(data.get("reason", "")),
        fields_needing_work=int(data.get("fields_needing_work", 0)),
        completion_score=float(data.get("completion_score", 0.0)),
        budget_remaining=float(data.get("budget_remaining", 0.0)),
        iterations_remaining=int(data.get("iterations_remaining", 0)),
    )


# =========================================================================== #
#  Run rows                                                                    #
# =========================================================================== #

def step_record_to_dict(r: StepRecord) -> dict[str, Any]:
    return {
        "phase": r.phase,
        "started_at": r.started_at,
        "completed_at": r.completed_at,
        "outcome": r.outcome.value,
        "error": r.error,
    }


def step_record_from_dict(data: dict[str, Any]) -> StepRecord:
    completed = data.get("completed_at")
    return StepRecord(
        phase=str(data["phase"]),
        started_at=float(data["started_at"]),
        completed_at=float(completed) if completed is not None else None,
        outcome=StepOutcome(data.get("outcome", StepOutcome.SUCCESS.value)),
        error=str(data.get("error", "")),
    )


def research_run_to_dict(r: ResearchRun) -> dict[str, Any]:
    return {
        "run_id": r.run_id,
        "subject_id": r.subject_id,
        "owner_id": r.owner_id,
        "run_kind": r.run_kind,
        "status": r.status.value,
        "current_phase": r.current_phase,
        "step_count": r.step_count,
        "step_history": [step_record_to_dict(s) for s in r.step_history],
        "checkpoint": r.checkpoint,
        "error": r.error,
        "pause_requested": r.pause_requested,
        "cancel_requested": r.cancel_requested,
        "cost_spent": r.cost_spent,
        "summary": r.summary,
        "disposition": r.disposition.value if r.disposition else None,
        "created_at": r.created_at,
        "updated_at": r.updated_at,
        "started_at": r.started_at,
        "completed_at": r.completed_at,
    }


def research_run_from_dict(data: dict[str, Any]) -> ResearchRun:
    disposition = data.get("disposition")
    return ResearchRun(
        run_id=str(data["run_id"]),
        subject_id=str(data["subject_id"]),
        owner_id=str(data["owner_id"]),
        run_kind=str(data.get("run_kind", "initial_research")),
        status=RunStatus(data.get("status", RunStatus.PENDING.value)),
        current_phase=data.get("current_phase"),
        step_count=int(data.get("step_count", 0)),
        step_history=[step_record_from_dict(s) for s in data.get("step_history", [])],
        checkpoint=data.get("checkpoint"),
        error=data.get("error"),
        pause_requested=bool(data.get("pause_requested", False)),
        cancel_requested=bool(data.get("cancel_requested", False)),
        cost_spent=float(data.get("cost_spent", 0.0)),
        summary=data.get("summary"),
        disposition=Disposition(disposition) if disposition else None,
        created_at=float(data.get("created_at", 0.0)),
        updated_at=float(data.get("updated_at", 0.0)),
        started_at=data.get("started_at"),
        completed_at=data.get("completed_at"),
    )


# =========================================================================== #
#  Registry-based dispatch                                                     #
# =========================================================================== #

_SERIALIZERS: dict[type, tuple[Any, Any]] = {
    Source: (source_to_dict, source_from_dict),
    Conflict: (conflict_to_dict, conflict_from_dict),
    CrossValidationResult: (validation_to_dict, validation_from_dict),
    FieldState: (field_state_to_dict, field_state_from_dict),
    ResearchAction: (research_action_to_dict, research_action_from_dict),
    FieldEvaluation: (field_evaluation_to_dict, field_evaluation_from_dict),
    StepRecord: (step_record_to_dict, step_record_from_dict),
    ResearchRun: (research_run_to_dict, research_run_from_dict),
}


def serialize(obj: Any) -> dict[str, Any]:
    """Convert a known domain object to a JSON-friendly dict."""
    ser = _SERIALIZERS.get(type(obj))
    if ser is None:
        raise TypeError(f"No serializer registered for {type(obj).__name__}")
    return ser[0](obj)


def deserialize(data: dict[str, Any], target_type: type) -> Any:
    """Rebuild an instance of *target_type* from :func:`serialize` output."""
    ser = _SERIALIZERS.get(target_type)
    if ser is None or ser[1] is None:
        raise TypeError(f"No deserializer registered for {target_type.__name__}")
    return ser[1](data)


def to_json(obj: Any, *, indent: int | None = 2) -> str:
    return json.dumps(serialize(obj), indent=indent, default=str)


def from_json(json_str: str, target_type: type) -> Any:
    return deserialize(json.loads(json_str), target_type)


def to_yaml(obj: Any) -> str:
    return yaml.safe_dump(serialize(obj), default_flow_style=False, sort_keys=False)


# =========================================================================== #
#  Checkpoint envelope                                                         #
# =========================================================================== #

def encode_checkpoint(next_phase: str | None, state: dict[str, Any]) -> str:
    """Wrap phase-local working state into an opaque checkpoint blob."""
    envelope = {
        "version": CHECKPOINT_VERSION,
        "next_phase": next_phase,
        "state": _plain(state),
    }
    return json.dumps(envelope, separators=(",", ":"), default=str)


def decode_checkpoint(blob: str) -> tuple[str | None, dict[str, Any]]:
    """Unwrap a checkpoint blob into ``(next_phase, state_dict)``.

    Raises
    ------
    CheckpointError
        If the blob is not valid JSON or carries an unknown version.
    """
    try:
        envelope = json.loads(blob)
    except (TypeError, ValueError) as exc:
        raise CheckpointError(f"Checkpoint is not valid JSON: {exc}") from exc
    if not isinstance(envelope, dict) or envelope.get("version") != CHECKPOINT_VERSION:
        raise CheckpointError(
            "Unsupported checkpoint version",
            details={"version": envelope.get("version") if isinstance(envelope, dict) else None},
        )
    state = envelope.get("state")
    if not isinstance(state, dict):
        raise CheckpointError("Checkpoint has no state object")
    return envelope.get("next_phase"), state
