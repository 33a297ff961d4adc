from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from resurrect.classifier.errors import parse_failure
from resurrect.models import ClassifiedError, WireModel
from resurrect.parsers.response_parser import RAW_RESPONSE_KEY, is_fallback


T = TypeVar("T", bound=WireModel)


@dataclass(frozen=True)
class Typed(Generic[T]):
    value: T


@dataclass(frozen=True)
class Fallback:
    """
    Model output that could not be turned into the stage's typed result.
    The stage still completes; callers show `raw_response` to a human.
    """

    raw_response: str
    reason: Literal["unparseable", "schema_mismatch"]
    payload: Dict[str, Any] = field(default_factory=dict)


StageOutcome = Union[Typed[T], Fallback]


def validate_stage_payload(model: Type[T], payload: Dict[str, Any], *, raw: str) -> "StageOutcome[T]":
    if is_fallback(payload):
        return Fallback(raw_response=str(payload.get(RAW_RESPONSE_KEY, raw)), reason="unparseable", payload=payload)
    try:
        return Typed(model.model_validate(payload))
    except ValidationError:
        return Fallback(raw_response=raw, reason="schema_mismatch", payload=payload)


def outcome_payload(outcome: "StageOutcome[Any]") -> Dict[str, Any]:
    """JSON-ready view of an outcome, used for step results and for chaining prompts."""
    if isinstance(outcome, Typed):
        return outcome.value.to_wire()
    if outcome.reason == "unparseable":
        return {RAW_RESPONSE_KEY: outcome.raw_response}
    return {**outcome.payload, RAW_RESPONSE_KEY: outcome.raw_response}


def outcome_warning(outcome: "StageOutcome[Any]") -> Optional[ClassifiedError]:
    if isinstance(outcome, Fallback):
        return parse_failure(f"model output {outcome.reason}")
    return None


def typed_value(outcome: "StageOutcome[T]") -> Optional[T]:
    return outcome.value if isinstance(outcome, Typed) else None


def outcome_from_wire(model: Type[T], data: Any) -> "StageOutcome[T]":
    """
    Rebuild an outcome from a payload that was previously serialized (for example
    the `errorAnalysis` string of the stage invocation endpoint).
    """
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json", by_alias=True)
    if not isinstance(data, dict):
        text = "" if data is None else str(data)
        return Fallback(raw_response=text, reason="unparseable", payload={RAW_RESPONSE_KEY: text})
    raw = data.get(RAW_RESPONSE_KEY)
    if isinstance(raw, str) and set(data.keys()) == {RAW_RESPONSE_KEY}:
        return Fallback(raw_response=raw, reason="unparseable", payload=data)
    clean = {k: v for k, v in data.items() if k != RAW_RESPONSE_KEY}
    return validate_stage_payload(model, clean, raw=raw if isinstance(raw, str) else "")
