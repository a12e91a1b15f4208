"""Validation and confidence scoring of extracted contract data.

Pure and deterministic: the same inputs always give the same result.
Checks run in a fixed order (vertical match, required fields, value
ranges) and both the error list and the adjustment list follow it.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from contractflow.utils.logging import get_logger

LOGGER = get_logger(__name__)

CONFIDENCE_THRESHOLD = 80.0

VERTICAL_MISMATCH_PENALTY = 30
MISSING_FIELD_PENALTY = 15
EMPTY_FIELD_PENALTY = 10
OUT_OF_RANGE_PENALTY = 10


@dataclass
class ConfidenceAdjustment:
    reason: str
    penalty: int
    field: Optional[str] = None


@dataclass
class ValidationIssue:
    field: str
    code: str
    message: str


@dataclass
class ValidationResult:
    contract_data: Dict[str, Any]
    final_confidence: float
    needs_review: bool
    validation_errors: List[ValidationIssue] = field(default_factory=list)
    confidence_adjustments: List[ConfidenceAdjustment] = field(default_factory=list)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _format_bound(value: Any, default: str) -> str:
    return default if value is None else str(value)


def validate_and_score(
    extracted_data: Mapping[str, Any],
    llm_confidence: float,
    required_fields: Sequence[str],
    validation_rules: Optional[Mapping[str, Mapping[str, Any]]] = None,
    threshold: float = CONFIDENCE_THRESHOLD,
) -> ValidationResult:
    """Validate extracted data and derive the final confidence.

    Args:
        extracted_data: Data returned by the model
        llm_confidence: Confidence reported by the model (0-100)
        required_fields: Fields that must be present and non-empty
        validation_rules: ``field -> {"min": n, "max": n}``, either bound optional
        threshold: Scores below this need human review

    Returns:
        ValidationResult; ``needs_review`` is true when the score is below
        the threshold or any validation error was found
    """
    errors: List[ValidationIssue] = []
    adjustments: List[ConfidenceAdjustment] = []

    if extracted_data.get("vertical_match") is False:
        errors.append(
            ValidationIssue(
                field="vertical_match",
                code="vertical_mismatch",
                message="Extracted content does not match the stated vertical",
            )
        )
        adjustments.append(
            ConfidenceAdjustment(reason="vertical_mismatch", penalty=VERTICAL_MISMATCH_PENALTY, field="vertical_match")
        )

    for name in required_fields:
        if name not in extracted_data:
            errors.append(
                ValidationIssue(field=name, code="missing_field", message=f"Required field '{name}' is missing")
            )
            adjustments.append(ConfidenceAdjustment(reason="missing_field", penalty=MISSING_FIELD_PENALTY, field=name))
        elif extracted_data[name] is None or extracted_data[name] == "":
            errors.append(
                ValidationIssue(field=name, code="empty_field", message=f"Required field '{name}' is empty")
            )
            adjustments.append(ConfidenceAdjustment(reason="empty_field", penalty=EMPTY_FIELD_PENALTY, field=name))

    for name, rule in (validation_rules or {}).items():
        value = extracted_data.get(name)
        if not _is_number(value):
            continue

        minimum = rule.get("min")
        maximum = rule.get("max")
        if (minimum is not None and value < minimum) or (maximum is not None and value > maximum):
            errors.append(
                ValidationIssue(
                    field=name,
                    code="out_of_range",
                    message=(
                        f"Field '{name}' value {value} is outside allowed range "
                        f"[{_format_bound(minimum, '-inf')}, {_format_bound(maximum, 'inf')}]"
                    ),
                )
            )
            adjustments.append(ConfidenceAdjustment(reason="out_of_range", penalty=OUT_OF_RANGE_PENALTY, field=name))

    total_penalty = sum(adjustment.penalty for adjustment in adjustments)
    final_confidence = max(0, min(100, llm_confidence - total_penalty))
    needs_review = final_confidence < threshold or len(errors) > 0

    if adjustments:
        LOGGER.debug(
            f"Confidence adjusted from {llm_confidence} to {final_confidence}",
            extra={"adjustment_count": len(adjustments), "total_penalty": total_penalty},
        )

    return ValidationResult(
        contract_data=dict(extracted_data),
        final_confidence=final_confidence,
        needs_review=needs_review,
        validation_errors=errors,
        confidence_adjustments=adjustments,
    )
