"""
RuleVault - Normalization of oracle responses.

The external agent answers with whichever output template it picked, so the
same logical field may live at the top of ``result`` or inside an
``aggregated_analysis`` wrapper, and rule/breach fields come under several
aliases. Everything here maps those shapes onto the canonical
``ExtractionResult`` / ``ValidationResult`` types before any workflow logic
sees them. Missing or malformed fields degrade to empty values rather than
raising.
"""

import logging
from typing import Any, Callable, Optional

from .models import (
    AmbiguityFlag,
    BreachRecord,
    ExtractionResult,
    RuleCategory,
    RuleRecord,
    Severity,
    SourceSection,
    ValidationResult,
)

logger = logging.getLogger("rulevault.normalize")

SUCCESS_STATUS = "success"

_AGGREGATE_KEY = "aggregated_analysis"

# Candidate locations for each logical field, in lookup order.
_RULE_PATHS = (
    ("extracted_rules",),
    (_AGGREGATE_KEY, "rules_table"),
    ("rules",),
    (_AGGREGATE_KEY, "extracted_rules"),
)
_SCORE_PATHS = (
    ("overall_compliance_score",),
    (_AGGREGATE_KEY, "overall_compliance_score"),
    ("compliance_score",),
)
_BREACH_PATHS = (
    (_AGGREGATE_KEY, "breach_summary"),
    ("breach_summary",),
    ("breaches",),
)
_AMBIGUITY_PATHS = (
    (_AGGREGATE_KEY, "ambiguity_flags"),
    ("ambiguity_flags",),
)


def unwrap(payload: Any) -> dict[str, Any]:
    """Strip the optional ``{"response": {...}}`` envelope."""
    if not isinstance(payload, dict):
        return {}
    inner = payload.get("response")
    if isinstance(inner, dict) and "status" in inner:
        return inner
    return payload


def is_success(payload: Any) -> bool:
    status = unwrap(payload).get("status")
    return isinstance(status, str) and status.strip().lower() == SUCCESS_STATUS


def _result(payload: Any) -> dict[str, Any]:
    result = unwrap(payload).get("result")
    return result if isinstance(result, dict) else {}


def _is_list(value: Any) -> bool:
    return isinstance(value, list)


def _lookup(
    data: dict[str, Any], paths: tuple, accept: Callable[[Any], bool] = _is_list
) -> tuple[bool, Any]:
    """First value along ``paths`` that ``accept`` takes; placeholders fall through."""
    for path in paths:
        current: Any = data
        for key in path:
            if not isinstance(current, dict) or key not in current:
                break
            current = current[key]
        else:
            if current is not None and accept(current):
                return True, current
    return False, None


def _first(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return default


def parse_score(value: Any) -> Optional[float]:
    """Parse a 0-100 score that may arrive as a number or a string like "82%"."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().rstrip("%").strip()
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if score != score:  # NaN
        return None
    return max(0.0, min(100.0, score))


def _is_score(value: Any) -> bool:
    return parse_score(value) is not None


def _parse_page(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_rule(data: dict[str, Any], position: int) -> RuleRecord:
    rule_id = _first(data, "rule_id", "id")
    if not rule_id:
        rule_id = f"R{position + 1:03d}"
    source = data.get("source_section")
    funds = data.get("applicable_funds")
    return RuleRecord(
        rule_id=str(rule_id),
        name=str(_first(data, "rule_name", "name", default="")),
        category=RuleCategory.parse(_first(data, "rule_type", "category")),
        threshold=str(_first(data, "value_threshold", "threshold", default="")),
        confidence=parse_score(_first(data, "confidence_score", "confidence")),
        source=(
            SourceSection(
                page=_parse_page(source.get("page")),
                paragraph=str(source.get("paragraph") or ""),
                exact_quote=str(source.get("exact_quote") or ""),
            )
            if isinstance(source, dict)
            else None
        ),
        exception_conditions=data.get("exception_conditions") or None,
        applicable_funds=[str(f) for f in funds] if isinstance(funds, list) else [],
    )


def parse_rules(items: Any) -> list[RuleRecord]:
    """Parse a rule list, dropping non-dict entries and duplicate identifiers."""
    if not isinstance(items, list):
        return []
    rules: list[RuleRecord] = []
    seen: set[str] = set()
    for position, item in enumerate(items):
        if not isinstance(item, dict):
            logger.debug("Skipping non-object rule entry at position %d", position)
            continue
        rule = parse_rule(item, position)
        if rule.rule_id in seen:
            logger.warning("Dropping duplicate rule id %s", rule.rule_id)
            continue
        seen.add(rule.rule_id)
        rules.append(rule)
    return rules


def parse_breach(data: dict[str, Any]) -> BreachRecord:
    return BreachRecord(
        fund_name=str(_first(data, "fund_name", "fund", default="")),
        rule_name=str(_first(data, "rule_violated", "rule", default="")),
        current_value=str(_first(data, "current_value", default="")),
        limit=str(_first(data, "limit", default="")),
        severity=Severity.parse(data.get("severity")),
        remediation=_first(data, "remediation_suggestion", "remediation"),
        variance=data.get("variance"),
        exception_applicability=data.get("exception_applicability"),
    )


def parse_breaches(items: Any) -> list[BreachRecord]:
    if not isinstance(items, list):
        return []
    return [parse_breach(item) for item in items if isinstance(item, dict)]


def parse_ambiguity_flags(items: Any) -> list[AmbiguityFlag]:
    if not isinstance(items, list):
        return []
    flags = []
    for item in items:
        if isinstance(item, dict):
            flags.append(AmbiguityFlag.from_dict(item))
        elif isinstance(item, str):
            flags.append(AmbiguityFlag(issue=item))
    return flags


def has_extraction_shape(payload: Any) -> bool:
    """True when a successful payload carries a rule list at any known location."""
    if not is_success(payload):
        return False
    found, _ = _lookup(_result(payload), _RULE_PATHS)
    return found


def response_message(payload: Any, default: str = "") -> str:
    message = unwrap(payload).get("message")
    if isinstance(message, str) and message.strip():
        return message
    return default


def normalize_extraction(payload: Any) -> ExtractionResult:
    """Map any accepted extraction response onto an ExtractionResult."""
    _, items = _lookup(_result(payload), _RULE_PATHS)
    return ExtractionResult(
        rules=parse_rules(items),
        message=response_message(payload),
        raw=unwrap(payload),
    )


def normalize_validation(payload: Any) -> ValidationResult:
    """Map any accepted validation response onto a ValidationResult."""
    result = _result(payload)
    _, score = _lookup(result, _SCORE_PATHS, accept=_is_score)
    _, breaches = _lookup(result, _BREACH_PATHS)
    _, flags = _lookup(result, _AMBIGUITY_PATHS)
    return ValidationResult(
        compliance_score=parse_score(score),
        breaches=parse_breaches(breaches),
        ambiguity_flags=parse_ambiguity_flags(flags),
        message=response_message(payload),
        raw=unwrap(payload),
    )
