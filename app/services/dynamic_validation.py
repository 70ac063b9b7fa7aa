"""
Dynamic Validation Engine.

Pure functions that check a JSON payload against the field definitions of a
dynamic document type. Nothing here touches the database.

Contract:
    validate_header(fields, data)  -> list[FieldError]
    validate_lines(fields, lines)  -> list[FieldError]
    validate_payload(fields, data, lines) -> list[FieldError]

A FieldError is ``{"field": str, "message": str}``. Line errors carry the
line index in the field name: ``lines[2].qty``. An empty list means valid.

Every field is checked; violations are collected, never short-circuited.
Field kinds form a closed set dispatched through ``_VALIDATORS``.

``fields`` may be FieldDefinition rows or their ``to_dict()`` form.
"""

import math
import re
from datetime import datetime
from urllib.parse import urlparse

from app.utils.helpers import parse_date

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_RE = re.compile(r"^\+?[\d\s\-()]{7,20}$")
_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


def _attr(field, name, default=None):
    if isinstance(field, dict):
        return field.get(name, default)
    return getattr(field, name, default)


def _is_empty(value) -> bool:
    return value is None or value == ""


def _option_values(options) -> list:
    values = []
    for opt in options or []:
        values.append(opt.get("value") if isinstance(opt, dict) else opt)
    return values


# ── Conditional display ──────────────────────────────────────────────────────

def is_field_visible(field, payload: dict) -> bool:
    """Evaluate ``conditional_display`` against the rest of the payload.

    Supported operators: eq, ne, in. Unknown operators leave the field visible.
    """
    cond = _attr(field, "conditional_display")
    if not cond or not isinstance(cond, dict):
        return True
    depends_on = cond.get("dependsOn")
    if not isinstance(depends_on, str):
        return True
    dep_value = (payload or {}).get(depends_on)
    operator = cond.get("operator")
    expected = cond.get("value")
    if operator == "eq":
        return dep_value == expected
    if operator == "ne":
        return dep_value != expected
    if operator == "in":
        return isinstance(expected, list) and dep_value in expected
    return True


# ── Rule helpers ─────────────────────────────────────────────────────────────

def _rule_int(rules: dict, name: str):
    value = rules.get(name)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _rule_number(rules: dict, name: str):
    value = rules.get(name)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return None


def _length_and_pattern(key: str, label: str, text: str, rules: dict) -> list[dict]:
    # Rule values of the wrong type are ignored here; the registry rejects them on write.
    errors = []
    min_len = _rule_int(rules, "minLength")
    max_len = _rule_int(rules, "maxLength")
    if min_len is not None and len(text) < min_len:
        errors.append({"field": key, "message": f"{label} must be at least {min_len} characters"})
    if max_len is not None and len(text) > max_len:
        errors.append({"field": key, "message": f"{label} must be at most {max_len} characters"})
    pattern = rules.get("pattern")
    if pattern and isinstance(pattern, str):
        try:
            matched = re.search(pattern, text) is not None
        except re.error:
            errors.append({"field": key, "message": f"{label} has an invalid validation pattern"})
        else:
            if not matched:
                errors.append({"field": key, "message": f"{label} format is invalid"})
    return errors


# ── Kind validators ──────────────────────────────────────────────────────────
# Each returns a list of FieldErrors for a present (non-empty) value.

def _check_number(key, label, value, rules, options):
    if isinstance(value, bool):
        return [{"field": key, "message": f"{label} must be a number"}]
    try:
        num = float(value)
    except (TypeError, ValueError):
        return [{"field": key, "message": f"{label} must be a number"}]
    if math.isnan(num):
        return [{"field": key, "message": f"{label} must be a number"}]
    errors = []
    low = _rule_number(rules, "min")
    high = _rule_number(rules, "max")
    if low is not None and num < low:
        errors.append({"field": key, "message": f"{label} must be at least {low}"})
    if high is not None and num > high:
        errors.append({"field": key, "message": f"{label} must be at most {high}"})
    return errors


def _check_text(key, label, value, rules, options):
    return _length_and_pattern(key, label, str(value), rules)


def _formatted_text(message_suffix, predicate):
    def check(key, label, value, rules, options):
        text = str(value)
        if not predicate(text):
            return [{"field": key, "message": f"{label} {message_suffix}"}]
        return _length_and_pattern(key, label, text, rules)
    return check


def _is_url(text: str) -> bool:
    parsed = urlparse(text)
    return bool(parsed.scheme) and bool(parsed.netloc or parsed.path)


def _check_date(key, label, value, rules, options):
    if parse_date(value) is None:
        return [{"field": key, "message": f"{label} must be a valid date"}]
    return []


def _check_datetime(key, label, value, rules, options):
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        datetime.fromisoformat(text)
    except ValueError:
        return [{"field": key, "message": f"{label} must be a valid date"}]
    return []


def _check_select(key, label, value, rules, options):
    if options and value not in _option_values(options):
        return [{"field": key, "message": f"{label} has an invalid selection"}]
    return []


def _check_multiselect(key, label, value, rules, options):
    if not isinstance(value, list):
        return [{"field": key, "message": f"{label} must be an array"}]
    if not options:
        return []
    valid = _option_values(options)
    return [
        {"field": key, "message": f"{label} contains invalid value: {v}"}
        for v in value
        if v not in valid
    ]


def _check_checkbox(key, label, value, rules, options):
    if not isinstance(value, bool):
        return [{"field": key, "message": f"{label} must be true or false"}]
    return []


def _check_lookup(key, label, value, rules, options):
    if not isinstance(value, str) or not _UUID_RE.match(value):
        return [{"field": key, "message": f"{label} must be a valid reference ID"}]
    return []


def _check_attachment(key, label, value, rules, options):
    if not isinstance(value, str) or not value.strip():
        return [{"field": key, "message": f"{label} is required"}]
    return []


_VALIDATORS = {
    "number": _check_number,
    "currency": _check_number,
    "text": _check_text,
    "textarea": _check_text,
    "email": _formatted_text("must be a valid email", lambda s: bool(_EMAIL_RE.match(s))),
    "phone": _formatted_text("must be a valid phone number", lambda s: bool(_PHONE_RE.match(s))),
    "url": _formatted_text("must be a valid URL", _is_url),
    "date": _check_date,
    "datetime": _check_datetime,
    "select": _check_select,
    "multiselect": _check_multiselect,
    "checkbox": _check_checkbox,
    "lookup_project": _check_lookup,
    "lookup_warehouse": _check_lookup,
    "lookup_supplier": _check_lookup,
    "lookup_employee": _check_lookup,
    "lookup_item": _check_lookup,
    "file": _check_attachment,
    "signature": _check_attachment,
}


# ── Public API ───────────────────────────────────────────────────────────────

def validate_data(fields, data: dict | None, is_line_item: bool = False) -> list[dict]:
    """Validate one JSON object against the header or line-item subset of ``fields``."""
    data = data if isinstance(data, dict) else {}
    errors: list[dict] = []

    for field in fields:
        if bool(_attr(field, "is_line_item", False)) != is_line_item:
            continue

        key = _attr(field, "field_key")
        label = _attr(field, "label") or key
        value = data.get(key)

        if _is_empty(value):
            if _attr(field, "is_required", False) and is_field_visible(field, data):
                errors.append({"field": key, "message": f"{label} is required"})
            continue

        validator = _VALIDATORS.get(_attr(field, "field_type"))
        if validator is None:
            continue
        rules = _attr(field, "validation_rules")
        if not isinstance(rules, dict):
            rules = {}
        errors.extend(validator(key, label, value, rules, _attr(field, "options")))

    return errors


def validate_header(fields, data: dict | None) -> list[dict]:
    return validate_data(fields, data, is_line_item=False)


def validate_lines(fields, lines: list | None) -> list[dict]:
    """Validate every line independently against the line-item fields."""
    errors: list[dict] = []
    for idx, line in enumerate(lines or []):
        for err in validate_data(fields, line, is_line_item=True):
            errors.append({"field": f"lines[{idx}].{err['field']}", "message": err["message"]})
    return errors


def validate_payload(fields, data: dict | None, lines: list | None = None) -> list[dict]:
    """Header errors followed by line errors, in one list."""
    return validate_header(fields, data) + validate_lines(fields, lines)
