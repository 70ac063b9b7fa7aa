"""
Status flow helpers for dynamic document types.

A status flow is stored as JSON with a fixed shape:

    {
        "initialStatus": "draft",
        "statuses": [{"key": "draft", "label": "Draft", "color": "gray"}, ...],
        "transitions": {"draft": ["submitted"], "submitted": ["approved", "rejected"]}
    }

``transitions`` is the adjacency list of a directed graph. A status that is
absent from the map, or mapped to an empty list, is terminal. Cycles are
allowed.
"""

from copy import deepcopy

from app.core.exceptions import ValidationError

DEFAULT_STATUS_FLOW = {
    "initialStatus": "draft",
    "statuses": [{"key": "draft", "label": "Draft", "color": "gray"}],
    "transitions": {},
}


def default_status_flow() -> dict:
    return deepcopy(DEFAULT_STATUS_FLOW)


def normalize_status_flow(raw: dict | None) -> dict:
    """Validate a status flow and return it in canonical shape.

    Returns the single-status default flow for ``None``. Every problem is
    collected before raising so the caller sees the whole list.

    Raises:
        ValidationError: With ``status_flow.*`` field errors.
    """
    if raw is None:
        return default_status_flow()
    if not isinstance(raw, dict):
        raise ValidationError.from_errors(
            [{"field": "status_flow", "message": "Status flow must be an object"}]
        )

    errors: list[dict] = []
    statuses_raw = raw.get("statuses")
    statuses: list[dict] = []
    keys: list[str] = []

    if not isinstance(statuses_raw, list) or not statuses_raw:
        errors.append({"field": "status_flow.statuses", "message": "At least one status is required"})
        statuses_raw = []

    for idx, entry in enumerate(statuses_raw):
        key = entry.get("key") if isinstance(entry, dict) else None
        if not isinstance(key, str) or not key.strip():
            errors.append({
                "field": f"status_flow.statuses[{idx}].key",
                "message": "Status key is required",
            })
            continue
        if key in keys:
            errors.append({
                "field": f"status_flow.statuses[{idx}].key",
                "message": f"Duplicate status key '{key}'",
            })
            continue
        keys.append(key)
        statuses.append({
            "key": key,
            "label": entry.get("label") or key,
            "color": entry.get("color") or "gray",
        })

    initial = raw.get("initialStatus")
    if not initial:
        errors.append({"field": "status_flow.initialStatus", "message": "Initial status is required"})
    elif keys and initial not in keys:
        errors.append({
            "field": "status_flow.initialStatus",
            "message": f"Initial status '{initial}' is not a defined status",
        })

    transitions_raw = raw.get("transitions") or {}
    transitions: dict[str, list[str]] = {}
    if not isinstance(transitions_raw, dict):
        errors.append({"field": "status_flow.transitions", "message": "Transitions must be an object"})
        transitions_raw = {}

    for source, targets in transitions_raw.items():
        if keys and source not in keys:
            errors.append({
                "field": f"status_flow.transitions.{source}",
                "message": f"Unknown source status '{source}'",
            })
        if not isinstance(targets, list):
            errors.append({
                "field": f"status_flow.transitions.{source}",
                "message": "Transition targets must be a list",
            })
            continue
        if not all(isinstance(t, str) for t in targets):
            errors.append({
                "field": f"status_flow.transitions.{source}",
                "message": "Transition targets must be status keys",
            })
            continue
        for target in targets:
            if keys and target not in keys:
                errors.append({
                    "field": f"status_flow.transitions.{source}",
                    "message": f"Unknown target status '{target}'",
                })
        # dedupe, keep author order
        transitions[source] = list(dict.fromkeys(targets))

    if errors:
        raise ValidationError.from_errors(errors)

    return {"initialStatus": initial, "statuses": statuses, "transitions": transitions}


def initial_status(flow: dict) -> str:
    return (flow or {}).get("initialStatus") or "draft"


def allowed_transitions(flow: dict, current: str) -> list[str]:
    """Table lookup: targets reachable directly from ``current`` (may be empty)."""
    return list(((flow or {}).get("transitions") or {}).get(current) or [])


def is_terminal(flow: dict, status: str) -> bool:
    return not allowed_transitions(flow, status)


def editable_statuses(flow: dict) -> list[str]:
    """Statuses in which a document may still be mutated.

    A status is editable if it is the initial status or has at least one
    outgoing transition. A status with no outgoing edges is never editable,
    even when it is the initial status of a one-state flow.
    """
    transitions = (flow or {}).get("transitions") or {}
    candidates = [initial_status(flow)] + list(transitions)
    return [s for s in dict.fromkeys(candidates) if not is_terminal(flow, s)]


def is_editable(flow: dict, status: str) -> bool:
    return status in editable_statuses(flow)
