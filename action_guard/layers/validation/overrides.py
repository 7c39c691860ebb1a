"""
User override serialization.

User overrides are free-form preferences attached to a validation request
(e.g. ``{"doNotContactBefore": "2024-06-01"}``). They are embedded into LLM
prompts and audit records, so both renderings are size-bounded.
"""

import json
from typing import Optional

NO_OVERRIDES = "No user overrides specified."

MAX_PROMPT_ENTRIES = 20
MAX_PROMPT_VALUE_CHARS = 100
MAX_OVERRIDE_ENTRIES = 50
MAX_KEY_CHARS = 100
MAX_VALUE_CHARS = 1000


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length - 3] + "..."


def _to_text(value) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def serialize_for_llm_prompt(overrides: Optional[dict], max_length: int = 4096) -> str:
    """Render overrides as a bullet list for an LLM prompt."""
    if not overrides:
        return NO_OVERRIDES

    lines = ["User Override Preferences:"]
    for key, value in list(overrides.items())[:MAX_PROMPT_ENTRIES]:
        lines.append(f"- {key}: {_truncate(_to_text(value), MAX_PROMPT_VALUE_CHARS)}")

    if len(overrides) > MAX_PROMPT_ENTRIES:
        lines.append(f"... and {len(overrides) - MAX_PROMPT_ENTRIES} more preferences")

    return _truncate("\n".join(lines) + "\n", max_length)


def serialize_for_audit_log(overrides: Optional[dict], max_length: int = 1024) -> str:
    """Compact JSON rendering for audit records."""
    if not overrides:
        return "{}"

    try:
        text = json.dumps(overrides, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        return '{"error":"Failed to serialize userOverrides"}'
    return _truncate(text, max_length)


def validate_user_overrides(overrides: Optional[dict]) -> tuple[bool, list[str]]:
    """
    Check overrides against size limits.

    Returns:
        (is_valid, issues)
    """
    if overrides is None:
        return False, ["UserOverrides cannot be null"]

    issues = []
    if len(overrides) > MAX_OVERRIDE_ENTRIES:
        issues.append(f"Too many override entries: {len(overrides)} (max {MAX_OVERRIDE_ENTRIES})")

    for key in overrides:
        if key is None or not str(key).strip():
            issues.append("Override keys cannot be null or empty")
        elif len(str(key)) > MAX_KEY_CHARS:
            issues.append(f"Override key too long: {str(key)[:20]}... (max {MAX_KEY_CHARS} chars)")

    for key, value in overrides.items():
        if value is not None and len(_to_text(value)) > MAX_VALUE_CHARS:
            issues.append(f"Override value too long for key '{key}' (max {MAX_VALUE_CHARS} chars)")

    return not issues, issues
