"""Free-text chat commands: "call <number> and tell <message>" and "hang up"."""

from __future__ import annotations

import re
from dataclasses import dataclass

USAGE_HINT = "Try: call 4355551212 and tell Dr. Lee the results are ready."

_CALL_RE = re.compile(
    r"call\s+([\d\s\-\(\)\+]+)\s*(?:,|\s+)?(?:and\s+)?(?:tell|say|ask)\s+(.+)",
    re.IGNORECASE,
)
_HANGUP_RE = re.compile(r"^\s*(?:hang\s*up|end\s+(?:the\s+)?call)\b", re.IGNORECASE)
_E164_RE = re.compile(r"^\+\d{8,15}$")


@dataclass(frozen=True, slots=True)
class CallCommand:
    raw_number: str
    to_number: str | None
    prompt: str


@dataclass(frozen=True, slots=True)
class HangupCommand:
    pass


def normalize_phone(value: str) -> str | None:
    """US-centric normalization to E.164; None when the number is unusable."""

    digits = re.sub(r"\D", "", value)
    if len(digits) == 10:
        return "+1" + digits
    if len(digits) == 11 and digits.startswith("1"):
        return "+" + digits
    candidate = value.strip()
    if _E164_RE.match(candidate):
        return candidate
    return None


def parse_command(text: str) -> CallCommand | HangupCommand | None:
    text = (text or "").strip()
    if _HANGUP_RE.match(text):
        return HangupCommand()

    # Tolerate trailing punctuation ("... are ready.")
    match = _CALL_RE.search(re.sub(r"[.,!?]$", "", text))
    if not match:
        return None

    raw_number = match.group(1).strip()
    return CallCommand(
        raw_number=raw_number,
        to_number=normalize_phone(raw_number),
        prompt=match.group(2).strip(),
    )
