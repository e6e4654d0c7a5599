"""Capability sanitizer: screens automation payloads before any backend runs them."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Pattern, Sequence, Tuple

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_PAYLOAD_BYTES = 10240

DENY_PATTERNS: Tuple[Tuple[str, Pattern[str]], ...] = (
    ("dynamic eval", re.compile(r"\beval\s*\(")),
    ("function constructor", re.compile(r"\bnew\s+Function\b|\bFunction\s*\(\s*['\"`]")),
    ("string timer", re.compile(r"\bset(?:Timeout|Interval)\s*\(\s*['\"`]")),
    ("html sink assignment", re.compile(r"\.(?:inner|outer)HTML\s*\+?=(?!=)")),
    ("document.write", re.compile(r"\bdocument\s*\.\s*write(?:ln)?\s*\(")),
    ("insertAdjacentHTML", re.compile(r"\binsertAdjacentHTML\s*\(")),
    ("dangerous scheme", re.compile(r"\b(?:javascript|vbscript)\s*:|\bdata\s*:\s*text/html", re.IGNORECASE)),
    ("prototype access", re.compile(r"__proto__|\bconstructor\s*\.\s*prototype\b|\bsetPrototypeOf\s*\(")),
    ("prototype key lookup", re.compile(r"\[\s*['\"`](?:__proto__|constructor|prototype)['\"`]\s*\]")),
)

_IIFE_SHAPE = re.compile(
    r"^\(\s*(?:async\s+)?(?:function\s*\w*\s*\([^)]*\)|\([^)]*\)\s*=>)\s*\{.*\}\s*\)\s*\(\s*\)\s*;?$",
    re.DOTALL,
)


@dataclass(frozen=True)
class SanitizeResult:
    valid: bool
    payload: Optional[str] = None
    error: Optional[str] = None


class CapabilitySanitizer:
    """Rejects unsafe payloads; a rejected payload is never handed to a backend."""

    def __init__(
        self,
        *,
        max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES,
        require_invocable: bool = True,
        deny_patterns: Sequence[Tuple[str, Pattern[str]]] = DENY_PATTERNS,
    ) -> None:
        self._max_payload_bytes = max_payload_bytes
        self._require_invocable = require_invocable
        self._deny_patterns = tuple(deny_patterns)

    def sanitize(self, payload: Any, context: str = "payload") -> SanitizeResult:
        if not isinstance(payload, str):
            return self._reject(context, "Payload must be a string")
        normalised = payload.strip()
        if not normalised:
            return self._reject(context, "Payload is empty")
        size = len(normalised.encode("utf-8"))
        if size > self._max_payload_bytes:
            return self._reject(context, f"Payload exceeds {self._max_payload_bytes} bytes ({size})")
        for label, pattern in self._deny_patterns:
            if pattern.search(normalised):
                return self._reject(context, f"Payload rejected: {label} is not allowed")
        if self._require_invocable and not _IIFE_SHAPE.match(normalised):
            return self._reject(context, "Payload must be a self-invoking function")
        return SanitizeResult(valid=True, payload=normalised)

    @staticmethod
    def _reject(context: str, reason: str) -> SanitizeResult:
        LOGGER.warning("Sanitizer rejected %s: %s", context, reason)
        return SanitizeResult(valid=False, error=reason)


_JS_ESCAPES = {
    "\\": "\\\\",
    "'": "\\'",
    '"': '\\"',
    "`": "\\`",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
    "<": "\\x3c",
}


def escape_js_string(value: Any) -> str:
    """Escape ``value`` for interpolation inside a quoted JavaScript string literal."""

    return "".join(_JS_ESCAPES.get(char, char) for char in str(value))
