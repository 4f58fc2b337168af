"""Verification response parsing.

The verifier asks the model for three labelled lines::

    STATUS: YES | PARTIAL | NO
    SUMMARY: <what was accomplished>
    REMAINING: <what is left, or "none">

Labels are matched case-insensitively by line prefix. A STATUS containing
YES is achieved, one containing NO is not achieved, and anything else
(including a missing STATUS line) is partial.
"""

from __future__ import annotations

from workloop.core.models import VerificationResult, VerificationStatus

_STATUS_PREFIX = "STATUS:"
_SUMMARY_PREFIX = "SUMMARY:"
_REMAINING_PREFIX = "REMAINING:"

_NO_REMAINING_VALUES = frozenset({"", "none", "none.", "n/a", "nothing"})


def _status_from(value: str) -> VerificationStatus:
    upper = value.upper()
    if "YES" in upper:
        return VerificationStatus.ACHIEVED
    if "NO" in upper:
        return VerificationStatus.NOT_ACHIEVED
    return VerificationStatus.PARTIAL


def parse_verification(content: str) -> VerificationResult:
    status = VerificationStatus.PARTIAL
    summary = ""
    remaining: str | None = None

    for line in content.splitlines():
        stripped = line.strip()
        upper = stripped.upper()
        if upper.startswith(_STATUS_PREFIX):
            status = _status_from(stripped[len(_STATUS_PREFIX) :])
        elif upper.startswith(_SUMMARY_PREFIX):
            summary = stripped[len(_SUMMARY_PREFIX) :].strip()
        elif upper.startswith(_REMAINING_PREFIX):
            value = stripped[len(_REMAINING_PREFIX) :].strip()
            remaining = None if value.lower() in _NO_REMAINING_VALUES else value

    if not summary:
        summary = content.strip() or "No verification summary provided."
    return VerificationResult(status=status, summary=summary, remaining_work=remaining)
