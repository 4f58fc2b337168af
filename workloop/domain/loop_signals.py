"""Text and argument helpers for the reasoning loop.

Pure functions that interpret model output:
- completion phrase detection and summary extraction
- stripping tool-call-shaped leakage from assistant commentary
- argument parsing for the complete_task / request_clarification meta tools
- parsing generated-artifact markers out of tool results
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from workloop.core.models import ClarificationRequest

logger = logging.getLogger(__name__)

COMPLETE_TASK_TOOL = "complete_task"
REQUEST_CLARIFICATION_TOOL = "request_clarification"
CREATE_ISSUE_TOOL = "create_issue"
META_TOOLS = frozenset({COMPLETE_TASK_TOOL, REQUEST_CLARIFICATION_TOOL})

COMPLETION_PHRASES = (
    "TASK_COMPLETE",
    "TASK COMPLETE",
    "I HAVE COMPLETED",
    "THE TASK IS COMPLETE",
    "THE TASK HAS BEEN COMPLETED",
    "ALL DONE",
    "FINISHED SUCCESSFULLY",
)

SUMMARY_FALLBACK_LENGTH = 500
DEFAULT_COMPLETION_SUMMARY = "Task completed"
DEFAULT_CLARIFICATION_QUESTION = "Could you please clarify your request?"
FINAL_RESULT_FILENAME = "result.md"

ARTIFACT_START_MARKER = "---GENERATED_ARTIFACT_START---"
ARTIFACT_END_MARKER = "---GENERATED_ARTIFACT_END---"

REJECTED_PREFIX = "[REJECTED]"
TIMEOUT_PREFIX = "[TIMEOUT]"


def contains_completion_phrase(text: str) -> bool:
    upper = text.upper()
    return any(phrase in upper for phrase in COMPLETION_PHRASES)


def extract_completion_summary(text: str) -> str:
    """Pull a summary out of a completion message.

    Keeps every line from the first one mentioning SUMMARY or COMPLETED.
    Falls back to the first 500 characters.
    """
    lines = text.splitlines()
    for index, line in enumerate(lines):
        upper = line.upper()
        if "SUMMARY" in upper or "COMPLETED" in upper:
            summary = "\n".join(lines[index:]).strip()
            if summary:
                return summary
    return text.strip()[:SUMMARY_FALLBACK_LENGTH]


def fallback_summary(text: str) -> str:
    """Best-effort summary when the loop gives up on text-only responses."""
    truncated = text.strip()[:SUMMARY_FALLBACK_LENGTH]
    return truncated or DEFAULT_COMPLETION_SUMMARY


def strip_function_call_leakage(text: str) -> str:
    """Remove tool-call-shaped text some models echo before calling a tool."""
    cleaned = text
    marker = cleaned.find("Function:")
    if marker != -1:
        suffix = cleaned[marker:]
        if "{" in suffix and ('"name"' in suffix or '"toolName"' in suffix):
            cleaned = cleaned[:marker]

    brace = cleaned.rfind("{")
    if brace != -1:
        suffix = cleaned[brace:]
        mentions_call = any(key in suffix for key in ('"name"', '"function"', '"tool"'))
        if mentions_call and "}}" not in suffix:
            cleaned = cleaned[:brace]

    return cleaned.strip()


def is_failure_result(result: str) -> bool:
    return result.startswith((REJECTED_PREFIX, TIMEOUT_PREFIX))


def _load_object(json_arguments: str) -> dict[str, object] | None:
    try:
        data = json.loads(json_arguments) if json_arguments.strip() else {}
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def _unescape(text: str) -> str:
    return text.replace("\\n", "\n").replace("\\t", "\t")


@dataclass(frozen=True)
class CompletionSignal:
    summary: str
    success: bool = True
    artifact_content: str | None = None
    remaining_work: str | None = None


def parse_complete_task(json_arguments: str) -> CompletionSignal:
    data = _load_object(json_arguments)
    if data is None:
        logger.warning("complete_task arguments are not a JSON object")
        return CompletionSignal(summary=DEFAULT_COMPLETION_SUMMARY)

    summary = str(data.get("summary") or "").strip() or DEFAULT_COMPLETION_SUMMARY
    success = data.get("success")
    artifact = data.get("artifact")
    artifact_content = None
    if isinstance(artifact, str) and artifact.strip():
        artifact_content = _unescape(artifact)
    remaining = str(data.get("remaining_work") or "").strip()
    return CompletionSignal(
        summary=summary,
        success=success if isinstance(success, bool) else True,
        artifact_content=artifact_content,
        remaining_work=remaining or None,
    )


def parse_clarification_request(json_arguments: str) -> ClarificationRequest:
    data = _load_object(json_arguments)
    if data is None:
        return ClarificationRequest(question=DEFAULT_CLARIFICATION_QUESTION)

    question = str(data.get("question") or "").strip()
    raw_options = data.get("options")
    options: tuple[str, ...] | None = None
    if isinstance(raw_options, list):
        options = tuple(str(o) for o in raw_options if str(o).strip()) or None
    context = data.get("context")
    return ClarificationRequest(
        question=question or DEFAULT_CLARIFICATION_QUESTION,
        options=options,
        context=str(context) if context else None,
    )


@dataclass(frozen=True)
class GeneratedArtifact:
    filename: str
    content: str


def format_generated_artifact(filename: str, content: str, content_type: str) -> str:
    metadata = json.dumps({"filename": filename, "content_type": content_type})
    return f"{ARTIFACT_START_MARKER}\n{metadata}\n{content}\n{ARTIFACT_END_MARKER}"


def parse_generated_artifact(result: str) -> GeneratedArtifact | None:
    """Extract an artifact from a tool result carrying artifact markers."""
    start = result.find(ARTIFACT_START_MARKER)
    if start == -1:
        return None
    end = result.find(ARTIFACT_END_MARKER, start)
    if end == -1:
        return None
    body = result[start + len(ARTIFACT_START_MARKER) : end].strip("\n")
    metadata_line, _, content = body.partition("\n")
    metadata = _load_object(metadata_line)
    if metadata is None:
        return None
    filename = str(metadata.get("filename") or "").strip()
    if not filename:
        return None
    return GeneratedArtifact(filename=filename, content=content)
