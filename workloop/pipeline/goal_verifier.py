"""Goal verifier: judges whether an executed issue met its goal.

After the executor finishes, the verifier replays a condensed work log to
the model and parses a STATUS / SUMMARY / REMAINING answer. The parsed
status drives the coordinator's final issue transition:

- achieved: close the issue
- partial: close the issue and open a follow-up for the remaining work
- not achieved: reopen the issue for a future attempt
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from workloop.core.errors import VerificationError, WorkloopError
from workloop.core.models import ChatMessage, ModelParams
from workloop.domain.prompts import build_verification_prompt
from workloop.domain.verification import parse_verification

if TYPE_CHECKING:
    from collections.abc import Sequence

    from workloop.core.models import Issue, VerificationResult
    from workloop.core.protocols import ModelClient

logger = logging.getLogger(__name__)

VERIFICATION_TEMPERATURE = 0.1
VERIFICATION_MAX_TOKENS = 1024
# Per-entry cap when rendering the work log.
_TRANSCRIPT_ENTRY_CHARS = 1000
_TRANSCRIPT_MAX_ENTRIES = 40


def format_transcript(messages: Sequence[ChatMessage]) -> str:
    """Render the most recent conversation entries as a plain-text work log."""
    entries: list[str] = []
    for message in messages:
        if message.role == "system":
            continue
        if message.role == "tool":
            entries.append(f"TOOL RESULT: {message.content or ''}")
            continue
        if message.content:
            entries.append(f"{message.role.upper()}: {message.content}")
        for call in message.tool_calls:
            entries.append(f"TOOL CALL: {call.name} {call.arguments}")

    recent = entries[-_TRANSCRIPT_MAX_ENTRIES:]
    return "\n\n".join(
        entry
        if len(entry) <= _TRANSCRIPT_ENTRY_CHARS
        else entry[:_TRANSCRIPT_ENTRY_CHARS] + "..."
        for entry in recent
    )


class GoalVerifier:
    def __init__(self, model_client: ModelClient, *, model: str | None = None) -> None:
        self._model_client = model_client
        self._model = model

    async def verify(
        self, issue: Issue, conversation: Sequence[ChatMessage]
    ) -> VerificationResult:
        """Ask the model whether ``issue``'s goal was achieved.

        Args:
            issue: The executed issue.
            conversation: Conversation produced by the executor.

        Returns:
            Parsed verification result. The summary is never empty.

        Raises:
            VerificationError: If the model call fails with an unexpected error.
        """
        prompt = build_verification_prompt(
            title=issue.title,
            description=issue.description,
            transcript=format_transcript(conversation),
        )
        params = ModelParams(
            model=self._model,
            temperature=VERIFICATION_TEMPERATURE,
            max_tokens=VERIFICATION_MAX_TOKENS,
        )
        try:
            response = await self._model_client.complete_once(
                [ChatMessage.user(prompt)], params
            )
        except WorkloopError:
            raise
        except Exception as e:
            raise VerificationError(str(e)) from e

        result = parse_verification(response or "")
        logger.info("Verification for %s: %s", issue.id, result.status.value)
        return result
