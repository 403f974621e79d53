"""
Pending interaction detection.

A session is blocked on the user when its last assistant message contains a
tool_use that no later user message has answered with a tool_result. The
earliest such tool_use, in block order, is the pending interaction.

Tool-specific detail:
- AskUserQuestion: parsed into QuestionPrompt entries (question type)
- ExitPlanMode: the proposed plan markdown (plan_review type)
- anything else: the parsed tool input fields (permission type)
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any

import pydantic

from session_monitor.schemas.session import (
    ParsedMessage,
    PendingInteraction,
    QuestionOption,
    QuestionPrompt,
)
from session_monitor.schemas.types import PermissiveModel

__all__ = [
    'PLAN_TOOL_NAME',
    'QUESTION_TOOL_NAME',
    'detect_pending_interaction',
    'parse_questions',
]

logger = logging.getLogger(__name__)

QUESTION_TOOL_NAME = 'AskUserQuestion'
PLAN_TOOL_NAME = 'ExitPlanMode'


# ==============================================================================
# Tool Input Models
# ==============================================================================


class QuestionOptionInput(PermissiveModel):
    label: str
    description: str | None = None


class UserQuestionInput(PermissiveModel):
    question: str
    header: str | None = None
    options: Sequence[QuestionOptionInput] = ()
    multiSelect: bool = False


class AskUserQuestionToolInput(PermissiveModel):
    """Input for AskUserQuestion. Older CLI versions sent a single `question` string."""

    questions: Sequence[UserQuestionInput] = ()
    question: str | None = None


class ExitPlanModeToolInput(PermissiveModel):
    plan: str | None = None


# ==============================================================================
# Detection
# ==============================================================================


def detect_pending_interaction(messages: Sequence[ParsedMessage]) -> PendingInteraction | None:
    """
    Find the earliest unanswered tool_use in the last assistant message.

    Args:
        messages: Messages in log order, typically the tail of a session

    Returns:
        PendingInteraction, or None if the last assistant message has no
        tool uses or all of them have results
    """
    last_assistant_idx = next(
        (i for i in range(len(messages) - 1, -1, -1) if messages[i].type == 'assistant'),
        None,
    )
    if last_assistant_idx is None:
        return None

    tool_uses = messages[last_assistant_idx].tool_uses
    if not tool_uses:
        return None

    answered: set[str] = set()
    for msg in messages[last_assistant_idx + 1 :]:
        if msg.type != 'user':
            continue
        answered.update(result.tool_use_id for result in msg.tool_results)

    pending = next((use for use in tool_uses if use.id not in answered), None)
    if pending is None:
        return None

    tool_input = _load_input(pending.input_json)

    if pending.name == QUESTION_TOOL_NAME:
        questions = parse_questions(tool_input)
        return PendingInteraction(
            type='question',
            tool_use_id=pending.id,
            tool_name=pending.name,
            tool_input_json=pending.input_json,
            tool_input=tool_input,
            questions=questions,
            question_text=questions[0].question if questions else None,
        )

    if pending.name == PLAN_TOOL_NAME:
        return PendingInteraction(
            type='plan_review',
            tool_use_id=pending.id,
            tool_name=pending.name,
            tool_input_json=pending.input_json,
            tool_input=tool_input,
            plan=_parse_plan(tool_input),
        )

    return PendingInteraction(
        type='permission',
        tool_use_id=pending.id,
        tool_name=pending.name,
        tool_input_json=pending.input_json,
        tool_input=tool_input,
    )


def parse_questions(tool_input: Mapping[str, Any]) -> list[QuestionPrompt]:
    """
    Parse AskUserQuestion input into prompts.

    Returns an empty list when the input doesn't match the expected shape;
    the interaction is still reported, just without structured questions.
    """
    try:
        parsed = AskUserQuestionToolInput.model_validate(tool_input)
    except pydantic.ValidationError as e:
        logger.debug(f'Unrecognized {QUESTION_TOOL_NAME} input: {e.error_count()} errors')
        return []

    if not parsed.questions and parsed.question:
        return [QuestionPrompt(question=parsed.question)]

    return [
        QuestionPrompt(
            question=q.question,
            header=q.header,
            options=[QuestionOption(label=o.label, description=o.description) for o in q.options],
            multi_select=q.multiSelect,
        )
        for q in parsed.questions
    ]


def _parse_plan(tool_input: Mapping[str, Any]) -> str | None:
    try:
        return ExitPlanModeToolInput.model_validate(tool_input).plan
    except pydantic.ValidationError:
        return None


def _load_input(input_json: str) -> dict[str, Any]:
    try:
        value = json.loads(input_json)
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}
