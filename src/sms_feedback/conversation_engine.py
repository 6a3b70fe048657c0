import logging
from typing import Any

from sms_feedback.enums import QuestionType, StepKind
from sms_feedback.pydantic_models import (
    CompleteSession,
    ConversationState,
    CreateSession,
    OrganizationBinding,
    QuestionDefinition,
    Step,
    StepResult,
    StoreResponse,
)
from sms_feedback.validation import DEFAULT_SCALE, validate_response

logger = logging.getLogger(__name__)

AFFIRMATIVE_TOKENS = frozenset({"1", "yes", "y"})
START_KEYWORDS = frozenset({"start"})


def consent_invitation_message(organization: OrganizationBinding) -> str:
    return (
        f"{organization.name} would love your feedback. "
        "Reply 1 (YES) to start a short survey or 2 (NO) to opt out."
    )


def no_questions_message(organization: OrganizationBinding) -> str:
    return (
        f"Thank you for your interest. {organization.name} has no feedback "
        "questions configured right now."
    )


def declined_message(organization: OrganizationBinding) -> str:
    return f"Thank you. {organization.name} will not ask you any survey questions."


def closing_message(organization: OrganizationBinding) -> str:
    return f"Thank you for your feedback! {organization.name} appreciates your time."


def already_completed_message(organization: OrganizationBinding) -> str:
    return (
        f"You have already completed this {organization.name} survey. Thank you! "
        "Reply START to take it again."
    )


def normalise(text: str | None) -> str:
    return (text or "").strip().lower()


def is_start_command(text: str | None) -> bool:
    return normalise(text) in START_KEYWORDS


def format_question(question: QuestionDefinition, index: int, total: int) -> str:
    """
    Renders a question as an SMS prompt with a 1-based sequence label and
    the reply instructions for its type.
    """
    lines = [f"Question {index + 1} of {total}: {question.text}"]

    if question.question_type == QuestionType.SINGLE_CHOICE:
        lines.extend(
            f"{number}. {option.text}"
            for number, option in enumerate(question.options, start=1)
        )
        lines.append(f"Reply with a number from 1 to {len(question.options)}.")
    elif question.question_type == QuestionType.SCALE:
        scale = question.scale or DEFAULT_SCALE
        low = f"{scale.min_value} ({scale.min_label})" if scale.min_label else str(scale.min_value)
        high = f"{scale.max_value} ({scale.max_label})" if scale.max_label else str(scale.max_value)
        lines.append(f"Reply with a number from {low} to {high}.")
    else:
        lines.append("Please type your response.")

    return "\n".join(lines)


def total_score(responses: dict[str, Any]) -> float:
    """Sums the captured answers that are numbers. Text answers never count."""
    return sum(
        value
        for value in responses.values()
        if isinstance(value, (int, float)) and not isinstance(value, bool)
    )


def step(
    state: ConversationState,
    inbound_text: str | None,
    catalog: list[QuestionDefinition],
    organization: OrganizationBinding,
) -> StepResult:
    """
    Computes the next conversational position, the reply and the side effects
    for one inbound message. Performs no I/O.
    """
    router = {
        StepKind.CONSENT: _step_from_consent,
        StepKind.QUESTION: _step_from_question,
        StepKind.COMPLETED: _step_from_completed,
    }
    return router[state.step.kind](state, inbound_text, catalog, organization)


def _step_from_consent(
    state: ConversationState,
    inbound_text: str | None,
    catalog: list[QuestionDefinition],
    organization: OrganizationBinding,
) -> StepResult:
    reply = normalise(inbound_text)

    if reply in START_KEYWORDS:
        return StepResult(
            next_step=state.step,
            outbound_message=consent_invitation_message(organization),
            responses=dict(state.responses),
        )

    if reply not in AFFIRMATIVE_TOKENS:
        logger.info(f"Consent declined by {state.phone_number} with reply '{reply}'.")
        return StepResult(
            next_step=Step.completed(),
            outbound_message=declined_message(organization),
            responses=dict(state.responses),
        )

    if not catalog:
        logger.warning(
            f"Organization {organization.id} has no active questions; ending conversation."
        )
        return StepResult(
            next_step=Step.completed(),
            outbound_message=no_questions_message(organization),
            responses=dict(state.responses),
            consent_given=True,
        )

    return StepResult(
        next_step=Step.question(0),
        outbound_message=format_question(catalog[0], 0, len(catalog)),
        side_effects=[CreateSession()],
        responses=dict(state.responses),
        consent_given=True,
    )


def _step_from_question(
    state: ConversationState,
    inbound_text: str | None,
    catalog: list[QuestionDefinition],
    organization: OrganizationBinding,
) -> StepResult:
    index = state.step.index or 0
    responses = dict(state.responses)

    if index >= len(catalog):
        # Questions were deactivated after this conversation reached them.
        logger.warning(
            f"Step {state.step.identifier} is past the end of a {len(catalog)} question catalog; completing."
        )
        return _complete(responses, organization, state.consent_given)

    question = catalog[index]
    result = validate_response(question, inbound_text)

    if not result.accepted:
        logger.info(
            f"Rejected answer for {state.step.identifier} from {state.phone_number}: {result.reason}"
        )
        return StepResult(
            next_step=state.step,
            outbound_message=f"{result.reason}\n\n{format_question(question, index, len(catalog))}",
            responses=responses,
            consent_given=state.consent_given,
        )

    responses[question.id] = result.value
    store = StoreResponse(question=question, value=result.value, score=result.score)

    next_index = index + 1
    if next_index < len(catalog):
        return StepResult(
            next_step=Step.question(next_index),
            outbound_message=format_question(
                catalog[next_index], next_index, len(catalog)
            ),
            side_effects=[store],
            responses=responses,
            consent_given=state.consent_given,
        )

    completion = _complete(responses, organization, state.consent_given)
    completion.side_effects.insert(0, store)
    return completion


def _complete(
    responses: dict[str, Any],
    organization: OrganizationBinding,
    consent_given: bool,
) -> StepResult:
    return StepResult(
        next_step=Step.completed(),
        outbound_message=closing_message(organization),
        side_effects=[CompleteSession(total_score=total_score(responses))],
        responses=responses,
        consent_given=consent_given,
    )


def _step_from_completed(
    state: ConversationState,
    inbound_text: str | None,
    catalog: list[QuestionDefinition],
    organization: OrganizationBinding,
) -> StepResult:
    return StepResult(
        next_step=state.step,
        outbound_message=already_completed_message(organization),
        responses=dict(state.responses),
        consent_given=state.consent_given,
    )
