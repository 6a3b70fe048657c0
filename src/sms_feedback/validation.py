import logging
from typing import Any

from sms_feedback.enums import QuestionType
from sms_feedback.pydantic_models import (
    QuestionDefinition,
    ScaleConfig,
    ValidationResult,
)

logger = logging.getLogger(__name__)

DEFAULT_SCALE = ScaleConfig(min_value=1, max_value=5)

POSITIVE_WORDS = ("good", "great", "excellent", "amazing", "love", "perfect", "wonderful")
NEGATIVE_WORDS = ("bad", "terrible", "awful", "hate", "horrible", "worst", "poor")


def _parse_int(raw_text: str) -> int | None:
    try:
        return int(raw_text.strip())
    except (TypeError, ValueError):
        return None


def numeric_score(value: Any) -> int | None:
    """
    Returns the integer score carried by a captured answer, if any.
    Booleans and non-numeric strings carry no score.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        return _parse_int(value)
    return None


def _reject(reason: str) -> ValidationResult:
    return ValidationResult(accepted=False, reason=reason)


def _validate_single_choice(
    question: QuestionDefinition, raw_text: str
) -> ValidationResult:
    option_count = len(question.options)
    if option_count == 0:
        logger.error(f"Choice question {question.id} has no options configured.")
        return _reject("Sorry, this question has no options to choose from.")

    reason = f"Please reply with a number from 1 to {option_count}."
    choice = _parse_int(raw_text)
    if choice is None or not 1 <= choice <= option_count:
        return _reject(reason)

    value = question.options[choice - 1].canonical_value
    return ValidationResult(accepted=True, value=value, score=numeric_score(value))


def _validate_scale(question: QuestionDefinition, raw_text: str) -> ValidationResult:
    scale = question.scale or DEFAULT_SCALE
    reason = (
        f"Please reply with a number from {scale.min_value} to {scale.max_value}."
    )
    rating = _parse_int(raw_text)
    if rating is None or not scale.min_value <= rating <= scale.max_value:
        return _reject(reason)
    return ValidationResult(accepted=True, value=rating, score=rating)


def sentiment_score(text: str) -> int:
    """
    Rough score for a free-text answer: 5 when it only uses positive words,
    1 when it only uses negative words, otherwise 3.
    """
    lowered = text.lower()
    positive = any(word in lowered for word in POSITIVE_WORDS)
    negative = any(word in lowered for word in NEGATIVE_WORDS)
    if positive and not negative:
        return 5
    if negative and not positive:
        return 1
    return 3


def _validate_text(raw_text: str) -> ValidationResult:
    # Whitespace-only is empty; anything else is stored exactly as received.
    if not raw_text.strip():
        return _reject("Please type a response.")
    return ValidationResult(
        accepted=True, value=raw_text, score=sentiment_score(raw_text)
    )


def validate_response(question: QuestionDefinition, raw_text: str | None) -> ValidationResult:
    """
    Decides whether raw inbound text answers the given question and coerces
    accepted answers to the value that gets stored.

    Never raises; every outcome is described by the returned ValidationResult.
    """
    raw_text = raw_text or ""
    if question.question_type == QuestionType.SINGLE_CHOICE:
        return _validate_single_choice(question, raw_text)
    if question.question_type == QuestionType.SCALE:
        return _validate_scale(question, raw_text)
    return _validate_text(raw_text)
