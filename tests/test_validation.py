import pytest

from sms_feedback.enums import QuestionType
from sms_feedback.pydantic_models import (
    QuestionDefinition,
    QuestionOption,
    ScaleConfig,
)
from sms_feedback.validation import numeric_score, validate_response


def _choice_question(option_count: int) -> QuestionDefinition:
    return QuestionDefinition(
        id="q-choice",
        text="How was your visit?",
        question_type=QuestionType.SINGLE_CHOICE,
        options=[QuestionOption(text=f"Option {n}") for n in range(1, option_count + 1)],
    )


@pytest.mark.parametrize("option_count", [1, 2, 5])
def test_single_choice_accepts_every_listed_number(option_count):
    question = _choice_question(option_count)
    for choice in range(1, option_count + 1):
        result = validate_response(question, str(choice))
        assert result.accepted
        assert result.value == f"Option {choice}"
        assert result.reason is None


@pytest.mark.parametrize("option_count", [1, 2, 5])
def test_single_choice_rejects_out_of_range_and_non_numeric(option_count):
    question = _choice_question(option_count)
    for raw_text in ["0", str(option_count + 1), "good", "", "1.5", "-1"]:
        result = validate_response(question, raw_text)
        assert not result.accepted
        assert result.value is None
        assert result.reason == f"Please reply with a number from 1 to {option_count}."


def test_single_choice_prefers_option_value_over_text():
    question = QuestionDefinition(
        id="q-choice",
        text="Would you recommend us?",
        question_type=QuestionType.SINGLE_CHOICE,
        options=[
            QuestionOption(text="Yes, definitely", value="promoter"),
            QuestionOption(text="Not sure", value=""),
        ],
    )
    assert validate_response(question, "1").value == "promoter"
    # An empty value falls back to the display text.
    assert validate_response(question, " 2 ").value == "Not sure"


def test_single_choice_score_derived_from_numeric_option_value():
    question = QuestionDefinition(
        id="q-choice",
        text="How satisfied are you?",
        question_type=QuestionType.SINGLE_CHOICE,
        options=[
            QuestionOption(text="Very", value="3"),
            QuestionOption(text="Somewhat", value="2"),
            QuestionOption(text="Other"),
        ],
    )
    assert validate_response(question, "1").score == 3
    assert validate_response(question, "3").score is None


def test_single_choice_without_options_is_rejected():
    result = validate_response(_choice_question(0), "1")
    assert not result.accepted
    assert result.reason


def test_scale_uses_default_bounds_when_unconfigured():
    question = QuestionDefinition(
        id="q-scale", text="Rate us", question_type=QuestionType.SCALE
    )
    assert validate_response(question, "1").value == 1
    assert validate_response(question, "5").value == 5
    rejected = validate_response(question, "6")
    assert not rejected.accepted
    assert rejected.reason == "Please reply with a number from 1 to 5."


def test_scale_respects_configured_bounds():
    question = QuestionDefinition(
        id="q-scale",
        text="How likely are you to recommend us?",
        question_type=QuestionType.SCALE,
        scale=ScaleConfig(min_value=0, max_value=10),
    )
    accepted = validate_response(question, "0")
    assert accepted.accepted
    assert accepted.value == 0
    assert accepted.score == 0
    assert validate_response(question, "10").score == 10
    assert not validate_response(question, "11").accepted
    assert not validate_response(question, "ten").accepted
    assert "0 to 10" in validate_response(question, "-1").reason


def test_free_text_is_accepted_verbatim():
    question = QuestionDefinition(
        id="q-text", text="Anything else?", question_type=QuestionType.TEXT
    )
    result = validate_response(question, "  The nurse was very kind.  ")
    assert result.accepted
    assert result.value == "  The nurse was very kind.  "
    assert result.score == 3


@pytest.mark.parametrize(
    "raw_text, score",
    [
        ("The staff were excellent", 5),
        ("GREAT service, I love this clinic", 5),
        ("The wait was terrible", 1),
        ("Poor", 1),
        ("Good doctor but the queue was awful", 3),
        ("It was fine", 3),
    ],
)
def test_free_text_score_from_sentiment_words(raw_text, score):
    question = QuestionDefinition(
        id="q-text", text="Anything else?", question_type=QuestionType.TEXT
    )
    assert validate_response(question, raw_text).score == score


@pytest.mark.parametrize("raw_text", ["", "   ", "\n", None])
def test_free_text_rejects_empty_input(raw_text):
    question = QuestionDefinition(
        id="q-text", text="Anything else?", question_type=QuestionType.TEXT
    )
    result = validate_response(question, raw_text)
    assert not result.accepted
    assert result.reason == "Please type a response."


def test_numeric_score():
    assert numeric_score(4) == 4
    assert numeric_score("7") == 7
    assert numeric_score(2.0) == 2
    assert numeric_score(True) is None
    assert numeric_score("Good") is None
    assert numeric_score(None) is None


def test_question_type_accepts_legacy_names():
    assert QuestionType("multiple_choice") == QuestionType.SINGLE_CHOICE
    assert QuestionType("rating") == QuestionType.SCALE
    assert QuestionType("free_text") == QuestionType.TEXT
    with pytest.raises(ValueError):
        QuestionType("matrix")
