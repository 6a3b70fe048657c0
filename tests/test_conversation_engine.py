import pytest

from sms_feedback import conversation_engine
from sms_feedback.enums import QuestionType, SideEffectType, StepKind
from sms_feedback.pydantic_models import (
    ConversationState,
    OrganizationBinding,
    QuestionDefinition,
    QuestionOption,
    ScaleConfig,
    Step,
)


@pytest.fixture
def organization() -> OrganizationBinding:
    return OrganizationBinding(id="org-1", name="Acme Clinic", sender_id="22384")


@pytest.fixture
def catalog() -> list[QuestionDefinition]:
    return [
        QuestionDefinition(
            id="q-visit",
            text="How was your visit?",
            question_type=QuestionType.SINGLE_CHOICE,
            order_index=0,
            options=[QuestionOption(text="Good"), QuestionOption(text="Bad")],
        ),
        QuestionDefinition(
            id="q-rating",
            text="How would you rate our staff?",
            question_type=QuestionType.SCALE,
            order_index=1,
            scale=ScaleConfig(min_value=1, max_value=5),
        ),
    ]


def _state(step: Step | None = None, **kwargs) -> ConversationState:
    return ConversationState(
        organization_id="org-1",
        phone_number="+27820000001",
        sender_id="22384",
        step=step or Step.consent(),
        **kwargs,
    )


def _advance(state, text, catalog, organization):
    """Applies a StepResult to the state the way the orchestrator does."""
    result = conversation_engine.step(state, text, catalog, organization)
    next_state = state.model_copy(
        update={
            "step": result.next_step,
            "responses": result.responses,
            "consent_given": result.consent_given,
        }
    )
    return next_state, result


def test_full_conversation_records_answers_and_score(catalog, organization):
    state = _state()

    state, result = _advance(state, "1", catalog, organization)
    assert state.step == Step.question(0)
    assert state.consent_given is True
    assert [e.type for e in result.side_effects] == [SideEffectType.CREATE_SESSION]
    assert result.outbound_message == (
        "Question 1 of 2: How was your visit?\n"
        "1. Good\n"
        "2. Bad\n"
        "Reply with a number from 1 to 2."
    )

    state, result = _advance(state, "2", catalog, organization)
    assert state.step == Step.question(1)
    assert state.responses == {"q-visit": "Bad"}
    [store] = result.side_effects
    assert store.type == SideEffectType.STORE_RESPONSE
    assert store.question.id == "q-visit"
    assert store.value == "Bad"
    assert result.outbound_message.startswith(
        "Question 2 of 2: How would you rate our staff?"
    )

    state, result = _advance(state, "9", catalog, organization)
    assert state.step == Step.question(1)
    assert result.side_effects == []
    assert result.outbound_message.startswith("Please reply with a number from 1 to 5.")
    assert "Question 2 of 2" in result.outbound_message

    state, result = _advance(state, "4", catalog, organization)
    assert state.step == Step.completed()
    assert state.responses == {"q-visit": "Bad", "q-rating": 4}
    assert result.outbound_message == conversation_engine.closing_message(organization)
    store, complete = result.side_effects
    assert store.type == SideEffectType.STORE_RESPONSE
    assert store.value == 4
    assert store.score == 4
    assert complete.type == SideEffectType.COMPLETE_SESSION
    assert complete.total_score == 4


@pytest.mark.parametrize("reply", ["1", "yes", " YES ", "y", "Y"])
def test_affirmative_replies_give_consent(reply, catalog, organization):
    result = conversation_engine.step(_state(), reply, catalog, organization)
    assert result.next_step == Step.question(0)
    assert result.consent_given is True


@pytest.mark.parametrize("reply", ["2", "no", "maybe", "", "stop"])
def test_anything_else_declines_consent(reply, catalog, organization):
    result = conversation_engine.step(_state(), reply, catalog, organization)
    assert result.next_step.is_terminal
    assert result.consent_given is False
    assert result.side_effects == []
    assert result.outbound_message == conversation_engine.declined_message(
        organization
    )


def test_consent_with_empty_catalog_completes_without_session(organization):
    result = conversation_engine.step(_state(), "1", [], organization)
    assert result.next_step.is_terminal
    assert result.consent_given is True
    assert result.side_effects == []
    assert result.outbound_message == conversation_engine.no_questions_message(
        organization
    )


def test_start_keyword_at_consent_resends_invitation(catalog, organization):
    result = conversation_engine.step(_state(), "START", catalog, organization)
    assert result.next_step == Step.consent()
    assert result.outbound_message == conversation_engine.consent_invitation_message(
        organization
    )


def test_rejected_answer_repeats_question_without_side_effects(catalog, organization):
    state = _state(Step.question(0), consent_given=True)
    for reply in ["3", "0", "good", ""]:
        result = conversation_engine.step(state, reply, catalog, organization)
        assert result.next_step == Step.question(0)
        assert result.side_effects == []
        assert result.responses == {}
        assert result.outbound_message.startswith(
            "Please reply with a number from 1 to 2.\n\nQuestion 1 of 2:"
        )


def test_completed_conversation_is_inert(catalog, organization):
    state = _state(
        Step.completed(), consent_given=True, responses={"q-visit": "Good"}
    )
    result = conversation_engine.step(state, "1", catalog, organization)
    assert result.next_step.is_terminal
    assert result.side_effects == []
    assert result.responses == {"q-visit": "Good"}
    assert result.outbound_message == conversation_engine.already_completed_message(
        organization
    )


def test_index_past_end_of_catalog_completes(catalog, organization):
    state = _state(
        Step.question(5), consent_given=True, responses={"q-visit": "Good", "q-rating": 2}
    )
    result = conversation_engine.step(state, "3", catalog, organization)
    assert result.next_step.is_terminal
    [complete] = result.side_effects
    assert complete.type == SideEffectType.COMPLETE_SESSION
    assert complete.total_score == 2


def test_text_question_accepts_any_non_empty_reply(organization):
    catalog = [
        QuestionDefinition(
            id="q-comments", text="Any other comments?", question_type=QuestionType.TEXT
        )
    ]
    state = _state(Step.question(0), consent_given=True)
    result = conversation_engine.step(state, "  Great staff ", catalog, organization)
    assert result.next_step.is_terminal
    assert result.responses == {"q-comments": "  Great staff "}
    store, complete = result.side_effects
    assert store.value == "  Great staff "
    assert store.score == 5
    assert complete.total_score == 0


def test_step_does_not_mutate_input_state(catalog, organization):
    state = _state(Step.question(1), consent_given=True, responses={"q-visit": "Good"})
    conversation_engine.step(state, "5", catalog, organization)
    assert state.responses == {"q-visit": "Good"}
    assert state.step == Step.question(1)


def test_format_question_for_scale_with_labels():
    question = QuestionDefinition(
        id="q-nps",
        text="How likely are you to recommend us?",
        question_type=QuestionType.SCALE,
        scale=ScaleConfig(
            min_value=0, max_value=10, min_label="Not likely", max_label="Very likely"
        ),
    )
    assert conversation_engine.format_question(question, 2, 3) == (
        "Question 3 of 3: How likely are you to recommend us?\n"
        "Reply with a number from 0 (Not likely) to 10 (Very likely)."
    )


def test_total_score_ignores_text_and_booleans():
    responses = {"a": 4, "b": "Good", "c": 2.5, "d": True, "e": "3"}
    assert conversation_engine.total_score(responses) == 6.5


def test_step_identifiers_round_trip():
    assert Step.from_identifier("consent") == Step.consent()
    assert Step.from_identifier("question_12") == Step.question(12)
    assert Step.from_identifier("completed").kind == StepKind.COMPLETED
    assert Step.question(3).identifier == "question_3"
    with pytest.raises(ValueError):
        Step.from_identifier("question_x")
    with pytest.raises(ValueError):
        Step.question(-1)
