from enum import Enum


class StepKind(str, Enum):
    CONSENT = "consent"
    QUESTION = "question"
    COMPLETED = "completed"


class QuestionType(str, Enum):
    SINGLE_CHOICE = "single_choice"
    SCALE = "scale"
    TEXT = "text"

    @classmethod
    def _missing_(cls, value):
        # Names used by older question editors
        aliases = {
            "multiple_choice": cls.SINGLE_CHOICE,
            "choice": cls.SINGLE_CHOICE,
            "rating": cls.SCALE,
            "numeric_scale": cls.SCALE,
            "free_text": cls.TEXT,
        }
        if isinstance(value, str):
            return aliases.get(value.lower())
        return None


class SessionStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    EXPIRED = "expired"


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageStatus(str, Enum):
    RECEIVED = "received"
    DUPLICATE = "duplicate"
    SENT = "sent"
    FAILED = "failed"


class SideEffectType(str, Enum):
    CREATE_SESSION = "create_session"
    STORE_RESPONSE = "store_response"
    COMPLETE_SESSION = "complete_session"


class TurnOutcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    RESTARTED = "restarted"
    ERROR = "error"
