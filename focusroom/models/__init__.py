from focusroom.models.base import Base
from focusroom.models.session import FocusSession, SessionOutcome, SessionStatus
from focusroom.models.session_participant import SessionParticipant
from focusroom.models.stats_credit import StatsCredit
from focusroom.models.user import User
from focusroom.models.violation import Violation

__all__ = [
    "Base",
    "FocusSession",
    "SessionOutcome",
    "SessionParticipant",
    "SessionStatus",
    "StatsCredit",
    "User",
    "Violation",
]
