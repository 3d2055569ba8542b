import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from focusroom.models.base import Base


class SessionStatus:
    PENDING = "pending"
    ACTIVE = "active"
    ENDED = "ended"
    CANCELLED = "cancelled"

    CLOSED = frozenset({ENDED, CANCELLED})


class SessionOutcome:
    SUCCESSFUL = "successful"
    FAILED = "failed"


class FocusSession(Base):
    __tablename__ = "focus_sessions"

    room_code: Mapped[str] = mapped_column(String(6), nullable=False, index=True)
    host_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SessionStatus.PENDING
    )  # pending, active, ended, cancelled
    outcome: Mapped[str | None] = mapped_column(String(20))  # successful, failed
    fail_reason: Mapped[str | None] = mapped_column(String(255))
    duration: Mapped[int] = mapped_column(Integer, nullable=False)  # minutes

    # Compare-and-set token, bumped by every state-changing operation
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    violation_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Relationships
    participant_links: Mapped[list["SessionParticipant"]] = relationship(  # noqa: F821
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="SessionParticipant.position",
    )
    violations: Mapped[list["Violation"]] = relationship(  # noqa: F821
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="Violation.seq",
    )

    __table_args__ = (
        # A room code identifies at most one joinable session
        Index(
            "uq_focus_sessions_pending_room_code",
            "room_code",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    @property
    def participants(self) -> list[uuid.UUID]:
        return [link.user_id for link in self.participant_links]

    @property
    def is_closed(self) -> bool:
        return self.status in SessionStatus.CLOSED
