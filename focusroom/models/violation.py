import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from focusroom.models.base import Base
from focusroom.services.violation_classifier import ViolationCategory, classify


class Violation(Base):
    __tablename__ = "violations"

    session_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("focus_sessions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)  # append order within the session
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)  # "left app", "manually reported", ...
    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    session: Mapped["FocusSession"] = relationship(back_populates="violations")  # noqa: F821

    __table_args__ = (
        UniqueConstraint("session_id", "seq", name="uq_violations_session_seq"),
    )

    @property
    def category(self) -> ViolationCategory:
        # Derived on read, never persisted
        return classify(self.duration_seconds)
