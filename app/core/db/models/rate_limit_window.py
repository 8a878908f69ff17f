from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db.models.base import BaseModel


class RateLimitWindow(BaseModel):
    """
    Fixed-window request counter for one (user, endpoint) pair.

    Rows are only ever mutated by a single INSERT ... ON CONFLICT DO UPDATE
    statement, which resets, increments or records a violation atomically.
    """

    __tablename__ = "rate_limit_windows"

    user_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    endpoint: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    window_start: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    request_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )

    request_limit: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    violation_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )

    # Outcome of the most recent admission decision
    last_allowed: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("user_id", "endpoint", name="uq_rate_limit_user_endpoint"),
    )


__all__ = ["RateLimitWindow"]
