from database import Base, TimestampMixin
from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)


class CorrelationOutbox(Base, TimestampMixin):
    """
    Pending request to the external ticketing API.
    Written in the same transaction as the alert transition it belongs to and
    drained later by the correlation worker.
    """

    __tablename__ = "correlation_outbox"

    id = Column(Integer, primary_key=True, autoincrement=True)
    alert_id = Column(Uuid, nullable=False)
    event_type = Column(String(10), nullable=False)  # open, close
    payload = Column(JSON, nullable=False)

    status = Column(String(20), nullable=False, default="pending")  # pending, done, failed
    attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime, nullable=False)
    last_error = Column(Text)
    correlation_id = Column(String(100))
    completed_at = Column(DateTime)

    __table_args__ = (
        UniqueConstraint("alert_id", "event_type", name="uq_outbox_alert_event"),
        Index("idx_outbox_status_due", "status", "next_attempt_at"),
    )
