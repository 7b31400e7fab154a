import uuid

from database import Base
from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.orm import relationship


class MaintenanceEntry(Base):
    """An open maintenance window for one rack or a whole chain in a DC"""

    __tablename__ = "maintenance_entries"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    entry_type = Column(String(50), nullable=False)  # individual_rack, chain
    rack_id = Column(String(255))
    chain = Column(String(100))
    dc = Column(String(100))
    site = Column(String(255), index=True)
    reason = Column(String(500))
    started_by = Column(String(255))
    started_at = Column(DateTime, nullable=False)

    racks = relationship(
        "MaintenanceRackDetail",
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="MaintenanceRackDetail.rack_id",
    )

    __table_args__ = (
        CheckConstraint(
            "entry_type IN ('individual_rack', 'chain')", name="valid_entry_type"
        ),
        Index("idx_maintenance_chain_dc", "chain", "dc"),
    )


class MaintenanceRackDetail(Base):
    """A rack currently covered by a maintenance entry"""

    __tablename__ = "maintenance_rack_details"

    id = Column(Integer, primary_key=True, autoincrement=True)
    maintenance_entry_id = Column(
        Uuid, ForeignKey("maintenance_entries.id", ondelete="CASCADE"), nullable=False
    )
    # A rack belongs to at most one open entry
    rack_id = Column(String(255), nullable=False, unique=True)
    pdu_id = Column(String(255))
    name = Column(String(255))
    country = Column(String(100))
    site = Column(String(255))
    dc = Column(String(100))
    phase = Column(String(50))
    chain = Column(String(100))
    node = Column(String(100))
    serial = Column(String(255))
    gw_name = Column(String(255))
    gw_ip = Column(String(50))
    added_at = Column(DateTime, nullable=False)

    entry = relationship("MaintenanceEntry", back_populates="racks")


class MaintenanceHistory(Base):
    """One archived rack of a finished maintenance window"""

    __tablename__ = "maintenance_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    original_entry_id = Column(Uuid, index=True)
    entry_type = Column(String(50), nullable=False)

    rack_id = Column(String(255), nullable=False, index=True)
    rack_name = Column(String(255))
    country = Column(String(100))
    site = Column(String(255), index=True)
    dc = Column(String(100))
    phase = Column(String(50))
    chain = Column(String(100), index=True)
    node = Column(String(100))
    gw_name = Column(String(255))
    gw_ip = Column(String(50))

    reason = Column(String(500))
    started_by = Column(String(255))
    ended_by = Column(String(255))
    started_at = Column(DateTime, nullable=False, index=True)
    ended_at = Column(DateTime, nullable=False, index=True)
    duration_minutes = Column(Integer, nullable=False)
