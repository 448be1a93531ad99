from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index, func
from sqlalchemy.orm import relationship
from core.db import Base

class BlockStatus:
    ACTIVE = "active"
    COMPLETED = "completed"

class Block(Base):
    __tablename__ = "vehicle_blocks"
    __table_args__ = (
        Index("ix_vehicle_blocks_vehicle_status_dates", "vehicle_id", "status", "start_date", "end_date"),
    )
    id = Column(Integer, primary_key=True, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    reason = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default=BlockStatus.ACTIVE)
    blocked_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    vehicle = relationship("Vehicle", back_populates="blocks")
    blocker = relationship("User", foreign_keys=[blocked_by])
