from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, func
from sqlalchemy.orm import relationship
from core.db import Base

class VehicleStatus:
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    BLOCKED = "blocked"

    ALL = (AVAILABLE, ASSIGNED, BLOCKED)

class Vehicle(Base):
    __tablename__ = "vehicles"
    id = Column(Integer, primary_key=True, index=True)
    plate_number = Column(String(20), unique=True, nullable=False, index=True)
    model = Column(String(100), nullable=False)
    year = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=VehicleStatus.AVAILABLE)  # 'available' | 'assigned' | 'blocked'
    assigned_to = Column(Integer, ForeignKey("users.id"), nullable=True)  # set iff status == 'assigned'
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    driver = relationship("User", foreign_keys=[assigned_to])
    blocks = relationship("Block", back_populates="vehicle", passive_deletes=True)

    def __repr__(self):
        return f"<Vehicle {self.plate_number} status={self.status}>"
