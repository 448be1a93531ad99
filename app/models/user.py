from sqlalchemy import Column, Integer, String, DateTime, func
from core.db import Base

class UserRole:
    ADMIN = "admin"
    DRIVER = "driver"

class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone = Column(String(50), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.DRIVER)
    created_at = Column(DateTime, server_default=func.now())
