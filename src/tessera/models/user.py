from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from tessera.models.base import Base


class User(Base):
    """
    Application user and the source of every `Actor` snapshot.

    `team_id` / `department_id` are the attributes team and department
    policies compare against (`{auth.team_id}`, `{auth.department_id}`).
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    username = Column(String(100), unique=True, nullable=False)
    email = Column(String(200))
    phone = Column(String(50))
    password_hash = Column(String(255))
    team_id = Column(Integer, nullable=True, index=True)
    department_id = Column(Integer, nullable=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    roles = relationship("Role", secondary="role_user", back_populates="users")
