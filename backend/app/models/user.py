"""User model"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Index, UniqueConstraint, CheckConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.core.database import Base


class User(Base):
    """User model for authentication and authorization"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    # NULL for accounts that can only sign in through an external provider
    password_hash = Column(String(255), nullable=True)
    full_name = Column(String(255), nullable=False, default="")
    role = Column(String(20), default="student", nullable=False)
    instructor_status = Column(String(20), nullable=True)
    provider = Column(String(20), default="local", nullable=False)
    provider_id = Column(String(255), nullable=True)
    email_verified_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_login = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    refresh_tokens = relationship("RefreshToken", back_populates="user", cascade="all, delete-orphan")
    one_time_tokens = relationship("OneTimeToken", back_populates="user", cascade="all, delete-orphan")
    audit_events = relationship("AuditEvent", back_populates="user")

    __table_args__ = (
        UniqueConstraint("provider", "provider_id", name="uq_users_provider_subject"),
        Index("idx_users_role", "role"),
        CheckConstraint("role IN ('student', 'instructor', 'admin')", name="chk_users_role"),
        CheckConstraint("provider IN ('local', 'google')", name="chk_users_provider"),
    )

    @property
    def email_verified(self) -> bool:
        return self.email_verified_at is not None

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"
