from sqlalchemy import Boolean, Column, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..core.database import Base

DEFAULT_COLOR = "#6366f1"
DEFAULT_ICON = "folder"


class Category(Base):
    """User-owned grouping for tasks"""
    __tablename__ = "categories"
    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_categories_user_name"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)
    color = Column(String(7), nullable=False, default=DEFAULT_COLOR)
    icon = Column(String(50), nullable=False, default=DEFAULT_ICON)
    is_active = Column(Boolean, nullable=False, default=True)
    user_id = Column(String(36), nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    tasks = relationship("Task", back_populates="category", passive_deletes=True)

    def __repr__(self):
        return f"<Category(id={self.id}, name='{self.name}')>"
