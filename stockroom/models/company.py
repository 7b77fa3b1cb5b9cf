"""Company (tenant) model."""
from sqlalchemy import Column, String, Boolean, DateTime, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from stockroom.database import Base, BigIntPK


class Company(Base):
    """Company: the tenant every inventory record is scoped to."""

    __tablename__ = 'company'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False, unique=True)
    settings = Column(JSON, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    locations = relationship('Location', back_populates='company')

    def __repr__(self):
        return f"<Company(id={self.id}, name='{self.name}')>"
