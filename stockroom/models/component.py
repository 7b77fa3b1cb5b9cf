"""Component model."""
from sqlalchemy import (
    Column, BigInteger, Integer, String, Text, Boolean, Numeric, DateTime, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from stockroom.database import Base, BigIntPK


class Component(Base):
    """Trackable inventory item (raw material, packaging, part)."""

    __tablename__ = 'component'
    __table_args__ = (
        UniqueConstraint('company_id', 'name', name='uq_component_company_name'),
        UniqueConstraint('company_id', 'sku_code', name='uq_component_company_sku_code'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    company_id = Column(BigInteger, ForeignKey('company.id'), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    sku_code = Column(String(100), nullable=False)
    category = Column(String(100), nullable=True)
    unit_of_measure = Column(String(30), nullable=False, default='each')
    cost_per_unit = Column(Numeric(14, 4), nullable=False, default=0)
    reorder_point = Column(Numeric(18, 4), nullable=False, default=0)
    lead_time_days = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    company = relationship('Company')
    lots = relationship('Lot', back_populates='component')

    def __repr__(self):
        return f"<Component(id={self.id}, name='{self.name}', sku_code='{self.sku_code}')>"
