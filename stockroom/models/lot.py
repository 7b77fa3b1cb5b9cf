"""Lot model."""
from sqlalchemy import Column, BigInteger, String, Text, Numeric, Date, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from stockroom.database import Base, BigIntPK


class Lot(Base):
    """Received batch of a component with its own expiry and running balance."""

    __tablename__ = 'lot'
    __table_args__ = (
        UniqueConstraint('component_id', 'lot_number', name='uq_lot_component_number'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    company_id = Column(BigInteger, ForeignKey('company.id'), nullable=False, index=True)
    component_id = Column(BigInteger, ForeignKey('component.id'), nullable=False, index=True)
    lot_number = Column(String(100), nullable=False)
    expiry_date = Column(Date, nullable=True)
    received_quantity = Column(Numeric(18, 4), nullable=False, default=0)
    supplier = Column(String(200), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    component = relationship('Component', back_populates='lots')
    lines = relationship('TransactionLine', back_populates='lot')

    def __repr__(self):
        return f"<Lot(id={self.id}, lot_number='{self.lot_number}', expiry={self.expiry_date})>"
