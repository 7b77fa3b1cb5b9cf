"""Inventory Transaction Line model."""
from sqlalchemy import Column, BigInteger, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from stockroom.database import Base, BigIntPK
from stockroom.utils.formatters import format_decimal


class TransactionLine(Base):
    """Signed component quantity delta at one location."""

    __tablename__ = 'transaction_line'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    transaction_id = Column(BigInteger, ForeignKey('inventory_transaction.id'), nullable=False, index=True)
    component_id = Column(BigInteger, ForeignKey('component.id'), nullable=False, index=True)
    location_id = Column(BigInteger, ForeignKey('location.id'), nullable=False, index=True)
    quantity_change = Column(Numeric(18, 4), nullable=False)
    cost_per_unit = Column(Numeric(14, 4), nullable=True)
    lot_id = Column(BigInteger, ForeignKey('lot.id'), nullable=True, index=True)

    # Relationships
    transaction = relationship('Transaction', back_populates='lines')
    component = relationship('Component')
    location = relationship('Location')
    lot = relationship('Lot', back_populates='lines')

    def to_dict(self):
        return {
            'id': self.id,
            'component_id': self.component_id,
            'location_id': self.location_id,
            'quantity_change': format_decimal(self.quantity_change),
            'cost_per_unit': format_decimal(self.cost_per_unit),
            'lot_id': self.lot_id,
        }

    def __repr__(self):
        return f"<TransactionLine(id={self.id}, component_id={self.component_id}, qty={self.quantity_change})>"
