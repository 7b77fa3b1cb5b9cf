"""Finished Goods Line model."""
from sqlalchemy import Column, BigInteger, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from stockroom.database import Base, BigIntPK
from stockroom.utils.formatters import format_decimal


class FinishedGoodsLine(Base):
    """Signed SKU quantity delta at one location (builds, outbounds, FG moves)."""

    __tablename__ = 'finished_goods_line'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    transaction_id = Column(BigInteger, ForeignKey('inventory_transaction.id'), nullable=False, index=True)
    sku_id = Column(BigInteger, ForeignKey('sku.id'), nullable=False, index=True)
    location_id = Column(BigInteger, ForeignKey('location.id'), nullable=False, index=True)
    quantity_change = Column(Numeric(18, 4), nullable=False)
    cost_per_unit = Column(Numeric(14, 4), nullable=True)

    # Relationships
    transaction = relationship('Transaction', back_populates='finished_goods_lines')
    sku = relationship('SKU')
    location = relationship('Location')

    def to_dict(self):
        return {
            'id': self.id,
            'sku_id': self.sku_id,
            'location_id': self.location_id,
            'quantity_change': format_decimal(self.quantity_change),
            'cost_per_unit': format_decimal(self.cost_per_unit),
        }

    def __repr__(self):
        return f"<FinishedGoodsLine(id={self.id}, sku_id={self.sku_id}, qty={self.quantity_change})>"
