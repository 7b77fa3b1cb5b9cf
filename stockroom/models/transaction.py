"""Inventory Transaction model."""
import enum

from sqlalchemy import Column, BigInteger, String, Text, Numeric, Date, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from stockroom.database import Base, BigIntPK
from stockroom.utils.formatters import format_decimal


class TransactionType(enum.Enum):
    """Transaction type enum."""
    RECEIPT = 'receipt'
    ADJUSTMENT = 'adjustment'
    BUILD = 'build'
    TRANSFER = 'transfer'
    OUTBOUND = 'outbound'
    INITIAL = 'initial'


class TransactionStatus(enum.Enum):
    """Transaction status enum. Only approved transactions affect balances."""
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Transaction(Base):
    """One inventory-affecting event; owns component and finished-goods lines."""

    __tablename__ = 'inventory_transaction'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    company_id = Column(BigInteger, ForeignKey('company.id'), nullable=False, index=True)
    type = Column(
        Enum(TransactionType, name='transaction_type', values_callable=_enum_values),
        nullable=False,
        index=True
    )
    status = Column(
        Enum(TransactionStatus, name='transaction_status', values_callable=_enum_values),
        nullable=False,
        default=TransactionStatus.APPROVED
    )
    date = Column(Date, nullable=False)
    sku_id = Column(BigInteger, ForeignKey('sku.id'), nullable=True, index=True)
    bom_version_id = Column(BigInteger, ForeignKey('bom_version.id'), nullable=True)
    location_id = Column(BigInteger, ForeignKey('location.id'), nullable=True)
    from_location_id = Column(BigInteger, ForeignKey('location.id'), nullable=True)
    to_location_id = Column(BigInteger, ForeignKey('location.id'), nullable=True)
    sales_channel = Column(String(50), nullable=True)
    units_built = Column(Numeric(18, 4), nullable=True)
    unit_bom_cost = Column(Numeric(14, 4), nullable=True)
    total_bom_cost = Column(Numeric(14, 4), nullable=True)
    supplier = Column(String(200), nullable=True)
    reason = Column(String(200), nullable=True)
    notes = Column(Text, nullable=True)
    created_by_id = Column(BigInteger, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    company = relationship('Company')
    sku = relationship('SKU')
    bom_version = relationship('BOMVersion')
    location = relationship('Location', foreign_keys=[location_id])
    from_location = relationship('Location', foreign_keys=[from_location_id])
    to_location = relationship('Location', foreign_keys=[to_location_id])
    lines = relationship(
        'TransactionLine',
        back_populates='transaction',
        order_by='TransactionLine.id',
        cascade='all, delete-orphan'
    )
    finished_goods_lines = relationship(
        'FinishedGoodsLine',
        back_populates='transaction',
        order_by='FinishedGoodsLine.id',
        cascade='all, delete-orphan'
    )

    def to_dict(self):
        """Serialize for JSON boundaries; decimals become 4-place strings."""
        return {
            'id': self.id,
            'company_id': self.company_id,
            'type': self.type.value,
            'status': self.status.value if self.status else None,
            'date': self.date.isoformat() if self.date else None,
            'sku_id': self.sku_id,
            'bom_version_id': self.bom_version_id,
            'location_id': self.location_id,
            'from_location_id': self.from_location_id,
            'to_location_id': self.to_location_id,
            'sales_channel': self.sales_channel,
            'units_built': format_decimal(self.units_built),
            'unit_bom_cost': format_decimal(self.unit_bom_cost),
            'total_bom_cost': format_decimal(self.total_bom_cost),
            'supplier': self.supplier,
            'reason': self.reason,
            'notes': self.notes,
            'created_by_id': self.created_by_id,
            'lines': [line.to_dict() for line in self.lines],
            'finished_goods_lines': [line.to_dict() for line in self.finished_goods_lines],
        }

    def __repr__(self):
        return f"<Transaction(id={self.id}, type={self.type.value}, company_id={self.company_id})>"
