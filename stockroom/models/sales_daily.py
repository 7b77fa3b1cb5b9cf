"""Sales Daily model (per channel attribution record)."""
from sqlalchemy import (
    Column, BigInteger, Integer, String, Numeric, Date, DateTime, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from stockroom.database import Base, BigIntPK


class SalesDaily(Base):
    """Daily sales for one channel, split into ad-attributed and organic."""

    __tablename__ = 'sales_daily'
    __table_args__ = (
        UniqueConstraint('company_id', 'date', 'channel', 'asin', name='uq_sales_daily_key'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    company_id = Column(BigInteger, ForeignKey('company.id'), nullable=False, index=True)
    sku_id = Column(BigInteger, ForeignKey('sku.id'), nullable=True)
    asin = Column(String(20), nullable=True)
    date = Column(Date, nullable=False, index=True)
    channel = Column(String(50), nullable=False)
    total_sales = Column(Numeric(12, 2), nullable=False, default=0)
    ad_attributed_sales = Column(Numeric(12, 2), nullable=False, default=0)
    organic_sales = Column(Numeric(12, 2), nullable=False, default=0)
    units_total = Column(Integer, nullable=True)
    units_ad_attributed = Column(Integer, nullable=True)
    units_organic = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    sku = relationship('SKU')

    def __repr__(self):
        return f"<SalesDaily(date={self.date}, channel='{self.channel}', total={self.total_sales})>"
