"""BOM Version model."""
from sqlalchemy import Column, BigInteger, Integer, String, Text, Boolean, Date, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from stockroom.database import Base, BigIntPK


class BOMVersion(Base):
    """Dated bill-of-materials snapshot for a SKU."""

    __tablename__ = 'bom_version'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    sku_id = Column(BigInteger, ForeignKey('sku.id'), nullable=False, index=True)
    version_name = Column(String(50), nullable=False)
    effective_start_date = Column(Date, nullable=False)
    effective_end_date = Column(Date, nullable=True)
    is_active = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    sku = relationship('SKU', back_populates='bom_versions')
    lines = relationship(
        'BOMLine',
        back_populates='bom_version',
        order_by='BOMLine.id',
        cascade='all, delete-orphan'
    )

    __mapper_args__ = {
        'version_id_col': version,
        'version_id_generator': False,
    }

    def __repr__(self):
        return f"<BOMVersion(id={self.id}, sku_id={self.sku_id}, name='{self.version_name}', active={self.is_active})>"
