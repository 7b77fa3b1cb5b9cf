"""SKU model."""
from sqlalchemy import Column, BigInteger, Integer, String, Text, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from stockroom.database import Base, BigIntPK


class SKU(Base):
    """Sellable unit built from a bill of materials."""

    __tablename__ = 'sku'
    __table_args__ = (
        UniqueConstraint('company_id', 'internal_code', name='uq_sku_company_internal_code'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    company_id = Column(BigInteger, ForeignKey('company.id'), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    internal_code = Column(String(100), nullable=False)
    sales_channel = Column(String(50), nullable=False, default='generic')
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    company = relationship('Company')
    bom_versions = relationship(
        'BOMVersion',
        back_populates='sku',
        order_by='BOMVersion.id',
        cascade='all, delete-orphan'
    )

    # Stale UPDATEs (row version moved underneath us) raise StaleDataError
    __mapper_args__ = {
        'version_id_col': version,
        'version_id_generator': False,
    }

    @property
    def active_bom(self):
        """Return the currently active BOM version, if any."""
        for bom in self.bom_versions:
            if bom.is_active:
                return bom
        return None

    def __repr__(self):
        return f"<SKU(id={self.id}, internal_code='{self.internal_code}', version={self.version})>"
