"""Location model."""
from sqlalchemy import Column, BigInteger, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from stockroom.database import Base, BigIntPK


class LocationType:
    """Allowed location types."""
    WAREHOUSE = 'warehouse'
    THREEPL = 'threepl'
    FBA = 'fba'
    FINISHED_GOODS = 'finished_goods'

    ALL = (WAREHOUSE, THREEPL, FBA, FINISHED_GOODS)


class Location(Base):
    """Physical or logical inventory bucket scoped to a company."""

    __tablename__ = 'location'
    __table_args__ = (
        UniqueConstraint('company_id', 'name', name='uq_location_company_name'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    company_id = Column(BigInteger, ForeignKey('company.id'), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    type = Column(String(30), nullable=False, default=LocationType.WAREHOUSE)
    is_default = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    company = relationship('Company', back_populates='locations')

    def __repr__(self):
        return f"<Location(id={self.id}, name='{self.name}', type='{self.type}', default={self.is_default})>"
