"""BOM Line model."""
from sqlalchemy import Column, BigInteger, Numeric, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from stockroom.database import Base, BigIntPK


class BOMLine(Base):
    """Component quantity required to build one unit of a SKU."""

    __tablename__ = 'bom_line'
    __table_args__ = (
        UniqueConstraint('bom_version_id', 'component_id', name='uq_bom_line_component'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    bom_version_id = Column(BigInteger, ForeignKey('bom_version.id'), nullable=False, index=True)
    component_id = Column(BigInteger, ForeignKey('component.id'), nullable=False, index=True)
    quantity_per_unit = Column(Numeric(18, 4), nullable=False)
    notes = Column(Text, nullable=True)

    # Relationships
    bom_version = relationship('BOMVersion', back_populates='lines')
    component = relationship('Component')

    def __repr__(self):
        return f"<BOMLine(id={self.id}, component_id={self.component_id}, qty={self.quantity_per_unit})>"
