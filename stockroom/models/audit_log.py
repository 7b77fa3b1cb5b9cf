"""
Audit Log model for tracking destructive or overriding inventory actions.
"""
import enum

from sqlalchemy import Column, BigInteger, String, Text, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from stockroom.database import Base, BigIntPK


class AuditAction(enum.Enum):
    """Enumeration of auditable actions."""
    # Ledger
    TRANSACTION_UPDATED = "TRANSACTION_UPDATED"
    TRANSACTION_DELETED = "TRANSACTION_DELETED"
    INITIAL_OVERWRITTEN = "INITIAL_OVERWRITTEN"

    # Catalog
    BOM_VERSION_UPDATED = "BOM_VERSION_UPDATED"
    BOM_VERSION_ACTIVATED = "BOM_VERSION_ACTIVATED"
    SKU_UPDATED = "SKU_UPDATED"
    COMPONENT_DEACTIVATED = "COMPONENT_DEACTIVATED"
    LOCATION_DEACTIVATED = "LOCATION_DEACTIVATED"


class AuditLog(Base):
    """
    Audit log entry.
    Multi-tenant: filtered by company_id.
    """
    __tablename__ = 'audit_log'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    company_id = Column(BigInteger, ForeignKey('company.id'), nullable=False, index=True)
    user_id = Column(BigInteger, nullable=True)
    action = Column(SQLEnum(AuditAction, name='audit_action'), nullable=False, index=True)
    resource_type = Column(String(50))  # e.g., 'transaction', 'bom_version'
    resource_id = Column(BigInteger)
    details = Column(Text)  # JSON encoded
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

    # Relationships
    company = relationship('Company')

    def __repr__(self):
        return f"<AuditLog {self.action.value} by user {self.user_id} at {self.created_at}>"
