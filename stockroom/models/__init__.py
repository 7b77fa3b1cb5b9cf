"""Models package - exports all SQLAlchemy models."""
# Tenancy
from stockroom.models.company import Company
from stockroom.models.location import Location, LocationType

# Catalog
from stockroom.models.component import Component
from stockroom.models.sku import SKU
from stockroom.models.bom_version import BOMVersion
from stockroom.models.bom_line import BOMLine

# Ledger
from stockroom.models.lot import Lot
from stockroom.models.transaction import Transaction, TransactionType, TransactionStatus
from stockroom.models.transaction_line import TransactionLine
from stockroom.models.finished_goods_line import FinishedGoodsLine

# Analytics / audit
from stockroom.models.sales_daily import SalesDaily
from stockroom.models.audit_log import AuditLog, AuditAction

__all__ = [
    'Company', 'Location', 'LocationType',
    'Component', 'SKU', 'BOMVersion', 'BOMLine',
    'Lot', 'Transaction', 'TransactionType', 'TransactionStatus',
    'TransactionLine', 'FinishedGoodsLine',
    'SalesDaily', 'AuditLog', 'AuditAction',
]
