"""
Export service - Multi-Tenant.
Flat rows for components, SKUs and transaction lines, written as CSV or XLSX.
"""
import io
import logging
from datetime import date as date_type
from typing import Dict, List, Sequence, Tuple

from openpyxl import Workbook
from openpyxl.styles import Font

from stockroom.models import Transaction, TransactionType
from stockroom.services.import_service import to_csv
from stockroom.services.inventory_service import get_components_with_reorder_status
from stockroom.services.sku_service import get_skus_with_costs
from stockroom.utils.formatters import format_decimal

logger = logging.getLogger(__name__)

COMPONENT_COLUMNS = [
    'sku_code', 'name', 'category', 'unit_of_measure', 'cost_per_unit',
    'reorder_point', 'lead_time_days', 'quantity_on_hand', 'reorder_status',
]

SKU_COLUMNS = [
    'internal_code', 'name', 'sales_channel', 'active_bom_name', 'unit_cost',
    'max_buildable_units', 'finished_goods_quantity',
]

TRANSACTION_COLUMNS = [
    'transaction_id', 'date', 'type', 'item_kind', 'item_code', 'location',
    'quantity_change', 'cost_per_unit', 'lot_number', 'supplier', 'reason', 'notes',
]


def component_export_rows(session, company_id: int, location_id: int = None) -> List[dict]:
    return get_components_with_reorder_status(session, company_id, location_id=location_id)


def sku_export_rows(session, company_id: int, location_id: int = None) -> List[dict]:
    return get_skus_with_costs(session, company_id, location_id=location_id)


def transaction_export_rows(
    session,
    company_id: int,
    start_date: date_type = None,
    end_date: date_type = None,
    transaction_type: TransactionType = None
) -> List[dict]:
    """One row per ledger line (component and finished goods), oldest first."""
    query = session.query(Transaction).filter(Transaction.company_id == company_id)
    if start_date:
        query = query.filter(Transaction.date >= start_date)
    if end_date:
        query = query.filter(Transaction.date <= end_date)
    if transaction_type:
        query = query.filter(Transaction.type == transaction_type)

    rows = []
    for transaction in query.order_by(Transaction.date, Transaction.id).all():
        base = {
            'transaction_id': transaction.id,
            'date': transaction.date.isoformat() if transaction.date else None,
            'type': transaction.type.value,
            'supplier': transaction.supplier,
            'reason': transaction.reason,
            'notes': transaction.notes,
        }
        for line in transaction.lines:
            rows.append(dict(
                base,
                item_kind='component',
                item_code=line.component.sku_code,
                location=line.location.name,
                quantity_change=format_decimal(line.quantity_change),
                cost_per_unit=format_decimal(line.cost_per_unit),
                lot_number=line.lot.lot_number if line.lot else None,
            ))
        for line in transaction.finished_goods_lines:
            rows.append(dict(
                base,
                item_kind='sku',
                item_code=line.sku.internal_code,
                location=line.location.name,
                quantity_change=format_decimal(line.quantity_change),
                cost_per_unit=format_decimal(line.cost_per_unit),
                lot_number=None,
            ))
    return rows


def rows_to_csv(rows: List[dict], columns: Sequence[str]) -> str:
    """Header row followed by one line per dict, in column order."""
    return to_csv([list(columns)] + [[row.get(column) for column in columns] for row in rows])


def export_components_csv(session, company_id: int, location_id: int = None) -> str:
    return rows_to_csv(component_export_rows(session, company_id, location_id), COMPONENT_COLUMNS)


def export_skus_csv(session, company_id: int, location_id: int = None) -> str:
    return rows_to_csv(sku_export_rows(session, company_id, location_id), SKU_COLUMNS)


def export_transactions_csv(session, company_id: int, start_date: date_type = None, end_date: date_type = None) -> str:
    return rows_to_csv(transaction_export_rows(session, company_id, start_date, end_date), TRANSACTION_COLUMNS)


def build_workbook(sheets: Dict[str, Tuple[Sequence[str], List[dict]]]) -> bytes:
    """
    Write an XLSX workbook with one sheet per entry.

    Args:
        sheets: sheet title -> (columns, rows)
    """
    workbook = Workbook()
    workbook.remove(workbook.active)

    for title, (columns, rows) in sheets.items():
        sheet = workbook.create_sheet(title=title[:31])
        sheet.append(list(columns))
        for cell in sheet[1]:
            cell.font = Font(bold=True)
        for row in rows:
            sheet.append([row.get(column) for column in columns])

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def export_inventory_workbook(session, company_id: int, location_id: int = None) -> bytes:
    """Components, SKUs and transactions of a company in one workbook."""
    content = build_workbook({
        'Components': (COMPONENT_COLUMNS, component_export_rows(session, company_id, location_id)),
        'SKUs': (SKU_COLUMNS, sku_export_rows(session, company_id, location_id)),
        'Transactions': (TRANSACTION_COLUMNS, transaction_export_rows(session, company_id)),
    })
    logger.info(f"Inventory workbook exported for company {company_id}")
    return content
