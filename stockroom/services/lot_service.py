"""
Lot tracking service.
Lot balances are derived from the lot's own transaction lines; expiry status
is computed on read and never stored.
"""
import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func

from stockroom.exceptions import NotFoundError, ValidationError
from stockroom.models import Lot, Component, Transaction, TransactionLine, TransactionType, TransactionStatus, SKU

logger = logging.getLogger(__name__)

EXPIRED = 'expired'
EXPIRING_SOON = 'expiring_soon'
OK = 'ok'


def calculate_expiry_status(expiry_date: Optional[date], warning_days: int = 30, today: Optional[date] = None) -> str:
    """
    Expiry status of a lot.

    - expired: expiry_date before today
    - expiring_soon: expiry_date within warning_days (inclusive)
    - ok: later, or no expiry date
    """
    if expiry_date is None:
        return OK

    today = today or date.today()
    if expiry_date < today:
        return EXPIRED
    if expiry_date <= today + timedelta(days=warning_days):
        return EXPIRING_SOON
    return OK


def is_lot_expired(expiry_date: Optional[date], today: Optional[date] = None) -> bool:
    return calculate_expiry_status(expiry_date, 0, today) == EXPIRED


def get_lot(session, company_id: int, lot_id: int) -> Lot:
    lot = session.query(Lot).filter(Lot.id == lot_id, Lot.company_id == company_id).first()
    if not lot:
        raise NotFoundError('Lot not found')
    return lot


def receive_into_lot(
    session,
    company_id: int,
    component_id: int,
    lot_number: str,
    quantity: Decimal,
    expiry_date: Optional[date] = None,
    supplier: str = None,
    notes: str = None
) -> Lot:
    """Create the lot for (component, lot_number) or reuse it, adding to its received quantity."""
    lot_number = lot_number.strip()
    if not lot_number:
        raise ValidationError('Lot number cannot be blank')

    lot = session.query(Lot).filter_by(component_id=component_id, lot_number=lot_number).first()
    if lot:
        if lot.company_id != company_id:
            raise NotFoundError('Lot not found')
        lot.received_quantity = Decimal(str(lot.received_quantity)) + quantity
        if expiry_date and not lot.expiry_date:
            lot.expiry_date = expiry_date
        return lot

    lot = Lot(
        company_id=company_id,
        component_id=component_id,
        lot_number=lot_number,
        expiry_date=expiry_date,
        received_quantity=quantity,
        supplier=supplier,
        notes=notes
    )
    session.add(lot)
    session.flush()
    logger.info(f"Lot {lot_number} created for component {component_id}")
    return lot


def release_lot_receipt(lot: Lot, quantity: Decimal):
    """Undo a receipt into a lot (used when a receipt is edited or deleted)."""
    lot.received_quantity = Decimal(str(lot.received_quantity)) - quantity


def _lot_balance_query(session, company_id: int):
    return session.query(
        TransactionLine.lot_id,
        func.sum(TransactionLine.quantity_change)
    ).join(Transaction, Transaction.id == TransactionLine.transaction_id).filter(
        Transaction.company_id == company_id,
        Transaction.status == TransactionStatus.APPROVED,
        TransactionLine.lot_id.isnot(None)
    )


def get_lot_balances(session, company_id: int, lot_ids: List[int]) -> Dict[int, Decimal]:
    """Balance per lot (sum of its lines); lots without lines map to 0."""
    balances = {lot_id: Decimal('0') for lot_id in lot_ids}
    if not lot_ids:
        return balances

    rows = _lot_balance_query(session, company_id).filter(
        TransactionLine.lot_id.in_(lot_ids)
    ).group_by(TransactionLine.lot_id).all()

    for lot_id, total in rows:
        balances[lot_id] = Decimal(str(total or 0))
    return balances


def get_lot_balance(session, company_id: int, lot_id: int) -> Decimal:
    get_lot(session, company_id, lot_id)
    return get_lot_balances(session, company_id, [lot_id])[lot_id]


def get_available_lots(
    session,
    company_id: int,
    component_id: int,
    exclude_expired: bool = True,
    today: Optional[date] = None
) -> List[dict]:
    """
    Lots of a component with positive balance in FEFO order.

    Earliest expiry first, undated lots last, oldest lot breaks ties.
    """
    lots = session.query(Lot).filter(
        Lot.company_id == company_id,
        Lot.component_id == component_id
    ).order_by(
        Lot.expiry_date.is_(None),
        Lot.expiry_date.asc(),
        Lot.id.asc()
    ).all()

    balances = get_lot_balances(session, company_id, [lot.id for lot in lots])

    available = []
    for lot in lots:
        balance = balances[lot.id]
        if balance <= 0:
            continue
        expired = is_lot_expired(lot.expiry_date, today)
        if expired and exclude_expired:
            continue
        available.append({
            'lot_id': lot.id,
            'lot_number': lot.lot_number,
            'available_quantity': balance,
            'expiry_date': lot.expiry_date,
            'is_expired': expired,
        })
    return available


def select_lots_for_consumption(
    session,
    company_id: int,
    component_id: int,
    required_quantity: Decimal,
    exclude_expired: bool = True,
    today: Optional[date] = None
) -> Tuple[List[dict], Decimal]:
    """
    FEFO allocation of a required quantity across available lots.

    Returns (selections, remaining) where remaining is the part no lot covers.
    """
    selections = []
    remaining = required_quantity

    for lot in get_available_lots(session, company_id, component_id, exclude_expired, today):
        if remaining <= 0:
            break
        to_consume = min(lot['available_quantity'], remaining)
        selections.append({
            'lot_id': lot['lot_id'],
            'lot_number': lot['lot_number'],
            'quantity': to_consume,
            'expiry_date': lot['expiry_date'],
        })
        remaining -= to_consume

    return selections, max(remaining, Decimal('0'))


def get_expiring_lots(session, company_id: int, warning_days: int = 30, today: Optional[date] = None) -> List[dict]:
    """Lots with positive balance expiring between today and today + warning_days."""
    today = today or date.today()
    horizon = today + timedelta(days=warning_days)

    lots = session.query(Lot, Component).join(Component, Component.id == Lot.component_id).filter(
        Lot.company_id == company_id,
        Lot.expiry_date.isnot(None),
        Lot.expiry_date >= today,
        Lot.expiry_date <= horizon
    ).order_by(Lot.expiry_date.asc(), Lot.id.asc()).all()

    balances = get_lot_balances(session, company_id, [lot.id for lot, _ in lots])

    result = []
    for lot, component in lots:
        balance = balances[lot.id]
        if balance <= 0:
            continue
        result.append({
            'id': lot.id,
            'lot_number': lot.lot_number,
            'component_id': component.id,
            'component_name': component.name,
            'component_sku_code': component.sku_code,
            'expiry_date': lot.expiry_date,
            'balance': balance,
            'days_until_expiry': (lot.expiry_date - today).days,
        })
    return result


def get_expired_lot_count(session, company_id: int, today: Optional[date] = None) -> int:
    """Number of expired lots that still hold stock."""
    today = today or date.today()
    lot_ids = [row[0] for row in session.query(Lot.id).filter(
        Lot.company_id == company_id,
        Lot.expiry_date.isnot(None),
        Lot.expiry_date < today
    ).all()]

    balances = get_lot_balances(session, company_id, lot_ids)
    return sum(1 for balance in balances.values() if balance > 0)


def get_affected_skus_for_lot(session, company_id: int, lot_id: int) -> List[dict]:
    """SKUs built from this lot, with quantity consumed and build count."""
    get_lot(session, company_id, lot_id)

    rows = session.query(
        SKU.id,
        SKU.name,
        SKU.internal_code,
        func.sum(TransactionLine.quantity_change),
        func.count(func.distinct(Transaction.id))
    ).join(
        Transaction, Transaction.id == TransactionLine.transaction_id
    ).join(
        SKU, SKU.id == Transaction.sku_id
    ).filter(
        Transaction.company_id == company_id,
        Transaction.type == TransactionType.BUILD,
        TransactionLine.lot_id == lot_id
    ).group_by(SKU.id, SKU.name, SKU.internal_code).order_by(SKU.name.asc()).all()

    return [
        {
            'sku_id': sku_id,
            'name': name,
            'internal_code': internal_code,
            'quantity_used': abs(Decimal(str(total or 0))),
            'transaction_count': count,
        }
        for sku_id, name, internal_code, total, count in rows
    ]
