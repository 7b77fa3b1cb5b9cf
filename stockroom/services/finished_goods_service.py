"""
Finished goods service - Multi-Tenant.
SKU balances are the sum of finished-goods lines, like component balances.
"""
import logging
from datetime import date as date_type
from decimal import Decimal
from typing import Dict, Iterable

from sqlalchemy import func

from stockroom.database import atomic
from stockroom.exceptions import InsufficientInventoryError, ValidationError
from stockroom.models import SKU, Location, Transaction, TransactionType, TransactionStatus, FinishedGoodsLine
from stockroom.services.bom_service import get_sku
from stockroom.services.inventory_service import parse_quantity, require_positive
from stockroom.services.location_service import get_finished_goods_location_id, get_location
from stockroom.services.settings_service import get_company_settings
from stockroom.services.transfer_service import validate_distinct_locations, get_transfer_locations
from stockroom.utils.formatters import format_quantity

logger = logging.getLogger(__name__)

ZERO = Decimal('0')


def _sku_balance_query(session, company_id: int, *columns):
    return session.query(*columns).join(
        Transaction, Transaction.id == FinishedGoodsLine.transaction_id
    ).filter(
        Transaction.company_id == company_id,
        Transaction.status == TransactionStatus.APPROVED
    )


def get_sku_quantities(session, company_id: int, sku_ids: Iterable[int], location_id: int = None) -> Dict[int, Decimal]:
    """Finished-goods on hand per SKU; every requested id is present."""
    sku_ids = list(sku_ids)
    quantities = {sku_id: ZERO for sku_id in sku_ids}
    if not sku_ids:
        return quantities

    query = _sku_balance_query(
        session, company_id,
        FinishedGoodsLine.sku_id,
        func.sum(FinishedGoodsLine.quantity_change)
    ).filter(FinishedGoodsLine.sku_id.in_(sku_ids))

    if location_id is not None:
        query = query.filter(FinishedGoodsLine.location_id == location_id)

    for sku_id, total in query.group_by(FinishedGoodsLine.sku_id).all():
        quantities[sku_id] = Decimal(str(total or 0))
    return quantities


def get_sku_quantity(session, company_id: int, sku_id: int, location_id: int = None) -> Decimal:
    get_sku(session, company_id, sku_id)
    return get_sku_quantities(session, company_id, [sku_id], location_id)[sku_id]


def get_sku_inventory_summary(session, company_id: int, sku_id: int) -> dict:
    """Total finished goods for a SKU plus non-zero balances per location (largest first)."""
    get_sku(session, company_id, sku_id)

    rows = _sku_balance_query(
        session, company_id,
        Location.id,
        Location.name,
        func.sum(FinishedGoodsLine.quantity_change)
    ).join(
        Location, Location.id == FinishedGoodsLine.location_id
    ).filter(
        FinishedGoodsLine.sku_id == sku_id
    ).group_by(Location.id, Location.name).all()

    by_location = []
    total = ZERO
    for location_id, location_name, quantity in rows:
        quantity = Decimal(str(quantity or 0))
        if quantity == 0:
            continue
        by_location.append({
            'location_id': location_id,
            'location_name': location_name,
            'quantity': quantity,
        })
        total += quantity

    by_location.sort(key=lambda entry: entry['quantity'], reverse=True)
    return {'total_quantity': total, 'by_location': by_location}


def sku_shortage_item(sku: SKU, required: Decimal, available: Decimal) -> dict:
    return {
        'sku_id': sku.id,
        'name': sku.name,
        'code': sku.internal_code,
        'required': required,
        'available': available,
        'shortage': required - available,
    }


def ensure_finished_goods_available(session, company_id: int, sku: SKU, location_id: int, quantity: Decimal):
    """Reject a draw larger than the SKU balance unless negative inventory is allowed."""
    if get_company_settings(session, company_id)['allow_negative_inventory']:
        return

    available = get_sku_quantities(session, company_id, [sku.id], location_id)[sku.id]
    if available < quantity:
        raise InsufficientInventoryError(
            f'Insufficient finished goods for {sku.internal_code}. '
            f'Available: {format_quantity(available)}, Required: {format_quantity(quantity)}',
            items=[sku_shortage_item(sku, quantity, available)]
        )


def resolve_outbound_location_id(session, company_id: int, location_id: int = None) -> int:
    if location_id is None:
        return get_finished_goods_location_id(session, company_id)
    return get_location(session, company_id, location_id).id


def write_outbound_lines(session, company_id: int, transaction: Transaction, sku: SKU, quantity: Decimal, location_id: int):
    ensure_finished_goods_available(session, company_id, sku, location_id, quantity)
    transaction.finished_goods_lines.append(FinishedGoodsLine(
        sku_id=sku.id,
        location_id=location_id,
        quantity_change=-quantity
    ))


def create_outbound_transaction(
    session,
    company_id: int,
    sku_id: int,
    quantity,
    location_id: int = None,
    sales_channel: str = None,
    date: date_type = None,
    notes: str = None,
    created_by_id: int = None
) -> Transaction:
    """
    Ship finished goods of a SKU.

    Defaults to the company's finished-goods location (or the default
    location when there is none). Fails with InsufficientInventoryError when
    the SKU balance at that location is too low, unless the company allows
    negative inventory.
    """
    quantity = require_positive(quantity)

    with atomic(session):
        sku = get_sku(session, company_id, sku_id)
        location_id = resolve_outbound_location_id(session, company_id, location_id)

        transaction = Transaction(
            company_id=company_id,
            type=TransactionType.OUTBOUND,
            status=TransactionStatus.APPROVED,
            date=date or date_type.today(),
            sku_id=sku.id,
            location_id=location_id,
            sales_channel=sales_channel or sku.sales_channel,
            notes=notes,
            created_by_id=created_by_id
        )
        session.add(transaction)
        write_outbound_lines(session, company_id, transaction, sku, quantity, location_id)

    logger.info(f"Outbound {transaction.id} for company {company_id}: SKU {sku_id} -{quantity}")
    return transaction


def adjust_finished_goods(
    session,
    company_id: int,
    sku_id: int,
    location_id: int,
    quantity,
    reason: str,
    date: date_type = None,
    notes: str = None,
    created_by_id: int = None
) -> Transaction:
    """Signed finished-goods correction at one location (adjustment type)."""
    quantity = parse_quantity(quantity)
    if quantity == 0:
        raise ValidationError('Adjustment quantity cannot be zero')
    if not reason or not reason.strip():
        raise ValidationError('Adjustment reason is required')

    with atomic(session):
        sku = get_sku(session, company_id, sku_id)
        location = get_location(session, company_id, location_id)

        transaction = Transaction(
            company_id=company_id,
            type=TransactionType.ADJUSTMENT,
            status=TransactionStatus.APPROVED,
            date=date or date_type.today(),
            sku_id=sku.id,
            location_id=location.id,
            reason=reason.strip(),
            notes=notes,
            created_by_id=created_by_id
        )
        session.add(transaction)
        transaction.finished_goods_lines.append(FinishedGoodsLine(
            sku_id=sku.id,
            location_id=location.id,
            quantity_change=quantity
        ))

    logger.info(f"Finished goods adjustment {transaction.id}: SKU {sku_id} {quantity:+} at location {location_id}")
    return transaction


def write_finished_goods_transfer_lines(
    session,
    company_id: int,
    transaction: Transaction,
    sku: SKU,
    quantity: Decimal,
    source: Location,
    destination: Location
):
    available = get_sku_quantities(session, company_id, [sku.id], source.id)[sku.id]
    if available < quantity:
        raise InsufficientInventoryError(
            f'Insufficient finished goods at source location. '
            f'Available: {format_quantity(available)}, Required: {format_quantity(quantity)}',
            items=[sku_shortage_item(sku, quantity, available)]
        )

    transaction.finished_goods_lines.append(FinishedGoodsLine(
        sku_id=sku.id, location_id=source.id, quantity_change=-quantity
    ))
    transaction.finished_goods_lines.append(FinishedGoodsLine(
        sku_id=sku.id, location_id=destination.id, quantity_change=quantity
    ))


def transfer_finished_goods(
    session,
    company_id: int,
    sku_id: int,
    from_location_id: int,
    to_location_id: int,
    quantity,
    date: date_type = None,
    notes: str = None,
    created_by_id: int = None
) -> Transaction:
    """Move finished goods between locations as two netting lines."""
    validate_distinct_locations(from_location_id, to_location_id)
    quantity = require_positive(quantity)

    with atomic(session):
        sku = get_sku(session, company_id, sku_id)
        source, destination = get_transfer_locations(session, company_id, from_location_id, to_location_id)

        transaction = Transaction(
            company_id=company_id,
            type=TransactionType.TRANSFER,
            status=TransactionStatus.APPROVED,
            date=date or date_type.today(),
            sku_id=sku.id,
            from_location_id=source.id,
            to_location_id=destination.id,
            notes=notes,
            created_by_id=created_by_id
        )
        session.add(transaction)
        write_finished_goods_transfer_lines(session, company_id, transaction, sku, quantity, source, destination)

    logger.info(f"Finished goods transfer {transaction.id}: SKU {sku_id} {quantity} from {from_location_id} to {to_location_id}")
    return transaction
