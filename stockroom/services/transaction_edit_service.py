"""
Transaction edit service - Multi-Tenant.

An edit drops the old lines and writes new ones inside the same unit of
work, so balances (always derived from lines) move from the old effect to
the new one atomically. Sufficiency checks run after the old lines are
gone, i.e. against the balance the edit would start from.
"""
import logging

from stockroom.database import atomic
from stockroom.exceptions import NotFoundError, ValidationError
from stockroom.models import Transaction, TransactionType, TransactionStatus, FinishedGoodsLine, AuditAction
from stockroom.services import audit_service, lot_service
from stockroom.services.bom_service import get_sku
from stockroom.services.build_service import apply_build
from stockroom.services.component_service import get_component
from stockroom.services.finished_goods_service import (
    resolve_outbound_location_id, write_outbound_lines, write_finished_goods_transfer_lines
)
from stockroom.services.inventory_service import (
    parse_quantity, require_positive, parse_cost, resolve_location_id, write_receipt_lines, write_single_line
)
from stockroom.services.location_service import get_location
from stockroom.services.transfer_service import validate_distinct_locations, get_transfer_locations, write_transfer_lines
from stockroom.utils.formatters import to_decimal

logger = logging.getLogger(__name__)

COMMON_FIELDS = {'date', 'notes'}

EDITABLE_FIELDS = {
    TransactionType.RECEIPT: {
        'component_id', 'quantity', 'supplier', 'cost_per_unit', 'update_component_cost',
        'location_id', 'lot_number', 'expiry_date'
    },
    TransactionType.ADJUSTMENT: {'component_id', 'quantity', 'reason', 'location_id'},
    TransactionType.INITIAL: {'quantity', 'cost_per_unit', 'location_id'},
    TransactionType.TRANSFER: {'component_id', 'quantity', 'from_location_id', 'to_location_id'},
    TransactionType.BUILD: {
        'units_to_build', 'location_id', 'allow_insufficient_inventory', 'output_to_finished_goods',
        'output_location_id', 'output_quantity', 'allow_expired_lots', 'sales_channel'
    },
    TransactionType.OUTBOUND: {'quantity', 'location_id', 'sales_channel'},
}


def get_editable_transaction(session, company_id: int, transaction_id: int) -> Transaction:
    """Approved transaction of the company, or NotFoundError."""
    transaction = session.query(Transaction).filter(
        Transaction.id == transaction_id,
        Transaction.company_id == company_id,
        Transaction.status == TransactionStatus.APPROVED
    ).first()
    if not transaction:
        raise NotFoundError('Transaction not found or cannot be edited')
    return transaction


def _release_lots(transaction: Transaction):
    if transaction.type != TransactionType.RECEIPT:
        return
    for line in transaction.lines:
        if line.lot is not None:
            lot_service.release_lot_receipt(line.lot, to_decimal(line.quantity_change))


def _clear_lines(session, transaction: Transaction):
    _release_lots(transaction)
    transaction.lines.clear()
    transaction.finished_goods_lines.clear()
    session.flush()


def _first(lines):
    return lines[0] if lines else None


def _positive_line(lines):
    for line in lines:
        if line.quantity_change > 0:
            return line
    return _first(lines)


# =====================================================
# PER-TYPE UPDATERS
# =====================================================

def _update_receipt(session, company_id: int, transaction: Transaction, changes: dict):
    old = _first(transaction.lines)
    old_lot = old.lot if old else None

    component = get_component(session, company_id, changes.get('component_id', old.component_id if old else None))
    quantity = require_positive(changes.get('quantity', old.quantity_change if old else None))
    if 'cost_per_unit' in changes:
        cost = parse_cost(changes['cost_per_unit'])
    else:
        cost = old.cost_per_unit if old else None
    lot_number = changes['lot_number'] if 'lot_number' in changes else (old_lot.lot_number if old_lot else None)
    expiry_date = changes['expiry_date'] if 'expiry_date' in changes else (old_lot.expiry_date if old_lot else None)
    location_id = resolve_location_id(session, company_id, changes.get('location_id', transaction.location_id))

    if 'supplier' in changes:
        transaction.supplier = changes['supplier']

    _clear_lines(session, transaction)
    transaction.location_id = location_id
    write_receipt_lines(
        session, company_id, transaction, component, quantity, location_id,
        cost_per_unit=cost,
        update_component_cost=bool(changes.get('update_component_cost', False)),
        lot_number=lot_number,
        expiry_date=expiry_date
    )


def _update_adjustment(session, company_id: int, transaction: Transaction, changes: dict):
    if 'reason' in changes:
        reason = changes['reason']
        if not reason or not reason.strip():
            raise ValidationError('Adjustment reason is required')
        transaction.reason = reason.strip()

    if transaction.finished_goods_lines and not transaction.lines:
        if 'component_id' in changes:
            raise ValidationError('Finished goods adjustments cannot change component')
        old = transaction.finished_goods_lines[0]
        quantity = parse_quantity(changes.get('quantity', old.quantity_change))
        if quantity == 0:
            raise ValidationError('Adjustment quantity cannot be zero')
        location = get_location(session, company_id, changes.get('location_id', old.location_id))
        sku_id = old.sku_id

        _clear_lines(session, transaction)
        transaction.location_id = location.id
        transaction.finished_goods_lines.append(FinishedGoodsLine(
            sku_id=sku_id, location_id=location.id, quantity_change=quantity
        ))
        return

    old = _first(transaction.lines)
    component = get_component(session, company_id, changes.get('component_id', old.component_id if old else None))
    quantity = parse_quantity(changes.get('quantity', old.quantity_change if old else None))
    if quantity == 0:
        raise ValidationError('Adjustment quantity cannot be zero')
    location_id = resolve_location_id(session, company_id, changes.get('location_id', transaction.location_id))

    _clear_lines(session, transaction)
    transaction.location_id = location_id
    write_single_line(transaction, component, quantity, location_id)


def _update_initial(session, company_id: int, transaction: Transaction, changes: dict):
    old = _first(transaction.lines)
    if old is None:
        raise ValidationError('Initial transaction has no lines')

    component = get_component(session, company_id, old.component_id)
    quantity = require_positive(changes.get('quantity', old.quantity_change))
    cost = parse_cost(changes['cost_per_unit']) if 'cost_per_unit' in changes else old.cost_per_unit
    location_id = resolve_location_id(session, company_id, changes.get('location_id', old.location_id))

    _clear_lines(session, transaction)
    transaction.location_id = location_id
    if 'cost_per_unit' in changes and cost is not None:
        component.cost_per_unit = cost
    write_single_line(transaction, component, quantity, location_id, cost)


def _update_transfer(session, company_id: int, transaction: Transaction, changes: dict):
    from_location_id = changes.get('from_location_id', transaction.from_location_id)
    to_location_id = changes.get('to_location_id', transaction.to_location_id)
    validate_distinct_locations(from_location_id, to_location_id)
    source, destination = get_transfer_locations(session, company_id, from_location_id, to_location_id)

    if transaction.finished_goods_lines and not transaction.lines:
        if 'component_id' in changes:
            raise ValidationError('Finished goods transfers cannot change component')
        old = _positive_line(transaction.finished_goods_lines)
        quantity = require_positive(changes.get('quantity', old.quantity_change))
        sku = get_sku(session, company_id, old.sku_id)

        _clear_lines(session, transaction)
        write_finished_goods_transfer_lines(session, company_id, transaction, sku, quantity, source, destination)
    else:
        old = _positive_line(transaction.lines)
        component = get_component(
            session, company_id, changes.get('component_id', old.component_id if old else None)
        )
        quantity = require_positive(changes.get('quantity', old.quantity_change if old else None))

        _clear_lines(session, transaction)
        write_transfer_lines(session, company_id, transaction, component, quantity, source, destination)

    transaction.from_location_id = source.id
    transaction.to_location_id = destination.id


def _update_build(session, company_id: int, transaction: Transaction, changes: dict):
    bom = transaction.bom_version
    if bom is None:
        raise ValidationError('Build transaction has no BOM version')

    units = require_positive(changes.get('units_to_build', transaction.units_built), 'Units to build')
    location_id = resolve_location_id(session, company_id, changes.get('location_id', transaction.location_id))

    old_output = _first(transaction.finished_goods_lines)
    output_to_finished_goods = changes.get('output_to_finished_goods', old_output is not None)
    output_location_id = changes.get('output_location_id', old_output.location_id if old_output else None)
    output_quantity = changes.get('output_quantity')
    if output_quantity is not None:
        output_quantity = require_positive(output_quantity, 'Output quantity')

    if 'sales_channel' in changes:
        transaction.sales_channel = changes['sales_channel']

    _clear_lines(session, transaction)
    transaction.location_id = location_id
    items = apply_build(
        session, company_id, transaction, bom, units, location_id,
        allow_insufficient_inventory=bool(changes.get('allow_insufficient_inventory', False)),
        output_to_finished_goods=output_to_finished_goods,
        output_location_id=output_location_id,
        output_quantity=output_quantity,
        allow_expired_lots=bool(changes.get('allow_expired_lots', False))
    )
    if items:
        logger.warning(f"Edited build {transaction.id} proceeds with {len(items)} insufficient component(s)")


def _update_outbound(session, company_id: int, transaction: Transaction, changes: dict):
    old = _first(transaction.finished_goods_lines)
    sku = get_sku(session, company_id, transaction.sku_id)
    quantity = require_positive(changes.get('quantity', -old.quantity_change if old else None))
    location_id = resolve_outbound_location_id(
        session, company_id, changes.get('location_id', old.location_id if old else None)
    )

    if 'sales_channel' in changes:
        transaction.sales_channel = changes['sales_channel']

    _clear_lines(session, transaction)
    transaction.location_id = location_id
    write_outbound_lines(session, company_id, transaction, sku, quantity, location_id)


UPDATERS = {
    TransactionType.RECEIPT: _update_receipt,
    TransactionType.ADJUSTMENT: _update_adjustment,
    TransactionType.INITIAL: _update_initial,
    TransactionType.TRANSFER: _update_transfer,
    TransactionType.BUILD: _update_build,
    TransactionType.OUTBOUND: _update_outbound,
}


# =====================================================
# PUBLIC OPERATIONS
# =====================================================

def update_transaction(session, company_id: int, transaction_id: int, changes: dict, user_id: int = None) -> Transaction:
    """
    Replace the effect of an approved transaction.

    Fields not present in changes keep their current value. The transaction
    type cannot change. Any failure (validation, insufficient stock, foreign
    reference) rolls the whole edit back and leaves the old lines in place.
    """
    changes = dict(changes or {})
    if 'from_location_id' in changes and 'to_location_id' in changes:
        validate_distinct_locations(changes['from_location_id'], changes['to_location_id'])

    with atomic(session):
        transaction = get_editable_transaction(session, company_id, transaction_id)

        allowed = EDITABLE_FIELDS[transaction.type] | COMMON_FIELDS
        unknown = sorted(set(changes) - allowed)
        if unknown:
            raise ValidationError(
                f'Cannot edit {", ".join(unknown)} on a {transaction.type.value} transaction'
            )

        before = transaction.to_dict()
        UPDATERS[transaction.type](session, company_id, transaction, changes)

        if changes.get('date'):
            transaction.date = changes['date']
        if 'notes' in changes:
            transaction.notes = changes['notes']

        session.flush()
        audit_service.log_action(
            session, company_id, AuditAction.TRANSACTION_UPDATED,
            resource_type='transaction', resource_id=transaction.id,
            details={'before': before, 'changes': sorted(changes)},
            user_id=user_id
        )

    logger.info(f"Transaction {transaction_id} updated for company {company_id}")
    return transaction


def delete_transaction(session, company_id: int, transaction_id: int, user_id: int = None) -> bool:
    """Remove an approved transaction and all its lines; balances follow."""
    with atomic(session):
        transaction = get_editable_transaction(session, company_id, transaction_id)
        snapshot = transaction.to_dict()

        _release_lots(transaction)
        audit_service.log_action(
            session, company_id, AuditAction.TRANSACTION_DELETED,
            resource_type='transaction', resource_id=transaction.id,
            details=snapshot,
            user_id=user_id
        )
        session.delete(transaction)

    logger.info(f"Transaction {transaction_id} deleted for company {company_id}")
    return True
