"""
Inventory ledger service - Multi-Tenant.

Balances are never stored: they are the sum of quantity_change over approved
transaction lines, scoped by company (and optionally location). Every
mutation inserts a Transaction with its lines inside one unit of work.
"""
import logging
from datetime import date as date_type
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func

from stockroom.database import atomic
from stockroom.exceptions import ConflictError, ValidationError
from stockroom.models import (
    Component, Location, Transaction, TransactionLine, TransactionType, TransactionStatus, AuditAction
)
from stockroom.services import audit_service, lot_service
from stockroom.services.component_service import get_component
from stockroom.services.location_service import get_default_location_id, get_location
from stockroom.services.settings_service import get_company_settings
from stockroom.utils.formatters import to_decimal, format_decimal
from stockroom.utils.number_format import MAX_DECIMAL_PLACES, exceeds_storage_scale

logger = logging.getLogger(__name__)

ZERO = Decimal('0')

CRITICAL = 'critical'
WARNING = 'warning'
OK = 'ok'


# =====================================================
# INPUT HELPERS
# =====================================================

def parse_quantity(value, field: str = 'Quantity') -> Decimal:
    """Coerce a quantity to Decimal, mapping bad input to ValidationError."""
    try:
        quantity = to_decimal(value)
    except ValueError:
        raise ValidationError(f'{field} must be a number')
    if quantity is None:
        raise ValidationError(f'{field} is required')
    if exceeds_storage_scale(quantity):
        raise ValidationError(f'{field} cannot have more than {MAX_DECIMAL_PLACES} decimal places')
    return quantity


def require_positive(value, field: str = 'Quantity') -> Decimal:
    quantity = parse_quantity(value, field)
    if quantity <= 0:
        raise ValidationError(f'{field} must be greater than 0')
    return quantity


def parse_cost(value) -> Optional[Decimal]:
    if value is None or value == '':
        return None
    cost = parse_quantity(value, 'Cost per unit')
    if cost < 0:
        raise ValidationError('Cost per unit cannot be negative')
    return cost


# =====================================================
# BALANCES
# =====================================================

def _component_balance_query(session, company_id: int, *columns):
    return session.query(*columns).join(
        Transaction, Transaction.id == TransactionLine.transaction_id
    ).filter(
        Transaction.company_id == company_id,
        Transaction.status == TransactionStatus.APPROVED
    )


def get_component_quantity(session, company_id: int, component_id: int, location_id: int = None) -> Decimal:
    """
    On-hand quantity of a component.

    Sums every location of the company when location_id is omitted.
    Raises NotFoundError for components outside the company.
    """
    get_component(session, company_id, component_id)
    return get_component_quantities(session, company_id, [component_id], location_id)[component_id]


def get_component_quantities(
    session,
    company_id: int,
    component_ids: Iterable[int],
    location_id: int = None
) -> Dict[int, Decimal]:
    """Batch on-hand lookup; every requested id is present (0 when no lines)."""
    component_ids = list(component_ids)
    quantities = {component_id: ZERO for component_id in component_ids}
    if not component_ids:
        return quantities

    query = _component_balance_query(
        session, company_id,
        TransactionLine.component_id,
        func.sum(TransactionLine.quantity_change)
    ).filter(TransactionLine.component_id.in_(component_ids))

    if location_id is not None:
        query = query.filter(TransactionLine.location_id == location_id)

    for component_id, total in query.group_by(TransactionLine.component_id).all():
        quantities[component_id] = Decimal(str(total or 0))
    return quantities


def get_component_quantities_by_location(session, company_id: int, component_id: int) -> List[dict]:
    """Non-zero balances of one component per location, ordered by location name."""
    get_component(session, company_id, component_id)

    rows = _component_balance_query(
        session, company_id,
        Location.id,
        Location.name,
        func.sum(TransactionLine.quantity_change)
    ).join(
        Location, Location.id == TransactionLine.location_id
    ).filter(
        TransactionLine.component_id == component_id
    ).group_by(Location.id, Location.name).order_by(Location.name.asc()).all()

    result = []
    for location_id, location_name, total in rows:
        quantity = Decimal(str(total or 0))
        if quantity != 0:
            result.append({
                'location_id': location_id,
                'location_name': location_name,
                'quantity': quantity,
            })
    return result


def calculate_reorder_status(quantity_on_hand, reorder_point, warning_multiplier=Decimal('1.5')) -> str:
    """
    Classify stock against its reorder point.

    reorder_point == 0 disables tracking (always "ok"). Otherwise
    quantity <= reorder_point is "critical" and
    quantity <= reorder_point * warning_multiplier is "warning".
    """
    quantity = to_decimal(quantity_on_hand, ZERO)
    point = to_decimal(reorder_point, ZERO)
    multiplier = to_decimal(warning_multiplier, Decimal('1.5'))

    if point == 0:
        return OK
    if quantity <= point:
        return CRITICAL
    if quantity <= point * multiplier:
        return WARNING
    return OK


def get_components_with_reorder_status(
    session,
    company_id: int,
    status: str = None,
    location_id: int = None,
    include_inactive: bool = False
) -> List[dict]:
    """Components with on-hand quantity and reorder status, optionally filtered by status."""
    if status is not None and status not in (CRITICAL, WARNING, OK):
        raise ValidationError(f'Invalid reorder status: {status}')

    settings = get_company_settings(session, company_id)
    multiplier = settings['reorder_warning_multiplier']

    query = session.query(Component).filter(Component.company_id == company_id)
    if not include_inactive:
        query = query.filter(Component.is_active.is_(True))
    components = query.order_by(Component.name.asc()).all()

    quantities = get_component_quantities(session, company_id, [c.id for c in components], location_id)

    result = []
    for component in components:
        quantity = quantities[component.id]
        reorder_status = calculate_reorder_status(quantity, component.reorder_point, multiplier)
        if status and reorder_status != status:
            continue
        result.append({
            'id': component.id,
            'name': component.name,
            'sku_code': component.sku_code,
            'category': component.category,
            'unit_of_measure': component.unit_of_measure,
            'cost_per_unit': format_decimal(component.cost_per_unit),
            'reorder_point': format_decimal(component.reorder_point),
            'lead_time_days': component.lead_time_days,
            'quantity_on_hand': format_decimal(quantity),
            'reorder_status': reorder_status,
        })
    return result


# =====================================================
# LINE WRITERS (shared by create and edit paths)
# =====================================================

def write_receipt_lines(
    session,
    company_id: int,
    transaction: Transaction,
    component: Component,
    quantity: Decimal,
    location_id: int,
    cost_per_unit: Optional[Decimal] = None,
    update_component_cost: bool = False,
    lot_number: str = None,
    expiry_date: date_type = None
):
    """Append the single positive receipt line (optionally lot-linked)."""
    lot = None
    if lot_number:
        lot = lot_service.receive_into_lot(
            session, company_id, component.id, lot_number, quantity,
            expiry_date=expiry_date, supplier=transaction.supplier
        )

    if cost_per_unit is not None and update_component_cost:
        # Replace policy: the latest receipt cost becomes the component cost
        component.cost_per_unit = cost_per_unit

    line_cost = cost_per_unit if cost_per_unit is not None else component.cost_per_unit
    transaction.lines.append(TransactionLine(
        component_id=component.id,
        location_id=location_id,
        quantity_change=quantity,
        cost_per_unit=line_cost,
        lot=lot
    ))


def write_single_line(transaction: Transaction, component: Component, quantity: Decimal,
                      location_id: int, cost_per_unit: Optional[Decimal] = None):
    transaction.lines.append(TransactionLine(
        component_id=component.id,
        location_id=location_id,
        quantity_change=quantity,
        cost_per_unit=cost_per_unit if cost_per_unit is not None else component.cost_per_unit
    ))


def resolve_location_id(session, company_id: int, location_id: int = None) -> int:
    """Validate an explicit location or fall back to the default one."""
    if location_id is None:
        return get_default_location_id(session, company_id)
    return get_location(session, company_id, location_id).id


def shortage_item(component: Component, required: Decimal, available: Decimal) -> dict:
    return {
        'component_id': component.id,
        'component_name': component.name,
        'sku_code': component.sku_code,
        'required': required,
        'available': available,
        'shortage': required - available,
    }


# =====================================================
# TRANSACTION CREATION
# =====================================================

def create_receipt_transaction(
    session,
    company_id: int,
    component_id: int,
    quantity,
    date: date_type = None,
    supplier: str = None,
    cost_per_unit=None,
    update_component_cost: bool = False,
    location_id: int = None,
    lot_number: str = None,
    expiry_date: date_type = None,
    notes: str = None,
    created_by_id: int = None
) -> Transaction:
    """
    Receive stock of a component.

    Creates a receipt transaction with one positive line. With
    update_component_cost the supplied cost replaces the component cost.
    """
    quantity = require_positive(quantity)
    cost = parse_cost(cost_per_unit)

    with atomic(session):
        component = get_component(session, company_id, component_id)
        location_id = resolve_location_id(session, company_id, location_id)

        transaction = Transaction(
            company_id=company_id,
            type=TransactionType.RECEIPT,
            status=TransactionStatus.APPROVED,
            date=date or date_type.today(),
            location_id=location_id,
            supplier=supplier,
            notes=notes,
            created_by_id=created_by_id
        )
        session.add(transaction)
        write_receipt_lines(
            session, company_id, transaction, component, quantity, location_id,
            cost_per_unit=cost,
            update_component_cost=update_component_cost,
            lot_number=lot_number,
            expiry_date=expiry_date
        )

    logger.info(f"Receipt {transaction.id} for company {company_id}: component {component_id} +{quantity}")
    return transaction


def create_adjustment_transaction(
    session,
    company_id: int,
    component_id: int,
    quantity,
    reason: str,
    date: date_type = None,
    location_id: int = None,
    notes: str = None,
    created_by_id: int = None
) -> Transaction:
    """
    Adjust a component balance by a signed quantity (caller supplies the sign).
    """
    quantity = parse_quantity(quantity)
    if quantity == 0:
        raise ValidationError('Adjustment quantity cannot be zero')
    if not reason or not reason.strip():
        raise ValidationError('Adjustment reason is required')

    with atomic(session):
        component = get_component(session, company_id, component_id)
        location_id = resolve_location_id(session, company_id, location_id)

        transaction = Transaction(
            company_id=company_id,
            type=TransactionType.ADJUSTMENT,
            status=TransactionStatus.APPROVED,
            date=date or date_type.today(),
            location_id=location_id,
            reason=reason.strip(),
            notes=notes,
            created_by_id=created_by_id
        )
        session.add(transaction)
        write_single_line(transaction, component, quantity, location_id)

    logger.info(f"Adjustment {transaction.id} for company {company_id}: component {component_id} {quantity:+}")
    return transaction


def find_initial_transaction(session, company_id: int, component_id: int) -> Optional[Transaction]:
    """The initial transaction referencing a component, if any."""
    return session.query(Transaction).join(
        TransactionLine, TransactionLine.transaction_id == Transaction.id
    ).filter(
        Transaction.company_id == company_id,
        Transaction.type == TransactionType.INITIAL,
        TransactionLine.component_id == component_id
    ).first()


def create_initial_transaction(
    session,
    company_id: int,
    component_id: int,
    quantity,
    cost_per_unit=None,
    date: date_type = None,
    location_id: int = None,
    notes: str = None,
    allow_overwrite: bool = False,
    created_by_id: int = None
) -> Transaction:
    """
    Record the opening balance of a component.

    At most one initial transaction may exist per component. A second one
    raises ConflictError unless allow_overwrite is set, in which case the
    previous transaction is deleted (and audited) and replaced.
    """
    quantity = require_positive(quantity)
    cost = parse_cost(cost_per_unit)

    with atomic(session):
        component = get_component(session, company_id, component_id)

        existing = find_initial_transaction(session, company_id, component.id)
        if existing:
            if not allow_overwrite:
                raise ConflictError(
                    f'Component "{component.sku_code}" already has an initial inventory transaction',
                    payload={'transaction_id': existing.id, 'component_id': component.id}
                )

            previous = [line.to_dict() for line in existing.lines]
            audit_service.log_action(
                session, company_id, AuditAction.INITIAL_OVERWRITTEN,
                resource_type='transaction', resource_id=existing.id,
                details={'component_id': component.id, 'previous_lines': previous},
                user_id=created_by_id
            )
            logger.warning(
                f"Overwriting initial transaction {existing.id} for component {component.id} "
                f"(company {company_id})"
            )
            session.delete(existing)
            session.flush()

        location_id = resolve_location_id(session, company_id, location_id)

        if cost is not None:
            component.cost_per_unit = cost

        transaction = Transaction(
            company_id=company_id,
            type=TransactionType.INITIAL,
            status=TransactionStatus.APPROVED,
            date=date or date_type.today(),
            location_id=location_id,
            notes=notes,
            created_by_id=created_by_id
        )
        session.add(transaction)
        write_single_line(transaction, component, quantity, location_id, cost)

    logger.info(f"Initial transaction {transaction.id} for company {company_id}: component {component_id} = {quantity}")
    return transaction
