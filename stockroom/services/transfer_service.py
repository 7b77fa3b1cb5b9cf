"""
Transfer service - Multi-Tenant.
Moves component stock between locations as a paired debit/credit.
"""
import logging
from datetime import date as date_type
from decimal import Decimal

from stockroom.database import atomic
from stockroom.exceptions import InsufficientInventoryError, NotFoundError, ValidationError
from stockroom.models import Component, Location, Transaction, TransactionLine, TransactionType, TransactionStatus
from stockroom.services.component_service import get_component
from stockroom.services.inventory_service import get_component_quantities, require_positive, shortage_item
from stockroom.services.location_service import get_location
from stockroom.utils.formatters import format_quantity

logger = logging.getLogger(__name__)


def validate_distinct_locations(from_location_id: int, to_location_id: int):
    """Reject same-location moves before any storage access."""
    if from_location_id is None or to_location_id is None:
        raise ValidationError('Both source and destination locations are required')
    if from_location_id == to_location_id:
        raise ValidationError('Cannot transfer to the same location')


def get_transfer_locations(session, company_id: int, from_location_id: int, to_location_id: int):
    """Both ends of a transfer, active and owned by the company."""
    try:
        source = get_location(session, company_id, from_location_id)
    except NotFoundError:
        raise NotFoundError('Source location not found or not active')
    try:
        destination = get_location(session, company_id, to_location_id)
    except NotFoundError:
        raise NotFoundError('Destination location not found or not active')
    return source, destination


def write_transfer_lines(
    session,
    company_id: int,
    transaction: Transaction,
    component: Component,
    quantity: Decimal,
    source: Location,
    destination: Location
):
    """
    Check the source balance and append the two lines of a transfer.

    The lines net to zero: -quantity at the source, +quantity at the
    destination, same component, same cost snapshot.
    """
    available = get_component_quantities(session, company_id, [component.id], source.id)[component.id]
    if available < quantity:
        raise InsufficientInventoryError(
            f'Insufficient inventory at source location. '
            f'Available: {format_quantity(available)}, Required: {format_quantity(quantity)}',
            items=[shortage_item(component, quantity, available)]
        )

    transaction.lines.append(TransactionLine(
        component_id=component.id,
        location_id=source.id,
        quantity_change=-quantity,
        cost_per_unit=component.cost_per_unit
    ))
    transaction.lines.append(TransactionLine(
        component_id=component.id,
        location_id=destination.id,
        quantity_change=quantity,
        cost_per_unit=component.cost_per_unit
    ))


def create_transfer_transaction(
    session,
    company_id: int,
    component_id: int,
    from_location_id: int,
    to_location_id: int,
    quantity,
    date: date_type = None,
    notes: str = None,
    created_by_id: int = None
) -> Transaction:
    """
    Transfer a component quantity from one location to another.

    Raises:
        ValidationError: same source and destination, or non-positive quantity
        NotFoundError: component or either location missing, inactive or foreign
        InsufficientInventoryError: source balance below the requested quantity
    """
    validate_distinct_locations(from_location_id, to_location_id)
    quantity = require_positive(quantity)

    with atomic(session):
        component = get_component(session, company_id, component_id)
        source, destination = get_transfer_locations(session, company_id, from_location_id, to_location_id)

        transaction = Transaction(
            company_id=company_id,
            type=TransactionType.TRANSFER,
            status=TransactionStatus.APPROVED,
            date=date or date_type.today(),
            from_location_id=source.id,
            to_location_id=destination.id,
            notes=notes,
            created_by_id=created_by_id
        )
        session.add(transaction)
        write_transfer_lines(session, company_id, transaction, component, quantity, source, destination)

    logger.info(
        f"Transfer {transaction.id} for company {company_id}: component {component_id} "
        f"{quantity} from location {from_location_id} to {to_location_id}"
    )
    return transaction
