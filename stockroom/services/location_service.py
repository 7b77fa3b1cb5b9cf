"""
Location service - Multi-Tenant.
Default location handling, validation and soft-delete transitions.
"""
import logging
from typing import List, Optional, Tuple

from sqlalchemy import func

from stockroom.database import atomic
from stockroom.exceptions import ConflictError, NotFoundError, ValidationError
from stockroom.models import Location, LocationType, TransactionLine, FinishedGoodsLine, Transaction, TransactionStatus, AuditAction
from stockroom.services import audit_service

logger = logging.getLogger(__name__)

DEFAULT_LOCATION_NAME = 'Main Warehouse'


def ensure_default_location(session, company_id: int) -> Location:
    """
    Make sure the company has a default location.

    Promotes the oldest active location when none is flagged as default, or
    creates "Main Warehouse" when the company has no active location at all.
    Only flushes; the caller's unit of work commits.
    """
    default = session.query(Location).filter_by(
        company_id=company_id, is_default=True, is_active=True
    ).first()
    if default:
        return default

    oldest = session.query(Location).filter_by(
        company_id=company_id, is_active=True
    ).order_by(Location.id.asc()).first()

    if oldest:
        oldest.is_default = True
        session.flush()
        logger.info(f"Promoted location {oldest.id} to default for company {company_id}")
        return oldest

    location = Location(
        company_id=company_id,
        name=DEFAULT_LOCATION_NAME,
        type=LocationType.WAREHOUSE,
        is_default=True,
        is_active=True
    )
    session.add(location)
    session.flush()
    logger.info(f"Created default location {location.id} for company {company_id}")
    return location


def get_default_location_id(session, company_id: int) -> int:
    """Return the default location id, creating one if needed."""
    return ensure_default_location(session, company_id).id


def get_location(session, company_id: int, location_id: int, require_active: bool = True) -> Location:
    """
    Fetch a location scoped to the company.

    Raises NotFoundError when the location does not exist, belongs to another
    company, or is inactive while an active one is required.
    """
    query = session.query(Location).filter(
        Location.id == location_id,
        Location.company_id == company_id
    )
    if require_active:
        query = query.filter(Location.is_active.is_(True))

    location = query.first()
    if not location:
        raise NotFoundError('Location not found or not active')
    return location


def get_finished_goods_location_id(session, company_id: int) -> int:
    """First active finished-goods location, falling back to the default location."""
    location = session.query(Location).filter_by(
        company_id=company_id,
        type=LocationType.FINISHED_GOODS,
        is_active=True
    ).order_by(Location.is_default.desc(), Location.id.asc()).first()

    if location:
        return location.id
    return get_default_location_id(session, company_id)


def list_locations(session, company_id: int, include_inactive: bool = False) -> List[Location]:
    """List company locations, default first then by name."""
    query = session.query(Location).filter(Location.company_id == company_id)
    if not include_inactive:
        query = query.filter(Location.is_active.is_(True))
    return query.order_by(Location.is_default.desc(), Location.name.asc()).all()


def create_location(
    session,
    company_id: int,
    name: str,
    type: str = LocationType.WAREHOUSE,
    is_default: bool = False
) -> Location:
    """Create a location; the first location of a company becomes default."""
    name = (name or '').strip()
    if not name:
        raise ValidationError('Location name is required')
    if type not in LocationType.ALL:
        raise ValidationError(f"Invalid location type: {type}")

    with atomic(session):
        duplicate = session.query(Location).filter(
            Location.company_id == company_id,
            func.lower(Location.name) == name.lower()
        ).first()
        if duplicate:
            raise ConflictError(f'A location named "{name}" already exists')

        has_default = session.query(Location).filter_by(
            company_id=company_id, is_default=True, is_active=True
        ).first() is not None

        if is_default and has_default:
            _clear_default(session, company_id)

        location = Location(
            company_id=company_id,
            name=name,
            type=type,
            is_default=is_default or not has_default,
            is_active=True
        )
        session.add(location)

    logger.info(f"Location {location.id} created for company {company_id}")
    return location


def _clear_default(session, company_id: int):
    session.query(Location).filter_by(
        company_id=company_id, is_default=True
    ).update({'is_default': False}, synchronize_session='fetch')


def set_default_location(session, company_id: int, location_id: int) -> Location:
    """Make a location the company default, unsetting the previous one."""
    with atomic(session):
        location = get_location(session, company_id, location_id)
        _clear_default(session, company_id)
        location.is_default = True

    logger.info(f"Location {location_id} is now default for company {company_id}")
    return location


def location_has_inventory(session, company_id: int, location_id: int) -> bool:
    """True when any component or SKU has a non-zero balance at the location."""
    component_balances = session.query(
        func.sum(TransactionLine.quantity_change)
    ).join(Transaction, Transaction.id == TransactionLine.transaction_id).filter(
        Transaction.company_id == company_id,
        Transaction.status == TransactionStatus.APPROVED,
        TransactionLine.location_id == location_id
    ).group_by(TransactionLine.component_id).all()

    sku_balances = session.query(
        func.sum(FinishedGoodsLine.quantity_change)
    ).join(Transaction, Transaction.id == FinishedGoodsLine.transaction_id).filter(
        Transaction.company_id == company_id,
        Transaction.status == TransactionStatus.APPROVED,
        FinishedGoodsLine.location_id == location_id
    ).group_by(FinishedGoodsLine.sku_id).all()

    return any(row[0] for row in component_balances + sku_balances)


def can_deactivate_location(session, company_id: int, location_id: int) -> Tuple[bool, Optional[str]]:
    """Check whether a location may be deactivated."""
    location = get_location(session, company_id, location_id, require_active=False)

    if location.is_default:
        return False, 'Cannot deactivate the default location. Set another location as default first.'
    if location_has_inventory(session, company_id, location_id):
        return False, 'Cannot deactivate a location that still holds inventory. Transfer it out first.'
    return True, None


def deactivate_location(session, company_id: int, location_id: int, user_id: int = None) -> Location:
    """Soft-delete a location (is_active -> False)."""
    with atomic(session):
        allowed, reason = can_deactivate_location(session, company_id, location_id)
        if not allowed:
            raise ValidationError(reason)

        location = get_location(session, company_id, location_id, require_active=False)
        location.is_active = False
        audit_service.log_action(
            session, company_id, AuditAction.LOCATION_DEACTIVATED,
            resource_type='location', resource_id=location.id,
            details={'name': location.name}, user_id=user_id
        )

    logger.info(f"Location {location_id} deactivated for company {company_id}")
    return location
