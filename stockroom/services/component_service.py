"""
Component catalog service - Multi-Tenant.
"""
import logging
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy import func

from stockroom.database import atomic
from stockroom.exceptions import ConflictError, NotFoundError, ValidationError
from stockroom.models import Component, TransactionLine, BOMLine, BOMVersion, Lot, AuditAction
from stockroom.services import audit_service
from stockroom.utils.formatters import to_decimal
from stockroom.utils.number_format import MAX_DECIMAL_PLACES, exceeds_storage_scale

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    'name', 'sku_code', 'category', 'unit_of_measure', 'cost_per_unit',
    'reorder_point', 'lead_time_days', 'notes',
)


def get_component(session, company_id: int, component_id: int) -> Component:
    """Fetch a component scoped to the company or raise NotFoundError."""
    component = session.query(Component).filter(
        Component.id == component_id,
        Component.company_id == company_id
    ).first()
    if not component:
        raise NotFoundError('Component not found')
    return component


def _check_unique(session, company_id: int, name: str, sku_code: str, exclude_id: int = None):
    query = session.query(Component).filter(Component.company_id == company_id)
    if exclude_id:
        query = query.filter(Component.id != exclude_id)

    if name and query.filter(func.lower(Component.name) == name.lower()).first():
        raise ConflictError(f'A component named "{name}" already exists')
    if sku_code and query.filter(func.lower(Component.sku_code) == sku_code.lower()).first():
        raise ConflictError(f'A component with SKU code "{sku_code}" already exists')


def _clean_fields(data: dict) -> dict:
    cleaned = {}
    for key, value in data.items():
        if key not in EDITABLE_FIELDS:
            raise ValidationError(f'Unknown component field: {key}')
        if key in ('name', 'sku_code'):
            value = (value or '').strip()
            if not value:
                raise ValidationError(f'{key} is required')
        elif key in ('cost_per_unit', 'reorder_point'):
            try:
                value = to_decimal(value, Decimal('0'))
            except ValueError as e:
                raise ValidationError(str(e))
            if exceeds_storage_scale(value):
                raise ValidationError(f'{key} cannot have more than {MAX_DECIMAL_PLACES} decimal places')
            if value < 0:
                raise ValidationError(f'{key} cannot be negative')
        elif key == 'lead_time_days':
            try:
                value = int(str(value).strip() or 0) if value is not None else 0
            except ValueError:
                raise ValidationError('lead_time_days must be a whole number')
            if value < 0:
                raise ValidationError('lead_time_days cannot be negative')
        cleaned[key] = value
    return cleaned


def create_component(session, company_id: int, name: str, sku_code: str, **fields) -> Component:
    """Create a component; name and SKU code must be unique within the company."""
    data = _clean_fields({'name': name, 'sku_code': sku_code, **fields})

    with atomic(session):
        _check_unique(session, company_id, data['name'], data['sku_code'])
        component = Component(company_id=company_id, **data)
        session.add(component)

    logger.info(f"Component {component.id} ({component.sku_code}) created for company {company_id}")
    return component


def update_component(session, company_id: int, component_id: int, **changes) -> Component:
    """Update editable component fields."""
    data = _clean_fields(changes)

    with atomic(session):
        component = get_component(session, company_id, component_id)
        _check_unique(session, company_id, data.get('name'), data.get('sku_code'), exclude_id=component.id)
        for key, value in data.items():
            setattr(component, key, value)

    logger.info(f"Component {component_id} updated: {sorted(data)}")
    return component


def can_delete_component(session, company_id: int, component_id: int) -> Tuple[bool, Optional[str]]:
    """A component referenced by ledger lines, BOMs or lots cannot be removed."""
    get_component(session, company_id, component_id)

    if session.query(TransactionLine.id).filter_by(component_id=component_id).first():
        return False, 'Component has inventory transactions'
    if session.query(BOMLine.id).filter_by(component_id=component_id).first():
        return False, 'Component is used in a bill of materials'
    if session.query(Lot.id).filter_by(component_id=component_id).first():
        return False, 'Component has lots'
    return True, None


def is_component_in_active_bom(session, company_id: int, component_id: int) -> bool:
    return session.query(BOMLine.id).join(
        BOMVersion, BOMVersion.id == BOMLine.bom_version_id
    ).filter(
        BOMLine.component_id == component_id,
        BOMVersion.is_active.is_(True)
    ).join(Component, Component.id == BOMLine.component_id).filter(
        Component.company_id == company_id
    ).first() is not None


def deactivate_component(session, company_id: int, component_id: int, user_id: int = None) -> Component:
    """Soft-delete a component. Blocked while an active BOM still uses it."""
    with atomic(session):
        component = get_component(session, company_id, component_id)
        if is_component_in_active_bom(session, company_id, component_id):
            raise ValidationError('Component is used in an active BOM and cannot be deactivated')

        component.is_active = False
        audit_service.log_action(
            session, company_id, AuditAction.COMPONENT_DEACTIVATED,
            resource_type='component', resource_id=component.id,
            details={'sku_code': component.sku_code}, user_id=user_id
        )

    logger.info(f"Component {component_id} deactivated for company {company_id}")
    return component
