"""
SKU service - Multi-Tenant.
SKU lifecycle plus the catalogue view with BOM cost and buildability.
"""
import logging
from typing import Iterable, List, Optional

from sqlalchemy.orm.exc import StaleDataError

from stockroom.database import atomic
from stockroom.exceptions import ConflictError, ValidationError, VersionConflictError
from stockroom.models import SKU, AuditAction
from stockroom.services import audit_service
from stockroom.services.bom_service import (
    get_sku, parse_bom_lines, add_bom_version, calculate_bom_unit_costs, calculate_max_buildable_units_for_skus
)
from stockroom.services.finished_goods_service import get_sku_quantities
from stockroom.utils.formatters import format_decimal

logger = logging.getLogger(__name__)

SKU_UPDATABLE_FIELDS = ('name', 'internal_code', 'sales_channel', 'notes', 'is_active')

INITIAL_BOM_VERSION_NAME = 'v1'


def _check_code_available(session, company_id: int, internal_code: str, exclude_id: int = None):
    query = session.query(SKU.id).filter(SKU.company_id == company_id, SKU.internal_code == internal_code)
    if exclude_id is not None:
        query = query.filter(SKU.id != exclude_id)
    if query.first():
        raise ConflictError(f'SKU code "{internal_code}" already exists')


def list_skus(session, company_id: int, include_inactive: bool = False) -> List[SKU]:
    query = session.query(SKU).filter(SKU.company_id == company_id)
    if not include_inactive:
        query = query.filter(SKU.is_active.is_(True))
    return query.order_by(SKU.name).all()


def create_sku(
    session,
    company_id: int,
    name: str,
    internal_code: str,
    sales_channel: str = 'generic',
    notes: str = None,
    bom_lines: Optional[Iterable[dict]] = None
) -> SKU:
    """
    Create a SKU, optionally with an initial active BOM version ("v1").

    Args:
        bom_lines: iterable of {'component_id', 'quantity_per_unit'}; the
            quantity accepts fractions such as "1/3"
    """
    name = (name or '').strip()
    internal_code = (internal_code or '').strip()
    if not name:
        raise ValidationError('SKU name is required')
    if not internal_code:
        raise ValidationError('SKU internal code is required')

    parsed_lines = parse_bom_lines(bom_lines) if bom_lines else []

    with atomic(session):
        _check_code_available(session, company_id, internal_code)

        sku = SKU(
            company_id=company_id,
            name=name,
            internal_code=internal_code,
            sales_channel=(sales_channel or 'generic').strip(),
            notes=notes,
            is_active=True,
            version=1
        )
        session.add(sku)
        session.flush()

        if parsed_lines:
            add_bom_version(session, company_id, sku, INITIAL_BOM_VERSION_NAME, parsed_lines, is_active=True)

    logger.info(f"SKU {sku.id} ({internal_code}) created for company {company_id}")
    return sku


def update_sku(
    session,
    company_id: int,
    sku_id: int,
    changes: dict,
    expected_version: int = None,
    user_id: int = None
) -> SKU:
    """
    Update SKU fields under optimistic locking.

    A stale expected_version is rejected with VersionConflictError and no
    field is written; a successful update bumps the version by one.
    """
    unknown = set(changes) - set(SKU_UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown SKU fields: {', '.join(sorted(unknown))}")
    for field in ('name', 'internal_code'):
        if field in changes and not (changes[field] or '').strip():
            raise ValidationError(f'SKU {field.replace("_", " ")} cannot be empty')

    try:
        with atomic(session):
            sku = get_sku(session, company_id, sku_id)
            current = sku.version
            if expected_version is not None and expected_version != current:
                raise VersionConflictError('SKU', expected_version, current)

            if 'internal_code' in changes:
                code = changes['internal_code'].strip()
                _check_code_available(session, company_id, code, exclude_id=sku.id)
                sku.internal_code = code
            if 'name' in changes:
                sku.name = changes['name'].strip()
            if 'sales_channel' in changes:
                sku.sales_channel = (changes['sales_channel'] or 'generic').strip()
            if 'notes' in changes:
                sku.notes = changes['notes']
            if 'is_active' in changes:
                sku.is_active = bool(changes['is_active'])

            sku.version = current + 1
            audit_service.log_action(
                session, company_id, AuditAction.SKU_UPDATED,
                resource_type='sku', resource_id=sku.id,
                details={'fields': sorted(changes), 'version': current + 1}, user_id=user_id
            )
    except StaleDataError:
        logger.warning(f"Concurrent update detected on SKU {sku_id}")
        raise VersionConflictError('SKU', expected_version)

    logger.info(f"SKU {sku_id} updated to version {sku.version}")
    return sku


def get_skus_with_costs(session, company_id: int, location_id: int = None, include_inactive: bool = False) -> List[dict]:
    """
    Catalogue rows: active BOM unit cost, max buildable units and
    finished-goods on hand. Costs and buildability use batch queries.
    """
    skus = list_skus(session, company_id, include_inactive=include_inactive)
    if not skus:
        return []

    sku_ids = [sku.id for sku in skus]
    active_boms = {sku.id: sku.active_bom for sku in skus}
    costs = calculate_bom_unit_costs(session, company_id, [bom.id for bom in active_boms.values() if bom])
    buildable = calculate_max_buildable_units_for_skus(session, company_id, sku_ids, location_id)
    on_hand = get_sku_quantities(session, company_id, sku_ids, location_id)

    rows = []
    for sku in skus:
        bom = active_boms[sku.id]
        rows.append({
            'id': sku.id,
            'name': sku.name,
            'internal_code': sku.internal_code,
            'sales_channel': sku.sales_channel,
            'is_active': sku.is_active,
            'version': sku.version,
            'active_bom_id': bom.id if bom else None,
            'active_bom_name': bom.version_name if bom else None,
            'unit_cost': format_decimal(costs[bom.id]) if bom else None,
            'max_buildable_units': buildable.get(sku.id),
            'finished_goods_quantity': format_decimal(on_hand[sku.id]),
        })
    return rows
