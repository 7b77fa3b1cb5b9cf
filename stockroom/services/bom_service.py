"""
Bill of materials service - Multi-Tenant.

Unit cost is the sum of quantity_per_unit * component cost over BOM lines.
Max buildable units is the minimum over lines of
floor(balance / quantity_per_unit); None means "cannot assess" (no active
BOM or no usable lines), which is distinct from 0.
"""
import logging
from datetime import date
from decimal import Decimal, ROUND_FLOOR
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm.exc import StaleDataError

from stockroom.database import atomic
from stockroom.exceptions import NotFoundError, ValidationError, VersionConflictError
from stockroom.models import SKU, BOMVersion, BOMLine, Component, AuditAction
from stockroom.services import audit_service
from stockroom.services.inventory_service import get_component_quantities
from stockroom.utils.number_format import parse_fraction_or_number

logger = logging.getLogger(__name__)

ZERO = Decimal('0')

BOM_UPDATABLE_FIELDS = ('version_name', 'effective_start_date', 'notes', 'lines')


def get_sku(session, company_id: int, sku_id: int) -> SKU:
    """Fetch a SKU scoped to the company or raise NotFoundError."""
    sku = session.query(SKU).filter(SKU.id == sku_id, SKU.company_id == company_id).first()
    if not sku:
        raise NotFoundError('SKU not found')
    return sku


def get_bom_version(session, company_id: int, bom_version_id: int) -> BOMVersion:
    """Fetch a BOM version whose SKU belongs to the company."""
    bom = session.query(BOMVersion).join(SKU, SKU.id == BOMVersion.sku_id).filter(
        BOMVersion.id == bom_version_id,
        SKU.company_id == company_id
    ).first()
    if not bom:
        raise NotFoundError('BOM version not found')
    return bom


def get_active_bom(session, company_id: int, sku_id: int) -> Optional[BOMVersion]:
    get_sku(session, company_id, sku_id)
    return session.query(BOMVersion).filter(
        BOMVersion.sku_id == sku_id,
        BOMVersion.is_active.is_(True)
    ).order_by(BOMVersion.id.desc()).first()


def _company_lines(session, company_id: int, bom_version_ids: List[int]):
    """BOM lines with their components; foreign-company components fail closed."""
    rows = session.query(BOMLine, Component).outerjoin(
        Component,
        (Component.id == BOMLine.component_id) & (Component.company_id == company_id)
    ).filter(BOMLine.bom_version_id.in_(bom_version_ids)).all()

    for line, component in rows:
        if component is None:
            logger.warning(
                f"BOM version {line.bom_version_id} references component {line.component_id} "
                f"outside company {company_id}"
            )
            raise NotFoundError('Component not found')
    return rows


# =====================================================
# COSTS
# =====================================================

def calculate_line_costs(lines: Iterable) -> List[dict]:
    """
    Line cost preview (quantity_per_unit * component cost) without I/O.

    Accepts BOMLine objects (with a loaded component) or dicts carrying
    quantity_per_unit and cost_per_unit.
    """
    result = []
    for line in lines:
        if isinstance(line, dict):
            quantity = parse_fraction_or_number(line['quantity_per_unit'])
            cost = Decimal(str(line.get('cost_per_unit') or 0))
        else:
            quantity = Decimal(str(line.quantity_per_unit))
            cost = Decimal(str(line.component.cost_per_unit or 0))
        result.append({
            'quantity_per_unit': quantity,
            'cost_per_unit': cost,
            'line_cost': quantity * cost,
        })
    return result


def calculate_bom_unit_cost(session, company_id: int, bom_version_id: int) -> Decimal:
    """Unit cost of a BOM version; 0 when it has no lines."""
    get_bom_version(session, company_id, bom_version_id)
    return calculate_bom_unit_costs(session, company_id, [bom_version_id])[bom_version_id]


def calculate_bom_unit_costs(session, company_id: int, bom_version_ids: Iterable[int]) -> Dict[int, Decimal]:
    """Batch unit costs; versions without lines resolve to 0."""
    bom_version_ids = list(bom_version_ids)
    costs = {bom_version_id: ZERO for bom_version_id in bom_version_ids}
    if not bom_version_ids:
        return costs

    owned = {row[0] for row in session.query(BOMVersion.id).join(SKU, SKU.id == BOMVersion.sku_id).filter(
        BOMVersion.id.in_(bom_version_ids),
        SKU.company_id == company_id
    ).all()}
    if owned != set(bom_version_ids):
        raise NotFoundError('BOM version not found')

    for line, component in _company_lines(session, company_id, bom_version_ids):
        line_cost = Decimal(str(line.quantity_per_unit)) * Decimal(str(component.cost_per_unit or 0))
        costs[line.bom_version_id] += line_cost
    return costs


# =====================================================
# BUILDABILITY
# =====================================================

def _buildable_for(balance: Decimal, quantity_per_unit: Decimal) -> int:
    units = (balance / quantity_per_unit).to_integral_value(rounding=ROUND_FLOOR)
    return max(int(units), 0)


def _usable_lines(bom: Optional[BOMVersion]) -> List[BOMLine]:
    if bom is None:
        return []
    return [line for line in bom.lines if Decimal(str(line.quantity_per_unit)) > 0]


def calculate_max_buildable_units(session, company_id: int, sku_id: int, location_id: int = None) -> Optional[int]:
    """
    Max units of the SKU buildable from current component inventory.

    Returns None when the SKU has no active BOM or its BOM has no lines.
    """
    lines = _usable_lines(get_active_bom(session, company_id, sku_id))
    if not lines:
        return None

    quantities = get_component_quantities(session, company_id, [line.component_id for line in lines], location_id)
    return min(
        _buildable_for(quantities[line.component_id], Decimal(str(line.quantity_per_unit)))
        for line in lines
    )


def calculate_max_buildable_units_for_skus(
    session,
    company_id: int,
    sku_ids: Iterable[int],
    location_id: int = None
) -> Dict[int, Optional[int]]:
    """Batch form of calculate_max_buildable_units with a single balance query."""
    sku_ids = list(sku_ids)
    if not sku_ids:
        return {}

    boms = session.query(BOMVersion).join(SKU, SKU.id == BOMVersion.sku_id).filter(
        BOMVersion.sku_id.in_(sku_ids),
        BOMVersion.is_active.is_(True),
        SKU.company_id == company_id
    ).all()
    bom_by_sku = {bom.sku_id: bom for bom in boms}

    component_ids = {line.component_id for bom in boms for line in _usable_lines(bom)}
    quantities = get_component_quantities(session, company_id, component_ids, location_id)

    result = {}
    for sku_id in sku_ids:
        lines = _usable_lines(bom_by_sku.get(sku_id))
        if not lines:
            result[sku_id] = None
            continue
        result[sku_id] = min(
            _buildable_for(quantities[line.component_id], Decimal(str(line.quantity_per_unit)))
            for line in lines
        )
    return result


def calculate_limiting_factors(session, company_id: int, sku_id: int, location_id: int = None) -> List[dict]:
    """
    Per-component buildable counts for the active BOM, binding constraints first.
    """
    lines = _usable_lines(get_active_bom(session, company_id, sku_id))
    if not lines:
        return []

    quantities = get_component_quantities(session, company_id, [line.component_id for line in lines], location_id)

    factors = []
    for line in lines:
        if line.component.company_id != company_id:
            raise NotFoundError('Component not found')
        available = quantities[line.component_id]
        per_unit = Decimal(str(line.quantity_per_unit))
        factors.append({
            'component_id': line.component_id,
            'component_name': line.component.name,
            'sku_code': line.component.sku_code,
            'quantity_available': available,
            'quantity_per_unit': per_unit,
            'buildable_units': _buildable_for(available, per_unit),
        })

    factors.sort(key=lambda factor: factor['buildable_units'])
    return factors


# =====================================================
# VERSION LIFECYCLE
# =====================================================

def parse_bom_lines(lines: Optional[Iterable[dict]]) -> List[dict]:
    """Validate BOM line input; quantities may be fractions such as "1/3"."""
    parsed = []
    seen = set()
    for line in lines or []:
        component_id = line.get('component_id')
        if component_id is None:
            raise ValidationError('BOM line is missing component_id')
        if component_id in seen:
            raise ValidationError('A component can appear only once per BOM')
        seen.add(component_id)

        try:
            quantity = parse_fraction_or_number(line.get('quantity_per_unit'))
        except ValueError as e:
            raise ValidationError(str(e))
        if quantity <= 0:
            raise ValidationError('Quantity per unit must be greater than 0')

        parsed.append({
            'component_id': component_id,
            'quantity_per_unit': quantity,
            'notes': line.get('notes'),
        })
    return parsed


def _build_lines(session, company_id: int, parsed_lines: List[dict]) -> List[BOMLine]:
    component_ids = [line['component_id'] for line in parsed_lines]
    if component_ids:
        found = session.query(Component.id).filter(
            Component.id.in_(component_ids),
            Component.company_id == company_id
        ).count()
        if found != len(component_ids):
            raise NotFoundError('Component not found')

    return [
        BOMLine(
            component_id=line['component_id'],
            quantity_per_unit=line['quantity_per_unit'],
            notes=line['notes']
        )
        for line in parsed_lines
    ]


def _deactivate_other_versions(session, sku_id: int, keep_id: int = None, end_date: date = None):
    query = session.query(BOMVersion).filter(
        BOMVersion.sku_id == sku_id,
        BOMVersion.is_active.is_(True)
    )
    if keep_id is not None:
        query = query.filter(BOMVersion.id != keep_id)

    for other in query.all():
        other.is_active = False
        other.effective_end_date = end_date or date.today()
        other.version = other.version + 1


def add_bom_version(
    session,
    company_id: int,
    sku: SKU,
    version_name: str,
    parsed_lines: List[dict],
    effective_start_date: date = None,
    is_active: bool = True,
    notes: str = None
) -> BOMVersion:
    """Add a BOM version to a SKU inside the caller's unit of work."""
    start = effective_start_date or date.today()
    if is_active:
        _deactivate_other_versions(session, sku.id, end_date=start)

    bom = BOMVersion(
        sku=sku,
        version_name=version_name,
        effective_start_date=start,
        is_active=is_active,
        notes=notes,
        version=1
    )
    bom.lines.extend(_build_lines(session, company_id, parsed_lines))
    session.add(bom)
    return bom


def create_bom_version(
    session,
    company_id: int,
    sku_id: int,
    version_name: str,
    lines: Iterable[dict],
    effective_start_date: date = None,
    is_active: bool = True,
    notes: str = None
) -> BOMVersion:
    """Create a BOM version; activating it closes the previously active one."""
    version_name = (version_name or '').strip()
    if not version_name:
        raise ValidationError('Version name is required')
    parsed = parse_bom_lines(lines)

    with atomic(session):
        sku = get_sku(session, company_id, sku_id)
        bom = add_bom_version(session, company_id, sku, version_name, parsed, effective_start_date, is_active, notes)

    logger.info(f"BOM version {bom.id} ({version_name}) created for SKU {sku_id}, active={is_active}")
    return bom


def clone_bom_version(session, company_id: int, bom_version_id: int, new_version_name: str) -> BOMVersion:
    """Copy a BOM version and its lines into a new inactive version."""
    new_version_name = (new_version_name or '').strip()
    if not new_version_name:
        raise ValidationError('Version name is required')

    with atomic(session):
        source = get_bom_version(session, company_id, bom_version_id)
        clone = BOMVersion(
            sku_id=source.sku_id,
            version_name=new_version_name,
            effective_start_date=date.today(),
            is_active=False,
            notes=f'Cloned from {source.version_name}',
            version=1
        )
        clone.lines.extend(
            BOMLine(component_id=line.component_id, quantity_per_unit=line.quantity_per_unit, notes=line.notes)
            for line in source.lines
        )
        session.add(clone)

    logger.info(f"BOM version {bom_version_id} cloned as {clone.id}")
    return clone


def activate_bom_version(session, company_id: int, bom_version_id: int, user_id: int = None) -> BOMVersion:
    """Make a BOM version the single active version of its SKU."""
    try:
        with atomic(session):
            bom = get_bom_version(session, company_id, bom_version_id)
            _deactivate_other_versions(session, bom.sku_id, keep_id=bom.id)
            bom.is_active = True
            bom.effective_end_date = None
            bom.version = bom.version + 1
            audit_service.log_action(
                session, company_id, AuditAction.BOM_VERSION_ACTIVATED,
                resource_type='bom_version', resource_id=bom.id, user_id=user_id
            )
    except StaleDataError:
        raise VersionConflictError('BOM version')

    logger.info(f"BOM version {bom_version_id} activated")
    return bom


def update_bom_version(
    session,
    company_id: int,
    bom_version_id: int,
    changes: dict,
    expected_version: int = None,
    user_id: int = None
) -> BOMVersion:
    """
    Update BOM metadata and/or replace its lines under optimistic locking.

    When expected_version is given and differs from the stored version the
    update is rejected with VersionConflictError and nothing is written.
    Without it the update is unconditional. Either way the stored version
    increments by exactly one.
    """
    unknown = set(changes) - set(BOM_UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown BOM fields: {', '.join(sorted(unknown))}")

    parsed_lines = None
    if changes.get('lines') is not None:
        parsed_lines = parse_bom_lines(changes['lines'])
        if not parsed_lines:
            raise ValidationError('A BOM needs at least one line')
    if 'version_name' in changes and not (changes['version_name'] or '').strip():
        raise ValidationError('Version name is required')

    try:
        with atomic(session):
            bom = get_bom_version(session, company_id, bom_version_id)
            current = bom.version
            if expected_version is not None and expected_version != current:
                raise VersionConflictError('BOM version', expected_version, current)

            if 'version_name' in changes:
                bom.version_name = changes['version_name'].strip()
            if 'effective_start_date' in changes:
                bom.effective_start_date = changes['effective_start_date']
            if 'notes' in changes:
                bom.notes = changes['notes']

            if parsed_lines is not None:
                new_lines = _build_lines(session, company_id, parsed_lines)
                bom.lines.clear()
                session.flush()
                bom.lines.extend(new_lines)

            bom.version = current + 1
            audit_service.log_action(
                session, company_id, AuditAction.BOM_VERSION_UPDATED,
                resource_type='bom_version', resource_id=bom.id,
                details={'fields': sorted(changes), 'version': current + 1}, user_id=user_id
            )
    except StaleDataError:
        logger.warning(f"Concurrent update detected on BOM version {bom_version_id}")
        raise VersionConflictError('BOM version', expected_version)

    logger.info(f"BOM version {bom_version_id} updated to version {bom.version}")
    return bom
