"""
Build service - Multi-Tenant.
Consumes BOM components and produces finished goods in one transaction.
"""
import logging
from datetime import date as date_type
from decimal import Decimal
from typing import Dict, List, Optional

from stockroom.database import atomic
from stockroom.exceptions import InsufficientInventoryError, NotFoundError, ValidationError
from stockroom.models import (
    BOMVersion, Transaction, TransactionLine, TransactionType, TransactionStatus, FinishedGoodsLine, Lot
)
from stockroom.services import lot_service
from stockroom.services.bom_service import get_bom_version, get_sku
from stockroom.services.inventory_service import (
    get_component_quantities, require_positive, resolve_location_id, shortage_item
)
from stockroom.services.settings_service import get_company_settings

logger = logging.getLogger(__name__)


def _bom_components(bom: BOMVersion, company_id: int):
    for line in bom.lines:
        if line.component.company_id != company_id:
            raise NotFoundError('Component not found')
        yield line, line.component


def build_shortages(session, company_id: int, bom: BOMVersion, units: Decimal, location_id: int = None) -> List[dict]:
    """Components whose balance is below quantity_per_unit * units."""
    pairs = list(_bom_components(bom, company_id))
    quantities = get_component_quantities(session, company_id, [c.id for _, c in pairs], location_id)

    items = []
    for line, component in pairs:
        required = Decimal(str(line.quantity_per_unit)) * units
        available = quantities[component.id]
        if available < required:
            items.append(shortage_item(component, required, available))
    return items


def check_insufficient_inventory(
    session,
    company_id: int,
    bom_version_id: int,
    units_to_build,
    location_id: int = None
) -> List[dict]:
    """
    Read-only pre-flight for a build.

    Returns the shortfall items (empty when the build is fully covered) so
    the caller can ask for confirmation instead of failing blind.
    """
    units = require_positive(units_to_build, 'Units to build')
    bom = get_bom_version(session, company_id, bom_version_id)
    return build_shortages(session, company_id, bom, units, location_id)


def check_expired_lots_for_build(
    session,
    company_id: int,
    bom_version_id: int,
    units_to_build,
    today: date_type = None
) -> List[dict]:
    """Expired lots that FEFO would consume if expired lots were allowed."""
    units = require_positive(units_to_build, 'Units to build')
    bom = get_bom_version(session, company_id, bom_version_id)

    expired = []
    for line, component in _bom_components(bom, company_id):
        required = Decimal(str(line.quantity_per_unit)) * units
        selections, _ = lot_service.select_lots_for_consumption(
            session, company_id, component.id, required, exclude_expired=False, today=today
        )
        for selection in selections:
            if lot_service.is_lot_expired(selection['expiry_date'], today):
                expired.append({
                    'component_id': component.id,
                    'component_name': component.name,
                    'sku_code': component.sku_code,
                    'lot_id': selection['lot_id'],
                    'lot_number': selection['lot_number'],
                    'expiry_date': selection['expiry_date'],
                    'quantity': selection['quantity'],
                })
    return expired


def snapshot_unit_cost(bom: BOMVersion) -> Decimal:
    """BOM unit cost from current component costs, frozen onto the build."""
    return sum(
        (Decimal(str(line.quantity_per_unit)) * Decimal(str(line.component.cost_per_unit or 0)) for line in bom.lines),
        Decimal('0')
    )


def _override_allocations(session, company_id: int, component, required: Decimal, allocations: List[dict]):
    total = Decimal('0')
    resolved = []
    for allocation in allocations:
        quantity = require_positive(allocation.get('quantity'), 'Lot allocation quantity')
        lot = session.query(Lot).filter(
            Lot.id == allocation.get('lot_id'),
            Lot.company_id == company_id,
            Lot.component_id == component.id
        ).first()
        if not lot:
            raise NotFoundError(f'Lot not found for component {component.sku_code}')
        resolved.append((lot, quantity))
        total += quantity

    if total != required:
        raise ValidationError(
            f'Lot allocations for {component.sku_code} total {total}, but the build requires {required}'
        )
    return resolved


def write_build_lines(
    session,
    company_id: int,
    transaction: Transaction,
    bom: BOMVersion,
    units: Decimal,
    location_id: int,
    lot_overrides: Optional[Dict[int, List[dict]]] = None,
    allow_expired_lots: bool = False
):
    """
    Append the consumption lines of a build.

    Manual lot allocations win; otherwise lots are consumed FEFO and any
    remainder is drawn from un-lotted (pooled) stock.
    """
    lot_overrides = lot_overrides or {}

    for line, component in _bom_components(bom, company_id):
        required = Decimal(str(line.quantity_per_unit)) * units
        cost = component.cost_per_unit

        if component.id in lot_overrides:
            for lot, quantity in _override_allocations(
                session, company_id, component, required, lot_overrides[component.id]
            ):
                transaction.lines.append(TransactionLine(
                    component_id=component.id, location_id=location_id,
                    quantity_change=-quantity, cost_per_unit=cost, lot=lot
                ))
            continue

        selections, remaining = lot_service.select_lots_for_consumption(
            session, company_id, component.id, required, exclude_expired=not allow_expired_lots
        )
        for selection in selections:
            transaction.lines.append(TransactionLine(
                component_id=component.id, location_id=location_id,
                quantity_change=-selection['quantity'], cost_per_unit=cost, lot_id=selection['lot_id']
            ))
        if remaining > 0:
            transaction.lines.append(TransactionLine(
                component_id=component.id, location_id=location_id,
                quantity_change=-remaining, cost_per_unit=cost
            ))


def apply_build(
    session,
    company_id: int,
    transaction: Transaction,
    bom: BOMVersion,
    units: Decimal,
    location_id: int,
    allow_insufficient_inventory: bool = False,
    output_to_finished_goods: bool = True,
    output_location_id: int = None,
    output_quantity: Optional[Decimal] = None,
    lot_overrides: Optional[Dict[int, List[dict]]] = None,
    allow_expired_lots: bool = False
) -> List[dict]:
    """
    Check sufficiency, snapshot costs and write every line of a build.

    Returns the shortfall items that were tolerated (empty when covered).
    """
    if not bom.lines:
        raise ValidationError('BOM version has no lines')

    items = build_shortages(session, company_id, bom, units, location_id)
    allowed = allow_insufficient_inventory or get_company_settings(session, company_id)['allow_negative_inventory']
    if items and not allowed:
        raise InsufficientInventoryError(
            f'Insufficient inventory for {len(items)} component(s). '
            f'Use allow_insufficient_inventory to proceed anyway.',
            items=items
        )

    unit_cost = snapshot_unit_cost(bom)
    transaction.units_built = units
    transaction.unit_bom_cost = unit_cost
    transaction.total_bom_cost = unit_cost * units

    write_build_lines(session, company_id, transaction, bom, units, location_id, lot_overrides, allow_expired_lots)

    if output_to_finished_goods:
        target_id = resolve_location_id(session, company_id, output_location_id)
        transaction.finished_goods_lines.append(FinishedGoodsLine(
            sku_id=transaction.sku_id,
            location_id=target_id,
            quantity_change=output_quantity if output_quantity is not None else units,
            cost_per_unit=unit_cost
        ))
    return items


def create_build_transaction(
    session,
    company_id: int,
    sku_id: int,
    bom_version_id: int,
    units_to_build,
    allow_insufficient_inventory: bool = False,
    date: date_type = None,
    sales_channel: str = None,
    notes: str = None,
    location_id: int = None,
    output_to_finished_goods: bool = True,
    output_location_id: int = None,
    output_quantity=None,
    lot_overrides: Optional[Dict[int, List[dict]]] = None,
    allow_expired_lots: bool = False,
    created_by_id: int = None
) -> dict:
    """
    Build units of a SKU from a BOM version.

    Without allow_insufficient_inventory (or the company-wide negative
    inventory setting) any shortfall aborts the whole build with
    InsufficientInventoryError. Otherwise the build proceeds, balances may go
    negative and the result carries warning=True.

    Returns:
        dict with 'transaction', 'insufficient_items' and 'warning'.
    """
    units = require_positive(units_to_build, 'Units to build')
    if output_quantity is not None:
        output_quantity = require_positive(output_quantity, 'Output quantity')

    with atomic(session):
        sku = get_sku(session, company_id, sku_id)
        bom = get_bom_version(session, company_id, bom_version_id)
        if bom.sku_id != sku.id:
            raise ValidationError('BOM version does not belong to this SKU')

        location_id = resolve_location_id(session, company_id, location_id)

        transaction = Transaction(
            company_id=company_id,
            type=TransactionType.BUILD,
            status=TransactionStatus.APPROVED,
            date=date or date_type.today(),
            sku_id=sku.id,
            bom_version_id=bom.id,
            location_id=location_id,
            sales_channel=sales_channel,
            notes=notes,
            created_by_id=created_by_id
        )
        session.add(transaction)

        items = apply_build(
            session, company_id, transaction, bom, units, location_id,
            allow_insufficient_inventory=allow_insufficient_inventory,
            output_to_finished_goods=output_to_finished_goods,
            output_location_id=output_location_id,
            output_quantity=output_quantity,
            lot_overrides=lot_overrides,
            allow_expired_lots=allow_expired_lots
        )

    if items:
        logger.warning(
            f"Build {transaction.id} for SKU {sku_id} proceeded with {len(items)} insufficient component(s)"
        )
    logger.info(f"Build {transaction.id} for company {company_id}: SKU {sku_id} x {units}")

    return {
        'transaction': transaction,
        'insufficient_items': items,
        'warning': bool(items),
    }
