"""
Integration tests for builds, transfers and outbound shipments.
"""

import pytest
from datetime import date
from decimal import Decimal
from stockroom.exceptions import InsufficientInventoryError, NotFoundError, ValidationError
from stockroom.models import Transaction, TransactionLine, LocationType
from stockroom.services.build_service import (
    create_build_transaction, check_insufficient_inventory, check_expired_lots_for_build
)
from stockroom.services.finished_goods_service import (
    create_outbound_transaction, get_sku_quantity, get_sku_inventory_summary,
    adjust_finished_goods, transfer_finished_goods
)
from stockroom.services.inventory_service import create_receipt_transaction, get_component_quantity
from stockroom.services.location_service import create_location, deactivate_location
from stockroom.services.settings_service import update_company_settings
from stockroom.services.sku_service import create_sku
from stockroom.services.transfer_service import create_transfer_transaction


@pytest.fixture
def stocked(session, company1, component_a, component_b):
    """100 x COMP-A and 30 x COMP-B at the default location."""
    create_receipt_transaction(session, company1.id, component_a.id, 100)
    create_receipt_transaction(session, company1.id, component_b.id, 30)


@pytest.fixture
def single_component_sku(session, company1, component_a):
    """SKU needing one COMP-A per unit."""
    return create_sku(
        session, company1.id, 'Single', 'SINGLE-1',
        bom_lines=[{'component_id': component_a.id, 'quantity_per_unit': '1'}]
    )


class TestBuild:
    """Tests for build transactions."""

    def test_build_consumes_and_produces(self, session, company1, warehouse, sku_with_bom, component_a, component_b, stocked):
        """Test component consumption, cost snapshot and finished goods output."""
        bom = sku_with_bom.active_bom
        result = create_build_transaction(session, company1.id, sku_with_bom.id, bom.id, 4)
        txn = result['transaction']

        assert result['warning'] is False
        assert result['insufficient_items'] == []
        assert txn.units_built == Decimal('4')
        assert txn.unit_bom_cost == Decimal('6.50')
        assert txn.total_bom_cost == Decimal('26.00')

        assert get_component_quantity(session, company1.id, component_a.id) == Decimal('92')
        assert get_component_quantity(session, company1.id, component_b.id) == Decimal('10')
        assert get_sku_quantity(session, company1.id, sku_with_bom.id) == Decimal('4')
        assert txn.finished_goods_lines[0].location_id == warehouse.id

    def test_insufficient_aborts_whole_build(self, session, company1, sku_with_bom, component_a, component_b, stocked):
        """Test that nothing is written when any component falls short."""
        bom = sku_with_bom.active_bom
        before = session.query(Transaction).count()

        with pytest.raises(InsufficientInventoryError) as exc_info:
            create_build_transaction(session, company1.id, sku_with_bom.id, bom.id, 7)

        items = exc_info.value.items
        assert [item['sku_code'] for item in items] == ['COMP-B']
        assert items[0]['required'] == Decimal('35')
        assert items[0]['available'] == Decimal('30')
        assert items[0]['shortage'] == Decimal('5')
        assert session.query(Transaction).count() == before
        assert get_component_quantity(session, company1.id, component_a.id) == Decimal('100')

    def test_allow_insufficient_warns(self, session, company1, sku_with_bom, component_b, stocked):
        """Test that an allowed shortfall proceeds and goes negative."""
        bom = sku_with_bom.active_bom
        result = create_build_transaction(
            session, company1.id, sku_with_bom.id, bom.id, 7, allow_insufficient_inventory=True
        )

        assert result['warning'] is True
        assert len(result['insufficient_items']) == 1
        assert get_component_quantity(session, company1.id, component_b.id) == Decimal('-5')

    def test_company_setting_allows_negative(self, session, company1, sku_with_bom):
        """Test the company-wide negative inventory setting."""
        update_company_settings(session, company1.id, {'allow_negative_inventory': True})
        result = create_build_transaction(session, company1.id, sku_with_bom.id, sku_with_bom.active_bom.id, 1)
        assert result['warning'] is True

    def test_preflight_check(self, session, company1, sku_with_bom, stocked):
        """Test the read-only shortage check."""
        bom = sku_with_bom.active_bom
        assert check_insufficient_inventory(session, company1.id, bom.id, 6) == []
        assert len(check_insufficient_inventory(session, company1.id, bom.id, 51)) == 2
        assert session.query(Transaction).count() == 2

    def test_bom_of_other_sku_rejected(self, session, company1, sku_with_bom, single_component_sku):
        """Test that the BOM must belong to the SKU being built."""
        with pytest.raises(ValidationError):
            create_build_transaction(
                session, company1.id, single_component_sku.id, sku_with_bom.active_bom.id, 1
            )

    def test_zero_units_rejected(self, session, company1, sku_with_bom):
        """Test the units guard."""
        with pytest.raises(ValidationError):
            create_build_transaction(session, company1.id, sku_with_bom.id, sku_with_bom.active_bom.id, 0)


class TestBuildLots:
    """Tests for lot consumption during builds."""

    def test_fefo_consumes_earliest_expiry(self, session, company1, component_a, single_component_sku):
        """Test first-expiry-first-out."""
        create_receipt_transaction(
            session, company1.id, component_a.id, 10, lot_number='LATE', expiry_date=date(2031, 1, 1)
        )
        create_receipt_transaction(
            session, company1.id, component_a.id, 10, lot_number='EARLY', expiry_date=date(2030, 1, 1)
        )

        result = create_build_transaction(
            session, company1.id, single_component_sku.id, single_component_sku.active_bom.id, 12
        )
        consumed = {line.lot.lot_number: line.quantity_change for line in result['transaction'].lines}
        assert consumed == {'EARLY': Decimal('-10'), 'LATE': Decimal('-2')}

    def test_expired_lots_skipped(self, session, company1, component_a, single_component_sku):
        """Test that expired lots are not consumed by default."""
        create_receipt_transaction(
            session, company1.id, component_a.id, 5, lot_number='OLD', expiry_date=date(2020, 1, 1)
        )
        create_receipt_transaction(session, company1.id, component_a.id, 10)
        bom_id = single_component_sku.active_bom.id

        expired = check_expired_lots_for_build(session, company1.id, bom_id, 3)
        assert [item['lot_number'] for item in expired] == ['OLD']

        result = create_build_transaction(session, company1.id, single_component_sku.id, bom_id, 3)
        lines = result['transaction'].lines
        assert len(lines) == 1
        assert lines[0].lot_id is None
        assert lines[0].quantity_change == Decimal('-3')


class TestTransfer:
    """Tests for component transfers."""

    def test_two_lines_net_to_zero(self, session, company1, warehouse, overflow, component_a):
        """Test that a transfer moves stock without changing the total."""
        create_receipt_transaction(session, company1.id, component_a.id, 10, location_id=warehouse.id)
        txn = create_transfer_transaction(session, company1.id, component_a.id, warehouse.id, overflow.id, 4)

        assert len(txn.lines) == 2
        assert sum(line.quantity_change for line in txn.lines) == 0
        assert get_component_quantity(session, company1.id, component_a.id, warehouse.id) == Decimal('6')
        assert get_component_quantity(session, company1.id, component_a.id, overflow.id) == Decimal('4')
        assert get_component_quantity(session, company1.id, component_a.id) == Decimal('10')

    def test_insufficient_source(self, session, company1, warehouse, overflow, component_a):
        """Test the source balance check and its message."""
        create_receipt_transaction(session, company1.id, component_a.id, 10, location_id=warehouse.id)

        with pytest.raises(InsufficientInventoryError) as exc_info:
            create_transfer_transaction(session, company1.id, component_a.id, warehouse.id, overflow.id, 15)

        assert exc_info.value.message == 'Insufficient inventory at source location. Available: 10, Required: 15'
        assert session.query(TransactionLine).count() == 1

    def test_same_location(self, session, company1, warehouse, component_a):
        """Test the same-location guard."""
        with pytest.raises(ValidationError):
            create_transfer_transaction(session, company1.id, component_a.id, warehouse.id, warehouse.id, 1)

    def test_inactive_destination(self, session, company1, warehouse, overflow, component_a):
        """Test that inactive locations cannot receive transfers."""
        create_receipt_transaction(session, company1.id, component_a.id, 10, location_id=warehouse.id)
        deactivate_location(session, company1.id, overflow.id)

        with pytest.raises(NotFoundError) as exc_info:
            create_transfer_transaction(session, company1.id, component_a.id, warehouse.id, overflow.id, 1)
        assert exc_info.value.message == 'Destination location not found or not active'


class TestFinishedGoods:
    """Tests for outbound shipments and finished goods moves."""

    def test_outbound_from_finished_goods_location(self, session, company1, sku_with_bom, stocked):
        """Test build output and outbound default to the finished goods location."""
        fg = create_location(session, company1.id, 'Packed', type=LocationType.FINISHED_GOODS)
        create_build_transaction(
            session, company1.id, sku_with_bom.id, sku_with_bom.active_bom.id, 3, output_location_id=fg.id
        )

        txn = create_outbound_transaction(session, company1.id, sku_with_bom.id, 2, sales_channel='shopify')
        assert txn.location_id == fg.id
        assert txn.sales_channel == 'shopify'
        assert get_sku_quantity(session, company1.id, sku_with_bom.id, fg.id) == Decimal('1')

    def test_outbound_insufficient(self, session, company1, sku_with_bom):
        """Test that outbound cannot exceed finished goods."""
        with pytest.raises(InsufficientInventoryError) as exc_info:
            create_outbound_transaction(session, company1.id, sku_with_bom.id, 1)
        assert exc_info.value.items[0]['code'] == 'KIT-001'

    def test_adjust_and_transfer_finished_goods(self, session, company1, warehouse, overflow, sku_with_bom):
        """Test finished goods adjustments, transfers and the location summary."""
        adjust_finished_goods(session, company1.id, sku_with_bom.id, warehouse.id, 10, 'Count')
        transfer_finished_goods(session, company1.id, sku_with_bom.id, warehouse.id, overflow.id, 3)

        summary = get_sku_inventory_summary(session, company1.id, sku_with_bom.id)
        assert summary['total_quantity'] == Decimal('10')
        assert [(entry['location_id'], entry['quantity']) for entry in summary['by_location']] == [
            (warehouse.id, Decimal('7')), (overflow.id, Decimal('3'))
        ]

        with pytest.raises(InsufficientInventoryError):
            transfer_finished_goods(session, company1.id, sku_with_bom.id, overflow.id, warehouse.id, 4)
