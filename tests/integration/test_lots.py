"""
Integration tests for lot expiry reporting, traceability and manual lot
allocation during builds.
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal
from stockroom.exceptions import NotFoundError, ValidationError
from stockroom.models import Lot, Transaction, TransactionType
from stockroom.services.build_service import create_build_transaction
from stockroom.services.inventory_service import create_receipt_transaction, get_component_quantity
from stockroom.services.lot_service import get_expiring_lots, get_expired_lot_count, get_affected_skus_for_lot
from stockroom.services.sku_service import create_sku


TODAY = date(2030, 6, 1)


@pytest.fixture
def lots(session, company1, component_a):
    """COMP-A lots expiring yesterday, today, at +30 days and at +31 days."""
    receipts = [
        ('PAST', 4, TODAY - timedelta(days=1)),
        ('TODAY', 5, TODAY),
        ('EDGE', 6, TODAY + timedelta(days=30)),
        ('BEYOND', 7, TODAY + timedelta(days=31)),
    ]
    for lot_number, quantity, expiry in receipts:
        create_receipt_transaction(
            session, company1.id, component_a.id, quantity, lot_number=lot_number, expiry_date=expiry
        )
    return {lot.lot_number: lot for lot in session.query(Lot).filter_by(company_id=company1.id)}


@pytest.fixture
def refill_sku(session, company1, component_a):
    """SKU needing one COMP-A per unit."""
    return create_sku(
        session, company1.id, 'Refill', 'REFILL-1',
        bom_lines=[{'component_id': component_a.id, 'quantity_per_unit': '1'}]
    )


def build_from(session, company1, sku, allocations, units):
    return create_build_transaction(
        session, company1.id, sku.id, sku.active_bom.id, units,
        lot_overrides={sku.active_bom.lines[0].component_id: allocations}
    )


class TestExpiringLots:
    """Tests for get_expiring_lots."""

    def test_window_is_inclusive(self, session, company1, lots):
        """Test that lots expiring today and exactly warning_days out are listed."""
        expiring = get_expiring_lots(session, company1.id, warning_days=30, today=TODAY)

        assert [lot['lot_number'] for lot in expiring] == ['TODAY', 'EDGE']
        assert [lot['days_until_expiry'] for lot in expiring] == [0, 30]
        assert [lot['balance'] for lot in expiring] == [Decimal('5'), Decimal('6')]
        assert expiring[0]['component_sku_code'] == 'COMP-A'

    def test_narrower_window(self, session, company1, lots):
        """Test that one day less drops the edge lot."""
        expiring = get_expiring_lots(session, company1.id, warning_days=29, today=TODAY)
        assert [lot['lot_number'] for lot in expiring] == ['TODAY']

    def test_empty_lot_not_listed(self, session, company1, lots, refill_sku):
        """Test that a fully consumed lot drops out."""
        build_from(session, company1, refill_sku, [{'lot_id': lots['TODAY'].id, 'quantity': '5'}], 5)

        expiring = get_expiring_lots(session, company1.id, warning_days=30, today=TODAY)
        assert [lot['lot_number'] for lot in expiring] == ['EDGE']

    def test_other_company(self, session, company2, lots):
        """Test that lots are scoped to their company."""
        assert get_expiring_lots(session, company2.id, warning_days=365, today=TODAY) == []


class TestExpiredLotCount:
    """Tests for get_expired_lot_count."""

    def test_counts_expired_lots_with_stock(self, session, company1, company2, lots):
        """Test that only the lot dated before today counts."""
        assert get_expired_lot_count(session, company1.id, today=TODAY) == 1
        assert get_expired_lot_count(session, company1.id, today=TODAY + timedelta(days=1)) == 2
        assert get_expired_lot_count(session, company2.id, today=TODAY) == 0

    def test_consumed_expired_lot_not_counted(self, session, company1, lots, refill_sku):
        """Test that an expired lot with no balance left is ignored."""
        build_from(session, company1, refill_sku, [{'lot_id': lots['PAST'].id, 'quantity': '4'}], 4)
        assert get_expired_lot_count(session, company1.id, today=TODAY) == 0


class TestAffectedSkus:
    """Tests for get_affected_skus_for_lot."""

    def test_builds_are_traced(self, session, company1, lots, refill_sku):
        """Test quantity used and build count per SKU."""
        lot_id = lots['TODAY'].id
        build_from(session, company1, refill_sku, [{'lot_id': lot_id, 'quantity': '2'}], 2)
        build_from(session, company1, refill_sku, [{'lot_id': lot_id, 'quantity': '1'}], 1)

        affected = get_affected_skus_for_lot(session, company1.id, lot_id)
        assert affected == [{
            'sku_id': refill_sku.id,
            'name': 'Refill',
            'internal_code': 'REFILL-1',
            'quantity_used': Decimal('3'),
            'transaction_count': 2,
        }]

    def test_unused_lot(self, session, company1, lots):
        """Test that a lot never built from affects nothing."""
        assert get_affected_skus_for_lot(session, company1.id, lots['BEYOND'].id) == []

    def test_other_company_lot(self, session, company2, lots):
        """Test that a foreign lot is missing."""
        with pytest.raises(NotFoundError):
            get_affected_skus_for_lot(session, company2.id, lots['EDGE'].id)


class TestLotOverrides:
    """Tests for manual lot allocation in create_build_transaction."""

    def test_allocations_replace_fefo(self, session, company1, component_a, component_b, lots, sku_with_bom):
        """Test that the named lots are consumed instead of the earliest ones."""
        create_receipt_transaction(session, company1.id, component_b.id, 15)

        result = create_build_transaction(
            session, company1.id, sku_with_bom.id, sku_with_bom.active_bom.id, 3,
            lot_overrides={component_a.id: [
                {'lot_id': lots['EDGE'].id, 'quantity': '4'},
                {'lot_id': lots['BEYOND'].id, 'quantity': 2},
            ]}
        )

        consumed = {
            line.lot.lot_number: line.quantity_change
            for line in result['transaction'].lines
            if line.component_id == component_a.id
        }
        assert consumed == {'EDGE': Decimal('-4'), 'BEYOND': Decimal('-2')}
        assert get_component_quantity(session, company1.id, component_a.id) == Decimal('16')

    def test_allocations_must_total_required(self, session, company1, component_a, lots, refill_sku):
        """Test that a short allocation is rejected and nothing is written."""
        with pytest.raises(ValidationError, match='requires 3'):
            build_from(session, company1, refill_sku, [{'lot_id': lots['EDGE'].id, 'quantity': '2'}], 3)

        assert session.query(Transaction).filter_by(type=TransactionType.BUILD).count() == 0
        assert get_component_quantity(session, company1.id, component_a.id) == Decimal('22')

    def test_lot_of_other_component(self, session, company1, component_b, lots, refill_sku):
        """Test that a lot must belong to the component being allocated."""
        create_receipt_transaction(session, company1.id, component_b.id, 5, lot_number='B-LOT')
        b_lot = session.query(Lot).filter_by(lot_number='B-LOT').one()

        with pytest.raises(NotFoundError):
            build_from(session, company1, refill_sku, [{'lot_id': b_lot.id, 'quantity': '1'}], 1)
