"""
Integration tests for the CSV imports (initial inventory, components,
SKUs with BOM lines) and the CSV / XLSX exports.
"""

import io
import pytest
from decimal import Decimal
from openpyxl import load_workbook
from stockroom.exceptions import ValidationError
from stockroom.models import Component, SKU
from stockroom.services.export_service import (
    export_components_csv, export_skus_csv, export_transactions_csv, export_inventory_workbook,
    COMPONENT_COLUMNS
)
from stockroom.services.component_service import create_component
from stockroom.services.import_service import (
    import_initial_inventory, generate_initial_inventory_template, parse_csv, INITIAL_INVENTORY_HEADERS,
    import_components, import_skus, generate_component_template, generate_sku_template,
    COMPONENT_IMPORT_HEADERS, SKU_IMPORT_HEADERS
)
from stockroom.services.inventory_service import (
    create_receipt_transaction, create_initial_transaction, get_component_quantity
)
from stockroom.services.transfer_service import create_transfer_transaction


HEADER = 'Component SKU Code,Quantity,Cost Per Unit,Date,Notes,Company,Brand\n'
COMPONENT_HEADER = 'Name,SKU Code,Category,Unit of Measure,Cost Per Unit,Reorder Point,Lead Time Days,Notes\n'
SKU_HEADER = 'Name,Internal Code,Sales Channel,Notes,Component SKU Code,Quantity Per Unit\n'


class TestInitialInventoryImport:
    """Tests for import_initial_inventory."""

    def test_good_and_bad_rows(self, session, company1, component_a, component_b):
        """Test that bad rows are reported without blocking good ones."""
        content = (
            HEADER
            + 'COMP-A,100,2.50,2025-01-01,Opening,,\n'
            + 'COMP-Z,5,,,,,\n'
            + 'COMP-B,-1,,,,,\n'
            + 'COMP-B,10,,2025-13-45,,,\n'
        )
        result = import_initial_inventory(session, company1.id, content)

        assert result['total'] == 4
        assert result['imported'] == 1
        assert result['skipped'] == 3
        assert [error['row_number'] for error in result['errors']] == [3, 4, 5]
        assert result['errors'][0]['errors'] == ['Component with SKU code "COMP-Z" not found']
        assert result['errors'][2]['errors'] == ['Invalid date format']

        assert get_component_quantity(session, company1.id, component_a.id) == Decimal('100')
        assert get_component_quantity(session, company1.id, component_b.id) == Decimal('0')

    def test_non_finite_numbers_are_row_errors(self, session, company1, component_a, component_b):
        """Test that nan and infinity are reported on their row, not raised."""
        content = (
            HEADER
            + 'COMP-A,nan,,,,,\n'
            + 'COMP-B,5,Infinity,,,,\n'
            + 'COMP-B,5,,,  Counted  ,,\n'
        )
        result = import_initial_inventory(session, company1.id, content)

        assert result['imported'] == 1
        assert result['skipped'] == 2
        assert result['errors'][0]['errors'] == ['Quantity must be a positive number']
        assert result['errors'][1]['errors'] == ['Cost per unit must be a non-negative number']
        assert get_component_quantity(session, company1.id, component_a.id) == Decimal('0')
        assert get_component_quantity(session, company1.id, component_b.id) == Decimal('5')

    def test_existing_initial_skipped_unless_overwrite(self, session, company1, component_a):
        """Test idempotency and overwrite through the import."""
        create_initial_transaction(session, company1.id, component_a.id, 50)
        content = HEADER + 'COMP-A,80,,,,,\n'

        first = import_initial_inventory(session, company1.id, content)
        assert first['imported'] == 0
        assert first['skipped'] == 1

        second = import_initial_inventory(session, company1.id, content, allow_overwrite=True)
        assert second['imported'] == 1
        assert second['overwritten'] == 1
        assert get_component_quantity(session, company1.id, component_a.id) == Decimal('80')

    def test_company_column(self, session, company1, component_a, component_b):
        """Test that the company column must name the importing company."""
        content = (
            HEADER
            + f'COMP-A,1,,,,"{company1.name.upper()}",\n'
            + 'COMP-B,1,,,,Someone Else,\n'
        )
        result = import_initial_inventory(session, company1.id, content)

        assert result['imported'] == 1
        assert result['errors'][0]['component_sku_code'] == 'COMP-B'

    def test_other_company_components_invisible(self, session, company1, company2, component_other_company):
        """Test that codes resolve within the importing company only."""
        result = import_initial_inventory(session, company1.id, HEADER + 'COMP-X,5,,,,,\n')
        assert result['imported'] == 0
        assert get_component_quantity(session, company2.id, component_other_company.id) == Decimal('0')

    def test_empty_and_oversized_files(self, session, company1, component_a):
        """Test file level validation."""
        with pytest.raises(ValidationError):
            import_initial_inventory(session, company1.id, '  ')
        with pytest.raises(ValidationError):
            import_initial_inventory(session, company1.id, HEADER + 'COMP-A,1,,,,,\nCOMP-A,2,,,,,\n', max_rows=1)

    def test_template_headers(self):
        """Test that the template parses back to the expected headers."""
        rows = parse_csv(generate_initial_inventory_template())
        assert rows[0] == INITIAL_INVENTORY_HEADERS
        assert len(rows) == 2


class TestComponentImport:
    """Tests for import_components."""

    def test_rows_created_or_reported(self, session, company1, component_a):
        """Test defaults, duplicates and bad numbers row by row."""
        content = (
            COMPONENT_HEADER
            + 'Glass Jar,JAR-1,Packaging,each,1.25,10,7,"Clear, 500ml"\n'
            + 'Lid,LID-1,,,,,,\n'
            + ',NONAME-1,,,,,,\n'
            + 'glass bottle,COMP-A2,,,,,,\n'
            + 'Jar Again,JAR-1,,,,,,\n'
            + 'Bad Cost,BAD-1,,,NaN,,,\n'
            + 'Bad Lead,BAD-2,,,,,soon,\n'
        )
        result = import_components(session, company1.id, content)

        assert result['total'] == 7
        assert result['imported'] == 2
        assert result['skipped'] == 5
        assert [error['row_number'] for error in result['errors']] == [4, 5, 6, 7, 8]
        assert result['errors'][2]['errors'] == ['A component with SKU code "JAR-1" already exists']

        jar = session.query(Component).filter_by(company_id=company1.id, sku_code='JAR-1').one()
        assert jar.category == 'Packaging'
        assert jar.cost_per_unit == Decimal('1.25')
        assert jar.reorder_point == Decimal('10')
        assert jar.lead_time_days == 7
        assert jar.notes == 'Clear, 500ml'
        lid = session.query(Component).filter_by(company_id=company1.id, sku_code='LID-1').one()
        assert lid.unit_of_measure == 'each'
        assert lid.cost_per_unit == Decimal('0')

    def test_codes_are_per_company(self, session, company1, component_other_company):
        """Test that another company's code does not collide."""
        result = import_components(session, company1.id, COMPONENT_HEADER + 'Stopper,COMP-X,,,,,,\n')
        assert result['imported'] == 1

    def test_template_imports(self, session, company1):
        """Test that the template is a valid import file."""
        assert parse_csv(generate_component_template())[0] == COMPONENT_IMPORT_HEADERS
        result = import_components(session, company1.id, generate_component_template())
        assert result['imported'] == 1


class TestSkuImport:
    """Tests for import_skus."""

    def test_rows_grouped_into_skus(self, session, company1, component_a, component_b, sku_with_bom):
        """Test BOM lines per internal code and whole-SKU rejection."""
        content = (
            SKU_HEADER
            + 'Gift Set,GIFT-1,shopify,Boxed,COMP-A,2\n'
            + 'Gift Set,GIFT-1,,,COMP-B,1/3\n'
            + 'Sample,SAMPLE-1,,,,\n'
            + 'Broken,BROKEN-1,,,COMP-A,1\n'
            + 'Broken,BROKEN-1,,,COMP-Z,1\n'
            + 'Broken,BROKEN-1,,,COMP-B,0\n'
            + 'Copy,KIT-001,,,COMP-A,1\n'
            + 'Twice,TWICE-1,,,COMP-A,1\n'
            + 'Twice,TWICE-1,,,COMP-A,2\n'
        )
        result = import_skus(session, company1.id, content)

        assert result['total'] == 5
        assert result['imported'] == 2
        assert result['skipped'] == 3
        assert [(error['row_number'], error['internal_code']) for error in result['errors']] == [
            (6, 'BROKEN-1'), (7, 'BROKEN-1'), (8, 'KIT-001'), (9, 'TWICE-1')
        ]
        assert result['errors'][0]['errors'] == ['Component with SKU code "COMP-Z" not found']
        assert result['errors'][1]['errors'] == ['Quantity per unit must be a positive number']

        gift = session.query(SKU).filter_by(company_id=company1.id, internal_code='GIFT-1').one()
        assert gift.sales_channel == 'shopify'
        assert gift.notes == 'Boxed'
        assert {line.component_id: line.quantity_per_unit for line in gift.active_bom.lines} == {
            component_a.id: Decimal('2'), component_b.id: Decimal('0.3333')
        }
        sample = session.query(SKU).filter_by(company_id=company1.id, internal_code='SAMPLE-1').one()
        assert sample.active_bom is None
        assert session.query(SKU).filter_by(internal_code='BROKEN-1').count() == 0
        assert session.query(SKU).filter_by(internal_code='TWICE-1').count() == 0

    def test_components_resolve_within_company(self, session, company1, component_other_company):
        """Test that another company's component code is not found."""
        result = import_skus(session, company1.id, SKU_HEADER + 'Kit,KIT-X,,,COMP-X,1\n')
        assert result['imported'] == 0
        assert result['errors'][0]['errors'] == ['Component with SKU code "COMP-X" not found']

    def test_template_imports(self, session, company1):
        """Test that the template imports once its components exist."""
        create_component(session, company1.id, 'Bottle', 'COMP-001')
        create_component(session, company1.id, 'Cap', 'COMP-002')

        assert parse_csv(generate_sku_template())[0] == SKU_IMPORT_HEADERS
        result = import_skus(session, company1.id, generate_sku_template())
        assert result['imported'] == 1
        kit = session.query(SKU).filter_by(internal_code='KIT-001').one()
        assert len(kit.active_bom.lines) == 2


class TestExports:
    """Tests for CSV and workbook exports."""

    def test_components_csv(self, session, company1, component_a, component_b):
        """Test the header and on-hand column."""
        create_receipt_transaction(session, company1.id, component_a.id, 5)
        rows = parse_csv(export_components_csv(session, company1.id))

        assert rows[0] == COMPONENT_COLUMNS
        by_code = {row[0]: row for row in rows[1:]}
        assert by_code['COMP-A'][COMPONENT_COLUMNS.index('quantity_on_hand')] == '5.0000'
        assert by_code['COMP-A'][COMPONENT_COLUMNS.index('reorder_status')] == 'critical'

    def test_skus_csv(self, session, company1, sku_with_bom):
        """Test that SKU exports carry the BOM unit cost."""
        rows = parse_csv(export_skus_csv(session, company1.id))
        assert rows[1][0] == 'KIT-001'
        assert '6.5000' in rows[1]

    def test_transactions_csv_one_row_per_line(self, session, company1, warehouse, overflow, component_a):
        """Test that a transfer exports two rows."""
        create_receipt_transaction(session, company1.id, component_a.id, 10, supplier='Acme')
        create_transfer_transaction(session, company1.id, component_a.id, warehouse.id, overflow.id, 4)

        rows = parse_csv(export_transactions_csv(session, company1.id))
        assert len(rows) == 4
        assert [row[2] for row in rows[1:]] == ['receipt', 'transfer', 'transfer']
        assert sorted(row[6] for row in rows[2:]) == ['-4.0000', '4.0000']

    def test_workbook(self, session, company1, component_a, sku_with_bom):
        """Test that the workbook opens with one sheet per section."""
        create_receipt_transaction(session, company1.id, component_a.id, 7)
        workbook = load_workbook(io.BytesIO(export_inventory_workbook(session, company1.id)))

        assert workbook.sheetnames == ['Components', 'SKUs', 'Transactions']
        components = workbook['Components']
        assert components['A1'].value == 'sku_code'
        assert components['A1'].font.bold is True
        assert components.max_row == 3
        assert workbook['Transactions'].max_row == 2
