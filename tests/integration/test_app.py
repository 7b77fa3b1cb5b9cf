"""
Integration tests for the application factory: error handlers and CLI
commands.
"""

import pytest
from decimal import Decimal
from openpyxl import load_workbook
from stockroom import create_app
from stockroom import database
from stockroom.exceptions import NotFoundError, VersionConflictError
from stockroom.models import Company, Component, Location
from stockroom.services.component_service import create_component
from stockroom.services.inventory_service import get_component_quantity
from stockroom.services.location_service import ensure_default_location


@pytest.fixture
def fresh_app():
    """Application with extra routes, on its own in-memory database."""
    app = create_app('config.TestConfig')

    @app.route('/missing-component')
    def missing_component():
        raise NotFoundError('Component not found')

    @app.route('/stale-bom')
    def stale_bom():
        raise VersionConflictError('BOM version', 1, 2)

    database.create_all()
    yield app
    database.db_session.remove()
    database.drop_all()


@pytest.fixture
def seeded_company(fresh_app):
    session = database.get_session()
    company = Company(name='Cli Co')
    session.add(company)
    session.flush()
    ensure_default_location(session, company.id)
    session.commit()
    create_component(session, company.id, 'Label', 'LBL-1', cost_per_unit=Decimal('0.10'))
    return company


class TestErrorHandlers:
    """Tests for JSON error responses."""

    def test_not_found_error(self, fresh_app):
        """Test that application errors become JSON with their status."""
        response = fresh_app.test_client().get('/missing-component')

        assert response.status_code == 404
        assert response.get_json() == {'status': 'error', 'message': 'Component not found'}

    def test_version_conflict_payload(self, fresh_app):
        """Test that conflict details reach the client."""
        response = fresh_app.test_client().get('/stale-bom')
        data = response.get_json()

        assert response.status_code == 409
        assert data['code'] == 'VERSION_CONFLICT'
        assert data['expected_version'] == 1
        assert data['current_version'] == 2

    def test_unknown_route(self, fresh_app):
        """Test the plain 404 handler."""
        response = fresh_app.test_client().get('/nowhere')
        assert response.status_code == 404
        assert response.get_json()['message'] == 'Not Found'


class TestCliCommands:
    """Tests for the flask CLI commands."""

    def test_init_db_creates_company(self, fresh_app):
        """Test init-db with a first company."""
        result = fresh_app.test_cli_runner().invoke(args=['init-db', '--company', 'Acme'])

        assert result.exit_code == 0
        assert 'Company "Acme" created' in result.output
        session = database.get_session()
        company = session.query(Company).filter_by(name='Acme').one()
        assert session.query(Location).filter_by(company_id=company.id, is_default=True).count() == 1

        again = fresh_app.test_cli_runner().invoke(args=['init-db', '--company', 'Acme'])
        assert 'already exists' in again.output

    def test_import_initial_inventory(self, fresh_app, seeded_company, tmp_path):
        """Test the import command output and effect."""
        csv_file = tmp_path / 'initial.csv'
        csv_file.write_text(
            'Component SKU Code,Quantity,Cost Per Unit,Date,Notes,Company,Brand\n'
            'LBL-1,500,,,,,\n'
            'NOPE,1,,,,,\n',
            encoding='utf-8'
        )

        company_id = seeded_company.id
        result = fresh_app.test_cli_runner().invoke(args=[
            'import-initial-inventory', str(csv_file), '--company-id', str(company_id)
        ])

        assert result.exit_code == 0
        assert 'Imported: 1' in result.output
        assert 'row 3 NOPE' in result.output

        session = database.get_session()
        component = session.query(Component).filter_by(sku_code='LBL-1').one()
        assert get_component_quantity(session, company_id, component.id) == Decimal('500')

    def test_import_catalog_skus(self, fresh_app, seeded_company, tmp_path):
        """Test the catalog import command with a SKU file."""
        csv_file = tmp_path / 'skus.csv'
        csv_file.write_text(
            'Name,Internal Code,Sales Channel,Notes,Component SKU Code,Quantity Per Unit\n'
            'Labelled Jar,JAR-1,,,LBL-1,2\n'
            'Mystery,MYS-1,,,NOPE,1\n',
            encoding='utf-8'
        )

        result = fresh_app.test_cli_runner().invoke(args=[
            'import-catalog', 'skus', str(csv_file), '--company-id', str(seeded_company.id)
        ])

        assert result.exit_code == 0
        assert 'Imported: 1 of 2' in result.output
        assert 'row 3 MYS-1' in result.output

    def test_export_components_xlsx(self, fresh_app, seeded_company, tmp_path):
        """Test the workbook export command."""
        output = tmp_path / 'components.xlsx'
        result = fresh_app.test_cli_runner().invoke(args=[
            'export-components', '--company-id', str(seeded_company.id), '-o', str(output)
        ])

        assert result.exit_code == 0
        sheet = load_workbook(output)['Components']
        assert sheet['A2'].value == 'LBL-1'

    def test_recalculate_organic_bad_date(self, fresh_app, seeded_company):
        """Test that malformed dates are usage errors."""
        result = fresh_app.test_cli_runner().invoke(args=[
            'recalculate-organic', '--company-id', str(seeded_company.id), '--start', '03/01/2025'
        ])
        assert result.exit_code == 2
        assert 'Invalid date' in result.output
