"""
Flask CLI commands for inventory administration.

Commands:
- flask init-db: Create tables (optionally a first company)
- flask import-initial-inventory: Load opening balances from CSV
- flask import-catalog: Create components or SKUs from CSV
- flask recalculate-organic: Re-derive organic sales
- flask export-components: Write the component list as CSV or XLSX
"""
from datetime import date

import click
from flask import current_app

from stockroom import database
from stockroom.exceptions import StockroomError
from stockroom.models import Company
from stockroom.services import attribution_service, export_service, import_service
from stockroom.services.location_service import ensure_default_location


def _parse_date(value):
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise click.BadParameter(f'Invalid date: {value} (expected YYYY-MM-DD)')


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    @click.option('--company', 'company_name', default=None, help='Create a company with a default location')
    def init_db_command(company_name):
        """Create all tables."""
        database.create_all()
        click.echo(click.style('✅ Tables created', fg='green'))

        if not company_name:
            return

        session = database.get_session()
        existing = session.query(Company).filter_by(name=company_name).first()
        if existing:
            click.echo(click.style(f'Company "{company_name}" already exists (id {existing.id})', fg='yellow'))
            return

        try:
            company = Company(name=company_name)
            session.add(company)
            session.flush()
            ensure_default_location(session, company.id)
            session.commit()
        except Exception as e:
            session.rollback()
            click.echo(click.style(f'❌ Error creating company: {e}', fg='red'))
            raise SystemExit(1)

        click.echo(click.style(f'✅ Company "{company_name}" created (id {company.id})', fg='green'))

    @app.cli.command('import-initial-inventory')
    @click.argument('csv_file', type=click.File('r', encoding='utf-8-sig'))
    @click.option('--company-id', required=True, type=int, help='Company receiving the balances')
    @click.option('--allow-overwrite', is_flag=True, help='Replace existing initial transactions')
    def import_initial_inventory_command(csv_file, company_id, allow_overwrite):
        """Import opening balances from a CSV file."""
        session = database.get_session()
        try:
            result = import_service.import_initial_inventory(
                session, company_id, csv_file.read(),
                allow_overwrite=allow_overwrite,
                max_rows=current_app.config.get('MAX_IMPORT_ROWS')
            )
        except StockroomError as e:
            click.echo(click.style(f'❌ {e.message}', fg='red'))
            raise SystemExit(1)

        click.echo(f"Rows: {result['total']}")
        click.echo(click.style(f"Imported: {result['imported']} (overwritten: {result['overwritten']})", fg='green'))
        if result['skipped']:
            click.echo(click.style(f"Skipped: {result['skipped']}", fg='yellow'))
            for error in result['errors']:
                click.echo(f"  row {error['row_number']} {error['component_sku_code']}: {'; '.join(error['errors'])}")

    @app.cli.command('import-catalog')
    @click.argument('kind', type=click.Choice(['components', 'skus']))
    @click.argument('csv_file', type=click.File('r', encoding='utf-8-sig'))
    @click.option('--company-id', required=True, type=int)
    def import_catalog_command(kind, csv_file, company_id):
        """Create components or SKUs (with BOM lines) from a CSV file."""
        importer = import_service.import_components if kind == 'components' else import_service.import_skus
        try:
            result = importer(
                database.get_session(), company_id, csv_file.read(),
                max_rows=current_app.config.get('MAX_IMPORT_ROWS')
            )
        except StockroomError as e:
            click.echo(click.style(f'❌ {e.message}', fg='red'))
            raise SystemExit(1)

        click.echo(click.style(f"Imported: {result['imported']} of {result['total']}", fg='green'))
        for error in result['errors']:
            label = error.get('sku_code', error.get('internal_code'))
            click.echo(click.style(f"  row {error['row_number']} {label}: {'; '.join(error['errors'])}", fg='yellow'))

    @app.cli.command('recalculate-organic')
    @click.option('--company-id', required=True, type=int)
    @click.option('--start', 'start_date', default=None, help='First date (YYYY-MM-DD)')
    @click.option('--end', 'end_date', default=None, help='Last date (YYYY-MM-DD)')
    def recalculate_organic_command(company_id, start_date, end_date):
        """Re-derive organic sales across channels for a date range."""
        updated = attribution_service.recalculate_organic_sales(
            database.get_session(), company_id, _parse_date(start_date), _parse_date(end_date)
        )
        click.echo(click.style(f'✅ {updated} record(s) updated', fg='green'))

    @app.cli.command('export-components')
    @click.option('--company-id', required=True, type=int)
    @click.option('--output', '-o', required=True, type=click.Path(dir_okay=False), help='.csv or .xlsx file')
    @click.option('--location-id', default=None, type=int, help='Limit balances to one location')
    def export_components_command(company_id, output, location_id):
        """Export components with balances and reorder status."""
        session = database.get_session()
        if output.lower().endswith('.xlsx'):
            rows = export_service.component_export_rows(session, company_id, location_id)
            content = export_service.build_workbook({'Components': (export_service.COMPONENT_COLUMNS, rows)})
            with open(output, 'wb') as f:
                f.write(content)
        else:
            content = export_service.export_components_csv(session, company_id, location_id)
            with open(output, 'w', encoding='utf-8', newline='') as f:
                f.write(content)

        click.echo(click.style(f'✅ Components exported to {output}', fg='green'))
