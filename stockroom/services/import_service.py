"""
CSV import service - Multi-Tenant.

Rows are validated one by one; a bad row is reported and skipped, it never
aborts the rows around it. Each imported row commits on its own. SKU files
carry one row per BOM line and commit one SKU at a time.
"""
import csv
import io
import logging
import re
from collections import OrderedDict
from datetime import date as date_type
from typing import Iterable, List, Optional

from stockroom.exceptions import StockroomError, ValidationError
from stockroom.models import Company, Component
from stockroom.services.component_service import create_component
from stockroom.services.inventory_service import create_initial_transaction, find_initial_transaction
from stockroom.services.sku_service import create_sku
from stockroom.utils.number_format import parse_positive_quantity
from stockroom.utils.formatters import to_decimal

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROWS = 5000

INITIAL_INVENTORY_HEADERS = [
    'Component SKU Code',
    'Quantity',
    'Cost Per Unit',
    'Date',
    'Notes',
    'Company',
    'Brand',
]

COMPONENT_IMPORT_HEADERS = [
    'Name',
    'SKU Code',
    'Category',
    'Unit of Measure',
    'Cost Per Unit',
    'Reorder Point',
    'Lead Time Days',
    'Notes',
]

SKU_IMPORT_HEADERS = [
    'Name',
    'Internal Code',
    'Sales Channel',
    'Notes',
    'Component SKU Code',
    'Quantity Per Unit',
]


# =====================================================
# CSV HELPERS
# =====================================================

def parse_csv(content: str) -> List[List[str]]:
    """
    Split CSV text into rows of fields, exactly as written.

    Quoted fields may hold commas, doubled quotes and newlines. Blank rows
    and a leading byte-order mark are dropped. Whitespace inside fields is
    kept; rows_to_records trims values for import.
    """
    if content.startswith('\ufeff'):
        content = content[1:]
    reader = csv.reader(io.StringIO(content, newline=''))
    return [row for row in reader if any(field.strip() for field in row)]


def to_csv(rows: Iterable[Iterable]) -> str:
    """Serialize rows to CSV text, quoting only where needed."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    for row in rows:
        writer.writerow(['' if value is None else value for value in row])
    return buffer.getvalue()


def normalize_header(header: str) -> str:
    """'Component SKU Code' -> 'component_sku_code'."""
    normalized = re.sub(r'[^a-z0-9]', '_', header.lower())
    normalized = re.sub(r'_+', '_', normalized)
    return normalized.strip('_')


def rows_to_records(rows: List[List[str]]) -> List[dict]:
    """Header row + data rows -> dicts keyed by normalized header, values trimmed."""
    if not rows:
        return []
    headers = [normalize_header(h) for h in rows[0]]
    return [
        {key: (row[i].strip() if i < len(row) else '') for i, key in enumerate(headers)}
        for row in rows[1:]
    ]


def load_records(csv_content: str, max_rows: Optional[int] = DEFAULT_MAX_ROWS) -> List[dict]:
    """Parse an upload into records, rejecting empty and oversized files."""
    if not csv_content or not csv_content.strip():
        raise ValidationError('Empty file provided')

    records = rows_to_records(parse_csv(csv_content))
    if max_rows is not None and len(records) > max_rows:
        raise ValidationError(f'Too many rows: {len(records)} (maximum {max_rows})')
    return records


# =====================================================
# INITIAL INVENTORY
# =====================================================

def parse_initial_inventory_row(record: dict) -> dict:
    """
    Validate one initial-inventory record.

    Returns a dict with component_sku_code, quantity, cost_per_unit, date,
    notes, company and brand. Collects every problem before raising.
    """
    errors = []
    data = {
        'component_sku_code': (record.get('component_sku_code') or '').strip(),
        'notes': (record.get('notes') or '').strip() or None,
        'company': (record.get('company') or '').strip() or None,
        'brand': (record.get('brand') or '').strip() or None,
        'quantity': None,
        'cost_per_unit': None,
        'date': None,
    }

    if not data['component_sku_code']:
        errors.append('Component SKU code is required')

    try:
        data['quantity'] = parse_positive_quantity(record.get('quantity'), 'Quantity')
    except ValueError:
        errors.append('Quantity must be a positive number')

    cost = (record.get('cost_per_unit') or '').strip()
    if cost:
        try:
            data['cost_per_unit'] = to_decimal(cost)
            if data['cost_per_unit'] < 0:
                errors.append('Cost per unit must be a non-negative number')
        except ValueError:
            errors.append('Cost per unit must be a non-negative number')

    raw_date = (record.get('date') or '').strip()
    if raw_date:
        try:
            data['date'] = date_type.fromisoformat(raw_date)
        except ValueError:
            errors.append('Invalid date format')

    if errors:
        raise ValidationError('; '.join(errors), payload={'errors': errors})
    return data


def import_initial_inventory(
    session,
    company_id: int,
    csv_content: str,
    allow_overwrite: bool = False,
    created_by_id: int = None,
    max_rows: Optional[int] = DEFAULT_MAX_ROWS
) -> dict:
    """
    Import opening balances from CSV.

    Expected columns (case and punctuation insensitive): Component SKU Code,
    Quantity, Cost Per Unit, Date, Notes, Company, Brand. Company, when given,
    must name the importing company. Brand is accepted for template
    compatibility and not used for lookup.

    Returns:
        {'total', 'imported', 'overwritten', 'skipped', 'errors'}; each error
        is {'row_number', 'component_sku_code', 'errors'} with row_number
        counting the header as row 1.
    """
    records = load_records(csv_content, max_rows)
    company = session.get(Company, company_id)
    result = {'total': len(records), 'imported': 0, 'overwritten': 0, 'skipped': 0, 'errors': []}

    def skip(row_number, sku_code, messages):
        result['skipped'] += 1
        result['errors'].append({'row_number': row_number, 'component_sku_code': sku_code, 'errors': messages})

    for index, record in enumerate(records):
        row_number = index + 2
        sku_code = (record.get('component_sku_code') or '').strip()

        try:
            data = parse_initial_inventory_row(record)
        except ValidationError as e:
            skip(row_number, sku_code, e.payload.get('errors', [e.message]))
            continue

        if data['company'] and (company is None or data['company'].lower() != company.name.lower()):
            skip(row_number, sku_code, [f'Company "{data["company"]}" not found'])
            continue

        component = session.query(Component).filter(
            Component.company_id == company_id,
            Component.sku_code == sku_code
        ).first()
        if component is None:
            skip(row_number, sku_code, [f'Component with SKU code "{sku_code}" not found'])
            continue

        existing = find_initial_transaction(session, company_id, component.id)
        if existing and not allow_overwrite:
            skip(row_number, sku_code, [
                f'Component "{sku_code}" already has an initial inventory transaction '
                f'(use allow_overwrite to replace)'
            ])
            continue

        try:
            create_initial_transaction(
                session, company_id, component.id, data['quantity'],
                cost_per_unit=data['cost_per_unit'],
                date=data['date'],
                notes=data['notes'],
                allow_overwrite=allow_overwrite,
                created_by_id=created_by_id
            )
        except StockroomError as e:
            skip(row_number, sku_code, [e.message])
            continue

        result['imported'] += 1
        if existing:
            result['overwritten'] += 1

    logger.info(
        f"Initial inventory import for company {company_id}: {result['imported']} imported, "
        f"{result['overwritten']} overwritten, {result['skipped']} skipped"
    )
    return result


def generate_initial_inventory_template() -> str:
    """CSV template with the expected headers and one example row."""
    example = ['COMP-001', '100', '10.50', '2025-01-01', 'Opening balance', '', '']
    return to_csv([INITIAL_INVENTORY_HEADERS, example])


# =====================================================
# COMPONENTS
# =====================================================

COMPONENT_OPTIONAL_FIELDS = (
    'category', 'unit_of_measure', 'cost_per_unit', 'reorder_point', 'lead_time_days', 'notes',
)


def import_components(session, company_id: int, csv_content: str, max_rows: Optional[int] = DEFAULT_MAX_ROWS) -> dict:
    """
    Create components from CSV.

    Columns: Name, SKU Code, Category, Unit of Measure, Cost Per Unit,
    Reorder Point, Lead Time Days, Notes. Only Name and SKU Code are
    required; blank optional cells take the component defaults. Duplicate
    names or codes (in the file or already in the catalog) are reported per row.

    Returns:
        {'total', 'imported', 'skipped', 'errors'}; each error is
        {'row_number', 'sku_code', 'errors'}.
    """
    records = load_records(csv_content, max_rows)
    result = {'total': len(records), 'imported': 0, 'skipped': 0, 'errors': []}

    for index, record in enumerate(records):
        sku_code = record.get('sku_code', '')
        fields = {key: record[key] for key in COMPONENT_OPTIONAL_FIELDS if record.get(key)}
        try:
            create_component(session, company_id, record.get('name', ''), sku_code, **fields)
        except StockroomError as e:
            result['skipped'] += 1
            result['errors'].append({'row_number': index + 2, 'sku_code': sku_code, 'errors': [e.message]})
            continue
        result['imported'] += 1

    logger.info(
        f"Component import for company {company_id}: {result['imported']} imported, {result['skipped']} skipped"
    )
    return result


def generate_component_template() -> str:
    """CSV template for import_components."""
    example = ['Glass Bottle', 'COMP-001', 'Packaging', 'each', '2.50', '100', '14', 'Amber, 250ml']
    return to_csv([COMPONENT_IMPORT_HEADERS, example])


# =====================================================
# SKUS
# =====================================================

def _group_sku_rows(records: List[dict]):
    """Group records by internal code, keeping file order and row numbers."""
    groups = OrderedDict()
    for index, record in enumerate(records):
        groups.setdefault(record.get('internal_code', ''), []).append((index + 2, record))
    return groups


def _parse_bom_row(record: dict, components_by_code: dict) -> Optional[dict]:
    """One SKU row -> a BOM line, or None when the row carries no component."""
    component_code = record.get('component_sku_code', '')
    raw_quantity = record.get('quantity_per_unit', '')
    if not component_code and not raw_quantity:
        return None

    errors = []
    component_id = None
    if not component_code:
        errors.append('Component SKU code is required when a quantity is given')
    else:
        component_id = components_by_code.get(component_code)
        if component_id is None:
            errors.append(f'Component with SKU code "{component_code}" not found')

    quantity = None
    try:
        quantity = parse_positive_quantity(raw_quantity, 'Quantity per unit')
    except ValueError:
        errors.append('Quantity per unit must be a positive number')

    if errors:
        raise ValidationError('; '.join(errors), payload={'errors': errors})
    return {'component_id': component_id, 'quantity_per_unit': quantity}


def import_skus(session, company_id: int, csv_content: str, max_rows: Optional[int] = DEFAULT_MAX_ROWS) -> dict:
    """
    Create SKUs, each with an optional initial BOM, from CSV.

    Columns: Name, Internal Code, Sales Channel, Notes, Component SKU Code,
    Quantity Per Unit. Consecutive or scattered rows sharing an Internal Code
    describe one SKU: the first row supplies name, channel and notes, and
    every row may add one BOM line. A SKU with any bad row is not created.

    Returns:
        {'total', 'imported', 'skipped', 'errors'} counted in SKUs; each error
        is {'row_number', 'internal_code', 'errors'}.
    """
    records = load_records(csv_content, max_rows)
    groups = _group_sku_rows(records)
    result = {'total': len(groups), 'imported': 0, 'skipped': 0, 'errors': []}

    components_by_code = dict(
        session.query(Component.sku_code, Component.id).filter(Component.company_id == company_id).all()
    )

    for internal_code, rows in groups.items():
        row_errors = []
        bom_lines = []
        for row_number, record in rows:
            try:
                line = _parse_bom_row(record, components_by_code)
            except ValidationError as e:
                row_errors.append({'row_number': row_number, 'internal_code': internal_code, 'errors': e.payload['errors']})
                continue
            if line:
                bom_lines.append(line)

        if not row_errors:
            first_row, first = rows[0]
            try:
                create_sku(
                    session, company_id, first.get('name', ''), internal_code,
                    sales_channel=first.get('sales_channel') or 'generic',
                    notes=first.get('notes') or None,
                    bom_lines=bom_lines
                )
            except StockroomError as e:
                row_errors.append({'row_number': first_row, 'internal_code': internal_code, 'errors': [e.message]})

        if row_errors:
            result['skipped'] += 1
            result['errors'].extend(row_errors)
        else:
            result['imported'] += 1

    logger.info(
        f"SKU import for company {company_id}: {result['imported']} imported, {result['skipped']} skipped"
    )
    return result


def generate_sku_template() -> str:
    """CSV template for import_skus: one SKU with a two-line BOM."""
    return to_csv([
        SKU_IMPORT_HEADERS,
        ['Bottled Kit', 'KIT-001', 'generic', 'Gift set', 'COMP-001', '2'],
        ['Bottled Kit', 'KIT-001', '', '', 'COMP-002', '1/3'],
    ])
