import pytest
from decimal import Decimal
import uuid

from stockroom import create_app
from stockroom import database
from stockroom.models import Company
from stockroom.services.component_service import create_component
from stockroom.services.location_service import ensure_default_location, create_location
from stockroom.services.sku_service import create_sku


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing (in-memory SQLite)."""
    app = create_app('config.TestConfig')
    return app


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Fresh schema and database session for each test."""
    database.create_all()
    session = database.get_session()
    yield session
    session.rollback()
    database.db_session.remove()
    database.drop_all()


def _make_company(session, label):
    suffix = str(uuid.uuid4())[:8]
    company = Company(name=f'Test Company {label} {suffix}', active=True)
    session.add(company)
    session.flush()
    ensure_default_location(session, company.id)
    session.commit()
    return company


@pytest.fixture(scope='function')
def company1(session):
    """Create first test company with its default location."""
    return _make_company(session, 1)


@pytest.fixture(scope='function')
def company2(session):
    """Create second test company for isolation tests."""
    return _make_company(session, 2)


@pytest.fixture(scope='function')
def warehouse(session, company1):
    """Default location of company1."""
    return ensure_default_location(session, company1.id)


@pytest.fixture(scope='function')
def overflow(session, company1):
    """Second location of company1."""
    return create_location(session, company1.id, 'Overflow')


@pytest.fixture(scope='function')
def component_a(session, company1):
    """Component costing 2.00 per unit."""
    return create_component(
        session, company1.id, 'Glass Bottle', 'COMP-A',
        cost_per_unit=Decimal('2.00'), reorder_point=Decimal('10')
    )


@pytest.fixture(scope='function')
def component_b(session, company1):
    """Component costing 0.50 per unit."""
    return create_component(
        session, company1.id, 'Cork Stopper', 'COMP-B',
        cost_per_unit=Decimal('0.50'), reorder_point=Decimal('0')
    )


@pytest.fixture(scope='function')
def component_other_company(session, company2):
    """Component owned by company2."""
    return create_component(session, company2.id, 'Foreign Part', 'COMP-X', cost_per_unit=Decimal('1.00'))


@pytest.fixture(scope='function')
def sku_with_bom(session, company1, component_a, component_b):
    """SKU needing 2 x COMP-A and 5 x COMP-B per unit (unit cost 6.50)."""
    return create_sku(
        session, company1.id, 'Bottled Kit', 'KIT-001',
        bom_lines=[
            {'component_id': component_a.id, 'quantity_per_unit': '2'},
            {'component_id': component_b.id, 'quantity_per_unit': '5'},
        ]
    )
