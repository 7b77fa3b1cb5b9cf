"""
Company settings service.
Stored settings (Company.settings JSON) are merged over application defaults.
"""
import logging
from decimal import Decimal, InvalidOperation

from stockroom.database import atomic
from stockroom.exceptions import NotFoundError, ValidationError
from stockroom.models import Company

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS = {
    'allow_negative_inventory': False,
    'reorder_warning_multiplier': Decimal('1.5'),
    'expiry_warning_days': 30,
}


def configure_defaults(config):
    """Load default settings from a Flask config mapping."""
    DEFAULT_SETTINGS['allow_negative_inventory'] = bool(
        config.get('DEFAULT_ALLOW_NEGATIVE_INVENTORY', False)
    )
    DEFAULT_SETTINGS['reorder_warning_multiplier'] = Decimal(
        str(config.get('DEFAULT_REORDER_WARNING_MULTIPLIER', '1.5'))
    )
    DEFAULT_SETTINGS['expiry_warning_days'] = int(config.get('DEFAULT_EXPIRY_WARNING_DAYS', 30))


def _coerce_settings(raw: dict) -> dict:
    """Validate a settings mapping; raises ValueError on bad values."""
    allow_negative = raw.get('allow_negative_inventory')
    if not isinstance(allow_negative, bool):
        raise ValueError('allow_negative_inventory must be a boolean')

    try:
        multiplier = Decimal(str(raw.get('reorder_warning_multiplier')))
    except (InvalidOperation, ValueError):
        raise ValueError('reorder_warning_multiplier must be a number')
    if multiplier < 1:
        raise ValueError('reorder_warning_multiplier must be at least 1')

    warning_days = raw.get('expiry_warning_days')
    if isinstance(warning_days, bool) or not isinstance(warning_days, int) or warning_days < 0:
        raise ValueError('expiry_warning_days must be a non-negative integer')

    return {
        'allow_negative_inventory': allow_negative,
        'reorder_warning_multiplier': multiplier,
        'expiry_warning_days': warning_days,
    }


def get_company_settings(session, company_id: int) -> dict:
    """
    Return the effective settings for a company.

    Unknown companies and invalid stored values fall back to the defaults.
    """
    if not company_id:
        logger.warning("get_company_settings called without company_id, returning defaults")
        return dict(DEFAULT_SETTINGS)

    company = session.query(Company).filter_by(id=company_id).first()
    stored = (company.settings if company else None) or {}
    merged = {**DEFAULT_SETTINGS, **stored}

    try:
        return _coerce_settings(merged)
    except ValueError as e:
        logger.warning(f"Invalid settings for company {company_id}, using defaults: {e}")
        return dict(DEFAULT_SETTINGS)


def update_company_settings(session, company_id: int, changes: dict) -> dict:
    """Validate and persist settings changes for a company."""
    unknown = set(changes) - set(DEFAULT_SETTINGS)
    if unknown:
        raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")

    with atomic(session):
        company = session.query(Company).filter_by(id=company_id).first()
        if not company:
            raise NotFoundError('Company not found')

        merged = {**DEFAULT_SETTINGS, **(company.settings or {}), **changes}
        try:
            validated = _coerce_settings(merged)
        except ValueError as e:
            raise ValidationError(str(e))

        # JSON column: store the multiplier as a string to keep it exact
        company.settings = {
            **validated,
            'reorder_warning_multiplier': str(validated['reorder_warning_multiplier']),
        }

    logger.info(f"Settings updated for company {company_id}: {sorted(changes)}")
    return validated
