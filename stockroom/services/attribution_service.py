"""
Attribution service - Multi-Tenant.

Splits daily sales into ad-attributed and organic. Organic is
max(0, total - ad); when several channel records share a date the overall
organic amount is spread across them in proportion to each channel's total.
"""
import logging
from collections import OrderedDict
from datetime import date as date_type
from decimal import Decimal, ROUND_HALF_EVEN
from typing import List

from stockroom.database import atomic
from stockroom.exceptions import ValidationError
from stockroom.models import SalesDaily
from stockroom.utils.formatters import to_decimal

logger = logging.getLogger(__name__)

ZERO = Decimal('0')
HUNDRED = Decimal('100')
CENTS = Decimal('0.01')


def _money(value) -> Decimal:
    return to_decimal(value, default=ZERO)


def calculate_organic(total_sales, ad_attributed_sales) -> Decimal:
    """Organic sales, clamped so bad ad data never yields a negative amount."""
    return max(ZERO, _money(total_sales) - _money(ad_attributed_sales))


def _percentage(part, total) -> Decimal:
    total = _money(total)
    if total == 0:
        return Decimal('0.00')
    # Half-even keeps the organic and ad shares summing to exactly 100
    return (_money(part) / total * HUNDRED).quantize(CENTS, rounding=ROUND_HALF_EVEN)


def calculate_organic_percentage(total_sales, organic_sales) -> Decimal:
    return _percentage(organic_sales, total_sales)


def calculate_ad_percentage(total_sales, ad_attributed_sales) -> Decimal:
    return _percentage(ad_attributed_sales, total_sales)


def has_attribution_anomaly(total_sales, ad_attributed_sales) -> bool:
    """True when more sales are attributed to ads than were made."""
    return _money(ad_attributed_sales) > _money(total_sales)


def upsert_daily_sales(
    session,
    company_id: int,
    date: date_type,
    channel: str,
    total_sales,
    ad_attributed_sales=0,
    organic_sales=None,
    asin: str = None,
    sku_id: int = None,
    units_total: int = None,
    units_ad_attributed: int = None,
    units_organic: int = None
) -> SalesDaily:
    """
    Create or replace the record keyed by (company, date, channel, asin).

    organic_sales defaults to calculate_organic(total, ad).
    """
    if not channel or not channel.strip():
        raise ValidationError('Sales channel is required')
    try:
        total = _money(total_sales)
        ad = _money(ad_attributed_sales)
        organic = calculate_organic(total, ad) if organic_sales is None else _money(organic_sales)
    except ValueError:
        raise ValidationError('Sales amounts must be numbers')
    if total < 0 or ad < 0 or organic < 0:
        raise ValidationError('Sales amounts cannot be negative')

    if has_attribution_anomaly(total, ad):
        logger.warning(f"Attribution anomaly for company {company_id} on {date} ({channel}): ad={ad} > total={total}")

    with atomic(session):
        record = session.query(SalesDaily).filter(
            SalesDaily.company_id == company_id,
            SalesDaily.date == date,
            SalesDaily.channel == channel.strip(),
            SalesDaily.asin == asin if asin else SalesDaily.asin.is_(None)
        ).first()

        if record is None:
            record = SalesDaily(company_id=company_id, date=date, channel=channel.strip(), asin=asin)
            session.add(record)

        record.sku_id = sku_id if sku_id is not None else record.sku_id
        record.total_sales = total.quantize(CENTS)
        record.ad_attributed_sales = ad.quantize(CENTS)
        record.organic_sales = organic.quantize(CENTS)
        record.units_total = units_total
        record.units_ad_attributed = units_ad_attributed
        record.units_organic = units_organic

    return record


def _sales_query(session, company_id: int, start_date: date_type = None, end_date: date_type = None):
    query = session.query(SalesDaily).filter(SalesDaily.company_id == company_id)
    if start_date:
        query = query.filter(SalesDaily.date >= start_date)
    if end_date:
        query = query.filter(SalesDaily.date <= end_date)
    return query


def _group_by_date(records) -> "OrderedDict[date_type, List[SalesDaily]]":
    grouped = OrderedDict()
    for record in records:
        grouped.setdefault(record.date, []).append(record)
    return grouped


def recalculate_organic_sales(session, company_id: int, start_date: date_type = None, end_date: date_type = None) -> int:
    """
    Re-derive organic sales for every record in the date range.

    Per date: overall organic = max(0, sum(total) - sum(ad)), and each
    channel gets (channel total / sum of totals) * overall organic. A date
    whose totals sum to zero gets zero organic everywhere.

    Returns:
        Number of records updated
    """
    updated = 0
    with atomic(session):
        records = _sales_query(session, company_id, start_date, end_date).order_by(
            SalesDaily.date, SalesDaily.id
        ).all()

        for day, day_records in _group_by_date(records).items():
            total_all = sum((_money(r.total_sales) for r in day_records), ZERO)
            ad_all = sum((_money(r.ad_attributed_sales) for r in day_records), ZERO)
            organic_all = calculate_organic(total_all, ad_all)

            if has_attribution_anomaly(total_all, ad_all) and total_all > 0:
                logger.warning(f"Attribution anomaly on {day.isoformat()}: ad={ad_all:.2f} > total={total_all:.2f}")

            for record in day_records:
                proportion = _money(record.total_sales) / total_all if total_all > 0 else ZERO
                record.organic_sales = (organic_all * proportion).quantize(CENTS, rounding=ROUND_HALF_EVEN)
                updated += 1

    logger.info(f"Recalculated organic sales on {updated} record(s) for company {company_id}")
    return updated


def get_daily_sales_summary(
    session,
    company_id: int,
    start_date: date_type,
    end_date: date_type,
    asin: str = None
) -> List[dict]:
    """Per-date totals across channels, oldest first."""
    query = _sales_query(session, company_id, start_date, end_date)
    if asin:
        query = query.filter(SalesDaily.asin == asin)

    summary = []
    for day, day_records in _group_by_date(query.order_by(SalesDaily.date, SalesDaily.id).all()).items():
        total = sum((_money(r.total_sales) for r in day_records), ZERO)
        ad = sum((_money(r.ad_attributed_sales) for r in day_records), ZERO)
        organic = sum((_money(r.organic_sales) for r in day_records), ZERO)
        summary.append({
            'date': day.isoformat(),
            'total_sales': total,
            'ad_attributed_sales': ad,
            'organic_sales': organic,
            'organic_percentage': calculate_organic_percentage(total, organic),
            'ad_percentage': calculate_ad_percentage(total, ad),
            'units_total': sum(r.units_total or 0 for r in day_records),
            'anomaly': has_attribution_anomaly(total, ad),
        })
    return summary
