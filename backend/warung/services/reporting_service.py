# Overview: Dashboard figures (profit, volume, receivables, charts) for a business-day range.

from __future__ import annotations

from collections import OrderedDict
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import desc, func

from ..extensions import db
from ..models import Debt, PaymentStatus, Product, Transaction, TransactionItem, TransactionType
from ..models._money import money_str
from ..validation import ValidationError
from warung.time_utils import business_day_bounds, to_business_time, utcnow


RANGE_OPTIONS = (
    "today",
    "this-month",
    "last-month",
    "last-2-months",
    "last-3-months",
    "this-year",
)
TOP_PRODUCTS = 8
RECENT_LIMIT = 10


def _month_start(day: date, months_back: int = 0) -> date:
    year, month0 = divmod(day.year * 12 + day.month - 1 - months_back, 12)
    return date(year, month0 + 1, 1)


def _month_end(day: date) -> date:
    return _month_start(day, -1) - timedelta(days=1)


def resolve_range(option: str | None, today: date) -> tuple[date, date]:
    """Inclusive (first_day, last_day) in business-local dates."""
    option = option or "this-month"
    if option == "today":
        return today, today
    if option == "this-month":
        return _month_start(today), _month_end(today)
    if option == "last-month":
        start = _month_start(today, 1)
        return start, _month_end(start)
    if option == "last-2-months":
        return _month_start(today, 2), _month_end(today)
    if option == "last-3-months":
        return _month_start(today, 3), _month_end(today)
    if option == "this-year":
        return date(today.year, 1, 1), today
    raise ValidationError(f"range must be one of: {', '.join(RANGE_OPTIONS)}")


def _parse_day(value: str, field: str) -> date:
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        raise ValidationError(f"{field} must be a date (YYYY-MM-DD)")


def _sale_filters(start_utc, end_utc):
    return (
        Transaction.type == TransactionType.SALE.value,
        Transaction.transaction_date >= start_utc,
        Transaction.transaction_date < end_utc,
    )


def _profit(start_utc, end_utc) -> Decimal:
    value = (
        db.session.query(
            func.coalesce(
                func.sum((TransactionItem.price - Product.purchase_price) * TransactionItem.quantity),
                0,
            )
        )
        .join(Transaction, TransactionItem.transaction_id == Transaction.id)
        .join(Product, TransactionItem.product_id == Product.id)
        .filter(*_sale_filters(start_utc, end_utc))
        .scalar()
    )
    return Decimal(str(value))


def dashboard_stats(
    *,
    range_option: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
) -> dict:
    """
    Dashboard payload for a business-day range.

    Explicit start_date/end_date (inclusive, YYYY-MM-DD) win over `range`;
    the default is the current month.
    """
    today = to_business_time(utcnow()).date()

    if start_date or end_date:
        first = _parse_day(start_date, "start_date") if start_date else _month_start(today)
        last = _parse_day(end_date, "end_date") if end_date else today
        if last < first:
            raise ValidationError("end_date must not be before start_date")
    else:
        first, last = resolve_range(range_option, today)

    start_utc = business_day_bounds(first)[0]
    end_utc = business_day_bounds(last)[1]
    today_start, today_end = business_day_bounds(today)

    products_sold = (
        db.session.query(func.coalesce(func.sum(TransactionItem.quantity), 0))
        .join(Transaction, TransactionItem.transaction_id == Transaction.id)
        .filter(*_sale_filters(start_utc, end_utc))
        .scalar()
    )
    transaction_count = (
        db.session.query(func.count(Transaction.id))
        .filter(*_sale_filters(start_utc, end_utc))
        .scalar()
    )
    total_debt = (
        db.session.query(func.coalesce(func.sum(Debt.remaining_debt), 0))
        .filter(Debt.status != PaymentStatus.PAID.value)
        .scalar()
    )

    # Per-day totals are bucketed in Python so day boundaries follow the
    # business timezone on every database backend.
    chart: OrderedDict[str, Decimal] = OrderedDict()
    day = first
    while day <= last:
        chart[day.isoformat()] = Decimal("0")
        day += timedelta(days=1)
    sales = (
        db.session.query(Transaction.transaction_date, Transaction.total_amount)
        .filter(*_sale_filters(start_utc, end_utc))
        .all()
    )
    for occurred_at, amount in sales:
        key = to_business_time(occurred_at).date().isoformat()
        if key in chart:
            chart[key] += Decimal(str(amount))

    top_products = (
        db.session.query(
            Product.id,
            Product.name,
            func.sum(TransactionItem.quantity).label("quantity"),
        )
        .join(TransactionItem, TransactionItem.product_id == Product.id)
        .join(Transaction, TransactionItem.transaction_id == Transaction.id)
        .filter(*_sale_filters(start_utc, end_utc))
        .group_by(Product.id, Product.name)
        .order_by(desc("quantity"), Product.name.asc())
        .limit(TOP_PRODUCTS)
        .all()
    )

    recent = (
        db.session.query(Transaction)
        .filter(Transaction.type == TransactionType.SALE.value)
        .order_by(desc(Transaction.transaction_date), desc(Transaction.id))
        .limit(RECENT_LIMIT)
        .all()
    )

    return {
        "start_date": first.isoformat(),
        "end_date": last.isoformat(),
        "today_profit": money_str(_profit(today_start, today_end)),
        "range_profit": money_str(_profit(start_utc, end_utc)),
        "total_products_sold": int(products_sold or 0),
        "total_transactions": int(transaction_count or 0),
        "total_debt": money_str(Decimal(str(total_debt))),
        "sales_chart": [{"date": k, "total": money_str(v)} for k, v in chart.items()],
        "product_sales_chart": [
            {"product_id": row.id, "name": row.name, "quantity": int(row.quantity or 0)}
            for row in top_products
        ],
        "recent_transactions": [t.to_dict(include_items=False) for t in recent],
    }
