"""Platform and creator revenue splits.

Every aggregate is the sum of per-purchase splits, never a split of a sum,
so a creator's totals always equal the purchases they are built from. Only
completed purchases count.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Mapping
from zoneinfo import ZoneInfo

from ..config import settings
from ..repositories import accounts as accounts_repo
from ..repositories import courses as courses_repo
from ..repositories import purchases as purchases_repo

COMPLETED = "completed"
RECENT_LIMIT = 10


@dataclass(frozen=True, slots=True)
class RevenueSplit:
    total_amount: int
    platform_share: int
    creator_share: int
    sales_count: int = 0

    def __add__(self, other: "RevenueSplit") -> "RevenueSplit":
        return RevenueSplit(
            total_amount=self.total_amount + other.total_amount,
            platform_share=self.platform_share + other.platform_share,
            creator_share=self.creator_share + other.creator_share,
            sales_count=self.sales_count + other.sales_count,
        )

    def as_dict(self) -> dict[str, int]:
        return {
            "total_amount": self.total_amount,
            "platform_share": self.platform_share,
            "creator_share": self.creator_share,
            "sales_count": self.sales_count,
        }


ZERO = RevenueSplit(total_amount=0, platform_share=0, creator_share=0)


def _rate(rate: Decimal | str | None) -> Decimal:
    value = settings.platform_commission_rate if rate is None else Decimal(str(rate))
    if value < 0 or value > 1:
        raise ValueError("commission rate must be between 0 and 1")
    return value


def split_amount(amount: int, rate: Decimal | str | None = None) -> RevenueSplit:
    if amount < 0:
        raise ValueError("amount must not be negative")
    platform = int((Decimal(amount) * _rate(rate)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return RevenueSplit(
        total_amount=amount,
        platform_share=platform,
        creator_share=amount - platform,
        sales_count=1,
    )


def split_purchase(purchase: Mapping[str, Any], rate: Decimal | str | None = None) -> RevenueSplit:
    return split_amount(int(purchase.get("amount") or 0), rate)


def _completed(purchases: Iterable[Mapping[str, Any]]) -> list[Mapping[str, Any]]:
    return [row for row in purchases if (row.get("status") or COMPLETED) == COMPLETED]


def summarize(
    purchases: Iterable[Mapping[str, Any]], rate: Decimal | str | None = None
) -> RevenueSplit:
    total = ZERO
    for purchase in _completed(purchases):
        total = total + split_purchase(purchase, rate)
    return total


def _group(
    purchases: Iterable[Mapping[str, Any]],
    key,
    rate: Decimal | str | None,
) -> dict[Any, RevenueSplit]:
    grouped: dict[Any, RevenueSplit] = defaultdict(lambda: ZERO)
    for purchase in _completed(purchases):
        grouped[key(purchase)] = grouped[key(purchase)] + split_purchase(purchase, rate)
    return dict(grouped)


def by_course(
    purchases: Iterable[Mapping[str, Any]], rate: Decimal | str | None = None
) -> dict[str, RevenueSplit]:
    return _group(purchases, lambda row: str(row["course_id"]), rate)


def by_creator(
    purchases: Iterable[Mapping[str, Any]], rate: Decimal | str | None = None
) -> list[dict[str, Any]]:
    """Per-creator totals sorted by sales, largest first."""

    rows = _completed(purchases)
    splits = _group(rows, lambda row: str(row["creator_id"]), rate)
    courses: dict[str, set[str]] = defaultdict(set)
    for row in rows:
        courses[str(row["creator_id"])].add(str(row["course_id"]))
    result = [
        {
            "creator_id": creator_id,
            "courses_count": len(courses[creator_id]),
            **split.as_dict(),
        }
        for creator_id, split in splits.items()
    ]
    result.sort(key=lambda item: (-item["total_amount"], item["creator_id"]))
    return result


def _tz() -> ZoneInfo:
    return ZoneInfo(settings.reporting_timezone)


def _local_date(value: datetime) -> date:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(_tz()).date()


def by_day(
    purchases: Iterable[Mapping[str, Any]], rate: Decimal | str | None = None
) -> dict[date, RevenueSplit]:
    return _group(purchases, lambda row: _local_date(row["created_at"]), rate)


def by_month(
    purchases: Iterable[Mapping[str, Any]], rate: Decimal | str | None = None
) -> dict[str, RevenueSplit]:
    return _group(
        purchases,
        lambda row: _local_date(row["created_at"]).strftime("%Y-%m"),
        rate,
    )


def _month_keys(months: int, now: datetime) -> list[str]:
    current = _local_date(now)
    year, month = current.year, current.month
    keys: list[str] = []
    for _ in range(months):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


def monthly_series(
    purchases: Iterable[Mapping[str, Any]],
    months: int = 6,
    *,
    now: datetime | None = None,
    rate: Decimal | str | None = None,
) -> list[dict[str, Any]]:
    """The last ``months`` calendar months, oldest first, empty months included."""

    if months <= 0:
        return []
    now = now or datetime.now(timezone.utc)
    monthly = by_month(purchases, rate)
    return [
        {"month": key, **monthly.get(key, ZERO).as_dict()}
        for key in _month_keys(months, now)
    ]


def _recent(purchases: list[Mapping[str, Any]], limit: int = RECENT_LIMIT) -> list[dict[str, Any]]:
    ordered = sorted(purchases, key=lambda row: row["created_at"], reverse=True)
    return [
        {
            "purchase_id": str(row["id"]),
            "course_id": str(row["course_id"]),
            "course_title": row.get("course_title"),
            "amount": int(row.get("amount") or 0),
            "created_at": row["created_at"],
            **split_purchase(row).as_dict(),
        }
        for row in ordered[:limit]
    ]


async def creator_dashboard(
    creator_id: str, *, now: datetime | None = None
) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    rows = _completed(await purchases_repo.list_revenue_rows(creator_id=creator_id))
    courses = await courses_repo.list_creator_courses(creator_id)
    per_course = by_course(rows)
    course_stats = [
        {
            "course_id": str(course["id"]),
            "title": course.get("title"),
            "price": int(course.get("price") or 0),
            "is_published": bool(course.get("is_published")),
            **per_course.get(str(course["id"]), ZERO).as_dict(),
        }
        for course in courses
    ]
    return {
        "creator_id": creator_id,
        "commission_rate": str(settings.platform_commission_rate),
        "totals": summarize(rows).as_dict(),
        "unique_students": len({str(row["user_id"]) for row in rows}),
        "courses": course_stats,
        "monthly": monthly_series(rows, 6, now=now),
        "recent": _recent(rows),
    }


async def platform_dashboard(*, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    rows = _completed(await purchases_repo.list_revenue_rows())
    today = _local_date(now)
    month_key = today.strftime("%Y-%m")
    creators = by_creator(rows)
    names = await accounts_repo.get_display_names([item["creator_id"] for item in creators])
    for item in creators:
        item["display_name"] = names.get(item["creator_id"])
    return {
        "commission_rate": str(settings.platform_commission_rate),
        "totals": summarize(rows).as_dict(),
        "today": by_day(rows).get(today, ZERO).as_dict(),
        "this_month": by_month(rows).get(month_key, ZERO).as_dict(),
        "by_creator": creators,
        "monthly": monthly_series(rows, 6, now=now),
        "recent": _recent(rows),
    }


__all__ = [
    "RevenueSplit",
    "by_course",
    "by_creator",
    "by_day",
    "by_month",
    "creator_dashboard",
    "monthly_series",
    "platform_dashboard",
    "split_amount",
    "split_purchase",
    "summarize",
]
