"""
时间工具：统一使用带时区的 UTC，订阅周期按日历加月/加年
"""
import calendar
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite 等存储会丢掉时区，读回来的无时区时间一律视为 UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_months(value: datetime, months: int) -> datetime:
    """日历加月；目标月份没有对应日期时取当月最后一天（1-31 +1 月 = 2-28/29）"""
    index = value.month - 1 + months
    year = value.year + index // 12
    month = index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


# 订阅周期 -> 月数
PERIOD_MONTHS = {
    "monthly": 1,
    "yearly": 12,
}


def advance_period(start: datetime, period: str) -> datetime:
    """订阅结束时间 = 开始时间 + 一个周期"""
    try:
        months = PERIOD_MONTHS[period]
    except KeyError:
        raise ValueError(f"未知订阅周期: {period}") from None
    return add_months(start, months)
