"""Gross pay from approved time entries with weekly overtime."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from datetime import date, timedelta
from decimal import Decimal

from paycheck_engine.calculators.money import ZERO, round_to_cents
from paycheck_engine.calculators.types import GrossPayResult, TimeRecord

DEFAULT_OVERTIME_THRESHOLD = Decimal("40")
DEFAULT_OVERTIME_MULTIPLIER = Decimal("1.5")


class GrossPayCalculator:
    """Turns a pay period's approved hours into regular/overtime pay.

    Overtime is determined per calendar week (Sunday start), using only the
    entries handed in. A week that straddles two pay periods is therefore
    split: each period sees only its own days of that week, so a 50-hour week
    spread 25/25 across two periods yields no overtime in either. This is
    inherited behavior and intentionally kept.
    """

    def __init__(
        self,
        overtime_threshold: Decimal = DEFAULT_OVERTIME_THRESHOLD,
        overtime_multiplier: Decimal = DEFAULT_OVERTIME_MULTIPLIER,
    ):
        if overtime_threshold < 0:
            raise ValueError("Overtime threshold must be non-negative")
        self.overtime_threshold = overtime_threshold
        self.overtime_multiplier = overtime_multiplier

    @staticmethod
    def week_start(work_date: date) -> date:
        """Sunday on or before work_date."""
        # date.weekday(): Monday=0 ... Sunday=6
        return work_date - timedelta(days=(work_date.weekday() + 1) % 7)

    def overtime_rate_for(self, regular_rate: Decimal, overtime_rate: Decimal | None) -> Decimal:
        if overtime_rate is not None:
            return overtime_rate
        return regular_rate * self.overtime_multiplier

    def split_hours(self, time_entries: Iterable[TimeRecord]) -> tuple[Decimal, Decimal, Decimal]:
        """Return (total, regular, overtime) hours for approved entries."""
        weekly_hours: dict[date, Decimal] = defaultdict(lambda: ZERO)
        total = ZERO

        for entry in time_entries:
            if entry.status != "approved":
                continue
            weekly_hours[self.week_start(entry.work_date)] += entry.hours_worked
            total += entry.hours_worked

        regular = ZERO
        overtime = ZERO
        for week_hours in weekly_hours.values():
            regular += min(week_hours, self.overtime_threshold)
            overtime += max(ZERO, week_hours - self.overtime_threshold)

        return total, regular, overtime

    def calculate(
        self,
        time_entries: Iterable[TimeRecord],
        regular_rate: Decimal,
        overtime_rate: Decimal | None = None,
    ) -> GrossPayResult:
        """Calculate hours and pay for one employee's pay period."""
        effective_ot_rate = self.overtime_rate_for(regular_rate, overtime_rate)
        total, regular, overtime = self.split_hours(time_entries)

        regular_pay = round_to_cents(regular * regular_rate)
        overtime_pay = round_to_cents(overtime * effective_ot_rate)

        return GrossPayResult(
            hours_worked=total,
            regular_hours=regular,
            overtime_hours=overtime,
            regular_rate=regular_rate,
            overtime_rate=effective_ot_rate,
            regular_pay=regular_pay,
            overtime_pay=overtime_pay,
            gross_pay=regular_pay + overtime_pay,
        )
