from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Callable

from salesdesk.domain.models import BreakdownRow, DailyTotal, DashboardStats


class ReportingService:
    """Dashboard aggregates, read straight from the database on every call.

    Cancelled sales never count towards volumes or breakdowns. Revenue only
    counts validated sales; pending sales are not confirmed income yet.
    """

    def __init__(self, repo, clock: Callable[[], datetime] = datetime.now, window_days: int = 7):
        self.repo = repo
        self.clock = clock
        self.window_days = window_days

    def total_sales(self) -> int:
        counts = self.repo.status_counts()
        return int(counts.get("pending", 0)) + int(counts.get("validated", 0))

    def total_revenue(self) -> int:
        return self.repo.validated_revenue()

    def status_counts(self) -> dict[str, int]:
        counts = self.repo.status_counts()
        return {s: int(counts.get(s, 0)) for s in ("pending", "validated", "cancelled")}

    def by_day(self) -> list[DailyTotal]:
        """Daily volume and revenue over the last `window_days` calendar days.

        Today counts as the first day, so with the default of seven a sale
        from exactly seven days ago falls outside the window. Newest day first;
        days without sales are omitted.
        """
        today: date = self.clock().date()
        start = today - timedelta(days=self.window_days - 1)
        end = today + timedelta(days=1)
        return self.repo.daily_totals_between(start.isoformat(), end.isoformat())

    def by_product(self) -> list[BreakdownRow]:
        return self.repo.totals_by_product()

    def by_agent(self) -> list[BreakdownRow]:
        return self.repo.totals_by_agent()

    def by_grade(self) -> list[BreakdownRow]:
        return self.repo.totals_by_grade()

    def get_dashboard_stats(self) -> DashboardStats:
        counts = self.status_counts()
        return DashboardStats(
            total_sales=counts["pending"] + counts["validated"],
            total_revenue=self.total_revenue(),
            pending_count=counts["pending"],
            validated_count=counts["validated"],
            cancelled_count=counts["cancelled"],
            by_day=self.by_day(),
            by_product=self.by_product(),
            by_agent=self.by_agent(),
            by_grade=self.by_grade(),
        )
