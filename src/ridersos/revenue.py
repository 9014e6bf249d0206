"""Revenue owed per rider from verified sessions and paid competition services."""

from __future__ import annotations

from datetime import date
from typing import Dict, Optional

from .models import BillingPeriod, RateEntry, RevenueReport, ServiceType
from .rates import RateCatalog
from .repository import Repository


class RevenueAggregator:
    """Price a trainer's verified sessions and paid competition services."""

    def __init__(self, repository: Repository, catalog: RateCatalog) -> None:
        self._repository = repository
        self._catalog = catalog

    def compute_revenue(self, trainer_email: str, period: BillingPeriod) -> RevenueReport:
        return self.compute_range(trainer_email, period.start, period.end)

    def compute_range(self, trainer_email: str, start: date, end: date) -> RevenueReport:
        rates: Dict[ServiceType, Optional[RateEntry]] = {}

        def price(service: ServiceType) -> Optional[RateEntry]:
            if service not in rates:
                rates[service] = self._catalog.lookup(trainer_email, service)
            return rates[service]

        report = RevenueReport(
            trainer_email=trainer_email,
            start=start,
            end=end,
            currency=self._catalog.resolved_currency(trainer_email),
        )

        for session in self._repository.sessions_between(trainer_email, start, end):
            if not session.verified:
                continue
            rate = price(session.session_type)
            if rate is None:
                # unpriced sessions are neither billed nor counted
                continue
            entry = report.rider(session.rider_email)
            entry.sessions_revenue += rate.amount
            entry.session_count += 1
            entry.sessions_by_type[session.session_type] = entry.sessions_by_type.get(session.session_type, 0) + 1

        for competition in self._repository.competitions_between(trainer_email, start, end):
            for rider in competition.riders:
                if not rider.is_paid:
                    continue
                for service in rider.services:
                    rate = price(service)
                    if rate is None:
                        continue
                    report.rider(rider.rider_email).competitions_revenue += rate.amount

        return report


__all__ = ["RevenueAggregator"]
