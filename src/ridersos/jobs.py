"""Server-side trigger for monthly statement generation."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable, List

from .models import GenerationResult
from .ops import StructuredLogger
from .repository import Repository
from .statements import StatementGenerator


class BillingJob:
    """Run statement generation for every trainer during the billing window.

    Each tick is safe to repeat: generation is idempotent per
    (trainer, rider, period), so a job firing every hour during the first days
    of the month bills each rider once.
    """

    def __init__(
        self,
        repository: Repository,
        generator: StatementGenerator,
        *,
        logger: StructuredLogger | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._repository = repository
        self._generator = generator
        self._logger = logger or StructuredLogger()
        self._clock = clock

    def tick(self, now: datetime | None = None) -> List[GenerationResult]:
        moment = now or self._clock()
        if not self._generator.in_billing_window(moment):
            return []
        results: List[GenerationResult] = []
        for trainer in self._repository.trainers():
            try:
                results.append(self._generator.generate_previous_period(trainer.email, now=moment))
            except Exception as exc:  # one trainer must not block the others
                self._logger.log("billing_job_failed", level="error", trainer=trainer.email, error=repr(exc))
        self._logger.log("billing_job_tick", trainers=len(results), at=moment.isoformat())
        return results

    async def run_forever(self, interval_seconds: float) -> None:
        while True:
            try:
                await asyncio.to_thread(self.tick)
            except Exception as exc:
                self._logger.log("billing_job_failed", level="error", error=repr(exc))
            await asyncio.sleep(interval_seconds)


__all__ = ["BillingJob"]
