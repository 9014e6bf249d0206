"""Per-trainer price list keyed by (trainer, service type)."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Iterable, Mapping, Optional, Sequence

from .exceptions import NotFoundError, ValidationError
from .models import DEFAULT_CURRENCY, Currency, RateEntry, ServiceType, parse_choice
from .money import AmountLike, require_positive, to_decimal
from .ops import StructuredLogger
from .repository import Repository


class RateCatalog:
    """Upsert and look up trainer rates.

    Rates carry no history: changing one affects every statement that has
    not been generated yet, including those covering past sessions.
    """

    def __init__(
        self,
        repository: Repository,
        *,
        logger: StructuredLogger | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._repository = repository
        self._logger = logger or StructuredLogger()
        self._clock = clock

    def upsert(
        self,
        trainer_email: str,
        service_type: ServiceType | str,
        currency: Currency | str,
        amount: AmountLike,
    ) -> RateEntry:
        service = parse_choice(ServiceType, service_type)
        code = parse_choice(Currency, currency)
        try:
            value = require_positive(to_decimal(amount), allow_zero=True)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid rate amount {amount!r}: {exc}") from exc

        moment = self._clock()
        existing = self._repository.get_rate(trainer_email, service)
        if existing is None:
            rate = RateEntry(
                trainer_email=trainer_email,
                service_type=service,
                currency=code,
                amount=value,
                created_at=moment,
                updated_at=moment,
            )
        else:
            rate = existing
            rate.currency = code
            rate.amount = value
            rate.updated_at = moment
        self._repository.save_rate(rate)
        self._logger.log(
            "rate_upserted",
            trainer=trainer_email,
            service_type=service.value,
            currency=code.value,
            amount=str(value),
        )
        return rate

    def bulk_upsert(self, trainer_email: str, entries: Iterable[Mapping[str, object]]) -> Sequence[RateEntry]:
        return tuple(
            self.upsert(
                trainer_email,
                entry["session_type"],  # type: ignore[arg-type]
                entry.get("currency", DEFAULT_CURRENCY),  # type: ignore[arg-type]
                entry["rate"],  # type: ignore[arg-type]
            )
            for entry in entries
        )

    def lookup(self, trainer_email: str, service_type: ServiceType | str) -> Optional[RateEntry]:
        return self._repository.get_rate(trainer_email, parse_choice(ServiceType, service_type))

    def delete(self, trainer_email: str, service_type: ServiceType | str) -> None:
        service = parse_choice(ServiceType, service_type)
        if not self._repository.delete_rate(trainer_email, service):
            raise NotFoundError(f"No '{service.value}' rate on file for {trainer_email}.")
        self._logger.log("rate_deleted", trainer=trainer_email, service_type=service.value)

    def rates_for(self, trainer_email: str) -> Sequence[RateEntry]:
        return self._repository.list_rates(trainer_email)

    def resolved_currency(self, trainer_email: str) -> Currency:
        """Currency of the trainer's first rate; mixed catalogs are not reconciled."""

        for rate in self.rates_for(trainer_email):
            if rate.currency:
                return rate.currency
        return DEFAULT_CURRENCY


__all__ = ["RateCatalog"]
