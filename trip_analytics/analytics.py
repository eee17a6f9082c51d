"""Driver analytics over drivers, trips, payments and ratings.

Two interchangeable strategies produce the same ``DriverAnalytics``:

* ``SingleQueryAnalyticsSource`` joins all four tables and aggregates in the
  database, then reads a bounded page of trip details.
* ``FanOutAnalyticsSource`` reads the driver and its trips, then payments and
  ratings concurrently by trip id, and merges them in memory.

Both order trip details by trip date descending (trip id descending on ties)
and bound the returned detail list by ``trip_detail_limit``. Totals always
cover every trip of the driver.
"""

import asyncio
import logging
import time
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from pydantic import ValidationError
from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from .errors import AnalyticsError, DriverNotFound, InvalidDriverId, QueryTimeout, StoreError
from .models import Driver, Payment, Rating, Trip
from .schemas import (
    DriverAggregateRecord,
    DriverAnalytics,
    DriverRecord,
    PaymentRecord,
    RatingRecord,
    TripDetail,
    TripDetailRecord,
    TripRecord,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class AnalyticsObserver(Protocol):
    def record(self, endpoint: str, response_time_ms: float, driver_id: Optional[int] = None,
               is_error: bool = False, is_cached: bool = False, error: Optional[str] = None) -> None:
        ...


class AnalyticsSource(Protocol):
    name: str

    async def get_driver_analytics(self, driver_id: Any, timeout: Optional[float] = None) -> DriverAnalytics:
        ...


def parse_driver_id(value: Any) -> int:
    """Parse a driver id, rejecting anything that is not a positive integer."""
    if isinstance(value, bool):
        raise InvalidDriverId(value)
    if isinstance(value, int):
        driver_id = value
    elif isinstance(value, str) and value.strip().isascii() and value.strip().isdigit():
        driver_id = int(value.strip())
    else:
        raise InvalidDriverId(value)
    if driver_id <= 0:
        raise InvalidDriverId(value)
    return driver_id


def total_earnings(details: Iterable[TripDetail]) -> Decimal:
    return sum((detail.amount for detail in details), ZERO)


def average_rating(details: Iterable[TripDetail]) -> Decimal:
    """Mean of present ratings only; trips without a rating are not counted."""
    rated = [detail.rating_value for detail in details if detail.rating_value > 0]
    if not rated:
        return ZERO
    return sum(rated, ZERO) / len(rated)


def merge_trip_details(trips: Sequence[TripRecord],
                       payments: Iterable[PaymentRecord],
                       ratings: Iterable[RatingRecord]) -> List[TripDetail]:
    """Hash-join payments and ratings onto trips, keeping trip order."""
    payment_map: Dict[int, Decimal] = {payment.trip_id: payment.amount for payment in payments}
    rating_map: Dict[int, Tuple[Decimal, str]] = {
        rating.trip_id: (rating.rating_value, rating.comment or "") for rating in ratings
    }

    details = []
    for trip in trips:
        rating_value, comment = rating_map.get(trip.id, (ZERO, ""))
        details.append(TripDetail(
            trip_id=trip.id,
            start_location=trip.start_location,
            end_location=trip.end_location,
            trip_date=trip.trip_date,
            amount=payment_map.get(trip.id, ZERO),
            rating_value=rating_value,
            comment=comment,
        ))
    return details


def _parse_rows(record_type, rows) -> list:
    try:
        return [record_type.model_validate(row) for row in rows]
    except ValidationError as e:
        raise StoreError(f"Unexpected {record_type.__name__} row: {e}") from e


class _StoreBackedSource:
    """Shared plumbing: id validation, per-read timeouts, error translation, observer calls."""

    name = "analytics"

    def __init__(self,
                 session_factory: async_sessionmaker,
                 timeout: float = 5.0,
                 trip_detail_limit: Optional[int] = 50,
                 observer: Optional[AnalyticsObserver] = None):
        self.session_factory = session_factory
        self.timeout = timeout
        self.trip_detail_limit = trip_detail_limit if trip_detail_limit else None
        self.observer = observer

    async def get_driver_analytics(self, driver_id: Any, timeout: Optional[float] = None) -> DriverAnalytics:
        driver_id = parse_driver_id(driver_id)
        deadline = timeout if timeout is not None else self.timeout
        started = time.perf_counter()
        try:
            result = await self._compute(driver_id, deadline)
        except AnalyticsError as e:
            self._notify(driver_id, started, error=e)
            raise
        self._notify(driver_id, started)
        return result

    async def _compute(self, driver_id: int, timeout: float) -> DriverAnalytics:
        raise NotImplementedError

    def _notify(self, driver_id: int, started: float, error: Optional[Exception] = None):
        if self.observer is None:
            return
        elapsed_ms = (time.perf_counter() - started) * 1000
        self.observer.record(
            self.name,
            elapsed_ms,
            driver_id=driver_id,
            is_error=error is not None,
            error=str(error) if error is not None else None,
        )

    async def _fetch(self, operation: str, statement, timeout: float) -> list:
        """Run one read on its own session, bounded by ``timeout``."""

        async def run():
            async with self.session_factory() as session:
                result = await session.execute(statement)
                return result.all()

        return await self._bounded(operation, run, timeout)

    async def _bounded(self, operation: str, read: Callable[[], Awaitable[list]], timeout: float) -> list:
        try:
            return await asyncio.wait_for(read(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise QueryTimeout(operation, timeout) from e
        except (SQLAlchemyError, OSError) as e:
            raise StoreError(f"{operation} failed: {e}") from e


class SingleQueryAnalyticsSource(_StoreBackedSource):
    """One grouped LEFT JOIN for the totals plus one bounded detail query."""

    name = "single-query"

    def aggregate_statement(self, driver_id: int):
        return (
            select(
                Driver.id,
                Driver.name,
                Driver.phone_number,
                Driver.onboarding_date,
                func.count(Trip.id).label("total_trips"),
                func.coalesce(func.sum(Payment.amount), 0).label("total_earnings"),
                func.coalesce(func.sum(case((Rating.rating_value > 0, Rating.rating_value))), 0).label("rated_total"),
                func.count(case((Rating.rating_value > 0, Rating.id))).label("rated_count"),
            )
            .select_from(Driver)
            .outerjoin(Trip, Trip.driver_id == Driver.id)
            .outerjoin(Payment, Payment.trip_id == Trip.id)
            .outerjoin(Rating, Rating.trip_id == Trip.id)
            .where(Driver.id == driver_id)
            .group_by(Driver.id, Driver.name, Driver.phone_number, Driver.onboarding_date)
        )

    def detail_statement(self, driver_id: int):
        statement = (
            select(
                Trip.id,
                Trip.start_location,
                Trip.end_location,
                Trip.trip_date,
                func.coalesce(Payment.amount, 0).label("amount"),
                func.coalesce(Rating.rating_value, 0).label("rating_value"),
                func.coalesce(Rating.comment, "").label("comment"),
            )
            .outerjoin(Payment, Payment.trip_id == Trip.id)
            .outerjoin(Rating, Rating.trip_id == Trip.id)
            .where(Trip.driver_id == driver_id)
            .order_by(Trip.trip_date.desc(), Trip.id.desc())
        )
        if self.trip_detail_limit:
            statement = statement.limit(self.trip_detail_limit)
        return statement

    async def _compute(self, driver_id: int, timeout: float) -> DriverAnalytics:
        rows = await self._fetch("driver aggregate", self.aggregate_statement(driver_id), timeout)
        if not rows:
            raise DriverNotFound(driver_id)
        aggregate = _parse_rows(DriverAggregateRecord, rows)[0]

        detail_rows = await self._fetch("trip details", self.detail_statement(driver_id), timeout)
        details = [
            TripDetail(
                trip_id=row.id,
                start_location=row.start_location,
                end_location=row.end_location,
                trip_date=row.trip_date,
                amount=row.amount,
                rating_value=row.rating_value,
                comment=row.comment,
            )
            for row in _parse_rows(TripDetailRecord, detail_rows)
        ]

        # Totals and the rating average cover every trip, not just the detail page.
        rating = aggregate.rated_total / aggregate.rated_count if aggregate.rated_count else ZERO

        return DriverAnalytics(
            driver_id=aggregate.id,
            driver_name=aggregate.name,
            phone_number=aggregate.phone_number,
            onboarding_date=aggregate.onboarding_date,
            total_trips=aggregate.total_trips,
            total_earnings=aggregate.total_earnings,
            average_rating=rating,
            trips=details,
        )


class FanOutAnalyticsSource(_StoreBackedSource):
    """Driver and trips first, then payments and ratings in parallel, merged in memory."""

    name = "fan-out"

    async def fetch_driver(self, driver_id: int, timeout: float) -> Optional[DriverRecord]:
        statement = select(
            Driver.id, Driver.name, Driver.phone_number, Driver.onboarding_date
        ).where(Driver.id == driver_id)
        rows = await self._fetch("driver", statement, timeout)
        records = _parse_rows(DriverRecord, rows)
        return records[0] if records else None

    async def fetch_trips(self, driver_id: int, timeout: float) -> List[TripRecord]:
        statement = (
            select(Trip.id, Trip.start_location, Trip.end_location, Trip.trip_date)
            .where(Trip.driver_id == driver_id)
            .order_by(Trip.trip_date.desc(), Trip.id.desc())
        )
        return _parse_rows(TripRecord, await self._fetch("trips", statement, timeout))

    async def fetch_payments(self, trip_ids: List[int], timeout: float) -> List[PaymentRecord]:
        statement = select(Payment.trip_id, Payment.amount).where(Payment.trip_id.in_(trip_ids))
        return _parse_rows(PaymentRecord, await self._fetch("payments", statement, timeout))

    async def fetch_ratings(self, trip_ids: List[int], timeout: float) -> List[RatingRecord]:
        statement = select(Rating.trip_id, Rating.rating_value, Rating.comment).where(Rating.trip_id.in_(trip_ids))
        return _parse_rows(RatingRecord, await self._fetch("ratings", statement, timeout))

    async def _compute(self, driver_id: int, timeout: float) -> DriverAnalytics:
        driver = await self.fetch_driver(driver_id, timeout)
        if driver is None:
            raise DriverNotFound(driver_id)

        trips = await self.fetch_trips(driver_id, timeout)
        if not trips:
            return self._build(driver, [], [])

        trip_ids = [trip.id for trip in trips]
        lookups = [
            asyncio.ensure_future(self.fetch_payments(trip_ids, timeout)),
            asyncio.ensure_future(self.fetch_ratings(trip_ids, timeout)),
        ]
        try:
            payments, ratings = await asyncio.gather(*lookups)
        except BaseException:
            # All or nothing: a failed lookup cancels its sibling.
            pending = [lookup for lookup in lookups if not lookup.done()]
            if pending:
                logger.debug("Cancelling %d pending lookup(s) for driver %s", len(pending), driver_id)
            for lookup in pending:
                lookup.cancel()
            await asyncio.gather(*lookups, return_exceptions=True)
            raise
        return self._build(driver, trips, merge_trip_details(trips, payments, ratings))

    def _build(self, driver: DriverRecord, trips: List[TripRecord], details: List[TripDetail]) -> DriverAnalytics:
        return DriverAnalytics(
            driver_id=driver.id,
            driver_name=driver.name,
            phone_number=driver.phone_number,
            onboarding_date=driver.onboarding_date,
            total_trips=len(trips),
            total_earnings=total_earnings(details),
            average_rating=average_rating(details),
            trips=details[:self.trip_detail_limit] if self.trip_detail_limit else details,
        )
