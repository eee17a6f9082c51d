import os
import tempfile

# Configure before trip_analytics.config is imported
_TEST_DIR = tempfile.mkdtemp(prefix="trip_analytics_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TEST_DIR, 'api.db')}"
os.environ["CACHE_BACKEND"] = "memory"
os.environ["LOG_FILE"] = ""

from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import insert

from trip_analytics.db import create_engine, create_session_factory, init_db
from trip_analytics.models import Driver, Payment, Rating, Trip

DRIVERS = [
    {"id": 1, "name": "Abdul Rahman", "phone_number": "+8801712345678", "onboarding_date": date(2023, 6, 1)},
    {"id": 2, "name": "Fatima Begum", "phone_number": "+8801812345678", "onboarding_date": date(2023, 7, 1)},
    {"id": 3, "name": "Imran Hossain", "phone_number": "+8801912345678", "onboarding_date": date(2023, 8, 1)},
    {"id": 4, "name": "Nusrat Jahan", "phone_number": "+8801512345678", "onboarding_date": date(2023, 9, 1)},
]

# Driver 1: one paid+rated trip, one paid unrated trip, one rated unpaid trip.
# Driver 2: no trips. Driver 3: no usable ratings. Driver 4: many small payments.
TRIPS = [
    {"id": 1, "driver_id": 1, "start_location": "Dhaka", "end_location": "Chittagong", "trip_date": date(2024, 1, 15)},
    {"id": 2, "driver_id": 1, "start_location": "Chittagong", "end_location": "Sylhet", "trip_date": date(2024, 1, 20)},
    {"id": 3, "driver_id": 1, "start_location": "Sylhet", "end_location": "Dhaka", "trip_date": date(2024, 1, 25)},
    {"id": 4, "driver_id": 3, "start_location": "Khulna", "end_location": "Barisal", "trip_date": date(2024, 2, 1)},
    {"id": 5, "driver_id": 3, "start_location": "Barisal", "end_location": "Khulna", "trip_date": date(2024, 2, 2)},
    {"id": 6, "driver_id": 3, "start_location": "Khulna", "end_location": "Jessore", "trip_date": date(2024, 2, 3)},
] + [
    {"id": 100 + i, "driver_id": 4, "start_location": "Gazipur", "end_location": "Tangail",
     "trip_date": date(2024, 3, 1 + i % 28)}
    for i in range(30)
]

PAYMENTS = [
    {"id": 1, "trip_id": 1, "amount": Decimal("150.00"), "payment_date": date(2024, 1, 16)},
    {"id": 2, "trip_id": 2, "amount": Decimal("200.00"), "payment_date": date(2024, 1, 21)},
    {"id": 3, "trip_id": 4, "amount": Decimal("100.00"), "payment_date": date(2024, 2, 1)},
    {"id": 4, "trip_id": 5, "amount": Decimal("50.25"), "payment_date": date(2024, 2, 2)},
] + [
    {"id": 100 + i, "trip_id": 100 + i, "amount": Decimal("0.10"), "payment_date": None}
    for i in range(30)
]

RATINGS = [
    {"id": 1, "trip_id": 1, "rating_value": Decimal("4.5"), "comment": "Great service!"},
    {"id": 2, "trip_id": 3, "rating_value": Decimal("4.0"), "comment": None},
    {"id": 3, "trip_id": 6, "rating_value": Decimal("0"), "comment": ""},
] + [
    {"id": 100 + i, "trip_id": 100 + i, "rating_value": Decimal("4.0") + Decimal(i % 3) / 2, "comment": "ok"}
    for i in range(0, 30, 2)
]


async def seed_rows(session_factory):
    async with session_factory() as db:
        for model, rows in ((Driver, DRIVERS), (Trip, TRIPS), (Payment, PAYMENTS), (Rating, RATINGS)):
            await db.execute(insert(model), rows)
        await db.commit()


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh SQLite database per test."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'analytics.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    factory = create_session_factory(engine)
    await seed_rows(factory)
    return factory
