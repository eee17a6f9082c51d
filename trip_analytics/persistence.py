import os
import random
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation, ROUND_FLOOR
from typing import Dict, List, Optional
import pandas as pd
from sqlalchemy import func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession
from .models import Driver, Trip, Payment, Rating

CITIES = [
    "Dhaka", "Chittagong", "Sylhet", "Rajshahi", "Khulna", "Barisal", "Rangpur",
    "Mymensingh", "Comilla", "Narayanganj", "Gazipur", "Tangail", "Bogra", "Kushtia",
    "Jessore", "Dinajpur", "Faridpur", "Pabna", "Noakhali", "Feni",
]

DRIVER_NAMES = [
    "Abdul Rahman", "Mohammad Ali", "Ahmed Khan", "Fatima Begum", "Hassan Ahmed",
    "Ayesha Khan", "Imran Hossain", "Nusrat Jahan", "Kamal Uddin", "Sabina Yasmin",
    "Rashid Ahmed", "Nasreen Akter", "Shahid Islam", "Rehana Begum", "Mizanur Rahman",
    "Tahmina Khatun", "Azizul Haque", "Salma Khatun", "Jahangir Alam", "Rashida Begum",
]

PHONE_PREFIXES = ["+88017", "+88018", "+88019", "+88015", "+88016", "+88011", "+88013"]

COMMENTS = {
    Decimal("5.0"): ["Excellent service, very professional driver", "Outstanding experience, highly recommended",
                     "Perfect trip, driver was very courteous"],
    Decimal("4.5"): ["Very good service, driver was professional", "Great experience, would recommend",
                     "Nice journey, driver was friendly"],
    Decimal("4.0"): ["Good service, driver was okay", "Decent trip, driver was professional",
                     "Good journey, driver was helpful"],
    Decimal("3.5"): ["Okay service, driver was average", "Decent trip, could be better",
                     "Fair experience, driver was okay"],
    Decimal("3.0"): ["Average service, driver was okay", "Basic trip, nothing special",
                     "Okay experience overall"],
}

SAMPLE_DRIVERS = [
    {"id": 1, "name": "John Doe", "phone_number": "+1234567890", "onboarding_date": date(2023, 1, 15)},
    {"id": 2, "name": "Jane Smith", "phone_number": "+1234567891", "onboarding_date": date(2023, 2, 20)},
]

SAMPLE_TRIPS = [
    {"id": 1, "driver_id": 1, "start_location": "New York", "end_location": "Boston", "trip_date": date(2024, 1, 15)},
    {"id": 2, "driver_id": 1, "start_location": "Boston", "end_location": "Philadelphia", "trip_date": date(2024, 1, 20)},
    {"id": 3, "driver_id": 1, "start_location": "Philadelphia", "end_location": "Washington DC", "trip_date": date(2024, 1, 25)},
    {"id": 4, "driver_id": 2, "start_location": "Los Angeles", "end_location": "San Francisco", "trip_date": date(2024, 1, 18)},
    {"id": 5, "driver_id": 2, "start_location": "San Francisco", "end_location": "Seattle", "trip_date": date(2024, 1, 22)},
]

SAMPLE_PAYMENTS = [
    {"id": 1, "trip_id": 1, "amount": Decimal("150.00"), "payment_date": date(2024, 1, 16)},
    {"id": 2, "trip_id": 2, "amount": Decimal("200.00"), "payment_date": date(2024, 1, 21)},
    {"id": 3, "trip_id": 3, "amount": Decimal("180.00"), "payment_date": date(2024, 1, 26)},
    {"id": 4, "trip_id": 4, "amount": Decimal("120.00"), "payment_date": date(2024, 1, 19)},
    {"id": 5, "trip_id": 5, "amount": Decimal("250.00"), "payment_date": date(2024, 1, 23)},
]

SAMPLE_RATINGS = [
    {"id": 1, "trip_id": 1, "rating_value": Decimal("4.5"), "comment": "Great service!"},
    {"id": 2, "trip_id": 2, "rating_value": Decimal("5.0"), "comment": "Excellent driver"},
    {"id": 3, "trip_id": 3, "rating_value": Decimal("4.0"), "comment": "Good trip"},
    {"id": 4, "trip_id": 4, "rating_value": Decimal("4.8"), "comment": "Very professional"},
    {"id": 5, "trip_id": 5, "rating_value": Decimal("4.2"), "comment": "Safe driving"},
]

async def _insert_missing(db: AsyncSession, model, rows: List[Dict]) -> int:
    """Insert rows whose primary key is not already present."""
    ids = [row["id"] for row in rows]
    existing = set((await db.execute(select(model.id).where(model.id.in_(ids)))).scalars())
    missing = [row for row in rows if row["id"] not in existing]
    if missing:
        await db.execute(insert(model), missing)
    return len(missing)

async def create_sample_data(db: AsyncSession) -> Dict[str, int]:
    """Insert the fixed two-driver sample data set. Safe to call repeatedly."""
    created = {
        "drivers": await _insert_missing(db, Driver, SAMPLE_DRIVERS),
        "trips": await _insert_missing(db, Trip, SAMPLE_TRIPS),
        "payments": await _insert_missing(db, Payment, SAMPLE_PAYMENTS),
        "ratings": await _insert_missing(db, Rating, SAMPLE_RATINGS),
    }
    await db.commit()
    return created

async def _next_id(db: AsyncSession, model) -> int:
    return (await db.scalar(select(func.max(model.id))) or 0) + 1

def _random_date(rng: random.Random, days_back: int = 180) -> date:
    return date.today() - timedelta(days=rng.randint(0, days_back))

def _random_phone(rng: random.Random) -> str:
    return f"{rng.choice(PHONE_PREFIXES)}{rng.randint(10000000, 99999999)}"

def _comment_for(rng: random.Random, rating: Decimal) -> str:
    bucket = (rating * 2).to_integral_value(rounding=ROUND_FLOOR) / 2
    return rng.choice(COMMENTS.get(bucket, COMMENTS[Decimal("3.0")]))

async def generate_demo_data(
    db: AsyncSession,
    drivers: int = 20,
    trips: int = 100,
    seed: Optional[int] = None
) -> Dict[str, int]:
    """Append random drivers with trips, payments and ratings."""
    rng = random.Random(seed)
    # Explicit ids throughout; sample rows are inserted with fixed ids too.
    next_driver = await _next_id(db, Driver)
    next_trip = await _next_id(db, Trip)
    next_payment = await _next_id(db, Payment)
    next_rating = await _next_id(db, Rating)

    driver_rows = [
        {
            "id": next_driver + i,
            "name": DRIVER_NAMES[i % len(DRIVER_NAMES)],
            "phone_number": _random_phone(rng),
            "onboarding_date": _random_date(rng),
        }
        for i in range(drivers)
    ]

    trip_rows, payment_rows, rating_rows = [], [], []
    for i in range(trips if driver_rows else 0):
        trip_id = next_trip + i
        start, end = rng.sample(CITIES, 2)
        trip_date = _random_date(rng)
        trip_rows.append({
            "id": trip_id,
            "driver_id": rng.choice(driver_rows)["id"],
            "start_location": start,
            "end_location": end,
            "trip_date": trip_date,
        })
        payment_rows.append({
            "id": next_payment + i,
            "trip_id": trip_id,
            "amount": Decimal(rng.randint(500, 5000)).quantize(Decimal("0.01")),
            "payment_date": trip_date + timedelta(days=1),
        })
        rating = Decimal(rng.randint(30, 50)) / 10
        rating_rows.append({
            "id": next_rating + i,
            "trip_id": trip_id,
            "rating_value": rating,
            "comment": _comment_for(rng, rating),
        })

    for model, rows in ((Driver, driver_rows), (Trip, trip_rows), (Payment, payment_rows), (Rating, rating_rows)):
        if rows:
            await db.execute(insert(model), rows)
    await db.commit()

    return {"drivers": len(driver_rows), "trips": len(trip_rows),
            "payments": len(payment_rows), "ratings": len(rating_rows)}

def _to_decimal(path: str, column: str, index: int, value) -> Decimal:
    try:
        return Decimal(value.strip())
    except (AttributeError, InvalidOperation) as e:
        # Line numbers count the header row
        raise ValueError(f"{path} line {index + 2}: invalid {column} {value!r}") from e

def _read_frame(path: str, date_columns=(), decimal_columns=()) -> List[Dict]:
    df = pd.read_csv(path, dtype={column: str for column in decimal_columns})
    for column in date_columns:
        if column in df.columns:
            df[column] = pd.to_datetime(df[column]).dt.date
    for column in decimal_columns:
        df[column] = [_to_decimal(path, column, index, value) for index, value in enumerate(df[column])]
    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict("records")

async def load_csv_data(db: AsyncSession, data_dir: str) -> Dict[str, int]:
    """Bulk load drivers.csv, trips.csv, payments.csv and ratings.csv from ``data_dir``.

    Missing payment or rating files are allowed; drivers and trips are required.
    """
    sources = [
        (Driver, "drivers.csv", ("onboarding_date",), ()),
        (Trip, "trips.csv", ("trip_date",), ()),
        (Payment, "payments.csv", ("payment_date",), ("amount",)),
        (Rating, "ratings.csv", (), ("rating_value",)),
    ]

    loaded = {}
    for model, filename, date_columns, decimal_columns in sources:
        path = os.path.join(data_dir, filename)
        if not os.path.exists(path):
            if model in (Driver, Trip):
                raise FileNotFoundError(path)
            loaded[model.__tablename__] = 0
            continue
        rows = _read_frame(path, date_columns, decimal_columns)
        if rows:
            await db.execute(insert(model), rows)
        loaded[model.__tablename__] = len(rows)

    await db.commit()
    return loaded
