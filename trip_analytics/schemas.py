from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Annotated, Dict, List, Optional
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, PlainSerializer

CENTS = Decimal("0.01")

def quantize_cents(value: Decimal) -> Decimal:
    """Round to two fraction digits, half up."""
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)

# Decimals stay exact in Python and serialize as JSON numbers.
Money = Annotated[
    Decimal,
    AfterValidator(quantize_cents),
    PlainSerializer(float, return_type=float, when_used="json"),
]

# Store-boundary records. Required columns must be present; a NULL fails validation.

class _Record(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

class DriverRecord(_Record):
    id: int
    name: str
    phone_number: str
    onboarding_date: date

class TripRecord(_Record):
    id: int
    start_location: str
    end_location: str
    trip_date: date

class PaymentRecord(_Record):
    trip_id: int
    amount: Money = Field(ge=0)

class RatingRecord(_Record):
    trip_id: int
    rating_value: Money
    comment: Optional[str] = None

class DriverAggregateRecord(_Record):
    id: int
    name: str
    phone_number: str
    onboarding_date: date
    total_trips: int
    total_earnings: Money
    rated_total: Decimal = Decimal("0")
    rated_count: int = 0

class TripDetailRecord(_Record):
    id: int
    start_location: str
    end_location: str
    trip_date: date
    amount: Money
    rating_value: Money
    comment: str

# Analytics results

class TripDetail(BaseModel):
    trip_id: int
    start_location: str
    end_location: str
    trip_date: date
    amount: Money = Decimal("0.00")
    rating_value: Money = Decimal("0.00")
    comment: str = ""

class DriverAnalytics(BaseModel):
    driver_id: int
    driver_name: str
    phone_number: str
    onboarding_date: date
    total_trips: int = 0
    total_earnings: Money = Decimal("0.00")
    average_rating: Money = Decimal("0.00")
    trips: List[TripDetail] = Field(default_factory=list)

# API responses

class ParityReport(BaseModel):
    total_trips_match: bool
    total_earnings_match: bool
    average_rating_match: bool
    trip_ids_match: bool

    @property
    def consistent(self) -> bool:
        return all((self.total_trips_match, self.total_earnings_match,
                    self.average_rating_match, self.trip_ids_match))

class StrategyComparisonResponse(BaseModel):
    single_query: DriverAnalytics
    fan_out: DriverAnalytics
    parity: ParityReport
    consistent: bool

class CacheClearResponse(BaseModel):
    message: str
    deleted: int

class BenchmarkResult(BaseModel):
    endpoint: str
    total_requests: int
    successful_requests: int
    failed_requests: int
    average_response_time: float
    min_response_time: float
    max_response_time: float
    p95_response_time: float
    p99_response_time: float
    requests_per_second: float
    total_time: float

class BenchmarkComparison(BaseModel):
    driver_id: int
    single_query: BenchmarkResult
    fan_out: BenchmarkResult
    response_time_improvement: Optional[float] = None
    speedup: Optional[float] = None

class HealthResponse(BaseModel):
    status: str
    database: str
    cache: str
    details: Dict[str, str] = Field(default_factory=dict)
