from sqlalchemy import Column, Integer, String, Numeric, Date, Text, ForeignKey
from sqlalchemy.orm import declarative_base

Base = declarative_base()

class Driver(Base):
    __tablename__ = "drivers"
    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    phone_number = Column(String(20), nullable=False)
    onboarding_date = Column(Date, nullable=False)

class Trip(Base):
    __tablename__ = "trips"
    id = Column(Integer, primary_key=True)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=False, index=True)
    start_location = Column(String(200), nullable=False)
    end_location = Column(String(200), nullable=False)
    trip_date = Column(Date, nullable=False, index=True)

class Payment(Base):
    __tablename__ = "payments"
    id = Column(Integer, primary_key=True)
    # At most one payment per trip
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False, unique=True)
    amount = Column(Numeric(10, 2), nullable=False)
    payment_date = Column(Date)

class Rating(Base):
    __tablename__ = "ratings"
    id = Column(Integer, primary_key=True)
    # At most one rating per trip
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False, unique=True)
    rating_value = Column(Numeric(3, 2), nullable=False)
    comment = Column(Text)
