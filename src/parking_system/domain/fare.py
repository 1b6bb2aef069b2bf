# File: src/parking_system/domain/fare.py
"""
Fare calculation for the Parking System

FareCalculator is a stateless domain service: given entry and exit times,
the vehicle type and whether the driver is a frequent user, it returns the
fare owed. Rates and thresholds live in FareSettings so that nothing in the
algorithm is hand-coded.

Rules:
- Stays under the grace period (30 minutes) are free; this is a hard cutoff
- Otherwise: hours x hourly rate of the vehicle type
- Frequent users pay 95% of that amount

The calculator returns the unrounded amount. Rounding to two decimals is
applied by whoever stores or displays the price (see round_to_two_decimals).
"""

from dataclasses import dataclass, field
from typing import Optional, Dict
from datetime import datetime, timedelta
from decimal import Decimal
import logging

from .models import VehicleType, FareQuote, to_decimal
from .exceptions import InvalidIntervalError, MissingVehicleTypeError


SECONDS_PER_HOUR = Decimal(3600)


@dataclass(frozen=True)
class FareSettings:
    """
    Value Object: tariff and loyalty constants
    """
    hourly_rates: Dict[VehicleType, Decimal] = field(default_factory=lambda: {
        VehicleType.CAR: Decimal('1.5'),
        VehicleType.BIKE: Decimal('1.0'),
    })
    grace_period_minutes: int = 30
    frequent_user_reduction_rate: Decimal = Decimal('0.95')
    min_uses_for_frequent_user: int = 5
    frequent_user_window_days: int = 30

    def __post_init__(self):
        missing = [t.value for t in VehicleType if t not in self.hourly_rates]
        if missing:
            raise ValueError(f"Missing hourly rate for: {', '.join(missing)}")

        for vehicle_type, rate in self.hourly_rates.items():
            if to_decimal(rate) < 0:
                raise ValueError(f"Hourly rate for {vehicle_type} cannot be negative")

        if self.grace_period_minutes < 0:
            raise ValueError("Grace period cannot be negative")

        if not Decimal('0') <= to_decimal(self.frequent_user_reduction_rate) <= Decimal('1'):
            raise ValueError("Frequent user reduction rate must be between 0 and 1")

        if self.min_uses_for_frequent_user < 1:
            raise ValueError("Frequent user threshold must be at least 1")

        if self.frequent_user_window_days < 1:
            raise ValueError("Frequent user window must be at least one day")

    @property
    def grace_period_hours(self) -> Decimal:
        return Decimal(self.grace_period_minutes) / Decimal(60)

    def rate_for(self, vehicle_type: VehicleType) -> Decimal:
        return to_decimal(self.hourly_rates[vehicle_type])

    def is_frequent_user(self, completed_stays: int) -> bool:
        return completed_stays >= self.min_uses_for_frequent_user


def _elapsed_seconds(delta: timedelta) -> Decimal:
    # Exact: timedelta stores integral days, seconds and microseconds
    whole = Decimal(delta.days * 86400 + delta.seconds)
    return whole + Decimal(delta.microseconds) / Decimal(1000000)


class FareCalculator:
    """
    Domain Service: computes the fare for a closed stay
    """

    def __init__(self, settings: Optional[FareSettings] = None):
        self.settings = settings or FareSettings()
        self.logger = logging.getLogger(self.__class__.__name__)

    def compute_fare(
        self,
        entry_time: datetime,
        exit_time: Optional[datetime],
        vehicle_type: Optional[VehicleType],
        discount_eligible: bool = False
    ) -> Decimal:
        """
        Calculate the unrounded fare
        Raises: InvalidIntervalError, MissingVehicleTypeError
        """
        return self.quote(entry_time, exit_time, vehicle_type, discount_eligible).price

    def quote(
        self,
        entry_time: datetime,
        exit_time: Optional[datetime],
        vehicle_type: Optional[VehicleType],
        discount_eligible: bool = False
    ) -> FareQuote:
        """
        Calculate the fare with its intermediate values
        Raises: InvalidIntervalError, MissingVehicleTypeError
        """
        self._validate_interval(entry_time, exit_time)
        self._validate_vehicle_type(vehicle_type)

        hours = _elapsed_seconds(exit_time - entry_time) / SECONDS_PER_HOUR
        rate = self.settings.rate_for(vehicle_type)

        if hours < self.settings.grace_period_hours:
            price = Decimal('0')
        else:
            price = hours * rate
            if discount_eligible:
                price = price * to_decimal(self.settings.frequent_user_reduction_rate)

        self.logger.debug(
            f"Fare for {vehicle_type}: {float(hours):.4f}h at {rate}/h, "
            f"discount={discount_eligible} -> {price}"
        )

        return FareQuote(
            hours=float(hours),
            rate=rate,
            discount_applied=bool(discount_eligible),
            price=price
        )

    def _validate_interval(self, entry_time: datetime, exit_time: Optional[datetime]) -> None:
        if entry_time is None:
            raise InvalidIntervalError("In time is missing")
        if exit_time is None:
            raise InvalidIntervalError("Out time is missing")
        if exit_time < entry_time:
            raise InvalidIntervalError(
                f"Out time provided is incorrect: {exit_time.isoformat()} "
                f"is before in time {entry_time.isoformat()}"
            )

    def _validate_vehicle_type(self, vehicle_type: Optional[VehicleType]) -> None:
        if vehicle_type is None:
            raise MissingVehicleTypeError("The vehicle type cannot be empty")
        if not isinstance(vehicle_type, VehicleType):
            raise MissingVehicleTypeError(f"Unknown vehicle type: {vehicle_type!r}")
