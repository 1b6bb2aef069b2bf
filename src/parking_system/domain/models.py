# File: src/parking_system/domain/models.py
"""
Domain Models for the Parking System

This module contains:
1. Enums: the closed set of vehicle types served by the facility
2. Value Objects: VehicleRegistration and FareQuote
3. Entities: ParkingSpot and Ticket
4. Price helpers: decimal-safe two-decimal rounding used by every caller
   that stores, compares or displays a price

A ticket is opened with a zero price and no exit time, then closed exactly
once at exit. Spots are a fixed pool; the core only flips their availability.
"""

from dataclasses import dataclass
from typing import Optional, Dict, Any, Union
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
import re

from .exceptions import InvalidRegistrationError


TWO_PLACES = Decimal('0.01')

Number = Union[Decimal, float, int, str]


# ============================================================================
# PRICE HELPERS
# ============================================================================

def to_decimal(value: Number) -> Decimal:
    """Convert a number to Decimal through its shortest text form"""
    if isinstance(value, Decimal):
        return value
    # str() keeps 12.345 as "12.345" instead of its binary expansion
    return Decimal(str(value))


def round_to_two_decimals(value: Number) -> Decimal:
    """
    Round a price to two decimals, half up

    123.456 -> 123.46, 12.345 -> 12.35, 1.234 -> 1.23, 123 -> 123.00
    """
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def format_price(value: Number) -> str:
    """Format a price for display"""
    return f"{round_to_two_decimals(value):.2f}"


# ============================================================================
# ENUMS FOR DOMAIN TYPES
# ============================================================================

class VehicleType(Enum):
    """
    Vehicle types served by the facility
    Each type has its own spot pool and hourly rate
    """
    CAR = "CAR"
    BIKE = "BIKE"

    def __str__(self) -> str:
        return self.value


# ============================================================================
# VALUE OBJECTS
# ============================================================================

@dataclass(frozen=True)
class VehicleRegistration:
    """
    Value Object: vehicle registration number with validation
    Normalised to upper case without surrounding whitespace
    """
    value: str

    def __post_init__(self):
        if not isinstance(self.value, str) or not self.value.strip():
            raise InvalidRegistrationError("Vehicle registration number cannot be empty")

        object.__setattr__(self, 'value', self.value.strip().upper())

        if len(self.value) > 20:
            raise InvalidRegistrationError(
                f"Vehicle registration number must be at most 20 characters, got: {self.value}"
            )

        if not re.match(r'^[A-Z0-9\s\-]+$', self.value):
            raise InvalidRegistrationError(
                f"Vehicle registration number can only contain letters, numbers, "
                f"spaces, and hyphens: {self.value}"
            )

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class FareQuote:
    """
    Value Object: result of one fare computation
    Never persisted; recomputed at every exit
    """
    hours: float
    rate: Decimal
    discount_applied: bool
    price: Decimal

    @property
    def rounded_price(self) -> Decimal:
        return round_to_two_decimals(self.price)


# ============================================================================
# DOMAIN ENTITIES
# ============================================================================

@dataclass
class ParkingSpot:
    """
    Entity: one spot in the fixed pool
    The availability flag is the single source of truth for allocation
    """
    id: int
    vehicle_type: VehicleType
    available: bool = True

    def __post_init__(self):
        if self.id <= 0:
            raise ValueError("Parking spot number must be positive")
        if not isinstance(self.vehicle_type, VehicleType):
            raise ValueError(f"Unknown vehicle type for spot {self.id}: {self.vehicle_type}")


@dataclass
class Ticket:
    """
    Entity: one stay of one vehicle

    The spot is referenced by number only. A ticket is open while
    exit_time is None and is closed exactly once.
    """
    spot_id: int
    vehicle_type: VehicleType
    vehicle_registration: str
    entry_time: datetime
    exit_time: Optional[datetime] = None
    price: Decimal = Decimal('0.00')
    id: Optional[int] = None

    def __post_init__(self):
        if self.price < 0:
            raise ValueError("Ticket price cannot be negative")
        self.price = round_to_two_decimals(self.price)

    @property
    def is_open(self) -> bool:
        return self.exit_time is None

    def close(self, exit_time: datetime, price: Number) -> None:
        """
        Set exit time and price
        Raises: ValueError if the ticket is already closed
        """
        if not self.is_open:
            raise ValueError(f"Ticket {self.id} is already closed")

        amount = round_to_two_decimals(price)
        if amount < 0:
            raise ValueError("Ticket price cannot be negative")

        self.exit_time = exit_time
        self.price = amount

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "id": self.id,
            "spot_id": self.spot_id,
            "vehicle_type": self.vehicle_type.value,
            "vehicle_registration": self.vehicle_registration,
            "price": format_price(self.price),
            "entry_time": self.entry_time.isoformat(),
            "exit_time": self.exit_time.isoformat() if self.exit_time else None,
        }
