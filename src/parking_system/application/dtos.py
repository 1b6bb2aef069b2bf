# File: src/parking_system/application/dtos.py
"""
Data Transfer Objects (DTOs) for the Parking System

Output DTOs returned by the orchestrator and rendered by the presentation
layer. Prices are Decimals rounded to two decimals.
"""

from typing import Optional
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from ..domain.models import VehicleType, round_to_two_decimals
from ..domain.exceptions import ParkingSystemError


# ============================================================================
# BASE DTO CLASSES
# ============================================================================

class BaseDTO(BaseModel):
    """Base DTO with common functionality"""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        frozen=True
    )

    def to_json(self, **kwargs) -> str:
        """Convert DTO to JSON string"""
        return self.model_dump_json(**kwargs)


# ============================================================================
# PARKING OPERATION DTOs
# ============================================================================

class EntryResultDTO(BaseDTO):
    """DTO for a successful vehicle entry"""
    ticket_id: int = Field(description="Ticket ID assigned by the ledger")
    spot_id: int = Field(gt=0, description="Allocated spot number")
    vehicle_type: VehicleType = Field(description="Vehicle type")
    vehicle_registration: str = Field(description="Vehicle registration number")
    entry_time: datetime = Field(description="Recorded in-time")
    frequent_user: bool = Field(default=False, description="Eligible for the loyalty discount")
    message: str = Field(default="", description="Message for the driver")


class ExitResultDTO(BaseDTO):
    """DTO for a successful vehicle exit"""
    ticket_id: int = Field(description="Ticket ID")
    spot_id: int = Field(gt=0, description="Released spot number")
    vehicle_registration: str = Field(description="Vehicle registration number")
    entry_time: datetime = Field(description="Recorded in-time")
    exit_time: datetime = Field(description="Recorded out-time")
    duration_hours: float = Field(ge=0, description="Parking duration in hours")
    price: Decimal = Field(ge=0, description="Fare to pay")
    discount_applied: bool = Field(default=False, description="Loyalty discount applied")
    message: str = Field(default="", description="Message for the driver")

    @field_serializer('price')
    def serialize_price(self, price: Decimal) -> str:
        return f"{round_to_two_decimals(price):.2f}"


# ============================================================================
# RESPONSE DTOs
# ============================================================================

class ErrorResponseDTO(BaseDTO):
    """Standard error response DTO"""
    success: bool = Field(default=False, description="Success flag")
    error: str = Field(description="Error message")
    error_code: Optional[str] = Field(default=None, description="Error code")
    timestamp: datetime = Field(default_factory=datetime.now, description="Error timestamp")

    @classmethod
    def from_exception(cls, error: ParkingSystemError) -> 'ErrorResponseDTO':
        return cls(error=error.message, error_code=error.error_code)
