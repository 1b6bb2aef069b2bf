# File: src/parking_system/domain/exceptions.py
"""
Exception hierarchy for the parking system

Every failure the core can report maps to one class here, each with a
human-readable message and a stable error code used by the presentation
layer.

Validation errors (raised before any mutating call):
- InvalidSelectionError
- InvalidRegistrationError
- InvalidIntervalError
- MissingVehicleTypeError

Flow errors:
- NoSpotAvailableError
- VehicleAlreadyParkedError
- NoOpenTicketError
- TicketUpdateFailedError

Collaborator errors:
- CollaboratorUnavailableError
"""

from typing import Optional


class ParkingSystemError(Exception):
    """Base exception for parking system errors"""

    error_code = "parking_error"
    default_message = "Parking system error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidSelectionError(ParkingSystemError):
    """Vehicle type selection outside the recognised menu"""
    error_code = "invalid_selection"
    default_message = "Entered input is invalid"


class InvalidRegistrationError(ParkingSystemError):
    """Vehicle registration number is empty or malformed"""
    error_code = "invalid_registration"
    default_message = "Vehicle registration number is invalid"


class NoSpotAvailableError(ParkingSystemError):
    """No free spot for the requested vehicle type"""
    error_code = "no_spot_available"
    default_message = "Parking slots might be full"


class VehicleAlreadyParkedError(ParkingSystemError):
    """The vehicle already has an open ticket"""
    error_code = "vehicle_already_parked"
    default_message = "This vehicle is already in the parking"


class NoOpenTicketError(ParkingSystemError):
    """No vehicle is currently parked under the registration"""
    error_code = "no_open_ticket"
    default_message = "No vehicle is currently parked under this registration"


class InvalidIntervalError(ParkingSystemError):
    """Exit time is missing or earlier than entry time"""
    error_code = "invalid_interval"
    default_message = "Out time provided is incorrect"


class MissingVehicleTypeError(ParkingSystemError):
    """Vehicle type is unset or not a known VehicleType"""
    error_code = "missing_vehicle_type"
    default_message = "The vehicle type cannot be empty"


class TicketUpdateFailedError(ParkingSystemError):
    """The closed ticket could not be persisted"""
    error_code = "ticket_update_failed"
    default_message = "Unable to update ticket information. Error occurred"


class CollaboratorUnavailableError(ParkingSystemError):
    """Spot allocator or ticket ledger failed to answer"""
    error_code = "collaborator_unavailable"
    default_message = "Parking storage is unavailable"
