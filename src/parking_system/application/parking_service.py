# File: src/parking_system/application/parking_service.py
"""
Parking Application Service

This module implements the application service layer for the parking system.
ParkingOrchestrator drives the ticket lifecycle of each vehicle:

    NOT_PRESENT --handle_entry--> OPEN_TICKET --handle_exit--> NOT_PRESENT

Entry:
1. Resolve the vehicle type from the menu selection
2. Find the next free spot of that type
3. Refuse a vehicle that already has an open ticket
4. Mark the spot unavailable (another free spot is tried if it was just taken)
5. Open a ticket (price 0, no exit time); on failure the spot is released again
6. Tell frequent users about the loyalty discount

Exit:
1. Find the open ticket
2. Stamp the exit time and compute the fare (discounted for frequent users)
3. Persist the closed ticket; the spot is released only once this succeeded
   (a failed release is logged, the fare is still reported)

Collaborators (spot allocator, ticket ledger, fare calculator, clock and
logger) are injected. Flows for the same registration are serialised.
"""

from typing import Dict, List, Optional, Any, Callable, Iterable, Union
from datetime import datetime
from decimal import Decimal
from contextlib import contextmanager
import logging
import threading

from ..domain.models import (
    VehicleType, VehicleRegistration, ParkingSpot, Ticket, format_price, to_decimal
)
from ..domain.fare import FareCalculator, FareSettings
from ..domain.exceptions import (
    ParkingSystemError, InvalidSelectionError, NoSpotAvailableError,
    VehicleAlreadyParkedError, NoOpenTicketError, TicketUpdateFailedError,
    CollaboratorUnavailableError
)
from ..infrastructure.repositories import SpotAllocator, TicketLedger, RepositoryFactory, default_spot_pool
from .dtos import EntryResultDTO, ExitResultDTO


# Menu numbers shown by the interactive shell
SELECTION_MENU: Dict[int, VehicleType] = {
    1: VehicleType.CAR,
    2: VehicleType.BIKE,
}

# Spots lost to concurrent entries before giving up
MAX_RESERVE_ATTEMPTS = 3


def resolve_vehicle_type(selection: Union[int, str, VehicleType, None]) -> VehicleType:
    """
    Map a menu selection to a VehicleType
    Accepts 1/2, "1"/"2", "car"/"bike" or a VehicleType
    Raises: InvalidSelectionError
    """
    if isinstance(selection, VehicleType):
        return selection

    if isinstance(selection, str):
        text = selection.strip()
        if text.isdigit():
            selection = int(text)
        elif text.upper() in VehicleType.__members__:
            return VehicleType[text.upper()]

    # bool is an int subclass; True must not mean CAR
    if isinstance(selection, int) and not isinstance(selection, bool):
        if selection in SELECTION_MENU:
            return SELECTION_MENU[selection]

    raise InvalidSelectionError(f"Entered input is invalid: {selection!r}")


# ============================================================================
# MAIN PARKING SERVICE
# ============================================================================

class ParkingOrchestrator:
    """
    Main application service for vehicle entry and exit

    It coordinates the spot allocator, the ticket ledger and the fare
    calculator, and guarantees that no spot is left unavailable without a
    ticket and that no spot is released before its fare is recorded.
    """

    def __init__(
        self,
        spot_allocator: SpotAllocator,
        ticket_ledger: TicketLedger,
        fare_calculator: Optional[FareCalculator] = None,
        clock: Callable[[], datetime] = datetime.now,
        logger: Optional[logging.Logger] = None
    ):
        self.spot_allocator = spot_allocator
        self.ticket_ledger = ticket_ledger
        self.fare_calculator = fare_calculator or FareCalculator()
        self.clock = clock
        self.logger = logger or logging.getLogger(self.__class__.__name__)

        self._locks_guard = threading.Lock()
        self._registration_locks: Dict[str, List[Any]] = {}

    @property
    def fare_settings(self) -> FareSettings:
        return self.fare_calculator.settings

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------

    def handle_entry(
        self,
        vehicle_registration: str,
        vehicle_type_selection: Union[int, str, VehicleType]
    ) -> EntryResultDTO:
        """
        Park a vehicle

        Raises: InvalidSelectionError, InvalidRegistrationError,
                NoSpotAvailableError, VehicleAlreadyParkedError,
                CollaboratorUnavailableError
        """
        vehicle_type = resolve_vehicle_type(vehicle_type_selection)
        registration = VehicleRegistration(vehicle_registration).value

        self.logger.info(f"Processing incoming {vehicle_type} {registration}")

        with self._vehicle_lock(registration):
            spot_id = self._next_spot(vehicle_type, registration)

            if self._call("check open ticket", self.ticket_ledger.has_open_ticket, registration):
                self.logger.warning(f"Rejected entry of {registration}: already parked")
                raise VehicleAlreadyParkedError(
                    f"Vehicle {registration} is already in the parking"
                )

            spot_id = self._reserve_spot(vehicle_type, registration, spot_id)
            ticket = self._open_ticket(registration, vehicle_type, spot_id)

        frequent_user = self._is_frequent_user_at_entry(registration, ticket.entry_time)

        self.logger.info(
            f"Generated ticket {ticket.id} for {registration} in spot {spot_id} "
            f"at {ticket.entry_time.isoformat()}"
        )

        return EntryResultDTO(
            ticket_id=ticket.id,
            spot_id=spot_id,
            vehicle_type=vehicle_type,
            vehicle_registration=registration,
            entry_time=ticket.entry_time,
            frequent_user=frequent_user,
            message=self._entry_message(ticket, frequent_user)
        )

    def _next_spot(self, vehicle_type: VehicleType, registration: str) -> int:
        spot_id = self._call(
            "fetch next available spot",
            self.spot_allocator.next_available, vehicle_type
        )
        if spot_id is None or spot_id <= 0:
            self.logger.warning(f"No {vehicle_type} spot available for {registration}")
            raise NoSpotAvailableError(
                f"No {vehicle_type} spot available. Parking slots might be full"
            )
        return spot_id

    def _reserve_spot(self, vehicle_type: VehicleType, registration: str, spot_id: int) -> int:
        """
        Mark the spot unavailable; when another vehicle took it first,
        move on to the next free spot of the same type
        """
        for _ in range(MAX_RESERVE_ATTEMPTS):
            if self._call("reserve spot", self.spot_allocator.set_availability, spot_id, False):
                return spot_id
            self.logger.warning(f"Spot {spot_id} was taken before {registration} could use it")
            spot_id = self._next_spot(vehicle_type, registration)

        raise NoSpotAvailableError(
            f"Could not reserve a {vehicle_type} spot after {MAX_RESERVE_ATTEMPTS} attempts, please retry"
        )

    def _open_ticket(self, registration: str, vehicle_type: VehicleType, spot_id: int) -> Ticket:
        """Steps 4-5 as one unit: undo the spot reservation if the ticket is not saved"""
        ticket = Ticket(
            spot_id=spot_id,
            vehicle_type=vehicle_type,
            vehicle_registration=registration,
            entry_time=self.clock(),
            exit_time=None,
            price=Decimal('0')
        )

        try:
            return self.ticket_ledger.open_ticket(ticket)
        except Exception as e:
            self.logger.error(
                f"Unable to save ticket for {registration}, releasing spot {spot_id}",
                exc_info=True
            )
            self._release_spot_after_failed_entry(spot_id)
            if isinstance(e, ParkingSystemError):
                raise
            raise CollaboratorUnavailableError(
                f"Unable to save ticket for vehicle {registration}"
            ) from e

    def _release_spot_after_failed_entry(self, spot_id: int) -> None:
        try:
            released = self.spot_allocator.set_availability(spot_id, True)
        except Exception:
            self.logger.error(
                f"Spot {spot_id} could not be released and has no ticket", exc_info=True
            )
            return

        if not released:
            self.logger.error(f"Spot {spot_id} could not be released and has no ticket")

    def _is_frequent_user_at_entry(self, registration: str, now: datetime) -> bool:
        # The ticket is already saved; the loyalty notice is informational only
        try:
            completed = self.ticket_ledger.count_completed_stays(
                registration, self.fare_settings.frequent_user_window_days, now=now
            )
        except Exception:
            self.logger.warning(
                f"Unable to count completed stays of {registration}, skipping loyalty notice",
                exc_info=True
            )
            return False
        return self.fare_settings.is_frequent_user(completed)

    def _entry_message(self, ticket: Ticket, frequent_user: bool) -> str:
        lines = []
        if frequent_user:
            lines.append(
                f"Welcome back! As a regular user of our parking, you will receive "
                f"a {self._discount_percent()}% discount."
            )
        lines.append(f"Please park your vehicle in spot number: {ticket.spot_id}")
        lines.append(
            f"Recorded in-time for vehicle number: {ticket.vehicle_registration} "
            f"is: {ticket.entry_time:%Y-%m-%d %H:%M:%S}"
        )
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Exit
    # ------------------------------------------------------------------

    def handle_exit(self, vehicle_registration: str) -> ExitResultDTO:
        """
        Release a vehicle and compute its fare

        Raises: InvalidRegistrationError, NoOpenTicketError,
                InvalidIntervalError, MissingVehicleTypeError,
                TicketUpdateFailedError, CollaboratorUnavailableError
        """
        registration = VehicleRegistration(vehicle_registration).value

        self.logger.info(f"Processing exiting vehicle {registration}")

        with self._vehicle_lock(registration):
            ticket = self._call("fetch open ticket", self.ticket_ledger.get_open_ticket, registration)
            if ticket is None:
                self.logger.warning(f"Exit requested for {registration} without open ticket")
                raise NoOpenTicketError(
                    f"No vehicle is currently parked under registration {registration}"
                )

            exit_time = self.clock()

            completed = self._call(
                "count completed stays",
                self.ticket_ledger.count_completed_stays,
                registration, self.fare_settings.frequent_user_window_days, now=exit_time
            )
            discount_eligible = self.fare_settings.is_frequent_user(completed)

            quote = self.fare_calculator.quote(
                ticket.entry_time, exit_time, ticket.vehicle_type, discount_eligible
            )
            ticket.close(exit_time, quote.price)

            self._persist_closed_ticket(ticket)
            self._release_spot_after_exit(ticket.spot_id)

        self.logger.info(
            f"Vehicle {registration} left spot {ticket.spot_id}, "
            f"fare {format_price(ticket.price)} (discount={discount_eligible})"
        )

        return ExitResultDTO(
            ticket_id=ticket.id,
            spot_id=ticket.spot_id,
            vehicle_registration=registration,
            entry_time=ticket.entry_time,
            exit_time=exit_time,
            duration_hours=quote.hours,
            price=ticket.price,
            discount_applied=discount_eligible,
            message=self._exit_message(ticket, discount_eligible)
        )

    def _persist_closed_ticket(self, ticket: Ticket) -> None:
        """The spot stays unavailable when this fails"""
        try:
            updated = self.ticket_ledger.close_ticket(ticket)
        except Exception as e:
            self.logger.error(f"Error saving ticket {ticket.id}", exc_info=True)
            raise TicketUpdateFailedError(
                f"Unable to update ticket information for vehicle {ticket.vehicle_registration}"
            ) from e

        if not updated:
            self.logger.error(f"Ticket {ticket.id} was not updated")
            raise TicketUpdateFailedError(
                f"Unable to update ticket information for vehicle {ticket.vehicle_registration}"
            )

    def _release_spot_after_exit(self, spot_id: int) -> None:
        # The closed ticket is already stored, so the fare must still be reported
        try:
            released = self.spot_allocator.set_availability(spot_id, True)
        except Exception:
            self.logger.error(
                f"Spot {spot_id} could not be released after exit and needs manual release",
                exc_info=True
            )
            return

        if not released:
            self.logger.warning(f"Spot {spot_id} was already marked available")

    def _exit_message(self, ticket: Ticket, discount_applied: bool) -> str:
        lines = []
        if discount_applied:
            lines.append("Thank you for your loyalty !")
        lines.append(f"Please pay the parking fare: {format_price(ticket.price)}")
        lines.append(
            f"Recorded out-time for vehicle number: {ticket.vehicle_registration} "
            f"is: {ticket.exit_time:%Y-%m-%d %H:%M:%S}"
        )
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _discount_percent(self) -> str:
        percent = (Decimal('1') - to_decimal(self.fare_settings.frequent_user_reduction_rate)) * 100
        return f"{percent.normalize():f}"

    @contextmanager
    def _vehicle_lock(self, registration: str):
        # Entry is [lock, users]; dropped when the last flow for the registration ends
        with self._locks_guard:
            entry = self._registration_locks.get(registration)
            if entry is None:
                entry = self._registration_locks[registration] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._registration_locks[registration]

    def _call(self, operation: str, func: Callable[..., Any], *args, **kwargs) -> Any:
        """Run a collaborator call; unexpected failures become CollaboratorUnavailableError"""
        try:
            return func(*args, **kwargs)
        except ParkingSystemError:
            raise
        except Exception as e:
            self.logger.error(f"Unable to {operation}: {e}", exc_info=True)
            raise CollaboratorUnavailableError(f"Unable to {operation}") from e


# ============================================================================
# SERVICE FACTORY
# ============================================================================

class ParkingServiceFactory:
    """Factory for creating wired orchestrators"""

    @staticmethod
    def create_in_memory(
        spots: Optional[Iterable[ParkingSpot]] = None,
        settings: Optional[FareSettings] = None,
        clock: Callable[[], datetime] = datetime.now
    ) -> ParkingOrchestrator:
        """Create an orchestrator over in-memory collaborators"""
        allocator, ledger = RepositoryFactory.create_in_memory(spots, clock=clock)
        return ParkingOrchestrator(
            spot_allocator=allocator,
            ticket_ledger=ledger,
            fare_calculator=FareCalculator(settings),
            clock=clock
        )

    @staticmethod
    def create_from_config(
        config: Any,
        clock: Callable[[], datetime] = datetime.now
    ) -> ParkingOrchestrator:
        """Create an orchestrator over the database named in an AppConfig"""
        spots = default_spot_pool() if config.seed_default_spots else None
        allocator, ledger, _ = RepositoryFactory.create_sqlalchemy(
            config.database_url, spots=spots, clock=clock
        )
        return ParkingOrchestrator(
            spot_allocator=allocator,
            ticket_ledger=ledger,
            fare_calculator=FareCalculator(config.fare.to_settings()),
            clock=clock
        )
