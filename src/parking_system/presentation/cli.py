# File: src/parking_system/presentation/cli.py
"""
Interactive console for the parking attendant

Main menu:
    1 New Vehicle Entering - Allocate Parking Space
    2 Vehicle Exiting - Generate Ticket Price
    3 Shutdown System

The shell only reads input and prints results; every decision is taken by
the ParkingOrchestrator. Each ParkingSystemError is reported with its
message, nothing is swallowed.
"""

from typing import Callable, Optional, Union
import logging

from ..application.parking_service import ParkingOrchestrator, SELECTION_MENU, resolve_vehicle_type
from ..application.dtos import EntryResultDTO, ExitResultDTO, ErrorResponseDTO
from ..domain.exceptions import ParkingSystemError, InvalidSelectionError


class InputReader:
    """Reads menu numbers and registration numbers from the console"""

    def __init__(
        self,
        input_func: Callable[[], str] = input,
        output: Callable[[str], None] = print
    ):
        self._input = input_func
        self._output = output
        self.logger = logging.getLogger(self.__class__.__name__)

    def read_selection(self) -> int:
        """Return the number typed, or -1 when it is not a number"""
        raw = self._input()
        try:
            return int(raw.strip())
        except ValueError:
            self.logger.error(f"Error while reading user input from Shell: {raw!r}")
            self._output("Error reading input. Please enter valid number for proceeding further")
            return -1

    def read_vehicle_registration_number(self) -> str:
        return self._input().strip()


class InteractiveShell:
    """Menu loop driving the orchestrator"""

    def __init__(
        self,
        orchestrator: ParkingOrchestrator,
        reader: Optional[InputReader] = None,
        output: Callable[[str], None] = print
    ):
        self.orchestrator = orchestrator
        self.reader = reader or InputReader(output=output)
        self.output = output
        self.logger = logging.getLogger(self.__class__.__name__)

    def run(self) -> None:
        self.logger.info("App initialized!!!")
        self.output("Welcome to Parking System!")

        while True:
            self._print_menu()
            try:
                option = self.reader.read_selection()
                if option == 1:
                    self.process_incoming_vehicle()
                elif option == 2:
                    self.process_exiting_vehicle()
                elif option == 3:
                    self.output("Exiting from the system!")
                    break
                else:
                    self.output("Unsupported option. Please enter a number corresponding to the provided menu")
            except EOFError:
                # End of input stream
                self.output("Exiting from the system!")
                break

    def process_incoming_vehicle(self) -> Union[EntryResultDTO, ErrorResponseDTO]:
        self.output("Please select vehicle type from menu")
        for number, vehicle_type in SELECTION_MENU.items():
            self.output(f"{number} {vehicle_type}")

        selection = self.reader.read_selection()
        try:
            vehicle_type = resolve_vehicle_type(selection)
        except InvalidSelectionError as e:
            self.output("Incorrect input provided")
            return self._report(e)

        registration = self._ask_registration()
        try:
            result = self.orchestrator.handle_entry(registration, vehicle_type)
        except ParkingSystemError as e:
            return self._report(e)

        self.output("Generated Ticket and saved in DB")
        self.output(result.message)
        self.logger.info(f"Entry recorded: {result.to_json()}")
        return result

    def process_exiting_vehicle(self) -> Union[ExitResultDTO, ErrorResponseDTO]:
        registration = self._ask_registration()
        try:
            result = self.orchestrator.handle_exit(registration)
        except ParkingSystemError as e:
            return self._report(e)

        self.output(result.message)
        self.logger.info(f"Exit recorded: {result.to_json()}")
        return result

    def _ask_registration(self) -> str:
        self.output("Please type the vehicle registration number and press enter key")
        return self.reader.read_vehicle_registration_number()

    def _report(self, error: ParkingSystemError) -> ErrorResponseDTO:
        response = ErrorResponseDTO.from_exception(error)
        self.logger.warning(f"{response.error_code}: {response.error}")
        self.output(f"Error : {response.error}")
        return response

    def _print_menu(self) -> None:
        self.output("Please select an option. Simply enter the number to choose an action")
        self.output("1 New Vehicle Entering - Allocate Parking Space")
        self.output("2 Vehicle Exiting - Generate Ticket Price")
        self.output("3 Shutdown System")
