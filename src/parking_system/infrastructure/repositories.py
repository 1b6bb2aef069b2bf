# File: src/parking_system/infrastructure/repositories.py
"""
Repository Pattern Implementation for the Parking System

The orchestrator consumes two collaborators through abstract interfaces:
- SpotAllocator - finds a free spot for a vehicle type and flips availability
- TicketLedger - persists tickets and answers the questions asked at
  entry and exit (open ticket lookup, completed-stay count)

Storage Implementations:
- InMemorySpotAllocator / InMemoryTicketLedger - For testing and development
- SQLAlchemySpotAllocator / SQLAlchemyTicketLedger - For relational databases

Availability changes are conditional updates ("mark unavailable only if
currently available"), so two concurrent entries can never both win the
same spot. Storage failures surface as CollaboratorUnavailableError.
"""

from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Iterable, Iterator, Tuple, Callable
from datetime import datetime, timedelta
from dataclasses import replace
from contextlib import contextmanager
import logging
import threading

from sqlalchemy import (
    create_engine, Column, Integer, String, Boolean, DateTime,
    ForeignKey, Index, Numeric, func, select, update, exists
)
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from sqlalchemy.exc import SQLAlchemyError, IntegrityError

from ..domain.models import ParkingSpot, Ticket, VehicleType, round_to_two_decimals
from ..domain.exceptions import CollaboratorUnavailableError, VehicleAlreadyParkedError


DEFAULT_WINDOW_DAYS = 30


def default_spot_pool() -> List[ParkingSpot]:
    """Spots 1-3 for cars, 4-5 for bikes"""
    return [
        ParkingSpot(1, VehicleType.CAR),
        ParkingSpot(2, VehicleType.CAR),
        ParkingSpot(3, VehicleType.CAR),
        ParkingSpot(4, VehicleType.BIKE),
        ParkingSpot(5, VehicleType.BIKE),
    ]


# ============================================================================
# REPOSITORY INTERFACES
# ============================================================================

class SpotAllocator(ABC):
    """Spot allocation interface"""

    @abstractmethod
    def next_available(self, vehicle_type: VehicleType) -> Optional[int]:
        """Return the lowest free spot number for the type, or None"""
        pass

    @abstractmethod
    def set_availability(self, spot_id: int, available: bool) -> bool:
        """
        Flip the availability of a spot
        Returns False when the spot does not exist or already has that state
        """
        pass


class TicketLedger(ABC):
    """Ticket persistence interface"""

    @abstractmethod
    def has_open_ticket(self, vehicle_registration: str) -> bool:
        """Check if the vehicle entered and has not exited yet"""
        pass

    @abstractmethod
    def open_ticket(self, ticket: Ticket) -> Ticket:
        """Persist a new open ticket and return it with its assigned id"""
        pass

    @abstractmethod
    def get_open_ticket(self, vehicle_registration: str) -> Optional[Ticket]:
        """Get the open ticket of a vehicle"""
        pass

    @abstractmethod
    def close_ticket(self, ticket: Ticket) -> bool:
        """Persist exit time and price of a ticket; False if nothing was updated"""
        pass

    @abstractmethod
    def count_completed_stays(
        self,
        vehicle_registration: str,
        window_days: int = DEFAULT_WINDOW_DAYS,
        now: Optional[datetime] = None
    ) -> int:
        """Count closed tickets whose exit falls within the trailing window"""
        pass


# ============================================================================
# IN-MEMORY REPOSITORIES (For Testing)
# ============================================================================

class InMemorySpotAllocator(SpotAllocator):
    """In-memory spot pool"""

    def __init__(self, spots: Optional[Iterable[ParkingSpot]] = None):
        self._spots: Dict[int, ParkingSpot] = {}
        self._lock = threading.Lock()
        self._logger = logging.getLogger(self.__class__.__name__)

        for spot in spots or []:
            self.add_spot(spot)

    def add_spot(self, spot: ParkingSpot) -> None:
        with self._lock:
            if spot.id in self._spots:
                raise ValueError(f"Parking spot {spot.id} already exists")
            self._spots[spot.id] = replace(spot)
        self._logger.debug(f"Added spot {spot.id} ({spot.vehicle_type})")

    def get_spot(self, spot_id: int) -> Optional[ParkingSpot]:
        with self._lock:
            spot = self._spots.get(spot_id)
            return replace(spot) if spot else None

    def count_available(self, vehicle_type: Optional[VehicleType] = None) -> int:
        with self._lock:
            return sum(
                1 for spot in self._spots.values()
                if spot.available and (vehicle_type is None or spot.vehicle_type == vehicle_type)
            )

    def next_available(self, vehicle_type: VehicleType) -> Optional[int]:
        with self._lock:
            free = [
                spot.id for spot in self._spots.values()
                if spot.available and spot.vehicle_type == vehicle_type
            ]
        return min(free) if free else None

    def set_availability(self, spot_id: int, available: bool) -> bool:
        with self._lock:
            spot = self._spots.get(spot_id)
            if spot is None or spot.available == available:
                return False
            spot.available = available
        self._logger.debug(f"Spot {spot_id} available={available}")
        return True


class InMemoryTicketLedger(TicketLedger):
    """In-memory ticket store; keeps copies so callers cannot alter stored tickets"""

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self._tickets: Dict[int, Ticket] = {}
        self._next_id = 1
        self._clock = clock
        self._lock = threading.Lock()
        self._logger = logging.getLogger(self.__class__.__name__)

    def _find_open(self, vehicle_registration: str) -> Optional[Ticket]:
        open_tickets = [
            t for t in self._tickets.values()
            if t.vehicle_registration == vehicle_registration and t.is_open
        ]
        if not open_tickets:
            return None
        return max(open_tickets, key=lambda t: t.entry_time)

    def has_open_ticket(self, vehicle_registration: str) -> bool:
        with self._lock:
            return self._find_open(vehicle_registration) is not None

    def open_ticket(self, ticket: Ticket) -> Ticket:
        with self._lock:
            if self._find_open(ticket.vehicle_registration) is not None:
                raise VehicleAlreadyParkedError(
                    f"Vehicle {ticket.vehicle_registration} already has an open ticket"
                )
            stored = replace(ticket, id=self._next_id)
            self._tickets[stored.id] = stored
            self._next_id += 1
        self._logger.debug(f"Saved ticket {stored.id} for {stored.vehicle_registration}")
        return replace(stored)

    def get_open_ticket(self, vehicle_registration: str) -> Optional[Ticket]:
        with self._lock:
            ticket = self._find_open(vehicle_registration)
            return replace(ticket) if ticket else None

    def close_ticket(self, ticket: Ticket) -> bool:
        if ticket.id is None or ticket.exit_time is None:
            self._logger.warning(f"Refusing to close incomplete ticket {ticket.id}")
            return False

        with self._lock:
            stored = self._tickets.get(ticket.id)
            if stored is None or not stored.is_open:
                return False
            stored.close(ticket.exit_time, ticket.price)
        self._logger.debug(f"Closed ticket {ticket.id}")
        return True

    def count_completed_stays(
        self,
        vehicle_registration: str,
        window_days: int = DEFAULT_WINDOW_DAYS,
        now: Optional[datetime] = None
    ) -> int:
        cutoff = (now or self._clock()) - timedelta(days=window_days)
        with self._lock:
            return sum(
                1 for t in self._tickets.values()
                if t.vehicle_registration == vehicle_registration
                and not t.is_open
                and t.exit_time >= cutoff
            )

    def get_all(self) -> List[Ticket]:
        with self._lock:
            return [replace(t) for t in sorted(self._tickets.values(), key=lambda t: t.id)]

    def add_ticket(self, ticket: Ticket) -> Ticket:
        """Store a ticket as-is, open or closed (for seeding history)"""
        with self._lock:
            stored = replace(ticket, id=self._next_id)
            self._tickets[stored.id] = stored
            self._next_id += 1
        return replace(stored)


# ============================================================================
# SQLALCHEMY ORM MODELS
# ============================================================================

Base = declarative_base()


class ParkingSpotModel(Base):
    """SQLAlchemy model for ParkingSpot"""
    __tablename__ = 'parking'

    parking_number = Column(Integer, primary_key=True, autoincrement=False)
    available = Column(Boolean, nullable=False, default=True)
    type = Column(String(10), nullable=False, index=True)


class TicketModel(Base):
    """SQLAlchemy model for Ticket"""
    __tablename__ = 'ticket'

    id = Column(Integer, primary_key=True, autoincrement=True)
    parking_number = Column(Integer, ForeignKey('parking.parking_number'), nullable=False)
    vehicle_reg_number = Column(String(20), nullable=False, index=True)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    in_time = Column(DateTime, nullable=False)
    out_time = Column(DateTime, nullable=True)


# At most one open ticket per vehicle.
# Partial index, created only on dialects that support its WHERE clause
Index(
    'uq_ticket_open_vehicle',
    TicketModel.vehicle_reg_number,
    unique=True,
    sqlite_where=TicketModel.out_time.is_(None),
    postgresql_where=TicketModel.out_time.is_(None)
).ddl_if(dialect=('sqlite', 'postgresql'))


class Mapper:
    """Converts between ORM rows and domain objects"""

    @staticmethod
    def spot_to_domain(model: ParkingSpotModel) -> ParkingSpot:
        return ParkingSpot(
            id=model.parking_number,
            vehicle_type=VehicleType(model.type),
            available=bool(model.available)
        )

    @staticmethod
    def ticket_to_domain(model: TicketModel, vehicle_type: str) -> Ticket:
        return Ticket(
            id=model.id,
            spot_id=model.parking_number,
            vehicle_type=VehicleType(vehicle_type),
            vehicle_registration=model.vehicle_reg_number,
            price=round_to_two_decimals(model.price or 0),
            entry_time=model.in_time,
            exit_time=model.out_time
        )

    @staticmethod
    def ticket_to_orm(entity: Ticket) -> TicketModel:
        return TicketModel(
            parking_number=entity.spot_id,
            vehicle_reg_number=entity.vehicle_registration,
            price=round_to_two_decimals(entity.price),
            in_time=entity.entry_time,
            out_time=entity.exit_time
        )


# ============================================================================
# DATABASE
# ============================================================================

class Database:
    """Engine and session handling shared by the SQLAlchemy repositories"""

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self._logger = logging.getLogger(self.__class__.__name__)

        engine_args = {"echo": echo}
        if database_url.startswith("sqlite"):
            engine_args["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, otherwise each session sees an empty database
                engine_args["poolclass"] = StaticPool

        self.engine = create_engine(database_url, **engine_args)
        self.session_factory = sessionmaker(
            autoflush=False, bind=self.engine, expire_on_commit=False
        )

    def create_schema(self) -> None:
        Base.metadata.create_all(bind=self.engine)
        self._logger.info("Database schema ready")

    def drop_schema(self) -> None:
        Base.metadata.drop_all(bind=self.engine)

    @contextmanager
    def session_scope(self, operation: str) -> Iterator[Session]:
        """Transaction per call; storage errors become CollaboratorUnavailableError"""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            self._logger.error(f"Database error during {operation}: {e}")
            raise CollaboratorUnavailableError(f"Database error during {operation}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def provision_spots(self, spots: Iterable[ParkingSpot]) -> int:
        """Insert missing spots; existing rows are left untouched"""
        added = 0
        with self.session_scope("provision spots") as session:
            for spot in spots:
                if session.get(ParkingSpotModel, spot.id) is None:
                    session.add(ParkingSpotModel(
                        parking_number=spot.id,
                        available=spot.available,
                        type=spot.vehicle_type.value
                    ))
                    added += 1
        self._logger.info(f"Provisioned {added} parking spots")
        return added

    def dispose(self) -> None:
        self.engine.dispose()


# ============================================================================
# SQLALCHEMY REPOSITORIES
# ============================================================================

class SQLAlchemySpotAllocator(SpotAllocator):
    """Spot allocator backed by the parking table"""

    def __init__(self, database: Database):
        self.database = database
        self._logger = logging.getLogger(self.__class__.__name__)

    def next_available(self, vehicle_type: VehicleType) -> Optional[int]:
        with self.database.session_scope("next available spot") as session:
            return session.execute(
                select(func.min(ParkingSpotModel.parking_number)).where(
                    ParkingSpotModel.available == True,
                    ParkingSpotModel.type == vehicle_type.value
                )
            ).scalar()

    def set_availability(self, spot_id: int, available: bool) -> bool:
        with self.database.session_scope("update spot availability") as session:
            result = session.execute(
                update(ParkingSpotModel)
                .where(
                    ParkingSpotModel.parking_number == spot_id,
                    ParkingSpotModel.available == (not available)
                )
                .values(available=available)
            )
            changed = result.rowcount > 0

        self._logger.debug(f"Spot {spot_id} available={available} changed={changed}")
        return changed

    def get_spot(self, spot_id: int) -> Optional[ParkingSpot]:
        with self.database.session_scope("get spot") as session:
            model = session.get(ParkingSpotModel, spot_id)
            return Mapper.spot_to_domain(model) if model else None

    def count_available(self, vehicle_type: Optional[VehicleType] = None) -> int:
        with self.database.session_scope("count available spots") as session:
            query = select(func.count(ParkingSpotModel.parking_number)).where(
                ParkingSpotModel.available == True
            )
            if vehicle_type:
                query = query.where(ParkingSpotModel.type == vehicle_type.value)
            return session.execute(query).scalar() or 0


class SQLAlchemyTicketLedger(TicketLedger):
    """Ticket ledger backed by the ticket table"""

    def __init__(self, database: Database, clock: Callable[[], datetime] = datetime.now):
        self.database = database
        self._clock = clock
        self._logger = logging.getLogger(self.__class__.__name__)

    @staticmethod
    def _open_ticket_clause(vehicle_registration: str):
        return (
            TicketModel.vehicle_reg_number == vehicle_registration,
            TicketModel.out_time.is_(None)
        )

    def _open_ticket_exists(self, session: Session, vehicle_registration: str) -> bool:
        return bool(session.execute(
            select(exists().where(*self._open_ticket_clause(vehicle_registration)))
        ).scalar())

    def has_open_ticket(self, vehicle_registration: str) -> bool:
        with self.database.session_scope("check open ticket") as session:
            found = self._open_ticket_exists(session, vehicle_registration)

        if found:
            self._logger.info(
                f"Entry attempt failure: the vehicle {vehicle_registration} "
                f"has never exited since the last entry"
            )
        return found

    def open_ticket(self, ticket: Ticket) -> Ticket:
        already_parked = VehicleAlreadyParkedError(
            f"Vehicle {ticket.vehicle_registration} already has an open ticket"
        )
        with self.database.session_scope("save ticket") as session:
            if self._open_ticket_exists(session, ticket.vehicle_registration):
                raise already_parked

            model = Mapper.ticket_to_orm(ticket)
            session.add(model)
            try:
                session.flush()
            except IntegrityError as e:
                # Another process opened a ticket between the check and the insert
                raise already_parked from e
            ticket_id = model.id

        self._logger.debug(f"Saved ticket {ticket_id} for {ticket.vehicle_registration}")
        return replace(ticket, id=ticket_id)

    def get_open_ticket(self, vehicle_registration: str) -> Optional[Ticket]:
        with self.database.session_scope("get open ticket") as session:
            row = session.execute(
                select(TicketModel, ParkingSpotModel.type)
                .join(ParkingSpotModel, ParkingSpotModel.parking_number == TicketModel.parking_number)
                .where(*self._open_ticket_clause(vehicle_registration))
                .order_by(TicketModel.in_time.desc())
                .limit(1)
            ).first()

            if row is None:
                return None
            model, vehicle_type = row
            return Mapper.ticket_to_domain(model, vehicle_type)

    def close_ticket(self, ticket: Ticket) -> bool:
        if ticket.id is None or ticket.exit_time is None:
            self._logger.warning(f"Refusing to close incomplete ticket {ticket.id}")
            return False

        with self.database.session_scope("update ticket") as session:
            result = session.execute(
                update(TicketModel)
                .where(TicketModel.id == ticket.id, TicketModel.out_time.is_(None))
                .values(
                    price=round_to_two_decimals(ticket.price),
                    out_time=ticket.exit_time
                )
            )
            return result.rowcount > 0

    def count_completed_stays(
        self,
        vehicle_registration: str,
        window_days: int = DEFAULT_WINDOW_DAYS,
        now: Optional[datetime] = None
    ) -> int:
        cutoff = (now or self._clock()) - timedelta(days=window_days)
        with self.database.session_scope("count completed stays") as session:
            return session.execute(
                select(func.count(TicketModel.id)).where(
                    TicketModel.vehicle_reg_number == vehicle_registration,
                    TicketModel.out_time.is_not(None),
                    TicketModel.out_time >= cutoff
                )
            ).scalar() or 0

    def add_ticket(self, ticket: Ticket) -> Ticket:
        """Store a ticket as-is, open or closed (for seeding history)"""
        with self.database.session_scope("insert ticket") as session:
            model = Mapper.ticket_to_orm(ticket)
            session.add(model)
            session.flush()
            return replace(ticket, id=model.id)


# ============================================================================
# REPOSITORY FACTORY
# ============================================================================

class RepositoryFactory:
    """Factory for creating allocator/ledger pairs"""

    @staticmethod
    def create_in_memory(
        spots: Optional[Iterable[ParkingSpot]] = None,
        clock: Callable[[], datetime] = datetime.now
    ) -> Tuple[InMemorySpotAllocator, InMemoryTicketLedger]:
        """Create in-memory collaborators for testing"""
        pool = default_spot_pool() if spots is None else spots
        return InMemorySpotAllocator(pool), InMemoryTicketLedger(clock=clock)

    @staticmethod
    def create_sqlalchemy(
        database_url: str,
        spots: Optional[Iterable[ParkingSpot]] = None,
        clock: Callable[[], datetime] = datetime.now,
        echo: bool = False
    ) -> Tuple[SQLAlchemySpotAllocator, SQLAlchemyTicketLedger, Database]:
        """Create SQLAlchemy collaborators; creates tables if they don't exist"""
        database = Database(database_url, echo=echo)
        database.create_schema()
        if spots is not None:
            database.provision_spots(spots)

        return SQLAlchemySpotAllocator(database), SQLAlchemyTicketLedger(database, clock=clock), database
