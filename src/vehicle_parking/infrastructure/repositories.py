# File: src/vehicle_parking/infrastructure/repositories.py
"""
Repository Pattern Implementation for the Parking Session Engine

Repositories give the application services a collection-like interface to
vehicles, spaces, sessions and rates, while the Unit of Work owns the
transaction that groups their changes.

Key Points:
- SQLAlchemy ORM models mirror the relational schema, including the
  constraints that back the domain invariants (one ACTIVE session per plate,
  exit after entry, positive rate amounts)
- Mapper converts between ORM rows and domain entities
- Mutating methods return affected-row counts where callers need them
- The Unit of Work is re-entrant: nested scopes join the outer transaction
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import (
    Any, Callable, Dict, Generic, List, Optional, Sequence, Tuple, Type, TypeVar
)
import logging
import threading

from sqlalchemy import (
    create_engine, event, Column, String, Boolean, DateTime, Numeric, ForeignKey,
    CheckConstraint, Index, func, case, extract, text
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError, IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool

from ..domain.exceptions import (
    ActiveSessionExistsError, ConsistencyError, PersistenceError
)
from ..domain.models import (
    Vehicle, ParkingSpace, ParkingSession, ParkingRate,
    VehicleType, SpaceType, RateKind, SessionStatus, utcnow
)

T = TypeVar('T')  # Domain entity type


def _enum_check(column: str, enum_cls) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


# ============================================================================
# SQLALCHEMY ORM MODELS
# ============================================================================

Base = declarative_base()


class VehicleModel(Base):
    """SQLAlchemy model for Vehicle"""
    __tablename__ = 'vehicles'

    license_plate = Column(String(10), primary_key=True)
    vehicle_type = Column(String(20), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint(_enum_check('vehicle_type', VehicleType), name='ck_vehicle_type'),
    )


class ParkingSpaceModel(Base):
    """SQLAlchemy model for ParkingSpace"""
    __tablename__ = 'parking_spaces'

    space_id = Column(String(36), primary_key=True)
    space_type = Column(String(20), nullable=False)
    zone = Column(String(50), nullable=False, index=True)
    is_occupied = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint(_enum_check('space_type', SpaceType), name='ck_space_type'),
        Index('idx_spaces_type_occupied', 'space_type', 'is_occupied'),
    )


class ParkingRateModel(Base):
    """SQLAlchemy model for ParkingRate"""
    __tablename__ = 'parking_rates'

    rate_id = Column(String(36), primary_key=True)
    vehicle_type = Column(String(20), nullable=False)
    rate_kind = Column(String(10), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    effective_from = Column(DateTime, nullable=False)
    effective_until = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint(_enum_check('vehicle_type', VehicleType), name='ck_rate_vehicle_type'),
        CheckConstraint(_enum_check('rate_kind', RateKind), name='ck_rate_kind'),
        CheckConstraint('amount > 0', name='ck_rate_amount_positive'),
        CheckConstraint(
            'effective_until IS NULL OR effective_until > effective_from',
            name='ck_rate_effective_window'
        ),
        Index('idx_rates_vehicle_effective', 'vehicle_type', 'effective_from', 'effective_until'),
    )


class ParkingSessionModel(Base):
    """SQLAlchemy model for ParkingSession"""
    __tablename__ = 'parking_sessions'

    session_id = Column(String(36), primary_key=True)
    license_plate = Column(String(10), ForeignKey('vehicles.license_plate'), nullable=False, index=True)
    space_id = Column(String(36), ForeignKey('parking_spaces.space_id'), nullable=False, index=True)
    entry_time = Column(DateTime, nullable=False, index=True)
    exit_time = Column(DateTime)
    fee = Column(Numeric(10, 2))
    status = Column(String(10), nullable=False, default=SessionStatus.ACTIVE.value, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint(_enum_check('status', SessionStatus), name='ck_session_status'),
        CheckConstraint('exit_time IS NULL OR exit_time > entry_time', name='ck_session_exit_after_entry'),
        CheckConstraint('fee IS NULL OR fee >= 0', name='ck_session_fee_non_negative'),
        # Insert-if-absent guard: a second ACTIVE row for a plate is rejected
        Index(
            'uq_active_session_per_plate', 'license_plate',
            unique=True,
            sqlite_where=text("status = 'ACTIVE'"),
            postgresql_where=text("status = 'ACTIVE'"),
        ),
    )


# ============================================================================
# DOMAIN <-> ORM MAPPERS
# ============================================================================

class Mapper:
    """Maps between domain models and ORM models"""

    @staticmethod
    def vehicle_to_orm(vehicle: Vehicle) -> VehicleModel:
        return VehicleModel(
            license_plate=vehicle.license_plate,
            vehicle_type=vehicle.vehicle_type.value,
            created_at=vehicle.created_at
        )

    @staticmethod
    def vehicle_to_domain(model: VehicleModel) -> Vehicle:
        return Vehicle(
            license_plate=model.license_plate,
            vehicle_type=VehicleType(model.vehicle_type),
            created_at=model.created_at
        )

    @staticmethod
    def space_to_orm(space: ParkingSpace) -> ParkingSpaceModel:
        return ParkingSpaceModel(
            space_id=space.space_id,
            space_type=space.space_type.value,
            zone=space.zone,
            is_occupied=space.is_occupied,
            created_at=space.created_at
        )

    @staticmethod
    def space_to_domain(model: ParkingSpaceModel) -> ParkingSpace:
        return ParkingSpace(
            space_id=model.space_id,
            space_type=SpaceType(model.space_type),
            zone=model.zone,
            is_occupied=bool(model.is_occupied),
            created_at=model.created_at
        )

    @staticmethod
    def session_to_orm(session: ParkingSession) -> ParkingSessionModel:
        return ParkingSessionModel(
            session_id=session.session_id,
            license_plate=session.license_plate,
            space_id=session.space_id,
            entry_time=session.entry_time,
            exit_time=session.exit_time,
            fee=session.fee,
            status=session.status.value,
            created_at=session.created_at,
            updated_at=session.updated_at
        )

    @staticmethod
    def session_to_domain(model: ParkingSessionModel) -> ParkingSession:
        return ParkingSession(
            session_id=model.session_id,
            license_plate=model.license_plate,
            space_id=model.space_id,
            entry_time=model.entry_time,
            exit_time=model.exit_time,
            fee=Decimal(str(model.fee)) if model.fee is not None else None,
            status=SessionStatus(model.status),
            created_at=model.created_at,
            updated_at=model.updated_at
        )

    @staticmethod
    def rate_to_orm(rate: ParkingRate) -> ParkingRateModel:
        return ParkingRateModel(
            rate_id=rate.rate_id,
            vehicle_type=rate.vehicle_type.value,
            rate_kind=rate.rate_kind.value,
            amount=rate.amount,
            effective_from=rate.effective_from,
            effective_until=rate.effective_until,
            created_at=rate.created_at
        )

    @staticmethod
    def rate_to_domain(model: ParkingRateModel) -> ParkingRate:
        return ParkingRate(
            rate_id=model.rate_id,
            vehicle_type=VehicleType(model.vehicle_type),
            rate_kind=RateKind(model.rate_kind),
            amount=Decimal(str(model.amount)),
            effective_from=model.effective_from,
            effective_until=model.effective_until,
            created_at=model.created_at
        )


# ============================================================================
# SQLALCHEMY REPOSITORIES
# ============================================================================

class SQLAlchemyRepository(Generic[T], ABC):
    """Base SQLAlchemy repository"""

    def __init__(self, session: Session):
        self.session = session
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    @abstractmethod
    def model_class(self) -> Type[Base]:
        """Return SQLAlchemy model class"""
        pass

    @abstractmethod
    def to_domain(self, model: Base) -> T:
        pass

    @abstractmethod
    def to_orm(self, entity: T) -> Base:
        pass

    @property
    def _pk(self):
        return self.model_class.__mapper__.primary_key[0]

    def add(self, entity: T) -> T:
        try:
            model = self.to_orm(entity)
            self.session.add(model)
            self.session.flush()
            self._logger.debug(f"Added {self.model_class.__tablename__} row {self._pk_value(model)}")
            return entity
        except SQLAlchemyError as e:
            self._logger.error(f"Database error adding entity: {e}")
            raise

    def get(self, id: str) -> Optional[T]:
        try:
            model = self.session.get(self.model_class, id)
            return self.to_domain(model) if model else None
        except SQLAlchemyError as e:
            self._logger.error(f"Database error getting entity {id}: {e}")
            raise

    def update(self, entity: T) -> T:
        """Overwrite every mutable column of an existing row"""
        try:
            updated_model = self.to_orm(entity)
            entity_id = self._pk_value(updated_model)
            model = self.session.get(self.model_class, entity_id)
            if not model:
                raise ConsistencyError(f"{self.model_class.__tablename__} row {entity_id} not found")

            for column in self.model_class.__table__.columns:
                if column.primary_key or column.name == 'created_at':
                    continue
                setattr(model, column.name, getattr(updated_model, column.name))

            self.session.flush()
            self._logger.debug(f"Updated {self.model_class.__tablename__} row {entity_id}")
            return entity
        except SQLAlchemyError as e:
            self._logger.error(f"Database error updating entity: {e}")
            raise

    def _pk_value(self, model: Base) -> Any:
        return getattr(model, self._pk.name)


class VehicleRepository(SQLAlchemyRepository[Vehicle]):
    """Repository for vehicles"""

    @property
    def model_class(self) -> Type[Base]:
        return VehicleModel

    def to_domain(self, model: VehicleModel) -> Vehicle:
        return Mapper.vehicle_to_domain(model)

    def to_orm(self, entity: Vehicle) -> VehicleModel:
        return Mapper.vehicle_to_orm(entity)

    def find_by_license_plate(self, license_plate: str) -> Optional[Vehicle]:
        return self.get(license_plate)

    def update_type(self, license_plate: str, vehicle_type: VehicleType) -> int:
        """Change the registered class of a vehicle"""
        try:
            result = self.session.query(VehicleModel).filter(
                VehicleModel.license_plate == license_plate
            ).update({'vehicle_type': vehicle_type.value})
            self.session.flush()
            return result
        except SQLAlchemyError as e:
            self._logger.error(f"Database error updating vehicle type: {e}")
            raise


class ParkingSpaceRepository(SQLAlchemyRepository[ParkingSpace]):
    """Repository for parking spaces"""

    @property
    def model_class(self) -> Type[Base]:
        return ParkingSpaceModel

    def to_domain(self, model: ParkingSpaceModel) -> ParkingSpace:
        return Mapper.space_to_domain(model)

    def to_orm(self, entity: ParkingSpace) -> ParkingSpaceModel:
        return Mapper.space_to_orm(entity)

    def find_all(self) -> List[ParkingSpace]:
        try:
            models = self.session.query(ParkingSpaceModel).order_by(
                ParkingSpaceModel.zone, ParkingSpaceModel.space_type, ParkingSpaceModel.space_id
            ).all()
            return [self.to_domain(model) for model in models]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error getting all spaces: {e}")
            raise

    def find_by_zone(self, zone: str) -> List[ParkingSpace]:
        try:
            models = self.session.query(ParkingSpaceModel).filter(
                ParkingSpaceModel.zone == zone
            ).order_by(ParkingSpaceModel.space_type, ParkingSpaceModel.space_id).all()
            return [self.to_domain(model) for model in models]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding spaces by zone: {e}")
            raise

    def find_available_by_types(self, space_types: Sequence[SpaceType]) -> List[ParkingSpace]:
        """Find unoccupied spaces of the given classes"""
        try:
            models = self.session.query(ParkingSpaceModel).filter(
                ParkingSpaceModel.is_occupied == False,  # noqa: E712
                ParkingSpaceModel.space_type.in_([t.value for t in space_types])
            ).order_by(ParkingSpaceModel.space_id).all()
            return [self.to_domain(model) for model in models]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding available spaces: {e}")
            raise

    def find_occupied(self) -> List[ParkingSpace]:
        try:
            models = self.session.query(ParkingSpaceModel).filter(
                ParkingSpaceModel.is_occupied == True  # noqa: E712
            ).order_by(ParkingSpaceModel.space_id).all()
            return [self.to_domain(model) for model in models]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding occupied spaces: {e}")
            raise

    def count_available(self, space_types: Optional[Sequence[SpaceType]] = None) -> int:
        try:
            query = self.session.query(func.count(ParkingSpaceModel.space_id)).filter(
                ParkingSpaceModel.is_occupied == False  # noqa: E712
            )
            if space_types is not None:
                query = query.filter(ParkingSpaceModel.space_type.in_([t.value for t in space_types]))
            return query.scalar() or 0
        except SQLAlchemyError as e:
            self._logger.error(f"Database error counting available spaces: {e}")
            raise

    def mark_occupied(self, space_id: str) -> bool:
        """Mark a free space as occupied; False if it was taken meanwhile"""
        return self._set_occupancy(space_id, occupied=True)

    def mark_available(self, space_id: str) -> bool:
        """Mark an occupied space as free; False if it was not occupied"""
        return self._set_occupancy(space_id, occupied=False)

    def _set_occupancy(self, space_id: str, occupied: bool) -> bool:
        try:
            result = self.session.query(ParkingSpaceModel).filter(
                ParkingSpaceModel.space_id == space_id,
                ParkingSpaceModel.is_occupied == (not occupied)
            ).update({'is_occupied': occupied})
            self.session.flush()
            return result > 0
        except SQLAlchemyError as e:
            self._logger.error(f"Database error updating occupancy of {space_id}: {e}")
            raise

    def occupancy_by_type(self) -> Dict[str, Tuple[int, int]]:
        """space class -> (total, occupied)"""
        return self._occupancy_grouped_by(ParkingSpaceModel.space_type)

    def occupancy_by_zone(self) -> Dict[str, Tuple[int, int]]:
        """zone -> (total, occupied)"""
        return self._occupancy_grouped_by(ParkingSpaceModel.zone)

    def _occupancy_grouped_by(self, column) -> Dict[str, Tuple[int, int]]:
        try:
            occupied = func.coalesce(
                func.sum(case((ParkingSpaceModel.is_occupied == True, 1), else_=0)), 0  # noqa: E712
            )
            rows = self.session.query(
                column, func.count(ParkingSpaceModel.space_id), occupied
            ).group_by(column).order_by(column).all()
            return {key: (int(total), int(busy)) for key, total, busy in rows}
        except SQLAlchemyError as e:
            self._logger.error(f"Database error getting occupancy stats: {e}")
            raise


class ParkingSessionRepository(SQLAlchemyRepository[ParkingSession]):
    """Repository for parking sessions"""

    ACTIVE_SESSION_INDEX = 'uq_active_session_per_plate'

    @property
    def model_class(self) -> Type[Base]:
        return ParkingSessionModel

    def to_domain(self, model: ParkingSessionModel) -> ParkingSession:
        return Mapper.session_to_domain(model)

    def to_orm(self, entity: ParkingSession) -> ParkingSessionModel:
        return Mapper.session_to_orm(entity)

    def add_active(self, session: ParkingSession) -> ParkingSession:
        """
        Insert an ACTIVE session unless the plate already has one

        The partial unique index makes the check and the insert one atomic
        step. Raises ActiveSessionExistsError on a duplicate; the caller must
        roll the transaction back.
        """
        try:
            return self.add(session)
        except IntegrityError as e:
            if self._is_active_session_conflict(e):
                raise ActiveSessionExistsError(
                    f"Vehicle {session.license_plate} already has an active parking session"
                ) from e
            raise

    def _is_active_session_conflict(self, error: IntegrityError) -> bool:
        detail = str(error.orig)
        return self.ACTIVE_SESSION_INDEX in detail or 'parking_sessions.license_plate' in detail

    def find_active_by_license_plate(self, license_plate: str) -> Optional[ParkingSession]:
        try:
            model = self.session.query(ParkingSessionModel).filter(
                ParkingSessionModel.license_plate == license_plate,
                ParkingSessionModel.status == SessionStatus.ACTIVE.value
            ).order_by(ParkingSessionModel.entry_time.desc()).first()
            return self.to_domain(model) if model else None
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding active session: {e}")
            raise

    def find_by_license_plate(self, license_plate: str) -> List[ParkingSession]:
        try:
            models = self.session.query(ParkingSessionModel).filter(
                ParkingSessionModel.license_plate == license_plate
            ).order_by(ParkingSessionModel.entry_time.desc()).all()
            return [self.to_domain(model) for model in models]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding sessions by license plate: {e}")
            raise

    def find_active(self) -> List[ParkingSession]:
        try:
            models = self.session.query(ParkingSessionModel).filter(
                ParkingSessionModel.status == SessionStatus.ACTIVE.value
            ).order_by(ParkingSessionModel.entry_time.desc()).all()
            return [self.to_domain(model) for model in models]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding active sessions: {e}")
            raise

    def find_by_criteria(
        self,
        license_plate: Optional[str] = None,
        vehicle_type: Optional[VehicleType] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        min_fee: Optional[Decimal] = None,
        max_fee: Optional[Decimal] = None,
    ) -> List[ParkingSession]:
        """Filter sessions by plate, vehicle class, entry window and fee range"""
        try:
            query = self.session.query(ParkingSessionModel)

            if license_plate:
                query = query.filter(ParkingSessionModel.license_plate == license_plate)

            if vehicle_type:
                query = query.join(
                    VehicleModel, VehicleModel.license_plate == ParkingSessionModel.license_plate
                ).filter(VehicleModel.vehicle_type == vehicle_type.value)

            if start_date:
                query = query.filter(ParkingSessionModel.entry_time >= start_date)
            if end_date:
                query = query.filter(ParkingSessionModel.entry_time <= end_date)

            if min_fee is not None:
                query = query.filter(ParkingSessionModel.fee >= min_fee)
            if max_fee is not None:
                query = query.filter(ParkingSessionModel.fee <= max_fee)

            models = query.order_by(
                ParkingSessionModel.entry_time.desc(), ParkingSessionModel.session_id
            ).all()
            return [self.to_domain(model) for model in models]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding sessions by criteria: {e}")
            raise

    def find_completed_with_fee(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ) -> List[ParkingSession]:
        try:
            query = self._in_entry_window(
                self.session.query(ParkingSessionModel).filter(
                    ParkingSessionModel.status == SessionStatus.COMPLETED.value,
                    ParkingSessionModel.fee.isnot(None)
                ),
                start_date, end_date
            )
            return [self.to_domain(model) for model in query.all()]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding completed sessions: {e}")
            raise

    def revenue_totals(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ) -> Tuple[int, Decimal]:
        """(completed session count, summed fee) for sessions entering in the window"""
        try:
            query = self._in_entry_window(
                self.session.query(
                    func.count(ParkingSessionModel.session_id),
                    func.coalesce(func.sum(ParkingSessionModel.fee), 0)
                ).filter(
                    ParkingSessionModel.status == SessionStatus.COMPLETED.value,
                    ParkingSessionModel.fee.isnot(None)
                ),
                start_date, end_date
            )
            count, total = query.one()
            return int(count or 0), Decimal(str(total or 0))
        except SQLAlchemyError as e:
            self._logger.error(f"Database error summing revenue: {e}")
            raise

    def entries_by_hour(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ) -> List[Tuple[int, int]]:
        """(hour of entry, session count), busiest hour first"""
        try:
            hour = extract('hour', ParkingSessionModel.entry_time)
            count = func.count(ParkingSessionModel.session_id)
            query = self._in_entry_window(
                self.session.query(hour, count), start_date, end_date
            ).group_by(hour).order_by(count.desc(), hour)
            return [(int(h), int(c)) for h, c in query.all()]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error grouping sessions by hour: {e}")
            raise

    @staticmethod
    def _in_entry_window(query, start_date: Optional[datetime], end_date: Optional[datetime]):
        if start_date:
            query = query.filter(ParkingSessionModel.entry_time >= start_date)
        if end_date:
            query = query.filter(ParkingSessionModel.entry_time <= end_date)
        return query


class ParkingRateRepository(SQLAlchemyRepository[ParkingRate]):
    """Repository for parking rates"""

    @property
    def model_class(self) -> Type[Base]:
        return ParkingRateModel

    def to_domain(self, model: ParkingRateModel) -> ParkingRate:
        return Mapper.rate_to_domain(model)

    def to_orm(self, entity: ParkingRate) -> ParkingRateModel:
        return Mapper.rate_to_orm(entity)

    def find_all(self) -> List[ParkingRate]:
        try:
            models = self.session.query(ParkingRateModel).order_by(
                ParkingRateModel.vehicle_type, ParkingRateModel.rate_kind,
                ParkingRateModel.effective_from.desc()
            ).all()
            return [self.to_domain(model) for model in models]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error getting all rates: {e}")
            raise

    def find_effective(
        self,
        at: datetime,
        vehicle_type: Optional[VehicleType] = None,
        rate_kind: Optional[RateKind] = None
    ) -> List[ParkingRate]:
        """Rules effective at the instant, most recently started first"""
        try:
            query = self.session.query(ParkingRateModel).filter(
                ParkingRateModel.effective_from <= at,
                ParkingRateModel.effective_until.is_(None)
            )
            if vehicle_type is not None:
                query = query.filter(ParkingRateModel.vehicle_type == vehicle_type.value)
            if rate_kind is not None:
                query = query.filter(ParkingRateModel.rate_kind == rate_kind.value)

            models = query.order_by(
                ParkingRateModel.vehicle_type,
                ParkingRateModel.effective_from.desc(),
                ParkingRateModel.rate_id
            ).all()
            return [self.to_domain(model) for model in models]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding effective rates: {e}")
            raise

    def find_exact(
        self,
        vehicle_type: VehicleType,
        rate_kind: RateKind,
        effective_from: datetime
    ) -> Optional[ParkingRate]:
        try:
            model = self.session.query(ParkingRateModel).filter(
                ParkingRateModel.vehicle_type == vehicle_type.value,
                ParkingRateModel.rate_kind == rate_kind.value,
                ParkingRateModel.effective_from == effective_from
            ).first()
            return self.to_domain(model) if model else None
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding rate: {e}")
            raise

    def expire(self, rate_id: str, at: datetime) -> int:
        """Close an open-ended rule at the instant; already expired rules are left alone"""
        try:
            result = self.session.query(ParkingRateModel).filter(
                ParkingRateModel.rate_id == rate_id,
                ParkingRateModel.effective_from < at,
                ParkingRateModel.effective_until.is_(None)
            ).update({'effective_until': at})
            self.session.flush()
            return result
        except SQLAlchemyError as e:
            self._logger.error(f"Database error expiring rate {rate_id}: {e}")
            raise


# ============================================================================
# UNIT OF WORK PATTERN
# ============================================================================

class UnitOfWork(ABC):
    """Unit of Work pattern for transaction management"""

    @abstractmethod
    def __enter__(self):
        pass

    @abstractmethod
    def __exit__(self, exc_type, exc_val, exc_tb):
        pass

    @abstractmethod
    def commit(self):
        """Commit the transaction"""
        pass

    @abstractmethod
    def rollback(self):
        """Rollback the transaction"""
        pass

    @property
    @abstractmethod
    def vehicles(self) -> VehicleRepository:
        pass

    @property
    @abstractmethod
    def spaces(self) -> ParkingSpaceRepository:
        pass

    @property
    @abstractmethod
    def sessions(self) -> ParkingSessionRepository:
        pass

    @property
    @abstractmethod
    def rates(self) -> ParkingRateRepository:
        pass


class SQLAlchemyUnitOfWork(UnitOfWork):
    """
    Unit of Work implementation with SQLAlchemy

    Re-entrant: entering an already open unit of work joins its transaction,
    and commit() in a nested scope is deferred to the outermost scope. Leaving
    the outermost scope rolls back anything not committed. A SQLAlchemyError
    escaping the outermost scope is re-raised as PersistenceError after the
    rollback.

    Transaction state is kept per thread: callers sharing one instance from
    different threads each get their own session, so one caller never joins
    or rolls back another caller's transaction.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory
        self._local = threading.local()
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    def session(self) -> Optional[Session]:
        return getattr(self._local, 'session', None)

    @property
    def _depth(self) -> int:
        return getattr(self._local, 'depth', 0)

    @property
    def is_active(self) -> bool:
        return self._depth > 0

    def __enter__(self):
        state = self._local
        if self._depth == 0:
            state.session = self.session_factory()
            state.vehicles = VehicleRepository(state.session)
            state.spaces = ParkingSpaceRepository(state.session)
            state.sessions = ParkingSessionRepository(state.session)
            state.rates = ParkingRateRepository(state.session)
        state.depth = self._depth + 1
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        state = self._local
        state.depth -= 1
        if state.depth > 0:
            return False

        try:
            if exc_type is not None:
                self._logger.error(f"Exception in unit of work: {exc_val}")
            self.rollback()
        finally:
            state.session.close()
            state.session = None

        if exc_type is not None and issubclass(exc_type, SQLAlchemyError):
            raise PersistenceError(f"Database operation failed: {exc_val}") from exc_val
        return False

    def commit(self):
        """Commit the transaction (deferred while nested)"""
        self._require_active()
        if self._depth > 1:
            self._logger.debug("Commit deferred to the outer unit of work")
            return
        try:
            self.session.commit()
            self._logger.debug("Transaction committed")
        except SQLAlchemyError as e:
            self._logger.error(f"Error committing transaction: {e}")
            self.session.rollback()
            raise

    def rollback(self):
        """Rollback the whole transaction, whatever the nesting depth"""
        self._require_active()
        self.session.rollback()
        self._logger.debug("Transaction rolled back")

    def _require_active(self):
        if self.session is None:
            raise RuntimeError("Unit of work is not active; use it as a context manager")

    @property
    def vehicles(self) -> VehicleRepository:
        self._require_active()
        return self._local.vehicles

    @property
    def spaces(self) -> ParkingSpaceRepository:
        self._require_active()
        return self._local.spaces

    @property
    def sessions(self) -> ParkingSessionRepository:
        self._require_active()
        return self._local.sessions

    @property
    def rates(self) -> ParkingRateRepository:
        self._require_active()
        return self._local.rates


# ============================================================================
# REPOSITORY FACTORY
# ============================================================================

class RepositoryFactory:
    """Factory for engines and units of work"""

    @staticmethod
    def create_engine(database_url: str, echo: bool = False) -> Engine:
        """
        Create an engine; SQLite gets foreign keys

        In-memory SQLite uses one shared connection, so it suits single-threaded
        use and tests; concurrent callers need a file or server database.
        """
        kwargs: Dict[str, Any] = {"echo": echo}
        is_sqlite = database_url.startswith("sqlite")
        if is_sqlite:
            kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in database_url:
                kwargs["poolclass"] = StaticPool

        engine = create_engine(database_url, **kwargs)

        if is_sqlite:
            @event.listens_for(engine, "connect")
            def _enable_foreign_keys(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

        return engine

    @staticmethod
    def create_schema(engine: Engine) -> None:
        Base.metadata.create_all(bind=engine)

    @staticmethod
    def create_sqlalchemy_uow(
        database_url: str,
        echo: bool = False,
        create_schema: bool = True
    ) -> SQLAlchemyUnitOfWork:
        """Create SQLAlchemy Unit of Work"""
        engine = RepositoryFactory.create_engine(database_url, echo=echo)
        if create_schema:
            RepositoryFactory.create_schema(engine)

        SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        return SQLAlchemyUnitOfWork(SessionLocal)
