"""
Data access strategies for the fleet store.

The store offers plain row CRUD and, when installed, a set of server-side
functions (see core/procedures.py). Two interchangeable strategies sit behind
the same interface:

- QueryStrategy composes every operation from primitive ORM reads and writes.
- ProcedureStrategy tries the server-side function first and falls back to the
  QueryStrategy behaviour when the function is missing, fails for
  infrastructure reasons or returns nothing usable.

Which one a request gets is decided once at startup by `choose_data_path`,
never per call. Every write commits on its own: the store gives no atomicity
across tables, and a finished step must stay durable when a later one fails.
"""

import logging
import re
from datetime import datetime
from functools import wraps
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import select, update, delete, func, and_, text
from sqlalchemy.exc import DBAPIError, OperationalError, InterfaceError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased, join

from core.procedures import PROCEDURES
from core.prometheus_metrics import prometheus_collector
from models.block import Block, BlockStatus
from models.user import User, UserRole
from models.vehicle import Vehicle
from services.exceptions import (
    ConflictError,
    NotFoundError,
    ProcedureUnavailableError,
    TransientStoreError,
    ValidationError,
)

logger = logging.getLogger(__name__)

UNDEFINED_FUNCTION = "42883"
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
VALIDATION_STATES = ("23502", "23514", "P0001")


def _sqlstate(error: DBAPIError) -> Optional[str]:
    orig = getattr(error, "orig", None)
    for candidate in (orig, getattr(orig, "__cause__", None)):
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return code
    return None


def _driver_message(error: DBAPIError) -> str:
    cause = getattr(error.orig, "__cause__", None)
    return getattr(cause, "message", None) or str(error.orig)


def _violated_column(error: DBAPIError) -> Optional[str]:
    """Column named in a constraint violation detail such as 'Key (vehicle_id)=(7) is not present...'."""
    for candidate in (error.orig, getattr(error.orig, "__cause__", None)):
        detail = getattr(candidate, "detail", None) or ""
        match = re.search(r"Key \((\w+)\)", detail)
        if match:
            return match.group(1)
    return None


def classify_store_error(error: DBAPIError) -> Optional[Exception]:
    """
    Maps a driver error onto the fleet error kinds.

    Returns None when the error does not belong to a known kind; the caller
    then re-raises the original exception.
    """
    code = _sqlstate(error)
    if code == UNDEFINED_FUNCTION:
        return ProcedureUnavailableError(str(error.orig))
    if code == UNIQUE_VIOLATION:
        return ConflictError("A record with the same unique value already exists.")
    if code == FOREIGN_KEY_VIOLATION:
        column = _violated_column(error)
        if column:
            return NotFoundError(f"The record referenced by {column} does not exist.", column)
        return NotFoundError("A referenced record does not exist.")
    if code in VALIDATION_STATES or (code or "").startswith("22"):
        return ValidationError(_driver_message(error))
    if isinstance(error, (OperationalError, InterfaceError)) or error.connection_invalidated:
        return TransientStoreError(f"Store unavailable: {error.orig}")
    if (code or "").startswith(("08", "53", "57P")):
        return TransientStoreError(f"Store unavailable: {error.orig}")
    return None


def translate_store_errors(func):
    """Rolls the session back on driver errors and re-raises them as fleet errors."""
    @wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except DBAPIError as e:
            await self.db.rollback()
            mapped = classify_store_error(e)
            if mapped is None:
                raise
            raise mapped from e
    return wrapper


def vehicle_record(row: Dict[str, Any]) -> Dict[str, Any]:
    """Vehicle shape shared by both data paths."""
    return dict(
        id=row["id"],
        plate_number=row["plate_number"],
        model=row["model"],
        year=row["year"],
        status=row["status"],
        assigned_to=row["assigned_to"],
        driver_name=row.get("driver_name"),
        driver_email=row.get("driver_email"),
        driver_phone=row.get("driver_phone"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def block_record(block: Block, plate: Optional[str], model: Optional[str], blocker_name: Optional[str]) -> Dict[str, Any]:
    return dict(
        id=block.id,
        vehicle_id=block.vehicle_id,
        start_date=block.start_date,
        end_date=block.end_date,
        reason=block.reason,
        status=block.status,
        blocked_by=block.blocked_by,
        vehicle_plate=plate,
        vehicle_model=model,
        blocked_by_name=blocker_name,
        created_at=block.created_at,
    )


def calendar_record(row: Dict[str, Any]) -> Dict[str, Any]:
    return dict(
        id=row["id"],
        vehicle_id=row["vehicle_id"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        reason=row["reason"],
        vehicle_plate=row["vehicle_plate"],
        created_by=row["created_by"],
    )


class QueryStrategy:
    """
    Composed-query data path: every operation built from primitive reads and writes.

    This is also the reference behaviour ProcedureStrategy falls back to.
    """

    uses_procedures = False

    def __init__(self, db: AsyncSession):
        self.db = db

    # Vehicles

    def _vehicle_select(self):
        return (
            select(
                Vehicle.id,
                Vehicle.plate_number,
                Vehicle.model,
                Vehicle.year,
                Vehicle.status,
                Vehicle.assigned_to,
                User.name.label("driver_name"),
                User.email.label("driver_email"),
                User.phone.label("driver_phone"),
                Vehicle.created_at,
                Vehicle.updated_at,
            )
            .outerjoin(User, User.id == Vehicle.assigned_to)
        )

    @translate_store_errors
    async def list_vehicles(self) -> List[Dict]:
        result = await self.db.execute(self._vehicle_select().order_by(Vehicle.plate_number))
        return [vehicle_record(row) for row in result.mappings().all()]

    @translate_store_errors
    async def get_vehicle(self, vehicle_id: int) -> Optional[Dict]:
        result = await self.db.execute(self._vehicle_select().where(Vehicle.id == vehicle_id))
        row = result.mappings().first()
        return vehicle_record(row) if row else None

    @translate_store_errors
    async def search_vehicles(self, search_text: str) -> List[Dict]:
        stmt = (
            self._vehicle_select()
            .where(
                Vehicle.plate_number.icontains(search_text, autoescape=True)
                | Vehicle.model.icontains(search_text, autoescape=True)
            )
            .order_by(Vehicle.plate_number)
        )
        result = await self.db.execute(stmt)
        return [vehicle_record(row) for row in result.mappings().all()]

    @translate_store_errors
    async def find_vehicle_id_by_plate(self, plate_number: str) -> Optional[int]:
        result = await self.db.execute(
            select(Vehicle.id).where(Vehicle.plate_number == plate_number)
        )
        return result.scalar_one_or_none()

    @translate_store_errors
    async def list_vehicle_ids(self) -> List[int]:
        result = await self.db.execute(select(Vehicle.id).order_by(Vehicle.id))
        return list(result.scalars().all())

    @translate_store_errors
    async def insert_vehicle(self, plate_number: str, model: str, year: int, actor_id: Optional[int] = None) -> Dict:
        vehicle = Vehicle(
            plate_number=plate_number,
            model=model,
            year=year,
            status="available",
            assigned_to=None,
        )
        self.db.add(vehicle)
        await self.db.commit()
        logger.info(f"Vehicle {plate_number} created", extra={"vehicle_id": vehicle.id, "actor_id": actor_id})
        return await self.get_vehicle(vehicle.id)

    @translate_store_errors
    async def update_vehicle_fields(self, vehicle_id: int, fields: Dict[str, Any]) -> bool:
        if not fields:
            return True
        result = await self.db.execute(
            update(Vehicle)
            .where(Vehicle.id == vehicle_id)
            .values(**fields, updated_at=func.now())
        )
        await self.db.commit()
        return result.rowcount > 0

    @translate_store_errors
    async def delete_vehicle(self, vehicle_id: int) -> bool:
        result = await self.db.execute(delete(Vehicle).where(Vehicle.id == vehicle_id))
        await self.db.commit()
        return result.rowcount > 0

    @translate_store_errors
    async def write_vehicle_status(
        self,
        vehicle_id: int,
        status: str,
        assigned_to: Optional[int] = None,
        expected_status: Optional[str] = None,
    ) -> bool:
        """Writes status and assigned_to together; with expected_status only if the row still holds it."""
        conditions = [Vehicle.id == vehicle_id]
        if expected_status is not None:
            conditions.append(Vehicle.status == expected_status)
        result = await self.db.execute(
            update(Vehicle)
            .where(*conditions)
            .values(status=status, assigned_to=assigned_to, updated_at=func.now())
        )
        await self.db.commit()
        return result.rowcount > 0

    async def assign_vehicle(self, vehicle_id: int, driver_id: int, actor_id: Optional[int] = None) -> bool:
        return await self.write_vehicle_status(vehicle_id, "assigned", assigned_to=driver_id)

    # Users

    @translate_store_errors
    async def get_user(self, user_id: int) -> Optional[Dict]:
        user = await self.db.get(User, user_id)
        if user is None:
            return None
        return dict(id=user.id, name=user.name, email=user.email, phone=user.phone, role=user.role)

    @translate_store_errors
    async def list_drivers(self) -> List[Dict]:
        result = await self.db.execute(
            select(User).where(User.role == UserRole.DRIVER).order_by(User.name)
        )
        return [
            dict(id=u.id, name=u.name, email=u.email, phone=u.phone, role=u.role)
            for u in result.scalars().all()
        ]

    # Blocks

    def _block_select(self):
        blocker = aliased(User)
        return (
            select(Block, Vehicle.plate_number, Vehicle.model, blocker.name)
            .outerjoin(Vehicle, Vehicle.id == Block.vehicle_id)
            .outerjoin(blocker, blocker.id == Block.blocked_by)
            # Status writes go through bulk UPDATEs; never serve a stale identity-map row
            .execution_options(populate_existing=True)
        )

    @translate_store_errors
    async def list_blocks(self, vehicle_id: Optional[int] = None) -> List[Dict]:
        stmt = self._block_select()
        if vehicle_id is not None:
            stmt = stmt.where(Block.vehicle_id == vehicle_id)
        stmt = stmt.order_by(Block.start_date.desc(), Block.id.desc())
        result = await self.db.execute(stmt)
        return [block_record(*row) for row in result.all()]

    @translate_store_errors
    async def get_block(self, block_id: int) -> Optional[Dict]:
        result = await self.db.execute(self._block_select().where(Block.id == block_id))
        row = result.first()
        return block_record(*row) if row else None

    @translate_store_errors
    async def find_overlapping_blocks(
        self,
        vehicle_id: int,
        start_date: datetime,
        end_date: datetime,
        exclude_block_id: Optional[int] = None,
    ) -> List[Dict]:
        """Active blocks of the vehicle whose [start, end) intersects the given interval."""
        conditions = [
            Block.vehicle_id == vehicle_id,
            Block.status == BlockStatus.ACTIVE,
            Block.start_date < end_date,
            Block.end_date > start_date,
        ]
        if exclude_block_id is not None:
            conditions.append(Block.id != exclude_block_id)
        result = await self.db.execute(
            self._block_select().where(*conditions).order_by(Block.start_date)
        )
        return [block_record(*row) for row in result.all()]

    @translate_store_errors
    async def count_active_blocks(self, vehicle_id: int, exclude_block_id: Optional[int] = None) -> int:
        conditions = [Block.vehicle_id == vehicle_id, Block.status == BlockStatus.ACTIVE]
        if exclude_block_id is not None:
            conditions.append(Block.id != exclude_block_id)
        result = await self.db.execute(select(func.count(Block.id)).where(*conditions))
        return result.scalar() or 0

    @translate_store_errors
    async def overlapping_block_pairs(self) -> List[Dict]:
        """Self-join of active blocks on the same vehicle with intersecting intervals."""
        b1 = aliased(Block)
        b2 = aliased(Block)
        stmt = (
            select(
                Vehicle.id.label("vehicle_id"),
                Vehicle.plate_number.label("vehicle_plate"),
                b1.id.label("block_id"),
                b2.id.label("other_block_id"),
                b1.start_date.label("start1"),
                b1.end_date.label("end1"),
                b2.start_date.label("start2"),
                b2.end_date.label("end2"),
            )
            .select_from(
                join(b1, b2, b1.vehicle_id == b2.vehicle_id)
                .join(Vehicle, Vehicle.id == b1.vehicle_id)
            )
            .where(
                b1.id < b2.id,
                b1.status == BlockStatus.ACTIVE,
                b2.status == BlockStatus.ACTIVE,
                b1.start_date < b2.end_date,
                b2.start_date < b1.end_date,
            )
            .order_by(Vehicle.plate_number, b1.id, b2.id)
        )
        result = await self.db.execute(stmt)
        return [dict(row) for row in result.mappings().all()]

    @translate_store_errors
    async def elapsed_active_blocks(self, now: datetime) -> List[Dict]:
        result = await self.db.execute(
            self._block_select()
            .where(Block.status == BlockStatus.ACTIVE, Block.end_date <= now)
            .order_by(Block.end_date, Block.id)
        )
        return [block_record(*row) for row in result.all()]

    @translate_store_errors
    async def insert_block(
        self,
        vehicle_id: int,
        start_date: datetime,
        end_date: datetime,
        reason: str,
        actor_id: Optional[int] = None,
    ) -> Dict:
        block = Block(
            vehicle_id=vehicle_id,
            start_date=start_date,
            end_date=end_date,
            reason=reason,
            status=BlockStatus.ACTIVE,
            blocked_by=actor_id,
        )
        self.db.add(block)
        await self.db.commit()
        return await self.get_block(block.id)

    @translate_store_errors
    async def update_block(self, block_id: int, start_date: datetime, end_date: datetime, reason: str) -> bool:
        result = await self.db.execute(
            update(Block)
            .where(Block.id == block_id, Block.status == BlockStatus.ACTIVE)
            .values(start_date=start_date, end_date=end_date, reason=reason)
        )
        await self.db.commit()
        return result.rowcount > 0

    @translate_store_errors
    async def complete_block(self, block_id: int, end_date: Optional[datetime] = None) -> bool:
        """Marks an active block completed; False when it was no longer active."""
        values = {"status": BlockStatus.COMPLETED}
        if end_date is not None:
            values["end_date"] = end_date
        result = await self.db.execute(
            update(Block)
            .where(Block.id == block_id, Block.status == BlockStatus.ACTIVE)
            .values(**values)
        )
        await self.db.commit()
        return result.rowcount > 0

    # Calendar

    @translate_store_errors
    async def calendar_blocks(self, start_date: datetime, end_date: datetime) -> List[Dict]:
        blocker = aliased(User)
        stmt = (
            select(
                Block.id,
                Block.vehicle_id,
                Block.start_date.label("start_time"),
                Block.end_date.label("end_time"),
                Block.reason,
                Vehicle.plate_number.label("vehicle_plate"),
                blocker.name.label("created_by"),
            )
            .join(Vehicle, Vehicle.id == Block.vehicle_id)
            .outerjoin(blocker, blocker.id == Block.blocked_by)
            .where(
                and_(
                    Block.status == BlockStatus.ACTIVE,
                    Block.end_date >= start_date,
                    Block.start_date <= end_date,
                )
            )
            .order_by(Block.start_date, Block.id)
        )
        result = await self.db.execute(stmt)
        return [calendar_record(row) for row in result.mappings().all()]


class ProcedureCaller:
    """Invokes catalogued PostgreSQL functions inside a savepoint."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def call(self, name: str, params: Dict[str, Any]) -> Optional[List[Dict]]:
        if name not in PROCEDURES:
            raise ProcedureUnavailableError(f"Unknown procedure {name}")

        args = ", ".join(f"{key} => :{key}" for key in params)
        stmt = text(f"SELECT * FROM {name}({args})")

        try:
            async with self.db.begin_nested():
                result = await self.db.execute(stmt, params)
                rows = [dict(row) for row in result.mappings().all()]
            await self.db.commit()
        except DBAPIError as e:
            mapped = classify_store_error(e)
            if mapped is None:
                raise
            raise mapped from e
        return rows


class ProcedureStrategy(QueryStrategy):
    """
    Procedure-first data path.

    Overrides the operations that have a server-side function; the rest are
    inherited from QueryStrategy unchanged.
    """

    uses_procedures = True

    def __init__(self, db: AsyncSession, procedures: Optional[ProcedureCaller] = None):
        super().__init__(db)
        self.procedures = procedures or ProcedureCaller(db)

    async def execute(
        self,
        operation_name: str,
        params: Dict[str, Any],
        fallback: Callable[[], Awaitable[Any]],
        accept: Optional[Callable[[List[Dict]], bool]] = None,
        transform: Optional[Callable[[List[Dict]], Any]] = None,
    ) -> Any:
        """
        Runs `operation_name` on the server, or `fallback()` when it is unusable.

        The fallback only starts after the procedure attempt has finished.
        Validation, conflict and unknown driver errors propagate unchanged.

        Args:
            operation_name: Catalogued function name
            params: Named arguments for the function
            fallback: Coroutine factory producing the same result through plain queries
            accept: Predicate on the returned rows; rejected rows trigger the fallback
            transform: Maps accepted rows onto the shape the fallback returns

        Returns:
            The transformed procedure rows or the fallback result
        """
        accept = accept or (lambda rows: rows is not None)
        try:
            rows = await self.procedures.call(operation_name, params)
        except ProcedureUnavailableError as e:
            reason = "unavailable"
            detail = str(e)
        except TransientStoreError as e:
            reason = "transient"
            detail = str(e)
        else:
            if accept(rows):
                return transform(rows) if transform else rows
            reason = "empty"
            detail = "no usable result"

        logger.warning(
            f"Procedure {operation_name} unusable ({reason}), falling back to queries",
            extra={"operation": operation_name, "reason": reason, "detail": detail},
        )
        prometheus_collector.record_fallback(operation_name, reason)
        return await fallback()

    async def list_vehicles(self) -> List[Dict]:
        return await self.execute(
            "get_all_vehicles_summary",
            {},
            fallback=super().list_vehicles,
            transform=lambda rows: [vehicle_record(r) for r in rows],
        )

    async def get_vehicle(self, vehicle_id: int) -> Optional[Dict]:
        fallback = super().get_vehicle
        return await self.execute(
            "get_vehicle_details",
            {"vehicle_id": vehicle_id},
            fallback=lambda: fallback(vehicle_id),
            accept=bool,
            transform=lambda rows: vehicle_record(rows[0]),
        )

    async def search_vehicles(self, search_text: str) -> List[Dict]:
        fallback = super().search_vehicles
        return await self.execute(
            "search_vehicles",
            {"search_text": search_text},
            fallback=lambda: fallback(search_text),
            transform=lambda rows: [vehicle_record(r) for r in rows],
        )

    async def insert_vehicle(self, plate_number: str, model: str, year: int, actor_id: Optional[int] = None) -> Dict:
        fallback = super().insert_vehicle
        new_id = await self.execute(
            "add_vehicle",
            {"plate": plate_number, "model_name": model, "year_val": year, "admin_id": actor_id},
            fallback=lambda: fallback(plate_number, model, year, actor_id),
            accept=lambda rows: bool(rows) and rows[0].get("add_vehicle") is not None,
            transform=lambda rows: rows[0]["add_vehicle"],
        )
        if isinstance(new_id, dict):
            return new_id
        return await super().get_vehicle(new_id)

    async def assign_vehicle(self, vehicle_id: int, driver_id: int, actor_id: Optional[int] = None) -> bool:
        fallback = super().assign_vehicle
        return await self.execute(
            "assign_vehicle_to_driver",
            {"v_id": vehicle_id, "d_id": driver_id, "admin_id": actor_id},
            fallback=lambda: fallback(vehicle_id, driver_id, actor_id),
            accept=lambda rows: bool(rows) and rows[0].get("assign_vehicle_to_driver") is not None,
            transform=lambda rows: bool(rows[0]["assign_vehicle_to_driver"]),
        )

    async def insert_block(
        self,
        vehicle_id: int,
        start_date: datetime,
        end_date: datetime,
        reason: str,
        actor_id: Optional[int] = None,
    ) -> Dict:
        fallback = super().insert_block
        block_id = await self.execute(
            "block_vehicle",
            {
                "v_id": vehicle_id,
                "admin_id": actor_id,
                "start_time": start_date,
                "end_time": end_date,
                "block_reason": reason,
            },
            fallback=lambda: fallback(vehicle_id, start_date, end_date, reason, actor_id),
            accept=lambda rows: bool(rows) and rows[0].get("block_vehicle") is not None,
            transform=lambda rows: rows[0]["block_vehicle"],
        )
        if isinstance(block_id, dict):
            return block_id
        return await super().get_block(block_id)

    async def calendar_blocks(self, start_date: datetime, end_date: datetime) -> List[Dict]:
        fallback = super().calendar_blocks
        return await self.execute(
            "get_calendar_events_optimized",
            {"start_date": start_date, "end_date": end_date},
            fallback=lambda: fallback(start_date, end_date),
            transform=lambda rows: [calendar_record(r) for r in rows],
        )


async def probe_procedures(db: AsyncSession) -> bool:
    """Reports whether every catalogued function is installed in the connected database."""
    if db.get_bind().dialect.name != "postgresql":
        return False
    try:
        result = await db.execute(
            text("SELECT proname FROM pg_proc WHERE proname = ANY(:names)"),
            {"names": list(PROCEDURES)},
        )
    except DBAPIError as e:
        logger.warning(f"Procedure probe failed, using composed queries: {e}")
        await db.rollback()
        return False
    found = set(result.scalars().all())
    missing = sorted(set(PROCEDURES) - found)
    if missing:
        logger.info(f"Procedures missing, using composed queries: {', '.join(missing)}")
        return False
    return True


async def choose_data_path(db: AsyncSession, mode: str = "auto") -> bool:
    """Decides once whether requests use the procedure path."""
    if mode == "on":
        return True
    if mode == "off":
        return False
    return await probe_procedures(db)


def build_strategy(db: AsyncSession, use_procedures: bool) -> QueryStrategy:
    if use_procedures:
        return ProcedureStrategy(db)
    return QueryStrategy(db)
