import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from core.metrics import track_performance
from core.prometheus_metrics import prometheus_collector
from models.block import BlockStatus
from models.vehicle import VehicleStatus
from services.data_access import QueryStrategy
from services.exceptions import (
    BlockAlreadyCompletedError,
    BlockOverlapError,
    NotFoundError,
    StoreError,
)
from services.status_sync import VehicleStatusSynchronizer
from services.validators import FleetRules, utc_naive, utc_now

logger = logging.getLogger(__name__)

STATUS_SYNC_WARNING = (
    "The block was saved but the vehicle status could not be updated; "
    "it will be corrected by reconciliation."
)


class BlockScheduler:
    """
    Business logic for time-bounded vehicle blocks (maintenance or administrative holds).

    This service provides:
    - Block listings enriched with vehicle and creator details
    - Creation and edition with half-open overlap checking per vehicle
    - Early completion with a guarded return of the vehicle to availability
    - Read-time overlap detection and the sweep of elapsed blocks

    Creating or completing a block is two writes on two tables: the block row
    and the vehicle status. The block row is the source of truth and is never
    rolled back when the status step fails; the failure is reported in the
    result's `warnings` and the synchronizer's reconciliation repairs it.
    """

    def __init__(self, strategy: QueryStrategy, synchronizer: Optional[VehicleStatusSynchronizer] = None):
        """
        Initializes the scheduler.

        Args:
            strategy (QueryStrategy): Data access path chosen at startup
            synchronizer (VehicleStatusSynchronizer, optional): Status writer,
                built on the same strategy when omitted
        """
        self.strategy = strategy
        self.synchronizer = synchronizer or VehicleStatusSynchronizer(strategy)

    def now(self) -> datetime:
        """Current time as naive UTC, the single clock for completion timestamps."""
        return utc_now()

    @track_performance(service_name="BlockScheduler")
    async def list_all(self) -> List[Dict]:
        """All blocks, active and historical, newest start first."""
        return await self.strategy.list_blocks()

    @track_performance(service_name="BlockScheduler")
    async def list_for_vehicle(self, vehicle_id: int) -> List[Dict]:
        """Blocks of one vehicle, newest start first."""
        return await self.strategy.list_blocks(vehicle_id=vehicle_id)

    @track_performance(service_name="BlockScheduler")
    async def get(self, block_id: int) -> Dict:
        block = await self.strategy.get_block(block_id)
        if block is None:
            raise NotFoundError("Block not found.")
        return block

    @track_performance(service_name="BlockScheduler")
    async def create(
        self,
        vehicle_id: int,
        start_date: datetime,
        end_date: datetime,
        reason: str,
        actor_id: Optional[int] = None,
    ) -> Dict:
        """
        Blocks a vehicle for a period and marks it blocked.

        Args:
            vehicle_id (int): Vehicle to block
            start_date (datetime): Start of the block
            end_date (datetime): End of the block, strictly after start_date
            reason (str): Why the vehicle is held, at least 10 characters once trimmed
            actor_id (int, optional): User creating the block

        Returns:
            dict: The created block with vehicle and creator details, plus a
                  `warnings` list that is non-empty when the status step failed

        Raises:
            ValidationError: Bad period or reason
            NotFoundError: Unknown vehicle
            BlockOverlapError: An active block of the vehicle intersects the period

        Algorithm:
            1. Validate period, reason and vehicle
            2. Reject when an active block satisfies existing.start < end and start < existing.end
            3. Insert the block (active); an actor id naming no user is stored as no creator
            4. Set the vehicle blocked and reconcile; failures become warnings
        """
        start, end = FleetRules.validate_block_period(start_date, end_date)
        reason = FleetRules.normalize_reason(reason)

        vehicle = await self.strategy.get_vehicle(vehicle_id)
        if vehicle is None:
            raise NotFoundError("Vehicle not found.", "vehicle_id")

        await self._ensure_no_overlap(vehicle_id, start, end)

        blocked_by = await self._known_actor(actor_id)
        block = await self.strategy.insert_block(vehicle_id, start, end, reason, blocked_by)
        logger.info(
            f"Block {block['id']} created for vehicle {vehicle['plate_number']}",
            extra={"block_id": block["id"], "vehicle_id": vehicle_id, "actor_id": actor_id},
        )

        block["warnings"] = await self._sync_after_block_created(vehicle_id)
        return block

    @track_performance(service_name="BlockScheduler")
    async def update(self, block_id: int, start_date: datetime, end_date: datetime, reason: str) -> Dict:
        """
        Changes the period and reason of an active block.

        The vehicle of a block never changes. The overlap check ignores the
        block being edited.
        """
        existing = await self.strategy.get_block(block_id)
        if existing is None:
            raise NotFoundError("Block not found.")
        if existing["status"] == BlockStatus.COMPLETED:
            raise BlockAlreadyCompletedError("Completed blocks cannot be edited.")

        start, end = FleetRules.validate_block_period(start_date, end_date)
        reason = FleetRules.normalize_reason(reason)

        await self._ensure_no_overlap(existing["vehicle_id"], start, end, exclude_block_id=block_id)

        if not await self.strategy.update_block(block_id, start, end, reason):
            raise BlockAlreadyCompletedError("Completed blocks cannot be edited.")

        block = await self.strategy.get_block(block_id)
        block["warnings"] = await self._reconcile_quietly(existing["vehicle_id"], "block_update")
        return block

    @track_performance(service_name="BlockScheduler")
    async def complete(self, block_id: int, now: Optional[datetime] = None) -> Dict:
        """
        Ends a block now and returns the vehicle to availability.

        Completing twice is an error, not a no-op. The vehicle is only set
        available while it is still blocked and has no other active block.

        Returns:
            dict: The completed block plus a `warnings` list

        Raises:
            NotFoundError: Unknown block
            BlockAlreadyCompletedError: The block is already completed
        """
        block = await self.strategy.get_block(block_id)
        if block is None:
            raise NotFoundError("Block not found.")
        if block["status"] == BlockStatus.COMPLETED:
            raise BlockAlreadyCompletedError("This block has already been completed.")

        ended_at = utc_naive(now, "end_date") if now is not None else self.now()
        if not await self.strategy.complete_block(block_id, end_date=ended_at):
            # Lost a race with another completion
            raise BlockAlreadyCompletedError("This block has already been completed.")

        logger.info(
            f"Block {block_id} completed",
            extra={"block_id": block_id, "vehicle_id": block["vehicle_id"], "ended_at": ended_at.isoformat()},
        )

        completed = await self.strategy.get_block(block_id)
        completed["warnings"] = await self._sync_after_block_completed(block["vehicle_id"])
        return completed

    @track_performance(service_name="BlockScheduler")
    async def complete_elapsed(self, now: Optional[datetime] = None) -> Dict:
        """
        Completes every active block whose end date has passed.

        Elapsed blocks keep their scheduled end date. Each affected vehicle is
        synchronized once.

        Returns:
            dict: {"completed": [blocks], "warnings": [messages]}
        """
        cutoff = utc_naive(now, "now") if now is not None else self.now()
        completed_ids = []
        for block in await self.strategy.elapsed_active_blocks(cutoff):
            if await self.strategy.complete_block(block["id"]):
                completed_ids.append(block["id"])

        completed = [await self.strategy.get_block(block_id) for block_id in completed_ids]
        warnings = []
        for vehicle_id in sorted({block["vehicle_id"] for block in completed}):
            warnings.extend(await self._sync_after_block_completed(vehicle_id))

        if completed_ids:
            logger.info(f"Completed {len(completed_ids)} elapsed block(s)", extra={"block_ids": completed_ids})
        return {"completed": completed, "warnings": warnings}

    @track_performance(service_name="BlockScheduler")
    async def detect_overlaps(self) -> List[Dict]:
        """
        Finds overlapping active blocks on the same vehicle.

        Two concurrent creates can both pass the overlap check before either
        inserts; listing the pairs from current state is how that race is
        surfaced for repair.

        Returns:
            list[dict]: One entry per overlapping pair with vehicle, block ids and both intervals
        """
        pairs = await self.strategy.overlapping_block_pairs()
        if pairs:
            logger.warning(
                f"Found {len(pairs)} overlapping active block pair(s)",
                extra={"pairs": [(p["block_id"], p["other_block_id"]) for p in pairs]},
            )
        return [
            {
                "vehicle_id": p["vehicle_id"],
                "vehicle_plate": p["vehicle_plate"],
                "block_ids": [p["block_id"], p["other_block_id"]],
                "overlap": (p["start1"], p["end1"], p["start2"], p["end2"]),
            }
            for p in pairs
        ]

    async def _known_actor(self, actor_id: Optional[int]) -> Optional[int]:
        if actor_id is None:
            return None
        if await self.strategy.get_user(actor_id) is None:
            logger.warning(
                f"Actor {actor_id} is not a known user; block stored without creator",
                extra={"actor_id": actor_id},
            )
            return None
        return actor_id

    async def _ensure_no_overlap(
        self,
        vehicle_id: int,
        start: datetime,
        end: datetime,
        exclude_block_id: Optional[int] = None,
    ):
        overlapping = await self.strategy.find_overlapping_blocks(
            vehicle_id, start, end, exclude_block_id=exclude_block_id
        )
        if overlapping:
            raise BlockOverlapError("This vehicle already has an active block in that period.", "start_date")

    async def _sync_after_block_created(self, vehicle_id: int) -> List[str]:
        try:
            await self.synchronizer.set_blocked(vehicle_id)
        except (StoreError, SQLAlchemyError, NotFoundError) as e:
            logger.error(f"Error updating vehicle {vehicle_id} status after block creation: {e}")
            prometheus_collector.record_partial_failure("block_create")
            return [STATUS_SYNC_WARNING]
        return await self._reconcile_quietly(vehicle_id, "block_create")

    async def _sync_after_block_completed(self, vehicle_id: int) -> List[str]:
        try:
            if await self.strategy.count_active_blocks(vehicle_id) == 0:
                await self.synchronizer.set_available(vehicle_id, expected_prior_status=VehicleStatus.BLOCKED)
        except (StoreError, SQLAlchemyError, NotFoundError) as e:
            logger.error(f"Error updating vehicle {vehicle_id} status after block completion: {e}")
            prometheus_collector.record_partial_failure("block_complete")
            return [STATUS_SYNC_WARNING]
        return await self._reconcile_quietly(vehicle_id, "block_complete")

    async def _reconcile_quietly(self, vehicle_id: int, operation: str) -> List[str]:
        try:
            await self.synchronizer.reconcile(vehicle_id)
        except (StoreError, SQLAlchemyError, NotFoundError) as e:
            logger.error(f"Reconciliation of vehicle {vehicle_id} failed after {operation}: {e}")
            prometheus_collector.record_partial_failure(operation)
            return [STATUS_SYNC_WARNING]
        return []
