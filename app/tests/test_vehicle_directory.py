"""
Tests for VehicleDirectory (services/vehicle_directory.py).
"""

from datetime import timedelta

import pytest

from conftest import T0
from models.vehicle import VehicleStatus
from services.exceptions import (
    DuplicatePlateError,
    NotFoundError,
    ValidationError,
    VehicleInUseError,
)


class TestReads:

    @pytest.mark.asyncio
    async def test_get_unknown_vehicle(self, directory):
        with pytest.raises(NotFoundError):
            await directory.get(999)

    @pytest.mark.asyncio
    async def test_blank_search_lists_everything(self, directory, make_vehicle):
        await make_vehicle(plate_number="AAA1111")
        await make_vehicle(plate_number="BBB2222")

        assert await directory.search("   ") == await directory.list()
        assert len(await directory.search(None)) == 2

    @pytest.mark.asyncio
    async def test_search_matches_plate_or_model(self, directory, make_vehicle):
        await make_vehicle(plate_number="AAA1111", model="Fiat Strada")
        await make_vehicle(plate_number="BBB2222", model="VW Saveiro")

        by_plate = await directory.search("bbb")
        by_model = await directory.search(" STRADA")

        assert [v["plate_number"] for v in by_plate] == ["BBB2222"]
        assert [v["plate_number"] for v in by_model] == ["AAA1111"]

    @pytest.mark.asyncio
    async def test_search_keeps_surrounding_spaces(self, directory, make_vehicle):
        await make_vehicle(plate_number="ABC1D23", model="Fiat Strada")

        assert await directory.search(" 1D") == []
        assert await directory.search("Strada ") == []
        assert len(await directory.search("Fiat S")) == 1

    @pytest.mark.asyncio
    async def test_list_drivers_excludes_admins(self, directory, driver_user, admin_user):
        drivers = await directory.list_drivers()

        assert [d["id"] for d in drivers] == [driver_user.id]


class TestCreate:

    @pytest.mark.asyncio
    async def test_normalizes_and_starts_available(self, directory):
        vehicle = await directory.create({"plate_number": " abc1d23 ", "model": " Fiat Strada ", "year": 2022})

        assert vehicle["plate_number"] == "ABC1D23"
        assert vehicle["model"] == "Fiat Strada"
        assert vehicle["status"] == VehicleStatus.AVAILABLE
        assert vehicle["assigned_to"] is None

    @pytest.mark.asyncio
    async def test_duplicate_plate_is_conflict(self, directory):
        await directory.create({"plate_number": "ABC1D23", "model": "Fiat Strada", "year": 2022})

        with pytest.raises(DuplicatePlateError):
            await directory.create({"plate_number": "abc1d23", "model": "VW Saveiro", "year": 2021})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("data, field", [
        ({"plate_number": "", "model": "Fiat Strada", "year": 2022}, "plate_number"),
        ({"plate_number": "A" * 21, "model": "Fiat Strada", "year": 2022}, "plate_number"),
        ({"plate_number": "ABC1D23", "model": " ", "year": 2022}, "model"),
        ({"plate_number": "ABC1D23", "model": "Fiat Strada", "year": 1899}, "year"),
        ({"plate_number": "ABC1D23", "model": "Fiat Strada", "year": "soon"}, "year"),
        ({"plate_number": "ABC1D23", "model": "Fiat Strada", "year": 2022, "status": "blocked"}, "status"),
        ({"plate_number": "ABC1D23", "model": "Fiat Strada", "year": 2022, "status": "assigned"}, "assigned_to"),
    ])
    async def test_invalid_fields(self, directory, data, field):
        with pytest.raises(ValidationError) as exc_info:
            await directory.create(data)

        assert exc_info.value.field == field

    @pytest.mark.asyncio
    async def test_create_assigned_to_driver(self, directory, driver_user):
        vehicle = await directory.create({
            "plate_number": "ABC1D23",
            "model": "Fiat Strada",
            "year": 2022,
            "status": "assigned",
            "assigned_to": driver_user.id,
        })

        assert vehicle["status"] == VehicleStatus.ASSIGNED
        assert vehicle["driver_email"] == "dana@example.com"

    @pytest.mark.asyncio
    async def test_unknown_driver_registers_nothing(self, directory):
        data = {"plate_number": "ABC1D23", "model": "Fiat Strada", "year": 2022, "status": "assigned", "assigned_to": 9999}

        with pytest.raises(NotFoundError) as exc_info:
            await directory.create(data)

        assert exc_info.value.field == "assigned_to"
        assert await directory.list() == []

    @pytest.mark.asyncio
    async def test_non_driver_registers_nothing(self, directory, admin_user):
        data = {
            "plate_number": "ABC1D23",
            "model": "Fiat Strada",
            "year": 2022,
            "status": "assigned",
            "assigned_to": admin_user.id,
        }

        with pytest.raises(ValidationError):
            await directory.create(data)
        assert await directory.list() == []

        data["status"] = VehicleStatus.AVAILABLE
        vehicle = await directory.create(data)
        assert vehicle["plate_number"] == "ABC1D23"


class TestUpdate:

    @pytest.mark.asyncio
    async def test_updates_fields(self, directory, test_vehicle):
        vehicle = await directory.update(test_vehicle.id, {"model": "Fiat Toro", "plate_number": "new0001"})

        assert vehicle["model"] == "Fiat Toro"
        assert vehicle["plate_number"] == "NEW0001"

    @pytest.mark.asyncio
    async def test_plate_taken_by_other_vehicle(self, directory, make_vehicle):
        await make_vehicle(plate_number="AAA1111")
        other = await make_vehicle(plate_number="BBB2222")

        with pytest.raises(DuplicatePlateError):
            await directory.update(other.id, {"plate_number": "aaa1111"})

    @pytest.mark.asyncio
    async def test_assign_through_status_change(self, directory, test_vehicle, driver_user):
        vehicle = await directory.update(test_vehicle.id, {"status": "assigned", "assigned_to": driver_user.id})

        assert (vehicle["status"], vehicle["assigned_to"]) == (VehicleStatus.ASSIGNED, driver_user.id)

    @pytest.mark.asyncio
    async def test_release_driver(self, directory, make_vehicle, driver_user):
        vehicle = await make_vehicle(status=VehicleStatus.ASSIGNED, assigned_to=driver_user.id)

        released = await directory.update(vehicle.id, {"status": "available"})

        assert (released["status"], released["assigned_to"]) == (VehicleStatus.AVAILABLE, None)

    @pytest.mark.asyncio
    async def test_status_blocked_is_not_editable(self, directory, test_vehicle):
        with pytest.raises(ValidationError):
            await directory.update(test_vehicle.id, {"status": "blocked"})

    @pytest.mark.asyncio
    async def test_available_refused_while_block_active(self, directory, scheduler, test_vehicle):
        await scheduler.create(test_vehicle.id, T0, T0 + timedelta(days=1), "scheduled maintenance")

        with pytest.raises(VehicleInUseError):
            await directory.update(test_vehicle.id, {"status": "available"})

    @pytest.mark.asyncio
    async def test_invalid_field_leaves_vehicle_untouched(self, directory, test_vehicle, driver_user):
        with pytest.raises(ValidationError):
            await directory.update(
                test_vehicle.id, {"status": "assigned", "assigned_to": driver_user.id, "year": 1800}
            )

        assert (await directory.get(test_vehicle.id))["status"] == VehicleStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_unknown_vehicle(self, directory):
        with pytest.raises(NotFoundError):
            await directory.update(999, {"model": "Fiat Toro"})


class TestDelete:

    @pytest.mark.asyncio
    async def test_delete_available_vehicle(self, directory, test_vehicle):
        await directory.delete(test_vehicle.id)

        with pytest.raises(NotFoundError):
            await directory.get(test_vehicle.id)

    @pytest.mark.asyncio
    async def test_assigned_vehicle_cannot_be_deleted(self, directory, make_vehicle, driver_user):
        vehicle = await make_vehicle(status=VehicleStatus.ASSIGNED, assigned_to=driver_user.id)

        with pytest.raises(VehicleInUseError):
            await directory.delete(vehicle.id)

    @pytest.mark.asyncio
    async def test_vehicle_with_active_block_cannot_be_deleted(self, directory, test_vehicle, make_block):
        # Status drifted to available while a block is still active
        await make_block(test_vehicle.id, T0, T0 + timedelta(days=1))

        with pytest.raises(VehicleInUseError):
            await directory.delete(test_vehicle.id)

    @pytest.mark.asyncio
    async def test_unknown_vehicle(self, directory):
        with pytest.raises(NotFoundError):
            await directory.delete(999)
