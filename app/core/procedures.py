"""
Server-side PostgreSQL functions used by the procedure data access path.

Each function returns exactly the row shape the composed-query path produces,
so callers never see which path answered. `install_procedures` is run by
scripts/init_db.py; the service probes for them at startup.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine


VEHICLE_COLUMNS = """
    id integer,
    plate_number varchar,
    model varchar,
    year integer,
    status varchar,
    assigned_to integer,
    driver_name varchar,
    driver_email varchar,
    driver_phone varchar,
    created_at timestamp,
    updated_at timestamp
"""

VEHICLE_SELECT = """
    SELECT v.id, v.plate_number, v.model, v.year, v.status, v.assigned_to,
           u.name, u.email, u.phone, v.created_at, v.updated_at
    FROM vehicles v
    LEFT JOIN users u ON u.id = v.assigned_to
"""

PROCEDURES = {
    "get_all_vehicles_summary": f"""
        CREATE OR REPLACE FUNCTION get_all_vehicles_summary()
        RETURNS TABLE ({VEHICLE_COLUMNS})
        LANGUAGE sql STABLE AS $$
            {VEHICLE_SELECT}
            ORDER BY v.plate_number
        $$;
    """,
    "get_vehicle_details": f"""
        CREATE OR REPLACE FUNCTION get_vehicle_details(vehicle_id integer)
        RETURNS TABLE ({VEHICLE_COLUMNS})
        LANGUAGE sql STABLE AS $$
            {VEHICLE_SELECT}
            WHERE v.id = $1
        $$;
    """,
    "search_vehicles": f"""
        CREATE OR REPLACE FUNCTION search_vehicles(search_text text)
        RETURNS TABLE ({VEHICLE_COLUMNS})
        LANGUAGE sql STABLE AS $$
            WITH pattern AS (
                SELECT '%' || replace(replace(replace($1, '/', '//'), '%', '/%'), '_', '/_') || '%' AS p
            )
            {VEHICLE_SELECT}
            CROSS JOIN pattern
            WHERE lower(v.plate_number) LIKE lower(pattern.p) ESCAPE '/'
               OR lower(v.model) LIKE lower(pattern.p) ESCAPE '/'
            ORDER BY v.plate_number
        $$;
    """,
    "add_vehicle": """
        CREATE OR REPLACE FUNCTION add_vehicle(plate text, model_name text, year_val integer, admin_id integer)
        RETURNS integer
        LANGUAGE plpgsql AS $$
        DECLARE
            new_id integer;
        BEGIN
            INSERT INTO vehicles (plate_number, model, year, status, assigned_to, created_at, updated_at)
            VALUES (upper(plate), model_name, year_val, 'available', NULL, now(), now())
            RETURNING id INTO new_id;
            RETURN new_id;
        END;
        $$;
    """,
    "assign_vehicle_to_driver": """
        CREATE OR REPLACE FUNCTION assign_vehicle_to_driver(v_id integer, d_id integer, admin_id integer)
        RETURNS boolean
        LANGUAGE plpgsql AS $$
        BEGIN
            IF NOT EXISTS (SELECT 1 FROM users WHERE id = d_id AND role = 'driver') THEN
                RAISE EXCEPTION 'User % is not a driver', d_id USING ERRCODE = 'P0001';
            END IF;
            UPDATE vehicles
               SET status = 'assigned', assigned_to = d_id, updated_at = now()
             WHERE id = v_id;
            RETURN FOUND;
        END;
        $$;
    """,
    "block_vehicle": """
        CREATE OR REPLACE FUNCTION block_vehicle(
            v_id integer, admin_id integer, start_time timestamp, end_time timestamp, block_reason text
        )
        RETURNS integer
        LANGUAGE plpgsql AS $$
        DECLARE
            new_id integer;
        BEGIN
            IF end_time <= start_time THEN
                RAISE EXCEPTION 'End date must be after start date' USING ERRCODE = 'P0001';
            END IF;
            INSERT INTO vehicle_blocks (vehicle_id, blocked_by, start_date, end_date, reason, status, created_at)
            VALUES (v_id, admin_id, start_time, end_time, block_reason, 'active', now())
            RETURNING id INTO new_id;
            UPDATE vehicles
               SET status = 'blocked', assigned_to = NULL, updated_at = now()
             WHERE id = v_id;
            RETURN new_id;
        END;
        $$;
    """,
    "get_calendar_events_optimized": """
        CREATE OR REPLACE FUNCTION get_calendar_events_optimized(start_date timestamp, end_date timestamp)
        RETURNS TABLE (
            id integer,
            vehicle_id integer,
            start_time timestamp,
            end_time timestamp,
            reason text,
            vehicle_plate varchar,
            created_by varchar
        )
        LANGUAGE sql STABLE AS $$
            SELECT b.id, b.vehicle_id, b.start_date, b.end_date, b.reason, v.plate_number, u.name
            FROM vehicle_blocks b
            JOIN vehicles v ON v.id = b.vehicle_id
            LEFT JOIN users u ON u.id = b.blocked_by
            WHERE b.status = 'active'
              AND b.end_date >= $1
              AND b.start_date <= $2
            ORDER BY b.start_date, b.id
        $$;
    """,
}


async def install_procedures(engine: AsyncEngine):
    """Creates or replaces every function of the catalog."""
    async with engine.begin() as conn:
        for ddl in PROCEDURES.values():
            await conn.execute(text(ddl))
