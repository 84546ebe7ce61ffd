import asyncpg
import asyncio
import json
import os
import uuid as uuid_lib
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Tuple
import logging
import config
from app.utils.retry import retry_async

logger = logging.getLogger(__name__)

DATABASE_URL = config.DATABASE_URL

# ====================================================================================
# SAFE STARTUP GUARD: database readiness flag
# ====================================================================================
# Reflects whether the schema is initialized and the pool is usable.
# When False the service runs in degraded mode: webhook handlers fail with
# HANDLER_ERROR and the expiry worker skips its iterations.
# ====================================================================================
DB_READY: bool = False


# ====================================================================================
# UTC HELPERS: DB boundary, TIMESTAMP WITHOUT TIME ZONE requires naive UTC
# ====================================================================================
# Application layer uses timezone-aware UTC everywhere.
# STRICT RULE: All datetime passed TO asyncpg → _to_db_utc. All datetime read FROM DB → _from_db_utc.
# ====================================================================================

def _to_db_utc(dt: datetime) -> datetime:
    """
    Convert aware datetime to naive UTC for DB storage.
    Must raise if dt is naive.
    """
    if dt is None:
        return None
    assert dt.tzinfo is not None, "Expected timezone-aware datetime"
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def _from_db_utc(dt: datetime) -> datetime:
    """
    Convert naive DB datetime to aware UTC.
    DB TIMESTAMP columns return naive datetime (stored as UTC).
    """
    if dt is None:
        return None
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc)
    return dt.replace(tzinfo=timezone.utc)


def _new_id() -> str:
    return str(uuid_lib.uuid4())


JSON_COLUMNS = {"features", "limits", "metadata"}


def _row_to_dict(row: Optional[asyncpg.Record]) -> Optional[Dict[str, Any]]:
    """Normalize a DB row: UUID → str, timestamps → aware UTC, JSONB → python."""
    if row is None:
        return None
    result = {}
    for key, value in dict(row).items():
        if isinstance(value, uuid_lib.UUID):
            value = str(value)
        elif isinstance(value, datetime):
            value = _from_db_utc(value)
        elif key in JSON_COLUMNS and isinstance(value, str):
            value = json.loads(value)
        result[key] = value
    return result


def _to_db_value(key: str, value: Any) -> Any:
    if key in JSON_COLUMNS:
        return json.dumps(value if value is not None else ({} if key != "features" else []))
    if isinstance(value, datetime):
        return _to_db_utc(value)
    return value


# ====================================================================================
# DB POOL CONFIG: ENV-overridable, single source of truth
# ====================================================================================
def _get_pool_config() -> dict:
    """Build asyncpg.create_pool kwargs. Single source of truth for all pool creation."""
    return {
        "min_size": int(os.getenv("DB_POOL_MIN_SIZE", "2")),
        "max_size": int(os.getenv("DB_POOL_MAX_SIZE", "10")),
        "max_inactive_connection_lifetime": 300,
        "timeout": int(os.getenv("DB_POOL_ACQUIRE_TIMEOUT", "10")),
        "command_timeout": int(os.getenv("DB_POOL_COMMAND_TIMEOUT", "30")),
    }


_pool: Optional[asyncpg.Pool] = None


async def get_pool() -> asyncpg.Pool:
    """
    Get the connection pool, creating it on first use.

    - DB unavailable → RuntimeError raised
    - Transient connection errors → retried with exponential backoff (1 retry)
    """
    global _pool
    if not DATABASE_URL:
        raise RuntimeError(f"{config.APP_ENV.upper()}_DATABASE_URL is not configured")
    if _pool is None:
        pool_config = _get_pool_config()
        _pool = await retry_async(
            lambda: asyncpg.create_pool(DATABASE_URL, **pool_config),
            retries=1,
            base_delay=0.5,
            max_delay=5.0,
            retry_on=(asyncpg.PostgresError, OSError),
        )
        logger.info(
            "DB_POOL_CONFIG min=%s max=%s acquire_timeout=%s command_timeout=%s",
            pool_config["min_size"], pool_config["max_size"],
            pool_config["timeout"], pool_config["command_timeout"],
        )
    return _pool


async def close_pool():
    """Close the connection pool"""
    global _pool, DB_READY
    if _pool:
        await _pool.close()
        _pool = None
        DB_READY = False
        logger.info("Database connection pool closed")


def ensure_db_ready() -> bool:
    """
    Check database readiness before an operation.

    Returns:
        True if DB is ready, False in degraded mode
    """
    if not DB_READY:
        logger.warning("Database not ready - operation rejected (degraded mode)")
        return False
    return True


async def _acquire_pool() -> asyncpg.Pool:
    if not DB_READY:
        raise RuntimeError("Database not ready (degraded mode)")
    return await get_pool()


async def init_db() -> bool:
    """
    Initialize database and create tables. Idempotent.

    Returns:
        True if initialization succeeded, False otherwise
    """
    global DB_READY, _pool

    if DB_READY:
        logger.info("Database already initialized (DB_READY=True), skipping init")
        return True

    if not DATABASE_URL:
        logger.error("DATABASE_URL not configured")
        return False

    try:
        pool = await get_pool()
    except Exception as e:
        logger.error(f"Failed to create database pool: {e}")
        return False

    await asyncio.sleep(0)

    async with pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS subscription_plans (
                id UUID PRIMARY KEY,
                name TEXT UNIQUE NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                price INTEGER NOT NULL CHECK (price >= 0),
                currency VARCHAR(3) NOT NULL,
                interval TEXT NOT NULL,
                features JSONB NOT NULL DEFAULT '[]'::jsonb,
                limits JSONB NOT NULL DEFAULT '{}'::jsonb,
                is_active BOOLEAN NOT NULL DEFAULT TRUE,
                created_at TIMESTAMP NOT NULL DEFAULT (NOW() AT TIME ZONE 'utc'),
                updated_at TIMESTAMP NOT NULL DEFAULT (NOW() AT TIME ZONE 'utc')
            )
        """)

        # No partial unique index on active subscriptions: activation cancels
        # the previous active row before inserting the new one.
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS subscriptions (
                id UUID PRIMARY KEY,
                tenant_id UUID NOT NULL,
                plan_id UUID NOT NULL REFERENCES subscription_plans(id),
                status TEXT NOT NULL,
                current_period_start TIMESTAMP NOT NULL,
                current_period_end TIMESTAMP NOT NULL,
                canceled_at TIMESTAMP,
                created_at TIMESTAMP NOT NULL DEFAULT (NOW() AT TIME ZONE 'utc'),
                updated_at TIMESTAMP NOT NULL DEFAULT (NOW() AT TIME ZONE 'utc')
            )
        """)
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_subscriptions_tenant_status ON subscriptions (tenant_id, status)"
        )

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS payments (
                id UUID PRIMARY KEY,
                tenant_id UUID NOT NULL,
                user_id UUID NOT NULL,
                plan_id UUID REFERENCES subscription_plans(id),
                amount INTEGER NOT NULL CHECK (amount > 0),
                currency VARCHAR(3) NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                method TEXT NOT NULL,
                proof_file_id TEXT,
                confirmed_by TEXT,
                confirmed_at TIMESTAMP,
                rejection_reason TEXT,
                metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
                created_at TIMESTAMP NOT NULL DEFAULT (NOW() AT TIME ZONE 'utc'),
                updated_at TIMESTAMP NOT NULL DEFAULT (NOW() AT TIME ZONE 'utc')
            )
        """)
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_payments_tenant_status ON payments (tenant_id, status)"
        )

    DB_READY = True
    logger.info("DB_INIT_COMPLETE tables=subscription_plans,subscriptions,payments")
    return True


# ====================================================================================
# GENERIC ROW HELPERS
# ====================================================================================

PLAN_COLUMNS = (
    "id", "name", "description", "price", "currency", "interval",
    "features", "limits", "is_active", "created_at", "updated_at",
)
SUBSCRIPTION_COLUMNS = (
    "id", "tenant_id", "plan_id", "status", "current_period_start",
    "current_period_end", "canceled_at", "created_at", "updated_at",
)
PAYMENT_COLUMNS = (
    "id", "tenant_id", "user_id", "plan_id", "amount", "currency", "status",
    "method", "proof_file_id", "confirmed_by", "confirmed_at",
    "rejection_reason", "metadata", "created_at", "updated_at",
)


async def _insert(table: str, columns: Tuple[str, ...], data: Dict[str, Any]) -> Dict[str, Any]:
    row_data = dict(data)
    row_data.setdefault("id", _new_id())
    now = datetime.now(timezone.utc)
    row_data.setdefault("created_at", now)
    row_data.setdefault("updated_at", now)

    keys = [c for c in columns if c in row_data]
    placeholders = ", ".join(f"${i}" for i in range(1, len(keys) + 1))
    values = [_to_db_value(k, row_data[k]) for k in keys]

    pool = await _acquire_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            f"INSERT INTO {table} ({', '.join(keys)}) VALUES ({placeholders}) RETURNING *",
            *values,
        )
    return _row_to_dict(row)


async def _update(
    table: str,
    columns: Tuple[str, ...],
    fields: Dict[str, Any],
    where: Dict[str, Any],
) -> Optional[Dict[str, Any]]:
    updates = {k: v for k, v in fields.items() if k in columns and k not in ("id", "tenant_id", "created_at")}
    updates.setdefault("updated_at", datetime.now(timezone.utc))

    set_keys = list(updates.keys())
    where_keys = list(where.keys())
    set_clause = ", ".join(f"{k} = ${i}" for i, k in enumerate(set_keys, start=1))
    where_clause = " AND ".join(
        f"{k} = ${i}" for i, k in enumerate(where_keys, start=len(set_keys) + 1)
    )
    values = [_to_db_value(k, updates[k]) for k in set_keys] + [where[k] for k in where_keys]

    pool = await _acquire_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            f"UPDATE {table} SET {set_clause} WHERE {where_clause} RETURNING *",
            *values,
        )
    return _row_to_dict(row)


async def _fetchrow(query: str, *args) -> Optional[Dict[str, Any]]:
    pool = await _acquire_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(query, *args)
    return _row_to_dict(row)


async def _fetch(query: str, *args) -> List[Dict[str, Any]]:
    pool = await _acquire_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(query, *args)
    return [_row_to_dict(row) for row in rows]


# ====================================================================================
# SUBSCRIPTION PLANS (global, not tenant-scoped)
# ====================================================================================

async def get_plan(plan_id: str) -> Optional[Dict[str, Any]]:
    return await _fetchrow("SELECT * FROM subscription_plans WHERE id = $1", plan_id)


async def get_plan_by_name(name: str) -> Optional[Dict[str, Any]]:
    return await _fetchrow("SELECT * FROM subscription_plans WHERE name = $1", name)


async def create_plan(data: Dict[str, Any]) -> Dict[str, Any]:
    return await _insert("subscription_plans", PLAN_COLUMNS, data)


async def update_plan(plan_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return await _update("subscription_plans", PLAN_COLUMNS, fields, {"id": plan_id})


async def list_plans(active_only: bool = False) -> List[Dict[str, Any]]:
    if active_only:
        return await _fetch(
            "SELECT * FROM subscription_plans WHERE is_active = TRUE ORDER BY price ASC, name ASC"
        )
    return await _fetch("SELECT * FROM subscription_plans ORDER BY price ASC, name ASC")


# ====================================================================================
# SUBSCRIPTIONS (tenant-scoped)
# ====================================================================================

async def get_subscription(tenant_id: str, subscription_id: str) -> Optional[Dict[str, Any]]:
    return await _fetchrow(
        "SELECT * FROM subscriptions WHERE tenant_id = $1 AND id = $2",
        tenant_id, subscription_id,
    )


async def get_active_subscription(tenant_id: str) -> Optional[Dict[str, Any]]:
    return await _fetchrow(
        "SELECT * FROM subscriptions WHERE tenant_id = $1 AND status = 'active' "
        "ORDER BY created_at DESC LIMIT 1",
        tenant_id,
    )


async def create_subscription(data: Dict[str, Any]) -> Dict[str, Any]:
    return await _insert("subscriptions", SUBSCRIPTION_COLUMNS, data)


async def update_subscription(
    tenant_id: str, subscription_id: str, fields: Dict[str, Any]
) -> Optional[Dict[str, Any]]:
    return await _update(
        "subscriptions", SUBSCRIPTION_COLUMNS, fields,
        {"tenant_id": tenant_id, "id": subscription_id},
    )


async def list_subscriptions(tenant_id: str) -> List[Dict[str, Any]]:
    return await _fetch(
        "SELECT * FROM subscriptions WHERE tenant_id = $1 ORDER BY created_at DESC",
        tenant_id,
    )


async def list_lapsed_active_subscriptions(tenant_id: str, now: datetime) -> List[Dict[str, Any]]:
    """Active subscriptions whose period ended before now."""
    return await _fetch(
        "SELECT * FROM subscriptions WHERE tenant_id = $1 AND status = 'active' "
        "AND current_period_end < $2",
        tenant_id, _to_db_utc(now),
    )


async def list_tenants_with_active_subscriptions() -> List[str]:
    rows = await _fetch("SELECT DISTINCT tenant_id FROM subscriptions WHERE status = 'active'")
    return [row["tenant_id"] for row in rows]


# ====================================================================================
# PAYMENTS (tenant-scoped, never deleted)
# ====================================================================================

async def get_payment(tenant_id: str, payment_id: str) -> Optional[Dict[str, Any]]:
    return await _fetchrow(
        "SELECT * FROM payments WHERE tenant_id = $1 AND id = $2",
        tenant_id, payment_id,
    )


async def create_payment(data: Dict[str, Any]) -> Dict[str, Any]:
    return await _insert("payments", PAYMENT_COLUMNS, data)


async def update_payment(
    tenant_id: str,
    payment_id: str,
    fields: Dict[str, Any],
    expected_status: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    Update a payment row.

    With expected_status the update only applies while the row still has that
    status (compare-and-set); None is returned when it no longer matches.
    """
    # amount is immutable after creation
    fields = {k: v for k, v in fields.items() if k != "amount"}
    where = {"tenant_id": tenant_id, "id": payment_id}
    if expected_status is not None:
        where["status"] = expected_status
    return await _update("payments", PAYMENT_COLUMNS, fields, where)


async def list_payments(
    tenant_id: str,
    status: Optional[str] = None,
    user_id: Optional[str] = None,
    offset: int = 0,
    limit: int = 20,
) -> Tuple[List[Dict[str, Any]], int]:
    """
    Page through a tenant's payments, newest first.

    Returns:
        (rows, total) where total counts all rows matching the filters
    """
    conditions = ["tenant_id = $1"]
    args: List[Any] = [tenant_id]
    if status is not None:
        args.append(status)
        conditions.append(f"status = ${len(args)}")
    if user_id is not None:
        args.append(user_id)
        conditions.append(f"user_id = ${len(args)}")
    where_clause = " AND ".join(conditions)

    pool = await _acquire_pool()
    async with pool.acquire() as conn:
        total = await conn.fetchval(f"SELECT COUNT(*) FROM payments WHERE {where_clause}", *args)
        rows = await conn.fetch(
            f"SELECT * FROM payments WHERE {where_clause} ORDER BY created_at DESC "
            f"LIMIT ${len(args) + 1} OFFSET ${len(args) + 2}",
            *args, limit, offset,
        )
    return [_row_to_dict(row) for row in rows], int(total or 0)
