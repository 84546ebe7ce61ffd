"""
Pytest configuration and shared fixtures for service layer tests.
"""
import pytest
import pytest_asyncio
from datetime import datetime, timezone
from unittest.mock import patch

from tests.factories import InMemoryStore, TENANT_ID, USER_ID


@pytest.fixture
def store():
    """In-memory store patched in wherever the services reach for database."""
    memory = InMemoryStore()
    with patch("app.services.payments.service.database", memory), \
            patch("app.services.subscriptions.service.database", memory), \
            patch("app.workers.expiry_sweep.database", memory):
        yield memory


@pytest.fixture
def fixed_now():
    """Fixed aware datetime for deterministic period arithmetic"""
    return datetime(2024, 1, 31, 12, 0, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def monthly_plan(store):
    return await store.create_plan({
        "name": "Pro Monthly",
        "description": "Pro features, billed monthly",
        "price": 150000,
        "currency": "IDR",
        "interval": "monthly",
        "features": [
            {"key": "api_access", "name": "API access"},
            {"key": "priority_support", "name": "Priority support", "description": "24h response"},
        ],
        "limits": {"members": 10, "projects": 25},
        "is_active": True,
    })


@pytest_asyncio.fixture
async def yearly_plan(store):
    return await store.create_plan({
        "name": "Pro Yearly",
        "description": "",
        "price": 1500000,
        "currency": "IDR",
        "interval": "yearly",
        "features": [{"key": "api_access", "name": "API access"}],
        "limits": {"members": 50},
        "is_active": True,
    })


@pytest_asyncio.fixture
async def pending_payment(store, monthly_plan):
    """A pending payment for the monthly plan"""
    return await store.create_payment({
        "tenant_id": TENANT_ID,
        "user_id": USER_ID,
        "plan_id": monthly_plan["id"],
        "amount": monthly_plan["price"],
        "currency": "IDR",
        "status": "pending",
        "method": "qris",
        "metadata": {"planName": monthly_plan["name"], "planInterval": "monthly"},
    })
