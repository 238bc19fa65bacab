"""Shared fixtures for the sync engine tests.

Wires a SyncOrchestrator to the in-memory doubles in tests/doubles.py with
pacing sleeps recorded instead of awaited. No database or network access
happens in tests.
"""

from __future__ import annotations

import pytest

from src.storesync.zoho.sync import SyncOrchestrator
from tests.doubles import FakeClock, FakeCRM, FakeInventory, InMemoryCommerceRepository


# ── Fixtures ───────────────────────────────────────────────────────────────


@pytest.fixture
def repository() -> InMemoryCommerceRepository:
    return InMemoryCommerceRepository()


@pytest.fixture
def inventory() -> FakeInventory:
    return FakeInventory()


@pytest.fixture
def crm() -> FakeCRM:
    return FakeCRM()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def orchestrator(repository, inventory, crm, sleeps) -> SyncOrchestrator:
    async def record_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return SyncOrchestrator(
        repository=repository,
        inventory=inventory,
        crm=crm,
        batch_size=50,
        batch_delay_ms=1000,
        clock=FakeClock(),
        sleep=record_sleep,
    )
