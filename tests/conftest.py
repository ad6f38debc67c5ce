"""
Pytest fixtures for the rental kernel test suite.

Provides:
- A fresh database per test (SQLite file by default)
- Structured log capture
- Orchestrator, service and item factory fixtures

Environment Variables:
- RENTAL_TEST_DATABASE_URL: run against another database (e.g. PostgreSQL)
  instead of a per-test SQLite file.  Tables are dropped after each test.
"""

import json
import logging
import os
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import update
from sqlalchemy.orm import Session

from rental_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    is_postgres,
    reset_engine,
)
from rental_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from rental_kernel.domain.clock import DeterministicClock
from rental_kernel.domain.collaborators import NoAllocationChecker
from rental_kernel.domain.dtos import ItemCreateSpec
from rental_kernel.domain.values import ItemType
from rental_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from rental_kernel.models.inventory_item import InventoryItem
from rental_kernel.services.inventory_orchestrator import InventoryOrchestrator
from rental_kernel.services.item_mutation_service import ItemMutationService


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "concurrency: tests that run real threads against one database"
    )
    config.addinivalue_line(
        "markers", "postgres: tests that only mean something on PostgreSQL"
    )


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture rental_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            orchestrator.change_status(...)
            logs = captured_logs()
            assert any(r["message"] == "status_change_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("rental_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


def get_database_url(tmp_path) -> str:
    return os.environ.get(
        "RENTAL_TEST_DATABASE_URL", f"sqlite:///{tmp_path / 'rental_kernel_test.db'}"
    )


@pytest.fixture(scope="function")
def db_engine(tmp_path):
    engine = init_engine_from_url(get_database_url(tmp_path), pool_size=10)
    create_tables()
    register_immutability_listeners()
    yield engine
    unregister_immutability_listeners()
    if is_postgres():
        drop_tables()
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    """A session for direct service calls and assertions.  Closed after the test."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


# =============================================================================
# Identity and clock fixtures
# =============================================================================


@pytest.fixture
def tenant_id() -> UUID:
    return uuid4()


@pytest.fixture
def other_tenant_id() -> UUID:
    return uuid4()


@pytest.fixture
def actor_id() -> UUID:
    return uuid4()


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def orchestrator(session_factory, deterministic_clock) -> InventoryOrchestrator:
    """Orchestrator with the conservative allocation checker."""
    return InventoryOrchestrator(session_factory, clock=deterministic_clock)


@pytest.fixture
def unallocated_orchestrator(session_factory, deterministic_clock) -> InventoryOrchestrator:
    """Orchestrator for deployments without a rental subsystem."""
    return InventoryOrchestrator(
        session_factory,
        clock=deterministic_clock,
        allocation_checker=NoAllocationChecker(),
    )


@pytest.fixture
def item_service(session, deterministic_clock) -> ItemMutationService:
    return ItemMutationService(session, clock=deterministic_clock)


@pytest.fixture
def category(orchestrator, tenant_id, actor_id):
    return orchestrator.create_category(tenant_id, actor_id, "Power Tools")


@pytest.fixture
def other_category(orchestrator, tenant_id, actor_id):
    return orchestrator.create_category(tenant_id, actor_id, "Lighting")


# =============================================================================
# Item factories
# =============================================================================


@pytest.fixture
def create_serialized_item(orchestrator, tenant_id, actor_id, category):
    """Factory fixture: create a serialized item and return its snapshot."""
    counter = iter(range(1, 100_000))

    def _create(name=None, serial_number=None, auto_generate_serial=None):
        n = next(counter)
        if serial_number is None and auto_generate_serial is None:
            auto_generate_serial = True
        spec = ItemCreateSpec(
            name=name or f"Drill {n}",
            category_id=category.id,
            item_type=ItemType.SERIALIZED,
            serial_number=serial_number,
            auto_generate_serial=bool(auto_generate_serial),
        )
        return orchestrator.create_item(tenant_id, actor_id, spec).item

    return _create


@pytest.fixture
def create_bulk_item(orchestrator, tenant_id, actor_id, category):
    """Factory fixture: create a non-serialized item and return its snapshot."""
    counter = iter(range(1, 100_000))

    def _create(quantity=50, name=None, quantity_unit="pcs"):
        spec = ItemCreateSpec(
            name=name or f"Extension Cord {next(counter)}",
            category_id=category.id,
            item_type=ItemType.NON_SERIALIZED,
            quantity=quantity,
            quantity_unit=quantity_unit,
        )
        return orchestrator.create_item(tenant_id, actor_id, spec).item

    return _create


@pytest.fixture
def mark_rental_history(session_factory):
    """Flag an item as having been rented, the way the rental side would."""

    def _mark(item_id: UUID) -> None:
        session = session_factory()
        try:
            session.execute(
                update(InventoryItem)
                .where(InventoryItem.id == item_id)
                .values(has_rental_history=True)
            )
            session.commit()
        finally:
            session.close()

    return _mark
