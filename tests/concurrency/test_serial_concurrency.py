"""
Concurrent serial number issue.

Creators in the same tenant race on the tenant's sequence row; every
creator must get a distinct serial and the issued numbers must be
contiguous.  Creators in another tenant never share numbers with them.

Runs on the per-test SQLite file by default (writers queue on the
database lock); set RENTAL_TEST_DATABASE_URL to race on PostgreSQL row
locks instead.
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest

from rental_kernel.domain.dtos import ItemCreateSpec
from rental_kernel.domain.values import ItemType
from rental_kernel.services.item_mutation_service import ItemMutationService

pytestmark = pytest.mark.concurrency

THREADS = 8


def _create_worker(session_factory, clock, tenant_id, actor_id, category_id, barrier, name):
    barrier.wait()
    session = session_factory()
    try:
        service = ItemMutationService(session, clock=clock)
        result = service.create_item(
            tenant_id,
            actor_id,
            ItemCreateSpec(
                name=name,
                category_id=category_id,
                item_type=ItemType.SERIALIZED,
                auto_generate_serial=True,
            ),
        )
        return result.item.serial_number
    finally:
        session.close()


class TestConcurrentSerialIssue:
    def test_same_tenant_serials_are_distinct_and_contiguous(
        self, session_factory, deterministic_clock, tenant_id, actor_id, category
    ):
        barrier = Barrier(THREADS, timeout=30)
        with ThreadPoolExecutor(max_workers=THREADS) as executor:
            futures = [
                executor.submit(
                    _create_worker,
                    session_factory,
                    deterministic_clock,
                    tenant_id,
                    actor_id,
                    category.id,
                    barrier,
                    f"Camera {n}",
                )
                for n in range(THREADS)
            ]
            serials = [f.result() for f in futures]

        assert len(set(serials)) == THREADS
        assert sorted(serials) == [f"SN{n:08d}" for n in range(1, THREADS + 1)]

    def test_tenants_do_not_share_sequences(
        self,
        orchestrator,
        session_factory,
        deterministic_clock,
        tenant_id,
        other_tenant_id,
        actor_id,
        category,
    ):
        other_category = orchestrator.create_category(other_tenant_id, actor_id, "Tools")
        per_tenant = THREADS // 2
        barrier = Barrier(THREADS, timeout=30)
        jobs = [(tenant_id, category.id)] * per_tenant + [
            (other_tenant_id, other_category.id)
        ] * per_tenant

        with ThreadPoolExecutor(max_workers=THREADS) as executor:
            futures = [
                executor.submit(
                    _create_worker,
                    session_factory,
                    deterministic_clock,
                    tenant,
                    actor_id,
                    category_id,
                    barrier,
                    f"Camera {n}",
                )
                for n, (tenant, category_id) in enumerate(jobs)
            ]
            results = [(jobs[n][0], f.result()) for n, f in enumerate(futures)]

        expected = [f"SN{n:08d}" for n in range(1, per_tenant + 1)]
        for tenant in (tenant_id, other_tenant_id):
            assert sorted(s for t, s in results if t == tenant) == expected

    def test_configured_sequence_is_used(
        self, orchestrator, session_factory, deterministic_clock, tenant_id, actor_id, category
    ):
        info = orchestrator.configure_serial_sequence(tenant_id, actor_id, "CAM-", 4, 100)
        assert info.next_serial == "CAM-0100"

        barrier = Barrier(4, timeout=30)
        with ThreadPoolExecutor(max_workers=4) as executor:
            futures = [
                executor.submit(
                    _create_worker,
                    session_factory,
                    deterministic_clock,
                    tenant_id,
                    actor_id,
                    category.id,
                    barrier,
                    f"Lens {n}",
                )
                for n in range(4)
            ]
            serials = sorted(f.result() for f in futures)

        assert serials == ["CAM-0100", "CAM-0101", "CAM-0102", "CAM-0103"]


class TestSequenceOperations:
    def test_generate_consumes_a_number(self, orchestrator, tenant_id, actor_id, category):
        assert orchestrator.generate_serial_number(tenant_id, actor_id) == "SN00000001"
        assert orchestrator.generate_serial_number(tenant_id, actor_id) == "SN00000002"

    def test_validate_serial_number(
        self, orchestrator, tenant_id, other_tenant_id, create_serialized_item
    ):
        item = create_serialized_item(serial_number="FREE-1")
        assert not orchestrator.validate_serial_number(tenant_id, "FREE-1")
        assert orchestrator.validate_serial_number(tenant_id, "FREE-1", exclude_item_id=item.id)
        assert orchestrator.validate_serial_number(other_tenant_id, "FREE-1")
        assert orchestrator.validate_serial_number(tenant_id, "FREE-2")

    def test_invalid_sequence_configuration(self, orchestrator, tenant_id, actor_id, category):
        with pytest.raises(ValueError):
            orchestrator.configure_serial_sequence(tenant_id, actor_id, "", 4)
        with pytest.raises(ValueError):
            orchestrator.configure_serial_sequence(tenant_id, actor_id, "X", 0)
