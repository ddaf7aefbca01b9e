"""
Tests for per-return transition locking and optimistic version checks.
"""

import asyncio

import pytest
from sqlalchemy import update

from app.models.product_return import ProductReturn, ResolutionType, ReturnStatus
from app.schemas.product_return import (
    ApproveReturnRequest,
    CancelReturnRequest,
    InspectReturnRequest,
    RejectReturnRequest,
)
from app.services.return_locks import TransitionLockRegistry
from app.utils.error_handling import ConflictingStateError, IllegalTransitionError
from tests.fixtures.return_builders import make_create


async def _pending_approval(service, actor_id) -> ProductReturn:
    record = await service.create_return(make_create(), actor_id)
    return await service.inspect(
        record.id,
        InspectReturnRequest(product_condition="USED_GOOD", inspection_notes="OK", inspection_complete=True),
        actor_id,
    )


class TestTransitionLockRegistry:
    """Lock registry tests"""

    @pytest.mark.asyncio
    async def test_second_holder_fails_fast(self):
        registry = TransitionLockRegistry()
        async with registry.hold("r-1"):
            assert registry.is_locked("r-1")
            with pytest.raises(ConflictingStateError):
                async with registry.hold("r-1"):
                    pass
            # other records are independent
            async with registry.hold("r-2"):
                assert registry.is_locked("r-2")

        assert not registry.is_locked("r-1")
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_released_on_error(self):
        registry = TransitionLockRegistry()
        with pytest.raises(RuntimeError):
            async with registry.hold("r-1"):
                raise RuntimeError("boom")
        assert not registry.is_locked("r-1")
        assert len(registry) == 0


class TestConcurrentTransitions:
    """Racing transitions on one return"""

    @pytest.mark.asyncio
    async def test_approve_and_reject_race(self, service, actor_id):
        """Exactly one of two simultaneous transitions succeeds."""
        record = await _pending_approval(service, actor_id)

        results = await asyncio.gather(
            service.approve(
                record.id, ApproveReturnRequest(resolution_type=ResolutionType.RESTOCKED_BRANCH), actor_id
            ),
            service.reject(record.id, RejectReturnRequest(rejection_reason="Invalid return request"), actor_id),
            return_exceptions=True,
        )

        successes = [r for r in results if isinstance(r, ProductReturn)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], (ConflictingStateError, IllegalTransitionError))

        record = await service.get_return(record.id)
        assert record.status in (ReturnStatus.APPROVED, ReturnStatus.REJECTED)

    @pytest.mark.asyncio
    async def test_lock_held_elsewhere(self, service, lock_registry, actor_id):
        record = await _pending_approval(service, actor_id)

        async with lock_registry.hold(record.id):
            with pytest.raises(ConflictingStateError):
                await service.cancel(record.id, CancelReturnRequest(cancellation_reason="Dup"), actor_id)

        record = await service.cancel(record.id, CancelReturnRequest(cancellation_reason="Dup"), actor_id)
        assert record.status == ReturnStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_lock_released_after_failed_guard(self, service, lock_registry, actor_id):
        record = await service.create_return(make_create(), actor_id)
        with pytest.raises(IllegalTransitionError):
            await service.approve(
                record.id, ApproveReturnRequest(resolution_type=ResolutionType.SCRAPPED), actor_id
            )
        assert not lock_registry.is_locked(record.id)
        assert len(lock_registry) == 0

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self, service, db_session, actor_id):
        """A write from another process since our read loses with ConflictingStateError."""
        record = await _pending_approval(service, actor_id)
        table = ProductReturn.__table__

        await db_session.execute(
            update(table).where(table.c.id == record.id).values(version=table.c.version + 1)
        )
        await db_session.commit()

        with pytest.raises(ConflictingStateError):
            await service.approve(
                record.id, ApproveReturnRequest(resolution_type=ResolutionType.RESTOCKED_BRANCH), actor_id
            )

        # a fresh read sees the other writer's version and can proceed
        await db_session.refresh(record)
        record = await service.approve(
            record.id, ApproveReturnRequest(resolution_type=ResolutionType.RESTOCKED_BRANCH), actor_id
        )
        assert record.status == ReturnStatus.APPROVED
