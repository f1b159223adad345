"""Tests for the session pool."""

import asyncio
from datetime import timedelta

import pytest

from sm_automation.core.exceptions import ResourceUnavailableError
from sm_automation.sessions.pool import SessionPool, SessionState, canonical_key
from tests.helpers import FakeLauncher, ManualClock


def make_pool(launcher=None, clock=None, ttl=timedelta(hours=4), **kwargs):
    return SessionPool(launcher or FakeLauncher(), ttl=ttl, clock=clock or ManualClock(), **kwargs)


class TestCanonicalKey:
    """Tests for pool key normalization."""

    def test_store_and_window_keys_share_a_session(self):
        """Test that a store key and its window key map to one pool key."""
        assert canonical_key("allerton") == "allerton"
        assert canonical_key("trail-allerton") == "allerton"
        assert canonical_key(" Allerton ") == "allerton"

    def test_unknown_key_is_lowercased(self):
        """Test that ad-hoc tenants are kept as-is, lowercased."""
        assert canonical_key("Pop-Up-Store") == "pop-up-store"


class TestAcquire:
    """Tests for acquisition and reuse."""

    def test_first_acquire_launches(self):
        """Test that the first acquisition launches one context."""
        async def scenario():
            launcher = FakeLauncher()
            pool = make_pool(launcher)
            session = await pool.acquire("allerton")
            return launcher, pool, session

        launcher, pool, session = asyncio.run(scenario())
        assert launcher.launches == [("allerton", "persist:trail-allerton")]
        assert session.state == SessionState.ACTIVE
        assert session.partition == "persist:trail-allerton"
        assert len(pool) == 1

    def test_reuse_after_release(self):
        """Test that a released session is reused without a second launch."""
        async def scenario():
            launcher = FakeLauncher()
            clock = ManualClock()
            pool = make_pool(launcher, clock)
            first = await pool.acquire("allerton")
            pool.release("allerton")
            clock.advance(minutes=30)
            second = await pool.acquire("trail-allerton")
            return launcher, first, second, clock

        launcher, first, second, clock = asyncio.run(scenario())
        assert first is second
        assert len(launcher.launches) == 1
        assert second.last_used_at == clock.now

    def test_concurrent_acquire_same_key_launches_once(self):
        """Test that concurrent acquirers of one key share a single launch."""
        async def scenario():
            launcher = FakeLauncher(delay=0.01)
            pool = make_pool(launcher)

            async def use():
                async with pool.lease("sefton") as session:
                    await asyncio.sleep(0.01)
                    return session

            sessions = await asyncio.gather(*(use() for _ in range(5)))
            return launcher, sessions

        launcher, sessions = asyncio.run(scenario())
        assert len(launcher.launches) == 1
        assert all(s is sessions[0] for s in sessions)

    def test_lease_is_exclusive(self):
        """Test that a second acquirer waits until the first releases."""
        async def scenario():
            pool = make_pool()
            order = []

            async def first():
                async with pool.lease("oldswan"):
                    order.append("first-start")
                    await asyncio.sleep(0.02)
                    order.append("first-end")

            async def second():
                await asyncio.sleep(0.005)
                async with pool.lease("oldswan"):
                    order.append("second")

            await asyncio.gather(first(), second())
            return order

        assert asyncio.run(scenario()) == ["first-start", "first-end", "second"]

    def test_different_keys_do_not_block(self):
        """Test that a slow launch for one key does not block another key."""
        async def scenario():
            pool = make_pool()
            held = await pool.acquire("allerton")
            other = await asyncio.wait_for(pool.acquire("sefton"), timeout=1)
            return held, other

        held, other = asyncio.run(scenario())
        assert held is not other
        assert held.partition != other.partition

    def test_launch_failure_raises_resource_unavailable(self):
        """Test that a failed launch raises and registers nothing."""
        async def scenario():
            pool = make_pool(FakeLauncher(fail=True))
            with pytest.raises(ResourceUnavailableError) as exc_info:
                await pool.acquire("allerton")
            return pool, exc_info.value

        pool, error = asyncio.run(scenario())
        assert len(pool) == 0
        assert pool.get("allerton") is None
        assert error.tenant_key == "allerton"
        assert error.kind == "resource_unavailable"

    def test_duplicate_partition_rejected(self):
        """Test that two tenants can never share a partition."""
        async def scenario():
            pool = make_pool(partition_for=lambda key: "persist:shared")
            await pool.acquire("tenant-a")
            with pytest.raises(ResourceUnavailableError):
                await pool.acquire("tenant-b")

        asyncio.run(scenario())


class TestRelease:
    """Tests for release semantics."""

    def test_release_marks_idle_without_closing(self):
        """Test that release returns the session to IDLE."""
        async def scenario():
            launcher = FakeLauncher()
            pool = make_pool(launcher)
            session = await pool.acquire("allerton")
            released = pool.release("allerton")
            return launcher, session, released

        launcher, session, released = asyncio.run(scenario())
        assert released is True
        assert session.state == SessionState.IDLE
        assert launcher.handles[0].close_calls == 0

    def test_release_twice_is_noop(self):
        """Test that a second release neither fails nor closes anything."""
        async def scenario():
            launcher = FakeLauncher()
            pool = make_pool(launcher)
            session = await pool.acquire("allerton")
            first = pool.release("allerton")
            second = pool.release("allerton")
            return launcher, session, first, second

        launcher, session, first, second = asyncio.run(scenario())
        assert first is True
        assert second is False
        assert session.state == SessionState.IDLE
        assert not session.lease.locked()
        assert launcher.handles[0].close_calls == 0

    def test_release_unknown_key(self):
        """Test that releasing an unknown key is harmless."""
        async def scenario():
            return make_pool().release("nobody")

        assert asyncio.run(scenario()) is False

    def test_lease_released_on_cancellation(self):
        """Test that a cancelled caller returns the session to IDLE."""
        async def scenario():
            pool = make_pool()
            entered = asyncio.Event()

            async def worker():
                async with pool.lease("allerton"):
                    entered.set()
                    await asyncio.sleep(10)

            task = asyncio.create_task(worker())
            await entered.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            return pool.get("allerton")

        session = asyncio.run(scenario())
        assert session.state == SessionState.IDLE
        assert not session.lease.locked()


class TestEviction:
    """Tests for TTL eviction."""

    def test_expired_session_replaced(self):
        """Test that an expired session is closed and a fresh one launched."""
        async def scenario():
            launcher = FakeLauncher()
            clock = ManualClock()
            pool = make_pool(launcher, clock)
            first = await pool.acquire("allerton")
            pool.release("allerton")
            clock.advance(hours=4, seconds=1)
            second = await pool.acquire("allerton")
            return launcher, first, second

        launcher, first, second = asyncio.run(scenario())
        assert first is not second
        assert first.state == SessionState.CLOSED
        assert launcher.handles[0].close_calls == 1
        assert len(launcher.launches) == 2

    def test_session_at_ttl_not_expired(self):
        """Test that a session exactly at the TTL is still reused."""
        async def scenario():
            launcher = FakeLauncher()
            clock = ManualClock()
            pool = make_pool(launcher, clock)
            await pool.acquire("allerton")
            pool.release("allerton")
            clock.advance(hours=4)
            evicted = await pool.evict_expired()
            return launcher, evicted

        launcher, evicted = asyncio.run(scenario())
        assert evicted == []
        assert launcher.handles[0].close_calls == 0

    def test_sweep_on_acquire_of_other_key(self):
        """Test that acquiring any key sweeps expired sessions of others."""
        async def scenario():
            launcher = FakeLauncher()
            clock = ManualClock()
            pool = make_pool(launcher, clock)
            await pool.acquire("allerton")
            pool.release("allerton")
            clock.advance(hours=5)
            await pool.acquire("sefton")
            pool.release("sefton")
            await asyncio.sleep(0.01)
            return launcher, pool

        launcher, pool = asyncio.run(scenario())
        assert pool.get("allerton") is None
        assert launcher.handles[0].close_calls == 1

    def test_sweep_does_not_wait_for_other_teardown(self):
        """Test that a slow eviction of one tenant never delays another."""
        async def scenario():
            launcher = FakeLauncher()
            clock = ManualClock()
            pool = make_pool(launcher, clock)
            await pool.acquire("allerton")
            pool.release("allerton")

            handle = launcher.handles[0]
            finish_close = asyncio.Event()
            close = handle.close

            async def slow_close():
                await finish_close.wait()
                await close()

            handle.close = slow_close
            clock.advance(hours=5)
            session = await asyncio.wait_for(pool.acquire("sefton"), timeout=1)
            closed_during_acquire = handle.close_calls
            finish_close.set()
            await pool.close_all()
            return launcher, pool, session, closed_during_acquire

        launcher, pool, session, closed_during_acquire = asyncio.run(scenario())
        assert session.tenant_key == "sefton"
        assert closed_during_acquire == 0
        assert launcher.handles[0].close_calls == 1
        assert pool.get("allerton") is None

    def test_direct_sweep_closes_concurrently(self):
        async def scenario():
            launcher = FakeLauncher()
            clock = ManualClock()
            pool = make_pool(launcher, clock)
            for key in ("allerton", "sefton", "oldswan"):
                await pool.acquire(key)
                pool.release(key)
            clock.advance(hours=5)
            evicted = await pool.evict_expired()
            return launcher, evicted

        launcher, evicted = asyncio.run(scenario())
        assert sorted(evicted) == ["allerton", "oldswan", "sefton"]
        assert [h.close_calls for h in launcher.handles] == [1, 1, 1]

    def test_leased_session_not_evicted(self):
        """Test that a session in use is skipped by the sweep."""
        async def scenario():
            launcher = FakeLauncher()
            clock = ManualClock()
            pool = make_pool(launcher, clock)
            session = await pool.acquire("allerton")
            clock.advance(hours=6)
            evicted = await pool.evict_expired()
            return launcher, session, evicted

        launcher, session, evicted = asyncio.run(scenario())
        assert evicted == []
        assert session.state == SessionState.ACTIVE
        assert launcher.handles[0].close_calls == 0


class TestClose:
    """Tests for explicit close and shutdown."""

    def test_close_waits_for_lease(self):
        """Test that close() lets the current holder finish first."""
        async def scenario():
            launcher = FakeLauncher()
            pool = make_pool(launcher)
            order = []

            async def holder():
                async with pool.lease("allerton"):
                    await asyncio.sleep(0.02)
                    order.append("released")

            task = asyncio.create_task(holder())
            await asyncio.sleep(0.005)
            closed = await pool.close("allerton")
            order.append("closed")
            await task
            return launcher, pool, closed, order

        launcher, pool, closed, order = asyncio.run(scenario())
        assert closed is True
        assert order == ["released", "closed"]
        assert pool.get("allerton") is None
        assert launcher.handles[0].close_calls == 1

    def test_acquire_after_close_launches_fresh(self):
        """Test that a closed session is never reused."""
        async def scenario():
            launcher = FakeLauncher()
            pool = make_pool(launcher)
            first = await pool.acquire("allerton")
            pool.release("allerton")
            await pool.close("allerton")
            second = await pool.acquire("allerton")
            return first, second

        first, second = asyncio.run(scenario())
        assert first.state == SessionState.CLOSED
        assert second is not first

    def test_key_lock_dropped_after_close(self):
        """Test that ad-hoc keys do not leave per-key locks behind."""
        async def scenario():
            pool = make_pool()
            for key in ("pop-up-1", "pop-up-2"):
                async with pool.lease(key):
                    pass
                await pool.close(key)
            return pool

        pool = asyncio.run(scenario())
        assert pool._key_locks == {}

    def test_key_lock_dropped_after_failed_launch(self):
        async def scenario():
            pool = make_pool(FakeLauncher(fail=True))
            with pytest.raises(ResourceUnavailableError):
                await pool.acquire("pop-up")
            return pool

        assert asyncio.run(scenario())._key_locks == {}

    def test_key_lock_kept_while_session_live(self):
        async def scenario():
            pool = make_pool()
            async with pool.lease("allerton"):
                pass
            return pool

        assert list(asyncio.run(scenario())._key_locks) == ["allerton"]

    def test_close_unknown_key(self):
        """Test that closing an unknown key returns False."""
        async def scenario():
            return await make_pool().close("allerton")

        assert asyncio.run(scenario()) is False

    def test_close_all_closes_everything(self):
        """Test that close_all releases every context and stops the launcher."""
        async def scenario():
            launcher = FakeLauncher()
            pool = make_pool(launcher)
            for key in ("allerton", "sefton", "attensi"):
                await pool.acquire(key)
            pool.release("sefton")
            await pool.close_all()
            return launcher, pool

        launcher, pool = asyncio.run(scenario())
        assert [h.close_calls for h in launcher.handles] == [1, 1, 1]
        assert launcher.shutdown_calls == 1
        assert len(pool) == 0

    def test_close_all_continues_past_errors(self):
        """Test that one failing close does not stop the others."""
        async def scenario():
            launcher = FakeLauncher()
            pool = make_pool(launcher)
            await pool.acquire("allerton")
            await pool.acquire("sefton")

            async def broken_close():
                raise RuntimeError("browser crashed")

            launcher.handles[0].close = broken_close
            await pool.close_all()
            return launcher, pool

        launcher, pool = asyncio.run(scenario())
        assert launcher.handles[1].close_calls == 1
        assert launcher.shutdown_calls == 1
        assert len(pool) == 0

    def test_async_context_manager(self):
        """Test that leaving the pool context closes all sessions."""
        async def scenario():
            launcher = FakeLauncher()
            async with make_pool(launcher) as pool:
                await pool.acquire("allerton")
            return launcher

        launcher = asyncio.run(scenario())
        assert launcher.handles[0].close_calls == 1

    def test_describe(self):
        """Test that describe() reports one row per session."""
        async def scenario():
            pool = make_pool()
            await pool.acquire("sefton")
            await pool.acquire("allerton")
            pool.release("allerton")
            return pool.describe()

        rows = asyncio.run(scenario())
        assert [r["tenant_key"] for r in rows] == ["allerton", "sefton"]
        assert rows[0]["state"] == "idle"
        assert rows[1]["state"] == "active"
        assert rows[1]["partition"] == "persist:trail-sefton"


class TestPoolConstruction:
    """Tests for pool construction."""

    def test_non_positive_ttl_rejected(self):
        """Test that a zero TTL is refused."""
        with pytest.raises(ValueError):
            SessionPool(FakeLauncher(), ttl=timedelta(0))

    def test_from_config(self, config):
        """Test that the TTL comes from config."""
        config.session_ttl_seconds = 60
        pool = SessionPool.from_config(config, launcher=FakeLauncher())
        assert pool.ttl == timedelta(seconds=60)
