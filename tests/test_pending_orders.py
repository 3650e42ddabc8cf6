"""Tests for per-order PIX timeout timers."""

from datetime import timedelta

from pixrelay.domain.conversations import ConversationRecord, OriginKind
from pixrelay.domain.pending_orders import OrderTimeoutScheduler, TimerState


def _snapshot(order_id="X1", key="5511987654321"):
    return ConversationRecord(
        customer_key=key,
        order_id=order_id,
        product="CS",
        instance="GABY01",
        origin=OriginKind.PENDING,
        customer_name="Maria Souza",
        amount="R$ 97,00",
        qr_reference=f"qr-{order_id}",
    )


def _scheduler(timers, clock, fired):
    return OrderTimeoutScheduler(
        fired.append, delay_seconds=420, timer_factory=timers, clock=clock
    )


class TestArm:
    def test_arm_starts_timer_with_delay(self, timers, clock):
        fired = []
        scheduler = _scheduler(timers, clock, fired)

        entry = scheduler.arm(_snapshot())

        assert entry.state is TimerState.ARMED
        assert timers.timers[0].delay == 420
        assert timers.timers[0].started is True
        assert scheduler.get("X1") is entry
        assert len(scheduler) == 1

    def test_rearm_same_order_cancels_prior(self, timers, clock):
        fired = []
        scheduler = _scheduler(timers, clock, fired)
        first = scheduler.arm(_snapshot())

        second = scheduler.arm(_snapshot())

        assert first.state is TimerState.CANCELED
        assert timers.timers[0].canceled is True
        assert scheduler.get("X1") is second

        # the replaced timer firing late must not double-fire
        timers.timers[0].fire()
        timers.timers[1].fire()
        assert [e.order_id for e in fired] == ["X1"]
        assert fired[0] is second


class TestFire:
    def test_fire_calls_handler_once_and_discards(self, timers, clock):
        fired = []
        scheduler = _scheduler(timers, clock, fired)
        entry = scheduler.arm(_snapshot())

        timers.timers[0].fire()
        timers.timers[0].fire()

        assert fired == [entry]
        assert entry.state is TimerState.FIRED
        assert scheduler.get("X1") is None

    def test_canceled_timer_that_still_fires_is_ignored(self, timers, clock):
        fired = []
        scheduler = _scheduler(timers, clock, fired)
        scheduler.arm(_snapshot())

        assert scheduler.cancel("X1") is True
        timers.timers[0].fire()

        assert fired == []

    def test_handler_errors_do_not_escape_timer_thread(self, timers, clock):
        def boom(entry):
            raise RuntimeError("dispatch exploded")

        scheduler = OrderTimeoutScheduler(boom, timer_factory=timers, clock=clock)
        scheduler.arm(_snapshot())

        timers.timers[0].fire()

        assert len(scheduler) == 0


class TestCancel:
    def test_cancel_unknown_is_noop(self, timers, clock):
        scheduler = _scheduler(timers, clock, [])
        assert scheduler.cancel("nope") is False

    def test_cancel_after_fire_is_noop(self, timers, clock):
        fired = []
        scheduler = _scheduler(timers, clock, fired)
        scheduler.arm(_snapshot())
        timers.timers[0].fire()

        assert scheduler.cancel("X1") is False
        assert len(fired) == 1

    def test_cancel_for_key(self, timers, clock):
        scheduler = _scheduler(timers, clock, [])
        scheduler.arm(_snapshot("X1"))
        scheduler.arm(_snapshot("X2"))
        scheduler.arm(_snapshot("Y1", key="5521998877665"))

        canceled = scheduler.cancel_for_key("5511987654321")

        assert sorted(canceled) == ["X1", "X2"]
        assert [p.order_id for p in scheduler.pending()] == ["Y1"]
        assert timers.timers[0].canceled and timers.timers[1].canceled
        assert not timers.timers[2].canceled


class TestPurgeAndShutdown:
    def test_purge_cancels_old_timers(self, timers, clock):
        scheduler = _scheduler(timers, clock, [])
        scheduler.arm(_snapshot("OLD"))
        clock.advance(hours=25)
        scheduler.arm(_snapshot("NEW"))

        removed = scheduler.purge(clock() - timedelta(hours=24))

        assert removed == 1
        assert timers.timers[0].canceled is True
        assert scheduler.get("NEW") is not None

    def test_shutdown_cancels_everything(self, timers, clock):
        scheduler = _scheduler(timers, clock, [])
        scheduler.arm(_snapshot("X1"))
        scheduler.arm(_snapshot("X2"))

        scheduler.shutdown()

        assert len(scheduler) == 0
        assert timers.armed == []
