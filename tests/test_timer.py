"""
Tests for the deadline-driven session timer
"""

import asyncio
import pytest
from datetime import timedelta
from unittest.mock import MagicMock

from exam_proctor.services.timer import SessionTimer, format_duration


class TestFormatDuration:
    def test_minutes_and_seconds(self):
        assert format_duration(0) == "00:00"
        assert format_duration(59) == "00:59"
        assert format_duration(1799) == "29:59"

    def test_hours_shown_once_an_hour_remains(self):
        assert format_duration(3600) == "1:00:00"
        assert format_duration(3661) == "1:01:01"

    def test_negative_clamped(self):
        assert format_duration(-5) == "00:00"


class TestSessionTimer:
    def test_remaining_recomputed_from_deadline(self, fake_clock):
        """Remaining time tracks the clock instead of counting ticks"""
        timer = SessionTimer(fake_clock() + timedelta(seconds=120), MagicMock(), clock=fake_clock)

        assert timer.remaining_seconds() == 120
        fake_clock.advance(90)
        assert timer.remaining_seconds() == 30
        assert timer.format_remaining() == "00:30"

    def test_partial_seconds_round_up(self, fake_clock):
        timer = SessionTimer(fake_clock() + timedelta(seconds=10.4), MagicMock(), clock=fake_clock)
        assert timer.remaining_seconds() == 11

    def test_never_negative(self, fake_clock):
        timer = SessionTimer(fake_clock() + timedelta(seconds=5), MagicMock(), clock=fake_clock)
        fake_clock.advance(500)
        assert timer.remaining_seconds() == 0

    def test_expiry_fires_exactly_once(self, fake_clock):
        """Ticks after expiry never fire again"""
        on_expire = MagicMock()
        timer = SessionTimer(fake_clock() + timedelta(seconds=2), on_expire, clock=fake_clock)

        assert timer.tick() == 2
        on_expire.assert_not_called()

        fake_clock.advance(2)
        assert timer.tick() == 0
        fake_clock.advance(10)
        timer.tick()
        timer.tick()

        on_expire.assert_called_once()
        assert timer.expired is True

    def test_urgency_levels(self, fake_clock):
        timer = SessionTimer(fake_clock() + timedelta(seconds=600), MagicMock(), clock=fake_clock)
        assert timer.urgency() == "normal"

        fake_clock.advance(300)
        assert timer.urgency() == "warning"

        fake_clock.advance(240)
        assert timer.urgency() == "danger"

    @pytest.mark.asyncio
    async def test_loop_fires_expiry_for_past_deadline(self, fake_clock):
        """A deadline already in the past expires on the first tick"""
        on_expire = MagicMock()
        timer = SessionTimer(fake_clock() - timedelta(seconds=1), on_expire, clock=fake_clock, tick_seconds=0.01)

        timer.start()
        await asyncio.sleep(0.05)

        on_expire.assert_called_once()
        assert timer.running is False
        await timer.stop()

    @pytest.mark.asyncio
    async def test_loop_expires_when_clock_passes_deadline(self, fake_clock):
        on_expire = MagicMock()
        timer = SessionTimer(fake_clock() + timedelta(seconds=30), on_expire, clock=fake_clock, tick_seconds=0.01)

        timer.start()
        await asyncio.sleep(0.03)
        on_expire.assert_not_called()

        fake_clock.advance(30)
        await asyncio.sleep(0.05)
        on_expire.assert_called_once()

    @pytest.mark.asyncio
    async def test_stop_cancels_loop(self, fake_clock):
        on_expire = MagicMock()
        timer = SessionTimer(fake_clock() + timedelta(seconds=30), on_expire, clock=fake_clock, tick_seconds=0.01)

        timer.start()
        assert timer.running is True
        await timer.stop()
        assert timer.running is False

        fake_clock.advance(60)
        await asyncio.sleep(0.03)
        on_expire.assert_not_called()
