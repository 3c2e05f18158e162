"""Tests for src.rollout.keepalive."""

from __future__ import annotations

import asyncio

import pytest

from src.rollout.keepalive import Heartbeat


@pytest.mark.asyncio
async def test_beats_while_running_and_stops_after():
    async with Heartbeat("build", interval=0.01) as heartbeat:
        assert heartbeat.running
        await asyncio.sleep(0.05)
    assert heartbeat.beats >= 1
    assert not heartbeat.running
    beats = heartbeat.beats
    await asyncio.sleep(0.03)
    assert heartbeat.beats == beats


@pytest.mark.asyncio
async def test_cancelled_when_step_fails():
    heartbeat = Heartbeat("build", interval=0.01)
    with pytest.raises(RuntimeError):
        async with heartbeat:
            raise RuntimeError("build failed")
    assert not heartbeat.running


@pytest.mark.asyncio
async def test_disabled_with_non_positive_interval():
    async with Heartbeat("build", interval=0) as heartbeat:
        assert not heartbeat.running
    assert heartbeat.beats == 0
