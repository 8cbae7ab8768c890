"""Tests for phase progress bands and the per-job channel."""

import asyncio

import pytest

from timeline_export.services.progress import (
    PHASE_BANDS,
    Phase,
    ProgressChannel,
    ProgressTracker,
    ProgressUpdate,
)


class TestProgressUpdate:
    @pytest.mark.parametrize(
        "phase,fraction,percent",
        [
            (Phase.VALIDATION, 1.0, 10),
            (Phase.DOWNLOAD, 0.0, 10),
            (Phase.DOWNLOAD, 0.5, 25),
            (Phase.CONFIGURATION, 1.0, 45),
            (Phase.RENDER, 1.0, 90),
            (Phase.DELIVERY, 1.0, 100),
        ],
    )
    def test_bands(self, phase, fraction, percent):
        assert ProgressUpdate(phase, fraction).percent == percent

    def test_render_eased_until_finished(self):
        assert ProgressUpdate(Phase.RENDER, 0.99).percent < 90

    def test_fraction_clamped(self):
        assert ProgressUpdate(Phase.DOWNLOAD, 1.7).percent == 40
        assert ProgressUpdate(Phase.DOWNLOAD, -1).percent == 10

    def test_bands_are_contiguous(self):
        bands = list(PHASE_BANDS.values())
        assert bands[0][0] == 0 and bands[-1][1] == 100
        for (_, high), (low, _) in zip(bands, bands[1:]):
            assert high == low


class TestProgressTracker:
    def test_never_goes_backwards(self):
        tracker = ProgressTracker()
        assert tracker.apply(ProgressUpdate(Phase.DOWNLOAD, 1.0, "Downloading"))
        assert not tracker.apply(ProgressUpdate(Phase.DOWNLOAD, 0.2))
        assert tracker.percent == 40

    def test_stage_change_counts(self):
        tracker = ProgressTracker(initial=40)
        assert tracker.apply(ProgressUpdate(Phase.CONFIGURATION, 0.0, "Preparing render"))
        assert tracker.stage == "Preparing render"


class TestProgressChannel:
    @pytest.mark.asyncio
    async def test_delivers_in_order_until_closed(self):
        channel = ProgressChannel("job-1")
        channel.report(Phase.VALIDATION, 1.0, "Validated")
        channel.report(Phase.DOWNLOAD, 0.5)
        channel.close()
        channel.report(Phase.RENDER, 1.0)

        received = [update async for update in channel]
        assert [u.phase for u in received] == [Phase.VALIDATION, Phase.DOWNLOAD]

    @pytest.mark.asyncio
    async def test_consumer_waits_for_updates(self):
        channel = ProgressChannel("job-2")
        received = []

        async def consume():
            async for update in channel:
                received.append(update.percent)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        channel.report(Phase.DELIVERY, 1.0)
        channel.close()
        await asyncio.wait_for(task, 1)
        assert received == [100]
