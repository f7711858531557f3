"""
Unit tests for the Sampler.

A fake invoker writes scratch files and a fake probe returns queued
bitrates, so sampling runs without HandBrakeCLI or ffprobe.
"""

import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock

from hb_transcode.core.exceptions import EncoderUnavailableError, ProbeError, SamplingError
from hb_transcode.core.modules.analysis.media_utils import SourceMetadata
from hb_transcode.core.modules.optimization.sampler import (
    Sampler, effective_sample_length, plan_samples
)
from hb_transcode.core.modules.processing.transcoding_engine import EncodeOutcome
from hb_transcode.core.modules.system.system_utils import DelayPolicy, TEMP_FILES


class FakeInvoker:
    """Writes the requested output and records every request."""

    def __init__(self, write_output: bool = True):
        self.requests = []
        self.write_output = write_output

    def encode(self, request):
        self.requests.append(request)
        if self.write_output:
            request.output_path.write_bytes(b"sample")
        return EncodeOutcome(success=True, strategy="HW Accel")


def probe_returning(bitrates):
    """Probe fake yielding one bitrate per call; exceptions in the list are raised."""
    queue = list(bitrates)

    def probe(path, use_cache=True):
        value = queue.pop(0)
        if isinstance(value, Exception):
            raise value
        return SourceMetadata(path=path, codec="hevc", pixel_format="yuv420p",
                              duration_seconds=15.0, size_megabytes=round(value * 15 / 8, 2),
                              bitrate_mbps=value)
    return probe


class TestPlanSamples(unittest.TestCase):

    def test_even_spacing_with_nudged_start(self):
        specs = plan_samples(1200, 10, 15, Path("/media/ep_HBPROCESSED"))
        self.assertEqual([s.start_second for s in specs],
                         [1, 120, 240, 360, 480, 600, 720, 840, 960, 1080])
        self.assertTrue(all(s.duration_seconds == 15 for s in specs))
        self.assertEqual(specs[3].output_path, Path("/media/ep_HBPROCESSED_3.mp4"))

    def test_windows_inside_source_and_disjoint(self):
        for duration in (2.5, 11, 37.9, 150, 1200, 7321.4):
            for count in (1, 2, 3, 10):
                try:
                    specs = plan_samples(duration, count, 15, Path("/tmp/x"))
                except SamplingError:
                    continue
                for spec in specs:
                    self.assertGreaterEqual(spec.start_second, 1)
                    self.assertLess(spec.start_second, duration)
                    self.assertLessEqual(spec.end_second, duration)
                for first, second in zip(specs, specs[1:]):
                    self.assertLessEqual(first.end_second, second.start_second)

    def test_short_source_shrinks_sample_length(self):
        # slot of 12s: 12s window would overlap once moved to 1s
        self.assertEqual(effective_sample_length(120, 10, 15), 11)
        self.assertEqual(effective_sample_length(1200, 10, 15), 15)

    def test_too_short_source(self):
        with self.assertRaises(SamplingError):
            plan_samples(15, 10, 15, Path("/tmp/x"))

    def test_invalid_arguments(self):
        with self.assertRaises(ValueError):
            plan_samples(0, 10, 15, Path("/tmp/x"))
        with self.assertRaises(ValueError):
            plan_samples(100, 0, 15, Path("/tmp/x"))


class TestSampler(unittest.TestCase):

    def setUp(self):
        self.test_dir = Path(tempfile.mkdtemp())
        self.source = self.test_dir / "episode.mkv"
        self.source.write_bytes(b"\0" * 100)
        self.metadata = SourceMetadata(path=self.source, codec="h264", pixel_format="yuv420p",
                                       duration_seconds=1200.0, size_megabytes=1000.0,
                                       bitrate_mbps=6.67)
        self.scratch = self.test_dir / "episode_HBPROCESSED"

    def tearDown(self):
        import shutil
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def _sampler(self, invoker, probe) -> Sampler:
        return Sampler(invoker, self.metadata, self.scratch, delay=DelayPolicy.none(), probe=probe)

    def test_average_and_estimated_size(self):
        invoker = FakeInvoker()
        sampler = self._sampler(invoker, probe_returning([3.0, 4.0, 3.5, 3.5]))

        result = sampler.sample(23.5, 4, 15)

        self.assertEqual(result.average_bitrate_mbps, 3.5)
        self.assertEqual(result.estimated_full_size_megabytes, 525.0)
        self.assertEqual(result.valid_samples, 4)
        self.assertEqual(len(invoker.requests), 4)
        self.assertTrue(all(r.quality == 23.5 for r in invoker.requests))
        self.assertEqual(invoker.requests[0].time_range.start_second, 1)

    def test_scratch_files_removed(self):
        sampler = self._sampler(FakeInvoker(), probe_returning([3.0, ProbeError("bad"), 0.0]))
        sampler.sample(20, 3, 15)
        self.assertEqual(sorted(p.name for p in self.test_dir.iterdir()), ["episode.mkv"])
        self.assertFalse(any("episode_HBPROCESSED" in f for f in TEMP_FILES))

    def test_invalid_samples_excluded(self):
        sampler = self._sampler(FakeInvoker(), probe_returning([0.0, 4.0, ProbeError("x"), 2.0]))
        result = sampler.sample(20, 4, 15)
        self.assertEqual(result.average_bitrate_mbps, 3.0)
        self.assertEqual(result.valid_samples, 2)
        self.assertEqual(result.total_samples, 4)

    def test_failed_encode_is_not_probed(self):
        invoker = Mock()
        invoker.encode.side_effect = [EncodeOutcome(success=False), EncodeOutcome(success=True)]
        probe = Mock(side_effect=probe_returning([2.5]))
        result = self._sampler(invoker, probe).sample(20, 2, 15)
        self.assertEqual(probe.call_count, 1)
        self.assertEqual(result.valid_samples, 1)
        self.assertEqual(result.average_bitrate_mbps, 2.5)

    def test_all_samples_zero_raises(self):
        sampler = self._sampler(FakeInvoker(), probe_returning([0.0] * 10))
        with self.assertRaises(SamplingError) as ctx:
            sampler.sample(20, 10, 15)
        self.assertEqual(ctx.exception.failed_samples, 10)
        self.assertEqual(ctx.exception.quality, 20)

    def test_scratch_removed_when_probe_raises_unexpectedly(self):
        def exploding_probe(path, use_cache=True):
            raise RuntimeError("boom")

        sampler = self._sampler(FakeInvoker(), exploding_probe)
        with self.assertRaises(RuntimeError):
            sampler.sample(20, 2, 15)
        self.assertFalse((self.test_dir / "episode_HBPROCESSED_0.mp4").exists())

    def test_encoder_unavailable_propagates(self):
        invoker = Mock()
        invoker.encode.side_effect = EncoderUnavailableError("no HandBrakeCLI")
        sampler = self._sampler(invoker, probe_returning([]))
        with self.assertRaises(EncoderUnavailableError):
            sampler.sample(20, 3, 15)

    def test_pause_between_samples(self):
        delay = Mock(spec=DelayPolicy)
        sampler = Sampler(FakeInvoker(), self.metadata, self.scratch, delay=delay,
                          probe=probe_returning([3.0, 3.0, 3.0]))
        sampler.sample(20, 3, 15)
        self.assertEqual(delay.between_samples.call_count, 2)

    def test_argument_validation(self):
        sampler = self._sampler(FakeInvoker(), probe_returning([]))
        for quality, count, length in ((0, 10, 15), (-1, 10, 15), (52, 10, 15),
                                       (20, 0, 15), (20, 10, 0)):
            with self.assertRaises(ValueError):
                sampler.sample(quality, count, length)


if __name__ == '__main__':
    unittest.main()
