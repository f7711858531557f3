"""
Unit tests for the encoder fallback chain.

subprocess.run is patched; HandBrakeCLI is never started.
"""

import os
import stat
import subprocess
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch, Mock

from hb_transcode.core.exceptions import EncoderUnavailableError
from hb_transcode.core.modules.encoder_config import EncoderStrategy, TimeRange
from hb_transcode.core.modules.processing.transcoding_engine import EncodeRequest, EncoderInvoker
from hb_transcode.core.modules.system.path_translation import WslPathTranslator
from hb_transcode.core.modules.system.system_utils import DelayPolicy

SUBPROCESS_RUN = "hb_transcode.core.modules.processing.transcoding_engine.subprocess.run"


def completed(returncode: int, stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess([], returncode, stdout="", stderr=stderr)


class TestEncoderInvoker(unittest.TestCase):

    def setUp(self):
        self.strategies = [
            EncoderStrategy("HW Accel", "vce_h265", ("--enable-hw-decoding", "vcn")),
            EncoderStrategy("Semi-Software Fallback", "vce_h265"),
            EncoderStrategy("Full Software Fallback", "x265"),
        ]
        self.delay = DelayPolicy.none()
        self.request = EncodeRequest(Path("/media/in.mkv"), Path("/media/in_HBPROCESSED_0.mp4"),
                                     quality=23.5, time_range=TimeRange(1, 15))

    def _invoker(self, **kwargs) -> EncoderInvoker:
        return EncoderInvoker(self.strategies, delay=self.delay, **kwargs)

    @patch(SUBPROCESS_RUN)
    def test_first_strategy_succeeds(self, mock_run):
        mock_run.return_value = completed(0)
        outcome = self._invoker().encode(self.request)

        self.assertTrue(outcome.success)
        self.assertEqual(outcome.strategy, "HW Accel")
        self.assertEqual(mock_run.call_count, 1)
        cmd = mock_run.call_args[0][0]
        self.assertIn("--enable-hw-decoding", cmd)
        self.assertEqual(cmd[cmd.index("--start-at") + 1], "seconds:1")

    @patch(SUBPROCESS_RUN)
    def test_falls_back_in_order(self, mock_run):
        mock_run.side_effect = [completed(1, "vce init failed"), completed(2), completed(0)]
        outcome = self._invoker().encode(self.request)

        self.assertTrue(outcome.success)
        self.assertEqual(outcome.strategy, "Full Software Fallback")
        self.assertEqual([a.name for a in outcome.attempts],
                         ["HW Accel", "Semi-Software Fallback", "Full Software Fallback"])
        self.assertEqual(outcome.attempts[0].error, "vce init failed")
        encoders = [c[0][0][c[0][0].index("-e") + 1] for c in mock_run.call_args_list]
        self.assertEqual(encoders, ["vce_h265", "vce_h265", "x265"])
        self.assertNotIn("--enable-hw-decoding", mock_run.call_args_list[1][0][0])

    @patch(SUBPROCESS_RUN)
    def test_all_strategies_fail(self, mock_run):
        mock_run.return_value = completed(3)
        outcome = self._invoker().encode(self.request)

        self.assertFalse(outcome.success)
        self.assertIsNone(outcome.strategy)
        self.assertEqual(len(outcome.attempts), 3)

    @patch(SUBPROCESS_RUN)
    def test_backoff_only_between_strategies(self, mock_run):
        mock_run.return_value = completed(1)
        delay = Mock(spec=DelayPolicy)
        EncoderInvoker(self.strategies, delay=delay).encode(self.request)
        self.assertEqual(delay.after_strategy_failure.call_count, 2)

    @patch(SUBPROCESS_RUN)
    def test_disabled_strategy_is_skipped(self, mock_run):
        mock_run.return_value = completed(0)
        self.strategies[0] = EncoderStrategy("HW Accel", "vce_h265", enabled=False)
        outcome = self._invoker().encode(self.request)
        self.assertEqual(outcome.strategy, "Semi-Software Fallback")

    @patch(SUBPROCESS_RUN, side_effect=FileNotFoundError("HandBrakeCLI"))
    def test_encoder_missing_raises(self, mock_run):
        with self.assertRaises(EncoderUnavailableError):
            self._invoker().encode(self.request)
        self.assertEqual(mock_run.call_count, 3)

    @patch(SUBPROCESS_RUN)
    def test_partial_spawn_failure_is_not_catastrophic(self, mock_run):
        mock_run.side_effect = [OSError("busy"), completed(1), completed(1)]
        outcome = self._invoker().encode(self.request)
        self.assertFalse(outcome.success)
        self.assertTrue(outcome.attempts[0].spawn_failed)

    def test_no_enabled_strategies(self):
        invoker = EncoderInvoker([EncoderStrategy("HW Accel", "vce_h265", enabled=False)],
                                 delay=self.delay)
        with self.assertRaises(ValueError):
            invoker.encode(self.request)

    def test_paths_translated_for_encoder(self):
        invoker = self._invoker(translator=WslPathTranslator())
        request = EncodeRequest(Path("/mnt/d/media/in.mkv"), Path("/mnt/d/media/out.mp4"), 24)
        cmd = invoker.build_command(request, self.strategies[2])
        self.assertEqual(cmd[cmd.index("-i") + 1], "D:\\media\\in.mkv")
        self.assertEqual(cmd[cmd.index("-o") + 1], "D:\\media\\out.mp4")


@unittest.skipIf(os.name == "nt", "needs a POSIX shell")
class TestEncoderOutputDecoding(unittest.TestCase):
    """A stand-in HandBrakeCLI script that writes Latin-1 bytes to stderr."""

    def setUp(self):
        self.test_dir = Path(tempfile.mkdtemp())
        self.request = EncodeRequest(self.test_dir / "in.mkv", self.test_dir / "out.mp4", quality=22)

    def tearDown(self):
        import shutil
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def _fake_handbrake(self, exit_code: int) -> str:
        script = self.test_dir / "HandBrakeCLI"
        script.write_text("#!/bin/sh\nprintf 'Title: Caf\\351\\n' >&2\n"
                          f"exit {exit_code}\n", encoding="ascii")
        script.chmod(script.stat().st_mode | stat.S_IEXEC)
        return str(script)

    def test_undecodable_stderr_on_success(self):
        invoker = EncoderInvoker([EncoderStrategy("Full Software Fallback", "x265")],
                                 handbrake_path=self._fake_handbrake(0), delay=DelayPolicy.none())
        outcome = invoker.encode(self.request)
        self.assertTrue(outcome.success)

    def test_undecodable_stderr_on_failure(self):
        invoker = EncoderInvoker([EncoderStrategy("Full Software Fallback", "x265")],
                                 handbrake_path=self._fake_handbrake(1), delay=DelayPolicy.none())
        outcome = invoker.encode(self.request)
        self.assertFalse(outcome.success)
        self.assertEqual(outcome.attempts[0].error, "Title: Caf\ufffd")


if __name__ == '__main__':
    unittest.main()
