"""
Regression tests for scratch artifacts and processed outputs.

These tests prevent regressions where leftovers of an interrupted run were
picked up as new sources, or survived the cleanup pass.
"""

import tempfile
import unittest
from pathlib import Path

from hb_transcode.config import TranscodeConfig
from hb_transcode.core.modules.optimization.sampler import plan_samples
from hb_transcode.core.modules.processing.file_manager import FileManager


class TestArtifactRegression(unittest.TestCase):

    def setUp(self):
        self.test_dir = Path(tempfile.mkdtemp())
        self.fm = FileManager(TranscodeConfig())

    def tearDown(self):
        import shutil
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_sample_names_are_recognised_as_artifacts(self):
        """Every scratch name the sampler plans must be excluded from discovery."""
        source = self.test_dir / "Movie (2020).mkv"
        for spec in plan_samples(7200, 10, 15, self.fm.scratch_base_for(source)):
            self.assertTrue(self.fm.is_processed_or_artifact(spec.output_path), spec.output_path)

    def test_interrupted_run_leftovers(self):
        """Scratch files from a killed run are neither sources nor deliverables."""
        show = self.test_dir / "Show"
        show.mkdir()
        for name in ("e01.mkv", "e01_HBPROCESSED_4.mp4", "e01_HBPROCESSED.mp4"):
            (show / name).write_bytes(b"x")

        files = self.fm.discover_media_files(self.test_dir).files
        self.assertEqual([f.name for f in files], ["e01.mkv"])

        self.fm.cleanup_pass(self.test_dir)
        self.assertEqual(sorted(p.name for p in show.iterdir()), ["e01_HBPROCESSED.mp4"])

    def test_marker_is_case_insensitive_for_discovery(self):
        (self.test_dir / "e01_hbprocessed.MP4").write_bytes(b"x")
        self.assertEqual(self.fm.discover_media_files(self.test_dir).files, [])


if __name__ == '__main__':
    unittest.main()
