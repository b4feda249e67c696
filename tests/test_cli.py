"""Tests for CLI argument handling and exit codes."""

import os
import shutil
import tempfile
import unittest
from unittest import mock

import numpy as np

from GrayNormal import cli
from GrayNormal.phases.normal import generate_normal_map

from conftest import read_png, save_test_heightmap


class TestCLI(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.out_dir = os.path.join(self.tmpdir, "out")
        patcher = mock.patch("GrayNormal.cli.setup_logging")
        patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _heightmap(self, name, **kwargs):
        path = os.path.join(self.tmpdir, name)
        return path, save_test_heightmap(path, **kwargs)

    def _run(self, *argv):
        with mock.patch("builtins.print"):
            cli.main(["--no-progress", *argv])

    def _exit_code(self, *argv):
        with self.assertRaises(SystemExit) as ctx:
            self._run(*argv)
        return ctx.exception.code

    def test_help_exits_zero(self):
        with mock.patch("sys.stdout"):
            self.assertEqual(self._exit_code("-h"), 0)

    def test_no_input_files_exits_one(self):
        self.assertEqual(self._exit_code("-d", self.out_dir), 1)

    def test_unrecognized_flag_exits_one(self):
        with mock.patch("sys.stderr"):
            self.assertEqual(self._exit_code("-x", "a.png"), 1)

    def test_bad_scale_value_exits_one(self):
        with mock.patch("sys.stderr"):
            self.assertEqual(self._exit_code("-s", "steep", "a.png"), 1)

    def test_missing_file_exits_one(self):
        self.assertEqual(
            self._exit_code("-d", self.out_dir, os.path.join(self.tmpdir, "nope.png")), 1
        )

    def test_missing_extension_exits_one(self):
        path, _ = self._heightmap("plain.png")
        no_ext = os.path.join(self.tmpdir, "plain")
        shutil.copy(path, no_ext)
        self.assertEqual(self._exit_code("-d", self.out_dir, no_ext), 1)

    def test_zero_jobs_exits_one(self):
        path, _ = self._heightmap("a.png")
        self.assertEqual(self._exit_code("-j", "0", path), 1)

    def test_single_file_with_scale_and_output_dir(self):
        path, arr = self._heightmap("rock.png")
        self._run("-s", "4", "-d", self.out_dir, path)
        np.testing.assert_array_equal(
            read_png(os.path.join(self.out_dir, "rock_normals.png")),
            generate_normal_map(arr, 4.0),
        )

    def test_jobs_flag_runs_parallel(self):
        paths = [self._heightmap(f"h{i}.png", seed=i)[0] for i in range(4)]
        with mock.patch("GrayNormal.pipeline.BatchExecutor") as executor_cls:
            executor_cls.return_value.run.return_value = mock.Mock(ok=True, outputs=["x"])
            self._run("-j", "3", "-d", self.out_dir, *paths)
        config = executor_cls.call_args[0][0]
        self.assertEqual(config.workers, 3)
        self.assertEqual(config.mode, "parallel")
        self.assertEqual(executor_cls.return_value.run.call_args[0][0], paths)

    def test_parallel_run_end_to_end(self):
        paths = [self._heightmap(f"h{i}.png", seed=i)[0] for i in range(4)]
        self._run("-j", "2", "-d", self.out_dir, *paths)
        self.assertEqual(
            sorted(os.listdir(self.out_dir)),
            [f"h{i}_normals.png" for i in range(4)],
        )

    def test_threads_flag_uses_cpu_count(self):
        paths = [self._heightmap(f"h{i}.png", seed=i)[0] for i in range(2)]
        with mock.patch("GrayNormal.cli.os.cpu_count", return_value=5):
            with mock.patch("GrayNormal.pipeline.BatchExecutor") as executor_cls:
                executor_cls.return_value.run.return_value = mock.Mock(ok=True, outputs=["x"])
                self._run("-t", *paths)
        config = executor_cls.call_args[0][0]
        self.assertEqual(config.workers, 5)

    def test_threads_flag_is_capped_at_worker_limit(self):
        path, _ = self._heightmap("c.png")
        with mock.patch("GrayNormal.cli.os.cpu_count", return_value=512):
            with mock.patch("GrayNormal.pipeline.BatchExecutor") as executor_cls:
                executor_cls.return_value.run.return_value = mock.Mock(ok=True, outputs=["x"])
                self._run("-t", path)
        self.assertEqual(executor_cls.call_args[0][0].workers, 256)

    def test_merge_flag_writes_single_output(self):
        arr = np.random.default_rng(3).integers(0, 256, (12, 12), dtype=np.uint8)
        a, _ = self._heightmap("a.png", arr=arr)
        b, _ = self._heightmap("b.png", arr=arr)
        self._run("-J", "merged.png", "-d", self.out_dir, a, b)
        self.assertEqual(os.listdir(self.out_dir), ["merged.png"])
        np.testing.assert_array_equal(
            read_png(os.path.join(self.out_dir, "merged.png")),
            generate_normal_map(arr, 20.0),
        )

    def test_merge_dimension_mismatch_exits_one(self):
        a, _ = self._heightmap("a.png", width=8, height=8)
        b, _ = self._heightmap("b.png", width=9, height=8)
        self.assertEqual(self._exit_code("-J", "m.png", "-d", self.out_dir, a, b), 1)

    def test_continue_on_error_still_exits_one(self):
        good, _ = self._heightmap("good.png")
        code = self._exit_code(
            "--continue-on-error", "-d", self.out_dir,
            os.path.join(self.tmpdir, "nope.png"), good,
        )
        self.assertEqual(code, 1)
        self.assertTrue(os.path.isfile(os.path.join(self.out_dir, "good_normals.png")))

    def test_config_file_with_cli_override(self):
        cfg_path = os.path.join(self.tmpdir, "cfg.yaml")
        with open(cfg_path, "w", encoding="utf-8") as f:
            f.write("normal:\n  scale: 3.0\nworkers: 2\n")
        path, _ = self._heightmap("c.png")
        with mock.patch("GrayNormal.pipeline.BatchExecutor") as executor_cls:
            executor_cls.return_value.run.return_value = mock.Mock(ok=True, outputs=["x"])
            self._run("-c", cfg_path, "-s", "9", "--order", "lifo", path)
        config = executor_cls.call_args[0][0]
        self.assertEqual(config.normal.scale, 9.0)
        self.assertEqual(config.workers, 2)
        self.assertEqual(config.task_order, "lifo")

    def test_missing_config_file_exits_one(self):
        path, _ = self._heightmap("c.png")
        self.assertEqual(
            self._exit_code("-c", os.path.join(self.tmpdir, "absent.yaml"), path), 1
        )

    def test_legacy_merge_rounding_flag(self):
        path, _ = self._heightmap("c.png")
        with mock.patch("GrayNormal.pipeline.BatchExecutor") as executor_cls:
            executor_cls.return_value.run.return_value = mock.Mock(ok=True, outputs=["x"])
            self._run("-J", "m.png", "--legacy-merge-rounding", "--continue-on-error", path)
        config = executor_cls.call_args[0][0]
        self.assertEqual(config.merge.rounding, "legacy")
        self.assertFalse(config.fail_fast)

    def test_generate_config_writes_yaml(self):
        dest = os.path.join(self.tmpdir, "generated.yaml")
        self._run("--generate-config", "-c", dest)
        self.assertTrue(os.path.exists(dest))

    def test_keyboard_interrupt_exits_130(self):
        path, _ = self._heightmap("c.png")
        with mock.patch("GrayNormal.pipeline.BatchExecutor") as executor_cls:
            executor_cls.return_value.run.side_effect = KeyboardInterrupt
            self.assertEqual(self._exit_code(path), 130)


if __name__ == "__main__":
    unittest.main(verbosity=2)
