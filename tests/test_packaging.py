"""Tests for packaging and pyproject.toml correctness."""

import os
import unittest

_ROOT = os.path.dirname(os.path.dirname(__file__))


def _load_pyproject():
    import tomllib
    with open(os.path.join(_ROOT, "pyproject.toml"), "rb") as f:
        return tomllib.load(f)


def _dist_name(spec: str) -> str:
    for sep in ("<", ">", "=", "!", "~", "[", ";", " "):
        spec = spec.split(sep, 1)[0]
    return spec.strip().lower()


class TestPackagingMetadata(unittest.TestCase):
    def test_runtime_dependencies_declared(self):
        deps = {_dist_name(d) for d in _load_pyproject()["project"]["dependencies"]}
        for name in ("numpy", "pillow", "scipy", "pyyaml", "tqdm"):
            self.assertIn(name, deps)

    def test_pytest_only_in_test_extra(self):
        data = _load_pyproject()
        base = {_dist_name(d) for d in data["project"]["dependencies"]}
        test = {_dist_name(d) for d in data["project"]["optional-dependencies"]["test"]}
        self.assertNotIn("pytest", base)
        self.assertIn("pytest", test)

    def test_console_script_points_at_cli(self):
        scripts = _load_pyproject()["project"]["scripts"]
        self.assertEqual(scripts["graynormal"], "GrayNormal.cli:main")

    def test_requirements_txt_matches_pyproject(self):
        with open(os.path.join(_ROOT, "requirements.txt"), "r", encoding="utf-8") as f:
            lines = {
                _dist_name(ln)
                for ln in f.read().splitlines()
                if ln.strip() and not ln.strip().startswith("#")
            }
        deps = {_dist_name(d) for d in _load_pyproject()["project"]["dependencies"]}
        self.assertEqual(lines, deps)

    def test_version_matches_package(self):
        from GrayNormal import __version__
        self.assertEqual(_load_pyproject()["project"]["version"], __version__)


if __name__ == "__main__":
    unittest.main(verbosity=2)
