from __future__ import annotations

import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path


_CONFIG_YAML = """\
storage:
  database_path: state/portal.sqlite
blobs:
  backend: local
  root_dir: state/blobs
  public_base_url: https://cdn.example.com
logging:
  run_log_path: state/portal.log
"""


class TestCLISmoke(unittest.TestCase):
    def setUp(self) -> None:
        self.repo_root = Path(__file__).resolve().parents[1]
        self._td = tempfile.TemporaryDirectory()
        self.td = Path(self._td.name)
        self.cfg_path = self.td / "config.yaml"
        self.cfg_path.write_text(_CONFIG_YAML, encoding="utf-8")

        self.env = dict(os.environ)
        existing_pp = self.env.get("PYTHONPATH", "")
        self.env["PYTHONPATH"] = (
            f"{self.repo_root}{os.pathsep}{existing_pp}" if existing_pp else str(self.repo_root)
        )

    def tearDown(self) -> None:
        self._td.cleanup()

    def _run(self, *args: str) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            [sys.executable, "-m", "magazine_portal", *args],
            cwd=self.repo_root,
            env=self.env,
            capture_output=True,
            text=True,
        )

    def _image(self, name: str) -> Path:
        p = self.td / name
        p.write_bytes(b"\x89PNG" + name.encode("utf-8"))
        return p

    def test_submit_list_and_delete(self) -> None:
        cfg = str(self.cfg_path)

        proc = self._run("grant-admin", "--config", cfg, "boss")
        self.assertEqual(proc.returncode, 0, msg=proc.stderr)
        self.assertIn("is_admin=true", proc.stdout)

        proc = self._run(
            "submit",
            "--config", cfg,
            "--user", "boss",
            "--title", "Welcome",
            "--category", "music",
            "--hashtag", "jazz",
            "--hashtag", " jazz ",
            "--image", f"{self._image('one.png')}::https://example.com/one",
            "--image", str(self._image("two.png")),
        )
        self.assertEqual(proc.returncode, 0, msg=proc.stderr)
        self.assertIn("post_id=", proc.stdout)
        post_id = proc.stdout.strip().split("post_id=", 1)[1].splitlines()[0]

        proc = self._run("posts", "--config", cfg, "--user", "reader", "--tag", "jazz")
        self.assertEqual(proc.returncode, 0, msg=proc.stderr)
        self.assertIn("Welcome", proc.stdout)
        self.assertIn("2 image(s)", proc.stdout)

        proc = self._run("posts", "--config", cfg, "--user", "reader", "--query", "nothing-here")
        self.assertEqual(proc.returncode, 0, msg=proc.stderr)
        self.assertEqual(proc.stdout.strip(), "")
        self.assertIn("No matching posts", proc.stderr)

        proc = self._run("activity", "--config", cfg, "--user", "reader")
        self.assertEqual(proc.returncode, 0, msg=proc.stderr)
        actions = [json.loads(ln)["action"] for ln in proc.stdout.splitlines() if ln.strip()]
        self.assertEqual(actions, ["search"])

        proc = self._run("delete", "--config", cfg, "--user", "boss", post_id)
        self.assertEqual(proc.returncode, 0, msg=proc.stderr)
        self.assertIn("deleted=true", proc.stdout)
        self.assertEqual(list((self.td / "state" / "blobs").rglob("*.png")), [])

    def test_non_admin_cannot_submit(self) -> None:
        proc = self._run(
            "submit",
            "--config", str(self.cfg_path),
            "--user", "reader",
            "--title", "Nope",
            "--image", str(self._image("a.png")),
        )
        self.assertEqual(proc.returncode, 5, msg=proc.stderr)

    def test_submit_without_images_is_a_validation_error(self) -> None:
        cfg = str(self.cfg_path)
        self.assertEqual(self._run("grant-admin", "--config", cfg, "boss").returncode, 0)

        proc = self._run("submit", "--config", cfg, "--user", "boss", "--title", "Empty")
        self.assertEqual(proc.returncode, 2, msg=proc.stderr)
        self.assertIn("at least one image", proc.stderr)

        log_lines = (self.td / "state" / "portal.log").read_text(encoding="utf-8").splitlines()
        events = [json.loads(ln).get("event") for ln in log_lines if ln.strip()]
        self.assertIn("submit_command_failed", events)

    def test_missing_config(self) -> None:
        proc = self._run("posts", "--config", str(self.td / "missing.yaml"), "--user", "u1")
        self.assertEqual(proc.returncode, 2, msg=proc.stderr)


if __name__ == "__main__":
    unittest.main()
