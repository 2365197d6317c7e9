import io
import json
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path

from launch_deployer.cli import build_parser, run_cli

from fakes import events_of, new_stream


class CliTests(unittest.TestCase):
    def _run(self, argv) -> tuple:
        out = io.StringIO()
        err = io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            exit_code = run_cli(argv)
        return exit_code, out.getvalue(), err.getvalue()

    def test_parser_requires_a_command(self) -> None:
        with redirect_stderr(io.StringIO()), self.assertRaises(SystemExit):
            build_parser().parse_args([])

    def test_state_from_captured_stream(self) -> None:
        stream, buffer = new_stream(prefix="EVT ")
        stream.event("start")
        stream.artifact("meta", {"steps": [{"id": "plan", "description": "Prepare deployment plan"}]})
        stream.emit("event:start", step="plan")
        stream.emit("event:end", step="plan")
        stream.event("end")

        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "events.log"
            path.write_text("build output\n" + buffer.getvalue(), encoding="utf-8")
            exit_code, out, _ = self._run(["state", str(path), "--prefix", "EVT "])

        self.assertEqual(exit_code, 0)
        state = json.loads(out)
        self.assertTrue(state["finished"])
        self.assertEqual(state["steps"], {"plan": "done"})
        self.assertEqual(state["planned_steps"][0]["id"], "plan")
        self.assertEqual(state["last_id"], 5)

    def test_state_of_failed_run_exits_one(self) -> None:
        stream, buffer = new_stream()
        stream.emit("event:error", {"type": "exec", "exit_code": 1}, step="build")

        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "events.log"
            path.write_text(buffer.getvalue(), encoding="utf-8")
            exit_code, out, _ = self._run(["state", str(path)])

        self.assertEqual(exit_code, 1)
        self.assertTrue(json.loads(out)["failed"])

    def test_state_with_unreadable_file(self) -> None:
        exit_code, out, err = self._run(["state", "/nonexistent/events.log"])

        self.assertEqual(exit_code, 1)
        self.assertEqual(out, "")
        self.assertIn("Cannot read stream", err)

    def test_run_with_missing_config_reports_validation_error(self) -> None:
        exit_code, out, _ = self._run(
            ["run", "--config", "/nonexistent/deployer.json", "--prefix", "DEPLOYER "]
        )

        self.assertEqual(exit_code, 1)
        buffer = io.StringIO(out)
        events = events_of(buffer, prefix="DEPLOYER ")
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].type, "event:error")
        self.assertEqual(events[0].payload["type"], "validation")

    def test_run_with_malformed_config_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "deployer.json"
            path.write_text("{not json", encoding="utf-8")
            exit_code, out, _ = self._run(["run", "--config", str(path)])

        self.assertEqual(exit_code, 1)
        error = json.loads(out.splitlines()[0])
        self.assertEqual(error["type"], "event:error")
        self.assertIn("invalid configuration", error["payload"]["message"])


if __name__ == "__main__":
    unittest.main()
