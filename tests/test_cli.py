"""Tests for CLI validation, CSV append, history modes and the run entry point."""

import contextlib
import functools
import io
import json
import logging
import os
import tempfile
import unittest
from unittest import mock

from fakes import FakeTransport, RecordingSleep, download, probe, upload

from netgauge.constants import (
    DEFAULT_DOWNLOAD_COUNT,
    DEFAULT_MAX_PAYLOAD_MB,
    DEFAULT_PING_COUNT,
    DEFAULT_UPLOAD_REPEATS,
    MAX_DOWNLOAD_COUNT,
    MAX_PING_COUNT,
    MAX_UPLOAD_REPEATS,
    MIN_DOWNLOAD_COUNT,
    MIN_PING_COUNT,
    MIN_UPLOAD_REPEATS,
)
from netgauge.history import MemoryStorage, ResultHistory
from netgauge.models import TestResult
from netgauge.runner import SpeedTestRunner


def _result(**overrides):
    data = dict(
        date="2025-01-15T10:30:00+00:00",
        isp="TestISP",
        ip="1.2.3.4",
        server="TestServer",
        ping=15.0,
        jitter=2.0,
        download=100.0,
        upload=50.0,
    )
    data.update(overrides)
    return TestResult(**data)


class TestValidation(unittest.TestCase):
    """Test the _validate function from speedgauge.py."""

    def _validate(self, **kwargs):
        from speedgauge import _validate
        defaults = {
            "ping_count": DEFAULT_PING_COUNT,
            "download_count": DEFAULT_DOWNLOAD_COUNT,
            "upload_repeats": DEFAULT_UPLOAD_REPEATS,
            "max_payload_mb": DEFAULT_MAX_PAYLOAD_MB,
        }
        defaults.update(kwargs)
        return _validate(**defaults)

    def test_defaults_valid(self):
        self._validate()

    def test_ping_count_bounds(self):
        self._validate(ping_count=MIN_PING_COUNT)
        self._validate(ping_count=MAX_PING_COUNT)
        with self.assertRaises(ValueError):
            self._validate(ping_count=MIN_PING_COUNT - 1)
        with self.assertRaises(ValueError):
            self._validate(ping_count=MAX_PING_COUNT + 1)

    def test_download_count_bounds(self):
        self._validate(download_count=MIN_DOWNLOAD_COUNT)
        with self.assertRaises(ValueError):
            self._validate(download_count=MAX_DOWNLOAD_COUNT + 1)

    def test_upload_repeats_bounds(self):
        self._validate(upload_repeats=MAX_UPLOAD_REPEATS)
        with self.assertRaises(ValueError):
            self._validate(upload_repeats=MIN_UPLOAD_REPEATS - 1)

    def test_max_payload_too_small(self):
        with self.assertRaises(ValueError):
            self._validate(max_payload_mb=0)

    def test_bad_server_url(self):
        with self.assertRaises(ValueError):
            self._validate(server_url="localhost:8080")


class TestCsvAppend(unittest.TestCase):
    """Test the _append_csv helper from speedgauge.py."""

    def test_creates_header_on_new_file(self):
        from speedgauge import _append_csv
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "log.csv")
            _append_csv(path, _result())
            with open(path) as fh:
                lines = fh.readlines()
            self.assertEqual(len(lines), 2)  # header + data row
            self.assertTrue(lines[0].startswith("date,"))
            self.assertIn("TestServer", lines[1])

    def test_no_duplicate_header(self):
        from speedgauge import _append_csv
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "log.csv")
            for _ in range(3):
                _append_csv(path, _result())
            with open(path) as fh:
                lines = fh.readlines()
            self.assertEqual(len(lines), 4)  # 1 header + 3 data rows
            self.assertEqual(sum(1 for line in lines if line.startswith("date,")), 1)

    def test_values_in_row(self):
        from speedgauge import _append_csv
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "log.csv")
            _append_csv(path, _result(download=200.0, upload=75.0))
            with open(path) as fh:
                lines = fh.readlines()
            self.assertIn("200.00", lines[1])
            self.assertIn("75.00", lines[1])


class TestParser(unittest.TestCase):
    def test_counts_default_to_none(self):
        from speedgauge import build_parser
        args = build_parser().parse_args([])
        self.assertIsNone(args.ping_count)
        self.assertIsNone(args.url)
        self.assertEqual(args.repeat, 1)

    def test_flags(self):
        from speedgauge import build_parser
        args = build_parser().parse_args(
            ["--json", "--ping-count", "12", "--url", "http://h:1", "--max-payload-mb", "10"]
        )
        self.assertTrue(args.json)
        self.assertEqual(args.ping_count, 12)
        self.assertEqual(args.url, "http://h:1")
        self.assertEqual(args.max_payload_mb, 10)


class TestMainModes(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.history_path = os.path.join(self.tmpdir.name, "history.json")
        self.config_path = os.path.join(self.tmpdir.name, "config.json")
        patches = [
            mock.patch("netgauge.history._history_path", return_value=self.history_path),
            mock.patch("netgauge.config._config_path", return_value=self.config_path),
            mock.patch("speedgauge.configure_logging"),
        ]
        for p in patches:
            p.start()
            self.addCleanup(p.stop)
        self.addCleanup(self.tmpdir.cleanup)

    def test_invalid_parameters_exit(self):
        from speedgauge import main
        with self.assertRaises(SystemExit) as ctx:
            main(["--ping-count", "0"])
        self.assertEqual(ctx.exception.code, 1)

    def test_invalid_repeat_exit(self):
        from speedgauge import main
        with self.assertRaises(SystemExit):
            main(["--repeat", "0"])

    def test_history_mode(self):
        from netgauge.history import JsonFileStorage
        from speedgauge import main
        ResultHistory(JsonFileStorage()).record(_result())
        with mock.patch("speedgauge.print_history") as show:
            main(["--history"])
        shown = show.call_args[0][0]
        self.assertEqual(len(shown), 1)
        self.assertEqual(shown[0].server, "TestServer")

    def test_clear_history(self):
        from netgauge.history import JsonFileStorage
        from speedgauge import main
        ResultHistory(JsonFileStorage()).record(_result())
        main(["--clear-history"])
        self.assertFalse(os.path.exists(self.history_path))

    def test_serve_mode(self):
        from speedgauge import main
        with mock.patch("speedgauge.run_server") as serve:
            main(["--serve", "--port", "9999", "--seed", "3"])
        serve.assert_called_once_with(host="127.0.0.1", port=9999, seed=3, payload_dir=None)

    def test_config_values_used(self):
        from speedgauge import main
        with open(self.config_path, "w") as fh:
            json.dump({"server_url": "http://example.test:9000", "ping_count": 4}, fh)
        with mock.patch("speedgauge.run_speedtest", new=mock.MagicMock()) as run, \
                mock.patch("speedgauge.asyncio.run"):
            main(["--simple", "--download-count", "2"])
        kwargs = run.call_args.kwargs
        self.assertEqual(kwargs["server_url"], "http://example.test:9000")
        self.assertEqual(kwargs["ping_count"], 4)
        self.assertEqual(kwargs["download_count"], 2)


class _PatchedTransfer:
    """Async context manager yielding a scripted transport."""

    def __init__(self, transport):
        self.transport = transport

    def __call__(self, endpoint):
        return self

    async def __aenter__(self):
        return self.transport

    async def __aexit__(self, *exc):
        return None


class TestRunSpeedtest(unittest.IsolatedAsyncioTestCase):
    async def test_simple_mode_records_and_exports(self):
        import speedgauge

        transport = FakeTransport(
            probes=[probe(ms, jitter_ms=1.0) for ms in (50, 12, 15, 14, 13, 90, 16, 11)],
            downloads=[download(50.0)] * 8,
            uploads=[upload(8.0)] * 4,
        )
        history = ResultHistory(MemoryStorage())

        with tempfile.TemporaryDirectory() as tmpdir:
            out = os.path.join(tmpdir, "result.json")
            csv_path = os.path.join(tmpdir, "log.csv")
            runner_cls = functools.partial(SpeedTestRunner, sleep=RecordingSleep())
            with mock.patch("speedgauge.HttpTransfer", _PatchedTransfer(transport)), \
                    mock.patch("speedgauge.SpeedTestRunner", runner_cls), \
                    mock.patch("builtins.print"):
                exported = await speedgauge.run_speedtest(
                    simple=True, output_file=out, csv_file=csv_path, history=history,
                )

            with open(out, encoding="utf-8") as fh:
                saved = json.load(fh)
            with open(csv_path) as fh:
                csv_lines = fh.readlines()

        self.assertAlmostEqual(exported["ping"], 14.5)
        self.assertAlmostEqual(exported["download"], 50.0)
        self.assertEqual(exported["upload"], 8.0)
        self.assertEqual(exported["server"], "Test DC")
        self.assertEqual(saved["upload"], 8.0)
        self.assertEqual(len(csv_lines), 2)
        self.assertEqual(len(history.tests), 1)

    async def test_json_stdout_stays_parseable_with_warnings(self):
        import speedgauge
        from ui.logging_setup import configure_logging

        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level

        def restore():
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

        self.addCleanup(restore)
        configure_logging("WARNING")

        transport = FakeTransport(
            probes=[probe(ms, jitter_ms=1.0) for ms in (50, 12, 15, 14, 13, 90, 16, 11)],
            downloads=[download(50.0)] * 8,
            uploads=[upload(8.0), upload(1500.0), upload(8.0), upload(9.0)],
        )
        stdout, stderr = io.StringIO(), io.StringIO()
        runner_cls = functools.partial(SpeedTestRunner, sleep=RecordingSleep())
        with mock.patch("speedgauge.HttpTransfer", _PatchedTransfer(transport)), \
                mock.patch("speedgauge.SpeedTestRunner", runner_cls), \
                contextlib.redirect_stdout(stdout), contextlib.redirect_stderr(stderr):
            exported = await speedgauge.run_speedtest(
                json_output=True, history=ResultHistory(MemoryStorage()),
            )

        parsed = json.loads(stdout.getvalue())
        self.assertEqual(parsed["upload"], exported["upload"])
        self.assertEqual(parsed["upload"], 9.0)
        self.assertIn("implausible", stderr.getvalue())


if __name__ == "__main__":
    unittest.main()
