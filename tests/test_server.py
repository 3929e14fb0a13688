"""Tests for netgauge.server and netgauge.transfer over real HTTP (aiohttp TestServer)."""

import os
import random
import tempfile
import unittest

from aiohttp import test_utils, web
from fakes import FakeClock

from netgauge.api import Endpoint
from netgauge.constants import DOWNLOAD_SIZE
from netgauge.errors import PayloadFetchError, TransferError
from netgauge.history import MemoryStorage, ResultHistory
from netgauge.models import EventKind
from netgauge.runner import SpeedTestRunner
from netgauge.server import (
    MIB,
    NetworkConditions,
    NetworkShaper,
    create_app,
    generate_payload_files,
    payload_filename,
)
from netgauge.transfer import HttpTransfer

SIZES = (1, 2, 4, 5, 10)


class TestNetworkShaper(unittest.TestCase):
    def test_envelope(self):
        shaper = NetworkShaper(NetworkConditions(), random.Random(7))
        for _ in range(200):
            base, jitter, delay = shaper.probe()
            self.assertTrue(5.0 <= base <= 20.0)
            self.assertTrue(1.0 <= jitter <= 5.0)
            self.assertGreaterEqual(delay, 1.0)
            self.assertGreaterEqual(shaper.download_speed(), 45.0)
            processing = shaper.processing_time()
            self.assertTrue(200.0 <= processing <= 300.0)
            speed, _, _ = shaper.upload_speed(10 * MIB, 0.5)
            self.assertTrue(2.0 * 0.95 <= speed <= 12.0 * 1.05)

    def test_seeded_draws_reproducible(self):
        a = NetworkShaper(NetworkConditions(), random.Random(42))
        b = NetworkShaper(NetworkConditions(), random.Random(42))
        self.assertEqual([a.probe() for _ in range(5)], [b.probe() for _ in range(5)])
        self.assertEqual(a.upload_speed(5 * MIB, 1.0), b.upload_speed(5 * MIB, 1.0))

    def test_congestion_grows_with_size(self):
        shaper = NetworkShaper(NetworkConditions.fixed(10, 0, 50, 8), random.Random(0))
        _, _, small = shaper.upload_speed(1 * MIB, 1.0)
        _, _, large = shaper.upload_speed(25 * MIB, 1.0)
        self.assertEqual(small, 2.0)
        self.assertGreater(large, small)

    def test_fixed_conditions(self):
        shaper = NetworkShaper(NetworkConditions.fixed(10, 0, 50, 8), random.Random(0))
        self.assertEqual(shaper.probe(), (10.0, 0.0, 10.0))
        self.assertEqual(shaper.download_speed(), 50.0)
        self.assertEqual(shaper.upload_speed(10 * MIB, 2.0)[0], 8.0)


class TestPayloadFiles(unittest.TestCase):
    def test_generate(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            paths = generate_payload_files(tmpdir, sizes=(1, 2), rng=random.Random(1))
            self.assertEqual([os.path.basename(p) for p in paths], ["test_1mb.bin", "test_2mb.bin"])
            self.assertEqual(os.path.getsize(paths[1]), 2 * MIB)

    def test_filename(self):
        self.assertEqual(payload_filename(25), "test_25mb.bin")


class _ServerTestCase(unittest.IsolatedAsyncioTestCase):
    conditions = NetworkConditions.fixed(latency_ms=10, jitter_ms=0, download_mbps=50, upload_mbps=8)

    def make_app(self):
        return create_app(
            self.conditions,
            seed=1,
            sleep=self.clock.sleep,
            clock=self.clock,
            payload_sizes=SIZES,
        )

    async def asyncSetUp(self):
        self.clock = FakeClock()
        self.server = test_utils.TestServer(self.make_app())
        await self.server.start_server()
        self.endpoint = Endpoint(str(self.server.make_url("/")))

    async def asyncTearDown(self):
        await self.server.close()


class TestHttpTransfer(_ServerTestCase):
    async def test_probe(self):
        async with HttpTransfer(self.endpoint, clock=self.clock) as transfer:
            result = await transfer.probe()
        self.assertAlmostEqual(result.elapsed_ms, 10.0, places=6)
        self.assertEqual(result.server_latency_ms, 10.0)
        self.assertEqual(result.server_jitter_ms, 0.0)
        self.assertEqual(result.bytes, 0)

    async def test_download(self):
        async with HttpTransfer(self.endpoint, clock=self.clock) as transfer:
            result = await transfer.download()
        self.assertEqual(result.bytes, DOWNLOAD_SIZE)
        expected = DOWNLOAD_SIZE * 8 / (0.010 + DOWNLOAD_SIZE * 8 / 1e6 / 50) / 1e6
        self.assertAlmostEqual(result.speed_mbps, expected, places=4)

    async def test_upload_reports_server_speed(self):
        async with HttpTransfer(self.endpoint, clock=self.clock) as transfer:
            payload = await transfer.fetch_payload(2)
            result = await transfer.upload(payload)
        self.assertEqual(len(payload), 2 * MIB)
        self.assertEqual(result.speed_mbps, 8.0)
        self.assertEqual(result.bytes, 2 * MIB)
        self.assertGreater(result.server_duration, 0)

    async def test_unknown_payload_tier(self):
        async with HttpTransfer(self.endpoint, clock=self.clock) as transfer:
            with self.assertRaises(PayloadFetchError) as ctx:
                await transfer.fetch_payload(3)
        self.assertEqual(ctx.exception.status, 404)
        self.assertEqual(ctx.exception.size_mb, 3)

    async def test_identity(self):
        async with HttpTransfer(self.endpoint, clock=self.clock) as transfer:
            identity = await transfer.identity()
        self.assertEqual(identity.ip, "127.0.0.1")
        self.assertEqual(identity.isp, "Development Environment")
        self.assertEqual(identity.server, "Local Server")

    async def test_identity_prefers_forwarded_for(self):
        async with HttpTransfer(self.endpoint, clock=self.clock) as transfer:
            async with transfer.session.get(
                self.endpoint.network_info_url,
                headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"},
            ) as resp:
                data = await resp.json()
        self.assertEqual(data["ip"], "203.0.113.9")
        self.assertTrue(data["success"])

    async def test_session_required(self):
        transfer = HttpTransfer(self.endpoint)
        with self.assertRaises(RuntimeError):
            await transfer.probe()


class TestFullRunOverHttp(_ServerTestCase):
    async def test_end_to_end(self):
        history = ResultHistory(MemoryStorage())
        async with HttpTransfer(self.endpoint, clock=self.clock) as transfer:
            identity = await transfer.identity()
            runner = SpeedTestRunner(
                transfer,
                history,
                max_payload_mb=max(SIZES),
                sleep=self.clock.sleep,
                clock=self.clock,
            )
            events = []
            runner.add_listener(events.append)
            result = await runner.run(identity)

        expected_download = DOWNLOAD_SIZE * 8 / (0.010 + DOWNLOAD_SIZE * 8 / 1e6 / 50) / 1e6
        self.assertAlmostEqual(result.ping, 10.0, places=6)
        self.assertAlmostEqual(result.jitter, 0.0, places=6)
        self.assertAlmostEqual(result.download, expected_download, places=4)
        self.assertEqual(result.upload, 8.0)
        self.assertEqual(result.server, "Local Server")
        self.assertEqual(runner.upload.payload_mb, 10)
        self.assertEqual(history.tests, [result])
        self.assertIs(events[-1].kind, EventKind.COMPLETED)

    async def test_cap_between_served_sizes_uses_served_payload(self):
        async with HttpTransfer(self.endpoint, clock=self.clock) as transfer:
            runner = SpeedTestRunner(
                transfer,
                ResultHistory(MemoryStorage()),
                max_payload_mb=3,
                sleep=self.clock.sleep,
                clock=self.clock,
            )
            result = await runner.run()

        self.assertEqual(runner.upload.payload_mb, 2)
        self.assertEqual(result.upload, 8.0)


class _BrokenServer(_ServerTestCase):
    def make_app(self):
        async def fail(request):
            return web.Response(status=500, text="overloaded")

        async def reject(request):
            await request.read()
            return web.json_response({"success": False, "error": "Upload test failed"})

        app = web.Application()
        app.add_routes([
            web.head("/probe", fail),
            web.get("/probe", fail, allow_head=False),
            web.post("/upload", reject),
            web.get("/network-info", fail),
        ])
        return app


class TestTransferErrors(_BrokenServer):
    async def test_probe_http_error(self):
        async with HttpTransfer(self.endpoint) as transfer:
            with self.assertRaises(TransferError) as ctx:
                await transfer.probe()
        self.assertEqual(ctx.exception.status, 500)
        self.assertEqual(ctx.exception.url, self.endpoint.probe_url)

    async def test_download_http_error(self):
        async with HttpTransfer(self.endpoint) as transfer:
            with self.assertRaises(TransferError):
                await transfer.download()

    async def test_upload_rejected(self):
        async with HttpTransfer(self.endpoint) as transfer:
            with self.assertRaises(TransferError):
                await transfer.upload(b"x" * 1024)

    async def test_missing_payload_route(self):
        async with HttpTransfer(self.endpoint) as transfer:
            with self.assertRaises(PayloadFetchError):
                await transfer.fetch_payload(1)

    async def test_identity_falls_back_to_unknown(self):
        async with HttpTransfer(self.endpoint) as transfer:
            with self.assertLogs("netgauge.api", level="WARNING"):
                identity = await transfer.identity()
        self.assertEqual(identity.ip, "Unknown")

    async def test_run_fails_in_ping(self):
        history = ResultHistory(MemoryStorage())
        async with HttpTransfer(self.endpoint) as transfer:
            runner = SpeedTestRunner(transfer, history)
            with self.assertRaises(TransferError):
                await runner.run()
        self.assertEqual(history.tests, [])


class TestUnreachableServer(unittest.IsolatedAsyncioTestCase):
    async def test_connection_refused(self):
        # port 1 is never served in the test environment
        async with HttpTransfer(Endpoint("http://127.0.0.1:1"), timeout=2.0) as transfer:
            with self.assertRaises(TransferError):
                await transfer.probe()


if __name__ == "__main__":
    unittest.main()
