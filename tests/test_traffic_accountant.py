import asyncio
import unittest

from vpnbroker.services.registry import ConnectionRegistry
from vpnbroker.services.traffic import TrafficAccountant
from vpnbroker.services.vpn_session import VpnSession


class _FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class _FakeChannel:
    def __init__(self):
        self.sent = []

    async def send(self, message):
        self.sent.append(message)


class _BrokenChannel:
    async def send(self, message):
        raise RuntimeError("socket closed")


def _setup(channel=None):
    clock = _FakeClock()
    registry = ConnectionRegistry()
    accountant = TrafficAccountant(registry, clock=clock)
    channel = channel or _FakeChannel()
    session = VpnSession(
        connection_id=42,
        user_id=1,
        server_id=7,
        channel=channel,
        remote_ip="130.41.228.8",
        proxy_target="http://130.41.228.8:80",
        window=accountant.new_window(),
    )
    registry.register(session)
    return clock, registry, accountant, channel, session


class TrafficAccountantTests(unittest.TestCase):
    def test_sample_after_window_uses_elapsed_time(self):
        clock, _, accountant, channel, session = _setup()

        async def _run():
            first = await accountant.on_response_received(42, 2_000_000)
            clock.advance(1.2)
            second = await accountant.on_request_sent(42, 500_000)
            return first, second

        first, sample = asyncio.run(_run())

        self.assertIsNone(first)
        self.assertAlmostEqual(sample.download_mbps, 2_000_000 * 8 / 1.2 / 1_048_576)
        self.assertAlmostEqual(sample.download_mbps, 12.72, places=2)
        self.assertAlmostEqual(sample.upload_mbps, 3.18, places=2)
        self.assertEqual(int(sample.data_used_kb), 2441)
        self.assertEqual(len(channel.sent), 1)
        message = channel.sent[0]
        self.assertEqual(message["type"], "stats")
        self.assertEqual(set(message["data"]), {"downloadSpeed", "uploadSpeed", "dataUsed"})
        self.assertAlmostEqual(message["data"]["dataUsed"], 2_500_000 / 1024)

    def test_window_resets_after_sample(self):
        clock, _, accountant, channel, session = _setup()

        async def _run():
            clock.advance(1.0)
            await accountant.on_response_received(42, 1024)
            clock.advance(0.5)
            await accountant.on_response_received(42, 4096)

        asyncio.run(_run())

        self.assertEqual(len(channel.sent), 1)
        self.assertEqual(session.window.started_at, 101.0)
        self.assertEqual(session.window.bytes_down, 4096)
        self.assertEqual(session.window.bytes_up, 0)

    def test_idle_session_stays_silent_until_next_event(self):
        clock, _, accountant, channel, session = _setup()

        async def _run():
            await accountant.on_response_received(42, 100)
            clock.advance(10)
            silent = list(channel.sent)
            await accountant.on_request_sent(42, 50)
            return silent

        silent = asyncio.run(_run())

        self.assertEqual(silent, [])
        self.assertEqual(len(channel.sent), 1)
        self.assertEqual(session.window.bytes_down, 0)
        self.assertEqual(session.window.bytes_up, 0)
        self.assertEqual(session.window.started_at, clock.now)

    def test_data_used_is_sum_of_all_events(self):
        clock, _, accountant, _, session = _setup()
        sizes = [(True, 10), (False, 300), (True, 0), (False, 7), (True, 5000)]

        async def _run():
            previous = 0
            for is_request, size in sizes:
                if is_request:
                    await accountant.on_request_sent(42, size)
                else:
                    await accountant.on_response_received(42, size)
                self.assertGreaterEqual(session.data_used_bytes, previous)
                previous = session.data_used_bytes
                clock.advance(0.4)

        asyncio.run(_run())
        self.assertEqual(session.data_used_bytes, sum(size for _, size in sizes))

    def test_negative_lengths_do_not_decrease_usage(self):
        _, _, accountant, _, session = _setup()
        asyncio.run(accountant.on_response_received(42, 500))
        asyncio.run(accountant.on_response_received(42, -200))
        self.assertEqual(session.data_used_bytes, 500)

    def test_events_for_removed_connection_are_ignored(self):
        clock, registry, accountant, channel, session = _setup()
        registry.remove(42)
        clock.advance(5)

        result = asyncio.run(accountant.on_response_received(42, 1000))

        self.assertIsNone(result)
        self.assertEqual(session.data_used_bytes, 0)
        self.assertEqual(channel.sent, [])

    def test_failed_delivery_does_not_raise(self):
        clock, _, accountant, _, session = _setup(channel=_BrokenChannel())
        clock.advance(2)

        sample = asyncio.run(accountant.on_response_received(42, 2048))

        self.assertIsNotNone(sample)
        self.assertEqual(session.data_used_bytes, 2048)

    def test_window_must_be_positive(self):
        with self.assertRaises(ValueError):
            TrafficAccountant(ConnectionRegistry(), window_seconds=0)


if __name__ == "__main__":
    unittest.main()
