import asyncio
import json
import unittest
from types import SimpleNamespace

from vpnbroker.services.control import SessionControl
from vpnbroker.services.registry import ConnectionRegistry
from vpnbroker.services.traffic import TrafficAccountant


class _FakeChannel:
    def __init__(self):
        self.sent = []

    async def send(self, message):
        self.sent.append(message)


class _FakeServerDirectory:
    def __init__(self, servers=None, fail=False):
        self._servers = {s.id: s for s in (servers or [])}
        self._fail = fail

    async def get_server(self, server_id):
        if self._fail:
            raise RuntimeError("database unavailable")
        return self._servers.get(server_id)

    async def list_servers(self):
        return list(self._servers.values())


class _FakeHistory:
    def __init__(self, fail=False):
        self.finished = []
        self._fail = fail

    async def finish(self, connection_id, *, user_id, data_used):
        if self._fail:
            raise RuntimeError("write failed")
        self.finished.append((connection_id, user_id, data_used))


GERMANY = SimpleNamespace(id=7, name="Frankfurt", country="Germany")
JAPAN = SimpleNamespace(id=9, name="Tokyo", country="Japan")


def _control(directory=None, history=None):
    registry = ConnectionRegistry()
    accountant = TrafficAccountant(registry)
    directory = directory or _FakeServerDirectory([GERMANY, JAPAN])
    return registry, SessionControl(registry, accountant, directory, history)


def _frame(**payload):
    return json.dumps(payload)


class ConnectTests(unittest.TestCase):
    def test_connect_registers_session_and_replies_with_remote_ip(self):
        registry, control = _control()
        channel = _FakeChannel()

        asyncio.run(control.handle_message(channel, 5, _frame(type="connect", serverId=7, connectionId=42)))

        self.assertEqual(channel.sent, [{"type": "connected", "data": {"remoteIP": "130.41.228.8"}}])
        session = registry.get(42)
        self.assertEqual(session.server_id, 7)
        self.assertEqual(session.proxy_target, "http://130.41.228.8:80")
        self.assertIs(session.channel, channel)

    def test_user_id_comes_from_channel_identity(self):
        registry, control = _control()
        channel = _FakeChannel()

        asyncio.run(control.handle_message(
            channel, 5, _frame(type="connect", serverId=7, connectionId=42, userId=999),
        ))

        self.assertEqual(registry.get(42).user_id, 5)

    def test_unknown_server_is_rejected(self):
        registry, control = _control()
        channel = _FakeChannel()

        asyncio.run(control.handle_message(channel, 5, _frame(type="connect", serverId=404, connectionId=1)))

        self.assertEqual(channel.sent, [{"type": "error", "data": {"error": "Server not found"}}])
        self.assertEqual(len(registry), 0)

    def test_directory_failure_reports_generic_error(self):
        registry, control = _control(directory=_FakeServerDirectory(fail=True))
        channel = _FakeChannel()

        asyncio.run(control.handle_message(channel, 5, _frame(type="connect", serverId=7, connectionId=1)))

        self.assertEqual(channel.sent, [{"type": "error", "data": {"error": "Failed to establish VPN connection"}}])
        self.assertEqual(len(registry), 0)

    def test_second_connect_with_live_id_is_rejected(self):
        registry, control = _control()
        first, second = _FakeChannel(), _FakeChannel()

        async def _run():
            await control.handle_message(first, 5, _frame(type="connect", serverId=7, connectionId=42))
            await control.handle_message(second, 6, _frame(type="connect", serverId=9, connectionId=42))

        asyncio.run(_run())

        self.assertEqual(second.sent, [{"type": "error", "data": {"error": "Connection already active"}}])
        session = registry.get(42)
        self.assertIs(session.channel, first)
        self.assertEqual(session.user_id, 5)
        self.assertEqual(session.server_id, 7)


class MalformedMessageTests(unittest.TestCase):
    def test_bad_frames_get_error_and_channel_keeps_working(self):
        registry, control = _control()
        channel = _FakeChannel()
        bad_frames = [
            "not json",
            "[1, 2, 3]",
            _frame(type="teleport"),
            _frame(type="connect", serverId=7),
            _frame(type="connect", serverId="seven", connectionId=1),
            _frame(connectionId=1),
        ]

        async def _run():
            for raw in bad_frames:
                await control.handle_message(channel, 5, raw)
            await control.handle_message(channel, 5, _frame(type="connect", serverId=7, connectionId=3))

        asyncio.run(_run())

        errors = channel.sent[:-1]
        self.assertEqual(len(errors), len(bad_frames))
        self.assertTrue(all(m == {"type": "error", "data": {"error": "Invalid request"}} for m in errors))
        self.assertEqual(channel.sent[-1]["type"], "connected")
        self.assertIn(3, registry)

    def test_non_positive_connection_ids_are_rejected(self):
        registry, control = _control()
        channel = _FakeChannel()
        frames = [
            _frame(type="connect", serverId=7, connectionId=0),
            _frame(type="connect", serverId=7, connectionId=-5),
            _frame(type="disconnect", connectionId=0),
        ]

        async def _run():
            for raw in frames:
                await control.handle_message(channel, 5, raw)

        asyncio.run(_run())

        self.assertEqual(channel.sent, [{"type": "error", "data": {"error": "Invalid request"}}] * len(frames))
        self.assertEqual(len(registry), 0)


class DisconnectTests(unittest.TestCase):
    def test_disconnect_removes_session_and_closes_history(self):
        history = _FakeHistory()
        registry, control = _control(history=history)
        channel = _FakeChannel()

        async def _run():
            await control.handle_message(channel, 5, _frame(type="connect", serverId=7, connectionId=42))
            registry.get(42).data_used_bytes = 4096
            await control.handle_message(channel, 5, _frame(type="disconnect", connectionId=42))

        asyncio.run(_run())

        self.assertEqual(channel.sent[-1], {"type": "disconnected", "data": {}})
        self.assertNotIn(42, registry)
        self.assertEqual(history.finished, [(42, 5, 4096)])

    def test_disconnect_of_unknown_id_is_silent(self):
        registry, control = _control()
        channel = _FakeChannel()

        asyncio.run(control.handle_message(channel, 5, _frame(type="disconnect", connectionId=42)))

        self.assertEqual(channel.sent, [])
        self.assertEqual(len(registry), 0)

    def test_repeated_disconnect_replies_once(self):
        registry, control = _control()
        channel = _FakeChannel()

        async def _run():
            await control.handle_message(channel, 5, _frame(type="connect", serverId=7, connectionId=42))
            await control.handle_message(channel, 5, _frame(type="disconnect", connectionId=42))
            await control.handle_message(channel, 5, _frame(type="disconnect", connectionId=42))

        asyncio.run(_run())

        self.assertEqual([m["type"] for m in channel.sent], ["connected", "disconnected"])

    def test_cannot_disconnect_another_users_session(self):
        registry, control = _control()
        owner, intruder = _FakeChannel(), _FakeChannel()

        async def _run():
            await control.handle_message(owner, 5, _frame(type="connect", serverId=7, connectionId=42))
            await control.handle_message(intruder, 6, _frame(type="disconnect", connectionId=42))

        asyncio.run(_run())

        self.assertEqual(intruder.sent, [])
        self.assertIn(42, registry)

    def test_history_failure_does_not_block_disconnect(self):
        registry, control = _control(history=_FakeHistory(fail=True))
        channel = _FakeChannel()

        async def _run():
            await control.handle_message(channel, 5, _frame(type="connect", serverId=7, connectionId=42))
            await control.handle_message(channel, 5, _frame(type="disconnect", connectionId=42))

        asyncio.run(_run())

        self.assertEqual(channel.sent[-1]["type"], "disconnected")
        self.assertNotIn(42, registry)


class ChannelCloseTests(unittest.TestCase):
    def test_close_removes_exactly_the_channel_sessions(self):
        history = _FakeHistory()
        registry, control = _control(history=history)
        closing, other = _FakeChannel(), _FakeChannel()

        async def _run():
            await control.handle_message(closing, 5, _frame(type="connect", serverId=7, connectionId=10))
            await control.handle_message(closing, 5, _frame(type="connect", serverId=9, connectionId=11))
            await control.handle_message(other, 6, _frame(type="connect", serverId=7, connectionId=12))
            return await control.close_channel(closing)

        removed = asyncio.run(_run())

        self.assertEqual(sorted(s.connection_id for s in removed), [10, 11])
        self.assertEqual([s.connection_id for s in registry.snapshot()], [12])
        self.assertEqual(sorted(c for c, _, _ in history.finished), [10, 11])

    def test_close_of_channel_without_sessions_is_noop(self):
        registry, control = _control()
        self.assertEqual(asyncio.run(control.close_channel(_FakeChannel())), [])


if __name__ == "__main__":
    unittest.main()
