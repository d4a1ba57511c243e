import unittest
from decimal import Decimal
from relaytools.models.models import IdentityKind
from relaytools.utilities.envelope import encode_envelope, decode_envelope, now_in_ms
from relaytools.utilities.exceptions import NotStartedError
from relaytools.utilities.relay_gateway import RelayGateway
from fakes import FakeRelayNode, BOT_ADDRESS, BOT_NATIVE_ADDRESS, PARTICIPANT

class TestRelayGatewayNotStarted(unittest.IsolatedAsyncioTestCase):
    async def test_operations_require_start(self):
        gateway = RelayGateway(FakeRelayNode())
        with self.assertRaises(NotStartedError):
            await gateway.send(PARTICIPANT, "hello")
        with self.assertRaises(NotStartedError):
            await gateway.identity(IdentityKind.NETWORK)
        with self.assertRaises(NotStartedError):
            await gateway.open_channel(PARTICIPANT, 1)
        with self.assertRaises(NotStartedError):
            gateway.list_connected_peers()

    async def test_failed_start_is_reported(self):
        gateway = RelayGateway(FakeRelayNode(fail_start=True))
        self.assertFalse(await gateway.start())
        with self.assertRaises(NotStartedError):
            await gateway.balance()

class TestRelayGateway(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.node = FakeRelayNode()
        self.gateway = RelayGateway(self.node)
        self.assertTrue(await self.gateway.start())

    async def test_send_wraps_body_in_envelope_with_sender(self):
        ack = await self.gateway.send(PARTICIPANT, "hello", intermediate_hops=[BOT_ADDRESS])
        payload, destination, hops = self.node.sent[0]
        envelope = decode_envelope(payload)
        self.assertEqual(envelope.body, "hello")
        self.assertEqual(envelope.sender, BOT_ADDRESS)
        self.assertEqual(destination, PARTICIPANT)
        self.assertEqual(hops, [BOT_ADDRESS])
        self.assertEqual(ack.intermediate_hops, [BOT_ADDRESS])

    async def test_send_can_omit_sender(self):
        await self.gateway.send(PARTICIPANT, "anonymous", include_sender=False)
        self.assertIsNone(decode_envelope(self.node.sent[0][0]).sender)

    async def test_identities(self):
        self.assertEqual(await self.gateway.identity(IdentityKind.NETWORK), BOT_ADDRESS)
        self.assertEqual(await self.gateway.identity(IdentityKind.NATIVE), BOT_NATIVE_ADDRESS)

    async def test_delivered_payload_is_queued_with_latency(self):
        origin = now_in_ms() - 40
        self.node.on_payload(encode_envelope("hi bot", sender=PARTICIPANT, origin_timestamp=origin))
        message = self.gateway.inbound.get_nowait()
        self.assertEqual(message.sender, PARTICIPANT)
        self.assertEqual(message.text, "hi bot")
        self.assertEqual(message.origin_timestamp, origin)
        self.assertGreaterEqual(message.latency_ms, 40)

    async def test_malformed_payload_is_dropped(self):
        self.node.on_payload(b'\x00\x01garbage')
        self.assertTrue(self.gateway.inbound.empty())

    async def test_open_channel_returns_hex_id(self):
        channel_id = await self.gateway.open_channel(PARTICIPANT, 10)
        self.assertEqual(channel_id, '0x' + 'ab' * 32)
        self.assertEqual(self.node.channels, [(PARTICIPANT, 10)])

    async def test_balance_and_peers(self):
        self.assertEqual(await self.gateway.balance(), Decimal('100'))
        self.assertEqual(self.gateway.list_connected_peers(), {PARTICIPANT})

if __name__ == '__main__':
    unittest.main()
