import unittest
from unittest.mock import MagicMock
import requests
from relaytools.configuration.constants import AttestationFlag
from relaytools.models.models import AttestationFlags, AttestationDecision
from relaytools.utilities.attestation import AttestationVerifier, FetchOptions, find_relay_address
from relaytools.utilities.exceptions import TransientFetchError
from fakes import PARTICIPANT, OTHER_PARTICIPANT, ATTESTATION_URL, valid_attestation

class TestAttestationParsing(unittest.TestCase):
    def setUp(self):
        self.verifier = AttestationVerifier(expected_tag='basodino', expected_mention='hoprnet')

    def test_find_attestation_url(self):
        self.assertEqual(
            self.verifier.find_attestation_url(f"here you go {ATTESTATION_URL} thanks"),
            ATTESTATION_URL,
        )
        self.assertEqual(
            self.verifier.find_attestation_url("https://x.com/someone/status/42"),
            "https://x.com/someone/status/42",
        )
        self.assertIsNone(self.verifier.find_attestation_url("hello, how do I join?"))
        self.assertIsNone(self.verifier.find_attestation_url("https://example.com/status/1"))

    def test_parse_attestation_id(self):
        self.assertEqual(self.verifier.parse_attestation_id(ATTESTATION_URL), '1311000000000000001')
        self.assertIsNone(self.verifier.parse_attestation_id("https://twitter.com/someone"))

    def test_find_relay_address(self):
        self.assertEqual(find_relay_address(f"Relaying package to {PARTICIPANT}"), PARTICIPANT)
        self.assertIsNone(find_relay_address("no address here"))
        self.assertIsNone(find_relay_address(None))

    def test_classify_valid_attestation(self):
        flags = self.verifier.classify(valid_attestation(PARTICIPANT), claimed_address=PARTICIPANT)
        self.assertEqual(flags, AttestationFlags(has_tag=True, has_mention=True, same_node=True))

    def test_classify_is_case_insensitive_for_tag_and_mention(self):
        flags = self.verifier.classify(f"#BASODINO @HoprNet {PARTICIPANT}", claimed_address=PARTICIPANT)
        self.assertTrue(flags.has_tag)
        self.assertTrue(flags.has_mention)

    def test_classify_rejects_other_nodes_attestation(self):
        flags = self.verifier.classify(valid_attestation(OTHER_PARTICIPANT), claimed_address=PARTICIPANT)
        self.assertFalse(flags.same_node)

    def test_classify_tag_must_end_at_word_boundary(self):
        flags = self.verifier.classify(f"#basodinos @hoprnetwork {PARTICIPANT}", claimed_address=PARTICIPANT)
        self.assertFalse(flags.has_tag)
        self.assertFalse(flags.has_mention)

    def test_debug_mode_skips_node_check(self):
        verifier = AttestationVerifier(debug_mode=True)
        flags = verifier.classify("#basodino @hoprnet", claimed_address=PARTICIPANT)
        self.assertTrue(flags.same_node)

    def test_decide_requires_every_required_flag(self):
        all_set = AttestationFlags(has_tag=True, has_mention=True, same_node=True)
        no_mention = AttestationFlags(has_tag=True, has_mention=False, same_node=True)
        self.assertEqual(self.verifier.decide(all_set), AttestationDecision.VALID)
        self.assertEqual(self.verifier.decide(no_mention), AttestationDecision.INVALID)
        self.assertEqual(
            self.verifier.decide(no_mention, required=frozenset({AttestationFlag.HAS_TAG, AttestationFlag.SAME_NODE})),
            AttestationDecision.VALID,
        )

    def test_missing_flags_are_in_declaration_order(self):
        flags = AttestationFlags(has_tag=False, has_mention=True, same_node=False)
        self.assertEqual(
            flags.missing(frozenset(AttestationFlag)),
            [AttestationFlag.HAS_TAG, AttestationFlag.SAME_NODE],
        )

    def test_extract_address(self):
        self.assertEqual(self.verifier.extract_address(valid_attestation(PARTICIPANT)), PARTICIPANT)
        debug_verifier = AttestationVerifier(debug_mode=True, debug_relay_address=OTHER_PARTICIPANT)
        self.assertEqual(debug_verifier.extract_address(valid_attestation(PARTICIPANT)), OTHER_PARTICIPANT)

    def test_html_to_text(self):
        html = """
        <html><head>
          <meta property="og:description" content="#basodino @hoprnet my node">
          <script>var tracking = 1;</script>
        </head><body><p>Visible body</p></body></html>
        """
        text = AttestationVerifier.html_to_text(html)
        self.assertTrue(text.startswith("#basodino @hoprnet my node"))
        self.assertIn("Visible body", text)
        self.assertNotIn("tracking", text)

class TestAttestationFetch(unittest.IsolatedAsyncioTestCase):
    def _response(self, text, content_type='text/plain'):
        response = MagicMock()
        response.text = text
        response.headers = {'Content-Type': content_type}
        return response

    async def test_fetch_returns_page_text(self):
        session = MagicMock()
        session.get.return_value = self._response(valid_attestation(PARTICIPANT))
        verifier = AttestationVerifier(session=session)

        text = await verifier.fetch(ATTESTATION_URL)

        self.assertEqual(text, valid_attestation(PARTICIPANT))
        self.assertEqual(session.get.call_args.args[0], ATTESTATION_URL)

    async def test_fetch_strips_html(self):
        session = MagicMock()
        session.get.return_value = self._response("<html><body><p>hello</p></body></html>", 'text/html')
        verifier = AttestationVerifier(session=session)
        self.assertEqual(await verifier.fetch(ATTESTATION_URL), "hello")

    async def test_network_errors_are_transient(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("connection refused")
        verifier = AttestationVerifier(session=session)
        with self.assertRaises(TransientFetchError):
            await verifier.fetch(ATTESTATION_URL)

    async def test_http_errors_are_transient(self):
        session = MagicMock()
        response = self._response("")
        response.raise_for_status.side_effect = requests.HTTPError("404 Client Error")
        session.get.return_value = response
        verifier = AttestationVerifier(session=session)
        with self.assertRaises(TransientFetchError):
            await verifier.fetch(ATTESTATION_URL)

    async def test_mock_fetch_does_not_touch_network(self):
        session = MagicMock()
        verifier = AttestationVerifier(debug_relay_address=PARTICIPANT, session=session)
        text = await verifier.fetch(ATTESTATION_URL, FetchOptions(mock=True))
        self.assertIn(PARTICIPANT, text)
        self.assertIn("#basodino", text)
        session.get.assert_not_called()

    async def test_verify_builds_record(self):
        session = MagicMock()
        session.get.return_value = self._response(valid_attestation(PARTICIPANT))
        verifier = AttestationVerifier(session=session)

        record = await verifier.verify(ATTESTATION_URL, claimed_address=PARTICIPANT)

        self.assertEqual(record.url, ATTESTATION_URL)
        self.assertEqual(record.id, '1311000000000000001')
        self.assertEqual(verifier.decide(record.flags), AttestationDecision.VALID)

if __name__ == '__main__':
    unittest.main()
