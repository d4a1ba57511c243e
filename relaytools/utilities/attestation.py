import asyncio
import re
from dataclasses import dataclass
from typing import Optional, FrozenSet
import requests
from bs4 import BeautifulSoup
from loguru import logger
import relaytools.configuration.constants as global_constants
from relaytools.configuration.constants import AttestationFlag
from relaytools.models.models import AttestationFlags, AttestationRecord, AttestationDecision
from relaytools.utilities.exceptions import TransientFetchError

def find_relay_address(text: str) -> Optional[str]:
    """First relay network address appearing in a text"""
    match = global_constants.RELAY_ADDRESS_PATTERN.search(text or '')
    return match.group(0) if match else None

@dataclass
class FetchOptions:
    mock: bool = False
    timeout: float = global_constants.ATTESTATION_FETCH_TIMEOUT

class AttestationVerifier:
    """Fetches and classifies externally hosted attestation posts"""

    def __init__(
            self,
            expected_tag: str = global_constants.DEFAULT_ATTESTATION_TAG,
            expected_mention: str = global_constants.DEFAULT_ATTESTATION_MENTION,
            required_flags: FrozenSet[AttestationFlag] = global_constants.DEFAULT_REQUIRED_FLAGS,
            debug_mode: bool = False,
            debug_relay_address: Optional[str] = None,
            session: Optional[requests.Session] = None
        ):
        self.expected_tag = expected_tag
        self.expected_mention = expected_mention
        self.required_flags = required_flags
        self.debug_mode = debug_mode
        self.debug_relay_address = debug_relay_address
        self.session = session or requests.Session()

    @staticmethod
    def find_attestation_url(text: str) -> Optional[str]:
        """Return the first attestation url in a message, if any"""
        match = global_constants.ATTESTATION_URL_PATTERN.search(text or '')
        return match.group(0) if match else None

    @staticmethod
    def parse_attestation_id(url: str) -> Optional[str]:
        match = global_constants.ATTESTATION_ID_PATTERN.search(url)
        return match.group(1) if match else None

    @staticmethod
    def html_to_text(html: str) -> str:
        """Reduce an HTML page to its visible text"""
        soup = BeautifulSoup(html, 'html.parser')
        for element in soup(['script', 'style', 'noscript']):
            element.decompose()
        # Posts embed their body in og:description when the page is rendered client-side
        description = soup.find('meta', attrs={'property': 'og:description'})
        parts = [description['content']] if description and description.get('content') else []
        parts.append(soup.get_text(separator=' ', strip=True))
        return ' '.join(parts)

    def _mock_text(self) -> str:
        address = self.debug_relay_address or ''
        return f"Signing up for the relay campaign #{self.expected_tag} @{self.expected_mention} {address}"

    def _fetch_sync(self, url: str, timeout: float) -> str:
        response = self.session.get(url, timeout=timeout, headers={'User-Agent': 'relaytools'})
        response.raise_for_status()
        content_type = response.headers.get('Content-Type', '')
        if 'html' in content_type:
            return self.html_to_text(response.text)
        return response.text

    async def fetch(self, url: str, options: Optional[FetchOptions] = None) -> str:
        """
        Fetch the text of an attestation.

        Args:
            url: Attestation url
            options: Fetch options. With mock set, returns a synthetic attestation

        Returns:
            str: The attestation text

        Raises:
            TransientFetchError: On network errors, timeouts and HTTP errors
        """
        options = options or FetchOptions(mock=self.debug_mode)
        if options.mock:
            logger.debug(f"AttestationVerifier.fetch: Returning mock attestation for {url}")
            return self._mock_text()

        try:
            return await asyncio.to_thread(self._fetch_sync, url, options.timeout)
        except requests.RequestException as e:
            logger.warning(f"AttestationVerifier.fetch: Could not fetch {url}: {e}")
            raise TransientFetchError(url, str(e))

    def classify(
            self,
            text: str,
            expected_tag: Optional[str] = None,
            expected_mention: Optional[str] = None,
            claimed_address: Optional[str] = None
        ) -> AttestationFlags:
        """Check an attestation text for the tag, the mention and the claimed relay address"""
        tag = expected_tag or self.expected_tag
        mention = expected_mention or self.expected_mention
        has_tag = re.search(rf'#{re.escape(tag)}\b', text, re.IGNORECASE) is not None
        has_mention = re.search(rf'@{re.escape(mention)}\b', text, re.IGNORECASE) is not None
        same_node = bool(claimed_address) and claimed_address in text
        if self.debug_mode:
            same_node = True
        return AttestationFlags(has_tag=has_tag, has_mention=has_mention, same_node=same_node)

    def decide(
            self,
            flags: AttestationFlags,
            required: Optional[FrozenSet[AttestationFlag]] = None
        ) -> AttestationDecision:
        """All required flags must be set. Flags outside the required set are ignored"""
        required = self.required_flags if required is None else required
        if flags.missing(required):
            return AttestationDecision.INVALID
        return AttestationDecision.VALID

    def extract_address(self, text: str) -> Optional[str]:
        """First relay address found in an attestation text"""
        if self.debug_mode and self.debug_relay_address:
            return self.debug_relay_address
        return find_relay_address(text)

    async def verify(self, url: str, claimed_address: str) -> AttestationRecord:
        """Fetch and classify an attestation for the participant claiming it"""
        text = await self.fetch(url)
        flags = self.classify(text, claimed_address=claimed_address)
        logger.debug(f"AttestationVerifier.verify: {url} classified as {flags}")
        return AttestationRecord(url=url, text=text, flags=flags, id=self.parse_attestation_id(url))
