from decimal import Decimal
from typing import Tuple, Optional
import traceback
from loguru import logger
from web3 import AsyncWeb3, AsyncHTTPProvider, Web3
from relaytools.models.models import BalanceResult
from relaytools.utilities.exceptions import TransientFetchError

class BalanceGate:
    """Checks live native chain balances against a threshold. Nothing is cached"""

    def __init__(self, chain_provider: str, web3: Optional[AsyncWeb3] = None):
        self.chain_provider = chain_provider
        self.web3 = web3 or AsyncWeb3(AsyncHTTPProvider(chain_provider))

    async def native_balance(self, address: str) -> Decimal:
        """
        Get the native balance of an account, in whole currency units.

        Raises:
            TransientFetchError: If the chain query fails
        """
        try:
            wei_balance = await self.web3.eth.get_balance(Web3.to_checksum_address(address))
        except Exception as e:
            logger.error(f"BalanceGate.native_balance: Error getting balance for {address}: {e}")
            logger.error(traceback.format_exc())
            raise TransientFetchError(f"balance of {address}", str(e))
        return Decimal(Web3.from_wei(wei_balance, 'ether'))

    async def check(self, address: str, threshold: Decimal) -> Tuple[Decimal, BalanceResult]:
        """
        Verify that an account holds at least threshold.

        Returns:
            tuple: (balance, BalanceResult.PASS | BalanceResult.FAIL)
        """
        balance = await self.native_balance(address)
        result = BalanceResult.PASS if balance >= Decimal(threshold) else BalanceResult.FAIL
        logger.debug(f"BalanceGate.check: {address} holds {balance}, threshold {threshold}: {result.value}")
        return balance, result

    async def chain_id(self) -> int:
        try:
            return await self.web3.eth.chain_id
        except Exception as e:
            logger.error(f"BalanceGate.chain_id: Error getting chain id: {e}")
            raise TransientFetchError('chain id', str(e))
