"""Indexer module for turning a range of blocks into ledger updates.

For a block range this module:
- Requests the Transfer logs of the configured ERC-20 contract
- Decodes them into raw transfers
- Hands them to the ledger store as one batch

Choosing which ranges to process, and what to do when the chain reorganises,
is the job of the process driving the indexer.
"""

import logging
from typing import Any, Dict, List, Optional

from rpc import EthereumRPC, get_client
from ledger import LedgerStore
from transfers import BatchResult, TRANSFER_TOPIC, decode_transfer_logs

# Configure logging
logger = logging.getLogger(__name__)


class TransferIndexer:
    """Index ERC-20 Transfer events into the ledger."""

    def __init__(
        self,
        store: Optional[LedgerStore] = None,
        client: Optional[EthereumRPC] = None,
        contract_address: Optional[str] = None,
        start_block: Optional[int] = None
    ):
        """Initialize the transfer indexer.

        Args:
            store: Ledger store used to persist batches
            client: JSON-RPC client; defaults to the client built from settings.conf
            contract_address: Token contract; defaults to the one in settings.conf
            start_block: First block worth scanning, usually the contract deployment;
                defaults to the one in settings.conf
        """
        self.store = store or LedgerStore()
        self._client = client
        self._contract_address = contract_address.lower() if contract_address else None
        self._start_block = start_block

    @property
    def client(self) -> EthereumRPC:
        if self._client is None:
            self._client = get_client()
        return self._client

    @property
    def contract_address(self) -> str:
        if self._contract_address is None:
            from config import get_settings
            self._contract_address = get_settings()['contract_address']
        return self._contract_address

    @property
    def start_block(self) -> int:
        if self._start_block is None:
            from config import get_settings
            self._start_block = get_settings()['start_block']
        return self._start_block

    def fetch_logs(self, from_block: int, to_block: int) -> List[Dict[str, Any]]:
        """Fetch the contract's Transfer logs for an inclusive block range.

        Raises:
            ValueError: If the range is empty, negative or starts before start_block
            RPCError: If the node request fails
        """
        if from_block < 0 or to_block < from_block:
            raise ValueError(f"Invalid block range {from_block}-{to_block}")
        if from_block < self.start_block:
            raise ValueError(f"Block {from_block} is before the start block {self.start_block}")

        # RPC calls are not async
        return self.client.eth_getLogs({
            'fromBlock': hex(from_block),
            'toBlock': hex(to_block),
            'address': self.contract_address,
            'topics': [TRANSFER_TOPIC]
        })

    async def process_block_range(self, from_block: int, to_block: int) -> BatchResult:
        """Index every Transfer event in a block range as one batch.

        Args:
            from_block: First block, inclusive
            to_block: Last block, inclusive

        Returns:
            BatchResult with the transfers and accounts written to the ledger
        """
        logs = self.fetch_logs(from_block, to_block)
        raw_transfers = decode_transfer_logs(logs, self.contract_address)
        logger.debug(f"Decoded {len(raw_transfers)} transfers from {len(logs)} logs")

        result = await self.store.handle_transfers(raw_transfers)
        logger.info(
            f"Indexed blocks {from_block}-{to_block}: "
            f"{len(result.transfers)} transfers, {len(result.accounts)} accounts"
        )
        return result


__all__ = ['TransferIndexer']
