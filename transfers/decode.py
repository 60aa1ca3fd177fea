"""Decoding of ERC-20 Transfer event logs into RawTransfer objects.

Logs are expected in the shape returned by ``eth_getLogs``::

    {
        'address': '0xa0b8...',
        'topics': [TRANSFER_TOPIC, <from, 32 bytes>, <to, 32 bytes>],
        'data': <value, 32 bytes>,
        'blockNumber': '0x5cd0f1',
        'blockHash': '0x...',
        'logIndex': '0x2',
        'transactionHash': '0x...'
    }
"""

import logging
from typing import Any, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from .exceptions import LogDecodeError
from .models import RawTransfer

logger = logging.getLogger(__name__)

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = '0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef'

WORD_HEX_LENGTH = 2 + 64  # '0x' + 32 bytes


def make_log_id(block_number: int, block_hash: str, log_index: int) -> str:
    """Build the sortable identifier of a log: height, short block hash, log index."""
    return f"{block_number:010d}-{block_hash[2:7]}-{log_index:06d}"


def _quantity(value: Union[str, int]) -> int:
    """Parse a JSON-RPC quantity, hex encoded or already an int."""
    if isinstance(value, int):
        return value
    return int(value, 16)


def _word(value: str, name: str) -> str:
    if not isinstance(value, str) or len(value) != WORD_HEX_LENGTH or not value.startswith('0x'):
        raise LogDecodeError(f"{name} is not a 32-byte hex word: {value!r}")
    return value.lower()


def _topic_to_address(topic: str, name: str) -> str:
    word = _word(topic, name)
    if int(word[2:26], 16) != 0:
        raise LogDecodeError(f"{name} is not a left-padded address: {topic!r}")
    return '0x' + word[-40:]


def decode_transfer_log(log: Mapping[str, Any]) -> RawTransfer:
    """Decode one Transfer log.

    Raises:
        LogDecodeError: If the log is not an ERC-20 Transfer or is malformed
    """
    try:
        topics = log['topics']
        if len(topics) != 3 or str(topics[0]).lower() != TRANSFER_TOPIC:
            raise LogDecodeError(f"Not an ERC-20 Transfer log: topics={topics!r}")

        block_number = _quantity(log['blockNumber'])
        block_hash = log['blockHash']

        return RawTransfer(
            id=make_log_id(block_number, block_hash, _quantity(log['logIndex'])),
            block=block_number,
            from_=_topic_to_address(topics[1], 'from topic'),
            to=_topic_to_address(topics[2], 'to topic'),
            value=int(_word(log['data'], 'data')[2:], 16),
            txn_hash=log['transactionHash']
        )
    except LogDecodeError:
        raise
    except (KeyError, TypeError, ValueError, ValidationError) as e:
        raise LogDecodeError(f"Malformed Transfer log: {e}") from e


def decode_transfer_logs(
    logs: Iterable[Mapping[str, Any]],
    contract_address: Optional[str] = None
) -> List[RawTransfer]:
    """Decode the Transfer logs of a block range, preserving log order.

    Logs emitted by other contracts, carrying other events, or carrying a
    Transfer with an indexed token id (ERC-721) are skipped, as are logs the
    node flags as removed.

    Args:
        logs: Entries returned by eth_getLogs
        contract_address: Only decode logs emitted by this contract

    Returns:
        List of RawTransfer, one per matching log
    """
    contract = contract_address.lower() if contract_address else None
    raw_transfers = []

    for log in logs:
        if contract and str(log.get('address', '')).lower() != contract:
            continue
        topics = log.get('topics') or []
        # ERC-721 Transfer shares the signature but indexes the token id as a fourth topic
        if len(topics) != 3 or str(topics[0]).lower() != TRANSFER_TOPIC:
            continue
        if log.get('removed'):
            logger.debug(f"Skipping removed log {log.get('transactionHash')}")
            continue
        raw_transfers.append(decode_transfer_log(log))

    return raw_transfers
