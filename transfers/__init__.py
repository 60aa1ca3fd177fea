"""Transfers module for reconciling token transfer batches into ledger entities.

This module provides:
- Validation of raw Transfer events
- One bulk balance lookup per batch
- Folding events into per-account balances in event order
- Transfer records and final account snapshots ready for persistence

Nothing here writes to the database. Callers persist the returned entities,
inserting transfers and upserting accounts by id in a single transaction.
"""

import logging
from itertools import chain
from typing import (
    Any, Awaitable, Callable, Dict, Iterable, List, Mapping, NamedTuple, Sequence, Union
)

from pydantic import ValidationError

from .exceptions import (
    TransferError,
    InvalidTransferError,
    DuplicateTransferError,
    BalanceLookupError,
    LogDecodeError
)
from .models import RawTransfer, Transfer, Account, Found, Missing, LookupResult
from .decode import TRANSFER_TOPIC, make_log_id, decode_transfer_log, decode_transfer_logs

logger = logging.getLogger(__name__)

# Given the distinct account ids of a batch, returns the stored subset
BalanceLookup = Callable[[List[str]], Awaitable[Iterable[Account]]]

TransferInput = Union[RawTransfer, Mapping[str, Any]]


class BatchResult(NamedTuple):
    """Entities produced for one batch."""
    transfers: List[Transfer]
    accounts: List[Account]


def validate_batch(batch: Iterable[TransferInput]) -> List[RawTransfer]:
    """Validate every event of a batch before any of it is processed.

    Args:
        batch: RawTransfer instances or mappings with the event fields

    Returns:
        The events as RawTransfer instances, in input order

    Raises:
        InvalidTransferError: If any event is malformed
        DuplicateTransferError: If two events share an id
    """
    validated: List[RawTransfer] = []
    seen_ids = set()

    for position, event in enumerate(batch):
        if isinstance(event, RawTransfer):
            raw = event
        else:
            try:
                raw = RawTransfer.model_validate(event)
            except ValidationError as e:
                raise InvalidTransferError(
                    f"Invalid transfer at position {position}: {e}"
                ) from e

        if raw.id in seen_ids:
            raise DuplicateTransferError(
                f"Duplicate transfer id {raw.id!r} at position {position}"
            )
        seen_ids.add(raw.id)
        validated.append(raw)

    return validated


def involved_account_ids(batch: Iterable[RawTransfer]) -> List[str]:
    """Distinct sender and receiver ids, in order of first appearance."""
    return list(dict.fromkeys(chain.from_iterable((raw.from_, raw.to) for raw in batch)))


def index_accounts(accounts: Iterable[Account]) -> Dict[str, Account]:
    """Index looked-up accounts by id.

    Raises:
        BalanceLookupError: If one id is reported with two different balances
    """
    known: Dict[str, Account] = {}
    for account in accounts:
        previous = known.get(account.id)
        if previous is not None and previous.balance != account.balance:
            raise BalanceLookupError(
                f"Lookup returned conflicting balances for {account.id}: "
                f"{previous.balance} and {account.balance}"
            )
        known[account.id] = account
    return known


def resolve_account(known: Mapping[str, Account], account_id: str) -> LookupResult:
    """Classify an account id against the lookup result."""
    account = known.get(account_id)
    if account is None:
        return Missing(account_id)
    return Found(account)


def opening_balance(result: LookupResult) -> int:
    """Balance an account starts the batch with; unknown accounts start at 0."""
    if isinstance(result, Found):
        return result.account.balance
    return 0


def fold_transfers(batch: Sequence[RawTransfer], existing: Iterable[Account]) -> BatchResult:
    """Apply a validated batch to the given starting balances.

    Each event debits its sender and credits its receiver by its value, in
    input order. Accounts are created at balance 0 the first time they are
    seen. Only accounts referenced by the batch are returned.

    Args:
        batch: Validated events
        existing: Stored accounts for (a subset of) the batch's account ids

    Returns:
        BatchResult with one transfer per event and one account per touched id
    """
    known = index_accounts(existing)
    balances: Dict[str, int] = {}
    transfers: List[Transfer] = []

    for raw in batch:
        for account_id in (raw.from_, raw.to):
            if account_id not in balances:
                balances[account_id] = opening_balance(resolve_account(known, account_id))

        balances[raw.from_] -= raw.value
        balances[raw.to] += raw.value

        transfers.append(Transfer(
            id=raw.id,
            block=raw.block,
            from_=raw.from_,
            to=raw.to,
            value=raw.value,
            txn_hash=raw.txn_hash
        ))

    accounts = [Account(id=account_id, balance=balance) for account_id, balance in balances.items()]
    return BatchResult(transfers, accounts)


async def reconcile(batch: Iterable[TransferInput], lookup: BalanceLookup) -> BatchResult:
    """Compute the transfers and final account balances for a batch.

    The whole batch is validated first, then the balances of every account
    it references are fetched with a single ``lookup`` call. An empty batch
    does not call ``lookup`` at all. Failures of ``lookup`` propagate
    unchanged and nothing is returned.

    Calling this twice with the same batch and the same stored balances gives
    the same result, so a batch can be retried after a failed commit.

    Args:
        batch: Ordered transfer events
        lookup: Awaitable returning the stored accounts for a list of ids

    Returns:
        BatchResult(transfers, accounts)

    Raises:
        InvalidTransferError: If any event is malformed
        BalanceLookupError: If the lookup reports conflicting balances
    """
    raw_transfers = validate_batch(batch)
    if not raw_transfers:
        return BatchResult([], [])

    account_ids = involved_account_ids(raw_transfers)
    existing = await lookup(account_ids)

    result = fold_transfers(raw_transfers, existing)
    logger.debug(
        f"Reconciled {len(result.transfers)} transfers across "
        f"{len(result.accounts)} accounts"
    )
    return result


__all__ = [
    'reconcile', 'validate_batch', 'involved_account_ids', 'index_accounts',
    'resolve_account', 'opening_balance', 'fold_transfers',
    'BatchResult', 'BalanceLookup', 'TransferInput',
    'RawTransfer', 'Transfer', 'Account', 'Found', 'Missing', 'LookupResult',
    'TRANSFER_TOPIC', 'make_log_id', 'decode_transfer_log', 'decode_transfer_logs',
    'TransferError', 'InvalidTransferError', 'DuplicateTransferError',
    'BalanceLookupError', 'LogDecodeError'
]
