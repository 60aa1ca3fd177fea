"""Tests for batch reconciliation of transfer events."""

import random

import pytest
from pydantic import ValidationError

from transfers import (
    reconcile,
    validate_batch,
    involved_account_ids,
    fold_transfers,
    resolve_account,
    opening_balance,
    RawTransfer,
    Transfer,
    Account,
    Found,
    Missing,
    InvalidTransferError,
    DuplicateTransferError,
    BalanceLookupError
)


def raw(transfer_id, sender, receiver, value, block=1, txn_hash=None):
    return RawTransfer(
        id=transfer_id,
        block=block,
        from_=sender,
        to=receiver,
        value=value,
        txn_hash=txn_hash or f'hash-{transfer_id}'
    )


def balances_of(accounts):
    return {account.id: account.balance for account in accounts}


@pytest.mark.asyncio
async def test_transfer_between_known_accounts(make_lookup):
    """A known sender pays a known receiver."""
    lookup = make_lookup({'A': 1000, 'B': 0})

    transfers, accounts = await reconcile([raw('tx1', 'A', 'B', 250, txn_hash='hash1')], lookup)

    assert transfers == [
        Transfer(id='tx1', block=1, from_='A', to='B', value=250, txn_hash='hash1')
    ]
    assert accounts == [Account(id='A', balance=750), Account(id='B', balance=250)]
    assert lookup.calls == [['A', 'B']]


@pytest.mark.asyncio
async def test_unknown_accounts_start_at_zero_and_may_go_negative(make_lookup):
    """Accounts missing from the store start at 0; debits are not checked."""
    lookup = make_lookup()

    _, accounts = await reconcile(
        [raw('tx1', 'A', 'B', 100), raw('tx2', 'B', 'C', 40)],
        lookup
    )

    assert accounts == [
        Account(id='A', balance=-100),
        Account(id='B', balance=60),
        Account(id='C', balance=40)
    ]


@pytest.mark.asyncio
async def test_empty_batch_skips_lookup(make_lookup):
    lookup = make_lookup({'A': 5})

    transfers, accounts = await reconcile([], lookup)

    assert transfers == []
    assert accounts == []
    assert lookup.calls == []


@pytest.mark.asyncio
async def test_repeated_receiver_appears_once(make_lookup):
    """Two credits to the same new account accumulate into one record."""
    lookup = make_lookup()

    _, accounts = await reconcile(
        [raw('tx1', 'A', 'X', 10), raw('tx2', 'B', 'X', 5)],
        lookup
    )

    x_accounts = [account for account in accounts if account.id == 'X']
    assert x_accounts == [Account(id='X', balance=15)]
    assert lookup.calls == [['A', 'X', 'B']]


@pytest.mark.asyncio
async def test_self_transfer_leaves_balance_unchanged(make_lookup):
    lookup = make_lookup({'A': 100})

    transfers, accounts = await reconcile([raw('tx1', 'A', 'A', 30)], lookup)

    assert len(transfers) == 1
    assert accounts == [Account(id='A', balance=100)]
    assert lookup.calls == [['A']]


@pytest.mark.asyncio
async def test_accepts_event_mappings(make_lookup):
    """Events may arrive as dicts using the event field names."""
    event = {
        'id': 'tx1',
        'block': 7,
        'from': '0xfrom',
        'to': '0xto',
        'value': 5,
        'txnHash': '0xhash'
    }

    transfers, _ = await reconcile([event], make_lookup())

    transfer = transfers[0]
    assert (transfer.id, transfer.block, transfer.from_, transfer.to, transfer.value, transfer.txn_hash) == \
        ('tx1', 7, '0xfrom', '0xto', 5, '0xhash')
    assert transfer.model_dump(by_alias=True)['from'] == '0xfrom'


@pytest.mark.asyncio
async def test_accounts_outside_batch_are_not_returned():
    """Extra records from the lookup do not leak into the output."""

    async def lookup(account_ids):
        return [Account(id='A', balance=10), Account(id='Z', balance=99)]

    _, accounts = await reconcile([raw('tx1', 'A', 'B', 1)], lookup)

    assert [account.id for account in accounts] == ['A', 'B']


@pytest.mark.asyncio
async def test_large_values_do_not_overflow(make_lookup):
    big = 2 ** 256 - 1
    lookup = make_lookup({'A': big})

    _, accounts = await reconcile(
        [raw('tx1', 'A', 'B', big), raw('tx2', 'B', 'C', big)],
        lookup
    )

    assert balances_of(accounts) == {'A': 0, 'B': 0, 'C': big}

    _, accounts = await reconcile([raw('tx1', 'A', 'B', big)], make_lookup())
    assert balances_of(accounts)['A'] == -big


@pytest.mark.asyncio
async def test_balances_are_conserved(make_lookup):
    """The deltas of a batch sum to zero and every account is reported once."""
    rng = random.Random(7)
    names = [f'0x{i:02x}' for i in range(12)]
    initial = {name: rng.randrange(0, 10 ** 30) for name in names[:6]}
    batch = [
        raw(f'tx{i}', rng.choice(names), rng.choice(names), rng.randrange(0, 10 ** 24))
        for i in range(300)
    ]

    transfers, accounts = await reconcile(batch, make_lookup(initial))

    final = balances_of(accounts)
    assert len(final) == len(accounts)
    assert set(final) == set(involved_account_ids(batch))
    assert sum(final[name] - initial.get(name, 0) for name in final) == 0
    assert [t.id for t in transfers] == [r.id for r in batch]


@pytest.mark.asyncio
async def test_reordering_unrelated_events_keeps_balances(make_lookup):
    events = [raw('tx1', 'A', 'B', 5), raw('tx2', 'C', 'D', 7), raw('tx3', 'E', 'F', 9)]
    initial = {'A': 50, 'C': 3}

    _, forward = await reconcile(events, make_lookup(initial))
    _, backward = await reconcile(list(reversed(events)), make_lookup(initial))

    assert balances_of(forward) == balances_of(backward)


@pytest.mark.asyncio
async def test_reconcile_is_deterministic(make_lookup):
    batch = [raw('tx1', 'A', 'B', 3), raw('tx2', 'B', 'A', 1), raw('tx3', 'C', 'B', 2)]

    first = await reconcile(batch, make_lookup({'A': 10, 'B': 4}))
    second = await reconcile(batch, make_lookup({'A': 10, 'B': 4}))

    assert first == second
    assert [a.model_dump_json() for a in first.accounts] == [a.model_dump_json() for a in second.accounts]
    assert [t.model_dump_json() for t in first.transfers] == [t.model_dump_json() for t in second.transfers]


@pytest.mark.asyncio
@pytest.mark.parametrize('event', [
    {'id': 'tx1', 'block': 1, 'from': 'A', 'to': 'B', 'value': -1, 'txnHash': 'h'},
    {'id': 'tx1', 'block': 1, 'from': '', 'to': 'B', 'value': 1, 'txnHash': 'h'},
    {'id': '', 'block': 1, 'from': 'A', 'to': 'B', 'value': 1, 'txnHash': 'h'},
    {'id': 'tx1', 'block': 1, 'from': 'A', 'to': 'B', 'value': 1},
    {'id': 'tx1', 'block': -1, 'from': 'A', 'to': 'B', 'value': 1, 'txnHash': 'h'},
    {'id': 'tx1', 'block': 1, 'from': 'A', 'to': 'B', 'value': 1.5, 'txnHash': 'h'},
])
async def test_malformed_event_rejects_whole_batch(make_lookup, event):
    """A bad event anywhere in the batch fails it before any lookup."""
    lookup = make_lookup({'A': 10})

    with pytest.raises(InvalidTransferError):
        await reconcile([raw('tx0', 'A', 'B', 1), event], lookup)

    assert lookup.calls == []


@pytest.mark.asyncio
async def test_duplicate_ids_are_rejected(make_lookup):
    lookup = make_lookup()

    with pytest.raises(DuplicateTransferError, match='tx1'):
        await reconcile([raw('tx1', 'A', 'B', 1), raw('tx1', 'B', 'C', 1)], lookup)

    assert lookup.calls == []


@pytest.mark.asyncio
async def test_lookup_failure_propagates(make_lookup):
    lookup = make_lookup(error=ConnectionError('store unavailable'))

    with pytest.raises(ConnectionError, match='store unavailable'):
        await reconcile([raw('tx1', 'A', 'B', 1)], lookup)

    assert len(lookup.calls) == 1


@pytest.mark.asyncio
async def test_conflicting_lookup_result_is_rejected():
    async def lookup(account_ids):
        return [Account(id='A', balance=1), Account(id='A', balance=2)]

    with pytest.raises(BalanceLookupError):
        await reconcile([raw('tx1', 'A', 'B', 1)], lookup)


def test_resolve_account_variants():
    known = {'A': Account(id='A', balance=42)}

    assert resolve_account(known, 'A') == Found(Account(id='A', balance=42))
    assert resolve_account(known, 'B') == Missing('B')
    assert opening_balance(resolve_account(known, 'A')) == 42
    assert opening_balance(Missing('B')) == 0


def test_fold_transfers_applies_events_in_order():
    batch = validate_batch([raw('tx1', 'A', 'B', 10), raw('tx2', 'B', 'A', 4)])

    result = fold_transfers(batch, [Account(id='B', balance=1)])

    assert balances_of(result.accounts) == {'A': -6, 'B': 7}
    assert [t.id for t in result.transfers] == ['tx1', 'tx2']


def test_records_are_immutable():
    transfer = Transfer(id='tx1', block=1, from_='A', to='B', value=1, txn_hash='h')
    account = Account(id='A', balance=1)

    with pytest.raises(ValidationError):
        transfer.value = 2
    with pytest.raises(ValidationError):
        account.balance = 2
