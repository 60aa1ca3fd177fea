"""Shared fixtures: in-memory stand-ins for the balance lookup and asyncpg."""

from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from transfers import Account


class RecordingLookup:
    """Balance lookup backed by a dict, recording every call."""

    def __init__(self, balances: Optional[Dict[str, int]] = None, error: Optional[Exception] = None):
        self.balances = dict(balances or {})
        self.error = error
        self.calls: List[List[str]] = []

    async def __call__(self, account_ids):
        self.calls.append(list(account_ids))
        if self.error:
            raise self.error
        return [
            Account(id=account_id, balance=self.balances[account_id])
            for account_id in account_ids
            if account_id in self.balances
        ]


class FakeTransaction:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        self.conn.events.append('begin')
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.conn.events.append('rollback' if exc_type else 'commit')
        return False


class FakeConnection:
    """Just enough of asyncpg.Connection for the ledger store."""

    def __init__(self, accounts: Optional[Dict[str, int]] = None, transfer_rows=None):
        self.accounts = {key: Decimal(value) for key, value in (accounts or {}).items()}
        self.transfer_rows = list(transfer_rows or [])
        self.events: List[str] = []
        self.queries: List[tuple] = []
        self.executemany_calls: List[tuple] = []
        self.executed: List[tuple] = []
        self.fetch_error: Optional[Exception] = None
        self.version_row = None

    def transaction(self):
        return FakeTransaction(self)

    async def fetch(self, query, *args):
        self.queries.append((query, args))
        if self.fetch_error:
            raise self.fetch_error
        if 'FROM account' in query:
            return [
                {'id': account_id, 'balance': self.accounts[account_id]}
                for account_id in args[0]
                if account_id in self.accounts
            ]
        return self.transfer_rows

    async def fetchrow(self, query, *args):
        self.queries.append((query, args))
        if 'schema_version' in query:
            return self.version_row
        if args and args[0] in self.accounts:
            return {'id': args[0], 'balance': self.accounts[args[0]]}
        return None

    async def execute(self, query, *args):
        self.executed.append((query, args))
        return 'OK'

    async def executemany(self, query, args):
        self.executemany_calls.append((query, list(args)))


class FakeAcquire:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakePool:
    """Just enough of asyncpg.Pool for the ledger store and schema manager."""

    def __init__(self, conn: FakeConnection):
        self.conn = conn

    def acquire(self):
        return FakeAcquire(self.conn)

    async def fetch(self, query, *args):
        return await self.conn.fetch(query, *args)

    async def fetchrow(self, query, *args):
        return await self.conn.fetchrow(query, *args)


@pytest.fixture
def make_lookup():
    """Factory for recording balance lookups."""
    return RecordingLookup


@pytest.fixture
def fake_conn():
    """Connection holding A=1000 and B=0."""
    return FakeConnection(accounts={'0xa': 1000, '0xb': 0})


@pytest.fixture
def fake_pool(fake_conn):
    return FakePool(fake_conn)
