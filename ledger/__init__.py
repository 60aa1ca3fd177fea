"""Ledger module for persisting reconciled transfer batches.

This module provides functionality for:
- Bulk balance lookups backing the reconciliation engine
- Inserting transfers and upserting account balances
- Handling a whole batch inside one database transaction
- Reading accounts and transfers back
"""

import logging
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from database import get_pool
from transfers import reconcile, BatchResult, TransferInput, Account, Transfer

logger = logging.getLogger(__name__)

TRANSFER_COLUMNS = 'id, block, "from", "to", value, txn_hash'


def _account_from_row(row) -> Account:
    return Account(id=row['id'], balance=int(row['balance']))


def _transfer_from_row(row) -> Transfer:
    return Transfer(
        id=row['id'],
        block=row['block'],
        from_=row['from'],
        to=row['to'],
        value=int(row['value']),
        txn_hash=row['txn_hash']
    )


class LedgerStore:
    """Store class for reading and writing ledger entities."""

    def __init__(self, pool=None):
        """Initialize the ledger store.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def find_accounts(
        self,
        account_ids: Sequence[str],
        conn=None,
        lock: bool = False
    ) -> List[Account]:
        """Fetch the stored accounts among the given ids in one query.

        Ids without a stored account are simply absent from the result.

        With ``lock`` set, a transaction-scoped advisory lock is taken on
        every id first, including ids with no stored row yet, so two
        transactions touching the same account run one after the other.
        Locks are taken in sorted id order.

        Args:
            account_ids: Account ids to look up
            conn: Optional connection, required when lock is set
            lock: Hold a lock on every id until the surrounding transaction ends

        Returns:
            List of stored accounts
        """
        if not account_ids:
            return []

        if lock and conn is None:
            raise ValueError("Account locks need an explicit connection")

        if conn is None:
            await self.ensure_pool()
            conn = self.pool

        try:
            if lock:
                await conn.execute(
                    'SELECT pg_advisory_xact_lock(hashtext(id)) FROM unnest($1::text[]) AS id',
                    sorted(set(account_ids))
                )
            rows = await conn.fetch(
                'SELECT id, balance FROM account WHERE id = ANY($1::text[])',
                list(account_ids)
            )
        except Exception as e:
            logger.error(f"Balance lookup for {len(account_ids)} accounts failed: {e}")
            raise

        return [_account_from_row(row) for row in rows]

    async def save(
        self,
        transfers: Sequence[Transfer],
        accounts: Sequence[Account],
        conn=None
    ) -> None:
        """Persist a batch's entities.

        Transfers are inserted once; re-inserting an existing id is a no-op so
        a retried batch does not fail. Accounts are upserted with their full
        post-batch balance, overwriting what is stored.

        Args:
            transfers: Transfers to insert
            accounts: Accounts to upsert
            conn: Optional connection; a new transaction is opened if omitted
        """
        if conn is None:
            await self.ensure_pool()
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    await self._write(conn, transfers, accounts)
        else:
            await self._write(conn, transfers, accounts)

    async def _write(self, conn, transfers: Sequence[Transfer], accounts: Sequence[Account]) -> None:
        try:
            if transfers:
                await conn.executemany(
                    f'''
                    INSERT INTO transfer ({TRANSFER_COLUMNS})
                    VALUES ($1, $2, $3, $4, $5, $6)
                    ON CONFLICT (id) DO NOTHING
                    ''',
                    [
                        (t.id, t.block, t.from_, t.to, Decimal(t.value), t.txn_hash)
                        for t in transfers
                    ]
                )

            if accounts:
                await conn.executemany(
                    '''
                    INSERT INTO account (id, balance)
                    VALUES ($1, $2)
                    ON CONFLICT (id) DO UPDATE SET balance = EXCLUDED.balance
                    ''',
                    [(a.id, Decimal(a.balance)) for a in accounts]
                )
        except Exception as e:
            logger.error(
                f"Failed to save {len(transfers)} transfers and "
                f"{len(accounts)} accounts: {e}"
            )
            raise

    async def handle_transfers(self, raw_transfers: Iterable[TransferInput]) -> BatchResult:
        """Reconcile a batch and persist the result atomically.

        The balance lookup and the writes share one transaction. Every
        account id of the batch, stored or new, stays locked until it
        commits, so concurrent batches on the same accounts serialize.

        Args:
            raw_transfers: Ordered transfer events of the batch

        Returns:
            BatchResult with the persisted transfers and accounts
        """
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                async def lookup(account_ids: List[str]) -> List[Account]:
                    return await self.find_accounts(account_ids, conn=conn, lock=True)

                result = await reconcile(raw_transfers, lookup)
                await self.save(result.transfers, result.accounts, conn=conn)

        logger.info(
            f"Saved {len(result.transfers)} transfers and "
            f"{len(result.accounts)} account balances"
        )
        return result

    async def get_account(self, account_id: str) -> Optional[Account]:
        """Get a single account by id, or None if it was never seen."""
        await self.ensure_pool()
        row = await self.pool.fetchrow(
            'SELECT id, balance FROM account WHERE id = $1',
            account_id
        )
        return _account_from_row(row) if row else None

    async def get_transfers_for_account(self, account_id: str, limit: int = 100) -> List[Transfer]:
        """Get the most recent transfers sent or received by an account.

        Args:
            account_id: Account address
            limit: Maximum number of transfers to return

        Returns:
            Transfers ordered from newest to oldest
        """
        await self.ensure_pool()
        rows = await self.pool.fetch(
            f'''
            SELECT {TRANSFER_COLUMNS}
            FROM transfer
            WHERE "from" = $1 OR "to" = $1
            ORDER BY block DESC, id DESC
            LIMIT $2
            ''',
            account_id,
            limit
        )
        return [_transfer_from_row(row) for row in rows]

    async def get_transfers_by_txn_hash(self, txn_hash: str) -> List[Transfer]:
        """Get every transfer emitted by one transaction, in log order."""
        await self.ensure_pool()
        rows = await self.pool.fetch(
            f'SELECT {TRANSFER_COLUMNS} FROM transfer WHERE txn_hash = $1 ORDER BY id',
            txn_hash
        )
        return [_transfer_from_row(row) for row in rows]


__all__ = ['LedgerStore']
