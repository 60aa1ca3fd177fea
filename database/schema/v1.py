"""Schema v1 - Initial ledger schema.

This version includes tables for:
- Accounts and their balances
- Token transfers with lookup indexes
"""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'account',
            'columns': [
                {'name': 'id', 'type': 'TEXT', 'primary_key': True},
                {'name': 'balance', 'type': 'NUMERIC', 'nullable': False}
            ]
        },
        {
            'name': 'transfer',
            'columns': [
                {'name': 'id', 'type': 'TEXT', 'primary_key': True},
                {'name': 'block', 'type': 'INTEGER', 'nullable': False},
                {'name': '"from"', 'type': 'TEXT', 'nullable': False},
                {'name': '"to"', 'type': 'TEXT', 'nullable': False},
                {'name': 'value', 'type': 'NUMERIC', 'nullable': False},
                {'name': 'txn_hash', 'type': 'TEXT', 'nullable': False}
            ],
            'indexes': [
                {'name': 'idx_transfer_from', 'columns': ['"from"']},
                {'name': 'idx_transfer_to', 'columns': ['"to"']},
                {'name': 'idx_transfer_txn_hash', 'columns': ['txn_hash']}
            ]
        }
    ]
}
