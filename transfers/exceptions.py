"""Exceptions raised while turning transfer events into ledger entities."""


class TransferError(Exception):
    """Base exception for transfer processing."""
    pass


class InvalidTransferError(TransferError):
    """Raised when an event in a batch is malformed."""
    pass


class DuplicateTransferError(InvalidTransferError):
    """Raised when two events in one batch share an id."""
    pass


class BalanceLookupError(TransferError):
    """Raised when a balance lookup reports conflicting balances for one account."""
    pass


class LogDecodeError(TransferError):
    """Raised when an event log is not a decodable ERC-20 Transfer."""
    pass
