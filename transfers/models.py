from typing import NamedTuple, Union

from pydantic import BaseModel, ConfigDict, Field


class RawTransfer(BaseModel):
    """A decoded Transfer event as handed over by the indexing framework.

    Values and balances are plain Python ints, so 256-bit token amounts
    never overflow. ``from`` and ``txnHash`` are accepted as input names.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(min_length=1, strict=True)
    block: int = Field(ge=0, strict=True)
    from_: str = Field(alias='from', min_length=1, strict=True)
    to: str = Field(min_length=1, strict=True)
    value: int = Field(ge=0, strict=True)
    txn_hash: str = Field(alias='txnHash', min_length=1, strict=True)


class Transfer(BaseModel):
    """Immutable record of value moved from one account to another."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    block: int
    from_: str = Field(alias='from')
    to: str
    value: int
    txn_hash: str = Field(alias='txnHash')


class Account(BaseModel):
    """Balance snapshot of a single address. Balances may go negative."""
    model_config = ConfigDict(frozen=True)

    id: str
    balance: int


class Found(NamedTuple):
    """The balance lookup returned a stored account."""
    account: Account


class Missing(NamedTuple):
    """The balance lookup has no record for the account."""
    account_id: str


LookupResult = Union[Found, Missing]
