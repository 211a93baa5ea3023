"""Typed contract events produced by the chain adapter.

Amounts are ``Decimal`` ether units, addresses are lowercase and timestamps
are ISO-8601 strings in UTC.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True)
class ChainEvent:
    tx_hash: str
    block_number: int
    log_index: int
    timestamp: Optional[str]

    name = "ChainEvent"


@dataclass(frozen=True)
class InvestmentMade(ChainEvent):
    project_id: int
    investor: str
    amount: Decimal
    tokens_minted: Decimal

    name = "InvestmentMade"


@dataclass(frozen=True)
class MilestoneCompleted(ChainEvent):
    project_id: int
    milestone_index: int
    funds_released: Decimal
    evidence_hash: str
    verifier: Optional[str]

    name = "MilestoneCompleted"


@dataclass(frozen=True)
class InterestClaimed(ChainEvent):
    investor: str
    project_id: int
    amount: Decimal
    tokens_minted: Decimal

    name = "InterestClaimed"
