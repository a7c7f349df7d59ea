"""Pure tokenomics computations: wallet metrics, reward pool, projections."""
import math
import time
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from .models import (
    RewardMetrics,
    RewardProjection,
    TokenAccount,
    TokenSupply,
    TopHolder,
    TransactionRecord,
    WalletInfo,
)

TOP_HOLDER_LIMIT = 25
DISTRIBUTION_PERIOD_MS = 60 * 60 * 1000
SWAP_POOL_FEE = 0.003
TRANSFER_POOL_FEE = 0.001
LP_DISTRIBUTION_PERCENTAGE = 50

# Reward calculator bounds
CALCULATOR_SUPPLY = 100_000_000
MIN_LP_PERCENT = 0.01
MAX_LP_PERCENT = 100.0
MIN_CALCULATOR_TOKENS = 10_000


@dataclass(frozen=True)
class RewardModel:
    """Fee-sharing assumptions used for every reward projection."""

    daily_turnover_rate: float = 1
    swap_fee_rate: float = 25
    lp_fee_share: float = 0.5

    @classmethod
    def from_settings(cls, cfg) -> "RewardModel":
        return cls(
            daily_turnover_rate=cfg.DAILY_TURNOVER_RATE,
            swap_fee_rate=cfg.SWAP_FEE_RATE,
            lp_fee_share=cfg.LP_FEE_SHARE,
        )

    def daily_lp_fees(self, market_cap: float) -> float:
        daily_volume = market_cap * self.daily_turnover_rate
        return daily_volume * self.swap_fee_rate * self.lp_fee_share

    def daily_rewards(self, market_cap: float, percentage: float) -> float:
        return self.daily_lp_fees(market_cap) * (percentage / 100)


def _tracked_transfers(tx: TransactionRecord, mint: str):
    return [t for t in tx.token_transfers if t.mint == mint]


def build_wallet_info(
    address: str,
    token_accounts: Iterable[TokenAccount],
    supply: TokenSupply,
    top_holders: Sequence[TopHolder],
    transactions: Sequence[TransactionRecord],
    mint: str,
    model: RewardModel = RewardModel(),
) -> Optional[WalletInfo]:
    """Derive wallet metrics; ``None`` when the wallet holds none of the token."""
    accounts = [a for a in token_accounts if a.balance > 0]
    if not accounts:
        return None

    balance = sum(a.balance for a in accounts)
    circulating = supply.circulating_supply
    percentage = (balance / circulating) * 100 if circulating else 0.0

    rank = next((i + 1 for i, h in enumerate(top_holders) if h.address == address), None)
    is_top_holder = rank is not None and rank <= TOP_HOLDER_LIMIT

    # Activity counts every transaction touching the wallet, not only token transfers
    wallet_txs = [tx for tx in transactions if tx.involves(address)]
    total_transactions = len(wallet_txs)
    last_transaction = max((tx.timestamp for tx in wallet_txs), default=None)

    total_volume = 0.0
    for tx in transactions:
        for transfer in _tracked_transfers(tx, mint):
            total_volume += abs(transfer.token_amount)
    average = total_volume / total_transactions if total_transactions else 0.0

    return WalletInfo(
        address=address,
        balance=balance,
        percentage=percentage,
        rank=rank,
        total_transactions=total_transactions,
        last_transaction=last_transaction,
        expected_daily_rewards=model.daily_rewards(supply.total_supply, percentage),
        total_volume=total_volume,
        average_transaction_size=average,
        is_top_holder=is_top_holder,
        token_accounts=accounts,
    )


def next_distribution_time(now_ms: Optional[int] = None, period_ms: int = DISTRIBUTION_PERIOD_MS) -> int:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return math.ceil(now_ms / period_ms) * period_ms


def compute_reward_metrics(
    transactions: Sequence[TransactionRecord],
    mint: str,
    now_ms: Optional[int] = None,
) -> RewardMetrics:
    pool = 0.0
    for tx in transactions:
        if tx.type == "SWAP" and tx.events.get("swap"):
            tracked = next((t for t in tx.token_transfers if t.mint == mint), None)
            other = next((t for t in tx.token_transfers if t.mint != mint), None)
            if tracked and other:
                tracked_amount = abs(tracked.token_amount)
                other_amount = abs(other.token_amount)
                # fee is charged on the input side of the swap
                input_amount = tracked_amount if tracked.to_user_account else other_amount
                pool += input_amount * SWAP_POOL_FEE
        elif tx.type == "TRANSFER":
            first = tx.token_transfers[0] if tx.token_transfers else None
            if first and first.mint == mint:
                pool += abs(first.token_amount) * TRANSFER_POOL_FEE

    return RewardMetrics(
        total_reward_pool=pool,
        distribution_percentage=LP_DISTRIBUTION_PERCENTAGE,
        total_transactions=len(transactions),
        next_distribution_time=next_distribution_time(now_ms),
    )


# -----------------------------------------------------------------------------
# Reward calculator
# -----------------------------------------------------------------------------
def clamp_lp_percent(value: float) -> float:
    return max(MIN_LP_PERCENT, min(MAX_LP_PERCENT, value))


def clamp_token_amount(value: float, supply: float = CALCULATOR_SUPPLY) -> float:
    return max(MIN_CALCULATOR_TOKENS, min(supply, value))


def percent_to_tokens(percent: float, supply: float = CALCULATOR_SUPPLY) -> float:
    return (clamp_lp_percent(percent) / 100) * supply


def tokens_to_percent(tokens: float, supply: float = CALCULATOR_SUPPLY) -> float:
    return (clamp_token_amount(tokens, supply) / supply) * 100


def project_rewards(
    market_cap: float,
    lp_percent: float,
    model: RewardModel = RewardModel(),
    supply: float = CALCULATOR_SUPPLY,
) -> RewardProjection:
    pct = clamp_lp_percent(lp_percent)
    return RewardProjection(
        market_cap=market_cap,
        lp_percent=pct,
        token_amount=percent_to_tokens(pct, supply),
        daily_earnings=model.daily_rewards(market_cap, pct),
    )
