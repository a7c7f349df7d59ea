from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

# -----------------------------------------------------------------------------
# Token
# -----------------------------------------------------------------------------
class TokenMetadata(BaseModel):
    name: str
    symbol: str
    decimals: int
    description: str = ""
    website: str = ""
    logo_uri: str = ""
    tags: List[str] = []

class TokenSupply(BaseModel):
    total_supply: float
    circulating_supply: float
    burned_supply: float = 0

class TopHolder(BaseModel):
    address: str
    amount: float
    percentage: float

# -----------------------------------------------------------------------------
# Transactions
# -----------------------------------------------------------------------------
class TokenTransfer(BaseModel):
    model_config = ConfigDict(frozen=True)

    mint: str
    token_amount: float = 0
    from_user_account: Optional[str] = None
    to_user_account: Optional[str] = None
    from_token_account: Optional[str] = None
    to_token_account: Optional[str] = None
    token_standard: Optional[str] = None

class NativeTransfer(BaseModel):
    model_config = ConfigDict(frozen=True)

    amount: float = 0
    from_user_account: Optional[str] = None
    to_user_account: Optional[str] = None

class TransactionRecord(BaseModel):
    """One parsed transaction. Identity is the signature; timestamp is in ms."""

    model_config = ConfigDict(frozen=True)

    signature: str
    timestamp: int = 0
    fee: int = 0
    fee_payer: str = ""
    description: str = ""
    type: str = "UNKNOWN"
    source: str = "UNKNOWN"
    slot: Optional[int] = None
    events: Dict[str, Any] = {}
    token_transfers: List[TokenTransfer] = []
    native_transfers: List[NativeTransfer] = []
    account_data: List[Dict[str, Any]] = []
    transaction_error: Optional[Any] = None

    def involves(self, address: str) -> bool:
        if self.fee_payer == address:
            return True
        transfers = list(self.token_transfers) + list(self.native_transfers)
        return any(t.from_user_account == address or t.to_user_account == address for t in transfers)

def is_meaningful(tx: TransactionRecord) -> bool:
    """False for records with no transfers, no classified type or a blank description."""
    if not tx.token_transfers and not tx.native_transfers:
        return False
    if not tx.type or tx.type == "UNKNOWN":
        return False
    return bool(tx.description and tx.description.strip())

# -----------------------------------------------------------------------------
# Rewards / wallets
# -----------------------------------------------------------------------------
class RewardMetrics(BaseModel):
    total_reward_pool: float = 0
    distribution_percentage: float = 0
    total_transactions: int = 0
    next_distribution_time: int = 0

class TokenAccount(BaseModel):
    address: str
    balance: float
    owner: str = ""

class WalletInfo(BaseModel):
    address: str
    balance: float
    percentage: float
    rank: Optional[int] = None
    total_transactions: int = 0
    last_transaction: Optional[int] = None
    expected_daily_rewards: float = 0
    total_volume: float = 0
    average_transaction_size: float = 0
    is_top_holder: bool = False
    token_accounts: List[TokenAccount] = []

class RewardProjection(BaseModel):
    market_cap: float
    lp_percent: float
    token_amount: float
    daily_earnings: float

# -----------------------------------------------------------------------------
# Store snapshots
# -----------------------------------------------------------------------------
class StaticSnapshot(BaseModel):
    """Slow-moving dashboard data, always replaced as a whole."""

    model_config = ConfigDict(frozen=True)

    metrics: Optional[RewardMetrics] = None
    supply: Optional[TokenSupply] = None
    holders: List[TopHolder] = []
    token_metadata: Optional[TokenMetadata] = None

class DashboardSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    metrics: Optional[RewardMetrics] = None
    supply: Optional[TokenSupply] = None
    holders: List[TopHolder] = []
    transactions: List[TransactionRecord] = []
    token_metadata: Optional[TokenMetadata] = None
    loading: bool = True
    error: Optional[str] = None
    version: int = Field(default=0, description="Bumped on every state change")
