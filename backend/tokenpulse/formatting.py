import time
from dataclasses import dataclass
from typing import Dict, Optional

from .models import NativeTransfer, TokenMetadata, TransactionRecord, is_meaningful

LAMPORTS_PER_SOL = 1_000_000_000

# Display info for tokens commonly seen on the other side of a swap
KNOWN_TOKENS: Dict[str, Dict[str, object]] = {
    "So11111111111111111111111111111111111111112": {"name": "Solana", "symbol": "SOL", "decimals": 9},
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v": {"name": "USD Coin", "symbol": "USDC", "decimals": 6},
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB": {"name": "USDT", "symbol": "USDT", "decimals": 6},
}

# -----------------------------------------------------------------------------
# Numbers / addresses / time
# -----------------------------------------------------------------------------
def format_compact_amount(amount: float) -> str:
    if amount >= 1e9:
        return f"{amount / 1e9:.2f}B"
    if amount >= 1e6:
        return f"{amount / 1e6:.2f}M"
    if amount >= 1e3:
        return f"{amount / 1e3:.2f}K"
    return f"{amount:.2f}"
def format_usd(value: float) -> str:
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"

def format_address(address: Optional[str], chars: int = 4) -> str:
    if not address or len(address) <= chars * 2:
        return address or ""
    return f"{address[:chars]}...{address[-chars:]}"

def format_time_ago(timestamp_ms: int, now_ms: Optional[int] = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    seconds = (now_ms - timestamp_ms) // 1000
    if seconds < 60:
        return f"{seconds}s ago"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    return f"{hours // 24}d ago"

def format_countdown(target_ms: int, now_ms: Optional[int] = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    diff = target_ms - now_ms
    if diff <= 0:
        return "Distribution in progress..."
    hours, rem = divmod(diff // 1000, 3600)
    minutes, seconds = divmod(rem, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"

def title_case(label: str) -> str:
    return " ".join(w.capitalize() for w in label.replace("_", " ").split())

# -----------------------------------------------------------------------------
# Transaction feed rows
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class TokenDisplay:
    name: str
    symbol: str
    decimals: int

@dataclass(frozen=True)
class TransactionView:
    signature: str
    timestamp: int
    time_ago: str
    label: str
    direction: str  # "buy", "sell", "transfer" or "other"
    description: str
    amount: Optional[float] = None
    amount_display: Optional[str] = None
    symbol: Optional[str] = None
    counter_amount: Optional[float] = None
    counter_symbol: Optional[str] = None
    source: Optional[str] = None
    from_address: Optional[str] = None
    to_address: Optional[str] = None

def token_display(mint: str, tracked_mint: str, metadata: Optional[TokenMetadata] = None) -> TokenDisplay:
    if mint == tracked_mint:
        return TokenDisplay(
            name=(metadata.name if metadata else "") or "JPG",
            symbol=(metadata.symbol if metadata else "") or "JPG",
            decimals=(metadata.decimals if metadata else 0) or 6,
        )
    known = KNOWN_TOKENS.get(mint)
    if known:
        return TokenDisplay(**known)  # type: ignore[arg-type]
    if mint == "native":
        return TokenDisplay(name="Solana", symbol="SOL", decimals=9)
    return TokenDisplay(name=format_address(mint, 6), symbol=format_address(mint, 4), decimals=9)

def describe_transaction(
    tx: TransactionRecord,
    tracked_mint: str,
    metadata: Optional[TokenMetadata] = None,
    now_ms: Optional[int] = None,
) -> Optional[TransactionView]:
    """Build the feed row for a transaction, or ``None`` if it should be hidden."""
    if not is_meaningful(tx):
        return None
    row = {
        "signature": tx.signature,
        "timestamp": tx.timestamp,
        "time_ago": format_time_ago(tx.timestamp, now_ms),
        "description": tx.description,
    }

    if tx.type == "SWAP" and tx.events.get("swap"):
        tracked = next((t for t in tx.token_transfers if t.mint == tracked_mint), None)
        other = next((t for t in tx.token_transfers if t.mint != tracked_mint), None)
        if tracked and other:
            is_buy = tracked.to_user_account == tx.fee_payer
            tracked_info = token_display(tracked_mint, tracked_mint, metadata)
            other_info = token_display(other.mint, tracked_mint, metadata)
            return TransactionView(
                label=f"{'Buy' if is_buy else 'Sell'} {tracked_info.symbol}",
                direction="buy" if is_buy else "sell",
                amount=abs(tracked.token_amount),
                amount_display=format_compact_amount(abs(tracked.token_amount)),
                symbol=tracked_info.symbol,
                counter_amount=abs(other.token_amount),
                counter_symbol=other_info.symbol,
                source=title_case(tx.source or "Unknown"),
                **row,
            )

    if tx.type == "TRANSFER":
        transfer = tx.token_transfers[0] if tx.token_transfers else tx.native_transfers[0]
        if isinstance(transfer, NativeTransfer):
            mint = "native"
            amount = transfer.amount / LAMPORTS_PER_SOL
        else:
            mint = transfer.mint
            amount = transfer.token_amount
        info = token_display(mint, tracked_mint, metadata)
        return TransactionView(
            label=f"{info.symbol} Transfer",
            direction="transfer",
            amount=amount,
            amount_display=format_compact_amount(abs(amount)),
            symbol=info.symbol,
            from_address=transfer.from_user_account,
            to_address=transfer.to_user_account,
            **row,
        )

    return TransactionView(
        label=title_case(tx.type.lower()),
        direction="other",
        source=tx.source.replace("_", " ") if tx.source else None,
        **row,
    )
