"""Display helpers and transaction feed rows."""

from tokenpulse.formatting import (
    describe_transaction,
    format_address,
    format_compact_amount,
    format_countdown,
    format_time_ago,
    format_usd,
    title_case,
    token_display,
)
from tokenpulse.models import NativeTransfer, TokenMetadata, TokenTransfer, TransactionRecord

from conftest import MINT, USDC

BUYER = "Buyer111111111111111111111111111111111111"
METADATA = TokenMetadata(name="Pulse", symbol="PLS", decimals=6)


class TestNumbers:

    def test_compact(self):
        assert format_compact_amount(950) == "950.00"
        assert format_compact_amount(12_300) == "12.30K"
        assert format_compact_amount(4_560_000) == "4.56M"
        assert format_compact_amount(1_000_000_000) == "1.00B"

    def test_usd(self):
        assert format_usd(1234.5) == "$1,234.50"
        assert format_usd(-3) == "-$3.00"


class TestAddressesAndTime:

    def test_address(self):
        assert format_address("abcdefghijklmnop") == "abcd...mnop"
        assert format_address("abcdefghijklmnop", 6) == "abcdef...klmnop"
        assert format_address("short") == "short"
        assert format_address(None) == ""

    def test_time_ago(self):
        now = 10_000_000_000
        assert format_time_ago(now - 5_000, now) == "5s ago"
        assert format_time_ago(now - 120_000, now) == "2m ago"
        assert format_time_ago(now - 3 * 3_600_000, now) == "3h ago"
        assert format_time_ago(now - 49 * 3_600_000, now) == "2d ago"

    def test_countdown(self):
        assert format_countdown(3_723_000, 0) == "01:02:03"
        assert format_countdown(1_000, 1_000) == "Distribution in progress..."

    def test_title_case(self):
        assert title_case("RAYDIUM_AMM") == "Raydium Amm"
        assert title_case("nft sale") == "Nft Sale"


class TestTokenDisplay:

    def test_tracked_token_uses_metadata(self):
        assert token_display(MINT, MINT, METADATA).symbol == "PLS"
        assert token_display(MINT, MINT).symbol == "JPG"

    def test_known_and_unknown(self):
        assert token_display(USDC, MINT).symbol == "USDC"
        assert token_display("native", MINT).decimals == 9
        unknown = token_display("Zzzzzzzzzzzzzzzzzzzz9999", MINT)
        assert unknown.symbol == "Zzzz...9999"


class TestDescribeTransaction:

    def _swap(self, tracked_to):
        return TransactionRecord(
            signature="s",
            type="SWAP",
            source="RAYDIUM",
            fee_payer=BUYER,
            description="swapped",
            events={"swap": {}},
            token_transfers=[
                TokenTransfer(mint=USDC, token_amount=5, from_user_account=BUYER),
                TokenTransfer(mint=MINT, token_amount=1200, to_user_account=tracked_to),
            ],
        )

    def test_buy(self):
        view = describe_transaction(self._swap(BUYER), MINT, METADATA, now_ms=90_000)

        assert view.signature == "s"
        assert view.time_ago == "1m ago"
        assert view.label == "Buy PLS"
        assert view.direction == "buy"
        assert view.amount == 1200
        assert view.amount_display == "1.20K"
        assert view.counter_symbol == "USDC"
        assert view.source == "Raydium"

    def test_sell(self):
        view = describe_transaction(self._swap("pool"), MINT, METADATA)
        assert view.direction == "sell"
        assert view.label == "Sell PLS"

    def test_native_transfer_in_sol(self):
        tx = TransactionRecord(
            signature="n",
            type="TRANSFER",
            description="sent SOL",
            native_transfers=[NativeTransfer(amount=2_500_000_000, from_user_account="a", to_user_account="b")],
        )
        view = describe_transaction(tx, MINT)

        assert view.label == "SOL Transfer"
        assert view.amount == 2.5
        assert view.amount_display == "2.50"
        assert (view.from_address, view.to_address) == ("a", "b")

    def test_fallback_label(self):
        tx = TransactionRecord(
            signature="o",
            type="NFT_SALE",
            source="MAGIC_EDEN",
            description="sold",
            native_transfers=[NativeTransfer(amount=1)],
        )
        view = describe_transaction(tx, MINT)

        assert view.label == "Nft Sale"
        assert view.direction == "other"
        assert view.source == "MAGIC EDEN"

    def test_hidden_rows(self):
        transfers = [TokenTransfer(mint=MINT, token_amount=1)]
        assert describe_transaction(TransactionRecord(signature="a", type="TRANSFER", description="x"), MINT) is None
        assert describe_transaction(
            TransactionRecord(signature="b", description="x", token_transfers=transfers), MINT
        ) is None
        assert describe_transaction(
            TransactionRecord(signature="c", type="TRANSFER", description="  ", token_transfers=transfers), MINT
        ) is None
