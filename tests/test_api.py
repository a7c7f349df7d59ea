"""HTTP surface tests against an app wired to a mocked upstream client."""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from tokenpulse.analytics import RewardModel
from tokenpulse.errors import UpstreamError
from tokenpulse.main import create_app, is_solana_address, sanitize_address
from tokenpulse.models import RewardMetrics, TokenTransfer, TransactionRecord, WalletInfo

from conftest import MINT

WALLET = "Wa11et" + "1" * 38


@pytest.fixture
def upstream_client():
    client = AsyncMock()
    client.reward_model = RewardModel()
    client.get_wallet_info.return_value = None
    client.get_usd_value.return_value = 1.5
    return client


@pytest.fixture
def api(cfg, upstream_client):
    app = create_app(cfg, client=upstream_client, start_polling=False)
    with TestClient(app) as test_client:
        yield test_client


class TestHelpers:

    def test_sanitize_address(self):
        assert sanitize_address(f"  {WALLET}?ref=x ") == WALLET
        assert sanitize_address(f"{WALLET}#top") == WALLET
        assert sanitize_address(None) == ""

    def test_solana_address(self):
        assert is_solana_address(WALLET)
        assert not is_solana_address("0x" + "a" * 40)
        assert not is_solana_address("short")


class TestRoutes:

    def test_ping_and_health(self, api):
        assert api.get("/").status_code == 200
        body = api.get("/health").json()
        assert body == {"status": "ok", "polling": False, "loading": True}

    def test_snapshot_before_first_refresh(self, api):
        body = api.get("/snapshot").json()

        assert body["loading"] is True
        assert body["transactions"] == []
        assert body["version"] == 0

    def test_wallet_invalid_address(self, api, upstream_client):
        r = api.get("/wallet/not-a-wallet")

        assert r.status_code == 422
        upstream_client.get_wallet_info.assert_not_awaited()

    def test_wallet_not_found(self, api):
        r = api.get(f"/wallet/{WALLET}")

        assert r.status_code == 404
        assert r.json()["detail"] == "Wallet not found or has no JPG tokens"

    def test_wallet_found(self, api, upstream_client):
        upstream_client.get_wallet_info.return_value = WalletInfo(
            address=WALLET, balance=1_000_000, percentage=1.0, rank=2, is_top_holder=True
        )
        body = api.get(f"/wallet/{WALLET}").json()

        assert body["rank"] == 2
        assert body["percentage"] == 1.0
        upstream_client.get_wallet_info.assert_awaited_with(WALLET)

    def test_usd_quote(self, api, upstream_client):
        assert api.get("/usd", params={"amount": 2}).json() == {"amount": 2.0, "usd": 1.5, "display": "$1.50"}
        assert api.get("/usd", params={"amount": 0}).status_code == 422

    def test_reward_projection(self, api):
        body = api.get("/rewards/projection", params={"market_cap": 1_000_000, "lp_percent": 0.1}).json()

        assert body["lp_percent"] == 0.1
        assert body["token_amount"] == pytest.approx(100_000)
        assert body["daily_earnings"] == pytest.approx(12_500)

    def test_reward_projection_from_token_amount(self, api):
        body = api.get("/rewards/projection", params={"market_cap": 1_000_000, "tokens": 5_000_000}).json()

        assert body["lp_percent"] == pytest.approx(5.0)
        assert body["token_amount"] == pytest.approx(5_000_000)
        assert body["daily_earnings"] == pytest.approx(625_000)

    def test_reward_projection_token_amount_is_clamped(self, api):
        body = api.get("/rewards/projection", params={"tokens": 1}).json()
        assert body["lp_percent"] == pytest.approx(0.01)

    def test_reward_metrics_with_countdown(self, api, upstream_client):
        upstream_client.get_reward_metrics.return_value = RewardMetrics(
            total_reward_pool=2.0, distribution_percentage=50, total_transactions=4, next_distribution_time=0
        )
        body = api.get("/rewards/metrics").json()

        assert body["total_reward_pool"] == 2.0
        assert body["next_distribution_in"] == "Distribution in progress..."

    def test_feed_rows_from_snapshot(self, api, upstream_client):
        upstream_client.get_recent_transactions_enhanced.return_value = [
            TransactionRecord(
                signature="t1",
                type="TRANSFER",
                description="moved tokens",
                token_transfers=[TokenTransfer(mint=MINT, token_amount=2500, from_user_account="a", to_user_account="b")],
            ),
            TransactionRecord(signature="t2", type="UNKNOWN", description="noise"),
        ]
        store = api.app.state.store
        api.portal.call(store.poll_transactions, True)

        rows = api.get("/feed").json()

        assert [row["signature"] for row in rows] == ["t1"]
        assert rows[0]["label"] == "JPG Transfer"
        assert rows[0]["amount_display"] == "2.50K"

    def test_reward_metrics_upstream_failure(self, api, upstream_client):
        upstream_client.get_reward_metrics.side_effect = UpstreamError("Failed to fetch real reward metrics")
        r = api.get("/rewards/metrics")

        assert r.status_code == 502
        assert "Failed to fetch real reward metrics" in r.json()["detail"]


def test_injected_client_is_not_closed(cfg, upstream_client):
    app = create_app(cfg, client=upstream_client, start_polling=False)
    with TestClient(app):
        pass
    upstream_client.aclose.assert_not_awaited()


def test_run_serves_configured_app(monkeypatch):
    import uvicorn

    from tokenpulse import main

    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda app, **kw: calls.append((app, kw)))
    monkeypatch.setattr(main, "configure_logging", lambda: None)

    main.run()

    [(app, kw)] = calls
    assert app.title == "Token Pulse API"
    assert kw["port"] == main.settings.PORT


def test_console_script_points_at_run():
    from importlib.metadata import PackageNotFoundError, distribution

    try:
        dist = distribution("tokenpulse")
    except PackageNotFoundError:
        pytest.skip("tokenpulse is not installed")
    scripts = {ep.name: ep.value for ep in dist.entry_points if ep.group == "console_scripts"}
    assert scripts["tokenpulse"] == "tokenpulse.main:run"
