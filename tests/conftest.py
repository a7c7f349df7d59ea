"""Shared fixtures: settings, a recording clock and a fake upstream transport."""

import asyncio
import json
from typing import Any, Callable, Dict, List, Tuple, Union

import httpx
import pytest

from tokenpulse.config import Settings
from tokenpulse.governor import RequestGovernor, RetryPolicy
from tokenpulse.upstream import UpstreamClient

MINT = "DZJefTBdJ2Ui2YB1bWgi6Bv1TPPVZJMrvGrbCDjtjups"
USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
RPC_HOST = "mainnet.helius-rpc.com"

# 100,000,000 whole tokens at 6 decimals
SUPPLY_RESULT = {"value": {"amount": "100000000000000", "decimals": 6, "uiAmount": 100_000_000.0}}


class SleepRecorder:
    """Stand-in for asyncio.sleep that records delays instead of waiting."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


Handler = Union[Any, Callable[..., httpx.Response]]


class FakeUpstream:
    """Routes mock HTTP requests to canned RPC results and REST payloads.

    ``rpc[method]`` is either the JSON-RPC ``result`` or a callable taking the
    params and returning an ``httpx.Response``. ``rest[(verb, path)]`` is a
    JSON payload or a callable taking the request.
    """

    def __init__(self):
        self.rpc: Dict[str, Handler] = {}
        self.rest: Dict[Tuple[str, str], Handler] = {}
        self.calls: List[Any] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == RPC_HOST:
            body = json.loads(request.content)
            method = body["method"]
            self.calls.append(method)
            if method not in self.rpc:
                return httpx.Response(404)
            handler = self.rpc[method]
            if callable(handler):
                return handler(body["params"])
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": method, "result": handler})

        key = (request.method, request.url.path)
        self.calls.append(key)
        if key not in self.rest:
            return httpx.Response(404)
        handler = self.rest[key]
        if callable(handler):
            return handler(request)
        return httpx.Response(200, json=handler)

    def count(self, call: Any) -> int:
        return sum(1 for c in self.calls if c == call)


@pytest.fixture
def cfg() -> Settings:
    return Settings(HELIUS_API_KEY="test-key", TOKEN_MINT=MINT)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def make_client(cfg, sleeper, upstream):
    created: List[UpstreamClient] = []

    def _make(settings: Settings = None) -> UpstreamClient:
        policy = RetryPolicy(max_retries=3, base_delay=2.0, sleep=sleeper, jitter=lambda: 0.0)
        governor = RequestGovernor(policy, batch_size=5, batch_delay=0.2, sleep=sleeper)
        http = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
        client = UpstreamClient(settings or cfg, governor=governor, http_client=http, sleep=sleeper)
        created.append(client)
        return client

    return _make


def helius_tx(signature: str, **overrides: Any) -> Dict[str, Any]:
    """A Helius enhanced transaction payload moving the tracked token."""
    tx = {
        "signature": signature,
        "timestamp": 1_700_000_000,
        "fee": 5000,
        "feePayer": "Payer1111111111111111111111111111111111111",
        "description": f"transfer in {signature}",
        "type": "TRANSFER",
        "source": "SYSTEM_PROGRAM",
        "slot": 250_000_000,
        "tokenTransfers": [
            {
                "mint": MINT,
                "tokenAmount": 10.0,
                "fromUserAccount": "Payer1111111111111111111111111111111111111",
                "toUserAccount": "Dest11111111111111111111111111111111111111",
            }
        ],
        "nativeTransfers": [],
        "events": {},
    }
    tx.update(overrides)
    return tx
