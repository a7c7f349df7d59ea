import asyncio
import logging
import math
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

import httpx

from .analytics import RewardModel, TOP_HOLDER_LIMIT, build_wallet_info, compute_reward_metrics
from .config import Settings, settings
from .errors import (
    JSONRPC_RATE_LIMIT_CODES,
    MalformedResponseError,
    QueryResult,
    RateLimitError,
    UpstreamError,
    is_rate_limit_error,
)
from .governor import RequestGovernor, RetryPolicy
from .models import (
    NativeTransfer,
    RewardMetrics,
    TokenAccount,
    TokenMetadata,
    TokenSupply,
    TokenTransfer,
    TopHolder,
    TransactionRecord,
    WalletInfo,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------
USDC_DECIMALS = 6
RECENT_SIGNATURE_LIMIT = 20
RECENT_PARSE_LIMIT = 10
WALLET_HISTORY_LIMIT = 50
NATIVE_DUST_LAMPORTS = 5000  # smaller balance moves are treated as fees

JUPITER_PROGRAM_ID = "JUP4Fb2cqiRUcaTHdrPC8h2gNsA2ETXiPDD33WcGuJB"
ORCA_WHIRLPOOL_PROGRAM_ID = "whirLbMiicVdio4qvUfM5KAg6Ct8VwpYzGff3uctyCc"

FALLBACK_SUPPLY = TokenSupply(total_supply=1_000_000_000, circulating_supply=1_000_000_000, burned_supply=0)

# Raised while walking a response that does not have the expected shape
# (pydantic's ValidationError is a ValueError)
SHAPE_ERRORS = (KeyError, IndexError, TypeError, ValueError, AttributeError)

# -----------------------------------------------------------------------------
# Response normalisation
# -----------------------------------------------------------------------------
def _token_transfer(raw: Dict[str, Any]) -> TokenTransfer:
    return TokenTransfer(
        mint=raw.get("mint") or "",
        token_amount=float(raw.get("tokenAmount") or 0),
        from_user_account=raw.get("fromUserAccount"),
        to_user_account=raw.get("toUserAccount"),
        from_token_account=raw.get("fromTokenAccount"),
        to_token_account=raw.get("toTokenAccount"),
        token_standard=raw.get("tokenStandard"),
    )

def _native_transfer(raw: Dict[str, Any]) -> NativeTransfer:
    return NativeTransfer(
        amount=float(raw.get("amount") or 0),
        from_user_account=raw.get("fromUserAccount"),
        to_user_account=raw.get("toUserAccount"),
    )

def normalize_transaction(raw: Dict[str, Any]) -> TransactionRecord:
    """Map one Helius enhanced transaction onto a ``TransactionRecord``."""
    return TransactionRecord(
        signature=raw["signature"],
        timestamp=int(raw.get("timestamp") or 0) * 1000,
        fee=int(raw.get("fee") or 0),
        fee_payer=raw.get("feePayer") or "",
        description=raw.get("description") or "",
        type=raw.get("type") or "UNKNOWN",
        source=raw.get("source") or "UNKNOWN",
        slot=raw.get("slot"),
        events=raw.get("events") or {},
        token_transfers=[_token_transfer(t) for t in raw.get("tokenTransfers") or []],
        native_transfers=[_native_transfer(t) for t in raw.get("nativeTransfers") or []],
        account_data=raw.get("accountData") or [],
        transaction_error=raw.get("transactionError"),
    )

def normalize_transactions(data: Any) -> List[TransactionRecord]:
    if not isinstance(data, list):
        raise MalformedResponseError(f"Expected a list of transactions, got {type(data).__name__}")
    records: List[TransactionRecord] = []
    for raw in data:
        # the API returns null entries for signatures it could not resolve
        if not isinstance(raw, dict) or not raw.get("signature"):
            continue
        try:
            records.append(normalize_transaction(raw))
        except SHAPE_ERRORS as e:
            logger.warning("Skipping malformed transaction %s: %r", raw.get("signature"), e)
    return records

def _account_key(key: Any) -> str:
    if isinstance(key, dict):
        return key.get("pubkey") or ""
    return str(key or "")

def _ui_amount(balance: Dict[str, Any]) -> float:
    return float((balance.get("uiTokenAmount") or {}).get("uiAmount") or 0)

def record_from_parsed_transaction(
    signature: str,
    tx: Optional[Dict[str, Any]],
    mint: str,
    block_time: Optional[int] = None,
) -> Optional[TransactionRecord]:
    """Build a lower-fidelity record from a plain ``getParsedTransaction`` result."""
    if not tx or not tx.get("meta") or tx["meta"].get("err"):
        return None
    meta = tx["meta"]
    message = (tx.get("transaction") or {}).get("message") or {}
    keys = [_account_key(k) for k in message.get("accountKeys") or []]

    pre_tracked = [b for b in meta.get("preTokenBalances") or [] if b.get("mint") == mint]
    post_tracked = [b for b in meta.get("postTokenBalances") or [] if b.get("mint") == mint]
    token_transfers: List[TokenTransfer] = []
    for pre in pre_tracked:
        post = next((p for p in post_tracked if p.get("owner") == pre.get("owner")), None)
        if post is None:
            continue
        change = _ui_amount(post) - _ui_amount(pre)
        if change != 0:
            token_transfers.append(TokenTransfer(
                mint=mint,
                token_amount=change,
                from_user_account=pre.get("owner") if change < 0 else None,
                to_user_account=pre.get("owner") if change > 0 else None,
            ))

    pre_native = meta.get("preBalances") or []
    post_native = meta.get("postBalances") or []
    native_transfers: List[NativeTransfer] = []
    for i, key in enumerate(keys):
        before = pre_native[i] if i < len(pre_native) else 0
        after = post_native[i] if i < len(post_native) else 0
        change = after - before
        if abs(change) > NATIVE_DUST_LAMPORTS:
            native_transfers.append(NativeTransfer(
                amount=abs(change),
                from_user_account=key if change < 0 else None,
                to_user_account=key if change > 0 else None,
            ))

    program_ids = set()
    for ix in message.get("instructions") or []:
        if ix.get("programId"):
            program_ids.add(ix["programId"])
        elif isinstance(ix.get("programIdIndex"), int) and ix["programIdIndex"] < len(keys):
            program_ids.add(keys[ix["programIdIndex"]])

    tx_type, source, description = "TRANSFER", "On-chain Fallback", "Transaction processed via fallback method"
    if JUPITER_PROGRAM_ID in program_ids:
        tx_type, source, description = "SWAP", "JUPITER", "Jupiter swap transaction"
    elif ORCA_WHIRLPOOL_PROGRAM_ID in program_ids:
        tx_type, source, description = "SWAP", "ORCA", "Orca swap transaction"
    elif token_transfers:
        source, description = "SPL_TOKEN", f"Transfer {len(token_transfers)} token(s)"
    elif native_transfers:
        source, description = "SYSTEM_PROGRAM", f"Transfer {len(native_transfers)} SOL"

    return TransactionRecord(
        signature=signature,
        timestamp=int(tx.get("blockTime") or block_time or 0) * 1000,
        fee=int(meta.get("fee") or 0),
        fee_payer=keys[0] if keys else "",
        description=description,
        type=tx_type,
        source=source,
        slot=tx.get("slot"),
        token_transfers=token_transfers,
        native_transfers=native_transfers,
    )

def _newest_first(records: List[TransactionRecord]) -> List[TransactionRecord]:
    return sorted(records, key=lambda r: r.timestamp, reverse=True)

# -----------------------------------------------------------------------------
# Client
# -----------------------------------------------------------------------------
class UpstreamClient:
    """Domain queries for the tracked token, every call routed through one governor.

    ``fetch_*`` methods return a ``QueryResult`` and never raise for upstream
    failures. ``get_*`` methods apply the documented fallback, except
    ``get_recent_transactions`` and ``get_reward_metrics`` which raise.
    """

    def __init__(
        self,
        cfg: Settings = settings,
        governor: Optional[RequestGovernor] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cfg = cfg
        self.mint = cfg.TOKEN_MINT
        self.governor = governor or RequestGovernor(
            RetryPolicy(max_retries=cfg.RETRY_MAX_ATTEMPTS, base_delay=cfg.RETRY_BASE_DELAY_MS / 1000.0),
            batch_size=cfg.QUEUE_BATCH_SIZE,
            batch_delay=cfg.QUEUE_BATCH_DELAY_MS / 1000.0,
        )
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=cfg.HTTP_TIMEOUT_SECONDS,
            headers={"Content-Type": "application/json"},
        )
        self._sleep = sleep
        self._clock = clock
        self.reward_model = RewardModel.from_settings(cfg)
        self._metadata_cache: Optional[TokenMetadata] = None
        self._metadata_cache_time = 0.0

    async def aclose(self) -> None:
        await self.governor.aclose()
        if self._owns_http:
            await self._http.aclose()

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------
    async def _request_json(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
    ) -> Any:
        path = httpx.URL(url).path
        try:
            r = await self._http.request(method, url, params=params, json=json)
        except httpx.RequestError as e:
            raise UpstreamError(f"{method} {path} failed: {e}") from e
        if r.status_code == 429:
            raise RateLimitError(f"Rate limit exceeded: {r.text}", status_code=429)
        if r.is_error:
            raise UpstreamError(f"HTTP error {r.status_code} from {path}: {r.text}", status_code=r.status_code)
        try:
            return r.json()
        except ValueError as e:
            raise MalformedResponseError(f"Invalid JSON from {path}") from e

    async def rpc_call(self, method: str, params: Optional[Sequence[Any]] = None) -> Any:
        payload = {"jsonrpc": "2.0", "id": method, "method": method, "params": list(params or [])}

        async def _call() -> Any:
            data = await self._request_json("POST", self.cfg.HELIUS_RPC_URL, json=payload)
            if not isinstance(data, dict):
                raise MalformedResponseError(f"Unexpected RPC response for {method}")
            error = data.get("error")
            if error:
                message = error.get("message") if isinstance(error, dict) else str(error)
                code = error.get("code") if isinstance(error, dict) else None
                if code in JSONRPC_RATE_LIMIT_CODES:
                    raise RateLimitError(f"RPC rate limit: {message}")
                raise UpstreamError(f"RPC Error: {message}")
            return data.get("result")

        return await self.governor.submit(_call)

    async def fetch_json(
        self,
        path: str,
        method: str = "GET",
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
    ) -> Any:
        """Governed call against the Helius REST API."""
        url = f"{self.cfg.HELIUS_API_BASE_URL.rstrip('/')}{path}"
        query = {"api-key": self.cfg.HELIUS_API_KEY or "", **(params or {})}
        return await self.governor.submit(lambda: self._request_json(method, url, params=query, json=json))

    async def fetch_url(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.governor.submit(lambda: self._request_json("GET", url, params=params))

    async def _capture(self, coro: Awaitable[T]) -> QueryResult[T]:
        try:
            return QueryResult.success(await coro)
        except UpstreamError as e:
            return QueryResult.failure(e)
        except SHAPE_ERRORS as e:
            return QueryResult.failure(MalformedResponseError(f"Unexpected response shape: {e!r}"))

    @staticmethod
    def _soft(result: QueryResult[T], fallback: T, what: str) -> T:
        if not result.ok:
            logger.error("Error fetching %s (%s): %s", what, result.kind.value, result.error)
        return result.unwrap_or(fallback)

    # -------------------------------------------------------------------------
    # Token metadata / supply / holders
    # -------------------------------------------------------------------------
    def default_metadata(self, decimals: Optional[int] = None) -> TokenMetadata:
        return TokenMetadata(
            name=self.cfg.TOKEN_NAME,
            symbol=self.cfg.TOKEN_SYMBOL,
            decimals=decimals or self.cfg.TOKEN_DECIMALS,
            description=self.cfg.TOKEN_DESCRIPTION,
        )

    async def _supply_raw(self) -> Tuple[int, int]:
        result = await self.rpc_call("getTokenSupply", [self.mint])
        value = result["value"]
        return int(value["amount"]), int(value.get("decimals") or 0)

    async def _supply_in_tokens(self) -> float:
        amount, decimals = await self._supply_raw()
        return amount / (10 ** decimals)

    async def _load_token_metadata(self) -> TokenMetadata:
        data = await self.fetch_json(
            "/token-metadata",
            method="POST",
            json={"mintAccounts": [self.mint], "includeOffChain": True, "disableCache": False},
        )
        entry = data[0] if isinstance(data, list) and data else None
        on_chain = (entry or {}).get("onChainMetadata") if isinstance(entry, dict) else None
        if on_chain:
            on_data = (on_chain.get("metadata") or {}).get("data") or {}
            off_chain = entry.get("offChainMetadata") or {}
            off_data = off_chain.get("metadata") or off_chain
            return TokenMetadata(
                name=(on_data.get("name") or "").strip("\x00 ") or self.cfg.TOKEN_NAME,
                symbol=(on_data.get("symbol") or "").strip("\x00 ") or self.cfg.TOKEN_SYMBOL,
                decimals=int(on_data.get("decimals") or self.cfg.TOKEN_DECIMALS),
                description=off_data.get("description") or on_data.get("description") or self.cfg.TOKEN_DESCRIPTION,
                website=off_data.get("website") or "",
                logo_uri=off_data.get("image") or "",
                tags=list(off_data.get("tags") or []),
            )

        # No Metaplex metadata: basic info from the mint itself
        logger.info("No on-chain metadata for %s, using RPC supply info", self.mint)
        _, decimals = await self._supply_raw()
        return self.default_metadata(decimals)

    async def fetch_token_metadata(self) -> QueryResult[TokenMetadata]:
        return await self._capture(self._load_token_metadata())

    async def get_token_metadata(self) -> TokenMetadata:
        now = self._clock()
        if self._metadata_cache and now - self._metadata_cache_time < self.cfg.METADATA_CACHE_SECONDS:
            return self._metadata_cache
        metadata = self._soft(await self.fetch_token_metadata(), self.default_metadata(), "token metadata")
        self._metadata_cache, self._metadata_cache_time = metadata, now
        return metadata

    async def _load_token_supply(self) -> TokenSupply:
        total = await self._supply_in_tokens()
        # no burn/lock accounting yet: everything minted counts as circulating
        return TokenSupply(total_supply=total, circulating_supply=total, burned_supply=0)

    async def fetch_token_supply(self) -> QueryResult[TokenSupply]:
        return await self._capture(self._load_token_supply())

    async def get_token_supply(self) -> TokenSupply:
        return self._soft(await self.fetch_token_supply(), FALLBACK_SUPPLY, "token supply")

    async def _load_top_holders(self) -> List[TopHolder]:
        largest = await self.rpc_call("getTokenLargestAccounts", [self.mint])
        total = await self._supply_in_tokens()
        holders: List[TopHolder] = []
        for account in (largest["value"] or [])[:TOP_HOLDER_LIMIT]:
            amount = account.get("uiAmount")
            if not amount:
                continue
            holders.append(TopHolder(
                address=account["address"],
                amount=float(amount),
                percentage=(float(amount) / total) * 100 if total else 0.0,
            ))
        return holders

    async def fetch_top_holders(self) -> QueryResult[List[TopHolder]]:
        return await self._capture(self._load_top_holders())

    async def get_top_holders(self) -> List[TopHolder]:
        return self._soft(await self.fetch_top_holders(), [], "top holders")

    # -------------------------------------------------------------------------
    # Transaction parsing
    # -------------------------------------------------------------------------
    async def parse_transactions(self, signatures: Sequence[str]) -> List[TransactionRecord]:
        """Parse signatures in small sequential batches.

        A rate-limited batch stops processing; whatever was parsed so far is
        returned. Other batch failures are logged and skipped.
        """
        if not signatures:
            return []
        size = self.cfg.PARSE_BATCH_SIZE
        total_batches = math.ceil(len(signatures) / size)
        results: List[TransactionRecord] = []

        for start in range(0, len(signatures), size):
            batch = list(signatures[start:start + size])
            number = start // size + 1
            logger.debug("Parsing batch %d/%d: %s", number, total_batches, batch)
            try:
                data = await self.fetch_json("/transactions", method="POST", json={"transactions": batch})
                parsed = normalize_transactions(data)
            except UpstreamError as e:
                logger.error("Error parsing batch %d: %s", number, e)
                if is_rate_limit_error(e):
                    logger.warning("Rate limited on batch, stopping processing to avoid further rate limits")
                    break
            else:
                results.extend(parsed)
                logger.debug("Parsed %d/%d transactions in batch %d", len(parsed), len(batch), number)

            if start + size < len(signatures):
                await self._sleep(self.cfg.PARSE_BATCH_DELAY_MS / 1000.0)

        logger.info("Total successfully parsed: %d/%d transactions", len(results), len(signatures))
        return results

    async def parse_transaction(self, signature: str) -> Optional[TransactionRecord]:
        try:
            data = await self.fetch_json("/transactions", method="POST", json={"transactions": [signature]})
            records = normalize_transactions(data)
        except UpstreamError as e:
            if is_rate_limit_error(e):
                logger.warning("Rate limited when parsing %s, using fallback method", signature)
                return await self.parse_transaction_fallback(signature)
            logger.error("Error parsing transaction %s: %s", signature, e)
            return None
        return records[0] if records else None

    async def _get_parsed_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        return await self.rpc_call(
            "getParsedTransaction",
            [signature, {"encoding": "jsonParsed", "maxSupportedTransactionVersion": 0}],
        )

    async def parse_transaction_fallback(self, signature: str) -> Optional[TransactionRecord]:
        result = await self._capture(self._get_parsed_transaction(signature))
        if not result.ok:
            logger.error("Error in fallback transaction parsing for %s: %s", signature, result.error)
            return None
        try:
            return record_from_parsed_transaction(signature, result.value, self.mint)
        except SHAPE_ERRORS as e:
            logger.error("Unexpected parsed transaction shape for %s: %r", signature, e)
            return None

    # -------------------------------------------------------------------------
    # Transaction history
    # -------------------------------------------------------------------------
    async def get_recent_transactions(self) -> List[TransactionRecord]:
        """Recent mint transactions via plain RPC. Raises if history is unavailable."""
        try:
            signatures = await self.rpc_call("getSignaturesForAddress", [self.mint, {"limit": RECENT_SIGNATURE_LIMIT}])
            if not isinstance(signatures, list):
                raise MalformedResponseError("getSignaturesForAddress did not return a list")
        except UpstreamError as e:
            logger.error("Error fetching transactions: %s", e)
            raise UpstreamError("Failed to fetch real transaction data from Solana blockchain") from e

        records: List[TransactionRecord] = []
        for entry in signatures[:RECENT_PARSE_LIMIT]:
            signature = entry.get("signature") if isinstance(entry, dict) else None
            if not signature:
                continue
            result = await self._capture(self._get_parsed_transaction(signature))
            if not result.ok:
                logger.error("Error parsing transaction %s: %s", signature, result.error)
                continue
            try:
                record = record_from_parsed_transaction(signature, result.value, self.mint, entry.get("blockTime"))
            except SHAPE_ERRORS as e:
                logger.error("Unexpected parsed transaction shape for %s: %r", signature, e)
                continue
            if record is not None:
                records.append(record)
        return _newest_first(records)

    async def get_recent_transactions_enhanced(self, limit: int = 20) -> List[TransactionRecord]:
        """Recent mint transactions via the enhanced API, newest first.

        Falls back to :meth:`get_recent_transactions` (and so can raise) when
        the enhanced endpoint fails.
        """
        try:
            data = await self.fetch_json(f"/addresses/{self.mint}/transactions", params={"limit": limit})
        except UpstreamError as e:
            logger.error("Error fetching enhanced transactions: %s", e)
            return await self.get_recent_transactions()
        try:
            records = normalize_transactions(data)
        except MalformedResponseError as e:
            logger.error("Unexpected response format from transaction history: %s", e)
            return []
        logger.debug("Parsed %d/%d transactions from history", len(records), len(data))
        return _newest_first(records)

    async def fetch_address_transaction_history(
        self, address: str, limit: int = 20
    ) -> QueryResult[List[TransactionRecord]]:
        async def _load() -> List[TransactionRecord]:
            data = await self.fetch_json(f"/addresses/{address}/transactions", params={"limit": limit})
            return normalize_transactions(data)

        return await self._capture(_load())

    async def get_address_transaction_history(self, address: str, limit: int = 20) -> List[TransactionRecord]:
        result = await self.fetch_address_transaction_history(address, limit)
        return self._soft(result, [], f"transaction history for {address}")

    # -------------------------------------------------------------------------
    # Wallets / rewards
    # -------------------------------------------------------------------------
    async def _load_wallet_info(self, address: str) -> Optional[WalletInfo]:
        result = await self.rpc_call(
            "getTokenAccountsByOwner",
            [address, {"mint": self.mint}, {"encoding": "jsonParsed", "commitment": "confirmed"}],
        )
        if not isinstance(result, dict):
            raise MalformedResponseError(f"Unexpected token accounts response for {address}")
        accounts: List[TokenAccount] = []
        for item in result.get("value") or []:
            info = item["account"]["data"]["parsed"]["info"]
            accounts.append(TokenAccount(
                address=item["pubkey"],
                balance=float(info["tokenAmount"].get("uiAmount") or 0),
                owner=info.get("owner") or "",
            ))
        if not any(a.balance > 0 for a in accounts):
            logger.info("No %s balance found for wallet %s", self.cfg.TOKEN_SYMBOL, address)
            return None

        supply = (await self.fetch_token_supply()).unwrap()
        holders = await self.get_top_holders()
        history = await self.get_address_transaction_history(address, WALLET_HISTORY_LIMIT)
        return build_wallet_info(address, accounts, supply, holders, history, self.mint, self.reward_model)

    async def fetch_wallet_info(self, address: str) -> QueryResult[Optional[WalletInfo]]:
        return await self._capture(self._load_wallet_info(address))

    async def get_wallet_info(self, address: str) -> Optional[WalletInfo]:
        return self._soft(await self.fetch_wallet_info(address), None, f"wallet info for {address}")

    async def get_reward_metrics(self) -> RewardMetrics:
        """Reward pool estimate from recent transactions. Raises on failure."""
        try:
            transactions = await self.get_recent_transactions()
        except UpstreamError as e:
            logger.error("Error fetching reward metrics: %s", e)
            raise UpstreamError("Failed to fetch real reward metrics from Solana blockchain") from e
        return compute_reward_metrics(transactions, self.mint)

    async def fetch_reward_metrics(self) -> QueryResult[RewardMetrics]:
        return await self._capture(self.get_reward_metrics())

    # -------------------------------------------------------------------------
    # USD conversion
    # -------------------------------------------------------------------------
    async def _load_usd_value(self, amount: float) -> float:
        metadata = await self.get_token_metadata()
        data = await self.fetch_url(
            self.cfg.JUPITER_QUOTE_URL,
            params={
                "inputMint": self.mint,
                "outputMint": self.cfg.USDC_MINT,
                "amount": math.floor(amount * (10 ** metadata.decimals)),
                "swapMode": "ExactIn",
                "slippageBps": self.cfg.QUOTE_SLIPPAGE_BPS,
            },
        )
        return float(data["outAmount"]) / (10 ** USDC_DECIMALS)

    async def fetch_usd_value(self, amount: float) -> QueryResult[float]:
        return await self._capture(self._load_usd_value(amount))

    async def get_usd_value(self, amount: float) -> float:
        return self._soft(await self.fetch_usd_value(amount), 0.0, "USD value")

    async def get_usd_conversion_rate(self) -> float:
        """USD price of one whole token."""
        return await self.get_usd_value(1)
