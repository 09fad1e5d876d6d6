"""
Minimal EVM JSON-RPC client using httpx sync client.
Only what purchase verification needs: receipt lookup and chain head.
"""
import logging
import time
from dataclasses import dataclass, field
from itertools import count

import httpx
import pybreaker
import redis

from comicpay.core.config import settings
from comicpay.errors import TxNotFound
from comicpay.services.circuit_breaker import get_circuit_breaker
from comicpay.utils.metrics import chain_request_duration_seconds, chain_requests_total

logger = logging.getLogger(__name__)


class ChainRPCError(Exception):
    """JSON-RPC level error returned by the node."""


@dataclass(frozen=True)
class LogEntry:
    address: str  # lowercase
    topics: list[str] = field(default_factory=list)  # lowercase 0x-hex
    data: str = "0x"


@dataclass(frozen=True)
class TransactionReceipt:
    transaction_hash: str
    status: int
    block_number: int
    from_address: str  # lowercase
    to_address: str | None  # lowercase, None for contract creation
    logs: list[LogEntry] = field(default_factory=list)


def _hex_to_int(value: str | None) -> int:
    return int(value, 16) if value else 0


def parse_receipt(raw: dict) -> TransactionReceipt:
    return TransactionReceipt(
        transaction_hash=raw["transactionHash"].lower(),
        status=_hex_to_int(raw.get("status")),
        block_number=_hex_to_int(raw.get("blockNumber")),
        from_address=(raw.get("from") or "").lower(),
        to_address=raw["to"].lower() if raw.get("to") else None,
        logs=[
            LogEntry(
                address=(entry.get("address") or "").lower(),
                topics=[t.lower() for t in entry.get("topics", [])],
                data=entry.get("data") or "0x",
            )
            for entry in raw.get("logs", [])
        ],
    )


class ChainClient:
    """
    Sync JSON-RPC client for one network.
    Timeouts, transport errors, non-JSON bodies and an open or unreachable breaker
    surface as retryable TxNotFound:
    block confirmation is eventually consistent, the caller should ask again.
    """

    def __init__(self, rpc_url: str, chain_id: int, timeout: float | None = None) -> None:
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self._timeout = timeout if timeout is not None else settings.chain_rpc_timeout
        self._client: httpx.Client | None = None
        self._ids = count(1)

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self._timeout)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _post(self, method: str, params: list) -> dict:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        resp = self.client.post(self.rpc_url, json=payload)
        resp.raise_for_status()
        body = resp.json()
        if not isinstance(body, dict):
            raise ValueError(f"unexpected JSON-RPC response body: {type(body).__name__}")
        return body

    def _call(self, method: str, params: list):
        start = time.time()
        try:
            breaker = get_circuit_breaker(f"chain_rpc:{self.chain_id}")
            body = breaker.call(self._post, method, params)
        except pybreaker.CircuitBreakerError as e:
            chain_requests_total.labels(method=method, status="breaker_open").inc()
            raise TxNotFound("chain RPC temporarily unavailable") from e
        except redis.RedisError as e:
            # Breaker state lives in Redis
            chain_requests_total.labels(method=method, status="breaker_unavailable").inc()
            logger.warning(
                "chain_rpc_breaker_unavailable",
                extra={"chain_id": self.chain_id, "method": method, "error": str(e)},
            )
            raise TxNotFound("chain RPC temporarily unavailable") from e
        except (httpx.TimeoutException, httpx.TransportError, httpx.HTTPStatusError, ValueError) as e:
            # ValueError: the node (or a proxy in front of it) answered with a non JSON-RPC body
            chain_requests_total.labels(method=method, status="error").inc()
            logger.warning(
                "chain_rpc_failed",
                extra={"chain_id": self.chain_id, "method": method, "error": str(e)},
            )
            raise TxNotFound(f"chain RPC {method} failed: {type(e).__name__}") from e
        finally:
            chain_request_duration_seconds.labels(method=method).observe(time.time() - start)

        if "error" in body and body["error"]:
            chain_requests_total.labels(method=method, status="rpc_error").inc()
            raise ChainRPCError(f"{method}: {body['error']}")
        chain_requests_total.labels(method=method, status="success").inc()
        return body.get("result")

    def get_transaction_receipt(self, tx_hash: str) -> TransactionReceipt | None:
        raw = self._call("eth_getTransactionReceipt", [tx_hash])
        if not raw:
            return None
        return parse_receipt(raw)

    def block_number(self) -> int:
        return _hex_to_int(self._call("eth_blockNumber", []))
