"""
Bundler Client — ERC-4337 + ERC-7677 JSON-RPC over HTTP.

Thin synchronous wrapper around the bundler/paymaster endpoints used by the
relay pipeline:

    pm_getPaymasterStubData       sponsorship stub for estimation
    eth_estimateUserOperationGas  gas limits for the user operation
    pm_getPaymasterData           final sponsorship signature
    eth_sendUserOperation         submit, returns the user operation hash
    eth_getUserOperationReceipt   inclusion receipt (null until mined)

Provider errors are raised as BundlerRpcError carrying the JSON-RPC code and
message so the pipeline can report them verbatim.
"""

import itertools
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from zkvault.core.config import settings

logger = logging.getLogger(__name__)


class BundlerRpcError(Exception):
    """JSON-RPC error or transport failure talking to the bundler."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data


class BundlerClient:
    def __init__(
        self,
        url: Optional[str] = None,
        paymaster_url: Optional[str] = None,
        entry_point: Optional[str] = None,
        chain_id: Optional[int] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.url = url or settings.bundler_url
        self.paymaster_url = paymaster_url or settings.paymaster_url
        self.entry_point = entry_point or settings.ENTRY_POINT_ADDRESS
        self.chain_id = chain_id or settings.CHAIN_ID
        self._http = http_client or httpx.Client(
            timeout=timeout or settings.HTTP_TIMEOUT_SECONDS
        )
        self._ids = itertools.count(1)

    def close(self) -> None:
        self._http.close()

    def _rpc(self, method: str, params: List[Any], url: Optional[str] = None) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = self._http.post(url or self.url, json=payload)
        except httpx.HTTPError as e:
            raise BundlerRpcError(f"{method} transport error: {e}")

        # Providers often pair a JSON-RPC error with a 4xx/5xx status; the
        # error object carries the message worth reporting.
        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict) and body.get("error"):
            err = body["error"]
            raise BundlerRpcError(
                err.get("message", "Unknown bundler error"),
                code=err.get("code"),
                data=err.get("data"),
            )
        if response.is_error:
            raise BundlerRpcError(
                f"{method} HTTP {response.status_code}: {response.text[:200]}",
                code=response.status_code,
            )
        if not isinstance(body, dict):
            raise BundlerRpcError(f"{method} returned invalid JSON")
        return body.get("result")

    # ── Paymaster (ERC-7677) ──

    def get_paymaster_stub_data(self, user_op: Dict[str, str], context: Optional[Dict] = None) -> Dict[str, Any]:
        return self._rpc(
            "pm_getPaymasterStubData",
            [user_op, self.entry_point, hex(self.chain_id), context or {}],
            url=self.paymaster_url,
        ) or {}

    def get_paymaster_data(self, user_op: Dict[str, str], context: Optional[Dict] = None) -> Dict[str, Any]:
        return self._rpc(
            "pm_getPaymasterData",
            [user_op, self.entry_point, hex(self.chain_id), context or {}],
            url=self.paymaster_url,
        ) or {}

    # ── Bundler (ERC-4337) ──

    def estimate_user_operation_gas(self, user_op: Dict[str, str]) -> Dict[str, int]:
        result = self._rpc("eth_estimateUserOperationGas", [user_op, self.entry_point])
        if not result:
            raise BundlerRpcError("eth_estimateUserOperationGas returned no estimate")
        return {key: int(value, 16) if isinstance(value, str) else int(value)
                for key, value in result.items() if value is not None}

    def send_user_operation(self, user_op: Dict[str, str]) -> str:
        return self._rpc("eth_sendUserOperation", [user_op, self.entry_point])

    def get_user_operation_receipt(self, user_op_hash: str) -> Optional[Dict[str, Any]]:
        return self._rpc("eth_getUserOperationReceipt", [user_op_hash])

    def wait_for_user_operation_receipt(
        self,
        user_op_hash: str,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Poll for the receipt.

        Returns:
            The receipt, or None if the deadline passed first.
        """
        timeout = settings.RECEIPT_TIMEOUT_SECONDS if timeout is None else timeout
        poll_interval = settings.RECEIPT_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        deadline = time.monotonic() + timeout

        while True:
            receipt = self.get_user_operation_receipt(user_op_hash)
            if receipt:
                return receipt
            if time.monotonic() >= deadline:
                return None
            time.sleep(poll_interval)
