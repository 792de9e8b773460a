"""JSON-RPC client for a Solana node - implements the LedgerRpc protocol."""

from __future__ import annotations

import base64
import itertools
import logging
from typing import Any

import httpx
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature

from solstake.errors import RpcError, RpcTransportError
from solstake.models.accounts import AccountInfo
from solstake.models.config import Commitment
from solstake.models.records import SignatureInfo, SignatureStatus, TransactionLogs

log = logging.getLogger(__name__)

NETWORK_RPC_URLS = {
    "localnet": "http://127.0.0.1:8899",
    "devnet": "https://api.devnet.solana.com",
    "testnet": "https://api.testnet.solana.com",
    "mainnet": "https://api.mainnet-beta.solana.com",
}


def _history_commitment(commitment: Commitment) -> str:
    # getSignaturesForAddress / getTransaction reject "processed"
    if commitment == Commitment.PROCESSED:
        return Commitment.CONFIRMED.value
    return commitment.value


def _decode_account(address: Pubkey, value: dict[str, Any]) -> AccountInfo:
    raw = value.get("data") or ["", "base64"]
    data = base64.b64decode(raw[0]) if isinstance(raw, list) else b""
    return AccountInfo(
        address=address,
        owner=Pubkey.from_string(value["owner"]),
        lamports=int(value.get("lamports", 0)),
        data=data,
        executable=bool(value.get("executable", False)),
    )


class HttpLedgerRpc:
    """Solana JSON-RPC 2.0 over an httpx.AsyncClient.

    Reads use the configured commitment. Node-side errors raise RpcError,
    transport failures raise RpcTransportError.
    """

    def __init__(
        self,
        rpc_url: str,
        commitment: Commitment = Commitment.CONFIRMED,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._commitment = commitment
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10),
            headers={"Content-Type": "application/json"},
        )
        self._ids = itertools.count(1)

    @property
    def rpc_url(self) -> str:
        return self._rpc_url

    @property
    def commitment(self) -> Commitment:
        return self._commitment

    async def close(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, params: list[Any] | None = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        try:
            resp = await self._client.post(self._rpc_url, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            log.debug("RPC %s transport failure: %s", method, exc)
            raise RpcTransportError(f"{method}: {exc}") from exc

        if "error" in body:
            err = body["error"]
            raise RpcError(
                method,
                int(err.get("code", 0)),
                str(err.get("message", "")),
                err.get("data"),
            )
        return body.get("result")

    # ── Accounts ───────────────────────────────────────────

    async def get_account(self, address: Pubkey) -> AccountInfo | None:
        result = await self._call(
            "getAccountInfo",
            [str(address), {"encoding": "base64", "commitment": self._commitment.value}],
        )
        value = result.get("value") if result else None
        if not value:
            return None
        return _decode_account(address, value)

    async def get_program_accounts(
        self, program_id: Pubkey, filters: list[dict[str, Any]] | None = None
    ) -> list[AccountInfo]:
        opts: dict[str, Any] = {
            "encoding": "base64",
            "commitment": self._commitment.value,
        }
        if filters:
            opts["filters"] = filters
        result = await self._call("getProgramAccounts", [str(program_id), opts])
        accounts = []
        for entry in result or []:
            address = Pubkey.from_string(entry["pubkey"])
            accounts.append(_decode_account(address, entry["account"]))
        return accounts

    # ── Transactions ───────────────────────────────────────

    async def get_latest_blockhash(self) -> Hash:
        result = await self._call(
            "getLatestBlockhash", [{"commitment": self._commitment.value}]
        )
        return Hash.from_string(result["value"]["blockhash"])

    async def send_transaction(self, raw: bytes) -> Signature:
        result = await self._call(
            "sendTransaction",
            [
                base64.b64encode(raw).decode("ascii"),
                {
                    "encoding": "base64",
                    "skipPreflight": False,
                    "preflightCommitment": self._commitment.value,
                },
            ],
        )
        return Signature.from_string(result)

    async def get_signature_status(self, signature: Signature) -> SignatureStatus | None:
        result = await self._call(
            "getSignatureStatuses",
            [[str(signature)], {"searchTransactionHistory": True}],
        )
        statuses = (result or {}).get("value") or []
        if not statuses or statuses[0] is None:
            return None
        status = statuses[0]
        return SignatureStatus(
            slot=int(status.get("slot", 0)),
            confirmation_status=status.get("confirmationStatus"),
            err=status.get("err"),
            confirmations=status.get("confirmations"),
        )

    async def get_signatures_for_address(
        self,
        address: Pubkey,
        until: Signature | None = None,
        before: Signature | None = None,
        limit: int = 100,
    ) -> list[SignatureInfo]:
        opts: dict[str, Any] = {
            "limit": limit,
            "commitment": _history_commitment(self._commitment),
        }
        if until is not None:
            opts["until"] = str(until)
        if before is not None:
            opts["before"] = str(before)
        result = await self._call("getSignaturesForAddress", [str(address), opts])
        return [
            SignatureInfo(
                signature=Signature.from_string(entry["signature"]),
                slot=int(entry.get("slot", 0)),
                err=entry.get("err"),
            )
            for entry in result or []
        ]

    async def get_transaction_logs(self, signature: Signature) -> TransactionLogs | None:
        result = await self._call(
            "getTransaction",
            [
                str(signature),
                {
                    "encoding": "json",
                    "commitment": _history_commitment(self._commitment),
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if not result:
            return None
        meta = result.get("meta") or {}
        return TransactionLogs(
            signature=signature,
            slot=int(result.get("slot", 0)),
            logs=list(meta.get("logMessages") or []),
            err=meta.get("err"),
        )
