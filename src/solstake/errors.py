"""Error taxonomy for the staking client."""

from __future__ import annotations

from typing import Any


class StakeClientError(Exception):
    """Base class for every error raised by solstake."""

    retryable = False


# ── Transport ──────────────────────────────────────────


class RpcTransportError(StakeClientError):
    """The RPC endpoint could not be reached or returned garbage."""

    retryable = True


class RpcError(StakeClientError):
    """The RPC node answered with a JSON-RPC error object."""

    def __init__(self, method: str, code: int, message: str, data: Any = None) -> None:
        super().__init__(f"{method} failed ({code}): {message}")
        self.method = method
        self.code = code
        self.message = message
        self.data = data


# ── Derivation & resolution (raised before anything is submitted) ──


class DerivationExhausted(StakeClientError):
    """No bump in 255..0 produced an off-curve address."""

    def __init__(self, seeds: list[bytes], program_id: object) -> None:
        super().__init__(
            f"no valid bump for {len(seeds)} seeds under program {program_id}"
        )
        self.seeds = seeds
        self.program_id = program_id


class InvalidAddress(StakeClientError):
    """Malformed address input, off-curve owner, or a token account that
    does not belong to the expected (mint, owner) pair."""


class AccountResolutionFailed(StakeClientError):
    """Existence check for a dependent account failed after all retries."""

    retryable = True

    def __init__(self, address: object, attempts: int, cause: Exception | None = None) -> None:
        super().__init__(
            f"could not resolve account {address} after {attempts} attempts: {cause}"
        )
        self.address = address
        self.attempts = attempts
        self.cause = cause


# ── Submission ─────────────────────────────────────────


class SubmissionFailed(StakeClientError):
    """The transaction was never accepted by the node; nothing landed."""


class ConfirmationTimeout(StakeClientError):
    """Commitment was not reached in time.

    The outcome is ambiguous: re-query state, do not resubmit.
    """

    def __init__(self, signature: object, commitment: str, timeout: float) -> None:
        super().__init__(
            f"transaction {signature} not {commitment} within {timeout:g}s"
            " (outcome unknown; re-query state before retrying)"
        )
        self.signature = signature
        self.commitment = commitment
        self.timeout = timeout


class ProgramRejected(StakeClientError):
    """The on-chain program returned an error for this transaction."""

    def __init__(
        self,
        code: int | None,
        name: str | None = None,
        signature: object = None,
        logs: list[str] | None = None,
        raw: Any = None,
    ) -> None:
        label = name or "unknown"
        super().__init__(f"program rejected transaction: {label} (code={code}) tx={signature}")
        self.code = code
        self.name = name
        self.signature = signature
        self.logs = logs or []
        self.raw = raw


# ── Reconciliation ─────────────────────────────────────


class RecordMismatch(StakeClientError):
    """Fetched stake record does not belong to the expected (owner, mint).

    Indicates a derivation or configuration bug.
    """

    def __init__(self, field: str, expected: object, observed: object, signature: object = None) -> None:
        super().__init__(
            f"stake record {field} mismatch: expected {expected}, observed {observed}"
            + (f" (tx={signature})" if signature else "")
        )
        self.field = field
        self.expected = expected
        self.observed = observed
        self.signature = signature


class StateStale(StakeClientError):
    """Fetched total is below the expected minimum; the read lags the write."""

    retryable = True

    def __init__(
        self,
        expected_minimum: int,
        observed: int | None,
        attempts: int = 1,
        signature: object = None,
    ) -> None:
        seen = "absent" if observed is None else str(observed)
        super().__init__(
            f"stake record total {seen} < expected minimum {expected_minimum}"
            f" after {attempts} attempt(s)"
            + (f" (tx={signature})" if signature else "")
        )
        self.expected_minimum = expected_minimum
        self.observed = observed
        self.attempts = attempts
        self.signature = signature
