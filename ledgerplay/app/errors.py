from __future__ import annotations


class EngineError(Exception):
    """Base class for failures surfaced to the presentation layer."""

    code = "engine_error"
    retryable = False


class SessionFlowError(EngineError, ValueError):
    code = "session_flow"


class NoActiveSessionError(EngineError, KeyError):
    code = "no_active_session"

    def __str__(self) -> str:
        # KeyError quotes its argument otherwise.
        return str(self.args[0]) if self.args else "No active session."


class SubmissionError(EngineError):
    code = "submission_error"


class NotConnectedError(SubmissionError):
    code = "not_connected"


class ActionInProgressError(SubmissionError):
    code = "action_in_progress"
    retryable = True


class TransactionRevertedError(SubmissionError):
    code = "transaction_reverted"

    def __init__(self, reason: str | None = None, tx_hash: str | None = None) -> None:
        super().__init__(reason or "Transaction reverted by the ledger.")
        self.reason = reason
        self.tx_hash = tx_hash


class NetworkError(SubmissionError):
    code = "network_error"
    retryable = True


class TimedOutError(SubmissionError):
    code = "timed_out"
    retryable = True

    def __init__(self, message: str, tx_hash: str | None = None) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash


class DecodeError(ValueError):
    """Malformed card or symbol token. Never leaves the codec."""
