"""Exception hierarchy for the auto-miner."""


class MinerError(Exception):
    """Base class for everything the miner raises on purpose."""


class FetchError(MinerError):
    """Price or round-state fetch failed. Transient: the next tick retries."""

    NETWORK = "network"
    MISSING_QUOTE = "missing_quote"
    INVALID_STATE = "invalid_state"

    def __init__(self, kind: str, message: str):
        super().__init__(f"{kind}: {message}")
        self.kind = kind


class EncodingError(MinerError, ValueError):
    """Instruction arguments or account data do not fit the program layout."""


class SimulationError(MinerError):
    """Dry-run failed. Never fatal: the budget falls back to the floor."""


class SignerDeclined(MinerError):
    """The external signer rejected the transaction or timed out."""


class SubmissionError(MinerError):
    """Broadcast or confirmation failed after the transport retries."""


class TransactionExpired(MinerError):
    """The blockhash expired before the transaction was confirmed."""

    def __init__(self, signature: str, last_valid_block_height: int):
        super().__init__(
            f"Blockhash expired before confirmation "
            f"(last valid height {last_valid_block_height}). Signature: {signature}"
        )
        self.signature = signature
        self.last_valid_block_height = last_valid_block_height
