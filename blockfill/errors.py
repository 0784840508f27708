"""
Error taxonomy for blockfill.
Every error carries the stage it was raised in and, where known, the target block.
"""
import typing as t


class StressError(Exception):
    """Base class for all run errors."""

    fatal: bool = True

    def __init__(
        self,
        message: str,
        stage: t.Optional[str] = None,
        target_block: t.Optional[int] = None,
        cause: t.Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.target_block = target_block
        self.cause = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.stage:
            parts.append(f"stage={self.stage}")
        if self.target_block is not None:
            parts.append(f"block={self.target_block}")
        if self.cause is not None:
            parts.append(f"cause={self.cause!r}")
        return " | ".join(parts)


class ConfigError(StressError):
    """Invalid run configuration. Raised before any network call."""


class SigningError(StressError):
    """A key is unusable or a signing operation failed."""


class RpcError(StressError):
    """Transport failure, timeout or malformed JSON-RPC response."""

    fatal = False


class TransportExhausted(RpcError):
    """An RPC call kept failing after the bounded number of retries."""

    fatal = True


class RejectionError(StressError):
    """The relay declined a bundle. Recorded as a missed block."""

    fatal = False
