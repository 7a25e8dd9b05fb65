from __future__ import annotations


class LotterySyncError(Exception):
    """Base class for errors raised inside the sync layer."""


class ChainReadError(LotterySyncError):
    """A single contract read failed or returned an unusable value."""

    def __init__(self, function: str, args: tuple = (), cause: BaseException | None = None) -> None:
        self.function = function
        self.call_args = args
        self.cause = cause
        rendered = ", ".join(str(a) for a in args)
        message = f"{function}({rendered}) failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class ConfigurationError(LotterySyncError, RuntimeError):
    """Required configuration is missing or malformed."""
