"""Error taxonomy for the execution bot.

Every failure the pipeline can surface is one of these classes. Callers match on
the class (or its ``kind``), never on message text. ``stage`` is filled in by the
orchestrator so a log line tells you where in the trade the error happened.
"""
from __future__ import annotations

from typing import Optional


class TradingBotError(Exception):
    """Base class – carries the structured kind and the pipeline stage."""

    kind = "error"

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage

    def with_stage(self, stage: str) -> "TradingBotError":
        """Annotate with the pipeline stage; keeps the class intact."""
        if self.stage is None:
            self.stage = stage
        return self

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message


class ConfigError(TradingBotError):
    """Missing or out-of-range configuration. Fatal at startup."""

    kind = "config"


class InvalidInputError(TradingBotError):
    kind = "invalid_input"


class InsufficientBalanceError(TradingBotError):
    """Sizing cannot meet exchange minimums at the current balance/price."""

    kind = "insufficient_balance"


class NotFoundError(TradingBotError):
    """Unknown contract or ticker – treat the symbol as untradeable."""

    kind = "not_found"


class NetworkError(TradingBotError):
    """Timeout or connection failure. The request may or may not have landed."""

    kind = "network"


class ExchangeRejectionError(TradingBotError):
    """Non-2xx answer from the exchange, with its error label."""

    kind = "exchange_rejection"

    def __init__(
        self,
        message: str,
        status: int = 0,
        label: str = "",
        stage: Optional[str] = None,
    ):
        super().__init__(message, stage=stage)
        self.status = status
        self.label = label

    def __str__(self) -> str:
        base = f"HTTP {self.status} {self.label or 'UNKNOWN'}: {self.message}"
        if self.stage:
            return f"[{self.stage}] {base}"
        return base
