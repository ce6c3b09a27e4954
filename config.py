"""Process-wide settings read once from the environment (and ``.env``).

Anything missing or out of range raises ``ConfigError`` – the bot never starts
with a partial configuration.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, Tuple, TypeVar

from dotenv import load_dotenv

from errors import ConfigError
from signing import redact

DEFAULT_BASE_URL = "https://api.gateio.ws/api/v4"

_POSITION_MODES = {
    "single": "single_mode",
    "single_mode": "single_mode",
    "dual": "dual_mode",
    "dual_mode": "dual_mode",
    "hedge": "dual_mode",
}

T = TypeVar("T")


@dataclass(frozen=True)
class Credentials:
    key: str
    secret: str = field(repr=False)

    def __repr__(self) -> str:
        return f"Credentials(key={redact(self.key)!r}, secret='***')"


@dataclass(frozen=True)
class RiskConfig:
    percentage: float = 2.5
    leverage: int = 20
    take_profit_percent: float = 0.5
    stop_loss_percent: float = 0.3

    def __post_init__(self):
        if not 0 < self.percentage <= 100:
            raise ConfigError("RISK_PERCENTAGE must be between 0 and 100")
        if not 1 <= self.leverage <= 100:
            raise ConfigError("LEVERAGE must be between 1 and 100")
        if not 0 < self.take_profit_percent < 100:
            raise ConfigError("TAKE_PROFIT_PERCENT must be between 0 and 100")
        if not 0 < self.stop_loss_percent < 100:
            raise ConfigError("STOP_LOSS_PERCENT must be between 0 and 100")


@dataclass(frozen=True)
class TradingHours:
    enabled: bool = False
    start_hour: int = 6
    end_hour: int = 22

    def __post_init__(self):
        if not 0 <= self.start_hour <= 23:
            raise ConfigError("TRADING_START_HOUR must be between 0 and 23")
        if not 0 <= self.end_hour <= 23:
            raise ConfigError("TRADING_END_HOUR must be between 0 and 23")

    def is_open(self, hour: int) -> bool:
        """Window is [start, end); wraps past midnight when start > end."""
        if not self.enabled:
            return True
        if self.start_hour == self.end_hour:
            return True
        if self.start_hour < self.end_hour:
            return self.start_hour <= hour < self.end_hour
        return hour >= self.start_hour or hour < self.end_hour


@dataclass(frozen=True)
class TradingConfig:
    allowed_symbols: Tuple[str, ...] = ("ADAUSDT", "TAOUSDT", "UNIUSDT")
    max_daily_trades: int = 20
    max_open_positions: int = 3
    dry_run: bool = False
    protective_order_attempts: int = 3
    protective_retry_delay: float = 1.0

    def __post_init__(self):
        if not self.allowed_symbols:
            raise ConfigError("ALLOWED_SYMBOLS must list at least one symbol")
        if self.max_daily_trades <= 0:
            raise ConfigError("MAX_DAILY_TRADES must be greater than 0")
        if self.max_open_positions <= 0:
            raise ConfigError("MAX_OPEN_POSITIONS must be greater than 0")
        if self.protective_order_attempts < 1:
            raise ConfigError("PROTECTIVE_ORDER_ATTEMPTS must be at least 1")
        if self.protective_retry_delay < 0:
            raise ConfigError("PROTECTIVE_RETRY_DELAY_SECONDS must not be negative")


@dataclass(frozen=True)
class TelegramConfig:
    bot_token: Optional[str] = field(default=None, repr=False)
    channel_id: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.channel_id)


@dataclass(frozen=True)
class Settings:
    credentials: Credentials
    risk: RiskConfig = field(default_factory=RiskConfig)
    trading: TradingConfig = field(default_factory=TradingConfig)
    trading_hours: TradingHours = field(default_factory=TradingHours)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    base_url: str = DEFAULT_BASE_URL
    position_mode: str = "single_mode"
    size_decimal: bool = False
    http_timeout: float = 8.0

    @property
    def dual_mode(self) -> bool:
        return self.position_mode == "dual_mode"


# ---------------------------------------------------------------------
# Env parsing helpers
# ---------------------------------------------------------------------

def _get(env: Mapping[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    value = env.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _require(env: Mapping[str, str], name: str) -> str:
    value = _get(env, name)
    if value is None:
        raise ConfigError(f"Missing required environment variable: {name}")
    return value


def _typed(env: Mapping[str, str], name: str, default: str, cast: Callable[[str], T]) -> T:
    raw = _get(env, name, default)
    try:
        return cast(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} has an invalid value: {raw!r}") from None


def _bool(raw: str) -> bool:
    text = raw.lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise ValueError(raw)


def _symbols(raw: str) -> Tuple[str, ...]:
    return tuple(s.strip().upper() for s in raw.split(",") if s.strip())


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build ``Settings`` from ``env`` (defaults to ``os.environ`` after ``.env``)."""
    if env is None:
        load_dotenv()
        env = os.environ

    credentials = Credentials(
        key=_require(env, "GATEIO_API_KEY"),
        secret=_require(env, "GATEIO_API_SECRET"),
    )

    mode_raw = _get(env, "GATEIO_POSITION_MODE", "single_mode").lower()
    if mode_raw not in _POSITION_MODES:
        raise ConfigError('GATEIO_POSITION_MODE must be either "single_mode" or "dual_mode"')

    risk = RiskConfig(
        percentage=_typed(env, "RISK_PERCENTAGE", "2.5", float),
        leverage=_typed(env, "LEVERAGE", "20", int),
        take_profit_percent=_typed(env, "TAKE_PROFIT_PERCENT", "0.5", float),
        stop_loss_percent=_typed(env, "STOP_LOSS_PERCENT", "0.3", float),
    )
    trading = TradingConfig(
        allowed_symbols=_symbols(_get(env, "ALLOWED_SYMBOLS", "ADAUSDT,TAOUSDT,UNIUSDT")),
        max_daily_trades=_typed(env, "MAX_DAILY_TRADES", "20", int),
        max_open_positions=_typed(env, "MAX_OPEN_POSITIONS", "3", int),
        dry_run=_typed(env, "DRY_RUN", "false", _bool),
        protective_order_attempts=_typed(env, "PROTECTIVE_ORDER_ATTEMPTS", "3", int),
        protective_retry_delay=_typed(env, "PROTECTIVE_RETRY_DELAY_SECONDS", "1.0", float),
    )
    hours = TradingHours(
        enabled=_typed(env, "TRADING_HOURS_ENABLED", "false", _bool),
        start_hour=_typed(env, "TRADING_START_HOUR", "6", int),
        end_hour=_typed(env, "TRADING_END_HOUR", "22", int),
    )
    telegram = TelegramConfig(
        bot_token=_get(env, "TELEGRAM_BOT_TOKEN"),
        channel_id=_get(env, "TELEGRAM_CHANNEL_ID"),
    )

    timeout = _typed(env, "HTTP_TIMEOUT_SECONDS", "8", float)
    if not 0 < timeout <= 30:
        raise ConfigError("HTTP_TIMEOUT_SECONDS must be between 0 and 30")

    return Settings(
        credentials=credentials,
        risk=risk,
        trading=trading,
        trading_hours=hours,
        telegram=telegram,
        base_url=_get(env, "GATEIO_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
        position_mode=_POSITION_MODES[mode_raw],
        size_decimal=_typed(env, "GATEIO_SIZE_DECIMAL", "false", _bool),
        http_timeout=timeout,
    )
