"""
Utility Module

Error taxonomy, secure logging and formatting helpers shared by the bot.

- Every failure the bot can hit is a BotError subclass so strategy loops can
  tell fatal configuration problems from per-attempt failures
- Log messages are sanitized so keys never reach the console or log file
"""

import re
import logging
import logging.handlers
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


MIST_PER_SUI = 10 ** 9

# Global console for Rich output
console = Console()


class BotError(Exception):
    """Base class for all bot errors."""
    pass


class ConfigError(BotError):
    """Missing or malformed configuration. Fatal, never retried."""
    pass


class TransientError(BotError):
    """Network timeout, RPC or HTTP failure. Retried by the strategy loop."""
    pass


class BalanceQueryError(TransientError):
    """Balance lookup failed for an (address, asset) pair."""

    def __init__(self, address: str, asset: str, cause: Exception):
        self.address = address
        self.asset = asset
        self.cause = cause
        super().__init__(
            f"Balance query failed for {format_address(address)} / {asset}: {cause}"
        )


class InsufficientBalance(BotError):
    """Wallet cannot cover the requested amount plus its reserve."""

    def __init__(self, message: str, available: int = 0, required: int = 0):
        self.available = available
        self.required = required
        super().__init__(message)


class StrategyStopped(BotError):
    """
    Stop signal observed at a step boundary; the pending step was not submitted.

    Collection strategies attach what they finished so far as ``partial``.
    """

    def __init__(self, message: str = "Stop requested", partial=None):
        self.partial = partial
        super().__init__(message)


class SwapError(BotError):
    """
    Attempt-terminal failure of one orchestration run.

    Carries the state the attempt was in, the asset pair, the amount and
    the underlying cause so callers can log it and decide what to do next.
    """

    kind = "swap_failed"

    def __init__(
        self,
        reason: str,
        state: Optional[str] = None,
        from_asset: Optional[str] = None,
        to_asset: Optional[str] = None,
        amount: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        self.reason = reason
        self.state = state
        self.from_asset = from_asset
        self.to_asset = to_asset
        self.amount = amount
        self.cause = cause
        super().__init__(reason)

    def __str__(self) -> str:
        parts = [f"{self.kind}: {self.reason}"]
        if self.from_asset and self.to_asset:
            parts.append(f"pair={short_asset(self.from_asset)}->{short_asset(self.to_asset)}")
        if self.amount is not None:
            parts.append(f"amount={self.amount}")
        if self.state:
            parts.append(f"state={self.state}")
        return " | ".join(parts)


class NoRouteFound(SwapError):
    """Aggregator answered with no route. Not retried within an attempt."""
    kind = "no_route"


class BuildFailed(SwapError):
    """Swap operations could not be assembled into a transaction."""
    kind = "build_failed"


class SimulationFailed(SwapError):
    """Dry run raised or reported a non-success status."""
    kind = "simulation_failed"


class SubmissionRejected(SwapError):
    """Chain executed the transaction and reported failure."""
    kind = "submission_rejected"


class SecureLogger:
    """
    Logger that sanitizes sensitive data from log messages.
    """

    # Sui addresses and digests are 64 hex chars too, so raw hex keys are
    # only caught by the key=... pattern
    SENSITIVE_PATTERNS = [
        (r'suiprivkey1[0-9a-z]+', '[PRIVATE_KEY_REDACTED]'),
        (r'password["\']?\s*[:=]\s*["\'][^"\']+["\']', 'password=[REDACTED]'),
        (r'private[_-]?key["\']?\s*[:=]\s*["\']?[^"\'\s]+["\']?', 'private_key=[REDACTED]'),
        (r'api[_-]?key["\']?\s*[:=]\s*["\'][^"\']+["\']', 'api_key=[REDACTED]'),
    ]

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def _sanitize(self, msg) -> str:
        """Remove sensitive data from log message."""
        if not isinstance(msg, str):
            msg = str(msg)

        sanitized = msg
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)
        return sanitized

    def debug(self, msg, *args, **kwargs):
        self._logger.debug(self._sanitize(msg), *args, **kwargs)

    def info(self, msg, *args, **kwargs):
        self._logger.info(self._sanitize(msg), *args, **kwargs)

    def warning(self, msg, *args, **kwargs):
        self._logger.warning(self._sanitize(msg), *args, **kwargs)

    def error(self, msg, *args, **kwargs):
        self._logger.error(self._sanitize(msg), *args, **kwargs)

    def exception(self, msg, *args, **kwargs):
        self._logger.exception(self._sanitize(msg), *args, **kwargs)

    def critical(self, msg, *args, **kwargs):
        self._logger.critical(self._sanitize(msg), *args, **kwargs)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> SecureLogger:
    """
    Setup logging with Rich console output and an optional rotating file.

    Returns a SecureLogger that sanitizes sensitive data. Calling it again
    reconfigures the same underlying logger.
    """
    base = logging.getLogger("sui_volume_bot")
    base.setLevel(getattr(logging, log_level.upper()))
    base.handlers = []
    base.propagate = False

    rich_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        rich_tracebacks=True
    )
    rich_handler.setLevel(getattr(logging, log_level.upper()))
    rich_handler.setFormatter(logging.Formatter("%(message)s"))
    base.addHandler(rich_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        file_handler.setLevel(getattr(logging, log_level.upper()))
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        base.addHandler(file_handler)

    logger._logger = base
    return logger


# Global secure logger, reconfigured by setup_logging()
logger = SecureLogger(logging.getLogger("sui_volume_bot"))


# Formatting utilities

def format_mist(amount: int, decimals: int = 9) -> str:
    """Format a raw amount in smallest units to a human-readable string."""
    if amount == 0:
        return "0"

    negative = amount < 0
    whole, frac = divmod(abs(amount), 10 ** decimals)
    frac_str = str(frac).rjust(decimals, "0").rstrip("0")
    text = f"{whole:,}" + (f".{frac_str}" if frac_str else "")
    return f"-{text}" if negative else text


def format_sui(amount: int) -> str:
    """Format MIST as SUI."""
    return f"{format_mist(amount)} SUI"


def format_address(address: str, length: int = 6) -> str:
    """Format a Sui address with ellipsis."""
    if len(address) <= length * 2 + 2:
        return address
    return f"{address[:length + 2]}...{address[-length:]}"


def short_asset(asset: str) -> str:
    """Shorten a coin type to its module::Type tail."""
    parts = asset.split("::")
    if len(parts) == 3:
        return f"{parts[1]}::{parts[2]}"
    return asset


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human-readable string."""
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    elif seconds < 3600:
        minutes = seconds // 60
        secs = seconds % 60
        return f"{minutes}m {secs}s" if secs > 0 else f"{minutes}m"
    else:
        hours = seconds // 3600
        minutes = (seconds % 3600) // 60
        return f"{hours}h {minutes}m"


def sanitize_error_message(error) -> str:
    """
    Sanitize error messages to remove sensitive data.

    Args:
        error: Original error or message

    Returns:
        Sanitized message safe for display
    """
    if not isinstance(error, str):
        error = str(error)

    patterns = [
        (r'suiprivkey1[0-9a-z]+', '[PRIVATE_KEY]'),
        (r'https?://[^\s]+', '[URL]'),
        (r'password["\']?\s*[:=]\s*\S+', 'password=[REDACTED]'),
    ]

    sanitized = error
    for pattern, replacement in patterns:
        sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)
    return sanitized
