"""
Configuration Management Module

Loads bot settings from defaults, an optional YAML file and the environment
(.env supported through python-dotenv). Endpoints and the private key are
mandatory; missing or malformed values raise ConfigError at startup.
"""

import os
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict, fields

import yaml
from dotenv import load_dotenv

from .models import SUI_TYPE, normalize_asset
from .utils import logger, ConfigError, MIST_PER_SUI
from .wallet import Wallet


ENV_AGGREGATOR_URL = "AGGREGATOR_RPC_URL_MAINNET"
ENV_FULLNODE_URL = "FULLNODE_RPC_URL_MAINNET"
ENV_PRIVATE_KEY = "PRIVATE_KEY_BECH32"

# Optional overrides, SWAP_<FIELD NAME IN UPPER CASE>
ENV_PREFIX = "SWAP_"


@dataclass
class Config:
    """Bot configuration settings."""

    # Network
    aggregator_url: Optional[str] = None
    fullnode_url: Optional[str] = None
    rpc_timeout_seconds: float = 15.0
    rpc_max_retries: int = 5

    # Credentials
    private_key: Optional[str] = None

    # Assets
    base_asset: str = SUI_TYPE
    target_asset: Optional[str] = None

    # Trading settings (amounts in MIST / smallest units)
    swap_amount: int = 10
    batch_count: int = 1
    slippage: float = 0.05
    swap_margin: float = 1.2
    sweep_margin: float = 1.1
    min_swap_reserve: int = MIST_PER_SUI // 1000  # 0.001 SUI kept for gas

    # Gas budgets
    provisional_gas_budget: int = 250_000_000
    transfer_gas_budget: int = 50_000_000

    # Disposable-wallet relay
    gas_stipend: int = 2_000_000  # 0.002 SUI
    min_main_balance: int = MIST_PER_SUI // 100  # 0.01 SUI

    # Volume loop
    volume_trade_amount: int = MIST_PER_SUI
    volume_trades: int = 10
    inter_trade_delay_seconds: float = 2.0
    inter_round_delay_seconds: float = 3.0

    # Strategy loop
    iteration_delay_seconds: float = 1.0
    error_delay_seconds: float = 2.0
    balance_cache_seconds: float = 5.0

    # Operation
    log_level: str = "INFO"
    log_file: Optional[str] = "./logs/bot.log"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (excluding the private key)."""
        data = asdict(self)
        data["private_key"] = None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create Config from dictionary, ignoring unknown fields."""
        valid_fields = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**valid_fields)

    @classmethod
    def from_env(
        cls,
        config_path: Optional[Path] = None,
        env: Optional[Dict[str, str]] = None,
        dotenv: bool = True,
    ) -> "Config":
        """
        Build the configuration.

        Priority (lowest first): defaults, YAML file, environment.

        Args:
            config_path: Optional YAML file with strategy parameters
            env: Environment mapping (defaults to os.environ)
            dotenv: Load a .env file into os.environ first
        """
        if dotenv and env is None:
            load_dotenv()
        env = os.environ if env is None else env

        data: Dict[str, Any] = {}
        if config_path is not None:
            data.update(ConfigManager(config_path).read())

        if env.get(ENV_AGGREGATOR_URL):
            data["aggregator_url"] = env[ENV_AGGREGATOR_URL]
        if env.get(ENV_FULLNODE_URL):
            data["fullnode_url"] = env[ENV_FULLNODE_URL]
        if env.get(ENV_PRIVATE_KEY):
            data["private_key"] = env[ENV_PRIVATE_KEY].strip()

        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            data[f.name] = _coerce(f.name, raw, cls.__dataclass_fields__[f.name].default)

        return cls.from_dict(data)

    def validate(self, require_key: bool = True):
        """
        Check settings that no iteration could recover from.

        Raises:
            ConfigError: on the first invalid setting
        """
        if not self.aggregator_url:
            raise ConfigError(f"Aggregator URL must be set ({ENV_AGGREGATOR_URL})")
        if not self.fullnode_url:
            raise ConfigError(f"Full node URL must be set ({ENV_FULLNODE_URL})")
        for name in ("aggregator_url", "fullnode_url"):
            url = getattr(self, name)
            if not url.startswith(("http://", "https://")):
                raise ConfigError(f"{name} must be an http(s) URL")

        if require_key:
            if not self.private_key:
                raise ConfigError(f"Private key must be set ({ENV_PRIVATE_KEY})")
            try:
                Wallet.from_private_key(self.private_key)
            except ValueError as e:
                raise ConfigError(f"Invalid private key: {e}") from None

        if not 0 < self.slippage < 1:
            raise ConfigError(f"slippage must be a fraction in (0, 1), got {self.slippage}")
        for name in ("swap_margin", "sweep_margin"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if not 0 <= self.balance_cache_seconds <= 60:
            raise ConfigError("balance_cache_seconds must be between 0 and 60")
        if self.batch_count < 1 or self.volume_trades < 1:
            raise ConfigError("batch_count and volume_trades must be at least 1")
        for name in ("swap_amount", "gas_stipend", "min_main_balance", "min_swap_reserve",
                     "provisional_gas_budget", "transfer_gas_budget", "volume_trade_amount"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} cannot be negative")

        self.base_asset = normalize_asset(self.base_asset)
        if self.target_asset:
            self.target_asset = normalize_asset(self.target_asset)
        return self


def _coerce(name: str, raw: str, default: Any) -> Any:
    """Convert an environment string to the type of the field default."""
    try:
        if isinstance(default, bool):
            return raw.strip().lower() in ("1", "true", "yes", "on")
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
    except ValueError:
        raise ConfigError(f"{ENV_PREFIX}{name.upper()} has invalid value {raw!r}") from None
    return raw


class ConfigManager:
    """Reads and writes the YAML strategy parameters file."""

    def __init__(self, config_path: Path = Path("./bot_config.yaml")):
        self.config_path = Path(config_path)

    def read(self) -> Dict[str, Any]:
        """Read raw settings from the YAML file."""
        if not self.config_path.exists():
            raise ConfigError(f"Config file not found: {self.config_path}")

        try:
            with open(self.config_path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Config file is not valid YAML: {e}") from None

        if not isinstance(data, dict):
            raise ConfigError(f"Config file must contain a mapping: {self.config_path}")
        if "private_key" in data:
            logger.warning("Ignoring private_key in config file, use the environment instead")
            data.pop("private_key")
        return data

    def save(self, config: Config):
        """Save configuration (never the private key) to YAML."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        data = config.to_dict()
        data.pop("private_key", None)

        with open(self.config_path, 'w') as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

        os.chmod(self.config_path, 0o600)
        logger.info(f"Configuration saved to {self.config_path}")


# Default configuration template
DEFAULT_CONFIG = """
# Sui volume bot configuration
# Endpoints and the private key come from the environment (.env):
#   AGGREGATOR_RPC_URL_MAINNET, FULLNODE_RPC_URL_MAINNET, PRIVATE_KEY_BECH32

base_asset: "0x2::sui::SUI"
target_asset: null

# Trading parameters (smallest units)
swap_amount: 10
batch_count: 1
slippage: 0.05
swap_margin: 1.2
sweep_margin: 1.1

# Disposable-wallet relay
gas_stipend: 2000000
min_main_balance: 10000000

# Volume loop
volume_trade_amount: 1000000000
volume_trades: 10

# Strategy loop
iteration_delay_seconds: 1.0
error_delay_seconds: 2.0
balance_cache_seconds: 5.0

log_level: INFO
log_file: ./logs/bot.log
""".strip()
