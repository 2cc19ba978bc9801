"""
Configuration Management
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

from vrf_lottery.lottery.models import LotteryConfig
from vrf_lottery.utils.common import eth_to_wei
from vrf_lottery.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = Path(__file__).parent.parent / "config" / "lottery.conf"

ENV_SECTIONS = ("LOTTERY", "VRF", "BLOCKCHAIN", "SERVER", "OPERATOR")

DEVELOPMENT_CHAINS = ("hardhat", "localhost")

# Per-network defaults; anything set in the config file or environment wins.
NETWORK_CONFIG: Dict[str, Dict[str, Any]] = {
    "hardhat": {
        "chain_id": 31337,
        "entrance_fee": "0.01",
        "interval": 30,
        "gas_lane": "0xd89b2bf150e3b9e13446986e571fb9cab24b13cea0a43ea20a6049a85cc807cc",
        "subscription_id": 1,
        "callback_gas_limit": 500000,
    },
    "localhost": {
        "chain_id": 31337,
        "entrance_fee": "0.01",
        "interval": 30,
        "gas_lane": "0xd89b2bf150e3b9e13446986e571fb9cab24b13cea0a43ea20a6049a85cc807cc",
        "subscription_id": 1,
        "callback_gas_limit": 500000,
    },
    "sepolia": {
        "chain_id": 11155111,
        "entrance_fee": "0.01",
        "interval": 30,
        "vrf_coordinator": "0x8103B0A8A00be2DDC778e6e7eaa21791Cd364625",
        "gas_lane": "0x474e34a077df58807dbe9c96d3c009b23b3c6d0cce433e59bbf5b34f823bc56c",
        "subscription_id": 0,
        "callback_gas_limit": 500000,
    },
}

REQUEST_CONFIRMATIONS = 3
NUM_WORDS = 1


def load_config(config_file: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Load configuration from a JSON file and environment variables"""
    config: Dict[str, Any] = {}

    path = Path(config_file) if config_file else DEFAULT_CONFIG_FILE
    if path.exists():
        with open(path, 'r') as f:
            file_config = json.load(f)
        for section, values in file_config.items():
            if isinstance(values, dict):
                config.setdefault(section, {}).update(values)
            else:
                config[section] = values
        logger.info(f"Loaded configuration from {path}")
    else:
        logger.warning(f"Config file {path} not found. Will only use environment variables.")

    config = _apply_env_overrides(config)

    logger.debug(f"Configuration after applying environment overrides: {json.dumps(_redact(config), indent=2)}")
    return config


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides, e.g. LOTTERY_INTERVAL -> lottery.interval"""
    for key, value in os.environ.items():
        for prefix in ENV_SECTIONS:
            if key.startswith(prefix + "_"):
                section = prefix.lower()
                option = key[len(prefix) + 1:].lower()
                config.setdefault(section, {})[option] = value
                break
    return config


def _redact(config: Dict[str, Any]) -> Dict[str, Any]:
    redacted: Dict[str, Any] = {}
    for section, values in config.items():
        if isinstance(values, dict):
            redacted[section] = {
                key: ("***" if "private_key" in key else value) for key, value in values.items()
            }
        else:
            redacted[section] = values
    return redacted


def get_config_value(config: Dict[str, Any], key_path: str, default=None):
    """Get configuration value by dot-separated key path"""
    keys = key_path.split('.')
    value = config

    try:
        for key in keys:
            value = value[key]
        return value
    except (KeyError, TypeError):
        return default


def get_network_name(config: Dict[str, Any]) -> str:
    return str(get_config_value(config, "lottery.network", "hardhat")).lower()


def is_development_chain(config: Dict[str, Any]) -> bool:
    return get_network_name(config) in DEVELOPMENT_CHAINS


def build_lottery_config(config: Dict[str, Any], *, coordinator_address: Optional[str] = None) -> LotteryConfig:
    """Resolve the immutable lottery parameters for the configured network.

    Values are looked up in the ``lottery`` and ``vrf`` sections first and
    fall back to the network preset. The entrance fee is given in ether and
    converted to wei. ``coordinator_address`` takes precedence over any
    configured coordinator (used when a local mock is deployed).
    """
    network = get_network_name(config)
    if network not in NETWORK_CONFIG:
        raise ValueError(f"Unknown network '{network}', expected one of {sorted(NETWORK_CONFIG)}")
    preset = NETWORK_CONFIG[network]
    lottery_section = config.get("lottery", {})
    vrf_section = config.get("vrf", {})

    def _pick(section: Dict[str, Any], key: str) -> Any:
        value = section.get(key)
        return preset.get(key) if value in (None, "") else value

    vrf_coordinator = coordinator_address or _pick(vrf_section, "coordinator") or preset.get("vrf_coordinator")
    if not vrf_coordinator:
        raise ValueError(f"No VRF coordinator configured for network '{network}'")

    gas_lane = _pick(vrf_section, "gas_lane")
    subscription_id = _pick(vrf_section, "subscription_id")
    callback_gas_limit = _pick(vrf_section, "callback_gas_limit")
    entrance_fee = _pick(lottery_section, "entrance_fee")
    interval = _pick(lottery_section, "interval")

    return LotteryConfig(
        entrance_fee=eth_to_wei(entrance_fee),
        interval=int(interval),
        vrf_coordinator=str(vrf_coordinator),
        gas_lane=str(gas_lane),
        subscription_id=int(subscription_id),
        callback_gas_limit=int(callback_gas_limit),
        request_confirmations=REQUEST_CONFIRMATIONS,
        num_words=NUM_WORDS,
    )
