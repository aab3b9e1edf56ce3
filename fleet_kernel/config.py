"""Kernel Configuration - Settings for the fleet kernel.

Handles loading and accessing configuration for:
- Network scanning
- Access retries and port tool ranking
- Scheduling on the home node
- Fleet purchase policy
- Chain polling
"""

from __future__ import annotations

import yaml
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, Any, Optional, List

from fleet_kernel.access import PortOpener, RetryPolicy, default_openers
from fleet_kernel.fleet import FleetPolicy
from fleet_kernel.models.fleet import DEFAULT_PREFIX, MIN_TIER, MAX_TIER
from fleet_kernel.models.node import home_reserve

logger = logging.getLogger(__name__)


def _pick(cls, data: Optional[Dict[str, Any]]):
    """Build a config dataclass from the keys it knows; ignore the rest."""
    data = data or {}
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        logger.warning(f"Ignoring unknown {cls.__name__} keys: {sorted(unknown)}")
    return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class ScanConfig:
    """Configuration for network discovery."""

    root: Optional[str] = None
    poll_interval_sec: float = 10.0


@dataclass
class AccessConfig:
    """Configuration for access acquisition."""

    openers: List[str] = field(
        default_factory=lambda: [o.name for o in default_openers()]
    )
    retry_initial_sec: float = 5.0
    retry_factor: float = 2.0
    retry_max_sec: float = 300.0

    def to_openers(self) -> List[PortOpener]:
        """Known openers in the configured rank order."""
        by_name = {o.name: o for o in default_openers()}
        missing = [n for n in self.openers if n not in by_name]
        if missing:
            logger.warning(f"Unknown port openers ignored: {missing}")
        return [by_name[n] for n in self.openers if n in by_name]

    def to_retry(self) -> RetryPolicy:
        return RetryPolicy(
            initial_sec=self.retry_initial_sec,
            factor=self.retry_factor,
            max_sec=self.retry_max_sec,
        )


@dataclass
class SchedulerConfig:
    """Configuration for placement."""

    use_home: bool = True
    # None means derive the reserve from the home node's size
    home_reserve: Optional[float] = None

    def reserve_for(self, total: float) -> float:
        if self.home_reserve is not None:
            return float(self.home_reserve)
        return home_reserve(total)


@dataclass
class FleetConfig:
    """Configuration for purchased nodes."""

    enabled: bool = True
    prefix: str = DEFAULT_PREFIX
    min_seed: int = 1
    max_nodes: int = 25
    min_tier: int = MIN_TIER
    max_tier: int = MAX_TIER
    reserve_funds: float = 0.0
    tick_interval_sec: float = 60.0
    max_actions_per_tick: int = 16
    drain_before_upgrade: bool = False

    def to_policy(self) -> FleetPolicy:
        return FleetPolicy(
            prefix=self.prefix,
            min_seed=self.min_seed,
            max_nodes=self.max_nodes,
            min_tier=self.min_tier,
            max_tier=self.max_tier,
            reserve_funds=self.reserve_funds,
            tick_interval_sec=self.tick_interval_sec,
            max_actions_per_tick=self.max_actions_per_tick,
            drain_before_upgrade=self.drain_before_upgrade,
        )


@dataclass
class ChainConfig:
    """Configuration for chain sequencing."""

    poll_interval_sec: float = 1.0
    retry_delay_sec: float = 5.0
    max_attempts: Optional[int] = None


@dataclass
class KernelConfig:
    """Complete kernel configuration."""

    log_level: str = "INFO"
    scan: ScanConfig = field(default_factory=ScanConfig)
    access: AccessConfig = field(default_factory=AccessConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    fleet: FleetConfig = field(default_factory=FleetConfig)
    chain: ChainConfig = field(default_factory=ChainConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "log_level": self.log_level,
            "scan": {
                "root": self.scan.root,
                "poll_interval_sec": self.scan.poll_interval_sec,
            },
            "access": {
                "openers": list(self.access.openers),
                "retry_initial_sec": self.access.retry_initial_sec,
                "retry_factor": self.access.retry_factor,
                "retry_max_sec": self.access.retry_max_sec,
            },
            "scheduler": {
                "use_home": self.scheduler.use_home,
                "home_reserve": self.scheduler.home_reserve,
            },
            "fleet": {
                "enabled": self.fleet.enabled,
                "prefix": self.fleet.prefix,
                "min_seed": self.fleet.min_seed,
                "max_nodes": self.fleet.max_nodes,
                "min_tier": self.fleet.min_tier,
                "max_tier": self.fleet.max_tier,
                "reserve_funds": self.fleet.reserve_funds,
                "tick_interval_sec": self.fleet.tick_interval_sec,
                "max_actions_per_tick": self.fleet.max_actions_per_tick,
                "drain_before_upgrade": self.fleet.drain_before_upgrade,
            },
            "chain": {
                "poll_interval_sec": self.chain.poll_interval_sec,
                "retry_delay_sec": self.chain.retry_delay_sec,
                "max_attempts": self.chain.max_attempts,
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> KernelConfig:
        """Create from dictionary."""
        return cls(
            log_level=str(data.get("log_level", "INFO")).upper(),
            scan=_pick(ScanConfig, data.get("scan")),
            access=_pick(AccessConfig, data.get("access")),
            scheduler=_pick(SchedulerConfig, data.get("scheduler")),
            fleet=_pick(FleetConfig, data.get("fleet")),
            chain=_pick(ChainConfig, data.get("chain")),
        )


# Search order for a config file when no path is given
_config_search_paths: List[Path] = [
    Path.home() / ".fleet_kernel" / "config.yaml",
    Path("fleet_kernel.yaml"),
    Path("config") / "fleet_kernel.yaml",
]


def load_kernel_config(path: Optional[Path] = None) -> KernelConfig:
    """Load kernel configuration from file.

    Args:
        path: Explicit config path (optional)

    Returns:
        Loaded configuration, or defaults if nothing could be read
    """
    config_path = path
    if not config_path:
        for search_path in _config_search_paths:
            if search_path.exists():
                config_path = search_path
                break

    if config_path and Path(config_path).exists():
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f)
            config = KernelConfig.from_dict(data or {})
            logger.info(f"Loaded kernel config from {config_path}")
            return config
        except Exception as e:
            logger.warning(f"Failed to load config from {config_path}: {e}")
    elif config_path:
        logger.warning(f"Config file not found: {config_path}")

    return KernelConfig()


def save_kernel_config(config: KernelConfig, path: Optional[Path] = None) -> Path:
    """Save kernel configuration to file.

    Args:
        config: Configuration to save
        path: Path to save to (defaults to ~/.fleet_kernel/config.yaml)
    """
    save_path = Path(path) if path else _config_search_paths[0]
    save_path.parent.mkdir(parents=True, exist_ok=True)

    with open(save_path, "w") as f:
        yaml.dump(config.to_dict(), f, default_flow_style=False)
    return save_path
