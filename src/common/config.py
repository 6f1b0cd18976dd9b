"""
Centralized Configuration Management for the Path Finder

This module provides a unified interface for loading and accessing
the propagation parameters from YAML files.
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, field


def _default_thread_count() -> int:
    return os.cpu_count() or 1


@dataclass
class PropagationConfig:
    """Parameters of the path construction engine"""

    # Search distances
    max_src_dist: float = 150.0  # m, sources farther from the receiver are ignored
    max_ref_dist: float = 50.0   # m, walls farther from the direct path do not reflect

    # Specular reflection
    reflection_order: int = 1

    # Default ground absorption coefficient G (0 = hard, 1 = porous)
    g_s: float = 0.0

    # Diffraction switches
    compute_diffraction: bool = True
    compute_h_edge_diffraction: bool = True
    compute_v_edge_diffraction: bool = False

    # Stop evaluating sources once they cannot change the level by more than this (dB)
    maximum_error: float = 0.0

    # Batch dispatch
    thread_count: int = field(default_factory=_default_thread_count)
    pool_timeout_s: Optional[float] = None

    # Keep the produced paths in the output sink
    keep_rays: bool = True

    def __post_init__(self):
        if self.max_src_dist < 0 or self.max_ref_dist < 0:
            raise ValueError(
                f"Search distances must be positive (max_src_dist={self.max_src_dist}, "
                f"max_ref_dist={self.max_ref_dist})"
            )
        if self.reflection_order < 0:
            raise ValueError(f"reflection_order must be >= 0, got {self.reflection_order}")
        if self.thread_count < 1:
            raise ValueError(f"thread_count must be >= 1, got {self.thread_count}")
        if not 0.0 <= self.g_s <= 1.0:
            raise ValueError(f"g_s must be within [0, 1], got {self.g_s}")

    @property
    def early_termination_enabled(self) -> bool:
        """Whether sources may be skipped once the error bound is reached"""
        return self.maximum_error > 0


@dataclass
class LoggingConfig:
    """Logging output settings"""

    level: str = "INFO"
    json_format: bool = False
    log_file: Optional[str] = None


@dataclass
class PathfinderConfig:
    """Master configuration for the path finder"""

    propagation: PropagationConfig = field(default_factory=PropagationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'PathfinderConfig':
        """Build configuration from a plain dictionary"""
        config_dict = config_dict or {}
        return cls(
            propagation=PropagationConfig(**config_dict.get('propagation', {})),
            logging=LoggingConfig(**config_dict.get('logging', {})),
        )

    @classmethod
    def from_yaml(cls, yaml_path: str) -> 'PathfinderConfig':
        """Load configuration from YAML file"""
        with open(yaml_path, 'r') as f:
            config_dict = yaml.safe_load(f)

        return cls.from_dict(config_dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'propagation': dict(self.propagation.__dict__),
            'logging': dict(self.logging.__dict__),
        }

    def to_yaml(self, yaml_path: str) -> None:
        """Save configuration to YAML file"""
        with open(yaml_path, 'w') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False)


def get_config(config_path: Optional[str] = None) -> PathfinderConfig:
    """
    Get path finder configuration

    Priority:
    1. Provided config_path
    2. PATHFINDER_CONFIG environment variable
    3. config/pathfinder.yml
    4. Default configuration
    """
    if config_path is None:
        config_path = os.getenv('PATHFINDER_CONFIG')

    if config_path is None:
        default_paths = [
            Path(__file__).parent.parent.parent / 'config' / 'pathfinder.yml',
            Path('config/pathfinder.yml')
        ]

        for path in default_paths:
            if path.exists():
                config_path = str(path)
                break

    if config_path and Path(config_path).exists():
        return PathfinderConfig.from_yaml(config_path)

    return PathfinderConfig()
