"""
Unit Tests for Configuration Management

Tests cover:
- PropagationConfig defaults and validation
- Dictionary and YAML loading
- Configuration resolution order
"""

import sys
from pathlib import Path

import pytest
import yaml

sys.path.insert(0, str(Path(__file__).parent.parent.parent / 'src'))

from common.config import LoggingConfig, PathfinderConfig, PropagationConfig, get_config


class TestPropagationConfig:
    """Tests for propagation parameters"""

    def test_defaults(self):
        """Default parameters match a usual road traffic study"""
        config = PropagationConfig()
        assert config.max_src_dist == 150.0
        assert config.max_ref_dist == 50.0
        assert config.reflection_order == 1
        assert config.g_s == 0.0
        assert config.compute_diffraction
        assert config.compute_h_edge_diffraction
        assert not config.compute_v_edge_diffraction
        assert config.thread_count >= 1
        assert config.pool_timeout_s is None

    def test_early_termination_flag(self):
        """Early termination needs a positive error bound"""
        assert not PropagationConfig(maximum_error=0.0).early_termination_enabled
        assert PropagationConfig(maximum_error=0.1).early_termination_enabled

    @pytest.mark.parametrize("kwargs", [
        {'max_src_dist': -1.0},
        {'max_ref_dist': -0.5},
        {'reflection_order': -1},
        {'thread_count': 0},
        {'g_s': 1.5},
    ])
    def test_invalid_values_rejected(self, kwargs):
        """Out of range parameters raise ValueError"""
        with pytest.raises(ValueError):
            PropagationConfig(**kwargs)


class TestPathfinderConfig:
    """Tests for the master configuration"""

    def test_from_dict(self):
        """Sections are mapped onto their dataclasses"""
        config = PathfinderConfig.from_dict({
            'propagation': {'reflection_order': 2, 'thread_count': 3},
            'logging': {'level': 'DEBUG'},
        })
        assert config.propagation.reflection_order == 2
        assert config.propagation.thread_count == 3
        assert config.logging.level == 'DEBUG'

    def test_from_empty_dict(self):
        """Missing sections use defaults"""
        config = PathfinderConfig.from_dict(None)
        assert config.propagation == PropagationConfig(thread_count=config.propagation.thread_count)
        assert config.logging == LoggingConfig()

    def test_yaml_round_trip(self, tmp_path):
        """Saved configuration loads back unchanged"""
        config = PathfinderConfig.from_dict({'propagation': {'max_src_dist': 300.0, 'thread_count': 2}})
        path = tmp_path / 'pathfinder.yml'
        config.to_yaml(str(path))

        loaded = PathfinderConfig.from_yaml(str(path))
        assert loaded.propagation.max_src_dist == 300.0
        assert loaded.propagation.thread_count == 2

    def test_malformed_section_rejected(self, tmp_path):
        """Unknown keys are an error, not silently ignored"""
        path = tmp_path / 'bad.yml'
        path.write_text(yaml.dump({'propagation': {'no_such_key': 1}}))
        with pytest.raises(TypeError):
            PathfinderConfig.from_yaml(str(path))


class TestGetConfig:
    """Tests for configuration resolution"""

    def test_explicit_path(self, tmp_path):
        path = tmp_path / 'explicit.yml'
        path.write_text(yaml.dump({'propagation': {'reflection_order': 3, 'thread_count': 1}}))
        assert get_config(str(path)).propagation.reflection_order == 3

    def test_environment_variable(self, tmp_path, monkeypatch):
        """PATHFINDER_CONFIG is used when no path is given"""
        path = tmp_path / 'env.yml'
        path.write_text(yaml.dump({'propagation': {'max_ref_dist': 12.0, 'thread_count': 1}}))
        monkeypatch.setenv('PATHFINDER_CONFIG', str(path))
        assert get_config().propagation.max_ref_dist == 12.0

    def test_missing_file_gives_defaults(self, tmp_path):
        config = get_config(str(tmp_path / 'missing.yml'))
        assert config.propagation.max_src_dist == 150.0
