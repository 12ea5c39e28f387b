"""Configuration loader module for the enforcement simulation.

The packaged ``default.yaml`` is merged with an optional user file and then with
in-code overrides. The merged tree is checked once for values the simulation
cannot run with (non-positive tick, inverted negotiation zones, behavior ratios
over 1, ...), so a bad file fails at load time instead of mid-simulation.
"""
from pathlib import Path

import yaml

_MISSING = object()


class Config:
    """Configuration manager for the simulation and the enforcement mirror.

    Values are read through dot-notation paths, e.g. ``config['probe.speed']``.
    """
    def __init__(self, path: str = None, overrides: dict = None):
        """Load the default config, then the user file, then overrides.

        Args:
            path: Optional path to a user config file.
            overrides: Optional nested dictionary merged last, mostly used by tests.

        Raises:
            FileNotFoundError: If the provided config path does not exist
            PermissionError: If a config file cannot be opened
            ValueError: If the merged configuration is inconsistent
        """
        default_path = Path(__file__).parent / 'default.yaml'
        self.config = self._read(default_path, 'default')

        if path:
            config_path = Path(path)
            if not config_path.exists():
                raise FileNotFoundError(f'Config file not found: {config_path}')
            self._merge_dicts(self.config, self._read(config_path, 'user'))

        if overrides:
            self._merge_dicts(self.config, overrides)

        self._validate()

    @staticmethod
    def _read(path: Path, kind: str) -> dict:
        try:
            with open(path, 'r') as f:
                return yaml.safe_load(f) or {}
        except (PermissionError, IOError) as e:
            raise PermissionError(f'Cannot open {kind} config file: {path}') from e

    def get(self, key_path: str, default=_MISSING):
        """Get a configuration value by its dot-notation path.

        Args:
            key_path: Dot-notation path to the configuration value (e.g., 'probe.speed').
            default: Value to return if the key is not found. ``None`` is a valid default.

        Raises:
            ValueError: If the key is not found and no default value is provided.
        """
        value = self.config
        for key in key_path.split('.'):
            if not isinstance(value, dict) or key not in value:
                if default is not _MISSING:
                    return default
                raise ValueError(f'Key {key_path} not found in config')
            value = value[key]
        return value

    def __getitem__(self, key_path: str):
        return self.get(key_path)

    def _merge_dicts(self, base, updates):
        """Recursively merge updates into base config."""
        for k, v in updates.items():
            if isinstance(v, dict) and isinstance(base.get(k), dict):
                self._merge_dicts(base[k], v)
            else:
                base[k] = v

    def _validate(self):
        """Reject configurations the simulation cannot run with."""
        for key in ('speedwatch.dt', 'probe.speed', 'probe.step', 'vehicle.acceleration',
                    'vehicle.deceleration', 'spawner.spawn_interval'):
            if self.get(key) <= 0:
                raise ValueError(f'{key} must be positive, got {self.get(key)}')

        timeout = self.get('probe.calibration_timeout', None)
        if timeout is not None and timeout <= 0:
            raise ValueError(f'probe.calibration_timeout must be positive or null, got {timeout}')

        if self['vehicle.inner_radius'] > self['vehicle.outer_radius']:
            raise ValueError('vehicle.inner_radius must not exceed vehicle.outer_radius')
        if self['vehicle.inner_angle'] > self['vehicle.outer_angle']:
            raise ValueError('vehicle.inner_angle must not exceed vehicle.outer_angle')

        compliant = self['spawner.ratio_compliant']
        over_limit = self['spawner.ratio_over_limit']
        if min(compliant, over_limit) < 0 or compliant + over_limit > 1:
            raise ValueError(f'Behavior ratios must be non-negative and sum to at most 1, '
                             f'got {compliant} + {over_limit}')

        size = self['checkpoint.size']
        if len(size) != 3 or any(v <= 0 for v in size):
            raise ValueError(f'checkpoint.size must be three positive numbers, got {size}')
