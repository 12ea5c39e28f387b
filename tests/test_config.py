import pytest

from speedwatch.config import Config


def test_defaults_are_loaded():
    config = Config()
    assert config['probe.speed'] == 200.0
    assert config['vehicle.outer_radius'] == 10.0
    assert config.get('probe.calibration_timeout', None) is None


def test_overrides_merge_nested_sections():
    config = Config(overrides={'vehicle': {'inner_radius': 4.5}})
    assert config['vehicle.inner_radius'] == 4.5
    assert config['vehicle.outer_radius'] == 10.0


def test_user_file_overrides_defaults(tmp_path):
    path = tmp_path / 'user.yaml'
    path.write_text('spawner:\n  max_vehicles: 3\n')
    config = Config(str(path))
    assert config['spawner.max_vehicles'] == 3
    assert config['spawner.spawn_interval'] == 5.0


def test_missing_key():
    config = Config()
    assert config.get('nope.missing', 7) == 7
    with pytest.raises(ValueError):
        config['nope.missing']


def test_missing_file():
    with pytest.raises(FileNotFoundError):
        Config('/does/not/exist.yaml')


def test_none_is_a_valid_default():
    assert Config().get('nope.missing', None) is None


@pytest.mark.parametrize('overrides', [
    {'speedwatch': {'dt': 0}},
    {'probe': {'calibration_timeout': -1}},
    {'vehicle': {'inner_radius': 12.0}},
    {'vehicle': {'inner_angle': 60.0}},
    {'spawner': {'ratio_compliant': 0.8, 'ratio_over_limit': 0.4}},
    {'checkpoint': {'size': [6.0, 0.0, 4.0]}},
])
def test_inconsistent_values_are_rejected(overrides):
    with pytest.raises(ValueError):
        Config(overrides=overrides)


def test_invalid_user_file_is_rejected(tmp_path):
    path = tmp_path / 'user.yaml'
    path.write_text('spawner:\n  ratio_over_limit: 0.9\n')
    with pytest.raises(ValueError, match='Behavior ratios'):
        Config(str(path))
