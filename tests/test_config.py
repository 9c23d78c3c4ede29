"""
Tests for configuration validation, persistence and presets.
"""

import json

import pytest

from fso.config import SimConfig, PRESETS, get_preset, list_presets
from fso.Channel import WeatherCondition
from fso.FEC import FECType
from fso.Modulation import ModulationType
from fso.errors import FSOIOError, InvalidParameterError
from fso.log import LogLevel


class TestValidation:
    """Test parameter range checks."""

    def test_defaults_valid(self):
        SimConfig().validate()

    @pytest.mark.parametrize("key,value", [
        ('link.distance', 50.0),
        ('link.distance', 20000.0),
        ('link.transmit_power', 0.0),
        ('link.wavelength', 400e-9),
        ('link.receiver_aperture', 2.0),
        ('environment.cn2', 1e-11),
        ('environment.humidity', 1.2),
        ('environment.visibility', 0.0),
        ('environment.correlation_time', 1.0),
        ('system.code_rate', 0.0),
        ('system.interleaver_depth', 0),
        ('system.tracking_update_rate', 5000.0),
        ('control.packet_size', 0),
        ('control.num_packets', 0),
        ('control.noise_floor', -1.0),
    ])
    def test_out_of_range(self, key, value):
        """The error names the offending field."""
        config = SimConfig()
        config.set(key, value)

        with pytest.raises(InvalidParameterError, match=key.replace('.', r'\.')):
            config.validate()

    def test_ppm_order_checked_for_ppm(self):
        config = SimConfig()
        config.system.ppm_order = 6
        config.validate()

        config.system.modulation = ModulationType.PPM
        with pytest.raises(InvalidParameterError, match='ppm_order'):
            config.validate()

    def test_code_rate_one_allowed(self):
        config = SimConfig()
        config.system.code_rate = 1.0
        config.validate()

    def test_packet_interval(self):
        config = SimConfig()
        config.control.simulation_time = 2.0
        config.control.num_packets = 400
        assert config.packet_interval == pytest.approx(0.005)


class TestSet:
    """Test typed assignment from strings."""

    def test_enums(self):
        config = SimConfig()
        config.set('environment.weather', 'fog')
        config.set('system.modulation', 'PPM')
        config.set('system.fec', 'ldpc')
        config.set('control.log_level', 'debug')

        assert config.environment.weather is WeatherCondition.FOG
        assert config.system.modulation is ModulationType.PPM
        assert config.system.fec is FECType.LDPC
        assert config.control.log_level is LogLevel.DEBUG

    def test_numbers_and_bools(self):
        config = SimConfig()
        config.set('control.num_packets', '250')
        config.set('link.distance', '1.5e3')
        config.set('system.enable_tracking', 'yes')
        config.set('system.use_interleaver', 'off')

        assert config.control.num_packets == 250
        assert isinstance(config.control.num_packets, int)
        assert config.link.distance == 1500.0
        assert config.system.enable_tracking is True
        assert config.system.use_interleaver is False

    @pytest.mark.parametrize("key,value", [
        ('distance', 100),
        ('radio.power', 1),
        ('link.power', 1),
        ('link.distance', 'far'),
        ('system.enable_tracking', 'maybe'),
        ('system.modulation', 'qam'),
    ])
    def test_invalid(self, key, value):
        with pytest.raises(InvalidParameterError):
            SimConfig().set(key, value)


class TestPersistence:
    """Test JSON save/load."""

    def test_roundtrip(self, tmp_path):
        config = get_preset('high_turbulence')
        config.control.seed = 42
        config.system.modulation = ModulationType.DPSK
        path = tmp_path / "link.json"

        config.save(path, title="Turbulent link")
        loaded = SimConfig.load(path)

        assert loaded == config
        data = json.loads(path.read_text())
        assert data['description'] == "Turbulent link"
        assert data['environment']['weather'] == 'high_turbulence'
        assert data['system']['enable_tracking'] is True
        assert data['control']['log_level'] == 'WARN'

    def test_partial_uses_defaults(self, tmp_path):
        path = tmp_path / "partial.json"
        path.write_text(json.dumps({
            'link': {'distance': 2500},
            'environment': {'weather': 'rain'},
        }))

        config = SimConfig.load(path)

        assert config.link.distance == 2500.0
        assert isinstance(config.link.distance, float)
        assert config.environment.weather is WeatherCondition.RAIN
        assert config.control.packet_size == 1024

    @pytest.mark.parametrize("data", [
        {'link': {'bogus': 3}},
        {'radio': {'power': 1}},
        {'link': 1000},
        {'system': {'fec': 'turbo'}},
        [1, 2, 3],
    ])
    def test_invalid_content(self, tmp_path, data):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps(data))

        with pytest.raises(InvalidParameterError, match=r"bad\.json"):
            SimConfig.load(path)

    def test_malformed_json_reports_line(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text('{\n  "link": {"distance": 1000,}\n}\n')

        with pytest.raises(InvalidParameterError, match=r"bad\.json:2"):
            SimConfig.load(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FSOIOError):
            SimConfig.load(tmp_path / "absent.json")

    def test_to_dict(self):
        values = SimConfig().to_dict()

        assert set(values) == {'link', 'environment', 'system', 'control'}
        assert values['system']['modulation'] == 'ook'
        assert values['system']['use_interleaver'] is True
        assert values['control']['log_level'] == 'WARN'


class TestPresets:
    """Test preset scenarios."""

    @pytest.mark.parametrize("name", sorted(PRESETS))
    def test_presets_valid(self, name):
        get_preset(name).validate()

    def test_preset_values(self):
        foggy = get_preset('foggy')
        assert foggy.environment.weather is WeatherCondition.FOG
        assert foggy.environment.visibility == 200.0
        assert foggy.link.distance == 500.0

        turbulent = get_preset('High_Turbulence')
        assert turbulent.environment.cn2 == 1e-13
        assert turbulent.environment.correlation_time == 5e-4
        assert turbulent.system.enable_tracking

    def test_presets_are_fresh(self):
        a = get_preset('clear')
        a.link.distance = 3000.0
        assert get_preset('clear').link.distance == 1000.0

    def test_unknown(self):
        with pytest.raises(InvalidParameterError):
            get_preset('hail')

    def test_list(self):
        names = [name for name, _ in list_presets()]
        assert names == list(PRESETS)
        assert len(names) == 6
