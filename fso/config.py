"""
Simulation configuration and preset scenarios.

A SimConfig groups four sections:

    link         geometry and optics
    environment  weather and turbulence
    system       modulation, coding, interleaving, tracking
    control      packet count and size, noise floor, seed

Configurations are stored as JSON, one object per section:

    {
      "description": "Foggy link",
      "environment": {"weather": "fog", "visibility": 200.0},
      "system": {"modulation": "ook"}
    }
"""

import json
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, List, Tuple, Union

from .Channel import WeatherCondition
from .FEC import FECType
from .Modulation import ModulationType, PPM_ORDERS
from .errors import FSOIOError, InvalidParameterError
from .log import LogLevel, parse_level


@dataclass
class LinkParams:
    distance: float = 1000.0                # m
    transmit_power: float = 1e-3            # W
    receiver_sensitivity: float = 1e-9      # W
    wavelength: float = 1.55e-6             # m
    beam_divergence: float = 1e-3           # rad
    receiver_aperture: float = 0.1          # m


@dataclass
class EnvironmentParams:
    weather: WeatherCondition = WeatherCondition.CLEAR
    cn2: float = 1e-14                      # m^-2/3
    temperature: float = 20.0               # °C
    humidity: float = 0.5
    visibility: float = 10000.0             # m
    rainfall_rate: float = 0.0              # mm/h
    snowfall_rate: float = 0.0              # mm/h
    correlation_time: float = 1e-3          # s


@dataclass
class SystemParams:
    modulation: ModulationType = ModulationType.OOK
    ppm_order: int = 4
    fec: FECType = FECType.REED_SOLOMON
    code_rate: float = 0.8
    use_interleaver: bool = True
    interleaver_depth: int = 10
    enable_tracking: bool = False
    tracking_update_rate: float = 100.0     # Hz


@dataclass
class ControlParams:
    simulation_time: float = 1.0            # s
    sample_rate: float = 1e6                # Hz
    packet_size: int = 1024                 # bytes
    num_packets: int = 100
    noise_floor: float = 1e-12              # W
    seed: int = 0                           # 0 = wall clock
    log_level: LogLevel = LogLevel.WARN


SECTIONS = ('link', 'environment', 'system', 'control')


@dataclass
class SimConfig:
    """
    Complete simulator configuration.

    Example:
        >>> config = get_preset('foggy')
        >>> config.control.num_packets = 20
        >>> config.validate()
        >>> config.save('foggy.json')
    """
    link: LinkParams = field(default_factory=LinkParams)
    environment: EnvironmentParams = field(default_factory=EnvironmentParams)
    system: SystemParams = field(default_factory=SystemParams)
    control: ControlParams = field(default_factory=ControlParams)

    def validate(self) -> None:
        """
        Check every parameter range.

        Raises:
            InvalidParameterError: Naming the first offending field
        """
        ln, env, sys_, ctl = self.link, self.environment, self.system, self.control

        _check(100.0 <= ln.distance <= 10000.0, 'link.distance',
               f"must be between 100 m and 10 km, got {ln.distance}")
        _check(0.0 < ln.transmit_power <= 1.0, 'link.transmit_power',
               f"must be in (0, 1] W, got {ln.transmit_power}")
        _check(ln.receiver_sensitivity > 0.0, 'link.receiver_sensitivity',
               f"must be positive, got {ln.receiver_sensitivity}")
        _check(500e-9 <= ln.wavelength <= 2000e-9, 'link.wavelength',
               f"must be between 500 nm and 2000 nm, got {ln.wavelength * 1e9:.1f} nm")
        _check(0.0 < ln.beam_divergence < 0.1, 'link.beam_divergence',
               f"must be in (0, 0.1) rad, got {ln.beam_divergence}")
        _check(0.0 < ln.receiver_aperture <= 1.0, 'link.receiver_aperture',
               f"must be in (0, 1] m, got {ln.receiver_aperture}")

        _check(isinstance(env.weather, WeatherCondition), 'environment.weather',
               f"invalid weather condition {env.weather!r}")
        _check(1e-17 <= env.cn2 <= 1e-12, 'environment.cn2',
               f"must be between 1e-17 and 1e-12, got {env.cn2:.3e}")
        _check(-50.0 <= env.temperature <= 50.0, 'environment.temperature',
               f"must be between -50 and 50 °C, got {env.temperature}")
        _check(0.0 <= env.humidity <= 1.0, 'environment.humidity',
               f"must be between 0 and 1, got {env.humidity}")
        _check(env.visibility > 0.0, 'environment.visibility',
               f"must be positive, got {env.visibility}")
        _check(env.rainfall_rate >= 0.0, 'environment.rainfall_rate',
               f"must be >= 0, got {env.rainfall_rate}")
        _check(env.snowfall_rate >= 0.0, 'environment.snowfall_rate',
               f"must be >= 0, got {env.snowfall_rate}")
        _check(0.0 < env.correlation_time < 1.0, 'environment.correlation_time',
               f"must be in (0, 1) s, got {env.correlation_time}")

        _check(isinstance(sys_.modulation, ModulationType), 'system.modulation',
               f"invalid modulation {sys_.modulation!r}")
        if sys_.modulation is ModulationType.PPM:
            _check(sys_.ppm_order in PPM_ORDERS, 'system.ppm_order',
                   f"must be 2, 4, 8 or 16, got {sys_.ppm_order}")
        _check(isinstance(sys_.fec, FECType), 'system.fec', f"invalid FEC type {sys_.fec!r}")
        _check(0.0 < sys_.code_rate <= 1.0, 'system.code_rate',
               f"must be in (0, 1], got {sys_.code_rate}")
        _check(1 <= sys_.interleaver_depth <= 100, 'system.interleaver_depth',
               f"must be between 1 and 100, got {sys_.interleaver_depth}")
        _check(0.0 < sys_.tracking_update_rate <= 1000.0, 'system.tracking_update_rate',
               f"must be in (0, 1000] Hz, got {sys_.tracking_update_rate}")

        _check(ctl.simulation_time > 0.0, 'control.simulation_time',
               f"must be positive, got {ctl.simulation_time}")
        _check(ctl.sample_rate > 0.0, 'control.sample_rate',
               f"must be positive, got {ctl.sample_rate}")
        _check(1 <= ctl.packet_size <= 1_000_000, 'control.packet_size',
               f"must be between 1 and 1000000 bytes, got {ctl.packet_size}")
        _check(1 <= ctl.num_packets <= 1_000_000, 'control.num_packets',
               f"must be between 1 and 1000000, got {ctl.num_packets}")
        _check(ctl.noise_floor >= 0.0, 'control.noise_floor',
               f"must be >= 0, got {ctl.noise_floor}")
        _check(ctl.seed >= 0, 'control.seed', f"must be >= 0, got {ctl.seed}")

    @property
    def packet_interval(self) -> float:
        """Simulated time between packets (s)."""
        return self.control.simulation_time / self.control.num_packets

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        """Plain nested dict, enums replaced by their names or values."""
        out = {}
        for name in SECTIONS:
            section = asdict(getattr(self, name))
            out[name] = {k: _format_value(v) for k, v in section.items()}
        return out

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: Union[str, Path], title: str = "FSO link simulation") -> None:
        """Write the configuration as JSON, one object per section."""
        data = {'description': title}
        data.update(self.to_dict())
        try:
            with open(path, 'w') as f:
                json.dump(data, f, indent=2)
                f.write("\n")
        except OSError as exc:
            raise FSOIOError(f"Cannot write config {path}: {exc}") from exc

    @classmethod
    def load(cls, path: Union[str, Path]) -> "SimConfig":
        """
        Read a JSON configuration on top of the defaults.

        Missing sections and keys keep their default values.

        Raises:
            FSOIOError: If the file cannot be read
            InvalidParameterError: Malformed JSON, unknown keys or bad values
        """
        try:
            with open(path) as f:
                data = json.load(f)
        except OSError as exc:
            raise FSOIOError(f"Cannot read config {path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise InvalidParameterError(f"{path}:{exc.lineno}: {exc.msg}") from exc

        if not isinstance(data, dict):
            raise InvalidParameterError(f"{path}: expected a JSON object")

        config = cls()
        for section_name, values in data.items():
            if section_name == 'description':
                continue
            if not isinstance(values, dict):
                raise InvalidParameterError(
                    f"{path}: section {section_name!r} must be an object")
            for name, value in values.items():
                try:
                    config.set(f"{section_name}.{name}", value)
                except InvalidParameterError as exc:
                    raise InvalidParameterError(f"{path}: {exc}") from exc
        return config

    def set(self, key: str, value: Any) -> None:
        """Set `section.name` from a string or typed value."""
        if '.' not in key:
            raise InvalidParameterError(f"Key must be 'section.name', got {key!r}")
        section_name, name = key.split('.', 1)
        if section_name not in SECTIONS:
            raise InvalidParameterError(f"Unknown config section {section_name!r}")

        section = getattr(self, section_name)
        types = {f.name: f.type for f in fields(section)}
        if name not in types:
            raise InvalidParameterError(f"Unknown config key {key!r}")

        current = getattr(section, name)
        setattr(section, name, _coerce(current, value, key))


def _check(condition: bool, name: str, message: str) -> None:
    if not condition:
        raise InvalidParameterError(f"{name} {message}")


def _format_value(value: Any) -> Any:
    if isinstance(value, LogLevel):
        return value.name
    if hasattr(value, 'value') and not isinstance(value, (int, float, bool)):
        return value.value
    return value


def _coerce(current: Any, value: Any, key: str) -> Any:
    """Convert value to the type of the field's current value."""
    try:
        if isinstance(current, LogLevel):
            return parse_level(value)
        if isinstance(current, WeatherCondition):
            return WeatherCondition.parse(value)
        if isinstance(current, ModulationType):
            return ModulationType.parse(value)
        if isinstance(current, FECType):
            return FECType.parse(value)
        if isinstance(current, bool):
            if isinstance(value, bool):
                return value
            text = str(value).strip().lower()
            if text in ('1', 'true', 'yes', 'on'):
                return True
            if text in ('0', 'false', 'no', 'off'):
                return False
            raise ValueError(f"not a boolean: {value!r}")
        if isinstance(current, int):
            return int(str(value).strip(), 0) if isinstance(value, str) else int(value)
        return float(value)
    except ValueError as exc:
        raise InvalidParameterError(f"Invalid value for {key}: {exc}") from exc


# ----------------------------------------------------------------------
# Presets
# ----------------------------------------------------------------------

def _clear(c: SimConfig) -> None:
    c.environment.weather = WeatherCondition.CLEAR
    c.environment.cn2 = 1e-15
    c.environment.visibility = 20000.0
    c.link.distance = 1000.0
    c.link.transmit_power = 1e-3


def _foggy(c: SimConfig) -> None:
    c.environment.weather = WeatherCondition.FOG
    c.environment.cn2 = 5e-15
    c.environment.visibility = 200.0
    c.environment.temperature = 15.0
    c.environment.humidity = 0.95
    c.link.distance = 500.0
    c.link.transmit_power = 5e-3
    c.system.code_rate = 0.75


def _rainy(c: SimConfig) -> None:
    c.environment.weather = WeatherCondition.RAIN
    c.environment.cn2 = 3e-15
    c.environment.rainfall_rate = 25.0
    c.environment.visibility = 1000.0
    c.environment.temperature = 18.0
    c.environment.humidity = 0.95
    c.link.distance = 800.0
    c.link.transmit_power = 3e-3
    c.system.code_rate = 0.75


def _high_turbulence(c: SimConfig) -> None:
    c.environment.weather = WeatherCondition.HIGH_TURBULENCE
    c.environment.cn2 = 1e-13
    c.environment.visibility = 10000.0
    c.environment.temperature = 35.0
    c.environment.humidity = 0.3
    c.environment.correlation_time = 5e-4
    c.link.distance = 1500.0
    c.link.transmit_power = 2e-3
    c.system.enable_tracking = True
    c.system.tracking_update_rate = 100.0


def _long_range(c: SimConfig) -> None:
    c.environment.weather = WeatherCondition.CLEAR
    c.environment.cn2 = 2e-15
    c.environment.visibility = 20000.0
    c.link.distance = 5000.0
    c.link.transmit_power = 10e-3
    c.link.beam_divergence = 5e-4
    c.system.code_rate = 0.7


def _short_range(c: SimConfig) -> None:
    c.environment.weather = WeatherCondition.CLEAR
    c.environment.cn2 = 5e-16
    c.link.distance = 100.0
    c.link.transmit_power = 1e-4
    c.system.code_rate = 0.9


PRESETS = {
    'clear': (_clear, "Clear weather, 1 km, weak turbulence"),
    'foggy': (_foggy, "Dense fog (200 m visibility), 500 m"),
    'rainy': (_rainy, "Moderate rain (25 mm/h), 800 m"),
    'high_turbulence': (_high_turbulence, "Strong turbulence, 1.5 km, beam tracking on"),
    'long_range': (_long_range, "Clear weather, 5 km, 10 mW, narrow beam"),
    'short_range': (_short_range, "Clear weather, 100 m, 0.1 mW"),
}


def get_preset(name: str) -> SimConfig:
    """Fresh configuration for a named scenario."""
    try:
        apply, _ = PRESETS[name.strip().lower()]
    except KeyError:
        raise InvalidParameterError(
            f"Unknown scenario {name!r}; valid: {', '.join(PRESETS)}") from None
    config = SimConfig()
    apply(config)
    return config


def list_presets() -> List[Tuple[str, str]]:
    return [(name, description) for name, (_, description) in PRESETS.items()]
