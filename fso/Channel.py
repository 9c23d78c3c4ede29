"""
Atmospheric Turbulence Channel

Models the optical power budget of a horizontal FSO link:

- Free-space path loss: 20·log10(4πL/λ)
- Weather attenuation (dB/km):
    clear           0.1
    fog (Kim)       3.91/V_km · (λ_nm/550)^-1.3
    rain (Carbonneau) 1.076·R^0.67 + 0.1
    snow            1.023·S^0.72 + 0.1
- Molecular absorption (dB/km, humidity h in [0, 1]):
    1400-1600 nm    0.05 + 0.10·h
     700-1000 nm    0.03 + 0.05·h
    otherwise       0.02 + 0.03·h
- Log-normal scintillation with unit mean, optionally time-correlated
  through a first-order autoregressive process on the log-amplitude.

Turbulence strength:
    Rytov variance      σ_χ² = 0.5 · Cn² · k^(7/6) · L^(11/6),  k = 2π/λ
    Scintillation index σ_I² = exp(4σ_χ²) - 1  (4σ_χ² below 0.3, capped at 10)

Reference: Andrews & Phillips, "Laser Beam Propagation through Random
Media"; Kim et al., "Comparison of laser beam propagation at 785 nm and
1550 nm in fog and haze" (2001)
"""

import math
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple, Union

from .Random import RandomGenerator
from .errors import InvalidParameterError
from .log import LogLevel, get_logger
from .utils import db_to_linear


class WeatherCondition(Enum):
    CLEAR = "clear"
    FOG = "fog"
    RAIN = "rain"
    SNOW = "snow"
    HIGH_TURBULENCE = "high_turbulence"

    @property
    def label(self) -> str:
        return self.value.replace('_', ' ').title()

    @property
    def default_cn2(self) -> float:
        return DEFAULT_CN2[self]

    @classmethod
    def parse(cls, value: Union[str, "WeatherCondition"]) -> "WeatherCondition":
        if isinstance(value, cls):
            return value
        name = str(value).strip().lower().replace('-', '_').replace(' ', '_')
        for member in cls:
            if member.value == name:
                return member
        raise InvalidParameterError(f"Unknown weather condition: {value!r}")


DEFAULT_CN2 = {
    WeatherCondition.CLEAR: 1e-15,
    WeatherCondition.FOG: 5e-15,
    WeatherCondition.RAIN: 1e-14,
    WeatherCondition.SNOW: 2e-14,
    WeatherCondition.HIGH_TURBULENCE: 1e-13,
}

DEFAULT_CORRELATION_TIME = 1e-3     # 1 ms
DEFAULT_BEAM_DIVERGENCE = 1e-3      # 1 mrad
FADE_HISTORY_LENGTH = 100

MIN_DISTANCE, MAX_DISTANCE = 100.0, 10000.0
MIN_WAVELENGTH, MAX_WAVELENGTH = 500e-9, 2000e-9
MIN_CN2, MAX_CN2 = 1e-17, 1e-12

FADE_MIN = 0.01     # -20 dB
FADE_MAX = 100.0    # +20 dB

CLEAR_AIR_ATTENUATION = 0.1     # dB/km
KIM_Q = 1.3


# ----------------------------------------------------------------------
# Closed-form helpers
# ----------------------------------------------------------------------

def rytov_variance(cn2: float, wavelength: float, distance: float) -> float:
    k = 2.0 * math.pi / wavelength
    return 0.5 * cn2 * k ** (7.0 / 6.0) * distance ** (11.0 / 6.0)


def scintillation_index(rytov: float) -> float:
    if rytov < 0.3:
        return 4.0 * rytov
    return min(math.exp(4.0 * rytov) - 1.0, 10.0)


def path_loss_db(distance: float, wavelength: float) -> float:
    return 20.0 * math.log10(4.0 * math.pi * distance / wavelength)


def fog_attenuation(visibility: float, wavelength: float) -> float:
    """Kim model, dB/km. Visibility in metres, floored at 10 m."""
    v_km = max(visibility / 1000.0, 0.01)
    lambda_nm = wavelength * 1e9
    return (3.91 / v_km) * (lambda_nm / 550.0) ** (-KIM_Q)


def rain_attenuation(rainfall_rate: float) -> float:
    """Carbonneau model, dB/km (without the clear-air term)."""
    if rainfall_rate <= 0.0:
        return 0.0
    return 1.076 * rainfall_rate ** 0.67


def snow_attenuation(snowfall_rate: float) -> float:
    if snowfall_rate <= 0.0:
        return 0.0
    return 1.023 * snowfall_rate ** 0.72


def absorption_db(wavelength: float, distance: float, humidity: float) -> float:
    """Molecular absorption over the whole link, dB."""
    lambda_nm = wavelength * 1e9
    if 1400.0 <= lambda_nm <= 1600.0:
        alpha = 0.05 + 0.1 * humidity
    elif 700.0 <= lambda_nm <= 1000.0:
        alpha = 0.03 + 0.05 * humidity
    else:
        alpha = 0.02 + 0.03 * humidity
    return alpha * distance / 1000.0


def geometric_loss_db(distance: float, divergence: float, aperture: float) -> float:
    """
    Beam-spreading loss for a collimated source: the ratio of beam
    radius θ·L to receiver radius D/2, squared. Zero while the beam is
    smaller than the aperture.
    """
    beam_radius = divergence * distance
    receiver_radius = aperture / 2.0
    if beam_radius <= receiver_radius:
        return 0.0
    return 20.0 * math.log10(beam_radius / receiver_radius)


@dataclass
class LinkBudget:
    """Static power budget (no fading, no noise)."""
    tx_power_dbm: float
    path_loss_db: float
    attenuation_db: float
    absorption_db: float
    tx_gain_db: float
    rx_gain_db: float
    coupling_db: float
    rx_power_dbm: float

    @property
    def rx_power(self) -> float:
        return 10 ** ((self.rx_power_dbm - 30.0) / 10.0)

    @property
    def total_loss_db(self) -> float:
        return self.tx_power_dbm - self.rx_power_dbm


class ChannelModel:
    """
    Turbulent atmospheric channel.

    Derived quantities (rytov_variance, scintillation_index,
    path_loss_db, attenuation_db_per_km) are cached; the setters refresh
    them, and direct attribute changes must be followed by
    update_calculations().

    Attributes:
        distance: Link length (m)
        wavelength: Optical wavelength (m)
        weather: WeatherCondition
        cn2: Refractive-index structure parameter (m^-2/3)
        correlation_time: Fading coherence time τ_c (s)
        beam_divergence: Full divergence angle θ (rad)

    Example:
        >>> channel = ChannelModel(1000.0, 1550e-9, WeatherCondition.FOG, seed=7)
        >>> channel.set_weather(visibility=500.0)
        >>> p_rx = channel.apply_effects(1e-3, 0.0, 1e-3)
    """

    def __init__(self, distance: float, wavelength: float,
                 weather: Union[WeatherCondition, str] = WeatherCondition.CLEAR,
                 cn2: Optional[float] = None,
                 correlation_time: float = DEFAULT_CORRELATION_TIME,
                 rng: Optional[RandomGenerator] = None, seed: int = 0,
                 log_level: LogLevel = LogLevel.WARN):
        """
        Args:
            distance: Link distance in metres, [100, 10000]
            wavelength: Wavelength in metres, [500 nm, 2000 nm]
            weather: Weather condition
            cn2: Cn² in [1e-17, 1e-12]; defaults to the weather's typical value
            correlation_time: τ_c in (0, 1) s
            rng: Random source; a new RandomGenerator(seed) if omitted
            seed: Seed used when rng is omitted (0 = wall clock)

        Raises:
            InvalidParameterError: If any parameter is out of range
        """
        self.log = get_logger("Channel", log_level)
        self.weather = WeatherCondition.parse(weather)
        if cn2 is None:
            cn2 = self.weather.default_cn2

        self._validate_geometry(distance, wavelength, cn2)
        self._validate_correlation_time(correlation_time)

        self.distance = float(distance)
        self.wavelength = float(wavelength)
        self.cn2 = float(cn2)
        self.correlation_time = float(correlation_time)
        self.beam_divergence = DEFAULT_BEAM_DIVERGENCE

        self.temperature = 20.0
        self.humidity = 0.5
        self.visibility = 1000.0
        self.rainfall_rate = 0.0
        self.snowfall_rate = 0.0

        if self.weather is WeatherCondition.FOG:
            self.visibility = 200.0
        elif self.weather is WeatherCondition.RAIN:
            self.rainfall_rate = 10.0
        elif self.weather is WeatherCondition.SNOW:
            self.snowfall_rate = 5.0

        self.rng = rng if rng is not None else RandomGenerator(seed)

        self._history = deque([1.0] * FADE_HISTORY_LENGTH, maxlen=FADE_HISTORY_LENGTH)
        self.last_fade = 1.0
        self.current_fade = 1.0

        self.update_calculations()
        self.log.info("Channel initialized: distance=%.1f m, wavelength=%.0f nm, weather=%s",
                      self.distance, self.wavelength * 1e9, self.weather.label)
        self.log.debug("Cn2=%.2e, Rytov variance=%.4f, scintillation index=%.4f",
                       self.cn2, self.rytov_variance, self.scintillation_index)

    # ------------------------------------------------------------------
    # Validation and parameter updates
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_geometry(distance: float, wavelength: float, cn2: float) -> None:
        if not MIN_DISTANCE <= distance <= MAX_DISTANCE:
            raise InvalidParameterError(
                f"Distance {distance:.2f} m outside [{MIN_DISTANCE:.0f}, {MAX_DISTANCE:.0f}] m")
        if not MIN_WAVELENGTH <= wavelength <= MAX_WAVELENGTH:
            raise InvalidParameterError(
                f"Wavelength {wavelength:.2e} m outside [{MIN_WAVELENGTH:.0e}, {MAX_WAVELENGTH:.0e}] m")
        if not MIN_CN2 <= cn2 <= MAX_CN2:
            raise InvalidParameterError(
                f"Cn2 {cn2:.2e} outside [{MIN_CN2:.0e}, {MAX_CN2:.0e}]")

    @staticmethod
    def _validate_correlation_time(tau: float) -> None:
        if not 0.0 < tau < 1.0:
            raise InvalidParameterError(f"Correlation time must be in (0, 1) s, got {tau}")

    def update_calculations(self) -> None:
        """Recompute cached turbulence and loss figures from the parameters."""
        self.rytov_variance = rytov_variance(self.cn2, self.wavelength, self.distance)
        self.scintillation_index = scintillation_index(self.rytov_variance)
        self.path_loss_db = path_loss_db(self.distance, self.wavelength)
        self.attenuation_db_per_km = self._weather_attenuation()

        self.log.debug("Updated: Rytov=%.4f, scint=%.4f, path loss=%.2f dB, atten=%.2f dB/km",
                       self.rytov_variance, self.scintillation_index,
                       self.path_loss_db, self.attenuation_db_per_km)

    def _weather_attenuation(self) -> float:
        if self.weather is WeatherCondition.FOG:
            return fog_attenuation(self.visibility, self.wavelength)
        if self.weather is WeatherCondition.RAIN:
            return rain_attenuation(self.rainfall_rate) + CLEAR_AIR_ATTENUATION
        if self.weather is WeatherCondition.SNOW:
            return snow_attenuation(self.snowfall_rate) + CLEAR_AIR_ATTENUATION
        # Clear air; high turbulence acts through fading only
        return CLEAR_AIR_ATTENUATION

    def set_weather(self, visibility: Optional[float] = None,
                    rainfall_rate: Optional[float] = None,
                    snowfall_rate: Optional[float] = None) -> None:
        """Update visibility (m), rainfall and snowfall (mm/h)."""
        visibility = self.visibility if visibility is None else visibility
        rainfall_rate = self.rainfall_rate if rainfall_rate is None else rainfall_rate
        snowfall_rate = self.snowfall_rate if snowfall_rate is None else snowfall_rate

        if visibility <= 0.0:
            raise InvalidParameterError(f"Visibility must be positive, got {visibility}")
        if rainfall_rate < 0.0 or snowfall_rate < 0.0:
            raise InvalidParameterError("Rainfall and snowfall rates must be >= 0")

        self.visibility = float(visibility)
        self.rainfall_rate = float(rainfall_rate)
        self.snowfall_rate = float(snowfall_rate)
        self.update_calculations()

    def set_atmospheric(self, temperature: float, humidity: float) -> None:
        """Temperature in °C [-50, 50], relative humidity in [0, 1]."""
        if not -50.0 <= temperature <= 50.0:
            raise InvalidParameterError(f"Temperature {temperature} °C outside [-50, 50]")
        if not 0.0 <= humidity <= 1.0:
            raise InvalidParameterError(f"Humidity {humidity} outside [0, 1]")
        self.temperature = float(temperature)
        self.humidity = float(humidity)
        self.update_calculations()

    def set_beam(self, divergence: float) -> None:
        if not 0.0 < divergence < 0.1:
            raise InvalidParameterError(f"Beam divergence must be in (0, 0.1) rad, got {divergence}")
        self.beam_divergence = float(divergence)

    def set_turbulence(self, cn2: float) -> None:
        self._validate_geometry(self.distance, self.wavelength, cn2)
        self.cn2 = float(cn2)
        self.update_calculations()

    def set_correlation_time(self, tau: float) -> None:
        self._validate_correlation_time(tau)
        self.correlation_time = float(tau)

    # ------------------------------------------------------------------
    # Fading
    # ------------------------------------------------------------------

    def _clamp_fade(self, fade: float) -> float:
        return min(max(fade, FADE_MIN), FADE_MAX)

    def uncorrelated_fade(self) -> float:
        """Independent unit-mean log-normal intensity fade."""
        if self.rytov_variance < 1e-6:
            self.current_fade = 1.0
            return 1.0

        sigma = math.sqrt(self.rytov_variance)
        x = self.rng.gaussian(0.0, sigma)
        fade = self._clamp_fade(math.exp(2.0 * x - 2.0 * self.rytov_variance))
        self.current_fade = fade
        return fade

    def correlated_fade(self, dt: float) -> float:
        """
        AR(1) fade: ℓ_n = ρ·ℓ_(n-1) + sqrt(1-ρ²)·W with ρ = exp(-dt/τ_c).

        The previous log-amplitude is recovered from the last fade value,
        so clamping feeds back into the process.
        """
        if self.rytov_variance < 1e-6:
            self.current_fade = 1.0
            return 1.0

        rho = math.exp(-dt / self.correlation_time)
        sigma = math.sqrt(self.rytov_variance)
        w = self.rng.gaussian(0.0, sigma)

        if self.last_fade > 0.0:
            previous = math.log(self.last_fade) / 2.0 + self.rytov_variance
        else:
            previous = 0.0

        current = rho * previous + math.sqrt(1.0 - rho * rho) * w
        fade = self._clamp_fade(math.exp(2.0 * current - 2.0 * self.rytov_variance))

        self._history.append(fade)
        self.last_fade = fade
        self.current_fade = fade
        return fade

    def fade_history(self) -> List[float]:
        """Most recent correlated fades, oldest first."""
        return list(self._history)

    # ------------------------------------------------------------------
    # Power budget
    # ------------------------------------------------------------------

    @property
    def absorption_db(self) -> float:
        return absorption_db(self.wavelength, self.distance, self.humidity)

    @property
    def total_loss_db(self) -> float:
        """Path loss + weather attenuation + absorption (dB)."""
        return (self.path_loss_db
                + self.attenuation_db_per_km * self.distance / 1000.0
                + self.absorption_db)

    def telescope_gains_db(self, aperture: float) -> Tuple[float, float]:
        """
        Transmit gain 8/θ² and receive gain (πD/λ)², in dB.

        Together with the path loss they give the Gaussian-beam capture
        fraction D²/(2θ²L²).
        """
        if aperture <= 0.0:
            raise InvalidParameterError(f"Aperture must be positive, got {aperture}")
        tx_gain = 10.0 * math.log10(8.0 / self.beam_divergence ** 2)
        rx_gain = 20.0 * math.log10(math.pi * aperture / self.wavelength)
        return tx_gain, rx_gain

    def coupling_gain(self, aperture: float) -> float:
        """
        Linear gain to apply on top of apply_effects() so the path loss
        becomes the geometric capture fraction (capped at 1).
        """
        tx_gain, rx_gain = self.telescope_gains_db(aperture)
        return db_to_linear(min(tx_gain + rx_gain, self.path_loss_db))

    def geometric_loss_db(self, aperture: float) -> float:
        return geometric_loss_db(self.distance, self.beam_divergence, aperture)

    def link_budget(self, tx_power: float, aperture: float) -> LinkBudget:
        tx_gain, rx_gain = self.telescope_gains_db(aperture)
        coupling = min(tx_gain + rx_gain - self.path_loss_db, 0.0)
        attenuation = self.attenuation_db_per_km * self.distance / 1000.0
        tx_dbm = 10.0 * math.log10(tx_power) + 30.0
        rx_dbm = tx_dbm + coupling - attenuation - self.absorption_db
        return LinkBudget(tx_power_dbm=tx_dbm, path_loss_db=self.path_loss_db,
                          attenuation_db=attenuation, absorption_db=self.absorption_db,
                          tx_gain_db=tx_gain, rx_gain_db=rx_gain,
                          coupling_db=coupling, rx_power_dbm=rx_dbm)

    def apply_effects(self, power_in: float, noise_power: float = 0.0,
                      dt: float = 0.0) -> float:
        """
        Received optical power for one transmission.

        P_rx = P_tx · fade / 10^(loss/10) (+ N(0, sqrt(noise_power)), floored at 0)

        Args:
            power_in: Transmit power (W)
            noise_power: AWGN power (W); 0 disables noise
            dt: Time since the previous call; > 0 selects correlated fading

        Returns:
            Received power (W)
        """
        if power_in < 0.0:
            raise InvalidParameterError(f"Invalid input power: {power_in:.2e} W")
        if noise_power < 0.0:
            raise InvalidParameterError(f"Invalid noise power: {noise_power:.2e} W")

        fade = self.correlated_fade(dt) if dt > 0.0 else self.uncorrelated_fade()

        loss_db = self.total_loss_db
        received = power_in * fade / db_to_linear(loss_db)

        if noise_power > 0.0:
            received += self.rng.gaussian(0.0, math.sqrt(noise_power))
            received = max(received, 0.0)

        self.log.debug("P_in=%.2e W, fade=%.3f, loss=%.2f dB, P_out=%.2e W",
                       power_in, fade, loss_db, received)
        return received

    def __repr__(self) -> str:
        return (f"ChannelModel({self.distance:.0f} m, {self.wavelength * 1e9:.0f} nm, "
                f"{self.weather.label}, Cn2={self.cn2:.1e})")
