"""Heat source machines and temperature-dependent cycle times.

Heat sources form a closed set of variants. Each variant is a frozen dataclass
and ``output_temperature`` dispatches over them in one place.
"""

import math
from dataclasses import dataclass
from typing import Union

from frozendict import frozendict

TEMPERATURE_PRODUCTS = frozenset({
    "p_water",
    "p_filtered_water",
    "p_distilled_water",
    "p_steam",
    "p_low_pressure_steam",
    "p_high_pressure_steam",
})

WATER_PRODUCTS = frozenset({"p_water", "p_filtered_water", "p_distilled_water"})

STEAM_PRODUCTS = frozenset({"p_steam", "p_low_pressure_steam", "p_high_pressure_steam"})

DEFAULT_WATER_TEMPERATURE = 18.0
DEFAULT_BOILER_INPUT_TEMPERATURE = 18.0
DEFAULT_STEAM_TEMPERATURE = 100.0

INDUSTRIAL_FIREBOX = "m_industrial_firebox"
STEAM_CRACKING_PLANT = "m_steam_cracking_plant"


@dataclass(frozen=True)
class Fixed:
    """always emits the same temperature"""

    output_temp: float


@dataclass(frozen=True)
class Additive:
    """adds a fixed increment to the input temperature, up to a cap"""

    temp_increase: float
    max_temp: float
    max_chains: int


@dataclass(frozen=True)
class Configurable:
    """emits a user-selected temperature; options are (temperature, power) pairs"""

    temp_options: tuple[tuple[float, float], ...]


@dataclass(frozen=True)
class ProductDependent:
    """emits a temperature looked up by the input product"""

    temps: frozendict
    fallback: float = 400.0


@dataclass(frozen=True)
class Passthrough:
    """emits the temperature of its input"""

    input_product: str


@dataclass(frozen=True)
class Boiler:
    """emits its second input's temperature less a heat loss"""

    default_heat_loss: float
    min_steam_temp: float
    steam_output_product: str = "p_steam"
    coolant_factor: float = 0.85


HeatSource = Union[Fixed, Additive, Configurable, ProductDependent, Passthrough, Boiler]


HEAT_SOURCES: frozendict = frozendict({
    "m_geothermal_well": Additive(temp_increase=80.0, max_temp=220.0, max_chains=3),
    "m_firebox": Fixed(240.0),
    INDUSTRIAL_FIREBOX: Fixed(300.0),
    "m_electric_water_heater": Configurable(
        ((120.0, 300000.0), (220.0, 800000.0), (320.0, 1500000.0))
    ),
    "m_gas_burner": ProductDependent(
        frozendict({"p_water": 400.0, "p_filtered_water": 405.0, "p_distilled_water": 410.0})
    ),
    "m_liquid_boiler": ProductDependent(frozendict({"p_water": 105.0})),
    "m_boiler": Boiler(default_heat_loss=0.0, min_steam_temp=100.0),
    "m_coal_generator": Fixed(150.0),
    "m_coal_power_plant": Fixed(500.0),
    "m_nuclear_power_plant": Fixed(1500.0),
    "m_modular_turbine": Passthrough("p_high_pressure_steam"),
})


def get_heat_source(machine_id: str) -> HeatSource | None:
    """Return the heat source variant for a machine, or None."""
    return HEAT_SOURCES.get(machine_id)


def is_temperature_product(product_id: str) -> bool:
    """True if temperature is meaningful for the product"""
    return product_id in TEMPERATURE_PRODUCTS


def output_temperature(
    source: HeatSource,
    settings: dict | None = None,
    input_temp: float = DEFAULT_WATER_TEMPERATURE,
    input_product: str | None = None,
    second_input_temp: float | None = None,
) -> float:
    """Compute the temperature a heat source emits.

    Precondition:
        source is one of the heat source variants
        settings holds the node's temperature settings (may be None)

    Postcondition:
        returns the emitted temperature; additive sources never exceed max_temp
        unless the input itself is already hotter

    Args:
        source: heat source variant
        settings: per-node temperature settings ("temperature", "heat_loss")
        input_temp: temperature of the heated input
        input_product: product id of the heated input
        second_input_temp: temperature of the boiler's coolant input

    Returns:
        output temperature in degrees Celsius

    Raises:
        TypeError: if source is not a heat source variant
    """
    settings = settings or {}
    if isinstance(source, Fixed):
        return source.output_temp
    if isinstance(source, Additive):
        if input_temp > source.max_temp:
            return input_temp
        return min(input_temp + source.temp_increase, source.max_temp)
    if isinstance(source, Configurable):
        return float(settings.get("temperature") or source.temp_options[0][0])
    if isinstance(source, ProductDependent):
        return source.temps.get(input_product) or source.temps.get("p_water") or source.fallback
    if isinstance(source, Passthrough):
        return input_temp
    if isinstance(source, Boiler):
        coolant_temp = (
            second_input_temp if second_input_temp is not None else DEFAULT_BOILER_INPUT_TEMPERATURE
        )
        heat_loss = settings.get("heat_loss")
        if heat_loss is None:
            heat_loss = source.default_heat_loss
        return max(coolant_temp - heat_loss, DEFAULT_WATER_TEMPERATURE)
    raise TypeError(f"Unknown heat source: {source!r}")


def configurable_power(machine_id: str, temperature: float) -> float | None:
    """Return the power drawn by a configurable heater at the chosen temperature.

    Returns None for machines that are not configurable or for unknown options.
    """
    source = get_heat_source(machine_id)
    if not isinstance(source, Configurable):
        return None
    for option_temp, power in source.temp_options:
        if option_temp == temperature:
            return power
    return None


def _industrial_drill_seconds(temp: float) -> float:
    if temp <= 0:
        return math.inf
    if temp >= 400:
        return 2.0
    return 800 / temp


def _alloyer_seconds(temp: float) -> float:
    if temp <= 0:
        return 40.0
    if temp <= 300:
        return 1500 / temp + 5
    if temp < 350:
        return 10 - (temp - 300) / 25
    return 8.0


def _coal_liquefaction_seconds(temp: float) -> float:
    if temp <= 18:
        return 88.0
    if temp <= 300:
        return 3000 / temp + 10
    if temp < 350:
        return 20 - 0.2 * (temp - 300)
    return 10.0


def _steam_cracking_seconds(temp: float) -> float:
    if temp <= 0:
        return 30.0
    linear_end = 2973 / 11
    floor_start = 4000 / 11
    if temp <= linear_end:
        return 30 + (-165 / 1982) * temp
    if temp < floor_start:
        return (-99 / 2054) * temp + 21081 / 1027
    return 3.0


def _water_treatment_seconds(temp: float) -> float:
    if temp <= 0:
        return math.inf
    return 64 / (0.176 * abs(temp))


TEMP_DEPENDENT_MACHINES: frozendict = frozendict({
    "m_industrial_drill": _industrial_drill_seconds,
    "m_alloyer": _alloyer_seconds,
    "m_coal_liquefaction_plant": _coal_liquefaction_seconds,
    STEAM_CRACKING_PLANT: _steam_cracking_seconds,
    "m_water_treatment_plant": _water_treatment_seconds,
})


def has_temp_dependent_cycle(machine_id: str) -> bool:
    """True if the machine's cycle time is a function of its steam temperature"""
    return machine_id in TEMP_DEPENDENT_MACHINES


def temp_dependent_cycle_time(machine_id: str, input_temp: float, base_cycle_time: float) -> float:
    """Return the cycle time at the given steam temperature.

    Falls back to base_cycle_time for unknown machines or non-finite results.
    """
    formula = TEMP_DEPENDENT_MACHINES.get(machine_id)
    if formula is None:
        return base_cycle_time
    seconds = formula(input_temp)
    return seconds if math.isfinite(seconds) else base_cycle_time
