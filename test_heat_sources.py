"""Tests for heat_sources module"""

from pytest import approx, raises

from heat_sources import (
    Additive,
    Boiler,
    Configurable,
    Fixed,
    Passthrough,
    ProductDependent,
    configurable_power,
    get_heat_source,
    has_temp_dependent_cycle,
    is_temperature_product,
    output_temperature,
    temp_dependent_cycle_time,
)


def test_get_heat_source():
    """known heat source machines should map to their variants"""
    assert isinstance(get_heat_source("m_geothermal_well"), Additive)
    assert isinstance(get_heat_source("m_boiler"), Boiler)
    assert isinstance(get_heat_source("m_modular_turbine"), Passthrough)
    assert get_heat_source("m_smelter") is None


def test_fixed_ignores_input():
    """fixed sources should always emit their temperature"""
    assert output_temperature(Fixed(240.0), input_temp=500.0) == 240.0


def test_additive_caps_at_max():
    """additive sources should add their increment up to the cap"""
    well = Additive(temp_increase=80.0, max_temp=220.0, max_chains=3)
    assert output_temperature(well, input_temp=18.0) == 98.0
    assert output_temperature(well, input_temp=178.0) == 220.0


def test_additive_passes_hotter_input_through():
    """an input already above the cap should not be cooled"""
    well = Additive(temp_increase=80.0, max_temp=220.0, max_chains=3)
    assert output_temperature(well, input_temp=300.0) == 300.0


def test_configurable_uses_setting_or_first_option():
    """configurable sources should honour the node setting"""
    heater = Configurable(((120.0, 300000.0), (220.0, 800000.0)))
    assert output_temperature(heater) == 120.0
    assert output_temperature(heater, {"temperature": 220}) == 220.0


def test_product_dependent_lookup():
    """product dependent sources should look up the heated product"""
    burner = get_heat_source("m_gas_burner")
    assert output_temperature(burner, input_product="p_distilled_water") == 410.0
    assert output_temperature(burner, input_product="p_unknown") == 400.0
    assert output_temperature(ProductDependent({}), input_product="p_water") == 400.0


def test_passthrough_copies_input():
    """passthrough sources should emit their input temperature"""
    assert output_temperature(Passthrough("p_high_pressure_steam"), input_temp=333.0) == 333.0


def test_boiler_subtracts_heat_loss_from_coolant():
    """boilers should emit the coolant temperature less the heat loss"""
    boiler = Boiler(default_heat_loss=0.0, min_steam_temp=100.0)
    assert output_temperature(boiler, second_input_temp=240.0) == 240.0
    assert output_temperature(boiler, {"heat_loss": 15}, second_input_temp=240.0) == 225.0
    assert output_temperature(boiler) == 18.0


def test_boiler_steam_never_below_water_temperature():
    """a heat loss larger than the coolant temperature should stop at the water default"""
    boiler = Boiler(default_heat_loss=0.0, min_steam_temp=100.0)
    assert output_temperature(boiler, {"heat_loss": 30}, second_input_temp=18.0) == 18.0


def test_output_temperature_unknown_source():
    """output_temperature should reject unknown variants"""
    with raises(TypeError, match="Unknown heat source"):
        output_temperature("m_firebox")


def test_configurable_power():
    """configurable_power should return the power of the chosen option"""
    assert configurable_power("m_electric_water_heater", 220.0) == 800000.0
    assert configurable_power("m_electric_water_heater", 150.0) is None
    assert configurable_power("m_firebox", 240.0) is None


def test_is_temperature_product():
    assert is_temperature_product("p_water")
    assert is_temperature_product("p_high_pressure_steam")
    assert not is_temperature_product("p_iron_ore")


def test_industrial_drill_cycle_time():
    """industrial drill cycle time should fall with steam temperature"""
    assert temp_dependent_cycle_time("m_industrial_drill", 100.0, 1.0) == 8.0
    assert temp_dependent_cycle_time("m_industrial_drill", 400.0, 1.0) == 2.0
    assert temp_dependent_cycle_time("m_industrial_drill", 1000.0, 1.0) == 2.0


def test_cycle_time_piecewise_formulas():
    """the piecewise formulas should be continuous at their breakpoints"""
    assert temp_dependent_cycle_time("m_alloyer", 300.0, 1.0) == approx(10.0)
    assert temp_dependent_cycle_time("m_alloyer", 350.0, 1.0) == 8.0
    assert temp_dependent_cycle_time("m_coal_liquefaction_plant", 300.0, 1.0) == approx(20.0)
    assert temp_dependent_cycle_time("m_coal_liquefaction_plant", 10.0, 1.0) == 88.0
    assert temp_dependent_cycle_time("m_steam_cracking_plant", 0.0, 1.0) == 30.0
    assert temp_dependent_cycle_time("m_steam_cracking_plant", 500.0, 1.0) == 3.0


def test_cycle_time_falls_back_to_base():
    """non-finite formula results and unknown machines should use the base cycle time"""
    assert temp_dependent_cycle_time("m_water_treatment_plant", 0.0, 5.0) == 5.0
    assert temp_dependent_cycle_time("m_industrial_drill", -10.0, 3.0) == 3.0
    assert temp_dependent_cycle_time("m_smelter", 200.0, 4.0) == 4.0


def test_has_temp_dependent_cycle():
    assert has_temp_dependent_cycle("m_alloyer")
    assert not has_temp_dependent_cycle("m_boiler")
