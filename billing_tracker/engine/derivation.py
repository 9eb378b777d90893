"""
Derivation Library

Pure functions that turn meter readings into usage and usage into cost.

DESIGN DECISION: A reading lower than the previous one (meter replaced
or rolled over) yields zero usage for that channel. This is a clamping
policy, not an error.
"""

from billing_tracker.models.billing import ElectricityUsage, MeterReadings, Usage


def channel_delta(current: float, previous: float) -> float:
    """Usage between two absolute readings of one meter, never negative."""
    return max(0.0, current - previous)


def usage_from_readings(
    current: MeterReadings,
    previous: MeterReadings,
) -> tuple[Usage, ElectricityUsage]:
    """
    Derive a month's usage from its meter readings and the previous month's.

    Returns:
        (water/heat usage, electricity usage)
    """
    usage = Usage(
        cold_water=channel_delta(current.cold_water, previous.cold_water),
        hot_water=channel_delta(current.hot_water, previous.hot_water),
        heating=channel_delta(current.heating, previous.heating),
    )
    electricity = ElectricityUsage(
        kwh=channel_delta(current.electricity, previous.electricity),
    )
    return usage, electricity


def cost_of(usage: float, rate: float) -> float:
    """Cost of a quantity at a per-unit rate. Rounding is left to display."""
    return usage * rate
