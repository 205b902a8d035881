"""Tunable constants for the production network solver."""

from dataclasses import dataclass, fields, replace


@dataclass(frozen=True)
class SolverConfig:
    """Numeric tolerances and iteration limits shared by every solver stage.

    Flow:
        flow_epsilon: flows below this are reported as exactly zero
        residual_epsilon: residual capacity below this is treated as saturated
        flow_decimals: decimal places kept on reported flows
        cache_size: maximum number of cached component results

    Analysis:
        relative_tolerance: fraction of the larger value a mismatch must exceed
        absolute_tolerance: floor for the significance test near zero
        deficiency_penalty: health score points lost per deficient product
        excess_penalty: health score points lost per excess product

    Temperature:
        temperature_threshold: convergence threshold inside cycles
        temperature_change_threshold: change that triggers an extra reflow
        max_cycle_iterations: bound on fixed-point rounds inside cycles

    Suggestions:
        suggestion_epsilon: smallest rate or count considered non-zero
        primary_output_tolerance: byproduct score at or below which an output is primary
        real_demand_ratio: fraction of an output's production its consumers must
            request before it counts as real demand

    Balancer:
        max_iterations: hard cap on balancer iterations
        no_change_limit: consecutive iterations without updates before stopping
        target_excess_threshold: fraction of a target's production that may go unused
        bottleneck_ratio_tolerance: supply ratios this close to the minimum are bottlenecks
    """

    flow_epsilon: float = 1e-10
    residual_epsilon: float = 1e-15
    flow_decimals: int = 10
    cache_size: int = 100

    relative_tolerance: float = 1e-3
    absolute_tolerance: float = 1e-9
    deficiency_penalty: float = 15.0
    excess_penalty: float = 5.0

    temperature_threshold: float = 0.01
    temperature_change_threshold: float = 0.1
    max_cycle_iterations: int = 100

    suggestion_epsilon: float = 1e-10
    primary_output_tolerance: float = 0.1
    real_demand_ratio: float = 0.5

    max_iterations: int = 50
    no_change_limit: int = 3
    target_excess_threshold: float = 0.1
    bottleneck_ratio_tolerance: float = 1e-3

    def __post_init__(self):
        for field in fields(self):
            value = getattr(self, field.name)
            if value < 0:
                raise ValueError(f"{field.name} must be non-negative, got {value}")
        if self.cache_size < 1:
            raise ValueError(f"cache_size must be at least 1, got {self.cache_size}")
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be at least 1, got {self.max_iterations}")
        if self.no_change_limit < 1:
            raise ValueError(f"no_change_limit must be at least 1, got {self.no_change_limit}")

    def with_overrides(self, **overrides) -> "SolverConfig":
        """Return a validated copy with the given fields replaced.

        Raises:
            ValueError: if a field name is unknown or a value is invalid
        """
        known = {field.name for field in fields(self)}
        if unknown := set(overrides) - known:
            raise ValueError(f"Unknown solver settings: {sorted(unknown)}")
        return replace(self, **overrides)


DEFAULT_CONFIG = SolverConfig()
