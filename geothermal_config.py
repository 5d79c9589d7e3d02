"""
Configuration for the geothermal portfolio simulation
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Tuple


class EffectKind(Enum):
    """Side effect applied when an event choice is taken"""
    NONE = "none"
    SCALE_REVENUE = "scale_revenue"
    SCALE_OPERATING_COST = "scale_operating_cost"
    GRANT = "grant"


@dataclass
class EventChoiceSpec:
    """One option offered to the player when an event fires"""
    text: str
    cost: float = 0.0
    effect: EffectKind = EffectKind.NONE
    value: float = 0.0

    def affordable(self, cash: float) -> bool:
        """Free choices stay open even when cash is negative"""
        return self.cost <= 0 or cash >= self.cost


@dataclass
class EventSpec:
    """Catalog entry for a market event"""
    id: str
    name: str
    description: str
    probability: float  # per quarter
    choices: Tuple[EventChoiceSpec, ...] = ()


# Scan order matters: the first event whose draw succeeds is the one raised.
DEFAULT_EVENT_CATALOG = (
    EventSpec(
        id="backlash",
        name="Public Backlash",
        description="Environmental groups organizing against geothermal.",
        probability=0.02,
        choices=(
            EventChoiceSpec("Launch PR Campaign (€2M)", cost=2.0),
            EventChoiceSpec("Accept -20% revenue", effect=EffectKind.SCALE_REVENUE, value=0.8),
        ),
    ),
    EventSpec(
        id="cost_surge",
        name="Supply Chain Crisis",
        description="Equipment and material prices are spiking.",
        probability=0.025,
        choices=(
            EventChoiceSpec("Stockpile materials (€3M)", cost=3.0),
            EventChoiceSpec("Accept +30% operating costs", effect=EffectKind.SCALE_OPERATING_COST, value=1.3),
        ),
    ),
    EventSpec(
        id="subsidy",
        name="Government Grant",
        description="Green energy subsidy program announced.",
        probability=0.015,
        choices=(
            EventChoiceSpec("Accept €5M grant", effect=EffectKind.GRANT, value=5.0),
            EventChoiceSpec("Skip (no conditions)"),
        ),
    ),
)


@dataclass
class LegacyDoubletConfig:
    """Pre-existing asset the player starts with"""
    name: str = "Legacy"
    initial_temp: float = 120.0
    current_temp: float = 105.0
    flow_rate: float = 50.0
    thermal_capacity: float = 1.0
    year_built: int = 2020

    # Seeded (year, value) history shown before the first simulated year
    temp_history: Tuple[Tuple[int, float], ...] = (
        (2020, 120.0), (2021, 116.0), (2022, 112.0), (2023, 108.0), (2024, 105.0),
    )
    cash_history: Tuple[Tuple[int, float], ...] = (
        (2020, 2.1), (2021, 1.9), (2022, 1.7), (2023, 1.5), (2024, 1.3),
    )
    heat_history: Tuple[Tuple[int, float], ...] = (
        (2020, 160.0), (2021, 152.0), (2022, 144.0), (2023, 136.0), (2024, 128.0),
    )


@dataclass
class GameConfig:
    """All tunable constants (money in €M, temperatures in °C, flow in kg/s)"""
    # Thermodynamics
    reference_temp: float = 25.0
    heat_capacity: float = 4.18
    min_delta_t: float = 5.0
    hours_per_year: float = 8000.0
    exergy_reference_delta: float = 100.0

    # Market
    base_price: float = 80.0  # €/MWh at full exergy
    seasonal_multipliers: Tuple[float, ...] = (1.3, 0.7, 0.6, 1.2)  # Q1 winter .. Q4 autumn

    # Operating cost (annual, €M)
    base_op_cost: float = 0.3
    unit_flow_cost: float = 0.005

    # Reservoir decline (°C per year at reference flow and unit capacity)
    reference_flow: float = 50.0
    decline_min: float = 3.0
    decline_max: float = 5.0

    # Sites
    site_count: int = 10
    site_temp_range: Tuple[int, int] = (80, 160)
    site_capacity_range: Tuple[float, float] = (0.5, 2.0)
    drilling_cost_range: Tuple[int, int] = (5, 13)
    construction_cost_range: Tuple[int, int] = (3, 8)
    revealed_temp_bounds: Tuple[float, float] = (60.0, 180.0)
    temp_variance_base: float = 20.0  # half-width = base - level * step
    temp_variance_step: float = 5.0
    drilling_cost_variance_base: float = 3.0  # half-width = base - level
    min_revealed_drilling_cost: float = 3.0
    investigation_costs: Dict[int, float] = field(default_factory=lambda: {1: 0.5, 2: 1.5, 3: 4.0})

    # Lifecycle
    secure_cost: float = 2.0
    holding_cost_per_year: float = 0.3
    construction_delay_years: int = 2
    drilling_failure_rate: float = 0.05
    max_doublets: int = 10
    min_flow_rate: float = 20.0
    max_flow_rate: float = 100.0

    # Competitors
    competitor_take_chance: float = 0.12  # annual, drawn quarterly as /4

    # Game
    start_year: int = 2025
    starting_cash: float = 15.0
    bankruptcy_threshold: float = -10.0
    history_length: int = 15
    log_length: int = 10

    # Scheduler
    base_tick_ms: int = 800
    speed_multipliers: Tuple[int, ...] = (0, 1, 2, 5)

    legacy: LegacyDoubletConfig = field(default_factory=LegacyDoubletConfig)
    events: Tuple[EventSpec, ...] = DEFAULT_EVENT_CATALOG

    def validate(self):
        """Raise ValueError on a configuration the engine cannot run with"""
        if len(self.seasonal_multipliers) != 4:
            raise ValueError("seasonal_multipliers must have one entry per quarter")
        if self.exergy_reference_delta <= 0:
            raise ValueError("exergy_reference_delta must be positive")
        if self.reference_flow <= 0:
            raise ValueError("reference_flow must be positive")
        if self.decline_min > self.decline_max:
            raise ValueError("decline_min must not exceed decline_max")
        if self.max_doublets < 0:
            raise ValueError("max_doublets must not be negative")
        if self.history_length <= 0 or self.log_length <= 0:
            raise ValueError("history_length and log_length must be positive")
        if sorted(self.investigation_costs) != [1, 2, 3]:
            raise ValueError("investigation_costs must define levels 1, 2 and 3")
        if self.min_flow_rate > self.max_flow_rate:
            raise ValueError("min_flow_rate must not exceed max_flow_rate")
        if self.legacy.current_temp < self.reference_temp + self.min_delta_t:
            raise ValueError("legacy doublet starts below the temperature floor")
        if self.site_temp_range[0] < self.reference_temp + self.min_delta_t:
            raise ValueError("site_temp_range starts below the temperature floor")
        for ev in self.events:
            if len(ev.choices) < 2:
                raise ValueError(f"event {ev.id!r} needs at least two choices")

    def tick_interval_ms(self, speed_index: int) -> int:
        """Timer interval for a speed selector position (0 = paused)"""
        mult = self.speed_multipliers[speed_index]
        if mult == 0:
            return 0
        return int(self.base_tick_ms / mult)


DEFAULT_CONFIG = GameConfig()
