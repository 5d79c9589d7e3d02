"""
Geothermal Portfolio - Game Engine (Pure Logic, No UI)
======================================================
Headless quarterly simulation of a geothermal doublet portfolio.
Used by both the Streamlit app and the Monte Carlo analytics.
"""

import copy
import logging
import random
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Optional, Tuple

import numpy as np

from geothermal_config import DEFAULT_CONFIG, EffectKind, EventSpec, GameConfig

logger = logging.getLogger(__name__)

QUARTER_NAMES = ["Q1", "Q2", "Q3", "Q4"]
SITE_LETTERS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"


# ==================== Enums ====================

class SiteStatus(Enum):
    """Lifecycle position of a site; exactly one applies at a time"""
    AVAILABLE = "available"  # unknown or investigated, open to anyone
    SECURED = "secured"
    UNDER_CONSTRUCTION = "under_construction"
    OPERATING = "operating"
    DRILLING_FAILED = "drilling_failed"
    TAKEN_BY_COMPETITOR = "taken_by_competitor"


# Sites that still count as resource for the exhaustion check
DEVELOPABLE_STATUSES = (SiteStatus.AVAILABLE, SiteStatus.SECURED, SiteStatus.UNDER_CONSTRUCTION)


class Rejection(Enum):
    """Why a player operation was refused"""
    INSUFFICIENT_FUNDS = "Insufficient funds"
    INVALID_STATE = "Invalid state"
    CAPACITY_EXCEEDED = "Capacity exceeded"
    NO_PENDING_EVENT = "No pending event"
    EVENT_PENDING = "Event pending"
    GAME_OVER = "Game over"
    NOT_FOUND = "Not found"
    INVALID_ARGUMENT = "Invalid argument"


class GameEndReason(Enum):
    """Terminal conditions"""
    BANKRUPTCY = "Bankruptcy"
    EXHAUSTION = "All resources exhausted"


class Speed(Enum):
    """Scheduler speed selector (index into GameConfig.speed_multipliers)"""
    PAUSED = 0
    NORMAL = 1
    FAST = 2
    FASTEST = 3


# ==================== Data Classes ====================

class History:
    """Fixed-capacity series of (year, value) points; the oldest drop off"""

    def __init__(self, maxlen: int, points=()):
        self._points = deque(((int(y), float(v)) for y, v in points), maxlen=maxlen)

    @property
    def maxlen(self) -> int:
        return self._points.maxlen

    def append(self, year: int, value: float):
        self._points.append((int(year), float(value)))

    def years(self) -> List[int]:
        return [y for y, _ in self._points]

    def values(self) -> List[float]:
        return [v for _, v in self._points]

    def last(self) -> Optional[Tuple[int, float]]:
        return self._points[-1] if self._points else None

    def to_list(self) -> List[Tuple[int, float]]:
        return list(self._points)

    def __len__(self):
        return len(self._points)

    def __iter__(self):
        return iter(self._points)

    def __eq__(self, other):
        if not isinstance(other, History):
            return NotImplemented
        return self.maxlen == other.maxlen and list(self._points) == list(other._points)

    def __repr__(self):
        return f"History(maxlen={self.maxlen}, points={list(self._points)!r})"


@dataclass
class Range:
    """Disclosed bounds for a hidden site attribute"""
    min: float
    max: float

    @property
    def exact(self) -> bool:
        return self.min == self.max


@dataclass
class Site:
    """Undeveloped (or formerly undeveloped) drilling location"""
    id: int
    name: str

    # Hidden truth
    true_temp: float
    true_capacity: float
    true_drilling_cost: float
    true_construction_cost: float

    # What the player has learned
    investigated: int = 0
    revealed_temp: Optional[Range] = None
    revealed_drilling_cost: Optional[Range] = None

    status: SiteStatus = SiteStatus.AVAILABLE
    completion_year: Optional[int] = None
    planned_flow_rate: Optional[float] = None

    @property
    def is_developed(self) -> bool:
        return self.status in (SiteStatus.OPERATING, SiteStatus.DRILLING_FAILED)


@dataclass
class Doublet:
    """Producing injection/production well pair"""
    id: int
    site_id: Optional[int]  # None for the legacy asset
    name: str
    initial_temp: float
    current_temp: float
    flow_rate: float
    thermal_capacity: float
    year_built: int
    temp_history: History
    cash_history: History
    heat_history: History
    abandoned: bool = False

    # Running totals for the current year
    current_year_cash: float = 0.0
    current_year_heat: float = 0.0


@dataclass
class SimulationSettings:
    """Run-level switches for events and competitors"""
    events_enabled: bool = True
    event_frequency_mult: float = 1.0
    competitors_enabled: bool = True
    competitor_frequency_mult: float = 1.0

    @staticmethod
    def baseline():
        return SimulationSettings()

    @staticmethod
    def no_events():
        return SimulationSettings(events_enabled=False)

    @staticmethod
    def no_competitors():
        return SimulationSettings(competitors_enabled=False)

    @staticmethod
    def calm():
        return SimulationSettings(events_enabled=False, competitors_enabled=False)


@dataclass
class GameState:
    """Complete game state (pure data, no UI)"""
    # Time
    year: int = 2025
    quarter: int = 0  # 0..3

    # Finance
    cash: float = 15.0
    last_net_cf: float = 0.0
    cash_trough: float = 15.0
    operating_cost_multiplier: float = 1.0
    revenue_multiplier: float = 1.0

    # Portfolio
    sites: list = field(default_factory=list)  # List of Site
    doublets: list = field(default_factory=list)  # List of Doublet
    next_doublet_id: int = 1
    total_heat_delivered: float = 0.0  # GWh

    # Annual aggregates
    year_net_cash: float = 0.0
    year_heat: float = 0.0
    aggregate_cash_history: History = field(default_factory=lambda: History(15))
    aggregate_heat_history: History = field(default_factory=lambda: History(15))

    # Events
    pending_event: Optional[EventSpec] = None
    event_history: list = field(default_factory=list)  # event ids in order raised

    # Scheduler
    speed: Speed = Speed.PAUSED
    version: int = 0

    # Diagnostics
    drilling_failures: int = 0
    sites_lost: int = 0

    # Log
    game_log: deque = field(default_factory=lambda: deque(maxlen=10))
    reason: str = ""

    # End state
    game_over: bool = False
    end_reason: Optional[GameEndReason] = None


@dataclass
class ActionResult:
    """Outcome of one operation: rejection (if any) plus log lines"""
    rejection: Optional[Rejection] = None
    log: List[str] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.rejection is None


@dataclass
class Snapshot:
    """Frozen copy of the state and the random source position"""
    state: GameState
    rng_state: object = None


# ==================== Helper Functions ====================

def clamp(x, a, b):
    """Clamp value between min and max"""
    return max(a, min(b, x))


def money(x):
    """Format €M amount as money string"""
    return f"€{x:.1f}M"


def make_event(event_id: str, config: GameConfig = DEFAULT_CONFIG) -> EventSpec:
    """Look up a catalog event by id"""
    for ev in config.events:
        if ev.id == event_id:
            return ev
    raise KeyError(event_id)


# ==================== Economic Model ====================

def exergy_factor(temp: float, config: GameConfig = DEFAULT_CONFIG) -> float:
    """Linear proxy for the work fraction of the extracted heat"""
    return clamp((temp - config.reference_temp) / config.exergy_reference_delta, 0.0, 1.0)


def heat_output(doublet: Doublet, config: GameConfig = DEFAULT_CONFIG) -> float:
    """Thermal output in MW"""
    if doublet.abandoned:
        return 0.0
    delta_t = doublet.current_temp - config.reference_temp
    if delta_t <= config.min_delta_t:
        return 0.0
    return doublet.flow_rate * config.heat_capacity * delta_t / 1000.0


def price_per_mwh(temp: float, quarter: int, revenue_multiplier: float = 1.0,
                  config: GameConfig = DEFAULT_CONFIG) -> float:
    return (config.base_price * exergy_factor(temp, config) * revenue_multiplier
            * config.seasonal_multipliers[quarter])


def quarterly_heat(doublet: Doublet, config: GameConfig = DEFAULT_CONFIG) -> float:
    """Heat delivered in one quarter, GWh"""
    return heat_output(doublet, config) * (config.hours_per_year / 4) / 1000.0


def quarterly_revenue(doublet: Doublet, quarter: int, revenue_multiplier: float = 1.0,
                      config: GameConfig = DEFAULT_CONFIG) -> float:
    """Revenue in €M for one quarter"""
    if doublet.abandoned:
        return 0.0
    price = price_per_mwh(doublet.current_temp, quarter, revenue_multiplier, config)
    return heat_output(doublet, config) * (config.hours_per_year / 4) * price / 1_000_000


def quarterly_operating_cost(doublet: Doublet, operating_cost_multiplier: float = 1.0,
                             config: GameConfig = DEFAULT_CONFIG) -> float:
    """Operating cost in €M for one quarter"""
    if doublet.abandoned:
        return 0.0
    annual = config.base_op_cost + doublet.flow_rate * config.unit_flow_cost
    return annual * operating_cost_multiplier / 4


def decline_temperature(doublet: Doublet, rng, config: GameConfig = DEFAULT_CONFIG) -> float:
    """Next-quarter reservoir temperature; never rises, never breaches the floor"""
    if doublet.abandoned:
        return doublet.current_temp
    extraction_intensity = doublet.flow_rate / config.reference_flow
    decline_rate = (rng.uniform(config.decline_min, config.decline_max)
                    * extraction_intensity / doublet.thermal_capacity) / 4
    floor = config.reference_temp + config.min_delta_t
    return max(floor, doublet.current_temp - decline_rate)


# ==================== Engine Class ====================

class Engine:
    """Pure game logic engine (no UI dependencies)"""

    def __init__(self, config: Optional[GameConfig] = None,
                 settings: Optional[SimulationSettings] = None,
                 seed: Optional[int] = None, rng=None):
        self.config = config if config else DEFAULT_CONFIG
        self.config.validate()
        self.settings = settings if settings else SimulationSettings.baseline()
        self._seed = seed
        self.rng = rng if rng is not None else random.Random(seed)
        self._lines = []

        self.gs = self._build_state()

    # ==================== Setup ====================

    def _build_state(self) -> GameState:
        cfg = self.config
        gs = GameState(
            year=cfg.start_year,
            quarter=0,
            cash=cfg.starting_cash,
            cash_trough=cfg.starting_cash,
            aggregate_cash_history=History(cfg.history_length, cfg.legacy.cash_history),
            aggregate_heat_history=History(cfg.history_length, cfg.legacy.heat_history),
            game_log=deque(maxlen=cfg.log_length),
        )
        gs.sites = self._generate_sites()
        gs.doublets = [self._legacy_doublet()]
        gs.next_doublet_id = 1
        gs.reason = f"{gs.year} {QUARTER_NAMES[0]}: Game started."
        gs.game_log.append(gs.reason)
        return gs

    def _generate_sites(self) -> List[Site]:
        cfg = self.config
        sites = []
        for i in range(cfg.site_count):
            suffix = str(i // len(SITE_LETTERS)) if i >= len(SITE_LETTERS) else ""
            sites.append(Site(
                id=i,
                name=f"Site {SITE_LETTERS[i % len(SITE_LETTERS)]}{suffix}",
                true_temp=float(self.rng.randint(cfg.site_temp_range[0], cfg.site_temp_range[1] - 1)),
                true_capacity=self.rng.uniform(*cfg.site_capacity_range),
                true_drilling_cost=float(self.rng.randint(cfg.drilling_cost_range[0], cfg.drilling_cost_range[1] - 1)),
                true_construction_cost=float(self.rng.randint(cfg.construction_cost_range[0], cfg.construction_cost_range[1] - 1)),
            ))
        return sites

    def _legacy_doublet(self) -> Doublet:
        cfg = self.config
        legacy = cfg.legacy
        return Doublet(
            id=0,
            site_id=None,
            name=legacy.name,
            initial_temp=legacy.initial_temp,
            current_temp=legacy.current_temp,
            flow_rate=legacy.flow_rate,
            thermal_capacity=legacy.thermal_capacity,
            year_built=legacy.year_built,
            temp_history=History(cfg.history_length, legacy.temp_history),
            cash_history=History(cfg.history_length, legacy.cash_history),
            heat_history=History(cfg.history_length, legacy.heat_history),
        )

    # ==================== Log & Results ====================

    def _stamp(self, msg: str) -> str:
        return f"{self.gs.year} {QUARTER_NAMES[self.gs.quarter]}: {msg}"

    def _log(self, msg: str):
        line = self._stamp(msg)
        self.gs.game_log.append(line)
        self.gs.reason = line
        self._lines.append(line)

    def _accept(self) -> ActionResult:
        self.gs.version += 1
        lines, self._lines = self._lines, []
        return ActionResult(log=lines)

    def _reject(self, rejection: Rejection, msg: str) -> ActionResult:
        line = self._stamp(msg)
        self.gs.reason = line
        lines, self._lines = self._lines + [line], []
        logger.debug("Rejected (%s): %s", rejection.name, msg)
        return ActionResult(rejection=rejection, log=lines)

    # ==================== Queries ====================

    def find_site(self, site_id: int) -> Optional[Site]:
        for site in self.gs.sites:
            if site.id == site_id:
                return site
        return None

    def find_doublet(self, doublet_id: int) -> Optional[Doublet]:
        for d in self.gs.doublets:
            if d.id == doublet_id:
                return d
        return None

    def active_doublets(self) -> List[Doublet]:
        return [d for d in self.gs.doublets if not d.abandoned]

    def active_count(self) -> int:
        """Doublets in service plus sites being built (counts against capacity)"""
        building = sum(1 for s in self.gs.sites if s.status is SiteStatus.UNDER_CONSTRUCTION)
        return len(self.active_doublets()) + building

    def holding_cost_per_quarter(self) -> float:
        secured = sum(1 for s in self.gs.sites if s.status is SiteStatus.SECURED)
        return secured * self.config.holding_cost_per_year / 4

    def projected_quarterly_net(self, doublet: Doublet) -> float:
        """Season-averaged quarterly net cash at the current temperature"""
        cfg = self.config
        gs = self.gs
        revenue = sum(quarterly_revenue(doublet, q, gs.revenue_multiplier, cfg) for q in range(4)) / 4
        return revenue - quarterly_operating_cost(doublet, gs.operating_cost_multiplier, cfg)

    def tick_interval_ms(self) -> int:
        return self.config.tick_interval_ms(self.gs.speed.value)

    # ==================== Snapshots ====================

    def snapshot(self) -> Snapshot:
        rng_state = self.rng.getstate() if hasattr(self.rng, "getstate") else None
        return Snapshot(state=copy.deepcopy(self.gs), rng_state=rng_state)

    def restore(self, snap: Snapshot):
        self.gs = copy.deepcopy(snap.state)
        if snap.rng_state is not None and hasattr(self.rng, "setstate"):
            self.rng.setstate(snap.rng_state)
        self._lines = []

    # ==================== Site Lifecycle ====================

    def investigate(self, site_id: int, level: int) -> ActionResult:
        """Survey a site, narrowing the disclosed temperature (and cost) range"""
        gs = self.gs
        cfg = self.config
        if gs.game_over:
            return self._reject(Rejection.GAME_OVER, "Game is over.")
        site = self.find_site(site_id)
        if site is None:
            return self._reject(Rejection.NOT_FOUND, f"No site with id {site_id}.")
        if level not in cfg.investigation_costs:
            return self._reject(Rejection.INVALID_ARGUMENT, f"Investigation level must be 1-3, got {level}.")
        if site.status not in (SiteStatus.AVAILABLE, SiteStatus.SECURED):
            return self._reject(Rejection.INVALID_STATE, f"{site.name} can no longer be investigated.")
        if site.investigated >= level:
            return self._reject(Rejection.INVALID_STATE, f"{site.name} already investigated to level {site.investigated}.")

        cost = cfg.investigation_costs[level]
        if gs.cash < cost:
            return self._reject(Rejection.INSUFFICIENT_FUNDS, f"Not enough cash to investigate {site.name} (need {money(cost)}).")

        site.investigated = level

        if level >= 3:
            site.revealed_temp = Range(site.true_temp, site.true_temp)
        else:
            variance = cfg.temp_variance_base - level * cfg.temp_variance_step
            lo, hi = cfg.revealed_temp_bounds
            site.revealed_temp = Range(max(lo, site.true_temp - variance), min(hi, site.true_temp + variance))

        if level >= 3:
            site.revealed_drilling_cost = Range(site.true_drilling_cost, site.true_drilling_cost)
        elif level >= 2:
            cv = cfg.drilling_cost_variance_base - level
            site.revealed_drilling_cost = Range(
                max(cfg.min_revealed_drilling_cost, site.true_drilling_cost - cv),
                site.true_drilling_cost + cv,
            )

        gs.cash -= cost
        self._log(f"Investigated {site.name} (Level {level})")
        return self._accept()

    def secure(self, site_id: int) -> ActionResult:
        """Lock a site away from competitors; accrues holding cost until drilled"""
        gs = self.gs
        cfg = self.config
        if gs.game_over:
            return self._reject(Rejection.GAME_OVER, "Game is over.")
        site = self.find_site(site_id)
        if site is None:
            return self._reject(Rejection.NOT_FOUND, f"No site with id {site_id}.")
        if site.status is not SiteStatus.AVAILABLE:
            return self._reject(Rejection.INVALID_STATE, f"{site.name} cannot be secured ({site.status.value}).")
        if gs.cash < cfg.secure_cost:
            return self._reject(Rejection.INSUFFICIENT_FUNDS, f"Not enough cash to secure {site.name} (need {money(cfg.secure_cost)}).")

        site.status = SiteStatus.SECURED
        gs.cash -= cfg.secure_cost
        self._log(f"Secured {site.name}")
        return self._accept()

    def start_development(self, site_id: int, flow_rate: float) -> ActionResult:
        """Drill a secured site; a failed well still costs the drilling budget"""
        gs = self.gs
        cfg = self.config
        if gs.game_over:
            return self._reject(Rejection.GAME_OVER, "Game is over.")
        site = self.find_site(site_id)
        if site is None:
            return self._reject(Rejection.NOT_FOUND, f"No site with id {site_id}.")
        if not cfg.min_flow_rate <= flow_rate <= cfg.max_flow_rate:
            return self._reject(
                Rejection.INVALID_ARGUMENT,
                f"Flow rate must be {cfg.min_flow_rate:.0f}-{cfg.max_flow_rate:.0f} kg/s, got {flow_rate}.",
            )
        if site.status is not SiteStatus.SECURED:
            return self._reject(Rejection.INVALID_STATE, f"{site.name} must be secured before drilling ({site.status.value}).")
        if self.active_count() >= cfg.max_doublets:
            return self._reject(Rejection.CAPACITY_EXCEEDED, f"Portfolio is full ({cfg.max_doublets} doublets).")
        if gs.cash < site.true_drilling_cost:
            return self._reject(
                Rejection.INSUFFICIENT_FUNDS,
                f"Not enough cash to drill {site.name} (need {money(site.true_drilling_cost)}).",
            )

        gs.cash -= site.true_drilling_cost

        if self.rng.random() < cfg.drilling_failure_rate:
            site.status = SiteStatus.DRILLING_FAILED
            gs.drilling_failures += 1
            self._log(f"DRILLING FAILED at {site.name}!")
            return self._accept()

        site.status = SiteStatus.UNDER_CONSTRUCTION
        site.completion_year = gs.year + cfg.construction_delay_years
        site.planned_flow_rate = float(flow_rate)
        self._log(f"Started drilling {site.name}")
        return self._accept()

    def _complete_construction(self):
        """Commission every due build the portfolio can pay for"""
        gs = self.gs
        cfg = self.config
        for site in gs.sites:
            if site.status is not SiteStatus.UNDER_CONSTRUCTION or site.completion_year > gs.year:
                continue
            if gs.cash < site.true_construction_cost:
                logger.debug("Completion of %s deferred: cash %.2f < %.2f",
                             site.name, gs.cash, site.true_construction_cost)
                continue

            gs.cash -= site.true_construction_cost
            gs.doublets.append(Doublet(
                id=gs.next_doublet_id,
                site_id=site.id,
                name=site.name,
                initial_temp=site.true_temp,
                current_temp=site.true_temp,
                flow_rate=site.planned_flow_rate,
                thermal_capacity=site.true_capacity,
                year_built=gs.year,
                temp_history=History(cfg.history_length, [(gs.year, site.true_temp)]),
                cash_history=History(cfg.history_length),
                heat_history=History(cfg.history_length),
            ))
            gs.next_doublet_id += 1
            site.status = SiteStatus.OPERATING
            self._log(f"{site.name} is now operational!")

    # ==================== Doublet Portfolio ====================

    def abandon(self, doublet_id: int) -> ActionResult:
        """Permanently take a doublet out of service"""
        gs = self.gs
        if gs.game_over:
            return self._reject(Rejection.GAME_OVER, "Game is over.")
        d = self.find_doublet(doublet_id)
        if d is None:
            return self._reject(Rejection.NOT_FOUND, f"No doublet with id {doublet_id}.")
        if d.abandoned:
            return self._reject(Rejection.INVALID_STATE, f"{d.name} is already abandoned.")

        d.abandoned = True
        self._log(f"Abandoned {d.name}")
        return self._accept()

    def _update_doublets(self) -> Tuple[float, float]:
        """Run one quarter of the economic model; returns (net cash, heat GWh)"""
        gs = self.gs
        cfg = self.config
        net_total = 0.0
        heat_total = 0.0
        for d in gs.doublets:
            if d.abandoned:
                continue
            heat = quarterly_heat(d, cfg)
            revenue = quarterly_revenue(d, gs.quarter, gs.revenue_multiplier, cfg)
            cost = quarterly_operating_cost(d, gs.operating_cost_multiplier, cfg)
            net = revenue - cost

            d.current_temp = decline_temperature(d, self.rng, cfg)
            d.current_year_cash += net
            d.current_year_heat += heat

            net_total += net
            heat_total += heat
        return net_total, heat_total

    # ==================== Events ====================

    def _roll_event(self) -> bool:
        """Scan the catalog once; the first successful draw becomes pending"""
        gs = self.gs
        if gs.pending_event is not None or not self.settings.events_enabled:
            return False

        # Later candidates are not drawn once one fires, so simultaneous
        # qualifying events collapse to the first in catalog order.
        for ev in self.config.events:
            if self.rng.random() < ev.probability * self.settings.event_frequency_mult:
                gs.pending_event = ev
                gs.speed = Speed.PAUSED
                gs.event_history.append(ev.id)
                self._log(f"EVENT: {ev.name} - {ev.description}")
                return True
        return False

    def resolve_event(self, choice_index: int) -> ActionResult:
        """Apply one choice of the pending event and clear it"""
        gs = self.gs
        ev = gs.pending_event
        if ev is None:
            return self._reject(Rejection.NO_PENDING_EVENT, "No event to resolve.")
        if not 0 <= choice_index < len(ev.choices):
            return self._reject(Rejection.INVALID_ARGUMENT, f"{ev.name} has no choice {choice_index}.")

        choice = ev.choices[choice_index]
        if not choice.affordable(gs.cash):
            return self._reject(
                Rejection.INSUFFICIENT_FUNDS,
                f"Not enough cash for '{choice.text}' (need {money(choice.cost)}).",
            )

        gs.cash -= choice.cost
        if choice.effect is EffectKind.SCALE_REVENUE:
            gs.revenue_multiplier *= choice.value
        elif choice.effect is EffectKind.SCALE_OPERATING_COST:
            gs.operating_cost_multiplier *= choice.value
        elif choice.effect is EffectKind.GRANT:
            gs.cash += choice.value

        gs.pending_event = None
        self._log(f"{ev.name} -> {choice.text}")
        return self._accept()

    # ==================== Competitors ====================

    def _competitor_action(self):
        """Each open site may be snapped up this quarter"""
        gs = self.gs
        if not self.settings.competitors_enabled:
            return
        chance = self.config.competitor_take_chance / 4 * self.settings.competitor_frequency_mult
        for site in gs.sites:
            if site.status is not SiteStatus.AVAILABLE:
                continue
            if self.rng.random() < chance:
                site.status = SiteStatus.TAKEN_BY_COMPETITOR
                gs.sites_lost += 1
                self._log(f"Competitor has taken {site.name}!")

    # ==================== Tick Scheduler ====================

    def set_speed(self, speed: Speed) -> ActionResult:
        gs = self.gs
        if speed is not Speed.PAUSED:
            if gs.game_over:
                return self._reject(Rejection.GAME_OVER, "Game is over.")
            if gs.pending_event is not None:
                return self._reject(Rejection.EVENT_PENDING, f"Resolve {gs.pending_event.name} first.")
        gs.speed = speed
        return self._accept()

    def advance_quarter(self) -> ActionResult:
        """Advance game state by one quarter"""
        gs = self.gs
        cfg = self.config
        if gs.game_over:
            return self._reject(Rejection.GAME_OVER, "Game is over.")
        if gs.pending_event is not None:
            return self._reject(Rejection.EVENT_PENDING, f"Resolve {gs.pending_event.name} first.")

        # --- EVENTS ---
        if self._roll_event():
            return self._accept()

        # --- COMPETITORS ---
        self._competitor_action()

        # --- OPERATIONS ---
        quarterly_net, heat = self._update_doublets()

        # --- HOLDING COSTS ---
        quarterly_net -= self.holding_cost_per_quarter()

        # --- APPLY CASH FLOWS ---
        gs.cash += quarterly_net
        gs.last_net_cf = quarterly_net
        gs.total_heat_delivered += heat
        gs.year_net_cash += quarterly_net
        gs.year_heat += heat
        if gs.cash < gs.cash_trough:
            gs.cash_trough = gs.cash

        logger.debug("%d %s: net %.3f, heat %.1f GWh, cash %.3f",
                     gs.year, QUARTER_NAMES[gs.quarter], quarterly_net, heat, gs.cash)

        # --- CALENDAR ---
        if gs.quarter == 3:
            self._close_year()
        else:
            gs.quarter += 1

        # --- CONSTRUCTION ---
        self._complete_construction()

        # --- END CONDITIONS ---
        self._check_game_over()
        return self._accept()

    def _close_year(self):
        """Archive the year's series and roll the calendar"""
        gs = self.gs
        gs.aggregate_cash_history.append(gs.year, gs.year_net_cash)
        gs.aggregate_heat_history.append(gs.year, gs.year_heat)
        for d in gs.doublets:
            if d.abandoned:
                continue
            d.temp_history.append(gs.year, d.current_temp)
            d.cash_history.append(gs.year, d.current_year_cash)
            d.heat_history.append(gs.year, d.current_year_heat)
            d.current_year_cash = 0.0
            d.current_year_heat = 0.0
        gs.year_net_cash = 0.0
        gs.year_heat = 0.0
        gs.year += 1
        gs.quarter = 0

    # ==================== Game End ====================

    def _check_game_over(self):
        gs = self.gs
        if gs.cash < self.config.bankruptcy_threshold:
            self._end_game(GameEndReason.BANKRUPTCY, "GAME OVER: Bankruptcy!")
            return

        producing = any(heat_output(d, self.config) > 0 for d in self.active_doublets())
        available = any(s.status in DEVELOPABLE_STATUSES for s in gs.sites)
        if not producing and not available:
            self._end_game(GameEndReason.EXHAUSTION, "GAME OVER: All resources exhausted!")

    def _end_game(self, reason: GameEndReason, msg: str):
        gs = self.gs
        gs.game_over = True
        gs.end_reason = reason
        gs.speed = Speed.PAUSED
        self._log(msg)
        logger.info("Game ended in %d %s: %s (cash %.2f)",
                    gs.year, QUARTER_NAMES[gs.quarter], reason.value, gs.cash)

    # ==================== AI Decision Making ====================

    def ai_decide_action(self, reserve: float = 3.0):
        """Autopilot: take the actions a cautious operator would this quarter"""
        gs = self.gs
        cfg = self.config
        if gs.game_over:
            return

        if gs.pending_event is not None:
            self._ai_resolve_event(reserve)
            return

        # Retire assets that lose money or no longer produce
        for d in self.active_doublets():
            if heat_output(d, cfg) <= 0 or self.projected_quarterly_net(d) < 0:
                self.abandon(d.id)

        # Drill secured sites
        for site in gs.sites:
            if site.status is not SiteStatus.SECURED:
                continue
            if self.active_count() >= cfg.max_doublets:
                break
            if gs.cash >= site.true_drilling_cost + reserve:
                self.start_development(site.id, cfg.reference_flow)

        # Secure the hottest well-surveyed site
        candidates = [
            s for s in gs.sites
            if s.status is SiteStatus.AVAILABLE and s.investigated >= 2 and s.revealed_temp.min >= 100
        ]
        if candidates:
            best = max(candidates, key=lambda s: s.revealed_temp.min)
            drill_estimate = best.revealed_drilling_cost.max if best.revealed_drilling_cost else cfg.drilling_cost_range[1]
            if gs.cash >= cfg.secure_cost + drill_estimate + reserve:
                self.secure(best.id)
                return

        # Survey: deepen promising sites first, then scout new ones
        for site in gs.sites:
            if site.status is not SiteStatus.AVAILABLE:
                continue
            if site.investigated == 1 and site.revealed_temp.max >= 110:
                if gs.cash >= cfg.investigation_costs[2] + reserve * 2:
                    self.investigate(site.id, 2)
                return
        for site in gs.sites:
            if site.status is SiteStatus.AVAILABLE and site.investigated == 0:
                if gs.cash >= cfg.investigation_costs[1] + reserve * 2:
                    self.investigate(site.id, 1)
                return

    def _ai_resolve_event(self, reserve: float):
        gs = self.gs
        choices = gs.pending_event.choices
        affordable = [i for i, c in enumerate(choices) if c.affordable(gs.cash)]
        if not affordable:
            return

        grants = [i for i in affordable if choices[i].effect is EffectKind.GRANT]
        if grants:
            self.resolve_event(grants[0])
            return

        # Paying to avoid a permanent penalty is worth it when cash allows
        paid = [
            i for i in affordable
            if choices[i].effect is EffectKind.NONE and choices[i].cost > 0
            and gs.cash - choices[i].cost >= reserve
        ]
        if paid:
            self.resolve_event(min(paid, key=lambda i: choices[i].cost))
            return

        self.resolve_event(min(affordable, key=lambda i: choices[i].cost))

    # ==================== Reporting ====================

    def portfolio_summary(self) -> Dict:
        gs = self.gs
        cfg = self.config
        active = self.active_doublets()
        return {
            'active_doublets': len(active),
            'under_construction': sum(1 for s in gs.sites if s.status is SiteStatus.UNDER_CONSTRUCTION),
            'capacity_used': self.active_count(),
            'capacity': cfg.max_doublets,
            'available_sites': sum(1 for s in gs.sites if s.status in DEVELOPABLE_STATUSES),
            'heat_mw': sum(heat_output(d, cfg) for d in active),
            'holding_cost_per_year': self.holding_cost_per_quarter() * 4,
            'projected_quarterly_net': sum(self.projected_quarterly_net(d) for d in active) - self.holding_cost_per_quarter(),
            'seasonal_multiplier': cfg.seasonal_multipliers[gs.quarter],
        }

    def quarters_elapsed(self) -> int:
        return (self.gs.year - self.config.start_year) * 4 + self.gs.quarter


# ==================== Public API ====================

def initialize(seed: Optional[int] = None, config: Optional[GameConfig] = None,
               settings: Optional[SimulationSettings] = None) -> Engine:
    """Create a new game instance

    Args:
        seed: Random seed for reproducibility
        config: Game constants (defaults to DEFAULT_CONFIG)
        settings: Simulation settings (events, competitors)

    Returns:
        Engine instance ready to play
    """
    return Engine(config=config, settings=settings, seed=seed)


new_game = initialize


def reset_game(engine: Engine, seed: Optional[int] = None) -> Engine:
    """Start over with the same configuration (the only exit from game over)"""
    return Engine(config=engine.config, settings=engine.settings, seed=seed)


def advance_quarter(engine: Engine) -> Tuple[Engine, ActionResult]:
    """Advance game by one quarter

    Returns:
        (engine, result) - the same engine object, mutated, and what happened
    """
    return engine, engine.advance_quarter()


def investigate(engine: Engine, site_id: int, level: int) -> Tuple[Engine, ActionResult]:
    return engine, engine.investigate(site_id, level)


def secure(engine: Engine, site_id: int) -> Tuple[Engine, ActionResult]:
    return engine, engine.secure(site_id)


def start_development(engine: Engine, site_id: int, flow_rate: float) -> Tuple[Engine, ActionResult]:
    return engine, engine.start_development(site_id, flow_rate)


def abandon(engine: Engine, doublet_id: int) -> Tuple[Engine, ActionResult]:
    return engine, engine.abandon(doublet_id)


def resolve_event(engine: Engine, choice_index: int) -> Tuple[Engine, ActionResult]:
    return engine, engine.resolve_event(choice_index)


def set_speed(engine: Engine, speed: Speed) -> Tuple[Engine, ActionResult]:
    return engine, engine.set_speed(speed)


def is_finished(engine: Engine) -> bool:
    return engine.gs.game_over


def portfolio_summary(engine: Engine) -> Dict:
    return engine.portfolio_summary()


def state_dict(engine: Engine) -> Dict:
    """Plain, JSON-friendly view of the state for presentation and comparison"""
    gs = engine.gs

    def rng(r):
        return None if r is None else [r.min, r.max]

    return {
        'version': gs.version,
        'year': gs.year,
        'quarter': gs.quarter,
        'cash': gs.cash,
        'total_heat_delivered': gs.total_heat_delivered,
        'revenue_multiplier': gs.revenue_multiplier,
        'operating_cost_multiplier': gs.operating_cost_multiplier,
        'pending_event': gs.pending_event.id if gs.pending_event else None,
        'event_history': list(gs.event_history),
        'speed': gs.speed.name,
        'game_over': gs.game_over,
        'end_reason': gs.end_reason.value if gs.end_reason else None,
        'log': list(gs.game_log),
        'aggregate_cash_history': gs.aggregate_cash_history.to_list(),
        'aggregate_heat_history': gs.aggregate_heat_history.to_list(),
        'sites': [
            {
                'id': s.id,
                'name': s.name,
                'status': s.status.value,
                'investigated': s.investigated,
                'revealed_temp': rng(s.revealed_temp),
                'revealed_drilling_cost': rng(s.revealed_drilling_cost),
                'completion_year': s.completion_year,
                'planned_flow_rate': s.planned_flow_rate,
            }
            for s in gs.sites
        ],
        'doublets': [
            {
                'id': d.id,
                'site_id': d.site_id,
                'name': d.name,
                'current_temp': d.current_temp,
                'initial_temp': d.initial_temp,
                'flow_rate': d.flow_rate,
                'thermal_capacity': d.thermal_capacity,
                'year_built': d.year_built,
                'abandoned': d.abandoned,
                'current_year_cash': d.current_year_cash,
                'current_year_heat': d.current_year_heat,
                'temp_history': d.temp_history.to_list(),
                'cash_history': d.cash_history.to_list(),
                'heat_history': d.heat_history.to_list(),
            }
            for d in gs.doublets
        ],
    }


def get_results(engine: Engine) -> dict:
    """Summary of a game (finished or not)"""
    gs = engine.gs
    return {
        'game_over': gs.game_over,
        'end_reason': gs.end_reason.value if gs.end_reason else None,
        'year': gs.year,
        'quarter': gs.quarter,
        'quarters': engine.quarters_elapsed(),
        'final_cash': gs.cash,
        'cash_trough': gs.cash_trough,
        'total_heat': gs.total_heat_delivered,
        'doublets_built': len(gs.doublets) - 1,
        'active_doublets': len(engine.active_doublets()),
        'drilling_failures': gs.drilling_failures,
        'sites_lost': gs.sites_lost,
        'events': len(gs.event_history),
        'revenue_multiplier': gs.revenue_multiplier,
        'operating_cost_multiplier': gs.operating_cost_multiplier,
        'reason': gs.reason,
    }


def run_one_simulation(seed: int, settings: Optional[SimulationSettings] = None,
                       config: Optional[GameConfig] = None, max_quarters: int = 80) -> dict:
    """Run a single headless game under the autopilot

    Args:
        seed: Random seed for reproducibility
        settings: Optional simulation settings
        config: Optional game constants
        max_quarters: Stop after this many quarters if the game is still running

    Returns:
        Dictionary with simulation results
    """
    engine = Engine(config=config, settings=settings, seed=seed)

    # Events do not consume quarters, so bound the loop separately
    for _ in range(max_quarters * 4):
        if engine.gs.game_over or engine.quarters_elapsed() >= max_quarters:
            break
        engine.ai_decide_action()
        result = engine.advance_quarter()
        if result.rejection is Rejection.EVENT_PENDING:
            engine.ai_decide_action()
            if engine.gs.pending_event is not None:
                logger.warning("Seed %s: autopilot cannot resolve %s", seed, engine.gs.pending_event.id)
                break

    results = get_results(engine)
    results['seed'] = seed
    results['survived'] = not engine.gs.game_over
    return results


def run_monte_carlo(n: int, settings: Optional[SimulationSettings] = None,
                    config: Optional[GameConfig] = None, seed_base: int = 0,
                    max_quarters: int = 80) -> dict:
    """Run Monte Carlo simulation

    Args:
        n: Number of simulations to run
        settings: Optional simulation settings
        config: Optional game constants
        seed_base: Seed of the first run; run i uses seed_base + i

    Returns:
        Dictionary with aggregate statistics
    """
    results = [
        run_one_simulation(seed_base + i, settings=settings, config=config, max_quarters=max_quarters)
        for i in range(n)
    ]

    survivors = [r for r in results if r['survived']]
    final_cash = [r['final_cash'] for r in results]
    heat = [r['total_heat'] for r in results]

    return {
        'n': len(results),
        'survival_rate': len(survivors) / len(results) if results else 0.0,
        'median_final_cash': float(np.median(final_cash)) if final_cash else 0.0,
        'median_total_heat': float(np.median(heat)) if heat else 0.0,
        'results': results,
    }
