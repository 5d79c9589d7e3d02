import pytest

from conftest import FixedRandom, secure_site
from geothermal_config import GameConfig
from geothermal_engine import (
    Engine,
    Range,
    Rejection,
    SimulationSettings,
    SiteStatus,
    investigate,
)


def test_investigation_levels_narrow_ranges(engine):
    site = engine.find_site(0)
    t = site.true_temp

    assert engine.investigate(0, 1).accepted
    assert site.revealed_temp == Range(max(60, t - 15), min(180, t + 15))
    assert site.revealed_drilling_cost is None
    assert engine.gs.cash == pytest.approx(14.5)

    assert engine.investigate(0, 2).accepted
    assert site.revealed_temp == Range(max(60, t - 10), min(180, t + 10))
    c = site.true_drilling_cost
    assert site.revealed_drilling_cost == Range(max(3, c - 1), c + 1)
    assert engine.gs.cash == pytest.approx(13.0)

    assert engine.investigate(0, 3).accepted
    assert site.revealed_temp.exact and site.revealed_temp.min == t
    assert site.revealed_drilling_cost == Range(c, c)
    assert engine.gs.cash == pytest.approx(9.0)


def test_investigate_is_idempotent(engine):
    engine.investigate(3, 2)
    site = engine.find_site(3)
    cash = engine.gs.cash
    temp, cost = site.revealed_temp, site.revealed_drilling_cost
    version = engine.gs.version

    for level in (2, 1):
        result = engine.investigate(3, level)
        assert result.rejection is Rejection.INVALID_STATE

    assert engine.gs.cash == cash
    assert site.revealed_temp == temp
    assert site.revealed_drilling_cost == cost
    assert engine.gs.version == version


def test_investigate_can_skip_to_exact_survey(engine):
    assert engine.investigate(1, 3).accepted
    assert engine.gs.cash == pytest.approx(11.0)
    assert engine.find_site(1).investigated == 3


def test_investigate_rejections(engine):
    engine.gs.cash = 0.4
    assert engine.investigate(0, 1).rejection is Rejection.INSUFFICIENT_FUNDS
    assert engine.find_site(0).investigated == 0

    assert engine.investigate(99, 1).rejection is Rejection.NOT_FOUND
    assert engine.investigate(0, 4).rejection is Rejection.INVALID_ARGUMENT
    assert engine.investigate(0, 0).rejection is Rejection.INVALID_ARGUMENT

    engine.find_site(2).status = SiteStatus.TAKEN_BY_COMPETITOR
    engine.gs.cash = 10.0
    assert engine.investigate(2, 1).rejection is Rejection.INVALID_STATE


def test_public_operation_returns_engine_and_log(engine):
    eng, result = investigate(engine, 0, 1)
    assert eng is engine
    assert result.accepted
    assert result.log == ["2025 Q1: Investigated Site A (Level 1)"]
    assert engine.gs.game_log[-1] == result.log[0]


def test_secure_site(engine):
    assert engine.secure(0).accepted
    assert engine.find_site(0).status is SiteStatus.SECURED
    assert engine.gs.cash == pytest.approx(13.0)

    assert engine.secure(0).rejection is Rejection.INVALID_STATE

    engine.gs.cash = 1.0
    assert engine.secure(1).rejection is Rejection.INSUFFICIENT_FUNDS
    assert engine.find_site(1).status is SiteStatus.AVAILABLE


def test_drilling_requires_secured_site(engine):
    engine.gs.cash = 100.0
    assert engine.start_development(0, 50).rejection is Rejection.INVALID_STATE
    secure_site(engine, 0)
    assert engine.start_development(0, 5).rejection is Rejection.INVALID_ARGUMENT
    assert engine.start_development(0, 150).rejection is Rejection.INVALID_ARGUMENT


def test_drilling_needs_cash_for_true_cost(engine):
    site = secure_site(engine, 0)
    engine.gs.cash = site.true_drilling_cost - 0.01
    assert engine.start_development(0, 50).rejection is Rejection.INSUFFICIENT_FUNDS
    assert site.status is SiteStatus.SECURED


def test_capacity_limit_counts_legacy_and_builds():
    eng = Engine(seed=5, config=GameConfig(max_doublets=2))
    eng.gs.cash = 100.0
    eng.rng = FixedRandom(0.99)
    secure_site(eng, 0)
    secure_site(eng, 1)

    assert eng.start_development(0, 50).accepted
    assert eng.active_count() == 2
    assert eng.start_development(1, 50).rejection is Rejection.CAPACITY_EXCEEDED


def test_drilling_failure_is_terminal_and_costs_once(quiet_engine):
    eng = quiet_engine
    site = secure_site(eng, 0)
    eng.gs.cash = 50.0
    eng.rng = FixedRandom(0.0)

    result = eng.start_development(0, 60)

    assert result.accepted
    assert "DRILLING FAILED" in result.log[0]
    assert eng.gs.cash == pytest.approx(50.0 - site.true_drilling_cost)
    assert site.status is SiteStatus.DRILLING_FAILED
    assert site.is_developed
    assert len(eng.gs.doublets) == 1
    assert eng.gs.drilling_failures == 1

    cash = eng.gs.cash
    assert eng.start_development(0, 60).rejection is Rejection.INVALID_STATE
    assert eng.secure(0).rejection is Rejection.INVALID_STATE
    assert eng.investigate(0, 1).rejection is Rejection.INVALID_STATE
    assert eng.gs.cash == cash

    for _ in range(12):
        eng.advance_quarter()
    assert site.status is SiteStatus.DRILLING_FAILED
    assert len(eng.gs.doublets) == 1


def test_successful_drilling_completes_after_delay(quiet_engine):
    eng = quiet_engine
    site = secure_site(eng, 0)
    eng.gs.cash = 50.0
    eng.rng = FixedRandom(0.99)

    assert eng.start_development(0, 70).accepted
    assert site.status is SiteStatus.UNDER_CONSTRUCTION
    assert site.completion_year == 2027
    assert site.planned_flow_rate == 70

    for _ in range(7):
        eng.advance_quarter()
    assert (eng.gs.year, eng.gs.quarter) == (2026, 3)
    assert site.status is SiteStatus.UNDER_CONSTRUCTION

    result = eng.advance_quarter()
    assert eng.gs.year == 2027
    assert site.status is SiteStatus.OPERATING
    assert any("now operational" in line for line in result.log)

    new = eng.find_doublet(1)
    assert new.site_id == site.id
    assert new.current_temp == site.true_temp
    assert new.flow_rate == 70
    assert new.thermal_capacity == site.true_capacity
    assert new.year_built == 2027
    assert new.temp_history.to_list() == [(2027, site.true_temp)]
    assert eng.gs.next_doublet_id == 2


def test_construction_waits_for_funds(quiet_engine):
    eng = quiet_engine
    eng.abandon(0)
    site = secure_site(eng, 0)
    eng.gs.cash = 50.0
    eng.rng = FixedRandom(0.99)
    eng.start_development(0, 50)

    for _ in range(7):
        eng.advance_quarter()
    eng.gs.cash = site.true_construction_cost - 0.5

    for _ in range(3):
        eng.advance_quarter()
        assert site.status is SiteStatus.UNDER_CONSTRUCTION
        assert eng.gs.cash == pytest.approx(site.true_construction_cost - 0.5)
        assert not eng.gs.game_over

    eng.gs.cash = site.true_construction_cost + 1.0
    eng.advance_quarter()
    assert site.status is SiteStatus.OPERATING
    assert eng.gs.cash == pytest.approx(1.0)
    assert len(eng.active_doublets()) == 1


def test_abandon_is_irreversible(engine):
    assert engine.abandon(0).accepted
    assert engine.find_doublet(0).abandoned
    assert engine.abandon(0).rejection is Rejection.INVALID_STATE
    assert engine.abandon(42).rejection is Rejection.NOT_FOUND


def test_competitors_only_take_open_sites():
    eng = Engine(seed=3, settings=SimulationSettings(events_enabled=False))
    secure_site(eng, 0)
    eng.find_site(1).status = SiteStatus.OPERATING
    eng.rng = FixedRandom(0.0)

    result = eng.advance_quarter()

    assert eng.find_site(0).status is SiteStatus.SECURED
    assert eng.find_site(1).status is SiteStatus.OPERATING
    taken = [s for s in eng.gs.sites if s.status is SiteStatus.TAKEN_BY_COMPETITOR]
    assert len(taken) == 8
    assert eng.gs.sites_lost == 8
    assert sum("Competitor has taken" in line for line in result.log) == 8
    assert eng.secure(2).rejection is Rejection.INVALID_STATE
