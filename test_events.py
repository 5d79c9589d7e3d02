import pytest

from conftest import FixedRandom
from geothermal_engine import (
    Engine,
    Rejection,
    SimulationSettings,
    Speed,
    make_event,
    quarterly_operating_cost,
    quarterly_revenue,
    resolve_event,
)


@pytest.fixture
def eventful():
    """Every event draw succeeds; competitors stay away"""
    eng = Engine(seed=11, settings=SimulationSettings.no_competitors())
    eng.rng = FixedRandom(0.0)
    return eng


def test_event_pauses_tick_before_any_update(eventful):
    eng = eventful
    eng.set_speed(Speed.FAST)
    temp = eng.find_doublet(0).current_temp

    result = eng.advance_quarter()

    assert result.accepted
    assert eng.gs.pending_event.id == "backlash"
    assert eng.gs.speed is Speed.PAUSED
    assert (eng.gs.year, eng.gs.quarter) == (2025, 0)
    assert eng.gs.cash == 15.0
    assert eng.find_doublet(0).current_temp == temp
    assert eng.gs.total_heat_delivered == 0.0


def test_first_matching_event_wins(eventful):
    result = eventful.advance_quarter()
    assert eventful.gs.event_history == ["backlash"]
    assert sum("EVENT:" in line for line in result.log) == 1


def test_no_tick_while_event_pending(eventful):
    eng = eventful
    eng.advance_quarter()
    version = eng.gs.version

    for _ in range(3):
        result = eng.advance_quarter()
        assert result.rejection is Rejection.EVENT_PENDING

    assert eng.gs.version == version
    assert eng.gs.quarter == 0
    assert eng.gs.event_history == ["backlash"]
    assert eng.set_speed(Speed.NORMAL).rejection is Rejection.EVENT_PENDING
    assert eng.set_speed(Speed.PAUSED).accepted


def test_accepting_penalty_scales_revenue_permanently(eventful):
    eng = eventful
    eng.advance_quarter()

    _, result = resolve_event(eng, 1)
    assert result.accepted
    assert eng.gs.pending_event is None
    assert eng.gs.revenue_multiplier == pytest.approx(0.8)
    assert eng.gs.cash == 15.0
    assert result.log == ["2025 Q1: Public Backlash -> Accept -20% revenue"]

    # next tick runs normally and prices with the reduced multiplier
    eng.rng = FixedRandom(0.99)
    d = eng.find_doublet(0)
    expected = quarterly_revenue(d, 0, 0.8) - quarterly_operating_cost(d)
    eng.advance_quarter()
    assert eng.gs.quarter == 1
    assert eng.gs.cash - 15.0 == pytest.approx(expected)


def test_paying_choice_deducts_cost(eventful):
    eng = eventful
    eng.advance_quarter()
    assert eng.resolve_event(0).accepted
    assert eng.gs.cash == pytest.approx(13.0)
    assert eng.gs.revenue_multiplier == 1.0


def test_unaffordable_choice_keeps_event_pending(eventful):
    eng = eventful
    eng.advance_quarter()
    eng.gs.cash = 1.0

    result = eng.resolve_event(0)

    assert result.rejection is Rejection.INSUFFICIENT_FUNDS
    assert eng.gs.pending_event.id == "backlash"
    assert eng.gs.cash == 1.0
    assert eng.resolve_event(1).accepted


def test_resolve_rejections(engine):
    assert engine.resolve_event(0).rejection is Rejection.NO_PENDING_EVENT
    engine.gs.pending_event = make_event("cost_surge")
    assert engine.resolve_event(2).rejection is Rejection.INVALID_ARGUMENT
    assert engine.resolve_event(-1).rejection is Rejection.INVALID_ARGUMENT
    assert engine.gs.pending_event is not None


def test_operating_cost_multiplier_compounds(engine):
    for _ in range(2):
        engine.gs.pending_event = make_event("cost_surge")
        assert engine.resolve_event(1).accepted
    assert engine.gs.operating_cost_multiplier == pytest.approx(1.69)


def test_grant_adds_cash(engine):
    engine.gs.pending_event = make_event("subsidy")
    assert engine.resolve_event(0).accepted
    assert engine.gs.cash == pytest.approx(20.0)

    engine.gs.pending_event = make_event("subsidy")
    assert engine.resolve_event(1).accepted
    assert engine.gs.cash == pytest.approx(20.0)


def test_events_disabled_never_fire():
    eng = Engine(seed=2, settings=SimulationSettings.calm())
    eng.rng = FixedRandom(0.0)
    eng.advance_quarter()
    assert eng.gs.pending_event is None
    assert eng.gs.quarter == 1


def test_unknown_event_id():
    with pytest.raises(KeyError):
        make_event("volcano")


def test_free_choice_open_while_cash_negative(eventful):
    eng = eventful
    eng.gs.cash = -2.0
    eng.advance_quarter()
    assert eng.gs.pending_event.id == "backlash"

    assert eng.resolve_event(0).rejection is Rejection.INSUFFICIENT_FUNDS
    assert eng.resolve_event(1).accepted
    assert eng.gs.cash == -2.0
    assert eng.gs.pending_event is None

    eng.rng = FixedRandom(0.99)
    assert eng.advance_quarter().accepted
    assert eng.gs.quarter == 1


def test_autopilot_takes_free_choice_when_broke(engine):
    engine.gs.cash = -4.0
    engine.gs.pending_event = make_event("cost_surge")

    engine.ai_decide_action()

    assert engine.gs.pending_event is None
    assert engine.gs.operating_cost_multiplier == pytest.approx(1.3)
    assert engine.gs.cash == -4.0
