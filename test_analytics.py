"""Test the analytics system with a small batch of simulations"""
import pytest

from geothermal_engine import SimulationSettings, run_monte_carlo, run_one_simulation
from run_analytics import SCENARIOS, calc_stats, compute_detailed_stats, show_simulation_results


RESULT_KEYS = {
    'seed', 'survived', 'game_over', 'end_reason', 'year', 'quarter', 'quarters',
    'final_cash', 'cash_trough', 'total_heat', 'doublets_built', 'active_doublets',
    'drilling_failures', 'sites_lost', 'events', 'reason',
}


@pytest.fixture(scope='module')
def batch():
    return [run_one_simulation(i, settings=SimulationSettings.baseline(), max_quarters=40) for i in range(10)]


def test_single_run_reports_outcome():
    result = run_one_simulation(3, max_quarters=20)
    assert RESULT_KEYS <= set(result)
    assert result['seed'] == 3
    assert result['survived'] == (not result['game_over'])
    assert result['quarters'] <= 20
    if result['game_over']:
        assert result['end_reason'] in ("Bankruptcy", "All resources exhausted")


def test_single_run_is_reproducible():
    assert run_one_simulation(42, max_quarters=30) == run_one_simulation(42, max_quarters=30)


def test_monte_carlo_aggregates(batch):
    mc = run_monte_carlo(10, settings=SimulationSettings.baseline(), max_quarters=40)
    assert mc['n'] == 10
    assert 0.0 <= mc['survival_rate'] <= 1.0
    assert [r['seed'] for r in mc['results']] == list(range(10))
    assert mc['results'] == batch


def test_detailed_stats(batch):
    stats = compute_detailed_stats(batch)
    assert stats['n'] == 10
    assert stats['survivors'] + stats['ended'] == 10
    assert stats['survival_rate'] + stats['bankruptcy_pct'] + stats['exhaustion_pct'] == pytest.approx(100.0)
    assert stats['final_cash_stats']['count'] == 10
    assert stats['final_cash_stats']['p25'] <= stats['final_cash_stats']['p75']
    assert stats['drilling_failures'] == sum(r['drilling_failures'] for r in batch)


def test_calc_stats_edge_cases():
    assert calc_stats([]) is None
    assert compute_detailed_stats([]) is None

    s = calc_stats([1.0, 2.0, 3.0, 4.0, 5.0])
    assert s['mean'] == pytest.approx(3.0)
    assert s['median'] == pytest.approx(3.0)
    assert s['skew'] == pytest.approx(0.0)
    assert s['min'] == 1.0 and s['max'] == 5.0


def test_every_scenario_runs():
    for name, preset in SCENARIOS.items():
        result = run_one_simulation(100, settings=preset(), max_quarters=12)
        assert result['quarters'] <= 12, name
        if not preset().events_enabled:
            assert result['events'] == 0


def test_chart_is_saved(batch, tmp_path):
    path = tmp_path / 'results.png'
    show_simulation_results(batch, bins=5, save_path=str(path))
    assert path.exists()
    assert path.stat().st_size > 0
