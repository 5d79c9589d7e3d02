"""Run autopilot Monte Carlo analysis from the command line"""
import logging
import os
import sys

import numpy as np
from scipy import stats

import matplotlib
if '--show-charts' not in sys.argv:
    # Use non-GUI backend for headless operation
    matplotlib.use('Agg')
import matplotlib.pyplot as plt

from geothermal_engine import SimulationSettings, run_one_simulation, GameEndReason

SCENARIOS = {
    'baseline': SimulationSettings.baseline,
    'no-events': SimulationSettings.no_events,
    'no-competitors': SimulationSettings.no_competitors,
    'calm': SimulationSettings.calm,
}


# ---------- ANALYTICS & STATISTICS ----------

def calc_stats(values):
    """Descriptive statistics for a list of numbers (None if empty)"""
    if not values:
        return None
    arr = np.array(values, dtype=float)
    return {
        'count': len(values),
        'mean': float(np.mean(arr)),
        'median': float(np.median(arr)),
        'std': float(np.std(arr)),
        'skew': float(stats.skew(arr)) if len(arr) > 2 else 0.0,
        'kurtosis': float(stats.kurtosis(arr)) if len(arr) > 3 else 0.0,
        'min': float(np.min(arr)),
        'max': float(np.max(arr)),
        'p10': float(np.percentile(arr, 10)),
        'p25': float(np.percentile(arr, 25)),
        'p50': float(np.percentile(arr, 50)),
        'p75': float(np.percentile(arr, 75)),
        'p90': float(np.percentile(arr, 90)),
    }


def compute_detailed_stats(results):
    """Compute comprehensive statistics from simulation results"""
    if not results:
        return None

    n = len(results)
    survivors = [r for r in results if r['survived']]
    ended = [r for r in results if not r['survived']]

    end_reasons = {}
    for r in ended:
        reason = r.get('end_reason') or 'Unknown'
        end_reasons[reason] = end_reasons.get(reason, 0) + 1

    return {
        'n': n,
        'survivors': len(survivors),
        'ended': len(ended),
        'survival_rate': len(survivors) / n * 100,
        'bankruptcy_pct': end_reasons.get(GameEndReason.BANKRUPTCY.value, 0) / n * 100,
        'exhaustion_pct': end_reasons.get(GameEndReason.EXHAUSTION.value, 0) / n * 100,
        'end_reasons': end_reasons,
        'final_cash_stats': calc_stats([r['final_cash'] for r in results]),
        'cash_trough_stats': calc_stats([r['cash_trough'] for r in results]),
        'total_heat_stats': calc_stats([r['total_heat'] for r in results]),
        'quarters_stats': calc_stats([r['quarters'] for r in results]),
        'doublets_built_stats': calc_stats([r['doublets_built'] for r in results]),
        'drilling_failures': sum(r['drilling_failures'] for r in results),
        'sites_lost_stats': calc_stats([r['sites_lost'] for r in results]),
        'events_stats': calc_stats([r['events'] for r in results]),
    }


def run_batch(n, settings, seed_base=0, max_quarters=80):
    results = []
    for i in range(n):
        if i % 100 == 0:
            print(f"Progress: {i}/{n}")
        results.append(run_one_simulation(seed_base + i, settings=settings, max_quarters=max_quarters))
    return results


def print_report(name, stats_):
    print(f"\n{'='*80}")
    print(f"{name.upper()} RESULTS")
    print(f"{'='*80}")
    print(f"Total Runs: {stats_['n']}")
    print(f"Survival Rate: {stats_['survival_rate']:.1f}%")
    print(f"Bankruptcies: {stats_['bankruptcy_pct']:.1f}%")
    print(f"Exhaustion: {stats_['exhaustion_pct']:.1f}%")

    for label, key, fmt in [
        ("Final cash (€M)", 'final_cash_stats', "{:.1f}"),
        ("Cash trough (€M)", 'cash_trough_stats', "{:.1f}"),
        ("Heat delivered (GWh)", 'total_heat_stats', "{:.0f}"),
        ("Quarters played", 'quarters_stats', "{:.0f}"),
        ("Doublets built", 'doublets_built_stats', "{:.1f}"),
    ]:
        s = stats_[key]
        if s is None:
            continue
        print(f"\n{label}:")
        print(f"  P25: {fmt.format(s['p25'])}  P50: {fmt.format(s['p50'])}  P75: {fmt.format(s['p75'])}"
              f"  Mean: {fmt.format(s['mean'])}  Skew: {s['skew']:.2f}")

    print(f"\nDrilling failures (all runs): {stats_['drilling_failures']}")
    if stats_['end_reasons']:
        print("\nEnd Reasons:")
        for reason, count in sorted(stats_['end_reasons'].items(), key=lambda x: x[1], reverse=True):
            print(f"  {reason}: {count} ({count / stats_['n'] * 100:.1f}%)")


def show_simulation_results(results, bins=30, save_path=None):
    """Plot result distributions; save to save_path if given, else show"""
    stats_ = compute_detailed_stats(results)
    if not stats_:
        print("No results to display")
        return

    fig, axes = plt.subplots(2, 2, figsize=(14, 9))
    fig.suptitle(f'Autopilot Monte Carlo Results (n={stats_["n"]})', fontsize=16, fontweight='bold')

    panels = [
        (axes[0][0], [r['final_cash'] for r in results], 'Final Cash', '€M', '#10b981'),
        (axes[0][1], [r['total_heat'] for r in results], 'Heat Delivered', 'GWh', '#f59e0b'),
        (axes[1][0], [r['quarters'] for r in results], 'Quarters Played', 'quarters', '#3b82f6'),
        (axes[1][1], [r['doublets_built'] for r in results], 'Doublets Built', 'count', '#9b59b6'),
    ]
    for ax, values, title, unit, color in panels:
        ax.hist(values, bins=bins, color=color, edgecolor='black', alpha=0.8)
        median = float(np.median(values))
        ax.axvline(median, color='red', linestyle='--', linewidth=2, label=f'Median: {median:.1f}')
        ax.set_title(title, fontweight='bold')
        ax.set_xlabel(unit)
        ax.set_ylabel('Frequency')
        ax.legend()
        ax.grid(alpha=0.3)

    plt.tight_layout()
    if save_path:
        fig.savefig(save_path, dpi=120)
        plt.close(fig)
        print(f"Saved chart to {save_path}")
    else:
        plt.show()


if __name__ == '__main__':
    import argparse

    parser = argparse.ArgumentParser(description='Run autopilot Monte Carlo simulation with analytics')
    parser.add_argument('--sims', type=int, default=500, help='Number of simulations per scenario (default: 500)')
    parser.add_argument('--scenario', choices=sorted(SCENARIOS) + ['all'], default='baseline',
                        help='Settings preset to run (default: baseline)')
    parser.add_argument('--quarters', type=int, default=80, help='Quarter limit per run (default: 80)')
    parser.add_argument('--seed', type=int, default=0, help='Seed of the first run (default: 0)')
    parser.add_argument('--single-run', action='store_true', help='Run a single simulation and dump its result')
    parser.add_argument('--show-charts', action='store_true', help='Show matplotlib charts (requires GUI)')
    parser.add_argument('--save-plots', action='store_true', help='Save plots to PNG files instead of displaying')
    parser.add_argument('--output-dir', type=str, default='output', help='Directory for saved plots (default: output)')
    parser.add_argument('--verbose', action='store_true', help='Enable debug logging from the engine')

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )

    if args.save_plots:
        os.makedirs(args.output_dir, exist_ok=True)
        print(f"Plots will be saved to: {os.path.abspath(args.output_dir)}")

    if args.single_run:
        settings = SCENARIOS[args.scenario]() if args.scenario != 'all' else SimulationSettings.baseline()
        result = run_one_simulation(args.seed, settings=settings, max_quarters=args.quarters)
        print(f"\n{'='*80}")
        print(f"SINGLE RUN (Seed: {args.seed})")
        print(f"{'='*80}\n")
        for key, val in result.items():
            print(f"  {key:25s}: {val}")
        sys.exit(0)

    names = sorted(SCENARIOS) if args.scenario == 'all' else [args.scenario]
    for name in names:
        print(f"\nRunning {args.sims} '{name}' simulations...")
        results = run_batch(args.sims, SCENARIOS[name](), seed_base=args.seed, max_quarters=args.quarters)
        print_report(name, compute_detailed_stats(results))

        if args.show_charts or args.save_plots:
            save_path = os.path.join(args.output_dir, f"{name}_results.png") if args.save_plots else None
            show_simulation_results(results, save_path=save_path)
