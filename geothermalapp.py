"""
Geothermal Portfolio Manager - Streamlit Web App
================================================
Browser front end for the quarterly geothermal portfolio simulation.
Reads engine snapshots and calls the engine operations; holds no game logic.
"""

import time

import streamlit as st
import pandas as pd
import matplotlib.pyplot as plt
import numpy as np
from geothermal_engine import (
    new_game,
    reset_game,
    advance_quarter,
    investigate,
    secure,
    start_development,
    abandon,
    resolve_event,
    set_speed,
    is_finished,
    get_results,
    portfolio_summary,
    state_dict,
    run_monte_carlo,
    heat_output,
    Speed,
    SiteStatus,
    QUARTER_NAMES,
)

# ==================== Page Config ====================

st.set_page_config(
    page_title="Geothermal Portfolio Manager",
    page_icon="🌋",
    layout="wide",
    initial_sidebar_state="expanded"
)

SEASON_EMOJI = ['❄️', '🌸', '☀️', '🍂']
STATUS_LABELS = {
    SiteStatus.AVAILABLE.value: "Open",
    SiteStatus.SECURED.value: "🔒 Secured",
    SiteStatus.UNDER_CONSTRUCTION.value: "🏗️ Building",
    SiteStatus.OPERATING.value: "✓ Operating",
    SiteStatus.DRILLING_FAILED.value: "❌ Dry hole",
    SiteStatus.TAKEN_BY_COMPETITOR.value: "Taken",
}


# ==================== Helper Functions ====================

def money(x):
    """Format €M amounts"""
    return f"€{x:.1f}M"


def fmt_range(r, unit="", prefix=""):
    if r is None:
        return "?"
    lo, hi = r
    if lo == hi:
        return f"{prefix}{lo:.0f}{unit}"
    return f"{prefix}{lo:.0f}-{hi:.0f}{unit}"


def report(result):
    """Echo an operation result into the page"""
    if not result.accepted:
        st.session_state.flash = ("warning", f"{result.rejection.value}: {result.log[-1] if result.log else ''}")
    elif result.log:
        st.session_state.flash = ("info", result.log[-1])


def history_chart(points, title, color, unit, show_zero=False):
    fig, ax = plt.subplots(figsize=(5, 2.2))
    if len(points) >= 2:
        years = [p[0] for p in points]
        values = [p[1] for p in points]
        ax.plot(years, values, color=color, linewidth=2)
        if show_zero:
            ax.axhline(0, color='#555', linestyle='--', linewidth=0.8)
        ax.set_title(f"{title} ({values[-1]:.1f} {unit})", fontsize=10)
    else:
        ax.text(0.5, 0.5, 'No data', ha='center', va='center', transform=ax.transAxes)
        ax.set_title(title, fontsize=10)
    ax.grid(alpha=0.3)
    plt.tight_layout()
    return fig


# ==================== Session State Initialization ====================

if "engine" not in st.session_state:
    st.session_state.engine = new_game(seed=42)
    st.session_state.flash = None

if "mc_results" not in st.session_state:
    st.session_state.mc_results = None

engine = st.session_state.engine
cfg = engine.config
snap = state_dict(engine)

# ==================== Sidebar ====================

with st.sidebar:
    st.title("🌋 Geothermal Portfolio")
    st.markdown("*Manage doublets, fight reservoir decline*")

    st.divider()

    st.subheader("📖 Rules")
    st.markdown(f"""
    - **Secure site:** {money(cfg.secure_cost)} + {money(cfg.holding_cost_per_year)}/yr holding
    - **Base price:** €{cfg.base_price:.0f}/MWh at ΔT {cfg.exergy_reference_delta:.0f}°C
    - **Ambient:** {cfg.reference_temp:.0f}°C
    - **Build time:** {cfg.construction_delay_years} years
    - **Drilling failure:** {cfg.drilling_failure_rate * 100:.0f}%
    - **Max doublets:** {cfg.max_doublets}
    - **Bankrupt below:** {money(cfg.bankruptcy_threshold)}
    """)

    st.divider()

    seed = st.number_input("Seed", min_value=0, value=42, step=1)
    if st.button("🔄 New Game", use_container_width=True):
        st.session_state.engine = reset_game(engine, seed=int(seed))
        st.session_state.flash = None
        st.session_state.mc_results = None
        st.rerun()

    st.divider()

    st.caption("Built with Streamlit | Engine: geothermal_engine.py")

# ==================== Main Content ====================

st.title("🌋 Geothermal Portfolio Manager")

if is_finished(engine):
    results = get_results(engine)
    st.error(f"💀 GAME OVER: {results['end_reason']}", icon="💀")

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric("Reached", f"{results['year']} {QUARTER_NAMES[results['quarter']]}")
    with col2:
        st.metric("Final Cash", money(results['final_cash']))
    with col3:
        st.metric("Heat Delivered", f"{results['total_heat']:.0f} GWh")
    with col4:
        st.metric("Doublets Built", results['doublets_built'])

if st.session_state.flash:
    kind, msg = st.session_state.flash
    (st.warning if kind == "warning" else st.info)(msg)

# --- Pending event ---
if snap['pending_event']:
    ev = engine.gs.pending_event
    st.subheader(f"⚠️ {ev.name}")
    st.write(ev.description)
    cols = st.columns(len(ev.choices))
    for i, choice in enumerate(ev.choices):
        with cols[i]:
            if st.button(choice.text, key=f"choice_{i}", disabled=not choice.affordable(engine.gs.cash),
                         use_container_width=True):
                _, result = resolve_event(engine, i)
                report(result)
                st.rerun()

# --- KPIs ---
summary = portfolio_summary(engine)
k1, k2, k3, k4, k5 = st.columns(5)
with k1:
    st.metric("Date", f"{snap['year']} {QUARTER_NAMES[snap['quarter']]} {SEASON_EMOJI[snap['quarter']]}")
with k2:
    st.metric("Cash", money(snap['cash']), delta=money(engine.gs.last_net_cf))
with k3:
    st.metric("Heat Output", f"{summary['heat_mw']:.1f} MW")
with k4:
    st.metric("Doublets", f"{summary['capacity_used']}/{summary['capacity']}")
with k5:
    st.metric("Holding Cost", f"{money(summary['holding_cost_per_year'])}/yr")

# --- Controls ---
if not is_finished(engine):
    c1, c2, c3 = st.columns([1, 2, 1])
    with c1:
        if st.button("▶️ Next Quarter", use_container_width=True, disabled=bool(snap['pending_event'])):
            _, result = advance_quarter(engine)
            report(result)
            st.rerun()
    with c2:
        labels = {Speed.PAUSED: "⏸", Speed.NORMAL: "▶", Speed.FAST: "▶▶", Speed.FASTEST: "▶▶▶"}
        chosen = st.radio("Speed", list(labels), index=engine.gs.speed.value,
                          format_func=lambda s: labels[s], horizontal=True)
        if chosen is not engine.gs.speed:
            _, result = set_speed(engine, chosen)
            report(result)
            st.rerun()

st.divider()

# ==================== Sites ====================

left, right = st.columns(2)

with left:
    st.subheader(f"🗺️ Sites ({summary['available_sites']}/{len(snap['sites'])})")
    sites_df = pd.DataFrame([
        {
            'Site': s['name'],
            'Status': STATUS_LABELS[s['status']],
            'Survey': s['investigated'],
            'Temp': fmt_range(s['revealed_temp'], "°C"),
            'Drill cost': fmt_range(s['revealed_drilling_cost'], "M", "€"),
            'Online': s['completion_year'] or "",
        }
        for s in snap['sites']
    ])
    st.dataframe(sites_df, use_container_width=True, hide_index=True)

    open_sites = [s for s in snap['sites']
                  if s['status'] in (SiteStatus.AVAILABLE.value, SiteStatus.SECURED.value)]
    if open_sites and not is_finished(engine):
        names = {s['name']: s for s in open_sites}
        picked = names[st.selectbox("Site", list(names))]
        a1, a2, a3 = st.columns(3)
        next_level = picked['investigated'] + 1
        with a1:
            if next_level <= 3 and st.button(
                    f"🔍 Survey L{next_level} ({money(cfg.investigation_costs[next_level])})",
                    use_container_width=True):
                _, result = investigate(engine, picked['id'], next_level)
                report(result)
                st.rerun()
        with a2:
            if picked['status'] == SiteStatus.AVAILABLE.value and st.button(
                    f"🔒 Secure ({money(cfg.secure_cost)})", use_container_width=True):
                _, result = secure(engine, picked['id'])
                report(result)
                st.rerun()
        with a3:
            if picked['status'] == SiteStatus.SECURED.value:
                flow = st.slider("Flow (kg/s)", int(cfg.min_flow_rate), int(cfg.max_flow_rate), 50)
                if st.button("⛏️ Drill", use_container_width=True):
                    _, result = start_development(engine, picked['id'], flow)
                    report(result)
                    st.rerun()

# ==================== Doublets ====================

with right:
    st.subheader(f"🔥 Doublets ({summary['active_doublets']}/{cfg.max_doublets})")
    doublet_df = pd.DataFrame([
        {
            'Doublet': d['name'],
            'Temp': f"{d['current_temp']:.1f}°C",
            'Flow': d['flow_rate'],
            'Heat MW': round(heat_output(engine.find_doublet(d['id']), cfg), 1),
            'YTD cash': round(d['current_year_cash'], 2),
            'Status': "ABANDONED" if d['abandoned'] else "running",
        }
        for d in snap['doublets']
    ])
    st.dataframe(doublet_df, use_container_width=True, hide_index=True)

    running = {d['name']: d for d in snap['doublets'] if not d['abandoned']}
    if running and not is_finished(engine):
        target = st.selectbox("Doublet", list(running))
        if st.button("🗑️ Abandon", use_container_width=True):
            _, result = abandon(engine, running[target]['id'])
            report(result)
            st.rerun()

st.divider()

# ==================== Charts & Log ====================

g1, g2 = st.columns(2)
with g1:
    st.pyplot(history_chart(snap['aggregate_cash_history'], "Annual net cash", '#10b981', "€M", show_zero=True))
with g2:
    st.pyplot(history_chart(snap['aggregate_heat_history'], "Annual heat", '#f59e0b', "GWh"))

with st.expander("📜 Game Log (last 10)", expanded=True):
    for line in snap['log']:
        st.text(line)

# ==================== Monte Carlo Section ====================

st.divider()
st.header("🎲 Autopilot Monte Carlo")

col1, col2 = st.columns([2, 1])
with col1:
    sims = st.slider("Number of simulations", 50, 1000, 200, step=50)
with col2:
    run_mc = st.button("▶️ Run Monte Carlo", use_container_width=True, type="primary")

if run_mc:
    with st.spinner(f"Running {sims} simulations..."):
        st.session_state.mc_results = run_monte_carlo(sims)
    st.success(f"Completed {sims} simulations!")

if st.session_state.mc_results:
    mc = st.session_state.mc_results
    m1, m2, m3 = st.columns(3)
    with m1:
        st.metric("Survival Rate", f"{mc['survival_rate'] * 100:.1f}%")
    with m2:
        st.metric("Median Final Cash", money(mc['median_final_cash']))
    with m3:
        st.metric("Median Heat", f"{mc['median_total_heat']:.0f} GWh")

    cash = [r['final_cash'] for r in mc['results']]
    fig, ax = plt.subplots(figsize=(10, 3.5))
    ax.hist(cash, bins=30, color='#10b981', edgecolor='black', alpha=0.7)
    ax.axvline(np.median(cash), color='red', linestyle='--', linewidth=2,
               label=f"Median: {np.median(cash):.1f}")
    ax.set_xlabel('Final cash (€M)')
    ax.set_ylabel('Frequency')
    ax.legend()
    ax.grid(alpha=0.3)
    st.pyplot(fig)

# ==================== Timer ====================

# Streamlit has no background timer; sleep for one tick interval and rerun.
interval = engine.tick_interval_ms()
if interval and not is_finished(engine) and engine.gs.pending_event is None:
    time.sleep(interval / 1000)
    _, result = advance_quarter(engine)
    report(result)
    st.rerun()

st.divider()
st.caption("Geothermal Portfolio Manager | Powered by Streamlit | Logic: geothermal_engine.py (headless)")
