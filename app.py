"""
ACCESS Calculator — v1
Value-based payment model: enrollment, withholding and vendor revenue share.
Run with: streamlit run app.py
"""

import streamlit as st
import pandas as pd
import plotly.graph_objects as go
from plotly.subplots import make_subplots
from loguru import logger

from errors import InvalidInput
from logging_setup import setup_logging
from reporting import (CSV_FILENAME, adjustment_table, cohort1_peak_preview,
                       fmt_int, fmt_money, fmt_pct, kpi_table, ledger_csv,
                       ledger_frame, track_revenue_chart_rows)
from simulation import (SECTIONS, TRACKS, VINTAGES, ModelInputs, Track,
                        require_valid, reset_all, reset_section,
                        run_model)

# ── Page config ───────────────────────────────────────────────────────────────
st.set_page_config(
    page_title="ACCESS Calculator",
    page_icon="🏥",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.markdown("""
<style>
[data-testid="stMetricValue"] { font-size: 1.5rem; font-weight: 700; }
h1 { color: #1e3a5f; }
h2 { color: #1e3a5f; border-bottom: 2px solid #3b82f6; padding-bottom:4px; }
h3 { color: #1e3a5f; }
.stTabs [data-baseweb="tab"] { font-size: 0.92rem; font-weight: 600; }
</style>
""", unsafe_allow_html=True)

TRACK_COLORS = {Track.eCKM: "#3b82f6", Track.CKM: "#8b5cf6",
                Track.MSK: "#22c55e", Track.BH: "#f97316"}
COHORT_COLORS = {1: "#1e3a5f", 2: "#3b82f6", 3: "#93c5fd"}
COST_SHARING_OPTIONS = ["Waive (Medicare 80%)", "Collect (100%)"]
PENETRATION_OPTIONS  = {"uniform": "Uniform", "per_track": "Per Track"}

if "logging_ready" not in st.session_state:
    setup_logging()
    st.session_state.logging_ready = True


# ══════════════════════════════════════════════════════════════════════════════
# WIDGET STATE <-> MODEL INPUTS
# ══════════════════════════════════════════════════════════════════════════════
# Percent-valued widgets hold 0-100; the model takes fractions.
def _pct(x: float) -> float:
    return round(x * 100, 4)


def _widget_values(inp: ModelInputs) -> dict:
    vals = {
        "total_panel":         float(inp.total_panel),
        "growth_y2":           _pct(inp.growth_y2),
        "growth_y3":           _pct(inp.growth_y3),
        "penetration_mode":    inp.penetration_mode,
        "penetration_uniform": _pct(inp.penetration_uniform),
        "ramp_period":         int(inp.ramp_period),
        "churn_rate":          _pct(inp.churn_rate),
        "overlap_rate":        _pct(inp.overlap_rate),
        "cost_sharing":        COST_SHARING_OPTIONS[0 if inp.cost_sharing_waived else 1],
        "rural_pct":           _pct(inp.rural_pct),
        "vendor_share":        _pct(inp.vendor_share),
        "oat_m19_to_36":       _pct(inp.oat_m19_to_36),
    }
    for t in TRACKS:
        vals[f"eligible_{t.value}"]    = float(inp.eligible[t])
        vals[f"penetration_{t.value}"] = _pct(inp.penetration_by_track[t])
        vals[f"oar_{t.value}"]         = _pct(inp.oar[t])
        vals[f"ssr_{t.value}"]         = _pct(inp.ssr[t])
    for y in VINTAGES:
        vals[f"control_y{y}"] = bool(inp.control_group_by_year[y])
    return vals


def _section_widget_keys(section: str) -> list:
    per_track = {"eligible": "eligible_", "penetration_by_track": "penetration_",
                 "oar": "oar_", "ssr": "ssr_"}
    keys = []
    for name in SECTIONS[section]:
        if name in per_track:
            keys += [per_track[name] + t.value for t in TRACKS]
        elif name == "control_group_by_year":
            keys += [f"control_y{y}" for y in VINTAGES]
        elif name == "cost_sharing_waived":
            keys.append("cost_sharing")
        else:
            keys.append(name)
    return keys


def _seed_widgets(inp: ModelInputs, keys=None, missing_only: bool = False):
    for k, v in _widget_values(inp).items():
        if keys is not None and k not in keys:
            continue
        if missing_only and k in st.session_state:
            continue
        st.session_state[k] = v


def _inputs_from_widgets() -> ModelInputs:
    ss = st.session_state
    return ModelInputs(
        total_panel=ss.total_panel,
        eligible={t: ss[f"eligible_{t.value}"] for t in TRACKS},
        growth_y2=ss.growth_y2 / 100,
        growth_y3=ss.growth_y3 / 100,
        penetration_mode=ss.penetration_mode,
        penetration_uniform=ss.penetration_uniform / 100,
        penetration_by_track={t: ss[f"penetration_{t.value}"] / 100 for t in TRACKS},
        ramp_period=int(ss.ramp_period),
        control_group_by_year={y: ss[f"control_y{y}"] for y in VINTAGES},
        churn_rate=ss.churn_rate / 100,
        overlap_rate=ss.overlap_rate / 100,
        cost_sharing_waived=ss.cost_sharing == COST_SHARING_OPTIONS[0],
        rural_pct=ss.rural_pct / 100,
        vendor_share=ss.vendor_share / 100,
        oar={t: ss[f"oar_{t.value}"] / 100 for t in TRACKS},
        oat_m19_to_36=ss.oat_m19_to_36 / 100,
        ssr={t: ss[f"ssr_{t.value}"] / 100 for t in TRACKS},
    )


def _reset_section_cb(section: str):
    _seed_widgets(reset_section(_inputs_from_widgets(), section), _section_widget_keys(section))


def _reset_all_cb():
    _seed_widgets(reset_all())
    st.session_state.active_tracks = [t.value for t in TRACKS]


def _penetration_mode_cb():
    # Switching to per-track starts every track at the uniform rate
    if st.session_state.penetration_mode == "per_track":
        for t in TRACKS:
            st.session_state[f"penetration_{t.value}"] = st.session_state.penetration_uniform


# ── Session state ─────────────────────────────────────────────────────────────
# Streamlit drops state for widgets that were not rendered last run (e.g. the
# per-track penetration sliders in uniform mode), so refill gaps every run.
_seed_widgets(ModelInputs(), missing_only=True)
if "active_tracks" not in st.session_state:
    st.session_state.active_tracks = [t.value for t in TRACKS]


def _reset_button(section: str):
    st.button("↺ Reset section", key=f"reset_{section}",
              on_click=_reset_section_cb, args=(section,))


# ══════════════════════════════════════════════════════════════════════════════
# SIDEBAR
# ══════════════════════════════════════════════════════════════════════════════
with st.sidebar:
    st.title("🏥 ACCESS Inputs")
    st.button("↺ Reset All", on_click=_reset_all_cb, use_container_width=True)

    # ── Panel ─────────────────────────────────────────────────────────────────
    with st.expander("👥 Panel Size & Growth", expanded=True):
        st.number_input("Total Panel Size", min_value=1.0, step=1000.0, key="total_panel")
        for t in TRACKS:
            st.number_input(f"{t.value} Eligible", min_value=0.0, step=1000.0,
                            key=f"eligible_{t.value}")
        st.slider("Y2 Growth Rate (%)", 0.0, 100.0, step=1.0, key="growth_y2")
        st.slider("Y3 Growth Rate (%)", 0.0, 100.0, step=1.0, key="growth_y3")
        _reset_button("panel")

    # ── Enrollment ────────────────────────────────────────────────────────────
    with st.expander("📈 Enrollment & Penetration", expanded=True):
        st.radio("Mode", list(PENETRATION_OPTIONS), horizontal=True,
                 format_func=PENETRATION_OPTIONS.get, key="penetration_mode",
                 on_change=_penetration_mode_cb)
        if st.session_state.penetration_mode == "uniform":
            st.slider("Penetration Rate (%)", 1.0, 100.0, step=1.0, key="penetration_uniform")
        else:
            for t in TRACKS:
                st.slider(f"{t.value} Penetration (%)", 1.0, 100.0, step=1.0,
                          key=f"penetration_{t.value}")
        st.slider("Ramp Period (months)", 6, 18, step=1, key="ramp_period",
                  help="Months to reach full enrollment, per cohort")
        st.caption("Control group — 10% of eligible randomized out")
        for y in VINTAGES:
            st.checkbox(f"Year {y}", key=f"control_y{y}")
        _reset_button("enrollment")

    # ── Flow ──────────────────────────────────────────────────────────────────
    with st.expander("🔁 Patient Flow & Retention"):
        st.slider("Annual Churn Rate (%)", 0.0, 50.0, step=0.5, key="churn_rate")
        st.caption(f"Monthly: {st.session_state.churn_rate / 12:.2f}%")
        st.slider("Multi-Track Overlap (%)", 0.0, 40.0, step=0.5, key="overlap_rate",
                  help="Placeholder — overlap data pending")
        _reset_button("flow")

    # ── Financial ─────────────────────────────────────────────────────────────
    with st.expander("💰 Financial & Revenue"):
        st.radio("Cost-Sharing Policy", COST_SHARING_OPTIONS, key="cost_sharing")
        if st.session_state.cost_sharing != COST_SHARING_OPTIONS[0]:
            st.warning("Must disclose cost-sharing before enrollment")
        st.slider("Rural Patient (%)", 0.0, 100.0, step=1.0, key="rural_pct")
        st.slider("Vendor Revenue Share (%)", 5.0, 50.0, step=0.5, key="vendor_share")
        _reset_button("financial")

    # ── Performance ───────────────────────────────────────────────────────────
    with st.expander("🎯 Performance Assumptions"):
        st.caption("**Outcome Attainment Rate (OAR)**")
        for t in TRACKS:
            st.slider(f"{t.value} OAR (%)", 0.0, 100.0, step=1.0, key=f"oar_{t.value}")
        st.slider("OAT M19–36 (%)", 60.0, 65.0, step=0.5, key="oat_m19_to_36",
                  help="Months 1–18 fixed at 50%")
        st.caption("**Substitute Spend Rate (SSR)**")
        for t in TRACKS:
            st.slider(f"{t.value} SSR (%)", 0.0, 100.0, step=1.0, key=f"ssr_{t.value}")
        _reset_button("performance")

# ── Build inputs ──────────────────────────────────────────────────────────────
inp = _inputs_from_widgets()

# ══════════════════════════════════════════════════════════════════════════════
# RUN MODEL
# ══════════════════════════════════════════════════════════════════════════════
st.title("🏥 ACCESS Calculator")
st.caption("Value-Based Payment Model · 36-Month Horizon · Four Clinical Tracks")

st.multiselect("Show tracks", [t.value for t in TRACKS], key="active_tracks",
               help="Leave empty to include all tracks")

try:
    require_valid(inp)
    result = run_model(inp, st.session_state.active_tracks)
except InvalidInput as e:
    logger.warning("Rejected inputs: {}", e.problems)
    st.error("Invalid inputs:\n- " + "\n- ".join(e.problems))
    st.stop()

logger.info("Model run: tracks={} vendor_3y={:.0f}",
            [t.value for t in result.active_tracks], result.kpi.vendor_3y)

kpi    = result.kpi
months = result.months
lbls   = [f"M{r.month}" for r in months]

# ── KPI bar ───────────────────────────────────────────────────────────────────
st.subheader("📋 Vendor Revenue")
c1, c2, c3, c4 = st.columns(4)
c1.metric("Year 1",       fmt_money(kpi.vendor_y1))
c2.metric("Year 2",       fmt_money(kpi.vendor_y2))
c3.metric("Year 3",       fmt_money(kpi.vendor_y3))
c4.metric("3-Year Total", fmt_money(kpi.vendor_3y))

d1, d2, d3, d4 = st.columns(4)
d1.metric("Gross Program Revenue (3Y)", fmt_money(kpi.gross_3y))
d2.metric("Net Program Revenue (3Y)",   fmt_money(kpi.net_3y))
d3.metric("Peak Enrolled",              fmt_int(kpi.peak_enrolled))
d4.metric("Blended Adjustment",         fmt_pct(kpi.blended_adjustment))

st.divider()

# ══════════════════════════════════════════════════════════════════════════════
# TABS
# ══════════════════════════════════════════════════════════════════════════════
tabs = st.tabs([
    "📊 Revenue by Track",
    "👥 Enrollment",
    "💵 Monthly Revenue",
    "🎯 Adjustments",
    "🗂️ Panel",
    "📄 Data Table",
])

# ══════════════════════════════════════════════════════════════════════════════
# TAB 1 — Revenue by Track
# ══════════════════════════════════════════════════════════════════════════════
with tabs[0]:
    chart_rows = track_revenue_chart_rows(result)
    fig = go.Figure()
    for t in result.active_tracks:
        fig.add_bar(x=[r["year"] for r in chart_rows], y=[r[t.value] for r in chart_rows],
                    name=t.value, marker_color=TRACK_COLORS[t])
    fig.update_layout(height=420, template="plotly_white", barmode="stack",
                      title="Vendor Revenue by Track & Year",
                      yaxis_title="Vendor Revenue ($)",
                      legend=dict(orientation="h", y=-0.15))
    st.plotly_chart(fig, use_container_width=True)

    kt = kpi_table(result)
    st.dataframe(kt.style.format({
        "Gross Revenue": fmt_money, "Net Revenue": fmt_money, "Vendor Revenue": fmt_money,
        "Peak Enrolled": fmt_int, "Blended Adj": fmt_pct,
    }), use_container_width=True, hide_index=True)

# ══════════════════════════════════════════════════════════════════════════════
# TAB 2 — Enrollment
# ══════════════════════════════════════════════════════════════════════════════
with tabs[1]:
    fig_e = make_subplots(rows=2, cols=1, shared_xaxes=True, vertical_spacing=0.08,
                          subplot_titles=("Enrolled by Cohort", "Newly Enrolled vs Churned"),
                          row_heights=[0.6, 0.4])
    for v in VINTAGES:
        fig_e.add_bar(x=lbls, y=[r.by_vintage[v] for r in months], name=f"Cohort {v}",
                      marker_color=COHORT_COLORS[v], row=1, col=1)
    fig_e.add_scatter(x=lbls, y=[r.total_enrolled for r in months], name="Total Enrolled",
                      mode="lines", line=dict(color="#f59e0b", width=2.5), row=1, col=1)
    fig_e.add_bar(x=lbls, y=[r.newly_enrolled for r in months], name="Newly Enrolled",
                  marker_color="#10b981", row=2, col=1)
    fig_e.add_bar(x=lbls, y=[-r.churned for r in months], name="Churned",
                  marker_color="#ef4444", row=2, col=1)
    fig_e.update_layout(height=620, template="plotly_white", barmode="relative",
                        legend=dict(orientation="h", y=-0.12))
    st.plotly_chart(fig_e, use_container_width=True)

    preview = cohort1_peak_preview(inp)
    st.caption("**Peak enrolled (Cohort 1):** " + "  ·  ".join(
        f"{t.value}: {fmt_int(preview[t])}" for t in TRACKS))

# ══════════════════════════════════════════════════════════════════════════════
# TAB 3 — Monthly Revenue
# ══════════════════════════════════════════════════════════════════════════════
with tabs[2]:
    fig_r = go.Figure()
    fig_r.add_bar(x=lbls, y=[r.net_paid for r in months], name="Net Paid",
                  marker_color="#3b82f6")
    fig_r.add_bar(x=lbls, y=[r.released for r in months], name="Released (recon)",
                  marker_color="#10b981")
    fig_r.add_scatter(x=lbls, y=[r.gross_revenue for r in months], name="Gross Revenue",
                      mode="lines", line=dict(color="#9ca3af", width=2, dash="dot"))
    fig_r.add_scatter(x=lbls, y=[r.vendor_cumulative for r in months],
                      name="Vendor Cumulative", mode="lines",
                      line=dict(color="#8b5cf6", width=2.5), yaxis="y2")
    for i, r in enumerate(months):
        if r.is_recon:
            fig_r.add_vrect(x0=i - 0.5, x1=i + 0.5, fillcolor="rgba(16,185,129,0.08)",
                            layer="below", line_width=0)
    fig_r.update_layout(height=460, template="plotly_white", barmode="stack",
                        title="Monthly Revenue (shaded = reconciliation month)",
                        yaxis=dict(title="Monthly ($)"),
                        yaxis2=dict(title="Vendor Cumulative ($)", overlaying="y",
                                    side="right", showgrid=False),
                        xaxis_tickangle=-45, legend=dict(orientation="h", y=-0.25))
    st.plotly_chart(fig_r, use_container_width=True)

# ══════════════════════════════════════════════════════════════════════════════
# TAB 4 — Adjustments
# ══════════════════════════════════════════════════════════════════════════════
with tabs[3]:
    st.subheader("🎯 Performance Adjustments")
    st.caption(f"Completion rate {fmt_pct(inp.completion_rate)} · "
               f"OAT M1–18 {fmt_pct(inp.rules.oat_early)} · "
               f"OAT M19–36 {fmt_pct(inp.oat_m19_to_36)} · SST {fmt_pct(inp.rules.sst)}")
    at = adjustment_table(result)
    pct_cols = [c for c in at.columns if c not in ("Track", "Driver")]
    st.dataframe(at.style.format({c: fmt_pct for c in pct_cols}),
                 use_container_width=True, hide_index=True)
    st.caption("Driver compares COA and SSA for months 1–18 and is shown for both periods.")

# ══════════════════════════════════════════════════════════════════════════════
# TAB 5 — Panel
# ══════════════════════════════════════════════════════════════════════════════
with tabs[4]:
    panel = result.panel
    st.dataframe(pd.DataFrame([{
        "Track":          t.value,
        "Share of Panel": fmt_pct(panel.shares[t]),
        "Eligible Y1":    fmt_int(panel.eligible_by_year[1][t]),
        "New Y2":         f"+{fmt_int(panel.new_eligible[2][t])}",
        "New Y3":         f"+{fmt_int(panel.new_eligible[3][t])}",
        "Eligible Y3":    fmt_int(panel.eligible_by_year[3][t]),
    } for t in TRACKS]), use_container_width=True, hide_index=True)

# ══════════════════════════════════════════════════════════════════════════════
# TAB 6 — Data Table
# ══════════════════════════════════════════════════════════════════════════════
with tabs[5]:
    st.subheader("📄 Full 36-Month Ledger")
    df_full = ledger_frame(result)

    def recon_bg(val):
        return "background-color:#d1fae5" if val == "Y" else ""

    st.dataframe(df_full.style.map(recon_bg, subset=["Recon"]),
                 use_container_width=True, height=520)
    st.download_button("⬇️ Download CSV", ledger_csv(result), CSV_FILENAME, "text/csv")

# ──────────────────────────────────────────────────────────────────────────────
st.divider()
st.caption("ACCESS Calculator · Reconciliation at months 6/12/18/24/30/36 · "
           "Overlap and rural coefficients are provisional")
