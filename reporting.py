"""
Tabular views of a model run: the 36-month ledger for display and CSV export,
the KPI table, and chart-ready track/year rows.
"""

import math
from typing import Dict, List

import pandas as pd

from simulation import (VINTAGES, YEAR_LABELS, YEARS, ModelInputs, ModelResult,
                        TRACKS, Track, project_panel, vintage_target)

CSV_FILENAME = "access_model.csv"


# ── Formatters ────────────────────────────────────────────────────────────────
def _round_half_up(v: float) -> int:
    # Halves round toward +inf (2.5 -> 3, -2.5 -> -2), not to even.
    return math.floor(v + 0.5)


def fmt_money(v: float) -> str:
    if v >= 1e6:
        return f"${v / 1e6:.2f}M"
    if v >= 1e3:
        return f"${v / 1e3:.1f}K"
    return f"${v:.0f}"


def fmt_pct(v: float) -> str:
    return f"{v * 100:.1f}%"


def fmt_int(v: float) -> str:
    return f"{_round_half_up(v):,}"


# ── Ledger ────────────────────────────────────────────────────────────────────
def ledger_frame(result: ModelResult) -> pd.DataFrame:
    """One row per month; headcounts rounded, currency to cents."""
    tracks = result.active_tracks
    rows = []
    for r in result.months:
        row = {
            "Month":                   r.month,
            "Year":                    r.year,
            "Recon":                   "Y" if r.is_recon else "",
            "Total Enrolled":          _round_half_up(r.total_enrolled),
            "Newly Enrolled (total)":  _round_half_up(r.newly_enrolled),
            "Churned (total)":         _round_half_up(r.churned),
            "Net Change":              _round_half_up(r.net_change),
            "Initial Period Enrolled": _round_half_up(r.initial_enrolled),
            "Follow-On Enrolled":      _round_half_up(r.follow_on_enrolled),
        }
        for v in VINTAGES:
            row[f"C{v} Newly Enrolled"] = _round_half_up(r.newly_enrolled_by_vintage[v])
        for t in tracks:
            row[t.value] = _round_half_up(r.by_track[t].enrolled)
        for v in VINTAGES:
            row[f"C{v}"] = _round_half_up(r.by_vintage[v])
        row.update({
            "Gross Rev":    round(r.gross_revenue, 2),
            "Paid":         round(r.paid_revenue, 2),
            "Withheld":     round(r.withheld_revenue, 2),
            "Released":     round(r.released, 2),
            "Adj%":         fmt_pct(r.blended_adjustment),
            "Net Rev":      round(r.net_revenue, 2),
            "Vendor Rev":   round(r.vendor_revenue, 2),
            "Vendor Cumul": round(r.vendor_cumulative, 2),
        })
        rows.append(row)
    return pd.DataFrame(rows)


def ledger_csv(result: ModelResult) -> str:
    return ledger_frame(result).to_csv(index=False)


# ── KPI table ─────────────────────────────────────────────────────────────────
def kpi_table(result: ModelResult) -> pd.DataFrame:
    summaries = list(result.kpi_by_year) + [result.three_year_row]
    return pd.DataFrame([{
        "Period":         s.label,
        "Gross Revenue":  s.gross,
        "Net Revenue":    s.net,
        "Vendor Revenue": s.vendor,
        "Peak Enrolled":  s.peak_enrolled,
        "Blended Adj":    s.blended_adjustment,
    } for s in summaries])


def adjustment_table(result: ModelResult) -> pd.DataFrame:
    return pd.DataFrame([{
        "Track":            t.value,
        "Effective OAR":    a.effective_oar,
        "COA (M1–18)":      a.coa_early,
        "COA (M19–36)":     a.coa_late,
        "SSA":              a.ssa,
        "Applied (M1–18)":  a.applied_early,
        "Applied (M19–36)": a.applied_late,
        "Driver":           a.applied_type,
    } for t, a in result.adjustments.items()])


def track_revenue_chart_rows(result: ModelResult) -> List[Dict]:
    """Year 1/2/3 rows with one vendor-revenue value per active track."""
    return [
        {"year": YEAR_LABELS[y],
         **{t.value: result.track_revenue_by_year[t][y] for t in result.active_tracks}}
        for y in YEARS
    ]


def cohort1_peak_preview(inputs: ModelInputs) -> Dict[Track, float]:
    """Vintage-1 enrollment target per track, before churn."""
    panel = project_panel(inputs)
    return {t: vintage_target(inputs, panel.eligible_by_year[1], t, 1) for t in TRACKS}
