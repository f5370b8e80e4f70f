"""
ACCESS Model Engine — v1
36-month value-based-payment simulation across four clinical tracks.

Pipeline (each stage pure, feeding the next):
  - Panel growth: track shares of the panel, new eligible population in Y2/Y3.
  - Cohort builder: eligible × penetration × control group, phased in evenly
    over the ramp period as dated sub-cohorts (ramps truncate at month 36).
  - Monthly simulator: churn-decayed headcount per sub-cohort, initial vs
    follow-on tier, paid vs withheld by payment-cycle position, rural add-on,
    multi-track overlap discount.
  - Adjustments: COA / SSA per track from OAR and SSR, applied = max(COA, SSA).
  - Reconciliation: withheld revenue accrues per track and is released net of
    the applied adjustment at months 6, 12, 18, 24, 30, 36.
  - Summaries: year and 3-year KPIs, vendor revenue attributed by track/year.
"""

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
from loguru import logger

from errors import InvalidInput, UnknownTrack


# ══════════════════════════════════════════════════════════════════════════════
# TRACKS & RATES
# ══════════════════════════════════════════════════════════════════════════════
class Track(str, Enum):
    # Member names match the program's track names so string lookups line up.
    eCKM = "eCKM"
    CKM  = "CKM"
    MSK  = "MSK"
    BH   = "BH"

    @classmethod
    def parse(cls, value) -> "Track":
        if isinstance(value, Track):
            return value
        for t in cls:
            if t.value == value:
                return t
        raise UnknownTrack(str(value), [t.value for t in cls])


TRACKS: Tuple[Track, ...] = tuple(Track)
VINTAGES    = (1, 2, 3)
YEARS       = (1, 2, 3)
YEAR_LABELS = {1: "Year 1", 2: "Year 2", 3: "Year 3"}


@dataclass(frozen=True)
class TrackRates:
    """
    Monthly payment per enrolled patient. follow_on=None means the track has
    no follow-on tier and bills the initial rate for the whole enrollment.
    """
    initial:   float
    follow_on: Optional[float] = None

    @property
    def has_follow_on(self) -> bool:
        return self.follow_on is not None

    def is_initial_tier(self, age: int, initial_months: int = 12) -> bool:
        return not self.has_follow_on or age <= initial_months

    def rate_for_age(self, age: int, initial_months: int = 12) -> float:
        if self.is_initial_tier(age, initial_months):
            return self.initial
        return self.follow_on

    def blended_rate(self, initial_count: float, follow_on_count: float) -> float:
        """Headcount-weighted rate; the initial rate when nobody is enrolled."""
        total = initial_count + follow_on_count
        if total == 0:
            return self.initial
        return (initial_count * self.initial
                + follow_on_count * (self.follow_on or 0.0)) / total


RATE_TABLE: Dict[Track, TrackRates] = {
    Track.eCKM: TrackRates(initial=24.0, follow_on=12.0),
    Track.CKM:  TrackRates(initial=28.0, follow_on=14.0),
    Track.MSK:  TrackRates(initial=12.0),
    Track.BH:   TrackRates(initial=12.0, follow_on=6.0),
}


# ══════════════════════════════════════════════════════════════════════════════
# PROGRAM RULES
# ══════════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class ProgramRules:
    """
    Program-level constants. Rural and overlap coefficients are provisional
    (pending data) and kept here so a scenario can swap them.
    """
    horizon_months:        int              = 36
    reconciliation_months: Tuple[int, ...]  = (6, 12, 18, 24, 30, 36)
    early_period_end:      int              = 18
    cohort_starts:         Tuple[int, ...]  = (1, 13, 25)

    # ── Performance adjustment ───────────────────────────────────────────────
    oat_early: float = 0.50   # months 1–18, fixed
    sst:       float = 0.90
    coa_cap:   float = 0.50
    ssa_cap:   float = 0.25

    # ── Enrollment & billing ─────────────────────────────────────────────────
    control_group_multiplier:          float = 0.90   # 10% randomized out
    cost_sharing_collected_multiplier: float = 1.25
    payment_cycle_months:              int   = 12
    paid_months_per_cycle:             int   = 6
    initial_tier_months:               int   = 12

    # ── Provisional heuristics ───────────────────────────────────────────────
    rural_rate:              float             = 12.0
    rural_tracks:            Tuple[Track, ...] = (Track.eCKM, Track.CKM)
    overlap_reference_track: Track             = Track.BH
    overlap_discount_factor: float             = 0.05

    rates: Dict[Track, TrackRates] = field(default_factory=lambda: dict(RATE_TABLE))

    def period_for(self, month: int) -> str:
        return "early" if month <= self.early_period_end else "late"

    def is_reconciliation_month(self, month: int) -> bool:
        return month in self.reconciliation_months


# ══════════════════════════════════════════════════════════════════════════════
# MODEL INPUTS
# ══════════════════════════════════════════════════════════════════════════════
PENETRATION_MODES = ("uniform", "per_track")


def _per_track(eckm: float, ckm: float, msk: float, bh: float) -> Dict[Track, float]:
    return {Track.eCKM: eckm, Track.CKM: ckm, Track.MSK: msk, Track.BH: bh}


@dataclass(frozen=True)
class ModelInputs:
    """
    One configuration snapshot. Never mutated: edits go through
    dataclasses.replace or the with_* helpers, which return a new value.
    """
    # ── Panel Size & Growth ──────────────────────────────────────────────────
    total_panel: float = 182_774
    eligible: Dict[Track, float] = field(
        default_factory=lambda: _per_track(89_703, 107_862, 69_416, 83_044))
    growth_y2: float = 0.40
    growth_y3: float = 0.40

    # ── Enrollment & Penetration ─────────────────────────────────────────────
    penetration_mode:    str   = "uniform"
    penetration_uniform: float = 0.25
    penetration_by_track: Dict[Track, float] = field(
        default_factory=lambda: _per_track(0.25, 0.25, 0.25, 0.25))
    ramp_period: int = 12
    control_group_by_year: Dict[int, bool] = field(
        default_factory=lambda: {1: True, 2: False, 3: False})

    # ── Patient Flow & Retention ─────────────────────────────────────────────
    churn_rate:   float = 0.20   # annual
    overlap_rate: float = 0.05   # placeholder, pending data

    # ── Financial & Revenue ──────────────────────────────────────────────────
    cost_sharing_waived: bool  = True
    rural_pct:           float = 0.15
    vendor_share:        float = 0.20

    # ── Performance Assumptions ──────────────────────────────────────────────
    oar: Dict[Track, float] = field(
        default_factory=lambda: _per_track(0.55, 0.55, 0.50, 0.50))
    oat_m19_to_36: float = 0.625
    ssr: Dict[Track, float] = field(
        default_factory=lambda: _per_track(0.92, 0.92, 0.90, 0.92))

    rules: ProgramRules = field(default_factory=ProgramRules)

    # ── Derived ───────────────────────────────────────────────────────────────
    @property
    def monthly_churn_rate(self) -> float:
        return self.churn_rate / 12

    @property
    def completion_rate(self) -> float:
        return 1 - self.churn_rate

    @property
    def rate_multiplier(self) -> float:
        """Billed-rate basis: Medicare share when waived, full rate when collected."""
        return 1.0 if self.cost_sharing_waived else self.rules.cost_sharing_collected_multiplier

    def penetration_for(self, track: Track) -> float:
        if self.penetration_mode == "uniform":
            return self.penetration_uniform
        return self.penetration_by_track[track]

    def control_multiplier(self, year: int) -> float:
        return self.rules.control_group_multiplier if self.control_group_by_year.get(year) else 1.0

    # ── Edits ────────────────────────────────────────────────────────────────
    def with_track_value(self, name: str, track, value: float) -> "ModelInputs":
        """Copy with one entry of a per-track field (eligible, oar, ...) changed."""
        current = getattr(self, name)
        if not isinstance(current, dict):
            raise InvalidInput([f"'{name}' is not a per-track setting"])
        updated = dict(current)
        updated[Track.parse(track)] = value
        return replace(self, **{name: updated})

    def with_penetration_mode(self, mode: str) -> "ModelInputs":
        """Switching to per-track seeds every track from the uniform rate."""
        if mode not in PENETRATION_MODES:
            raise InvalidInput([f"Unknown penetration mode '{mode}'"])
        if mode == "per_track":
            seeded = {t: self.penetration_uniform for t in TRACKS}
            return replace(self, penetration_mode=mode, penetration_by_track=seeded)
        return replace(self, penetration_mode=mode)

    def with_control_group(self, year: int, enabled: bool) -> "ModelInputs":
        updated = dict(self.control_group_by_year)
        updated[year] = enabled
        return replace(self, control_group_by_year=updated)


# Input sections as grouped in the dashboard sidebar; each resets independently.
SECTIONS: Dict[str, Tuple[str, ...]] = {
    "panel":       ("total_panel", "eligible", "growth_y2", "growth_y3"),
    "enrollment":  ("penetration_mode", "penetration_uniform", "penetration_by_track",
                    "ramp_period", "control_group_by_year"),
    "flow":        ("churn_rate", "overlap_rate"),
    "financial":   ("cost_sharing_waived", "rural_pct", "vendor_share"),
    "performance": ("oar", "oat_m19_to_36", "ssr"),
}


def reset_section(inputs: ModelInputs, section: str) -> ModelInputs:
    if section not in SECTIONS:
        raise InvalidInput([f"Unknown input section '{section}'"])
    defaults = ModelInputs()
    return replace(inputs, **{k: getattr(defaults, k) for k in SECTIONS[section]})


def reset_all() -> ModelInputs:
    return ModelInputs()


def validate_inputs(inputs: ModelInputs) -> List[str]:
    """
    Caller-side validation. Returns a list of problems (empty when valid).
    Non-positive panel or ramp would divide by zero inside the engine.
    """
    problems = []
    if inputs.total_panel <= 0:
        problems.append("Total panel size must be greater than 0")
    if inputs.ramp_period <= 0:
        problems.append("Ramp period must be at least 1 month")
    elif not 6 <= inputs.ramp_period <= 18:
        problems.append(f"Ramp period must be between 6 and 18 months (got {inputs.ramp_period})")
    if inputs.penetration_mode not in PENETRATION_MODES:
        problems.append(f"Unknown penetration mode '{inputs.penetration_mode}'")

    per_track = {
        "eligible":    inputs.eligible,
        "penetration": inputs.penetration_by_track,
        "OAR":         inputs.oar,
        "SSR":         inputs.ssr,
    }
    for label, values in per_track.items():
        for t in TRACKS:
            if t not in values:
                problems.append(f"{t.value} {label} is missing")
            elif label == "eligible" and values[t] < 0:
                problems.append(f"{t.value} eligible count cannot be negative")

    fractions = {
        "Y2 growth rate":     inputs.growth_y2,
        "Y3 growth rate":     inputs.growth_y3,
        "Penetration rate":   inputs.penetration_uniform,
        "Annual churn rate":  inputs.churn_rate,
        "Overlap rate":       inputs.overlap_rate,
        "Rural patient %":    inputs.rural_pct,
        "Vendor share":       inputs.vendor_share,
        "OAT (M19–36)":       inputs.oat_m19_to_36,
    }
    for label in ("penetration", "OAR", "SSR"):
        for t in TRACKS:
            if t in per_track[label]:
                fractions[f"{t.value} {label}"] = per_track[label][t]
    for label, value in fractions.items():
        if not 0.0 <= value <= 1.0:
            problems.append(f"{label} must be between 0% and 100% (got {value:.3f})")
    if inputs.oat_m19_to_36 <= 0:
        problems.append("OAT (M19–36) must be greater than 0")
    return problems


def require_valid(inputs: ModelInputs) -> ModelInputs:
    problems = validate_inputs(inputs)
    if problems:
        raise InvalidInput(problems)
    return inputs


def resolve_tracks(active_tracks: Optional[Iterable] = None) -> Tuple[Track, ...]:
    """Canonical-order active tracks. Empty or None means all four."""
    requested = {Track.parse(t) for t in (active_tracks or ())}
    if not requested:
        return TRACKS
    return tuple(t for t in TRACKS if t in requested)


# ══════════════════════════════════════════════════════════════════════════════
# PANEL GROWTH
# ══════════════════════════════════════════════════════════════════════════════
@dataclass
class PanelProjection:
    shares:           Dict[Track, float]
    new_eligible:     Dict[int, Dict[Track, float]]   # {2: ..., 3: ...}
    eligible_by_year: Dict[int, Dict[Track, float]]   # cumulative {1, 2, 3}

    @property
    def cohort_bases(self) -> Dict[int, Dict[Track, float]]:
        """Population each vintage ramps into: all of Y1, then only new arrivals."""
        return {1: self.eligible_by_year[1], 2: self.new_eligible[2], 3: self.new_eligible[3]}


def project_panel(inputs: ModelInputs) -> PanelProjection:
    if inputs.total_panel <= 0:
        raise InvalidInput(["Total panel size must be greater than 0"])

    shares = {t: inputs.eligible[t] / inputs.total_panel for t in TRACKS}

    new_panel_y2 = inputs.total_panel * inputs.growth_y2
    new_panel_y3 = inputs.total_panel * (1 + inputs.growth_y2) * inputs.growth_y3

    new_y2 = {t: new_panel_y2 * shares[t] for t in TRACKS}
    new_y3 = {t: new_panel_y3 * shares[t] for t in TRACKS}

    elig_y1 = dict(inputs.eligible)
    elig_y2 = {t: elig_y1[t] + new_y2[t] for t in TRACKS}
    elig_y3 = {t: elig_y2[t] + new_y3[t] for t in TRACKS}

    return PanelProjection(
        shares=shares,
        new_eligible={2: new_y2, 3: new_y3},
        eligible_by_year={1: elig_y1, 2: elig_y2, 3: elig_y3},
    )


# ══════════════════════════════════════════════════════════════════════════════
# COHORT BUILDER
# ══════════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class SubCohort:
    track:        Track
    vintage:      int     # program year of first eligibility (1-3)
    enroll_month: int     # 1-indexed simulation month
    increment:    float   # headcount enrolled that month

    def age_at(self, month: int) -> int:
        return month - self.enroll_month + 1

    def live_at(self, month: int, monthly_churn: float) -> float:
        """Surviving headcount; exponential decay from the enrollment month."""
        return self.increment * (1 - monthly_churn) ** (self.age_at(month) - 1)


@dataclass
class NewEnrollment:
    total:      float = 0.0
    by_vintage: Dict[int, float] = field(default_factory=lambda: {v: 0.0 for v in VINTAGES})


@dataclass
class CohortPlan:
    sub_cohorts:     List[SubCohort]
    new_enrollments: Dict[int, NewEnrollment]   # keyed by simulation month


def ramp_window(inputs: ModelInputs, vintage: int) -> Tuple[int, int]:
    """
    (start, end) months of a vintage's ramp. The end is clipped to the horizon,
    so a late vintage with a long ramp never reaches its full target.
    """
    start = inputs.rules.cohort_starts[vintage - 1]
    end   = min(start + inputs.ramp_period - 1, inputs.rules.horizon_months)
    return start, end


def vintage_target(inputs: ModelInputs, base: Dict[Track, float],
                   track: Track, vintage: int) -> float:
    return base[track] * inputs.penetration_for(track) * inputs.control_multiplier(vintage)


def build_cohorts(inputs: ModelInputs, panel: PanelProjection,
                  tracks: Tuple[Track, ...]) -> CohortPlan:
    if inputs.ramp_period <= 0:
        raise InvalidInput(["Ramp period must be at least 1 month"])

    sub_cohorts: List[SubCohort] = []
    for vintage, base in panel.cohort_bases.items():
        start, end = ramp_window(inputs, vintage)
        for t in tracks:
            inc = vintage_target(inputs, base, t, vintage) / inputs.ramp_period
            if inc <= 0:
                continue
            for m in range(start, end + 1):
                sub_cohorts.append(SubCohort(track=t, vintage=vintage, enroll_month=m, increment=inc))

    new_enrollments = {m: NewEnrollment() for m in range(1, inputs.rules.horizon_months + 1)}
    for sc in sub_cohorts:
        new_enrollments[sc.enroll_month].total += sc.increment
        new_enrollments[sc.enroll_month].by_vintage[sc.vintage] += sc.increment

    logger.debug("Built {} sub-cohorts across {} tracks", len(sub_cohorts), len(tracks))
    return CohortPlan(sub_cohorts=sub_cohorts, new_enrollments=new_enrollments)


# ══════════════════════════════════════════════════════════════════════════════
# MONTHLY SIMULATOR
# ══════════════════════════════════════════════════════════════════════════════
@dataclass
class TrackMonth:
    initial:   float = 0.0   # enrolled, initial tier
    follow_on: float = 0.0   # enrolled, follow-on tier
    paid:      float = 0.0
    withheld:  float = 0.0
    rural:     float = 0.0

    @property
    def enrolled(self) -> float:
        return self.initial + self.follow_on

    @property
    def revenue(self) -> float:
        return self.paid + self.withheld


@dataclass
class MonthlyRow:
    month:            int
    by_track:         Dict[Track, TrackMonth]
    by_vintage:       Dict[int, float]
    gross_revenue:    float
    paid_revenue:     float
    withheld_revenue: float
    rural_revenue:    float
    discount:         float
    total_enrolled:   float

    @property
    def year(self) -> int:
        return int(np.ceil(self.month / 12))


def simulate_months(inputs: ModelInputs, plan: CohortPlan,
                    tracks: Tuple[Track, ...]) -> List[MonthlyRow]:
    rules          = inputs.rules
    monthly_churn  = inputs.monthly_churn_rate
    rate_mult      = inputs.rate_multiplier
    initial_months = rules.initial_tier_months

    rows: List[MonthlyRow] = []
    for T in range(1, rules.horizon_months + 1):
        by_track   = {t: TrackMonth() for t in TRACKS}
        by_vintage = {v: 0.0 for v in VINTAGES}

        for sc in plan.sub_cohorts:
            if T < sc.enroll_month:
                continue
            age       = sc.age_at(T)
            cycle_pos = ((age - 1) % rules.payment_cycle_months) + 1
            is_paid   = cycle_pos <= rules.paid_months_per_cycle

            rates      = rules.rates[sc.track]
            is_initial = rates.is_initial_tier(age, initial_months)
            live       = sc.live_at(T, monthly_churn)
            rev        = live * (rates.rate_for_age(age, initial_months) * rate_mult)

            tm = by_track[sc.track]
            if is_initial:
                tm.initial += live
            else:
                tm.follow_on += live
            if is_paid:
                tm.paid += rev
            else:
                tm.withheld += rev

            # One-time add-on in the enrollment month only
            if T == sc.enroll_month and sc.track in rules.rural_tracks:
                tm.rural += sc.increment * inputs.rural_pct * rules.rural_rate

            by_vintage[sc.vintage] += live

        total_enrolled = sum(by_track[t].enrolled for t in tracks)

        # ── Multi-track overlap discount ─────────────────────────────────────
        overlap_pts = total_enrolled * inputs.overlap_rate
        ref         = by_track[rules.overlap_reference_track]
        ref_rate    = (rules.rates[rules.overlap_reference_track]
                       .blended_rate(ref.initial, ref.follow_on) * rate_mult)
        discount    = (overlap_pts * ref_rate * rules.overlap_discount_factor
                       if len(tracks) > 1 else 0.0)

        gross    = sum(by_track[t].revenue for t in tracks)
        paid     = sum(by_track[t].paid for t in tracks)
        withheld = sum(by_track[t].withheld for t in tracks)
        rural    = sum(by_track[t].rural for t in tracks)

        rows.append(MonthlyRow(
            month=T,
            by_track=by_track,
            by_vintage=by_vintage,
            gross_revenue=max(0.0, gross - discount + rural),
            paid_revenue=max(0.0, paid - discount),
            withheld_revenue=withheld,
            rural_revenue=rural,
            discount=discount,
            total_enrolled=total_enrolled,
        ))
    return rows


# ══════════════════════════════════════════════════════════════════════════════
# ADJUSTMENTS
# ══════════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class AdjustmentState:
    effective_oar: float
    coa_early:     float
    coa_late:      float
    ssa:           float
    applied_early: float
    applied_late:  float
    applied_type:  str     # "COA" | "SSA", judged on the early period only

    def applied_for(self, period: str) -> float:
        return self.applied_early if period == "early" else self.applied_late


def clinical_outcomes_adjustment(effective_oar: float, oat: float, cap: float = 0.5) -> float:
    if effective_oar >= oat:
        return 0.0
    return min(1 - effective_oar / oat, cap)


def substitute_spend_adjustment(ssr: float, sst: float = 0.9, cap: float = 0.25) -> float:
    if ssr >= sst:
        return 0.0
    return min(1 - ssr / sst, cap)


def compute_adjustments(inputs: ModelInputs) -> Dict[Track, AdjustmentState]:
    """Withholding rates per track; independent of the month loop."""
    rules = inputs.rules
    out: Dict[Track, AdjustmentState] = {}
    for t in TRACKS:
        eff_oar   = inputs.oar[t] * inputs.completion_rate
        coa_early = clinical_outcomes_adjustment(eff_oar, rules.oat_early, rules.coa_cap)
        coa_late  = clinical_outcomes_adjustment(eff_oar, inputs.oat_m19_to_36, rules.coa_cap)
        ssa       = substitute_spend_adjustment(inputs.ssr[t], rules.sst, rules.ssa_cap)
        out[t] = AdjustmentState(
            effective_oar=eff_oar,
            coa_early=coa_early,
            coa_late=coa_late,
            ssa=ssa,
            applied_early=max(coa_early, ssa),
            applied_late=max(coa_late, ssa),
            applied_type="COA" if coa_early >= ssa else "SSA",
        )
    return out


# ══════════════════════════════════════════════════════════════════════════════
# RECONCILIATION
# ══════════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class WithheldAccumulator:
    """Unreleased withheld revenue per track since the last checkpoint."""
    balances: Dict[Track, float]

    @classmethod
    def empty(cls, tracks: Tuple[Track, ...]) -> "WithheldAccumulator":
        return cls({t: 0.0 for t in tracks})

    def accrue(self, row: MonthlyRow) -> "WithheldAccumulator":
        return WithheldAccumulator({t: bal + row.by_track[t].withheld
                                    for t, bal in self.balances.items()})

    def release(self, adjustments: Dict[Track, AdjustmentState],
                period: str) -> Tuple[float, "WithheldAccumulator"]:
        released = 0.0
        for t, bal in self.balances.items():
            released += bal * (1 - adjustments[t].applied_for(period))
        return released, WithheldAccumulator.empty(tuple(self.balances))


@dataclass
class FullRow(MonthlyRow):
    is_recon:           bool
    net_paid:           float
    released:           float
    net_revenue:        float
    vendor_revenue:     float
    blended_adjustment: float
    vendor_cumulative:  float
    newly_enrolled:     float
    churned:            float
    net_change:         float
    initial_enrolled:   float
    follow_on_enrolled: float
    newly_enrolled_by_vintage: Dict[int, float]


def _blended_adjustment(row: MonthlyRow, adjustments: Dict[Track, AdjustmentState],
                        period: str, tracks: Tuple[Track, ...]) -> float:
    num = den = 0.0
    for t in tracks:
        r    = row.by_track[t].revenue
        num += adjustments[t].applied_for(period) * r
        den += r
    return num / den if den > 0 else 0.0


def reconcile(inputs: ModelInputs, rows: List[MonthlyRow],
              adjustments: Dict[Track, AdjustmentState], plan: CohortPlan,
              tracks: Tuple[Track, ...]) -> List[FullRow]:
    """
    Sequential fold over the months. The withheld accumulator is threaded from
    month to month and must be processed in order.
    """
    rules         = inputs.rules
    accumulator   = WithheldAccumulator.empty(tracks)
    vendor_cumul  = 0.0
    prev_enrolled = 0.0

    full: List[FullRow] = []
    for row in rows:
        T        = row.month
        period   = rules.period_for(T)
        is_recon = rules.is_reconciliation_month(T)

        net_paid = 0.0
        for t in tracks:
            net_paid += row.by_track[t].paid * (1 - adjustments[t].applied_for(period))
        net_paid = max(0.0, net_paid + row.rural_revenue - row.discount)

        accumulator = accumulator.accrue(row)
        released    = 0.0
        if is_recon:
            released, accumulator = accumulator.release(adjustments, period)
            logger.debug("Month {}: released {:.2f} withheld ({} period)", T, released, period)

        net_rev       = net_paid + released
        vendor_rev    = net_rev * inputs.vendor_share
        vendor_cumul += vendor_rev

        new_enr   = plan.new_enrollments[T]
        base_vals = {f.name: getattr(row, f.name) for f in fields(MonthlyRow)}
        full.append(FullRow(
            **base_vals,
            is_recon=is_recon,
            net_paid=net_paid,
            released=released,
            net_revenue=net_rev,
            vendor_revenue=vendor_rev,
            blended_adjustment=_blended_adjustment(row, adjustments, period, tracks),
            vendor_cumulative=vendor_cumul,
            newly_enrolled=new_enr.total,
            churned=prev_enrolled + new_enr.total - row.total_enrolled,
            net_change=row.total_enrolled - prev_enrolled,
            initial_enrolled=sum(row.by_track[t].initial for t in tracks),
            follow_on_enrolled=sum(row.by_track[t].follow_on for t in tracks),
            newly_enrolled_by_vintage=dict(new_enr.by_vintage),
        ))
        prev_enrolled = row.total_enrolled
    return full


# ══════════════════════════════════════════════════════════════════════════════
# SUMMARIES
# ══════════════════════════════════════════════════════════════════════════════
@dataclass
class YearSummary:
    label:              str
    gross:              float
    net:                float
    vendor:             float
    peak_enrolled:      float
    blended_adjustment: float
    is_total:           bool = False


@dataclass
class ThreeYearKPIs:
    vendor_y1:          float
    vendor_y2:          float
    vendor_y3:          float
    vendor_3y:          float
    gross_3y:           float
    net_3y:             float
    peak_enrolled:      float
    blended_adjustment: float


def _gross_weighted_adjustment(rows: List[FullRow]) -> float:
    num = sum(r.blended_adjustment * r.gross_revenue for r in rows)
    den = sum(r.gross_revenue for r in rows)
    return num / den if den > 0 else 0.0


def summarize_years(months: List[FullRow]) -> List[YearSummary]:
    out = []
    for y in YEARS:
        bucket = [r for r in months if r.year == y]
        out.append(YearSummary(
            label=YEAR_LABELS[y],
            gross=sum(r.gross_revenue for r in bucket),
            net=sum(r.net_revenue for r in bucket),
            vendor=sum(r.vendor_revenue for r in bucket),
            peak_enrolled=max((r.total_enrolled for r in bucket), default=0.0),
            blended_adjustment=_gross_weighted_adjustment(bucket),
        ))
    return out


def summarize_three_years(months: List[FullRow]) -> ThreeYearKPIs:
    by_year = {y: sum(r.vendor_revenue for r in months if r.year == y) for y in YEARS}
    return ThreeYearKPIs(
        vendor_y1=by_year[1],
        vendor_y2=by_year[2],
        vendor_y3=by_year[3],
        vendor_3y=by_year[1] + by_year[2] + by_year[3],
        gross_3y=sum(r.gross_revenue for r in months),
        net_3y=sum(r.net_revenue for r in months),
        peak_enrolled=max((r.total_enrolled for r in months), default=0.0),
        blended_adjustment=_gross_weighted_adjustment(months),
    )


def attribute_track_revenue(months: List[FullRow],
                            tracks: Tuple[Track, ...]) -> Dict[Track, Dict[int, float]]:
    """
    Vendor revenue split across tracks by each track's share of the month's
    paid+withheld revenue. Approximate: vendor revenue exists only in aggregate.
    """
    out = {t: {y: 0.0 for y in YEARS} for t in TRACKS}
    for r in months:
        total = sum(r.by_track[t].revenue for t in tracks)
        if total == 0:
            continue
        for t in tracks:
            out[t][r.year] += r.vendor_revenue * (r.by_track[t].revenue / total)
    return out


# ══════════════════════════════════════════════════════════════════════════════
# MODEL RUN
# ══════════════════════════════════════════════════════════════════════════════
@dataclass
class ModelResult:
    months:                List[FullRow]
    kpi:                   ThreeYearKPIs
    kpi_by_year:           List[YearSummary]
    adjustments:           Dict[Track, AdjustmentState]
    track_revenue_by_year: Dict[Track, Dict[int, float]]
    panel:                 PanelProjection
    active_tracks:         Tuple[Track, ...]
    sub_cohorts:           List[SubCohort]

    @property
    def three_year_row(self) -> YearSummary:
        return YearSummary(
            label="3-Year Total",
            gross=self.kpi.gross_3y,
            net=self.kpi.net_3y,
            vendor=self.kpi.vendor_3y,
            peak_enrolled=self.kpi.peak_enrolled,
            blended_adjustment=self.kpi.blended_adjustment,
            is_total=True,
        )


def run_model(inputs: ModelInputs, active_tracks: Optional[Iterable] = None) -> ModelResult:
    """
    Recompute the full 36-month ledger from scratch. Pure: no state survives
    between calls and `inputs` is never modified.
    """
    tracks = resolve_tracks(active_tracks)
    logger.debug("Running ACCESS model for tracks: {}", ", ".join(t.value for t in tracks))

    panel       = project_panel(inputs)
    plan        = build_cohorts(inputs, panel, tracks)
    rows        = simulate_months(inputs, plan, tracks)
    adjustments = compute_adjustments(inputs)
    months      = reconcile(inputs, rows, adjustments, plan, tracks)

    result = ModelResult(
        months=months,
        kpi=summarize_three_years(months),
        kpi_by_year=summarize_years(months),
        adjustments=adjustments,
        track_revenue_by_year=attribute_track_revenue(months, tracks),
        panel=panel,
        active_tracks=tracks,
        sub_cohorts=plan.sub_cohorts,
    )
    logger.debug("3-year vendor revenue {:.2f}, peak enrolled {:.0f}",
                 result.kpi.vendor_3y, result.kpi.peak_enrolled)
    return result
