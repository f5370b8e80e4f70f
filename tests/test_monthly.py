"""Tests for the monthly simulator: tiers, payment cycle, rural add-on, overlap discount."""

from dataclasses import replace

import pytest

from simulation import Track, run_model

ECKM_INC_V1 = 89_703 * 0.25 * 0.9 / 12
ECKM_INC_V2 = 89_703 * 0.40 * 0.25 / 12
MSK_INC_V1 = 69_416 * 0.25 * 0.9 / 12


def _month(result, m):
    return result.months[m - 1]


class TestTiers:
    def test_all_initial_in_first_year(self, eckm_only):
        assert all(r.follow_on_enrolled == 0 for r in eckm_only.months[:12])

    def test_follow_on_starts_at_age_13(self, eckm_only):
        row = _month(eckm_only, 13)
        # Only the month-1 sub-cohort has reached age 13
        assert row.by_track[Track.eCKM].follow_on == pytest.approx(ECKM_INC_V1)
        assert row.follow_on_enrolled == pytest.approx(ECKM_INC_V1)

    def test_msk_never_follow_on(self, no_churn_inputs):
        result = run_model(no_churn_inputs, [Track.MSK])
        assert all(r.follow_on_enrolled == 0 for r in result.months)
        assert _month(result, 36).by_track[Track.MSK].follow_on == 0

    def test_msk_bills_flat_rate(self, no_churn_inputs):
        result = run_model(no_churn_inputs, [Track.MSK])
        assert _month(result, 1).gross_revenue == pytest.approx(MSK_INC_V1 * 12)

    def test_msk_initial_rate_all_months(self, no_churn_inputs):
        result = run_model(no_churn_inputs, [Track.MSK])
        for r in result.months:
            assert r.gross_revenue == pytest.approx(r.total_enrolled * 12)
        last = _month(result, 36)
        live = sum(sc.live_at(36, 0.0) for sc in result.sub_cohorts)
        assert last.total_enrolled == pytest.approx(live)
        assert last.gross_revenue == pytest.approx(live * 12)


class TestPaymentCycle:
    def test_no_withholding_in_first_six_months(self, eckm_only):
        assert all(r.withheld_revenue == 0 for r in eckm_only.months[:6])

    def test_month_seven_withheld(self, eckm_only):
        # The month-1 sub-cohort is at cycle position 7, billed at the initial rate
        assert _month(eckm_only, 7).withheld_revenue == pytest.approx(ECKM_INC_V1 * 24)

    def test_cycle_repeats(self, eckm_only):
        # Month 13: the month-1 sub-cohort is back to a paid position
        row = _month(eckm_only, 13)
        withheld_ages = range(7, 13)
        assert row.withheld_revenue == pytest.approx(ECKM_INC_V1 * 24 * len(withheld_ages))


class TestRuralAddOn:
    def test_enrollment_month_only(self, eckm_only):
        assert _month(eckm_only, 1).rural_revenue == pytest.approx(ECKM_INC_V1 * 0.15 * 12)
        # Vintage 2 is the only sub-cohort enrolling in month 13
        assert _month(eckm_only, 13).rural_revenue == pytest.approx(ECKM_INC_V2 * 0.15 * 12)

    def test_not_after_ramp(self, no_churn_inputs):
        result = run_model(replace(no_churn_inputs, ramp_period=6), [Track.eCKM])
        assert _month(result, 7).rural_revenue == 0

    def test_rural_tracks_only(self, no_churn_inputs):
        result = run_model(no_churn_inputs, [Track.MSK, Track.BH])
        assert all(r.rural_revenue == 0 for r in result.months)

    def test_gross_identity(self, default_result):
        for r in default_result.months:
            assert r.gross_revenue == pytest.approx(
                r.paid_revenue + r.withheld_revenue + r.rural_revenue)


class TestOverlapDiscount:
    def test_single_track_no_discount(self, eckm_only):
        assert all(r.discount == 0 for r in eckm_only.months)

    def test_multi_track_discount(self, default_result):
        row = _month(default_result, 1)
        # All BH patients are in the initial tier in month 1
        assert row.discount == pytest.approx(row.total_enrolled * 0.05 * 12 * 0.05)

    def test_reference_rate_fallback_without_bh(self, default_inputs):
        result = run_model(default_inputs, [Track.eCKM, Track.CKM])
        row = _month(result, 1)
        assert row.discount == pytest.approx(row.total_enrolled * 0.05 * 12 * 0.05)

    def test_zero_overlap(self, default_inputs):
        result = run_model(replace(default_inputs, overlap_rate=0.0), [])
        assert all(r.discount == 0 for r in result.months)


class TestCostSharing:
    def test_collected_scales_revenue(self, default_inputs):
        waived = run_model(replace(default_inputs, overlap_rate=0.0), [Track.BH])
        collected = run_model(
            replace(default_inputs, overlap_rate=0.0, cost_sharing_waived=False), [Track.BH])
        for w, c in zip(waived.months, collected.months):
            assert c.gross_revenue == pytest.approx(w.gross_revenue * 1.25)
            assert c.total_enrolled == pytest.approx(w.total_enrolled)


class TestEnrollment:
    def test_month_one_enrolled(self, default_result):
        assert _month(default_result, 1).total_enrolled > 0

    def test_peak_not_before_ramp_completes(self, default_result):
        peak = max(default_result.months, key=lambda r: r.total_enrolled)
        assert peak.month >= 12

    def test_no_churn_no_losses(self, no_churn_inputs):
        result = run_model(no_churn_inputs, [])
        for r in result.months:
            assert r.churned == pytest.approx(0.0, abs=1e-6)

    def test_churn_accounting(self, default_result):
        prev = 0.0
        for r in default_result.months:
            assert r.churned == pytest.approx(prev + r.newly_enrolled - r.total_enrolled)
            assert r.net_change == pytest.approx(r.total_enrolled - prev)
            prev = r.total_enrolled

    def test_vintage_headcount_matches_total(self, default_result):
        for r in default_result.months:
            assert sum(r.by_vintage.values()) == pytest.approx(r.total_enrolled)

    def test_year_buckets(self, default_result):
        assert [r.year for r in default_result.months[10:14]] == [1, 1, 2, 2]
