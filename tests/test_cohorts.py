"""Tests for panel growth and the cohort builder."""

from dataclasses import replace

import pytest

from errors import InvalidInput
from simulation import (TRACKS, SubCohort, Track, build_cohorts, project_panel,
                        ramp_window, vintage_target)


def _increments(plan, track, vintage):
    return [sc.increment for sc in plan.sub_cohorts
            if sc.track == track and sc.vintage == vintage]


class TestProjectPanel:
    def test_shares(self, default_inputs):
        panel = project_panel(default_inputs)
        assert panel.shares[Track.eCKM] == pytest.approx(89_703 / 182_774)

    def test_new_eligible(self, default_inputs):
        panel = project_panel(default_inputs)
        # Growth lands on each track in proportion to its panel share
        assert panel.new_eligible[2][Track.CKM] == pytest.approx(107_862 * 0.4)
        assert panel.new_eligible[3][Track.CKM] == pytest.approx(107_862 * 1.4 * 0.4)

    def test_eligible_cumulative(self, default_inputs):
        panel = project_panel(default_inputs)
        y1, y2, y3 = (panel.eligible_by_year[y][Track.BH] for y in (1, 2, 3))
        assert y1 == 83_044
        assert y2 == pytest.approx(y1 + panel.new_eligible[2][Track.BH])
        assert y3 == pytest.approx(y2 + panel.new_eligible[3][Track.BH])

    def test_later_vintages_ramp_new_arrivals_only(self, default_inputs):
        panel = project_panel(default_inputs)
        assert panel.cohort_bases[2] == panel.new_eligible[2]
        assert panel.cohort_bases[1] == panel.eligible_by_year[1]

    def test_zero_panel_raises(self, default_inputs):
        with pytest.raises(InvalidInput):
            project_panel(replace(default_inputs, total_panel=0))


class TestRampWindow:
    def test_default_windows(self, default_inputs):
        assert ramp_window(default_inputs, 1) == (1, 12)
        assert ramp_window(default_inputs, 2) == (13, 24)
        assert ramp_window(default_inputs, 3) == (25, 36)

    def test_truncated_at_horizon(self, default_inputs):
        assert ramp_window(replace(default_inputs, ramp_period=18), 3) == (25, 36)
        assert ramp_window(replace(default_inputs, ramp_period=18), 2) == (13, 30)


class TestBuildCohorts:
    def test_sub_cohort_count(self, default_inputs):
        plan = build_cohorts(default_inputs, project_panel(default_inputs), TRACKS)
        assert len(plan.sub_cohorts) == 4 * 3 * 12

    def test_ramp_sums_to_target(self, default_inputs):
        panel = project_panel(default_inputs)
        plan = build_cohorts(default_inputs, panel, TRACKS)
        target = vintage_target(default_inputs, panel.cohort_bases[1], Track.eCKM, 1)
        assert target == pytest.approx(89_703 * 0.25 * 0.9)
        assert sum(_increments(plan, Track.eCKM, 1)) == pytest.approx(target)

    def test_control_group_only_in_year_one(self, default_inputs):
        panel = project_panel(default_inputs)
        target = vintage_target(default_inputs, panel.cohort_bases[2], Track.MSK, 2)
        assert target == pytest.approx(panel.new_eligible[2][Track.MSK] * 0.25)

    def test_truncated_ramp_falls_short(self, default_inputs):
        inputs = replace(default_inputs, ramp_period=18)
        panel = project_panel(inputs)
        plan = build_cohorts(inputs, panel, TRACKS)
        target = vintage_target(inputs, panel.cohort_bases[3], Track.CKM, 3)
        increments = _increments(plan, Track.CKM, 3)
        assert len(increments) == 12
        assert sum(increments) == pytest.approx(target * 12 / 18)

    def test_only_active_tracks(self, default_inputs):
        plan = build_cohorts(default_inputs, project_panel(default_inputs), (Track.BH,))
        assert {sc.track for sc in plan.sub_cohorts} == {Track.BH}

    def test_zero_penetration_skips_track(self, default_inputs):
        inputs = (default_inputs.with_penetration_mode("per_track")
                  .with_track_value("penetration_by_track", Track.MSK, 0.0))
        plan = build_cohorts(inputs, project_panel(inputs), TRACKS)
        assert Track.MSK not in {sc.track for sc in plan.sub_cohorts}

    def test_new_enrollments_by_month(self, default_inputs):
        plan = build_cohorts(default_inputs, project_panel(default_inputs), TRACKS)
        month1 = sum(sc.increment for sc in plan.sub_cohorts if sc.enroll_month == 1)
        assert plan.new_enrollments[1].total == pytest.approx(month1)
        assert plan.new_enrollments[1].by_vintage[2] == 0.0
        assert plan.new_enrollments[13].by_vintage[2] > 0
        assert set(plan.new_enrollments) == set(range(1, 37))

    def test_zero_ramp_raises(self, default_inputs):
        inputs = replace(default_inputs, ramp_period=0)
        with pytest.raises(InvalidInput):
            build_cohorts(inputs, project_panel(default_inputs), TRACKS)


class TestSubCohort:
    def test_age(self):
        sc = SubCohort(track=Track.CKM, vintage=1, enroll_month=5, increment=100.0)
        assert sc.age_at(5) == 1
        assert sc.age_at(17) == 13

    def test_decay(self):
        sc = SubCohort(track=Track.CKM, vintage=1, enroll_month=1, increment=100.0)
        assert sc.live_at(1, 0.02) == 100.0
        assert sc.live_at(4, 0.02) == pytest.approx(100.0 * 0.98 ** 3)

    def test_decay_non_increasing(self):
        sc = SubCohort(track=Track.BH, vintage=1, enroll_month=1, increment=50.0)
        live = [sc.live_at(m, 0.2 / 12) for m in range(1, 37)]
        assert all(a >= b for a, b in zip(live, live[1:]))

    def test_no_churn_constant(self):
        sc = SubCohort(track=Track.BH, vintage=1, enroll_month=3, increment=50.0)
        assert sc.live_at(36, 0.0) == 50.0
