"""Tests for the (QoS, delay) sweep grid."""

from mqtt_sweep.config import SweepSettings
from mqtt_sweep.plan import SweepPlan


class TestSweepPlan:
    """Ordering and restartability of the grid."""

    def test_default_grid_has_eighteen_points(self):
        plan = SweepPlan()
        points = plan.points()
        assert len(points) == 18
        assert len(plan) == 18
        assert points[:3] == [(0, 0), (0, 10), (0, 20)]
        assert points[-1] == (2, 500)

    def test_qos_is_the_outer_loop(self):
        plan = SweepPlan(qos_levels=(0, 1), delays=(5, 7))
        assert list(plan) == [(0, 5), (0, 7), (1, 5), (1, 7)]

    def test_iteration_restarts_from_first_point(self):
        plan = SweepPlan(qos_levels=(1, 2), delays=(0, 10))
        first = list(plan)
        second = list(plan)
        assert first == second
        assert plan.points() == first

    def test_lists_are_frozen_into_tuples(self):
        plan = SweepPlan(qos_levels=[0, 2], delays=[10])
        assert plan.qos_levels == (0, 2)
        assert plan.delays == (10,)
        assert hash(plan) == hash(SweepPlan((0, 2), (10,)))

    def test_starts_row_marks_each_new_qos(self):
        plan = SweepPlan(qos_levels=(0, 1, 2), delays=(0, 10, 20))
        rows = [i for i in range(len(plan)) if plan.starts_row(i)]
        assert rows == [0, 3, 6]

    def test_starts_row_with_repeated_delays(self):
        plan = SweepPlan(qos_levels=(0, 1), delays=(10, 10))
        assert [plan.starts_row(i) for i in range(4)] == [True, False, True, False]

    def test_empty_delays_yield_no_points(self):
        plan = SweepPlan(qos_levels=(0, 1), delays=())
        assert list(plan) == []
        assert not plan.starts_row(0)

    def test_from_settings(self):
        settings = SweepSettings(qos_levels=(2,), delays=(0, 100))
        plan = SweepPlan.from_settings(settings)
        assert list(plan) == [(2, 0), (2, 100)]
