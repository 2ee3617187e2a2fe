from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from oficina.services.subscription_service import Plan, can_see_cashflow, get_active_plan, trial_days_left

NOW = datetime(2024, 6, 30, 12, 0, tzinfo=timezone.utc)


class ActivePlanTests(unittest.TestCase):
    def test_unknown_signup_is_pro(self) -> None:
        self.assertEqual(get_active_plan(None, NOW), Plan.PRO)

    def test_first_five_days_are_premium(self) -> None:
        self.assertEqual(get_active_plan(NOW - timedelta(days=5), NOW), Plan.PREMIUM)

    def test_days_six_to_thirteen_are_pro_plus(self) -> None:
        self.assertEqual(get_active_plan(NOW - timedelta(days=6), NOW), Plan.PRO_PLUS)
        self.assertEqual(get_active_plan(NOW - timedelta(days=13), NOW), Plan.PRO_PLUS)

    def test_after_thirteen_days_is_pro(self) -> None:
        self.assertEqual(get_active_plan(NOW - timedelta(days=13, hours=1), NOW), Plan.PRO)

    def test_naive_signup_time_is_treated_as_utc(self) -> None:
        naive = (NOW - timedelta(days=1)).replace(tzinfo=None)
        self.assertEqual(get_active_plan(naive, NOW), Plan.PREMIUM)

    def test_cashflow_gate(self) -> None:
        self.assertTrue(can_see_cashflow(Plan.PREMIUM))
        self.assertTrue(can_see_cashflow(Plan.PRO_PLUS))
        self.assertFalse(can_see_cashflow(Plan.PRO))


class TrialDaysLeftTests(unittest.TestCase):
    def test_counts_down_from_trial_window(self) -> None:
        self.assertEqual(trial_days_left(NOW - timedelta(days=10), NOW, trial_days=30), 20)

    def test_partial_day_rounds_up(self) -> None:
        self.assertEqual(trial_days_left(NOW - timedelta(days=10, hours=12), NOW, trial_days=30), 20)

    def test_never_negative(self) -> None:
        self.assertEqual(trial_days_left(NOW - timedelta(days=45), NOW, trial_days=30), 0)


if __name__ == '__main__':
    unittest.main()
