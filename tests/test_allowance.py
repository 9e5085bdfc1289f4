from datetime import date, datetime, timedelta
import unittest

from ryohi.core import AllowanceBreakdown, TripAllowanceRequest, ValidationError, compute_allowance, count_trip_days
from ryohi.rates import with_defaults
from ryohi.ui import render_allowance_summary


BASE_RATES = with_defaults(
    {
        "domestic_daily_allowance": 15000,
        "overseas_daily_allowance": 25000,
        "transportation_daily_allowance": 6000,
        "accommodation_daily_allowance": 16000,
        "use_transportation_allowance": True,
        "use_accommodation_allowance": True,
    }
)


def estimate(start, end, is_overseas=False, rates=BASE_RATES):
    return compute_allowance(TripAllowanceRequest(start, end, is_overseas, rates))


class AllowanceCalculatorTestCase(unittest.TestCase):
    def test_domestic_day_trip(self):
        breakdown = estimate(date(2024, 5, 10), date(2024, 5, 10))

        self.assertEqual(breakdown.days, 1)
        self.assertEqual(breakdown.daily_allowance_total, 15000)
        self.assertEqual(breakdown.transportation_total, 6000)
        self.assertEqual(breakdown.accommodation_total, 0)
        self.assertEqual(breakdown.grand_total, 21000)

    def test_domestic_one_night_trip(self):
        breakdown = estimate(date(2024, 5, 10), date(2024, 5, 11))

        self.assertEqual(breakdown.days, 2)
        self.assertEqual(breakdown.nights, 1)
        self.assertEqual(breakdown.daily_allowance_total, 30000)
        self.assertEqual(breakdown.transportation_total, 12000)
        self.assertEqual(breakdown.accommodation_total, 16000)
        self.assertEqual(breakdown.grand_total, 58000)

    def test_overseas_two_nights_without_transportation(self):
        rates = with_defaults(
            {
                "overseas_daily_allowance": 25000,
                "accommodation_daily_allowance": 16000,
                "use_transportation_allowance": False,
            }
        )
        breakdown = estimate(date(2024, 6, 1), date(2024, 6, 3), is_overseas=True, rates=rates)

        self.assertEqual(breakdown.days, 3)
        self.assertEqual(breakdown.daily_allowance_total, 75000)
        self.assertEqual(breakdown.transportation_total, 0)
        self.assertEqual(breakdown.accommodation_total, 2 * 16000)
        self.assertEqual(breakdown.preparation_total, 0)
        self.assertEqual(breakdown.grand_total, 107000)

    def test_day_count_matches_calendar_difference(self):
        start = date(2024, 2, 27)
        for offset in range(0, 10):
            end = start + timedelta(days=offset)
            self.assertEqual(count_trip_days(start, end), offset + 1)

    def test_times_of_day_are_ignored(self):
        self.assertEqual(count_trip_days(datetime(2024, 5, 10, 23, 30), datetime(2024, 5, 11, 0, 15)), 2)
        self.assertEqual(count_trip_days(datetime(2024, 5, 10, 8, 0), datetime(2024, 5, 10, 20, 0)), 1)

    def test_accommodation_is_zero_for_day_trips_regardless_of_rate(self):
        rates = with_defaults({"accommodation_daily_allowance": 99999, "use_accommodation_allowance": True})
        breakdown = estimate(date(2024, 5, 10), date(2024, 5, 10), rates=rates)
        self.assertEqual(breakdown.accommodation_total, 0)

    def test_disabled_flags_zero_their_category(self):
        rates = with_defaults(
            {
                "transportation_daily_allowance": 6000,
                "use_transportation_allowance": False,
                "use_accommodation_allowance": False,
            }
        )
        breakdown = estimate(date(2024, 5, 10), date(2024, 5, 14), rates=rates)

        self.assertEqual(breakdown.transportation_total, 0)
        self.assertEqual(breakdown.accommodation_total, 0)
        self.assertEqual(breakdown.grand_total, 5 * 15000)

    def test_overseas_preparation_allowance_is_paid_once(self):
        rates = with_defaults()
        breakdown = estimate(date(2024, 6, 1), date(2024, 6, 3), is_overseas=True, rates=rates)

        self.assertEqual(breakdown.preparation_total, 5000)
        self.assertEqual(breakdown.transportation_total, 3 * 8000)
        self.assertEqual(breakdown.accommodation_total, 2 * 20000)
        self.assertEqual(breakdown.grand_total, 75000 + 24000 + 40000)
        self.assertEqual(breakdown.to_dict()["grand_total"], 139000)
        self.assertEqual(breakdown.to_dict()["preparation_total"], 5000)
        self.assertIn("Total = 139000.", breakdown.calculation_steps)

    def test_summary_shows_preparation_outside_the_total(self):
        html = render_allowance_summary(
            estimate(date(2024, 6, 1), date(2024, 6, 3), is_overseas=True, rates=with_defaults())
        )
        self.assertIn("<th>合計</th><td>¥139,000</td>", html)
        self.assertIn("<th>支度料（別途）</th><td>¥5,000</td>", html)

    def test_domestic_trip_never_gets_preparation_allowance(self):
        breakdown = estimate(date(2024, 6, 1), date(2024, 6, 3), rates=with_defaults())
        self.assertEqual(breakdown.preparation_total, 0)

    def test_missing_dates_signal_insufficient_input(self):
        self.assertIsNone(estimate(None, date(2024, 5, 10)))
        self.assertIsNone(estimate(date(2024, 5, 10), None))

    def test_reversed_range_is_rejected(self):
        with self.assertRaises(ValidationError):
            estimate(date(2024, 5, 11), date(2024, 5, 10))

    def test_negative_rate_is_rejected(self):
        rates = with_defaults({"domestic_daily_allowance": -1})
        with self.assertRaises(ValidationError):
            estimate(date(2024, 5, 10), date(2024, 5, 10), rates=rates)

    def test_breakdown_is_deterministic_and_serializable(self):
        first = estimate(date(2024, 5, 10), date(2024, 5, 12))
        second = estimate(date(2024, 5, 10), date(2024, 5, 12))

        self.assertEqual(first, second)
        self.assertEqual(first.calculation_steps, second.calculation_steps)
        payload = first.to_dict()
        self.assertEqual(payload["grand_total"], first.grand_total)
        self.assertEqual(payload["nights"], 2)
        self.assertIsInstance(payload["calculation_steps"], list)
        self.assertEqual(payload["calculation_steps"][-1], f"Total = {first.grand_total}.")

    def test_zero_breakdown_differs_from_insufficient_input(self):
        zero = AllowanceBreakdown(days=1, daily_allowance_total=0, transportation_total=0, accommodation_total=0)
        self.assertEqual(zero.grand_total, 0)
        self.assertIsNotNone(zero)

    def test_summary_rendering(self):
        html = render_allowance_summary(estimate(date(2024, 5, 10), date(2024, 5, 11)))
        self.assertIn("2日間（1泊）", html)
        self.assertIn("¥58,000", html)
        self.assertNotIn("支度料", html)

        pending = render_allowance_summary(None)
        self.assertIn("pending", pending)


if __name__ == "__main__":
    unittest.main()
