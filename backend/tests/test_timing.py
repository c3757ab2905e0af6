"""タイミングパターン検出のユニットテスト"""

from datetime import date, datetime

import pytest

from docrisk.services.rules.timing import (
    END_OF_MONTH_BASELINE,
    WEEKEND_BASELINE,
    TimingPatternType,
    analyze_timing_patterns,
)

# 2025年3月10日〜14日、17日〜21日（すべて平日・月中）
WEEKDAYS = [date(2025, 3, d) for d in (10, 11, 12, 13, 14, 17, 18, 19, 20, 21)]


def _types(result) -> set[TimingPatternType]:
    return {p.type for p in result.patterns}


class TestAnalyzeTimingPatterns:
    """analyze_timing_patternsのテスト"""

    def test_normal_sample_has_no_patterns(self):
        result = analyze_timing_patterns(WEEKDAYS)
        assert result.sample_size == 10
        assert result.unusual_timing is False
        assert result.patterns == []

    def test_weekend_clustering(self):
        weekends = [date(2025, 3, d) for d in (1, 2, 8, 9, 15)]
        result = analyze_timing_patterns(weekends + WEEKDAYS[:5])

        assert result.unusual_timing is True
        pattern = result.patterns[0]
        assert pattern.type is TimingPatternType.WEEKEND
        assert pattern.count == 5
        assert pattern.percentage == pytest.approx(0.5)
        assert pattern.expected_percentage == pytest.approx(WEEKEND_BASELINE)
        assert pattern.deviation == pytest.approx(0.1)

    def test_weekend_share_at_threshold_not_flagged(self):
        weekends = [date(2025, 3, d) for d in (1, 2, 8, 9)]
        result = analyze_timing_patterns(weekends + WEEKDAYS[:6])
        assert TimingPatternType.WEEKEND not in _types(result)

    def test_end_of_month_clustering(self):
        month_end = [
            date(2025, 1, 29),
            date(2025, 1, 30),
            date(2025, 1, 31),
            date(2025, 4, 28),
            date(2025, 4, 29),
        ]
        result = analyze_timing_patterns(month_end + WEEKDAYS[:5])

        assert _types(result) == {TimingPatternType.END_OF_MONTH}
        pattern = result.patterns[0]
        assert pattern.expected_percentage == pytest.approx(END_OF_MONTH_BASELINE)

    def test_odd_hours_clustering(self):
        business = [datetime(2025, 3, d, 10, 30) for d in (10, 11, 12, 13, 14, 17)]
        late = [datetime(2025, 3, d, 22, 15) for d in (18, 19, 20, 21)]
        result = analyze_timing_patterns(business + late)

        assert _types(result) == {TimingPatternType.ODD_HOURS}
        assert result.patterns[0].percentage == pytest.approx(0.4)
        assert result.patterns[0].expected_percentage is None

    def test_midnight_treated_as_date_only(self):
        midnight = [datetime(2025, 3, d.day) for d in WEEKDAYS]
        result = analyze_timing_patterns(midnight)
        assert result.unusual_timing is False

    def test_six_pm_is_outside_business_hours(self):
        evening = [datetime(2025, 3, d.day, 18, 0) for d in WEEKDAYS]
        result = analyze_timing_patterns(evening)
        assert _types(result) == {TimingPatternType.ODD_HOURS}

    def test_too_few_samples(self):
        weekends = [date(2025, 3, d) for d in (1, 2, 8, 9, 15)]
        result = analyze_timing_patterns(weekends)
        assert result.sample_size == 5
        assert result.unusual_timing is False

    def test_min_samples_override(self):
        weekends = [date(2025, 3, d) for d in (1, 2, 8)]
        result = analyze_timing_patterns(weekends, min_samples=3)
        assert result.unusual_timing is True

    def test_non_dates_ignored(self):
        result = analyze_timing_patterns([None, "2025-03-01", 42, *WEEKDAYS])
        assert result.sample_size == 10

    def test_to_dict(self):
        weekends = [date(2025, 3, d) for d in (1, 2, 8, 9, 15)]
        data = analyze_timing_patterns(weekends + WEEKDAYS[:5]).to_dict()
        assert data["unusual_timing"] is True
        assert data["patterns"][0]["type"] == "weekend"
        assert "on weekends" in data["patterns"][0]["description"]
