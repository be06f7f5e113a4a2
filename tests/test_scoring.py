"""
Tests for risk scoring and the historical run cache.
"""

import json
from itertools import product

from cti_pipeline.scoring import (
    HistoricalCache, RiskLevel, confidence_level, map_stage_level, risk_level, risk_score
)
from cti_pipeline.scoring.history import HISTORY_FILE

from .fakes import fixed_clock


class TestRiskScore:

    def test_two_critical_and_one_high_is_critical(self):
        score = risk_score(critical=2, high=1, medium=0, low=0)
        assert score == 100
        assert risk_level(score) == RiskLevel.CRITICAL

    def test_weights(self):
        assert risk_score(1, 0, 0, 0) == 40
        assert risk_score(0, 1, 0, 0) == 20
        assert risk_score(0, 0, 1, 0) == 5
        assert risk_score(0, 0, 0, 1) == 1
        assert risk_score(0, 0, 0, 0) == 0

    def test_bounded_and_never_negative(self):
        assert risk_score(10, 10, 10, 10) == 100
        assert risk_score(-3, 0, 0, 0) == 0

    def test_monotonic_in_every_count(self):
        for counts in product(range(3), repeat=4):
            base = risk_score(*counts)
            for i in range(4):
                bumped = list(counts)
                bumped[i] += 1
                assert risk_score(*bumped) >= base

    def test_level_thresholds(self):
        assert risk_level(75) == RiskLevel.CRITICAL
        assert risk_level(74) == RiskLevel.ELEVATED
        assert risk_level(45) == RiskLevel.ELEVATED
        assert risk_level(44) == RiskLevel.MODERATE
        assert risk_level(15) == RiskLevel.MODERATE
        assert risk_level(14) == RiskLevel.LOW

    def test_confidence(self):
        assert confidence_level(1, 1) == 60
        assert confidence_level(2, 5) == 80
        assert confidence_level(2, 10, has_analysis=True) == 95
        assert confidence_level(4, 50, has_analysis=True) == 95

    def test_map_stage_level(self):
        assert map_stage_level('High') == RiskLevel.ELEVATED
        assert map_stage_level('medium') == RiskLevel.MODERATE
        assert map_stage_level('') is None
        assert map_stage_level('severe') is None


class TestHistoricalCache:

    def test_empty_cache_is_stable(self, tmp_path):
        cache = HistoricalCache(tmp_path, clock=fixed_clock)
        context = cache.context()
        assert context.previous == []
        assert context.trend_direction == 'stable'
        baseline = cache.compare(40)
        assert baseline.previous_risk_score == 40
        assert baseline.delta == 0
        assert baseline.trend_direction == 'stable'

    def test_compare_against_previous_run(self, tmp_path):
        cache = HistoricalCache(tmp_path, clock=fixed_clock)
        cache.record(30, 'moderate', ['CVE-2024-6387'])
        baseline = cache.compare(62)
        assert baseline.delta == 32
        assert baseline.anomaly_level == 'severe'
        assert baseline.trend_direction == 'increasing'
        assert cache.compare(27).trend_direction == 'stable'
        assert cache.compare(15).anomaly_level == 'mild'

    def test_entries_are_capped(self, tmp_path):
        cache = HistoricalCache(tmp_path, clock=fixed_clock, max_entries=3)
        for score in (10, 20, 30, 40):
            cache.record(score, 'low', [])
        assert [e.risk_score for e in cache.load()] == [20, 30, 40]

    def test_trend_and_common_cves(self, tmp_path):
        cache = HistoricalCache(tmp_path, clock=fixed_clock)
        for score in (10, 10, 10, 60, 60, 60, 60, 60):
            cache.record(score, 'low', ['CVE-2024-6387', f"CVE-2025-{score:04d}"])
        context = cache.context()
        assert context.trend_direction == 'worsening'
        assert context.common_cves[0] == 'CVE-2024-6387'

    def test_corrupt_file_is_a_cold_start(self, tmp_path):
        (tmp_path / HISTORY_FILE).write_text('{not json', encoding='utf-8')
        assert HistoricalCache(tmp_path).load() == []

    def test_malformed_entries_are_dropped(self, tmp_path):
        (tmp_path / HISTORY_FILE).write_text(json.dumps([
            {'timestamp': '2025-03-09T12:00:00Z', 'risk_score': 20, 'risk_level': 'moderate'},
            {'timestamp': '2025-03-09T18:00:00Z'},
        ]), encoding='utf-8')
        entries = HistoricalCache(tmp_path).load()
        assert [e.risk_score for e in entries] == [20]
