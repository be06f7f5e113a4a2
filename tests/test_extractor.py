"""
Tests for text normalization and indicator extraction.
"""

from cti_pipeline.normalizers import IndicatorExtractor, IndicatorKind, merge_indicators, normalize_text
from cti_pipeline.normalizers.schema import DataSource, RawRecord, ThreatCategory, ThreatSeverity
from cti_pipeline.normalizers.text import categorize, determine_severity

from .fakes import hours_ago, post_record, shodan_record


def kinds_and_values(indicators):
    return {(i.kind, i.normalized_value) for i in indicators}


class TestNormalizeText:

    def test_strips_retweet_prefix_urls_and_thread_markers(self):
        text = 'RT @someone: New botnet (1/3) https://example.org/report?id=1 🧵'
        assert normalize_text(text) == '@someone: New botnet [example.org]'

    def test_keeps_first_three_hashtags_and_two_mentions(self):
        text = '#a #b #c #d @one @two @three done'
        assert normalize_text(text) == '#a #b #c @one @two done'

    def test_collapses_whitespace_and_control_characters(self):
        assert normalize_text('line one\n\n\tline   two') == 'line one line two'


class TestIndicatorExtractor:

    def test_host_record_yields_port_ip_cve_and_domain(self):
        record = shodan_record('45.33.32.156', 22, hours_ago(1), vulns=['cve-2024-6387'],
                               hostnames=['scanme.example.net'])
        found = kinds_and_values(IndicatorExtractor().extract([record]))
        assert (IndicatorKind.PORT, '22') in found
        assert (IndicatorKind.IP, '45.33.32.156') in found
        assert (IndicatorKind.CVE, 'CVE-2024-6387') in found
        assert (IndicatorKind.DOMAIN, 'scanme.example.net') in found

    def test_private_addresses_are_dropped(self):
        host = shodan_record('192.168.1.20', 3389, hours_ago(1))
        post = post_record('Internal box 10.0.0.5 and loopback 127.0.0.1 were seen talking to '
                           'a public relay at 185.220.101.5 during the incident', hours_ago(1))
        indicators = IndicatorExtractor().extract([host, post])
        ips = {i.normalized_value for i in indicators if i.kind == IndicatorKind.IP}
        assert ips == {'185.220.101.5'}

    def test_social_post_maps_service_keywords_onto_port_signal(self, correlated_records):
        post = correlated_records[2]
        found = kinds_and_values(IndicatorExtractor().extract([post]))
        assert (IndicatorKind.PORT, '22') in found
        assert (IndicatorKind.CVE, 'CVE-2024-6387') in found
        assert (IndicatorKind.KEYWORD, 'bruteforce') in found

    def test_malware_and_actor_dictionaries_use_canonical_names(self):
        post = post_record('LockBit affiliates and Fancy Bear operators both abused the same '
                           'edge appliances this week according to several reports', hours_ago(1))
        found = kinds_and_values(IndicatorExtractor().extract([post]))
        assert (IndicatorKind.MALWARE_FAMILY, 'lockbit') in found
        assert (IndicatorKind.THREAT_ACTOR, 'apt28') in found

    def test_repeated_mentions_in_one_record_collapse(self):
        post = post_record('CVE-2023-4966 again: CVE-2023-4966 is being exploited, patch '
                           'CVE-2023-4966 on every NetScaler appliance right now', hours_ago(1))
        indicators = IndicatorExtractor().extract([post])
        cves = [i for i in indicators if i.kind == IndicatorKind.CVE]
        assert len(cves) == 1

    def test_same_value_in_two_records_is_kept_twice(self):
        records = [
            shodan_record('45.33.32.156', 22, hours_ago(2)),
            shodan_record('185.220.101.5', 22, hours_ago(1)),
        ]
        ports = [i for i in IndicatorExtractor().extract(records) if i.kind == IndicatorKind.PORT]
        assert len(ports) == 2

    def test_record_without_matches_yields_nothing(self):
        post = post_record('Lovely weather for a long walk along the river with friends and family',
                           hours_ago(1))
        assert IndicatorExtractor().extract([post]) == []

    def test_keywords_only_match_whole_words(self):
        benign = post_record('We will continue monitoring these sources and share exploitation '
                             'details as they become available', hours_ago(1))
        found = kinds_and_values(IndicatorExtractor().extract([benign]))
        assert not any(kind == IndicatorKind.MALWARE_FAMILY for kind, _ in found)
        assert (IndicatorKind.KEYWORD, 'exploit') not in found

        threat = post_record('Conti affiliates chain an RCE with stolen VPN credentials in new '
                             'intrusions', hours_ago(1))
        found = kinds_and_values(IndicatorExtractor().extract([threat]))
        assert (IndicatorKind.KEYWORD, 'exploit') in found
        assert any(kind == IndicatorKind.MALWARE_FAMILY for kind, _ in found)

    def test_malformed_payload_is_skipped(self):
        broken = RawRecord.build(DataSource.SHODAN, hours_ago(1), {'port': 'not-a-port'})
        good = shodan_record('45.33.32.156', 443, hours_ago(1))
        indicators = IndicatorExtractor().extract([broken, good])
        assert {i.record_id for i in indicators} == {good.record_id}

    def test_record_confidence(self):
        assert IndicatorExtractor.record_confidence([]) == 0.3
        assert IndicatorExtractor.record_confidence([IndicatorKind.PORT] * 5) == 0.6
        assert IndicatorExtractor.record_confidence([IndicatorKind.CVE], engagement=2000) == 0.8
        assert IndicatorExtractor.record_confidence([IndicatorKind.CVE] * 4, engagement=5000) == 1.0

    def test_unparseable_timestamp_keeps_raw_text(self):
        record = shodan_record('45.33.32.156', 22, 'yesterday-ish')
        assert record.observed_at is None
        assert record.raw_timestamp == 'yesterday-ish'
        indicators = IndicatorExtractor().extract([record])
        assert indicators and all(i.observed_at is None for i in indicators)


class TestMergeIndicators:

    def test_merges_across_sources(self, correlated_records):
        merged = merge_indicators(IndicatorExtractor().extract(correlated_records))
        cve = next(e for e in merged if e['tag'] == 'cve:CVE-2024-6387')
        assert cve['sources'] == ['shodan', 'x.com']
        assert cve['count'] == 2
        assert cve['first_seen'] <= cve['last_seen']


class TestClassification:

    def test_categorize(self):
        assert categorize('New ransomware strain demands ransom from hospitals') == ThreatCategory.RANSOMWARE

    def test_severity_keywords(self):
        assert determine_severity('Urgent: zero-day under active exploitation') == ThreatSeverity.CRITICAL
        assert determine_severity('minor issue with limited impact') == ThreatSeverity.LOW
