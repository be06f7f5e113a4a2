"""
Tests for reasoning-service response parsers.
"""

import pytest

from cti_pipeline.analysis.parsing import (
    coerce_confidence, extract_json_object, extract_time_window, infer_kill_chain_phase,
    parse_bullets, parse_correlation_pattern, parse_risk_score, require_fields, split_sections
)
from cti_pipeline.analysis.stages import NARRATIVE_HEADERS, parse_key_correlations
from cti_pipeline.errors import ResponseParseError


class TestJsonExtraction:

    def test_code_fenced_object(self):
        assert extract_json_object('```json\n{"a": 1}\n```') == {'a': 1}

    def test_object_wrapped_in_prose(self):
        text = 'Here is the analysis: {"a": {"b": [1, 2]}} Let me know if you need more.'
        assert extract_json_object(text) == {'a': {'b': [1, 2]}}

    @pytest.mark.parametrize('text', ['', 'no json here', '[1, 2, 3]', '{"a": 1,,}'])
    def test_unusable_responses_raise(self, text):
        with pytest.raises(ResponseParseError):
            extract_json_object(text)

    def test_require_fields(self):
        require_fields({'headline': 'x', 'situationSummary': 'y'}, ['headline', 'situationSummary'])
        with pytest.raises(ResponseParseError, match='situationSummary'):
            require_fields({'headline': 'x', 'situationSummary': ''}, ['headline', 'situationSummary'])


class TestSections:

    RESPONSE = """**NARRATIVE:**
SSH scanning rose on exposed hosts before researchers discussed it.
CORRELATION PATTERN: Infrastructure first
KEY CORRELATIONS:
- Social event: honeypot operators report SSH brute force
  Infra event: 40 OpenSSH hosts exposed
  Time delta: 9 hours
  Significance: early scanning
EMERGING THREATS:
- regreSSHion exploitation
• Mirai variants on telnet
TIME WINDOW:
48 hour window"""

    def test_split_sections(self):
        sections = split_sections(self.RESPONSE, NARRATIVE_HEADERS)
        assert sections['NARRATIVE'].startswith('SSH scanning rose')
        assert sections['CORRELATION PATTERN'] == 'Infrastructure first'
        assert parse_bullets(sections['EMERGING THREATS']) == [
            'regreSSHion exploitation', 'Mirai variants on telnet']
        assert sections['TIME WINDOW'] == '48 hour window'

    def test_missing_headers_are_absent(self):
        sections = split_sections('NARRATIVE: only this', NARRATIVE_HEADERS)
        assert sections == {'NARRATIVE': 'only this'}

    def test_key_correlations(self):
        sections = split_sections(self.RESPONSE, NARRATIVE_HEADERS)
        correlations = parse_key_correlations(sections['KEY CORRELATIONS'])
        assert correlations[0]['socialEvent'] == 'honeypot operators report SSH brute force'
        assert correlations[0]['timeDelta'] == '9 hours'

    def test_correlation_pattern_rules(self):
        assert parse_correlation_pattern('Infrastructure first') == 'infra-first'
        assert parse_correlation_pattern('social-first activity') == 'social-first'
        assert parse_correlation_pattern('no clear correlation') == 'isolated'
        assert parse_correlation_pattern('it depends') is None

    def test_time_window(self):
        assert extract_time_window('expect activity within a 48 hour window') == '48 hour(s)'
        assert extract_time_window('soon') == '24-48 hours'


class TestRiskParsing:

    def test_word_and_explicit_number(self):
        assert parse_risk_score('High risk (score 72/100)') == ('high', 72)

    def test_word_only_uses_fixed_scores(self):
        assert parse_risk_score('critical') == ('critical', 90)
        assert parse_risk_score('Elevated') == ('high', 70)
        assert parse_risk_score('moderate') == ('medium', 50)
        assert parse_risk_score('LOW') == ('low', 25)

    def test_number_only_derives_level(self):
        assert parse_risk_score('85') == ('critical', 85)
        assert parse_risk_score('score: 35') == ('low', 35)

    def test_neither_raises(self):
        with pytest.raises(ResponseParseError):
            parse_risk_score('unclear')

    def test_kill_chain_phase(self):
        assert infer_kill_chain_phase('Active exploitation of VPN appliances') == 'Exploitation'
        assert infer_kill_chain_phase('payload staging') == 'Delivery'
        assert infer_kill_chain_phase('') == 'Reconnaissance'

    def test_coerce_confidence(self):
        assert coerce_confidence(0.3) == 0.3
        assert coerce_confidence(85) == 0.85
        assert coerce_confidence('0.7') == 0.7
        assert coerce_confidence('n/a') == 0.5
        assert coerce_confidence(-2) == 0.0
