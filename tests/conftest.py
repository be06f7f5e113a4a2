"""
Shared fixtures.
"""

from typing import List

import pytest

from cti_pipeline.normalizers.schema import RawRecord
from cti_pipeline.utils.env import ENV_OVERRIDES

from .fakes import fixed_clock, hours_ago, post_record, shodan_record


@pytest.fixture
def clock():
    return fixed_clock


@pytest.fixture
def correlated_records() -> List[RawRecord]:
    """SSH exposure seen 30 minutes before a post discussing SSH brute force."""
    return [
        shodan_record('45.33.32.156', 22, hours_ago(2.0), vulns=['CVE-2024-6387'], product='OpenSSH'),
        shodan_record('185.220.101.5', 3389, hours_ago(5.0), product='Remote Desktop'),
        post_record('Massive SSH brute force campaign hitting OpenSSH servers, CVE-2024-6387 '
                    'exploitation attempts reported by several honeypots today',
                    hours_ago(1.5), likes=150, reposts=20),
    ]


@pytest.fixture
def clean_env(monkeypatch):
    """No configuration leaks in from the developer's environment."""
    for key in list(ENV_OVERRIDES) + ['SHODAN_API_KEY', 'ANYLANG_API_URL', 'LIBRETRANSLATE_URL']:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch
