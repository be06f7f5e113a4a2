"""
Tests for structure-preserving artifact translation.
"""

import copy
import json
from datetime import timedelta
from threading import Lock

import pytest
import requests

from cti_pipeline.errors import ReasoningServiceError, TranslationError
from cti_pipeline.translation import (
    HttpTranslationProvider, JsonTranslator, TranslationCache, protect, restore, should_translate
)

from .fakes import FIXED_NOW, FakeResponse, FakeSession, fixed_clock


class PrefixingClient:
    """Translates by prefixing the text under translation with 'ES:'."""

    def __init__(self, available=True, reply=None, error=None):
        self.available = available
        self.reply = reply
        self.error = error
        self.texts = []
        self._lock = Lock()

    def generate(self, prompt, model, timeout=None, options=None, stream=False):
        text = prompt.split('\n', 4)[4]
        with self._lock:
            self.texts.append(text)
        if self.error is not None:
            raise self.error
        return self.reply if self.reply is not None else f"ES:{text}"


ARTIFACT = {
    'meta': {'generatedAt': '2025-03-10T12:00:00Z', 'note': 'Generated daily'},
    'executive': {
        'headline': 'Critical SSH exposure',
        'keyFindings': ['Patch CVE-2024-6387 on 45.33.32.156 now'],
    },
    'indicators': {'cves': ['CVE-2024-6387'], 'riskLevel': 'critical'},
    'modelMetadata': {'note': 'Generated locally'},
    'metrics': {'score': 72, 'active': True, 'missing': None},
    'queries': [{'query': 'port:22', 'rationale': 'SSH exposure grew'}],
}


class TestJsonTranslator:

    def test_prose_is_translated_and_structure_kept(self):
        original = copy.deepcopy(ARTIFACT)
        result = JsonTranslator(PrefixingClient(), model='mistral').translate(ARTIFACT)

        assert ARTIFACT == original
        assert list(result) == list(ARTIFACT)
        assert result['executive']['headline'] == 'ES:Critical SSH exposure'
        assert result['executive']['keyFindings'] == ['ES:Patch CVE-2024-6387 on 45.33.32.156 now']
        assert result['queries'] == [{'query': 'port:22', 'rationale': 'ES:SSH exposure grew'}]
        assert result['metrics'] == ARTIFACT['metrics']
        assert result['indicators'] == ARTIFACT['indicators']

    def test_denied_paths_are_untouched(self):
        result = JsonTranslator(PrefixingClient(), model='mistral').translate(ARTIFACT)
        assert result['meta'] == ARTIFACT['meta']
        assert result['modelMetadata'] == ARTIFACT['modelMetadata']

    def test_technical_tokens_never_reach_the_provider(self):
        client = PrefixingClient()
        JsonTranslator(client, model='mistral').translate(ARTIFACT)
        joined = '\n'.join(client.texts)
        assert 'CVE-2024-6387' not in joined
        assert '45.33.32.156' not in joined

    def test_every_occurrence_is_replaced_once_translated(self):
        tree = {'a': {'summary': 'Same text here'}, 'b': [{'summary': 'Same text here'}]}
        client = PrefixingClient()
        result = JsonTranslator(client, model='mistral').translate(tree)
        assert result == {'a': {'summary': 'ES:Same text here'}, 'b': [{'summary': 'ES:Same text here'}]}
        assert client.texts == ['Same text here']

    def test_placeholder_only_strings_skip_the_provider(self):
        client = PrefixingClient()
        result = JsonTranslator(client, model='mistral').translate({'summary': 'CVE-2024-6387'})
        assert result == {'summary': 'CVE-2024-6387'}
        assert client.texts == []

    def test_quality_gate_uses_http_fallback(self):
        client = PrefixingClient(reply='x' * 200)
        session = FakeSession([FakeResponse(200, {'translatedText': 'Hola mundo'})])
        fallback = HttpTranslationProvider(['http://translate.local/translate'], session=session)
        result = JsonTranslator(client, model='mistral', fallback=fallback).translate({'summary': 'Hello world'})
        assert result == {'summary': 'Hola mundo'}
        assert session.calls[0]['json']['q'] == 'Hello world'

    def test_output_that_drops_a_protected_token_is_rejected(self):
        headline = 'Patch CVE-2024-12345 on the server right now'
        client = PrefixingClient(reply='Parchee la vulnerabilidad en el servidor ahora mismo')
        assert JsonTranslator(client, model='mistral').translate({'headline': headline}) == {'headline': headline}

        session = FakeSession([FakeResponse(200, {'translatedText': 'Parchee __HFSEG_0__ en el servidor ya'})])
        fallback = HttpTranslationProvider(['http://translate.local/translate'], session=session)
        result = JsonTranslator(client, model='mistral', fallback=fallback).translate({'headline': headline})
        assert result == {'headline': 'Parchee CVE-2024-12345 en el servidor ya'}

    def test_untranslatable_text_keeps_original(self):
        client = PrefixingClient(error=ReasoningServiceError('timeout'))
        fallback = HttpTranslationProvider([], session=FakeSession())
        result = JsonTranslator(client, model='mistral', fallback=fallback).translate({'summary': 'Hello world'})
        assert result == {'summary': 'Hello world'}

    def test_cached_translations_are_reused(self, tmp_path):
        cache = TranslationCache(tmp_path, clock=fixed_clock)
        JsonTranslator(PrefixingClient(), model='mistral', cache=cache).translate({'summary': 'Hello world'})

        reloaded = TranslationCache(tmp_path, clock=fixed_clock)
        assert reloaded.load() == 1
        client = PrefixingClient()
        result = JsonTranslator(client, model='mistral', cache=reloaded).translate({'summary': 'Hello world'})
        assert result == {'summary': 'ES:Hello world'}
        assert client.texts == []


class TestTranslationRules:

    def test_field_rules(self):
        assert should_translate('headline', 'CVE-2024-6387 exploited', 'executive.headline')
        assert not should_translate('riskLevel', 'critical', 'executive.riskLevel')
        assert not should_translate('note', '2025-03-10T12:00:00Z', 'extra.note')
        assert not should_translate('note', '12345', 'extra.note')
        assert should_translate('note', 'Free text', 'extra.note')

    def test_meta_prefix_matches_whole_segments(self):
        assert not should_translate('note', 'Free text', 'meta.note')
        assert should_translate('note', 'Free text', 'metadataNotes.note')
        assert not should_translate('note', 'Free text', 'signalLayer.raw.0.note')

    def test_protect_and_restore(self):
        text = 'See https://example.org/a about CVE-2024-3400 on Shodan, port ssh:22'
        prepared, placeholders = protect(text)
        assert len(placeholders) == 4
        assert 'CVE-2024-3400' not in prepared
        assert restore(prepared, placeholders) == text


class TestTranslationCache:

    def test_entries_expire(self, tmp_path):
        cache = TranslationCache(tmp_path, ttl_seconds=3600, clock=fixed_clock)
        cache.put('Hello', 'Hola')
        cache.flush()
        assert cache.get('Hello') == 'Hola'

        later = TranslationCache(tmp_path, ttl_seconds=3600, clock=lambda: FIXED_NOW + timedelta(hours=2))
        assert later.load() == 0
        assert later.get('Hello') is None

    def test_persisted_entry_shape(self, tmp_path):
        cache = TranslationCache(tmp_path, ttl_seconds=3600, model='gemma3-translator', clock=fixed_clock)
        cache.put('Hello', 'Hola')
        cache.flush()

        stored = json.loads((tmp_path / 'translation-cache.json').read_text(encoding='utf-8'))
        key, entry = next(iter(stored.items()))
        assert entry == {
            'keyHash': key,
            'inputText': 'Hello',
            'outputText': 'Hola',
            'createdAt': FIXED_NOW.isoformat(),
            'ttl': 3600.0,
            'producerId': 'gemma3-translator',
        }

    def test_corrupt_file_is_a_cold_start(self, tmp_path):
        (tmp_path / 'translation-cache.json').write_text('[broken', encoding='utf-8')
        assert TranslationCache(tmp_path, clock=fixed_clock).load() == 0


class TestHttpTranslationProvider:

    def test_second_endpoint_answers(self):
        session = FakeSession([
            requests.ConnectionError('refused'),
            FakeResponse(200, {'translation': 'Hola'}),
        ])
        provider = HttpTranslationProvider(['http://a.local/t', 'http://b.local/t'], session=session)
        assert provider.translate('Hello') == 'Hola'
        assert [c['url'] for c in session.calls] == ['http://a.local/t', 'http://b.local/t']

    def test_all_endpoints_failing_raises(self):
        session = FakeSession([FakeResponse(503), FakeResponse(200, ValueError('not json'))])
        provider = HttpTranslationProvider(['http://a.local/t', 'http://b.local/t'], session=session)
        with pytest.raises(TranslationError, match='invalid JSON'):
            provider.translate('Hello')
