"""
Unit tests for the transform registry and built-in transforms.

Tests cover:
- Registration, lookup and error wrapping in TransformRegistry
- Format parse and serialize transforms
- One-way filters
- Codex MCP conversion in both directions, including inline header tables
"""

import json

import pytest
import toml

from adapters import create_default_registry, register_default_transforms
from adapters.codex import codex_to_mcp, dump_codex_toml, mcp_to_codex, split_headers
from adapters.filters import FilterEmptyTransform
from core.errors import TransformExecutionError
from core.transforms import Transform, TransformRegistry

REMOTE_SERVER = {
    'url': 'https://mcp.example.com',
    'headers': {
        'Authorization': 'Bearer ${env:DOCS_TOKEN}',
        'X-Api-Key': '${env:DOCS_KEY}',
        'X-Team': 'platform',
    },
    'timeout': 30,
}

LOCAL_SERVER = {
    'command': 'npx',
    'args': ['-y', 'docs-server'],
    'env': {'DEBUG': '1'},
    'enabled_tools': ['search'],
}


class UpperTransform(Transform):
    """Test transform that upper-cases text."""

    @property
    def name(self) -> str:
        return 'upper'

    def execute(self, document, options=None):
        return document.upper()


@pytest.fixture
def registry():
    return create_default_registry()


class TestTransformRegistry:
    """Tests for TransformRegistry."""

    def test_register_and_execute(self):
        """Test a registered transform can be run by name."""
        registry = TransformRegistry()
        registry.register(UpperTransform())
        assert registry.has('upper')
        assert registry.execute('upper', 'abc') == 'ABC'
        assert registry.list_transforms() == ['upper']

    def test_duplicate_registration(self):
        """Test registering the same name twice fails."""
        registry = TransformRegistry()
        registry.register(UpperTransform())
        with pytest.raises(ValueError, match="already registered"):
            registry.register(UpperTransform())

    def test_defaults_cannot_be_registered_twice(self, registry):
        """Test re-registering the built-ins into a filled registry fails."""
        with pytest.raises(ValueError, match="already registered"):
            register_default_transforms(registry)

    def test_unregister(self):
        """Test removing transforms, including unknown names."""
        registry = TransformRegistry()
        registry.register(UpperTransform())
        registry.unregister('upper')
        registry.unregister('missing')
        assert registry.get('upper') is None

    def test_unknown_transform(self):
        """Test running an unknown name."""
        with pytest.raises(TransformExecutionError, match="Unknown transform: nope") as info:
            TransformRegistry().execute('nope', {})
        assert info.value.transform_name == 'nope'

    def test_failures_are_wrapped(self):
        """Test exceptions from a transform surface as TransformExecutionError."""
        registry = TransformRegistry()
        registry.register(UpperTransform())
        with pytest.raises(TransformExecutionError, match="Transform 'upper' failed"):
            registry.execute('upper', 42)

    def test_bidirectional_flags(self, registry):
        """Test converters are bidirectional and filters are not."""
        assert registry.is_bidirectional('yaml')
        assert registry.is_bidirectional('mcp-to-codex-toml')
        assert not registry.is_bidirectional('filter-empty')
        assert not registry.is_bidirectional('filter-comments')
        assert not registry.is_bidirectional('unknown')

    def test_builtin_names(self, registry):
        """Test every built-in transform is registered."""
        assert set(registry.list_transforms()) == {
            'json', 'jsonc', 'yaml', 'toml', 'to-json', 'to-yaml', 'to-toml',
            'filter-empty', 'filter-null', 'filter-comments',
            'mcp-to-codex-schema', 'mcp-to-codex-toml', 'codex-toml-to-mcp',
        }


class TestFormatTransforms:
    """Tests for parse and serialize transforms."""

    def test_parse(self, registry):
        """Test each parser."""
        assert registry.execute('json', '{"a": 1}') == {'a': 1}
        assert registry.execute('jsonc', '{"a": 1 // note\n}') == {'a': 1}
        assert registry.execute('yaml', 'a: [1, 2]\n') == {'a': [1, 2]}
        assert registry.execute('toml', 'a = 1\n') == {'a': 1}

    def test_parse_passes_structured_input(self, registry):
        """Test parsers leave parsed documents alone."""
        assert registry.execute('yaml', {'a': 1}) == {'a': 1}
        assert registry.execute('json', '   ') == {}

    def test_serialize(self, registry):
        """Test each serializer."""
        assert json.loads(registry.execute('to-json', {'a': 1})) == {'a': 1}
        assert registry.execute('to-yaml', {'a': 1}) == 'a: 1\n'
        assert toml.loads(registry.execute('to-toml', {'a': 1})) == {'a': 1}
        assert registry.execute('to-json', 'already text') == 'already text'

    def test_toml_needs_table(self, registry):
        """Test TOML serialization of a list fails."""
        with pytest.raises(TransformExecutionError, match="TOML documents must be tables"):
            registry.execute('to-toml', [1, 2])

    def test_invalid_text(self, registry):
        """Test parse failures are wrapped."""
        with pytest.raises(TransformExecutionError, match="Transform 'json' failed"):
            registry.execute('json', '{bad')


class TestFilters:
    """Tests for one-way filters."""

    def test_filter_empty(self):
        """Test empty values are removed recursively."""
        document = {'a': '', 'b': [], 'c': {'d': {}}, 'e': 'keep', 'f': ['', 'x']}
        assert FilterEmptyTransform().execute(document) == {'e': 'keep', 'f': ['x']}

    def test_filter_null(self, registry):
        """Test nulls are removed and falsy values kept."""
        document = {'a': None, 'b': 0, 'c': False, 'd': [None, 1]}
        assert registry.execute('filter-null', document) == {'b': 0, 'c': False, 'd': [1]}

    def test_filter_comments_text(self, registry):
        """Test comments are stripped from JSONC text."""
        text = '{\n  // servers\n  "a": "http://x" /* inline */\n}\n'
        assert json.loads(registry.execute('filter-comments', text)) == {'a': 'http://x'}

    def test_filter_comments_keys(self, registry):
        """Test comment keys are removed from objects."""
        document = {'//': 'note', 'a': {'// why': 'x', 'b': 1}}
        assert registry.execute('filter-comments', document) == {'a': {'b': 1}}


class TestCodexTransforms:
    """Tests for the Codex MCP bridge."""

    def test_split_headers(self):
        """Test bearer, env and literal headers are separated."""
        bearer, http_headers, env_headers = split_headers(REMOTE_SERVER['headers'])
        assert bearer == 'DOCS_TOKEN'
        assert http_headers == {'X-Team': 'platform'}
        assert env_headers == {'X-Api-Key': 'DOCS_KEY'}

    def test_bearer_extraction_disabled(self):
        """Test Authorization stays a header when extraction is off."""
        bearer, _, env_headers = split_headers({'Authorization': 'Bearer ${env:T}'}, extract_bearer=False)
        assert bearer is None
        assert env_headers == {}

    def test_remote_server_to_codex(self):
        """Test a URL server maps to Codex fields."""
        converted = mcp_to_codex({'mcp_servers': {'docs': REMOTE_SERVER}})
        assert converted == {'mcp_servers': {'docs': {
            'url': 'https://mcp.example.com',
            'bearer_token_env_var': 'DOCS_TOKEN',
            'http_headers': {'X-Team': 'platform'},
            'env_http_headers': {'X-Api-Key': 'DOCS_KEY'},
            'startup_timeout_sec': 30,
        }}}

    def test_local_server_passthrough(self):
        """Test command servers keep their fields and bare mappings stay bare."""
        assert mcp_to_codex({'local': LOCAL_SERVER}) == {'local': LOCAL_SERVER}

    def test_options(self):
        """Test timeout conversion can be disabled."""
        converted = mcp_to_codex({'docs': REMOTE_SERVER}, {'convertTimeouts': False})
        assert 'startup_timeout_sec' not in converted['docs']

    def test_toml_output(self, registry):
        """Test the TOML transform writes header tables inline."""
        text = registry.execute('mcp-to-codex-toml', {'mcp_servers': {'docs': REMOTE_SERVER}})
        assert '[mcp_servers.docs]' in text
        assert 'http_headers = {' in text
        assert 'env_http_headers = {' in text
        parsed = toml.loads(text)
        assert parsed['mcp_servers']['docs']['env_http_headers'] == {'X-Api-Key': 'DOCS_KEY'}
        assert parsed['mcp_servers']['docs']['startup_timeout_sec'] == 30

    def test_toml_without_inline_tables(self):
        """Test header tables become regular sub-tables when inlining is off."""
        text = dump_codex_toml(mcp_to_codex({'mcp_servers': {'docs': REMOTE_SERVER}}), inline_tables=False)
        assert 'http_headers = {' not in text
        assert toml.loads(text)['mcp_servers']['docs']['http_headers'] == {'X-Team': 'platform'}

    def test_quoted_header_keys(self):
        """Test header names that are not bare TOML keys are quoted."""
        text = dump_codex_toml({'mcp_servers': {'a': {'url': 'u', 'http_headers': {'X.Trace Id': '1'}}}})
        assert '"X.Trace Id" = "1"' in text

    def test_codex_to_mcp(self):
        """Test Codex fields map back to universal MCP fields."""
        codex = mcp_to_codex({'mcp_servers': {'docs': REMOTE_SERVER, 'local': LOCAL_SERVER}})
        assert codex_to_mcp(codex) == {'docs': REMOTE_SERVER, 'local': LOCAL_SERVER}

    def test_tool_timeout_fallback(self):
        """Test tool_timeout_sec is used when there is no startup timeout."""
        assert codex_to_mcp({'s': {'command': 'x', 'tool_timeout_sec': 12}}) == {'s': {'command': 'x', 'timeout': 12}}

    def test_toml_text_to_mcp(self, registry):
        """Test the reverse transform accepts TOML text."""
        text = registry.execute('mcp-to-codex-toml', {'mcp_servers': {'docs': REMOTE_SERVER}})
        assert registry.execute('codex-toml-to-mcp', text) == {'docs': REMOTE_SERVER}

    def test_invalid_toml(self, registry):
        """Test unparsable TOML is reported."""
        with pytest.raises(TransformExecutionError, match="Failed to parse Codex TOML"):
            registry.execute('codex-toml-to-mcp', '[broken')
