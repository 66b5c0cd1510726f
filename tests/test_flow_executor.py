"""
Unit tests for the flow executor.

Tests cover:
- Source discovery and target resolution (globs, placeholders, $switch)
- Replace, deep, shallow and composite merge strategies, including TOML inline tables
- Key tracking and removal of contributed keys
- Dry runs, skipped targets and per-file error isolation
- Flow conditions
"""

import json

import pytest
import toml

from adapters import create_default_registry
from core.conditions import evaluate_condition
from core.errors import ValidationError
from core.flow_executor import FlowExecutor, extract_composite_section, merge_composite
from core.flow_models import Flow, FlowContext, MergeStrategy
from core.variables import build_variables


def write(root, relative, content):
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding='utf-8')
    return path


@pytest.fixture
def package_root(tmp_path):
    root = tmp_path / 'package'
    root.mkdir()
    return root


@pytest.fixture
def workspace_root(tmp_path):
    root = tmp_path / 'workspace'
    root.mkdir()
    return root


@pytest.fixture
def context(package_root, workspace_root):
    return FlowContext(
        workspace_root=workspace_root,
        package_root=package_root,
        platform='cursor',
        package_name='alpha',
        variables=build_variables('cursor', 'alpha'),
    )


@pytest.fixture
def executor():
    return FlowExecutor(create_default_registry())


class TestTargetResolution:
    """Tests for discover_sources and resolve_target."""

    def test_double_star_keeps_subdirectories(self, executor, context, package_root):
        """Test that ** reproduces the matched subdirectories."""
        write(package_root, 'commands/git/commit.md', '# Commit')
        flow = Flow.from_dict({'from': 'commands/**/*.md', 'to': '.cursor/commands/**/*.md'})
        match = executor.discover_sources(flow, context)[0]
        assert executor.resolve_target(flow, match, context) == '.cursor/commands/git/commit.md'

    def test_extension_change(self, executor, context, package_root):
        """Test that the target extension replaces the source one."""
        write(package_root, 'rules/style.md', '# Style')
        flow = Flow.from_dict({'from': 'rules/{name}.md', 'to': '.cursor/rules/{name}.mdc'})
        match = executor.discover_sources(flow, context)[0]
        assert match.captures == {'name': 'style'}
        assert executor.resolve_target(flow, match, context) == '.cursor/rules/style.mdc'

    def test_first_matching_source_pattern_wins(self, executor, context, package_root):
        """Test that later source patterns are ignored once one matches."""
        write(package_root, 'AGENTS.md', 'agents')
        write(package_root, 'CLAUDE.md', 'claude')
        flow = Flow.from_dict({'from': ['CLAUDE.md', 'AGENTS.md'], 'to': 'CLAUDE.md'})
        assert [m.path for m in executor.discover_sources(flow, context)] == ['CLAUDE.md']

    def test_switch_target(self, executor, context, package_root):
        """Test a $switch target chooses by context variable."""
        write(package_root, 'agents/reviewer.md', '---\nname: reviewer\n---\nBody')
        flow = Flow.from_dict({
            'from': 'agents/{name}.md',
            'to': {'$switch': {
                'field': '$$targetRoot',
                'cases': [{'pattern': '~/', 'value': '.config/opencode/agent/{name}.md'}],
                'default': '.opencode/agent/{name}.md',
            }},
        })
        match = executor.discover_sources(flow, context)[0]
        context.variables['targetRoot'] = '.'
        assert executor.resolve_target(flow, match, context) == '.opencode/agent/reviewer.md'
        context.variables['targetRoot'] = '~/'
        assert executor.resolve_target(flow, match, context) == '.config/opencode/agent/reviewer.md'

    def test_switch_target_unbound_variable(self, executor, context, package_root):
        """Test that an unbound switch variable is an error."""
        write(package_root, 'a.md', 'x')
        flow = Flow.from_dict({'from': 'a.md', 'to': {'$switch': {
            'field': '$$missing', 'cases': [{'pattern': 'x', 'value': 'y'}]}}})
        match = executor.discover_sources(flow, context)[0]
        with pytest.raises(ValidationError, match="missing"):
            executor.resolve_target(flow, match, context)


class TestReplaceMerge:
    """Tests for plain copies and reshaped documents."""

    def test_untouched_markdown_copied_verbatim(self, executor, context, package_root, workspace_root):
        """Test that a plain copy keeps formatting byte for byte."""
        content = '---\ndescription:   "Keep   spacing"\nglobs: ["*.py"]\n---\n# Rule\n'
        write(package_root, 'rules/style.md', content)
        flow = Flow.from_dict({'from': 'rules/{name}.md', 'to': '.cursor/rules/{name}.mdc'})
        results = executor.execute_flow(flow, context)
        assert results[0].success and results[0].written
        assert (workspace_root / '.cursor/rules/style.mdc').read_text() == content

    def test_map_reshapes_frontmatter(self, executor, context, package_root, workspace_root):
        """Test map operations on Markdown frontmatter keep the body."""
        write(package_root, 'agents/a.md', '---\nname: a\ntools: Read, Bash\n---\nDo things.\n')
        flow = Flow.from_dict({
            'from': 'agents/{name}.md',
            'to': '.opencode/agent/{name}.md',
            'map': [{'$pipeline': {'field': 'tools', 'operations': [
                {'$reduce': {'type': 'split', 'separator': ','}},
                {'$map': {'each': 'lowercase'}},
                {'$arrayToObject': {'value': True}},
            ]}}],
        })
        result = executor.execute_flow(flow, context)[0]
        assert result.transformed
        written = (workspace_root / '.opencode/agent/a.md').read_text()
        assert written.startswith('---\n')
        assert 'read: true' in written and 'bash: true' in written
        assert written.endswith('Do things.\n')

    def test_format_conversion(self, executor, context, package_root, workspace_root):
        """Test YAML source written as JSON target."""
        write(package_root, 'config.yaml', 'a: 1\nb: [x, y]\n')
        flow = Flow.from_dict({'from': 'config.yaml', 'to': 'config.json'})
        result = executor.execute_flow(flow, context)[0]
        assert result.transformed
        assert json.loads((workspace_root / 'config.json').read_text()) == {'a': 1, 'b': ['x', 'y']}

    def test_embed(self, executor, context, package_root, workspace_root):
        """Test placing a document under a key."""
        write(package_root, 'settings.json', '{"theme": "dark"}')
        flow = Flow.from_dict({'from': 'settings.json', 'to': 'combined.json', 'embed': 'settings'})
        executor.execute_flow(flow, context)
        assert json.loads((workspace_root / 'combined.json').read_text()) == {'settings': {'theme': 'dark'}}


class TestStructuredMerge:
    """Tests for deep/shallow merging and key tracking."""

    @pytest.fixture
    def mcp_flow(self):
        return Flow.from_dict({
            'from': 'mcp.jsonc',
            'to': '.mcp.json',
            'map': [{'$rename': {'mcp': 'mcpServers'}}],
            'merge': 'deep',
        })

    def test_deep_merge_tracks_keys(self, executor, context, package_root, workspace_root, mcp_flow):
        """Test deep merge keeps existing keys and reports contributed ones."""
        write(package_root, 'mcp.jsonc', '{\n  // servers\n  "mcp": {"a": {"command": "npx", "args": ["x"]},},\n}\n')
        write(workspace_root, '.mcp.json', json.dumps({'mcpServers': {'existing': {'url': 'u'}}, 'other': 1}))

        result = executor.execute_flow(mcp_flow, context)[0]
        assert result.success
        assert result.keys == ['mcpServers.a.args', 'mcpServers.a.command']
        merged = json.loads((workspace_root / '.mcp.json').read_text())
        assert merged == {
            'mcpServers': {'existing': {'url': 'u'}, 'a': {'command': 'npx', 'args': ['x']}},
            'other': 1,
        }

    def test_remove_contributed_keys(self, executor, context, package_root, workspace_root, mcp_flow):
        """Test uninstall removes exactly the tracked keys and prunes empty parents."""
        write(package_root, 'mcp.jsonc', '{"mcp": {"a": {"command": "npx"}}}')
        write(workspace_root, '.mcp.json', json.dumps({'mcpServers': {'existing': {'url': 'u'}}}))
        result = executor.execute_flow(mcp_flow, context)[0]

        removed = executor.remove_contributed_keys(workspace_root / '.mcp.json', result.keys)
        assert removed == ['mcpServers.a.command']
        assert json.loads((workspace_root / '.mcp.json').read_text()) == {'mcpServers': {'existing': {'url': 'u'}}}

    def test_remove_last_keys_deletes_file(self, executor, context, package_root, workspace_root, mcp_flow):
        """Test that a file left empty is deleted."""
        write(package_root, 'mcp.jsonc', '{"mcp": {"a": {"command": "npx"}}}')
        result = executor.execute_flow(mcp_flow, context)[0]
        executor.remove_contributed_keys(workspace_root / '.mcp.json', result.keys)
        assert not (workspace_root / '.mcp.json').exists()

    def test_shallow_merge_replaces_top_level(self, executor, context, package_root, workspace_root):
        """Test shallow merge replaces whole top-level values."""
        write(package_root, 'settings.json', '{"a": {"x": 1}}')
        write(workspace_root, 'settings.json', '{"a": {"y": 2}, "b": 3}')
        flow = Flow.from_dict({'from': 'settings.json', 'to': 'settings.json', 'merge': 'shallow'})
        result = executor.execute_flow(flow, context)[0]
        assert result.keys == ['a.x']
        assert json.loads((workspace_root / 'settings.json').read_text()) == {'a': {'x': 1}, 'b': 3}

    def test_deep_merge_into_codex_toml(self, executor, context, package_root, workspace_root):
        """Test merging a server into config.toml keeps inline header tables and tracks only new keys."""
        write(package_root, 'mcp.jsonc', json.dumps({'mcp': {'figma': {
            'url': 'https://figma.example/mcp',
            'headers': {'X-Region': 'us', 'X-Api-Key': '${env:FIGMA_KEY}'},
        }}}))
        write(workspace_root, '.codex/config.toml', '[mcp_servers.existing]\ncommand = "node"\nargs = ["server.js"]\n')
        flow = Flow.from_dict({
            'from': 'mcp.jsonc',
            'to': '.codex/config.toml',
            'map': [{'$rename': {'mcp': 'mcp_servers'}}],
            'pipe': ['mcp-to-codex-toml'],
            'merge': 'deep',
        })

        result = executor.execute_flow(flow, context)[0]
        assert result.success
        assert result.merge == 'deep'
        assert result.keys == [
            'mcp_servers.figma.env_http_headers.X-Api-Key',
            'mcp_servers.figma.http_headers.X-Region',
            'mcp_servers.figma.url',
        ]

        text = (workspace_root / '.codex' / 'config.toml').read_text()
        assert 'http_headers = { X-Region = "us" }' in text
        assert 'env_http_headers = { X-Api-Key = "FIGMA_KEY" }' in text
        assert '[mcp_servers.figma.http_headers]' not in text
        assert toml.loads(text)['mcp_servers']['existing'] == {'command': 'node', 'args': ['server.js']}

    def test_deep_merge_of_text_fails(self, executor, context, package_root):
        """Test that merging non-object content is reported as a failure."""
        write(package_root, 'notes.md', 'plain text')
        flow = Flow.from_dict({'from': 'notes.md', 'to': 'notes.txt', 'merge': 'deep'})
        result = executor.execute_flow(flow, context)[0]
        assert not result.success
        assert 'needs object content' in result.error


class TestCompositeMerge:
    """Tests for per-package sections in shared files."""

    def test_merge_composite_helpers(self):
        """Test inserting, replacing and extracting sections."""
        text = merge_composite('', 'Alpha', 'alpha')
        text = merge_composite(text, 'Beta', 'beta')
        text = merge_composite(text, 'Alpha v2', 'alpha')
        assert extract_composite_section(text, 'alpha') == 'Alpha v2'
        assert extract_composite_section(text, 'beta') == 'Beta'
        assert extract_composite_section(text, 'gamma') is None
        assert text.index('package: alpha') < text.index('package: beta')

    def test_two_packages_share_agents_md(self, executor, tmp_path, workspace_root):
        """Test composite flows from two packages and removal of one section."""
        flow = Flow.from_dict({'from': 'AGENTS.md', 'to': 'AGENTS.md', 'merge': 'composite'})
        for name in ('alpha', 'beta'):
            root = tmp_path / name
            write(root, 'AGENTS.md', f'{name} rules\n')
            ctx = FlowContext(workspace_root=workspace_root, package_root=root, platform='codex', package_name=name)
            assert executor.execute_flow(flow, ctx)[0].success

        agents = workspace_root / 'AGENTS.md'
        content = agents.read_text()
        assert '<!-- package: alpha -->\nalpha rules\n<!-- /package: alpha -->' in content
        assert '<!-- package: beta -->\nbeta rules\n<!-- /package: beta -->' in content

        assert executor.remove_composite_section(agents, 'alpha')
        assert 'alpha' not in agents.read_text()
        assert extract_composite_section(agents.read_text(), 'beta') == 'beta rules'


class TestExecution:
    """Tests for dry runs, skips, errors and conditions."""

    def test_dry_run_writes_nothing(self, executor, context, package_root, workspace_root):
        """Test that dry run reports targets without writing."""
        write(package_root, 'rules/a.md', 'A')
        context.dry_run = True
        flow = Flow.from_dict({'from': 'rules/*.md', 'to': '.cursor/rules/*.mdc'})
        result = executor.execute_flow(flow, context)[0]
        assert result.success and not result.written
        assert result.target == '.cursor/rules/a.mdc'
        assert not (workspace_root / '.cursor').exists()

    def test_skip_targets(self, executor, context, package_root, workspace_root):
        """Test that targets owned by another package are skipped."""
        write(package_root, 'rules/a.md', 'A')
        flow = Flow.from_dict({'from': 'rules/*.md', 'to': 'rules/*.md'})
        result = executor.execute_flow(flow, context, skip_targets={'rules/a.md'})[0]
        assert result.skipped and result.success
        assert not (workspace_root / 'rules/a.md').exists()

    def test_one_bad_file_does_not_stop_siblings(self, executor, context, package_root, workspace_root):
        """Test per-file error isolation."""
        write(package_root, 'config/bad.json', '{oops')
        write(package_root, 'config/good.json', '{"a": 1}')
        flow = Flow.from_dict({'from': 'config/*.json', 'to': 'out/*.json'})
        results = {r.source: r for r in executor.execute_flow(flow, context)}
        assert not results['config/bad.json'].success
        assert 'Invalid JSON' in results['config/bad.json'].error
        assert results['config/good.json'].success
        assert (workspace_root / 'out/good.json').exists()

    def test_unreadable_merge_target_does_not_stop_siblings(self, executor, context, package_root, workspace_root):
        """Test an existing merge target that cannot be read fails only its own file."""
        write(package_root, 'cfg/a.json', '{"a": 1}')
        write(package_root, 'cfg/b.json', '{"b": 1}')
        (workspace_root / 'out' / 'a.json').mkdir(parents=True)
        flow = Flow.from_dict({'from': 'cfg/*.json', 'to': 'out/*.json', 'merge': 'deep'})

        results = {r.source: r for r in executor.execute_flow(flow, context)}
        assert not results['cfg/a.json'].success
        assert 'Cannot read' in results['cfg/a.json'].error
        assert results['cfg/b.json'].success
        assert json.loads((workspace_root / 'out' / 'b.json').read_text()) == {'b': 1}

    def test_false_condition_skips_flow(self, executor, context, package_root):
        """Test that a false when-condition produces no results."""
        write(package_root, 'rules/a.md', 'A')
        flow = Flow.from_dict({'from': 'rules/*.md', 'to': 'x/*.md', 'when': {'platform': 'claude'}})
        assert executor.execute_flow(flow, context) == []

    def test_execute_flows_in_order(self, executor, context, package_root, workspace_root):
        """Test later flows see the output of earlier ones on shared targets."""
        write(package_root, 'a.json', '{"x": 1}')
        write(package_root, 'b.json', '{"x": 2}')
        flows = [
            Flow.from_dict({'from': 'a.json', 'to': 'out.json'}),
            Flow.from_dict({'from': 'b.json', 'to': 'out.json'}),
        ]
        executor.execute_flows(flows, context)
        assert json.loads((workspace_root / 'out.json').read_text()) == {'x': 2}

    def test_unknown_merge_strategy(self):
        """Test that an unknown merge strategy is rejected."""
        with pytest.raises(ValidationError, match="Unknown merge strategy"):
            Flow.from_dict({'from': 'a', 'to': 'b', 'merge': 'append'})

    def test_default_merge_is_replace(self):
        """Test the default merge strategy."""
        assert Flow.from_dict({'from': 'a', 'to': 'b'}).merge_strategy == MergeStrategy.REPLACE


class TestConditions:
    """Tests for when-conditions."""

    def test_exists(self, context, workspace_root):
        """Test workspace path existence."""
        assert not evaluate_condition({'exists': 'AGENTS.md'}, context)
        write(workspace_root, 'AGENTS.md', 'x')
        assert evaluate_condition({'exists': 'AGENTS.md'}, context)

    def test_equality_with_variables(self, context):
        """Test $eq/$ne with context variables."""
        assert evaluate_condition({'$eq': ['$$platform', 'cursor']}, context)
        assert evaluate_condition({'$ne': ['$$source', 'claude']}, context)

    def test_logical_operators(self, context):
        """Test $and/$or/$not and implicit and of several keys."""
        assert evaluate_condition({'$or': [{'platform': 'claude'}, {'platform': ['cursor', 'codex']}]}, context)
        assert not evaluate_condition({'$not': {'platform': 'cursor'}}, context)
        assert not evaluate_condition({'platform': 'cursor', '$eq': [1, 2]}, context)

    def test_unknown_operator(self, context):
        """Test that unknown operators raise."""
        with pytest.raises(ValidationError, match="Unknown condition operator"):
            evaluate_condition({'$xor': []}, context)
