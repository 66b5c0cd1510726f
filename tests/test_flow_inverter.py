"""
Unit tests for flow inversion.

Tests cover:
- Swapping from/to and reversing rename/copy operations
- Dropping lossy operations and one-way pipe filters
- Double inversion restoring the original flow
- Inverted flows restoring field locations
"""

from adapters import create_default_registry
from core.flow_inverter import get_original_flow, invert_flow, invert_flows, is_inverted_flow
from core.flow_models import Flow
from core.map_pipeline import apply_map_pipeline


def make_flow(**kwargs):
    data = {'from': 'mcp.jsonc', 'to': '.mcp.json'}
    data.update(kwargs)
    return Flow.from_dict(data)


class TestInvertFlow:
    """Tests for invert_flow."""

    def test_swaps_paths(self):
        """Test that from and to are swapped."""
        inverted = invert_flow(make_flow(), source_platform='claude')
        assert inverted.from_ == '.mcp.json'
        assert inverted.to == 'mcp.jsonc'
        assert inverted.source_platform == 'claude'

    def test_multi_source_uses_first_pattern_as_target(self):
        """Test a flow with several sources inverts to the first one."""
        flow = Flow.from_dict({'from': ['AGENTS.md', 'CLAUDE.md'], 'to': 'CLAUDE.md'})
        assert invert_flow(flow).to == 'AGENTS.md'

    def test_reverses_renames_in_reverse_order(self):
        """Test rename mappings are swapped and the op order is reversed."""
        flow = make_flow(map=[{'$rename': {'a': 'b'}}, {'$rename': {'b': 'c'}}])
        inverted = invert_flow(flow)
        assert [op.to_dict() for op in inverted.map] == [{'$rename': {'c': 'b'}}, {'$rename': {'b': 'a'}}]

    def test_drops_lossy_operations(self):
        """Test $set/$unset/$switch/$pipeline/$pipe are dropped."""
        flow = make_flow(map=[
            {'$set': {'x': 1}},
            {'$unset': 'y'},
            {'$switch': {'field': 'm', 'cases': [{'pattern': 'a', 'value': 'b'}]}},
            {'$pipeline': {'field': 't', 'operations': [{'$map': {'each': 'lowercase'}}]}},
            {'$pipe': ['filter-empty']},
            {'$copy': {'from': 'p', 'to': 'q'}},
        ])
        inverted = invert_flow(flow)
        assert [op.to_dict() for op in inverted.map] == [{'$copy': {'from': 'q', 'to': 'p'}}]

    def test_no_reversible_ops_gives_no_map(self):
        """Test that a map of only lossy operations inverts to None."""
        assert invert_flow(make_flow(map=[{'$set': {'x': 1}}])).map is None

    def test_drops_one_way_filters(self):
        """Test pipe keeps converters and drops filters."""
        flow = make_flow(pipe=['yaml', 'filter-empty', 'filter-null', 'jsonc'])
        assert invert_flow(flow).pipe == ('yaml', 'jsonc')
        assert invert_flow(flow, registry=create_default_registry()).pipe == ('yaml', 'jsonc')

    def test_registry_decides_bidirectionality(self):
        """Test registered transforms are classified by the registry."""
        flow = make_flow(pipe=['filter-comments', 'mcp-to-codex-toml'])
        assert invert_flow(flow, registry=create_default_registry()).pipe == ('mcp-to-codex-toml',)

    def test_merge_and_when_pass_through(self):
        """Test that merge and when are preserved and embed is dropped."""
        flow = make_flow(merge='deep', when={'platform': 'claude'}, embed='mcp')
        inverted = invert_flow(flow)
        assert inverted.merge == flow.merge
        assert inverted.when == {'platform': 'claude'}
        assert inverted.embed is None

    def test_metadata(self):
        """Test inverted flows remember their origin."""
        flow = make_flow()
        inverted = invert_flow(flow)
        assert is_inverted_flow(inverted)
        assert not is_inverted_flow(flow)
        assert get_original_flow(inverted) is flow
        assert get_original_flow(flow) is None

    def test_invert_flows(self):
        """Test inverting a list keeps its order."""
        flows = [make_flow(), Flow.from_dict({'from': 'a.md', 'to': 'b.md'})]
        assert [f.to for f in invert_flows(flows)] == ['mcp.jsonc', 'a.md']


class TestDoubleInversion:
    """Invertible flows survive a round trip."""

    def test_double_inversion_equals_original(self):
        """Test invert(invert(flow)) == flow for rename/copy/bidirectional pipes."""
        flow = make_flow(
            map=[{'$rename': {'mcp': 'mcpServers'}}, {'$copy': {'from': 'name', 'to': 'title'}}],
            pipe=['jsonc'],
            merge='deep',
        )
        assert invert_flow(invert_flow(flow)) == flow

    def test_inverted_map_restores_locations(self):
        """Test applying the inverted map to the forward output restores field locations."""
        flow = make_flow(map=[{'$rename': {'mcp.*': 'mcpServers.*'}}, {'$rename': {'name': 'title'}}])
        document = {'mcp': {'a': {'url': 'x'}, 'b': {'command': 'y'}}, 'name': 'demo'}
        forward = apply_map_pipeline(document, flow.map)
        backward = apply_map_pipeline(forward, invert_flow(flow).map)
        assert backward == document
