"""
Unit tests for conversion contexts.

Tests cover:
- Context creation from detection results
- Recording conversions (original format kept, history appended)
- Transition and history validation
- JSON serialization with ISO timestamps and validation on load
"""

import json
from dataclasses import FrozenInstanceError, replace
from datetime import datetime, timezone

import pytest

from core.conversion_context import (
    ConversionRecord,
    FormatState,
    context_from_json,
    context_to_json,
    create_context_from_format,
    create_platform_context,
    create_universal_context,
    describe_context,
    deserialize_context,
    serialize_context,
    update_context_after_conversion,
    validate_context_history,
    validate_context_transition,
    with_target_platform,
)
from core.errors import ContextValidationError
from core.format_detector import PLATFORM_SPECIFIC, UNIVERSAL, PackageFormat

UNIVERSAL_STATE = FormatState(UNIVERSAL)


@pytest.fixture
def claude_context():
    return create_platform_context('claude', confidence=0.9)


class TestCreation:
    """Tests for context builders."""

    def test_from_format(self):
        """Test a context starts from the detected format."""
        detected = PackageFormat(type=PLATFORM_SPECIFIC, confidence=0.8, platform='cursor')
        context = create_context_from_format(detected)
        assert context.original_format.platform == 'cursor'
        assert context.original_format.confidence == 0.8
        assert context.current_format == FormatState(PLATFORM_SPECIFIC, 'cursor')
        assert context.history == ()
        assert context.original_format.detected_at.tzinfo is not None

    def test_universal_context(self):
        """Test a universal context has no platform."""
        context = create_universal_context()
        assert context.current_format == UNIVERSAL_STATE

    def test_platform_context_requires_platform(self):
        """Test a platform-specific context without a platform is rejected."""
        with pytest.raises(ContextValidationError, match="platform is undefined"):
            create_platform_context('')

    def test_confidence_range(self):
        """Test confidence outside [0, 1] is rejected."""
        with pytest.raises(ContextValidationError, match="confidence"):
            create_universal_context(confidence=1.5)

    def test_contexts_are_frozen(self, claude_context):
        """Test that contexts cannot be mutated in place."""
        with pytest.raises(FrozenInstanceError):
            claude_context.target_platform = 'cursor'


class TestConversionUpdates:
    """Tests for update_context_after_conversion."""

    def test_records_conversion(self, claude_context):
        """Test a conversion appends one record and keeps the original."""
        updated = update_context_after_conversion(claude_context, UNIVERSAL_STATE, 'cursor')
        assert updated.original_format == claude_context.original_format
        assert updated.current_format == UNIVERSAL_STATE
        assert updated.target_platform == 'cursor'
        assert len(updated.history) == 1
        record = updated.history[0]
        assert record.from_ == FormatState(PLATFORM_SPECIFIC, 'claude')
        assert record.to == UNIVERSAL_STATE
        assert record.target_platform == 'cursor'

    def test_previous_context_unchanged(self, claude_context):
        """Test that the input context is left untouched."""
        update_context_after_conversion(claude_context, UNIVERSAL_STATE, 'cursor')
        assert claude_context.history == ()
        assert claude_context.current_format.platform == 'claude'

    def test_history_grows(self, claude_context):
        """Test that several conversions chain."""
        first = update_context_after_conversion(claude_context, UNIVERSAL_STATE, 'cursor')
        second = update_context_after_conversion(first, FormatState(PLATFORM_SPECIFIC, 'cursor'), 'cursor')
        assert second.history[:1] == first.history
        assert len(second.history) == 2
        validate_context_history(second)

    def test_with_target_platform(self, claude_context):
        """Test setting the target returns a new context."""
        targeted = with_target_platform(claude_context, 'opencode')
        assert targeted.target_platform == 'opencode'
        assert claude_context.target_platform is None


class TestValidation:
    """Tests for transition and history validation."""

    def test_original_change_rejected(self, claude_context):
        """Test that changing the original format is detected."""
        changed = replace(claude_context, original_format=replace(claude_context.original_format, platform='cursor'))
        with pytest.raises(ContextValidationError, match="originalFormat changed"):
            validate_context_transition(claude_context, changed)

    def test_truncated_history_rejected(self, claude_context):
        """Test that dropping history is detected."""
        updated = update_context_after_conversion(claude_context, UNIVERSAL_STATE, 'cursor')
        with pytest.raises(ContextValidationError, match="truncated"):
            validate_context_transition(updated, replace(updated, history=()))

    def test_rewritten_history_rejected(self, claude_context):
        """Test that replacing an existing record is detected."""
        updated = update_context_after_conversion(claude_context, UNIVERSAL_STATE, 'cursor')
        forged = ConversionRecord(UNIVERSAL_STATE, UNIVERSAL_STATE, 'codex', datetime.now(timezone.utc))
        with pytest.raises(ContextValidationError, match="rewritten"):
            validate_context_transition(updated, replace(updated, history=(forged,)))

    def test_broken_chain_rejected(self, claude_context):
        """Test that a gap in the history chain is detected."""
        now = datetime.now(timezone.utc)
        history = (
            ConversionRecord(FormatState(PLATFORM_SPECIFIC, 'claude'), UNIVERSAL_STATE, 'cursor', now),
            ConversionRecord(FormatState(PLATFORM_SPECIFIC, 'codex'), UNIVERSAL_STATE, 'cursor', now),
        )
        with pytest.raises(ContextValidationError, match="History chain broken at index 0"):
            validate_context_history(replace(claude_context, history=history))


class TestSerialization:
    """Tests for JSON round trips."""

    def test_serialized_shape(self, claude_context):
        """Test key names and ISO timestamps."""
        updated = update_context_after_conversion(claude_context, UNIVERSAL_STATE, 'cursor')
        data = serialize_context(updated)
        assert data['originalFormat']['type'] == PLATFORM_SPECIFIC
        assert data['originalFormat']['detectedAt'].endswith('Z')
        assert data['currentFormat'] == {'type': UNIVERSAL, 'platform': None}
        assert data['conversionHistory'][0]['targetPlatform'] == 'cursor'
        assert data['targetPlatform'] == 'cursor'

    def test_without_history(self, claude_context):
        """Test omitting history."""
        updated = update_context_after_conversion(claude_context, UNIVERSAL_STATE, 'cursor')
        assert serialize_context(updated, include_history=False)['conversionHistory'] == []

    def test_json_round_trip(self, claude_context):
        """Test that a context survives JSON."""
        updated = update_context_after_conversion(claude_context, UNIVERSAL_STATE, 'cursor')
        restored = context_from_json(context_to_json(updated))
        assert restored.original_format.state == updated.original_format.state
        assert restored.current_format == updated.current_format
        assert [r.to for r in restored.history] == [r.to for r in updated.history]
        assert serialize_context(restored) == serialize_context(updated)

    def test_invalid_json(self):
        """Test that non-JSON text is rejected."""
        with pytest.raises(ContextValidationError, match="Invalid context JSON"):
            context_from_json('{not json')

    def test_missing_fields(self):
        """Test that incomplete data is rejected."""
        with pytest.raises(ContextValidationError, match="Malformed serialized context"):
            deserialize_context({'currentFormat': {'type': UNIVERSAL}})

    def test_invalid_values_rejected_on_load(self, claude_context):
        """Test that loading re-validates invariants."""
        data = serialize_context(claude_context)
        data['originalFormat']['type'] = 'bogus'
        with pytest.raises(ContextValidationError, match="originalFormat.type"):
            context_from_json(json.dumps(data))

    def test_broken_history_rejected_on_load(self, claude_context):
        """Test that a broken chain in stored history is rejected."""
        first = update_context_after_conversion(claude_context, UNIVERSAL_STATE, 'cursor')
        data = serialize_context(first)
        data['conversionHistory'].append({
            'from': {'type': PLATFORM_SPECIFIC, 'platform': 'codex'},
            'to': {'type': UNIVERSAL, 'platform': None},
            'targetPlatform': 'cursor',
            'timestamp': '2025-01-01T00:00:00.000Z',
        })
        with pytest.raises(ContextValidationError, match="History chain broken"):
            deserialize_context(data)

    def test_describe_context(self, claude_context):
        """Test the human-readable summary."""
        updated = update_context_after_conversion(claude_context, UNIVERSAL_STATE, 'cursor')
        text = describe_context(updated)
        assert 'Original: claude' in text
        assert 'Conversions: 1' in text
        assert 'claude -> universal (for cursor)' in text
