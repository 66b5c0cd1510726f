"""
Conversion context: the audit trail of format transitions a package undergoes.

Contexts are frozen. The builders below are the only way to derive a new
context, which keeps two properties true by construction:
- original_format is copied verbatim from the previous context
- history is extended by appending, never truncated or replaced

The validators re-check those properties for contexts that come from outside
(deserialized JSON, hand-built values) and raise ContextValidationError.
"""

import json
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from .errors import ContextValidationError
from .format_detector import PLATFORM_SPECIFIC, UNIVERSAL, PackageFormat

logger = logging.getLogger(__name__)

FORMAT_TYPES = (UNIVERSAL, PLATFORM_SPECIFIC)


@dataclass(frozen=True)
class FormatState:
    type: str
    platform: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.type, 'platform': self.platform}


@dataclass(frozen=True)
class FormatIdentity:
    """Format a package was first detected as."""
    type: str
    detected_at: datetime
    confidence: float
    platform: Optional[str] = None

    @property
    def state(self) -> FormatState:
        return FormatState(self.type, self.platform)


@dataclass(frozen=True)
class ConversionRecord:
    from_: FormatState
    to: FormatState
    target_platform: str
    timestamp: datetime


@dataclass(frozen=True)
class ConversionContext:
    original_format: FormatIdentity
    current_format: FormatState
    history: Tuple[ConversionRecord, ...] = ()
    target_platform: Optional[str] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_context(format_type: str, platform: Optional[str], confidence: float) -> ConversionContext:
    context = ConversionContext(
        original_format=FormatIdentity(format_type, _now(), confidence, platform),
        current_format=FormatState(format_type, platform),
    )
    validate_new_context(context)
    return context


def create_context_from_format(package_format: PackageFormat) -> ConversionContext:
    """Start a context from a detection result."""
    logger.debug("Created conversion context from format %s (platform=%s)",
                 package_format.type, package_format.platform)
    return _new_context(package_format.type, package_format.platform, package_format.confidence)


def create_platform_context(platform: str, confidence: float = 1.0) -> ConversionContext:
    """Start a context for a package known to be in a platform's layout."""
    return _new_context(PLATFORM_SPECIFIC, platform, confidence)


def create_universal_context(confidence: float = 1.0) -> ConversionContext:
    return _new_context(UNIVERSAL, None, confidence)


def with_target_platform(context: ConversionContext, target_platform: str) -> ConversionContext:
    return replace(context, target_platform=target_platform)


def update_context_after_conversion(context: ConversionContext, new_format: FormatState,
                                    target_platform: str) -> ConversionContext:
    """
    Record a successful conversion.

    Returns:
        New context with new_format current and one more history record
    """
    record = ConversionRecord(
        from_=context.current_format,
        to=new_format,
        target_platform=target_platform,
        timestamp=_now(),
    )
    updated = replace(
        context,
        current_format=new_format,
        history=context.history + (record,),
        target_platform=target_platform,
    )
    validate_context_transition(context, updated)
    logger.debug("Recorded conversion %s -> %s for %s (%d total)",
                 record.from_.platform or UNIVERSAL, new_format.platform or UNIVERSAL,
                 target_platform, len(updated.history))
    return updated


def validate_new_context(context: ConversionContext):
    """
    Check required fields and value ranges.

    Raises:
        ContextValidationError: If the context is malformed
    """
    original = context.original_format
    if original is None:
        raise ContextValidationError("Context missing originalFormat")
    if context.current_format is None:
        raise ContextValidationError("Context missing currentFormat")
    if not isinstance(context.history, tuple):
        raise ContextValidationError("conversionHistory must be a tuple")
    if original.type not in FORMAT_TYPES:
        raise ContextValidationError(
            f"originalFormat.type must be 'universal' or 'platform-specific', got: {original.type}")
    if original.type == PLATFORM_SPECIFIC and not original.platform:
        raise ContextValidationError("originalFormat.type is platform-specific but platform is undefined")
    if not 0 <= original.confidence <= 1:
        raise ContextValidationError(
            f"originalFormat.confidence must be between 0 and 1, got: {original.confidence}")
    if context.current_format.type not in FORMAT_TYPES:
        raise ContextValidationError(
            f"currentFormat.type must be 'universal' or 'platform-specific', got: {context.current_format.type}")

    if not context.history and context.current_format != original.state:
        logger.warning("New context has mismatched current/original format: %s vs %s",
                       context.current_format, original.state)


def validate_context_transition(before: ConversionContext, after: ConversionContext):
    """
    Check that a transition kept the original format and only appended history.

    Raises:
        ContextValidationError: If the original format changed or history was
            truncated or rewritten
    """
    if before.original_format != after.original_format:
        raise ContextValidationError(
            f"originalFormat changed during transition! "
            f"Before: {before.original_format}, After: {after.original_format}")

    if len(after.history) < len(before.history):
        raise ContextValidationError(
            f"conversionHistory was truncated: before={len(before.history)}, after={len(after.history)}")

    if after.history[:len(before.history)] != before.history:
        raise ContextValidationError("conversionHistory was rewritten during transition")

    if len(after.history) > len(before.history):
        entry = after.history[-1]
        if entry.from_ is None or entry.to is None or not entry.target_platform:
            raise ContextValidationError("Invalid conversion history entry: missing required fields")
        if entry.from_ != before.current_format:
            logger.warning("History entry 'from' %s does not match previous current format %s",
                           entry.from_, before.current_format)
        if entry.to != after.current_format:
            logger.warning("History entry 'to' %s does not match new current format %s",
                           entry.to, after.current_format)


def validate_context_history(context: ConversionContext):
    """
    Check that each record's 'to' is the next record's 'from'.

    Raises:
        ContextValidationError: If the chain is broken
    """
    history = context.history
    if not history:
        return

    if history[0].from_ != context.original_format.state:
        logger.warning("First history entry %s does not match original format %s",
                       history[0].from_, context.original_format.state)

    for i in range(len(history) - 1):
        if history[i].to != history[i + 1].from_:
            raise ContextValidationError(
                f"History chain broken at index {i}: entry {i} 'to' ({history[i].to.to_dict()}) "
                f"does not match entry {i + 1} 'from' ({history[i + 1].from_.to_dict()})")

    if history[-1].to != context.current_format:
        logger.warning("Last history entry %s does not match current format %s",
                       history[-1].to, context.current_format)


def validate_context(context: ConversionContext):
    validate_new_context(context)
    validate_context_history(context)


def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def _parse_timestamp(value: str) -> datetime:
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    return datetime.fromisoformat(value)


def _state_from_dict(data: Dict[str, Any]) -> FormatState:
    return FormatState(data['type'], data.get('platform'))


def serialize_context(context: ConversionContext, include_history: bool = True) -> Dict[str, Any]:
    """Convert a context into a JSON-compatible dict with ISO-8601 timestamps."""
    original = context.original_format
    return {
        'originalFormat': {
            'type': original.type,
            'platform': original.platform,
            'detectedAt': _format_timestamp(original.detected_at),
            'confidence': original.confidence,
        },
        'currentFormat': context.current_format.to_dict(),
        'conversionHistory': [
            {
                'from': record.from_.to_dict(),
                'to': record.to.to_dict(),
                'targetPlatform': record.target_platform,
                'timestamp': _format_timestamp(record.timestamp),
            }
            for record in context.history
        ] if include_history else [],
        'targetPlatform': context.target_platform,
    }


def deserialize_context(data: Dict[str, Any]) -> ConversionContext:
    """
    Rebuild a context from serialize_context output and validate it.

    Raises:
        ContextValidationError: If fields are missing or invariants fail
    """
    try:
        original = data['originalFormat']
        context = ConversionContext(
            original_format=FormatIdentity(
                type=original['type'],
                platform=original.get('platform'),
                detected_at=_parse_timestamp(original['detectedAt']),
                confidence=original['confidence'],
            ),
            current_format=_state_from_dict(data['currentFormat']),
            history=tuple(
                ConversionRecord(
                    from_=_state_from_dict(record['from']),
                    to=_state_from_dict(record['to']),
                    target_platform=record['targetPlatform'],
                    timestamp=_parse_timestamp(record['timestamp']),
                )
                for record in data.get('conversionHistory', [])
            ),
            target_platform=data.get('targetPlatform'),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ContextValidationError(f"Malformed serialized context: {e}") from e

    validate_context(context)
    return context


def context_to_json(context: ConversionContext, include_history: bool = True, pretty: bool = True) -> str:
    return json.dumps(serialize_context(context, include_history), indent=2 if pretty else None)


def context_from_json(text: str) -> ConversionContext:
    """
    Raises:
        ContextValidationError: If the text is not JSON or fails validation
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ContextValidationError(f"Invalid context JSON: {e}") from e
    if not isinstance(data, dict):
        raise ContextValidationError("Invalid context JSON: expected an object")
    return deserialize_context(data)


def describe_context(context: ConversionContext) -> str:
    """Human-readable multi-line summary for logs."""
    lines = [
        f"Original: {context.original_format.platform or UNIVERSAL} "
        f"(detected {_format_timestamp(context.original_format.detected_at)})",
        f"Current: {context.current_format.platform or UNIVERSAL}",
        f"Target: {context.target_platform or 'none'}",
        f"Conversions: {len(context.history)}",
    ]
    if context.history:
        lines.append("History:")
        for i, record in enumerate(context.history, 1):
            lines.append(
                f"  {i}. {record.from_.platform or UNIVERSAL} -> {record.to.platform or UNIVERSAL} "
                f"(for {record.target_platform}) at {_format_timestamp(record.timestamp)}")
    return "\n".join(lines)
