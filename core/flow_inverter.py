"""
Flow inversion for save-back.

Install flows run package -> workspace. Saving workspace edits back into a
package needs the reverse flow, derived here:

- from and to are swapped
- only reversible map operations survive: $rename (old/new swapped) and
  $copy (from/to swapped), in reverse order so the last forward rename is
  undone first
- $set, $unset, $switch, $pipeline and $pipe are dropped (they lose information)
- pipe keeps bidirectional converters and drops one-way filters
- embed and section are dropped; merge and when pass through

The result remembers it is inverted and which flow it came from.
"""

from dataclasses import replace
from typing import List, Optional, Sequence, Tuple

from .flow_models import CopyOp, Flow, Operation, RenameOp

ONE_WAY_PREFIX = 'filter-'


def _is_reversible_pipe(name: str, registry=None) -> bool:
    if registry is not None and registry.has(name):
        return registry.is_bidirectional(name)
    return not name.startswith(ONE_WAY_PREFIX)


def invert_operations(operations: Optional[Sequence[Operation]]) -> Optional[Tuple[Operation, ...]]:
    """Inverse of the reversible subset of a map, or None if nothing is left."""
    if not operations:
        return None
    inverted: List[Operation] = []
    for op in reversed(list(operations)):
        if isinstance(op, RenameOp):
            inverted.append(RenameOp(mapping={new: old for old, new in op.mapping.items()}))
        elif isinstance(op, CopyOp):
            inverted.append(CopyOp(from_=op.to, to=op.from_))
    return tuple(inverted) or None


def invert_flow(flow: Flow, source_platform: Optional[str] = None, registry=None) -> Flow:
    """
    Derive the reverse of flow.

    Args:
        flow: Forward (install) flow
        source_platform: Platform the inverted flow reads from
        registry: Optional transform registry used to classify pipe transforms

    Returns:
        A new Flow tagged as inverted, pointing back at flow
    """
    pipe = None
    if flow.pipe is not None:
        pipe = tuple(name for name in flow.pipe if _is_reversible_pipe(name, registry)) or None

    from_ = flow.to
    to = flow.from_
    if isinstance(to, tuple):
        to = to[0]
    return replace(
        flow,
        from_=from_,
        to=to,
        map=invert_operations(flow.map),
        pipe=pipe,
        embed=None,
        section=None,
        inverted=True,
        source_platform=source_platform,
        original=flow,
    )


def invert_flows(flows: Sequence[Flow], source_platform: Optional[str] = None, registry=None) -> List[Flow]:
    return [invert_flow(flow, source_platform, registry) for flow in flows]


def is_inverted_flow(flow: Flow) -> bool:
    return flow.inverted


def get_original_flow(flow: Flow) -> Optional[Flow]:
    """The forward flow an inverted flow was derived from (None otherwise)."""
    return flow.original if flow.inverted else None
