"""
Resolution of a document tree into text.

The walk is depth-first and in document order. Flags are one mutable
dict shared by the whole walk, so a #set is seen by everything visited
after it, including later and deeper includes. Invisible scopes are
never entered.
"""

from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional, Tuple

from weaver.literal import compare
from weaver.logger import get_logger
from weaver.sourcemap import Mapping, SourceMapGenerator
from weaver.tree import (Block, Code, Conditional, Exclude, FlagSet, Include,
                         LabelScope, Scope, Unit)

log = get_logger(__name__)


class MapAccumulator:
    """Output cursor plus the map every emitted line is registered in."""

    def __init__(self, generator: SourceMapGenerator, start: int = 1):
        self.generator = generator
        self.cursor = start

    def register(self, entries: List[Mapping]) -> None:
        for entry in entries:
            shift = self.cursor - entry.generated_line
            self.generator.add_mapping(Mapping(
                generated_line=entry.generated_line + shift,
                generated_column=entry.generated_column,
                source=entry.source,
                original_line=entry.original_line,
                original_column=entry.original_column,
                name=entry.name,
            ))
            # first occurrence wins
            if (entry.source is not None and entry.source_content is not None
                    and not self.generator.has_source_content(entry.source)):
                self.generator.set_source_content(entry.source, entry.source_content)
        self.cursor += 1


def flags_key(flags: Dict[str, Any]) -> Tuple[Tuple[str, str], ...]:
    return tuple(sorted((name, repr(value)) for name, value in flags.items()))


def is_visible(block: Scope, selection: Iterable[str], flags: Dict[str, Any]) -> bool:
    if isinstance(block, Conditional):
        return compare(flags.get(block.flag), block.op, block.value) != block.negate
    if isinstance(block, LabelScope):
        selection = set(selection)
        return not selection or block.name in selection
    return True


class Resolver:
    def __init__(self, accumulator: Optional[MapAccumulator] = None):
        self.accumulator = accumulator

    def resolve(self, unit: Unit, labels: Iterable[str], flags: Dict[str, Any]) -> str:
        """Text of `unit` for a label selection; `flags` is mutated in place."""
        selection = set(labels) | unit.labels
        return self._scope(unit, unit.root, selection, flags)

    def _scope(self, unit: Unit, scope: Scope, selection: set, flags: Dict[str, Any]) -> str:
        return "".join(self._block(unit, b, selection, flags) for b in scope.children)

    def _block(self, unit: Unit, block: Block, selection: set, flags: Dict[str, Any]) -> str:
        if isinstance(block, Code):
            if block.consumed:
                return ""
            block.consumed = True
            if self.accumulator is not None and block.entries is not None:
                self.accumulator.register(block.entries)
            return block.text

        if isinstance(block, (Include, Exclude)):
            target = block.unit
            # the includer's active selection travels with the request
            requested = block.labels | selection
            target.root.labels |= requested
            key = (target.key, tuple(sorted(target.labels)), flags_key(flags))
            if key in unit.included:
                log.debug("%s:%d: %s already consumed", unit.key, block.line, target.key)
                return ""
            unit.included.add(key)
            if isinstance(block, Include):
                return self.resolve(target, requested, flags)
            # excluded text takes no room in the output map
            accumulator, self.accumulator = self.accumulator, None
            try:
                self.resolve(target, requested, flags)
            finally:
                self.accumulator = accumulator
            return ""

        if isinstance(block, FlagSet):
            if block.unset:
                flags.pop(block.name, None)
            else:
                flags[block.name] = block.value
            return ""

        if isinstance(block, Scope):
            if is_visible(block, selection, flags):
                return self._scope(unit, block, selection, flags)
            return ""

        raise TypeError(f"unexpected block {type(block).__name__}")
