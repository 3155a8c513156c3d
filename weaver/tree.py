"""Document tree blocks and the source unit that owns them."""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from weaver.sourcemap import Mapping


# -------------------------
# Blocks
# -------------------------

@dataclass(eq=False)
class Block:
    line: int   # 1-based line of the directive or text


@dataclass(eq=False)
class Code(Block):
    text: str                                  # one line, eol included
    entries: Optional[List[Mapping]] = None    # None when maps are off
    consumed: bool = False                     # emitted once per session


@dataclass(eq=False)
class Include(Block):
    unit: "Unit"
    labels: Set[str]


@dataclass(eq=False)
class Exclude(Block):
    """#without: resolved like an include, text discarded."""
    unit: "Unit"
    labels: Set[str]


@dataclass(eq=False)
class FlagSet(Block):
    name: str
    value: Any = True
    unset: bool = False


@dataclass(eq=False)
class Scope(Block):
    children: List[Block] = field(default_factory=list)


@dataclass(eq=False)
class Root(Scope):
    labels: Set[str] = field(default_factory=set)   # accumulated label requests


@dataclass(eq=False)
class Conditional(Scope):
    flag: str = ""
    op: str = "truthy"     # truthy, eq, ne, gt, gte, lt, lte
    value: Any = True
    negate: bool = False   # #unless

    @property
    def directive(self) -> str:
        return "unless" if self.negate else "if"


@dataclass(eq=False)
class LabelScope(Scope):
    name: str = ""


# -------------------------
# Units
# -------------------------

@dataclass(eq=False)
class Unit:
    key: str                      # normalized path or synthetic id
    directory: str                # base for relative #include paths
    defaults: Dict[str, Any]      # the session's flag registry
    root: Root = field(default_factory=lambda: Root(line=0))
    # composite keys of includes/excludes already emitted from this unit
    included: Set[Tuple] = field(default_factory=set)

    @property
    def labels(self) -> Set[str]:
        return self.root.labels

