"""
Directive builder.

Turns the text of a unit into its document tree, loading every included
unit on the way. A directive is a whole line made of the marker prefix
(`//#` by default) immediately followed by the directive name:

    #include PATH[::LABEL]*      Include a unit (glob patterns allowed)
    #include ::LABEL[::LABEL]*   Mark this unit's own labels as requested
    #without PATH[::LABEL]*      Resolve a unit without emitting it
    #label NAME / #endlabel      Label scope
    #if FLAG [OP LITERAL]        Conditional scope (OP: = != > >= < <=)
    #unless FLAG [OP LITERAL]    Negated conditional scope
    #endif / #endunless          Close a conditional scope
    #end if|unless|label         Generic closer
    #set FLAG [LITERAL]          Set a flag (default: true)
    #unset FLAG                  Remove a flag

`${FLAG}` inside an include path is replaced with the flag's current
default. A `#set`/`#unset` placed directly at the top level of a unit also
updates the session defaults while the unit is being built.

When source maps are requested, each text line carries its provenance:
the mappings of an upstream map found in the text (trailing
`//# sourceMappingURL=` comment, inline or external), or a single
mapping onto itself.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Sequence
import asyncio
import inspect
import os
import re

from weaver.errors import BuildError, LoadError, SrcLoc, WeaveError
from weaver.literal import coerce, operator_name, to_text
from weaver.loader import FileLoader, Loader, normalize_path, relative_path
from weaver.logger import get_logger
from weaver.sourcemap import (Mapping, SourceMapConsumer, decode_data_uri,
                              find_map_reference)
from weaver.tree import (Code, Conditional, Exclude, FlagSet, Include,
                         LabelScope, Scope, Unit)

log = get_logger(__name__)

_LINE_SPLIT_RE = re.compile(r"\r\n|\n|\r")
_SUBST_RE = re.compile(r"\$\{(.*?)\}")

Replacer = Callable[[str, str], Any]


def split_lines(text: str) -> List[str]:
    """Physical lines of a text; a trailing terminator adds no empty line."""
    lines = _LINE_SPLIT_RE.split(text)
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def _refers_to(scope: Scope, unit: Unit) -> bool:
    for block in scope.children:
        if isinstance(block, (Include, Exclude)) and block.unit is unit:
            return True
        if isinstance(block, Scope) and _refers_to(block, unit):
            return True
    return False


@dataclass
class _Open:
    """Builder-local state of one unit: the stack of open scopes."""
    unit: Unit
    stack: List[Scope] = field(default_factory=list)

    @property
    def scope(self) -> Scope:
        return self.stack[-1] if self.stack else self.unit.root

    @property
    def at_root(self) -> bool:
        return not self.stack


class Builder:
    def __init__(self, defaults: Dict[str, Any], loader: Optional[Loader] = None,
                 eol: str = "\n", prefix: str = "//#", source_maps: bool = False,
                 source_root: Optional[str] = None, replacers: Sequence[Replacer] = (),
                 cwd: Optional[str] = None):
        if not prefix:
            raise ValueError("directive prefix must not be empty")
        self.defaults = defaults
        self.loader = loader or FileLoader()
        self.eol = eol
        self.source_maps = source_maps
        self.source_root = source_root
        self.replacers = list(replacers)
        self.cwd = cwd or os.getcwd()
        self.units: Dict[str, Unit] = {}
        self._directive_re = re.compile(r"^\s*" + re.escape(prefix) + r"(\w+)(?:\s+(.*?))?\s*$")

    # --------------- Entry points ---------------

    async def build_file(self, path: str, requested_at: Optional[SrcLoc] = None,
                         input_map: Any = None) -> Unit:
        """Build (or reuse) the unit stored at `path`."""
        key = normalize_path(path)
        unit = self.units.get(key)
        if unit is not None:
            log.debug("reusing unit %s", key)
            return unit
        # registered before any await: a cyclic include gets this same unit
        unit = self._register(key, os.path.dirname(key))
        try:
            try:
                content = await asyncio.to_thread(self.loader.read, key)
            except OSError as e:
                where = requested_at or SrcLoc(key, 0)
                raise LoadError(where, f"cannot read '{key}': {e.strerror or e}") from e
            await self._build(unit, content, input_map)
        except BaseException:
            self._forget(key)
            raise
        return unit

    async def build_text(self, key: str, content: str, directory: Optional[str] = None,
                         input_map: Any = None) -> Unit:
        """Build (or reuse) a unit whose text is already in memory."""
        unit = self.units.get(key)
        if unit is not None:
            log.debug("reusing unit %s", key)
            return unit
        unit = self._register(key, directory or self.cwd)
        try:
            await self._build(unit, content, input_map)
        except BaseException:
            self._forget(key)
            raise
        return unit

    def _register(self, key: str, directory: str) -> Unit:
        unit = Unit(key=key, directory=directory, defaults=self.defaults)
        self.units[key] = unit
        return unit

    def _forget(self, key: str) -> None:
        """Drop a unit whose build failed, and every cached unit including it."""
        dropped = self.units.pop(key, None)
        if dropped is None:
            return
        log.debug("dropped unit %s after failed build", key)
        # a cyclic include may have finished against the partial tree
        for other in list(self.units.values()):
            if other.key in self.units and _refers_to(other.root, dropped):
                self._forget(other.key)

    # --------------- Unit body ---------------

    async def _build(self, unit: Unit, content: str, input_map: Any = None) -> None:
        content = await self._apply_replacers(unit.key, content)

        provenance: Optional[Dict[int, List[Mapping]]] = None
        if self.source_maps:
            content, consumer = await self._input_map(unit, content, input_map)
            if consumer is not None:
                provenance = self._upstream_entries(unit, consumer)

        lines = split_lines(content)
        st = _Open(unit)
        for line_no, line in enumerate(lines, 1):
            m = self._directive_re.match(line)
            if m is None:
                entries = None
                if self.source_maps:
                    if provenance is not None:
                        entries = provenance.get(line_no, [])
                    else:
                        entries = [self._self_entry(unit, line_no, content)]
                st.scope.children.append(Code(line=line_no, text=line + self.eol, entries=entries))
                continue
            await self._directive(st, m.group(1), m.group(2) or "", SrcLoc(unit.key, line_no))

        if st.stack:
            top = st.stack[-1]
            kind = top.directive if isinstance(top, Conditional) else "label"
            raise BuildError(SrcLoc(unit.key, len(lines)),
                             f"unterminated #{kind} block opened at line {top.line}")

        log.debug("built unit %s (%d lines)", unit.key, len(lines))

    async def _apply_replacers(self, key: str, content: str) -> str:
        for replacer in self.replacers:
            try:
                result = replacer(content, key)
                if inspect.isawaitable(result):
                    result = await result
            except WeaveError:
                raise
            except Exception as e:
                name = getattr(replacer, "__name__", repr(replacer))
                raise BuildError(SrcLoc(key, 0), f"replacer {name} failed: {e}") from e
            content = str(result)
        return content

    # --------------- Directives ---------------

    async def _directive(self, st: _Open, name: str, args: str, loc: SrcLoc) -> None:
        if name == "include":
            await self._include(st, args, loc, exclude=False)
        elif name == "without":
            await self._include(st, args, loc, exclude=True)
        elif name == "label":
            label = args.split()
            if len(label) != 1:
                raise BuildError(loc, "#label requires exactly one name")
            scope = LabelScope(line=loc.line, name=label[0])
            st.scope.children.append(scope)
            st.stack.append(scope)
        elif name in ("if", "unless"):
            st.stack.append(self._conditional(st, name, args, loc))
        elif name == "endif":
            self._close(st, "if", loc)
        elif name == "endunless":
            self._close(st, "unless", loc)
        elif name == "endlabel":
            self._close(st, "label", loc)
        elif name == "end":
            kind = args.split()
            if not kind:
                raise BuildError(loc, "#end requires a block kind")
            if kind[0] not in ("if", "unless", "label"):
                raise BuildError(loc, f"bad block kind '{kind[0]}' for #end")
            self._close(st, kind[0], loc)
        elif name == "set":
            self._set(st, args, loc)
        elif name == "unset":
            flag = args.split()
            if len(flag) != 1:
                raise BuildError(loc, "#unset requires exactly one flag")
            if st.at_root:
                self.defaults.pop(flag[0], None)
            st.scope.children.append(FlagSet(line=loc.line, name=flag[0], value=None, unset=True))
        else:
            raise BuildError(loc, f"unknown directive '#{name}'")

    def _conditional(self, st: _Open, name: str, args: str, loc: SrcLoc) -> Conditional:
        tokens = args.split()
        if len(tokens) == 1:
            op, value = "truthy", True
        elif len(tokens) == 3:
            op = operator_name(tokens[1])
            if op is None:
                raise BuildError(loc, f"unknown operator '{tokens[1]}' in #{name}")
            value = coerce(tokens[2])
        else:
            raise BuildError(loc, f"#{name} expects FLAG or FLAG OP LITERAL")
        block = Conditional(line=loc.line, flag=tokens[0], op=op, value=value,
                            negate=(name == "unless"))
        st.scope.children.append(block)
        return block

    def _close(self, st: _Open, kind: str, loc: SrcLoc) -> None:
        top = st.stack[-1] if st.stack else None
        if kind == "label":
            matches = isinstance(top, LabelScope)
        else:
            matches = isinstance(top, Conditional) and top.directive == kind
        if not matches:
            raise BuildError(loc, f"#end{kind} without matching #{kind}")
        st.stack.pop()

    def _set(self, st: _Open, args: str, loc: SrcLoc) -> None:
        tokens = args.split()
        if not tokens or len(tokens) > 2:
            raise BuildError(loc, "#set expects FLAG [LITERAL]")
        value = coerce(tokens[1]) if len(tokens) == 2 else True
        if st.at_root:
            self.defaults[tokens[0]] = value
        st.scope.children.append(FlagSet(line=loc.line, name=tokens[0], value=value))

    async def _include(self, st: _Open, args: str, loc: SrcLoc, exclude: bool) -> None:
        parts = args.split("::")
        pattern = _SUBST_RE.sub(lambda m: to_text(self.defaults.get(m.group(1))), parts[0].strip())
        labels = {p.strip() for p in parts[1:] if p.strip()}

        if not pattern:
            if exclude:
                raise BuildError(loc, "#without requires a path")
            st.unit.root.labels |= labels
            return

        try:
            targets = await asyncio.to_thread(self.loader.resolve, st.unit.directory, pattern)
        except OSError as e:
            raise LoadError(loc, f"cannot resolve '{pattern}': {e.strerror or e}") from e

        # siblings build concurrently, splice in declaration order
        units = await asyncio.gather(*(self.build_file(t, loc) for t in targets))
        node = Exclude if exclude else Include
        for target in units:
            st.scope.children.append(node(line=loc.line, unit=target, labels=set(labels)))

    # --------------- Provenance ---------------

    def _source_name(self, path: str) -> str:
        if self.source_root and not path.startswith("<"):
            return relative_path(self.source_root, path)
        return path

    def _self_entry(self, unit: Unit, line_no: int, content: str) -> Mapping:
        return Mapping(
            generated_line=line_no,
            generated_column=0,
            source=self._source_name(unit.key),
            original_line=line_no,
            original_column=0,
            source_content=content or self.eol,
        )

    async def _input_map(self, unit: Unit, content: str, input_map: Any):
        content, url = find_map_reference(content)
        raw = input_map
        # the reference comment sat on the line after the remaining text
        loc = SrcLoc(unit.key, 0)
        if raw is None and url:
            loc = SrcLoc(unit.key, len(split_lines(content)) + 1)
            try:
                raw = decode_data_uri(url)
            except ValueError as e:
                raise LoadError(loc, f"invalid source map: bad data URI ({e})") from e
            if raw is None:
                map_path = normalize_path(os.path.join(unit.directory, url))
                try:
                    raw = await asyncio.to_thread(self.loader.read, map_path)
                except OSError as e:
                    raise LoadError(loc, f"cannot read source map '{map_path}': {e.strerror or e}") from e
        if raw is None:
            return content, None
        try:
            return content, SourceMapConsumer(raw)
        except ValueError as e:
            raise LoadError(loc, f"invalid source map: {e}") from e

    def _upstream_entries(self, unit: Unit, consumer: SourceMapConsumer) -> Dict[int, List[Mapping]]:
        grouped: Dict[int, List[Mapping]] = {}
        for line_no, mappings in consumer.by_generated_line().items():
            entries = []
            for m in mappings:
                if m.source is None:
                    continue
                source = m.source
                if not re.match(r"^[a-z][\w+.-]*:", source):
                    source = self._source_name(normalize_path(os.path.join(unit.directory, source)))
                entries.append(replace(m, source=source))
            grouped[line_no] = entries
        return grouped
