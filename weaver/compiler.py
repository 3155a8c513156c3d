"""
Compile requests and sessions.

A session owns everything that lives longer than one resolution pass:
the unit cache, the flag defaults and the builder. Units built by one
`Session.compile` call are reused by the next; a top-level `#set` seen
while building changes the defaults every later compile starts from,
and label requests keep widening a unit's selection. Use a fresh
session for an independent compile.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Sequence
import asyncio
import os

from weaver.builder import Builder, Replacer
from weaver.loader import Loader, normalize_path, relative_path
from weaver.logger import get_logger
from weaver.resolve import MapAccumulator, Resolver
from weaver.sourcemap import MAP_DECL, SourceMapGenerator

log = get_logger(__name__)


class SourceMapMode(Enum):
    OFF = "off"
    INLINE = "inline"
    EXTERNAL = "external"

    @classmethod
    def parse(cls, value: Any) -> "SourceMapMode":
        """Accept a mode, a bool, None or one of true/false/inline/external."""
        if isinstance(value, cls):
            return value
        if value is None or value is False:
            return cls.OFF
        if value is True:
            return cls.EXTERNAL
        text = str(value).strip().lower()
        if text in ("", "false", "off", "no", "0"):
            return cls.OFF
        if text in ("true", "on", "yes", "1", "external"):
            return cls.EXTERNAL
        if text == "inline":
            return cls.INLINE
        raise ValueError(f"unknown source map mode {value!r}")


@dataclass
class CompileRequest:
    file: Optional[str] = None
    content: Optional[str] = None
    cwd: Optional[str] = None
    flags: Dict[str, Any] = field(default_factory=dict)
    labels: Iterable[str] = ()
    eol: str = "\n"
    prefix: str = "//#"
    source_maps: Any = SourceMapMode.OFF
    input_source_map: Any = None          # dict or JSON text, applies to the top-level unit
    output: Optional[str] = None          # where the result is meant to be saved
    source_map_file: Optional[str] = None  # default: <output>.map
    source_root: Optional[str] = None
    replacers: Sequence[Replacer] = ()
    loader: Optional[Loader] = None


@dataclass
class CompileResult:
    text: str
    file: str                            # key of the top-level unit
    output: Optional[str] = None
    source_map: Optional[Dict[str, Any]] = None
    source_map_file: Optional[str] = None
    decl: Optional[str] = None
    url: Optional[str] = None
    is_external: bool = False


class Session:
    def __init__(self, request: Optional[CompileRequest] = None):
        self.request = request or CompileRequest()
        req = self.request
        self.cwd = normalize_path(req.cwd or os.getcwd())
        self.mode = SourceMapMode.parse(req.source_maps)
        self.source_root = self.path(req.source_root)
        self.defaults: Dict[str, Any] = dict(req.flags)
        self.builder = Builder(
            self.defaults,
            loader=req.loader,
            eol=req.eol,
            prefix=req.prefix,
            source_maps=self.mode is not SourceMapMode.OFF,
            source_root=self.source_root,
            replacers=req.replacers,
            cwd=self.cwd,
        )
        self._anonymous = 0

    @property
    def units(self):
        return self.builder.units

    def path(self, path: Optional[str]) -> Optional[str]:
        if not path:
            return None
        return normalize_path(os.path.join(self.cwd, path))

    def compile(self, file: Optional[str] = None, content: Optional[str] = None,
                labels: Optional[Iterable[str]] = None) -> CompileResult:
        return asyncio.run(self.compile_async(file, content, labels))

    async def compile_async(self, file: Optional[str] = None, content: Optional[str] = None,
                            labels: Optional[Iterable[str]] = None) -> CompileResult:
        """Build one top-level unit (defaults: the request's) and resolve it."""
        req = self.request
        if file is None and content is None:
            file, content = req.file, req.content
        if labels is None:
            labels = req.labels
        input_map = req.input_source_map if self.mode is not SourceMapMode.OFF else None

        # live flags start from the defaults as they are before this build
        flags = dict(self.defaults)

        if content is not None:
            if file:
                key = self.path(file)
                directory = os.path.dirname(key)
            else:
                self._anonymous += 1
                key = f"<input-{self._anonymous}>"
                directory = self.cwd
            unit = await self.builder.build_text(key, str(content), directory, input_map)
        elif file:
            unit = await self.builder.build_file(self.path(file), input_map=input_map)
        else:
            raise ValueError("nothing to compile: give a file or content")

        output = self.path(req.output) or (unit.key if file else None)
        result = CompileResult(text="", file=unit.key, output=output)

        accumulator = None
        if self.mode is not SourceMapMode.OFF:
            target = output or os.path.join(self.cwd, unit.key.strip("<>")).replace(os.sep, "/")
            map_file = self.path(req.source_map_file) or f"{target}.map"
            generator = SourceMapGenerator(
                file=relative_path(os.path.dirname(map_file), target),
                source_root=self.source_root,
            )
            accumulator = MapAccumulator(generator)
            result.source_map_file = map_file

        text = Resolver(accumulator).resolve(unit, labels, flags)

        if accumulator is not None:
            generator = accumulator.generator
            result.source_map = generator.to_dict()
            result.decl = MAP_DECL
            if self.mode is SourceMapMode.EXTERNAL:
                result.is_external = True
                result.url = relative_path(os.path.dirname(target), map_file)
            else:
                result.url = generator.to_data_uri()
                text += result.decl + result.url

        result.text = text
        log.debug("compiled %s (%d units in session)", unit.key, len(self.units))
        return result


def compile(request: CompileRequest) -> CompileResult:
    """Compile one request in a fresh session."""
    return Session(request).compile()


async def compile_async(request: CompileRequest) -> CompileResult:
    return await Session(request).compile_async()
