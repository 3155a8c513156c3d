from __future__ import annotations
from dataclasses import dataclass


@dataclass(frozen=True)
class SrcLoc:
    file: str
    line: int    # 1-based, 0 = whole unit

    def at(self) -> str:
        return f"{self.file}:{self.line}"


class WeaveError(Exception):
    kind = "weave"

    def __init__(self, loc: SrcLoc, msg: str):
        self.loc = loc
        self.msg = msg
        super().__init__(self.__str__())

    @property
    def file(self) -> str:
        return self.loc.file

    @property
    def line(self) -> int:
        return self.loc.line

    def __str__(self) -> str:
        return f"{self.loc.at()}: {self.kind} error: {self.msg}"


class BuildError(WeaveError):
    """Malformed directive, unmatched scope or failing replacer."""
    kind = "build"


class LoadError(WeaveError):
    """A unit or an input source map could not be resolved or read."""
    kind = "load"
