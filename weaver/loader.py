"""
Default path resolver and content loader.

The builder only talks to a loader through two calls:
    resolve(base_dir, pattern) -> list of concrete paths (glob-expanded)
    read(path)                 -> text of the file
Hosts may pass any object with the same two methods.
"""

from __future__ import annotations
from typing import List, Protocol
import glob
import os


class Loader(Protocol):
    def resolve(self, base_dir: str, pattern: str) -> List[str]: ...

    def read(self, path: str) -> str: ...


def normalize_path(path: str) -> str:
    """Absolute, normalized, forward-slash path used as a unit key."""
    return os.path.normpath(os.path.abspath(path)).replace(os.sep, "/")


def relative_path(start: str, to: str) -> str:
    return os.path.relpath(to, start).replace(os.sep, "/")


class FileLoader:
    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def resolve(self, base_dir: str, pattern: str) -> List[str]:
        path = os.path.join(base_dir, pattern)
        if glob.has_magic(path):
            return [normalize_path(p) for p in sorted(glob.glob(path, recursive=True))
                    if os.path.isfile(p)]
        return [normalize_path(path)]

    def read(self, path: str) -> str:
        with open(path, encoding=self.encoding, newline="") as f:
            return f.read()
