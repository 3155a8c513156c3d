"""Line-directive preprocessor: includes, conditionals, labels and source maps."""

__version__ = "0.4.0"

from weaver.compiler import (CompileRequest, CompileResult, Session, SourceMapMode,
                             compile, compile_async)
from weaver.errors import BuildError, LoadError, SrcLoc, WeaveError
from weaver.loader import FileLoader

__all__ = [
    "BuildError", "CompileRequest", "CompileResult", "FileLoader", "LoadError",
    "Session", "SourceMapMode", "SrcLoc", "WeaveError", "compile", "compile_async",
]
