"""
Command-line front end.

    weaver SRC [-o OUT] [--flags a,b=2] [--labels x,y] [-s true|false|inline]
    echo "..." | weaver -f virtual/path.js

Without --output the result goes to stdout; with it the result (and an
external source map) is written to disk.
"""

from __future__ import annotations
from typing import Dict, List, Optional
import argparse
import json
import logging
import os
import sys
import time

from weaver import __version__
from weaver.compiler import CompileRequest, CompileResult, SourceMapMode, compile
from weaver.errors import WeaveError
from weaver.literal import coerce
from weaver.logger import get_logger, set_verbosity

log = get_logger(__name__)


def parse_flags(text: Optional[str]) -> Dict[str, object]:
    """`a,b=2,c=false` -> {"a": True, "b": 2, "c": False}"""
    flags: Dict[str, object] = {}
    for item in (text or "").split(","):
        item = item.strip()
        if not item:
            continue
        name, sep, value = item.partition("=")
        flags[name.strip()] = coerce(value.strip()) if sep else True
    return flags


def parse_labels(text: Optional[str]) -> List[str]:
    return [s.strip() for s in (text or "").split(",") if s.strip()]


def save_result(result: CompileResult) -> None:
    """Write the result and, for external maps, the map file."""
    if result.output is None:
        raise ValueError("result has no output path")
    text = result.text
    if result.is_external:
        _write(result.source_map_file, _map_json(result))
        text += result.decl + result.url
    _write(result.output, text)


def _map_json(result: CompileResult) -> str:
    return json.dumps(result.source_map, separators=(",", ":"))


def _write(path: str, text: str) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(text)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="weaver", description="Merge files through //# directives.")
    p.add_argument("source", nargs="*", help="source file, or inline text when no such file exists")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("-f", "--file", help="path of the source (identity for stdin / inline text)")
    p.add_argument("-o", "--output", help="path of the output file")
    p.add_argument("--eol", default="\n", help="line terminator of the output")
    p.add_argument("--prefix", default="//#", help="directive marker")
    p.add_argument("--flags", help="comma separated flags, NAME or NAME=VALUE")
    p.add_argument("--labels", help="comma separated labels")
    p.add_argument("-s", "--source-maps", default="false", help="true, false or inline")
    p.add_argument("--source-map-file", help="path of the generated source map")
    p.add_argument("--source-root", help="root for all source URLs in the map")
    p.add_argument("-v", "--verbose", action="store_true")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    set_verbosity(logging.DEBUG if args.verbose else logging.INFO)

    file = args.file
    content = None
    if args.source:
        joined = " ".join(args.source)
        if os.path.isfile(joined):
            file = joined
        else:
            content = joined
    elif file is None or not os.path.isfile(file):
        content = sys.stdin.read()

    try:
        mode = SourceMapMode.parse(args.source_maps)
    except ValueError as e:
        print(f"weaver: {e}", file=sys.stderr)
        return 2

    request = CompileRequest(
        file=file,
        content=content,
        flags=parse_flags(args.flags),
        labels=parse_labels(args.labels),
        eol=args.eol.encode("utf-8").decode("unicode_escape"),
        prefix=args.prefix,
        source_maps=mode,
        output=args.output,
        source_map_file=args.source_map_file,
        source_root=args.source_root,
    )

    start = time.perf_counter()
    try:
        result = compile(request)
    except WeaveError as e:
        print(f"weaver: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"weaver: {e}", file=sys.stderr)
        return 2

    if args.output:
        try:
            save_result(result)
        except OSError as e:
            print(f"weaver: cannot write '{e.filename or args.output}': {e.strerror or e}", file=sys.stderr)
            return 1
        log.info("built %s -> %s in %.3fs", result.file, result.output, time.perf_counter() - start)
    else:
        sys.stdout.write(result.text)
    return 0


if __name__ == "__main__":
    sys.exit(main())
