"""
Revision 3 source maps.

Only what the weaver needs: a generator that collects line mappings and
serializes them, a consumer that decodes an upstream map back into
mappings, and detection of the trailing `//# sourceMappingURL=` comment.
Lines are 1-based and columns 0-based, as in the source-map format.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import base64
import json
import re

MAP_DECL = "//# sourceMappingURL="
DATA_URI_PREFIX = "data:application/json;base64,"

_MAP_COMMENT_RE = re.compile(
    r"(?:\r?\n|\r)?[^\S\r\n]*//[#@] sourceMappingURL=([^\r\n]*)\s*$"
)
_DATA_URI_RE = re.compile(r"data:application/json;(?:charset=[^;,]+;)?base64,(.*)")

_B64 = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
_B64_INDEX = {ch: i for i, ch in enumerate(_B64)}


@dataclass(frozen=True)
class Mapping:
    generated_line: int
    generated_column: int
    source: Optional[str]
    original_line: Optional[int]
    original_column: Optional[int]
    name: Optional[str] = None
    source_content: Optional[str] = field(default=None, compare=False, repr=False)


# --------------- VLQ ---------------

def vlq_encode(value: int) -> str:
    vlq = (-value << 1) | 1 if value < 0 else value << 1
    out = []
    while True:
        digit = vlq & 0x1F
        vlq >>= 5
        if vlq:
            digit |= 0x20
        out.append(_B64[digit])
        if not vlq:
            return "".join(out)


def vlq_decode(segment: str) -> List[int]:
    """Decode every VLQ number packed into one mappings segment."""
    values: List[int] = []
    shift = 0
    acc = 0
    for ch in segment:
        if ch not in _B64_INDEX:
            raise ValueError(f"invalid base64 VLQ character {ch!r}")
        digit = _B64_INDEX[ch]
        acc += (digit & 0x1F) << shift
        if digit & 0x20:
            shift += 5
            continue
        negative = acc & 1
        acc >>= 1
        values.append(-acc if negative else acc)
        acc = 0
        shift = 0
    if shift:
        raise ValueError("truncated base64 VLQ segment")
    return values


# --------------- Generator ---------------

class SourceMapGenerator:
    def __init__(self, file: Optional[str] = None, source_root: Optional[str] = None):
        self.file = file
        self.source_root = source_root
        self.mappings: List[Mapping] = []
        self._sources: List[str] = []
        self._source_index: Dict[str, int] = {}
        self._names: List[str] = []
        self._name_index: Dict[str, int] = {}
        self._contents: Dict[str, str] = {}

    def _add_source(self, source: str) -> int:
        if source not in self._source_index:
            self._source_index[source] = len(self._sources)
            self._sources.append(source)
        return self._source_index[source]

    def _add_name(self, name: str) -> int:
        if name not in self._name_index:
            self._name_index[name] = len(self._names)
            self._names.append(name)
        return self._name_index[name]

    def add_mapping(self, m: Mapping) -> None:
        if m.source is not None:
            self._add_source(m.source)
        if m.name is not None:
            self._add_name(m.name)
        self.mappings.append(m)

    def has_source_content(self, source: str) -> bool:
        return source in self._contents

    def set_source_content(self, source: str, content: str) -> None:
        self._add_source(source)
        self._contents[source] = content

    def _encode_mappings(self) -> str:
        ordered = sorted(self.mappings, key=lambda m: (m.generated_line, m.generated_column))
        lines: List[str] = []
        prev_source = prev_orig_line = prev_orig_col = prev_name = 0
        line_no = 1
        segments: List[str] = []
        prev_col = 0
        for m in ordered:
            while line_no < m.generated_line:
                lines.append(",".join(segments))
                segments = []
                prev_col = 0
                line_no += 1
            seg = vlq_encode(m.generated_column - prev_col)
            prev_col = m.generated_column
            if m.source is not None and m.original_line is not None:
                src = self._source_index[m.source]
                orig_line = m.original_line - 1
                orig_col = m.original_column or 0
                seg += vlq_encode(src - prev_source)
                seg += vlq_encode(orig_line - prev_orig_line)
                seg += vlq_encode(orig_col - prev_orig_col)
                prev_source, prev_orig_line, prev_orig_col = src, orig_line, orig_col
                if m.name is not None:
                    name = self._name_index[m.name]
                    seg += vlq_encode(name - prev_name)
                    prev_name = name
            segments.append(seg)
        if segments:
            lines.append(",".join(segments))
        return ";".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"version": 3}
        if self.file is not None:
            out["file"] = self.file
        if self.source_root is not None:
            out["sourceRoot"] = self.source_root
        out["sources"] = list(self._sources)
        out["names"] = list(self._names)
        out["mappings"] = self._encode_mappings()
        if self._contents:
            out["sourcesContent"] = [self._contents.get(s) for s in self._sources]
        return out

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    def to_data_uri(self) -> str:
        return DATA_URI_PREFIX + base64.b64encode(self.to_json().encode("utf-8")).decode("ascii")


# --------------- Consumer ---------------

class SourceMapConsumer:
    """Decoded view of an upstream map, grouped by generated line."""

    def __init__(self, raw: Any):
        if isinstance(raw, (str, bytes)):
            raw = json.loads(raw)
        if not isinstance(raw, dict):
            raise ValueError("source map must be a JSON object")
        if raw.get("version") != 3:
            raise ValueError(f"unsupported source map version {raw.get('version')!r}")
        self.file: Optional[str] = raw.get("file")
        self.source_root: str = raw.get("sourceRoot") or ""
        self.sources: List[str] = [self._join_root(s) for s in raw.get("sources", [])]
        self.names: List[str] = list(raw.get("names", []))
        contents = raw.get("sourcesContent") or []
        self.sources_content: Dict[str, str] = {
            src: text for src, text in zip(self.sources, contents) if text is not None
        }
        self.mappings: List[Mapping] = self._decode(raw.get("mappings", ""))

    def _join_root(self, source: str) -> str:
        if not self.source_root or re.match(r"^[a-z][\w+.-]*:|^/", source):
            return source
        return self.source_root.rstrip("/") + "/" + source

    def _decode(self, encoded: str) -> List[Mapping]:
        out: List[Mapping] = []
        src = orig_line = orig_col = name = 0
        for line_no, line in enumerate(encoded.split(";"), 1):
            col = 0
            for segment in line.split(","):
                if not segment:
                    continue
                fields = vlq_decode(segment)
                if len(fields) not in (1, 4, 5):
                    raise ValueError(f"bad mappings segment {segment!r} on line {line_no}")
                col += fields[0]
                if len(fields) == 1:
                    out.append(Mapping(line_no, col, None, None, None))
                    continue
                src += fields[1]
                orig_line += fields[2]
                orig_col += fields[3]
                mapped_name = None
                if len(fields) == 5:
                    name += fields[4]
                    if not 0 <= name < len(self.names):
                        raise ValueError(f"name index {name} out of range on line {line_no}")
                    mapped_name = self.names[name]
                if not 0 <= src < len(self.sources):
                    raise ValueError(f"source index {src} out of range on line {line_no}")
                source = self.sources[src]
                out.append(Mapping(
                    generated_line=line_no,
                    generated_column=col,
                    source=source,
                    original_line=orig_line + 1,
                    original_column=orig_col,
                    name=mapped_name,
                    source_content=self.sources_content.get(source),
                ))
        return out

    def by_generated_line(self) -> Dict[int, List[Mapping]]:
        grouped: Dict[int, List[Mapping]] = {}
        for m in self.mappings:
            grouped.setdefault(m.generated_line, []).append(m)
        return grouped


# --------------- Map references ---------------

def find_map_reference(text: str) -> Tuple[str, Optional[str]]:
    """Split off a trailing sourceMappingURL comment: (text without it, url)."""
    m = _MAP_COMMENT_RE.search(text)
    if m is None:
        return text, None
    return text[:m.start()], m.group(1).strip()


def decode_data_uri(url: str) -> Optional[str]:
    m = _DATA_URI_RE.match(url)
    if m is None:
        return None
    return base64.b64decode(m.group(1)).decode("utf-8")
