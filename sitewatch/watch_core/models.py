"""Value types passed between the build session, broadcaster and collaborators."""

from __future__ import annotations

import io
import json
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class BuildTarget(str, Enum):
    """Output targets accepted by ``BuildSession.execute_build``."""

    FILES = "fs"
    DOCUMENT = "json"
    STREAM = "ndjson"

    @classmethod
    def parse(cls, value: "BuildTarget | str") -> "BuildTarget":
        if isinstance(value, cls):
            return value
        for member in cls:
            if value == member.value or value == member.name.lower():
                return member
        raise ValueError(value)


@dataclass
class TemplateResult:
    input_path: str
    output_url: Optional[str] = None
    output_path: Optional[str] = None
    content: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def with_url_prefix(self, url: Optional[str]) -> "TemplateResult":
        return replace(self, output_url=url)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        extra = data.pop("extra")
        data.update(extra)
        return data


@dataclass
class BuildRecord:
    """Uniform result of one build pass, whatever the output target."""

    target: BuildTarget = BuildTarget.FILES
    write_count: int = 0
    skipped_count: int = 0
    copy_count: int = 0
    copy_results: List[Any] = field(default_factory=list)
    template_results: List[TemplateResult] = field(default_factory=list)
    dependency_snapshot: Dict[str, List[str]] = field(default_factory=dict)
    stream: Optional[io.StringIO] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def as_files_result(self) -> List[Any]:
        """The ``fs`` shape: ``[copy_results, *template_results]``."""
        return [self.copy_results, *self.template_results]


def flatten_results(entries: Iterable[Any]) -> List[TemplateResult]:
    """Flatten nested result lists and drop empty entries."""
    flat: List[TemplateResult] = []
    for entry in entries:
        if not entry:
            continue
        if isinstance(entry, (list, tuple)):
            flat.extend(flatten_results(entry))
        else:
            flat.append(entry)
    return flat


def to_ndjson(results: Iterable[TemplateResult]) -> io.StringIO:
    buf = io.StringIO()
    for result in results:
        buf.write(json.dumps(result.to_dict(), default=str))
        buf.write("\n")
    buf.seek(0)
    return buf


def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part.title() for part in rest)


@dataclass
class ReloadPayload:
    """What the reload layer receives after a successful cycle.

    Serialized with the browser client's camelCase keys: ``changedFiles``
    and ``build.templates[*].outputUrl`` / ``inputPath``.
    """

    changed_files: List[str]
    subtype: Optional[str]
    templates: List[TemplateResult]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "changedFiles": list(self.changed_files),
            "subtype": self.subtype,
            "build": {
                "templates": [{_camel(k): v for k, v in t.to_dict().items()} for t in self.templates]
            },
        }


__all__ = [
    "BuildTarget",
    "TemplateResult",
    "BuildRecord",
    "ReloadPayload",
    "flatten_results",
    "to_ndjson",
]
