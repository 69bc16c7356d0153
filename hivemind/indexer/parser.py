"""Document parser - turns raw note text into a Document."""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Union

import yaml

from hivemind.errors import ParseError

# Header values after normalization: plain JSON-compatible data.
AttributeValue = Union[
    str, int, float, bool, None, list["AttributeValue"], dict[str, "AttributeValue"]
]

REQUIRED_FIELDS = ("id", "type", "status")
RESERVED_FIELDS = (*REQUIRED_FIELDS, "title")
RELATIONSHIPS_FIELD = "relationships"

_HEADER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)^---[ \t]*(?:\r?\n|\Z)", re.DOTALL | re.MULTILINE)
_REFERENCE_RE = re.compile(r"\[\[([^\[\]|]*)(?:\|[^\[\]]*)?\]\]")
_HEADING_RE = re.compile(r"^(#{1,6}) (.*)$")
_FENCE_RE = re.compile(r"^\s{0,3}(```|~~~)")


@dataclass(frozen=True)
class Heading:
    """A markdown heading found in a document body."""

    level: int
    text: str


@dataclass(frozen=True)
class DeclaredRelationship:
    """A typed relationship listed under the header's `relationships` key."""

    target: str
    kind: str
    context: str | None = None


@dataclass
class Document:
    """A parsed note, ready to become a graph node."""

    path: str
    id: str
    type: str
    status: str
    title: str
    attributes: dict[str, AttributeValue] = field(default_factory=dict)
    body: str = ""
    references: list[str] = field(default_factory=list)
    headings: list[Heading] = field(default_factory=list)
    relationships: list[DeclaredRelationship] = field(default_factory=list)
    created: float = 0.0
    modified: float = 0.0
    size: int = 0

    @property
    def file_name(self) -> str:
        return display_name(self.path)


def display_name(file_path: str) -> str:
    """Return the last path component, accepting both / and \\ separators."""
    return re.split(r"[/\\]", file_path)[-1]


def file_stem(file_path: str) -> str:
    """Return the file name without its extension."""
    name = display_name(file_path)
    if "." in name.lstrip("."):
        return name.rsplit(".", 1)[0]
    return name


def split_header(text: str) -> tuple[str, str]:
    """Split note text into (header_text, body).

    Raises ParseError when the text does not open with a fenced header block.
    """
    if text.startswith("\ufeff"):
        text = text[1:]

    match = _HEADER_RE.match(text)
    if not match:
        raise ParseError("missing header")

    return match.group(1), text[match.end() :]


def normalize_value(value: object) -> AttributeValue:
    """Coerce a YAML-decoded value into an AttributeValue."""
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): normalize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [normalize_value(v) for v in value]
    return str(value)


def extract_references(body: str) -> list[str]:
    """Extract wikilink targets: [[Target]] or [[Target|Display]]."""
    references: list[str] = []
    for match in _REFERENCE_RE.finditer(body):
        target = match.group(1).strip()
        if target and target not in references:
            references.append(target)
    return references


def extract_headings(body: str) -> list[Heading]:
    """Extract ATX headings, skipping fenced code blocks."""
    headings: list[Heading] = []
    fence: str | None = None

    for line in body.splitlines():
        fence_match = _FENCE_RE.match(line)
        if fence_match:
            marker = fence_match.group(1)
            if fence is None:
                fence = marker
            elif fence == marker:
                fence = None
            continue

        if fence is not None:
            continue

        match = _HEADING_RE.match(line)
        if match:
            headings.append(Heading(level=len(match.group(1)), text=match.group(2).strip()))

    return headings


def _unwrap_reference(value: str) -> str:
    match = _REFERENCE_RE.fullmatch(value.strip())
    if match:
        return match.group(1).strip()
    return value.strip()


def _declared_relationships(raw: object) -> list[DeclaredRelationship]:
    """Read `relationships: [{target, type, note}]` entries, ignoring malformed ones."""
    if not isinstance(raw, list):
        return []

    declared: list[DeclaredRelationship] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        target = entry.get("target")
        if not isinstance(target, str) or not _unwrap_reference(target):
            continue
        kind = entry.get("type")
        context = entry.get("note", entry.get("status"))
        declared.append(
            DeclaredRelationship(
                target=_unwrap_reference(target),
                kind=kind.strip() if isinstance(kind, str) and kind.strip() else "related",
                context=str(context) if context is not None else None,
            )
        )
    return declared


def parse_document(
    text: str,
    file_path: str,
    *,
    created: float = 0.0,
    modified: float = 0.0,
    size: int | None = None,
) -> Document:
    """Parse note text into a Document.

    Raises ParseError naming the missing or invalid field. Documents are never
    coerced into shape: a note without id, type and status is rejected.
    """
    try:
        header_text, body = split_header(text)
    except ParseError as e:
        raise ParseError(e.reason, file_path=file_path) from e

    try:
        header = yaml.safe_load(header_text) if header_text.strip() else {}
    except yaml.YAMLError as e:
        raise ParseError(f"invalid header: {e}", file_path=file_path) from e

    if header is None:
        header = {}
    if not isinstance(header, dict):
        raise ParseError("header is not a mapping", file_path=file_path)

    for name in REQUIRED_FIELDS:
        value = header.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ParseError(f"missing required field: {name}", file_path=file_path, field=name)
        if not isinstance(value, str):
            raise ParseError(
                f"invalid required field: {name} (expected string)",
                file_path=file_path,
                field=name,
            )

    title = header.get("title")
    if not isinstance(title, str) or not title.strip():
        title = file_stem(file_path)

    attributes = {
        str(key): normalize_value(value)
        for key, value in header.items()
        if str(key) not in RESERVED_FIELDS
    }

    return Document(
        path=file_path,
        id=header["id"],
        type=header["type"],
        status=header["status"],
        title=title.strip(),
        attributes=attributes,
        body=body,
        references=extract_references(body),
        headings=extract_headings(body),
        relationships=_declared_relationships(header.get(RELATIONSHIPS_FIELD)),
        created=created,
        modified=modified,
        size=size if size is not None else len(text.encode("utf-8")),
    )
