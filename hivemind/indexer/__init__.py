"""Vault indexing - parses notes and builds the in-memory index snapshot."""

from .parser import (
    AttributeValue,
    DeclaredRelationship,
    Document,
    Heading,
    display_name,
    extract_headings,
    extract_references,
    file_stem,
    parse_document,
    split_header,
)
from .scanner import ParseFailure, VaultIndex, VaultScanner
from .summary import generate_compact_summary, generate_scan_summary

__all__ = [
    "AttributeValue",
    "DeclaredRelationship",
    "Document",
    "Heading",
    "ParseFailure",
    "VaultIndex",
    "VaultScanner",
    "display_name",
    "extract_headings",
    "extract_references",
    "file_stem",
    "generate_compact_summary",
    "generate_scan_summary",
    "parse_document",
    "split_header",
]
