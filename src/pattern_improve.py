#!/usr/bin/env python3
"""improve: Audit and repair the design-pattern knowledge base.

Scans a docs tree made of category directories (one README.md index plus
pattern files each), runs structure, consistency, completeness and freshness
checks in parallel, and grades the result. In fix mode, missing sections are
appended from the root templates; user content is never removed.
"""

import argparse
import hashlib
import json
import logging
import os
import re
import socket
import sys
import tempfile
import threading
import time
import unicodedata
import urllib.error
import urllib.parse
import urllib.request
from abc import ABC, abstractmethod
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache, partial
from pathlib import Path
from typing import (
    Any, Callable, Dict, FrozenSet, Iterator, List, Optional, Pattern,
    Protocol, Sequence, Set, Tuple,
)

import yaml

from pattern_catalogs import CATALOG_VERSION, CatalogEntry, load_catalog


logger = logging.getLogger(__name__)


# =============================================================================
# ANSI Color Support
# =============================================================================

class Style:
    """ANSI escape codes for terminal styling."""

    _enabled = True

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    CYAN = "\033[36m"

    _defaults: dict = {}

    @classmethod
    def disable(cls) -> None:
        for attr in dir(cls):
            if attr.isupper() and not attr.startswith("_"):
                setattr(cls, attr, "")
        cls._enabled = False

    @classmethod
    def reset(cls) -> None:
        """Restore all style attributes to their original values."""
        for attr, value in cls._defaults.items():
            setattr(cls, attr, value)
        cls._enabled = True

    @classmethod
    def is_enabled(cls) -> bool:
        return cls._enabled


Style._defaults = {
    attr: getattr(Style, attr)
    for attr in dir(Style)
    if attr.isupper() and not attr.startswith("_")
}


# =============================================================================
# Logging
# =============================================================================

LOG_FORMAT = "[improve] %(name)s - %(levelname)s - %(message)s"


def configure_logging(verbosity: int = 0) -> None:
    """Send log records to stderr; stdout is reserved for the report."""
    if verbosity <= 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr,
                        force=True)


# =============================================================================
# Errors
# =============================================================================

class ImproveError(Exception):
    """Fatal error: the run stops with a non-zero exit code."""


class DocsRootError(ImproveError, OSError):
    """The docs root is missing or unreadable."""


class InvalidCategoryError(ImproveError, ValueError):
    def __init__(self, name: str, known: Sequence[str]):
        self.name = name
        self.known = list(known)
        super().__init__(
            "unknown category '%s' (known: %s)"
            % (name, ", ".join(self.known) or "none")
        )


class ConfigError(ImproveError):
    """Invalid .improve.yaml or settings override."""


class ReportWriteError(ImproveError, OSError):
    """The markdown report could not be written."""


class OracleError(Exception):
    """A freshness query failed. Never fatal."""


class OracleTimeoutError(OracleError):
    pass


class OracleUnavailableError(OracleError):
    pass


class WriteConflictError(Exception):
    """A fix target changed on disk or cannot be rewritten safely."""


# =============================================================================
# Data Models
# =============================================================================

KIND_PATTERN = "pattern"
KIND_CATEGORY_INDEX = "category_index"
KIND_TEMPLATE = "template"

SEVERITY_HIGH = "high"
SEVERITY_MEDIUM = "medium"
SEVERITY_LOW = "low"
SEVERITY_ORDER = {SEVERITY_HIGH: 0, SEVERITY_MEDIUM: 1, SEVERITY_LOW: 2}

ISSUE_MISSING_SECTION = "missing_section"
ISSUE_BROKEN_LINK = "broken_link"
ISSUE_UNKNOWN_REFERENCE = "unknown_pattern_reference"
ISSUE_TABLE_HEADER = "inconsistent_table"
ISSUE_SECTION_NAME = "inconsistent_section_name"


class Mode(Enum):
    CHECK = "check"
    FIX = "fix"
    REPORT = "report"


class Scope(Enum):
    ALL = "all"
    STRUCTURE_ONLY = "structure"
    FRESHNESS_ONLY = "freshness"
    MISSING_ONLY = "missing"


class Phase(Enum):
    STRUCTURE = "structure"
    CONSISTENCY = "consistency"
    COMPLETENESS = "completeness"
    FRESHNESS = "freshness"


class Verdict(Enum):
    CURRENT = "current"
    OUTDATED = "outdated"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class DocumentFile:
    """A markdown file of the knowledge base, read once at indexing."""
    path: Path
    rel_path: str
    category: str  # "" for root-level templates
    kind: str      # pattern, category_index, template
    content: str = field(default="", repr=False, compare=False)


@dataclass(frozen=True)
class Issue:
    """A single finding, produced by exactly one checker."""
    file: str
    kind: str
    severity: str
    detail: str
    section: Optional[str] = None


@dataclass(frozen=True)
class MissingPattern:
    name: str
    category: str
    priority: str  # high, medium
    source_catalog: str


@dataclass(frozen=True)
class FreshnessResult:
    file: str
    name: str
    category: str
    verdict: Verdict
    note: str = ""


@dataclass(frozen=True)
class RunConfig:
    mode: Mode = Mode.CHECK
    scope: Scope = Scope.ALL
    category_filter: Optional[str] = None


@dataclass(frozen=True)
class AuditReport:
    """Aggregated result of one run."""
    root: str
    scanned_count: int
    issues: Tuple[Issue, ...]
    issues_by_kind: Dict[str, int]
    missing_patterns: Tuple[MissingPattern, ...]
    outdated_patterns: Tuple[FreshnessResult, ...]
    freshness: Tuple[FreshnessResult, ...]
    catalog_coverage: Dict[str, Tuple[int, int]]
    score: float
    grade: str
    incomplete: bool = False
    phases: Tuple[Phase, ...] = ()


# =============================================================================
# Settings
# =============================================================================

DEFAULT_DOCS_ROOT = Path.home() / ".claude" / "docs"
SETTINGS_FILE = ".improve.yaml"

DEFAULT_ORACLE_TIMEOUT_S = 5.0
DEFAULT_ORACLE_RETRIES = 1
MAX_ORACLE_RETRIES = 1
DEFAULT_ORACLE_BUDGET_S = 60.0
DEFAULT_RUN_TIMEOUT_S = 300.0
DEFAULT_MAX_WORKERS = 4
DEFAULT_REPORT_PATH = "improve-report.md"

EVOLUTION_HIGH = "high_evolution"
EVOLUTION_MEDIUM = "medium_evolution"
EVOLUTION_STABLE = "stable"
EVOLUTION_CLASSES = (EVOLUTION_HIGH, EVOLUTION_MEDIUM, EVOLUTION_STABLE)

CATEGORY_EVOLUTION: Dict[str, str] = {
    "cloud": EVOLUTION_HIGH,
    "security": EVOLUTION_HIGH,
    "devops": EVOLUTION_HIGH,
    "architectural": EVOLUTION_MEDIUM,
    "testing": EVOLUTION_MEDIUM,
    "principles": EVOLUTION_STABLE,
    "creational": EVOLUTION_STABLE,
    "structural": EVOLUTION_STABLE,
    "behavioral": EVOLUTION_STABLE,
}


@dataclass(frozen=True)
class AuditSettings:
    """Operational settings from .improve.yaml and CLI overrides."""
    oracle_url: Optional[str] = None
    oracle_timeout_s: float = DEFAULT_ORACLE_TIMEOUT_S
    oracle_retries: int = DEFAULT_ORACLE_RETRIES
    oracle_budget_s: float = DEFAULT_ORACLE_BUDGET_S
    run_timeout_s: Optional[float] = DEFAULT_RUN_TIMEOUT_S
    max_workers: int = DEFAULT_MAX_WORKERS
    report_path: str = DEFAULT_REPORT_PATH
    evolution: Dict[str, str] = field(
        default_factory=lambda: dict(CATEGORY_EVOLUTION))


_SETTINGS_KEYS = {"oracle", "run_timeout_s", "max_workers", "report_path",
                  "evolution"}


def _number(raw: Dict[str, Any], key: str, default: Any, kind: type) -> Any:
    value = raw.get(key, default)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError("'%s' must be a number, got %r" % (key, value))
    if value < 0:
        raise ConfigError("'%s' must not be negative" % key)
    return kind(value)


def load_settings(root: Path, config_path: Optional[Path] = None) -> AuditSettings:
    """Load settings from `config_path` or `<root>/.improve.yaml` if present."""
    path = Path(config_path) if config_path else Path(root) / SETTINGS_FILE
    if not path.is_file():
        if config_path:
            raise ConfigError("config file not found: %s" % path)
        return AuditSettings()

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError("cannot read %s: %s" % (path, e)) from e
    if not isinstance(raw, dict):
        raise ConfigError("%s must contain a mapping" % path)

    for key in sorted(set(raw) - _SETTINGS_KEYS):
        logger.warning("Ignoring unknown setting '%s' in %s", key, path)

    oracle = raw.get("oracle") or {}
    if not isinstance(oracle, dict):
        raise ConfigError("'oracle' must be a mapping")
    url = oracle.get("url")
    if url is not None and not isinstance(url, str):
        raise ConfigError("'oracle.url' must be a string")

    evolution = dict(CATEGORY_EVOLUTION)
    overrides = raw.get("evolution") or {}
    if not isinstance(overrides, dict):
        raise ConfigError("'evolution' must be a mapping of category to class")
    for category, value in overrides.items():
        if value not in EVOLUTION_CLASSES:
            raise ConfigError(
                "unknown evolution class %r for '%s' (expected one of: %s)"
                % (value, category, ", ".join(EVOLUTION_CLASSES)))
        evolution[str(category)] = value

    run_timeout = raw.get("run_timeout_s", DEFAULT_RUN_TIMEOUT_S)
    if run_timeout is not None:
        run_timeout = _number(raw, "run_timeout_s", DEFAULT_RUN_TIMEOUT_S, float)

    retries = _number(oracle, "retries", DEFAULT_ORACLE_RETRIES, int)
    if retries > MAX_ORACLE_RETRIES:
        raise ConfigError("'oracle.retries' must be at most %d, got %d"
                          % (MAX_ORACLE_RETRIES, retries))

    report_path = raw.get("report_path", DEFAULT_REPORT_PATH)
    if not isinstance(report_path, str):
        raise ConfigError("'report_path' must be a string")

    return AuditSettings(
        oracle_url=url,
        oracle_timeout_s=_number(oracle, "timeout_s", DEFAULT_ORACLE_TIMEOUT_S, float),
        oracle_retries=retries,
        oracle_budget_s=_number(oracle, "budget_s", DEFAULT_ORACLE_BUDGET_S, float),
        run_timeout_s=run_timeout,
        max_workers=max(1, _number(raw, "max_workers", DEFAULT_MAX_WORKERS, int)),
        report_path=report_path,
        evolution=evolution,
    )


# =============================================================================
# Markdown Reading
# =============================================================================

_FENCE_RE = re.compile(r"^\s{0,3}(`{3,}|~{3,})\s*([^\s`]*)")
_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)(?:\s+#+)?\s*$")
_BOLD_LABEL_RE = re.compile(r"^\s*\*\*([^*]+)\*\*")
_BLOCKQUOTE_RE = re.compile(r"^> .+")
_LINK_RE = re.compile(
    r"(?<!!)\[([^\]]*)\]\(\s*<?([^)\s>]+)>?(?:\s+[\"'][^\"']*[\"'])?\s*\)"
)
_INLINE_CODE_RE = re.compile(r"`[^`]*`")
_CELL_SPLIT_RE = re.compile(r"(?<!\\)\|")
_SEPARATOR_CELL_RE = re.compile(r"^:?-+:?$")
_EXTERNAL_LINK_RE = re.compile(r"^(?:[a-zA-Z][a-zA-Z0-9+.-]*:|//)")


@dataclass(frozen=True)
class MarkdownTable:
    header: Tuple[str, ...]
    rows: Tuple[Tuple[str, ...], ...]
    line: int
    context: str  # nearest heading or bold label above the table


@dataclass(frozen=True)
class MarkdownOutline:
    """Structural facts about one markdown document."""
    headings: Tuple[Tuple[int, str, int], ...]  # (level, text, line)
    labels: Tuple[Tuple[str, int], ...]          # bold labels (text, line)
    languages: Tuple[str, ...]                   # fenced code info strings
    has_blockquote: bool
    tables: Tuple[MarkdownTable, ...]
    links: Tuple[Tuple[int, str, str], ...]      # (line, text, target)

    @property
    def title(self) -> Optional[str]:
        for level, text, _ in self.headings:
            if level == 1:
                return text
        return None


def _split_row(line: str) -> List[str]:
    stripped = line.strip()
    cells = _CELL_SPLIT_RE.split(stripped)
    if stripped.startswith("|"):
        cells = cells[1:]
    if stripped.endswith("|") and cells:
        cells = cells[:-1]
    return [c.strip() for c in cells]


def _is_separator(cells: List[str]) -> bool:
    return bool(cells) and all(_SEPARATOR_CELL_RE.match(c) for c in cells)


def _scan_fences(content: str) -> Tuple[List[Tuple[int, str]], List[str]]:
    """Lines outside fenced code blocks, and the info string of each fence."""
    lines: List[Tuple[int, str]] = []
    languages: List[str] = []
    fence_char, fence_len = "", 0
    for i, line in enumerate(content.splitlines(), 1):
        m = _FENCE_RE.match(line)
        if not fence_len:
            if m:
                fence_char, fence_len = m.group(1)[0], len(m.group(1))
                languages.append(m.group(2).lower())
                continue
            lines.append((i, line))
        elif (m and m.group(1)[0] == fence_char
              and len(m.group(1)) >= fence_len and not m.group(2)):
            fence_char, fence_len = "", 0
    return lines, languages


@lru_cache(maxsize=1024)
def parse_markdown(content: str) -> MarkdownOutline:
    """Read headings, bold labels, fenced code, pipe tables and links."""
    lines, languages = _scan_fences(content)
    headings: List[Tuple[int, str, int]] = []
    labels: List[Tuple[str, int]] = []
    tables: List[MarkdownTable] = []
    links: List[Tuple[int, str, str]] = []
    has_blockquote = False
    context = ""

    k = 0
    while k < len(lines):
        lineno, line = lines[k]
        heading = _HEADING_RE.match(line)
        if heading:
            text = heading.group(2).strip()
            headings.append((len(heading.group(1)), text, lineno))
            context = text
        else:
            label = _BOLD_LABEL_RE.match(line)
            if label:
                labels.append((label.group(1).strip(), lineno))
                context = label.group(1).strip()
            if _BLOCKQUOTE_RE.match(line):
                has_blockquote = True

        for m in _LINK_RE.finditer(_INLINE_CODE_RE.sub("", line)):
            links.append((lineno, m.group(1), m.group(2)))

        if line.lstrip().startswith("|") and k + 1 < len(lines):
            next_no, next_line = lines[k + 1]
            header = _split_row(line)
            if next_no == lineno + 1 and _is_separator(_split_row(next_line)):
                rows: List[Tuple[str, ...]] = []
                j = k + 2
                while (j < len(lines) and lines[j][0] == lines[j - 1][0] + 1
                       and lines[j][1].lstrip().startswith("|")):
                    rows.append(tuple(_split_row(lines[j][1])))
                    for m in _LINK_RE.finditer(_INLINE_CODE_RE.sub("", lines[j][1])):
                        links.append((lines[j][0], m.group(1), m.group(2)))
                    j += 1
                tables.append(MarkdownTable(tuple(header), tuple(rows), lineno, context))
                k = j
                continue
        k += 1

    return MarkdownOutline(
        headings=tuple(headings),
        labels=tuple(labels),
        languages=tuple(languages),
        has_blockquote=has_blockquote,
        tables=tuple(tables),
        links=tuple(links),
    )


def cell_text(cell: str) -> str:
    """Plain text of a table cell: links reduced to their text, no emphasis."""
    text = _LINK_RE.sub(lambda m: m.group(1), cell)
    return re.sub(r"[*`]", "", text).strip()


def label_text(text: str) -> str:
    """Heading or label text without leading emoji, numbering or punctuation."""
    return re.sub(r"^[^\w]+|^\d+[.)]\s*", "", text.strip()).strip()


def normalize_name(name: str) -> str:
    """Comparable form of a pattern name ("Circuit-Breaker Pattern" -> "circuit breaker")."""
    text = unicodedata.normalize("NFKD", re.sub(r"\([^)]*\)", " ", name))
    text = "".join(c for c in text if not unicodedata.combining(c)).lower()
    words = re.sub(r"[^a-z0-9]+", " ", text).split()
    while words and words[-1] in ("pattern", "patterns"):
        words.pop()
    while words and words[0] in ("the", "pattern"):
        words.pop(0)
    return " ".join(words)


def document_names(doc: DocumentFile) -> Set[str]:
    """Names a document answers to: its file stem and its H1 title."""
    names = {normalize_name(doc.path.stem)}
    title = parse_markdown(doc.content).title
    if title:
        names.add(normalize_name(title))
    names.discard("")
    return names


def display_name(doc: DocumentFile) -> str:
    title = parse_markdown(doc.content).title
    if title:
        return re.sub(r"\s*\([^)]*\)", "", title).strip()
    return doc.path.stem.replace("-", " ").replace("_", " ").title()


def section_block(content: str, heading_re: Pattern) -> Optional[str]:
    """Lines of the first section whose heading matches, up to the next peer heading."""
    outline = parse_markdown(content)
    lines = content.splitlines()
    for idx, (level, text, lineno) in enumerate(outline.headings):
        if level < 2 or not heading_re.match(label_text(text)):
            continue
        end = len(lines)
        for next_level, _, next_line in outline.headings[idx + 1:]:
            if next_level <= level:
                end = next_line - 1
                break
        return "\n".join(lines[lineno - 1:end]).rstrip() + "\n"
    return None


# =============================================================================
# Document Index
# =============================================================================

_TEMPLATE_RE = re.compile(r"^TEMPLATE-.*\.md$")
INDEX_FILE = "README.md"


def classify_file(name: str) -> str:
    """Classify a markdown file by its name."""
    if name == INDEX_FILE:
        return KIND_CATEGORY_INDEX
    if _TEMPLATE_RE.match(name):
        return KIND_TEMPLATE
    return KIND_PATTERN


def _check_root(root: Path) -> None:
    if not root.is_dir() or not os.access(str(root), os.R_OK | os.X_OK):
        raise DocsRootError("docs root is not a readable directory: %s" % root)


def list_categories(root: Path) -> List[str]:
    """Category directories: the non-hidden immediate subdirectories of root."""
    try:
        entries = sorted(root.iterdir())
    except OSError as e:
        raise DocsRootError("cannot read docs root %s: %s" % (root, e)) from e
    return [p.name for p in entries if p.is_dir() and not p.name.startswith(".")]


def _iter_markdown(directory: Path) -> Iterator[Path]:
    for dirpath, dirnames, filenames in os.walk(str(directory)):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        for name in sorted(filenames):
            if name.endswith(".md"):
                yield Path(dirpath) / name


def _load_document(root: Path, path: Path, category: str) -> DocumentFile:
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning("Cannot read %s: %s", path, e)
        content = ""
    return DocumentFile(
        path=path,
        rel_path=path.relative_to(root).as_posix(),
        category=category,
        kind=classify_file(path.name),
        content=content,
    )


def scan_documents(root: Path, category_filter: Optional[str] = None) -> List[DocumentFile]:
    """Walk the docs root and classify every markdown file, in scan order."""
    root = Path(root).expanduser().resolve()
    _check_root(root)
    categories = list_categories(root)
    if category_filter is not None:
        if category_filter not in categories:
            raise InvalidCategoryError(category_filter, categories)
        categories = [category_filter]

    files: List[DocumentFile] = []
    if category_filter is None:
        for path in sorted(root.glob("TEMPLATE-*.md")):
            if path.is_file():
                files.append(_load_document(root, path, ""))
    for category in categories:
        for path in _iter_markdown(root / category):
            files.append(_load_document(root, path, category))
    return files


@dataclass(frozen=True)
class DocumentIndex:
    """Read-only inventory shared by every phase."""
    root: Path
    files: Tuple[DocumentFile, ...]
    categories: Tuple[str, ...]
    missing_indexes: Tuple[str, ...]
    templates: Dict[str, str]
    link_targets: FrozenSet[str]
    known_names: FrozenSet[str]
    category_filter: Optional[str] = None

    def validated(self) -> List[DocumentFile]:
        return [f for f in self.files if f.kind != KIND_TEMPLATE]

    def of_kind(self, kind: str) -> List[DocumentFile]:
        return [f for f in self.files if f.kind == kind]

    def patterns_in(self, category: str) -> List[DocumentFile]:
        return [f for f in self.files
                if f.kind == KIND_PATTERN and f.category == category]


def load_templates(root: Path) -> Dict[str, str]:
    """Root-level TEMPLATE-*.md files by name."""
    templates = {}
    for path in sorted(Path(root).glob("TEMPLATE-*.md")):
        try:
            templates[path.name] = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Cannot read template %s: %s", path, e)
    return templates


def build_index(root: Path, category_filter: Optional[str] = None) -> DocumentIndex:
    """Scan the tree and collect what the cross-file checks need."""
    root = Path(root).expanduser().resolve()
    files = scan_documents(root, category_filter)
    categories = [category_filter] if category_filter else list_categories(root)

    link_targets: Set[str] = set()
    known: Set[str] = set()
    for path in _iter_markdown(root):
        link_targets.add(os.path.normpath(str(path)))
        rel_parts = path.relative_to(root).parts
        if len(rel_parts) >= 2 and classify_file(path.name) == KIND_PATTERN:
            known.add(normalize_name(path.stem))
    for doc in files:
        if doc.kind == KIND_PATTERN:
            known.update(document_names(doc))
    known.discard("")

    missing = [c for c in categories if not (root / c / INDEX_FILE).is_file()]
    logger.info("Indexed %d files in %d categories under %s",
                len(files), len(categories), root)
    return DocumentIndex(
        root=root,
        files=tuple(files),
        categories=tuple(categories),
        missing_indexes=tuple(missing),
        templates=load_templates(root),
        link_targets=frozenset(link_targets),
        known_names=frozenset(known),
        category_filter=category_filter,
    )


# =============================================================================
# Section Rules
# =============================================================================

RECOGNIZED_LANGUAGES = frozenset([
    "typescript", "ts", "javascript", "js", "go", "golang", "python", "py",
    "java", "kotlin", "rust", "rs", "csharp", "cs", "c#", "cpp", "c++", "c",
    "ruby", "rb", "php", "swift", "scala", "elixir", "bash", "sh", "shell",
    "sql", "yaml", "yml", "json", "hcl", "terraform", "dockerfile",
])

_WHEN_RE = re.compile(r"(?:quand|when)\b", re.IGNORECASE)
_RELATED_RE = re.compile(r"(?:patterns?\s+li[ée]s|related\s+patterns?)", re.IGNORECASE)
_SOURCES_RE = re.compile(r"(?:sources?|r[ée]f[ée]rences?)\b", re.IGNORECASE)
_PATTERNS_HEADING_RE = re.compile(r"(?:patterns?|catalogue)\b", re.IGNORECASE)
_DECISION_CONTEXT_RE = re.compile(
    r"d[ée]cision|choisir|choix|choos|arbre|quand utiliser|when to use",
    re.IGNORECASE)
_DECISION_HEADER_RE = re.compile(
    r"(?:besoin|need|probl[eè]me|problem|situation|sc[ée]nario|scenario|"
    r"cas\b|use case|si\b|if\b|quand|when)", re.IGNORECASE)


def _has_section(outline: MarkdownOutline, pattern: Pattern) -> bool:
    for level, text, _ in outline.headings:
        if level >= 2 and pattern.match(label_text(text)):
            return True
    return any(pattern.match(label_text(text)) for text, _ in outline.labels)


def is_related_table(table: MarkdownTable) -> bool:
    return bool(_RELATED_RE.search(table.context))


def is_decision_table(table: MarkdownTable) -> bool:
    if _DECISION_CONTEXT_RE.search(table.context):
        return True
    return bool(table.header) and bool(_DECISION_HEADER_RE.match(cell_text(table.header[0])))


def is_patterns_table(table: MarkdownTable) -> bool:
    return any("pattern" in cell_text(h).lower() for h in table.header)


@dataclass(frozen=True)
class SectionRule:
    key: str
    label: str
    required: bool
    present: Callable[[MarkdownOutline], bool]


PATTERN_RULES: List[SectionRule] = [
    SectionRule("title", "Titre (H1)", True, lambda o: o.title is not None),
    SectionRule("description", "Description (blockquote)", True,
                lambda o: o.has_blockquote),
    SectionRule("code_example", "Exemple de code", True,
                lambda o: any(lang in RECOGNIZED_LANGUAGES for lang in o.languages)),
    SectionRule("when_to_use", "Quand utiliser", True,
                lambda o: _has_section(o, _WHEN_RE)),
    SectionRule("related_patterns", "Patterns liés", True,
                lambda o: _has_section(o, _RELATED_RE)),
    SectionRule("sources", "Sources", False,
                lambda o: _has_section(o, _SOURCES_RE)),
]

INDEX_RULES: List[SectionRule] = [
    SectionRule("title", "Titre (H1)", True, lambda o: o.title is not None),
    SectionRule("patterns_table", "Tableau des patterns", True,
                lambda o: any(is_patterns_table(t) and not is_decision_table(t)
                              for t in o.tables)),
    SectionRule("decision_table", "Tableau de décision", True,
                lambda o: any(is_decision_table(t) for t in o.tables)),
    SectionRule("sources", "Sources", False,
                lambda o: _has_section(o, _SOURCES_RE)),
]

RULES_BY_KIND: Dict[str, List[SectionRule]] = {
    KIND_PATTERN: PATTERN_RULES,
    KIND_CATEGORY_INDEX: INDEX_RULES,
}


def rule_for(kind: str, key: str) -> Optional[SectionRule]:
    for rule in RULES_BY_KIND.get(kind, []):
        if rule.key == key:
            return rule
    return None


# =============================================================================
# Structure Validation
# =============================================================================

def validate_structure(doc: DocumentFile) -> List[Issue]:
    """One missing_section issue per missing section, in schema order."""
    rules = RULES_BY_KIND.get(doc.kind)
    if not rules:
        return []
    outline = parse_markdown(doc.content)
    issues = []
    for rule in rules:
        if rule.present(outline):
            continue
        issues.append(Issue(
            file=doc.rel_path,
            kind=ISSUE_MISSING_SECTION,
            severity=SEVERITY_HIGH if rule.required else SEVERITY_LOW,
            detail="Missing section: %s" % rule.label,
            section=rule.key,
        ))
    return issues


def missing_index_issue(category: str) -> Issue:
    return Issue(
        file="%s/%s" % (category, INDEX_FILE),
        kind=ISSUE_MISSING_SECTION,
        severity=SEVERITY_HIGH,
        detail="Missing category index: %s/%s" % (category, INDEX_FILE),
        section="category_index",
    )


# =============================================================================
# Consistency Checks
# =============================================================================

def _header_signature(table: MarkdownTable) -> str:
    return " | ".join(re.sub(r"\s+", " ", cell_text(h)).lower() for h in table.header)


def _majority(values: List[str]) -> Optional[str]:
    """Most common value (first seen wins ties); None when all agree."""
    counts = Counter(values)
    if len(counts) < 2:
        return None
    best = max(counts.values())
    for value in values:
        if counts[value] == best:
            return value
    return None


def _table_roles(doc: DocumentFile) -> Dict[str, MarkdownTable]:
    roles: Dict[str, MarkdownTable] = {}
    for table in parse_markdown(doc.content).tables:
        if doc.kind == KIND_PATTERN and is_related_table(table):
            roles.setdefault("related", table)
        elif doc.kind == KIND_CATEGORY_INDEX:
            if is_decision_table(table):
                roles.setdefault("decision", table)
            elif is_patterns_table(table):
                roles.setdefault("patterns", table)
    return roles


def check_table_headers(files: Sequence[DocumentFile]) -> List[Issue]:
    """Flag tables whose header differs from the usual one for their role."""
    seen: Dict[Tuple[str, str], List[Tuple[DocumentFile, MarkdownTable]]] = {}
    for doc in files:
        for role, table in _table_roles(doc).items():
            seen.setdefault((doc.kind, role), []).append((doc, table))

    flagged: Dict[str, List[Issue]] = {}
    for (kind, role), entries in seen.items():
        usual = _majority([_header_signature(t) for _, t in entries])
        if usual is None:
            continue
        for doc, table in entries:
            signature = _header_signature(table)
            if signature != usual:
                flagged.setdefault(doc.rel_path, []).append(Issue(
                    file=doc.rel_path,
                    kind=ISSUE_TABLE_HEADER,
                    severity=SEVERITY_LOW,
                    detail="%s table header '%s' differs from the usual '%s' (line %d)"
                           % (role.capitalize(), signature, usual, table.line),
                ))
    return [issue for doc in files for issue in flagged.get(doc.rel_path, [])]


_NAMED_SECTIONS = [
    ("when_to_use", _WHEN_RE),
    ("related_patterns", _RELATED_RE),
    ("sources", _SOURCES_RE),
]


def check_section_names(files: Sequence[DocumentFile]) -> List[Issue]:
    """Flag pattern files whose heading wording differs from the majority."""
    patterns = [f for f in files if f.kind == KIND_PATTERN]
    wording: Dict[str, List[Tuple[DocumentFile, str]]] = {}
    for doc in patterns:
        for key, pattern in _NAMED_SECTIONS:
            for level, text, _ in parse_markdown(doc.content).headings:
                label = label_text(text)
                if level >= 2 and pattern.match(label):
                    wording.setdefault(key, []).append(
                        (doc, re.sub(r"\s+", " ", label).lower()))
                    break

    flagged: Dict[str, List[Issue]] = {}
    for key, _ in _NAMED_SECTIONS:
        entries = wording.get(key, [])
        usual = _majority([w for _, w in entries])
        if usual is None:
            continue
        for doc, used in entries:
            if used != usual:
                flagged.setdefault(doc.rel_path, []).append(Issue(
                    file=doc.rel_path,
                    kind=ISSUE_SECTION_NAME,
                    severity=SEVERITY_LOW,
                    detail="Heading '%s' differs from the usual '%s'" % (used, usual),
                    section=key,
                ))
    return [issue for doc in patterns for issue in flagged.get(doc.rel_path, [])]


def resolve_link(root: Path, doc: DocumentFile, target: str) -> Optional[str]:
    """Normalized absolute path of an internal markdown link, else None."""
    if not target or target.startswith("#") or _EXTERNAL_LINK_RE.match(target):
        return None
    path_part = urllib.parse.unquote(target.split("#", 1)[0].split("?", 1)[0])
    if not path_part:
        return None
    if path_part.endswith("/"):
        path_part += INDEX_FILE
    elif not path_part.lower().endswith(".md"):
        return None
    if path_part.startswith("/"):
        return os.path.normpath(str(root / path_part.lstrip("/")))
    return os.path.normpath(str(doc.path.parent / path_part))


def check_links(index: DocumentIndex) -> List[Issue]:
    """Every internal markdown link must point at a file under the root."""
    issues = []
    for doc in index.validated():
        for lineno, _, target in parse_markdown(doc.content).links:
            resolved = resolve_link(index.root, doc, target)
            if resolved is None or resolved in index.link_targets:
                continue
            issues.append(Issue(
                file=doc.rel_path,
                kind=ISSUE_BROKEN_LINK,
                severity=SEVERITY_MEDIUM,
                detail="Broken link to '%s' (line %d)" % (target, lineno),
            ))
    return issues


def catalog_names(catalog: Sequence[CatalogEntry]) -> Set[str]:
    names = set()
    for entry in catalog:
        names.add(normalize_name(entry.name))
        names.update(normalize_name(a) for a in entry.aliases)
    return names


def related_references(doc: DocumentFile) -> List[Tuple[str, str, int]]:
    """(name, raw cell, line) for each row of the related-patterns tables."""
    refs = []
    for table in parse_markdown(doc.content).tables:
        if not is_related_table(table):
            continue
        for offset, row in enumerate(table.rows, 2):
            if not row:
                continue
            name = cell_text(row[0])
            if normalize_name(name):
                refs.append((name, row[0], table.line + offset))
    return refs


def check_references(index: DocumentIndex, catalog: Sequence[CatalogEntry]) -> List[Issue]:
    """Related-pattern names must match a documented pattern or a catalog entry."""
    known = set(index.known_names) | catalog_names(catalog)
    issues = []
    for doc in index.of_kind(KIND_PATTERN):
        for name, cell, lineno in related_references(doc):
            if normalize_name(name) in known:
                continue
            link = _LINK_RE.search(cell)
            if link and resolve_link(index.root, doc, link.group(2)) in index.link_targets:
                continue
            issues.append(Issue(
                file=doc.rel_path,
                kind=ISSUE_UNKNOWN_REFERENCE,
                severity=SEVERITY_MEDIUM,
                detail="Unknown pattern reference '%s' (line %d)" % (name, lineno),
            ))
    return issues


def check_consistency(index: DocumentIndex, catalog: Sequence[CatalogEntry]) -> List[Issue]:
    """Cross-file checks over the whole inventory."""
    files = index.validated()
    issues = []
    issues.extend(check_table_headers(files))
    issues.extend(check_section_names(files))
    issues.extend(check_links(index))
    issues.extend(check_references(index, catalog))
    return issues


# =============================================================================
# Completeness
# =============================================================================

PRIORITY_HIGH = "high"
PRIORITY_MEDIUM = "medium"


def _decision_pattern_column(table: MarkdownTable) -> int:
    for i, h in enumerate(table.header):
        if "pattern" in cell_text(h).lower():
            return i
    return len(table.header) - 1


def demand_names(index: DocumentIndex) -> Set[str]:
    """Patterns asked for: named in related tables or unlinked in decision tables."""
    wanted = set()
    for doc in index.of_kind(KIND_PATTERN):
        wanted.update(normalize_name(name) for name, _, _ in related_references(doc))
    for doc in index.of_kind(KIND_CATEGORY_INDEX):
        for table in parse_markdown(doc.content).tables:
            if not is_decision_table(table) or not table.header:
                continue
            column = _decision_pattern_column(table)
            for row in table.rows:
                if column >= len(row) or _LINK_RE.search(row[column]):
                    continue
                for part in re.split(r"[,+]", cell_text(row[column])):
                    wanted.add(normalize_name(part))
    wanted.discard("")
    return wanted


def compare_catalogs(
    index: DocumentIndex, catalog: Sequence[CatalogEntry],
) -> Tuple[List[MissingPattern], List[CatalogEntry]]:
    """Catalog entries without a pattern file in their category.

    Only catalogs whose category was scanned take part. Returns the gaps in
    catalog order and the compared entries with `documented` filled in.
    """
    documented: Dict[str, Set[str]] = {}
    for doc in index.of_kind(KIND_PATTERN):
        documented.setdefault(doc.category, set()).update(document_names(doc))

    wanted = demand_names(index)
    scanned = set(index.categories)
    missing: List[MissingPattern] = []
    compared: List[CatalogEntry] = []
    for entry in catalog:
        if entry.category not in scanned:
            continue
        names = {normalize_name(entry.name)} | {normalize_name(a) for a in entry.aliases}
        is_documented = bool(names & documented.get(entry.category, set()))
        compared.append(replace(entry, documented=is_documented))
        if is_documented:
            continue
        missing.append(MissingPattern(
            name=entry.name,
            category=entry.category,
            priority=PRIORITY_HIGH if names & wanted else PRIORITY_MEDIUM,
            source_catalog=entry.source_catalog,
        ))
    return missing, compared


# =============================================================================
# Freshness Oracle
# =============================================================================

@dataclass(frozen=True)
class OracleAnswer:
    verdict: Verdict
    timed_out: bool = False
    note: str = ""


class FreshnessOracle(Protocol):
    def query(self, pattern_name: str, category: str) -> OracleAnswer:
        """Judge whether the documented guidance for a pattern is current."""
        ...


class OfflineOracle:
    """Used when no oracle is configured: every pattern stays unknown."""

    def query(self, pattern_name: str, category: str) -> OracleAnswer:
        raise OracleUnavailableError("no freshness oracle configured")


@dataclass
class HttpOracle:
    """Posts {"pattern", "category"} as JSON, expects {"verdict", "note"}."""
    url: str
    timeout_s: float = DEFAULT_ORACLE_TIMEOUT_S

    def query(self, pattern_name: str, category: str) -> OracleAnswer:
        data = json.dumps({"pattern": pattern_name, "category": category},
                          ensure_ascii=False).encode("utf-8")
        req = urllib.request.Request(url=self.url, data=data, method="POST")
        req.add_header("Content-Type", "application/json")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
                raw = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            raise OracleUnavailableError("oracle returned HTTP %d" % e.code) from e
        except urllib.error.URLError as e:
            if isinstance(e.reason, (socket.timeout, TimeoutError)):
                raise OracleTimeoutError("oracle timed out") from e
            raise OracleUnavailableError("oracle unreachable: %s" % e.reason) from e
        except (socket.timeout, TimeoutError) as e:
            raise OracleTimeoutError("oracle timed out") from e
        except OSError as e:
            raise OracleUnavailableError("oracle I/O error: %s" % e) from e

        try:
            body = json.loads(raw) if raw.strip() else {}
            verdict = Verdict(str(body.get("verdict", "unknown")).lower())
        except (ValueError, AttributeError) as e:
            raise OracleUnavailableError("unreadable oracle answer: %r" % raw[:80]) from e
        return OracleAnswer(verdict=verdict, timed_out=bool(body.get("timeout")),
                            note=str(body.get("note", "")))


def build_oracle(settings: AuditSettings) -> FreshnessOracle:
    if settings.oracle_url:
        return HttpOracle(settings.oracle_url, settings.oracle_timeout_s)
    return OfflineOracle()


def call_with_timeout(fn: Callable[[], OracleAnswer], timeout_s: float) -> OracleAnswer:
    """Run an oracle call on a daemon thread; a hung call cannot block the run."""
    outcome: Dict[str, Any] = {}

    def _target() -> None:
        try:
            outcome["answer"] = fn()
        except Exception as e:  # oracle boundary: any failure degrades to unknown
            outcome["error"] = e

    worker = threading.Thread(target=_target, name="improve-oracle", daemon=True)
    worker.start()
    worker.join(max(0.0, timeout_s))
    if worker.is_alive():
        raise OracleTimeoutError("no answer within %.1fs" % timeout_s)
    error = outcome.get("error")
    if isinstance(error, OracleError):
        raise error
    if error is not None:
        raise OracleUnavailableError("oracle failed: %s" % error) from error
    return outcome["answer"]


def assess_freshness(
    doc: DocumentFile,
    oracle: FreshnessOracle,
    timeout_s: float = DEFAULT_ORACLE_TIMEOUT_S,
    retries: int = DEFAULT_ORACLE_RETRIES,
    deadline: Optional[float] = None,
) -> FreshnessResult:
    """Ask the oracle about one pattern; failures give an unknown verdict."""
    name = display_name(doc)

    def _result(verdict: Verdict, note: str = "") -> FreshnessResult:
        return FreshnessResult(doc.rel_path, name, doc.category, verdict, note)

    retries = max(0, min(retries, MAX_ORACLE_RETRIES))
    attempts = 0
    while True:
        budget = timeout_s
        if deadline is not None:
            budget = min(budget, deadline - time.monotonic())
            if budget <= 0:
                return _result(Verdict.UNKNOWN, "freshness budget exhausted")
        try:
            answer = call_with_timeout(
                partial(oracle.query, name, doc.category), budget)
            if answer.timed_out:
                raise OracleTimeoutError("oracle reported a timeout")
            return _result(answer.verdict, answer.note)
        except OracleError as e:
            attempts += 1
            if attempts > retries:
                logger.warning("Freshness unknown for %s: %s", doc.rel_path, e)
                return _result(Verdict.UNKNOWN, str(e))
            logger.debug("Retrying oracle for %s after: %s", doc.rel_path, e)


# =============================================================================
# Check Interface
# =============================================================================

@dataclass
class PhaseResult:
    phase: Phase
    issues: List[Issue] = field(default_factory=list)
    missing: List[MissingPattern] = field(default_factory=list)
    freshness: List[FreshnessResult] = field(default_factory=list)
    coverage: List[CatalogEntry] = field(default_factory=list)
    completed: bool = True


PhaseTask = Callable[[threading.Event], PhaseResult]


class Check(ABC):
    phase: Phase

    @abstractmethod
    def display_name(self) -> str:
        ...

    @abstractmethod
    def run(self, index: DocumentIndex, cancel: threading.Event) -> PhaseResult:
        ...

    def tasks(self, index: DocumentIndex) -> List[PhaseTask]:
        """Units of work for the dispatcher; one per phase by default."""
        return [partial(self.run, index)]


class StructureCheck(Check):
    """Required sections of pattern files and category indexes."""

    phase = Phase.STRUCTURE

    def display_name(self) -> str:
        return "Structure"

    def run(self, index: DocumentIndex, cancel: threading.Event) -> PhaseResult:
        result = PhaseResult(self.phase)
        for category in index.missing_indexes:
            result.issues.append(missing_index_issue(category))
        for doc in index.validated():
            if cancel.is_set():
                result.completed = False
                break
            result.issues.extend(validate_structure(doc))
        return result


class ConsistencyCheck(Check):
    """Tables, section names, links and related-pattern references."""

    phase = Phase.CONSISTENCY

    def __init__(self, catalog: Sequence[CatalogEntry]):
        self.catalog = catalog

    def display_name(self) -> str:
        return "Consistency"

    def run(self, index: DocumentIndex, cancel: threading.Event) -> PhaseResult:
        return PhaseResult(self.phase, issues=check_consistency(index, self.catalog))


class CompletenessCheck(Check):
    """Coverage of the reference catalogs."""

    phase = Phase.COMPLETENESS

    def __init__(self, catalog: Sequence[CatalogEntry]):
        self.catalog = catalog

    def display_name(self) -> str:
        return "Completeness"

    def run(self, index: DocumentIndex, cancel: threading.Event) -> PhaseResult:
        missing, compared = compare_catalogs(index, self.catalog)
        return PhaseResult(self.phase, missing=missing, coverage=compared)


class FreshnessCheck(Check):
    """Oracle verdicts for fast-moving categories, one task per category."""

    phase = Phase.FRESHNESS

    def __init__(self, oracle: FreshnessOracle, settings: AuditSettings):
        self.oracle = oracle
        self.settings = settings

    def display_name(self) -> str:
        return "Freshness"

    def eligible_categories(self, index: DocumentIndex) -> List[str]:
        evolving = (EVOLUTION_HIGH, EVOLUTION_MEDIUM)
        return [c for c in index.categories
                if self.settings.evolution.get(c) in evolving and index.patterns_in(c)]

    def run_category(self, index: DocumentIndex, category: str,
                     deadline: float, cancel: threading.Event) -> PhaseResult:
        result = PhaseResult(self.phase)
        for doc in index.patterns_in(category):
            if cancel.is_set():
                result.completed = False
                break
            result.freshness.append(assess_freshness(
                doc, self.oracle,
                timeout_s=self.settings.oracle_timeout_s,
                retries=self.settings.oracle_retries,
                deadline=deadline,
            ))
        return result

    def tasks(self, index: DocumentIndex) -> List[PhaseTask]:
        deadline = time.monotonic() + self.settings.oracle_budget_s
        return [partial(self.run_category, index, c, deadline)
                for c in self.eligible_categories(index)]

    def run(self, index: DocumentIndex, cancel: threading.Event) -> PhaseResult:
        result = PhaseResult(self.phase)
        for task in self.tasks(index):
            partial_result = task(cancel)
            result.freshness.extend(partial_result.freshness)
            result.completed = result.completed and partial_result.completed
        return result


# =============================================================================
# Phase Plan & Dispatch
# =============================================================================

PHASE_PLANS: Dict[Scope, Tuple[Phase, ...]] = {
    Scope.ALL: (Phase.STRUCTURE, Phase.CONSISTENCY, Phase.COMPLETENESS,
                Phase.FRESHNESS),
    Scope.STRUCTURE_ONLY: (Phase.STRUCTURE,),
    Scope.FRESHNESS_ONLY: (Phase.FRESHNESS,),
    Scope.MISSING_ONLY: (Phase.COMPLETENESS,),
}


def plan_phases(scope: Scope) -> Tuple[Phase, ...]:
    """Phases enabled for a scope, in merge order."""
    return PHASE_PLANS[scope]


def build_checks(
    phases: Sequence[Phase],
    settings: AuditSettings,
    oracle: Optional[FreshnessOracle] = None,
) -> List[Check]:
    catalog = load_catalog()
    checks: List[Check] = []
    for phase in phases:
        if phase is Phase.STRUCTURE:
            checks.append(StructureCheck())
        elif phase is Phase.CONSISTENCY:
            checks.append(ConsistencyCheck(catalog))
        elif phase is Phase.COMPLETENESS:
            checks.append(CompletenessCheck(catalog))
        elif phase is Phase.FRESHNESS:
            checks.append(FreshnessCheck(oracle or build_oracle(settings), settings))
    return checks


def dispatch_checks(
    index: DocumentIndex,
    checks: Sequence[Check],
    max_workers: int = DEFAULT_MAX_WORKERS,
    run_timeout_s: Optional[float] = DEFAULT_RUN_TIMEOUT_S,
) -> Tuple[List[PhaseResult], bool]:
    """Run every check task concurrently and join them.

    Returns the results of finished tasks in submission order, and whether
    the run timeout cut some of them short.
    """
    cancel = threading.Event()
    submitted = []
    pool = ThreadPoolExecutor(max_workers=max(1, max_workers),
                              thread_name_prefix="improve-phase")
    try:
        for check in checks:
            for task in check.tasks(index):
                submitted.append(pool.submit(task, cancel))
        done, pending = wait(submitted, timeout=run_timeout_s)
        if pending:
            cancel.set()
            logger.warning("Run timeout after %.1fs: %d task(s) cancelled",
                           run_timeout_s or 0.0, len(pending))
    finally:
        pool.shutdown(wait=False, cancel_futures=True)

    results = [f.result() for f in submitted if f in done]
    incomplete = bool(pending) or any(not r.completed for r in results)
    return results, incomplete


# =============================================================================
# Scoring
# =============================================================================

ISSUE_PENALTIES = {SEVERITY_HIGH: 3.0, SEVERITY_MEDIUM: 1.0, SEVERITY_LOW: 0.5}
MISSING_PENALTIES = {PRIORITY_HIGH: 2.0, PRIORITY_MEDIUM: 0.5}


def calculate_score(issues: Sequence[Issue], missing: Sequence[MissingPattern]) -> float:
    score = 100.0
    score -= sum(ISSUE_PENALTIES.get(i.severity, 0.0) for i in issues)
    score -= sum(MISSING_PENALTIES.get(m.priority, 0.0) for m in missing)
    return min(100.0, max(0.0, score))


def grade_for(score: float) -> str:
    if score >= 100.0:
        return "A+"
    elif score >= 90.0:
        return "A"
    elif score >= 70.0:
        return "B"
    elif score >= 50.0:
        return "C"
    else:
        return "F"


def aggregate(
    issues: Sequence[Issue],
    missing_patterns: Sequence[MissingPattern],
    freshness: Sequence[FreshnessResult],
    scanned_count: int,
    root: str = "",
    incomplete: bool = False,
    phases: Sequence[Phase] = (),
    coverage: Sequence[CatalogEntry] = (),
) -> AuditReport:
    """Merge the issue streams into one graded report."""
    by_kind: Dict[str, int] = {}
    for issue in issues:
        by_kind[issue.kind] = by_kind.get(issue.kind, 0) + 1

    catalog_coverage: Dict[str, Tuple[int, int]] = {}
    for entry in coverage:
        done, total = catalog_coverage.get(entry.source_catalog, (0, 0))
        catalog_coverage[entry.source_catalog] = (
            done + (1 if entry.documented else 0), total + 1)

    score = calculate_score(issues, missing_patterns)
    return AuditReport(
        root=root,
        scanned_count=scanned_count,
        issues=tuple(issues),
        issues_by_kind=by_kind,
        missing_patterns=tuple(missing_patterns),
        outdated_patterns=tuple(f for f in freshness if f.verdict is Verdict.OUTDATED),
        freshness=tuple(freshness),
        catalog_coverage=catalog_coverage,
        score=score,
        grade=grade_for(score),
        incomplete=incomplete,
        phases=tuple(phases),
    )


def run_audit(
    root: Path,
    config: Optional[RunConfig] = None,
    settings: Optional[AuditSettings] = None,
    oracle: Optional[FreshnessOracle] = None,
) -> AuditReport:
    """Scan, run the planned phases in parallel and aggregate (API for tests and integrations)."""
    config = config or RunConfig()
    settings = settings or AuditSettings()

    index = build_index(Path(root), config.category_filter)
    phases = plan_phases(config.scope)
    checks = build_checks(phases, settings, oracle)
    results, incomplete = dispatch_checks(
        index, checks, settings.max_workers, settings.run_timeout_s)

    issues: List[Issue] = []
    missing: List[MissingPattern] = []
    freshness: List[FreshnessResult] = []
    coverage: List[CatalogEntry] = []
    for phase in phases:
        for result in results:
            if result.phase is not phase:
                continue
            issues.extend(result.issues)
            missing.extend(result.missing)
            freshness.extend(result.freshness)
            coverage.extend(result.coverage)

    return aggregate(
        issues, missing, freshness,
        scanned_count=len(index.validated()),
        root=str(index.root),
        incomplete=incomplete,
        phases=phases,
        coverage=coverage,
    )


# =============================================================================
# Fixes
# =============================================================================

FIXABLE_SECTIONS = ("when_to_use", "related_patterns", "sources",
                    "patterns_table", "decision_table", "category_index")

TEMPLATE_FOR_KIND = {
    KIND_PATTERN: "TEMPLATE-PATTERN.md",
    KIND_CATEGORY_INDEX: "TEMPLATE-README.md",
}

_SECTION_HEADINGS: Dict[str, Pattern] = {
    "when_to_use": _WHEN_RE,
    "related_patterns": _RELATED_RE,
    "sources": _SOURCES_RE,
    "patterns_table": _PATTERNS_HEADING_RE,
    "decision_table": re.compile(r".*(?:%s)" % _DECISION_CONTEXT_RE.pattern,
                                 re.IGNORECASE),
}

DEFAULT_SNIPPETS = {
    "when_to_use": "## Quand utiliser\n\n- À compléter\n",
    "related_patterns": "## Patterns liés\n\n| Pattern | Relation |\n|---------|----------|\n",
    "sources": "## Sources\n\n- À compléter\n",
    "patterns_table": "## Patterns\n\n| Pattern | Description |\n|---------|-------------|\n",
    "decision_table": "## Tableau de décision\n\n| Besoin | Pattern |\n|--------|---------|\n",
}


@dataclass(frozen=True)
class FixAction:
    path: str     # relative to the docs root
    section: str
    snippet: str
    create: bool = False
    expected_digest: Optional[str] = None
    issue: Optional[Issue] = None


@dataclass
class FixOutcome:
    fixed: List[FixAction] = field(default_factory=list)
    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    remaining: List[Issue] = field(default_factory=list)
    conflicts: List[str] = field(default_factory=list)
    issues_after: Optional[int] = None


def _digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _file_digest(path: Path) -> Optional[str]:
    try:
        return _digest(path.read_bytes())
    except OSError:
        return None


def atomic_write_text(path: Path, content: str) -> None:
    """Write through a temp file in the same directory, then rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=".%s.tmp." % path.name, dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(str(tmp_path), str(path))
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def section_snippet(section: str, kind: str, templates: Dict[str, str]) -> str:
    """Section text from the root template, or the built-in stub."""
    rule = rule_for(kind, section)
    template = templates.get(TEMPLATE_FOR_KIND.get(kind, ""))
    heading_re = _SECTION_HEADINGS.get(section)
    if template and heading_re is not None and rule is not None:
        block = section_block(template, heading_re)
        if block and rule.present(parse_markdown(block)):
            return block
    return DEFAULT_SNIPPETS[section]


def append_section(content: str, snippet: str) -> str:
    """Append a section after the existing text, leaving it untouched."""
    if content and not content.endswith("\n"):
        content += "\n"
    if content:
        content += "\n"
    return content + snippet.rstrip("\n") + "\n"


def category_index_content(category: str, templates: Dict[str, str]) -> str:
    """README.md for a category, from TEMPLATE-README.md when available."""
    title = "# %s" % category.replace("-", " ").replace("_", " ").title()
    template = templates.get(TEMPLATE_FOR_KIND[KIND_CATEGORY_INDEX])
    if template:
        lines = template.splitlines()
        for i, line in enumerate(lines):
            if line.startswith("# "):
                lines[i] = title
                break
        else:
            lines.insert(0, title)
        content = "\n".join(lines) + "\n"
    else:
        content = "%s\n\n> Patterns de la catégorie %s.\n" % (title, category)
    outline = parse_markdown(content)
    for rule in INDEX_RULES:
        if rule.key in DEFAULT_SNIPPETS and not rule.present(outline):
            content = append_section(content, DEFAULT_SNIPPETS[rule.key])
            outline = parse_markdown(content)
    return content


def plan_fixes(report: AuditReport) -> List[FixAction]:
    """Deterministic edits for the missing sections that have a snippet."""
    root = Path(report.root)
    templates = load_templates(root)
    digests: Dict[str, Optional[str]] = {}
    actions = []
    for issue in report.issues:
        if issue.kind != ISSUE_MISSING_SECTION or issue.section not in FIXABLE_SECTIONS:
            continue
        path = root / issue.file
        if issue.section == "category_index":
            if path.exists():
                continue
            category = Path(issue.file).parts[0]
            actions.append(FixAction(
                path=issue.file, section=issue.section,
                snippet=category_index_content(category, templates),
                create=True, issue=issue,
            ))
            continue
        if issue.file not in digests:
            digests[issue.file] = _file_digest(path)
        if digests[issue.file] is None:
            continue
        actions.append(FixAction(
            path=issue.file, section=issue.section,
            snippet=section_snippet(issue.section, classify_file(path.name), templates),
            expected_digest=digests[issue.file], issue=issue,
        ))
    return actions


class FixApplier:
    """Applies fix actions; writes to one path are serialized."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, rel_path: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(rel_path, threading.Lock())

    def apply(self, actions: Sequence[FixAction]) -> FixOutcome:
        outcome = FixOutcome()
        by_path: Dict[str, List[FixAction]] = {}
        for action in actions:
            by_path.setdefault(action.path, []).append(action)

        for rel_path, file_actions in by_path.items():
            with self._lock_for(rel_path):
                try:
                    self._apply_file(rel_path, file_actions, outcome)
                except (WriteConflictError, OSError) as e:
                    logger.warning("Skipping %s: %s", rel_path, e)
                    outcome.conflicts.append(rel_path)
                    outcome.remaining.extend(a.issue for a in file_actions if a.issue)
        return outcome

    def _apply_file(self, rel_path: str, actions: List[FixAction],
                    outcome: FixOutcome) -> None:
        path = self.root / rel_path
        creates = [a for a in actions if a.create]
        if creates:
            if path.exists():
                return
            atomic_write_text(path, creates[0].snippet)
            outcome.created.append(rel_path)
            outcome.fixed.extend(creates)
            logger.info("Created %s", rel_path)
            return

        try:
            raw = path.read_bytes()
        except OSError as e:
            raise WriteConflictError("cannot read file: %s" % e) from e
        try:
            current = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise WriteConflictError("not valid UTF-8, left as is") from e

        kind = classify_file(path.name)
        content = current
        applied = []
        for action in actions:
            rule = rule_for(kind, action.section)
            if rule is not None and rule.present(parse_markdown(content)):
                continue
            content = append_section(content, action.snippet)
            applied.append(action)
        if not applied:
            return

        digest = _digest(raw)
        expected = actions[0].expected_digest
        if expected is not None and digest != expected:
            raise WriteConflictError("modified since the audit")
        if _file_digest(path) != digest:
            raise WriteConflictError("modified while fixing")
        atomic_write_text(path, content)
        outcome.updated.append(rel_path)
        outcome.fixed.extend(applied)
        logger.info("Updated %s (+%s)", rel_path,
                    ", ".join(a.section for a in applied))


def fix_report(
    report: AuditReport,
    settings: Optional[AuditSettings] = None,
    category_filter: Optional[str] = None,
) -> FixOutcome:
    """Plan and apply fixes, then re-validate the structure of the tree."""
    actions = plan_fixes(report)
    outcome = FixApplier(Path(report.root)).apply(actions)
    planned = set(a.issue for a in actions if a.issue)
    conflicted = list(outcome.remaining)
    outcome.remaining = [i for i in report.issues if i not in planned] + conflicted

    after = run_audit(
        Path(report.root),
        RunConfig(scope=Scope.STRUCTURE_ONLY, category_filter=category_filter),
        settings,
    )
    outcome.issues_after = len(after.issues)
    return outcome


# =============================================================================
# CLI Output Formatting
# =============================================================================

BOX_TL = "\u256d"  # ╭
BOX_TR = "\u256e"  # ╮
BOX_BL = "\u2570"  # ╰
BOX_BR = "\u256f"  # ╯
BOX_H = "\u2500"   # ─
BOX_V = "\u2502"   # │
BAR_FULL = "\u2588"   # █
BAR_EMPTY = "\u2591"  # ░

SECTION_WIDTH = 56


def _score_bar(score: float, width: int = 20) -> str:
    """Render a 0-100 score as a visual bar."""
    ratio = score / 100.0
    filled = int(ratio * width)
    empty = width - filled

    if ratio >= 0.9:
        color = Style.GREEN
    elif ratio >= 0.7:
        color = Style.YELLOW
    else:
        color = Style.RED

    return color + BAR_FULL * filled + Style.DIM + BAR_EMPTY * empty + Style.RESET


def _severity_icon(severity: str) -> str:
    if severity == SEVERITY_HIGH:
        return Style.RED + Style.BOLD + "HIGH" + Style.RESET
    elif severity == SEVERITY_MEDIUM:
        return Style.YELLOW + "MED " + Style.RESET
    else:
        return Style.CYAN + "low " + Style.RESET


def _grade_style(grade: str) -> str:
    colors = {"A+": Style.GREEN, "A": Style.GREEN, "B": Style.YELLOW,
              "C": Style.YELLOW, "F": Style.RED}
    return colors.get(grade, "") + Style.BOLD + grade + Style.RESET


def _section_rule(title: str) -> str:
    return (Style.DIM + "  " + BOX_H * 3 + " " + title + " "
            + BOX_H * (SECTION_WIDTH - len(title) - 2) + Style.RESET)


def _severity_counts(issues: Sequence[Issue]) -> Dict[str, int]:
    counts = {SEVERITY_HIGH: 0, SEVERITY_MEDIUM: 0, SEVERITY_LOW: 0}
    for issue in issues:
        counts[issue.severity] = counts.get(issue.severity, 0) + 1
    return counts


def format_report(report: AuditReport, outcome: Optional[FixOutcome] = None) -> str:
    """Console summary: score, counts, issues, missing patterns, freshness."""
    s = Style
    out = []
    w = SECTION_WIDTH

    # ── Header ──────────────────────────────────────────────
    out.append("")
    out.append(s.DIM + "  " + BOX_TL + BOX_H * w + BOX_TR + s.RESET)
    out.append(s.DIM + "  " + BOX_V + s.RESET
               + s.BOLD + "  Pattern Knowledge Base Audit"
               + " " * (w - 30) + s.RESET
               + s.DIM + BOX_V + s.RESET)
    out.append(s.DIM + "  " + BOX_BL + BOX_H * w + BOX_BR + s.RESET)
    out.append("")

    # ── Score Overview ──────────────────────────────────────
    out.append("  " + s.BOLD + "Score" + s.RESET
               + "   " + _score_bar(report.score, 24)
               + "  " + s.BOLD + "%.1f" % report.score + s.RESET
               + "/100  " + _grade_style(report.grade))
    out.append("")
    out.append("  " + s.DIM + "Files " + s.RESET
               + "  %d documents scanned" % report.scanned_count)

    counts = _severity_counts(report.issues)
    if report.issues:
        parts = []
        if counts[SEVERITY_HIGH]:
            parts.append(s.RED + "%d high" % counts[SEVERITY_HIGH] + s.RESET)
        if counts[SEVERITY_MEDIUM]:
            parts.append(s.YELLOW + "%d medium" % counts[SEVERITY_MEDIUM] + s.RESET)
        if counts[SEVERITY_LOW]:
            parts.append(s.CYAN + "%d low" % counts[SEVERITY_LOW] + s.RESET)
        out.append("  " + s.DIM + "Issues" + s.RESET + "  " + ", ".join(parts))
    out.append("  " + s.DIM + "Phases" + s.RESET + "  "
               + ", ".join(p.value for p in report.phases))
    if report.incomplete:
        out.append("  " + s.YELLOW + "Incomplete: run timeout reached" + s.RESET)
    out.append("")

    # ── Issues ──────────────────────────────────────────────
    if report.issues:
        out.append(_section_rule("Issues"))
        out.append("")
        by_kind = ", ".join("%s %d" % (k, n) for k, n in sorted(report.issues_by_kind.items()))
        out.append("    " + s.DIM + by_kind + s.RESET)
        out.append("")
        ordered = sorted(report.issues, key=lambda i: SEVERITY_ORDER.get(i.severity, 9))
        for issue in ordered:
            out.append("    %s  %s" % (_severity_icon(issue.severity), issue.detail))
            out.append("    " + s.DIM + "      " + issue.file + s.RESET)
        out.append("")

    # ── Missing Patterns ────────────────────────────────────
    if report.missing_patterns:
        out.append(_section_rule("Missing Patterns"))
        out.append("")
        ordered_missing = sorted(report.missing_patterns,
                                 key=lambda m: SEVERITY_ORDER.get(m.priority, 9))
        for m in ordered_missing:
            out.append("    %s  %s %s(%s, %s)%s"
                       % (_severity_icon(m.priority), m.name, s.DIM,
                          m.category, m.source_catalog, s.RESET))
        out.append("")

    # ── Freshness ───────────────────────────────────────────
    if report.freshness:
        out.append(_section_rule("Freshness"))
        out.append("")
        unknown = sum(1 for f in report.freshness if f.verdict is Verdict.UNKNOWN)
        current = sum(1 for f in report.freshness if f.verdict is Verdict.CURRENT)
        out.append("    %d current, %d outdated, %d unknown"
                   % (current, len(report.outdated_patterns), unknown))
        for f in report.outdated_patterns:
            out.append("    " + s.YELLOW + "OUTDATED" + s.RESET + "  %s" % f.name)
            out.append("    " + s.DIM + "          " + f.file
                       + ((" -> " + f.note) if f.note else "") + s.RESET)
        out.append("")

    # ── Fixes ───────────────────────────────────────────────
    if outcome is not None:
        out.append(_section_rule("Fixes"))
        out.append("")
        for rel_path in outcome.created:
            out.append("    " + s.GREEN + "created" + s.RESET + "  " + rel_path)
        for rel_path in outcome.updated:
            sections = [a.section for a in outcome.fixed if a.path == rel_path]
            out.append("    " + s.GREEN + "updated" + s.RESET + "  %s (+ %s)"
                       % (rel_path, ", ".join(sections)))
        for rel_path in outcome.conflicts:
            out.append("    " + s.RED + "skipped" + s.RESET
                       + "  %s (left unchanged, see log)" % rel_path)
        if not (outcome.created or outcome.updated or outcome.conflicts):
            out.append("    nothing to fix automatically")
        out.append("    %d issue(s) left for manual review" % len(outcome.remaining))
        if outcome.issues_after is not None:
            out.append("    %d structure issue(s) after re-validation"
                       % outcome.issues_after)
        out.append("")

    # ── Footer ──────────────────────────────────────────────
    out.append(s.DIM + "  " + BOX_H * (w + 2) + s.RESET)
    if report.catalog_coverage:
        coverage = ", ".join(
            "%s %d/%d" % (name, done, total)
            for name, (done, total) in report.catalog_coverage.items())
        out.append(s.DIM + "  Catalogs: " + coverage + s.RESET)
    out.append("")
    return "\n".join(out)


def _md_cell(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", " ")


def format_markdown(report: AuditReport) -> str:
    """Full markdown report with the same structure as the console output."""
    counts = _severity_counts(report.issues)
    generated = datetime.now(tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    out = [
        "# Pattern Knowledge Base Audit",
        "",
        "> Generated %s for `%s` (catalogs v%s)" % (generated, report.root, CATALOG_VERSION),
        "",
        "## Summary",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        "| Files scanned | %d |" % report.scanned_count,
        "| Score | %.1f/100 |" % report.score,
        "| Grade | %s |" % report.grade,
        "| Issues | %d (%d high, %d medium, %d low) |" % (
            len(report.issues), counts[SEVERITY_HIGH],
            counts[SEVERITY_MEDIUM], counts[SEVERITY_LOW]),
        "| Missing patterns | %d |" % len(report.missing_patterns),
        "| Outdated patterns | %d |" % len(report.outdated_patterns),
        "| Phases | %s |" % ", ".join(p.value for p in report.phases),
        "| Incomplete | %s |" % ("yes" if report.incomplete else "no"),
        "",
    ]

    out += ["## Issues", ""]
    if report.issues:
        out += ["| Severity | Kind | File | Detail |",
                "|----------|------|------|--------|"]
        for issue in report.issues:
            out.append("| %s | %s | %s | %s |" % (
                issue.severity, issue.kind, _md_cell(issue.file), _md_cell(issue.detail)))
    else:
        out.append("No issues.")
    out.append("")

    out += ["## Missing Patterns", ""]
    if report.missing_patterns:
        out += ["| Priority | Pattern | Category | Catalog |",
                "|----------|---------|----------|---------|"]
        for m in report.missing_patterns:
            out.append("| %s | %s | %s | %s |" % (
                m.priority, _md_cell(m.name), m.category, m.source_catalog))
    else:
        out.append("No missing patterns.")
    out.append("")

    out += ["## Freshness", ""]
    if report.freshness:
        out += ["| Verdict | Pattern | Category | Note |",
                "|---------|---------|----------|------|"]
        for f in report.freshness:
            out.append("| %s | %s | %s | %s |" % (
                f.verdict.value, _md_cell(f.name), f.category, _md_cell(f.note)))
    else:
        out.append("Not assessed.")
    out.append("")

    if report.catalog_coverage:
        out += ["## Catalog Coverage", "",
                "| Catalog | Documented | Total |",
                "|---------|------------|-------|"]
        for name, (done, total) in report.catalog_coverage.items():
            out.append("| %s | %d | %d |" % (name, done, total))
        out.append("")

    return "\n".join(out)


def format_json(report: AuditReport, outcome: Optional[FixOutcome] = None) -> str:
    """Output the report in JSON format."""

    def issue_to_dict(i: Issue) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "file": i.file,
            "kind": i.kind,
            "severity": i.severity,
            "detail": i.detail,
        }
        if i.section is not None:
            d["section"] = i.section
        return d

    output: Dict[str, Any] = {
        "overall": {
            "score": round(report.score, 1),
            "grade": report.grade,
            "incomplete": report.incomplete,
        },
        "scanned_count": report.scanned_count,
        "phases": [p.value for p in report.phases],
        "issues_by_kind": report.issues_by_kind,
        "issues": [issue_to_dict(i) for i in report.issues],
        "missing_patterns": [
            {"name": m.name, "category": m.category, "priority": m.priority,
             "source_catalog": m.source_catalog}
            for m in report.missing_patterns
        ],
        "freshness": [
            {"file": f.file, "name": f.name, "category": f.category,
             "verdict": f.verdict.value, "note": f.note}
            for f in report.freshness
        ],
        "catalog_coverage": {
            name: {"documented": done, "total": total}
            for name, (done, total) in report.catalog_coverage.items()
        },
    }
    if outcome is not None:
        output["fixes"] = {
            "created": outcome.created,
            "updated": outcome.updated,
            "conflicts": outcome.conflicts,
            "fixed": [{"path": a.path, "section": a.section} for a in outcome.fixed],
            "remaining": [issue_to_dict(i) for i in outcome.remaining],
            "issues_after": outcome.issues_after,
        }
    return json.dumps(output, ensure_ascii=False, indent=2)


def render_report(
    report: AuditReport,
    mode: Mode,
    outcome: Optional[FixOutcome] = None,
    report_path: Optional[Path] = None,
) -> str:
    """Text for the console; report mode also writes the markdown file."""
    text = format_report(report, outcome if mode is Mode.FIX else None)
    if mode is Mode.REPORT:
        path = write_markdown_report(report, report_path)
        text += "  Report written to %s\n" % path
    return text


def write_markdown_report(report: AuditReport, report_path: Optional[Path] = None) -> Path:
    path = Path(report_path or DEFAULT_REPORT_PATH)
    try:
        atomic_write_text(path, format_markdown(report))
    except OSError as e:
        raise ReportWriteError("cannot write report %s: %s" % (path, e)) from e
    return path


# =============================================================================
# Main
# =============================================================================

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="improve",
        description="Audit and improve the design-pattern knowledge base",
    )
    modes = parser.add_mutually_exclusive_group()
    modes.add_argument(
        "--check", dest="mode", action="store_const", const=Mode.CHECK,
        help="Audit and print a summary (default)",
    )
    modes.add_argument(
        "--fix", dest="mode", action="store_const", const=Mode.FIX,
        help="Add missing sections from the templates, then re-validate",
    )
    modes.add_argument(
        "--report", dest="mode", action="store_const", const=Mode.REPORT,
        help="Write a full markdown report",
    )
    scopes = parser.add_mutually_exclusive_group()
    scopes.add_argument(
        "--structure", dest="scope", action="store_const", const=Scope.STRUCTURE_ONLY,
        help="Only check required sections",
    )
    scopes.add_argument(
        "--freshness", dest="scope", action="store_const", const=Scope.FRESHNESS_ONLY,
        help="Only assess freshness",
    )
    scopes.add_argument(
        "--missing", dest="scope", action="store_const", const=Scope.MISSING_ONLY,
        help="Only compare against the reference catalogs",
    )
    parser.add_argument(
        "--category", type=str, default=None,
        help="Restrict the audit to one category directory",
    )
    parser.add_argument(
        "--root", type=str, default=None,
        help="Docs root (default: %s)" % DEFAULT_DOCS_ROOT,
    )
    parser.add_argument(
        "--config", type=str, default=None,
        help="Settings file (default: <root>/%s if present)" % SETTINGS_FILE,
    )
    parser.add_argument(
        "--output", type=str, default=None,
        help="Markdown report path for --report (default: %s)" % DEFAULT_REPORT_PATH,
    )
    parser.add_argument(
        "--oracle-url", type=str, default=None,
        help="Freshness oracle endpoint",
    )
    parser.add_argument(
        "--timeout", type=float, default=None,
        help="Global run timeout in seconds (default: %d)" % DEFAULT_RUN_TIMEOUT_S,
    )
    parser.add_argument(
        "--json", action="store_true",
        help="Output in JSON format",
    )
    parser.add_argument(
        "--no-color", action="store_true",
        help="Disable colored output",
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0,
        help="Log progress to stderr (-vv for debug)",
    )
    parser.set_defaults(mode=Mode.CHECK, scope=Scope.ALL)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)

    if args.no_color or not sys.stdout.isatty() or args.json:
        Style.disable()

    root = Path(args.root).expanduser() if args.root else DEFAULT_DOCS_ROOT
    config = RunConfig(mode=args.mode, scope=args.scope, category_filter=args.category)

    try:
        settings = load_settings(root, Path(args.config) if args.config else None)
        if args.oracle_url:
            settings = replace(settings, oracle_url=args.oracle_url)
        if args.timeout is not None:
            settings = replace(settings, run_timeout_s=args.timeout)

        report = run_audit(root, config, settings)
        outcome = None
        if config.mode is Mode.FIX:
            outcome = fix_report(report, settings, config.category_filter)

        report_path = Path(args.output or settings.report_path)
        if args.json:
            if config.mode is Mode.REPORT:
                write_markdown_report(report, report_path)
            print(format_json(report, outcome))
        else:
            print(render_report(report, config.mode, outcome, report_path))
    except ImproveError as e:
        print("improve: %s: %s" % (type(e).__name__, e), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
