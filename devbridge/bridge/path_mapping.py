"""Original-source to instrumented-source path table.

The build step writes ``build-metadata/source-mappings.json`` listing, for every
instrumented file, where the user's original source lives. The debugger only
knows the instrumented paths, the browser only knows the original ones.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Tuple

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class SourceMapping(BaseModel):
    original: str
    instrumented: str
    debugCopy: str = ""
    debugDir: str = ""


class SourceMappings(BaseModel):
    workDir: str = ""
    mappings: List[SourceMapping] = Field(default_factory=list)


@dataclass(frozen=True)
class PathMapping:
    original: str
    instrumented: str


@dataclass
class PathTranslationTable:
    work_dir: str = ""
    mappings: List[PathMapping] = field(default_factory=list)
    to_instrumented: Dict[str, str] = field(init=False, default_factory=dict)
    to_original: Dict[str, str] = field(init=False, default_factory=dict)

    def __post_init__(self):
        for m in self.mappings:
            if m.original in self.to_instrumented and self.to_instrumented[m.original] != m.instrumented:
                logger.warning("[mappings] duplicate original %s, keeping %s", m.original, m.instrumented)
            self.to_instrumented[m.original] = m.instrumented
            self.to_original[m.instrumented] = m.original

    @classmethod
    def from_pairs(cls, pairs: Dict[str, str], work_dir: str = "") -> "PathTranslationTable":
        return cls(work_dir=work_dir, mappings=[PathMapping(o, i) for o, i in pairs.items()])

    def __len__(self) -> int:
        return len(self.to_instrumented)

    def substitute_dirs(self) -> List[Tuple[str, str]]:
        """Directory-level (from, to) rules for the debugger, first-seen order, no duplicates."""
        seen = set()
        rules: List[Tuple[str, str]] = []
        for m in self.mappings:
            rule = (os.path.dirname(m.original), os.path.dirname(m.instrumented))
            if rule not in seen:
                seen.add(rule)
                rules.append(rule)
        return rules


def load_table(artifact_path: Path | str) -> PathTranslationTable:
    """Load the mapping artifact; a missing or unreadable artifact yields an empty table."""
    path = Path(artifact_path)
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.info("[mappings] no mapping artifact at %s, paths pass through untranslated", path)
        return PathTranslationTable()
    except OSError as e:
        logger.warning("[mappings] failed to read %s: %s", path, e)
        return PathTranslationTable()

    try:
        doc = SourceMappings.model_validate_json(raw)
    except ValidationError as e:
        logger.warning("[mappings] ignoring malformed %s: %s", path, e.errors()[:1])
        return PathTranslationTable()

    table = PathTranslationTable(
        work_dir=doc.workDir,
        mappings=[PathMapping(m.original, m.instrumented) for m in doc.mappings],
    )
    for m in table.mappings:
        logger.debug("[mappings] %s -> %s", m.original, m.instrumented)
    logger.info("[mappings] loaded %d source mappings from %s", len(table), path)
    return table
