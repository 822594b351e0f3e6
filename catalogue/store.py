# file: catalogue/store.py
"""
Catalogue + user configuration stores.

CatalogueStore
--------------
Loads FailureCatalogue.json once and merges it with the user's config entries
into ResolvedFailure records. Recomputation is driven from outside via
`refresh(entries)` after the config is saved; the store never re-merges on its own.

FailureConfigStore
------------------
Reads/writes FailureConfig.json. A missing file means "nothing configured yet";
a corrupt file is logged and treated the same way so a bad hand edit never
blocks startup. The catalogue, by contrast, is required: a missing or malformed
catalogue raises CatalogueLoadError.

File shapes
-----------
FailureCatalogue.json: {"failures": [{"id", "name", "description", "category",
                                      "suggestedTier", "actions": [{"dataref", "value"}]}]}
FailureConfig.json:    {"entries":  [{"id", "enabled", "tier"}]}
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import orjson
from pydantic import ValidationError

from catalogue.models import CatalogueEntry, ConfigEntry, ResolvedFailure, Tier

logger = logging.getLogger(__name__)


class CatalogueLoadError(Exception):
    """The shipped failure catalogue is missing or malformed."""


def _read_json(path: Path) -> object:
    return orjson.loads(path.read_bytes())


# =========================
# User configuration
# =========================

class FailureConfigStore:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._entries: List[ConfigEntry] = []

    @property
    def entries(self) -> List[ConfigEntry]:
        return list(self._entries)

    def load(self) -> List[ConfigEntry]:
        if not self.path.exists():
            self._entries = []
            return self.entries
        try:
            doc = _read_json(self.path)
            raw = doc.get("entries", []) if isinstance(doc, dict) else []
            self._entries = [ConfigEntry.model_validate(e) for e in raw]
        except (orjson.JSONDecodeError, ValidationError, OSError) as exc:
            logger.warning("Ignoring unreadable failure config %s: %s", self.path, exc)
            self._entries = []
        return self.entries

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        doc = {"entries": [e.model_dump(mode="json") for e in self._entries]}
        self.path.write_bytes(orjson.dumps(doc, option=orjson.OPT_INDENT_2))

    def get_entry(self, failure_id: str) -> Optional[ConfigEntry]:
        key = failure_id.lower()
        return next((e for e in self._entries if e.id.lower() == key), None)

    def set_entry(self, entry: ConfigEntry) -> None:
        """Insert or replace in memory; call save() when the batch is done."""
        key = entry.id.lower()
        for i, existing in enumerate(self._entries):
            if existing.id.lower() == key:
                self._entries[i] = entry
                return
        self._entries.append(entry)


# =========================
# Catalogue
# =========================

class CatalogueStore:
    """
    Read-mostly lookup over resolved failures.

    Public API:
        - all / triggerable / for_tier(tier) / find_by_id(id)
        - refresh(config_entries): re-merge after a config save
    """

    def __init__(self, catalogue: Sequence[CatalogueEntry], config: Iterable[ConfigEntry] = ()) -> None:
        self._catalogue: List[CatalogueEntry] = list(catalogue)
        self._resolved: List[ResolvedFailure] = []
        self.refresh(config)

    @classmethod
    def load(cls, catalogue_path: str | Path, config: Iterable[ConfigEntry] = ()) -> "CatalogueStore":
        path = Path(catalogue_path)
        if not path.exists():
            raise CatalogueLoadError(f"Failure catalogue not found at: {path}")
        try:
            doc = _read_json(path)
        except (orjson.JSONDecodeError, OSError) as exc:
            raise CatalogueLoadError(f"Failure catalogue at {path} is not valid JSON: {exc}") from exc
        if not isinstance(doc, dict) or not isinstance(doc.get("failures"), list):
            raise CatalogueLoadError(f"Failure catalogue at {path} has no 'failures' list")
        try:
            entries = [CatalogueEntry.model_validate(f) for f in doc["failures"]]
        except ValidationError as exc:
            raise CatalogueLoadError(f"Malformed failure in catalogue {path}: {exc}") from exc

        seen: set[str] = set()
        for e in entries:
            if e.id.lower() in seen:
                raise CatalogueLoadError(f"Duplicate failure id in catalogue: {e.id!r}")
            seen.add(e.id.lower())

        logger.info("Loaded %d catalogue failures from %s", len(entries), path)
        return cls(entries, config)

    # ---------------------- merge ----------------------

    def refresh(self, config: Iterable[ConfigEntry]) -> None:
        by_id: Dict[str, ConfigEntry] = {e.id.lower(): e for e in config}
        self._resolved = [ResolvedFailure.merge(c, by_id.get(c.id.lower())) for c in self._catalogue]

        unknown = set(by_id) - {c.id.lower() for c in self._catalogue}
        if unknown:
            logger.debug("Config entries with no catalogue failure: %s", sorted(unknown))

    # ---------------------- lookups ----------------------

    @property
    def all(self) -> List[ResolvedFailure]:
        return list(self._resolved)

    @property
    def triggerable(self) -> List[ResolvedFailure]:
        return [f for f in self._resolved if f.is_triggerable]

    def for_tier(self, tier: Tier) -> List[ResolvedFailure]:
        return [f for f in self._resolved if f.is_triggerable and f.effective_tier == tier]

    def find_by_id(self, failure_id: str) -> Optional[ResolvedFailure]:
        return next((f for f in self._resolved if f.id == failure_id), None)
