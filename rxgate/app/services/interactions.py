"""
Pairwise drug-interaction checking.

The checker asks an InteractionSource about every unordered pair of
medications in a prescription. It is the minimum safety net: three-way and
dosage-dependent interactions are not detected. Any non-empty result blocks
issuance (the workflow fails closed).
"""

import json
import logging
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Protocol, Sequence

from rxgate.app.errors import InteractionSourceError
from rxgate.app.models import Interaction, MedicationEntry

logger = logging.getLogger(__name__)


class InteractionSource(Protocol):
    def query(self, drug_a: str, drug_b: str) -> Optional[Interaction]:
        """Return the known interaction between two drugs, or None."""
        ...


class NullInteractionSource:
    """Placeholder source that knows no interactions."""

    def query(self, drug_a: str, drug_b: str) -> Optional[Interaction]:
        return None


def _normalize(name: str) -> str:
    return " ".join(name.lower().split())


class StaticInteractionSource:
    """
    Interaction table held in memory.

    Lookups are case-insensitive and ignore pair order.
    """

    def __init__(self, entries: Iterable[Dict] = ()):
        self._table: Dict[FrozenSet[str], Interaction] = {}
        for entry in entries:
            self.add(entry["drugs"][0], entry["drugs"][1],
                     severity=entry.get("severity", "unknown"),
                     description=entry.get("description", ""))

    @classmethod
    def from_file(cls, path: str) -> "StaticInteractionSource":
        """
        Load a JSON list of {"drugs": [a, b], "severity": ..., "description": ...}.

        Raises:
            InteractionSourceError: If the file is missing or malformed
        """
        try:
            entries = json.loads(Path(path).read_text(encoding="utf-8"))
            source = cls(entries)
        except (OSError, ValueError, KeyError, IndexError, TypeError) as e:
            raise InteractionSourceError(f"Cannot load interaction table {path}: {e}")
        logger.info("Loaded %d drug interaction pairs from %s", len(source), path)
        return source

    def add(self, drug_a: str, drug_b: str, severity: str = "unknown", description: str = ""):
        key = frozenset((_normalize(drug_a), _normalize(drug_b)))
        self._table[key] = Interaction(
            drugs=tuple(sorted((drug_a, drug_b), key=_normalize)),
            severity=severity,
            description=description,
        )

    def query(self, drug_a: str, drug_b: str) -> Optional[Interaction]:
        return self._table.get(frozenset((_normalize(drug_a), _normalize(drug_b))))

    def __len__(self) -> int:
        return len(self._table)


class InteractionChecker:
    def __init__(self, source: InteractionSource):
        self.source = source

    def check(self, medications: Sequence[MedicationEntry]) -> List[Interaction]:
        """
        Query the source for every unordered pair of distinct entries.

        Returns:
            Distinct interactions found, in evaluation order (possibly empty)

        Raises:
            InteractionSourceError: If the source fails for any pair
        """
        found: List[Interaction] = []
        for i in range(len(medications)):
            for j in range(i + 1, len(medications)):
                drug_a, drug_b = medications[i].name, medications[j].name
                try:
                    interaction = self.source.query(drug_a, drug_b)
                except InteractionSourceError:
                    raise
                except Exception as e:
                    raise InteractionSourceError(
                        f"Interaction lookup failed for pair ({drug_a}, {drug_b}): {e}"
                    )
                if interaction is not None and interaction not in found:
                    found.append(interaction)
        return found
