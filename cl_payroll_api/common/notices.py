"""Non-fatal findings that travel with a liquidation or an export.

Neither kind stops a computation. They are stored alongside the record,
returned to API callers and carried into export metadata so a human can
review them.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, List


@dataclass(frozen=True)
class ReconciliationWarning:
    field: str
    stored: int
    recomputed: int
    kind: str = "reconciliation"

    @property
    def difference(self) -> int:
        return self.recomputed - self.stored

    def as_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["difference"] = self.difference
        return d


@dataclass(frozen=True)
class ConfigurationFallbackNotice:
    setting: str
    default_used: str
    message: str
    kind: str = "configuration_fallback"

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def notices_as_dicts(items: Iterable[Any]) -> List[Dict[str, Any]]:
    out = []
    for n in items or []:
        out.append(n.as_dict() if hasattr(n, "as_dict") else dict(n))
    return out
