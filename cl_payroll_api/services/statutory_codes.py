from __future__ import annotations

import re
import unicodedata
from typing import Any, Dict, Mapping, Optional

from cl_payroll_api.common.errors import MissingPrerequisiteError

CATEGORIES = (
    "pension_fund",
    "health_provider",
    "family_fund",
    "work_accident_insurer",
    "family_bracket",
)

# Prefixes people commonly type in front of an institution name ("AFP Habitat").
_PREFIXES = {
    "pension_fund": ("AFP",),
    "health_provider": ("ISAPRE",),
    "family_fund": ("CCAF", "CAJA"),
}

_NON_ALNUM = re.compile(r"[^A-Z0-9]")


def normalize_identifier(value: Any, category: str = "") -> str:
    s = unicodedata.normalize("NFKD", str(value or ""))
    s = "".join(ch for ch in s if not unicodedata.combining(ch)).upper().strip()
    for prefix in _PREFIXES.get(category, ()):
        if s.startswith(prefix + " "):
            s = s[len(prefix) + 1:]
    return _NON_ALNUM.sub("", s)


class StatutoryCodeResolver:
    """
    Maps internal identifiers to the official codes of one interchange scheme.

    Every lookup is total: unknown or missing identifiers resolve to the
    scheme's fallback code. Tables come from the CODES regulatory config so a
    new code table is a data change.
    """

    def __init__(self, tables: Mapping[str, Any], scheme: str = "lre"):
        self.scheme = scheme
        self.defaults: Dict[str, str] = dict(tables.get("defaults") or {})
        self.fallbacks: Dict[str, str] = dict(tables.get("fallbacks") or {})
        self._maps: Dict[str, Dict[str, str]] = {}
        for cat in CATEGORIES:
            self._maps[cat] = {
                normalize_identifier(k, cat): str(v) for k, v in (tables.get(cat) or {}).items()
            }

    @classmethod
    def from_params(cls, params, scheme: str = "lre") -> "StatutoryCodeResolver":
        tables = (params.codes or {}).get(scheme)
        if not tables:
            raise MissingPrerequisiteError(f"No code tables configured for scheme {scheme!r}")
        return cls(tables, scheme=scheme)

    def _lookup(self, category: str, identifier: Any) -> Optional[str]:
        key = normalize_identifier(identifier, category)
        if not key:
            return None
        return self._maps[category].get(key)

    def resolve(self, category: str, identifier: Any) -> str:
        code = self._lookup(category, identifier)
        return code if code is not None else self.fallbacks.get(category, "")

    def is_fallback(self, category: str, identifier: Any) -> bool:
        return self._lookup(category, identifier) is None

    def pension_fund_code(self, fund: Any) -> str:
        return self.resolve("pension_fund", fund)

    def health_provider_code(self, provider: Any) -> str:
        return self.resolve("health_provider", provider)

    def family_fund_code(self, fund: Any) -> str:
        return self.resolve("family_fund", fund)

    def work_accident_insurer_code(self, insurer: Any) -> str:
        return self.resolve("work_accident_insurer", insurer)

    def family_bracket_code(self, bracket: Any) -> str:
        return self.resolve("family_bracket", bracket)

    def default(self, name: str, value: Any = None) -> str:
        if value not in (None, ""):
            return str(value)
        return str(self.defaults.get(name, ""))
