"""
Schema Field Locator.

Providers name the same attribute differently from one mirror to the next
(``LNDS_RISKR``, ``NRI_CensusTracts_LNDS_RISKR``, ``lnds_riskr`` ...). A
FieldPattern lists, in priority order, the exact names to try first and
the regexes to fall back on, plus negative patterns for look-alike
statistics (rank, percentile, index) that must never be picked.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple


@dataclass(frozen=True)
class FieldMatch:
    key: str
    value: Any


@dataclass(frozen=True)
class FieldPattern:
    """
    How to find one indicator in an attribute bag.

    Attributes:
        exact: canonical names, compared case-insensitively, tried first
        fuzzy: regexes matched against the upper-cased key, in order
        exclude: regexes that disqualify a key even if it matched
    """
    exact: Tuple[str, ...] = ()
    fuzzy: Tuple[str, ...] = ()
    exclude: Tuple[str, ...] = ()

    def _excluded(self, upper_key: str) -> bool:
        return any(re.search(rx, upper_key) for rx in self.exclude)

    def locate(self, attrs: Optional[Mapping[str, Any]]) -> Optional[FieldMatch]:
        """
        First match in pattern-priority order, or None.

        Keys are scanned in sorted order for each pattern so the result
        does not depend on the provider's key ordering.
        """
        if not attrs:
            return None
        keys = sorted(k for k in attrs.keys() if isinstance(k, str))
        upper = {k: k.upper() for k in keys}

        for name in self.exact:
            wanted = name.upper()
            for k in keys:
                if upper[k] == wanted and not self._excluded(upper[k]):
                    return FieldMatch(k, attrs[k])

        for rx in self.fuzzy:
            pattern = re.compile(rx)
            for k in keys:
                if pattern.search(upper[k]) and not self._excluded(upper[k]):
                    return FieldMatch(k, attrs[k])
        return None


# Statistics that sit next to the rating/score in NRI layers. Anchored to the
# end of the key: mirrors prefix dataset names like "National_Risk_Index_".
NRI_AUXILIARY = (r"RANK$", r"PCTL$", r"(^|_)INDEX$", r"RISKV$", r"_EALS$", r"_EALR$", r"_EALT$")


def nri_rating_pattern(prefix: str, aliases: Sequence[str] = ()) -> FieldPattern:
    """Qualitative rating field, e.g. ``LNDS_RISKR``."""
    p = prefix.upper()
    fuzzy = [rf"(^|_){p}_RISKR$", rf"(^|_){p}.*_RISKR$"]
    fuzzy += [rf"{a.upper()}.*RISK.*RATING" for a in aliases]
    return FieldPattern(
        exact=(f"{p}_RISKR",),
        fuzzy=tuple(fuzzy),
        exclude=NRI_AUXILIARY,
    )


def nri_score_pattern(prefix: str, aliases: Sequence[str] = ()) -> FieldPattern:
    """Numeric risk score field, e.g. ``LNDS_RISKS``."""
    p = prefix.upper()
    fuzzy = [rf"(^|_){p}_RISKS$", rf"(^|_){p}.*_RISKS$"]
    fuzzy += [rf"{a.upper()}.*RISK.*SCORE" for a in aliases]
    return FieldPattern(
        exact=(f"{p}_RISKS",),
        fuzzy=tuple(fuzzy),
        exclude=NRI_AUXILIARY + (r"RISKR",),
    )


def first_present(attrs: Optional[Mapping[str, Any]], names: Sequence[str]) -> Optional[Any]:
    """Value of the first listed key (case-insensitive) holding a non-empty value."""
    if not attrs:
        return None
    lookup: Dict[str, Any] = {}
    for k in sorted(k for k in attrs if isinstance(k, str)):
        lookup.setdefault(k.upper(), attrs[k])
    for name in names:
        value = lookup.get(name.upper())
        if value not in (None, ""):
            return value
    return None
