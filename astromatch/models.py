from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional


class KootaName(str, Enum):
    """The eight Ashta Koota categories, valued by their display name."""

    VARNA = "Varna"
    VASHYA = "Vashya"
    TARA = "Tara"
    YONI = "Yoni"
    GRAHA_MAITRI = "Graha Maitri"
    GANA = "Gana"
    BHAKOOT = "Bhakoot"
    NADI = "Nadi"

    @property
    def max_points(self) -> int:
        return KOOTA_MAX_POINTS[self]

    @classmethod
    def from_key(cls, key: Any) -> Optional["KootaName"]:
        """Match 'Graha Maitri', 'GrahaMaitri' or 'graha_maitri' style keys."""
        if not isinstance(key, str):
            return None
        return _KOOTA_ALIASES.get(_squash(key))


def _squash(key: str) -> str:
    return "".join(ch for ch in key.lower() if ch.isalnum())


KOOTA_MAX_POINTS: Mapping[KootaName, int] = MappingProxyType({
    KootaName.VARNA: 1,
    KootaName.VASHYA: 2,
    KootaName.TARA: 3,
    KootaName.YONI: 4,
    KootaName.GRAHA_MAITRI: 5,
    KootaName.GANA: 6,
    KootaName.BHAKOOT: 7,
    KootaName.NADI: 8,
})

_KOOTA_ALIASES: Dict[str, KootaName] = {_squash(k.value): k for k in KootaName}

DEFAULT_MAX_GUNAS = sum(KOOTA_MAX_POINTS.values())  # 36
GOOD_MATCH_THRESHOLD = 18


@dataclass(frozen=True)
class CompatibilityResult:
    """
    Canonical, validated Ashta Koota score for one pair of profiles.

    Instances can only exist with ``0 <= total_gunas <= max_gunas``.
    """

    total_gunas: int
    max_gunas: int = DEFAULT_MAX_GUNAS
    verdict: str = ""
    breakdown: Mapping[KootaName, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_gunas <= 0:
            raise ValueError(f"max_gunas must be positive, got {self.max_gunas}")
        if not 0 <= self.total_gunas <= self.max_gunas:
            raise ValueError(
                f"total_gunas {self.total_gunas} outside [0, {self.max_gunas}]"
            )
        object.__setattr__(self, "breakdown", MappingProxyType(dict(self.breakdown)))

    @property
    def match_percentage(self) -> int:
        return round(self.total_gunas / self.max_gunas * 100)

    @property
    def is_good_match(self) -> bool:
        return self.total_gunas >= GOOD_MATCH_THRESHOLD

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_gunas": self.total_gunas,
            "max_gunas": self.max_gunas,
            "verdict": self.verdict,
            "breakdown": {k.value: v for k, v in self.breakdown.items()},
        }


@dataclass(frozen=True)
class CandidateProfile:
    """A profile from the listing collaborator; only ``id`` matters to scoring."""

    id: str
    name: str = ""
    birth_date: Optional[str] = None
    birth_time: Optional[str] = None
    birth_place: Optional[str] = None
    gender: Optional[str] = None
    photo_url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CandidateProfile":
        def pick(*keys):
            for k in keys:
                if data.get(k) is not None:
                    return data[k]
            return None

        return cls(
            id=str(data["id"]),
            name=data.get("name") or "",
            birth_date=pick("birthDate", "birth_date"),
            birth_time=pick("birthTime", "birth_time"),
            birth_place=pick("birthPlace", "birth_place"),
            gender=data.get("gender"),
            photo_url=pick("photoUrl", "photo_url"),
        )


@dataclass(frozen=True)
class ProfilePage:
    items: List[CandidateProfile]
    page: int
    total: int
    has_more: bool

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProfilePage":
        """Build from the listing wire shape ``{data, page, total, hasMore}``."""
        return cls(
            items=[CandidateProfile.from_dict(p) for p in data.get("data") or []],
            page=int(data["page"]),
            total=int(data.get("total") or 0),
            has_more=bool(data.get("hasMore", data.get("has_more", False))),
        )
