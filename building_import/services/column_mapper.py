from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

import yaml

from ..models.import_batch import ImportKind

"""Column mapping: source header text -> canonical field.

Automatic mappings come from a static alias table keyed by the normalized
header (lower-case, only a-z 0-9 _ and umlauts kept). The operator can
override any header or map it to SKIP. One canonical field is targeted by at
most one source column; assigning a second column silently clears the first.

Once validated, the mapping is resolved to column indexes (ResolvedMapping)
and the raw headers are not consulted again.
"""

__all__ = [
    "SKIP",
    "BUILDING_ALIASES",
    "K7_ALIASES",
    "BUILDING_TARGETS",
    "K7_TARGETS",
    "REQUIRED_FIELDS",
    "FIELD_LABELS",
    "MappingError",
    "ColumnMapping",
    "ResolvedMapping",
    "normalize_header",
    "aliases_for",
    "targets_for",
    "load_mapping",
    "save_mapping",
]

SKIP = "skip"

REQUIRED_FIELDS: tuple[str, ...] = ("street", "house_number")

FIELD_LABELS: dict[str, str] = {
    "street": "Straße",
    "house_number": "Hausnummer",
    "city": "Stadt",
    "postal_code": "PLZ",
    "residential_units": "Wohneinheiten",
    "rollout_type": "Ausbauart",
    "rollout_status": "Ausbaustatus",
    "civil_works_done": "Tiefbau erledigt",
    "apl_set": "APL gesetzt",
    "cable_tv_available": "Kabel TV verfügbar",
    "building_id_v2": "Gebäude ID V2",
    "building_id_k7": "Gebäude ID K7",
    "k7_building_id": "STD Kabel Gebäude ID",
    "service_product_id": "Leistungsprodukt ID",
    "service_product": "Leistungsprodukt",
    "bandwidth_id": "Bandbreite ID",
    "bandwidth": "Bandbreite",
}

_ADDRESS_ALIASES: dict[str, str] = {
    "strasse": "street",
    "straße": "street",
    "street": "street",
    "hausnummer": "house_number",
    "hausnumme": "house_number",
    "hnr": "house_number",
    "house_number": "house_number",
    "stadt": "city",
    "ort": "city",
    "teilort_name": "city",
    "city": "city",
    "plz": "postal_code",
    "postleitzahl": "postal_code",
    "postal_code": "postal_code",
}

BUILDING_ALIASES: dict[str, str] = {
    **_ADDRESS_ALIASES,
    "wohneinheiten": "residential_units",
    "we": "residential_units",
    "residential_units": "residential_units",
    "ausbauart": "rollout_type",
    "ausbau_art": "rollout_type",
    "rollout_type": "rollout_type",
    "ausbaustatus": "rollout_status",
    "ausbau_status": "rollout_status",
    "rollout_status": "rollout_status",
    "tiefbau": "civil_works_done",
    "tiefbau_done": "civil_works_done",
    "tiefbauerledigt": "civil_works_done",
    "civil_works_done": "civil_works_done",
    "apl": "apl_set",
    "apl_set": "apl_set",
    "aplgesetzt": "apl_set",
    "kabel_tv": "cable_tv_available",
    "kabeltv": "cable_tv_available",
    "kabeltvverfügbar": "cable_tv_available",
    "kabel_tv_available": "cable_tv_available",
    "cable_tv_available": "cable_tv_available",
    "gebaeude_id_v2": "building_id_v2",
    "gebäude_id_v2": "building_id_v2",
    "gebäudeidv2": "building_id_v2",
    "id_v2": "building_id_v2",
    "building_id_v2": "building_id_v2",
    "gebaeude_id_k7": "building_id_k7",
    "gebäude_id_k7": "building_id_k7",
    "gebäudeidk7": "building_id_k7",
    "id_k7": "building_id_k7",
    "building_id_k7": "building_id_k7",
}

K7_ALIASES: dict[str, str] = {
    **_ADDRESS_ALIASES,
    "std_kabel_gebaeude_id": "k7_building_id",
    "std_kabel_gebäude_id": "k7_building_id",
    "stdkabelgebäudeid": "k7_building_id",
    "k7_building_id": "k7_building_id",
    "leistungsprodukt_id": "service_product_id",
    "leistungsproduktid": "service_product_id",
    "service_product_id": "service_product_id",
    "leistungsprodukt": "service_product",
    "service_product": "service_product",
    "nt_dsl_bandbreite_id": "bandwidth_id",
    "bandbreite_id": "bandwidth_id",
    "bandbreiteid": "bandwidth_id",
    "bandwidth_id": "bandwidth_id",
    "bandbreite": "bandwidth",
    "bandwidth": "bandwidth",
}

BUILDING_TARGETS: tuple[str, ...] = tuple(dict.fromkeys(BUILDING_ALIASES.values()))
K7_TARGETS: tuple[str, ...] = tuple(dict.fromkeys(K7_ALIASES.values()))

_HEADER_STRIP = re.compile(r"[^a-z0-9_äöüß]")


class MappingError(Exception):
    """Raised when the mapping is unusable (unknown field, identity fields missing)."""


def normalize_header(header: str) -> str:
    """Lower-case and strip everything except a-z, 0-9, underscore and umlauts."""
    return _HEADER_STRIP.sub("", header.lower())


def aliases_for(kind: ImportKind) -> dict[str, str]:
    return BUILDING_ALIASES if kind is ImportKind.BUILDINGS else K7_ALIASES


def targets_for(kind: ImportKind) -> tuple[str, ...]:
    return BUILDING_TARGETS if kind is ImportKind.BUILDINGS else K7_TARGETS


@dataclass(frozen=True)
class ResolvedMapping:
    """Canonical field -> column index, fixed for one import run."""
    columns: dict[str, int]

    def index(self, name: str) -> int | None:
        return self.columns.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self.columns


class ColumnMapping:
    """Mutable header -> field mapping for one import session."""

    def __init__(self, headers: list[str], targets: tuple[str, ...]) -> None:
        self.headers = list(headers)
        self.targets = targets
        self._by_header: dict[str, str] = {}

    @classmethod
    def auto(cls, headers: list[str], kind: ImportKind) -> ColumnMapping:
        """Seed a mapping from the alias table of the import kind."""
        mapping = cls(headers, targets_for(kind))
        aliases = aliases_for(kind)
        for header in headers:
            target = aliases.get(normalize_header(header))
            # 同一フィールドへの重複は先勝ち (自動割当では上書きしない)
            if target and target not in mapping._by_header.values():
                mapping._by_header[header] = target
        return mapping

    @property
    def assignments(self) -> dict[str, str]:
        return dict(self._by_header)

    def field_for(self, header: str) -> str | None:
        return self._by_header.get(header)

    def header_for(self, target: str) -> str | None:
        for header, assigned in self._by_header.items():
            if assigned == target:
                return header
        return None

    def assign(self, header: str, target: str) -> None:
        """Assign a header to a field (or SKIP). Clears any previous holder of the field."""
        if header not in self.headers:
            raise MappingError(f"unknown source column: {header!r}")
        if target == SKIP or not target:
            self._by_header.pop(header, None)
            return
        if target not in self.targets:
            raise MappingError(f"unknown target field: {target!r}")
        for other, assigned in list(self._by_header.items()):
            if assigned == target:
                del self._by_header[other]
        self._by_header[header] = target

    def apply_overrides(self, overrides: dict[str, str], *, strict: bool = True) -> None:
        """Apply operator assignments on top of the automatic ones.

        strict=False ignores headers absent from this file (persisted mappings
        are reused across extracts with slightly different columns).
        """
        for header, target in overrides.items():
            if not strict and header not in self.headers:
                continue
            self.assign(header, target)

    def missing_required(self) -> list[str]:
        mapped = set(self._by_header.values())
        return [f for f in REQUIRED_FIELDS if f not in mapped]

    def validate(self) -> None:
        missing = self.missing_required()
        if missing:
            labels = " und ".join(FIELD_LABELS.get(f, f) for f in missing)
            raise MappingError(f"{labels} müssen zugeordnet werden (missing: {', '.join(missing)})")

    def resolve(self) -> ResolvedMapping:
        """Validate and freeze into field -> column index."""
        self.validate()
        columns: dict[str, int] = {}
        for index, header in enumerate(self.headers):
            target = self._by_header.get(header)
            if target and target not in columns:
                columns[target] = index
        return ResolvedMapping(columns)

    def to_dict(self) -> dict[str, str]:
        """Full mapping for persistence; unmapped headers are stored as SKIP."""
        return {h: self._by_header.get(h, SKIP) for h in self.headers}


def load_mapping(path: Path) -> dict[str, str]:
    """Load a persisted manual mapping (header -> field or 'skip')."""
    if not path.exists():
        raise MappingError(f"mapping file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise MappingError(f"invalid mapping yaml: {e}") from e
    if not isinstance(data, dict):
        raise MappingError(f"mapping file must contain a mapping, got {type(data).__name__}")
    return {str(k): str(v) for k, v in data.items()}


def save_mapping(path: Path, mapping: ColumnMapping) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        yaml.safe_dump(mapping.to_dict(), allow_unicode=True, sort_keys=False),
        encoding="utf-8",
    )
    return path
