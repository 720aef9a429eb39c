from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .errors import InvalidId, InvalidKind, MalformedCode, UnknownKind

SEPARATOR = ":"


class EntityKind(str, enum.Enum):
    REPAIR = "repair"
    PART = "part"
    EQUIPMENT = "equipment"


KIND_LABELS = {
    EntityKind.REPAIR: "Reparación",
    EntityKind.PART: "Pieza",
    EntityKind.EQUIPMENT: "Equipo",
}


class EntityReference(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: EntityKind
    id: str
    tenant_id: str | None = None
    record: dict[str, Any] | None = None
    related: dict[str, dict[str, Any] | None] = Field(default_factory=dict)


def coerce_kind(kind: EntityKind | str) -> EntityKind:
    if isinstance(kind, EntityKind):
        return kind
    try:
        return EntityKind(kind)
    except ValueError as exc:
        raise InvalidKind(context={"kind": kind}) from exc


def encode(kind: EntityKind | str, entity_id: str) -> str:
    """Build the "<kind>:<id>" text embedded in a QR code."""
    k = coerce_kind(kind)
    if not entity_id or SEPARATOR in entity_id:
        raise InvalidId(context={"id": entity_id})
    return f"{k.value}{SEPARATOR}{entity_id}"


def decode(code: str) -> EntityReference:
    """Parse scanned text into kind and id. The tenant is not known yet."""
    value = (code or "").strip()
    parts = value.split(SEPARATOR)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise MalformedCode(context={"raw": value[:64]})
    prefix, entity_id = parts
    try:
        kind = EntityKind(prefix)
    except ValueError as exc:
        raise UnknownKind(context={"kind": prefix[:32]}) from exc
    return EntityReference(kind=kind, id=entity_id)
