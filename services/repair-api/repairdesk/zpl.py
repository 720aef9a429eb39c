from __future__ import annotations

import unicodedata

from jinja2 import Template

from .barcodes import KIND_LABELS, EntityKind

DOTS_PER_MM = 8  # 203 dpi thermal printers
QR_MODULES_ESTIMATE = 37  # "equipment:<32 hex>" at error correction H -> version 5
MARGIN = 8

# Adhesive thermal label sizes (square, width in mm).
LABEL_SIZES: dict[str, dict[str, int]] = {
    "small": {"mm": 20, "magnification": 2, "font": 14, "id_chars": 8},
    "medium": {"mm": 30, "magnification": 3, "font": 18, "id_chars": 12},
    "large": {"mm": 40, "magnification": 4, "font": 22, "id_chars": 16},
    "xlarge": {"mm": 50, "magnification": 5, "font": 26, "id_chars": 32},
}

QR_LABEL_TEMPLATE = Template(
    """^XA
^CI28
^PW{{ width }}
^LL{{ height }}
^FO{{ margin }},{{ margin }}^A0N,{{ font }},{{ font }}^FD{{ company }}^FS
^FO{{ margin }},{{ qr_y }}^BQN,2,{{ magnification }}^FDHA,{{ code }}^FS
^FO{{ margin }},{{ kind_y }}^A0N,{{ font }},{{ font }}^FD{{ kind_label }}^FS
^FO{{ margin }},{{ id_y }}^A0N,{{ font }},{{ font }}^FD#{{ short_id }}^FS
^PQ{{ copies }}
^XZ"""
)


def _norm(value: str | None, max_len: int | None = None) -> str:
    text = "" if value is None else value
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    text = text.strip().upper()
    if max_len:
        return text[:max_len]
    return text


def render_qr_label(
    code: str,
    kind: EntityKind,
    entity_id: str,
    size: str = "medium",
    copies: int = 1,
    company: str = "",
) -> str:
    """Etiqueta térmica con el QR ``code`` (sin tocar) y texto ASCII para la ZD888t."""
    if size not in LABEL_SIZES:
        raise ValueError(f"Unknown label size: {size}")
    cfg = LABEL_SIZES[size]
    font = cfg["font"]
    qr_y = MARGIN + font + 4
    # ^BQ adds a 10-dot quiet zone above the symbol.
    kind_y = qr_y + 10 + QR_MODULES_ESTIMATE * cfg["magnification"] + 6
    id_y = kind_y + font + 4
    return QR_LABEL_TEMPLATE.render(
        width=cfg["mm"] * DOTS_PER_MM,
        height=id_y + font + MARGIN,
        margin=MARGIN,
        font=font,
        company=_norm(company, 20),
        qr_y=qr_y,
        magnification=cfg["magnification"],
        code=code,
        kind_y=kind_y,
        kind_label=_norm(KIND_LABELS[EntityKind(kind)]),
        id_y=id_y,
        short_id=entity_id[: cfg["id_chars"]],
        copies=max(1, int(copies)),
    )
