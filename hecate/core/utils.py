"""
Hecate Utilities

Allgemeine Hilfsfunktionen.
"""

import hashlib
import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence


def generate_id(prefix: str = "") -> str:
    """
    Generiert eine eindeutige ID.

    Args:
        prefix: Optionales Präfix (z.B. 'sub', 'alert')

    Returns:
        Eindeutige ID im Format: prefix-uuid4[:8]
    """
    short_uuid = str(uuid.uuid4())[:8]
    if prefix:
        return f"{prefix}-{short_uuid}"
    return short_uuid


def now_utc() -> datetime:
    """Gibt aktuelle UTC-Zeit zurück."""
    return datetime.now(timezone.utc)


def hash_content(content: str | bytes, algorithm: str = "sha256") -> str:
    """
    Berechnet Hash eines Inhalts.

    Args:
        content: Zu hashender Inhalt
        algorithm: Hash-Algorithmus (sha256, sha512, md5)

    Returns:
        Hexadezimaler Hash-String
    """
    if isinstance(content, str):
        content = content.encode("utf-8")

    hasher = hashlib.new(algorithm)
    hasher.update(content)
    return hasher.hexdigest()


def canonical_json(data: Any) -> str:
    """Deterministische JSON-Darstellung (sortierte Schlüssel, keine Leerzeichen)."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)


def ensure_path(path: Path | str) -> Path:
    """
    Stellt sicher, dass ein Pfad existiert.

    Args:
        path: Pfad zum Erstellen

    Returns:
        Path-Objekt
    """
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def clamp(value: float, low: float, high: float) -> float:
    """Begrenzt einen Wert auf [low, high]."""
    return max(low, min(high, value))


def interpolate(x: float, anchors: Sequence[tuple[float, float]]) -> float:
    """
    Stückweise lineare Interpolation über sortierte Stützstellen.

    Außerhalb des Bereichs wird der Randwert verwendet.

    Args:
        x: Eingabewert
        anchors: Sortierte (x, y)-Paare

    Returns:
        Interpolierter y-Wert
    """
    if not anchors:
        raise ValueError("interpolate() requires at least one anchor")
    if x <= anchors[0][0]:
        return float(anchors[0][1])
    for (x1, y1), (x2, y2) in zip(anchors, anchors[1:]):
        if x1 <= x <= x2:
            if x2 == x1:
                return float(y2)
            ratio = (x - x1) / (x2 - x1)
            return y1 + (y2 - y1) * ratio
    return float(anchors[-1][1])


def format_bytes(num_bytes: float) -> str:
    """Formatiert Bytes als lesbaren String (binäre Einheiten)."""
    units = ["B", "KiB", "MiB", "GiB", "TiB"]
    size = float(num_bytes)
    unit_index = 0
    while size >= 1024.0 and unit_index < len(units) - 1:
        size /= 1024.0
        unit_index += 1
    return f"{size:.2f} {units[unit_index]}"
