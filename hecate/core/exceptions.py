"""
Hecate Exception Hierarchy

Zentrale Fehlerdefinitionen für Optimierung, GPU-Verwaltung und Telemetrie.
"""

from typing import Any, Optional


class HecateError(Exception):
    """Basis-Exception für alle Hecate-Fehler."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "HECATE_ERROR"
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialisiert die Exception für Logging/API-Responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(HecateError):
    """Fehler bei der Konfiguration."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message, code="CONFIG_ERROR", details=details)


class ValidationError(HecateError):
    """Fehler bei der Validierung von Eingaben."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class ProbeFailure(HecateError):
    """
    Hardware-Probe fehlgeschlagen.

    Feldbezogene Fehler sind nicht fatal und werden im Inventar gesammelt.
    Nur wenn gar keine CPU erkannt wird, ist der Fehler fatal.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        fatal: bool = False,
        details: Optional[dict[str, Any]] = None,
    ):
        details = details or {}
        if field:
            details["field"] = field
        details["fatal"] = fatal
        super().__init__(message, code="PROBE_FAILURE", details=details)
        self.field = field
        self.fatal = fatal


class BackendUnavailable(HecateError):
    """GPU-Backend nicht erreichbar (Geraeteliste degradiert zu leer)."""

    def __init__(
        self,
        message: str,
        vendor: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        details = details or {}
        if vendor:
            details["vendor"] = vendor
        super().__init__(message, code="BACKEND_UNAVAILABLE", details=details)
        self.vendor = vendor


class NotFoundError(HecateError):
    """Unbekannter Geraete-Index oder Profil-Schluessel."""

    def __init__(self, kind: str, key: Any, details: Optional[dict[str, Any]] = None):
        details = details or {}
        details.update({"kind": kind, "key": key})
        super().__init__(f"{kind} not found: {key}", code="NOT_FOUND", details=details)
        self.kind = kind
        self.key = key


class OutOfRangeError(HecateError):
    """Konfigurationswert ausserhalb der Geraete-Faehigkeiten."""

    def __init__(
        self,
        field: str,
        value: Any,
        bounds: Optional[tuple[Any, Any]] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        details = details or {}
        details.update({"field": field, "value": value, "bounds": bounds})
        if bounds is None:
            message = f"{field}={value} is not supported by the device"
        else:
            message = f"{field}={value} outside of [{bounds[0]}, {bounds[1]}]"
        super().__init__(message, code="OUT_OF_RANGE", details=details)
        self.field = field
        self.value = value
        self.bounds = bounds


class ApplyFailure(HecateError):
    """Fehler beim Anwenden einer Tuning-Kategorie oder GPU-Konfiguration."""

    def __init__(
        self,
        message: str,
        category: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        details = details or {}
        if category:
            details["category"] = category
        super().__init__(message, code="APPLY_FAILURE", details=details)
        self.category = category


class StaleSampleError(HecateError):
    """Monitoring-Sample verpasst (Timeout oder Backend-Fehler)."""

    def __init__(self, index: int, reason: str = "timeout"):
        super().__init__(
            f"Sample for GPU {index} is stale: {reason}",
            code="STALE",
            details={"index": index, "reason": reason},
        )
        self.index = index


class ConflictError(HecateError):
    """Gleichzeitige Konfigurationsanfrage auf demselben Geraet."""

    def __init__(self, index: int):
        super().__init__(
            f"Configuration of GPU {index} already in progress",
            code="CONFLICT",
            details={"index": index},
        )
        self.index = index


class LoadBalancerUnavailable(HecateError):
    """Load Balancing deaktiviert oder keine gesunde GPU verfuegbar."""

    def __init__(self, message: str = "Load balancer is not available"):
        super().__init__(message, code="LOAD_BALANCER_UNAVAILABLE")
