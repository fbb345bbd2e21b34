"""
Hecate Configuration Management

Zentrale Konfigurationsverwaltung mit Pydantic v2.
Unterstützt Umgebungsvariablen, YAML-Dateien und programmatische Konfiguration.
"""

from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LoggingConfig(BaseModel):
    """Konfiguration für das Logging-System."""

    level: str = Field(default="INFO", description="Log-Level (DEBUG, INFO, WARNING, ERROR)")
    format: str = Field(
        default="structured",
        description="Log-Format: 'structured' (JSON) oder 'human' (lesbar)",
    )
    file: Optional[Path] = Field(default=None, description="Optionale Log-Datei")
    max_bytes: int = Field(
        default=10 * 1024 * 1024, ge=1024, description="Rotation ab dieser Dateigröße"
    )
    backup_count: int = Field(default=3, ge=0, description="Anzahl rotierter Log-Dateien")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper


class MonitoringConfig(BaseModel):
    """Konfiguration für GPU-Polling und Telemetrie."""

    interval_seconds: float = Field(
        default=1.0, gt=0, description="Abtastintervall in Sekunden (Standard 1 Hz)"
    )
    history_capacity: int = Field(
        default=60, ge=1, description="Kapazität der Snapshot-Historie (Ringpuffer)"
    )
    device_history_size: int = Field(
        default=300, ge=10, description="Rollierende Historie pro GPU für Anomalie-Erkennung"
    )
    backend_timeout_seconds: float = Field(
        default=2.0, gt=0, description="Timeout für Vendor-Backend-Aufrufe"
    )
    subscriber_buffer: int = Field(
        default=64, ge=1, description="Puffergröße pro Abonnent (älteste werden verworfen)"
    )


class AlertConfig(BaseModel):
    """Schwellwerte und Hysterese-Margen für Alerts."""

    temperature_threshold: float = Field(default=85.0, description="GPU-Temperatur (C)")
    temperature_critical: float = Field(default=90.0)
    temperature_margin: float = Field(default=5.0, ge=0)
    vram_percent_threshold: float = Field(default=90.0, description="VRAM-Belegung (%)")
    vram_percent_critical: float = Field(default=97.0)
    vram_margin: float = Field(default=5.0, ge=0)
    power_percent_threshold: float = Field(default=95.0, description="Leistung in % des Limits")
    power_percent_critical: float = Field(default=105.0)
    power_margin: float = Field(default=5.0, ge=0)
    cpu_percent_threshold: float = Field(default=85.0)
    memory_percent_threshold: float = Field(default=80.0)
    disk_percent_threshold: float = Field(default=90.0)
    system_margin: float = Field(default=5.0, ge=0)


class LoadBalancingConfig(BaseModel):
    """Konfiguration für die Workload-Verteilung auf mehrere GPUs."""

    enabled: bool = Field(default=False, description="Load Balancing beim Start aktivieren")
    strategy: str = Field(default="least_utilized", description="Scoring-Strategie")
    weights: dict[str, float] = Field(
        default_factory=lambda: {
            "least_utilized": 0.4,
            "thermal_optimized": 0.2,
            "power_efficient": 0.2,
            "memory_optimized": 0.2,
        },
        description="Gewichte der Custom-Strategie",
    )

    @field_validator("strategy")
    @classmethod
    def validate_strategy(cls, v: str) -> str:
        valid = {
            "least_utilized",
            "thermal_optimized",
            "power_efficient",
            "memory_optimized",
            "performance_optimized",
            "custom",
        }
        v_lower = v.lower()
        if v_lower not in valid:
            raise ValueError(f"Invalid strategy: {v}. Must be one of {valid}")
        return v_lower


class TuningConfig(BaseModel):
    """Konfiguration für den Tuning-Resolver und -Applier."""

    mitigations: Optional[str] = Field(
        default=None,
        description="Überschreibt die Mitigations-Vorgabe des Profils (z.B. 'auto', 'off')",
    )
    profile: Optional[str] = Field(
        default=None, description="Erzwingt ein Profil statt der Klassifikation"
    )
    sysroot: Path = Field(
        default=Path("/"), description="Wurzel, unter der alle Systempfade aufgelöst werden"
    )


class ApiConfig(BaseModel):
    """Konfiguration für die API und den Telemetrie-Stream."""

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=9313, ge=1, le=65535)


class Config(BaseSettings):
    """
    Hauptkonfiguration für Hecate.

    Lädt Konfiguration aus:
    1. Umgebungsvariablen (Präfix: HECATE_)
    2. .env Datei
    3. Programmatische Überschreibungen
    """

    model_config = SettingsConfigDict(
        env_prefix="HECATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: str = Field(
        default="development",
        description="Umgebung: development, testing, production",
    )
    debug: bool = Field(default=False, description="Debug-Modus")
    data_dir: Path = Field(
        default=Path("./data"), description="Datenverzeichnis (Persistenz-Store)"
    )

    # Nested Configs
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    alerts: AlertConfig = Field(default_factory=AlertConfig)
    load_balancing: LoadBalancingConfig = Field(default_factory=LoadBalancingConfig)
    tuning: TuningConfig = Field(default_factory=TuningConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        valid_envs = {"development", "testing", "production"}
        if v.lower() not in valid_envs:
            raise ValueError(f"Invalid environment: {v}. Must be one of {valid_envs}")
        return v.lower()

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Lädt Konfiguration aus einer YAML-Datei."""
        import yaml

        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    def to_dict(self) -> dict[str, Any]:
        """Exportiert Konfiguration als Dictionary."""
        return self.model_dump()


# Globale Konfigurationsinstanz (Lazy Loading)
_config: Optional[Config] = None


def get_config() -> Config:
    """Gibt die globale Konfiguration zurück."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def set_config(config: Config) -> None:
    """Setzt die globale Konfiguration."""
    global _config
    _config = config
