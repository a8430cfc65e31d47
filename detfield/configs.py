"""Configuration dataclasses for detfield."""

import dataclasses
from dataclasses import dataclass
from dataclasses import field as dataclass_field

import yaml


@dataclass
class FieldConfig:
    """Field initialization parameters."""
    dim: int = 64
    seed: int = 42
    alpha: float = 0.1


@dataclass
class ServerConfig:
    """HTTP server bind address and request limits."""
    host: str = "0.0.0.0"
    port: int = 8765
    max_slice_cells: int = 1 << 24
    """Largest w * h a /field/slice request may ask for."""


@dataclass
class LogConfig:
    """Logging and persistence configuration."""
    level: str = "INFO"
    snapshot_dir: str = "snapshots"
    max_snapshots: int = 5
    audit_path: str | None = None
    """Where to save the audit trail of a run. None disables recording."""


@dataclass
class Config:
    """Master configuration combining all sub-configs."""
    field: FieldConfig = dataclass_field(default_factory=FieldConfig)
    server: ServerConfig = dataclass_field(default_factory=ServerConfig)
    log: LogConfig = dataclass_field(default_factory=LogConfig)

    @classmethod
    def from_yaml(cls, path: str) -> "Config":
        """Load config from YAML file.

        Missing sections keep their defaults. Unknown keys inside a section
        raise TypeError.
        """
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls(
            field=FieldConfig(**(data.get("field") or {})),
            server=ServerConfig(**(data.get("server") or {})),
            log=LogConfig(**(data.get("log") or {})),
        )

    def to_yaml(self, path: str) -> None:
        """Save config to YAML file."""
        with open(path, "w") as f:
            yaml.safe_dump(dataclasses.asdict(self), f, default_flow_style=False, sort_keys=False)
