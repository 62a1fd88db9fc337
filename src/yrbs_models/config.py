from dataclasses import dataclass, field
from typing import Any, Dict
import yaml


@dataclass
class Config:
    """Configuration object loaded from YAML."""
    data: Dict[str, Any]
    preprocessing: Dict[str, Any]
    models: Dict[str, Any]
    validation: Dict[str, Any]
    output: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_yaml(cls, path: str) -> "Config":
        with open(path, "r") as f:
            cfg = yaml.safe_load(f)
        return cls(**cfg)

    @property
    def seed(self) -> int:
        return int(self.validation.get("random_state", 42))

    def family(self, name: str) -> Dict[str, Any]:
        """Settings block for one model family (empty dict if absent)."""
        return dict(self.models.get(name) or {})
