from pathlib import Path

import yaml

from app.core.errors import ConfigurationInvalid
from app.core.interfaces import ClusterSizingConfiguration, load_configuration


class FileConfigurationSource:
    """Sizing configuration from a YAML manifest on disk."""

    def __init__(self, path: str):
        self.path = Path(path)

    def load(self) -> ClusterSizingConfiguration:
        try:
            raw = yaml.safe_load(self.path.read_text(encoding='utf-8'))
        except yaml.YAMLError as e:
            raise ConfigurationInvalid(ConfigurationInvalid.SCHEMA_VIOLATION, f"{self.path}: {e}") from e
        return load_configuration(raw or {})

    def publish_conditions(self, conditions) -> None:
        # conditions are only visible through the status endpoint
        return None
