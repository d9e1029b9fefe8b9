from dataclasses import dataclass, field
from typing import Dict, Optional

DEFAULT_TAG = "latest"
DEFAULT_TAG_PATTERN_TYPE = "glob"


@dataclass(frozen=True)
class TagPattern:
    """Declarative tag selection, e.g. 'glob:5.*' or bare '1.*.*'."""
    type: str
    pattern: str
    raw: str

    @classmethod
    def parse(cls, raw: Optional[str]) -> "TagPattern":
        """Split on the first ':'; a missing or empty right side means the default type."""
        raw = raw or DEFAULT_TAG
        type_name, sep, pattern = raw.partition(':')
        if not sep or not pattern:
            return cls(type=DEFAULT_TAG_PATTERN_TYPE, pattern=raw, raw=raw)
        return cls(type=type_name, pattern=pattern, raw=raw)

    def __str__(self) -> str:
        return self.raw


@dataclass
class ServiceDescriptor:
    """A managed swarm service as seen during one reconciliation pass."""
    id: str
    name: str
    current_image_repository: str
    current_image_tag: str = DEFAULT_TAG
    tag_pattern: TagPattern = field(default_factory=lambda: TagPattern.parse(DEFAULT_TAG))

    @property
    def current_image(self) -> str:
        return f"{self.current_image_repository}:{self.current_image_tag}"


@dataclass
class UpdateOutcome:
    """Recorded only when an update was actually applied."""
    service_name: str
    from_image_reference: str
    to_image_reference: str

    def as_dict(self) -> Dict[str, str]:
        return {
            'service': self.service_name,
            'from_image': self.from_image_reference,
            'to_image': self.to_image_reference,
        }


@dataclass
class SyncConfig:
    """Runtime configuration for the agent."""
    check_interval: int = 300  # seconds between passes
    update_interval: float = 5  # delay between services within a pass
    docker_host: Optional[str] = None  # e.g. unix:///var/run/docker.sock
    docker_timeout: int = 60
    registry_timeout: int = 10
    registry_retries: int = 3
    label_prefix: str = "swarm-sync"
    registries: Dict[str, Dict] = field(default_factory=dict)
    webhook_url: Optional[str] = None
