"""
Snapshot of a container as reported by the runtime.
"""
from typing import List, Dict, Optional
from pydantic import BaseModel

from ..UTILS.ownership import OWNERSHIP_KEY, SERVICE_KEY


class RuntimeContainerRef(BaseModel):
    """
    An ephemeral view of one runtime container. Re-fetched at every
    decision point, never cached across phases.
    """
    id: str
    names: List[str] = []
    image: str = ""
    state: str = ""
    labels: Dict[str, str] = {}

    @classmethod
    def from_api(cls, data: Dict) -> "RuntimeContainerRef":
        """
        Builds a ref from a Docker Engine API container list entry.
        """
        return cls(
            id=data.get("Id", ""),
            names=[n.lstrip("/") for n in data.get("Names") or []],
            image=data.get("Image", ""),
            state=data.get("State", ""),
            labels=data.get("Labels") or {},
        )

    @property
    def name(self) -> str:
        return self.names[0] if self.names else self.id[:12]

    @property
    def short_id(self) -> str:
        return self.id[:12]

    @property
    def is_running(self) -> bool:
        return self.state == "running"

    @property
    def ownership_label(self) -> Optional[str]:
        return self.labels.get(OWNERSHIP_KEY)

    @property
    def service(self) -> Optional[str]:
        return self.labels.get(SERVICE_KEY)
