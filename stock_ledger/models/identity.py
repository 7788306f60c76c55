"""Caller identity supplied by the identity provider."""

from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True)
class CallerIdentity:
    """The authenticated actor a movement is attributed to.

    ``id`` also scopes ownership: products and movements belong to the
    account that created them.
    """

    id: str
    name: str

    def __post_init__(self):
        if not self.id or not self.id.strip():
            raise ValueError("Caller id cannot be empty")

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "name": self.name}
