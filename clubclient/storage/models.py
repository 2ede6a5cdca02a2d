from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class TokenPair:
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.access_token and not self.refresh_token


@dataclass
class UserProfile:
    """Denormalized copy of the signed-in user, cached next to the tokens."""

    id: Any
    role: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    station_id: Any = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN = ("id", "role", "email", "name", "phone", "station_id")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserProfile":
        if not isinstance(data, dict) or data.get("id") is None:
            raise ValueError("user payload must be an object with an id")
        extra = {k: v for k, v in data.items() if k not in cls._KNOWN}
        return cls(
            id=data["id"],
            role=data.get("role"),
            email=data.get("email"),
            name=data.get("name"),
            phone=data.get("phone"),
            station_id=data.get("station_id"),
            extra=extra,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(self.extra)
        payload.update(
            {
                "id": self.id,
                "role": self.role,
                "email": self.email,
                "name": self.name,
                "phone": self.phone,
                "station_id": self.station_id,
            }
        )
        return payload
