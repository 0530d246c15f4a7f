from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class RequestContext:
    """Authenticated identity of the caller, passed explicitly down the call chain."""
    user_id: Optional[int]
    roles: List[str] = field(default_factory=list)

    @property
    def is_authorized(self) -> bool:
        return self.user_id is not None and bool(self.roles)

    @property
    def primary_group(self) -> Optional[str]:
        return self.roles[0] if self.roles else None
