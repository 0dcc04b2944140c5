"""
Request context — who is acting, and for which company.

Every core operation receives a RequestContext explicitly. It is built by
the HTTP dependency layer from the verified bearer token, or constructed
directly by internal callers (scheduled jobs, tests).
"""

import enum
from dataclasses import dataclass


class Role(str, enum.Enum):
    SUPERUSER = "SUPERUSER"
    ADMIN = "ADMIN"
    USER = "USER"


@dataclass(frozen=True)
class RequestContext:
    company_id: int
    user_id: int
    role: Role = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role in (Role.ADMIN, Role.SUPERUSER)
