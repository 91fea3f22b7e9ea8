from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

ADMIN_ROLES = frozenset({"admin", "service_role"})


class AuthUser(BaseModel):
    """
    Represents an authenticated caller decoded from a bearer JWT.

    ``role`` is one of ``consumer``, ``seller``, ``driver``
    (fulfiller), ``admin`` or ``service_role``.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="sub")
    email: Optional[EmailStr] = None
    role: str = "consumer"

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES
