"""Domain Entities - Auth"""
from pydantic import BaseModel, Field
from uuid import UUID, uuid4
from typing import Optional

from domain.enums import AccountRole


class User(BaseModel):
    """User Entity (staff and guests share one account model)"""
    user_id: UUID = Field(default_factory=uuid4)
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: AccountRole = AccountRole.USER
    branch: Optional[str] = None
    disabled: bool = False

    class Config:
        from_attributes = True

    @property
    def is_staff(self) -> bool:
        return self.role in (AccountRole.ADMIN, AccountRole.SUPER_ADMIN)

    @property
    def branch_scope(self) -> Optional[str]:
        """Branch filter applied to this account's queries (None = all)"""
        if self.role == AccountRole.SUPER_ADMIN:
            return None
        return self.branch

    def promote_to_tenant(self) -> bool:
        """Guests become tenants on check-in; staff roles are left alone"""
        if self.role != AccountRole.USER:
            return False
        self.role = AccountRole.TENANT
        return True


class UserInDB(User):
    """User with hashed password for DB storage"""
    hashed_password: str
