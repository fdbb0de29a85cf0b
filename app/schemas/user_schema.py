# app/schemas/user_schema.py
from pydantic import BaseModel, EmailStr, ConfigDict
from app.models.user import UserRoleEnum

# Token 內的資料 (由外部認證服務簽發)
class TokenData(BaseModel):
    user_id: str
    role: str

# 每個生命週期操作都明確帶入的呼叫者身分
class AuthenticatedUser(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    user_id: str
    role: UserRoleEnum

    @property
    def is_admin(self) -> bool:
        return self.role == UserRoleEnum.admin

# 查詢使用者的安全回應
class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str # 我們在 MySQL 中使用 CHAR(36)，但在 Pydantic 中視為 str
    email: EmailStr
    role: UserRoleEnum
    is_active: bool
