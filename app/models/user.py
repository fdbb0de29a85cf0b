# models/user.py
# 使用者由外部認證服務建立；本服務只讀取角色與停權狀態
from sqlalchemy import Column, String, Boolean, Enum, CHAR
from app.core.database import Base
import enum

# 對應 SQL 中的 ENUM 型別
class UserRoleEnum(str, enum.Enum):
    freelancer = "FREELANCER"
    client = "CLIENT"
    admin = "ADMIN"

class User(Base):
    __tablename__ = "users"

    # 基本欄位
    user_id = Column(CHAR(36), primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    role = Column(Enum(UserRoleEnum, values_callable=lambda obj: [e.value for e in obj]), nullable=False)
    is_active = Column(Boolean, default=True)
