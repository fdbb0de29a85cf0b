# app/core/security.py
# 負責 JWT 權杖的驗證，並把權杖解析成 AuthenticatedUser
# (權杖由外部認證服務簽發；create_access_token 保留給測試與內部工具使用)
from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, Query, status, WebSocketDisconnect
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.schemas.user_schema import TokenData, AuthenticatedUser
from app.repositories.user_repo import UserRepository

# (重要) 定義 Token 從哪裡來 (Authorization Header)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)

def create_access_token(data: dict) -> str:
    """
    根據傳入的 data (user_id, role) 產生 JWT access token
    """
    to_encode = data.copy() # 避免修改原始資料
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})

    encoded_jwt = jwt.encode(
        to_encode,
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM
    )
    return encoded_jwt

def verify_access_token(token: str) -> TokenData | None:
    """
    驗證 JWT，回傳 TokenData (Pydantic Model) 或 None
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM]
        )
        user_id = payload.get("user_id")
        role = payload.get("role")

        if user_id is None or role is None:
            return None

        return TokenData(user_id=user_id, role=role)

    except JWTError:
        return None

async def _resolve_user(token: str | None, db: AsyncSession) -> AuthenticatedUser | None:
    """
    Token -> AuthenticatedUser。角色以資料庫為準 (權杖簽發後角色可能已變更)。
    回傳 None 代表無法驗證；停權帳號 raise PermissionError。
    """
    if not token:
        return None
    token_data = verify_access_token(token)
    if token_data is None:
        return None

    user = await UserRepository(db).get_user_by_id(user_id=token_data.user_id)
    if user is None:
        return None
    if not user.is_active:
        raise PermissionError("此帳號已被停權")

    return AuthenticatedUser(user_id=user.user_id, role=user.role)

async def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db)
) -> AuthenticatedUser:
    """
    FastAPI 依賴項：驗證 Token 並回傳 AuthenticatedUser (用於 REST API)
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="無法驗證憑證",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        current_user = await _resolve_user(token, db)
    except PermissionError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))

    if current_user is None:
        raise credentials_exception
    return current_user

async def get_current_user_from_websocket_token(
    token: str = Query(...), # 從 Query 參數 (?token=...) 讀取
    db: AsyncSession = Depends(get_db)
) -> AuthenticatedUser:
    """
    WebSocket 專用的 Token 驗證依賴
    """
    try:
        current_user = await _resolve_user(token, db)
    except PermissionError as e:
        raise WebSocketDisconnect(code=status.WS_1008_POLICY_VIOLATION, reason=str(e))

    if current_user is None:
        raise WebSocketDisconnect(
            code=status.WS_1008_POLICY_VIOLATION,
            reason="無法驗證憑證"
        )
    return current_user
