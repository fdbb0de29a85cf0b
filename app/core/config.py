# app/core/config.py
# 應用程式設定 (資料庫連線字串、JWT 秘鑰、金流閘道、託管手續費等)
from decimal import Decimal
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # 資料庫設定
    DATABASE_URL: str
    # (可選) 設為 True 會在 console 印出 SQL 語句
    SQL_ECHO: bool = False

    # JWT 設定 (權杖由外部認證服務簽發，本服務只負責驗證)
    JWT_SECRET_KEY: str
    # JWT 演算法
    JWT_ALGORITHM: str = "HS256"
    # 存取令牌過期時間（分鐘）
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # --- 託管 (Escrow) 設定 ---
    # 平台手續費比例 (釋出款項時從託管金額中扣除)
    PLATFORM_FEE_RATE: Decimal = Decimal("0.10")
    ESCROW_CURRENCY: str = "ETB"

    # --- 金流閘道 (Chapa) 設定 ---
    CHAPA_API_URL: str = "https://api.chapa.co/v1/transaction"
    CHAPA_SECRET_KEY: str = ""
    CHAPA_RETURN_URL: str = "http://localhost:3000/payments/chapa/return"
    CHAPA_WEBHOOK_URL: str = "http://localhost:8000/escrow/callback"
    # 未設定時不驗證 webhook 簽章
    CHAPA_WEBHOOK_SECRET: Optional[str] = None

    # 閘道呼叫的逾時與重試 (指數退避)
    GATEWAY_TIMEOUT_SECONDS: float = 10.0
    GATEWAY_MAX_RETRIES: int = 3
    GATEWAY_BACKOFF_BASE_SECONDS: float = 0.5

    # 對帳排程：超過此分鐘數仍為 PENDING 的託管款項會主動向閘道查詢
    RECONCILE_SWEEP_AGE_MINUTES: int = 15

    # 環境變數檔案
    model_config = SettingsConfigDict(env_file=".env")

# 建立設定實例
settings = Settings()
