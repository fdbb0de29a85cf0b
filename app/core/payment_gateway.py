# app/core/payment_gateway.py
# 金流閘道 (Chapa) 客戶端：建立付款頁、查詢交易狀態
import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from app.core.config import settings
from app.core.exceptions import GatewayError

logger = logging.getLogger(__name__)

# 閘道狀態字彙 -> 正規化狀態
SUCCESS_STATUSES = {"success", "successful", "completed", "paid"}
PENDING_STATUSES = {"pending", "processing", "queued", "in_progress"}


def normalize_gateway_status(raw: Optional[str]) -> str:
    """回傳 'success' / 'pending' / 'failed' 三者之一"""
    value = (raw or "").strip().lower()
    if value in SUCCESS_STATUSES:
        return "success"
    if value in PENDING_STATUSES:
        return "pending"
    return "failed"


@dataclass
class GatewayVerification:
    status: str
    paid_amount: Optional[Decimal] = None


class ChapaGateway:
    """
    以 httpx.AsyncClient 呼叫 Chapa REST API。

    每次呼叫都有逾時；連線錯誤、逾時與 5xx 以指數退避重試，
    4xx 代表請求本身有問題，直接失敗不重試。
    """

    def __init__(
        self,
        base_url: str = settings.CHAPA_API_URL,
        secret_key: str = settings.CHAPA_SECRET_KEY,
        timeout: float = settings.GATEWAY_TIMEOUT_SECONDS,
        max_retries: int = settings.GATEWAY_MAX_RETRIES,
        backoff_base: float = settings.GATEWAY_BACKOFF_BASE_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.secret_key = secret_key
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        last_error: Optional[Exception] = None

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for attempt in range(1, self.max_retries + 1):
                try:
                    response = await client.request(method, url, json=json, headers=self._headers())
                except (httpx.TimeoutException, httpx.TransportError) as e:
                    last_error = e
                    logger.warning(f"閘道連線失敗 ({attempt}/{self.max_retries}) {method} {path}: {e}")
                else:
                    if response.status_code >= 500:
                        last_error = GatewayError(f"閘道回應 {response.status_code}")
                        logger.warning(f"閘道伺服器錯誤 ({attempt}/{self.max_retries}) {method} {path}: {response.status_code}")
                    elif response.status_code >= 400:
                        logger.error(f"閘道拒絕請求 {method} {path}: {response.status_code} {response.text}")
                        raise GatewayError(f"閘道拒絕請求 ({response.status_code})")
                    else:
                        return response.json()

                if attempt < self.max_retries:
                    await asyncio.sleep(self.backoff_base * (2 ** (attempt - 1)))

        logger.error(f"閘道重試次數用盡 {method} {path}: {last_error}")
        raise GatewayError()

    async def initiate_checkout(self, reference: str, amount: Decimal, currency: str) -> str:
        """建立付款頁，回傳 checkout_url。同一個 reference 重送由閘道端去重。"""
        payload = {
            "amount": str(amount),
            "currency": currency,
            "tx_ref": reference,
            "callback_url": settings.CHAPA_WEBHOOK_URL,
            "return_url": settings.CHAPA_RETURN_URL,
        }
        body = await self._request("POST", "/initialize", json=payload)
        checkout_url = (body.get("data") or {}).get("checkout_url")
        if not checkout_url:
            logger.error(f"閘道未回傳 checkout_url: tx_ref={reference}, body={body}")
            raise GatewayError("閘道未回傳付款網址")
        return checkout_url

    async def verify(self, reference: str) -> GatewayVerification:
        body = await self._request("GET", f"/verify/{reference}")
        data = body.get("data") or {}
        raw_status = data.get("status") or body.get("status")
        paid_amount = data.get("amount")
        return GatewayVerification(
            status=normalize_gateway_status(raw_status),
            paid_amount=Decimal(str(paid_amount)) if paid_amount is not None else None,
        )


gateway = ChapaGateway()

def get_payment_gateway() -> ChapaGateway:
    """FastAPI Dependency：測試中以 dependency_overrides 替換"""
    return gateway
