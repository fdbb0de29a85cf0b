import logging
from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware

from app.core.exceptions import InvariantViolation
from app.routers import (
    user_router, job_router, contract_router,
    escrow_router, dispute_router, wallet_router, notification_router
)

# 單獨匯入 "proposal_router.py" 檔案中的 *兩個* router
from app.routers.proposal_router import (
    router as proposal_main_router,  # 將 router 重新命名
    job_proposal_router as proposal_job_router # 將 job_proposal_router 重新命名
)

# --- 匯入所有 Model 檔案 ---
# 都在應用程式啟動時被 SQLAlchemy 註冊。
from app.models import user
from app.models import job
from app.models import proposal
from app.models import contract
from app.models import escrow
from app.models import wallet
from app.models import notification
from app.models import audit_log


# 設定基礎日誌
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__) # 建立一個 logger 實例

app = FastAPI(title="Engagement Lifecycle Engine")

# --- 設定 CORS (跨來源資源共用) ---
# 允許所有來源 (在生產環境中應限制)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], # 允許所有來源 (或指定 'http://localhost:5173')
    allow_credentials=True,
    allow_methods=["*"], # 允許所有 HTTP 方法
    allow_headers=["*"], # 允許所有 HTTP 標頭
)

# --- 內部一致性錯誤：記錄完整 traceback 後照常回傳 500 ---
@app.exception_handler(InvariantViolation)
async def invariant_violation_handler(request: Request, exc: InvariantViolation):
    logger.error(f"InvariantViolation on {request.method} {request.url.path}: {exc.detail}", exc_info=exc)
    return await http_exception_handler(request, exc)

# --- 根路徑 ---
@app.get("/")
def read_root():
    return {"status": "success", "message": "Backend is running!"}

# --- 載入 API 路由 ---
app.include_router(user_router.router)
app.include_router(job_router.router)
app.include_router(proposal_main_router)
app.include_router(proposal_job_router)
app.include_router(contract_router.router)
app.include_router(escrow_router.router)
app.include_router(dispute_router.router)
app.include_router(wallet_router.router)
app.include_router(notification_router.router)
