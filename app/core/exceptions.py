# app/core/exceptions.py
# 生命週期引擎的錯誤分類。
# 全部繼承 HTTPException，Service 層可直接 raise，FastAPI 會回傳 {"detail": "..."}。
from fastapi import HTTPException, status


class NotFound(HTTPException):
    """資源不存在"""
    def __init__(self, detail: str = "資源不存在"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class Forbidden(HTTPException):
    """角色或擁有權不符"""
    def __init__(self, detail: str = "你沒有權限執行此操作"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class InvalidTransition(HTTPException):
    """目前狀態不允許此狀態轉移"""
    def __init__(self, detail: str = "不合法的狀態轉移"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class Conflict(HTTPException):
    """並行操作競爭失敗 (例如提案已被其他人接受)"""
    def __init__(self, detail: str = "資料已被其他操作變更"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class InsufficientFunds(HTTPException):
    """錢包餘額不足 (扣款後會變成負數)"""
    def __init__(self, detail: str = "錢包餘額不足"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class GatewayError(HTTPException):
    """金流閘道無法連線或拒絕請求"""
    def __init__(self, detail: str = "金流閘道暫時無法使用"):
        super().__init__(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)


class InvariantViolation(HTTPException):
    """
    內部一致性檢查失敗。正確的程式不應觸發；
    app/main.py 的 handler 會記錄完整 traceback 後回傳 500。
    """
    def __init__(self, detail: str = "系統內部資料不一致"):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)
