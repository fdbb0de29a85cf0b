# app/models/base.py
from datetime import datetime, timezone


def utcnow() -> datetime:
    # 在 Python 端產生時間戳記，flush 後不需要再 refresh 物件
    return datetime.now(timezone.utc).replace(tzinfo=None)
