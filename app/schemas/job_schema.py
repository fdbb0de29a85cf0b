# app/schemas/job_schema.py
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from app.models.job import JobStatusEnum, JobCategoryEnum

# --- 基礎模型 ---
class JobBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    budget: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    category: JobCategoryEnum = JobCategoryEnum.other

# --- 建立 (Create) ---
class JobCreate(JobBase):
    pass

# --- 更新 (Update) --- 所有欄位皆為可選
class JobUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, min_length=1)
    budget: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    category: Optional[JobCategoryEnum] = None

# --- 讀取 (Read / Out) ---
class JobOut(JobBase):
    model_config = ConfigDict(from_attributes=True)

    job_id: str
    client_id: str
    status: JobStatusEnum
    created_at: datetime
    updated_at: Optional[datetime] = None
