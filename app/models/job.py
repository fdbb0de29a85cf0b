# models/job.py
import enum
import uuid
from sqlalchemy import Column, String, TEXT, DECIMAL, TIMESTAMP, ForeignKey, Enum, CHAR
from app.core.database import Base
from app.models.base import utcnow

# 案件狀態機：DRAFT -> OPEN -> CONTRACTED -> IN_PROGRESS -> COMPLETED
class JobStatusEnum(str, enum.Enum):
    draft = "DRAFT"
    open = "OPEN"
    contracted = "CONTRACTED"
    in_progress = "IN_PROGRESS"
    completed = "COMPLETED"

class JobCategoryEnum(str, enum.Enum):
    web_development = "WEB_DEVELOPMENT"
    mobile_development = "MOBILE_DEVELOPMENT"
    design = "DESIGN"
    writing = "WRITING"
    marketing = "MARKETING"
    data = "DATA"
    other = "OTHER"

class Job(Base):
    # 告訴 SQLAlchemy，這個類別對應到資料庫中名為 jobs 的表格 (table)
    __tablename__ = "jobs"

    job_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    client_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(TEXT, nullable=False)
    budget = Column(DECIMAL(12, 2))
    category = Column(
        Enum(JobCategoryEnum, values_callable=lambda obj: [e.value for e in obj]),
        default=JobCategoryEnum.other,
        nullable=False
    )
    # (重要) 只允許 JobService 透過狀態機修改
    status = Column(
        Enum(JobStatusEnum, values_callable=lambda obj: [e.value for e in obj]),
        default=JobStatusEnum.draft,
        nullable=False,
        index=True
    )
    created_at = Column(TIMESTAMP, default=utcnow)
    updated_at = Column(TIMESTAMP, default=utcnow, onupdate=utcnow)
