"""
数据库连接模块

管理数据库引擎的创建。表结构由外部迁移工具管理，这里不建表。
使用前需确保所有模型（entitlements.models）都已导入。
"""
from sqlmodel import Session, create_engine

from entitlements.core.config import settings

# 连接池在第一次使用时才真正建立连接
engine = create_engine(str(settings.SQLALCHEMY_DATABASE_URI), pool_pre_ping=True)


def init_db(session: Session) -> None:
    """
    初始化数据库（占位函数）

    保留用于未来的种子数据，当前不需要。
    """
    _ = session
