"""ID模型基类

提供自增整数主键。闭包表中的 ancestor_id / descendant_id 与节点主键同类型。
"""

from __future__ import annotations

from sqlalchemy import Column, Integer
from sqlalchemy.orm import declared_attr, declarative_base, Mapped


# 声明基类
Base = declarative_base()


class IdModel(Base):
    """ID模型基类

    一般情况下应该使用 CoreModel，而不是直接使用 IdModel。

    使用示例:
        class Category(IdModel):
            __tablename__ = "category"
            name = Column(String(50))
    """
    __abstract__ = True

    id: Mapped[int]

    @declared_attr
    def id(cls):
        """自增主键字段"""
        return Column(Integer, primary_key=True, autoincrement=True, comment='主键ID')
