"""闭包树字段定义

提供标准的父节点字段定义 Mixin，简化模型定义。

使用示例:
    from ytree.orm import CoreModel
    from ytree.orm.tree import ClosureTreeFieldsMixin, ClosureTreeMixin

    class Category(CoreModel, ClosureTreeFieldsMixin, ClosureTreeMixin):
        name = mapped_column(String(100))
        # parent_id, parent_type, sort_order 由 ClosureTreeFieldsMixin 自动提供
"""

from typing import Optional
from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column


class ClosureTreeParentFieldsMixin:
    """单态层级字段 Mixin

    提供：
    - parent_id: 父节点ID（不带外键约束，父节点可能位于其他表）
    - sort_order: 同级排序序号

    配合 ClosureTreeConfig(parent_type_column_name=None) 使用。
    """

    parent_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        default=None,
        index=True,
        comment="父节点ID"
    )

    sort_order: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        index=True,
        comment="同级排序序号"
    )


class ClosureTreeFieldsMixin(ClosureTreeParentFieldsMixin):
    """多态层级字段 Mixin

    在 ClosureTreeParentFieldsMixin 基础上增加 parent_type，
    父节点可以是层级中注册的任意类型。
    """

    parent_type: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        default=None,
        index=True,
        comment="父节点类型"
    )


__all__ = [
    "ClosureTreeParentFieldsMixin",
    "ClosureTreeFieldsMixin",
]
