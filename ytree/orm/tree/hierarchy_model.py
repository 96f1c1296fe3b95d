"""层级表模型

闭包表每行记录一对 (祖先, 子孙) 及两者之间的代数 generations：
- generations = 0 为节点的自身边
- 复合主键 (ancestor_id, ancestor_type, descendant_id, descendant_type) 保证每对节点只有一条边

使用示例:
    from ytree.orm.tree import AbstractHierarchy, create_hierarchy_model

    # 方式1：显式定义
    class CategoryHierarchy(AbstractHierarchy):
        __tablename__ = "category_hierarchy"

    # 方式2：工厂函数
    CategoryHierarchy = create_hierarchy_model("CategoryHierarchy")
"""

from sqlalchemy import Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, declared_attr

from ..id_model import Base
from ..utils import to_snake_case


class HierarchyMixin:
    """层级表字段 Mixin"""

    ancestor_id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=False, comment="祖先节点ID"
    )
    ancestor_type: Mapped[str] = mapped_column(
        String(64), primary_key=True, comment="祖先节点类型"
    )
    descendant_id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=False, comment="子孙节点ID"
    )
    descendant_type: Mapped[str] = mapped_column(
        String(64), primary_key=True, comment="子孙节点类型"
    )
    generations: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="代数（0 为自身）"
    )

    @declared_attr.directive
    def __table_args__(cls):
        table = cls.__tablename__
        return (
            Index(f"ix_{table}_descendant", "descendant_id", "descendant_type"),
            Index(f"ix_{table}_ancestor_gen", "ancestor_id", "ancestor_type", "generations"),
        )

    def __repr__(self):
        return (
            f"<{self.__class__.__name__} "
            f"{self.ancestor_type}#{self.ancestor_id} -> "
            f"{self.descendant_type}#{self.descendant_id} "
            f"g={self.generations}>"
        )


class AbstractHierarchy(HierarchyMixin, Base):
    """层级表抽象基类"""

    __abstract__ = True


def create_hierarchy_model(name: str, table_name: str = None, id_type=Integer, base=None):
    """创建层级表模型类

    Args:
        name: 模型类名
        table_name: 表名，默认由类名转下划线得到
        id_type: 节点主键的列类型，需与节点表主键一致
        base: 声明基类，默认使用 ytree 的 Base

    Returns:
        新的层级表模型类
    """
    namespace = {"__tablename__": table_name or to_snake_case(name)}
    if id_type is not Integer:
        namespace["ancestor_id"] = mapped_column(
            id_type, primary_key=True, autoincrement=False, comment="祖先节点ID"
        )
        namespace["descendant_id"] = mapped_column(
            id_type, primary_key=True, autoincrement=False, comment="子孙节点ID"
        )

    bases = (AbstractHierarchy,) if base is None else (HierarchyMixin, base)
    return type(name, bases, namespace)


__all__ = [
    "HierarchyMixin",
    "AbstractHierarchy",
    "create_hierarchy_model",
]
