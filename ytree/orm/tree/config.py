"""闭包树配置

每个层级一份 ClosureTreeConfig，在构造 ClosureTree 时显式传入，
由 HierarchyStore、QueryEngine 和 ParentPointerTracker 共同读取。

使用示例:
    from ytree.orm.tree import ClosureTreeConfig, DeletePolicy

    config = ClosureTreeConfig(dependent=DeletePolicy.CASCADE, order_column="position")
    config = ClosureTreeConfig.from_settings(parent_type_column_name=None)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, NamedTuple, Optional


class DeletePolicy(str, Enum):
    """删除节点时对子节点的处理策略"""

    ORPHAN = "orphan"        # 子节点成为根节点
    REPARENT = "reparent"    # 子节点挂到被删节点的父节点下
    CASCADE = "cascade"      # 删除整棵子树


class MaintenanceStrategy(str, Enum):
    """闭包表维护策略"""

    INCREMENTAL = "incremental"  # 按变更增量维护
    REBUILD = "rebuild"          # 每次 flush 后全量重建


class NodeRef(NamedTuple):
    """节点引用：(类型标签, 主键)"""

    type: str
    id: Any

    def __str__(self) -> str:
        return f"{self.type}#{self.id}"


@dataclass
class ClosureTreeConfig:
    """闭包树配置

    Attributes:
        parent_column_name: 父节点ID字段名
        parent_type_column_name: 父节点类型字段名，None 表示单态层级（父节点类型恒为基础类型）
        order_column: 同级排序字段名，None 表示只按主键排序
        name_column: ancestry_path / find_by_path 使用的名称字段
        dependent: 默认删除策略
        strategy: 维护策略
        hierarchy_table_suffix: 自动创建层级表时使用的表名后缀
    """

    parent_column_name: str = "parent_id"
    parent_type_column_name: Optional[str] = "parent_type"
    order_column: Optional[str] = "sort_order"
    name_column: str = "name"
    dependent: DeletePolicy = DeletePolicy.ORPHAN
    strategy: MaintenanceStrategy = MaintenanceStrategy.INCREMENTAL
    hierarchy_table_suffix: str = "_hierarchy"

    def __post_init__(self):
        self.dependent = DeletePolicy(self.dependent)
        self.strategy = MaintenanceStrategy(self.strategy)

    @property
    def parent_columns(self) -> tuple:
        """父节点相关的字段名"""
        if self.parent_type_column_name:
            return (self.parent_column_name, self.parent_type_column_name)
        return (self.parent_column_name,)

    @classmethod
    def from_settings(cls, settings=None, **overrides) -> "ClosureTreeConfig":
        """从 ClosureTreeSettings 构建配置

        Args:
            settings: ClosureTreeSettings 实例，不传则从环境变量读取
            **overrides: 覆盖 settings 中的同名字段
        """
        if settings is None:
            from ytree.config import ClosureTreeSettings
            settings = ClosureTreeSettings()

        values = {
            "parent_column_name": settings.parent_column_name,
            "parent_type_column_name": settings.parent_type_column_name,
            "order_column": settings.order_column,
            "name_column": settings.name_column,
            "dependent": settings.dependent,
            "strategy": settings.strategy,
            "hierarchy_table_suffix": settings.hierarchy_table_suffix,
        }
        values.update(overrides)
        return cls(**values)


__all__ = [
    "DeletePolicy",
    "MaintenanceStrategy",
    "NodeRef",
    "ClosureTreeConfig",
]
