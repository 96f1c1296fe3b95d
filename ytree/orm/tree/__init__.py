"""闭包树扩展模块

使用闭包表（Closure Table）模式维护层级：层级表记录每一对 (祖先, 子孙) 及其代数，
节点父指针变化时在同一事务内增量维护，支持跨多种记录类型的多态层级。

主要组件:
- ClosureTree: 组装一个层级的配置、类型注册表、存储、查询和跟踪器
- HierarchyStore: 层级表写入（插入/移动/删除/重建）
- QueryEngine: 层级查询
- ParentPointerTracker: 基于 flush 事件的父指针跟踪
- TypeRegistry: 多态类型解析
- ClosureTreeMixin / ClosureTreeFieldsMixin: 模型 Mixin
- 工具函数: hash tree 构建与转换

使用示例:
    from ytree.orm import CoreModel
    from ytree.orm.tree import ClosureTree, ClosureTreeFieldsMixin, ClosureTreeMixin

    class Category(CoreModel, ClosureTreeFieldsMixin, ClosureTreeMixin):
        name = mapped_column(String(100))

    tree = ClosureTree(Category).install()

    root = Category(name="根").save(commit=True)
    child = root.add_child(Category(name="子"))
    child.get_ancestors()      # [root]
    root.get_descendants()     # [child]
    Category.rebuild_hierarchy()
"""

from .config import (
    ClosureTreeConfig,
    DeletePolicy,
    MaintenanceStrategy,
    NodeRef,
)
from .hierarchy_model import (
    HierarchyMixin,
    AbstractHierarchy,
    create_hierarchy_model,
)
from .tree_fields import ClosureTreeFieldsMixin, ClosureTreeParentFieldsMixin
from .resolver import TypeRegistry, default_type_tag
from .store import HierarchyStore
from .query import QueryEngine
from .tracker import ParentPointerTracker
from .closure_tree import ClosureTree
from .tree_mixin import ClosureTreeMixin
from .tree_utils import (
    hash_tree,
    hash_tree_to_list,
    iter_hash_tree,
    hash_tree_depth,
)

__all__ = [
    # 配置
    "ClosureTreeConfig",
    "DeletePolicy",
    "MaintenanceStrategy",
    "NodeRef",

    # 层级表
    "HierarchyMixin",
    "AbstractHierarchy",
    "create_hierarchy_model",

    # 组件
    "ClosureTree",
    "HierarchyStore",
    "QueryEngine",
    "ParentPointerTracker",
    "TypeRegistry",
    "default_type_tag",

    # Mixin 类
    "ClosureTreeMixin",
    "ClosureTreeFieldsMixin",
    "ClosureTreeParentFieldsMixin",

    # 工具函数
    "hash_tree",
    "hash_tree_to_list",
    "iter_hash_tree",
    "hash_tree_depth",
]
