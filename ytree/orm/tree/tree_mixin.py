"""闭包树 Mixin

为模型提供层级操作方法，查询委托给 QueryEngine，写入委托给 HierarchyStore。

闭包表模式说明：
    - 层级表为每一对 (祖先, 子孙) 存一条边，并记录代数 generations
    - 优点：祖先/子孙/深度查询都是单次索引查询，不需要递归
    - 缺点：移动节点时需要重写整棵子树与旧祖先之间的边

使用示例:
    from ytree.orm import CoreModel
    from ytree.orm.tree import ClosureTree, ClosureTreeFieldsMixin, ClosureTreeMixin

    class Menu(CoreModel, ClosureTreeFieldsMixin, ClosureTreeMixin):
        title = mapped_column(String(100))

    ClosureTree(Menu, name_column="title").install()

    menu = Menu.get(1)
    children = menu.get_children()       # 直接子节点
    descendants = menu.get_descendants() # 所有子孙
    ancestors = menu.get_ancestors()     # 所有祖先（根在前）
    menu.move_to(other_menu)             # 移动节点
"""

from typing import TYPE_CHECKING, Any, ClassVar, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session, object_session

from .tree_utils import hash_tree_to_list

if TYPE_CHECKING:
    from .closure_tree import ClosureTree
    from .query import QueryEngine
    from .store import HierarchyStore


class ClosureTreeMixin:
    """闭包树 Mixin

    模型需要先通过 ClosureTree(Model) 或 tree.register(Model) 加入层级。
    """

    __closure_tree__: ClassVar["ClosureTree"] = None

    # ==================== 内部工具 ====================

    @classmethod
    def _get_tree(cls) -> "ClosureTree":
        tree = getattr(cls, "__closure_tree__", None)
        if tree is None:
            raise RuntimeError(f"{cls.__name__} 尚未加入闭包树，请先调用 ClosureTree({cls.__name__})")
        return tree

    def _tree_session(self) -> Session:
        return object_session(self) or self.session

    def _tree_query(self) -> "QueryEngine":
        return self._get_tree().query(self._tree_session())

    def _tree_store(self) -> "HierarchyStore":
        return self._get_tree().store(self._tree_session())

    # ==================== 节点查询方法 ====================

    def get_parent(self):
        """获取父节点，根节点返回 None"""
        return self._tree_query().parent(self)

    def get_children(self) -> List:
        """获取同类型直接子节点，按排序字段排序"""
        return self._tree_query().children(self)

    def get_poly_children(self) -> List:
        """获取所有类型的直接子节点"""
        return self._tree_query().poly_children(self)

    def get_ancestors(self) -> List:
        """获取所有祖先节点

        Returns:
            祖先节点列表，从根节点开始排序
        """
        return self._tree_query().ancestors(self)

    def get_self_and_ancestors(self) -> List:
        return self._tree_query().self_and_ancestors(self)

    def get_poly_ancestors(self) -> List:
        return self._tree_query().poly_ancestors(self)

    def get_descendants(self) -> List:
        """获取所有子孙节点

        Returns:
            子孙节点列表，按代数和排序字段排序
        """
        return self._tree_query().descendants(self)

    def get_self_and_descendants(self) -> List:
        return self._tree_query().self_and_descendants(self)

    def get_poly_descendants(self) -> List:
        return self._tree_query().poly_descendants(self)

    def get_siblings(self) -> List:
        """获取兄弟节点（不包含自己）"""
        return self._tree_query().siblings(self)

    def get_self_and_siblings(self) -> List:
        return self._tree_query().self_and_siblings(self)

    def get_leaves(self) -> List:
        """获取子树中的叶子节点（含自身）"""
        return self._tree_query().leaves(self)

    def get_root(self):
        """获取同类型根节点"""
        return self._tree_query().root(self)

    def get_poly_root(self):
        """获取所有类型中的根节点"""
        return self._tree_query().poly_root(self)

    def get_depth(self) -> int:
        """获取节点深度（真祖先数量，根节点为0）"""
        return self._tree_query().depth(self)

    # ==================== 节点状态判断 ====================

    def is_root(self) -> bool:
        """判断是否为根节点"""
        return self._tree_query().is_root(self)

    def is_leaf(self) -> bool:
        """判断是否为叶子节点（层级表中无直接子节点）"""
        return self._tree_query().is_leaf(self)

    def is_child(self) -> bool:
        return self._tree_query().is_child(self)

    def is_ancestor_of(self, node) -> bool:
        """判断当前节点是否为指定节点的祖先"""
        return self._tree_query().is_ancestor_of(self, node)

    def is_descendant_of(self, node) -> bool:
        """判断当前节点是否为指定节点的子孙"""
        return self._tree_query().is_descendant_of(self, node)

    def is_parent_of(self, node) -> bool:
        return self._tree_query().is_parent_of(self, node)

    def is_child_of(self, node) -> bool:
        return self._tree_query().is_child_of(self, node)

    def is_root_of(self, node) -> bool:
        return self._tree_query().is_root_of(self, node)

    def is_family_of(self, node) -> bool:
        """判断两个节点是否在同一棵树中"""
        return self._tree_query().is_family_of(self, node)

    # ==================== 节点操作方法 ====================

    def move_to(self, new_parent) -> bool:
        """移动节点到新的父节点下

        子孙节点随之移动。

        Args:
            new_parent: 新父节点对象，None 表示移动为根节点

        Returns:
            是否发生了移动

        Raises:
            CycleError: 新父节点是当前节点自身或其子孙
        """
        return self._tree_store().move_node(self, new_parent)

    def add_child(self, child):
        """添加子节点，已在层级中的节点会被移动过来

        Returns:
            child
        """
        return self._tree_store().insert_node(child, self)

    def delete_node(self, policy=None) -> None:
        """按删除策略删除当前节点"""
        self._tree_store().delete_node(self, policy)

    # ==================== 统计方法 ====================

    def get_descendant_count(self) -> int:
        """获取同类型子孙节点数量"""
        return len(self._tree_query().descendant_ids(self))

    def get_children_count(self) -> int:
        """获取同类型直接子节点数量"""
        return len(self._tree_query().child_ids(self))

    # ==================== 便捷方法 ====================

    def get_path_names(self, separator: str = " > ", name_field: str = None) -> str:
        """获取完整路径名称

        Returns:
            完整路径名称，如 "一级 > 二级 > 三级"
        """
        names = self._tree_query().ancestry_path(self, name_field)
        return separator.join(str(name) for name in names if name)

    def get_path_ids(self) -> List[Any]:
        """获取从根到当前节点的 ID 列表"""
        return self._tree_query().self_and_ancestor_ids(self)

    def get_hash_tree(self, limit_depth: int = None) -> Dict[Any, dict]:
        """以当前节点为根的嵌套字典"""
        return self._tree_query().hash_tree(self, limit_depth)

    def get_tree_list(self, limit_depth: int = None) -> List[dict]:
        """以当前节点为根的嵌套列表"""
        return hash_tree_to_list(self.get_hash_tree(limit_depth))

    # ==================== 类方法 ====================

    @classmethod
    def _class_session(cls, session: Optional[Session]) -> Session:
        if session is not None:
            return session
        query = getattr(cls, "query", None)
        if query is not None:
            return query.session
        from ..db_session import db_manager
        return db_manager.get_session()

    @classmethod
    def get_roots(cls, session: Session = None) -> List:
        """获取当前类型的所有根节点"""
        return cls._get_tree().query(cls._class_session(session)).roots(cls)

    @classmethod
    def get_forest_hash_tree(cls, limit_depth: int = None, session: Session = None) -> Dict[Any, dict]:
        """基础类型整片森林的嵌套字典"""
        return cls._get_tree().query(cls._class_session(session)).hash_tree(None, limit_depth)

    @classmethod
    def rebuild_hierarchy(cls, session: Session = None, cancel_event=None) -> int:
        """全量重建层级表

        Returns:
            写入的边数
        """
        return cls._get_tree().store(cls._class_session(session)).rebuild_all(cancel_event)

    @classmethod
    def hierarchical_subclasses(cls) -> List[type]:
        return cls._get_tree().hierarchical_subclasses()

    @classmethod
    def find_by_path(cls, path: Sequence[str], session: Session = None):
        """按名称路径查找节点，如 ["电子", "手机", "安卓"]"""
        return cls._get_tree().query(cls._class_session(session)).find_by_path(path, model=cls)

    @classmethod
    def find_or_create_by_path(cls, path: Sequence[str], attributes: dict = None, session: Session = None):
        """按名称路径查找节点，缺失的逐级创建"""
        store = cls._get_tree().store(cls._class_session(session))
        return store.find_or_create_by_path(path, attributes=attributes, model=cls)


__all__ = ["ClosureTreeMixin"]
