"""闭包树

ClosureTree 为一个层级（可跨越多种记录类型）组装配置、类型注册表、
层级表模型、存储、查询引擎和父指针跟踪器。

使用示例:
    from ytree.orm import CoreModel
    from ytree.orm.tree import ClosureTree, ClosureTreeFieldsMixin, ClosureTreeMixin

    class Project(CoreModel, ClosureTreeFieldsMixin, ClosureTreeMixin):
        name = mapped_column(String(100))

    class Task(CoreModel, ClosureTreeFieldsMixin, ClosureTreeMixin):
        name = mapped_column(String(100))

    tree = ClosureTree(Project, dependent="cascade")
    tree.register(Task)
    tree.install()

    with db_session_scope() as session:
        root = Project(name="根")
        session.add(root)
        session.flush()
        task = Task(name="任务")
        tree.write_parent(task, root)
        session.add(task)
    # flush 时自动维护层级表
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from sqlalchemy import and_, false, inspect, or_
from sqlalchemy.orm import Session

from ytree.log import get_logger

from .config import ClosureTreeConfig, NodeRef
from .hierarchy_model import create_hierarchy_model
from .query import QueryEngine
from .resolver import LookupFunc, TypeRegistry
from .store import HierarchyStore
from .tracker import ParentPointerTracker

logger = get_logger("ytree.orm.tree")

DEFERRED_KEY = "ytree.tree.deferred"


class ClosureTree:
    """闭包树

    Args:
        model: 基础节点类型
        hierarchy_model: 层级表模型，不传则按 {表名}{后缀} 自动创建
        config: ClosureTreeConfig，不传则由 ClosureTreeSettings 和 options 构建
        tag: 基础类型的类型标签
        lookup: 基础类型的批量查询函数
        **options: 覆盖配置字段（仅在未传 config 时生效）
    """

    def __init__(
        self,
        model: type,
        hierarchy_model: type = None,
        config: ClosureTreeConfig = None,
        tag: str = None,
        lookup: LookupFunc = None,
        **options,
    ):
        self.config = config or ClosureTreeConfig.from_settings(**options)
        self.base_model = model
        self.registry = TypeRegistry()
        self._check_columns(model)
        self.base_tag = self.registry.register(model, tag=tag, lookup=lookup)
        model.__closure_tree__ = self

        if hierarchy_model is None:
            table_name = f"{model.__tablename__}{self.config.hierarchy_table_suffix}"
            hierarchy_model = create_hierarchy_model(f"{model.__name__}Hierarchy", table_name=table_name)
        self.hierarchy_model = hierarchy_model
        self.tracker = ParentPointerTracker(self)

    def __repr__(self) -> str:
        return f"<ClosureTree {self.base_tag} kinds={self.registry.tags}>"

    # ==================== 类型注册 ====================

    def register(self, model: type, tag: str = None, lookup: LookupFunc = None) -> type:
        """把另一种记录类型加入层级

        Returns:
            model，便于作为类装饰器使用
        """
        self._check_columns(model)
        self.registry.register(model, tag=tag, lookup=lookup)
        model.__closure_tree__ = self
        return model

    def _check_columns(self, model: type) -> None:
        columns = inspect(model).columns
        for key in ("id",) + self.config.parent_columns:
            if key not in columns:
                raise ValueError(f"{model.__name__} 缺少层级字段: {key}")

    def hierarchical_subclasses(self) -> List[type]:
        """层级中所有登记的记录类型"""
        return self.registry.models

    def manages(self, obj) -> bool:
        return self.registry.is_registered(type(obj))

    # ==================== 节点读写 ====================

    def tag_for(self, node_or_class) -> str:
        return self.registry.tag_for(node_or_class)

    def ref_for(self, node) -> NodeRef:
        if isinstance(node, NodeRef):
            return node
        return self.registry.ref_for(node)

    def read_parent(self, node) -> Optional[NodeRef]:
        """节点父指针对应的引用，根节点返回 None"""
        parent_id = getattr(node, self.config.parent_column_name)
        if parent_id is None:
            return None
        parent_type = None
        if self.config.parent_type_column_name:
            parent_type = getattr(node, self.config.parent_type_column_name)
        return NodeRef(parent_type or self.base_tag, parent_id)

    def parent_values(self, parent_ref: Optional[NodeRef]) -> Dict[str, Any]:
        """父指针字段的取值"""
        values = {self.config.parent_column_name: parent_ref.id if parent_ref else None}
        if self.config.parent_type_column_name:
            values[self.config.parent_type_column_name] = parent_ref.type if parent_ref else None
        return values

    def write_parent(self, node, parent: Union[Any, NodeRef, None]) -> None:
        """设置节点的父指针（不 flush）"""
        parent_ref = self.ref_for(parent) if parent is not None else None
        for key, value in self.parent_values(parent_ref).items():
            setattr(node, key, value)

    def parent_changed(self, node) -> bool:
        state = inspect(node)
        return any(state.attrs[key].history.has_changes() for key in self.config.parent_columns)

    # ==================== 列与条件 ====================

    def column(self, model: type, key: str):
        """属性名对应的表列"""
        return inspect(model).columns[key]

    def id_column(self, model: type):
        return self.column(model, "id")

    def parent_table_columns(self, model: type) -> Tuple[Any, Optional[Any]]:
        parent_col = self.column(model, self.config.parent_column_name)
        parent_type_col = None
        if self.config.parent_type_column_name:
            parent_type_col = self.column(model, self.config.parent_type_column_name)
        return parent_col, parent_type_col

    def parent_clause(self, model: type, parent_ref: Optional[NodeRef]):
        """父指针等于 parent_ref 的条件，parent_ref 为 None 时匹配根节点"""
        parent_col, parent_type_col = self.parent_table_columns(model)
        if parent_ref is None:
            return parent_col.is_(None)
        if parent_type_col is None:
            if parent_ref.type != self.base_tag:
                return false()
            return parent_col == parent_ref.id
        if parent_ref.type == self.base_tag:
            return and_(
                parent_col == parent_ref.id,
                or_(parent_type_col == parent_ref.type, parent_type_col.is_(None)),
            )
        return and_(parent_col == parent_ref.id, parent_type_col == parent_ref.type)

    # ==================== 组件 ====================

    def _session(self, session: Optional[Session]) -> Session:
        if session is not None:
            return session
        from ..db_session import db_manager
        return db_manager.get_session()

    def store(self, session: Session = None) -> HierarchyStore:
        return HierarchyStore(self._session(session), self)

    def query(self, session: Session = None) -> QueryEngine:
        return QueryEngine(self._session(session), self)

    def install(self, target=Session) -> "ClosureTree":
        """启用父指针跟踪"""
        self.tracker.install(target)
        return self

    def uninstall(self) -> None:
        self.tracker.uninstall()

    # ==================== 延迟维护 ====================

    @property
    def _deferred_key(self):
        return (DEFERRED_KEY, id(self))

    def is_deferred(self, session: Session) -> bool:
        return bool(session.info.get(self._deferred_key, False))

    @contextmanager
    def deferred_maintenance(self, session: Session) -> Iterator[HierarchyStore]:
        """批量导入时暂停增量维护，退出时执行一次全量重建

        使用示例:
            with tree.deferred_maintenance(session):
                for row in rows:
                    session.add(Category(**row))
            # 退出时 flush 并 rebuild_all
        """
        key = self._deferred_key
        previous = session.info.get(key, False)
        session.info[key] = True
        store = self.store(session)
        try:
            yield store
            session.flush()
        finally:
            session.info[key] = previous

        if not previous:
            logger.info(f"延迟维护结束，重建层级表: {self.base_tag}")
            store.rebuild_all()


__all__ = [
    "ClosureTree",
]
