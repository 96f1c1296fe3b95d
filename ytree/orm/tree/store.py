"""层级表存储

HierarchyStore 是唯一写入层级边的组件，提供两类操作：

公开操作（在事务中执行，失败时整体回滚）:
    - insert_node(node, parent)
    - move_node(node, new_parent)
    - delete_node(node, policy)
    - rebuild_all(cancel_event)
    - find_or_create_by_path(path)

闭包原语（只改层级边，由 ParentPointerTracker 在 flush 内部调用）:
    - add_edges / move_edges / remove_edges / assert_can_attach

维护算法:
    挂接：   self_and_ancestors(parent) × self_and_descendants(node)，
             generations = g(parent 侧) + g(node 侧) + 1
    摘除：   删除 子孙 ∈ self_and_descendants(node) 且 祖先 ∈ ancestors(node) 的边
    移动：   摘除 + 挂接
    重建：   清空后按层生成，第 g 层由第 g-1 层经父指针连接得到
"""

from __future__ import annotations

from collections import OrderedDict
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import (
    Integer, String, and_, delete, func, insert, inspect, literal, or_, select, update,
)
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, object_session
from sqlalchemy.orm.attributes import set_committed_value

from ytree.exceptions import ClosureTreeError, Err
from ytree.log import get_logger

from ..transaction import transaction_manager
from .config import DeletePolicy, NodeRef

if TYPE_CHECKING:
    from .closure_tree import ClosureTree

logger = get_logger("ytree.orm.tree")

# 由公开操作直接维护、tracker 应跳过的对象
HANDLED_KEY = "ytree.tree.handled"

_EDGE_COLUMNS = ["ancestor_id", "ancestor_type", "descendant_id", "descendant_type", "generations"]


def _ref_clause(type_col, id_col, refs: Iterable[NodeRef]):
    """(type, id) 集合条件，按类型分组为 type = t AND id IN (...)"""
    grouped: Dict[str, List[Any]] = OrderedDict()
    for ref in refs:
        grouped.setdefault(ref.type, []).append(ref.id)
    return or_(*[and_(type_col == tag, id_col.in_(ids)) for tag, ids in grouped.items()])


def _group_by_type(refs: Iterable[NodeRef]) -> Dict[str, List[Any]]:
    grouped: Dict[str, List[Any]] = OrderedDict()
    for ref in refs:
        grouped.setdefault(ref.type, []).append(ref.id)
    return grouped


class HierarchyStore:
    """层级表存储

    使用示例:
        store = Category.__closure_tree__.store(session)

        store.insert_node(child, parent)
        store.move_node(child, other_parent)
        store.delete_node(parent, DeletePolicy.REPARENT)
        store.rebuild_all()
    """

    def __init__(self, session: Session, tree: "ClosureTree"):
        self.session = session
        self.tree = tree
        self.table = tree.hierarchy_model.__table__

    # ==================== 基础读取 ====================

    def _conn(self):
        return self.session.connection()

    def _is_ancestor(self, ancestor: NodeRef, descendant: NodeRef):
        t = self.table
        return and_(
            t.c.ancestor_id == ancestor.id,
            t.c.ancestor_type == ancestor.type,
            t.c.descendant_id == descendant.id,
            t.c.descendant_type == descendant.type,
        )

    def has_self_edge(self, ref: NodeRef) -> bool:
        stmt = select(self.table.c.generations).where(
            self._is_ancestor(ref, ref), self.table.c.generations == 0
        ).limit(1)
        return self._conn().execute(stmt).first() is not None

    def has_edge(self, ancestor: NodeRef, descendant: NodeRef) -> bool:
        stmt = select(self.table.c.generations).where(self._is_ancestor(ancestor, descendant)).limit(1)
        return self._conn().execute(stmt).first() is not None

    def closure_parent(self, ref: NodeRef) -> Optional[NodeRef]:
        """层级表中记录的父节点（generations = 1 的祖先）"""
        t = self.table
        rows = self._conn().execute(
            select(t.c.ancestor_type, t.c.ancestor_id).where(
                t.c.descendant_id == ref.id,
                t.c.descendant_type == ref.type,
                t.c.generations == 1,
            )
        ).all()
        if len(rows) > 1:
            raise Err.integrity(f"节点 {ref} 存在多个父节点", node=ref)
        return NodeRef(*rows[0]) if rows else None

    def ancestor_refs(self, ref: NodeRef) -> List[NodeRef]:
        """真祖先引用，离节点最近的在前"""
        t = self.table
        rows = self._conn().execute(
            select(t.c.ancestor_type, t.c.ancestor_id).where(
                t.c.descendant_id == ref.id,
                t.c.descendant_type == ref.type,
                t.c.generations > 0,
            ).order_by(t.c.generations)
        ).all()
        return [NodeRef(*row) for row in rows]

    def subtree_refs(self, ref: NodeRef, include_self: bool = True) -> List[NodeRef]:
        return [r for level in self.subtree_levels(ref, include_self) for r in level]

    def subtree_levels(self, ref: NodeRef, include_self: bool = True) -> List[List[NodeRef]]:
        """按代数分层的子树引用，自上而下"""
        t = self.table
        stmt = select(t.c.generations, t.c.descendant_type, t.c.descendant_id).where(
            t.c.ancestor_id == ref.id,
            t.c.ancestor_type == ref.type,
        )
        if not include_self:
            stmt = stmt.where(t.c.generations > 0)
        stmt = stmt.order_by(t.c.generations, t.c.descendant_type, t.c.descendant_id)

        levels: Dict[int, List[NodeRef]] = OrderedDict()
        for generations, tag, node_id in self._conn().execute(stmt).all():
            levels.setdefault(generations, []).append(NodeRef(tag, node_id))
        return list(levels.values())

    def child_refs(self, ref: NodeRef) -> List[NodeRef]:
        """层级表中的直接子节点"""
        t = self.table
        rows = self._conn().execute(
            select(t.c.descendant_type, t.c.descendant_id).where(
                t.c.ancestor_id == ref.id,
                t.c.ancestor_type == ref.type,
                t.c.generations == 1,
            ).order_by(t.c.descendant_type, t.c.descendant_id)
        ).all()
        return [NodeRef(*row) for row in rows]

    def pointer_child_refs(self, ref: NodeRef) -> List[NodeRef]:
        """按父指针查询的直接子节点（延迟维护期间层级边不可信）"""
        refs = []
        for model in self.tree.registry.models:
            id_col = self.tree.id_column(model)
            clause = self.tree.parent_clause(model, ref)
            ids = self._conn().execute(select(id_col).where(clause).order_by(id_col)).scalars()
            tag = self.tree.tag_for(model)
            refs.extend(NodeRef(tag, node_id) for node_id in ids)
        return refs

    def pointer_subtree_levels(self, ref: NodeRef) -> List[List[NodeRef]]:
        """按父指针逐层展开的子树（不含自身），自上而下"""
        levels, seen = [], {ref}
        frontier = [ref]
        while frontier:
            next_frontier = []
            for parent_ref in frontier:
                for child in self.pointer_child_refs(parent_ref):
                    if child in seen:
                        raise Err.cycle(f"父指针存在循环: {child}", node=child, parent=parent_ref)
                    seen.add(child)
                    next_frontier.append(child)
            if next_frontier:
                levels.append(next_frontier)
            frontier = next_frontier
        return levels

    # ==================== 闭包原语 ====================

    def assert_can_attach(self, ref: NodeRef, parent_ref: Optional[NodeRef]) -> None:
        """挂接前的循环检查

        Raises:
            CycleError: parent_ref 是节点自身或其子孙
        """
        if parent_ref is None:
            return
        if parent_ref == ref:
            raise Err.cycle(f"节点 {ref} 不能以自身为父节点", node=ref, parent=parent_ref)
        if self.has_edge(ref, parent_ref):
            raise Err.cycle(
                f"不能将节点 {ref} 移动到其子孙节点 {parent_ref} 下",
                node=ref,
                parent=parent_ref,
            )

    def add_edges(self, ref: NodeRef, parent_ref: Optional[NodeRef]) -> None:
        """为新节点创建自身边及祖先边"""
        if parent_ref == ref:
            raise Err.cycle(f"节点 {ref} 不能以自身为父节点", node=ref, parent=parent_ref)
        if parent_ref is not None and not self.has_self_edge(parent_ref):
            raise Err.integrity(f"父节点 {parent_ref} 缺少自身边", node=ref, parent=parent_ref)

        self._conn().execute(
            insert(self.table).values(
                ancestor_id=ref.id,
                ancestor_type=ref.type,
                descendant_id=ref.id,
                descendant_type=ref.type,
                generations=0,
            )
        )
        if parent_ref is not None:
            self._attach(ref, parent_ref)
        logger.debug(f"创建层级边: {ref} parent={parent_ref}")

    def move_edges(self, ref: NodeRef, parent_ref: Optional[NodeRef]) -> bool:
        """把节点及其子树移动到新父节点下

        Returns:
            是否发生了移动（父节点未变化时返回 False）
        """
        self.assert_can_attach(ref, parent_ref)
        if self.closure_parent(ref) == parent_ref:
            return False

        self._detach(ref)
        if parent_ref is not None:
            self._attach(ref, parent_ref)
        logger.debug(f"移动层级边: {ref} -> {parent_ref}")
        return True

    def sync_edges(self, ref: NodeRef, parent_ref: Optional[NodeRef]) -> None:
        """让层级表与节点的父指针一致：没有自身边则创建，否则移动"""
        if self.has_self_edge(ref):
            self.move_edges(ref, parent_ref)
        else:
            self.add_edges(ref, parent_ref)

    def remove_edges(
        self,
        ref: NodeRef,
        policy: DeletePolicy = None,
        deferred: bool = False,
    ) -> List[Any]:
        """删除节点前处理子节点和层级边

        Args:
            ref: 将被删除的节点
            policy: 删除策略，默认使用配置中的 dependent
            deferred: 延迟维护模式，只处理父指针和记录，不维护层级边

        Returns:
            级联删除中通过 session.delete() 删除的已加载对象
        """
        policy = DeletePolicy(policy or self.tree.config.dependent)
        deleted: List[Any] = []

        if policy == DeletePolicy.CASCADE:
            if deferred:
                levels = self.pointer_subtree_levels(ref)
            else:
                levels = self.subtree_levels(ref, include_self=False)
            subtree = [r for level in levels for r in level]
            deleted = self._delete_records(list(reversed(levels)))
            if subtree and not deferred:
                t = self.table
                self._conn().execute(
                    delete(t).where(_ref_clause(t.c.descendant_type, t.c.descendant_id, subtree))
                )
        else:
            children = self.pointer_child_refs(ref) if deferred else self.child_refs(ref)
            new_parent = None
            if policy == DeletePolicy.REPARENT:
                if deferred:
                    new_parent = self._pointer_parent(ref)
                else:
                    new_parent = self.closure_parent(ref)
            if children:
                if not deferred:
                    for child in children:
                        self._detach(child)
                        if new_parent is not None:
                            self._attach(child, new_parent)
                self.write_pointers(children, new_parent)

        if not deferred:
            t = self.table
            self._conn().execute(
                delete(t).where(or_(
                    and_(t.c.ancestor_id == ref.id, t.c.ancestor_type == ref.type),
                    and_(t.c.descendant_id == ref.id, t.c.descendant_type == ref.type),
                ))
            )
        logger.debug(f"删除层级边: {ref} policy={policy.value} deferred={deferred}")
        return deleted

    def _attach(self, ref: NodeRef, parent_ref: NodeRef) -> int:
        """插入 self_and_ancestors(parent) × self_and_descendants(node)"""
        if not self.has_self_edge(parent_ref):
            raise Err.integrity(f"父节点 {parent_ref} 缺少自身边", node=ref, parent=parent_ref)

        p = self.table.alias("p")
        c = self.table.alias("c")
        stmt = insert(self.table).from_select(
            _EDGE_COLUMNS,
            select(
                p.c.ancestor_id,
                p.c.ancestor_type,
                c.c.descendant_id,
                c.c.descendant_type,
                p.c.generations + c.c.generations + 1,
            ).where(
                p.c.descendant_id == parent_ref.id,
                p.c.descendant_type == parent_ref.type,
                c.c.ancestor_id == ref.id,
                c.c.ancestor_type == ref.type,
            ),
        )
        return self._conn().execute(stmt).rowcount

    def _detach(self, ref: NodeRef) -> int:
        """删除子树与节点真祖先之间的边，子树内部的边保持不变"""
        ancestors = self.ancestor_refs(ref)
        if not ancestors:
            return 0
        subtree = self.subtree_refs(ref)
        t = self.table
        stmt = delete(t).where(
            _ref_clause(t.c.ancestor_type, t.c.ancestor_id, ancestors),
            _ref_clause(t.c.descendant_type, t.c.descendant_id, subtree),
        )
        return self._conn().execute(stmt).rowcount

    def _pointer_parent(self, ref: NodeRef) -> Optional[NodeRef]:
        model = self.tree.registry.model_for(ref.type)
        node = self.session.get(model, ref.id)
        return self.tree.read_parent(node) if node is not None else None

    # ==================== 记录写入 ====================

    def _loaded(self, ref: NodeRef):
        model = self.tree.registry.model_for(ref.type)
        return self.session.identity_map.get(self.session.identity_key(model, ref.id))

    def write_pointers(self, refs: Sequence[NodeRef], parent_ref: Optional[NodeRef]) -> None:
        """批量改写节点的父指针，同步已加载对象的已提交值"""
        for tag, ids in _group_by_type(refs).items():
            model = self.tree.registry.model_for(tag)
            values = self.tree.parent_values(parent_ref)
            id_col = self.tree.id_column(model)
            self._conn().execute(
                update(id_col.table).where(id_col.in_(ids)).values(
                    {self.tree.column(model, key): value for key, value in values.items()}
                )
            )
            for node_id in ids:
                obj = self._loaded(NodeRef(tag, node_id))
                if obj is not None:
                    for key, value in values.items():
                        set_committed_value(obj, key, value)

    def _delete_records(self, levels: Sequence[Sequence[NodeRef]]) -> List[Any]:
        """逐层删除记录，levels 最深的一层在前

        已加载的对象走 session.delete()，其余每层每种类型一条 DELETE。
        """
        deleted = []
        for level in levels:
            unloaded = []
            for ref in level:
                obj = self._loaded(ref)
                if obj is None:
                    unloaded.append(ref)
                elif obj not in self.session.deleted:
                    self.session.delete(obj)
                    deleted.append(obj)
            for tag, ids in _group_by_type(unloaded).items():
                id_col = self.tree.id_column(self.tree.registry.model_for(tag))
                self._conn().execute(delete(id_col.table).where(id_col.in_(ids)))
        return deleted

    # ==================== 全量重建 ====================

    def _rebuild(self, cancel_event=None) -> int:
        """清空并按层重建层级表（不管理事务）

        Returns:
            写入的边数
        """
        t = self.table
        conn = self._conn()
        conn.execute(delete(t))

        registry = self.tree.registry
        base_tag = self.tree.base_tag
        total = 0
        node_count = 0

        for model in registry.models:
            tag = registry.tag_for(model)
            id_col = self.tree.id_column(model)
            node_count += conn.execute(select(func.count()).select_from(id_col.table)).scalar()
            total += conn.execute(
                insert(t).from_select(
                    _EDGE_COLUMNS,
                    select(
                        id_col.label("ancestor_id"),
                        literal(tag, String).label("ancestor_type"),
                        id_col.label("descendant_id"),
                        literal(tag, String).label("descendant_type"),
                        literal(0, Integer).label("generations"),
                    ),
                )
            ).rowcount

        generation = 1
        while True:
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(f"闭包表重建在第 {generation} 层取消")
                raise Err.cancelled(generation=generation)
            if generation > node_count + 1:
                raise Err.cycle(f"父指针存在循环（层数超过节点数 {node_count}）")

            inserted = 0
            for model in registry.models:
                tag = registry.tag_for(model)
                id_col = self.tree.id_column(model)
                parent_col, parent_type_col = self.tree.parent_table_columns(model)
                # parent_type 为空的父指针指向基础类型
                if parent_type_col is None:
                    parent_type_col = literal(base_tag, String)
                else:
                    parent_type_col = func.coalesce(parent_type_col, literal(base_tag, String))
                stmt = insert(t).from_select(
                    _EDGE_COLUMNS,
                    select(
                        t.c.ancestor_id,
                        t.c.ancestor_type,
                        id_col,
                        literal(tag, String),
                        literal(generation, Integer),
                    ).select_from(
                        id_col.table.join(
                            t,
                            and_(
                                t.c.descendant_id == parent_col,
                                t.c.descendant_type == parent_type_col,
                                t.c.generations == generation - 1,
                            ),
                        )
                    ),
                )
                try:
                    inserted += conn.execute(stmt).rowcount
                except IntegrityError as e:
                    raise Err.cycle(f"父指针存在循环（第 {generation} 层出现重复边）") from e

            if inserted == 0:
                break
            total += inserted
            generation += 1

        logger.info(f"闭包表重建完成: {self.tree.base_tag} {total} 条层级边, 最大深度 {generation - 1}")
        return total

    # ==================== 公开操作 ====================

    @contextmanager
    def _transaction(self, operation: str):
        """在事务中执行，数据库错误转换为闭包树异常"""
        try:
            with transaction_manager.transaction(session=self.session) as tx:
                tx.record(operation)
                yield
        except ClosureTreeError:
            raise
        except IntegrityError as e:
            logger.error(f"层级表完整性错误: {e.orig}")
            raise Err.integrity(f"层级表完整性错误: {e.orig}") from e
        except DBAPIError as e:
            logger.warning(f"事务中止: {e.orig}")
            raise Err.aborted(original_error=e) from e

    @contextmanager
    def _handling(self, *objs):
        """标记由本次操作直接维护的对象，flush 时 tracker 跳过它们"""
        handled = self.session.info.setdefault(HANDLED_KEY, set())
        keys = set()

        def mark(obj):
            keys.add(id(obj))
            handled.add(id(obj))

        for obj in objs:
            mark(obj)
        try:
            yield mark
        finally:
            handled.difference_update(keys)

    def _flush_parent(self, node, parent) -> NodeRef:
        """写入父指针并 flush，返回节点引用"""
        self.tree.write_parent(node, parent)
        if object_session(node) is None:
            self.session.add(node)
        with self._handling(node):
            self.session.flush()
        return self.tree.ref_for(node)

    def insert_node(self, node, parent=None):
        """把节点插入层级

        已经在层级中的节点按移动处理。

        Args:
            node: 节点对象（新建或已持久化）
            parent: 父节点对象，None 表示作为根节点

        Raises:
            CycleError: parent 是节点自身或其子孙
            IntegrityViolationError: 父节点缺少自身边
        """
        if parent is node:
            raise Err.cycle("节点不能以自身为父节点")

        deferred = self.tree.is_deferred(self.session)
        with self._transaction("insert_node"):
            if inspect(node).persistent and (deferred or self.has_self_edge(self.tree.ref_for(node))):
                self._move(node, parent)
                return node

            parent_ref = self.tree.ref_for(parent) if parent is not None else None
            # 延迟维护期间层级边不可信，只写父指针
            if deferred:
                self._flush_parent(node, parent)
                return node
            if parent_ref is not None and not self.has_self_edge(parent_ref):
                raise Err.integrity(f"父节点 {parent_ref} 缺少自身边", parent=parent_ref)
            ref = self._flush_parent(node, parent)
            self.sync_edges(ref, parent_ref)
        return node

    def move_node(self, node, new_parent=None):
        """移动节点到新的父节点下，子树随之移动

        Args:
            node: 节点对象
            new_parent: 新父节点对象，None 表示移动为根节点

        Returns:
            是否发生了移动

        Raises:
            CycleError: new_parent 是节点自身或其子孙，层级表保持不变
        """
        with self._transaction("move_node"):
            return self._move(node, new_parent)

    def _move(self, node, new_parent) -> bool:
        ref = self.tree.ref_for(node)
        parent_ref = self.tree.ref_for(new_parent) if new_parent is not None else None

        if self.tree.is_deferred(self.session):
            if parent_ref == ref:
                raise Err.cycle(f"节点 {ref} 不能以自身为父节点", node=ref, parent=parent_ref)
            self._flush_parent(node, new_parent)
            return True

        self.assert_can_attach(ref, parent_ref)
        if self.tree.read_parent(node) == parent_ref and self.closure_parent(ref) == parent_ref:
            return False
        self._flush_parent(node, new_parent)
        if not self.has_self_edge(ref):
            self.add_edges(ref, parent_ref)
            return True
        return self.move_edges(ref, parent_ref)

    def delete_node(self, node, policy: DeletePolicy = None) -> None:
        """删除节点

        Args:
            node: 节点对象
            policy: 删除策略，默认使用配置中的 dependent
        """
        policy = DeletePolicy(policy or self.tree.config.dependent)
        with self._transaction("delete_node"):
            ref = self.tree.ref_for(node)
            with self._handling(node) as mark:
                deleted = self.remove_edges(ref, policy, deferred=self.tree.is_deferred(self.session))
                for obj in deleted:
                    mark(obj)
                self.session.delete(node)
                self.session.flush()
            logger.debug(f"删除节点: {ref} policy={policy.value}")

    def rebuild_all(self, cancel_event=None) -> int:
        """全量重建层级表

        Args:
            cancel_event: 可选的 threading.Event，层与层之间检查，置位后回滚并抛出 RebuildCancelledError

        Returns:
            写入的边数

        Raises:
            CycleError: 父指针存在循环
            RebuildCancelledError: 重建被取消
        """
        with self._transaction("rebuild_all"):
            self.session.flush()
            return self._rebuild(cancel_event)

    def find_or_create_by_path(self, path: Sequence[str], attributes: dict = None, model: type = None):
        """按名称路径查找节点，缺失的节点逐级创建

        Args:
            path: 从根开始的名称列表
            attributes: 新建节点时额外设置的字段
            model: 节点类型，默认使用基础类型

        Returns:
            路径末端的节点
        """
        if not path:
            raise ValueError("path 不能为空")
        model = model or self.tree.base_model
        name_column = self.tree.config.name_column
        query = self.tree.query(self.session)

        with self._transaction("find_or_create_by_path"):
            parent = None
            for name in path:
                node = query.find_child_by_name(model, parent, name)
                if node is None:
                    node = model(**{name_column: name, **(attributes or {})})
                    self.insert_node(node, parent)
                    logger.debug(f"按路径创建节点: {name}")
                parent = node
            return parent


__all__ = [
    "HANDLED_KEY",
    "HierarchyStore",
]
