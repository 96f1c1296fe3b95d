"""父指针跟踪

通过 SQLAlchemy Session 的 flush 事件观察层级节点父字段的变化，
在同一个 flush 事务中驱动 HierarchyStore 维护层级边：

    before_flush:  父字段变化的节点做循环检查（写入之前）；
                   被删除的节点按删除策略处理子节点和层级边
    after_flush:   主键已分配；新节点创建层级边（同批次中父节点先于子节点），
                   父字段变化的节点移动层级边，父节点未变化则不做任何事

flush 中抛出的异常会回滚整个 flush，节点写入与层级边修改一起撤销。

使用示例:
    tree = ClosureTree(Category)
    tree.install()                 # 监听所有 Session
    tree.install(SessionLocal)     # 只监听某个 sessionmaker / scoped_session
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List

from sqlalchemy import event
from sqlalchemy.orm import Session

from ytree.exceptions import Err
from ytree.log import get_logger

from .config import MaintenanceStrategy, NodeRef
from .store import HANDLED_KEY

if TYPE_CHECKING:
    from .closure_tree import ClosureTree

logger = get_logger("ytree.orm.tree")


class ParentPointerTracker:
    """父指针跟踪器"""

    def __init__(self, tree: "ClosureTree"):
        self.tree = tree
        self._target = None

    @property
    def installed(self) -> bool:
        return self._target is not None

    def install(self, target=Session) -> None:
        """注册 flush 事件

        Args:
            target: Session 类、sessionmaker 或 scoped_session
        """
        if self._target is not None:
            self.uninstall()
        event.listen(target, "before_flush", self._before_flush)
        event.listen(target, "after_flush", self._after_flush)
        self._target = target
        logger.debug(f"层级跟踪已启用: {self.tree.base_tag}")

    def uninstall(self) -> None:
        """移除 flush 事件"""
        if self._target is None:
            return
        event.remove(self._target, "before_flush", self._before_flush)
        event.remove(self._target, "after_flush", self._after_flush)
        self._target = None
        logger.debug(f"层级跟踪已停用: {self.tree.base_tag}")

    # ==================== 变更分类 ====================

    def _tracked(self, session: Session, objects) -> List:
        handled = session.info.get(HANDLED_KEY, ())
        return [
            obj for obj in objects
            if self.tree.manages(obj) and id(obj) not in handled
        ]

    def _moved(self, session: Session) -> List:
        return [
            obj for obj in self._tracked(session, session.dirty)
            if obj not in session.deleted and self.tree.parent_changed(obj)
        ]

    def _parents_first(self, objects: List) -> List:
        """同一批新节点按父节点在前排序"""
        by_ref: Dict[NodeRef, object] = {self.tree.ref_for(obj): obj for obj in objects}
        ordered, done = [], set()

        def visit(ref, trail):
            if ref in done:
                return
            if ref in trail:
                raise Err.cycle(f"新节点的父指针存在循环: {ref}", node=ref)
            trail.add(ref)
            parent_ref = self.tree.read_parent(by_ref[ref])
            if parent_ref in by_ref:
                visit(parent_ref, trail)
            done.add(ref)
            ordered.append(by_ref[ref])

        for ref in by_ref:
            visit(ref, set())
        return ordered

    # ==================== 事件处理 ====================

    def _before_flush(self, session: Session, flush_context, instances) -> None:
        tree = self.tree
        deferred = tree.is_deferred(session)
        store = tree.store(session)

        for obj in self._moved(session):
            ref = tree.ref_for(obj)
            parent_ref = tree.read_parent(obj)
            if parent_ref == ref:
                raise Err.cycle(f"节点 {ref} 不能以自身为父节点", node=ref, parent=parent_ref)
            if not deferred:
                store.assert_can_attach(ref, parent_ref)

        skip_edges = deferred or tree.config.strategy == MaintenanceStrategy.REBUILD
        for obj in self._tracked(session, list(session.deleted)):
            store.remove_edges(tree.ref_for(obj), tree.config.dependent, deferred=skip_edges)

    def _after_flush(self, session: Session, flush_context) -> None:
        tree = self.tree
        created = self._tracked(session, session.new)
        moved = self._moved(session)
        removed = self._tracked(session, session.deleted)
        if not (created or moved or removed):
            return

        if tree.is_deferred(session):
            logger.debug(f"延迟维护中，跳过层级边更新: {tree.base_tag}")
            return

        store = tree.store(session)
        if tree.config.strategy == MaintenanceStrategy.REBUILD:
            store._rebuild()
            return

        for obj in self._parents_first(created):
            store.add_edges(tree.ref_for(obj), tree.read_parent(obj))
        for obj in moved:
            store.sync_edges(tree.ref_for(obj), tree.read_parent(obj))


__all__ = [
    "ParentPointerTracker",
]
