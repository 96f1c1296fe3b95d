"""层级查询

QueryEngine 基于层级边和父指针回答层级查询，不做递归遍历：

- 同类型查询（ancestors / descendants / leaves ...）只返回与节点同一类型的记录，
  直接用 ORM 连接层级表；
- poly_* 查询跨越所有登记的类型，先读出 (类型, 主键, 代数)，
  再经 TypeRegistry 按类型批量解析，最后在内存中排序；
- children / siblings 是父指针查询。

使用示例:
    q = Category.__closure_tree__.query(session)

    q.ancestors(node)              # 根在前
    q.descendants(node)            # 按代数、排序字段、主键
    q.poly_children(project)       # 直接子节点（所有类型）
    q.depth(node)
    q.hash_tree(node, limit_depth=2)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from sqlalchemy import and_, exists, func, select
from sqlalchemy.orm import Session, aliased

from ytree.exceptions import Err
from ytree.log import get_logger

from .config import NodeRef
from .tree_utils import hash_tree as build_hash_tree

if TYPE_CHECKING:
    from .closure_tree import ClosureTree

logger = get_logger("ytree.orm.tree")


class QueryEngine:
    """层级查询引擎"""

    def __init__(self, session: Session, tree: "ClosureTree"):
        self.session = session
        self.tree = tree
        self.hierarchy = tree.hierarchy_model
        self.registry = tree.registry

    # ==================== 内部工具 ====================

    def _order_by(self, model) -> list:
        columns = []
        order_column = self.tree.config.order_column
        if order_column and hasattr(model, order_column):
            columns.append(getattr(model, order_column))
        columns.append(model.id)
        return columns

    def _sort_key(self, node):
        order_column = self.tree.config.order_column
        value = getattr(node, order_column, None) if order_column else None
        return (value is None, value if value is not None else 0)

    def _join_ancestor(self, model, h=None):
        if h is None:
            h = self.hierarchy
        return and_(h.ancestor_id == model.id, h.ancestor_type == self.registry.tag_for(model))

    def _join_descendant(self, model, h=None):
        if h is None:
            h = self.hierarchy
        return and_(h.descendant_id == model.id, h.descendant_type == self.registry.tag_for(model))

    def _ancestor_rows(self, ref: NodeRef, include_self: bool):
        h = self.hierarchy
        stmt = select(h.ancestor_type, h.ancestor_id, h.generations).where(
            h.descendant_id == ref.id, h.descendant_type == ref.type
        )
        if not include_self:
            stmt = stmt.where(h.generations > 0)
        stmt = stmt.order_by(h.generations.desc())
        return self.session.execute(stmt).all()

    def _descendant_rows(self, ref: NodeRef, include_self: bool, max_generations: int = None):
        h = self.hierarchy
        stmt = select(h.descendant_type, h.descendant_id, h.generations).where(
            h.ancestor_id == ref.id, h.ancestor_type == ref.type
        )
        if not include_self:
            stmt = stmt.where(h.generations > 0)
        if max_generations is not None:
            stmt = stmt.where(h.generations <= max_generations)
        stmt = stmt.order_by(h.generations, h.descendant_type, h.descendant_id)
        return self.session.execute(stmt).all()

    def _resolve_descendants(self, rows) -> List[Any]:
        refs = [NodeRef(tag, node_id) for tag, node_id, _ in rows]
        nodes = self.registry.resolve_ordered(self.session, refs)
        generations = [g for _, _, g in rows]
        ordered = sorted(
            zip(generations, nodes),
            key=lambda item: (item[0], self._sort_key(item[1])),
        )
        return [node for _, node in ordered]

    # ==================== 祖先 ====================

    def _same_kind_ancestors(self, node, include_self: bool) -> List[Any]:
        model = type(node)
        ref = self.tree.ref_for(node)
        h = self.hierarchy
        stmt = (
            select(model)
            .join(h, self._join_ancestor(model))
            .where(h.descendant_id == ref.id, h.descendant_type == ref.type)
        )
        if not include_self:
            stmt = stmt.where(h.generations > 0)
        stmt = stmt.order_by(h.generations.desc())
        return list(self.session.scalars(stmt))

    def self_and_ancestors(self, node) -> List[Any]:
        """节点及其同类型祖先，根在前"""
        return self._same_kind_ancestors(node, True)

    def ancestors(self, node) -> List[Any]:
        """同类型真祖先，根在前"""
        return self._same_kind_ancestors(node, False)

    def poly_self_and_ancestors(self, node) -> List[Any]:
        ref = self.tree.ref_for(node)
        refs = [NodeRef(tag, node_id) for tag, node_id, _ in self._ancestor_rows(ref, True)]
        return self.registry.resolve_ordered(self.session, refs)

    def poly_ancestors(self, node) -> List[Any]:
        ref = self.tree.ref_for(node)
        refs = [NodeRef(tag, node_id) for tag, node_id, _ in self._ancestor_rows(ref, False)]
        return self.registry.resolve_ordered(self.session, refs)

    def parent(self, node) -> Optional[Any]:
        """父节点（任意类型）"""
        return self.registry.resolve_one(self.session, self.tree.read_parent(node))

    # ==================== 子孙 ====================

    def _same_kind_descendants(self, node, include_self: bool, max_generations: Optional[int]) -> List[Any]:
        model = type(node)
        ref = self.tree.ref_for(node)
        h = self.hierarchy
        stmt = (
            select(model)
            .join(h, self._join_descendant(model))
            .where(h.ancestor_id == ref.id, h.ancestor_type == ref.type)
        )
        if not include_self:
            stmt = stmt.where(h.generations > 0)
        if max_generations is not None:
            stmt = stmt.where(h.generations <= max_generations)
        stmt = stmt.order_by(h.generations, *self._order_by(model))
        return list(self.session.scalars(stmt))

    def self_and_descendants(self, node, max_generations: int = None) -> List[Any]:
        """节点及其同类型子孙，按代数、排序字段、主键排序"""
        return self._same_kind_descendants(node, True, max_generations)

    def descendants(self, node, max_generations: int = None) -> List[Any]:
        return self._same_kind_descendants(node, False, max_generations)

    def poly_self_and_descendants(self, node, max_generations: int = None) -> List[Any]:
        ref = self.tree.ref_for(node)
        return self._resolve_descendants(self._descendant_rows(ref, True, max_generations))

    def poly_descendants(self, node, max_generations: int = None) -> List[Any]:
        ref = self.tree.ref_for(node)
        return self._resolve_descendants(self._descendant_rows(ref, False, max_generations))

    def children(self, node) -> List[Any]:
        """同类型直接子节点（父指针查询）"""
        model = type(node)
        ref = self.tree.ref_for(node)
        stmt = select(model).where(self.tree.parent_clause(model, ref)).order_by(*self._order_by(model))
        return list(self.session.scalars(stmt))

    def poly_children(self, node) -> List[Any]:
        """所有类型的直接子节点，不含孙节点"""
        ref = self.tree.ref_for(node)
        result = []
        for model in self.registry.models:
            stmt = select(model).where(self.tree.parent_clause(model, ref)).order_by(*self._order_by(model))
            result.extend(self.session.scalars(stmt))
        return sorted(result, key=lambda n: (self._sort_key(n), self.registry.tag_for(n), n.id))

    # ==================== 兄弟 ====================

    def self_and_siblings(self, node) -> List[Any]:
        """同类型且父指针相同的节点（含自身）"""
        model = type(node)
        clause = self.tree.parent_clause(model, self.tree.read_parent(node))
        stmt = select(model).where(clause).order_by(*self._order_by(model))
        return list(self.session.scalars(stmt))

    def siblings(self, node) -> List[Any]:
        ref = self.tree.ref_for(node)
        return [n for n in self.self_and_siblings(node) if n.id != ref.id]

    def poly_siblings(self, node) -> List[Any]:
        """所有类型的兄弟节点（不含自身）"""
        ref = self.tree.ref_for(node)
        parent_ref = self.tree.read_parent(node)
        result = []
        for model in self.registry.models:
            stmt = select(model).where(self.tree.parent_clause(model, parent_ref)).order_by(*self._order_by(model))
            result.extend(n for n in self.session.scalars(stmt) if self.tree.ref_for(n) != ref)
        return sorted(result, key=lambda n: (self._sort_key(n), self.registry.tag_for(n), n.id))

    # ==================== 根 / 深度 / 叶子 ====================

    def _root_ref(self, ref: NodeRef, type_tag: str = None) -> NodeRef:
        h = self.hierarchy
        conditions = [h.descendant_id == ref.id, h.descendant_type == ref.type]
        if type_tag is not None:
            conditions.append(h.ancestor_type == type_tag)
        max_generations = select(func.max(h.generations)).where(*conditions).scalar_subquery()
        rows = self.session.execute(
            select(h.ancestor_type, h.ancestor_id).where(*conditions, h.generations == max_generations)
        ).all()
        if len(rows) != 1:
            logger.error(f"节点 {ref} 的根节点数量异常: {len(rows)}")
            raise Err.integrity(
                f"节点 {ref} 应有且只有一个根节点，实际 {len(rows)} 个",
                node=ref,
                candidates=[NodeRef(*row) for row in rows],
            )
        return NodeRef(*rows[0])

    def root(self, node):
        """同类型祖先中代数最大的节点

        Raises:
            IntegrityViolationError: 候选数量不是 1
        """
        ref = self.tree.ref_for(node)
        return self.registry.resolve_one(self.session, self._root_ref(ref, ref.type))

    def poly_root(self, node):
        """所有类型祖先中代数最大的节点"""
        ref = self.tree.ref_for(node)
        return self.registry.resolve_one(self.session, self._root_ref(ref))

    def _ancestor_count(self, ref: NodeRef, tag: str = None) -> int:
        h = self.hierarchy
        stmt = select(func.count()).select_from(h).where(
            h.descendant_id == ref.id, h.descendant_type == ref.type, h.generations > 0
        )
        if tag is not None:
            stmt = stmt.where(h.ancestor_type == tag)
        return self.session.execute(stmt).scalar()

    def depth(self, node) -> int:
        """同类型真祖先数量，等于 len(ancestors(node))，同类型根节点为 0"""
        ref = self.tree.ref_for(node)
        return self._ancestor_count(ref, ref.type)

    level = depth

    def poly_depth(self, node) -> int:
        """所有类型的真祖先数量，等于 len(poly_ancestors(node))"""
        return self._ancestor_count(self.tree.ref_for(node))

    def is_root(self, node) -> bool:
        return self.tree.read_parent(node) is None

    def is_child(self, node) -> bool:
        return not self.is_root(node)

    def is_leaf(self, node) -> bool:
        """层级表中没有 generations = 1 的子孙"""
        ref = self.tree.ref_for(node)
        h = self.hierarchy
        stmt = select(
            exists().where(h.ancestor_id == ref.id, h.ancestor_type == ref.type, h.generations == 1)
        )
        return not self.session.execute(stmt).scalar()

    def leaves(self, node) -> List[Any]:
        """子树中同类型的叶子节点（含自身）"""
        model = type(node)
        ref = self.tree.ref_for(node)
        h = self.hierarchy
        child_edge = aliased(h)
        stmt = (
            select(model)
            .join(h, self._join_descendant(model))
            .where(h.ancestor_id == ref.id, h.ancestor_type == ref.type)
            .where(~exists().where(self._join_ancestor(model, child_edge), child_edge.generations == 1))
            .order_by(h.generations, *self._order_by(model))
        )
        return list(self.session.scalars(stmt))

    def poly_leaves(self, node) -> List[Any]:
        ref = self.tree.ref_for(node)
        h = self.hierarchy
        child_edge = aliased(h)
        stmt = (
            select(h.descendant_type, h.descendant_id, h.generations)
            .where(h.ancestor_id == ref.id, h.ancestor_type == ref.type)
            .where(~exists().where(
                child_edge.ancestor_id == h.descendant_id,
                child_edge.ancestor_type == h.descendant_type,
                child_edge.generations == 1,
            ))
            .order_by(h.generations, h.descendant_type, h.descendant_id)
        )
        return self._resolve_descendants(self.session.execute(stmt).all())

    # ==================== 关系判断 ====================

    def _has_edge(self, ancestor: NodeRef, descendant: NodeRef, proper: bool = True) -> bool:
        h = self.hierarchy
        conditions = [
            h.ancestor_id == ancestor.id,
            h.ancestor_type == ancestor.type,
            h.descendant_id == descendant.id,
            h.descendant_type == descendant.type,
        ]
        if proper:
            conditions.append(h.generations > 0)
        return bool(self.session.execute(select(exists().where(*conditions))).scalar())

    def is_ancestor_of(self, node, other) -> bool:
        return self._has_edge(self.tree.ref_for(node), self.tree.ref_for(other))

    def is_descendant_of(self, node, other) -> bool:
        return self._has_edge(self.tree.ref_for(other), self.tree.ref_for(node))

    def is_parent_of(self, node, other) -> bool:
        return self.tree.read_parent(other) == self.tree.ref_for(node)

    def is_child_of(self, node, other) -> bool:
        return self.tree.read_parent(node) == self.tree.ref_for(other)

    def is_root_of(self, node, other) -> bool:
        """node 是否为 other 所在树的根"""
        return self._root_ref(self.tree.ref_for(other)) == self.tree.ref_for(node)

    def is_family_of(self, node, other) -> bool:
        """两个节点是否属于同一棵树"""
        return self._root_ref(self.tree.ref_for(node)) == self._root_ref(self.tree.ref_for(other))

    # ==================== ID 查询（不加载记录） ====================

    def self_and_ancestor_ids(self, node) -> List[Any]:
        ref = self.tree.ref_for(node)
        return [node_id for tag, node_id, _ in self._ancestor_rows(ref, True) if tag == ref.type]

    def ancestor_ids(self, node) -> List[Any]:
        ref = self.tree.ref_for(node)
        return [node_id for tag, node_id, _ in self._ancestor_rows(ref, False) if tag == ref.type]

    def self_and_descendant_ids(self, node) -> List[Any]:
        ref = self.tree.ref_for(node)
        return [node_id for tag, node_id, _ in self._descendant_rows(ref, True) if tag == ref.type]

    def descendant_ids(self, node) -> List[Any]:
        ref = self.tree.ref_for(node)
        return [node_id for tag, node_id, _ in self._descendant_rows(ref, False) if tag == ref.type]

    def child_ids(self, node) -> List[Any]:
        model = type(node)
        ref = self.tree.ref_for(node)
        stmt = select(model.id).where(self.tree.parent_clause(model, ref)).order_by(*self._order_by(model))
        return list(self.session.scalars(stmt))

    def sibling_ids(self, node) -> List[Any]:
        model = type(node)
        clause = self.tree.parent_clause(model, self.tree.read_parent(node))
        stmt = select(model.id).where(clause, model.id != node.id).order_by(*self._order_by(model))
        return list(self.session.scalars(stmt))

    # ==================== 路径 ====================

    def ancestry_path(self, node, column: str = None) -> List[Any]:
        """从根到节点的名称列表"""
        column = column or self.tree.config.name_column
        return [getattr(n, column) for n in self.self_and_ancestors(node)]

    def roots(self, model: type = None) -> List[Any]:
        """某一类型的所有根节点，默认基础类型"""
        model = model or self.tree.base_model
        stmt = select(model).where(self.tree.parent_clause(model, None)).order_by(*self._order_by(model))
        return list(self.session.scalars(stmt))

    def find_child_by_name(self, model: type, parent, name: str):
        """parent 下名称为 name 的同类型子节点，parent 为 None 时在根节点中查找"""
        parent_ref = self.tree.ref_for(parent) if parent is not None else None
        name_column = getattr(model, self.tree.config.name_column)
        stmt = (
            select(model)
            .where(self.tree.parent_clause(model, parent_ref), name_column == name)
            .order_by(*self._order_by(model))
            .limit(1)
        )
        return self.session.scalars(stmt).first()

    def find_by_path(self, path: Sequence[str], model: type = None, parent=None):
        """按名称路径逐级查找节点

        Args:
            path: 名称列表
            model: 节点类型，默认基础类型
            parent: 起始父节点，None 表示从根节点开始

        Returns:
            路径末端的节点，任何一级不存在则返回 None
        """
        model = model or self.tree.base_model
        node = parent
        for name in path:
            node = self.find_child_by_name(model, node, name)
            if node is None:
                return None
        return node

    # ==================== 树结构 ====================

    def _limit(self, limit_depth: Optional[int]) -> Optional[int]:
        if limit_depth is None:
            return None
        if limit_depth < 1:
            raise ValueError("limit_depth 必须大于 0")
        return limit_depth - 1

    def hash_tree(self, node=None, limit_depth: int = None) -> Dict[Any, dict]:
        """嵌套字典形式的子树（只含同类型节点）

        混合类型的层级中，挂在其它类型节点下的同类型子孙找不到父节点，
        会与子树根并列出现在顶层。需要完整结构时使用 poly_hash_tree。

        Args:
            node: 子树根节点，None 表示基础类型的整片森林
            limit_depth: 最多包含的层数

        Returns:
            {node: {child: {...}}}
        """
        max_generations = self._limit(limit_depth)
        if node is not None:
            nodes = self.self_and_descendants(node, max_generations)
        else:
            nodes = self._forest(self.tree.base_model, max_generations)
        return self._build(nodes, limit_depth)

    def children_hash_tree(self, node, limit_depth: int = None) -> Dict[Any, dict]:
        """不含节点自身，以子节点为顶层的子树"""
        self._limit(limit_depth)
        return self._build(self.descendants(node, limit_depth), limit_depth)

    def poly_hash_tree(self, node, limit_depth: int = None) -> Dict[Any, dict]:
        """跨类型的子树"""
        nodes = self.poly_self_and_descendants(node, self._limit(limit_depth))
        return self._build(nodes, limit_depth)

    def _forest(self, model, max_generations: Optional[int]) -> List[Any]:
        h = self.hierarchy
        tag = self.registry.tag_for(model)
        depth = (
            select(h.descendant_id.label("node_id"), func.max(h.generations).label("depth"))
            .where(h.descendant_type == tag)
            .group_by(h.descendant_id)
            .subquery()
        )
        stmt = select(model).join(depth, depth.c.node_id == model.id)
        if max_generations is not None:
            stmt = stmt.where(depth.c.depth <= max_generations)
        stmt = stmt.order_by(depth.c.depth, *self._order_by(model))
        return list(self.session.scalars(stmt))

    def _build(self, nodes, limit_depth):
        return build_hash_tree(
            nodes,
            limit_depth=limit_depth,
            ref=self.tree.ref_for,
            parent_ref=self.tree.read_parent,
        )


__all__ = [
    "QueryEngine",
]
