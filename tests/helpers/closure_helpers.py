"""闭包表测试辅助工具

按父指针独立推算期望的层级边，与层级表的实际内容比较。
"""

from typing import Dict, Optional, Set, Tuple

from sqlalchemy import select

from ytree.orm.tree import NodeRef
from ytree.orm.tree.tree_utils import iter_hash_tree

Edge = Tuple[str, int, str, int, int]


def edge_set(session, tree) -> Set[Edge]:
    """层级表当前的全部边 (祖先类型, 祖先ID, 子孙类型, 子孙ID, 代数)"""
    t = tree.hierarchy_model.__table__
    rows = session.execute(
        select(t.c.ancestor_type, t.c.ancestor_id, t.c.descendant_type, t.c.descendant_id, t.c.generations)
    ).all()
    return {tuple(row) for row in rows}


def _pointer_map(session, tree) -> Dict[NodeRef, Optional[NodeRef]]:
    parents = {}
    for model in tree.registry.models:
        tag = tree.tag_for(model)
        id_col = tree.id_column(model)
        parent_col, parent_type_col = tree.parent_table_columns(model)
        columns = [id_col, parent_col]
        if parent_type_col is not None:
            columns.append(parent_type_col)
        for row in session.execute(select(*columns)).all():
            parent_id = row[1]
            parent_type = row[2] if parent_type_col is not None else None
            parent = None
            if parent_id is not None:
                parent = NodeRef(parent_type or tree.base_tag, parent_id)
            parents[NodeRef(tag, row[0])] = parent
    return parents


def expected_edges(session, tree) -> Set[Edge]:
    """沿父指针推算出的期望边集合"""
    parents = _pointer_map(session, tree)
    edges = set()
    for ref in parents:
        current, generations = ref, 0
        while current is not None:
            edges.add((current.type, current.id, ref.type, ref.id, generations))
            current = parents.get(current)
            generations += 1
            assert generations <= len(parents), f"父指针存在循环: {ref}"
    return edges


def assert_closure_consistent(session, tree) -> Set[Edge]:
    """断言层级表与父指针完全一致，返回当前边集合"""
    actual = edge_set(session, tree)
    expected = expected_edges(session, tree)
    assert actual == expected, (
        f"多余的边: {sorted(actual - expected)}; 缺少的边: {sorted(expected - actual)}"
    )
    return actual


def names(nodes) -> list:
    """节点列表 -> 名称列表"""
    return [node.name for node in nodes]


def tree_names(tree: dict) -> dict:
    """hash tree -> 以名称为键的嵌套字典"""
    return {node.name: tree_names(sub) for node, sub in tree.items()}


def flat_names(tree: dict) -> list:
    """先序遍历 hash tree，返回 (名称, 深度)"""
    return [(node.name, depth) for node, depth in iter_hash_tree(tree)]
