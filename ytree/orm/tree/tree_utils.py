"""树形结构工具函数

把一组已经限定在某棵子树内的节点组装成嵌套字典（hash tree），
以及 hash tree 与 JSON 友好的嵌套列表之间的转换。纯内存操作，不访问数据库。

使用示例:
    from ytree.orm.tree import hash_tree, hash_tree_to_list

    nodes = Category.get(1).get_self_and_descendants()
    tree = hash_tree(nodes, limit_depth=2)
    # {root: {child1: {}, child2: {}}}

    data = hash_tree_to_list(tree)
    # [{"id": 1, "name": "根", ..., "children": [...]}]
"""

from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple


def _default_ref(node) -> Any:
    return node.id


def _default_parent_ref(node) -> Any:
    return getattr(node, "parent_id", None)


def hash_tree(
    nodes: Iterable[Any],
    limit_depth: Optional[int] = None,
    ref: Callable[[Any], Any] = None,
    parent_ref: Callable[[Any], Any] = None,
) -> Dict[Any, dict]:
    """把节点列表组装为嵌套字典

    输入可以有序也可以无序。父节点不在输入中的节点作为顶层节点，
    因此输入缺失的层级不会被补齐，也不会重新查询。

    Args:
        nodes: 节点序列
        limit_depth: 最多保留的层数（顶层为第 1 层）
        ref: 节点 -> 唯一键，默认取 node.id
        parent_ref: 节点 -> 父节点键，默认取 node.parent_id

    Returns:
        {node: {child: {grandchild: {}}}}

    使用示例:
        tree = hash_tree(nodes, ref=tree.ref_for, parent_ref=tree.read_parent)
    """
    if limit_depth is not None and limit_depth < 1:
        raise ValueError("limit_depth 必须大于 0")

    ref = ref or _default_ref
    parent_ref = parent_ref or _default_parent_ref

    entries: List[Tuple[Any, Any]] = []
    by_key: Dict[Any, Any] = {}
    for node in nodes:
        key = ref(node)
        if key in by_key:
            continue
        by_key[key] = node
        entries.append((key, node))

    parents = {key: parent_ref(node) for key, node in entries}
    depths: Dict[Any, int] = {}

    def depth_of(key) -> int:
        # 沿输入中的父链向上，遇到已知深度或顶层节点为止
        chain = []
        current = key
        while current not in depths:
            parent = parents[current]
            if parent not in by_key:
                depths[current] = 0
                break
            if current in chain:
                raise ValueError(f"输入节点的父指针存在循环: {current}")
            chain.append(current)
            current = parent
        base = depths[current]
        for offset, k in enumerate(reversed(chain), start=1):
            depths[k] = base + offset
        return depths[key]

    children: Dict[Any, dict] = {key: {} for key, _ in entries}
    result: Dict[Any, dict] = {}
    for key, node in entries:
        depth = depth_of(key)
        if limit_depth is not None and depth >= limit_depth:
            continue
        parent = parents[key]
        target = children[parent] if parent in by_key else result
        target[node] = children[key]
    return result


def hash_tree_to_list(
    tree: Dict[Any, dict],
    to_dict: Callable[[Any], dict] = None,
    children_field: str = "children",
) -> List[Dict[str, Any]]:
    """hash tree 转为嵌套列表

    Args:
        tree: hash_tree 的返回值
        to_dict: 节点 -> 字典，默认使用 node.to_dict()
        children_field: 子节点列表字段名
    """
    if to_dict is None:
        def to_dict(node):
            if hasattr(node, "to_dict"):
                return node.to_dict()
            return {"id": node.id}

    return [
        {**to_dict(node), children_field: hash_tree_to_list(sub, to_dict, children_field)}
        for node, sub in tree.items()
    ]


def iter_hash_tree(tree: Dict[Any, dict], _depth: int = 0) -> Iterator[Tuple[Any, int]]:
    """先序遍历 hash tree，产出 (节点, 深度)，顶层深度为 0"""
    for node, sub in tree.items():
        yield node, _depth
        yield from iter_hash_tree(sub, _depth + 1)


def hash_tree_depth(tree: Dict[Any, dict]) -> int:
    """hash tree 的层数，空树为 0"""
    if not tree:
        return 0
    return 1 + max(hash_tree_depth(sub) for sub in tree.values())


__all__ = [
    "hash_tree",
    "hash_tree_to_list",
    "iter_hash_tree",
    "hash_tree_depth",
]
