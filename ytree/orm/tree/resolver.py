"""多态类型解析

层级边中的每个节点都以 (类型标签, 主键) 记录，同一棵树可以跨越多张记录表。
TypeRegistry 在配置阶段登记 类型标签 -> 记录类型/批量查询函数，
查询时按类型分组，每种类型只发一次 IN 查询。

使用示例:
    registry = TypeRegistry()
    registry.register(Project)
    registry.register(Task, tag="task")

    nodes = registry.resolve_ordered(session, [NodeRef("Project", 1), NodeRef("task", 7)])
"""

from collections import OrderedDict
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from ytree.exceptions import Err
from ytree.log import get_logger

from .config import NodeRef

logger = get_logger("ytree.orm.tree")

# lookup(session, ids) -> 可迭代的节点对象
LookupFunc = Callable[[Session, List[Any]], Iterable[Any]]


def default_type_tag(model_class: type) -> str:
    """类型标签：类上直接定义的 __tree_type__，否则为类名"""
    return model_class.__dict__.get("__tree_type__") or model_class.__name__


class TypeRegistry:
    """类型注册表"""

    def __init__(self):
        self._models: Dict[str, type] = OrderedDict()
        self._tags: Dict[type, str] = {}
        self._lookups: Dict[str, LookupFunc] = {}

    def register(self, model_class: type, tag: str = None, lookup: LookupFunc = None) -> str:
        """登记记录类型

        Args:
            model_class: 映射类
            tag: 类型标签，默认取 __tree_type__ 或类名
            lookup: 批量查询函数，默认 SELECT ... WHERE id IN (...)

        Returns:
            类型标签
        """
        tag = tag or default_type_tag(model_class)
        existing = self._models.get(tag)
        if existing is not None and existing is not model_class:
            raise ValueError(f"类型标签 {tag} 已被 {existing.__name__} 占用")

        self._models[tag] = model_class
        self._tags[model_class] = tag
        if lookup is not None:
            self._lookups[tag] = lookup
        logger.debug(f"登记节点类型: {tag} -> {model_class.__name__}")
        return tag

    @property
    def models(self) -> List[type]:
        """按登记顺序返回所有记录类型"""
        return list(self._models.values())

    @property
    def tags(self) -> List[str]:
        return list(self._models.keys())

    def is_registered(self, model_class: type) -> bool:
        return model_class in self._tags

    def __contains__(self, tag: str) -> bool:
        return tag in self._models

    def tag_for(self, node_or_class) -> str:
        """获取节点或类的类型标签"""
        cls = node_or_class if isinstance(node_or_class, type) else type(node_or_class)
        tag = self._tags.get(cls)
        if tag is not None:
            return tag
        return default_type_tag(cls)

    def model_for(self, tag: str) -> type:
        """根据类型标签获取记录类型

        Raises:
            UnknownTypeError: 标签未登记
        """
        model_class = self._models.get(tag)
        if model_class is None:
            raise Err.unknown_type(tag)
        return model_class

    def ref_for(self, node) -> NodeRef:
        return NodeRef(self.tag_for(node), node.id)

    def lookup(self, session: Session, tag: str, ids: Sequence[Any]) -> List[Any]:
        """批量查询某一类型的记录"""
        model_class = self.model_for(tag)
        custom = self._lookups.get(tag)
        if custom is not None:
            return list(custom(session, list(ids)))
        stmt = select(model_class).where(model_class.id.in_(list(ids)))
        return list(session.scalars(stmt))

    def resolve(self, session: Session, refs: Iterable[NodeRef]) -> Dict[NodeRef, Any]:
        """把节点引用解析为记录对象

        按类型分组，每种类型一次批量查询；结果集中没有出现的类型不会被查询。

        Raises:
            UnknownTypeError: 引用中存在未登记的类型标签
            IntegrityViolationError: 引用对应的记录不存在
        """
        grouped: Dict[str, List[Any]] = OrderedDict()
        for ref in refs:
            ids = grouped.setdefault(ref.type, [])
            if ref.id not in ids:
                ids.append(ref.id)

        resolved: Dict[NodeRef, Any] = {}
        for tag, ids in grouped.items():
            if not ids:
                continue
            found = {node.id: node for node in self.lookup(session, tag, ids)}
            missing = [i for i in ids if i not in found]
            if missing:
                logger.error(f"层级边引用了不存在的记录: {tag} {missing}")
                raise Err.integrity(
                    f"层级边引用了不存在的记录: {tag} {missing}",
                    type_tag=tag,
                    ids=missing,
                )
            for node_id, node in found.items():
                resolved[NodeRef(tag, node_id)] = node
        return resolved

    def resolve_ordered(self, session: Session, refs: Iterable[NodeRef]) -> List[Any]:
        """同 resolve，按输入顺序返回记录对象"""
        refs = list(refs)
        resolved = self.resolve(session, refs)
        return [resolved[ref] for ref in refs]

    def resolve_one(self, session: Session, ref: Optional[NodeRef]) -> Optional[Any]:
        if ref is None:
            return None
        return self.resolve(session, [ref])[ref]


__all__ = [
    "LookupFunc",
    "default_type_tag",
    "TypeRegistry",
]
