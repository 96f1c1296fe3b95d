"""层级查询测试

测试 QueryEngine：
1. 祖先 / 子孙 / 子节点 / 兄弟
2. 根节点、深度、叶子
3. 关系判断
4. ID 查询
5. 路径查询与 hash tree
"""

import pytest
from sqlalchemy import Column, String, insert
from sqlalchemy.orm import sessionmaker, scoped_session

from ytree.exceptions import IntegrityViolationError
from ytree.orm import Base, CoreModel
from ytree.orm.tree import (
    ClosureTree,
    ClosureTreeFieldsMixin,
    ClosureTreeMixin,
)

from tests.helpers import names, tree_names


# ==================== 测试模型定义 ====================

class QueryNode(CoreModel, ClosureTreeFieldsMixin, ClosureTreeMixin):
    """查询测试节点"""
    __table_args__ = {"extend_existing": True}

    name = Column(String(100))


query_tree = ClosureTree(QueryNode)


class QueryTestBase:
    """建立如下的测试树（括号内为排序序号）::

        A                G
        ├── B (1)
        │   ├── D (1)
        │   │   └── F
        │   └── E (2)
        └── C (2)
    """

    @pytest.fixture(autouse=True)
    def setup_db(self, memory_engine):
        """自动初始化数据库会话并建立测试树"""
        Base.metadata.create_all(bind=memory_engine)
        SessionLocal = sessionmaker(autoflush=False, bind=memory_engine)
        self.session_scope = scoped_session(SessionLocal)
        CoreModel.query = self.session_scope.query_property()
        self.session = self.session_scope()
        self.store = query_tree.store(self.session)
        self.query = query_tree.query(self.session)
        self.nodes = self._build()

        yield
        self.session_scope.remove()

    def _node(self, name, parent=None, sort_order=0):
        return self.store.insert_node(QueryNode(name=name, sort_order=sort_order), parent)

    def _build(self):
        nodes = {}
        nodes["A"] = self._node("A")
        nodes["B"] = self._node("B", nodes["A"], 1)
        nodes["C"] = self._node("C", nodes["A"], 2)
        nodes["D"] = self._node("D", nodes["B"], 1)
        nodes["E"] = self._node("E", nodes["B"], 2)
        nodes["F"] = self._node("F", nodes["D"])
        nodes["G"] = self._node("G", None, 5)
        return nodes

    def __getitem__(self, name):
        return self.nodes[name]


# ==================== 祖先与子孙 ====================

class TestAncestorsAndDescendants(QueryTestBase):
    """祖先与子孙查询测试"""

    def test_ancestors_root_first(self):
        """测试祖先从根开始排序"""
        assert names(self.query.ancestors(self["F"])) == ["A", "B", "D"]
        assert names(self.query.self_and_ancestors(self["F"])) == ["A", "B", "D", "F"]

    def test_root_has_no_ancestors(self):
        """测试根节点没有祖先"""
        assert self.query.ancestors(self["A"]) == []
        assert names(self.query.self_and_ancestors(self["A"])) == ["A"]

    def test_descendants_ordered_by_generation_then_sort(self):
        """测试子孙按代数、排序字段、主键排序"""
        assert names(self.query.descendants(self["A"])) == ["B", "C", "D", "E", "F"]
        assert names(self.query.self_and_descendants(self["B"])) == ["B", "D", "E", "F"]

    def test_descendants_max_generations(self):
        """测试限制子孙代数"""
        assert names(self.query.descendants(self["A"], max_generations=1)) == ["B", "C"]
        assert names(self.query.self_and_descendants(self["A"], max_generations=2)) == [
            "A", "B", "C", "D", "E",
        ]

    def test_leaf_has_no_descendants(self):
        """测试叶子节点没有子孙"""
        assert self.query.descendants(self["F"]) == []

    def test_poly_queries_match_same_kind_for_single_type(self):
        """测试只有一种类型时 poly_* 与同类型查询一致"""
        assert names(self.query.poly_ancestors(self["F"])) == ["A", "B", "D"]
        assert names(self.query.poly_descendants(self["A"])) == ["B", "C", "D", "E", "F"]
        assert names(self.query.poly_self_and_ancestors(self["D"])) == ["A", "B", "D"]

    def test_parent(self):
        """测试父节点"""
        assert self.query.parent(self["D"]).name == "B"
        assert self.query.parent(self["A"]) is None


# ==================== 子节点与兄弟 ====================

class TestChildrenAndSiblings(QueryTestBase):
    """子节点与兄弟查询测试"""

    def test_children_ordered(self):
        """测试直接子节点按排序字段排序"""
        assert names(self.query.children(self["A"])) == ["B", "C"]
        assert names(self.query.children(self["B"])) == ["D", "E"]
        assert self.query.children(self["F"]) == []

    def test_children_follow_sort_order(self):
        """测试修改排序字段后子节点顺序变化"""
        self["C"].sort_order = 0
        self.session.commit()

        assert names(self.query.children(self["A"])) == ["C", "B"]

    def test_siblings_exclude_self(self):
        """测试兄弟节点不含自身"""
        assert names(self.query.siblings(self["D"])) == ["E"]
        assert names(self.query.self_and_siblings(self["D"])) == ["D", "E"]

    def test_root_siblings(self):
        """测试根节点的兄弟是其它根节点"""
        assert names(self.query.siblings(self["A"])) == ["G"]
        assert names(self.query.poly_siblings(self["A"])) == ["G"]

    def test_roots(self):
        """测试所有根节点"""
        assert names(self.query.roots()) == ["A", "G"]


# ==================== 根 / 深度 / 叶子 ====================

class TestRootDepthLeaves(QueryTestBase):
    """根节点、深度与叶子测试"""

    def test_root(self):
        """测试根节点"""
        assert self.query.root(self["F"]).name == "A"
        assert self.query.root(self["A"]).name == "A"
        assert self.query.poly_root(self["E"]).name == "A"

    def test_depth(self):
        """测试深度等于真祖先数量"""
        assert self.query.depth(self["A"]) == 0
        assert self.query.depth(self["B"]) == 1
        assert self.query.depth(self["F"]) == 3
        assert self.query.level(self["D"]) == 2

    def test_leaf_flips_when_child_added(self):
        """测试添加子节点后叶子状态变化"""
        assert self.query.is_leaf(self["C"])

        self._node("H", self["C"])

        assert not self.query.is_leaf(self["C"])

    def test_leaves(self):
        """测试子树中的叶子节点"""
        assert names(self.query.leaves(self["A"])) == ["C", "E", "F"]
        assert names(self.query.leaves(self["F"])) == ["F"]
        assert names(self.query.poly_leaves(self["B"])) == ["E", "F"]

    def test_root_and_child_flags(self):
        """测试根 / 子节点判断"""
        assert self.query.is_root(self["A"])
        assert not self.query.is_root(self["B"])
        assert self.query.is_child(self["B"])

    def test_multiple_roots_is_integrity_violation(self):
        """测试存在多个同代根节点时抛出 IntegrityViolationError"""
        t = query_tree.hierarchy_model.__table__
        self.session.execute(
            insert(t).values(
                ancestor_id=self["G"].id,
                ancestor_type="QueryNode",
                descendant_id=self["F"].id,
                descendant_type="QueryNode",
                generations=3,
            )
        )
        self.session.commit()

        with pytest.raises(IntegrityViolationError) as exc_info:
            self.query.root(self["F"])

        assert len(exc_info.value.extra["candidates"]) == 2


# ==================== 关系判断 ====================

class TestPredicates(QueryTestBase):
    """关系判断测试"""

    def test_ancestor_and_descendant(self):
        """测试祖先 / 子孙判断"""
        assert self.query.is_ancestor_of(self["A"], self["F"])
        assert self.query.is_descendant_of(self["F"], self["A"])
        assert not self.query.is_ancestor_of(self["F"], self["A"])
        assert not self.query.is_ancestor_of(self["C"], self["F"])

    def test_node_is_not_own_ancestor(self):
        """测试节点不是自己的祖先"""
        assert not self.query.is_ancestor_of(self["B"], self["B"])
        assert not self.query.is_descendant_of(self["B"], self["B"])

    def test_parent_and_child(self):
        """测试父子判断"""
        assert self.query.is_parent_of(self["B"], self["D"])
        assert self.query.is_child_of(self["D"], self["B"])
        assert not self.query.is_parent_of(self["A"], self["D"])

    def test_root_of_and_family(self):
        """测试根节点与同树判断"""
        assert self.query.is_root_of(self["A"], self["F"])
        assert not self.query.is_root_of(self["B"], self["F"])
        assert self.query.is_family_of(self["C"], self["F"])
        assert not self.query.is_family_of(self["G"], self["F"])


# ==================== ID 查询 ====================

class TestIdQueries(QueryTestBase):
    """ID 查询测试"""

    def test_ancestor_ids(self):
        """测试祖先 ID 根在前"""
        assert self.query.ancestor_ids(self["F"]) == [self["A"].id, self["B"].id, self["D"].id]
        assert self.query.self_and_ancestor_ids(self["D"]) == [self["A"].id, self["B"].id, self["D"].id]

    def test_descendant_ids(self):
        """测试子孙 ID"""
        assert set(self.query.descendant_ids(self["B"])) == {self["D"].id, self["E"].id, self["F"].id}
        assert self.query.self_and_descendant_ids(self["F"]) == [self["F"].id]

    def test_child_and_sibling_ids(self):
        """测试子节点与兄弟 ID"""
        assert self.query.child_ids(self["A"]) == [self["B"].id, self["C"].id]
        assert self.query.sibling_ids(self["B"]) == [self["C"].id]


# ==================== 路径与 hash tree ====================

class TestPathAndHashTree(QueryTestBase):
    """路径与 hash tree 测试"""

    def test_ancestry_path(self):
        """测试从根到节点的名称路径"""
        assert self.query.ancestry_path(self["F"]) == ["A", "B", "D", "F"]

    def test_find_by_path(self):
        """测试按名称路径查找"""
        assert self.query.find_by_path(["A", "B", "D"]).id == self["D"].id
        assert self.query.find_by_path(["A", "X"]) is None
        assert self.query.find_by_path(["D", "F"], parent=self["B"]).id == self["F"].id

    def test_find_child_by_name(self):
        """测试在父节点下按名称查找"""
        assert self.query.find_child_by_name(QueryNode, self["B"], "E").id == self["E"].id
        assert self.query.find_child_by_name(QueryNode, None, "G").id == self["G"].id
        assert self.query.find_child_by_name(QueryNode, self["A"], "E") is None

    def test_hash_tree(self):
        """测试子树的嵌套字典"""
        result = self.query.hash_tree(self["B"])

        assert tree_names(result) == {"B": {"D": {"F": {}}, "E": {}}}

    def test_hash_tree_limit_depth(self):
        """测试限制层数"""
        result = self.query.hash_tree(self["A"], limit_depth=2)

        assert tree_names(result) == {"A": {"B": {}, "C": {}}}

    def test_forest_hash_tree(self):
        """测试整片森林"""
        result = self.query.hash_tree(None, limit_depth=1)

        assert tree_names(result) == {"A": {}, "G": {}}

    def test_children_hash_tree(self):
        """测试以子节点为顶层的子树"""
        result = self.query.children_hash_tree(self["B"])

        assert tree_names(result) == {"D": {"F": {}}, "E": {}}

    def test_hash_tree_invalid_limit(self):
        """测试非法层数"""
        with pytest.raises(ValueError):
            self.query.hash_tree(self["A"], limit_depth=0)
