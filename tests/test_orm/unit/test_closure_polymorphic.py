"""多态层级测试

一棵树跨越 Project 与 Task 两种记录类型：
1. 同类型查询只返回同类型记录，poly_* 查询返回所有类型
2. 跨类型插入、移动、级联删除
3. 未登记的类型标签只在解析时报错
4. 每种类型一次批量查询
"""

import pytest
from sqlalchemy import Column, String, delete, insert
from sqlalchemy.orm import sessionmaker, scoped_session

from ytree.exceptions import IntegrityViolationError, UnknownTypeError
from ytree.orm import Base, CoreModel
from ytree.orm.tree import (
    ClosureTree,
    ClosureTreeFieldsMixin,
    ClosureTreeMixin,
    DeletePolicy,
)

from tests.helpers import assert_closure_consistent, names, tree_names


# ==================== 测试模型定义 ====================

class PolyProject(CoreModel, ClosureTreeFieldsMixin, ClosureTreeMixin):
    """项目"""
    __table_args__ = {"extend_existing": True}

    name = Column(String(100))


class PolyTask(CoreModel, ClosureTreeFieldsMixin, ClosureTreeMixin):
    """任务"""
    __table_args__ = {"extend_existing": True}

    name = Column(String(100))


poly_tree = ClosureTree(PolyProject)
poly_tree.register(PolyTask)


class PolyTestBase:
    """建立如下的测试树::

        P1 (项目)
        ├── T1 (任务, 1)
        │   └── T2 (任务)
        └── P2 (项目, 2)
            └── T3 (任务)
    """

    @pytest.fixture(autouse=True)
    def setup_db(self, memory_engine):
        """自动初始化数据库会话并建立测试树"""
        Base.metadata.create_all(bind=memory_engine)
        SessionLocal = sessionmaker(autoflush=False, bind=memory_engine)
        self.session_scope = scoped_session(SessionLocal)
        CoreModel.query = self.session_scope.query_property()
        self.session = self.session_scope()
        self.store = poly_tree.store(self.session)
        self.query = poly_tree.query(self.session)

        insert_node = self.store.insert_node
        self.p1 = insert_node(PolyProject(name="P1"))
        self.t1 = insert_node(PolyTask(name="T1", sort_order=1), self.p1)
        self.t2 = insert_node(PolyTask(name="T2"), self.t1)
        self.p2 = insert_node(PolyProject(name="P2", sort_order=2), self.p1)
        self.t3 = insert_node(PolyTask(name="T3"), self.p2)

        yield
        self.session_scope.remove()


# ==================== 查询测试 ====================

class TestPolymorphicQueries(PolyTestBase):
    """跨类型查询测试"""

    def test_parent_type_written(self):
        """测试父指针记录父节点类型"""
        assert self.t1.parent_type == "PolyProject"
        assert self.t2.parent_type == "PolyTask"
        assert self.p1.parent_type is None

    def test_edges_consistent(self):
        """测试跨类型层级边"""
        edges = assert_closure_consistent(self.session, poly_tree)

        assert ("PolyProject", self.p1.id, "PolyTask", self.t2.id, 2) in edges

    def test_poly_children(self):
        """测试所有类型的直接子节点，不含孙节点"""
        assert names(self.query.poly_children(self.p1)) == ["T1", "P2"]
        assert names(self.p1.get_poly_children()) == ["T1", "P2"]

    def test_same_kind_children(self):
        """测试同类型子节点"""
        assert names(self.query.children(self.p1)) == ["P2"]
        assert names(self.query.children(self.t1)) == ["T2"]

    def test_poly_descendants(self):
        """测试所有类型的子孙按代数排序"""
        assert names(self.query.poly_self_and_descendants(self.p1)) == ["P1", "T1", "P2", "T2", "T3"]
        assert names(self.query.poly_descendants(self.p1)) == ["T1", "P2", "T2", "T3"]

    def test_same_kind_descendants(self):
        """测试同类型子孙只返回同类型记录"""
        assert names(self.query.descendants(self.p1)) == ["P2"]
        assert self.query.descendant_ids(self.p1) == [self.p2.id]

    def test_ancestors(self):
        """测试同类型与跨类型祖先"""
        assert self.query.ancestors(self.t3) == []
        assert names(self.query.poly_ancestors(self.t3)) == ["P1", "P2"]
        assert names(self.query.ancestors(self.t2)) == ["T1"]

    def test_depth_counts_same_kind(self):
        """测试深度只计算同类型祖先，poly_depth 计算所有类型"""
        assert self.query.depth(self.t2) == 1
        assert self.query.depth(self.t3) == 0
        assert self.query.poly_depth(self.t2) == 2
        assert self.query.poly_depth(self.t3) == 2

    def test_depth_matches_ancestors(self):
        """测试每个节点的深度等于祖先数量，根节点深度为 0"""
        for node in (self.p1, self.t1, self.t2, self.p2, self.t3):
            assert self.query.depth(node) == len(self.query.ancestors(node))
            assert self.query.poly_depth(node) == len(self.query.poly_ancestors(node))
            assert self.query.depth(self.query.root(node)) == 0
            assert self.query.poly_depth(self.query.poly_root(node)) == 0

    def test_root(self):
        """测试同类型根与跨类型根"""
        assert self.query.root(self.t2).name == "T1"
        assert self.query.poly_root(self.t2).name == "P1"

    def test_parent_of_other_kind(self):
        """测试父节点可以是其它类型"""
        parent = self.query.parent(self.t1)

        assert isinstance(parent, PolyProject)
        assert parent.id == self.p1.id
        assert self.query.is_parent_of(self.p1, self.t1)

    def test_poly_hash_tree(self):
        """测试跨类型的 hash tree"""
        result = self.query.poly_hash_tree(self.p1)

        assert tree_names(result) == {"P1": {"T1": {"T2": {}}, "P2": {"T3": {}}}}

    def test_poly_leaves(self):
        """测试跨类型叶子"""
        assert names(self.query.poly_leaves(self.p1)) == ["T2", "T3"]

    def test_same_id_different_kind_are_distinct(self):
        """测试不同类型的相同主键互不影响"""
        assert self.p1.id == self.t1.id

        assert not self.query.is_ancestor_of(self.p1, self.p1)
        assert self.query.is_ancestor_of(self.p1, self.t1)
        assert not self.query.is_ancestor_of(self.t1, self.p1)


# ==================== 写入测试 ====================

class TestPolymorphicWrites(PolyTestBase):
    """跨类型写入测试"""

    def test_project_under_task(self):
        """测试项目可以挂在任务下"""
        p3 = self.store.insert_node(PolyProject(name="P3"), self.t2)

        assert names(self.query.poly_ancestors(p3)) == ["P1", "T1", "T2"]
        assert names(self.query.ancestors(p3)) == ["P1"]
        assert_closure_consistent(self.session, poly_tree)

    def test_same_kind_hash_tree_under_other_kind(self):
        """测试同类型 hash tree 中挂在任务下的项目出现在顶层"""
        self.store.insert_node(PolyProject(name="P3"), self.t2)

        assert tree_names(self.query.hash_tree(self.p1)) == {"P1": {"P2": {}}, "P3": {}}
        assert tree_names(self.query.poly_hash_tree(self.p1)) == {
            "P1": {"T1": {"T2": {"P3": {}}}, "P2": {"T3": {}}},
        }

    def test_move_across_kinds(self):
        """测试把任务子树移动到另一个项目下"""
        self.store.move_node(self.t1, self.p2)

        assert names(self.query.poly_ancestors(self.t2)) == ["P1", "P2", "T1"]
        assert names(self.query.poly_children(self.p2)) == ["T3", "T1"]
        assert_closure_consistent(self.session, poly_tree)

    def test_cascade_across_kinds(self):
        """测试级联删除跨类型子树"""
        t3_id = self.t3.id

        self.store.delete_node(self.p2, DeletePolicy.CASCADE)

        assert self.session.get(PolyTask, t3_id) is None
        assert names(self.query.poly_descendants(self.p1)) == ["T1", "T2"]
        assert_closure_consistent(self.session, poly_tree)

    def test_reparent_across_kinds(self):
        """测试 REPARENT 时子节点的父类型随之改变"""
        self.store.delete_node(self.t1, DeletePolicy.REPARENT)

        assert self.t2.parent_id == self.p1.id
        assert self.t2.parent_type == "PolyProject"
        assert_closure_consistent(self.session, poly_tree)

    def test_hierarchical_subclasses(self):
        """测试登记的记录类型"""
        assert poly_tree.hierarchical_subclasses() == [PolyProject, PolyTask]
        assert PolyTask.hierarchical_subclasses() == [PolyProject, PolyTask]


# ==================== 类型解析测试 ====================

class TestTypeResolution(PolyTestBase):
    """类型解析测试"""

    def _add_foreign_edge(self, tag, node_id):
        t = poly_tree.hierarchy_model.__table__
        self.session.execute(insert(t).values(
            ancestor_id=node_id, ancestor_type=tag,
            descendant_id=node_id, descendant_type=tag, generations=0,
        ))
        self.session.execute(insert(t).values(
            ancestor_id=self.p1.id, ancestor_type="PolyProject",
            descendant_id=node_id, descendant_type=tag, generations=1,
        ))
        self.session.commit()

    def test_unknown_tag_raises_only_on_resolve(self):
        """测试未登记的类型标签可以写入，解析时才报错"""
        self._add_foreign_edge("Folder", 99)

        assert names(self.query.descendants(self.p1)) == ["P2"]
        with pytest.raises(UnknownTypeError) as exc_info:
            self.query.poly_descendants(self.p1)

        assert exc_info.value.type_tag == "Folder"
        assert exc_info.value.code == "UNKNOWN_NODE_TYPE"

    def test_missing_record_is_integrity_violation(self):
        """测试层级边引用的记录不存在"""
        self.session.execute(delete(PolyTask.__table__).where(PolyTask.__table__.c.id == self.t2.id))
        self.session.commit()

        with pytest.raises(IntegrityViolationError) as exc_info:
            self.query.poly_descendants(self.p1)

        assert exc_info.value.extra["type_tag"] == "PolyTask"

    def test_one_lookup_per_kind(self, monkeypatch):
        """测试每种类型只发一次批量查询"""
        calls = []
        original = poly_tree.registry.lookup

        def spy(session, tag, ids):
            calls.append((tag, sorted(ids)))
            return original(session, tag, ids)

        monkeypatch.setattr(poly_tree.registry, "lookup", spy)

        result = self.query.poly_descendants(self.p1)

        assert len(result) == 4
        assert sorted(tag for tag, _ in calls) == ["PolyProject", "PolyTask"]
        assert dict(calls)["PolyTask"] == sorted([self.t1.id, self.t2.id, self.t3.id])

    def test_kind_absent_from_result_not_queried(self, monkeypatch):
        """测试结果中没有出现的类型不会被查询"""
        calls = []
        original = poly_tree.registry.lookup

        def spy(session, tag, ids):
            calls.append(tag)
            return original(session, tag, ids)

        monkeypatch.setattr(poly_tree.registry, "lookup", spy)

        self.query.poly_descendants(self.t1)

        assert calls == ["PolyTask"]
