"""
节点记录基类

层级中的每种节点类型都继承 CoreModel：表名按类名生成，
读取 id 时自动 flush，层级维护事务中 save(commit=True) 只 flush。
"""

from __future__ import annotations

from sqlalchemy import inspect
from sqlalchemy.orm import declared_attr, Session, Query
from typing import ClassVar, TYPE_CHECKING

if TYPE_CHECKING:
    from typing_extensions import Self

from ytree.log import get_logger

from .id_model import IdModel
from .utils import to_snake_case

logger = get_logger("ytree.orm.transaction")


class CoreModel(IdModel):
    """节点记录基类

    使用示例:
        class Category(CoreModel, ClosureTreeFieldsMixin, ClosureTreeMixin):
            name = Column(String(100))

        root = Category(name="根").save(commit=True)
        Category(name="图书", parent_id=root.id).save(commit=True)
    """
    __abstract__ = True

    # init_database 之后由 scoped_session.query_property() 设置
    if TYPE_CHECKING:
        query: ClassVar[Query[Self]]

    _session: Session = None

    @declared_attr.directive
    def __tablename__(cls) -> str:
        """Category -> category，层级表在此基础上加后缀"""
        name = cls.__name__
        if '_' in name:
            raise ValueError(f'{name}字符中包含下划线，无法转换')
        return to_snake_case(name)

    def __repr__(self):
        return f"<{self.__class__.__name__} id={self.id}>"

    def __getattribute__(self, name):
        """pending 节点读取 id 时先 flush，父指针可以直接写 parent_id=parent.id"""
        value = super().__getattribute__(name)

        if name == 'id' and value is None:
            try:
                state = super().__getattribute__('_sa_instance_state')
            except AttributeError:
                return value
            session = state.session
            # before_flush 中不能再次 flush
            if session is not None and state.pending and not session._flushing:
                session.flush()
                return super().__getattribute__(name)

        return value

    @property
    def session(self) -> Session:
        """对象所属 session，游离对象使用 query 属性或全局 scoped_session"""
        state = inspect(self)
        if state.session is not None:
            return state.session
        if self._session is None:
            query = getattr(self.__class__, "query", None)
            if query is not None:
                self._session = query.session
            else:
                from .db_session import db_manager
                self._session = db_manager.get_session()
        return self._session

    def save(self, commit: bool = False) -> Self:
        """加入 session；commit=True 时提交，处于层级维护事务中则只 flush"""
        self.session.add(self)
        self._commit(commit)
        return self

    def delete(self, commit: bool = False):
        self.session.delete(self)
        self._commit(commit)

    @classmethod
    def get(cls, id: int):
        """按 id 获取，不存在返回 None"""
        return cls.query.session.get(cls, id)

    @classmethod
    def get_all(cls):
        return cls.query.all()

    def to_dict(self, exclude: set = None) -> dict:
        """列值字典，hash_tree_to_list 默认用它序列化节点"""
        exclude = exclude or set()
        return {
            c.key: getattr(self, c.key)
            for c in inspect(self).mapper.column_attrs
            if c.key not in exclude
        }

    def _commit(self, commit: bool) -> None:
        if not commit:
            return
        from .transaction import get_current_transaction
        tx = get_current_transaction()
        if tx is not None and tx.should_suppress_commit():
            logger.debug("commit=True 被事务上下文抑制")
            self.session.flush()
            return
        self.session.commit()
