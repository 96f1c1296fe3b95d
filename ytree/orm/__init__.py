"""ORM模块

提供闭包树所需的 ORM 基础设施：
- CoreModel: 节点记录基类（表名、id 自动 flush、提交抑制）
- 数据库会话管理
- 事务管理
- 闭包树扩展

使用示例:
    from ytree.orm import CoreModel, init_database, db_session_scope
    from ytree.orm.tree import ClosureTree, ClosureTreeFieldsMixin, ClosureTreeMixin

    class Category(CoreModel, ClosureTreeFieldsMixin, ClosureTreeMixin):
        name = mapped_column(String(100))

    ClosureTree(Category).install()
    engine, _ = init_database("sqlite:///./tree.db")
    Base.metadata.create_all(engine)

    with db_session_scope() as session:
        root = Category(name="根")
        session.add(root)
"""

from .id_model import IdModel, Base
from .core_model import CoreModel
from .utils import to_snake_case
from .db_session import (
    # 管理器单例
    db_manager,
    # 公开 API
    init_database,
    get_engine,
    db_session_scope,
)

# 事务管理
from .transaction import (
    # 状态
    TransactionState,

    # 异常
    TransactionError,
    TransactionNotActiveError,
    TransactionAlreadyCommittedError,

    # 上下文
    TransactionContext,

    # 管理器
    TransactionManager,
    transaction_manager,
    get_current_transaction,

    # 重试装饰器
    transaction_with_retry,
)

# 闭包树扩展
from .tree import (
    ClosureTree,
    ClosureTreeConfig,
    ClosureTreeMixin,
    ClosureTreeFieldsMixin,
    ClosureTreeParentFieldsMixin,
    AbstractHierarchy,
    create_hierarchy_model,
    DeletePolicy,
    MaintenanceStrategy,
    NodeRef,
    HierarchyStore,
    QueryEngine,
    TypeRegistry,
    hash_tree,
    hash_tree_to_list,
)

__all__ = [
    # 模型
    "IdModel",
    "Base",
    "CoreModel",
    "to_snake_case",

    # 会话
    "db_manager",
    "init_database",
    "get_engine",
    "db_session_scope",

    # 事务
    "TransactionState",
    "TransactionError",
    "TransactionNotActiveError",
    "TransactionAlreadyCommittedError",
    "TransactionContext",
    "TransactionManager",
    "transaction_manager",
    "get_current_transaction",
    "transaction_with_retry",

    # 闭包树
    "ClosureTree",
    "ClosureTreeConfig",
    "ClosureTreeMixin",
    "ClosureTreeFieldsMixin",
    "ClosureTreeParentFieldsMixin",
    "AbstractHierarchy",
    "create_hierarchy_model",
    "DeletePolicy",
    "MaintenanceStrategy",
    "NodeRef",
    "HierarchyStore",
    "QueryEngine",
    "TypeRegistry",
    "hash_tree",
    "hash_tree_to_list",
]
