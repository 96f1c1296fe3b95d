"""日志工具测试

测试 get_logger 名称推断、setup_logger / setup_root_logger 的处理器配置，
以及闭包树操作输出的日志。
"""

import logging
import logging.handlers
import os
import re

import pytest
from sqlalchemy import Column, String
from sqlalchemy.orm import sessionmaker

from ytree.config import LoggingSettings
from ytree.log import (
    MicrosecondFormatter,
    create_formatter,
    get_logger,
    setup_logger,
    setup_root_logger,
)
from ytree.orm import Base, CoreModel
from ytree.orm.tree import ClosureTree, ClosureTreeFieldsMixin, ClosureTreeMixin


class LogNode(CoreModel, ClosureTreeFieldsMixin, ClosureTreeMixin):
    """日志测试节点"""
    __table_args__ = {"extend_existing": True}

    name = Column(String(100))


log_node_tree = ClosureTree(LogNode)


@pytest.fixture
def restore_loggers():
    """测试结束后恢复被修改的日志记录器"""
    names = ["ytree", "ytree.test", "sqlalchemy.engine"]
    saved = {}
    for name in names:
        lg = logging.getLogger(name)
        saved[name] = (lg.level, lg.propagate, list(lg.handlers))
    yield
    for name, (level, propagate, handlers) in saved.items():
        lg = logging.getLogger(name)
        for handler in lg.handlers:
            if handler not in handlers:
                handler.close()
        lg.handlers[:] = handlers
        lg.setLevel(level)
        lg.propagate = propagate


class TestGetLogger:
    """get_logger 测试"""

    def test_infer_module_name(self):
        assert get_logger().name == __name__

    def test_short_name_prefixed(self):
        assert get_logger("tree").name == "ytree.tree"

    def test_full_names_unchanged(self):
        assert get_logger("ytree").name == "ytree"
        assert get_logger("ytree.orm.tree").name == "ytree.orm.tree"
        assert get_logger("sqlalchemy.engine").name == "sqlalchemy.engine"


class TestFormatter:
    """格式化器测试"""

    def test_microseconds(self):
        formatter = create_formatter("%(asctime)s %(message)s")
        record = logging.LogRecord("ytree", logging.INFO, __file__, 1, "移动节点", None, None)

        output = formatter.format(record)

        assert isinstance(formatter, MicrosecondFormatter)
        assert re.match(r"\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\.\d{6} 移动节点", output)

    def test_without_microseconds(self):
        formatter = create_formatter(use_microseconds=False)

        assert not isinstance(formatter, MicrosecondFormatter)


class TestSetupLogger:
    """setup_logger / setup_root_logger 测试"""

    def test_console_only(self, restore_loggers):
        lg = setup_logger("ytree.test", level="debug")

        assert lg.level == logging.DEBUG
        assert [type(h) for h in lg.handlers] == [logging.StreamHandler]

    def test_plain_file_handler(self, restore_loggers, log_dir):
        """测试写入日志文件"""
        log_file = os.path.join(log_dir, "plain", "tree.log")

        lg = setup_logger("ytree.test", log_file=log_file, console=False)
        lg.info("重建层级表")
        for handler in lg.handlers:
            handler.flush()

        assert type(lg.handlers[0]) is logging.FileHandler
        with open(log_file, encoding="utf-8") as f:
            assert "重建层级表" in f.read()

    def test_rotating_file_handler(self, restore_loggers, log_dir):
        log_file = os.path.join(log_dir, "rotating.log")

        lg = setup_logger(
            "ytree.test",
            log_file=log_file,
            console=False,
            file_handler_options={"maxBytes": 1024, "backupCount": 2},
        )

        handler = lg.handlers[0]
        assert isinstance(handler, logging.handlers.RotatingFileHandler)
        assert handler.maxBytes == 1024
        assert handler.backupCount == 2

    def test_setup_clears_existing_handlers(self, restore_loggers):
        setup_logger("ytree.test")
        lg = setup_logger("ytree.test")

        assert len(lg.handlers) == 1

    def test_root_logger_from_config(self, restore_loggers, log_dir):
        """测试从 LoggingSettings 配置 ytree 根日志记录器"""
        config = LoggingSettings(
            level="WARNING",
            file_path=os.path.join(log_dir, "ytree.log"),
            file_max_bytes=2048,
            enable_console=False,
        )

        lg = setup_root_logger(config=config)

        assert lg.name == "ytree"
        assert lg.level == logging.WARNING
        assert not lg.propagate
        assert lg.handlers[0].maxBytes == 2048

    def test_root_logger_sql_log(self, restore_loggers):
        """测试启用 SQL 日志"""
        config = LoggingSettings(file_path="", sql_log_enabled=True)

        setup_root_logger(config=config)

        sql_logger = logging.getLogger("sqlalchemy.engine")
        assert sql_logger.level == logging.INFO
        assert len(sql_logger.handlers) == 1

    def test_root_logger_without_file(self, restore_loggers):
        lg = setup_root_logger(level="DEBUG")

        assert [type(h) for h in lg.handlers] == [logging.StreamHandler]


class TestTreeLogging:
    """闭包树操作日志测试"""

    @pytest.fixture(autouse=True)
    def setup_db(self, memory_engine):
        Base.metadata.create_all(bind=memory_engine)
        self.session = sessionmaker(autoflush=False, bind=memory_engine)()
        yield
        self.session.close()

    def test_delete_logged(self, caplog):
        store = log_node_tree.store(self.session)
        root = store.insert_node(LogNode(name="根"))
        child = store.insert_node(LogNode(name="子"), root)

        with caplog.at_level(logging.DEBUG, logger="ytree.orm.tree"):
            store.delete_node(child)

        assert any("删除节点" in r.getMessage() for r in caplog.records)

    def test_deferred_rebuild_logged(self, caplog):
        with caplog.at_level(logging.INFO, logger="ytree.orm.tree"):
            with log_node_tree.deferred_maintenance(self.session):
                self.session.add(LogNode(name="根"))

        assert any("延迟维护结束" in r.getMessage() for r in caplog.records)
