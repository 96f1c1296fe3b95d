__version__ = "0.1.0"
__author__ = "ytree"
__description__ = "基于闭包表的 SQLAlchemy 层级结构库"
