# 统一的 SQLAlchemy 声明式基类，所有 ORM 模型都继承自这里，建表时只需 Base.metadata.create_all。

from sqlalchemy.orm import declarative_base

Base = declarative_base()
