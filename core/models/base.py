from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

__all__ = [
    "Base",
    "Boolean",
    "Column",
    "DateTime",
    "ForeignKey",
    "Index",
    "Integer",
    "Numeric",
    "String",
    "Text",
    "UniqueConstraint",
    "relationship",
]
