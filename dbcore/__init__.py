from dbcore.core_services.Connection import Connection, DotDict
from dbcore.core_services.ConnectionPool import ConnectionPool
from dbcore.core_services.DatabaseConfig import DatabaseConfig
from dbcore.core_services.DatabaseManager import DatabaseManager
from dbcore.core_services.Exceptions import (
    ConfigurationError, DatabaseException, MissingPrimaryKey, RecordNotFound,
)
from dbcore.database.ActiveRecord import ActiveRecord
from dbcore.database.Collection import Collection, collect
from dbcore.database.EnhancedActiveRecord import EnhancedActiveRecord
from dbcore.database.Events import on
from dbcore.database.JoinClause import JoinClause
from dbcore.database.Predicates import Raw
from dbcore.database.QueryBuilder import QueryBuilder
from dbcore.database.Runtime import (
    ModelRegistry, OrmContext, QueryCache, get_default_context, set_default_context,
)

__all__ = [
    "ActiveRecord", "Collection", "ConfigurationError", "Connection", "ConnectionPool",
    "DatabaseConfig", "DatabaseException", "DatabaseManager", "DotDict", "EnhancedActiveRecord",
    "JoinClause", "MissingPrimaryKey", "ModelRegistry", "OrmContext", "QueryBuilder", "QueryCache", "Raw",
    "RecordNotFound", "collect", "get_default_context", "on", "set_default_context",
]
