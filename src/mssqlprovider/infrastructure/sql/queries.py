"""
T-SQL for server login and database user management.

Identifiers cannot be bound as parameters, so every DDL statement receives
its inputs as ``?`` parameters, assigns them to variables and builds the
dynamic statement with QUOTENAME on the server side. Commands that modify an
existing principal address it by ``principal_id`` so they keep working
after a rename.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SqlCommand:
    """A named T-SQL batch."""

    name: str
    sql: str

    def __str__(self) -> str:
        return self.name


# =============================================================================
# Server logins (server-scoped session)
# =============================================================================

_LOGIN_COLUMNS = """
    SELECT
        sp.principal_id,
        sp.name,
        CONVERT(VARCHAR(172), sp.sid, 1) AS sid,
        sp.default_database_name,
        sp.default_language_name,
        sp.type_desc
    FROM sys.server_principals sp
"""

LOGIN_BY_NAME = SqlCommand(
    "login_by_name",
    _LOGIN_COLUMNS + "WHERE sp.name = ? AND sp.type IN ('S', 'U', 'G', 'E', 'X')",
)

LOGIN_BY_ID = SqlCommand(
    "login_by_id",
    _LOGIN_COLUMNS + "WHERE sp.principal_id = ? AND sp.type IN ('S', 'U', 'G', 'E', 'X')",
)

CREATE_LOGIN = SqlCommand(
    "create_login",
    """
    DECLARE @name SYSNAME = ?, @password NVARCHAR(MAX) = ?,
            @default_database SYSNAME = ?, @default_language SYSNAME = ?;
    DECLARE @sql NVARCHAR(MAX) = N'CREATE LOGIN ' + QUOTENAME(@name)
        + N' WITH PASSWORD = N''' + REPLACE(@password, N'''', N'''''') + N''''
        + N', DEFAULT_DATABASE = ' + QUOTENAME(@default_database);
    IF @default_language <> N''
        SET @sql = @sql + N', DEFAULT_LANGUAGE = ' + QUOTENAME(@default_language);
    EXEC (@sql);
    """,
)

_LOGIN_NAME_BY_ID = """
    DECLARE @name SYSNAME = (SELECT name FROM sys.server_principals WHERE principal_id = ?);
"""

ALTER_LOGIN_PASSWORD = SqlCommand(
    "alter_login_password",
    _LOGIN_NAME_BY_ID + """
    DECLARE @password NVARCHAR(MAX) = ?;
    EXEC (N'ALTER LOGIN ' + QUOTENAME(@name)
        + N' WITH PASSWORD = N''' + REPLACE(@password, N'''', N'''''') + N'''');
    """,
)

ALTER_LOGIN_DEFAULT_DATABASE = SqlCommand(
    "alter_login_default_database",
    _LOGIN_NAME_BY_ID + """
    DECLARE @value SYSNAME = ?;
    EXEC (N'ALTER LOGIN ' + QUOTENAME(@name) + N' WITH DEFAULT_DATABASE = ' + QUOTENAME(@value));
    """,
)

ALTER_LOGIN_DEFAULT_LANGUAGE = SqlCommand(
    "alter_login_default_language",
    _LOGIN_NAME_BY_ID + """
    DECLARE @value SYSNAME = ?;
    EXEC (N'ALTER LOGIN ' + QUOTENAME(@name) + N' WITH DEFAULT_LANGUAGE = ' + QUOTENAME(@value));
    """,
)

RENAME_LOGIN = SqlCommand(
    "rename_login",
    _LOGIN_NAME_BY_ID + """
    DECLARE @value SYSNAME = ?;
    EXEC (N'ALTER LOGIN ' + QUOTENAME(@name) + N' WITH NAME = ' + QUOTENAME(@value));
    """,
)

# Open sessions keep a login from being dropped
KILL_LOGIN_SESSIONS = SqlCommand(
    "kill_login_sessions",
    _LOGIN_NAME_BY_ID + """
    DECLARE @kill NVARCHAR(MAX) = N'';
    SELECT @kill = @kill + N'KILL ' + CONVERT(NVARCHAR(11), session_id) + N';'
    FROM sys.dm_exec_sessions
    WHERE login_name = @name AND session_id <> @@SPID;
    IF @kill <> N'' EXEC (@kill);
    """,
)

DROP_LOGIN = SqlCommand(
    "drop_login",
    _LOGIN_NAME_BY_ID + """
    IF @name IS NOT NULL
        EXEC (N'DROP LOGIN ' + QUOTENAME(@name));
    """,
)

# =============================================================================
# Database users (database-scoped session)
# =============================================================================

_USER_COLUMNS = """
    SELECT
        dp.principal_id,
        dp.name,
        CONVERT(VARCHAR(172), dp.sid, 1) AS sid,
        dp.default_schema_name,
        dp.default_language_name,
        dp.authentication_type_desc,
        sp.name AS login_name,
        DB_NAME() AS database_name
    FROM sys.database_principals dp
    LEFT JOIN sys.server_principals sp ON sp.sid = dp.sid
"""

USER_BY_NAME = SqlCommand(
    "user_by_name",
    _USER_COLUMNS + "WHERE dp.name = ? AND dp.type IN ('S', 'U', 'G', 'E', 'X')",
)

USER_BY_ID = SqlCommand(
    "user_by_id",
    _USER_COLUMNS + "WHERE dp.principal_id = ? AND dp.type IN ('S', 'U', 'G', 'E', 'X')",
)

USER_ROLES = SqlCommand(
    "user_roles",
    """
    SELECT r.name
    FROM sys.database_role_members m
    JOIN sys.database_principals r ON r.principal_id = m.role_principal_id
    WHERE m.member_principal_id = ?
    ORDER BY r.name
    """,
)

ROLE_BY_NAME = SqlCommand(
    "role_by_name",
    "SELECT principal_id, name FROM sys.database_principals WHERE name = ? AND type = 'R'",
)

_USER_OPTIONS = """
    IF @default_schema <> N''
        SET @options = @options + N'DEFAULT_SCHEMA = ' + QUOTENAME(@default_schema);
    IF @default_language <> N''
        SET @options = @options + CASE WHEN @options = N'' THEN N'' ELSE N', ' END
            + N'DEFAULT_LANGUAGE = ' + QUOTENAME(@default_language);
"""

CREATE_USER_FOR_LOGIN = SqlCommand(
    "create_user_for_login",
    """
    DECLARE @name SYSNAME = ?, @login SYSNAME = ?,
            @default_schema SYSNAME = ?, @default_language SYSNAME = ?;
    DECLARE @options NVARCHAR(MAX) = N'';
    """ + _USER_OPTIONS + """
    EXEC (N'CREATE USER ' + QUOTENAME(@name) + N' FOR LOGIN ' + QUOTENAME(@login)
        + CASE WHEN @options = N'' THEN N'' ELSE N' WITH ' + @options END);
    """,
)

CREATE_USER_WITH_PASSWORD = SqlCommand(
    "create_user_with_password",
    """
    DECLARE @name SYSNAME = ?, @password NVARCHAR(MAX) = ?,
            @default_schema SYSNAME = ?, @default_language SYSNAME = ?;
    DECLARE @options NVARCHAR(MAX) = N'';
    """ + _USER_OPTIONS + """
    EXEC (N'CREATE USER ' + QUOTENAME(@name)
        + N' WITH PASSWORD = N''' + REPLACE(@password, N'''', N'''''') + N''''
        + CASE WHEN @options = N'' THEN N'' ELSE N', ' + @options END);
    """,
)

# Azure AD principal looked up by display name in the tenant
CREATE_USER_FROM_EXTERNAL_PROVIDER = SqlCommand(
    "create_user_from_external_provider",
    """
    DECLARE @name SYSNAME = ?, @default_schema SYSNAME = ?, @default_language SYSNAME = ?;
    DECLARE @options NVARCHAR(MAX) = N'';
    """ + _USER_OPTIONS + """
    EXEC (N'CREATE USER ' + QUOTENAME(@name) + N' FROM EXTERNAL PROVIDER'
        + CASE WHEN @options = N'' THEN N'' ELSE N' WITH ' + @options END);
    """,
)

# Azure AD principal pinned by object id (no directory lookup needed)
CREATE_USER_WITH_OBJECT_ID = SqlCommand(
    "create_user_with_object_id",
    """
    DECLARE @name SYSNAME = ?, @object_id NVARCHAR(36) = ?,
            @default_schema SYSNAME = ?, @default_language SYSNAME = ?;
    DECLARE @options NVARCHAR(MAX) = N'';
    """ + _USER_OPTIONS + """
    DECLARE @sid NVARCHAR(MAX) = CONVERT(NVARCHAR(MAX),
        CONVERT(VARBINARY(16), CONVERT(UNIQUEIDENTIFIER, @object_id)), 1);
    EXEC (N'CREATE USER ' + QUOTENAME(@name) + N' WITH SID = ' + @sid + N', TYPE = E'
        + CASE WHEN @options = N'' THEN N'' ELSE N', ' + @options END);
    """,
)

_USER_NAME_BY_ID = """
    DECLARE @name SYSNAME = (SELECT name FROM sys.database_principals WHERE principal_id = ?);
"""

ALTER_USER_PASSWORD = SqlCommand(
    "alter_user_password",
    _USER_NAME_BY_ID + """
    DECLARE @password NVARCHAR(MAX) = ?;
    EXEC (N'ALTER USER ' + QUOTENAME(@name)
        + N' WITH PASSWORD = N''' + REPLACE(@password, N'''', N'''''') + N'''');
    """,
)

ALTER_USER_DEFAULT_SCHEMA = SqlCommand(
    "alter_user_default_schema",
    _USER_NAME_BY_ID + """
    DECLARE @value SYSNAME = ?;
    EXEC (N'ALTER USER ' + QUOTENAME(@name) + N' WITH DEFAULT_SCHEMA = ' + QUOTENAME(@value));
    """,
)

ALTER_USER_DEFAULT_LANGUAGE = SqlCommand(
    "alter_user_default_language",
    _USER_NAME_BY_ID + """
    DECLARE @value SYSNAME = ?;
    EXEC (N'ALTER USER ' + QUOTENAME(@name) + N' WITH DEFAULT_LANGUAGE = ' + QUOTENAME(@value));
    """,
)

RENAME_USER = SqlCommand(
    "rename_user",
    _USER_NAME_BY_ID + """
    DECLARE @value SYSNAME = ?;
    EXEC (N'ALTER USER ' + QUOTENAME(@name) + N' WITH NAME = ' + QUOTENAME(@value));
    """,
)

ADD_ROLE_MEMBER = SqlCommand(
    "add_role_member",
    _USER_NAME_BY_ID + """
    DECLARE @role SYSNAME = ?;
    EXEC (N'ALTER ROLE ' + QUOTENAME(@role) + N' ADD MEMBER ' + QUOTENAME(@name));
    """,
)

DROP_ROLE_MEMBER = SqlCommand(
    "drop_role_member",
    _USER_NAME_BY_ID + """
    DECLARE @role SYSNAME = ?;
    EXEC (N'ALTER ROLE ' + QUOTENAME(@role) + N' DROP MEMBER ' + QUOTENAME(@name));
    """,
)

DROP_USER = SqlCommand(
    "drop_user",
    _USER_NAME_BY_ID + """
    IF @name IS NOT NULL
        EXEC (N'DROP USER ' + QUOTENAME(@name));
    """,
)
