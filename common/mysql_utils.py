# common/mysql_utils.py
# -*- coding: utf-8 -*-
"""
MariaDB adapter. SQL is passed on stdin and the root password through the
MYSQL_PWD environment variable, so neither appears in the process list.
"""

import logging
import re
from typing import Optional

from common.errors import ValidationFailed
from provisioner.config_models import AppSettings

from .command_utils import ExternalProcessResult, run_command

module_logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z0-9_]{1,32}$")


def validate_identifier(value: str) -> str:
    """Database and user names: letters, digits and underscores, at most 32 chars."""
    value = value.strip()
    if not _IDENTIFIER.match(value):
        raise ValidationFailed(
            f"'{value}' is not a valid name (use letters, digits and underscores, max 32)"
        )
    return value


def quote_string(value: str) -> str:
    """Quotes a string literal for MariaDB."""
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def execute_sql(
    sql: str,
    app_settings: AppSettings,
    root_password: Optional[str] = None,
    check: bool = True,
    current_logger: Optional[logging.Logger] = None,
) -> ExternalProcessResult:
    """Runs ``sql`` as the MariaDB root user; unix-socket auth when no password is given."""
    env = {"MYSQL_PWD": root_password} if root_password else None
    return run_command(
        ["mysql", "--user=root", "--batch", "--skip-column-names"],
        app_settings,
        cmd_input=sql,
        env=env,
        timeout=120,
        check=check,
        current_logger=current_logger,
    )


def root_login_works(
    app_settings: AppSettings,
    root_password: Optional[str] = None,
    current_logger: Optional[logging.Logger] = None,
) -> bool:
    return execute_sql("SELECT 1;", app_settings, root_password, check=False, current_logger=current_logger).ok


def query_value(
    sql: str,
    app_settings: AppSettings,
    root_password: Optional[str] = None,
    current_logger: Optional[logging.Logger] = None,
) -> str:
    return execute_sql(sql, app_settings, root_password, current_logger=current_logger).stdout.strip()


def secure_installation_sql(root_password: str) -> str:
    return (
        f"ALTER USER 'root'@'localhost' IDENTIFIED BY {quote_string(root_password)};\n"
        "DELETE FROM mysql.user WHERE User='';\n"
        "DELETE FROM mysql.user WHERE User='root' AND Host NOT IN ('localhost', '127.0.0.1', '::1');\n"
        "DROP DATABASE IF EXISTS test;\n"
        "DELETE FROM mysql.db WHERE Db='test' OR Db='test\\_%';\n"
        "FLUSH PRIVILEGES;\n"
    )


def create_database_sql(db_name: str, db_user: str, db_password: str) -> str:
    db_name = validate_identifier(db_name)
    db_user = validate_identifier(db_user)
    return (
        f"CREATE DATABASE IF NOT EXISTS `{db_name}` "
        "DEFAULT CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci;\n"
        f"CREATE USER IF NOT EXISTS '{db_user}'@'localhost' IDENTIFIED BY {quote_string(db_password)};\n"
        f"ALTER USER '{db_user}'@'localhost' IDENTIFIED BY {quote_string(db_password)};\n"
        f"GRANT ALL PRIVILEGES ON `{db_name}`.* TO '{db_user}'@'localhost';\n"
        "FLUSH PRIVILEGES;\n"
    )
