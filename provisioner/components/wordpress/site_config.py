# provisioner/components/wordpress/site_config.py
# -*- coding: utf-8 -*-
"""
Text transformations for the WordPress site: ``wp-config.php`` credentials
and salts, and ``php.ini`` overrides.
"""

import re
import secrets
import string
from typing import Dict, Optional

SALT_KEYS = (
    "AUTH_KEY",
    "SECURE_AUTH_KEY",
    "LOGGED_IN_KEY",
    "NONCE_KEY",
    "AUTH_SALT",
    "SECURE_AUTH_SALT",
    "LOGGED_IN_SALT",
    "NONCE_SALT",
)

_SALT_BLOCK = re.compile(r"define\(\s*'AUTH_KEY'.*?define\(\s*'NONCE_SALT'.*?\);", re.DOTALL)
_SALT_ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*()-_[]{}<>~+=,.;:/?|"


def php_quote(value: str) -> str:
    """Single-quoted PHP string literal."""
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def _define_pattern(name: str) -> "re.Pattern[str]":
    return re.compile(rf"define\(\s*'{name}'\s*,\s*'(?P<value>(?:[^'\\]|\\.)*)'\s*\);")


def _php_unquote(value: str) -> str:
    return re.sub(r"\\(.)", r"\1", value)


def generate_salts() -> str:
    """Local replacement for the WordPress salt service."""
    lines = []
    for key in SALT_KEYS:
        value = "".join(secrets.choice(_SALT_ALPHABET) for _ in range(64))
        lines.append(f"define( {php_quote(key)}, {php_quote(value)} );")
    return "\n".join(lines)


def render_wp_config(
    sample: str,
    db_name: str,
    db_user: str,
    db_password: str,
    salts: Optional[str] = None,
) -> str:
    """Fills ``wp-config-sample.php`` placeholders and replaces its salt block."""
    text = sample
    for placeholder, value in (
        ("database_name_here", db_name),
        ("username_here", db_user),
        ("password_here", db_password),
    ):
        text = text.replace(placeholder, php_quote(value)[1:-1])
    if salts:
        text = _SALT_BLOCK.sub(lambda _: salts.strip(), text, count=1)
    return text


def set_db_credentials(text: str, db_name: str, db_user: str, db_password: str) -> str:
    """Rewrites the DB_NAME, DB_USER and DB_PASSWORD defines of an existing config."""
    for name, value in (("DB_NAME", db_name), ("DB_USER", db_user), ("DB_PASSWORD", db_password)):
        replacement = f"define( '{name}', {php_quote(value)} );"
        text = _define_pattern(name).sub(lambda _: replacement, text, count=1)
    return text


def db_credentials(text: str) -> Dict[str, str]:
    """The DB_* defines found in ``text``, unquoted."""
    found = {}
    for name in ("DB_NAME", "DB_USER", "DB_PASSWORD"):
        match = _define_pattern(name).search(text)
        if match:
            found[name] = _php_unquote(match.group("value"))
    return found


def apply_php_settings(text: str, settings: Dict[str, str]) -> str:
    """
    Sets each ``key = value`` in a php.ini, uncommenting a ``;key =`` line
    when that is the only occurrence and appending keys that are absent.
    """
    for key, value in settings.items():
        active = re.compile(rf"^\s*{re.escape(key)}\s*=.*$", re.MULTILINE)
        commented = re.compile(rf"^\s*;\s*{re.escape(key)}\s*=.*$", re.MULTILINE)
        line = f"{key} = {value}"
        if active.search(text):
            text = active.sub(lambda _: line, text)
        elif commented.search(text):
            text = commented.sub(lambda _: line, text, count=1)
        else:
            text = text.rstrip("\n") + f"\n{line}\n"
    return text


def php_settings_applied(text: str, settings: Dict[str, str]) -> bool:
    for key, value in settings.items():
        values = re.findall(rf"^\s*{re.escape(key)}\s*=\s*(.*?)\s*$", text, re.MULTILINE)
        if not values or values[-1] != value:
            return False
    return True
