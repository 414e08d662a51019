# tests/components/test_site_config.py
from provisioner.components.wordpress.site_config import (
    SALT_KEYS,
    apply_php_settings,
    db_credentials,
    generate_salts,
    php_quote,
    php_settings_applied,
    render_wp_config,
    set_db_credentials,
)

SAMPLE = """\
<?php
define( 'DB_NAME', 'database_name_here' );
define( 'DB_USER', 'username_here' );
define( 'DB_PASSWORD', 'password_here' );
define( 'DB_HOST', 'localhost' );

define( 'AUTH_KEY',         'put your unique phrase here' );
define( 'SECURE_AUTH_KEY',  'put your unique phrase here' );
define( 'LOGGED_IN_KEY',    'put your unique phrase here' );
define( 'NONCE_KEY',        'put your unique phrase here' );
define( 'AUTH_SALT',        'put your unique phrase here' );
define( 'SECURE_AUTH_SALT', 'put your unique phrase here' );
define( 'LOGGED_IN_SALT',   'put your unique phrase here' );
define( 'NONCE_SALT',       'put your unique phrase here' );

$table_prefix = 'wp_';
"""

PHP_INI = """\
[PHP]
memory_limit = 128M
;upload_max_filesize = 2M
upload_max_filesize = 2M
; post_max_size = 8M
"""


def test_php_quote():
    assert php_quote("it's") == "'it\\'s'"


def test_render_wp_config_fills_placeholders_and_salts():
    salts = generate_salts()

    text = render_wp_config(SAMPLE, "wordpress", "wpuser", "s3cret'pw", salts)

    assert db_credentials(text) == {"DB_NAME": "wordpress", "DB_USER": "wpuser", "DB_PASSWORD": "s3cret'pw"}
    assert "put your unique phrase here" not in text
    assert "define( 'DB_HOST', 'localhost' );" in text
    assert "$table_prefix = 'wp_';" in text
    for key in SALT_KEYS:
        assert f"'{key}'" in text


def test_render_without_salts_keeps_block():
    text = render_wp_config(SAMPLE, "wordpress", "wpuser", "pw")

    assert "put your unique phrase here" in text


def test_generate_salts_are_unique():
    first, second = generate_salts(), generate_salts()

    assert first != second
    assert first.count("define(") == len(SALT_KEYS)


def test_set_db_credentials_rewrites_existing():
    text = render_wp_config(SAMPLE, "old_db", "old_user", "old-password")

    updated = set_db_credentials(text, "wordpress", "wpuser", "new$password\\1")

    assert db_credentials(updated) == {"DB_NAME": "wordpress", "DB_USER": "wpuser", "DB_PASSWORD": "new$password\\1"}
    assert updated.count("DB_PASSWORD") == 1


def test_apply_php_settings():
    settings = {"upload_max_filesize": "64M", "post_max_size": "64M", "max_execution_time": "300"}

    text = apply_php_settings(PHP_INI, settings)

    assert "upload_max_filesize = 64M" in text
    assert ";upload_max_filesize = 2M" in text
    assert "post_max_size = 64M" in text
    assert "; post_max_size" not in text
    assert text.rstrip().endswith("max_execution_time = 300")
    assert "memory_limit = 128M" in text
    assert php_settings_applied(text, settings)


def test_php_settings_applied_uses_last_value():
    assert not php_settings_applied("memory_limit = 256M\nmemory_limit = 128M\n", {"memory_limit": "256M"})
    assert not php_settings_applied(PHP_INI, {"upload_max_filesize": "64M"})
