# common/network_utils.py
# -*- coding: utf-8 -*-
"""
Network-related utility functions: domain handling, name sanitizing and
reachability probes.
"""
import logging
import re
import time
from typing import Iterable, List, Optional, Tuple

from common.errors import CommandNotFound, ValidationFailed
from provisioner.config_models import AppSettings

from .command_utils import _symbols, command_exists, log_message, run_command

module_logger = logging.getLogger(__name__)

DOMAIN_PATTERN = re.compile(
    r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*"
    r"\.[a-zA-Z]{2,}$"
)
_TUNNEL_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"
)
DEFAULT_TUNNEL_NAME = "wordpress-tunnel"


def normalize_domain(value: str) -> str:
    """
    Trims, lowercases and strips a leading scheme, a leading ``www.`` and
    trailing slashes from a user-entered domain.
    """
    domain = value.strip().lower()
    for prefix in ("http://", "https://"):
        if domain.startswith(prefix):
            domain = domain[len(prefix):]
    if domain.startswith("www."):
        domain = domain[len("www."):]
    return domain.rstrip("/")


def validate_domain(domain: str) -> str:
    """
    Validates a (normalized) domain against a conservative hostname-label
    grammar: labels of 1-63 alphanumerics or inner hyphens and an
    alphabetic TLD of at least two characters.

    Raises:
        ValidationFailed: If the domain does not match.
    """
    if not domain or len(domain) > 253 or not DOMAIN_PATTERN.match(domain):
        raise ValidationFailed(
            f"'{domain}' is not a valid domain name (expected something like example.com)"
        )
    return domain


def sanitize_device_name(value: str) -> str:
    """Keeps letters, digits, spaces, underscores and hyphens."""
    cleaned = re.sub(r"[^a-zA-Z0-9 _-]", "", value).strip()
    if not cleaned:
        raise ValidationFailed("Device name must contain at least one letter or digit")
    return cleaned


def tunnel_name_for_domain(domain: Optional[str]) -> str:
    """Derives a tunnel name such as ``blog-example-com`` from a domain."""
    if not domain:
        return DEFAULT_TUNNEL_NAME
    name = re.sub(r"[^a-zA-Z0-9-]", "", domain.replace(".", "-"))
    return name or DEFAULT_TUNNEL_NAME


def sanitize_tunnel_name(value: str) -> str:
    name = re.sub(r"[^a-zA-Z0-9-]", "", value.strip().replace(".", "-"))
    if not name:
        raise ValidationFailed("Tunnel name must contain letters, digits or hyphens")
    return name


def is_tunnel_uuid(value: str) -> bool:
    return bool(_TUNNEL_UUID_PATTERN.match(value.strip().lower()))


def probe_host(
    target: str,
    app_settings: Optional[AppSettings],
    timeout: int = 5,
    current_logger: Optional[logging.Logger] = None,
) -> bool:
    """Sends a single ping to ``target``; True when it answered in time."""
    try:
        result = run_command(
            ["ping", "-c", "1", "-W", str(timeout), target],
            app_settings,
            timeout=timeout + 2,
            check=False,
            current_logger=current_logger,
        )
    except CommandNotFound:
        return False
    return result.ok


def check_connectivity(
    app_settings: AppSettings,
    targets: Optional[Iterable[str]] = None,
    timeout: Optional[int] = None,
    attempts: Optional[int] = None,
    delay: Optional[float] = None,
    current_logger: Optional[logging.Logger] = None,
) -> Tuple[bool, str]:
    """
    Probes an ordered list of targets, round by round, and stops at the
    first target that answers.

    Returns:
        Tuple[bool, str]: Whether any target answered, and a detail string
        naming the reachable target or the targets tried.
    """
    logger_to_use = current_logger if current_logger else module_logger
    symbols = _symbols(app_settings)
    preflight = app_settings.preflight
    target_list: List[str] = list(targets if targets is not None else preflight.ping_targets)
    timeout = timeout if timeout is not None else preflight.ping_timeout
    attempts = attempts if attempts is not None else preflight.ping_attempts
    delay = delay if delay is not None else preflight.ping_delay

    for attempt in range(1, attempts + 1):
        for target in target_list:
            if probe_host(target, app_settings, timeout, logger_to_use):
                return True, f"{target} reachable"
        if attempt < attempts:
            log_message(
                f"{symbols.get('warning', '!')} No probe target reachable "
                f"(attempt {attempt}/{attempts}); retrying in {delay:g}s",
                "warning",
                logger_to_use,
                app_settings,
            )
            time.sleep(delay)
    return False, f"none of {', '.join(target_list)} reachable after {attempts} attempts"


def domain_nameservers(
    domain: str,
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
) -> List[str]:
    """Returns the NS records of ``domain`` using ``dig +short``; empty if unknown."""
    if not command_exists("dig"):
        return []
    result = run_command(
        ["dig", "+short", "NS", domain],
        app_settings,
        timeout=15,
        check=False,
        current_logger=current_logger,
    )
    if not result.ok:
        return []
    return [line.strip().rstrip(".").lower() for line in result.stdout.splitlines() if line.strip()]


def domain_uses_cloudflare_ns(
    domain: str,
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
) -> Tuple[bool, str]:
    nameservers = domain_nameservers(domain, app_settings, current_logger)
    if not nameservers:
        return False, f"could not resolve nameservers for {domain}"
    if any(ns.endswith("ns.cloudflare.com") for ns in nameservers):
        return True, f"{domain} uses Cloudflare nameservers"
    return False, f"{domain} nameservers are {', '.join(nameservers)} (not Cloudflare)"
