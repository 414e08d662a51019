# common/http_utils.py
# -*- coding: utf-8 -*-
"""
Handles plain HTTPS downloads (tarballs, release binaries, salt keys).

Downloads are streamed into a temporary file next to the destination and only
renamed into place once complete.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

import requests

from common.errors import ExternalServiceError

module_logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT = 120


def download_file(
    url: str,
    download_to_path: Union[str, Path],
    mode: int = 0o644,
    current_logger: Optional[logging.Logger] = None,
) -> Path:
    """
    Download ``url`` to ``download_to_path``.

    Args:
        url: The URL to fetch.
        download_to_path: Destination file; its directory must be writable.
        mode: Permission bits of the downloaded file.
        current_logger: Optional logger instance.

    Returns:
        The destination path.

    Raises:
        ExternalServiceError: On any HTTP, connection or timeout error.
    """
    logger_to_use = current_logger if current_logger else module_logger
    destination = Path(download_to_path)
    destination.parent.mkdir(parents=True, exist_ok=True)
    logger_to_use.info(f"Downloading {url} -> {destination}")

    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{destination.name}.", suffix=".part", dir=str(destination.parent)
    )
    try:
        with os.fdopen(fd, "wb") as f:
            with requests.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT) as response:
                response.raise_for_status()
                for chunk in response.iter_content(chunk_size=65536):
                    if chunk:
                        f.write(chunk)
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, destination)
    except requests.exceptions.RequestException as req_err:
        raise ExternalServiceError(f"Download of {url} failed", [str(req_err)]) from req_err
    finally:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)

    logger_to_use.info(f"Downloaded {destination} ({destination.stat().st_size} bytes)")
    return destination


def fetch_text(url: str, timeout: int = 30) -> str:
    """GETs ``url`` and returns the body as text."""
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.exceptions.RequestException as req_err:
        raise ExternalServiceError(f"Request to {url} failed", [str(req_err)]) from req_err
    return response.text
