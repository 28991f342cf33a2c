"""
Pseudonymous user identity.

There are no accounts: every device derives a stable id from a few
environment signals on first run and keeps it in the config directory.
The id tags every write as its origin.
"""

import hashlib
import locale
import logging
import os
import platform
import shutil
import sys
import time
from pathlib import Path
from typing import Dict, Optional

from shared.constants import IDENTITY_FILENAME

logger = logging.getLogger(__name__)

USER_ID_PREFIX = "user_"


def environment_signals() -> Dict[str, str]:
    size = shutil.get_terminal_size((80, 24))
    if time.daylight and time.localtime().tm_isdst:
        offset_minutes = time.altzone // 60
    else:
        offset_minutes = time.timezone // 60

    try:
        language = locale.getlocale()[0] or ''
    except ValueError:
        language = ''

    return {
        'agent': f"python/{platform.python_version()} ({platform.system()} {platform.release()})",
        'language': language or os.environ.get('LANG', ''),
        'geometry': f"{size.columns}x{size.lines}",
        'tz_offset': str(offset_minutes),
        'platform': sys.platform,
    }


def derive_user_id(signals: Dict[str, str]) -> str:
    """Same signals, same id."""
    fingerprint = "|".join(signals.get(name, '') for name in
                           ('agent', 'language', 'geometry', 'tz_offset', 'platform'))
    return USER_ID_PREFIX + hashlib.sha256(fingerprint.encode('utf-8')).hexdigest()[:16]


def load_or_create_user_id(config_dir: Path, signals: Optional[Dict[str, str]] = None) -> str:
    """
    Return the cached id, deriving and caching one on first run.

    A cache that cannot be written is not fatal; the id is still returned
    and will be derived again next run.
    """
    path = Path(config_dir).expanduser() / IDENTITY_FILENAME
    if path.exists():
        cached = path.read_text().strip()
        if cached.startswith(USER_ID_PREFIX):
            return cached
        logger.warning(f"Ignoring malformed identity file {path}")

    user_id = derive_user_id(signals if signals is not None else environment_signals())
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(user_id + "\n")
        logger.info(f"Created user identity {user_id}")
    except OSError as e:
        logger.warning(f"Could not cache user identity at {path}: {e}")
    return user_id
