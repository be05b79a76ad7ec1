"""
Input Validation Framework
Validation for server configuration and environment values
"""

import os
import re
from typing import Any, Optional

SERVER_ID_PATTERN = re.compile(r'^[A-Za-z0-9_-]{1,64}$')
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR')


class InputValidator:
    """Configuration input validation"""

    @staticmethod
    def validate_server_id(server_id: Any) -> Optional[str]:
        """Validate server ID"""
        if isinstance(server_id, str) and SERVER_ID_PATTERN.match(server_id.strip()):
            return server_id.strip()
        return None

    @staticmethod
    def validate_display_name(name: Any, max_length: int = 200) -> Optional[str]:
        """Validate server display name"""
        if not isinstance(name, str):
            return None

        # Remove control characters
        clean_name = re.sub(r'[\x00-\x1f\x7f]', '', name).strip()

        if not clean_name or len(clean_name) > max_length:
            return None

        return clean_name

    @staticmethod
    def validate_directory(path: Any) -> Optional[str]:
        """Validate that a path is an existing readable directory"""
        if not isinstance(path, str) or not path.strip():
            return None
        path = os.path.abspath(os.path.expanduser(path.strip()))
        if not os.path.isdir(path) or not os.access(path, os.R_OK):
            return None
        return path

    @staticmethod
    def validate_file_name(name: Any) -> Optional[str]:
        """Validate a bare log file name"""
        if not isinstance(name, str) or not name.strip():
            return None
        name = name.strip()
        if os.path.basename(name) != name or name in ('.', '..'):
            return None
        return name

    @staticmethod
    def validate_number(value: Any, min_val: float = 0.0, max_val: float = 86400.0) -> Optional[float]:
        """Validate numeric settings"""
        try:
            val = float(value)
            if min_val <= val <= max_val:
                return val
        except (ValueError, TypeError):
            pass
        return None

    @staticmethod
    def validate_log_level(level: Any) -> Optional[str]:
        """Validate logging level names"""
        if not isinstance(level, str):
            return None
        level = level.strip().upper()
        if level == 'WARN':
            level = 'WARNING'
        return level if level in LOG_LEVELS else None
