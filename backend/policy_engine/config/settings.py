"""Runtime configuration defaults (overridable through environment or create_app(config))."""
from __future__ import annotations
import os
from typing import Any, Dict, Optional


def _float_or_none(raw: Optional[str]) -> Optional[float]:
    if raw is None or raw == '':
        return None
    return float(raw)


def _flag(raw: Optional[str], default: bool) -> bool:
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def load_settings() -> Dict[str, Any]:
    return {
        'JWT_SECRET_KEY': os.getenv('JWT_SECRET_KEY', 'dev-secret'),
        'DATABASE_URL': os.getenv('DATABASE_URL', 'sqlite:///dev.db'),
        # seconds a writer waits for the policy lock; None blocks until acquired
        'POLICY_LOCK_TIMEOUT': _float_or_none(os.getenv('POLICY_LOCK_TIMEOUT', '5')),
        'POLICY_SEED_ON_STARTUP': _flag(os.getenv('POLICY_SEED_ON_STARTUP'), True),
        'LOG_LEVEL': os.getenv('LOG_LEVEL', 'INFO'),
    }

__all__ = ['load_settings']
