"""
Alert Worker - event bus to notification channel.
"""

from .models import AlertPolicy, AlertWorkerConfig
from .worker import AlertWorker, format_alert

__all__ = ["AlertPolicy", "AlertWorker", "AlertWorkerConfig", "format_alert"]
