"""
Page-View Anomaly Evaluator

Hourly detection of anomalously low traffic per site.

Architecture:
- Baseline: mean views of the same hour-of-day over the preceding days
- Evaluation: OK/ALARM per site, edge-triggered against a persisted status
- Publishing: one event per status transition on the Kafka event bus

Usage:
    # Evaluate the last closed hour once
    python -m src.anomaly.evaluate

    # Run hourly
    python -m src.anomaly.evaluate --schedule
"""

from .baseline import BaselineCalculator
from .evaluator import AnomalyEvaluator, decide
from .models import AnomalyEvent, AnomalyStatus, EvaluationReport, EvaluatorConfig, HourBucket

__all__ = [
    "AnomalyEvaluator",
    "AnomalyEvent",
    "AnomalyStatus",
    "BaselineCalculator",
    "EvaluationReport",
    "EvaluatorConfig",
    "HourBucket",
    "decide",
]
