"""
Pipeline services.

Usage:
    from intelligence.services import IntelligencePipeline, SignalRouter
"""

from intelligence.services.adapters import AdapterRegistry, SignalAdapter, build_default_registry
from intelligence.services.anomaly_detection import AnomalyDetector
from intelligence.services.insight_aggregator import InsightAggregator
from intelligence.services.outcome_feedback import OutcomeFeedbackService
from intelligence.services.pipeline import IntelligencePipeline
from intelligence.services.priority_engine import PriorityEngine
from intelligence.services.signal_emitter import SignalEmitter
from intelligence.services.signal_router import SignalRouter


__all__ = [
    "AdapterRegistry",
    "SignalAdapter",
    "build_default_registry",
    "AnomalyDetector",
    "InsightAggregator",
    "OutcomeFeedbackService",
    "IntelligencePipeline",
    "PriorityEngine",
    "SignalEmitter",
    "SignalRouter",
]
