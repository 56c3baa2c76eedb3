"""
feedback_processor.py
Records cross-component feedback and nudges the adaptive settings

Author: Adaptive Learning System
Date: 2024
"""

import logging
import threading
import time
import uuid
from datetime import datetime
from typing import Any, Callable, List, Mapping, Optional, Union

from adaptive_learning.core.adaptive_settings import AdaptiveSettingsStore
from adaptive_learning.core.learning_config import LearningConfig
from adaptive_learning.core.models import (
    AdaptiveSettings,
    FeedbackImpact,
    FeedbackLoopRecord,
    FeedbackType,
)
from adaptive_learning.core.performance_trackers import SignalEffectivenessTracker
from adaptive_learning.core.predictors import RiskReturnPredictor
from adaptive_learning.infrastructure.bounded_buffer import BoundedBuffer
from adaptive_learning.utils.validators import first_present, to_bool, to_float, to_str

logger = logging.getLogger(__name__)


# Nudges: (risk multiplier factor, confidence threshold delta)
HIGH_RISK_NUDGE = (0.90, 0.05)
MEDIUM_RISK_NUDGE = (0.95, 0.02)
SIGNAL_THRESHOLD_STEP = 0.01


def assess_impact(feedback_type: FeedbackType, data: Any) -> FeedbackImpact:
    """Fixed impact lookup"""
    if feedback_type == FeedbackType.RISK_ADJUSTMENT:
        severity = data.get('severity') if isinstance(data, Mapping) else None
        if str(severity).lower() == 'critical':
            return FeedbackImpact.HIGH
        return FeedbackImpact.MEDIUM
    if feedback_type == FeedbackType.SIGNAL_ACCURACY:
        return FeedbackImpact.MEDIUM
    return FeedbackImpact.LOW


class FeedbackLoopProcessor:
    """Audit log of feedback loops plus bounded settings nudges"""

    def __init__(self,
                 settings: AdaptiveSettingsStore,
                 signal_tracker: SignalEffectivenessTracker,
                 predictor: RiskReturnPredictor,
                 reconcile: Callable[[], AdaptiveSettings],
                 config: Optional[LearningConfig] = None):
        self.config = config or LearningConfig()
        self.settings = settings
        self.signal_tracker = signal_tracker
        self.predictor = predictor
        self.reconcile = reconcile
        self.feedback_log = BoundedBuffer(self.config.feedback_capacity, name='feedback_loops')
        self._lock = threading.Lock()

    def process(self, source_system: str, target_system: str,
                feedback_type: Union[FeedbackType, str], data: Any) -> Optional[FeedbackLoopRecord]:
        """Record, apply and return one feedback loop"""
        try:
            feedback_type = FeedbackType(feedback_type)
        except ValueError:
            logger.warning(f"Unknown feedback type {feedback_type!r} from {source_system}, ignoring")
            return None

        with self._lock:
            record = FeedbackLoopRecord(
                loop_id=f"feedback_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}",
                source_system=source_system,
                target_system=target_system,
                feedback_type=feedback_type,
                data=data,
                processed_at=datetime.now(),
                impact=assess_impact(feedback_type, data)
            )
            self.feedback_log.append(record)
            self._apply(record)

        logger.info(
            f"Feedback loop processed: {record.loop_id} {source_system}->{target_system} "
            f"{feedback_type.value} impact={record.impact.value}"
        )
        return record

    def get_recent(self, limit: int = 100) -> List[FeedbackLoopRecord]:
        return self.feedback_log.get_recent(limit)

    def __len__(self) -> int:
        return len(self.feedback_log)

    def _apply(self, record: FeedbackLoopRecord):
        if record.feedback_type == FeedbackType.RISK_ADJUSTMENT:
            self._adjust_risk(record)
        elif record.feedback_type == FeedbackType.SIGNAL_ACCURACY:
            self._adjust_signal_confidence(record)
        # Performance updates carry no direct nudge
        self.reconcile()

    def _adjust_risk(self, record: FeedbackLoopRecord):
        if record.impact == FeedbackImpact.HIGH:
            factor, delta = HIGH_RISK_NUDGE
            self.predictor.increase_sensitivity()
        else:
            factor, delta = MEDIUM_RISK_NUDGE
        settings = self.settings.nudge(risk_factor=factor, threshold_delta=delta)

        reason = record.data.get('reason') if isinstance(record.data, Mapping) else None
        logger.info(
            f"Risk feedback ({record.impact.value}) from {record.source_system}: "
            f"risk_multiplier={settings.risk_multiplier:.3f} reason={reason}"
        )

    def _adjust_signal_confidence(self, record: FeedbackLoopRecord):
        data = record.data if isinstance(record.data, Mapping) else {}
        was_correct = to_bool(first_present(data, 'was_correct', 'wasCorrect', 'correct'))
        if was_correct is None:
            logger.debug(f"Signal feedback {record.loop_id} has no correctness flag")
            return

        signal_type = to_str(first_present(data, 'signal_type', 'signalType', 'type'))
        source = to_str(data.get('source')) or record.source_system
        if signal_type:
            self.signal_tracker.update(
                signal_type, source, was_correct,
                strength=to_float(data.get('strength')) or 1.0
            )

        delta = -SIGNAL_THRESHOLD_STEP if was_correct else SIGNAL_THRESHOLD_STEP
        self.settings.nudge(threshold_delta=delta)
