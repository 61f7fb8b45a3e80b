# Core collector components

from .controller import MatchLifecycleController, MatchState
from .correlator import PhaseCorrelator, CombatState
from .events import HostEventBus, HostEventType, HostEvent, Subscription
from .log_tail import LogTailParser
from .sinks import MatchRecordWriter, MatchSubmitter

__all__ = [
    'MatchLifecycleController',
    'MatchState',
    'PhaseCorrelator',
    'CombatState',
    'HostEventBus',
    'HostEventType',
    'HostEvent',
    'Subscription',
    'LogTailParser',
    'MatchRecordWriter',
    'MatchSubmitter',
]
