from .base import BaseEvaluator, OutcomeRecorder
from .session import SessionCorrelator, SessionGroup
from .travel import ImpossibleTravelDetector
from .trusted_ip import TrustedIpProfile, TrustedIpProfiler
from .signin_analyzer import SignInContext, SignInEvaluator
from .user_analyzer import UserEvaluator

__all__ = [
    "BaseEvaluator",
    "OutcomeRecorder",
    "SessionCorrelator",
    "SessionGroup",
    "ImpossibleTravelDetector",
    "TrustedIpProfile",
    "TrustedIpProfiler",
    "SignInContext",
    "SignInEvaluator",
    "UserEvaluator",
]
