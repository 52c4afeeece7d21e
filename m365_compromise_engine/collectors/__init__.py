from .base import BaseCollector, CollectorResult
from .signins import SignInCollector
from .account import AccountCollector
from .normalize import build_account_data, normalize_sign_in, normalize_user_facts

ALL_COLLECTORS = [
    SignInCollector,
    AccountCollector,
]

__all__ = [
    "BaseCollector",
    "CollectorResult",
    "SignInCollector",
    "AccountCollector",
    "build_account_data",
    "normalize_sign_in",
    "normalize_user_facts",
    "ALL_COLLECTORS",
]
