"""
M365 Compromise Investigation Engine
====================================
Scores Microsoft 365 sign-ins and account configuration against a registry of
compromise indicators, estimates breach probability, and recomputes results
when analysts mark indicators as false positives.

WARNING: This tool operates in STRICT READ-ONLY mode.
         No write operations will be performed against the tenant.
"""

__version__ = "1.0.0"
__author__ = "M365 Compromise Investigation Engine"
__mode__ = "READ-ONLY"
