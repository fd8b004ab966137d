"""
reactd - Reaction Daemon Action Layer

Executes remediation actions once the condition layer has decided to act.
"""

__version__ = "1.0.0"
