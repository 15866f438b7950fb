"""
CaseGate

Case-scoped access control for a conversational assistant over a shared
document corpus.
"""

__version__ = "0.1.0"
