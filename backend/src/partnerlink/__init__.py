"""
partnerlink - Partner identity linking service

Links partner-scoped agent and client identifiers to internal accounts
so partners can generate hotel-search deeplinks on their behalf.
"""

__version__ = "0.1.0"
