"""
callengine: telephony event ingestion and call-session engine.
"""

__version__ = "0.1.0"
