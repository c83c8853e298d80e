"""
IPTV Relay
Channel aggregation, stream health checks and a streaming proxy
"""

__version__ = "1.2.0"
