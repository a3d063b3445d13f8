"""
Restreamer HTTP trigger.

Health check, manual stream start and read-only status.
"""

from restreamer.http.server import RestreamHTTPServer

__all__ = [
    "RestreamHTTPServer",
]
