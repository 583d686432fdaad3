"""
dlnacast - Cast local media to DLNA/UPnP renderers.

Discovers media renderers on the local network, streams a file (and an
optional subtitle) over HTTP and drives playback through AVTransport.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
