"""Request correlation and message routing over one persistent websocket."""

__version__ = '0.9.0'
