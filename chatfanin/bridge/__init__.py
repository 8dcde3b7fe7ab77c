"""
브라우저 확장 브리지 (Instagram / TikTok / Facebook / YouTube 댓글 수신)
"""

from .comment_parser import BRIDGE_PLATFORMS, CommentParser, parse_timestamp
from .ingestor import ExtensionBridgeIngestor
from .server import BridgeSession, ExtensionBridgeServer, SessionState

__all__ = [
    "BRIDGE_PLATFORMS",
    "BridgeSession",
    "CommentParser",
    "ExtensionBridgeIngestor",
    "ExtensionBridgeServer",
    "SessionState",
    "parse_timestamp",
]
