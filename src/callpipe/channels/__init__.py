"""RPC channels a session can dispatch commands through."""

from callpipe.channels.base import CallResult, Incoming, RpcChannel
from callpipe.channels.wsj1 import Wsj1Channel, build_url, connect

__all__ = ["CallResult", "Incoming", "RpcChannel", "Wsj1Channel", "build_url", "connect"]
