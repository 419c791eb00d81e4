from .streaming_handler import BufferedChannel, ResponseChannel, StreamingChannel

__all__ = ["BufferedChannel", "ResponseChannel", "StreamingChannel"]
