"""Wire framing and envelope shapes for both bridge channels."""

from codex_bridge.protocol.framing import Frame, JsonLineWriter, decode_line, encode_message, read_frames

__all__ = ["Frame", "JsonLineWriter", "decode_line", "encode_message", "read_frames"]
