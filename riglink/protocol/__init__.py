# Wire layer for the rigctld link
# - codec:        extended-response framing and decoding
# - capabilities: dump_caps body -> RigCapabilities
from riglink.protocol.capabilities import parse_capabilities
from riglink.protocol.codec import (
    ResponseDecoder,
    RigResponse,
    decode_capabilities,
    decode_response,
    encode_command,
)

__all__ = [
    "ResponseDecoder",
    "RigResponse",
    "decode_capabilities",
    "decode_response",
    "encode_command",
    "parse_capabilities",
]
