from hlsmix.domains.bridge.sdp import (
    DescriptorError,
    format_fmtp,
    parse_fmtp,
    render_descriptor,
)
from hlsmix.domains.bridge.service import (
    BridgeSetupFailure,
    MediaBridgeDescriptorWriter,
    sanitize_participant_id,
)

__all__ = [
    "BridgeSetupFailure",
    "DescriptorError",
    "MediaBridgeDescriptorWriter",
    "format_fmtp",
    "parse_fmtp",
    "render_descriptor",
    "sanitize_participant_id",
]
