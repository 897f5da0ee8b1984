import ipaddress
from typing import Dict, Iterable, List, Mapping, Optional

from aiortc.rtcrtpparameters import RTCRtpCodecParameters

from infra.net import PortPair

from hlsmix.domains.participants import MediaKind


class DescriptorError(ValueError):
    pass


def _address_line(ip: str) -> str:
    try:
        version = ipaddress.ip_address(ip).version
    except ValueError as exc:
        raise DescriptorError("invalid bridge address: {}".format(ip)) from exc
    return "IN IP{} {}".format(version, ip)


def codec_name(codec: RTCRtpCodecParameters) -> str:
    mime = codec.mimeType or ""
    if "/" not in mime:
        raise DescriptorError("invalid codec mime type: {!r}".format(mime))
    return mime.split("/", 1)[1]


def format_fmtp(parameters: Optional[Mapping[str, object]]) -> str:
    items = []
    for key, value in (parameters or {}).items():
        if value is None:
            items.append(str(key))
        else:
            items.append("{}={}".format(key, value))
    return ";".join(items)


def parse_fmtp(value: str) -> Dict[str, Optional[str]]:
    params: Dict[str, Optional[str]] = {}
    for item in value.split(";"):
        item = item.strip()
        if not item:
            continue
        if "=" in item:
            key, val = item.split("=", 1)
            params[key.strip()] = val.strip()
        else:
            params[item] = None
    return params


def select_codec(codecs: Iterable[RTCRtpCodecParameters]) -> RTCRtpCodecParameters:
    for codec in codecs:
        return codec
    raise DescriptorError("no negotiated codec")


def render_descriptor(
    kind: MediaKind,
    codec: RTCRtpCodecParameters,
    ip: str,
    ports: PortPair,
    *,
    session_name: str = "hlsmix",
) -> str:
    """Session description of one inbound RTP feed for the transcoder."""
    if codec.payloadType is None:
        raise DescriptorError("codec has no payload type")
    address = _address_line(ip)
    payload_type = codec.payloadType
    rtpmap = "{}/{}".format(codec_name(codec), codec.clockRate)
    if kind is MediaKind.AUDIO:
        rtpmap += "/{}".format(codec.channels or 1)
    lines: List[str] = [
        "v=0",
        "o=- 0 0 {}".format(address),
        "s={}".format(session_name),
        "c={}".format(address),
        "t=0 0",
        "m={} {} RTP/AVP {}".format(kind.value, ports.rtp_port, payload_type),
        "a=rtcp:{}".format(ports.rtcp_port),
        "a=rtpmap:{} {}".format(payload_type, rtpmap),
    ]
    fmtp = format_fmtp(codec.parameters)
    if fmtp:
        lines.append("a=fmtp:{} {}".format(payload_type, fmtp))
    lines.append("a=recvonly")
    return "\r\n".join(lines) + "\r\n"
