"""
Multipart Stream Protocol
=========================

Byte-level framing for the `multipart/x-mixed-replace` JPEG stream.

Wire format:
    Response header, sent once per connection:

        HTTP/1.0 200 OK
        Connection: close
        Cache-Control: no-cache
        Pragma: no-cache
        Content-Type: multipart/x-mixed-replace; boundary=ipcam

    Per-frame part:

        --ipcam
        Content-Type: image/jpeg
        Content-Length: <N>

        <N raw JPEG bytes>

All lines end with CRLF. Each part starts with a CRLF so the previous
part's payload is terminated before the next boundary.
"""


BOUNDARY = "ipcam"
CONTENT_TYPE = f"multipart/x-mixed-replace; boundary={BOUNDARY}"
PART_CONTENT_TYPE = "image/jpeg"

RESPONSE_HEADER: bytes = (
    "HTTP/1.0 200 OK\r\n"
    "Connection: close\r\n"
    "Cache-Control: no-cache\r\n"
    "Pragma: no-cache\r\n"
    f"Content-Type: {CONTENT_TYPE}\r\n\r\n"
).encode("ascii")


def part_header(content_length: int) -> bytes:
    """
    Build the boundary and part headers that precede a frame payload.

    Args:
        content_length: Payload size in bytes

    Returns:
        Encoded part header, ending with the blank line
    """
    return (
        f"\r\n--{BOUNDARY}\r\n"
        f"Content-Type: {PART_CONTENT_TYPE}\r\n"
        f"Content-Length: {content_length}\r\n\r\n"
    ).encode("ascii")
