#!/usr/bin/env python3
"""
Stream Smoke Check
==================

Standalone script to check a running coolstream relay end to end.

This script:
    1. Optionally prints the relay status from the control API
    2. Connects to the MJPEG stream as a regular viewer
    3. Parses multipart chunks for a configurable duration
    4. Reports frame rate and validates every chunk's Content-Length

Prerequisites:
    - coolstream must be running (python -m coolstream.main)
    - Install dependencies: pip install -e .[scripts]

Usage:
    python scripts/check_stream.py --duration 20
    python scripts/check_stream.py --url http://raspberrypi:8080/ --control-url http://raspberrypi:8081
"""

import argparse
import logging
import os
import sys
import time
from typing import Optional

import requests


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger(__name__)


JPEG_MAGIC = b"\xff\xd8"


class StreamFormatError(Exception):
    """Raised when the stream does not follow the multipart format."""
    pass


def read_part(raw, boundary: bytes) -> bytes:
    """
    Read one multipart part from the raw response stream.

    Args:
        raw: urllib3 response (file-like)
        boundary: Boundary marker including the leading dashes

    Returns:
        Part payload
    """
    # Skip the CRLF that terminates the previous part
    line = raw.readline()
    while line in (b"\r\n", b"\n"):
        line = raw.readline()
    if not line:
        raise StreamFormatError("stream closed")
    if line.rstrip(b"\r\n") != boundary:
        raise StreamFormatError(f"expected boundary, got {line[:40]!r}")

    headers = {}
    while True:
        line = raw.readline()
        if not line:
            raise StreamFormatError("stream closed inside part headers")
        line = line.rstrip(b"\r\n")
        if not line:
            break
        name, _, value = line.decode("latin-1").partition(":")
        headers[name.strip().lower()] = value.strip()

    if "content-length" not in headers:
        raise StreamFormatError("part without Content-Length")
    length = int(headers["content-length"])

    payload = raw.read(length)
    if len(payload) != length:
        raise StreamFormatError(f"short part: declared {length}, got {len(payload)}")
    return payload


def print_status(control_url: Optional[str]) -> None:
    if not control_url:
        return
    try:
        response = requests.get(f"{control_url.rstrip('/')}/status", timeout=5)
        logger.info(f"Relay status: {response.json()}")
    except requests.RequestException as e:
        logger.warning(f"Could not read relay status: {e}")


def run_check(url: str, duration: float, control_url: Optional[str]) -> dict:
    """
    Watch the stream for `duration` seconds.

    Returns:
        Final metrics dict
    """
    logger.info("=" * 60)
    logger.info("coolstream Stream Check")
    logger.info("=" * 60)
    logger.info(f"Stream URL: {url}")
    logger.info(f"Duration: {duration} seconds")

    print_status(control_url)

    frames = 0
    bytes_received = 0
    not_jpeg = 0
    start_time = time.time()

    with requests.get(url, stream=True, timeout=(5, 30)) as response:
        content_type = response.headers.get("Content-Type", "")
        logger.info(f"Response: {response.status_code} {content_type}")
        if "boundary=" not in content_type:
            raise StreamFormatError(f"not a multipart stream: {content_type!r}")

        boundary = b"--" + content_type.split("boundary=", 1)[1].strip().encode("ascii")

        try:
            while time.time() - start_time < duration:
                payload = read_part(response.raw, boundary)
                frames += 1
                bytes_received += len(payload)
                if not payload.startswith(JPEG_MAGIC):
                    not_jpeg += 1
                if frames == 1:
                    logger.info(f"First frame after {time.time() - start_time:.2f}s")
        except KeyboardInterrupt:
            logger.info("Check interrupted by user")

    total_time = time.time() - start_time
    avg_fps = frames / total_time if total_time > 0 else 0.0

    logger.info("=" * 60)
    logger.info("FINAL SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Total runtime: {total_time:.1f} seconds")
    logger.info(f"Frames received: {frames}")
    logger.info(f"Average FPS: {avg_fps:.1f}")
    logger.info(f"Average frame size: {bytes_received // max(frames, 1)} bytes")
    logger.info(f"Non-JPEG parts: {not_jpeg}")
    logger.info("=" * 60)

    print_status(control_url)

    return {
        "duration": total_time,
        "frames_received": frames,
        "avg_fps": avg_fps,
        "not_jpeg": not_jpeg,
    }


def main():
    parser = argparse.ArgumentParser(description="Smoke check for a coolstream relay")
    parser.add_argument(
        "--url",
        type=str,
        default=os.environ.get("COOLSTREAM_STREAM_URL", "http://localhost:8080/"),
        help="MJPEG stream URL",
    )
    parser.add_argument(
        "--control-url",
        type=str,
        default=os.environ.get("COOLSTREAM_CONTROL_URL"),
        help="Control API root, e.g. http://localhost:8081",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=20.0,
        help="Seconds to watch the stream (default: 20)",
    )

    args = parser.parse_args()

    try:
        result = run_check(args.url, args.duration, args.control_url)
    except (requests.RequestException, StreamFormatError) as e:
        logger.error(f"Stream check failed: {e}")
        sys.exit(1)

    if result["frames_received"] > 0 and result["not_jpeg"] == 0:
        logger.info("Stream check passed")
        sys.exit(0)
    logger.error("Stream check failed")
    sys.exit(1)


if __name__ == "__main__":
    main()
