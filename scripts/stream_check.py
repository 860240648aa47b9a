#!/usr/bin/env python3
"""
Stream Check
============

Standalone client that checks a running framecast (or ESP32-CAM)
stream end to end.

This script:
    1. Optionally waits for a presence beacon to find the device
    2. Opens /stream and parses the multipart body part by part
    3. Decodes every JPEG to confirm it is a real image
    4. Logs stats every few seconds and reports a final summary

Prerequisites:
    - A framecast server reachable from this machine
    - Install dependencies: pip install -e ".[tools]"

Usage:
    python scripts/stream_check.py --url http://192.168.43.17/stream --duration 30
    python scripts/stream_check.py --discover --duration 60
"""

import argparse
import logging
import os
import socket
import sys
import time
from typing import Iterator, Optional

import cv2
import numpy as np
import requests

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from framecast.beacon import parse_beacon


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger(__name__)


def discover(prefix: str, port: int, timeout: float) -> Optional[str]:
    """
    Wait for a "<prefix>:<ip>" beacon.

    Returns:
        The advertised IP address, or None on timeout
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.bind(("", port))
    sock.settimeout(timeout)

    try:
        while True:
            payload, sender = sock.recvfrom(256)
            parsed = parse_beacon(payload)
            if parsed and parsed[0] == prefix:
                logger.info(f"Found {prefix} at {parsed[1]} (beacon from {sender[0]})")
                return parsed[1]
    except socket.timeout:
        return None
    finally:
        sock.close()


def iter_parts(response: requests.Response, boundary: bytes) -> Iterator[bytes]:
    """Yield JPEG payloads from a multipart/x-mixed-replace body."""
    delimiter = b"--" + boundary
    buffer = b""

    for chunk in response.iter_content(chunk_size=4096):
        buffer += chunk

        while True:
            start = buffer.find(delimiter)
            if start < 0:
                break
            header_end = buffer.find(b"\r\n\r\n", start)
            if header_end < 0:
                break

            length = None
            for line in buffer[start:header_end].split(b"\r\n"):
                if line.lower().startswith(b"content-length:"):
                    length = int(line.split(b":", 1)[1])
            if length is None:
                buffer = buffer[header_end + 4:]
                continue

            body_start = header_end + 4
            if len(buffer) < body_start + length:
                break

            yield buffer[body_start:body_start + length]
            buffer = buffer[body_start + length:]


def run_check(url: str, duration: int, report_interval: int) -> dict:
    """
    Read the stream for `duration` seconds.

    Returns:
        Final counters
    """
    logger.info("=" * 60)
    logger.info("Stream Check")
    logger.info("=" * 60)
    logger.info(f"Stream URL: {url}")
    logger.info(f"Duration: {duration} seconds")
    logger.info("=" * 60)

    frames = 0
    bad_frames = 0
    total_bytes = 0
    largest = 0
    start_time = time.time()
    last_report_time = start_time
    last_frame_count = 0

    with requests.get(url, stream=True, timeout=10) as response:
        response.raise_for_status()
        content_type = response.headers.get("Content-Type", "")
        logger.info(f"Content-Type: {content_type}")
        _, _, boundary = content_type.partition("boundary=")
        if not boundary:
            raise RuntimeError(f"Not a multipart stream: {content_type!r}")

        try:
            for payload in iter_parts(response, boundary.strip().encode("ascii")):
                image = cv2.imdecode(np.frombuffer(payload, dtype=np.uint8), cv2.IMREAD_COLOR)
                if image is None:
                    bad_frames += 1
                else:
                    frames += 1
                total_bytes += len(payload)
                largest = max(largest, len(payload))

                now = time.time()
                if now - last_report_time >= report_interval:
                    fps = (frames - last_frame_count) / (now - last_report_time)
                    logger.info(
                        f"Progress (elapsed: {now - start_time:.0f}s): "
                        f"frames={frames} fps={fps:.1f} bad={bad_frames} "
                        f"largest={largest // 1024} KB"
                    )
                    last_report_time = now
                    last_frame_count = frames

                if now - start_time >= duration:
                    logger.info(f"Check duration ({duration}s) reached")
                    break
        except KeyboardInterrupt:
            logger.info("Check interrupted by user")

    total_time = time.time() - start_time
    avg_fps = frames / total_time if total_time > 0 else 0

    logger.info("=" * 60)
    logger.info("FINAL SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Total runtime: {total_time:.1f} seconds")
    logger.info(f"Frames decoded: {frames}")
    logger.info(f"Undecodable frames: {bad_frames}")
    logger.info(f"Average FPS: {avg_fps:.1f}")
    logger.info(f"Average frame size: {total_bytes // max(1, frames + bad_frames)} bytes")
    logger.info("=" * 60)

    return {
        "duration": total_time,
        "frames": frames,
        "bad_frames": bad_frames,
        "avg_fps": avg_fps,
    }


def main():
    parser = argparse.ArgumentParser(description="Check a framecast MJPEG stream")
    parser.add_argument(
        "--url",
        type=str,
        default=os.environ.get("FRAMECAST_STREAM_URL", "http://localhost/stream"),
        help="Stream URL",
    )
    parser.add_argument(
        "--discover",
        action="store_true",
        help="Find the device by its UDP beacon instead of --url",
    )
    parser.add_argument("--prefix", type=str, default="ESP32CAM", help="Beacon prefix")
    parser.add_argument("--beacon-port", type=int, default=45678, help="Beacon UDP port")
    parser.add_argument(
        "--duration",
        type=int,
        default=30,
        help="Check duration in seconds (default: 30)",
    )
    parser.add_argument(
        "--report-interval",
        type=int,
        default=5,
        help="Seconds between progress reports (default: 5)",
    )

    args = parser.parse_args()

    url = args.url
    if args.discover:
        ip = discover(args.prefix, args.beacon_port, timeout=10.0)
        if ip is None:
            logger.error("No beacon received")
            sys.exit(1)
        url = f"http://{ip}/stream"

    result = run_check(url, args.duration, args.report_interval)

    sys.exit(0 if result["frames"] > 0 else 1)


if __name__ == "__main__":
    main()
