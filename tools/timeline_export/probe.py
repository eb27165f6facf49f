"""
Video Dimension Probe

Best-effort native frame size of a clip, used to default the export
resolution. Only metadata is read.
"""

import json

from .constants import DEFAULT_HEIGHT, DEFAULT_WIDTH
from .engine import EngineRunError
from .models import VideoDimensions


class ProbeError(RuntimeError):
    pass


def probe_video_dimensions(engine, url: str) -> VideoDimensions:
    """
    Read width/height of the first video stream at url.

    Raises ProbeError when the metadata cannot be read; callers substitute
    the 1280x720 default. Streams reporting zero dimensions get the default.
    """
    try:
        output = engine.probe(
            '-select_streams', 'v:0',
            '-show_entries', 'stream=width,height',
            '-of', 'json',
            url,
        )
    except EngineRunError as e:
        raise ProbeError(f"Failed to load video metadata: {e}") from e

    try:
        streams = json.loads(output or '{}').get('streams') or []
    except ValueError as e:
        raise ProbeError(f"Unreadable probe output for {url.split('?')[0]}") from e

    if not streams:
        raise ProbeError(f"No video stream found in {url.split('?')[0]}")

    stream = streams[0]
    width = int(stream.get('width') or 0) or DEFAULT_WIDTH
    height = int(stream.get('height') or 0) or DEFAULT_HEIGHT
    return VideoDimensions(width=width, height=height)
