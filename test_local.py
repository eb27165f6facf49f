#!/usr/bin/env python3
"""
Local test script for the timeline export processor.

Usage:
    python test_local.py video  output.mp4 URL [URL ...]
    python test_local.py concat output.mp4 URL [URL ...]
    python test_local.py audio  output.mp3 URL [URL ...]
    python test_local.py remux  output.mp4 URL
    python test_local.py preview - URL [URL ...]

Clips are laid out back to back, 3 seconds each, one track per clip for
"video" and all on one track for "concat". Requires ffmpeg on PATH or
FFMPEG_CORE_PATH.
"""

import json
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

CLIP_LENGTH = 3.0


def progress(p, msg):
    print(f"[{int(p * 100):3d}%] {msg}")


def _clips(urls, same_track=False):
    return [
        {
            'src': url,
            'start': i * CLIP_LENGTH,
            'end': (i + 1) * CLIP_LENGTH,
            'trackId': 'main' if same_track else f"track_{i}",
            'brightness': 1.1 if i == 0 else 1,
        }
        for i, url in enumerate(urls)
    ]


def run_video(output_path, urls, mode='overlay'):
    from tools.timeline_export.processor import process_timeline_export

    config = {
        'operation': 'video',
        'clips': _clips(urls, same_track=(mode == 'concat-per-track')),
        'options': {'width': 1280, 'height': 720, 'fps': 30, 'mode': mode},
        'load': {'log': True},
    }
    result = process_timeline_export(output_path, config, progress)
    print(f"\nResult: {result}")


def run_audio(output_path, urls):
    from tools.timeline_export.processor import process_timeline_export

    config = {
        'operation': 'audio',
        'clips': _clips(urls),
        'options': {'sampleRate': 44100, 'loudness': True},
        'load': {'log': True},
    }
    result = process_timeline_export(output_path, config, progress)
    print(f"\nResult: {result}")


def run_remux(output_path, url):
    from tools.timeline_export.processor import process_timeline_export

    config = {'operation': 'remux', 'inputUrl': url, 'load': {'log': True}}
    result = process_timeline_export(output_path, config, progress)
    print(f"\nResult: {result}")


def run_preview(urls):
    from tools.timeline_export.processor import preview_timeline_export

    config = {
        'operation': 'video',
        'clips': _clips(urls),
        'options': {'width': 1280, 'height': 720},
    }
    print(json.dumps(preview_timeline_export(config), indent=2))


def main():
    if len(sys.argv) < 4:
        print(__doc__)
        print("\nAvailable modes: video, concat, audio, remux, preview")
        sys.exit(1)

    mode = sys.argv[1].lower()
    output_path = sys.argv[2]
    urls = sys.argv[3:]

    print(f"Testing timeline export ({mode})...")
    print(f"  Clips:  {len(urls)}")
    print(f"  Output: {output_path}")
    print()

    if mode == 'preview':
        run_preview(urls)
        return
    if mode == 'video':
        run_video(output_path, urls)
    elif mode == 'concat':
        run_video(output_path, urls, mode='concat-per-track')
    elif mode == 'audio':
        run_audio(output_path, urls)
    elif mode == 'remux':
        run_remux(output_path, urls[0])
    else:
        print(f"Unknown mode: {mode}")
        print("Available: video, concat, audio, remux, preview")
        sys.exit(1)

    if os.path.exists(output_path):
        size = os.path.getsize(output_path)
        print(f"\n[OK] Output created: {output_path} ({size:,} bytes)")
    else:
        print(f"\n[FAIL] Output not created!")
        sys.exit(1)


if __name__ == '__main__':
    main()
