"""
Timeline Export Processor

Flattens an editing timeline into one deliverable file, or runs one of the
muxing/transcode utilities, on a shared FFmpeg engine session.

Config structure:
{
    "operation": "video",        # video | audio | mux | remux | transcode_audio | transcode_video
    "clips": [                   # video / audio
        {"src": "https://...", "start": 0, "end": 5, "trackId": "main",
         "brightness": 1.2, "contrast": 1, "saturate": 1, "blur": 0, "volume": 1}
    ],
    "options": {                 # video: width, height, fps, start, end, mode, tracksOrder
        "mode": "overlay"        # audio: sampleRate, start, end, loudness
    },
    "videoUrl": "...",           # mux
    "audioUrl": "...",           # mux
    "inputUrl": "...",           # remux / transcode_audio / transcode_video
    "clip": {...},               # transcode_video effects
    "timeline": {                # video / audio, instead of "clips"
        "tracks": [{"id": "main", "kind": "video"}],
        "clips": [{"id": "c1", "trackId": "main", ...}]
    },
    "load": {"log": false, "useWorker": true}
}
"""

from typing import Any, Callable, Dict, List, Optional, Tuple

from .models import AudioExportOptions, TimelineClip, VideoExportOptions, _cfg
from .session import EngineSession
from .synthesizer import describe_plan, plan_audio_mix, plan_video_composite
from .timeline import Timeline


OPERATIONS = ('video', 'audio', 'mux', 'remux', 'transcode_audio', 'transcode_video')


def _options(config: Dict[str, Any]) -> Dict[str, Any]:
    options = config.get('options')
    return dict(options) if isinstance(options, dict) else {}


def _input_url(config: Dict[str, Any]) -> str:
    url = _cfg(config, 'inputUrl', 'input_url', 'url')
    if not url:
        raise ValueError("Missing 'inputUrl' for this operation")
    return str(url)


def _export_inputs(config: Dict[str, Any], kind: str) -> Tuple[List[Any], Dict[str, Any]]:
    """Clips and options for a video/audio export, from "timeline" when given."""
    options = _options(config)
    payload = config.get('timeline')
    if not isinstance(payload, dict):
        return [c for c in (config.get('clips') or []) if c], options

    timeline = Timeline.from_dict(payload)
    if kind == 'video' and _cfg(options, 'tracksOrder', 'tracks_order') is None:
        options['tracksOrder'] = timeline.track_order(kind)
    return timeline.export_clips(kind), options


def process_timeline_export(
    output_path: str,
    config: Dict[str, Any],
    progress_callback: Optional[Callable[[float, str], None]] = None,
    session: Optional[EngineSession] = None,
) -> Dict[str, Any]:
    """
    Run one timeline export operation and write the result to output_path.

    Args:
        output_path: Where the produced media is written
        config: Operation configuration (see module docstring)
        progress_callback: Optional callback(progress: 0-1, message: str)
        session: Loaded EngineSession to reuse; a private one is created otherwise

    Returns:
        Dict with processing results
    """

    def report_progress(progress: float, message: str = ""):
        if progress_callback:
            progress_callback(progress, message)

    operation = str(config.get('operation', 'video')).lower()
    if operation not in OPERATIONS:
        raise ValueError(f"Unknown timeline export operation: {operation}")

    owns_session = session is None
    if owns_session:
        session = EngineSession()

    try:
        if not session.is_ready:
            report_progress(0.05, "Loading FFmpeg...")
            session.load(config.get('load') or {})
            if session.error:
                raise RuntimeError(f"FFmpeg failed to load: {session.error}")

        result: Dict[str, Any] = {'operation': operation}
        if operation == 'video':
            clips, options = _export_inputs(config, 'video')
            video_options = VideoExportOptions.from_dict(options)
            report_progress(0.1, f"Compositing {len(clips)} clips ({video_options.mode.value})...")
            data = session.export_timeline_video_composite(clips, video_options)
            result['mode'] = video_options.mode.value

        elif operation == 'audio':
            clips, options = _export_inputs(config, 'audio')
            audio_options = AudioExportOptions.from_dict(options)
            report_progress(0.1, f"Mixing {len(clips)} audio clips...")
            data = session.export_timeline_audio_mix(clips, audio_options)
            result['sampleRate'] = audio_options.sample_rate
            result['loudness'] = audio_options.loudness

        elif operation == 'mux':
            video_url = _cfg(config, 'videoUrl', 'video_url')
            audio_url = _cfg(config, 'audioUrl', 'audio_url')
            if not video_url or not audio_url:
                raise ValueError("Mux needs 'videoUrl' and 'audioUrl'")
            report_progress(0.1, "Downloading video and audio...")
            video_data = session.fetch_binary(video_url)
            audio_data = session.fetch_binary(audio_url)
            report_progress(0.5, "Muxing...")
            data = session.mux_video_audio(video_data, audio_data)

        elif operation == 'remux':
            report_progress(0.1, "Remuxing...")
            data = session.remux_video_from_url(_input_url(config))

        elif operation == 'transcode_audio':
            report_progress(0.1, "Transcoding audio...")
            data = session.transcode_audio_from_url(_input_url(config))

        else:
            clip = dict(config.get('clip') or {})
            clip.setdefault('src', _input_url(config))
            report_progress(0.1, "Transcoding video...")
            data = session.transcode_video_from_url_with_filters(_input_url(config), clip)

        report_progress(0.9, "Writing output...")
        with open(output_path, 'wb') as f:
            f.write(data)

        report_progress(1.0, "Complete")
        result['outputSize'] = len(data)
        return result

    finally:
        if owns_session:
            session.close()


def preview_timeline_export(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build the filter graph for a video/audio export without running it.
    Requires explicit width/height for video since nothing is probed.
    """
    operation = str(config.get('operation', 'video')).lower()
    if operation not in ('video', 'audio'):
        raise ValueError(f"Preview is only available for video and audio, got: {operation}")

    clips, options = _export_inputs(config, operation)
    clip_objects = [c if isinstance(c, TimelineClip) else TimelineClip.from_dict(c) for c in clips]

    if operation == 'video':
        video_options = VideoExportOptions.from_dict(options)
        if not video_options.width or not video_options.height:
            raise ValueError("Preview needs explicit 'width' and 'height'")
        plan = plan_video_composite(clip_objects, video_options, video_options.width, video_options.height)
    else:
        plan = plan_audio_mix(clip_objects, AudioExportOptions.from_dict(options))

    return {
        'operation': operation,
        'args': plan.args,
        'filterGraph': plan.graph.serialize() if plan.graph is not None else '',
        **describe_plan(plan),
    }
