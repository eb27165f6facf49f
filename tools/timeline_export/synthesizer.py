"""
Timeline Synthesizer Module

Turns clip lists into engine invocations (RenderPlan) without touching the
engine or the network, so every plan is reproducible from its inputs.

Components:
- stage_name(): engine filename for a clip's downloaded media
- build_clip_effect_filter(): per-clip eq/gblur chain
- plan_video_composite(): overlay and concat-per-track composition
- plan_audio_mix(): volume/delay/trim mixdown with optional loudness pass
- plan_mux / plan_remux / plan_transcode_audio / plan_transcode_video:
  single-input utilities sharing the same engine
"""

import math
import re
from collections import OrderedDict
from typing import Dict, List, Optional, Sequence, Tuple

from .constants import (
    AUDIO_BITRATE,
    AUDIO_CODEC,
    DEFAULT_AUDIO_EXTENSION,
    DEFAULT_FPS,
    DEFAULT_TRACK_ID,
    DEFAULT_VIDEO_EXTENSION,
    LOUDNORM_INTEGRATED,
    LOUDNORM_RANGE,
    LOUDNORM_TRUE_PEAK,
    MAX_BLUR_RADIUS,
    MIN_EXPORT_DURATION,
    PIXEL_FORMAT,
    VIDEO_CODEC,
)
from .filter_graph import Filter, FilterGraph
from .models import (
    AudioExportOptions,
    CompositionMode,
    RenderPlan,
    TimelineClip,
    VideoExportOptions,
)

_EXTENSION_PATTERN = re.compile(r'^[A-Za-z0-9]{1,5}$')


def _fmt(seconds: float) -> str:
    return f"{seconds:.3f}"


# ==================== Staging ====================

def url_extension(url: str, default_ext: str) -> str:
    """Best-guess extension from a URL path, ignoring query and fragment."""
    path = url.split('?', 1)[0].split('#', 1)[0]
    basename = path.rstrip('/').rsplit('/', 1)[-1]
    if '.' not in basename:
        return default_ext
    ext = basename.rsplit('.', 1)[1]
    if not _EXTENSION_PATTERN.match(ext):
        return default_ext
    return ext.lower()


def stage_name(prefix: str, index: int, url: str, default_ext: str) -> str:
    return f"{prefix}_{index}.{url_extension(url, default_ext)}"


# ==================== Per-clip filters ====================

def effect_filters(clip: TimelineClip) -> List[Filter]:
    filters: List[Filter] = []

    brightness = 1.0 if clip.brightness is None else clip.brightness
    contrast = 1.0 if clip.contrast is None else clip.contrast
    saturation = 1.0 if clip.saturation is None else clip.saturation

    if brightness != 1 or contrast != 1 or saturation != 1:
        filters.append(Filter(
            'eq',
            brightness=f"{brightness - 1:.2f}",
            contrast=f"{contrast:.2f}",
            saturation=f"{saturation:.2f}",
        ))

    blur = clip.blur or 0.0
    if blur > 0:
        filters.append(Filter('gblur', sigma=f"{min(MAX_BLUR_RADIUS, blur):.2f}"))

    return filters


def build_clip_effect_filter(clip: TimelineClip) -> str:
    """Comma-joined effect chain for a clip, or '' when it has no effects."""
    return ','.join(f.render() for f in effect_filters(clip))


def fit_filters(width: int, height: int) -> List[Filter]:
    # Letterbox into the output frame, centered
    return [
        Filter('scale', [width, height], force_original_aspect_ratio='decrease'),
        Filter('pad', [width, height, '(ow-iw)/2', '(oh-ih)/2']),
        Filter('setsar', [1]),
    ]


def media_end(clip: TimelineClip) -> float:
    """Timeline time where the clip's media runs out: end, or earlier when out_point cuts it."""
    if clip.out_point is None:
        return clip.end
    available = max(0.0, clip.out_point - (clip.in_point or 0.0))
    return min(clip.end, clip.start + available)


def clamp_interval(
    clip: TimelineClip,
    range_start: float,
    range_end: float,
) -> Optional[Tuple[float, float]]:
    start = max(range_start, clip.start)
    end = min(range_end, media_end(clip))
    if end <= start:
        return None
    return start, end


def resolve_window(
    clips: Sequence[TimelineClip],
    start: Optional[float],
    end: Optional[float],
) -> Tuple[float, float]:
    range_start = 0.0 if start is None else float(start)
    range_end = max(c.end for c in clips) if end is None else float(end)
    return range_start, range_end


def _segment_filters(
    clip: TimelineClip,
    clamped_start: float,
    clamped_end: float,
    fit: List[Filter],
    fps: int,
) -> List[Filter]:
    source_offset = (clip.in_point or 0.0) + (clamped_start - clip.start)
    duration = clamped_end - clamped_start
    return [
        Filter('trim', [_fmt(source_offset), _fmt(source_offset + duration)]),
        Filter('setpts', ['PTS-STARTPTS']),
        # tpad counts padding in frames and needs a known rate after setpts
        Filter('fps', [fps]),
        *fit,
        *effect_filters(clip),
        Filter('format', ['yuva420p']),
    ]


def _pad_filter(start_duration: float, stop_duration: float) -> Filter:
    # Transparent padding so earlier layers stay visible outside the clip
    return Filter(
        'tpad',
        start_duration=_fmt(start_duration),
        stop_duration=_fmt(stop_duration),
        color='black@0',
    )


def _overlay_filter() -> Filter:
    return Filter('overlay', shortest=1, format='auto')


# ==================== Video composite ====================

def _compose_overlay(
    graph: FilterGraph,
    clips: Sequence[TimelineClip],
    range_start: float,
    range_end: float,
    fit: List[Filter],
    fps: int,
) -> str:
    base_label = 'background'

    for i, clip in enumerate(clips):
        window = clamp_interval(clip, range_start, range_end)
        if window is None:
            continue
        clamped_start, clamped_end = window

        pad_duration = max(0.0, clamped_start - range_start)
        stop_duration = max(0.0, range_end - clamped_end)

        clip_label = f"clip_{i}"
        padded_label = f"padded_{i}"
        output_label = f"overlay_{i}"

        graph.add([f"{i + 1}:v"], _segment_filters(clip, clamped_start, clamped_end, fit, fps), [clip_label])
        graph.add([clip_label], [_pad_filter(pad_duration, stop_duration)], [padded_label])
        graph.add([base_label, padded_label], [_overlay_filter()], [output_label])

        base_label = output_label

    return base_label


def group_clips_by_track(clips: Sequence[TimelineClip]) -> 'OrderedDict[str, List[Tuple[int, TimelineClip]]]':
    """Track id -> [(original index, clip)], tracks in discovery order."""
    tracks: 'OrderedDict[str, List[Tuple[int, TimelineClip]]]' = OrderedDict()
    for index, clip in enumerate(clips):
        track_id = clip.track_id if clip.track_id is not None else DEFAULT_TRACK_ID
        tracks.setdefault(track_id, []).append((index, clip))
    return tracks


def _compose_concat_per_track(
    graph: FilterGraph,
    clips: Sequence[TimelineClip],
    range_start: float,
    range_end: float,
    fit: List[Filter],
    fps: int,
    tracks_order: Optional[List[str]],
) -> str:
    tracks = group_clips_by_track(clips)
    order = list(tracks.keys()) if tracks_order is None else list(tracks_order)

    unknown = [track_id for track_id in order if track_id not in tracks]
    if unknown:
        raise ValueError(f"tracks_order references unknown tracks: {', '.join(unknown)}")

    track_labels: List[str] = []
    chain_index = 0

    for position, track_id in enumerate(order):
        items = sorted(tracks[track_id], key=lambda item: item[1].start)

        # Resolve the usable intervals first; the last one carries the end padding
        cursor = range_start
        usable: List[Tuple[int, TimelineClip, float, float, float]] = []
        for index, clip in items:
            window = clamp_interval(clip, max(range_start, cursor), range_end)
            if window is None:
                continue
            clamped_start, clamped_end = window
            usable.append((index, clip, clamped_start, clamped_end, clamped_start - cursor))
            cursor = clamped_end

        segment_labels: List[str] = []
        for n, (index, clip, clamped_start, clamped_end, gap) in enumerate(usable):
            is_last = n == len(usable) - 1
            stop_duration = max(0.0, range_end - clamped_end) if is_last else 0.0

            input_label = f"track_{chain_index}_input"
            padded_label = f"track_{chain_index}_padded"

            graph.add([f"{index + 1}:v"], _segment_filters(clip, clamped_start, clamped_end, fit, fps), [input_label])
            graph.add([input_label], [_pad_filter(max(0.0, gap), stop_duration)], [padded_label])

            segment_labels.append(padded_label)
            chain_index += 1

        if not segment_labels:
            continue

        track_output_label = f"track_output_{position}"
        if len(segment_labels) == 1:
            graph.add(segment_labels, [Filter('null')], [track_output_label])
        else:
            graph.add(
                segment_labels,
                [Filter('concat', n=len(segment_labels), v=1, a=0)],
                [track_output_label],
            )
        track_labels.append(track_output_label)

    base_label = 'background'
    for i, track_label in enumerate(track_labels):
        overlay_label = f"track_overlay_{i}"
        graph.add([base_label, track_label], [_overlay_filter()], [overlay_label])
        base_label = overlay_label

    return base_label


def plan_video_composite(
    clips: Sequence[Optional[TimelineClip]],
    options: VideoExportOptions,
    width: int,
    height: int,
) -> RenderPlan:
    """
    Build the engine invocation that flattens video clips onto a black
    background of width x height.

    Input 0 is the generated background; clip i is always input i + 1,
    whatever the composition mode.
    """
    valid_clips = [c for c in clips if c]
    if not valid_clips:
        raise ValueError("No valid video clips provided")

    fps = options.fps or DEFAULT_FPS
    range_start, range_end = resolve_window(valid_clips, options.start, options.end)
    duration = max(MIN_EXPORT_DURATION, range_end - range_start)

    args: List[str] = [
        '-f', 'lavfi',
        '-t', _fmt(duration),
        '-i', f"color=size={width}x{height}:rate={fps}:color=black",
    ]

    staged = [
        (stage_name('video', i, clip.src, DEFAULT_VIDEO_EXTENSION), clip.src)
        for i, clip in enumerate(valid_clips)
    ]
    for filename, _ in staged:
        args.extend(['-i', filename])

    graph = FilterGraph(input_count=len(valid_clips) + 1)
    graph.add(['0:v'], [Filter('setpts', ['PTS-STARTPTS'])], ['background'])

    fit = fit_filters(width, height)

    if options.mode == CompositionMode.OVERLAY:
        final_label = _compose_overlay(graph, valid_clips, range_start, range_end, fit, fps)
    else:
        final_label = _compose_concat_per_track(
            graph, valid_clips, range_start, range_end, fit, fps, options.tracks_order
        )

    if final_label == 'background':
        raise ValueError(
            f"No clips overlap the export range {_fmt(range_start)}-{_fmt(range_end)}"
        )

    graph.validate(final_label)

    args.extend([
        '-filter_complex', graph.serialize(),
        '-map', f"[{final_label}]",
        '-c:v', VIDEO_CODEC,
        '-pix_fmt', PIXEL_FORMAT,
        options.out_name,
    ])

    return RenderPlan(args=args, output_name=options.out_name, staged=staged, graph=graph)


# ==================== Audio mixdown ====================

def plan_audio_mix(
    clips: Sequence[Optional[TimelineClip]],
    options: AudioExportOptions,
) -> RenderPlan:
    audio_clips = [c for c in clips if c]
    if not audio_clips:
        raise ValueError("No audio clips provided")

    sample_rate = options.sample_rate
    range_start = 0.0 if options.start is None else float(options.start)
    range_end = math.inf if options.end is None else float(options.end)

    staged = [
        (stage_name('audio', i, clip.src, DEFAULT_AUDIO_EXTENSION), clip.src)
        for i, clip in enumerate(audio_clips)
    ]
    args: List[str] = []
    for filename, _ in staged:
        args.extend(['-i', filename])

    graph = FilterGraph(input_count=len(audio_clips))
    mix_inputs: List[str] = []

    for i, clip in enumerate(audio_clips):
        window = clamp_interval(clip, max(0.0, range_start), range_end)
        if window is None:
            continue
        clamped_start, clamped_end = window

        source_offset = (clip.in_point or 0.0) + (clamped_start - clip.start)
        duration = clamped_end - clamped_start
        delay_ms = max(0, int(round((clamped_start - range_start) * 1000)))
        volume = 1.0 if clip.volume is None else clip.volume

        label = f"audio_{i}"
        graph.add(
            [f"{i}:a"],
            [
                Filter('atrim', [_fmt(source_offset), _fmt(source_offset + duration)]),
                Filter('asetpts', [f"N/{sample_rate}/TB"]),
                Filter('volume', [volume]),
                Filter('adelay', [f"{delay_ms}|{delay_ms}"]),
            ],
            [label],
        )
        mix_inputs.append(label)

    if not mix_inputs:
        raise ValueError("No audio clips overlap the export range")

    # normalize=0 keeps per-clip volume settings intact
    mix_filters = [
        Filter('amix', inputs=len(mix_inputs), normalize=0),
        Filter('volume', [1]),
    ]
    if options.loudness:
        mix_filters.append(Filter(
            'loudnorm', I=LOUDNORM_INTEGRATED, TP=LOUDNORM_TRUE_PEAK, LRA=LOUDNORM_RANGE,
        ))
        mix_filters.append(Filter('acompressor'))

    graph.add(mix_inputs, mix_filters, ['output_audio'])
    graph.validate('output_audio')

    args.extend([
        '-filter_complex', graph.serialize(),
        '-map', '[output_audio]',
        '-ar', str(sample_rate),
        options.out_name,
    ])

    return RenderPlan(args=args, output_name=options.out_name, staged=staged, graph=graph)


# ==================== Muxing & transcode ====================

def plan_mux(video_name: str, audio_name: str, output_name: str) -> RenderPlan:
    args = [
        '-i', video_name,
        '-i', audio_name,
        '-map', '0:v:0',
        '-map', '1:a:0',
        '-c:v', 'copy',
        '-c:a', AUDIO_CODEC,
        output_name,
    ]
    return RenderPlan(args=args, output_name=output_name)


def plan_remux(input_name: str, output_name: str, reencode_audio: bool = False) -> RenderPlan:
    if reencode_audio:
        args = ['-i', input_name, '-c:v', 'copy', '-c:a', AUDIO_CODEC, output_name]
    else:
        args = ['-i', input_name, '-c', 'copy', output_name]
    return RenderPlan(args=args, output_name=output_name)


def plan_transcode_audio(input_name: str, output_name: str) -> RenderPlan:
    args = ['-i', input_name, '-b:a', AUDIO_BITRATE, output_name]
    return RenderPlan(args=args, output_name=output_name)


def plan_transcode_video(input_name: str, clip: TimelineClip, output_name: str) -> RenderPlan:
    video_filter = build_clip_effect_filter(clip)
    if video_filter:
        args = [
            '-i', input_name,
            '-vf', video_filter,
            '-c:v', VIDEO_CODEC,
            '-c:a', AUDIO_CODEC,
            '-b:a', AUDIO_BITRATE,
            output_name,
        ]
    else:
        args = ['-i', input_name, '-c', 'copy', output_name]
    return RenderPlan(args=args, output_name=output_name)


def describe_plan(plan: RenderPlan) -> Dict[str, object]:
    """Summary used in processor results and logs."""
    summary: Dict[str, object] = {
        'inputs': len(plan.staged),
        'output': plan.output_name,
    }
    if plan.graph is not None:
        summary['filterChains'] = len(plan.graph.chains)
        summary['overlays'] = len(plan.graph.chains_of_kind('overlay'))
    return summary
