"""
Timeline Export Constants Module

Contains all constants used across the timeline export modules:
- Default output geometry and frame rate
- Default output file names
- Engine binaries and environment keys
- Encoding settings
- Loudness normalization targets
"""

# ==================== OUTPUT DEFAULTS ====================

# Used when the first clip cannot be probed
DEFAULT_WIDTH = 1280
DEFAULT_HEIGHT = 720
DEFAULT_FPS = 30
DEFAULT_SAMPLE_RATE = 44100

# Shortest encodable background duration (seconds)
MIN_EXPORT_DURATION = 0.001

# Blur radius ceiling for per-clip effects
MAX_BLUR_RADIUS = 50.0

DEFAULT_VIDEO_OUTPUT = 'timeline_video.mp4'
DEFAULT_AUDIO_OUTPUT = 'timeline_audio.mp3'
DEFAULT_MUX_OUTPUT = 'final_output.mp4'
DEFAULT_REMUX_OUTPUT = 'remuxed_video.mp4'
DEFAULT_TRANSCODED_AUDIO_OUTPUT = 'transcoded_audio.mp3'
DEFAULT_FILTERED_VIDEO_OUTPUT = 'filtered_video.mp4'

DEFAULT_VIDEO_EXTENSION = 'mp4'
DEFAULT_AUDIO_EXTENSION = 'mp3'

# Clips without a track id land on this implicit track
DEFAULT_TRACK_ID = 'default_track'

# ==================== ENGINE ====================

FFMPEG_BINARY = 'ffmpeg'
FFPROBE_BINARY = 'ffprobe'

# Directory holding ffmpeg/ffprobe, or the ffmpeg binary itself
CORE_PATH_ENV = 'FFMPEG_CORE_PATH'
RUN_TIMEOUT_ENV = 'FFMPEG_RUN_TIMEOUT'
FETCH_TIMEOUT_ENV = 'TIMELINE_FETCH_TIMEOUT'
FETCH_WORKERS_ENV = 'TIMELINE_FETCH_WORKERS'

DEFAULT_FETCH_TIMEOUT = 300
DEFAULT_FETCH_WORKERS = 4

# Filter graphs longer than this go through -filter_complex_script
FILTER_SCRIPT_THRESHOLD = 7000

# Lines of ffmpeg stderr kept in error messages
STDERR_TAIL_LINES = 15

# ==================== ENCODING ====================

VIDEO_CODEC = 'libx264'
AUDIO_CODEC = 'aac'
PIXEL_FORMAT = 'yuv420p'
AUDIO_BITRATE = '192k'

# ==================== LOUDNESS ====================
# EBU R128 style targets for podcast delivery

LOUDNORM_INTEGRATED = -16
LOUDNORM_TRUE_PEAK = -1.5
LOUDNORM_RANGE = 11
