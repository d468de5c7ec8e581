"""
Cliptrack Configuration
"""
from pathlib import Path

# Preview settings
PREVIEW_WIDTH = 960
PREVIEW_HEIGHT = 540
PREVIEW_TICK_MS = 16  # ~60fps refresh
PREVIEW_MAX_DECODE_FRAMES_PER_TICK = 4  # Decoder may fall behind, the clock follows it
PREVIEW_STILL_ACQUIRE_TIMEOUT = 1.0  # Wait bound when rendering a single frame while stopped

# Playback sync
SEEK_TOLERANCE = 0.1  # Reposition a handle only if it drifted further than this (seconds)

# Resource cache
RESOURCE_LOAD_TIMEOUT = 4.0  # Bound on every readiness wait (seconds)
RESOURCE_LOADER_WORKERS = 4
PRELOAD_WINDOW = 5.0  # Lookahead (and lookbehind) window for preview (seconds)
PRELOAD_PARALLEL_CAP = 3  # Max concurrent video/audio loads started by preview

# Composition
TRACK_OFFSET_PX = 20  # Per-track stacking offset at REFERENCE_HEIGHT
REFERENCE_HEIGHT = 1080
IMAGE_FIT_SCALE = 0.8  # Images are drawn slightly smaller than the fitted rect
MAX_BLUR_PX = 10.0
MIN_ZOOM = 0.1
MAX_ZOOM = 5.0

# Effects - default durations (seconds) and intensity
EFFECT_DEFAULT_DURATIONS = {
    'fade_in': 2.0,
    'fade_out': 2.0,
    'black_white': 3.0,
    'zoom_in': 3.0,
    'zoom_out': 3.0,
    'blur': 3.0,
}
EFFECT_DEFAULT_INTENSITY = 50

# Audio
DEFAULT_TRACK_VOLUME = 100
MAX_TRACK_VOLUME = 200
AUDIO_SAMPLE_RATE = 48000
AUDIO_CHANNELS = 2
AUDIO_SAMPLE_WIDTH = 2  # 16-bit

# Export settings
FRAME_RATES = (24, 30, 60)
DEFAULT_FPS = 30
ASPECT_RATIOS = {
    '16:9': (1920, 1080),
    '4:3': (1440, 1080),
    '9:16': (1080, 1920),
}
DEFAULT_ASPECT_RATIO = '16:9'

# scale: fraction of the full-size resolution
# workers: compose pool size, in_flight: max frames being composed at once
QUALITY_PRESETS = {
    'fast': {'scale': 0.5, 'bitrate': '2500k', 'x264_preset': 'ultrafast', 'workers': 2, 'in_flight': 5},
    'balanced': {'scale': 0.75, 'bitrate': '5000k', 'x264_preset': 'veryfast', 'workers': 4, 'in_flight': 15},
    'high': {'scale': 1.0, 'bitrate': '10000k', 'x264_preset': 'medium', 'workers': 8, 'in_flight': 30},
}
DEFAULT_QUALITY = 'balanced'

PROGRESS_MIN_INTERVAL = 0.1  # Report progress at most ~10 times per second
DYNAMICS_ENABLED = True

# Paths
PROJECT_ROOT = Path(__file__).parent.parent
