"""Configuration dataclasses for the media intake pipeline."""
from dataclasses import dataclass, field
from typing import List

MIB = 1024 * 1024


@dataclass
class CollectionConfig:
    """Capacity of the shared image collection."""

    max_size: int = 6


@dataclass
class CropConfig:
    """Interactive crop queue behaviour."""

    enabled: bool = True
    aspect_ratio: float = 1.0
    default_area_fraction: float = 0.8
    output_size: int = 512
    size_ceiling_bytes: int = 2 * MIB


@dataclass
class NormalizeConfig:
    """Bounded resize and lossy re-encode applied before storage."""

    max_width: int = 1024
    quality: float = 0.8


@dataclass
class VideoConfig:
    """Playability probing, large-file guards and black-screen detection."""

    force_transcode_extensions: List[str] = field(default_factory=lambda: [".avi"])
    probe_timeout_seconds: float = 10.0
    large_warning_bytes: int = 300 * MIB
    likely_too_large_bytes: int = 200 * MIB
    black_check_after_seconds: float = 2.0
    black_sample_grid: int = 32
    black_threshold: int = 15
    kickstart_seconds: float = 0.1


@dataclass
class EngineConfig:
    """FFmpeg conversion engine resolution and encoder settings."""

    executable: str = ""
    download: bool = True
    download_url: str = "https://github.com/eugeneware/ffmpeg-static/releases/download/b6.0/ffmpeg-linux-x64"
    cache_dir: str = ""
    load_timeout_seconds: float = 120.0
    transcode_timeout_seconds: float = 0.0
    video_codec: str = "libx264"
    preset: str = "ultrafast"
    crf: int = 28


@dataclass
class AppConfig:
    """Aggregated configuration loaded from the user-provided TOML file."""

    collection: CollectionConfig = field(default_factory=CollectionConfig)
    crop: CropConfig = field(default_factory=CropConfig)
    normalize: NormalizeConfig = field(default_factory=NormalizeConfig)
    video: VideoConfig = field(default_factory=VideoConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
