from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import pytest

from src.config_loader import ConfigError, _sanitize_section, load_config
from src.datatypes import AppConfig, CropConfig, VideoConfig


def _write(tmp_path: Path, text: str, *, bom: bool = False) -> Path:
    path = tmp_path / "config.toml"
    payload = text.encode("utf-8")
    if bom:
        payload = b"\xef\xbb\xbf" + payload
    path.write_bytes(payload)
    return path


def test_load_config_none_returns_defaults() -> None:
    cfg = load_config(None)

    assert isinstance(cfg, AppConfig)
    assert cfg.collection.max_size == 6
    assert cfg.crop.size_ceiling_bytes == 2 * 1024 * 1024
    assert cfg.video.large_warning_bytes == 300 * 1024 * 1024
    assert cfg.normalize.max_width == 1024
    assert cfg.normalize.quality == pytest.approx(0.8)


def test_load_config_reads_sections_and_tolerates_bom(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
[collection]
max_size = 4

[crop]
enabled = "false"
default_area_fraction = 0.5

[video]
force_transcode_extensions = [".AVI", ".wmv"]
""",
        bom=True,
    )

    cfg = load_config(path)

    assert cfg.collection.max_size == 4
    assert cfg.crop.enabled is False
    assert cfg.crop.default_area_fraction == pytest.approx(0.5)
    assert cfg.video.force_transcode_extensions == [".avi", ".wmv"]
    assert cfg.engine.crf == 28


def test_sanitize_section_coerces_numeric_booleans() -> None:
    raw: Dict[str, Any] = {"enabled": 0, "output_size": 256}

    crop = _sanitize_section(raw, "crop", CropConfig)

    assert crop.enabled is False
    assert crop.output_size == 256


def test_sanitize_section_rejects_unknown_keys() -> None:
    with pytest.raises(ConfigError, match=r"\[video\]"):
        _sanitize_section({"bogus": 1}, "video", VideoConfig)


def test_sanitize_section_rejects_bad_boolean() -> None:
    with pytest.raises(ConfigError, match="crop.enabled"):
        _sanitize_section({"enabled": "maybe"}, "crop", CropConfig)


def test_load_config_rejects_unknown_section(tmp_path: Path) -> None:
    path = _write(tmp_path, "[paths]\ninput_dir = 'x'\n")

    with pytest.raises(ConfigError, match="paths"):
        load_config(path)


@pytest.mark.parametrize(
    "text, message",
    [
        ("[collection]\nmax_size = 0\n", "collection.max_size"),
        ("[normalize]\nquality = 1.5\n", "normalize.quality"),
        ("[crop]\ndefault_area_fraction = 0\n", "crop.default_area_fraction"),
        ("[video]\nforce_transcode_extensions = ['avi']\n", "force_transcode_extensions"),
        ("[video]\nblack_threshold = 300\n", "video.black_threshold"),
        ("[engine]\ncrf = 60\n", "engine.crf"),
    ],
)
def test_load_config_validates_ranges(tmp_path: Path, text: str, message: str) -> None:
    path = _write(tmp_path, text)

    with pytest.raises(ConfigError, match=message):
        load_config(path)


def test_load_config_reports_toml_errors(tmp_path: Path) -> None:
    path = _write(tmp_path, "[collection\nmax_size = 3\n")

    with pytest.raises(ConfigError, match="Failed to parse TOML"):
        load_config(path)


def test_load_config_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.toml")
