"""
Configuration management for the body detection system.

Provides a layered configuration system with the following precedence
(highest to lowest):

    CLI arguments > Environment variables > YAML config file > Defaults

Design constraints:
    - The system MUST run with zero configuration (safe defaults only).
    - Missing or invalid values fail early and loudly.
    - No detection logic, I/O, or model loading belongs here.

Non-goals:
    - No dynamic reloading.
    - No database-backed or remote configuration.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Project root resolution
# ---------------------------------------------------------------------------
# Resolved relative to this file's location: bodydetect/config.py → project root
_PROJECT_ROOT = Path(__file__).resolve().parent.parent


def get_project_root() -> Path:
    """Return the resolved project root directory."""
    return _PROJECT_ROOT


# ---------------------------------------------------------------------------
# Configuration dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DeviceConfig:
    """Compute device selection.

    Attributes:
        backend: 'auto' (CUDA when available), 'cuda' or 'cpu'.
    """

    backend: str = "auto"


@dataclass(frozen=True)
class PeopleConfig:
    """HOG pedestrian detector parameters.

    Attributes:
        enabled: Whether to run pedestrian detection.
        win_stride: Sliding window step (x, y) in pixels.
        padding: Border padding (x, y) applied by the host detector.
        scale: Image pyramid scale step.
        hit_threshold: SVM decision threshold.
    """

    enabled: bool = True
    win_stride: Tuple[int, int] = (8, 8)
    padding: Tuple[int, int] = (16, 16)
    scale: float = 1.05
    hit_threshold: float = 0.0


@dataclass(frozen=True)
class FaceConfig:
    """Haar cascade face detector parameters.

    Attributes:
        enabled: Whether to run face detection.
        cascade_path: Cascade XML file. Relative paths are looked up in the
                      project root, then in OpenCV's bundled cascades.
        scale_factor: Scale step between detection passes.
        min_neighbors: Neighbors a candidate needs to be kept.
        min_size: Smallest face (width, height) considered.
        equalize_hist: Normalize brightness and contrast before detection.
    """

    enabled: bool = True
    cascade_path: str = "haarcascade_frontalface_alt_tree.xml"
    scale_factor: float = 1.1
    min_neighbors: int = 10
    min_size: Tuple[int, int] = (20, 20)
    equalize_hist: bool = True


@dataclass(frozen=True)
class InputConfig:
    """Input source configuration.

    Attributes:
        source: Image file or directory of images.
        resize_width: Optional width to downscale input images before detection.
                      None means no resizing.
    """

    source: str = "ParticipantsGO2009.jpg"
    resize_width: Optional[int] = None


@dataclass(frozen=True)
class OutputConfig:
    """Output behavior configuration.

    Attributes:
        mode: Output mode(s). Supports multiple comma-separated values:
              'display', 'save_image', 'save_json', 'save_csv'.
              Example: "display,save_json"
        save_path: Directory where output artifacts are written.
    """

    mode: str = "display"
    save_path: str = "output/"


@dataclass(frozen=True)
class VisualizationConfig:
    """Visualization rendering parameters.

    Attributes:
        body_color: BGR color for pedestrian boxes.
        body_thickness: Line thickness of pedestrian boxes.
        face_color: BGR color for face boxes.
        face_thickness: Line thickness of face boxes.
        show_labels: Whether to render a text label above each box.
    """

    body_color: Tuple[int, int, int] = (0, 0, 255)
    body_thickness: int = 1
    face_color: Tuple[int, int, int] = (255, 0, 0)
    face_thickness: int = 2
    show_labels: bool = False


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration.

    Aggregates all sub-configurations into a single, frozen object.
    """

    device: DeviceConfig = field(default_factory=DeviceConfig)
    people: PeopleConfig = field(default_factory=PeopleConfig)
    face: FaceConfig = field(default_factory=FaceConfig)
    input: InputConfig = field(default_factory=InputConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    visualization: VisualizationConfig = field(default_factory=VisualizationConfig)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

_VALID_BACKENDS = {"auto", "cpu", "cuda"}
_VALID_OUTPUT_MODES = {"display", "save_image", "save_json", "save_csv"}


def _validate(config: AppConfig) -> None:
    """Validate configuration values. Raises ValueError on invalid state."""

    if config.device.backend not in _VALID_BACKENDS:
        raise ValueError(
            f"Invalid device.backend: '{config.device.backend}'. "
            f"Must be one of {_VALID_BACKENDS}."
        )

    modes = set(m.strip() for m in config.output.mode.split(','))
    invalid_modes = modes - _VALID_OUTPUT_MODES
    if invalid_modes:
        raise ValueError(
            f"Invalid output.mode(s): {invalid_modes}. "
            f"Valid modes: {_VALID_OUTPUT_MODES}. "
            f"Use comma-separated values for multiple outputs."
        )

    if config.people.scale <= 1.0:
        raise ValueError(
            f"people.scale must be greater than 1.0, got {config.people.scale}."
        )

    if any(d <= 0 for d in config.people.win_stride):
        raise ValueError(
            f"people.win_stride values must be positive, got {config.people.win_stride}."
        )

    if any(d < 0 for d in config.people.padding):
        raise ValueError(
            f"people.padding values must be non-negative, got {config.people.padding}."
        )

    if config.face.scale_factor <= 1.0:
        raise ValueError(
            f"face.scale_factor must be greater than 1.0, got {config.face.scale_factor}."
        )

    if config.face.min_neighbors < 0:
        raise ValueError(
            f"face.min_neighbors must be non-negative, got {config.face.min_neighbors}."
        )

    if any(d <= 0 for d in config.face.min_size):
        raise ValueError(
            f"face.min_size dimensions must be positive, got {config.face.min_size}."
        )

    if config.input.resize_width is not None and config.input.resize_width <= 0:
        raise ValueError(
            f"input.resize_width must be positive or None, "
            f"got {config.input.resize_width}."
        )

    for name in ("body_thickness", "face_thickness"):
        if getattr(config.visualization, name) <= 0:
            raise ValueError(
                f"visualization.{name} must be positive, "
                f"got {getattr(config.visualization, name)}."
            )


# ---------------------------------------------------------------------------
# YAML loading
# ---------------------------------------------------------------------------

def _parse_tuple(value, expected_len: int, cast_type=float):
    """Convert a list from YAML into a tuple of the expected type and length."""
    if isinstance(value, (list, tuple)):
        if len(value) != expected_len:
            raise ValueError(
                f"Expected {expected_len} values, got {len(value)}: {value}"
            )
        return tuple(cast_type(v) for v in value)
    return value


def _parse_bool(value) -> bool:
    """Accept YAML booleans as well as strings coming from the environment."""
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _build_device_config(raw: dict) -> DeviceConfig:
    """Build DeviceConfig from a raw YAML dict."""
    kwargs = {}
    if "backend" in raw:
        kwargs["backend"] = str(raw["backend"]).lower()
    return DeviceConfig(**kwargs)


def _build_people_config(raw: dict) -> PeopleConfig:
    """Build PeopleConfig from a raw YAML dict."""
    kwargs = {}
    if "enabled" in raw:
        kwargs["enabled"] = _parse_bool(raw["enabled"])
    if "win_stride" in raw:
        kwargs["win_stride"] = _parse_tuple(raw["win_stride"], 2, int)
    if "padding" in raw:
        kwargs["padding"] = _parse_tuple(raw["padding"], 2, int)
    if "scale" in raw:
        kwargs["scale"] = float(raw["scale"])
    if "hit_threshold" in raw:
        kwargs["hit_threshold"] = float(raw["hit_threshold"])
    return PeopleConfig(**kwargs)


def _build_face_config(raw: dict) -> FaceConfig:
    """Build FaceConfig from a raw YAML dict."""
    kwargs = {}
    if "enabled" in raw:
        kwargs["enabled"] = _parse_bool(raw["enabled"])
    if "cascade_path" in raw:
        kwargs["cascade_path"] = str(raw["cascade_path"])
    if "scale_factor" in raw:
        kwargs["scale_factor"] = float(raw["scale_factor"])
    if "min_neighbors" in raw:
        kwargs["min_neighbors"] = int(raw["min_neighbors"])
    if "min_size" in raw:
        kwargs["min_size"] = _parse_tuple(raw["min_size"], 2, int)
    if "equalize_hist" in raw:
        kwargs["equalize_hist"] = _parse_bool(raw["equalize_hist"])
    return FaceConfig(**kwargs)


def _build_input_config(raw: dict) -> InputConfig:
    """Build InputConfig from a raw YAML dict."""
    kwargs = {}
    if "source" in raw:
        kwargs["source"] = str(raw["source"])
    if "resize_width" in raw:
        val = raw["resize_width"]
        kwargs["resize_width"] = int(val) if val is not None else None
    return InputConfig(**kwargs)


def _build_output_config(raw: dict) -> OutputConfig:
    """Build OutputConfig from a raw YAML dict."""
    kwargs = {}
    if "mode" in raw:
        kwargs["mode"] = str(raw["mode"]).lower()
    if "save_path" in raw:
        kwargs["save_path"] = str(raw["save_path"])
    return OutputConfig(**kwargs)


def _build_visualization_config(raw: dict) -> VisualizationConfig:
    """Build VisualizationConfig from a raw YAML dict."""
    kwargs = {}
    if "body_color" in raw:
        kwargs["body_color"] = _parse_tuple(raw["body_color"], 3, int)
    if "body_thickness" in raw:
        kwargs["body_thickness"] = int(raw["body_thickness"])
    if "face_color" in raw:
        kwargs["face_color"] = _parse_tuple(raw["face_color"], 3, int)
    if "face_thickness" in raw:
        kwargs["face_thickness"] = int(raw["face_thickness"])
    if "show_labels" in raw:
        kwargs["show_labels"] = _parse_bool(raw["show_labels"])
    return VisualizationConfig(**kwargs)


# ---------------------------------------------------------------------------
# Environment variable overrides
# ---------------------------------------------------------------------------

_ENV_PREFIX = "BODY_DETECT_"


def _apply_env_overrides(raw: dict) -> dict:
    """Apply environment variable overrides to the raw config dict.

    Environment variables follow the pattern:
        BODY_DETECT_DEVICE_BACKEND=cuda
        BODY_DETECT_FACE_MIN_NEIGHBORS=5
    """
    env_map = {
        f"{_ENV_PREFIX}DEVICE_BACKEND": ("device", "backend"),
        f"{_ENV_PREFIX}PEOPLE_ENABLED": ("people", "enabled"),
        f"{_ENV_PREFIX}PEOPLE_SCALE": ("people", "scale"),
        f"{_ENV_PREFIX}PEOPLE_HIT_THRESHOLD": ("people", "hit_threshold"),
        f"{_ENV_PREFIX}FACE_ENABLED": ("face", "enabled"),
        f"{_ENV_PREFIX}FACE_CASCADE_PATH": ("face", "cascade_path"),
        f"{_ENV_PREFIX}FACE_SCALE_FACTOR": ("face", "scale_factor"),
        f"{_ENV_PREFIX}FACE_MIN_NEIGHBORS": ("face", "min_neighbors"),
        f"{_ENV_PREFIX}INPUT_SOURCE": ("input", "source"),
        f"{_ENV_PREFIX}INPUT_RESIZE_WIDTH": ("input", "resize_width"),
        f"{_ENV_PREFIX}OUTPUT_MODE": ("output", "mode"),
        f"{_ENV_PREFIX}OUTPUT_SAVE_PATH": ("output", "save_path"),
    }

    for env_var, (section, key) in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            raw.setdefault(section, {})[key] = value
            logger.debug("Config override from env: %s=%s", env_var, value)

    return raw


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------

def load_config(config_path: Optional[str] = None) -> AppConfig:
    """Load and validate application configuration.

    Precedence (highest → lowest):
        Environment variables > YAML file > Hard-coded defaults

    Args:
        config_path: Path to a YAML configuration file. If None,
                     the system runs entirely on defaults.

    Returns:
        A validated, frozen AppConfig instance.

    Raises:
        FileNotFoundError: If config_path is provided but does not exist.
        ValueError: If any configuration value is invalid.
        yaml.YAMLError: If the YAML file is malformed.
    """
    raw: dict = {}

    # --- Layer 1: YAML file ---
    if config_path is not None:
        resolved = Path(config_path)
        if not resolved.is_absolute():
            resolved = _PROJECT_ROOT / resolved

        if not resolved.is_file():
            raise FileNotFoundError(
                f"Configuration file not found: {resolved}. "
                f"Provide a valid path or omit to use defaults."
            )

        logger.info("Loading config from: %s", resolved)
        with open(resolved, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    # --- Layer 2: Environment variable overrides ---
    raw = _apply_env_overrides(raw)

    # --- Build typed configs ---
    config = AppConfig(
        device=_build_device_config(raw.get("device", {})),
        people=_build_people_config(raw.get("people", {})),
        face=_build_face_config(raw.get("face", {})),
        input=_build_input_config(raw.get("input", {})),
        output=_build_output_config(raw.get("output", {})),
        visualization=_build_visualization_config(raw.get("visualization", {})),
    )

    # --- Validate ---
    _validate(config)

    logger.debug("Configuration loaded: %s", config)
    return config
