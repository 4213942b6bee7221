"""Configuration management for the face identification pipeline.

This module loads configuration from environment variables (.env file) and
provides a centralized Config class for accessing settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
VALID_MODEL_PACKS = ["buffalo_l", "buffalo_m", "buffalo_s", "buffalo_sc"]
VALID_DETECTOR_BACKENDS = ["auto", "retinaface", "scrfd"]
VALID_CHANNEL_ORDERS = ["rgb", "bgr"]
VALID_NORMALIZATIONS = ["auto", "raw", "unit", "symmetric"]


def _env_bool(name: str, default: str) -> bool:
    return bool(int(os.getenv(name, default)))


def _env_unit_interval(name: str, default: str) -> float:
    value = float(os.getenv(name, default))
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be between 0.0 and 1.0, got {value}")
    return value


@dataclass
class Config:
    """Application configuration loaded from environment variables.

    Attributes:
        ctx_id: Device context ID (-1 for CPU, 0+ for GPU)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file receiving a plain copy of the log
        model_pack: InsightFace model pack name
        detector_backend: "auto", "retinaface" or "scrfd"
        detector_model_path: RetinaFace ONNX file
        embedder_model_path: ArcFace ONNX file (None = use the model pack)
        detector_input_size: Detector input resolution as (width, height)
        conf_threshold: Minimum anchor confidence kept by the decoder
        nms_threshold: IoU above which overlapping boxes are suppressed
        permissive_fallback: Accept the best anchor when nothing clears
            conf_threshold (subject to a 0.1 floor)
        thresh: Cosine similarity threshold for accepting a match
        min_margin: Required gap between best and runner-up scores
        blink_threshold: Eye aspect ratio below which the eye counts as closed
        liveness_window_ms: How long a blink keeps the subject "live"
        liveness_enabled: Gate identification behind the blink check
        channel_order: Embedder input channel order ("rgb" or "bgr")
        normalization: Embedder input scaling ("auto", "raw", "unit", "symmetric")
        min_enroll_samples: Fewest valid captures accepted for enrollment
        max_enroll_samples: Most captures averaged into one template
        calibration_samples: Frames sampled during calibration
        checkin_cooldown_ms: Minimum time between two check-ins of one person
        embedding_dim: Embedding length used when the model does not report it
        gallery_dir: Directory of the gallery store
    """

    ctx_id: int
    log_level: str
    log_file: Path | None
    model_pack: str
    detector_backend: str
    detector_model_path: Path
    embedder_model_path: Path | None
    detector_input_size: tuple[int, int]
    conf_threshold: float
    nms_threshold: float
    permissive_fallback: bool
    thresh: float
    min_margin: float
    blink_threshold: float
    liveness_window_ms: int
    liveness_enabled: bool
    channel_order: str
    normalization: str
    min_enroll_samples: int
    max_enroll_samples: int
    calibration_samples: int
    checkin_cooldown_ms: int
    embedding_dim: int

    # Paths
    data_dir: Path
    gallery_dir: Path
    models_dir: Path

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Returns:
            Config instance with values from environment or defaults.

        Raises:
            ValueError: If environment variables are invalid.
        """
        project_root = Path(__file__).parent.parent

        ctx_id = int(os.getenv("CTX_ID", "-1"))

        log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        if log_level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"LOG_LEVEL must be one of {VALID_LOG_LEVELS}, got {log_level}"
            )
        log_file_env = os.getenv("LOG_FILE", "")
        log_file = Path(log_file_env) if log_file_env else None

        # Model configuration
        model_pack = os.getenv("MODEL_PACK", "buffalo_l")
        if model_pack not in VALID_MODEL_PACKS:
            raise ValueError(
                f"MODEL_PACK must be one of {VALID_MODEL_PACKS}, got {model_pack}"
            )

        detector_backend = os.getenv("DETECTOR_BACKEND", "auto").lower()
        if detector_backend not in VALID_DETECTOR_BACKENDS:
            raise ValueError(
                f"DETECTOR_BACKEND must be one of {VALID_DETECTOR_BACKENDS}, "
                f"got {detector_backend}"
            )

        models_dir = project_root / "models"
        detector_model_path = Path(
            os.getenv(
                "DETECTOR_MODEL_PATH",
                str(models_dir / "retinaface" / "retinaface_mbn025.onnx"),
            )
        )
        embedder_env = os.getenv("EMBEDDER_MODEL_PATH", "")
        embedder_model_path = Path(embedder_env) if embedder_env else None

        input_w = int(os.getenv("DETECTOR_INPUT_WIDTH", "640"))
        input_h = int(os.getenv("DETECTOR_INPUT_HEIGHT", "608"))
        if input_w <= 0 or input_h <= 0:
            raise ValueError(
                f"Detector input size must be positive, got {input_w}x{input_h}"
            )

        # Decoder
        conf_threshold = _env_unit_interval("CONF_THRESHOLD", "0.3")
        nms_threshold = _env_unit_interval("NMS_THRESHOLD", "0.4")
        permissive_fallback = _env_bool("PERMISSIVE_FALLBACK", "1")

        # Matching
        thresh = _env_unit_interval("THRESH", "0.5")
        min_margin = _env_unit_interval("MIN_MARGIN", "0.08")

        # Liveness
        blink_threshold = float(os.getenv("BLINK_THRESHOLD", "0.22"))
        if blink_threshold <= 0:
            raise ValueError(f"BLINK_THRESHOLD must be > 0, got {blink_threshold}")

        liveness_window_ms = int(os.getenv("LIVENESS_WINDOW_MS", "3000"))
        if liveness_window_ms <= 0:
            raise ValueError(
                f"LIVENESS_WINDOW_MS must be > 0, got {liveness_window_ms}"
            )
        liveness_enabled = _env_bool("LIVENESS_ENABLED", "1")

        # Embedder preprocessing
        channel_order = os.getenv("CHANNEL_ORDER", "rgb").lower()
        if channel_order not in VALID_CHANNEL_ORDERS:
            raise ValueError(
                f"CHANNEL_ORDER must be one of {VALID_CHANNEL_ORDERS}, "
                f"got {channel_order}"
            )

        normalization = os.getenv("NORMALIZATION", "auto").lower()
        if normalization not in VALID_NORMALIZATIONS:
            raise ValueError(
                f"NORMALIZATION must be one of {VALID_NORMALIZATIONS}, "
                f"got {normalization}"
            )

        # Enrollment / calibration
        min_enroll_samples = int(os.getenv("MIN_ENROLL_SAMPLES", "3"))
        if min_enroll_samples < 1:
            raise ValueError(
                f"MIN_ENROLL_SAMPLES must be >= 1, got {min_enroll_samples}"
            )

        max_enroll_samples = int(os.getenv("MAX_ENROLL_SAMPLES", "10"))
        if max_enroll_samples < min_enroll_samples:
            raise ValueError(
                f"MAX_ENROLL_SAMPLES must be >= MIN_ENROLL_SAMPLES, "
                f"got {max_enroll_samples} < {min_enroll_samples}"
            )

        calibration_samples = int(os.getenv("CALIBRATION_SAMPLES", "5"))
        if calibration_samples < 3:
            raise ValueError(
                f"CALIBRATION_SAMPLES must be >= 3, got {calibration_samples}"
            )

        checkin_cooldown_ms = int(os.getenv("CHECKIN_COOLDOWN_MS", "30000"))
        if checkin_cooldown_ms < 0:
            raise ValueError(
                f"CHECKIN_COOLDOWN_MS must be >= 0, got {checkin_cooldown_ms}"
            )

        embedding_dim = int(os.getenv("EMBEDDING_DIM", "512"))
        if embedding_dim <= 0:
            raise ValueError(f"EMBEDDING_DIM must be > 0, got {embedding_dim}")

        # Paths
        data_dir = project_root / "data"
        gallery_dir = Path(os.getenv("GALLERY_DIR", str(data_dir / "gallery")))

        return cls(
            ctx_id=ctx_id,
            log_level=log_level,
            log_file=log_file,
            model_pack=model_pack,
            detector_backend=detector_backend,
            detector_model_path=detector_model_path,
            embedder_model_path=embedder_model_path,
            detector_input_size=(input_w, input_h),
            conf_threshold=conf_threshold,
            nms_threshold=nms_threshold,
            permissive_fallback=permissive_fallback,
            thresh=thresh,
            min_margin=min_margin,
            blink_threshold=blink_threshold,
            liveness_window_ms=liveness_window_ms,
            liveness_enabled=liveness_enabled,
            channel_order=channel_order,
            normalization=normalization,
            min_enroll_samples=min_enroll_samples,
            max_enroll_samples=max_enroll_samples,
            calibration_samples=calibration_samples,
            checkin_cooldown_ms=checkin_cooldown_ms,
            embedding_dim=embedding_dim,
            data_dir=data_dir,
            gallery_dir=gallery_dir,
            models_dir=models_dir,
        )

    def __repr__(self) -> str:
        """Return string representation of config."""
        return (
            f"Config(\n"
            f"  Device: {'GPU' if self.ctx_id >= 0 else 'CPU'}:{self.ctx_id},\n"
            f"  Detector: {self.detector_backend} "
            f"@ {self.detector_input_size[0]}x{self.detector_input_size[1]},\n"
            f"  Model pack: {self.model_pack},\n"
            f"  Threshold: {self.thresh} (margin {self.min_margin}),\n"
            f"  Liveness: {'on' if self.liveness_enabled else 'off'} "
            f"({self.liveness_window_ms} ms),\n"
            f"  Embedder input: {self.channel_order}/{self.normalization},\n"
            f"  Gallery: {self.gallery_dir},\n"
            f"  Log Level: {self.log_level}\n"
            f")"
        )


# Global config instance (lazy-loaded)
_config: Config | None = None


def get_config() -> Config:
    """Get global config instance (singleton pattern).

    Returns:
        Config instance loaded from environment.
    """
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config
