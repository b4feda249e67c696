"""Define typed configuration models for the normal-map batch pipeline.

Use `PipelineConfig` to load, validate, and persist runtime settings.
"""

import math
import os
import logging
import yaml
from dataclasses import dataclass, field

logger = logging.getLogger("gray_normal.config")

VALID_TASK_ORDERS = ("fifo", "lifo")
VALID_MERGE_ROUNDING = ("exact", "legacy")
MAX_WORKERS = 256


@dataclass
class NormalConfig:
    """Store settings for normal map generation and output naming."""

    scale: float = 20.0
    suffix: str = "_normals"
    output_ext: str = ".png"


@dataclass
class MergeConfig:
    """Store settings for merge mode (average inputs, write one output)."""

    output_name: str = ""  # empty = merge disabled
    # "exact": sum at full precision, divide once.
    # "legacy": divide each input by N before summing (truncating).
    rounding: str = "exact"


_SUPPORTED_CONFIG_VERSION = 1


@dataclass
class PipelineConfig:
    """Master pipeline configuration."""

    config_version: int = 1
    output_dir: str = "."
    workers: int = 1
    task_order: str = "fifo"
    fail_fast: bool = True
    max_image_pixels: int = 268435456  # 16384x16384
    log_level: str = "INFO"
    log_file: str = ""
    show_progress: bool = True

    normal: NormalConfig = field(default_factory=NormalConfig)
    merge: MergeConfig = field(default_factory=MergeConfig)

    @property
    def mode(self) -> str:
        """Return the dispatch strategy: ``merge``, ``parallel`` or ``sequential``."""
        if self.merge.output_name:
            return "merge"
        if self.workers > 1:
            return "parallel"
        return "sequential"

    @classmethod
    def from_yaml(cls, path: str) -> "PipelineConfig":
        """Load pipeline configuration from YAML or return defaults."""
        if not os.path.exists(path):
            logger.info("Config file '%s' not found. Using defaults.", path)
            config = cls()
            config.validate()
            return config
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(
                f"Failed to parse YAML config '{path}': {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise ValueError(
                f"Config file '{path}' must contain a YAML mapping, "
                f"got {type(data).__name__}"
            )
        yaml_version = data.get("config_version", 1)
        if isinstance(yaml_version, int) and yaml_version > _SUPPORTED_CONFIG_VERSION:
            logger.warning(
                "Config file '%s' has config_version=%d, but this build only "
                "supports up to version %d. Some settings may be ignored.",
                path, yaml_version, _SUPPORTED_CONFIG_VERSION,
            )
        config = cls()
        _merge_dict_to_dataclass(config, data)
        try:
            config.validate()
        except ValueError as exc:
            raise ValueError(f"{path}: {exc}") from exc
        return config

    def to_yaml(self, path: str):
        """Write pipeline configuration to a YAML file."""
        import dataclasses
        import threading as _th
        data = dataclasses.asdict(self)
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        ext = os.path.splitext(path)[1]
        tmp_path = f"{path}.tmp.{os.getpid()}.{_th.get_ident()}{ext}"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                yaml.dump(data, f, default_flow_style=False, sort_keys=False)
            os.replace(tmp_path, path)
        finally:
            if os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    pass

    def validate(self):
        """Validate configuration values. Raises ValueError on invalid config."""
        errors = []

        valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.log_level.upper() not in valid_log_levels:
            errors.append(
                f"log_level must be one of {sorted(valid_log_levels)}, "
                f"got '{self.log_level}'"
            )

        if self.workers < 1:
            errors.append("workers must be >= 1")
        if self.workers > MAX_WORKERS:
            errors.append(f"workers must be <= {MAX_WORKERS}")
        if self.task_order not in VALID_TASK_ORDERS:
            errors.append(
                f"task_order must be one of {list(VALID_TASK_ORDERS)}, "
                f"got '{self.task_order}'"
            )
        if self.max_image_pixels < 0:
            errors.append("max_image_pixels must be >= 0 (0 = unlimited)")
        if not self.output_dir:
            errors.append("output_dir must not be empty")

        # Normal
        if not math.isfinite(self.normal.scale):
            errors.append(f"normal.scale must be finite, got {self.normal.scale}")
        if not self.normal.output_ext.startswith("."):
            errors.append(
                f"normal.output_ext must start with '.', got '{self.normal.output_ext}'"
            )
        elif self.normal.output_ext.lower() != ".png":
            errors.append(
                f"normal.output_ext must be '.png', got '{self.normal.output_ext}'"
            )
        if os.sep in self.normal.suffix or "/" in self.normal.suffix:
            errors.append("normal.suffix must not contain path separators")

        # Merge
        if self.merge.rounding not in VALID_MERGE_ROUNDING:
            errors.append(
                f"merge.rounding must be one of {list(VALID_MERGE_ROUNDING)}, "
                f"got '{self.merge.rounding}'"
            )
        if self.merge.output_name:
            if os.path.basename(self.merge.output_name) != self.merge.output_name:
                errors.append(
                    "merge.output_name must be a file name, not a path "
                    f"(got '{self.merge.output_name}')"
                )
            if self.workers > 1:
                logger.warning(
                    "Merge mode always runs sequentially; workers=%d is ignored.",
                    self.workers,
                )

        if errors:
            raise ValueError(
                "Configuration validation failed:\n" +
                "\n".join(f"  - {e}" for e in errors)
            )


def _merge_dict_to_dataclass(obj, data: dict, _path: str = ""):
    import dataclasses
    for key, value in data.items():
        if hasattr(obj, key) and not isinstance(getattr(type(obj), key, None), property):
            field_val = getattr(obj, key)
            if dataclasses.is_dataclass(field_val) and isinstance(value, dict):
                _merge_dict_to_dataclass(field_val, value, f"{_path}{key}.")
            else:
                full_key = f"{_path}{key}"
                if value is None and field_val is not None:
                    logger.warning(
                        f"Config key '{full_key}' is null but field default is "
                        f"{type(field_val).__name__}. Using default value."
                    )
                    continue
                expected_type = type(field_val)
                # Allow int->float and exact float->int promotion
                if (field_val is not None
                        and not isinstance(value, expected_type)
                        and not (expected_type is float
                                 and isinstance(value, int)
                                 and not isinstance(value, bool))
                        and not (expected_type is int
                                 and isinstance(value, float)
                                 and value == int(value))):
                    logger.warning(
                        f"Config type mismatch for '{full_key}': "
                        f"expected {expected_type.__name__}, "
                        f"got {type(value).__name__} ({value!r}). "
                        f"Using default value."
                    )
                    continue
                if expected_type is int and isinstance(value, float):
                    value = int(value)
                elif expected_type is float and isinstance(value, int):
                    value = float(value)
                setattr(obj, key, value)
        else:
            full_key = f"{_path}{key}"
            logger.warning(f"Unknown config key ignored: '{full_key}'")
