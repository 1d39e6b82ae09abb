"""Bucket configuration model.

Uses stdlib dataclasses only. YAML loading needs PyYAML, which is an
optional extra (``pip install leaky-bucket[yaml]``).
"""

from __future__ import annotations

import dataclasses
import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

_ENV_PREFIX = "LEAKY_BUCKET_"


@dataclass
class BucketConfig:
    """Settings for a :class:`~leaky_bucket.bucket.LeakyBucket`.

    ``timeout`` defaults to ``interval`` so the bucket overflows as soon as
    one interval's worth of capacity is queued. ``idle_timeout`` enables the
    ``idle_timeout`` event. ``initial_capacity`` starts the bucket
    partially drained.
    """

    capacity: float = 60
    interval: float = 60.0
    timeout: Optional[float] = None
    idle_timeout: Optional[float] = None
    initial_capacity: Optional[float] = None

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            raise ValueError("capacity must be > 0")
        if self.interval <= 0:
            raise ValueError("interval must be > 0")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")
        if self.idle_timeout is not None and self.idle_timeout <= 0:
            raise ValueError("idle_timeout must be > 0")
        if self.initial_capacity is not None and not 0 <= self.initial_capacity <= self.capacity:
            raise ValueError("initial_capacity must be between 0 and capacity")

    @property
    def effective_timeout(self) -> float:
        return self.interval if self.timeout is None else self.timeout

    def to_dict(self) -> dict:
        """Serialize to a plain dictionary (JSON-safe)."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> BucketConfig:
        """Deserialize from a plain dictionary.

        Unknown keys are silently ignored for forward compatibility.
        """
        valid = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in valid})

    @classmethod
    def from_yaml(cls, path: str) -> BucketConfig:
        """Load configuration from a YAML or JSON file.

        Accepts ``.json`` files natively.  For ``.yaml`` / ``.yml`` files,
        PyYAML must be installed (optional dependency).
        """
        file_path = Path(path)

        if file_path.suffix == ".json":
            with open(file_path) as fh:
                data = json.load(fh)
            return cls.from_dict(data)

        try:
            import yaml  # type: ignore[import-untyped]
        except ImportError:
            raise RuntimeError(
                f"PyYAML is required to load '{file_path.name}'. "
                "Install with: pip install pyyaml"
            ) from None

        with open(file_path) as fh:
            data = yaml.safe_load(fh) or {}
        return cls.from_dict(data)

    @classmethod
    def from_env(cls) -> BucketConfig:
        """Build a BucketConfig from environment variables.

        Recognised variables (all optional, parsed as floats):
            LEAKY_BUCKET_CAPACITY, LEAKY_BUCKET_INTERVAL,
            LEAKY_BUCKET_TIMEOUT, LEAKY_BUCKET_IDLE_TIMEOUT,
            LEAKY_BUCKET_INITIAL_CAPACITY
        """
        data: dict = {}
        for f in dataclasses.fields(cls):
            raw = os.environ.get(_ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            try:
                data[f.name] = float(raw)
            except ValueError:
                raise ValueError(
                    f"{_ENV_PREFIX}{f.name.upper()} must be a number, got {raw!r}"
                ) from None
        return cls.from_dict(data)
