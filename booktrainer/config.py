"""Runtime configuration for the Book Move Trainer.

Values come from environment variables with sensible local defaults.
Timing constants are fixed; they are part of how training feels.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

_PROJECT_ROOT = Path(__file__).resolve().parent.parent

DEFAULT_DATA_DIR = _PROJECT_ROOT / "data"
BUNDLED_DATASET = Path(__file__).resolve().parent / "exercises.json"
LOCAL_STORAGE_FILENAME = "local_storage.json"

# Seconds before the recorded opponent reply lands after a correct move
REPLY_DELAY_SECONDS = 0.5

# Seconds the red board highlight stays up after a wrong move
HIGHLIGHT_SECONDS = 0.8

# Remote service calls are abandoned after this many seconds
REQUEST_TIMEOUT_SECONDS = 5.0

DEFAULT_REFRESH_SECONDS = 30.0


@dataclass
class TrainerConfig:
    """Settings shared by the merger, authoring pipeline and surfaces."""

    data_dir: Path = DEFAULT_DATA_DIR
    dataset_path: Path = BUNDLED_DATASET
    api_url: str | None = None
    api_token: str | None = None
    refresh_seconds: float = DEFAULT_REFRESH_SECONDS

    @property
    def local_storage_path(self) -> Path:
        return self.data_dir / LOCAL_STORAGE_FILENAME

    @classmethod
    def from_env(cls) -> "TrainerConfig":
        """Build a config from BOOK_TRAINER_* environment variables."""
        data_dir = os.environ.get("BOOK_TRAINER_DATA_DIR")
        refresh = os.environ.get("BOOK_TRAINER_REFRESH_SECONDS")
        try:
            refresh_seconds = float(refresh) if refresh else DEFAULT_REFRESH_SECONDS
        except ValueError:
            refresh_seconds = DEFAULT_REFRESH_SECONDS

        return cls(
            data_dir=Path(data_dir) if data_dir else DEFAULT_DATA_DIR,
            api_url=os.environ.get("BOOK_TRAINER_API_URL") or None,
            api_token=os.environ.get("BOOK_TRAINER_API_TOKEN") or None,
            refresh_seconds=refresh_seconds,
        )
