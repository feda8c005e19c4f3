"""Buffered recorder of named signals, saved as a MATLAB file."""
from __future__ import annotations

from collections import deque
from datetime import datetime
from pathlib import Path

import numpy as np
from scipy.io import savemat

BUFFER_SIZE = 10_000


class DataLogger:
    """Collects samples per variable name and writes them to a ``.mat`` file.

    Each variable is stored as a matrix with one column per sample.  With
    ``limited`` set, only the last :data:`BUFFER_SIZE` samples of each
    variable are kept.
    """

    def __init__(self, log_dir, limited: bool = False):
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y_%m_%d__%H_%M_%S_%f")
        self.path = directory / f"log__{stamp}.mat"
        self.limited = limited
        self._buffers: dict[str, deque] = {}
        self._sizes: dict[str, int] = {}
        self._closed = False

    def log_data(self, name: str, data) -> bool:
        """Append one sample (a scalar or a vector) to the variable ``name``."""
        if self._closed:
            raise ValueError("logger is closed")
        sample = np.array(data, dtype=float).reshape(-1)
        size = self._sizes.setdefault(name, sample.size)
        if sample.size != size:
            raise ValueError(
                f"variable {name!r} holds samples of size {size}, got {sample.size}"
            )
        buffer = self._buffers.get(name)
        if buffer is None:
            buffer = deque(maxlen=BUFFER_SIZE if self.limited else None)
            self._buffers[name] = buffer
        buffer.append(sample)
        return True

    def save(self) -> Path:
        """Write every variable collected so far and return the file path."""
        matrices = {
            name: np.column_stack(list(buffer)) if buffer else np.zeros((0, 0))
            for name, buffer in self._buffers.items()
        }
        savemat(str(self.path), matrices)
        return self.path

    def close(self) -> None:
        """Save the data once and refuse further samples."""
        if not self._closed:
            self.save()
            self._closed = True

    def __enter__(self) -> "DataLogger":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()