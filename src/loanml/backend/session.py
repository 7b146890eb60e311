"""
Backend session management.

The session is the in-process counterpart of a compute cluster
connection: it owns every frame and model handle created through it.
Handles stop working once the session shuts down.
"""

import uuid
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd

from loanml.backend.frame import ColumnType, Frame, infer_column_types
from loanml.config.settings import SessionConfig
from loanml.exceptions import SessionClosedError
from loanml.utils.logging import get_logger, set_backend_progress

if TYPE_CHECKING:
    from loanml.modeling.training import Model

log = get_logger(__name__)


class Session:
    """
    In-process backend session holding frame and model handles.

    Usable as a context manager; leaving the block shuts the session down.
    """

    def __init__(self, config: SessionConfig | None = None) -> None:
        self.config = config or SessionConfig()
        self.session_id = f"session_{uuid.uuid4().hex[:8]}"
        self._frames: dict[str, Frame] = {}
        self._models: dict[str, "Model"] = {}
        self._counters: dict[str, int] = {}
        self._alive = True

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()

    def __repr__(self) -> str:
        state = "alive" if self._alive else "closed"
        return f"Session({self.session_id}, {state}, frames={len(self._frames)}, models={len(self._models)})"

    @property
    def is_alive(self) -> bool:
        """Whether the session accepts calls."""
        return self._alive

    @property
    def n_jobs(self) -> int:
        """Parallel jobs passed to estimators."""
        return self.config.n_jobs

    def ensure_alive(self) -> None:
        """Raise SessionClosedError if the session has been shut down."""
        if not self._alive:
            msg = f"Backend session {self.session_id} is not running"
            raise SessionClosedError(msg)

    def next_key(self, prefix: str) -> str:
        """Generate a unique, sequential key such as 'gbm_3'."""
        while True:
            self._counters[prefix] = self._counters.get(prefix, 0) + 1
            key = f"{prefix}_{self._counters[prefix]}"
            if key not in self._frames and key not in self._models:
                return key

    # --- Frames ---

    def upload_frame(
        self,
        df: pd.DataFrame,
        frame_id: str | None = None,
        *,
        types: dict[str, ColumnType] | None = None,
        max_categorical_levels: int = 1000,
    ) -> Frame:
        """
        Register a pandas DataFrame as a session frame.

        Args:
            df: Source data (copied).
            frame_id: Key for the frame; generated if omitted. An existing
                frame with the same key is replaced.
            types: Semantic column types; inferred if omitted.
            max_categorical_levels: Cardinality limit used for inference.

        Returns:
            The new frame handle.
        """
        self.ensure_alive()
        data = df.copy()
        if types is None:
            types = infer_column_types(data, max_categorical_levels)
        else:
            types = {col: types[col] for col in data.columns}

        for col, col_type in types.items():
            if col_type != "numeric" and data[col].dtype != object:
                data[col] = data[col].astype(object).where(data[col].notna(), np.nan)

        frame_id = frame_id or self.next_key("frame")
        if frame_id in self._frames:
            log.debug("Replacing frame", frame_id=frame_id)

        frame = Frame(self, frame_id, data, types)
        self._frames[frame_id] = frame
        return frame

    def holds_frame(self, frame: Frame) -> bool:
        """Whether this exact handle is the one registered under its key."""
        return self._frames.get(frame.frame_id) is frame

    def get_frame(self, frame_id: str) -> Frame:
        """Look up a frame by key."""
        self.ensure_alive()
        if frame_id not in self._frames:
            msg = f"Frame '{frame_id}' not found in session {self.session_id}"
            raise KeyError(msg)
        return self._frames[frame_id]

    def frames(self) -> list[str]:
        """Keys of all registered frames."""
        self.ensure_alive()
        return list(self._frames)

    # --- Models ---

    def register_model(self, model: "Model") -> None:
        """Register a trained model handle."""
        self.ensure_alive()
        self._models[model.model_id] = model

    def holds_model(self, model: "Model") -> bool:
        """Whether this exact handle is the one registered under its key."""
        return self._models.get(model.model_id) is model

    def get_model(self, model_id: str) -> "Model":
        """Look up a model by key."""
        self.ensure_alive()
        if model_id not in self._models:
            msg = f"Model '{model_id}' not found in session {self.session_id}"
            raise KeyError(msg)
        return self._models[model_id]

    def models(self) -> list[str]:
        """Keys of all registered models."""
        self.ensure_alive()
        return list(self._models)

    # --- Lifecycle ---

    def remove(self, key: str) -> None:
        """Drop a frame or model by key; later use of its handle fails."""
        self.ensure_alive()
        self._frames.pop(key, None)
        self._models.pop(key, None)

    def remove_all(self) -> None:
        """Drop every frame and model."""
        self.ensure_alive()
        log.info(
            "Removing all objects",
            session_id=self.session_id,
            frames=len(self._frames),
            models=len(self._models),
        )
        self._frames.clear()
        self._models.clear()

    def shutdown(self) -> None:
        """Shut the session down, invalidating all handles."""
        if not self._alive:
            return
        self._frames.clear()
        self._models.clear()
        self._alive = False
        log.info("Session shut down", session_id=self.session_id)


def init_session(config: SessionConfig | None = None) -> Session:
    """
    Start a backend session.

    Progress reporting of the backend libraries follows
    ``config.show_progress`` (off by default).

    Args:
        config: Session configuration; defaults apply if omitted.

    Returns:
        A running session.
    """
    config = config or SessionConfig()
    set_backend_progress(enabled=config.show_progress)
    session = Session(config)
    log.info(
        "Session started",
        session_id=session.session_id,
        n_jobs=config.n_jobs,
        show_progress=config.show_progress,
    )
    return session
