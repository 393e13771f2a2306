"""Detection model registry and ONNX session cache.

A model file is looked up in ``models_dir`` first, so a device can run fully
offline once the file has been copied there. Otherwise it is fetched from the
HuggingFace Hub on first use. Sessions stay cached until they sit idle for
longer than ``model_ttl`` seconds.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from huggingface_hub.errors import HfHubHTTPError, LocalEntryNotFoundError
from onnxruntime import ExecutionMode, GraphOptimizationLevel, InferenceSession, SessionOptions

from facecapture.errors import ConfigurationError

if TYPE_CHECKING:
    from facecapture.config import Settings

logger = logging.getLogger(__name__)

Provider = str | tuple[str, dict[str, object]]


class ModelManager(Protocol):
    def get_session(self, model_name: str) -> InferenceSession: ...

    def get_loaded_models(self) -> list[str]: ...

    def unload_idle_models(self) -> list[str]:
        """Drop sessions idle past the TTL and return their names."""
        ...

    def shutdown(self) -> None: ...


@dataclass(frozen=True)
class ModelSpec:
    name: str
    repo_id: str
    filename: str
    license: str


_MODELS_REPO = "danielcopper/recognizex-models"

MODEL_REGISTRY: dict[str, ModelSpec] = {
    spec.name: spec
    for spec in (
        ModelSpec("retinaface_mobilenetv2", _MODELS_REPO, "retinaface_mobilenetv2.onnx", "MIT"),
        ModelSpec("retinaface_resnet34", _MODELS_REPO, "retinaface_resnet34.onnx", "MIT"),
    )
}


def get_spec(model_name: str) -> ModelSpec:
    """Look up a detection model.

    Raises:
        ConfigurationError: If the name is not in the registry.
    """
    spec = MODEL_REGISTRY.get(model_name)
    if spec is None:
        known = ", ".join(sorted(MODEL_REGISTRY))
        raise ConfigurationError(f"Unknown face detection model '{model_name}' (known: {known}).")
    return spec


def execution_providers(settings: Settings) -> list[Provider]:
    """onnxruntime providers for the configured device, CPU always last."""
    if settings.device == "cuda":
        cuda_options: dict[str, object] = {
            "device_id": 0,
            "gpu_mem_limit": settings.gpu_mem_limit,
            "arena_extend_strategy": "kSameAsRequested",
        }
        return [("CUDAExecutionProvider", cuda_options), "CPUExecutionProvider"]
    if settings.device == "openvino":
        return [("OpenVINOExecutionProvider", {"device_type": "CPU"}), "CPUExecutionProvider"]
    return ["CPUExecutionProvider"]


def session_options(settings: Settings) -> SessionOptions:
    options = SessionOptions()
    options.intra_op_num_threads = settings.intra_op_threads
    options.inter_op_num_threads = settings.inter_op_threads
    options.execution_mode = ExecutionMode.ORT_SEQUENTIAL
    if settings.device == "openvino":
        # OpenVINO does its own graph rewriting.
        options.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
    return options


@dataclass
class _LoadedModel:
    session: InferenceSession
    last_used: float = field(default_factory=time.monotonic)


class OnnxModelManager:
    """Resolves detection model files and caches their InferenceSessions."""

    def __init__(self, settings: Settings) -> None:
        self._models_dir = Path(settings.models_dir)
        self._ttl = settings.model_ttl
        self._providers = execution_providers(settings)
        self._session_options = session_options(settings)

        self._lock = threading.Lock()
        self._load_locks: dict[str, threading.Lock] = {}
        self._loaded: dict[str, _LoadedModel] = {}

    def resolve_model_path(self, model_name: str) -> Path:
        """Return a local path for the model, downloading it if needed.

        Raises:
            ConfigurationError: If the model is unknown or cannot be fetched.
        """
        spec = get_spec(model_name)
        local = self._models_dir / spec.filename
        if local.is_file():
            return local

        self._models_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Fetching %s from %s", spec.filename, spec.repo_id)
        try:
            downloaded = hf_hub_download(
                repo_id=spec.repo_id,
                filename=spec.filename,
                local_dir=str(self._models_dir),
            )
        except (HfHubHTTPError, LocalEntryNotFoundError, OSError) as exc:
            raise ConfigurationError(
                f"Face detection model '{model_name}' is not in {self._models_dir} and could not be downloaded."
            ) from exc
        return Path(downloaded)

    def get_session(self, model_name: str) -> InferenceSession:
        """Return the cached session for ``model_name``, loading it on first use.

        Loads of the same model are serialized so two captures arriving
        together never build two sessions.
        """
        with self._lock:
            loaded = self._loaded.get(model_name)
            if loaded is not None:
                loaded.last_used = time.monotonic()
                return loaded.session
            load_lock = self._load_locks.setdefault(model_name, threading.Lock())

        with load_lock:
            with self._lock:
                loaded = self._loaded.get(model_name)
            if loaded is None:
                path = self.resolve_model_path(model_name)
                session = InferenceSession(str(path), sess_options=self._session_options, providers=self._providers)
                loaded = _LoadedModel(session)
                with self._lock:
                    self._loaded[model_name] = loaded
                logger.info("Loaded %s with %s", model_name, session.get_providers())
            loaded.last_used = time.monotonic()
            return loaded.session

    def get_loaded_models(self) -> list[str]:
        with self._lock:
            return sorted(self._loaded)

    def unload_idle_models(self) -> list[str]:
        if self._ttl == 0:
            return []

        cutoff = time.monotonic() - self._ttl
        with self._lock:
            idle = [name for name, loaded in self._loaded.items() if loaded.last_used < cutoff]
            for name in idle:
                del self._loaded[name]
        for name in idle:
            logger.info("Unloaded %s after %ds idle", name, self._ttl)
        return idle

    def shutdown(self) -> None:
        with self._lock:
            count = len(self._loaded)
            self._loaded.clear()
        logger.info("Released %d model session(s)", count)
