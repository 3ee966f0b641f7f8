from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Sequence, Tuple, Union

import numpy as np

from ..errors import EngineLoadError, EngineNotReady
from ..preprocess import ModelInputSpec

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class OnnxRuntimeEngineConfig:
    """
    Configuration for ONNX Runtime inference.

    - providers: ORT execution providers (e.g., ["CUDAExecutionProvider", "CPUExecutionProvider"])
    - input_name/output_name: override auto-selected I/O names if needed
    - intra_op_threads: 0 lets ORT decide
    """

    providers: Optional[Sequence[str]] = None
    input_name: Optional[str] = None
    output_name: Optional[str] = None
    intra_op_threads: int = 0


class OnnxRuntimeEngine:
    """
    Inference engine backed by ONNX Runtime.

    Lifecycle: construct -> load() -> allocate() -> ready. run() takes the
    preprocessed blob and returns the raw (1, 4 + C, A) output.
    """

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeEngineConfig = OnnxRuntimeEngineConfig()):
        self.model_path = Path(model_path)
        self.cfg = cfg
        self.session: Any = None
        self.input_name: Optional[str] = None
        self.output_name: Optional[str] = None
        self._input_spec: Optional[ModelInputSpec] = None
        self._output_shape: Optional[Tuple[Any, ...]] = None

    def load(self) -> "OnnxRuntimeEngine":
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise EngineLoadError(
                "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime` "
                "(or `onnxruntime-gpu`)."
            ) from e

        if not self.model_path.exists():
            raise EngineLoadError(f"Model file not found: {self.model_path}")

        sess_opts = ort.SessionOptions()
        if self.cfg.intra_op_threads > 0:
            sess_opts.intra_op_num_threads = int(self.cfg.intra_op_threads)
        providers = list(self.cfg.providers) if self.cfg.providers is not None else None
        try:
            self.session = ort.InferenceSession(str(self.model_path), sess_options=sess_opts, providers=providers)
        except Exception as e:
            raise EngineLoadError(f"Failed to create ONNX Runtime session for {self.model_path}: {e}") from e

        logger.info("Loaded %s with providers %s", self.model_path.name, self.session.get_providers())
        return self

    def allocate(self) -> "OnnxRuntimeEngine":
        if self.session is None:
            raise EngineLoadError("allocate() called before load()")

        inp = self.session.get_inputs()[0]
        if self.cfg.input_name is not None:
            matches = [i for i in self.session.get_inputs() if i.name == self.cfg.input_name]
            if not matches:
                raise EngineLoadError(f"Model has no input named {self.cfg.input_name!r}")
            inp = matches[0]
        out = self.session.get_outputs()[0]
        if self.cfg.output_name is not None:
            matches = [o for o in self.session.get_outputs() if o.name == self.cfg.output_name]
            if not matches:
                raise EngineLoadError(f"Model has no output named {self.cfg.output_name!r}")
            out = matches[0]

        try:
            spec = ModelInputSpec.from_tensor_shape(inp.shape, inp.type)
        except ValueError as e:
            raise EngineLoadError(str(e)) from e
        if len(out.shape) != 3:
            raise EngineLoadError(f"Expected a rank-3 detector output, got shape {out.shape}")

        self.input_name = inp.name
        self.output_name = out.name
        self._input_spec = spec
        self._output_shape = tuple(out.shape)
        logger.info(
            "Allocated input %s %dx%d (%s, %s), output %s",
            inp.name,
            spec.width,
            spec.height,
            spec.kind.value,
            "NCHW" if spec.channels_first else "NHWC",
            self._output_shape,
        )
        return self

    @property
    def ready(self) -> bool:
        return self.session is not None and self._input_spec is not None

    @property
    def input_spec(self) -> ModelInputSpec:
        if self._input_spec is None:
            raise EngineNotReady("Engine has not been allocated.")
        return self._input_spec

    @property
    def output_shape(self) -> Optional[Tuple[Any, ...]]:
        return self._output_shape

    @property
    def providers_in_use(self) -> Sequence[str]:
        # ORT returns providers in priority order for this session.
        return tuple(self.session.get_providers()) if self.session is not None else ()

    def run(self, blob: np.ndarray) -> np.ndarray:
        if not self.ready:
            raise EngineNotReady("Engine has not been loaded and allocated.")
        outputs = self.session.run([self.output_name], {self.input_name: blob})
        return outputs[0]

    def close(self) -> None:
        self.session = None
        self._input_spec = None
        self._output_shape = None
