from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np

from .types import InputKind

DEFAULT_INPUT_SIZE = 640


def input_kind_from_dtype(dtype: Any) -> InputKind:
    """
    Map an engine-declared input dtype to InputKind.

    Accepts NumPy dtypes and ONNX Runtime type strings such as "tensor(float)".
    """

    name = str(dtype).lower()
    if name in {"tensor(uint8)", "uint8"}:
        return InputKind.UINT8_RAW
    if name in {"tensor(float)", "float32", "float"}:
        return InputKind.FLOAT32_NORMALIZED
    try:
        np_dtype = np.dtype(dtype)
    except TypeError:
        np_dtype = None
    if np_dtype == np.uint8:
        return InputKind.UINT8_RAW
    if np_dtype == np.float32:
        return InputKind.FLOAT32_NORMALIZED
    raise ValueError(f"Unsupported model input dtype: {dtype!r}")


def _static_dim(value: Any) -> int:
    # Dynamic axes show up as None, strings ("height") or -1.
    if isinstance(value, (int, np.integer)) and value > 0:
        return int(value)
    return DEFAULT_INPUT_SIZE


@dataclass(frozen=True)
class ModelInputSpec:
    width: int = DEFAULT_INPUT_SIZE
    height: int = DEFAULT_INPUT_SIZE
    kind: InputKind = InputKind.FLOAT32_NORMALIZED
    channels_first: bool = True

    @property
    def size(self):
        return self.width, self.height

    @classmethod
    def from_tensor_shape(cls, shape: Sequence[Any], dtype: Any) -> "ModelInputSpec":
        """
        Resolve layout and resolution from a declared (1, 3, H, W) or (1, H, W, 3) input.
        """

        if len(shape) != 4:
            raise ValueError(f"Expected a rank-4 image input, got shape {list(shape)}")
        channels_first = shape[1] == 3
        if channels_first:
            h, w = shape[2], shape[3]
        elif shape[3] == 3:
            h, w = shape[1], shape[2]
        else:
            # Dynamic channel axis; assume the common NCHW export.
            channels_first = True
            h, w = shape[2], shape[3]
        return cls(width=_static_dim(w), height=_static_dim(h), kind=input_kind_from_dtype(dtype), channels_first=channels_first)


class ImagePreprocessor:
    """
    Resize an OpenCV image to the model input and lay it out as the engine expects.

    The resize is a plain stretch (no letterbox), so normalized model
    coordinates are also normalized image coordinates.
    """

    def __init__(self, spec: ModelInputSpec = ModelInputSpec(), swap_rb: bool = True):
        self.spec = spec
        self.swap_rb = swap_rb

    def __call__(self, image_bgr: np.ndarray) -> np.ndarray:
        try:
            import cv2  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError("OpenCV is required for ImagePreprocessor. Install with `pip install opencv-python`.") from e

        if image_bgr is None or not hasattr(image_bgr, "shape"):
            raise TypeError("image_bgr must be a NumPy array (BGR).")

        img = image_bgr
        if img.ndim == 2:
            img = cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)
        elif img.ndim == 3 and img.shape[2] == 4:
            img = cv2.cvtColor(img, cv2.COLOR_BGRA2BGR)
        if img.ndim != 3 or img.shape[2] != 3:
            raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")
        if img.shape[0] == 0 or img.shape[1] == 0:
            raise ValueError("Image is empty.")

        if img.dtype != np.uint8:
            img = np.clip(img, 0, 255).astype(np.uint8)

        w, h = self.spec.size
        if (img.shape[1], img.shape[0]) != (w, h):
            img = cv2.resize(img, (w, h), interpolation=cv2.INTER_LINEAR)
        if self.swap_rb:
            img = img[:, :, ::-1]

        if self.spec.kind is InputKind.FLOAT32_NORMALIZED:
            blob = img.astype(np.float32) / 255.0
        else:
            blob = img.astype(np.uint8)

        if self.spec.channels_first:
            blob = np.transpose(blob, (2, 0, 1))
        return np.ascontiguousarray(blob[None, ...])
