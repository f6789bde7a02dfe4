import logging
from typing import Optional

import torch
import torch.nn.functional as F
from PyQt6.QtCore import Qt
from PyQt6.QtGui import QImage

from .imaging import array_to_qimage, qimage_to_array

logger = logging.getLogger(__name__)

MAX_DIMENSION = 3840
FILTER_AREA_THRESHOLD = 2560 * 1440

SHARPNESS = 0.5
CONTRAST = 1.15
SATURATION = 1.0
BRIGHTNESS = 0.0

# Rec. 601 luma weights
_LUMA = (0.299, 0.587, 0.114)


def _pick_device() -> Optional[str]:
    if torch.cuda.is_available():
        return "cuda"
    mps = getattr(torch.backends, "mps", None)
    if mps is not None and mps.is_available():
        return "mps"
    return None


class ImageAccelerator:
    """GPU image filtering through torch, when a device is present"""

    def __init__(self, device: Optional[str] = None):
        self.device = device if device is not None else _pick_device()
        if self.device:
            logger.info(f"Image accelerator initialized on {self.device}")
        else:
            logger.info("No GPU device available, preprocessing will only downscale")

    @property
    def is_available(self) -> bool:
        return self.device is not None

    def enhance(self, image: QImage) -> QImage:
        """Luminance sharpen followed by a colour-controls pass"""
        arr = qimage_to_array(image)
        with torch.no_grad():
            rgb = torch.from_numpy(arr).to(self.device).permute(2, 0, 1).float() / 255.0
            rgb = self._sharpen_luminance(rgb, SHARPNESS)
            rgb = self._color_controls(rgb, CONTRAST, SATURATION, BRIGHTNESS)
            out = (rgb.clamp(0.0, 1.0) * 255.0).round().byte().permute(1, 2, 0).cpu().numpy()
        return array_to_qimage(out)

    @staticmethod
    def _luma(rgb: torch.Tensor) -> torch.Tensor:
        r, g, b = rgb[0], rgb[1], rgb[2]
        return _LUMA[0] * r + _LUMA[1] * g + _LUMA[2] * b

    def _sharpen_luminance(self, rgb: torch.Tensor, sharpness: float) -> torch.Tensor:
        luma = self._luma(rgb)[None, None]
        kernel = torch.tensor([[1.0, 2.0, 1.0],
                               [2.0, 4.0, 2.0],
                               [1.0, 2.0, 1.0]], device=rgb.device) / 16.0
        blurred = F.conv2d(F.pad(luma, (1, 1, 1, 1), mode="replicate"), kernel[None, None])
        detail = (luma - blurred)[0, 0]
        # Only luminance detail is boosted, chroma is left alone
        return rgb + sharpness * detail.unsqueeze(0)

    def _color_controls(self, rgb: torch.Tensor, contrast: float, saturation: float,
                        brightness: float) -> torch.Tensor:
        gray = self._luma(rgb).unsqueeze(0)
        rgb = gray + (rgb - gray) * saturation
        rgb = rgb + brightness
        return (rgb - 0.5) * contrast + 0.5


def fit_size(width: int, height: int, max_dimension: int = MAX_DIMENSION):
    """Largest size with the same aspect ratio that fits inside max_dimension"""
    if width <= max_dimension and height <= max_dimension:
        return width, height
    scale = min(max_dimension / width, max_dimension / height)
    return max(1, int(round(width * scale))), max(1, int(round(height * scale)))


class ImagePreprocessor:
    """Prepares captured frames for text recognition"""

    def __init__(self, accelerator: Optional[ImageAccelerator] = None):
        self.accelerator = accelerator

    def preprocess(self, image: QImage, use_acceleration: bool = True) -> QImage:
        if image.isNull():
            return image

        accelerated = use_acceleration and self.accelerator is not None and self.accelerator.is_available
        try:
            output = self._downscale(image)
            if accelerated and output.width() * output.height() > FILTER_AREA_THRESHOLD:
                output = self.accelerator.enhance(output)
            if output.isNull():
                raise ValueError("preprocessing produced an empty image")
            return output
        except Exception as e:
            logger.error(f"Image preprocessing failed, using original frame: {e}")
            return image

    @staticmethod
    def _downscale(image: QImage) -> QImage:
        width, height = image.width(), image.height()
        target_w, target_h = fit_size(width, height)
        if (target_w, target_h) == (width, height):
            return image
        logger.debug(f"Downscaling {width}x{height} -> {target_w}x{target_h}")
        return image.scaled(target_w, target_h, Qt.AspectRatioMode.IgnoreAspectRatio,
                            Qt.TransformationMode.SmoothTransformation)
