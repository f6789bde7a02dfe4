from typing import Optional

import numpy as np
from PyQt6.QtGui import QImage


def qimage_to_array(image: QImage) -> np.ndarray:
    """Copy a QImage into an (H, W, 3) uint8 RGB array"""
    rgb = image.convertToFormat(QImage.Format.Format_RGB888)
    width, height = rgb.width(), rgb.height()
    bytes_per_line = rgb.bytesPerLine()
    ptr = rgb.constBits()
    ptr.setsize(height * bytes_per_line)
    # Rows may be padded to 32-bit boundaries
    arr = np.frombuffer(ptr, dtype=np.uint8).reshape(height, bytes_per_line)
    return arr[:, :width * 3].reshape(height, width, 3).copy()


def array_to_qimage(arr: np.ndarray) -> QImage:
    """Build a QImage that owns a copy of an (H, W, 3) uint8 RGB array"""
    arr = np.ascontiguousarray(arr, dtype=np.uint8)
    height, width = arr.shape[:2]
    data = arr.tobytes()
    image = QImage(data, width, height, width * 3, QImage.Format.Format_RGB888)
    # The QImage above borrows the bytes buffer
    return image.copy()


def image_from_bytes(data: bytes) -> Optional[QImage]:
    image = QImage.fromData(data)
    if image.isNull():
        return None
    return image
