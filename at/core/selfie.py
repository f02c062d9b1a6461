import base64

from PySide6.QtCore import QBuffer, QByteArray, QIODevice, Qt
from PySide6.QtGui import QImage

from at.common.logger import log

# Check-in photos are shrunk before upload, full camera frames blow past the backend's request size limit.
MAX_WIDTH = 800
JPEG_QUALITY = 70


# Accepts raw image bytes or a data URL, returns a JPEG data URL no wider than max_width.
def compress_selfie(image, max_width=MAX_WIDTH, quality=JPEG_QUALITY):
    if isinstance(image, str):
        payload = image.split(",", 1)[1] if image.startswith("data:") else image
        image = base64.b64decode(payload)

    img = QImage.fromData(QByteArray(image))
    if img.isNull():
        raise ValueError("Selfie data is not a readable image")
    original_width = img.width()
    if img.width() > max_width:
        img = img.scaledToWidth(max_width, Qt.SmoothTransformation)

    buffer = QBuffer()
    buffer.open(QIODevice.WriteOnly)
    if not img.save(buffer, "JPEG", quality):
        raise ValueError("Could not encode selfie as JPEG")
    encoded = base64.b64encode(bytes(buffer.data())).decode("ascii")
    log.debug(f"Compressed selfie from {original_width}px to {img.width()}px wide, {len(encoded)} base64 chars")
    return f"data:image/jpeg;base64,{encoded}"
