import base64
import unittest

from fakes import qt_app


def png_bytes(width, height):
    from PySide6.QtCore import QBuffer, QIODevice
    from PySide6.QtGui import QColor, QImage
    img = QImage(width, height, QImage.Format_RGB32)
    img.fill(QColor(40, 120, 200))
    buffer = QBuffer()
    buffer.open(QIODevice.WriteOnly)
    img.save(buffer, "PNG")
    return bytes(buffer.data())


def decoded(data_url):
    from PySide6.QtCore import QByteArray
    from PySide6.QtGui import QImage
    return QImage.fromData(QByteArray(base64.b64decode(data_url.split(",", 1)[1])))


class TestCompressSelfie(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.app = qt_app()

    def test_wide_image_scaled_to_800(self):
        from at.core.selfie import compress_selfie
        result = compress_selfie(png_bytes(1600, 1200))
        self.assertTrue(result.startswith("data:image/jpeg;base64,"))
        img = decoded(result)
        self.assertEqual(img.width(), 800)
        self.assertEqual(img.height(), 600)

    def test_small_image_kept_and_data_url_accepted(self):
        from at.core.selfie import compress_selfie
        source = "data:image/png;base64," + base64.b64encode(png_bytes(320, 240)).decode("ascii")
        self.assertEqual(decoded(compress_selfie(source)).width(), 320)

    def test_garbage_rejected(self):
        from at.core.selfie import compress_selfie
        with self.assertRaises(ValueError):
            compress_selfie(b"definitely not an image")


if __name__ == "__main__":
    unittest.main()
