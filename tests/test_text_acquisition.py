"""
Unit tests for image intake, preprocessing and the cancellable recognition task.

Real OCR engines are never loaded here; FakeEngine stands in for them.
"""
import threading

import numpy as np
import pytest

from prescription_scan.exceptions import AcquisitionCancelled, AcquisitionError, ImageRejectedError
from prescription_scan.text_acquisition import (
    CancellationToken,
    EasyOCREngine,
    ImagePreprocessor,
    TextAcquisition,
    create_engine,
    validate_image,
)

from tests.conftest import FakeEngine, FakePreprocessor


class TestValidateImage:

    def test_accepts_png(self, png_bytes):
        upload = validate_image('rx.png', png_bytes, 'image/png')
        assert upload.format == 'PNG'
        assert upload.size == len(png_bytes)
        assert upload.filename == 'rx.png'

    def test_filename_is_sanitized(self, png_bytes):
        assert validate_image('../../etc/rx.png', png_bytes).filename == 'etc_rx.png'

    def test_empty_upload(self):
        with pytest.raises(ImageRejectedError):
            validate_image('rx.png', b'')

    def test_too_large(self, png_bytes):
        with pytest.raises(ImageRejectedError) as exc:
            validate_image('rx.png', png_bytes, max_bytes=len(png_bytes) - 1)
        assert 'less than' in exc.value.message

    def test_wrong_extension(self, png_bytes):
        with pytest.raises(ImageRejectedError):
            validate_image('rx.pdf', png_bytes)

    def test_wrong_content_type(self, png_bytes):
        with pytest.raises(ImageRejectedError):
            validate_image('rx.png', png_bytes, 'application/pdf')

    def test_not_an_image(self):
        with pytest.raises(ImageRejectedError) as exc:
            validate_image('rx.png', b'%PDF-1.4 definitely not a png')
        assert exc.value.message == 'Please select a valid image file'
        assert exc.value.http_status == 400


class TestImagePreprocessor:

    def test_preprocess_returns_binary_grayscale(self, png_bytes):
        image = ImagePreprocessor().preprocess(png_bytes)
        assert isinstance(image, np.ndarray)
        assert image.ndim == 2

    def test_wide_images_are_resized(self):
        image = np.zeros((10, 400, 3), dtype=np.uint8)
        resized = ImagePreprocessor().resize_image(image, target_width=200)
        assert resized.shape[:2] == (5, 200)

    def test_contrast_keeps_colour_channels(self):
        preprocessor = ImagePreprocessor()
        colour = np.full((40, 40, 3), 120, dtype=np.uint8)
        gray = np.full((40, 40), 120, dtype=np.uint8)

        assert preprocessor.enhance_contrast(colour).shape == (40, 40, 3)
        assert preprocessor.enhance_contrast(gray).shape == (40, 40)

    def test_undecodable_bytes(self):
        with pytest.raises(AcquisitionError):
            ImagePreprocessor().decode(b'garbage')


class TestEngines:

    def test_create_engine_is_lazy(self):
        engine = create_engine('easyocr')
        assert engine.name == 'easyocr'
        assert engine._reader is None

    def test_unknown_engine(self):
        with pytest.raises(ValueError):
            create_engine('cuneiform')

    def test_easyocr_segments_grouped_into_lines(self):
        results = [
            ([[60, 12], [100, 12], [100, 32], [60, 32]], '500mg', 0.9),
            ([[10, 10], [50, 10], [50, 30], [10, 30]], 'Paracetamol', 0.9),
            ([[10, 50], [80, 50], [80, 70], [10, 70]], 'twice daily', 0.8),
        ]
        assert EasyOCREngine.join_lines(results) == 'Paracetamol 500mg\ntwice daily'


class TestCancellationToken:

    def test_cancel(self):
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel()
        assert token.cancelled
        with pytest.raises(AcquisitionCancelled):
            token.raise_if_cancelled()


class TestTextAcquisition:

    def _acquisition(self, **engine_kwargs):
        return TextAcquisition(engine=FakeEngine(**engine_kwargs), preprocessor=FakePreprocessor())

    def test_acquire_reports_progress(self, png_bytes):
        upload = validate_image('rx.png', png_bytes)
        progress = []

        text = self._acquisition(text='Paracetamol 500mg').acquire(upload, progress.append)

        assert text == 'Paracetamol 500mg'
        assert progress[0] == 0
        assert progress[-1] == 100
        assert progress == sorted(progress)

    def test_engine_failure_becomes_acquisition_error(self, png_bytes):
        upload = validate_image('rx.png', png_bytes)
        with pytest.raises(AcquisitionError) as exc:
            self._acquisition(error=RuntimeError('tesseract crashed')).acquire(upload)
        assert 'tesseract crashed' in exc.value.message

    def test_cancelled_token_stops_before_work(self, png_bytes):
        upload = validate_image('rx.png', png_bytes)
        token = CancellationToken()
        token.cancel()
        acquisition = self._acquisition(text='x')

        with pytest.raises(AcquisitionCancelled):
            acquisition.acquire(upload, token=token)
        assert not acquisition.engine.started.is_set()

    def test_background_task(self, png_bytes):
        upload = validate_image('rx.png', png_bytes)
        task = self._acquisition(text='Cetirizine 10mg').start(upload)

        assert task.result(timeout=5) == 'Cetirizine 10mg'
        assert task.done()
        assert task.progress == 100

    def test_cancelled_task_discards_text(self, png_bytes):
        upload = validate_image('rx.png', png_bytes)
        gate = threading.Event()
        acquisition = self._acquisition(text='late text', gate=gate)

        task = acquisition.start(upload)
        assert acquisition.engine.started.wait(timeout=5)
        task.cancel()
        gate.set()

        with pytest.raises(AcquisitionCancelled):
            task.result(timeout=5)
        assert task.cancelled

    def test_background_failure(self, png_bytes):
        upload = validate_image('rx.png', png_bytes)
        task = self._acquisition(error=RuntimeError('boom')).start(upload)
        with pytest.raises(AcquisitionError):
            task.result(timeout=5)
