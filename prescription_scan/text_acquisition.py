"""
Text acquisition for prescription images
Image intake checks -> OpenCV preprocessing -> OCR engine, as a cancellable task
"""

import io
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Callable, List, Optional

import cv2
import numpy as np
from PIL import Image
from werkzeug.utils import secure_filename

from prescription_scan.config import (
    ALLOWED_EXTENSIONS,
    ALLOWED_IMAGE_FORMATS,
    EASYOCR_CONFIG,
    MAX_IMAGE_BYTES,
    OCR_ENGINE,
    PREPROCESSING,
    TESSERACT_CONFIG,
)
from prescription_scan.exceptions import (
    AcquisitionCancelled,
    AcquisitionError,
    ImageRejectedError,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


# ============== Image intake ==============

@dataclass(frozen=True)
class ImageUpload:
    filename: str
    data: bytes
    format: str

    @property
    def size(self) -> int:
        return len(self.data)


def allowed_file(filename: str) -> bool:
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in ALLOWED_EXTENSIONS


def validate_image(filename: str, data: bytes, content_type: Optional[str] = None,
                   max_bytes: int = MAX_IMAGE_BYTES) -> ImageUpload:
    """
    Accept common raster images up to max_bytes, reject everything else

    Raises:
        ImageRejectedError: with a user-facing message
    """
    if not data:
        raise ImageRejectedError('Please select a valid image file')
    if len(data) > max_bytes:
        raise ImageRejectedError(f'Image size should be less than {max_bytes // (1024 * 1024)}MB')

    safe_name = secure_filename(filename or '')
    if safe_name and not allowed_file(safe_name):
        raise ImageRejectedError('Please select a valid image file')
    if content_type and not content_type.startswith('image/'):
        raise ImageRejectedError('Please select a valid image file')

    try:
        with Image.open(io.BytesIO(data)) as img:
            image_format = img.format
            img.verify()
    except Exception as e:
        logger.info(f"Rejected upload '{safe_name}': {e}")
        raise ImageRejectedError('Please select a valid image file') from e

    if image_format not in ALLOWED_IMAGE_FORMATS:
        raise ImageRejectedError('Please select a valid image file')

    return ImageUpload(filename=safe_name, data=data, format=image_format)


# ============== Cancellation ==============

class CancellationToken:
    """Set once when the owning scan session closes"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise AcquisitionCancelled('Scan was closed before recognition finished')


# ============== Preprocessing ==============

class ImagePreprocessor:
    """Clean up a photographed prescription before OCR"""

    def __init__(self, config=None):
        self.config = dict(PREPROCESSING, **(config or {}))

    def decode(self, data: bytes) -> np.ndarray:
        image = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
        if image is None:
            raise AcquisitionError('Could not decode image')
        return image

    def preprocess(self, data: bytes) -> np.ndarray:
        image = self.decode(data)
        logger.info(f"Original image shape: {image.shape}")

        image = self.resize_image(image, self.config['resize_width'])
        if self.config['denoise']:
            image = self.denoise(image)
        if self.config['contrast_enhancement']:
            image = self.enhance_contrast(image)
        if self.config['adaptive_threshold']:
            image = self.adaptive_threshold(image)

        logger.info(f"Preprocessed image shape: {image.shape}")
        return image

    def resize_image(self, image, target_width=2000):
        height, width = image.shape[:2]
        if width > target_width:
            scale = target_width / width
            image = cv2.resize(image, (target_width, int(height * scale)), interpolation=cv2.INTER_AREA)
        return image

    def denoise(self, image):
        if len(image.shape) == 3:
            return cv2.fastNlMeansDenoisingColored(image, None, 10, 10, 7, 21)
        return cv2.fastNlMeansDenoising(image, None, 10, 7, 21)

    def enhance_contrast(self, image):
        """CLAHE on the lightness channel; colour images stay BGR"""
        clahe = cv2.createCLAHE(clipLimit=3.0, tileGridSize=(8, 8))
        if len(image.shape) != 3:
            return clahe.apply(image)

        lab = cv2.cvtColor(image, cv2.COLOR_BGR2LAB)
        l, a, b = cv2.split(lab)
        l = clahe.apply(l)
        return cv2.cvtColor(cv2.merge((l, a, b)), cv2.COLOR_LAB2BGR)

    def adaptive_threshold(self, image):
        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY) if len(image.shape) == 3 else image
        blurred = cv2.GaussianBlur(gray, (5, 5), 0)
        return cv2.adaptiveThreshold(blurred, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C,
                                     cv2.THRESH_BINARY, 11, 2)


# ============== OCR engines ==============

class RecognitionEngine:
    """Adapter interface: image array in, text with line breaks out"""

    name = 'base'

    def recognize(self, image: np.ndarray, progress: ProgressCallback,
                  token: CancellationToken) -> str:
        raise NotImplementedError


class TesseractEngine(RecognitionEngine):
    """Tesseract via pytesseract; good for printed prescriptions"""

    name = 'tesseract'

    def __init__(self, lang=TESSERACT_CONFIG['lang'], config=TESSERACT_CONFIG['config']):
        self.lang = lang
        self.config = config
        self._pytesseract = None

    def _load(self):
        if self._pytesseract is None:
            try:
                import pytesseract
                pytesseract.get_tesseract_version()
            except Exception as e:
                raise AcquisitionError(f'Tesseract not available: {e}', detail={'engine': self.name}) from e
            self._pytesseract = pytesseract
            logger.info("✅ Tesseract ready")
        return self._pytesseract

    def recognize(self, image, progress, token):
        pytesseract = self._load()
        token.raise_if_cancelled()
        progress(10)
        text = pytesseract.image_to_string(Image.fromarray(image), lang=self.lang, config=self.config)
        progress(100)
        return text


class EasyOCREngine(RecognitionEngine):
    """EasyOCR reader (handwriting friendly), created lazily on first use"""

    name = 'easyocr'

    def __init__(self, languages=None, gpu=EASYOCR_CONFIG['gpu']):
        self.languages = languages or EASYOCR_CONFIG['languages']
        self.gpu = gpu
        self._reader = None
        self._lock = threading.Lock()

    def _load(self):
        with self._lock:
            if self._reader is None:
                try:
                    logger.info("🔄 Initializing EasyOCR (may download models on first run)...")
                    import easyocr
                    self._reader = easyocr.Reader(self.languages, gpu=self.gpu, verbose=False)
                except Exception as e:
                    raise AcquisitionError(f'EasyOCR not available: {e}', detail={'engine': self.name}) from e
                logger.info("✅ EasyOCR ready")
        return self._reader

    def recognize(self, image, progress, token):
        reader = self._load()
        token.raise_if_cancelled()
        progress(10)
        results = reader.readtext(image, detail=1, paragraph=False,
                                  decoder=EASYOCR_CONFIG['decoder'])
        progress(90)
        text = self.join_lines(results)
        progress(100)
        return text

    @staticmethod
    def join_lines(results) -> str:
        """Group EasyOCR segments into text lines by vertical position"""
        segments = []
        for bbox, text, _conf in results:
            ys = [point[1] for point in bbox]
            xs = [point[0] for point in bbox]
            top, bottom = min(ys), max(ys)
            segments.append(((top + bottom) / 2.0, bottom - top, min(xs), text))

        segments.sort(key=lambda s: (s[0], s[2]))
        lines: List[List] = []
        for segment in segments:
            center, height = segment[0], segment[1]
            if lines and abs(center - lines[-1][0][0]) <= max(height, lines[-1][0][1]) / 2.0:
                lines[-1].append(segment)
            else:
                lines.append([segment])

        return '\n'.join(' '.join(s[3] for s in sorted(line, key=lambda s: s[2])) for line in lines)


def create_engine(name: str = OCR_ENGINE) -> RecognitionEngine:
    engines = {'tesseract': TesseractEngine, 'easyocr': EasyOCREngine}
    if name not in engines:
        raise ValueError(f"Unknown engine: {name}")
    return engines[name]()


# ============== Acquisition ==============

class RecognitionTask:
    """
    Handle on an in-flight recognition.

    Cancelling sets the token (the engine adapter stops between stages) and
    any text that still arrives is discarded.
    """

    def __init__(self, token: CancellationToken, future: Optional[Future] = None):
        self.token = token
        self.future = future
        self.progress = 0

    def _on_progress(self, percent: int):
        self.progress = max(self.progress, percent)

    def cancel(self):
        self.token.cancel()
        if self.future is not None:
            self.future.cancel()

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def done(self) -> bool:
        return self.future.done()

    def result(self, timeout: Optional[float] = None) -> str:
        try:
            text = self.future.result(timeout=timeout)
        except FutureTimeout as e:
            self.cancel()
            raise AcquisitionError('Text recognition timed out') from e
        except AcquisitionError:
            raise
        except Exception as e:
            if self.token.cancelled:
                raise AcquisitionCancelled('Scan was closed before recognition finished') from e
            raise AcquisitionError(f'Text recognition failed: {e}') from e
        self.token.raise_if_cancelled()
        return text


class TextAcquisition:
    """Run preprocessing + OCR for an accepted upload, reporting 0-100% progress"""

    def __init__(self, engine: Optional[RecognitionEngine] = None,
                 preprocessor: Optional[ImagePreprocessor] = None,
                 executor: Optional[ThreadPoolExecutor] = None):
        self.engine = engine or create_engine()
        self.preprocessor = preprocessor or ImagePreprocessor()
        self.executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix='ocr')

    def acquire(self, upload: ImageUpload, progress: Optional[ProgressCallback] = None,
                token: Optional[CancellationToken] = None) -> str:
        """
        Recognize text synchronously

        Raises:
            AcquisitionError: preprocessing or recognition failed
            AcquisitionCancelled: token was cancelled mid-way
        """
        token = token or CancellationToken()
        report = progress or (lambda percent: None)
        last = [0]

        def recognition_progress(percent):
            # Preprocessing owns the first 20%
            scaled = 20 + int(max(0, min(100, percent)) * 0.8)
            if scaled > last[0]:
                last[0] = scaled
                report(scaled)

        try:
            token.raise_if_cancelled()
            report(0)
            image = self.preprocessor.preprocess(upload.data)
            token.raise_if_cancelled()
            report(20)
            last[0] = 20
            text = self.engine.recognize(image, recognition_progress, token)
            token.raise_if_cancelled()
        except AcquisitionError:
            raise
        except Exception as e:
            logger.error(f"❌ Recognition failed with {self.engine.name}: {e}", exc_info=True)
            raise AcquisitionError(f'Text recognition failed: {e}', detail={'engine': self.engine.name}) from e

        if last[0] < 100:
            report(100)
        logger.info(f"✅ Recognized {len(text or '')} characters with {self.engine.name}")
        return text or ''

    def start(self, upload: ImageUpload, progress: Optional[ProgressCallback] = None) -> RecognitionTask:
        """Recognize in the background; returns a cancellable task"""
        token = CancellationToken()
        task = RecognitionTask(token)

        def track(percent):
            task._on_progress(percent)
            if progress is not None and not token.cancelled:
                progress(percent)

        task.future = self.executor.submit(self.acquire, upload, track, token)
        return task
