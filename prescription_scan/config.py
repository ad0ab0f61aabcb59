"""
Configuration for the Prescription Scan pipeline
"""

import os

# Remote dashboard API (catalog search + orders)
API_BASE_URL = os.getenv('API_BASE_URL', 'http://localhost:5000/api')
API_TOKEN = os.getenv('API_TOKEN')
API_TIMEOUT = float(os.getenv('API_TIMEOUT', '10'))

# Optional local catalog (used when no remote API is configured)
CATALOG_CSV = os.getenv('CATALOG_CSV', os.path.join('data', 'medicine_catalog.csv'))

# OCR Settings
OCR_ENGINE = os.getenv('OCR_ENGINE', 'tesseract')  # 'tesseract' or 'easyocr'
OCR_TIMEOUT = float(os.getenv('OCR_TIMEOUT', '120'))

EASYOCR_CONFIG = {
    'languages': ['en'],
    'gpu': False,
    'decoder': 'beamsearch',
}

TESSERACT_CONFIG = {
    'lang': 'eng',
    'config': '--psm 6 --oem 3',
}

PREPROCESSING = {
    'resize_width': 2000,
    'denoise': True,
    'contrast_enhancement': True,
    'adaptive_threshold': True,
}

# Image intake
MAX_IMAGE_BYTES = 10 * 1024 * 1024
ALLOWED_EXTENSIONS = {'png', 'jpg', 'jpeg', 'gif', 'bmp', 'tiff', 'tif', 'webp'}
ALLOWED_IMAGE_FORMATS = {'PNG', 'JPEG', 'GIF', 'BMP', 'TIFF', 'WEBP', 'MPO'}

# Field extraction vocabularies
DOSAGE_UNITS = ['mg', 'mcg', 'g', 'ml']
DOSAGE_FORMS = ['tablet', 'capsule', 'syrup', 'drops', 'injection']
STRENGTH_UNITS = ['mg', 'mcg', 'g', 'ml', 'tablet', 'tab', 'capsule', 'cap',
                  'syrup', 'drops', 'injection', 'inj']
COUNT_UNITS = ['tablet', 'tab', 'capsule', 'cap', 'ml', 'bottle', 'strip', 'box']
DOSE_UNITS = ['tablet', 'tab', 'capsule', 'cap', 'ml', 'drop', 'dose']
FREQUENCY_WORDS = ['twice', 'once', 'thrice', 'daily', 'morning', 'evening', 'night']
DOSAGE_TRAILERS = FREQUENCY_WORDS + ['before', 'after', 'with', 'food']

# Words stripped from a line before keeping its residual as a candidate name
INSTRUCTION_WORDS = [
    'take', 'twice', 'daily', 'morning', 'evening', 'night', 'before', 'after',
    'food', 'empty stomach', 'with water', 'as directed', 'prescribed',
    'dosage', 'dose', 'quantity', 'qty', 'times', 'per day', 'once', 'thrice',
]

CANDIDATE_MIN_LENGTH = 3
CANDIDATE_MAX_LENGTH = 49

# Catalog matching
MATCH_MIN_SCORE = float(os.getenv('MATCH_MIN_SCORE', '0.2'))
MATCH_LIMIT = int(os.getenv('MATCH_LIMIT', '10'))
# Below this score a match is not auto-selected; 0 accepts any result
MATCH_MIN_CONFIDENCE = float(os.getenv('MATCH_MIN_CONFIDENCE', '0.0'))
MATCH_MAX_WORKERS = int(os.getenv('MATCH_MAX_WORKERS', '4'))

# Manual catalog lookup
MANUAL_SEARCH_MIN_SCORE = 0.3
MANUAL_SEARCH_LIMIT = 10
MANUAL_SEARCH_MIN_QUERY = 2
SEARCH_CACHE_CAPACITY = int(os.getenv('SEARCH_CACHE_CAPACITY', '50'))
SEARCH_DEBOUNCE_SECONDS = 0.3

# HTTP sessions
MAX_OPEN_SESSIONS = int(os.getenv('MAX_OPEN_SESSIONS', '100'))

# Reconciliation
TEMP_ID_PREFIX = 'extracted_'
DEFAULT_UNIT = 'tablet'
ORDER_STATUS_PENDING = 'pending'
