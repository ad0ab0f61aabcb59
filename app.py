from flask import Flask, jsonify
from dotenv import load_dotenv
import os
import logging

# Load environment variables from .env file
load_dotenv(override=True)

from catalog_service import LocalCatalogSearch, RemoteCatalogSearch, RemoteOrderService
from prescription_routes import register_prescription_routes
from prescription_scan import (
    CatalogMatcher,
    ManualCatalogSearch,
    OrderAssembler,
    ScanSession,
    SearchCache,
    TextAcquisition,
)
from prescription_scan.config import CATALOG_CSV, MAX_IMAGE_BYTES

logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)


def build_catalog():
    """Local CSV catalog when one is configured and present, else the remote API"""
    if CATALOG_CSV and os.path.exists(CATALOG_CSV):
        try:
            return LocalCatalogSearch.from_csv(CATALOG_CSV)
        except Exception as e:
            logger.warning(f"⚠️  Could not load catalog CSV {CATALOG_CSV}: {e}; using remote API")
    return RemoteCatalogSearch()


def create_app(catalog=None, order_service=None, acquisition=None):
    """Application factory; collaborators can be injected for tests"""
    app = Flask(__name__)
    # Multipart overhead on top of the image limit
    app.config['MAX_CONTENT_LENGTH'] = MAX_IMAGE_BYTES + 1024 * 1024

    catalog = catalog if catalog is not None else build_catalog()
    order_service = order_service if order_service is not None else RemoteOrderService()
    acquisition = acquisition if acquisition is not None else TextAcquisition()

    matcher = CatalogMatcher(catalog)
    assembler = OrderAssembler(order_service)
    cache = SearchCache()
    manual_search = ManualCatalogSearch(catalog, cache=cache)

    def session_factory():
        return ScanSession(
            acquisition,
            matcher,
            assembler,
            manual_search=ManualCatalogSearch(catalog, cache=cache),
        )

    register_prescription_routes(app, session_factory, manual_search, catalog)

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok', 'catalog': type(catalog).__name__,
                        'ocr_engine': acquisition.engine.name})

    return app


if __name__ == '__main__':
    app = create_app()
    debug_mode = os.getenv('FLASK_ENV') == 'development' or os.getenv('DEBUG', 'False').lower() == 'true'
    app.run(debug=debug_mode, host='0.0.0.0', port=int(os.getenv('PORT', '5000')))
