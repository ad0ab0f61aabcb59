"""
Unit tests for the catalog search clients and the order service client.
"""
from unittest.mock import Mock

import pandas as pd
import pytest
import requests

from catalog_service import LocalCatalogSearch, RemoteCatalogSearch, RemoteOrderService
from prescription_scan.exceptions import CatalogSearchError, OrderSubmissionError

from tests.conftest import CATALOG_ROWS


def _response(body=None, ok=True, status_code=200, json_error=None):
    response = Mock()
    response.ok = ok
    response.status_code = status_code
    response.raise_for_status.return_value = None
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = body
    return response


class TestLocalCatalogSearch:

    def test_exact_name_ranks_first(self, local_catalog):
        hits = local_catalog.search('paracetamol')
        assert hits[0].item.id == '1'
        assert hits[0].score == 1.0

    def test_brand_name_is_searched(self, local_catalog):
        assert local_catalog.search('crocin')[0].item.name == 'Paracetamol'

    def test_scores_are_sorted_and_limited(self, local_catalog):
        hits = local_catalog.search('amoxicillin', limit=2)
        assert len(hits) <= 2
        assert [h.score for h in hits] == sorted((h.score for h in hits), reverse=True)

    def test_blank_term(self, local_catalog):
        assert local_catalog.search('   ') == []

    def test_get(self, local_catalog):
        assert local_catalog.get('5').name == 'Cetirizine'
        assert local_catalog.get(5).name == 'Cetirizine'
        assert local_catalog.get('99') is None

    def test_from_csv(self, tmp_path):
        path = tmp_path / 'catalog.csv'
        pd.DataFrame(CATALOG_ROWS).to_csv(path, index=False)

        catalog = LocalCatalogSearch.from_csv(str(path))

        assert len(catalog.items) == len(CATALOG_ROWS)
        assert catalog.get('2').stock_quantity == 120
        assert catalog.get('1').price == pytest.approx(2.5)

    def test_from_csv_skips_incomplete_and_duplicate_rows(self, tmp_path):
        path = tmp_path / 'catalog.csv'
        path.write_text(
            "id,name,generic_name,brand_name,strength,unit,price,quantity_in_stock\n"
            "1,Paracetamol,,Crocin,500mg,tablet,2.5,240\n"
            "2,,,,,,1,1\n"
            "1,Duplicate,,,,,,\n"
        )
        catalog = LocalCatalogSearch.from_csv(str(path))

        assert [item.name for item in catalog.items] == ['Paracetamol']
        assert catalog.get('1').generic_name == ''
        assert catalog.get('1').stock_quantity == 240


class TestRemoteCatalogSearch:

    def test_request_and_score_conversion(self):
        session = Mock()
        session.get.return_value = _response({'success': True, 'data': [dict(CATALOG_ROWS[0], score=0.1)]})
        client = RemoteCatalogSearch(base_url='http://api.test/api/', token='secret', session=session)

        hits = client.search('para', min_score=0.3, limit=5)

        assert hits[0].item.name == 'Paracetamol'
        assert hits[0].score == pytest.approx(0.9)
        args, kwargs = session.get.call_args
        assert args[0] == 'http://api.test/api/medicine-names/search'
        assert kwargs['params'] == {'q': 'para', 'type': 'all', 'min_score': 0.3, 'limit': 5}
        assert kwargs['headers']['Authorization'] == 'Bearer secret'

    def test_relevance_scores_pass_through(self):
        session = Mock()
        session.get.return_value = _response({'success': True, 'data': [dict(CATALOG_ROWS[0], score=0.7)]})
        client = RemoteCatalogSearch(base_url='http://api.test', session=session, score_is_distance=False)
        assert client.search('para')[0].score == pytest.approx(0.7)

    def test_rows_without_id_are_skipped(self):
        session = Mock()
        session.get.return_value = _response({'success': True, 'data': [{'name': 'Nameless'}]})
        assert RemoteCatalogSearch(base_url='http://api.test', session=session).search('x') == []

    def test_transport_error(self):
        session = Mock()
        session.get.side_effect = requests.ConnectionError('refused')
        with pytest.raises(CatalogSearchError):
            RemoteCatalogSearch(base_url='http://api.test', session=session).search('para')

    def test_unsuccessful_response(self):
        session = Mock()
        session.get.return_value = _response({'success': False, 'message': 'Search unavailable'})
        with pytest.raises(CatalogSearchError) as exc:
            RemoteCatalogSearch(base_url='http://api.test', session=session).search('para')
        assert exc.value.message == 'Search unavailable'

    def test_get_by_id(self):
        session = Mock()
        session.get.return_value = _response({'success': True, 'data': CATALOG_ROWS[4]})
        item = RemoteCatalogSearch(base_url='http://api.test', session=session).get('5')
        assert item.name == 'Cetirizine'
        assert session.get.call_args[0][0] == 'http://api.test/medicines/5'

    def test_get_missing(self):
        session = Mock()
        session.get.return_value = _response(status_code=404)
        assert RemoteCatalogSearch(base_url='http://api.test', session=session).get('99') is None


class TestRemoteOrderService:

    def test_created(self):
        session = Mock()
        session.post.return_value = _response({'success': True, 'data': {'id': 9}})
        result = RemoteOrderService(base_url='http://api.test', session=session).create({'a': 1})

        assert result == {'success': True, 'data': {'id': 9}}
        assert session.post.call_args[0][0] == 'http://api.test/orders'
        assert session.post.call_args[1]['json'] == {'a': 1}

    def test_rejected_keeps_message(self):
        session = Mock()
        session.post.return_value = _response({'success': False, 'message': 'Bad request', 'errors': {'x': 'y'}},
                                              ok=False, status_code=400)
        result = RemoteOrderService(base_url='http://api.test', session=session).create({})

        assert result == {'success': False, 'message': 'Bad request', 'errors': {'x': 'y'}}

    def test_non_json_error(self):
        session = Mock()
        session.post.return_value = _response(ok=False, status_code=500, json_error=ValueError('no json'))
        result = RemoteOrderService(base_url='http://api.test', session=session).create({})
        assert result['success'] is False
        assert result['message'] == 'Order service returned HTTP 500'

    def test_unreachable(self):
        session = Mock()
        session.post.side_effect = requests.ConnectionError('refused')
        with pytest.raises(OrderSubmissionError):
            RemoteOrderService(base_url='http://api.test', session=session).create({})
