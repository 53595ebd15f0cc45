"""
HTTP surface of the search engine.
"""

import logging
from typing import Optional

from aiohttp import web

from .service import SearchService, DEFAULT_PAGE, DEFAULT_AMOUNT
from ..crawler.url_frontier import FrontierStore, StorageError
from ..storage.search_index import SearchIndexError

SEARCH_SERVICE = web.AppKey("search_service", SearchService)
FRONTIER_STORE = web.AppKey("frontier_store", FrontierStore)

logger = logging.getLogger(__name__)


async def _search_response(request: web.Request, query, page, amount) -> web.Response:
    service = request.app[SEARCH_SERVICE]
    results = await service.search(query, page, amount)
    return web.json_response([result.to_dict() for result in results])


async def handle_search_path(request: web.Request) -> web.Response:
    """GET /search/{page}/{amount}/{q}"""
    info = request.match_info
    return await _search_response(request, info.get('q'), info.get('page'), info.get('amount'))


async def handle_search_query(request: web.Request) -> web.Response:
    """GET /search?q=...&page=...&amount=..."""
    params = request.query
    return await _search_response(
        request,
        params.get('q'),
        params.get('page', DEFAULT_PAGE),
        params.get('amount', DEFAULT_AMOUNT),
    )


async def handle_health(request: web.Request) -> web.Response:
    """Report index and frontier sizes."""
    body = {'status': 'ok'}
    try:
        body['documents'] = await request.app[SEARCH_SERVICE].index.document_count()
        frontier = request.app.get(FRONTIER_STORE)
        if frontier is not None:
            body['frontier'] = await frontier.get_stats()
    except (SearchIndexError, StorageError) as e:
        logger.error(f"Health check failed: {e}")
        return web.json_response({'status': 'error', 'error': str(e)}, status=503)

    return web.json_response(body)


def create_app(service: SearchService, frontier: Optional[FrontierStore] = None) -> web.Application:
    """Build the aiohttp application serving search queries."""
    app = web.Application()
    app[SEARCH_SERVICE] = service
    if frontier is not None:
        app[FRONTIER_STORE] = frontier

    app.router.add_get('/search/{page}/{amount}/{q}', handle_search_path)
    app.router.add_get('/search', handle_search_query)
    app.router.add_get('/health', handle_health)
    return app
