from datetime import timedelta
from pathlib import Path

import requests
import requests_cache
import structlog
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = structlog.get_logger('client')


def _log_response(response, *args, **kwargs):
    if getattr(response, '_logged', False):
        return
    response._logged = True

    is_cached = getattr(response, 'from_cache', False)
    log_kwargs = {
        'method': response.request.method,
        'url': response.url,
        'status': response.status_code,
        'content_length': len(response.content) if response.content else 0,
        'elapsed': f"{response.elapsed.total_seconds():.3f}s",
        'cached': is_cached,
    }
    if is_cached:
        logger.debug('HTTP Request', _style='dim', **log_kwargs)
    else:
        logger.debug('HTTP Request', **log_kwargs)


def get_http_client(
    cache_name: str | Path | None = None,
    expire_after: int = 86400,
    retries: int = 3,
    pool_size: int = 10,
) -> requests.Session:
    """
    Returns a requests session with retry logic.

    With ``cache_name`` the session is a sqlite-backed cache so hosted
    suppression files are downloaded at most once a day.
    """
    if cache_name is not None:
        cache_path = Path(cache_name)
        cache_path.parent.mkdir(parents=True, exist_ok=True)
        session = requests_cache.CachedSession(
            cache_name=str(cache_path),
            backend='sqlite',
            expire_after=timedelta(seconds=expire_after),
            allowable_codes=[200],
        )
    else:
        session = requests.Session()
    session.hooks['response'].append(_log_response)

    # POST is retried too: advisory lookups are read-only queries
    retry_strategy = Retry(
        total=retries,
        backoff_factor=1,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=['GET', 'HEAD', 'POST'],
    )
    adapter = HTTPAdapter(
        pool_connections=pool_size,
        pool_maxsize=pool_size,
        max_retries=retry_strategy,
    )
    session.mount('https://', adapter)
    session.mount('http://', adapter)

    logger.debug('Initialized HTTP client', cache_name=str(cache_name) if cache_name else None)
    return session
