"""Pexels image lookup for new todos.

A failed lookup never blocks task creation: every error is logged and the
caller gets None.
"""

import logging
from typing import Optional

import requests
from django.conf import settings
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

PEXELS_SEARCH_URL = 'https://api.pexels.com/v1/search'


def _build_session(retry_attempts: int) -> requests.Session:
    session = requests.Session()
    retry_strategy = Retry(
        total=retry_attempts,
        backoff_factor=0.5,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=['GET'],
    )
    session.mount('https://', HTTPAdapter(max_retries=retry_strategy))
    return session


def _lookup(session: requests.Session, query: str, api_key: str) -> Optional[str]:
    try:
        response = session.get(
            PEXELS_SEARCH_URL,
            params={'query': query, 'per_page': 1},
            headers={'Authorization': api_key},
            timeout=settings.PEXELS_TIMEOUT,
        )
    except requests.RequestException as e:
        logger.error('Error fetching image from Pexels: %s', e)
        return None

    if not response.ok:
        logger.error('Pexels API error: %s %s', response.status_code, response.reason)
        return None

    try:
        photos = response.json().get('photos') or []
        if not photos:
            return None
        return photos[0]['src']['medium']
    except (ValueError, AttributeError, KeyError, TypeError, IndexError) as e:
        logger.error('Unexpected Pexels response body: %r', e)
        return None


def search_image(query: str, session: Optional[requests.Session] = None) -> Optional[str]:
    """Return the medium-size URL of the first Pexels photo matching `query`."""
    api_key = settings.PEXELS_API_KEY
    if not api_key:
        logger.warning('Pexels API key not found')
        return None

    if session is not None:
        return _lookup(session, query, api_key)
    with _build_session(settings.PEXELS_RETRY_ATTEMPTS) as own_session:
        return _lookup(own_session, query, api_key)
