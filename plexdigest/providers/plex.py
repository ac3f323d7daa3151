from __future__ import annotations

import logging
import random
import time
from typing import List, Optional

import requests

from plexdigest.types import MalformedRecordError, ServerRecord, records_from_container

logger = logging.getLogger(__name__)

PLEX_TV_SIGN_IN = "https://plex.tv/users/sign_in.json"
CLIENT_IDENTIFIER = "plexdigest"
PRODUCT = "plexdigest"
VERSION = "0.1.0"


class PlexError(RuntimeError):
    pass


class ConnectivityError(PlexError):
    pass


def _plex_headers() -> dict:
    return {
        "Accept": "application/json",
        "X-Plex-Client-Identifier": CLIENT_IDENTIFIER,
        "X-Plex-Product": PRODUCT,
        "X-Plex-Version": VERSION,
    }


class PlexClient:
    """Queries a Plex server and returns the child records of each response."""

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = 30.0,
        max_retries: int = 2,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = session or requests.Session()
        self.session.headers.update(_plex_headers())
        self.session.headers.update({"X-Plex-Token": token})

    def _request(self, path: str, headers: Optional[dict] = None) -> requests.Response:
        """
        GET with:
          - a bounded timeout per request
          - retries on transient network errors and 5xx responses
          - exponential backoff with small jitter
        """
        url = f"{self.base_url}/{path.lstrip('/')}"

        for attempt in range(self.max_retries + 1):
            try:
                r = self.session.get(url, headers=headers, timeout=self.timeout)
            except (
                requests.exceptions.Timeout,
                requests.exceptions.ConnectionError,
                requests.exceptions.ChunkedEncodingError,
            ) as e:
                if attempt < self.max_retries:
                    sleep_s = min(10.0, (2 ** attempt)) + random.uniform(0.0, 0.5)
                    logger.debug("Retry %d/%d for %s (network); sleeping %.1fs", attempt + 1, self.max_retries, url, sleep_s)
                    time.sleep(sleep_s)
                    continue
                raise ConnectivityError(f"Error connecting to Plex server at {self.base_url}: {e}") from e

            if r.status_code in (500, 502, 503, 504) and attempt < self.max_retries:
                sleep_s = min(10.0, (2 ** attempt)) + random.uniform(0.0, 0.5)
                logger.debug("Retry %d/%d for %s (HTTP %d); sleeping %.1fs", attempt + 1, self.max_retries, url, r.status_code, sleep_s)
                time.sleep(sleep_s)
                continue

            if r.status_code >= 400:
                raise PlexError(f"GET {url} failed: {r.status_code} {r.text[:200]}")
            return r

        # Unreachable: the last attempt either returns or raises
        raise PlexError(f"GET {url} failed unexpectedly")

    def _get(self, path: str) -> dict:
        r = self._request(path)
        try:
            return r.json()
        except ValueError as e:
            raise PlexError(f"GET {self.base_url}/{path.lstrip('/')} returned invalid JSON") from e

    def query(self, path: str) -> List[ServerRecord]:
        logger.debug("Getting data from %s", path)
        payload = self._get(path)
        try:
            records = records_from_container(payload)
        except MalformedRecordError as e:
            raise PlexError(f"Malformed response from {path}: {e}") from e
        logger.debug("Finished getting data from %s (%d records)", path, len(records))
        return records

    def get_sections(self) -> List[ServerRecord]:
        return self.query("/library/sections")

    def get_sessions(self) -> List[ServerRecord]:
        return self.query("/status/sessions")

    def get_servers(self) -> List[ServerRecord]:
        return self.query("/servers")

    def get_on_deck(self) -> List[ServerRecord]:
        return self.query("/library/onDeck")

    def get_recently_added(self, section_key: Optional[str] = None) -> List[ServerRecord]:
        if section_key:
            return self.query(f"/library/sections/{section_key}/recentlyAdded")
        return self.query("/library/recentlyAdded")

    def get_image(self, path: str) -> bytes:
        """Raw bytes of an artwork path such as a record's ``thumb`` attribute."""
        return self._request(path, headers={"Accept": "image/*"}).content


def fetch_auth_token(
    username: str,
    password: str,
    *,
    session: Optional[requests.Session] = None,
    timeout: float = 30.0,
) -> str:
    """Signs in to plex.tv and returns the account's authentication token."""
    s = session or requests.Session()
    try:
        r = s.post(
            PLEX_TV_SIGN_IN,
            data={"user[login]": username, "user[password]": password},
            headers=_plex_headers(),
            timeout=timeout,
        )
    except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
        raise ConnectivityError(f"Error connecting to plex.tv: {e}") from e

    if r.status_code != 201:
        raise PlexError(f"Failed to get token from plex.tv: {r.status_code}")
    try:
        data = r.json()
    except ValueError as e:
        raise PlexError("plex.tv returned invalid JSON") from e

    token = (data.get("user") or {}).get("authentication_token") if isinstance(data, dict) else None
    if not token:
        raise PlexError("Authentication token not found in plex.tv response")
    return token
