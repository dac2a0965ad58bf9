"""
Ticket Rush - Session & Token Generator interfaces
The authenticated transport and the anti-bot token generator are external
collaborators; the engine only talks to them through these contracts.
"""

import abc
import logging
import random
from http.cookies import SimpleCookie
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter

from .config import Config

logger = logging.getLogger("TicketRush.Session")


class Session(abc.ABC):
    """
    Authenticated HTTP client. Must be safe for concurrent use by several jobs.

    Responses expose ``status_code``, ``text`` and ``json()`` like
    ``requests.Response``.
    """

    @abc.abstractmethod
    def get(self, url: str) -> Any:
        pass

    @abc.abstractmethod
    def post(self, url: str, json: Optional[Dict[str, Any]] = None) -> Any:
        pass

    @abc.abstractmethod
    def post_with_headers(self, url: str, headers: Dict[str, str], json: Optional[Dict[str, Any]] = None) -> Any:
        pass

    @abc.abstractmethod
    def get_cookie(self, name: str) -> Optional[str]:
        pass


class TokenGenerator(abc.ABC):
    """Produces short-lived signed ctoken strings for hot projects"""

    @abc.abstractmethod
    def generate_ctoken(self, is_retry: bool) -> str:
        pass


def random_salt() -> int:
    return random.randint(Config.TOKEN_SALT_MIN, Config.TOKEN_SALT_MAX - 1)


class RequestsSession(Session):
    """Session backed by a pooled ``requests.Session`` and a raw cookie header"""

    def __init__(self, cookie: str = "", user_agent: Optional[str] = None, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else Config.REQUEST_TIMEOUT
        self.cookies = self._parse_cookie(cookie)
        self.session = requests.Session()
        adapter = HTTPAdapter(pool_connections=30, pool_maxsize=30, max_retries=0)
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)
        self.session.headers.update(
            {
                "accept": "application/json, text/plain, */*",
                "accept-language": "zh-CN,zh;q=0.9",
                "origin": Config.SHOW_BASE_URL,
                "referer": f"{Config.SHOW_BASE_URL}/",
                "user-agent": user_agent or Config.USER_AGENT,
            }
        )
        if cookie:
            self.session.headers["cookie"] = cookie

    @staticmethod
    def _parse_cookie(cookie: str) -> Dict[str, str]:
        jar = SimpleCookie()
        try:
            jar.load(cookie)
        except Exception as e:
            logger.warning(f"[COOKIE] Could not parse cookie header: {e}")
            return {}
        return {name: morsel.value for name, morsel in jar.items()}

    def get(self, url: str) -> requests.Response:
        logger.debug(f"GET {url}")
        return self.session.get(url, timeout=self.timeout)

    def post(self, url: str, json: Optional[Dict[str, Any]] = None) -> requests.Response:
        logger.debug(f"POST {url}")
        return self.session.post(url, json=json, timeout=self.timeout)

    def post_with_headers(
        self, url: str, headers: Dict[str, str], json: Optional[Dict[str, Any]] = None
    ) -> requests.Response:
        logger.debug(f"POST {url} (+{len(headers)} headers)")
        return self.session.post(url, json=json, headers=headers, timeout=self.timeout)

    def get_cookie(self, name: str) -> Optional[str]:
        return self.cookies.get(name)

    def close(self) -> None:
        self.session.close()
