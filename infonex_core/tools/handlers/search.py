"""web_search 工具与搜索增强。"""

import json
import re
from typing import Any, Dict, List, Optional

import httpx

from infonex_core.domain.exceptions import ToolFailure
from infonex_core.infrastructure.logging.logger import logger

_MAX_RESULTS = 5
_AUGMENT_TRIGGER = re.compile(r"\b(latest|news)\b", re.IGNORECASE)


class SerperClient:
    """Serper (google.serper.dev) 搜索客户端。"""

    def __init__(self, app_settings):
        self._settings = app_settings

    async def search(self, query: str) -> Dict[str, Any]:
        api_key = self._settings.serper_api_key
        if not api_key:
            raise ToolFailure("SERPER_API_KEY not set", code="SEARCH_NOT_CONFIGURED")
        async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
            resp = await client.post(
                self._settings.serper_url,
                json={"q": query},
                headers={"X-API-KEY": api_key, "Content-Type": "application/json"},
            )
        if resp.status_code >= 400:
            raise ToolFailure(f"Search API error ({resp.status_code})", code="SEARCH_FAILED")
        try:
            data = resp.json()
        except ValueError:
            raise ToolFailure("Search API returned invalid JSON", code="SEARCH_FAILED")
        return data if isinstance(data, dict) else {}


def format_results(data: Dict[str, Any], limit: int = _MAX_RESULTS) -> List[str]:
    lines: List[str] = []
    for item in (data.get("organic") or [])[:limit]:
        title = item.get("title") or ""
        snippet = item.get("snippet") or ""
        if title or snippet:
            lines.append(f"{title}: {snippet}")
    return lines


def make_web_search_handler(client: SerperClient):
    async def web_search(args: Dict[str, Any]) -> str:
        query = str(args["query"])
        lines = format_results(await client.search(query))
        if not lines:
            return json.dumps({"query": query, "results": [], "message": "No search results found."})
        return "\n".join(lines)

    return web_search


def needs_search(user_text: str) -> bool:
    return bool(user_text) and bool(_AUGMENT_TRIGGER.search(user_text))


async def build_search_preamble(client: SerperClient, user_text: str) -> Optional[str]:
    """用户问到 latest / news 时，先搜一次并把结果写进系统提示。

    搜索失败只记日志，返回 None，不影响本轮对话。
    """

    if not needs_search(user_text):
        return None
    try:
        lines = format_results(await client.search(user_text))
    except (ToolFailure, httpx.HTTPError) as exc:
        logger.warning("Search augmentation skipped", extra={"extra": {"error": str(exc)}})
        return None
    if not lines:
        return None
    return "Here are some recent search results that may help answer the user:\n" + "\n".join(lines)
