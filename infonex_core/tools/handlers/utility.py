"""本地即可完成的工具：计算、数据分析、图表配置、日历、密码、网页正文提取、天气。"""

import ast
import asyncio
import csv
import io
import ipaddress
import json
import math
import operator
import re
import secrets
import socket
import statistics
import string
from datetime import datetime, timedelta
from html import unescape
from typing import Any, Dict, List, Optional

import httpx

from infonex_core.domain.exceptions import ToolFailure


# ---- 安全表达式求值 ----

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY_OPS = {ast.UAdd: operator.pos, ast.USub: operator.neg}
_FUNCS = {
    name: getattr(math, name)
    for name in (
        "sqrt", "sin", "cos", "tan", "asin", "acos", "atan",
        "log", "log10", "log2", "exp", "floor", "ceil", "factorial",
        "degrees", "radians", "hypot",
    )
}
_FUNCS.update({"abs": abs, "round": round, "min": min, "max": max})
_CONSTANTS = {"pi": math.pi, "e": math.e, "tau": math.tau}
_MAX_EXPONENT = 1000
_MAX_FACTORIAL = 500
# 整数结果的位数上限，约 3000 位十进制
_MAX_INT_BITS = 10_000


def _int_bits(value: Any) -> int:
    return value.bit_length() if isinstance(value, int) else 0


def _check_int_size(value: Any) -> Any:
    if _int_bits(value) > _MAX_INT_BITS:
        raise ToolFailure(f"Result too large (max {_MAX_INT_BITS} bits)")
    return value


def _eval_node(node: ast.AST) -> Any:
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.Name) and node.id in _CONSTANTS:
        return _CONSTANTS[node.id]
    if isinstance(node, ast.BinOp) and type(node.op) in _BIN_OPS:
        left, right = _eval_node(node.left), _eval_node(node.right)
        # 先按位数估算结果大小，超限的大整数根本不去算
        if isinstance(node.op, ast.Pow):
            if abs(right) > _MAX_EXPONENT:
                raise ToolFailure(f"Exponent too large (max {_MAX_EXPONENT})")
            if right > 0 and _int_bits(left) * right > _MAX_INT_BITS:
                raise ToolFailure(f"Result too large (max {_MAX_INT_BITS} bits)")
        elif isinstance(node.op, ast.Mult) and _int_bits(left) + _int_bits(right) > _MAX_INT_BITS:
            raise ToolFailure(f"Result too large (max {_MAX_INT_BITS} bits)")
        return _check_int_size(_BIN_OPS[type(node.op)](left, right))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval_node(node.operand))
    if isinstance(node, ast.Call) and isinstance(node.func, ast.Name) and node.func.id in _FUNCS and not node.keywords:
        args = [_eval_node(a) for a in node.args]
        if node.func.id == "factorial" and args and args[0] > _MAX_FACTORIAL:
            raise ToolFailure(f"factorial argument too large (max {_MAX_FACTORIAL})")
        return _check_int_size(_FUNCS[node.func.id](*args))
    raise ToolFailure(f"Unsupported expression element: {ast.dump(node)[:60]}")


def safe_eval(expression: str) -> Any:
    """只允许数字、四则/幂/取模运算、math 常用函数和常量。"""

    text = (expression or "").strip().replace("^", "**")
    if not text:
        raise ToolFailure("Empty expression")
    try:
        tree = ast.parse(text, mode="eval")
    except SyntaxError:
        raise ToolFailure(f"Invalid expression: {expression}")
    try:
        return _eval_node(tree.body)
    except (ZeroDivisionError, OverflowError, ValueError, TypeError) as exc:
        raise ToolFailure(f"Cannot evaluate {expression}: {exc}")


def _fmt_number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return str(value)


async def calculate_math(args: Dict[str, Any]) -> str:
    expression = str(args["expression"])
    op = args.get("operation") or "calculate"
    if op != "calculate":
        raise ToolFailure(f"Operation '{op}' is not supported; only 'calculate' is available")
    return f"Expression: {expression}\nResult: {_fmt_number(safe_eval(expression))}"


async def execute_code(args: Dict[str, Any]) -> str:
    language = (args.get("language") or "python").lower()
    if language != "python":
        raise ToolFailure(f"Language '{language}' is not supported")
    return f"Result: {_fmt_number(safe_eval(str(args['code'])))}"


# ---- 表格数据 ----


def _coerce(value: Any) -> Any:
    if isinstance(value, str):
        text = value.strip()
        try:
            return float(text) if any(c in text for c in ".eE") else int(text)
        except ValueError:
            return text
    return value


def parse_table(raw: Any) -> List[Dict[str, Any]]:
    """解析 JSON 对象数组或带表头的 CSV 文本。"""

    if isinstance(raw, list):
        rows = raw
    else:
        text = str(raw or "").strip()
        if not text:
            raise ToolFailure("No data provided")
        if text.startswith("["):
            try:
                rows = json.loads(text)
            except json.JSONDecodeError as exc:
                raise ToolFailure(f"Invalid JSON data: {exc.msg}")
        else:
            rows = list(csv.DictReader(io.StringIO(text)))
    if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
        raise ToolFailure("Data must be a list of records")
    return [{str(k).strip(): _coerce(v) for k, v in r.items() if k is not None} for r in rows]


def _numeric_columns(rows: List[Dict[str, Any]]) -> Dict[str, List[float]]:
    columns: Dict[str, List[float]] = {}
    for key in rows[0].keys() if rows else []:
        values = [r.get(key) for r in rows]
        if values and all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in values):
            columns[key] = [float(v) for v in values]
    return columns


def analyze_table(rows: List[Dict[str, Any]], analysis_type: str) -> Dict[str, Any]:
    numeric = _numeric_columns(rows)
    result: Dict[str, Any] = {
        "analysis_type": analysis_type,
        "records": len(rows),
        "columns": list(rows[0].keys()) if rows else [],
        "numeric_columns": list(numeric),
    }
    if analysis_type == "summary":
        result["statistics"] = {
            name: {
                "mean": statistics.fmean(vals),
                "median": statistics.median(vals),
                "min": min(vals),
                "max": max(vals),
            }
            for name, vals in numeric.items()
        }
    elif analysis_type == "distribution":
        result["quartiles"] = {
            name: statistics.quantiles(vals, n=4) for name, vals in numeric.items() if len(vals) >= 2
        }
    elif analysis_type == "correlation":
        names = list(numeric)
        pairs: Dict[str, Optional[float]] = {}
        for i, a in enumerate(names):
            for b in names[i + 1:]:
                try:
                    pairs[f"{a}~{b}"] = statistics.correlation(numeric[a], numeric[b])
                except statistics.StatisticsError:
                    pairs[f"{a}~{b}"] = None
        result["correlation"] = pairs
    elif analysis_type == "trend":
        trends: Dict[str, Any] = {}
        for name, vals in numeric.items():
            if len(vals) < 2:
                continue
            slope = statistics.linear_regression(range(len(vals)), vals).slope
            trends[name] = {
                "slope": slope,
                "direction": "up" if slope > 0 else "down" if slope < 0 else "flat",
            }
        result["trend"] = trends
    else:
        raise ToolFailure(f"Unknown analysis_type: {analysis_type}")
    return result


async def analyze_data(args: Dict[str, Any]) -> str:
    rows = parse_table(args["data"])
    result = analyze_table(rows, str(args["analysis_type"]))
    if args.get("visualization") and result["numeric_columns"]:
        result["chart_suggestion"] = "line" if args["analysis_type"] == "trend" else "bar"
    return json.dumps(result, ensure_ascii=False)


async def create_chart(args: Dict[str, Any]) -> str:
    chart_type = str(args["chart_type"])
    if chart_type not in ("bar", "line", "pie", "scatter"):
        raise ToolFailure(f"Unsupported chart_type: {chart_type}")
    rows = parse_table(args["data"])
    if not rows:
        raise ToolFailure("No data provided")
    numeric = _numeric_columns(rows)
    label_key = next((k for k in rows[0] if k not in numeric), None)
    labels = [str(r.get(label_key)) for r in rows] if label_key else [str(i + 1) for i in range(len(rows))]
    config = {
        "type": "chart_config",
        "chart_type": chart_type,
        "title": args.get("title") or "Untitled Chart",
        "x_label": args.get("x_label") or label_key or "",
        "y_label": args.get("y_label") or "",
        "labels": labels,
        "datasets": [{"label": name, "data": vals} for name, vals in numeric.items()],
    }
    return json.dumps(config, ensure_ascii=False)


# ---- 日历 ----

_DURATION = re.compile(r"(\d+(?:\.\d+)?)\s*(h|hr|hrs|hour|hours|m|min|mins|minute|minutes)\b", re.IGNORECASE)


def _parse_duration(text: str) -> timedelta:
    total = timedelta()
    for amount, unit in _DURATION.findall(text or ""):
        value = float(amount)
        total += timedelta(hours=value) if unit.lower().startswith("h") else timedelta(minutes=value)
    return total or timedelta(hours=1)


def _parse_time(text: str):
    for fmt in ("%H:%M", "%I:%M %p", "%I %p", "%I:%M%p"):
        try:
            return datetime.strptime(text.upper(), fmt).time()
        except ValueError:
            continue
    raise ToolFailure(f"time must look like 14:30 or 2:30 PM, got {text}")


def _ical_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace(";", "\\;").replace(",", "\\,").replace("\n", "\\n")


async def create_calendar_event(args: Dict[str, Any]) -> str:
    title = str(args["title"])
    date = str(args["date"]).strip()
    time = str(args.get("time") or "").strip()
    try:
        day = datetime.strptime(date, "%Y-%m-%d")
    except ValueError:
        raise ToolFailure(f"date must be YYYY-MM-DD, got {date}")

    lines = ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//Infonex//Calendar//EN", "BEGIN:VEVENT"]
    lines.append(f"UID:{secrets.token_hex(8)}@infonex")
    lines.append(f"SUMMARY:{_ical_escape(title)}")
    if time:
        start = datetime.combine(day.date(), _parse_time(time))
        end = start + _parse_duration(str(args.get("duration") or ""))
        lines.append(f"DTSTART:{start:%Y%m%dT%H%M%S}")
        lines.append(f"DTEND:{end:%Y%m%dT%H%M%S}")
    else:
        lines.append(f"DTSTART;VALUE=DATE:{day:%Y%m%d}")
    if args.get("description"):
        lines.append(f"DESCRIPTION:{_ical_escape(str(args['description']))}")
    lines += ["END:VEVENT", "END:VCALENDAR"]
    ical = "\r\n".join(lines)
    return f"Calendar event \"{title}\" created. Import this into a calendar application:\n\n{ical}"


# ---- 密码 ----

_SIMILAR = set("0O1lI")
_SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"


def _flag(args: Dict[str, Any], key: str, default: bool) -> bool:
    value = args.get(key)
    return default if value is None else bool(value)


async def generate_password(args: Dict[str, Any]) -> str:
    try:
        length = int(args.get("length") or 16)
    except (TypeError, ValueError):
        raise ToolFailure("length must be an integer")
    if not 4 <= length <= 128:
        raise ToolFailure("length must be between 4 and 128")

    pools = [string.ascii_lowercase]
    if _flag(args, "include_uppercase", True):
        pools.append(string.ascii_uppercase)
    if _flag(args, "include_numbers", True):
        pools.append(string.digits)
    if _flag(args, "include_symbols", False):
        pools.append(_SYMBOLS)
    if _flag(args, "exclude_similar", False):
        pools = ["".join(c for c in pool if c not in _SIMILAR) for pool in pools]

    # 每类字符至少出现一次
    chars = [secrets.choice(pool) for pool in pools]
    alphabet = "".join(pools)
    chars += [secrets.choice(alphabet) for _ in range(length - len(chars))]
    secrets.SystemRandom().shuffle(chars)
    password = "".join(chars)

    if length >= 12 and len(pools) >= 4:
        strength = "Very Strong"
    elif length >= 8 and len(pools) >= 3:
        strength = "Strong"
    elif length >= 6:
        strength = "Medium"
    else:
        strength = "Weak"
    return f"Password: {password}\nLength: {length}\nStrength: {strength}\nCharacter set size: {len(alphabet)}"


# ---- 网页正文 ----

_SUMMARY_CHARS = {"short": 500, "medium": 1500, "long": 4000}
_DROP_BLOCKS = re.compile(r"<(script|style|noscript)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_TAGS = re.compile(r"<[^>]+>")


def html_to_text(html: str) -> str:
    text = _TAGS.sub(" ", _DROP_BLOCKS.sub(" ", html))
    return re.sub(r"\s+", " ", unescape(text)).strip()


async def _resolve_host(host: str, port: int) -> List[str]:
    infos = await asyncio.get_running_loop().getaddrinfo(host, port, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


async def ensure_public_url(url: str) -> httpx.URL:
    """只允许解析到公网地址的 http(s) URL；回环、内网、链路本地（含云元数据地址）一律拒绝。"""

    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL:
        raise ToolFailure(f"Invalid url: {url}")
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise ToolFailure("url must start with http:// or https://")
    port = parsed.port or (443 if parsed.scheme == "https" else 80)
    try:
        addresses = await _resolve_host(parsed.host, port)
    except OSError:
        raise ToolFailure(f"Cannot resolve host {parsed.host}")
    if not addresses:
        raise ToolFailure(f"Cannot resolve host {parsed.host}")
    for address in addresses:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
        if not ip.is_global:
            raise ToolFailure(f"Fetching {parsed.host} is not allowed (non-public address)")
    return parsed


def make_extract_text_handler(app_settings, max_redirects: int = 5):
    async def extract_text_from_url(args: Dict[str, Any]) -> str:
        url = str(args["url"]).strip()
        limit = _SUMMARY_CHARS.get(args.get("summary_length") or "medium", 1500)
        target = await ensure_public_url(url)
        # 手动跟随跳转，每一跳都重新校验目标地址
        async with httpx.AsyncClient(timeout=app_settings.http_timeout, follow_redirects=False) as client:
            for _ in range(max_redirects + 1):
                resp = await client.get(str(target), headers={"User-Agent": "InfonexBot/1.0"})
                location = resp.headers.get("location")
                if not (resp.is_redirect and location):
                    break
                target = await ensure_public_url(str(target.join(location)))
            else:
                raise ToolFailure(f"Too many redirects fetching {url}")
        if resp.status_code >= 400:
            raise ToolFailure(f"Fetching {url} failed ({resp.status_code})")
        body = resp.text
        if "html" in resp.headers.get("content-type", "html"):
            body = html_to_text(body)
        if not body:
            return f"No readable text found at {url}"
        excerpt = body[:limit] + ("..." if len(body) > limit else "")
        return f"Source: {url}\n\n{excerpt}"

    return extract_text_from_url


# ---- 天气 ----


async def get_weather(args: Dict[str, Any]) -> str:
    # 未配置天气数据源，只返回提示文字，不编造数据
    location = str(args["location"])
    days = args.get("forecast_days")
    note = f" A {days}-day forecast was requested." if days else ""
    return (
        f"Live weather data for {location} is not available: no weather provider is configured.{note} "
        "Suggest the user check a weather service such as OpenWeatherMap."
    )
