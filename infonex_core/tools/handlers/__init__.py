"""各工具的具体实现，以及按默认配置装配全部处理函数的入口。"""

from typing import Awaitable, Callable, Dict

from infonex_core.config.settings import settings
from .media import ImageGenerator, PdfGenerator, QrCodeGenerator
from .search import SerperClient, make_web_search_handler
from .text import TextCompleter, make_text_handlers, provider_completer
from .utility import (
    analyze_data,
    calculate_math,
    create_calendar_event,
    create_chart,
    execute_code,
    generate_password,
    get_weather,
    make_extract_text_handler,
)


def build_default_handlers(
    app_settings=None,
    artifact_store=None,
    completer: TextCompleter | None = None,
) -> Dict[str, Callable]:
    active = app_settings or settings
    if artifact_store is None:
        from infonex_core.infrastructure.storage.artifact_store import FileArtifactStore

        artifact_store = FileArtifactStore(active.storage_root)
    if completer is None:
        from infonex_core.providers import create_provider

        completer = provider_completer(create_provider("openai-secondary", active), model=active.tool_helper_model)

    handlers: Dict[str, Callable[..., Awaitable[str]]] = {
        "web_search": make_web_search_handler(SerperClient(active)),
        "generate_image": ImageGenerator(active, artifact_store),
        "generate_pdf": PdfGenerator(artifact_store),
        "generate_qr_code": QrCodeGenerator(artifact_store),
        "execute_code": execute_code,
        "calculate_math": calculate_math,
        "analyze_data": analyze_data,
        "create_chart": create_chart,
        "create_calendar_event": create_calendar_event,
        "generate_password": generate_password,
        "get_weather": get_weather,
        "extract_text_from_url": make_extract_text_handler(active),
    }
    handlers.update(make_text_handlers(completer))
    return handlers
