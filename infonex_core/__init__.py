"""Infonex 核心顶层包。

对话与工具编排的核心实现：配置加载、领域模型、内容归一化、
Provider 适配、工具系统、对话编排、用量统计与持久化存储。
"""

from infonex_core.api.service import ChatService, get_default_service

__all__ = ["ChatService", "get_default_service"]
