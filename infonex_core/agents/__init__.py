"""对话编排。"""

from infonex_core.agents.orchestrator import ConversationOrchestrator

__all__ = ["ConversationOrchestrator"]
