"""依赖辅助模型的文本类工具：翻译、写邮件、情感分析、代码审查、文本格式化。

每个工具只负责拼提示词，真正的生成交给 TextCompleter（一次无工具的 Provider 调用）。
"""

from typing import Any, Awaitable, Callable, Dict, Optional

from infonex_core.domain.exceptions import ToolFailure
from infonex_core.domain.models import Message, ProviderRequest

TextCompleter = Callable[[str], Awaitable[str]]


def provider_completer(adapter, model: Optional[str] = None, temperature: float = 0.3) -> TextCompleter:
    """把 ProviderAdapter 包装成 prompt -> text 的补全函数。"""

    async def complete(prompt: str) -> str:
        resp = await adapter.send(
            ProviderRequest(
                messages=[Message(role="user", content=prompt)],
                model=model,
                temperature=temperature,
            )
        )
        text = (resp.content or "").strip()
        if not text:
            raise ToolFailure("Helper model returned no text")
        return text

    return complete


def _opt(args: Dict[str, Any], key: str, default: str = "") -> str:
    value = args.get(key)
    return str(value).strip() if value not in (None, "") else default


def make_text_handlers(complete: TextCompleter) -> Dict[str, Callable[[Dict[str, Any]], Awaitable[str]]]:
    async def translate_text(args: Dict[str, Any]) -> str:
        source = _opt(args, "source_language")
        origin = f" from {source}" if source else ""
        prompt = (
            f"Translate the following text{origin} to {args['target_language']}. "
            f"Return only the translation.\n\n{args['text']}"
        )
        return await complete(prompt)

    async def compose_email(args: Dict[str, Any]) -> str:
        recipient = _opt(args, "recipient")
        prompt = (
            f"Write a {_opt(args, 'tone', 'professional')} email with the subject \"{args['subject']}\".\n"
            f"Purpose: {args['purpose']}\n"
            + (f"Recipient: {recipient}\n" if recipient else "")
            + "Include a greeting, the body and a sign-off."
        )
        return await complete(prompt)

    async def analyze_sentiment(args: Dict[str, Any]) -> str:
        depth = _opt(args, "analysis_depth", "basic")
        if depth == "emotions":
            focus = "Identify the emotions expressed and their intensity."
        elif depth == "detailed":
            focus = "Give the overall sentiment, a confidence score and the phrases that drive it."
        else:
            focus = "Classify the overall sentiment as positive, negative or neutral with a one-line reason."
        return await complete(f"{focus}\n\nText:\n{args['text']}")

    async def analyze_code(args: Dict[str, Any]) -> str:
        kind = _opt(args, "analysis_type", "comprehensive")
        prompt = (
            f"Perform a {kind} review of the following {args['language']} code. "
            "Cover complexity, security, performance and style, and list concrete improvements.\n\n"
            f"```{args['language']}\n{args['code']}\n```"
        )
        return await complete(prompt)

    async def format_text(args: Dict[str, Any]) -> str:
        style = _opt(args, "style")
        prompt = (
            f"Reformat the following text as {args['format_type']}"
            + (f" in a {style} style" if style else "")
            + ". Return only the formatted result.\n\n"
            + str(args["text"])
        )
        return await complete(prompt)

    return {
        "translate_text": translate_text,
        "compose_email": compose_email,
        "analyze_sentiment": analyze_sentiment,
        "analyze_code": analyze_code,
        "format_text": format_text,
    }
