"""产出文件的工具：generate_image、generate_pdf、generate_qr_code。

这些工具返回带 display_image / display_pdf 标记的 JSON 信封，
编排器看到信封后直接把它作为最终回复，不再回传给模型。
"""

import asyncio
import base64
import json
import re
from io import BytesIO
from typing import Any, Dict, List
from xml.sax.saxutils import escape

import httpx
import qrcode
import qrcode.image.svg
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer

from infonex_core.domain.exceptions import ToolFailure
from infonex_core.infrastructure.logging.logger import logger
from infonex_core.infrastructure.storage.artifact_store import ArtifactStore


_IMAGE_SIZES = ("1024x1024", "1792x1024", "1024x1792")
_IMAGE_STYLES = ("vivid", "natural")


def _slug(text: str, default: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9]+", "_", text).strip("_")[:60]
    return slug or default


# ---- generate_image ----


class ImageGenerator:
    """调用 OpenAI images/generations 接口，并把图片字节落到 ArtifactStore。"""

    def __init__(self, app_settings, store: ArtifactStore):
        self._settings = app_settings
        self._store = store

    async def __call__(self, args: Dict[str, Any]) -> str:
        prompt = str(args["prompt"])
        size = args.get("size") if args.get("size") in _IMAGE_SIZES else "1024x1024"
        style = args.get("style") if args.get("style") in _IMAGE_STYLES else "natural"
        api_key = self._settings.openai_api_key
        if not api_key:
            raise ToolFailure("OPENAI_API_KEY not set", code="IMAGE_NOT_CONFIGURED")

        payload = {
            "model": self._settings.image_model,
            "prompt": prompt,
            "n": 1,
            "size": size,
            "style": style,
        }
        async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
            resp = await client.post(
                f"{self._settings.openai_base_url}/images/generations",
                json=payload,
                headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
            )
            if resp.status_code >= 400:
                raise ToolFailure(f"Image API error ({resp.status_code})", code="IMAGE_FAILED")
            item = ((resp.json() or {}).get("data") or [{}])[0] or {}
            if item.get("b64_json"):
                data = base64.b64decode(item["b64_json"])
            elif item.get("url"):
                download = await client.get(item["url"])
                if download.status_code >= 400:
                    raise ToolFailure(f"Image download failed ({download.status_code})", code="IMAGE_FAILED")
                data = download.content
            else:
                raise ToolFailure("Image API returned no image", code="IMAGE_FAILED")

        artifact = await asyncio.to_thread(
            self._store.save, "image", data, f"{_slug(prompt, 'image')}.png", "image/png", prompt[:120]
        )
        logger.info("Image generated", extra={"extra": {"artifact_id": artifact.id, "size": size}})
        return json.dumps(
            {
                "type": "image_generation_result",
                "display_image": True,
                "image_url": self._store.url_for(artifact),
                "prompt": prompt,
                "revised_prompt": item.get("revised_prompt"),
                "message": f"Here is the image generated for: {prompt}",
            },
            ensure_ascii=False,
        )


# ---- generate_pdf ----


def render_pdf(title: str, content: str, sections: List[Dict[str, Any]]) -> bytes:
    """用 reportlab 把标题、正文和若干小节排版成 PDF 字节。"""

    buf = BytesIO()
    doc = SimpleDocTemplate(buf, pagesize=A4, title=title)
    styles = getSampleStyleSheet()
    elements = [Paragraph(escape(title), styles["Title"]), Spacer(1, 12)]

    def add_body(text: str) -> None:
        for para in re.split(r"\n\s*\n", text or ""):
            if para.strip():
                elements.append(Paragraph(escape(para.strip()).replace("\n", "<br/>"), styles["BodyText"]))
                elements.append(Spacer(1, 6))

    add_body(content)
    for section in sections:
        if not isinstance(section, dict):
            continue
        elements.append(Spacer(1, 12))
        elements.append(Paragraph(escape(str(section.get("heading") or "")), styles["Heading2"]))
        add_body(str(section.get("content") or ""))

    doc.build(elements)
    return buf.getvalue()


class PdfGenerator:
    def __init__(self, store: ArtifactStore):
        self._store = store

    async def __call__(self, args: Dict[str, Any]) -> str:
        title = str(args["title"]).strip() or "Generated PDF"
        sections = args.get("sections") or []
        if not isinstance(sections, list):
            raise ToolFailure("sections must be an array of {heading, content}")

        data = await asyncio.to_thread(render_pdf, title, str(args["content"]), sections)
        filename = f"{_slug(title, 'document')}.pdf"
        artifact = await asyncio.to_thread(self._store.save, "pdf", data, filename, "application/pdf", title)
        logger.info("PDF generated", extra={"extra": {"artifact_id": artifact.id, "bytes": len(data)}})
        return json.dumps(
            {
                "type": "pdf_generation_result",
                "display_pdf": True,
                "pdf_url": self._store.url_for(artifact),
                "title": title,
                "filename": filename,
                "message": f'Your PDF "{title}" is ready to download.',
            },
            ensure_ascii=False,
        )


# ---- generate_qr_code ----


def render_qr(data: str, size: int, fmt: str) -> Dict[str, bytes]:
    qr = qrcode.QRCode(border=2)
    qr.add_data(data)
    qr.make(fit=True)
    # 根据模块数反推像素尺寸，保证输出接近请求的边长
    qr.box_size = max(1, size // (qr.modules_count + 2 * qr.border))

    out: Dict[str, bytes] = {}
    if fmt in ("png", "both"):
        buf = BytesIO()
        qr.make_image(fill_color="black", back_color="white").save(buf)
        out["png"] = buf.getvalue()
    if fmt in ("svg", "both"):
        buf = BytesIO()
        qr.make_image(image_factory=qrcode.image.svg.SvgPathImage).save(buf)
        out["svg"] = buf.getvalue()
    return out


class QrCodeGenerator:
    def __init__(self, store: ArtifactStore):
        self._store = store

    async def __call__(self, args: Dict[str, Any]) -> str:
        data = str(args["data"])
        try:
            size = min(1024, max(64, int(args.get("size") or 256)))
        except (TypeError, ValueError):
            raise ToolFailure("size must be an integer")
        fmt = args.get("format") if args.get("format") in ("png", "svg", "both") else "png"

        rendered = await asyncio.to_thread(render_qr, data, size, fmt)
        urls: Dict[str, str] = {}
        for ext, blob in rendered.items():
            mime = "image/png" if ext == "png" else "image/svg+xml"
            artifact = await asyncio.to_thread(self._store.save, "image", blob, f"qr_code.{ext}", mime, data[:120])
            urls[ext] = self._store.url_for(artifact)

        result: Dict[str, Any] = {
            "type": "qr_code_result",
            "display_image": True,
            "image_url": urls.get("png") or urls["svg"],
            "data": data,
            "size": size,
            "message": "Here is your QR code.",
        }
        if "svg" in urls:
            result["svg_url"] = urls["svg"]
        return json.dumps(result, ensure_ascii=False)
