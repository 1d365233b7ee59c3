import logging
import re
import secrets
import string
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape
from markupsafe import Markup

from ..core.preview_config import string_list
from .assets import ResolvedAssets

logger = logging.getLogger(__name__)

MARKDOWN_IT_CDN = "https://cdn.jsdelivr.net/npm/markdown-it/dist/markdown-it.min.js"
NONCE_ALPHABET = string.ascii_letters + string.digits

_SCRIPT_CLOSE = re.compile(r"</(script)", re.IGNORECASE)
_STYLE_CLOSE = re.compile(r"</(style)", re.IGNORECASE)


def get_nonce(length: int = 32) -> str:
    return ''.join(secrets.choice(NONCE_ALPHABET) for _ in range(length))


def _inline_js(source: str) -> Markup:
    """Make script source safe to place between <script> tags"""
    return Markup(_SCRIPT_CLOSE.sub(r"<\\/\1", source))


def _inline_css(source: str) -> Markup:
    return Markup(_STYLE_CLOSE.sub(r"<\\/\1", source))


@dataclass
class RenderConfig:
    template_dir: str = str(Path(__file__).parent / "templates")
    template_name: str = "webview.html"
    markdown_it_url: str = MARKDOWN_IT_CDN


@dataclass
class RenderedContent:
    html: str
    nonce: str


class PreviewRenderer:
    """Builds the document loaded into the preview iframe"""

    def __init__(self, config: Optional[RenderConfig] = None):
        self.config = config or RenderConfig()
        self.env = self._setup_environment()

    def _setup_environment(self) -> Environment:
        env = Environment(
            loader=FileSystemLoader(self.config.template_dir),
            autoescape=select_autoescape(['html', 'xml']),
            trim_blocks=True,
            lstrip_blocks=True
        )
        env.filters.update({
            'inline_js': _inline_js,
            'inline_css': _inline_css
        })
        return env

    def render_preview(self, title: str, config: Dict[str, Any], assets: ResolvedAssets,
                       initial_text: str) -> RenderedContent:
        """Render the full preview document for one markdown text"""
        nonce = get_nonce()
        options = config.get('options')
        if not isinstance(options, dict):
            options = {}

        template = self.env.get_template(self.config.template_name)
        html = template.render(
            title=title,
            nonce=nonce,
            markdown_it_url=self.config.markdown_it_url,
            styles=assets.styles,
            scripts=assets.scripts,
            initializer=assets.initializer,
            npm_urls=string_list(config, 'npmUrls'),
            module_urls=string_list(config, 'moduleUrls'),
            options=options,
            initial_text=initial_text
        )
        return RenderedContent(html=html, nonce=nonce)
