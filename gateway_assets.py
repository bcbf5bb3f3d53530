"""Static payloads served next to the API: HTML shell, icon and manifest.

The chat application itself is built and shipped separately; this module
only renders the entry points the browser asks for.
"""

from __future__ import annotations

import html
import json
import re

# Checked in order; the first keyword found in the title wins.
_CHAT_TYPES = (
    ("openai", re.compile(r"openai", re.IGNORECASE)),
    ("gemini", re.compile(r"gemini", re.IGNORECASE)),
    ("claude", re.compile(r"claude", re.IGNORECASE)),
    ("qwen", re.compile(r"qwen", re.IGNORECASE)),
    ("deepseek", re.compile(r"deepseek", re.IGNORECASE)),
    ("router", re.compile(r"router", re.IGNORECASE)),
)

_ICON_COLORS = {
    "openai": "#10a37f",
    "gemini": "#4285f4",
    "claude": "#d97757",
    "qwen": "#615ced",
    "deepseek": "#4d6bfe",
    "router": "#6566f1",
    "bot": "#605bec",
}

_SVG_TEMPLATE = """<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 64 64" width="64" height="64">
  <rect x="4" y="4" width="56" height="56" rx="14" fill="{color}"/>
  <text x="32" y="42" font-family="Arial, Helvetica, sans-serif" font-size="26" font-weight="bold" text-anchor="middle" fill="#ffffff">{letter}</text>
</svg>"""

_HTML_TEMPLATE = """<!doctype html>
<html lang="en">
  <head>
    <meta charset="UTF-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0" />
    <meta name="theme-color" content="#605bec" />
    <meta name="description" content="{title} - chat assistant" />
    <title>{title}</title>
    <link rel="icon" href="favicon.svg" type="image/svg+xml" />
    <link rel="manifest" href="manifest.json" />
  </head>
  <body>
    <div id="app" data-title="{title}"></div>
    <script>
      window.__GATEWAY_CONFIG__ = {config};
    </script>
  </body>
</html>
"""


def detect_chat_type(title: str) -> str:
    for chat_type, pattern in _CHAT_TYPES:
        if pattern.search(title or ""):
            return chat_type
    return "bot"


def render_icon(chat_type: str) -> str:
    color = _ICON_COLORS.get(chat_type, _ICON_COLORS["bot"])
    letter = "B" if chat_type == "bot" else chat_type[0].upper()
    return _SVG_TEMPLATE.format(color=color, letter=letter)


def render_manifest(title: str) -> str:
    manifest = {
        "name": title,
        "short_name": title,
        "description": f"{title} - chat assistant",
        "start_url": "./index.html",
        "display": "standalone",
        "background_color": "#ffffff",
        "theme_color": "#605bec",
        "icons": [
            {
                "src": "favicon.svg",
                "sizes": "any",
                "type": "image/svg+xml",
                "purpose": "any maskable",
            }
        ],
        "categories": ["productivity", "utilities"],
        "dir": "ltr",
    }
    return json.dumps(manifest, ensure_ascii=False, indent=2)


def render_index(title: str, model_ids: list[str], search_enabled: bool) -> str:
    config = {
        "title": title,
        "chatType": detect_chat_type(title),
        "models": model_ids,
        "searchEnabled": search_enabled,
    }
    # "</" must not appear inside an inline <script>
    config_json = json.dumps(config, ensure_ascii=False).replace("</", "<\\/")
    return _HTML_TEMPLATE.format(title=html.escape(title), config=config_json)
