"""
Sandbox Document Builder

Assembles the self-contained HTML document that renders generated code in an
isolated execution context. Every render gets a freshly built document:

- styling, framework, transpiler and icon runtimes
- an icon shim exposing each known icon name as a small component
- a hook prelude, the sanitized code, and a mount of `exports.default`
- a single "settle once" reporter that posts exactly one `ready` or
  `error` message to the host window

The runtimes are CDN script tags by default. `load_runtime_bundle(inline=True)`
downloads them once and inlines them so the document needs no network.
"""
import asyncio
import json
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

import httpx

from config import settings
from logging_config import logger
from services.code_sanitizer import sanitize_code


ICON_NAMES = [
    'Search', 'Menu', 'X', 'Check', 'ChevronDown', 'ChevronUp', 'ChevronLeft', 'ChevronRight',
    'ArrowLeft', 'ArrowRight', 'ArrowUp', 'ArrowDown', 'Plus', 'Minus', 'Edit', 'Trash',
    'Settings', 'User', 'Users', 'Mail', 'Phone', 'Calendar', 'Clock', 'Star', 'Heart',
    'Home', 'Bell', 'Image', 'Camera', 'Video', 'File', 'Folder', 'Download', 'Upload',
    'Share', 'Link', 'ExternalLink', 'Copy', 'Clipboard', 'Save', 'Send', 'MessageCircle',
    'AlertCircle', 'AlertTriangle', 'Info', 'HelpCircle', 'Eye', 'EyeOff', 'Lock', 'Unlock',
    'Key', 'Shield', 'Globe', 'Map', 'MapPin', 'Navigation', 'Compass', 'Sun', 'Moon',
    'Cloud', 'Zap', 'Activity', 'BarChart', 'PieChart', 'TrendingUp', 'TrendingDown',
    'Filter', 'Grid', 'List', 'Layout', 'Columns', 'Sidebar', 'Terminal', 'Code', 'Package',
    'ShoppingCart', 'ShoppingBag', 'CreditCard', 'DollarSign', 'Percent', 'Tag', 'Gift',
    'Award', 'Target', 'Bookmark', 'Flag', 'ThumbsUp', 'ThumbsDown', 'RefreshCw', 'RotateCw',
    'Loader', 'MoreHorizontal', 'MoreVertical', 'Sparkles', 'Wand', 'Palette', 'Droplet',
    'Play', 'Pause', 'LayoutDashboard', 'BookOpen', 'LogOut', 'Briefcase', 'Layers',
]

HOOK_PRELUDE = (
    "const { useState, useEffect, useCallback, useMemo, useRef, useContext, useReducer, "
    "useLayoutEffect, useId, Fragment, createContext, memo, forwardRef } = React;"
)

BASE_STYLES = """
    * {
      margin: 0;
      padding: 0;
      box-sizing: border-box;
    }
    html, body {
      width: 100%;
      min-height: 100vh;
      font-family: system-ui, -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
      background: #ffffff;
      overflow-x: hidden;
    }
    #root {
      width: 100%;
      min-height: 100vh;
    }
    html {
      scroll-behavior: smooth;
    }
    img {
      max-width: 100%;
      height: auto;
      display: block;
    }"""

FULL_PAGE_STYLES = """
    img[class*="absolute"] {
      position: absolute;
    }
    div[class*="relative"]:has(img[class*="absolute"]) {
      min-height: 300px;
    }
    div[class*="flex-1"][class*="relative"] {
      min-height: 300px;
    }"""

TAILWIND_CONFIG = """
  <script>
    if (window.tailwind) {
      tailwind.config = {
        theme: {
          extend: {
            colors: {
              primary: '#6366f1',
              secondary: '#8b5cf6',
            }
          }
        }
      };
    }
  </script>"""

ICON_SHIM = """
(function () {
  var ICON_NAMES = __ICON_NAMES__;

  function kebab(name) {
    return name
      .replace(/([a-z0-9])([A-Z])/g, '$1-$2')
      .replace(/([A-Z])([A-Z][a-z])/g, '$1-$2')
      .toLowerCase();
  }

  function lookup(name) {
    var library = window.lucide && window.lucide.icons;
    if (!library) return null;
    return library[name] || library[name.toLowerCase()] || library[kebab(name)]
      || library.Circle || library.circle || null;
  }

  // lucide ships either [tag, attrs, children] or a bare list of [tag, attrs] children
  function iconChildren(node) {
    if (node.length === 3 && typeof node[0] === 'string' && Array.isArray(node[2])) return node[2];
    return node;
  }

  function draw(container, name, size, className, color, strokeWidth) {
    var node = lookup(name);
    if (!container || !node) return;
    var ns = 'http://www.w3.org/2000/svg';
    var svg = document.createElementNS(ns, 'svg');
    svg.setAttribute('width', size);
    svg.setAttribute('height', size);
    svg.setAttribute('viewBox', '0 0 24 24');
    svg.setAttribute('fill', 'none');
    svg.setAttribute('stroke', color || 'currentColor');
    svg.setAttribute('stroke-width', strokeWidth || 2);
    svg.setAttribute('stroke-linecap', 'round');
    svg.setAttribute('stroke-linejoin', 'round');
    iconChildren(node).forEach(function (child) {
      if (!Array.isArray(child)) return;
      var element = document.createElementNS(ns, child[0]);
      var attrs = child[1] || {};
      Object.keys(attrs).forEach(function (key) { element.setAttribute(key, attrs[key]); });
      svg.appendChild(element);
    });
    if (className) {
      className.split(' ').filter(Boolean).forEach(function (c) { svg.classList.add(c); });
    }
    container.innerHTML = '';
    container.appendChild(svg);
  }

  function createIcon(name) {
    function Icon(props) {
      var ref = React.useRef(null);
      var size = props.size || 24;
      React.useEffect(function () {
        draw(ref.current, name, size, props.className, props.color, props.strokeWidth);
      }, [size, props.className, props.color, props.strokeWidth]);
      var rest = Object.assign({}, props);
      delete rest.size;
      delete rest.color;
      delete rest.strokeWidth;
      rest.ref = ref;
      rest.className = 'inline-flex';
      return React.createElement('span', rest);
    }
    Icon.displayName = name;
    return Icon;
  }

  var icons = {};
  ICON_NAMES.forEach(function (name) {
    icons[name] = createIcon(name);
  });
  window.LucideIcons = icons;
})();
"""

MOUNT_SCRIPT = """
(function () {
  var SOURCE = __SOURCE__;
  var PRELUDE = __PRELUDE__;
  var STANDALONE = __STANDALONE__;
  var rootNode = document.getElementById('root');
  var settled = false;
  var mounted = false;

  function describe(error) {
    if (error && error.message) return String(error.message);
    return String(error || 'Unknown error');
  }

  function settle(signal) {
    if (settled) return;
    settled = true;
    if (STANDALONE) return;
    try {
      window.parent.postMessage(signal, '*');
    } catch (e) {
      console.error('Could not notify host:', e);
    }
  }

  function showError(message) {
    setTimeout(function () {
      rootNode.innerHTML = '';
      var box = document.createElement('div');
      box.setAttribute('style', 'color: red; padding: 20px; font-family: monospace;');
      box.textContent = 'Error: ' + message;
      rootNode.appendChild(box);
    }, 0);
  }

  function fail(error, rendered) {
    var message = describe(error);
    console.error('Render error:', error);
    if (!rendered) showError(message);
    settle({ type: 'error', message: message });
  }

  window.addEventListener('error', function (event) {
    fail(event.error || event.message, mounted);
  });
  window.addEventListener('unhandledrejection', function (event) {
    fail(event.reason, mounted);
  });

  function createErrorBoundary() {
    class SandboxErrorBoundary extends React.Component {
      constructor(props) {
        super(props);
        this.state = { error: null };
      }
      static getDerivedStateFromError(error) {
        return { error: error };
      }
      componentDidCatch(error) {
        fail(error, true);
      }
      render() {
        if (this.state.error) {
          return React.createElement(
            'div',
            { style: { color: 'red', padding: '20px', fontFamily: 'monospace' } },
            'Error: ' + describe(this.state.error)
          );
        }
        return this.props.children;
      }
    }
    return SandboxErrorBoundary;
  }

  try {
    var wrapped = 'function __sandboxModule() {\\n' + PRELUDE + '\\n{\\n' + SOURCE + '\\n'
      + 'return (typeof exports !== "undefined" && exports.default)'
      + ' || (typeof Component !== "undefined" ? Component : undefined)'
      + ' || (typeof App !== "undefined" ? App : undefined);\\n}\\n}';
    var compiled = Babel.transform(wrapped, { presets: ['react'] }).code;
    var Root = new Function('React', 'ReactDOM', compiled + '\\nreturn __sandboxModule();')(React, ReactDOM);
    if (!Root) {
      throw new Error('No component found: expected a default export, Component or App');
    }
    var ErrorBoundary = createErrorBoundary();
    var root = ReactDOM.createRoot(rootNode);
    mounted = true;
    ReactDOM.flushSync(function () {
      root.render(React.createElement(ErrorBoundary, null, React.createElement(Root)));
    });
    settle({ type: 'ready' });
    if (STANDALONE && window.__fixImages) {
      setTimeout(window.__fixImages, 50);
      setTimeout(window.__fixImages, 200);
      setTimeout(window.__fixImages, 500);
    }
  } catch (error) {
    fail(error, false);
  }
})();
"""

IMAGE_FIX_SCRIPT = """
window.__fixImages = function () {
  document.querySelectorAll('img[src^="http"]').forEach(function (img) {
    if (!img.hasAttribute('referrerpolicy')) {
      img.setAttribute('referrerpolicy', 'no-referrer-when-downgrade');
    }
    var parent = img.parentElement;
    if (parent && parent.classList.contains('relative') && img.classList.contains('absolute')) {
      if (parent.offsetHeight < 200) {
        var flexible = window.getComputedStyle(parent).flex === '1 1 0%' || parent.classList.contains('flex-1');
        parent.style.minHeight = flexible ? '400px' : '300px';
      }
    }
  });
};
"""


def _escape_script(text: str) -> str:
    """Keep embedded text from closing the surrounding <script> element"""
    return text.replace("</", "<\\/").replace("<!--", "<\\!--")


def _js_literal(value) -> str:
    return _escape_script(json.dumps(value, ensure_ascii=False))


@dataclass(frozen=True)
class RuntimeAsset:
    """One runtime script, referenced by URL or inlined"""
    name: str
    url: str
    content: Optional[str] = None

    def tag(self) -> str:
        if self.content is not None:
            return f"<script data-runtime=\"{self.name}\">\n{_escape_script(self.content)}\n</script>"
        return f"<script crossorigin data-runtime=\"{self.name}\" src=\"{self.url}\"></script>"


@dataclass(frozen=True)
class RuntimeBundle:
    """Ordered runtimes loaded ahead of the generated code"""
    assets: tuple

    @property
    def inlined(self) -> bool:
        return all(asset.content is not None for asset in self.assets)

    def script_tags(self) -> str:
        return "\n  ".join(asset.tag() for asset in self.assets)


def default_runtime_bundle() -> RuntimeBundle:
    """CDN-referenced runtimes in load order"""
    return RuntimeBundle(assets=(
        RuntimeAsset("tailwind", settings.TAILWIND_RUNTIME_URL),
        RuntimeAsset("react", settings.REACT_RUNTIME_URL),
        RuntimeAsset("react-dom", settings.REACT_DOM_RUNTIME_URL),
        RuntimeAsset("babel", settings.BABEL_RUNTIME_URL),
        RuntimeAsset("lucide", settings.ICON_RUNTIME_URL),
    ))


_inline_cache: Dict[str, str] = {}
_inline_lock = asyncio.Lock()


async def load_runtime_bundle(
    inline: Optional[bool] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> RuntimeBundle:
    """
    Resolve the runtime bundle.

    Args:
        inline: Download and inline the runtimes (defaults to SANDBOX_INLINE_RUNTIMES)
        transport: Optional httpx transport

    Returns:
        A bundle; falls back to URL references for any runtime that fails to download
    """
    bundle = default_runtime_bundle()
    if not (settings.SANDBOX_INLINE_RUNTIMES if inline is None else inline):
        return bundle

    async with _inline_lock:
        missing = [asset for asset in bundle.assets if asset.url not in _inline_cache]
        if missing:
            async with httpx.AsyncClient(timeout=30.0, follow_redirects=True, transport=transport) as client:
                for asset in missing:
                    try:
                        response = await client.get(asset.url)
                        response.raise_for_status()
                        _inline_cache[asset.url] = response.text
                        logger.info("Runtime downloaded", runtime=asset.name, size=len(response.text))
                    except httpx.HTTPError as e:
                        logger.warning("Runtime download failed, keeping CDN reference", runtime=asset.name, error=str(e))

    return RuntimeBundle(assets=tuple(
        replace(asset, content=_inline_cache.get(asset.url)) for asset in bundle.assets
    ))


def build_icon_shim(icon_names: Optional[List[str]] = None) -> str:
    """JS that exposes each icon name on window.LucideIcons as a component"""
    return ICON_SHIM.replace("__ICON_NAMES__", _js_literal(list(icon_names or ICON_NAMES)))


def _build_document(code: str, runtime: Optional[RuntimeBundle], standalone: bool, title: str) -> str:
    runtime = runtime or default_runtime_bundle()
    sanitized = sanitize_code(code)

    mount = (
        MOUNT_SCRIPT
        .replace("__SOURCE__", _js_literal(sanitized))
        .replace("__PRELUDE__", _js_literal(HOOK_PRELUDE))
        .replace("__STANDALONE__", "true" if standalone else "false")
    )
    styles = BASE_STYLES + (FULL_PAGE_STYLES if standalone else "")
    referrer = '\n  <meta name="referrer" content="no-referrer-when-downgrade">' if standalone else ""
    image_fix = f"\n  <script>{IMAGE_FIX_SCRIPT}</script>" if standalone else ""

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">{referrer}
  <title>{title}</title>
  {runtime.script_tags()}
  <style>{styles}
  </style>{TAILWIND_CONFIG}
</head>
<body>
  <div id="root"></div>{image_fix}
  <script>{build_icon_shim()}</script>
  <script>{mount}</script>
</body>
</html>
"""


def build_sandbox_document(code: str, runtime: Optional[RuntimeBundle] = None) -> str:
    """Document for the sandboxed preview; reports ready/error to window.parent."""
    return _build_document(code, runtime, standalone=False, title="Preview")


def build_full_page_document(code: str, runtime: Optional[RuntimeBundle] = None) -> str:
    """Standalone document for opening the component in its own tab."""
    return _build_document(code, runtime, standalone=True, title="Generated UI Preview")
