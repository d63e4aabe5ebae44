"""
Code Sanitizer - turn raw model output into code the sandbox can execute.

The model's output format is not guaranteed, so the cleanup is an ordered
pipeline of small regex-based string transforms. Each step is pure and
idempotent, and the pipeline never raises: the worst case is code without an
`exports.default`, which surfaces later as a render error.

Known limitation: the patterns are textual, so `import`/`export` inside
string literals or comments at the start of a line can be rewritten too.
"""
import re
from typing import Callable, List, Optional, Tuple

ICON_GLOBAL = "window.LucideIcons"
FALLBACK_ICON = "Sparkles"
FRAMEWORK_MODULE = "react"
ICON_MODULE = "lucide-react"

# --- fences / prose ---------------------------------------------------------

FENCED_BLOCK = re.compile(r"```[\w+-]*[ \t]*\r?\n([\s\S]*?)```")
OPENING_FENCE = re.compile(r"^```[\w+-]*[ \t]*\r?\n?")
CLOSING_FENCE = re.compile(r"\r?\n?```\s*$")
CODE_START = re.compile(
    r"^[ \t]*(?:import\s|export\s|const\s|let\s|var\s|class\s|async\s+function\s|function\s|//|/\*)",
    re.MULTILINE,
)
# Code that starts mid-line, after prose on the same line
INLINE_CODE_START = re.compile(
    r"\b(?:import\s+(?:[\w$]+\s*(?:,|from\b)|\{|\*\s*as\b|['\"])"
    r"|export\s+(?:default|const|function|class)\b"
    r"|(?:const|let|var)\s+[\w$]+\s*="
    r"|(?:async\s+)?function\s+[\w$]+\s*\("
    r"|class\s+[\w$]+\s*(?:extends\b|\{))"
    r"|(?<![:\w/])//|/\*"
)

# --- imports ----------------------------------------------------------------

_NAMED = r"\{[^}]*\}"
_NAMESPACE = r"\*\s*as\s+[\w$]+"
IMPORT_CLAUSE = (
    rf"(?:[\w$]+(?:\s*,\s*(?:{_NAMED}|{_NAMESPACE}))?|{_NAMED}|{_NAMESPACE})"
)


def _import_from(module_pattern: str) -> re.Pattern:
    return re.compile(
        rf"^[ \t]*import\s+(?:type\s+)?{IMPORT_CLAUSE}\s*from\s*['\"]{module_pattern}['\"][ \t]*;?[ \t]*(?:\r?\n)?",
        re.MULTILINE,
    )


FRAMEWORK_IMPORT = _import_from(re.escape(FRAMEWORK_MODULE))
ICON_IMPORT = re.compile(
    rf"^[ \t]*import\s*\{{([^}}]*)\}}\s*from\s*['\"]{re.escape(ICON_MODULE)}['\"][ \t]*;?",
    re.MULTILINE,
)
ICON_NAMESPACE_IMPORT = re.compile(
    rf"^[ \t]*import\s*\*\s*as\s+([\w$]+)\s*from\s*['\"]{re.escape(ICON_MODULE)}['\"][ \t]*;?",
    re.MULTILINE,
)
ANY_IMPORT = _import_from(r"[^'\"]+")
SIDE_EFFECT_IMPORT = re.compile(r"^[ \t]*import\s*['\"][^'\"]+['\"][ \t]*;?[ \t]*(?:\r?\n)?", re.MULTILINE)

# --- exports ----------------------------------------------------------------

DEFAULT_DECLARATION_EXPORT = re.compile(
    r"export\s+default\s+((?:async\s+)?function\b\s*\*?\s*|class\s+)([\w$]+)"
)
DEFAULT_IDENTIFIER_EXPORT = re.compile(r"^([ \t]*)export\s+default\s+([\w$]+)\s*;?[ \t]*$", re.MULTILINE)
DEFAULT_EXPRESSION_EXPORT = re.compile(r"\bexport\s+default\s+")
NAMED_DECLARATION_EXPORT = re.compile(
    r"^([ \t]*)export\s+((?:async\s+)?function\b|class\b|const\b|let\b|var\b)", re.MULTILINE
)
EXPORT_LIST = re.compile(r"^[ \t]*export\s*\{[^}]*\}(?:\s*from\s*['\"][^'\"]+['\"])?[ \t]*;?[ \t]*(?:\r?\n)?", re.MULTILINE)

EXPORTS_CONTAINER = "const exports = {};"
EXPORTS_BINDING = re.compile(r"\b(?:const|let|var)\s+exports\s*=")
DEFAULT_ASSIGNMENT = re.compile(r"\bexports\.default\s*=")
TOP_LEVEL_COMPONENT = re.compile(
    r"^(?:function\s+([\w$]+)\s*\("
    r"|(?:const|let|var)\s+([\w$]+)\s*=\s*(?:async\s+)?(?:\([^)]*\)|[\w$]+)\s*=>"
    r"|(?:const|let|var)\s+([\w$]+)\s*=\s*function\b)",
    re.MULTILINE,
)


def strip_whitespace(code: str) -> str:
    return code.strip()


def extract_fenced_code(code: str) -> str:
    """Keep only the first fenced block; otherwise peel a dangling fence pair."""
    match = FENCED_BLOCK.search(code)
    if match:
        return match.group(1).strip()

    if code.startswith("```"):
        code = OPENING_FENCE.sub("", code, count=1)
        code = CLOSING_FENCE.sub("", code, count=1)

    return code.strip()


def drop_leading_prose(code: str) -> str:
    """Discard anything before the first code token, at a line start or mid-line."""
    starts = [match.start() for match in (CODE_START.search(code), INLINE_CODE_START.search(code)) if match]
    if starts and min(starts) > 0:
        return code[min(starts):].lstrip()
    return code


def strip_framework_imports(code: str) -> str:
    """The sandbox exposes React as a global, so its imports go."""
    return FRAMEWORK_IMPORT.sub("", code)


def _icon_bindings(match: re.Match) -> str:
    bindings = []
    for specifier in match.group(1).split(","):
        specifier = specifier.strip()
        if not specifier:
            continue
        source, _, local = (part.strip() for part in specifier.partition(" as "))
        local = local or source
        bindings.append(f"const {local} = {ICON_GLOBAL}['{source}'] || {ICON_GLOBAL}.{FALLBACK_ICON};")
    return "\n".join(bindings)


def rewrite_icon_imports(code: str) -> str:
    """Icon imports become lookups into the sandbox's icon table."""
    code = ICON_IMPORT.sub(_icon_bindings, code)
    return ICON_NAMESPACE_IMPORT.sub(rf"const \1 = {ICON_GLOBAL};", code)


def strip_remaining_imports(code: str) -> str:
    code = ANY_IMPORT.sub("", code)
    return SIDE_EFFECT_IMPORT.sub("", code)


def normalize_exports(code: str) -> str:
    """Rewrite default exports into `exports.default` and drop other export syntax."""
    match = DEFAULT_DECLARATION_EXPORT.search(code)
    if match:
        name = match.group(2)
        code = code[:match.start()] + match.group(1) + name + code[match.end():]
        code = code.rstrip() + f"\nexports.default = {name};"

    code = DEFAULT_IDENTIFIER_EXPORT.sub(r"\1exports.default = \2;", code)
    code = DEFAULT_EXPRESSION_EXPORT.sub("exports.default = ", code)
    code = NAMED_DECLARATION_EXPORT.sub(r"\1\2", code)
    return EXPORT_LIST.sub("", code)


def ensure_exports_container(code: str) -> str:
    if EXPORTS_BINDING.search(code):
        return code
    return f"{EXPORTS_CONTAINER}\n{code}"


def infer_default_export(code: str) -> str:
    """Register the first top-level component when nothing was exported."""
    if DEFAULT_ASSIGNMENT.search(code):
        return code

    for match in TOP_LEVEL_COMPONENT.finditer(code):
        name = next(group for group in match.groups() if group)
        if name != "exports":
            return code.rstrip() + f"\nexports.default = {name};"

    return code


Step = Tuple[str, Callable[[str], str]]

RESPONSE_STEPS: List[Step] = [
    ("strip_whitespace", strip_whitespace),
    ("extract_fenced_code", extract_fenced_code),
    ("drop_leading_prose", drop_leading_prose),
]

MODULE_STEPS: List[Step] = [
    ("strip_framework_imports", strip_framework_imports),
    ("rewrite_icon_imports", rewrite_icon_imports),
    ("strip_remaining_imports", strip_remaining_imports),
    ("normalize_exports", normalize_exports),
    ("ensure_exports_container", ensure_exports_container),
    ("infer_default_export", infer_default_export),
]


class CodeSanitizer:
    """Ordered pipeline of string transforms"""

    def __init__(self, steps: Optional[List[Step]] = None):
        self.steps = list(steps) if steps is not None else RESPONSE_STEPS + MODULE_STEPS

    def sanitize(self, text: Optional[str]) -> str:
        code = text or ""
        for _, step in self.steps:
            code = step(code)
        return code.strip()


_default_sanitizer = CodeSanitizer()
_response_cleaner = CodeSanitizer(RESPONSE_STEPS)


def sanitize_code(text: Optional[str]) -> str:
    """Full pipeline: raw model text to sandbox-executable code."""
    return _default_sanitizer.sanitize(text)


def clean_response(text: Optional[str]) -> str:
    """Only remove fences and leading prose, keeping imports and exports intact."""
    return _response_cleaner.sanitize(text)
