"""
Omnia relay: streaming chat relay for Claude and Gemini.

Consumes the provider's chunked event stream, reassembles text, thinking and
tool-invocation blocks in real time, executes the invoked tools once the
stream closes and re-emits one provider-agnostic NDJSON event stream.
"""

from pathlib import Path
import tomllib
from importlib.metadata import version, PackageNotFoundError

def _resolve_version() -> str:
    """Resolve the relay version.

    Priority:
    1) Local source checkout version from pyproject.toml (if present)
    2) Installed package metadata (omnia-relay)
    3) Safe fallback
    """
    root = Path(__file__).resolve().parent.parent
    pyproject = root / "pyproject.toml"
    if pyproject.exists():
        try:
            data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError):
            data = {}
        ver = data.get("project", {}).get("version")
        if isinstance(ver, str) and ver.strip():
            return ver.strip()

    try:
        return version("omnia-relay")
    except PackageNotFoundError:
        return "0.0.0"


__version__ = _resolve_version()
