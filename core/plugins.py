import importlib.util
import logging
from pathlib import Path
from typing import List, Union

from .dispatcher import CommandDispatcher

log = logging.getLogger(__name__)


def load_plugins(dispatcher: CommandDispatcher, directory: Union[str, Path]) -> List[str]:
    """Import each plugin file and let it register its commands."""

    root = Path(directory)
    if not root.is_dir():
        log.info("plugin directory %s not found, no plugins loaded", root)
        return []
    loaded: List[str] = []
    for path in sorted(root.glob("*.py")):
        if path.name.startswith("_"):
            continue
        name = f"sessionbot_plugins.{path.stem}"
        try:
            spec = importlib.util.spec_from_file_location(name, path)
            if spec is None or spec.loader is None:
                raise ImportError(f"cannot load {path}")
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)
            setup = getattr(module, "setup", None)
            if not callable(setup):
                raise AttributeError(f"{path.name} has no setup(dispatcher)")
            setup(dispatcher)
        except Exception as exc:
            log.error("plugin %s failed to load: %s", path.name, exc)
            continue
        loaded.append(path.stem)
    log.info("plugins synced: %s", ", ".join(loaded) or "none")
    return loaded
