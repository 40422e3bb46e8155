"""Top-level package for voxtray."""

__version__ = "0.1.0"

from . import config, modes, orchestrator, postprocess, service, storage, transcriber

__all__ = ["config", "modes", "orchestrator", "postprocess", "service", "storage", "transcriber"]
