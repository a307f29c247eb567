from lumen.app.proactive import ProactiveAgent
from lumen.app.runtime import AppRuntime

__all__ = ["AppRuntime", "ProactiveAgent"]
