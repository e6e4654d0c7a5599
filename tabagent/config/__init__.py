from .settings import AgentSettings, get_settings

__all__ = ["AgentSettings", "get_settings"]
