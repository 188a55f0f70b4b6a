from .config import ScribeConfig, load_config
from .updates import Subscription, UpdateChannel

__all__ = ["ScribeConfig", "load_config", "Subscription", "UpdateChannel"]
