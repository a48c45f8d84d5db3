from riglink.config import Config
from riglink.session import RigSession

__version__ = "1.0.0"

__all__ = ["Config", "RigSession", "__version__"]
