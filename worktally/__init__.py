"""WorkTally：按分类计时、暂停与周/月统计。"""

from .cli import main

__version__ = "0.1.0"

__all__ = ["main", "__version__"]
