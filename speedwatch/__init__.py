"""Average-speed enforcement simulation.

Vehicles drive a directed road graph past enforcement checkpoints; the
checkpoint network flags every vehicle that covers a timed connection faster
than its speed limit allows. A remote mirror repeats the decision for
externally reported crossings.
"""

from speedwatch.config import Config
from speedwatch.utils.logger import Logger

__all__ = ['Config', 'Logger']
