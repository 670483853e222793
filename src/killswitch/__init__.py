"""killswitch: dead man's switch for AI processes.

Monitor a process, kill it on a trigger, sign a death receipt.
"""

__version__ = "1.1.0"
