"""SuiMeet checkpoint indexer.

Tails Sui checkpoints, extracts meeting rooms, participants and metadata
from the SuiMeet Move package, and keeps a relational projection of them
up to date.
"""

__version__ = "0.1.0"
