"""
Constants used across the rating, matchmaking and session lifecycle code.
"""

import os

# Rating constants
INITIAL_ELO = 1500
K = 40  # K-factor for group ratings
STREAK_BONUS_PER_WIN = 0.04  # 4% per consecutive win
MAX_STREAK_BONUS_WINS = 3  # Bonus stops growing after 3 wins (12%)

# Team balancing enumerates C(n, n/2) splits, so match size is capped
MIN_MATCH_SIZE = 2
MAX_MATCH_SIZE = 16

# Host liveness: sessions whose host has been silent this long are force-ended
HOST_INACTIVITY_MINUTES = int(os.getenv("HOST_INACTIVITY_MINUTES", "60"))

# How often the reaper sweeps for stale sessions (seconds)
REAPER_INTERVAL_SECONDS = int(os.getenv("REAPER_INTERVAL_SECONDS", "900"))  # 15 minutes

# Keep-alive cadence for event connections (seconds)
WEBSOCKET_PING_SECONDS = int(os.getenv("WEBSOCKET_PING_SECONDS", "30"))

# Invite codes are random bytes rendered as upper-case hex
INVITE_CODE_BYTES = 8
