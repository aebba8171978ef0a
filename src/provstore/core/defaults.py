"""Centralized tunable defaults for provstore.

All constants in one place. Values read from the environment here are the
ones that scripts may want to override without building a full config.
"""

from __future__ import annotations

import os

# Chain timing
EPOCH_SECONDS = 30
EPOCHS_PER_DAY = 2880
DEAL_START_OFFSET_EPOCHS = EPOCHS_PER_DAY  # deals start ~1 day after proposal

# Units
GIB = 1 << 30
TIB = 1 << 40
ATTO_PER_FIL = 10**18

# Archive building
DEFAULT_CHUNK_SIZE = int(os.environ.get("PROVSTORE_CHUNK_SIZE", str(1 << 20)))  # 1 MiB
DEFAULT_FANOUT = 174  # links per DAG node
MAX_BLOCK_SIZE = 1 << 21  # 2 MiB, provider block limit

# Piece commitment
MIN_PIECE_SIZE = 128
MAX_PIECE_SIZE = 64 * GIB
PIECE_SCHEME_VERSION = 1

# Deal lifecycle
DEFAULT_DEAL_DURATION_EPOCHS = 518_400  # ~180 days
MIN_DEAL_DURATION_EPOCHS = 518_400
MAX_DEAL_DURATION_EPOCHS = 1_555_200  # ~540 days
DEFAULT_REPLICATION_FACTOR = 3
INCLUSION_TIMEOUT_SECONDS = 600.0
POLL_BASE_DELAY_SECONDS = 30.0
POLL_MAX_DELAY_SECONDS = 1800.0
MAX_STATUS_POLLS = 48
VERIFY_INTERVAL_SECONDS = 7 * 24 * 3600.0  # weekly
MAX_CONSECUTIVE_VERIFY_FAILURES = 3
EXPIRY_WINDOW_SECONDS = 7 * 24 * 3600.0
RENEWAL_LOOKAHEAD_SECONDS = 30 * 24 * 3600.0

# Network calls
CALL_TIMEOUT_SECONDS = 30.0
RETRY_ATTEMPTS = 3
RETRY_BASE_DELAY_SECONDS = 5.0
RETRY_MAX_DELAY_SECONDS = 60.0

# Possession challenges
CHALLENGE_COUNT = 8

# Chunking strategy
CHUNKING_THRESHOLD = 32 * GIB
