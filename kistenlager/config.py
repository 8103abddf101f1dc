"""Shared configuration for the box inventory.

This module centralizes constants used by the domain functions, the sync
engine and the web layer.  Adjust the values here (or the matching
environment variables) to match the physical storage and all modules will
pick up the changes automatically.
"""

from __future__ import annotations

import os

# Box pool -------------------------------------------------------------------

# Number of boxes in the pool.  Boxes are numbered ``1..TOTAL_BOXES`` and are
# never created or destroyed after the first start.
TOTAL_BOXES = int(os.getenv("KISTENLAGER_TOTAL_BOXES", "150"))

# A dated box becomes stale when its date lies more than this many days in
# the past.
STALE_DAYS_THRESHOLD = int(os.getenv("KISTENLAGER_STALE_DAYS", "30"))

# Remote document ------------------------------------------------------------

# Identifier of the singleton row holding the whole application state.
DOCUMENT_ID = int(os.getenv("KISTENLAGER_DOCUMENT_ID", "1"))

# Quiet period before local changes are written to the remote store.
PERSIST_DEBOUNCE_SECONDS = float(os.getenv("KISTENLAGER_PERSIST_DEBOUNCE", "1.0"))

# Window after the initial load during which one remote notification is
# treated as the echo of our own bootstrap and ignored.
ECHO_GUARD_SECONDS = float(os.getenv("KISTENLAGER_ECHO_GUARD", "1.0"))

# Interval used by stores without push notifications to look for changes.
POLL_INTERVAL_SECONDS = float(os.getenv("KISTENLAGER_POLL_INTERVAL", "2.0"))

# ``sql`` talks to the database directly, ``http`` to another server's
# ``/storage`` endpoints at ``REMOTE_STORE_URL``.
STORE_BACKEND = os.getenv("KISTENLAGER_STORE", "sql").strip().lower()
REMOTE_STORE_URL = os.getenv("KISTENLAGER_REMOTE_URL", "").strip()

# Starter vocabularies -------------------------------------------------------

DEFAULT_VARIETIES = [
    "Allians",
    "Antonia",
    "Ditta",
    "Gunda",
    "Hermes",
    "Laura",
    "Otolia",
    "Princess",
    "Quarta",
]
DEFAULT_SORTINGS = ["<35", "35-65", ">65", "Feldfallend", "Futterkartoffeln", "Pflanzgut"]
DEFAULT_FILL_LEVELS = ["100%", "75%", "50%", "25%"]

# Summary --------------------------------------------------------------------

# Weight of one box per fill level.  Unknown or missing levels count as a
# full box.
FILL_LEVEL_WEIGHTS: dict[str, float] = {
    "100%": 1.0,
    "75%": 0.75,
    "50%": 0.5,
    "25%": 0.25,
}
DEFAULT_FILL_LEVEL_WEIGHT = 1.0

NO_VARIETY_LABEL = "uncategorized"
NO_SORTING_LABEL = "uncategorized"
NO_FILL_LEVEL_LABEL = "no fill level"

# Display colors -------------------------------------------------------------

# Color tokens for box states.  Front-ends map them to their own palette.
STATUS_COLORS = {
    "default": "var(--box-default)",
    "stale": "var(--box-stale)",
    "updated": "var(--box-updated)",
}

VARIETY_COLORS = {
    # yellow
    "Princess": "#fdd835",
    "Allians": "#fbc02d",
    "Ditta": "#f9a825",
    "Gunda": "#f57f17",
    # green
    "Antonia": "#9ccc65",
    "Otolia": "#7cb342",
    # red
    "Laura": "#ef5350",
    "Quarta": "#d32f2f",
    # blue
    "Hermes": "#42a5f5",
}
