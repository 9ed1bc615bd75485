# ===== ROOM SETTINGS =====
# Name of the simulated room and the seed used to generate its terrain.
# The same seed always produces the same walls, sources and controller.
ROOM_NAME = "W1N1"
ROOM_SEED = 7

# ===== SIMULATION LENGTH =====
# How many ticks run.py plays out. A controller level-up happens on the
# ticks listed in LEVEL_SCHEDULE (tick → new level).
TICKS = 3000
LEVEL_SCHEDULE = {
    0: 2,
    400: 3,
    900: 4,
    1500: 5,
    2100: 6,
}

# ===== ECONOMY =====
# Builders assigned to the room and how much construction progress each one
# contributes per tick. Stored energy and trend are held constant; set the
# trend negative and stored below 20000 to watch emergency mode kick in.
BUILDER_COUNT = 4
BUILD_PER_BUILDER = 25
ENERGY_STORED = 60000
NET_ENERGY_TREND = 5.0
ENERGY_FILL = 0.8

# ===== THREAT =====
# 0–100. Above 50 towers and ramparts get a priority bonus.
THREAT_SCORE = 0.0

# ===== OUTPUT =====
# STATE_FILE keeps the planner's repository between runs (None = in memory).
# RENDER_LAYOUT writes a PNG of the final layout (requires matplotlib).
STATE_FILE = None
RENDER_LAYOUT = True
RENDER_PATH = "charts/layout.png"

# Log a status line every N ticks.
STATUS_EVERY = 250
