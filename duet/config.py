import os

# --- CONFIGURATION ---
HOST = os.getenv("DUET_HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "5000"))

# Two-party rooms; host/guest assignment depends on it.
ROOM_CAPACITY = 2

# Frames waiting for a slow reader before new ones are dropped.
OUTBOUND_QUEUE_SIZE = int(os.getenv("DUET_OUTBOUND_QUEUE_SIZE", "256"))

CORS_ORIGINS = [o.strip() for o in os.getenv("DUET_CORS_ORIGINS", "*").split(",") if o.strip()]

LOG_LEVEL = os.getenv("DUET_LOG_LEVEL", "INFO")
