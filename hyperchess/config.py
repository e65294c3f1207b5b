import os


class Config:
    # Registry limits
    MAX_CONCURRENT_SESSIONS = int(os.environ.get('MAX_CONCURRENT_SESSIONS', '1000'))
    MAX_SPECTATORS_PER_SESSION = int(os.environ.get('MAX_SPECTATORS_PER_SESSION', '50'))

    # Clock: "continuous" ticks in the background, "move_boundary" only debits on moves
    INITIAL_CLOCK_MS = int(os.environ.get('INITIAL_CLOCK_MS', str(5 * 60 * 1000)))
    CLOCK_MODE = os.environ.get('CLOCK_MODE', 'continuous')
    CLOCK_TICK_INTERVAL = float(os.environ.get('CLOCK_TICK_INTERVAL', '1.0'))

    # Disconnect handling: "grace" or "strict"
    DISCONNECT_POLICY = os.environ.get('DISCONNECT_POLICY', 'grace')
    RECONNECT_GRACE_PERIOD = float(os.environ.get('RECONNECT_GRACE_PERIOD', '30'))

    # Capture ledger: "incremental" or "material_diff"
    CAPTURE_TRACKING = os.environ.get('CAPTURE_TRACKING', 'incremental')

    # Garbage collection thresholds (milliseconds) and sweep interval (seconds)
    COMPLETED_SESSION_TTL = int(os.environ.get('COMPLETED_SESSION_TTL', str(1 * 60 * 60 * 1000)))
    INACTIVE_SESSION_TTL = int(os.environ.get('INACTIVE_SESSION_TTL', str(6 * 60 * 60 * 1000)))
    MAX_SESSION_TTL = int(os.environ.get('MAX_SESSION_TTL', str(24 * 60 * 60 * 1000)))
    GC_INTERVAL = float(os.environ.get('GC_INTERVAL', str(60 * 60)))

    # Server
    HOST = os.environ.get('HOST', '0.0.0.0')
    PORT = int(os.environ.get('PORT', '8000'))
    LOG_DIR = os.environ.get('LOG_DIR', 'logs')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
