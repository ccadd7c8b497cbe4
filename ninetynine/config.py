import os


class Config:
    # Transport endpoint selection
    WS_MODE = os.environ.get('WS_MODE', 'local')
    WS_URL_LOCAL = os.environ.get('WS_URL_LOCAL') or 'http://localhost:8080'
    WS_URL_NGROK = os.environ.get('WS_URL_NGROK', '')
    WS_URL_PRODUCTION = os.environ.get('WS_URL_PRODUCTION', '')
    # STOMP session (seconds unless noted)
    RECONNECT_DELAY_SEC = float(os.environ.get('RECONNECT_DELAY_SEC', '5'))
    MAX_RECONNECT_DELAY_SEC = float(os.environ.get('MAX_RECONNECT_DELAY_SEC', '30'))
    HANDSHAKE_TIMEOUT_SEC = float(os.environ.get('HANDSHAKE_TIMEOUT_SEC', '10'))
    # Heart-beat interval in ms. 0 disables.
    HEARTBEAT_MS = int(os.environ.get('HEARTBEAT_MS', '10000'))
    # Local timers
    COUNTDOWN_START = int(os.environ.get('COUNTDOWN_START', '5'))
    COUNTDOWN_INTERVAL_SEC = float(os.environ.get('COUNTDOWN_INTERVAL_SEC', '1'))
    AUTO_GUESS_DELAY_SEC = float(os.environ.get('AUTO_GUESS_DELAY_SEC', '3'))
    JOIN_TIMEOUT_SEC = float(os.environ.get('JOIN_TIMEOUT_SEC', '3'))
    # Finished screen returns everyone to the lobby after this long. 0 disables.
    FINISHED_RESTART_SEC = float(os.environ.get('FINISHED_RESTART_SEC', '20'))
    PLAYER_NAME_MAX_LENGTH = int(os.environ.get('PLAYER_NAME_MAX_LENGTH', '12'))

    @classmethod
    def ws_url(cls) -> str:
        """Resolve the WebSocket endpoint for the configured mode."""
        if cls.WS_MODE == 'local':
            base = cls.WS_URL_LOCAL
        elif cls.WS_MODE == 'production':
            base = cls.WS_URL_PRODUCTION
        else:
            base = cls.WS_URL_NGROK
        if base.startswith('https://'):
            base = 'wss://' + base[len('https://'):]
        elif base.startswith('http://'):
            base = 'ws://' + base[len('http://'):]
        return base.rstrip('/') + '/ws'
