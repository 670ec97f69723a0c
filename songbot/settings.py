from __future__ import annotations
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import yaml

# ---- Env ----
TWITCH_CLIENT_ID_ENV = os.getenv('TWITCH_CLIENT_ID')
TWITCH_CLIENT_SECRET_ENV = os.getenv('TWITCH_CLIENT_SECRET')
BOT_USER_ID_ENV = os.getenv('BOT_USER_ID') or os.getenv('TWITCH_BOT_USER_ID')
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
# Song queue persisted as a JSON array next to the working directory by default.
SONG_QUEUE_PATH = Path(os.getenv('SONG_QUEUE_PATH', 'song_queue.json'))
QUEUE_TICK_SECONDS = float(os.getenv('QUEUE_TICK_SECONDS', '30'))
OPENAI_MODEL = os.getenv('OPENAI_MODEL', 'gpt-4o-mini')
MESSAGES_PATH = Path(os.getenv("BOT_MESSAGES_PATH", "messages.yml"))

COMMANDS_FILE = os.getenv('COMMANDS_FILE', 'commands.yml')
DEFAULT_COMMANDS = {
    'prefix': '!',
    'request': ['songrequest', 'sr', 'request'],
    'queue': ['queue', 'q'],
    'clear': ['queueclear', 'clearqueue'],
    'remove': ['queueremove', 'qremove'],
    'current': ['spotify', 'song', 'nowplaying'],
    'ping': ['ping'],
    'help': ['commands'],
}

DEFAULT_MESSAGES = {
    'request_added': '🔥🐷 Added "{song}" to the queue for {user}!',
    'request_usage': 'Usage: {prefix}songrequest [song name]',
    'request_invalid': 'Sorry, {user}, please provide a valid song name.',
    'request_duplicate': 'Sorry, {user}, "{song}" is already in the queue.',
    'queue_empty': 'The song queue is currently empty! 🎵',
    'queue_list': 'Current Queue: {entries}',
    'queue_entry': '{position}. "{song}" requested by {user}',
    'queue_cleared': '🔥🐷 Queue cleared by {user}!',
    'remove_usage': 'Usage: {prefix}queueremove [position number]',
    'remove_invalid': 'Invalid queue position. Queue has {size} items.',
    'remove_success': '🔥🐷 Removed "{song}" requested by {requester}',
    'permission_denied': 'Only the broadcaster or moderators can {action} the queue',
    'now_playing': '🎶 Now playing: {title} by {artist}',
    'nothing_playing': 'Nothing is playing on Spotify right now.',
    'pong': 'Pong! 🔥🐷',
    'commands_help': 'Available commands: {commands}',
    'failed': 'Failed: {error}',
    'song_queued': '🎵 Now adding "{title}" by {artist} requested by {user} to Spotify queue!',
    'song_failed': '❌ Could not add "{song}" to Spotify queue. Please try again later.',
    'song_not_found': '❌ Could not find "{song}" right now, it will be retried later.',
    'song_rejected': '❌ {message}',
    'bot_joined': 'Song queue bot connected to chat.',
    'bot_left': 'Song queue bot disconnected from chat.',
}


def load_commands(path: str) -> Dict[str, List[str]]:
    cfg = DEFAULT_COMMANDS.copy()
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
            cfg.update(data)
    except FileNotFoundError:
        pass
    return {k: v if isinstance(v, list) else [v] for k, v in cfg.items()}


def load_messages(path: Path) -> Dict[str, str]:
    cfg: Dict[str, str] = DEFAULT_MESSAGES.copy()
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
            cfg.update(data)
    except FileNotFoundError:
        pass
    return cfg


def _format_token(token: Optional[str]) -> Optional[str]:
    return token.removeprefix('oauth:') if token else token


@dataclass
class BotSettings:
    token: Optional[str]
    refresh_token: Optional[str]
    client_id: Optional[str]
    client_secret: Optional[str]
    bot_user_id: Optional[str]
    channel: Optional[str]
    channel_id: Optional[str]
    spotify_client_id: Optional[str]
    spotify_client_secret: Optional[str]
    spotify_refresh_token: Optional[str]
    openai_api_key: Optional[str]
    openai_model: str = OPENAI_MODEL
    queue_path: Path = SONG_QUEUE_PATH
    tick_interval: float = QUEUE_TICK_SECONDS
    scopes: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> 'BotSettings':
        """Build settings from environment variables.

        Missing credentials do not raise; they are listed in ``error`` so the
        caller can decide whether to idle or exit.
        """
        env = os.environ if env is None else env
        token = _format_token(env.get('TWITCH_BOT_TOKEN') or env.get('TWITCH_OAUTH_TOKEN'))
        refresh = env.get('TWITCH_BOT_REFRESH_TOKEN')
        client_id = env.get('TWITCH_CLIENT_ID') or TWITCH_CLIENT_ID_ENV
        client_secret = env.get('TWITCH_CLIENT_SECRET') or TWITCH_CLIENT_SECRET_ENV
        bot_user_id = env.get('BOT_USER_ID') or env.get('TWITCH_BOT_USER_ID') or BOT_USER_ID_ENV
        channel = (env.get('TWITCH_CHANNEL') or '').lower() or None
        openai_key = (env.get('OPENAI_API_KEY') or '').strip() or None
        raw_scopes = env.get('TWITCH_BOT_SCOPES') or ''
        scopes = [scope for scope in raw_scopes.split() if scope]

        required = {
            'access_token': token,
            'refresh_token': refresh,
            'client_id': client_id,
            'client_secret': client_secret,
            'bot_user_id': bot_user_id,
            'channel': channel,
            'channel_id': env.get('TWITCH_CHANNEL_ID'),
            'spotify_client_id': env.get('SPOTIFY_CLIENT_ID'),
            'spotify_client_secret': env.get('SPOTIFY_CLIENT_SECRET'),
            'spotify_refresh_token': env.get('SPOTIFY_REFRESH_TOKEN'),
            'openai_api_key': openai_key,
        }
        missing = [name for name, value in required.items() if not value]
        error = 'Missing bot credentials: ' + ', '.join(missing) if missing else None

        return cls(
            token=token,
            refresh_token=refresh,
            client_id=client_id,
            client_secret=client_secret,
            bot_user_id=bot_user_id,
            channel=channel,
            channel_id=env.get('TWITCH_CHANNEL_ID'),
            spotify_client_id=env.get('SPOTIFY_CLIENT_ID'),
            spotify_client_secret=env.get('SPOTIFY_CLIENT_SECRET'),
            spotify_refresh_token=env.get('SPOTIFY_REFRESH_TOKEN'),
            openai_api_key=openai_key,
            openai_model=env.get('OPENAI_MODEL') or OPENAI_MODEL,
            queue_path=Path(env.get('SONG_QUEUE_PATH') or SONG_QUEUE_PATH),
            tick_interval=float(env.get('QUEUE_TICK_SECONDS') or QUEUE_TICK_SECONDS),
            scopes=scopes,
            error=error,
        )
