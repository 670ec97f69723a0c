from __future__ import annotations
import asyncio
import logging
from typing import List, Optional

from twitchio import eventsub
from twitchio.ext import commands
from twitchio.payloads import TokenRefreshedPayload

from .ai_client import AIClient
from .content_gate import ContentGate
from .device_activator import DeviceActivator
from .errors import DuplicateRequest, InvalidPosition, InvalidRequest, SpotifyError
from .queue_engine import QueueEngine
from .queue_store import QueueStore
from .settings import (
    COMMANDS_FILE,
    LOG_LEVEL,
    MESSAGES_PATH,
    BotSettings,
    load_commands,
    load_messages,
)
from .song_queue import SongQueue
from .spotify_client import SpotifyClient
from .ticker import Ticker
from .track_resolver import TrackResolver

logger = logging.getLogger(__name__)


# ---- bot ----
class SongBot(commands.Bot):
    def __init__(
        self,
        *,
        settings: BotSettings,
        engine: QueueEngine,
        spotify: SpotifyClient,
        ai_client: Optional[AIClient] = None,
    ):
        if not settings.token or not settings.refresh_token or not settings.bot_user_id:
            raise RuntimeError('token, refresh_token, and bot_user_id are required')
        if not settings.channel or not settings.channel_id:
            raise RuntimeError('channel and channel_id are required')
        self.commands_map = load_commands(COMMANDS_FILE)
        self.messages = load_messages(MESSAGES_PATH)
        prefix = self.commands_map['prefix'][0]
        super().__init__(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            bot_id=str(settings.bot_user_id),
            prefix=prefix,
            fetch_client_user=False,
        )
        self.channel = settings.channel
        self.channel_id = str(settings.channel_id)
        self.bot_user_id = str(settings.bot_user_id)
        self._user_token = settings.token
        self._refresh_token = settings.refresh_token
        self._scopes = list(settings.scopes or [])
        self.engine = engine
        self.engine.announce = self.announce
        self.engine.messages = self.messages
        self.spotify = spotify
        self.ai_client = ai_client
        self.ticker = Ticker(self.engine.tick, interval=settings.tick_interval)
        self._subscription_id: Optional[str] = None
        self.ready_event = asyncio.Event()

    async def load_tokens(self, path: Optional[str] = None) -> None:
        if not self._user_token or not self._refresh_token:
            raise RuntimeError('Bot credentials are unavailable')
        payload = await super().add_token(self._user_token, self._refresh_token)
        self._scopes = list(payload.scopes)

    async def save_tokens(self, path: Optional[str] = None) -> None:
        # Tokens come from the environment, so skip file writes.
        return None

    async def event_token_refreshed(self, payload: TokenRefreshedPayload) -> None:
        self._user_token = payload.token
        self._refresh_token = payload.refresh_token
        self._scopes = list(payload.scopes)
        logger.info('Twitch token refreshed for user %s', payload.user_id)

    async def event_ready(self) -> None:
        try:
            await self._subscribe_for_channel(self.channel_id)
        except Exception:
            logger.exception('Failed to subscribe to chat for %s', self.channel)
        else:
            logger.info('Subscribed channel %s', self.channel)
            await self.announce(self.messages['bot_joined'])
        self.ticker.start()
        self.ready_event.set()

    def _extract_subscription_id(self, response: object) -> Optional[str]:
        if not response:
            return None
        if isinstance(response, dict):
            data = response.get('data')
            if isinstance(data, list) and data:
                first = data[0]
                if isinstance(first, dict):
                    sub_id = first.get('id')
                    if sub_id:
                        return str(sub_id)
        subscription = getattr(response, 'subscription', None)
        sub_id = getattr(subscription, 'id', None)
        if sub_id:
            return str(sub_id)
        sub_id = getattr(response, 'id', None)
        if sub_id:
            return str(sub_id)
        return None

    async def _subscribe_for_channel(self, broadcaster_id: str) -> None:
        if not broadcaster_id:
            raise RuntimeError('Channel missing broadcaster id')
        if self._subscription_id:
            return
        payload = eventsub.ChatMessageSubscription(
            broadcaster_user_id=broadcaster_id,
            user_id=self.bot_user_id,
        )
        response = await self.subscribe_websocket(payload=payload, as_bot=True)
        self._subscription_id = self._extract_subscription_id(response)

    async def _unsubscribe_channel(self) -> None:
        sub_id, self._subscription_id = self._subscription_id, None
        if not sub_id:
            return
        try:
            await self.delete_websocket_subscription(sub_id, force=True)
        except Exception:
            logger.warning('Failed to delete chat subscription %s', sub_id, exc_info=True)

    async def shutdown(self) -> None:
        await self.ticker.stop()
        self.engine.queue.save()
        if self.ready_event.is_set():
            await self.announce(self.messages['bot_left'])
        await self._unsubscribe_channel()
        await self.spotify.close()
        if self.ai_client:
            await self.ai_client.close()
        await super().close()

    async def send(self, channel: str, text: str, *, reply_to: Optional[str] = None) -> None:
        try:
            partial = self.create_partialuser(self.channel_id, channel)
            await partial.send_message(
                text,
                sender=self.bot_user_id,
                token_for=self.bot_user_id,
                reply_to_message_id=reply_to,
            )
            logger.info('Sent message to %s: %s', channel, text)
        except Exception as exc:
            logger.error('Failed to send message to %s: %s', channel, exc)

    async def announce(self, text: str) -> None:
        await self.send(self.channel, text)

    async def _reply(self, msg, text: str) -> None:
        await self.send(self.channel, text, reply_to=getattr(msg, 'id', None))

    def _display_name(self, msg) -> str:
        return getattr(msg.chatter, 'display_name', None) or msg.chatter.name

    def _is_privileged(self, msg) -> bool:
        chatter = msg.chatter
        return bool(getattr(chatter, 'moderator', False) or getattr(chatter, 'broadcaster', False))

    async def event_message(self, message) -> None:
        if getattr(message.chatter, 'id', None) == self.bot_user_id:
            return
        content = (message.text or '').strip()
        prefix = self.commands_map['prefix'][0]
        if not content.startswith(prefix):
            return
        cmd, *rest = content[len(prefix):].split(' ', 1)
        args = rest[0].strip() if rest else ''
        cmd_lower = cmd.lower()
        try:
            if cmd_lower in self.commands_map['request']:
                await self.handle_request(message, args)
            elif cmd_lower in self.commands_map['queue']:
                await self.handle_list(message)
            elif cmd_lower in self.commands_map['clear']:
                await self.handle_clear(message)
            elif cmd_lower in self.commands_map['remove']:
                await self.handle_remove(message, args)
            elif cmd_lower in self.commands_map['current']:
                await self.handle_current(message)
            elif cmd_lower in self.commands_map['ping']:
                await self._reply(message, self.messages['pong'])
            elif cmd_lower in self.commands_map['help']:
                await self.handle_help(message)
        except Exception as exc:
            logger.exception('Error handling %s from %s', cmd_lower, getattr(message.chatter, 'name', '?'))
            await self._reply(message, self.messages['failed'].format(error=exc))

    async def handle_request(self, msg, arg: str) -> None:
        user = self._display_name(msg)
        prefix = self.commands_map['prefix'][0]
        if not arg:
            await self._reply(msg, self.messages['request_usage'].format(prefix=prefix))
            return
        try:
            entry = self.engine.add(user, arg)
        except InvalidRequest:
            await self._reply(msg, self.messages['request_invalid'].format(user=user))
            return
        except DuplicateRequest as exc:
            await self._reply(msg, self.messages['request_duplicate'].format(user=user, song=exc.song_name))
            return
        await self._reply(msg, self.messages['request_added'].format(user=user, song=entry.song_name))

    async def handle_list(self, msg) -> None:
        entries = self.engine.list_entries()
        if not entries:
            await self._reply(msg, self.messages['queue_empty'])
            return
        listing = ' | '.join(
            self.messages['queue_entry'].format(position=index, song=entry.song_name, user=entry.username)
            for index, entry in enumerate(entries, start=1)
        )
        await self._reply(msg, self.messages['queue_list'].format(entries=listing))

    async def handle_clear(self, msg) -> None:
        if not self._is_privileged(msg):
            await self._reply(msg, self.messages['permission_denied'].format(action='clear'))
            return
        removed = self.engine.clear()
        logger.info('Queue cleared by %s (%d entries)', msg.chatter.name, removed)
        await self._reply(msg, self.messages['queue_cleared'].format(user=self._display_name(msg)))

    async def handle_remove(self, msg, arg: str) -> None:
        if not self._is_privileged(msg):
            await self._reply(msg, self.messages['permission_denied'].format(action='edit'))
            return
        token = arg.split(' ', 1)[0] if arg else ''
        if not token.lstrip('-').isdigit():
            await self._reply(msg, self.messages['remove_usage'].format(prefix=self.commands_map['prefix'][0]))
            return
        try:
            entry = self.engine.remove_at(int(token))
        except InvalidPosition as exc:
            await self._reply(msg, self.messages['remove_invalid'].format(size=exc.size))
            return
        await self._reply(
            msg,
            self.messages['remove_success'].format(song=entry.song_name, requester=entry.username),
        )

    async def handle_current(self, msg) -> None:
        try:
            playing = await self.spotify.get_currently_playing()
        except SpotifyError as exc:
            logger.error('Error getting current track: %s', exc.detail)
            await self._reply(msg, self.messages['failed'].format(error=exc.detail))
            return
        if not playing:
            await self._reply(msg, self.messages['nothing_playing'])
            return
        await self._reply(
            msg,
            self.messages['now_playing'].format(title=playing.track.name, artist=playing.track.artist_names),
        )

    async def handle_help(self, msg) -> None:
        prefix = self.commands_map['prefix'][0]
        names: List[str] = [
            f"{prefix}{aliases[0]}"
            for key, aliases in self.commands_map.items()
            if key != 'prefix' and aliases
        ]
        await self._reply(msg, self.messages['commands_help'].format(commands=', '.join(names)))


def build_bot(settings: BotSettings) -> SongBot:
    """Wire the queue, Spotify, AI and engine components into a bot.

    The queue is loaded here, once, and handed to the engine; the bot saves it
    again on shutdown.
    """
    queue = SongQueue(QueueStore(settings.queue_path))
    queue.load()
    spotify = SpotifyClient(
        settings.spotify_client_id,
        settings.spotify_client_secret,
        settings.spotify_refresh_token,
    )
    ai_client = AIClient(settings.openai_api_key, model=settings.openai_model)
    gate = ContentGate(ai_client)
    engine = QueueEngine(
        queue,
        TrackResolver(spotify, gate),
        DeviceActivator(spotify),
        spotify,
    )
    return SongBot(settings=settings, engine=engine, spotify=spotify, ai_client=ai_client)


# ---- entry ----
async def main():
    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    settings = BotSettings.from_env()
    if settings.error:
        raise SystemExit(settings.error)
    bot = build_bot(settings)
    try:
        await bot.start()
    finally:
        await bot.shutdown()


def run() -> None:
    asyncio.run(main())


if __name__ == '__main__':
    run()
