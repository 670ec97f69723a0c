from __future__ import annotations
import asyncio
import logging
from typing import List, Optional, Tuple, Union

import aiohttp

from .content_gate import ContentGate
from .errors import SpotifyError, TransientSearchFailure
from .models import Rejection, Track
from .spotify_client import SpotifyClient

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 25
ARTIST_SEPARATORS = (' by ', ' from ')
EXCLUDED_TERMS = ('karaoke', 'tribute', 'made popular', 'backing', 'instrumental')

ResolveResult = Union[Track, Rejection, None]


def split_query(query: str) -> Tuple[str, str]:
    """Split ``"song by artist"`` / ``"song from artist"`` into lowercase parts.

    ``" by "`` wins over ``" from "`` when both are present; the artist is
    empty when neither is.
    """
    text = query.lower().strip()
    for separator in ARTIST_SEPARATORS:
        if separator in text:
            song, artist = text.split(separator, 1)
            return song.strip(), artist.strip()
    return text, ''


def build_search_queries(song: str, artist: str) -> Tuple[str, str]:
    broad = f"{song} {artist}".strip()
    scoped = f'"{song}" artist:{artist}' if artist else f'"{song}"'
    return broad, scoped


def is_excluded(track: Track) -> bool:
    name = track.name.lower()
    artist = track.primary_artist.lower()
    return any(term in name or term in artist for term in EXCLUDED_TERMS)


def score_track(track: Track, song: str, artist: str) -> int:
    score = 0
    name = track.name.lower()
    track_artist = track.primary_artist.lower()
    if name == song:
        score += 100
    if artist and track_artist == artist:
        score += 100
    if song in name:
        score += 50
    if artist and artist in track_artist:
        score += 50
    name_words = name.split()
    score += 10 * sum(1 for word in song.split() if word in name_words)
    return score


def merge_results(*result_sets: List[Track]) -> List[Track]:
    seen = set()
    merged: List[Track] = []
    for results in result_sets:
        for track in results:
            if track.id in seen:
                continue
            seen.add(track.id)
            merged.append(track)
    return merged


def pick_best(candidates: List[Track], song: str, artist: str) -> Optional[Track]:
    if not candidates:
        return None
    survivors = [t for t in candidates if not is_excluded(t)]
    if not survivors:
        return candidates[0]
    # sorted() is stable, so equal scores keep search order
    ranked = sorted(survivors, key=lambda t: score_track(t, song, artist), reverse=True)
    return ranked[0]


class TrackResolver:
    def __init__(self, spotify: SpotifyClient, gate: ContentGate, *, search_limit: int = SEARCH_LIMIT):
        self.spotify = spotify
        self.gate = gate
        self.search_limit = search_limit

    async def resolve(self, query: str) -> ResolveResult:
        verdict = await self.gate.screen(query)
        if not verdict.allowed:
            return Rejection(verdict.message or self.gate.random_rejection())

        song, artist = split_query(query)
        try:
            candidates = await self._search(song, artist)
        except TransientSearchFailure as exc:
            logger.error('Spotify search failed for %r: %s', query, exc)
            return None

        track = pick_best(candidates, song, artist)
        if track is None:
            logger.info('No Spotify results for %r', query)
            return None
        logger.info('Resolved %r to %s by %s (%s)', query, track.name, track.artist_names, track.uri)

        # second pass: the matched title/artist can read differently from the request
        verdict = await self.gate.screen(f"{track.name} {' '.join(track.artists)}")
        if not verdict.allowed:
            return Rejection(verdict.message or self.gate.random_rejection())
        return track

    async def _search(self, song: str, artist: str) -> List[Track]:
        broad, scoped = build_search_queries(song, artist)
        try:
            first, second = await asyncio.gather(
                self.spotify.search_tracks(broad, limit=self.search_limit),
                self.spotify.search_tracks(scoped, limit=self.search_limit),
            )
        except (SpotifyError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransientSearchFailure(str(exc)) from exc
        return merge_results(first, second)
