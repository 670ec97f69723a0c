import random
import sys
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import aiohttp

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from songbot.content_gate import REJECTION_MESSAGES, ContentGate
from songbot.errors import SpotifyError
from songbot.models import GateVerdict, Rejection, Track
from songbot.spotify_client import SpotifyClient
from songbot.track_resolver import (
    TrackResolver,
    build_search_queries,
    is_excluded,
    merge_results,
    pick_best,
    score_track,
    split_query,
)


def _track(name: str, artists, track_id: str) -> Track:
    if isinstance(artists, str):
        artists = [artists]
    return Track(id=track_id, uri=f"spotify:track:{track_id}", name=name, artists=list(artists))


class ContentGateTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.classifier = MagicMock()
        self.classifier.generate_response = AsyncMock()
        self.gate = ContentGate(self.classifier, rng=random.Random(7))

    async def test_true_reply_allows(self) -> None:
        self.classifier.generate_response.return_value = "  TRUE\n"
        verdict = await self.gate.screen("Bohemian Rhapsody")
        self.assertEqual(verdict, GateVerdict(allowed=True))
        prompt = self.classifier.generate_response.call_args.args[0]
        self.assertIn('"Bohemian Rhapsody"', prompt)

    async def test_false_reply_rejects_with_pool_message(self) -> None:
        self.classifier.generate_response.return_value = "False"
        verdict = await self.gate.screen("epic troll song")
        self.assertFalse(verdict.allowed)
        self.assertIn(verdict.message, REJECTION_MESSAGES)

    async def test_classifier_error_fails_open(self) -> None:
        self.classifier.generate_response.side_effect = RuntimeError("rate limited")
        with self.assertLogs("songbot.content_gate", level="WARNING"):
            verdict = await self.gate.screen("anything")
        self.assertTrue(verdict.allowed)

    async def test_unparsable_reply_fails_open(self) -> None:
        for reply in ("", "true, this is fine", "Yes", None):
            self.classifier.generate_response.return_value = reply
            verdict = await self.gate.screen("anything")
            self.assertTrue(verdict.allowed, reply)


class QueryHelpersTests(unittest.TestCase):
    def test_split_on_by(self) -> None:
        self.assertEqual(split_query("Bohemian Rhapsody BY Queen"), ("bohemian rhapsody", "queen"))

    def test_split_on_from(self) -> None:
        self.assertEqual(split_query("Let It Go from Frozen"), ("let it go", "frozen"))

    def test_by_wins_over_from(self) -> None:
        self.assertEqual(split_query("Postcard from Paris by The Band"), ("postcard from paris", "the band"))

    def test_no_separator_is_whole_song(self) -> None:
        self.assertEqual(split_query("Baby"), ("baby", ""))
        self.assertEqual(split_query("Stand By Me"), ("stand by me", ""))

    def test_search_queries(self) -> None:
        self.assertEqual(build_search_queries("yellow", "coldplay"), ("yellow coldplay", '"yellow" artist:coldplay'))
        self.assertEqual(build_search_queries("yellow", ""), ("yellow", '"yellow"'))

    def test_excluded_terms_in_name_or_primary_artist(self) -> None:
        self.assertTrue(is_excluded(_track("Yellow (Karaoke Version)", "Coldplay", "1")))
        self.assertTrue(is_excluded(_track("Yellow", "Made Popular By Coldplay", "2")))
        self.assertTrue(is_excluded(_track("Yellow - Instrumental", "Coldplay", "3")))
        self.assertTrue(is_excluded(_track("Yellow", "The Backing Tracks", "4")))
        self.assertFalse(is_excluded(_track("Yellow", ["Coldplay", "Tribute Band"], "5")))

    def test_score_components(self) -> None:
        exact = _track("Yellow", "Coldplay", "1")
        # 100 exact name + 100 exact artist + 50 + 50 containment + 10 shared word
        self.assertEqual(score_track(exact, "yellow", "coldplay"), 310)
        partial = _track("Yellow - Live", "Coldplay & Friends", "2")
        self.assertEqual(score_track(partial, "yellow", "coldplay"), 50 + 50 + 10)
        unrelated = _track("Fix You", "Coldplay", "3")
        self.assertEqual(score_track(unrelated, "yellow", ""), 0)

    def test_merge_dedupes_preserving_order(self) -> None:
        a, b, c = _track("A", "x", "a"), _track("B", "x", "b"), _track("C", "x", "c")
        self.assertEqual(merge_results([a, b], [b, c, a]), [a, b, c])

    def test_pick_best_keeps_search_order_on_ties(self) -> None:
        first = _track("Hello", "Adele", "1")
        second = _track("Hello", "Adele", "2")
        self.assertIs(pick_best([first, second], "hello", "adele"), first)

    def test_pick_best_falls_back_to_first_raw_result(self) -> None:
        karaoke = _track("Hello (Karaoke)", "Karaoke Stars", "k1")
        tribute = _track("Hello", "Adele Tribute", "t1")
        self.assertIs(pick_best([karaoke, tribute], "hello", ""), karaoke)
        self.assertIsNone(pick_best([], "hello", ""))


class TrackResolverTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.spotify = MagicMock()
        self.spotify.search_tracks = AsyncMock(return_value=[])
        self.gate = MagicMock()
        self.gate.screen = AsyncMock(return_value=GateVerdict(allowed=True))
        self.gate.random_rejection = MagicMock(return_value=REJECTION_MESSAGES[1])
        self.resolver = TrackResolver(self.spotify, self.gate)

    async def test_query_rejection_skips_search(self) -> None:
        self.gate.screen.return_value = GateVerdict(allowed=False, message=REJECTION_MESSAGES[2])

        result = await self.resolver.resolve("some troll song")

        self.assertEqual(result, Rejection(REJECTION_MESSAGES[2]))
        self.spotify.search_tracks.assert_not_awaited()

    async def test_runs_both_searches_and_picks_best(self) -> None:
        karaoke = _track("Bohemian Rhapsody (Karaoke)", "Sing King", "k")
        cover = _track("Bohemian Rhapsody", "Some Cover Band", "c")
        studio = _track("Bohemian Rhapsody - Remastered 2011", "Queen", "q")
        self.spotify.search_tracks.side_effect = [[karaoke, cover], [studio, cover]]

        result = await self.resolver.resolve("Bohemian Rhapsody by Queen")

        self.assertIs(result, studio)
        queries = [call.args[0] for call in self.spotify.search_tracks.await_args_list]
        self.assertEqual(queries, ["bohemian rhapsody queen", '"bohemian rhapsody" artist:queen'])
        for call in self.spotify.search_tracks.await_args_list:
            self.assertEqual(call.kwargs["limit"], 25)
        second_pass = self.gate.screen.await_args_list[1].args[0]
        self.assertEqual(second_pass, f"{result.name} {result.primary_artist}")

    async def test_exact_artist_beats_exact_name(self) -> None:
        cover = _track("Yellow", "Cover Band", "c")
        studio = _track("Yellow", "Coldplay", "o")
        self.spotify.search_tracks.side_effect = [[cover], [studio]]

        result = await self.resolver.resolve("yellow by coldplay")

        self.assertIs(result, studio)

    async def test_second_gate_rejection(self) -> None:
        self.spotify.search_tracks.return_value = [_track("Never Gonna Give You Up", "Rick Astley", "r")]
        self.gate.screen.side_effect = [
            GateVerdict(allowed=True),
            GateVerdict(allowed=False, message=REJECTION_MESSAGES[4]),
        ]

        result = await self.resolver.resolve("that one song")

        self.assertEqual(result, Rejection(REJECTION_MESSAGES[4]))
        self.assertEqual(self.gate.screen.await_count, 2)
        self.assertEqual(self.gate.screen.await_args_list[1].args[0], "Never Gonna Give You Up Rick Astley")

    async def test_catalog_errors_return_none(self) -> None:
        for error in (SpotifyError(500, "boom"), aiohttp.ClientConnectionError("down")):
            self.spotify.search_tracks.side_effect = error
            self.assertIsNone(await self.resolver.resolve("yellow"))

    async def test_non_json_search_body_returns_none(self) -> None:
        spotify = SpotifyClient("cid", "secret", "refresh")
        spotify._req = AsyncMock(return_value="<html>upstream error</html>")
        resolver = TrackResolver(spotify, self.gate)

        self.assertIsNone(await resolver.resolve("yellow"))

    async def test_no_results_return_none(self) -> None:
        self.spotify.search_tracks.return_value = []
        self.assertIsNone(await self.resolver.resolve("zzzz qqqq"))
        self.assertEqual(self.gate.screen.await_count, 1)


if __name__ == "__main__":
    unittest.main()
