import asyncio
import unittest

import httpx

from ore_miner import abi
from ore_miner.errors import FetchError
from ore_miner.prices import PriceClient
from ore_miner.rounds import RoundState, RoundStateClient, parse_round_state


def quote_payload(ore=1.25, sol=150.0):
    return {
        abi.SOL_MINT: {"usdPrice": sol, "decimals": 9},
        abi.ORE_MINT: {"usdPrice": ore, "decimals": 11},
    }


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class PriceClientTests(unittest.TestCase):
    def _client(self, handler, clock=None):
        self.calls = []

        def recording(request):
            self.calls.append(request)
            return handler(request)

        http = httpx.AsyncClient(transport=httpx.MockTransport(recording))
        return PriceClient(http, clock=clock or FakeClock())

    def test_get_prices_reads_usd_price_by_mint(self):
        client = self._client(lambda r: httpx.Response(200, json=quote_payload()))
        self.assertEqual(asyncio.run(client.get_prices()), (1.25, 150.0))
        self.assertEqual(self.calls[0].url.params["ids"], f"{abi.SOL_MINT},{abi.ORE_MINT}")

    def test_missing_mint_is_missing_quote(self):
        payload = {abi.SOL_MINT: {"usdPrice": 150.0}}
        client = self._client(lambda r: httpx.Response(200, json=payload))
        with self.assertRaises(FetchError) as ctx:
            asyncio.run(client.get_prices())
        self.assertEqual(ctx.exception.kind, FetchError.MISSING_QUOTE)

    def test_non_positive_price_is_missing_quote(self):
        client = self._client(lambda r: httpx.Response(200, json=quote_payload(ore=0)))
        with self.assertRaises(FetchError) as ctx:
            asyncio.run(client.get_prices())
        self.assertEqual(ctx.exception.kind, FetchError.MISSING_QUOTE)

    def test_http_error_is_network(self):
        client = self._client(lambda r: httpx.Response(503))
        with self.assertRaises(FetchError) as ctx:
            asyncio.run(client.get_prices())
        self.assertEqual(ctx.exception.kind, FetchError.NETWORK)

    def test_cache_within_ttl(self):
        clock = FakeClock()
        client = self._client(lambda r: httpx.Response(200, json=quote_payload()), clock)

        async def scenario():
            first = await client.get_cached_prices()
            clock.now += 9.9
            second = await client.get_cached_prices()
            return first, second

        first, second = asyncio.run(scenario())
        self.assertEqual(first, second)
        self.assertEqual(len(self.calls), 1)

    def test_cache_expires_after_ttl(self):
        clock = FakeClock()
        prices = iter([1.0, 2.0])
        client = self._client(lambda r: httpx.Response(200, json=quote_payload(ore=next(prices))), clock)

        async def scenario():
            await client.get_cached_prices()
            clock.now += 10.0
            return await client.get_cached_prices()

        self.assertEqual(asyncio.run(scenario()), (2.0, 150.0))
        self.assertEqual(len(self.calls), 2)

    def test_force_refresh_ignores_ttl(self):
        client = self._client(lambda r: httpx.Response(200, json=quote_payload()))

        async def scenario():
            await client.get_cached_prices()
            await client.get_cached_prices(force=True)

        asyncio.run(scenario())
        self.assertEqual(len(self.calls), 2)

    def test_concurrent_callers_share_one_fetch(self):
        client = self._client(lambda r: httpx.Response(200, json=quote_payload()))

        async def scenario():
            return await asyncio.gather(*(client.get_cached_prices() for _ in range(5)))

        results = asyncio.run(scenario())
        self.assertEqual(len(set(results)), 1)
        self.assertEqual(len(self.calls), 1)

    def test_failed_refresh_keeps_previous_quote(self):
        responses = iter([
            httpx.Response(200, json=quote_payload()),
            httpx.Response(500),
        ])
        client = self._client(lambda r: next(responses))

        async def scenario():
            await client.get_cached_prices()
            with self.assertRaises(FetchError):
                await client.get_cached_prices(force=True)

        asyncio.run(scenario())
        self.assertEqual(client.quote.asset_price, 1.25)


class RoundStateTests(unittest.TestCase):
    def test_slots_left_never_negative(self):
        self.assertEqual(RoundState(1, 100, 120).slots_left, 20)
        self.assertEqual(RoundState(1, 130, 120).slots_left, 0)

    def test_parse_flat_with_numeric_strings(self):
        state = parse_round_state({"round_id": "42", "current_slot": 1000, "end_slot": "1015"})
        self.assertEqual(state, RoundState(42, 1000, 1015))

    def test_parse_v2_frames(self):
        data = {
            "currentRoundId": "42",
            "frames": [
                {"roundId": "41", "liveData": {"roundId": "41", "mining": {"endSlot": "900"}}},
                {"roundId": "42", "liveData": {"roundId": "42", "mining": {"endSlot": "1150"}}},
            ],
            "globals": {"currentSlot": "1100"},
        }
        state = parse_round_state(data)
        self.assertEqual(state.round_id, 42)
        self.assertEqual(state.slots_left, 50)

    def test_missing_fields_are_invalid_state(self):
        for data in ({"round_id": 1, "current_slot": 5}, {"frames": []}, [], {"round_id": "x", "current_slot": 1, "end_slot": 2}):
            with self.assertRaises(FetchError) as ctx:
                parse_round_state(data)
            self.assertEqual(ctx.exception.kind, FetchError.INVALID_STATE)

    def test_rate_limit_is_retried(self):
        responses = iter([
            httpx.Response(429),
            httpx.Response(429),
            httpx.Response(200, json={"round_id": 7, "current_slot": 10, "end_slot": 20}),
        ])
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: next(responses)))
        client = RoundStateClient(http, "https://state.test/v2/state", backoff=0)
        self.assertEqual(asyncio.run(client.get_round_state()), RoundState(7, 10, 20))

    def test_rate_limit_gives_up(self):
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(429)))
        client = RoundStateClient(http, "https://state.test/v2/state", backoff=0)
        with self.assertRaises(FetchError) as ctx:
            asyncio.run(client.get_round_state())
        self.assertEqual(ctx.exception.kind, FetchError.NETWORK)

    def test_invalid_json(self):
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, text="<html>")))
        client = RoundStateClient(http, "https://state.test/v2/state")
        with self.assertRaises(FetchError) as ctx:
            asyncio.run(client.get_round_state())
        self.assertEqual(ctx.exception.kind, FetchError.INVALID_STATE)


if __name__ == "__main__":
    unittest.main()
