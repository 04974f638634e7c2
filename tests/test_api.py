import datetime as dt
import unittest

import requests
from requests.structures import CaseInsensitiveDict
from fastapi.testclient import TestClient

from app.config import settings
from app.constellation import ConstellationSnapshot
from app.main import app as fastapi_app
from app.data_sources.open_meteo_client import OpenMeteoWeatherClient
from app.domain import BalloonPosition
from app.weather_store import WeatherStore


class DummyResp:
    def __init__(self, payload=None, status_code=200, headers=None):
        self._payload = payload
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params))
        return self.handler(url, params)


def _current(temp):
    return {"current": {"temperature_2m": temp, "relative_humidity_2m": 50, "wind_speed_10m": 8,
                        "wind_direction_10m": 270, "surface_pressure": 1012}}


class FakeConstellation:
    def __init__(self, positions, history=None):
        self.positions = positions
        self.history = history or []
        self.history_hours = None

    def fetch_hour(self, hour):
        return self.positions

    def fetch_history(self, hours):
        self.history_hours = hours
        return self.history


class TestApi(unittest.TestCase):
    def setUp(self):
        import app.api as api_mod

        self.api_mod = api_mod
        self._orig = {
            name: getattr(api_mod, name)
            for name in ("STORE", "WEATHER_CLIENT", "PROXY_SESSION", "CONSTELLATION_CLIENT")
        }
        self.store = WeatherStore.create(ttl_seconds=300)
        api_mod.STORE = self.store
        self.client = TestClient(fastapi_app)

    def tearDown(self):
        for name, value in self._orig.items():
            setattr(self.api_mod, name, value)

    def _use_weather_session(self, handler):
        session = FakeSession(handler)
        self.api_mod.WEATHER_CLIENT = OpenMeteoWeatherClient(self.store, session=session)
        return session

    def test_proxy_weather_requires_coordinates(self):
        resp = self.client.get("/v1/weather", params={"latitude": "1"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {"error": "Missing latitude or longitude"})

    def test_proxy_weather_mirrors_status_headers_and_body(self):
        body = {"error": True, "reason": "Too many requests"}
        self.api_mod.PROXY_SESSION = FakeSession(
            lambda url, params: DummyResp(body, 429, {"Retry-After": "60", "X-RateLimit-Remaining": "0", "X-Other": "x"})
        )
        resp = self.client.get("/v1/weather", params={"latitude": "10.5", "longitude": "20.25"})

        self.assertEqual(resp.status_code, 429)
        self.assertEqual(resp.json(), body)
        self.assertEqual(resp.headers["retry-after"], "60")
        self.assertEqual(resp.headers["x-ratelimit-remaining"], "0")
        self.assertNotIn("x-other", resp.headers)
        _, params = self.api_mod.PROXY_SESSION.calls[0]
        self.assertEqual(params["latitude"], "10.5")

    def test_proxy_weather_upstream_failure_is_500(self):
        def boom(url, params):
            raise requests.exceptions.ConnectionError("down")

        self.api_mod.PROXY_SESSION = FakeSession(boom)
        resp = self.client.get("/v1/weather", params={"latitude": "1", "longitude": "2"})
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json(), {"error": "Failed to fetch weather data"})

    def test_proxy_constellation(self):
        self.api_mod.PROXY_SESSION = FakeSession(lambda url, params: DummyResp([[1.0, 2.0, 3.0]]))
        resp = self.client.get("/v1/constellation", params={"hour": "4"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), [[1.0, 2.0, 3.0]])
        self.assertTrue(self.api_mod.PROXY_SESSION.calls[0][0].endswith("/04.json"))

    def test_proxy_constellation_invalid_hour(self):
        resp = self.client.get("/v1/constellation", params={"hour": "30"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {"error": "Invalid hour. Must be 0-23"})

    def test_proxy_constellation_upstream_error_status(self):
        self.api_mod.PROXY_SESSION = FakeSession(lambda url, params: DummyResp(None, 404))
        resp = self.client.get("/v1/constellation")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json(), {"error": "Failed to fetch constellation data"})

    def test_batch_enrichment_dedupes_and_reports(self):
        session = self._use_weather_session(lambda url, params: DummyResp(_current(params["latitude"])))
        payload = {
            "positions": [
                {"latitude": 10.0, "longitude": 20.0},
                {"latitude": 10.001, "longitude": 20.001},
                {"latitude": 30.0, "longitude": 40.0},
            ],
            "max_concurrent": 2,
        }
        resp = self.client.post("/v1/weather/batch", json=payload)

        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertEqual(data["requested"], 3)
        self.assertEqual(data["unique"], 2)
        self.assertEqual(data["resolved"], 2)
        self.assertEqual(data["observations"]["10.00,20.00"]["temperature"], 10.0)
        self.assertFalse(data["rate_limit"]["is_limited"])
        self.assertEqual(len(session.calls), 2)

    def test_batch_rejects_out_of_range_positions(self):
        resp = self.client.post("/v1/weather/batch", json={"positions": [{"latitude": 95, "longitude": 0}]})
        self.assertEqual(resp.status_code, 422)

    def test_rate_limit_endpoint_reflects_tracker(self):
        self._use_weather_session(lambda url, params: DummyResp({}, 429, {"Retry-After": "90"}))
        batch = self.client.post("/v1/weather/batch", json={"positions": [{"latitude": 1, "longitude": 2}]})
        self.assertEqual(batch.json()["resolved"], 0)

        resp = self.client.get("/v1/rate-limit")
        data = resp.json()
        self.assertTrue(data["is_limited"])
        self.assertEqual(data["retry_after_seconds"], 90)
        self.assertIn("minute", data["wait_text"])

    def test_constellation_summary(self):
        self._use_weather_session(lambda url, params: DummyResp(_current(params["latitude"])))
        self.api_mod.CONSTELLATION_CLIENT = FakeConstellation([
            BalloonPosition(10.0, 20.0, altitude=1000.0),
            BalloonPosition(20.0, 20.0, altitude=3000.0),
        ])
        resp = self.client.get("/v1/constellation/summary", params={"hour": 3})

        data = resp.json()
        self.assertEqual(data["hour"], 3)
        self.assertEqual(data["balloon_count"], 2)
        self.assertEqual(data["avg_altitude"], 2000)
        self.assertEqual(data["avg_temperature"], 15)
        self.assertEqual(data["weather_resolved"], 2)

    def test_summary_counts_balloons_covered_by_a_nearby_cell(self):
        def handler(url, params):
            if params["latitude"] != 10.0:
                return DummyResp({}, 503)
            return DummyResp(_current(12))

        self._use_weather_session(handler)
        self.api_mod.CONSTELLATION_CLIENT = FakeConstellation([
            BalloonPosition(10.0, 20.0, altitude=1000.0),
            BalloonPosition(10.05, 20.05, altitude=1000.0),
            BalloonPosition(50.0, 60.0, altitude=1000.0),
        ])
        data = self.client.get("/v1/constellation/summary").json()

        self.assertEqual(data["balloon_count"], 3)
        self.assertEqual(data["weather_resolved"], 2)

    def test_constellation_history(self):
        snapshot_time = dt.datetime(2024, 1, 1, 12, tzinfo=dt.timezone.utc)
        self.api_mod.CONSTELLATION_CLIENT = FakeConstellation(
            [],
            history=[
                ConstellationSnapshot(0, [BalloonPosition(10.0, 20.0, altitude=1500.0)], snapshot_time),
                ConstellationSnapshot(2, [BalloonPosition(-5.0, 30.0, altitude=800.0)],
                                      snapshot_time - dt.timedelta(hours=2)),
            ],
        )
        resp = self.client.get("/v1/constellation/history", params={"hours": 3})

        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertEqual([entry["hour"] for entry in data], [0, 2])
        self.assertEqual(data[0]["balloon_count"], 1)
        self.assertEqual(data[0]["positions"], [[10.0, 20.0, 1500.0]])
        self.assertEqual(self.api_mod.CONSTELLATION_CLIENT.history_hours, 3)

    def test_constellation_history_defaults_to_configured_hours(self):
        self.api_mod.CONSTELLATION_CLIENT = FakeConstellation([], history=[])
        resp = self.client.get("/v1/constellation/history")

        self.assertEqual(resp.json(), [])
        self.assertEqual(self.api_mod.CONSTELLATION_CLIENT.history_hours, settings.constellation_hours)

    def test_constellation_history_rejects_out_of_range_hours(self):
        resp = self.client.get("/v1/constellation/history", params={"hours": 25})
        self.assertEqual(resp.status_code, 422)

    def test_empty_constellation_summary(self):
        self.api_mod.CONSTELLATION_CLIENT = FakeConstellation([])
        resp = self.client.get("/v1/constellation/summary")
        self.assertEqual(resp.json()["balloon_count"], 0)


if __name__ == "__main__":
    unittest.main()
