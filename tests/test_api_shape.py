"""
Unit tests for the API shape analyzer.
Tests array discovery, field detection, vendor preference, call ranking,
capture and step generation.
"""
import json

import httpx
import pytest

from src.browser.accessor import InterceptedResponse
from src.browser.http_network import HttpxNetwork
from src.engine.recipe_runner import RecipeRunner
from src.inference.api_shape import (
    analyze_api_response, analyze_captured_calls, body_template, build_api_steps,
    capture_api_calls, enumerate_arrays, find_item_fields, marker_rank, url_template,
)
from src.shared.schemas import CommandKind, Recipe, StructureKind


ALGOLIA_PAYLOAD = {
    "results": [
        {
            "hits": [
                {"title": "Dune", "author_name": "Frank Herbert", "url": "/b/dune",
                 "cover_image": "/c/dune.jpg", "objectID": "1"},
                {"title": "Dune Messiah", "author_name": "Frank Herbert", "url": "/b/messiah",
                 "cover_image": "/c/messiah.jpg", "objectID": "2"},
            ],
            "facets": {"tags": [{"name": "classic"}, {"name": "scifi"}, {"name": "space"}]},
        }
    ]
}


class TestShapeDiscovery:
    """Test autocomplete-shaped array discovery."""

    def test_enumerate_arrays(self):
        """Every reachable array is listed with its path."""
        paths = [path for path, _ in enumerate_arrays(ALGOLIA_PAYLOAD)]

        assert paths == ["results", "results[0].hits", "results[0].facets.tags"]

    def test_object_array(self):
        """Title, subtitle, url and image paths are detected."""
        shape = analyze_api_response(ALGOLIA_PAYLOAD, "dune")

        assert shape.found
        assert shape.items_path == "results[0].hits"
        assert shape.title_path == "title"
        assert shape.subtitle_path == "author_name"
        assert shape.url_path == "url"
        assert shape.image_path == "cover_image"
        assert shape.structure_kind == StructureKind.OBJECT_ARRAY
        assert shape.item_count == 2

    def test_single_hit_under_vendor_path(self):
        """A lone matching hit under results[0].hits is accepted."""
        payload = {"results": [{"hits": [{"title": "Paris, France", "url": "/p/1", "image": "https://x/1.jpg"}]}]}

        shape = analyze_api_response(payload, "Paris")

        assert shape.items_path == "results[0].hits"
        assert shape.title_path == "title"
        assert shape.url_path == "url"
        assert shape.image_path == "image"
        assert shape.structure_kind == StructureKind.OBJECT_ARRAY

    def test_multi_index_envelope(self):
        """Per-index envelopes echoing the query resolve to their hits array."""
        payload = {
            "results": [
                {
                    "hits": [
                        {"title": "Paris, France", "url": "/p/1", "image": "https://x/1.jpg"},
                        {"title": "Paris, Texas", "url": "/p/2", "image": "https://x/2.jpg"},
                    ],
                    "query": "paris",
                    "index": "places",
                    "nbHits": 2,
                }
            ]
        }

        shape = analyze_api_response(payload, "Paris")

        assert shape.found
        assert shape.items_path == "results[0].hits"
        assert shape.title_path == "title"
        assert shape.item_count == 2

    def test_echoed_query_is_not_a_title(self):
        """Arrays whose only title is the echoed query are rejected."""
        payload = {"results": [{"query": "paris", "index": "places"}, {"query": "paris", "index": "cities"}]}

        shape = analyze_api_response(payload, "Paris")

        assert not shape.found

    def test_marker_rank(self):
        """Item markers beat wrapping markers; deeper marker paths come first."""
        paths = ["data", "results", "results[0].facets.tags", "results[0].hits", "suggestions"]

        ordered = sorted(paths, key=marker_rank)

        assert ordered == ["results[0].hits", "suggestions", "results[0].facets.tags", "results", "data"]

    def test_string_array(self):
        """Plain suggestion lists are accepted on a query match."""
        shape = analyze_api_response(["dune", "dune messiah", "dunkirk"], "Dune")

        assert shape.found
        assert shape.items_path == ""
        assert shape.structure_kind == StructureKind.STRING_ARRAY

    def test_string_array_without_match(self):
        """String lists that ignore the query are rejected."""
        shape = analyze_api_response({"terms": ["emma", "persuasion"]}, "dune")

        assert not shape.found
        assert shape.reason == "not autocomplete-shaped"

    def test_localized_nested_url(self):
        """Single string arrays under nested keys are exposed with [0]."""
        item = {"naziv": "Dina", "url": {"HR": ["/hr/dina"]}, "meta": {"thumbnail": "/t.jpg"}}

        fields = find_item_fields(item)

        assert fields == {"title": "naziv", "url": "url.HR[0]", "image": "meta.thumbnail"}

    def test_unmatched_titles_accepted_with_three_items(self):
        """Server-side ranking is tolerated for larger arrays."""
        payload = {"data": [{"name": "Arrakis"}, {"name": "Caladan"}, {"name": "Giedi Prime"}]}

        assert analyze_api_response(payload, "dune").found
        assert not analyze_api_response({"data": payload["data"][:2]}, "dune").found

    def test_vendor_marker_preferred(self):
        """Arrays under vendor markers win over earlier generic arrays."""
        payload = {
            "related": [{"title": "Dune poster"}, {"title": "Dune mug"}, {"title": "Dune shirt"}],
            "suggestions": [{"title": "Dune"}, {"title": "Dune Messiah"}],
        }

        assert analyze_api_response(payload, "dune").items_path == "suggestions"


class TestCapturedCalls:
    """Test ranking and templating of captured calls."""

    def test_templates(self):
        """Encoded and raw queries become $INPUT."""
        assert url_template("https://x.example/s?q=dune%20messiah", "dune messiah") == \
            "https://x.example/s?q=$INPUT"
        assert url_template("https://x.example/s?q=dune+messiah", "dune messiah") == \
            "https://x.example/s?q=$INPUT"
        assert body_template('{"query":"Dune Messiah"}', "dune messiah") == '{"query":"$INPUT"}'

    def test_algolia_ranked_first(self):
        """Vendor calls win over generic search endpoints."""
        calls = [
            InterceptedResponse(url="https://x.example/api/search?q=dune", json=["dune", "dune 2"]),
            InterceptedResponse(
                url="https://abc-dsn.algolia.net/1/indexes/*/queries", method="POST",
                headers={"x-algolia-api-key": "k", "content-length": "40", ":authority": "abc"},
                post_data='{"requests":[{"params":"query=dune"}]}', json=ALGOLIA_PAYLOAD,
            ),
        ]

        candidate = analyze_captured_calls(calls, "dune")

        assert candidate.vendor == "algolia"
        assert candidate.method == "POST"
        assert candidate.url_pattern == "https://abc-dsn.algolia.net/1/indexes/*/queries"
        assert candidate.body_pattern == '{"requests":[{"params":"query=$INPUT"}]}'
        assert candidate.headers == {"x-algolia-api-key": "k"}

    def test_no_candidate(self):
        """Calls without autocomplete-shaped JSON give None."""
        calls = [InterceptedResponse(url="https://x.example/config", json={"flags": {"a": True}})]

        assert analyze_captured_calls(calls, "dune") is None

    @pytest.mark.asyncio
    async def test_capture_api_calls(self):
        """Responses to triggered requests are captured."""
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"hits": [{"title": "Dune"}]}))
        network = HttpxNetwork(httpx.AsyncClient(transport=transport))

        async def trigger():
            await network.request("https://x.example/search?q=dune")

        captured = await capture_api_calls(network, limit=1, timeout_s=1.0, trigger=trigger)

        assert len(captured) == 1
        assert captured[0].json == {"hits": [{"title": "Dune"}]}


class TestBuildSteps:
    """Test recipe step generation."""

    def test_build_api_steps(self):
        """One request step plus looped json_extract steps."""
        calls = [InterceptedResponse(url="https://x.example/api/search?q=dune", json=ALGOLIA_PAYLOAD)]
        candidate = analyze_captured_calls(calls, "dune")

        steps = build_api_steps(candidate)

        assert steps[0].command == CommandKind.HTTP_REQUEST
        assert steps[0].url == "https://x.example/api/search?q=$INPUT"
        assert steps[0].output.show is False
        assert [s.output.name for s in steps[1:]] == ["TITLE$i", "SUBTITLE$i", "URL$i", "COVER$i"]
        assert steps[1].locator == "results[0].hits[$i].title"
        assert steps[1].loop.from_ == 0
        assert steps[1].loop.to == 9

    @pytest.mark.asyncio
    async def test_generated_recipe_runs(self, engine_settings):
        """Generated steps run end to end against the API."""
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["q"] == "dune"
            return httpx.Response(200, json=ALGOLIA_PAYLOAD)

        calls = [InterceptedResponse(url="https://x.example/api/search?q=dune", json=ALGOLIA_PAYLOAD)]
        candidate = analyze_captured_calls(calls, "dune")
        recipe = Recipe(listing_steps=build_api_steps(candidate, max_items=2))
        network = HttpxNetwork(httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        result = await RecipeRunner(None, network, engine_settings).run(recipe, user_input="dune")

        assert result.results == [
            {"TITLE": "Dune", "SUBTITLE": "Frank Herbert", "URL": "/b/dune", "COVER": "/c/dune.jpg"},
            {"TITLE": "Dune Messiah", "SUBTITLE": "Frank Herbert", "URL": "/b/messiah", "COVER": "/c/messiah.jpg"},
        ]
        assert json.loads(json.dumps(result.to_record()))["results"][0]["TITLE"] == "Dune"
