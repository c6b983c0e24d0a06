"""Adapter tests: wire format in, normalized predictions out, HTTP failures classified."""
from unittest.mock import MagicMock, Mock

import numpy as np
import pytest
import requests

from plantdx.domain.errors import NoPredictionError, ProviderCallError
from plantdx.domain.models import NormalizedImage, ProviderConfig
from plantdx.infrastructure.providers.factory import build_adapters
from plantdx.infrastructure.providers.google_vision import GoogleVisionAdapter, parse_google_vision_response
from plantdx.infrastructure.providers.http import ProviderHttpClient
from plantdx.infrastructure.providers.huggingface import HuggingFaceAdapter, parse_huggingface_response
from plantdx.infrastructure.providers.labels import display_name, slugify
from plantdx.infrastructure.providers.local_model import LocalModelAdapter, parse_local_predictions
from plantdx.infrastructure.providers.mock import MockClassifierAdapter
from plantdx.infrastructure.providers.plant_id import PlantIdAdapter, parse_plant_id_response
from plantdx.infrastructure.providers.plantnet import PlantNetAdapter, parse_plantnet_response


IMAGE = NormalizedImage(data=b"\xff\xd8jpeg", base64="/9hqcGVn", width=10, height=10, size=6)


def _response(status=200, payload=None, text=""):
    resp = Mock()
    resp.status_code = status
    resp.text = text
    if isinstance(payload, Exception):
        resp.json.side_effect = payload
    else:
        resp.json.return_value = payload
    return resp


def _session(*responses):
    session = Mock(spec=requests.Session)
    session.request.side_effect = list(responses)
    return session


def _config(name, **kwargs):
    defaults = {"api_key": "secret", "api_url": "https://example.test/v1", "timeout_s": 7}
    defaults.update(kwargs)
    return ProviderConfig(name=name, **defaults)


class TestProviderHttpClient:
    @pytest.mark.parametrize("status,retryable", [
        (500, True), (502, True), (503, True), (429, True), (408, True),
        (400, False), (401, False), (403, False), (415, False),
    ])
    def test_status_codes_are_classified(self, status, retryable):
        client = ProviderHttpClient("x", _config("x"), _session(_response(status, {"error": "nope"})))
        with pytest.raises(ProviderCallError) as exc_info:
            client.get_json("https://example.test")
        assert exc_info.value.retryable is retryable
        assert exc_info.value.status_code == status
        assert f"HTTP {status}" in exc_info.value.message

    def test_timeout_is_retryable(self):
        session = Mock(spec=requests.Session)
        session.request.side_effect = requests.Timeout("slow")
        with pytest.raises(ProviderCallError) as exc_info:
            ProviderHttpClient("x", _config("x"), session).get_json("https://example.test")
        assert exc_info.value.retryable is True

    def test_connection_error_is_retryable(self):
        session = Mock(spec=requests.Session)
        session.request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(ProviderCallError) as exc_info:
            ProviderHttpClient("x", _config("x"), session).get_json("https://example.test")
        assert exc_info.value.retryable is True

    def test_malformed_body_is_not_retryable(self):
        client = ProviderHttpClient("x", _config("x"), _session(_response(200, ValueError("bad json"))))
        with pytest.raises(ProviderCallError) as exc_info:
            client.get_json("https://example.test")
        assert exc_info.value.retryable is False

    def test_configured_timeout_is_applied(self):
        session = _session(_response(200, {"ok": True}))
        ProviderHttpClient("x", _config("x", timeout_s=3.5), session).get_json("https://example.test")
        assert session.request.call_args.kwargs["timeout"] == 3.5


class TestPlantId:
    def test_disease_suggestions_become_predictions(self):
        payload = {
            "is_plant": True,
            "disease": {"suggestions": [
                {"id": "d2", "name": "Powdery mildew", "probability": 0.4, "description": "white",
                 "treatment": {"biological": ["Bacillus"]}},
                {"id": "d1", "name": "Late blight", "probability": 0.85, "description": "brown",
                 "treatment": {"chemical": ["Copper"], "prevention": ["Spacing"]}},
            ]},
        }
        adapter = PlantIdAdapter(_config("plant_id"), _session(_response(200, payload)))
        result = adapter.classify([IMAGE])

        assert result.provider == "plant_id"
        assert [p.disease_id for p in result.predictions] == ["d1", "d2"]
        assert result.confidence == 0.85
        assert result.is_healthy is False
        assert result.predictions[0].severity == "high"
        assert result.predictions[0].treatment.chemical == ["Copper"]
        assert result.metadata.image_count == 1

        _, kwargs = adapter.http.session.request.call_args
        assert kwargs["json"]["images"] == [IMAGE.base64]
        assert kwargs["headers"]["Api-Key"] == "secret"

    def test_no_suggestions_means_healthy_plant(self):
        result = parse_plant_id_response({"is_plant": True, "disease": {"suggestions": []}}, 10, 1)
        assert result.is_healthy is True
        assert result.predictions[0].disease_id == "healthy"
        assert result.confidence == 0.9

    def test_non_plant_gets_low_confidence(self):
        result = parse_plant_id_response({"result": {"is_plant": {"binary": False}}}, 10, 1)
        assert result.confidence == 0.3
        assert result.is_healthy is False

    def test_missing_key_fails_without_network(self):
        session = _session()
        adapter = PlantIdAdapter(_config("plant_id", api_key=None), session)
        with pytest.raises(ProviderCallError) as exc_info:
            adapter.classify([IMAGE])
        assert exc_info.value.retryable is False
        session.request.assert_not_called()


class TestPlantNet:
    def test_species_matches_are_low_severity_and_healthy(self):
        payload = {"results": [
            {"score": 0.6, "species": {"scientificNameWithoutAuthor": "Solanum lycopersicum",
                                       "commonNames": ["Tomato"]}},
            {"score": 0.2, "species": {"scientificNameWithoutAuthor": "Solanum nigrum", "commonNames": []}},
        ], "version": "2024-01"}
        session = _session(_response(200, payload))
        result = PlantNetAdapter(_config("plantnet", project="weurope"), session).classify([IMAGE, IMAGE])

        assert result.predictions[0].disease_id == "Solanum_lycopersicum"
        assert result.predictions[0].disease_name == "Tomato"
        assert result.predictions[1].disease_name == "Solanum nigrum"
        assert all(p.severity == "low" for p in result.predictions)
        assert result.is_healthy is True
        args, kwargs = session.request.call_args
        assert args[1].endswith("/identify/weurope")
        assert len(kwargs["files"]) == 2

    def test_not_found_is_no_prediction(self):
        session = _session(_response(404, {"message": "Species not found"}))
        with pytest.raises(NoPredictionError):
            PlantNetAdapter(_config("plantnet"), session).classify([IMAGE])


class TestGoogleVision:
    def test_only_plant_related_labels_are_kept(self):
        payload = {"responses": [{"labelAnnotations": [
            {"description": "Plant disease", "score": 0.81},
            {"description": "Table", "score": 0.99},
            {"description": "Leaf", "score": 0.92},
        ]}]}
        result = GoogleVisionAdapter(_config("google_vision"), _session(_response(200, payload))).classify([IMAGE])
        assert [p.disease_id for p in result.predictions] == ["leaf", "plant_disease"]
        assert result.is_healthy is False

    def test_no_plant_labels_gives_unknown(self):
        payload = {"responses": [{"labelAnnotations": [{"description": "Car", "score": 0.9}]}]}
        result = GoogleVisionAdapter(_config("google_vision"), _session(_response(200, payload))).classify([IMAGE])
        assert result.predictions[0].disease_id == "unknown"
        assert result.confidence == 0.3


class TestHuggingFace:
    def test_one_call_per_image_and_labels_slugified(self):
        session = _session(
            _response(200, [{"label": "Tomato Late blight", "score": 0.7}, {"label": "Tomato healthy", "score": 0.2}]),
            _response(200, [{"label": "Tomato Late blight", "score": 0.9}]),
        )
        result = HuggingFaceAdapter(_config("huggingface", model="org/plant"), session).classify([IMAGE, IMAGE])

        assert session.request.call_count == 2
        assert result.predictions[0].disease_id == "tomato_late_blight"
        assert result.confidence == 0.9
        assert len(result.predictions) == 2

    def test_model_loading_is_retryable(self):
        session = _session(_response(200, {"error": "Model org/plant is currently loading"}))
        with pytest.raises(ProviderCallError) as exc_info:
            HuggingFaceAdapter(_config("huggingface", model="org/plant"), session).classify([IMAGE])
        assert exc_info.value.retryable is True


class _Input:
    name = "input"
    shape = [1, 3, 224, 224]


class _FakeOnnxSession:
    def __init__(self, scores):
        self.scores = np.array([scores], dtype=np.float32)
        self.last_batch = None

    def get_inputs(self):
        return [_Input()]

    def run(self, output_names, feeds):
        self.last_batch = feeds["input"]
        return [self.scores]


class TestLocalModel:
    def test_scores_map_onto_plant_village_labels(self, image_bytes):
        labels = ["Tomato___Late_blight", "Tomato___healthy", "Potato___Early_blight"]
        session = _FakeOnnxSession([0.1, 0.2, 0.7])
        adapter = LocalModelAdapter(_config("local_model"), session=session, labels=labels)
        jpeg = image_bytes(50, 40)
        image = NormalizedImage(data=jpeg, base64="", width=50, height=40, size=len(jpeg))

        result = adapter.classify([image])

        assert session.last_batch.shape == (1, 3, 224, 224)
        assert result.predictions[0].disease_id == "potato___early_blight"
        assert result.predictions[0].disease_name == "Early blight"
        assert result.is_healthy is False
        assert result.confidence == pytest.approx(0.7)

    def test_logits_are_softmaxed(self, image_bytes):
        session = _FakeOnnxSession([2.0, -1.0])
        adapter = LocalModelAdapter(_config("local_model"), session=session,
                                    labels=["Apple___healthy", "Apple___Black_rot"])
        jpeg = image_bytes(20, 20)
        result = adapter.classify([NormalizedImage(data=jpeg, base64="", width=20, height=20, size=len(jpeg))])
        assert result.is_healthy is True
        assert sum(p.confidence for p in result.predictions) == pytest.approx(1.0, abs=1e-5)

    def test_missing_model_is_non_retryable(self):
        adapter = LocalModelAdapter(_config("local_model", model="/nonexistent/model.onnx"))
        with pytest.raises(ProviderCallError) as exc_info:
            adapter.classify([IMAGE])
        assert exc_info.value.retryable is False

    def test_duplicate_labels_across_images_keep_best_score(self):
        result = parse_local_predictions(
            [("Tomato___Leaf_Mold", 0.4), ("Tomato___Leaf_Mold", 0.8), ("Tomato___healthy", 0.1)], 5, 2,
        )
        assert [p.confidence for p in result.predictions] == [0.8, 0.1]


@pytest.mark.parametrize("parse,payload", [
    (parse_plant_id_response, {"disease": {"suggestions": [{"id": "d1", "name": "Rust", "probability": None}]}}),
    (parse_plant_id_response, {"result": "not-a-dict"}),
    (parse_plantnet_response, {"results": [{"score": None, "species": {"scientificName": "Solanum nigrum"}}]}),
    (parse_plantnet_response, {"results": ["oops"]}),
    (parse_google_vision_response, {"responses": [{"labelAnnotations": [{"description": "Leaf", "score": "x"}]}]}),
    (parse_huggingface_response, [{"label": "Tomato rust", "score": None}]),
])
def test_malformed_payload_raises_non_retryable_provider_error(parse, payload):
    with pytest.raises(ProviderCallError) as exc_info:
        parse(payload, 10, 1)
    assert exc_info.value.retryable is False
    assert "malformed response" in exc_info.value.message


def test_label_helpers():
    assert slugify("Corn (maize) Common rust") == "corn__maize__common_rust"
    assert display_name("Apple___healthy") == "Healthy Apple"
    assert display_name("Tomato___Leaf_Mold") == "Leaf Mold"


def test_mock_adapter_is_deterministic():
    adapter = MockClassifierAdapter()
    first = adapter.classify([IMAGE])
    second = adapter.classify([IMAGE])
    assert first.predictions == second.predictions
    assert first.confidence == 0.85


def test_factory_builds_one_adapter_per_known_provider():
    configs = [ProviderConfig(name=n) for n in ("plant_id", "plantnet", "local_model", "mock", "unknown")]
    adapters = build_adapters(configs, session=MagicMock())
    assert sorted(adapters) == ["local_model", "mock", "plant_id", "plantnet"]
    assert all(adapters[name].name == name for name in adapters)
