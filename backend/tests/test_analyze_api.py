import base64
import json
import os
import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.v1.analyze import get_registry
from app.core.dependencies import get_db
from app.main import app
from app.models.audit import AuditLog, Base
from app.services.ai.common.providers import MockProvider, ProviderRegistry
from tests.conftest import _jpeg_bytes, _results_json

SPECS = [
    {"id": "s1", "code": "FL-05", "requirement": "Fire extinguishers shall be mounted and inspected"},
    {"id": "s2", "code": "KT-01", "requirement": "Kitchen floor smooth and washable", "requirementAr": "أرضية المطبخ"},
]

PROVIDER_OUTPUT = _results_json(
    {"specCode": "FL-05", "found": True, "result": "FAIL", "confidence": 92, "severity": "MAJOR"},
    {"specCode": "KT-01", "found": True, "result": "PASS", "confidence": 81},
)


def _image_b64(data_url: bool = False) -> str:
    encoded = base64.b64encode(_jpeg_bytes()).decode()
    return f"data:image/jpeg;base64,{encoded}" if data_url else encoded


class AnalyzeApiTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine(
            "sqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

        def override_get_db():
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        self.provider = MockProvider(PROVIDER_OUTPUT, name="gemini")
        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_registry] = lambda: ProviderRegistry((self.provider,))
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def test_analyze_image(self):
        resp = self.client.post(
            "/api/v1/analyze",
            json={"image": _image_b64(data_url=True), "specs": SPECS, "language": "en", "mode": "multi-spec"},
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        body = resp.json()
        self.assertFalse(body["degraded"])
        self.assertEqual(body["provider"], "gemini")
        self.assertEqual([r["specCode"] for r in body["results"]], ["FL-05", "KT-01"])
        self.assertEqual(body["results"][0]["result"], "FAIL")
        self.assertEqual(body["results"][0]["specId"], "s1")

        db = self.SessionLocal()
        try:
            self.assertEqual(db.query(AuditLog).count(), 1)
        finally:
            db.close()

    def test_analyze_image_plain_base64_and_arabic(self):
        resp = self.client.post(
            "/api/v1/analyze",
            json={"image": _image_b64(), "specs": SPECS, "language": "ar", "mode": "single-spec"},
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        self.assertIn("Arabic only", self.provider.calls[0]["prompt"])

    def test_missing_specs_is_422(self):
        resp = self.client.post("/api/v1/analyze", json={"image": _image_b64(), "specs": []})
        self.assertEqual(resp.status_code, 422)
        self.assertEqual(self.provider.calls, [])

    def test_bad_base64_is_400(self):
        resp = self.client.post("/api/v1/analyze", json={"image": "%%%", "specs": SPECS})
        self.assertEqual(resp.status_code, 400)

    def test_undecodable_image_is_400(self):
        payload = base64.b64encode(b"this is not a photo").decode()
        resp = self.client.post("/api/v1/analyze", json={"image": payload, "specs": SPECS})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(self.provider.calls, [])

    def test_unknown_language_is_400(self):
        resp = self.client.post("/api/v1/analyze", json={"image": _image_b64(), "specs": SPECS, "language": "fr"})
        self.assertEqual(resp.status_code, 400)

    def test_video_mode_with_image_is_400(self):
        resp = self.client.post(
            "/api/v1/analyze",
            json={"image": _image_b64(data_url=True), "specs": SPECS, "mode": "video"},
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(self.provider.calls, [])

    def test_analyze_document(self):
        self.provider = MockProvider(
            json.dumps(
                {
                    "documentType": "Health Certificate",
                    "details": {"issuingAuthority": "Ministry of Health", "expiryDate": "2099-12-31"},
                    "specResults": [{"specCode": "KT-01", "found": True, "result": "PASS", "confidence": 88}],
                }
            ),
            name="gemini",
        )
        resp = self.client.post(
            "/api/v1/analyze",
            json={"image": _image_b64(), "specs": SPECS, "mode": "document"},
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        body = resp.json()
        self.assertEqual(body["mode"], "document")
        self.assertEqual(body["document"]["issuingAuthority"], "Ministry of Health")
        self.assertFalse(body["document"]["isExpired"])
        self.assertEqual([r["specCode"] for r in body["results"]], ["KT-01"])

    def test_degraded_envelope_is_200(self):
        app.dependency_overrides[get_registry] = lambda: ProviderRegistry()
        resp = self.client.post("/api/v1/analyze", json={"image": _image_b64(), "specs": SPECS})
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body["degraded"])
        self.assertEqual(body["errorCode"], "configuration_missing")
        self.assertTrue(body["reasoningAr"])

    def test_analyze_video(self):
        resp = self.client.post(
            "/api/v1/analyze/video",
            files={"video": ("walk.webm", b"\x1aE\xdf\xa3webm-bytes", "video/webm")},
            data={"specs": json.dumps(SPECS), "language": "en", "frameTimestamps": "[4.5, 12]"},
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        body = resp.json()
        self.assertEqual(body["mode"], "video")
        self.assertEqual(body["summary"]["totalSpecs"], 2)
        self.assertEqual(self.provider.calls[0]["mime_type"], "video/webm")
        self.assertIn("4.5s, 12s", self.provider.calls[0]["prompt"])

    def test_analyze_video_invalid_specs_is_422(self):
        resp = self.client.post(
            "/api/v1/analyze/video",
            files={"video": ("walk.webm", b"bytes", "video/webm")},
            data={"specs": "not json"},
        )
        self.assertEqual(resp.status_code, 422)

    @patch.dict(os.environ, {"AI_MAX_VIDEO_BYTES": "4"}, clear=False)
    def test_analyze_video_too_large_is_400(self):
        resp = self.client.post(
            "/api/v1/analyze/video",
            files={"video": ("walk.webm", b"0123456789", "video/webm")},
            data={"specs": json.dumps(SPECS)},
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(self.provider.calls, [])

    def test_score(self):
        results = [
            {"specCode": "FL-05", "result": "FAIL", "confidence": 92, "severity": "CRITICAL", "finding": "Expired"},
            {"specCode": "KT-01", "result": "PASS", "confidence": 81},
        ]
        resp = self.client.post("/api/v1/analyze/score", json={"specs": SPECS, "results": results})
        self.assertEqual(resp.status_code, 200, resp.text)
        body = resp.json()
        self.assertEqual(body["overall"], 50)
        self.assertEqual([z["zoneId"] for z in body["byZone"]], ["main_area", "safety"])
        self.assertEqual(body["bySeverity"]["critical"], 1)
        self.assertEqual(body["priorityActions"][0]["specCode"], "FL-05")
        self.assertEqual(body["priorityActions"][0]["zone"], "Safety & Emergency")

    def test_zones(self):
        resp = self.client.get("/api/v1/zones")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual([z["id"] for z in body["zones"]][0], "exterior")
        self.assertEqual(len(body["sweepSequence"]), 5)

    def test_health_lists_provider_names(self):
        resp = self.client.get("/api/v1/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["providers"], ["gemini"])

    @patch.dict(os.environ, {"ENABLE_VISION_AI": "false"}, clear=False)
    def test_disabled_returns_404(self):
        for method, path in (("post", "/api/v1/analyze/score"), ("get", "/api/v1/zones")):
            with self.subTest(path=path):
                if method == "post":
                    resp = self.client.post(path, json={"specs": [], "results": []})
                else:
                    resp = self.client.get(path)
                self.assertEqual(resp.status_code, 404)

    def test_security_headers(self):
        resp = self.client.get("/health")
        self.assertEqual(resp.headers["X-Content-Type-Options"], "nosniff")
        self.assertEqual(resp.json(), {"status": "ok"})
