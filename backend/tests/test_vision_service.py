"""End-to-end analysis boundary with mock providers and an in-memory audit DB."""

import asyncio
import json
import os
import unittest
from datetime import date
from unittest.mock import patch

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.models.audit import AuditLog, Base
from app.services.ai.common.errors import InvalidRequest, ProviderError, ProviderErrorKind
from app.services.ai.common.providers import MockProvider, ProviderRegistry
from app.services.ai.vision import service
from app.services.ai.vision.contracts import AnalysisMode, AnalysisRequest, Verdict
from tests.conftest import _jpeg_bytes, _results_json, _spec

SPECS = [
    _spec("FL-05", "Fire extinguishers shall be mounted and inspected"),
    _spec("KT-01", "Kitchen floor smooth and washable"),
]

FL05_FAIL = _results_json(
    {"specCode": "FL-05", "found": True, "result": "FAIL", "confidence": 92, "severity": "MAJOR"},
    {"specCode": "KT-01", "found": True, "result": "PASS", "confidence": 30},
)


def _request(mode: AnalysisMode = AnalysisMode.MULTI_SPEC, **overrides) -> AnalysisRequest:
    data = {"media": _jpeg_bytes(), "specs": SPECS, "language": "en", "mode": mode}
    data.update(overrides)
    return AnalysisRequest.create(**data)


def _rate_limited(provider: str) -> ProviderError:
    return ProviderError(ProviderErrorKind.RATE_LIMITED, "quota", provider=provider)


class _DbTestCase(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine(
            "sqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self.db = self.SessionLocal()

    def tearDown(self):
        self.db.close()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def _analyze(self, request, registry, **kwargs):
        envelope = asyncio.run(service.analyze(request, registry=registry, db=self.db, today=date(2026, 3, 1), **kwargs))
        self.db.commit()
        return envelope


class AnalyzeSuccessTests(_DbTestCase):
    def test_multi_spec_results_normalized(self):
        provider = MockProvider(FL05_FAIL, name="gemini")
        envelope = self._analyze(_request(), ProviderRegistry((provider,)))

        self.assertFalse(envelope.degraded)
        self.assertEqual(envelope.provider, "gemini")
        self.assertEqual(len(envelope.results), 1)
        self.assertEqual(envelope.results[0].spec_code, "FL-05")
        self.assertEqual(envelope.results[0].result, Verdict.FAIL)
        self.assertEqual(provider.calls[0]["mime_type"], "image/jpeg")
        self.assertIn("FL-05", provider.calls[0]["prompt"])

    def test_fallback_reported(self):
        primary = MockProvider(name="gemini", error=_rate_limited("gemini"))
        secondary = MockProvider(FL05_FAIL, name="openai")
        envelope = self._analyze(_request(), ProviderRegistry((primary, secondary)))

        self.assertTrue(envelope.used_fallback)
        self.assertEqual(envelope.provider, "openai")
        self.assertEqual(len(envelope.results), 1)

    def test_auto_scan_carries_scan_extras(self):
        raw = json.dumps(
            {
                "imageDescription": "Ceiling above the prep line",
                "anomalies": [{"type": "water_damage", "severity": "MAJOR", "location": "ceiling"}],
                "results": [],
                "nextSweepDirection": "FORWARD",
            }
        )
        envelope = self._analyze(_request(AnalysisMode.AUTO_SCAN), ProviderRegistry((MockProvider(raw),)))

        self.assertIsNotNone(envelope.scan)
        self.assertEqual(envelope.scan.image_description, "Ceiling above the prep line")
        self.assertEqual(len(envelope.scan.anomalies), 1)
        self.assertIsNone(envelope.summary)

    def test_document_carries_details(self):
        raw = json.dumps(
            {
                "documentType": "Fire Safety Certificate",
                "details": {"licenseNumber": "CD-991", "expiryDate": "2026-02-01", "hasStamp": True},
                "results": [{"specCode": "FL-05", "found": True, "result": "FAIL", "confidence": 95}],
                "evidenceValid": True,
            }
        )
        provider = MockProvider(raw, name="gemini")
        envelope = self._analyze(_request(AnalysisMode.DOCUMENT), ProviderRegistry((provider,)))

        self.assertFalse(envelope.degraded)
        self.assertEqual(envelope.mode, AnalysisMode.DOCUMENT)
        self.assertEqual(envelope.document.license_number, "CD-991")
        self.assertTrue(envelope.document.is_expired)
        self.assertEqual(envelope.results[0].spec_code, "FL-05")
        self.assertIsNone(envelope.scan)
        self.assertIn("licenseNumber", provider.calls[0]["prompt"])
        self.assertEqual(provider.calls[0]["mime_type"], "image/jpeg")
        self.assertEqual(self.db.query(AuditLog).one().action, "AI_VISION_DOCUMENT_ANALYZED")

    def test_audit_entry_written(self):
        self._analyze(_request(), ProviderRegistry((MockProvider(FL05_FAIL, name="gemini"),)), actor_id="inspector-7")

        rows = self.db.query(AuditLog).all()
        self.assertEqual(len(rows), 1)
        row = rows[0]
        self.assertEqual(row.entity_type, "ai")
        self.assertEqual(row.action, "AI_VISION_MULTI_SPEC_ANALYZED")
        self.assertEqual(row.actor_id, "inspector-7")
        self.assertIsNone(row.error_code)
        self.assertEqual(row.audit_meta["provider"], "gemini")
        self.assertEqual(len(row.audit_meta["prompt_hash"]), 64)
        self.assertNotIn("prompt_raw", row.audit_meta)
        self.assertEqual(row.new_value["results"][0]["specCode"], "FL-05")

    @patch.dict(os.environ, {"AI_DEBUG_STORE_RAW": "true"}, clear=False)
    def test_raw_text_stored_only_in_debug(self):
        self._analyze(_request(), ProviderRegistry((MockProvider(FL05_FAIL),)))
        row = self.db.query(AuditLog).one()
        self.assertEqual(row.audit_meta["response_raw"], FL05_FAIL)
        self.assertIn("FL-05", row.audit_meta["prompt_raw"])

    def test_no_db_no_audit(self):
        envelope = asyncio.run(service.analyze(_request(), registry=ProviderRegistry((MockProvider(FL05_FAIL),))))
        self.assertFalse(envelope.degraded)
        self.assertEqual(self.db.query(AuditLog).count(), 0)


class AnalyzeDegradedTests(_DbTestCase):
    def test_no_providers_is_configuration_missing(self):
        envelope = self._analyze(_request(), ProviderRegistry())

        self.assertTrue(envelope.degraded)
        self.assertEqual(envelope.error_code, "configuration_missing")
        self.assertEqual(envelope.results, [])
        self.assertTrue(envelope.reasoning)
        self.assertTrue(envelope.reasoning_ar)

    def test_all_rate_limited(self):
        registry = ProviderRegistry(
            (
                MockProvider(name="gemini", error=_rate_limited("gemini")),
                MockProvider(name="openai", error=_rate_limited("openai")),
            )
        )
        envelope = self._analyze(_request(), registry)
        self.assertEqual(envelope.error_code, "rate_limited")

    def test_timeout(self):
        error = ProviderError(ProviderErrorKind.TRANSPORT, "slow", provider="gemini", reason="timeout")
        envelope = self._analyze(_request(), ProviderRegistry((MockProvider(error=error),)))
        self.assertEqual(envelope.error_code, "timeout")

    def test_unexpected_provider_error(self):
        error = ProviderError(ProviderErrorKind.UNEXPECTED, "500", provider="gemini")
        envelope = self._analyze(_request(), ProviderRegistry((MockProvider(error=error),)))
        self.assertEqual(envelope.error_code, "provider_error")

    def test_unparsable_output_is_parse_error(self):
        provider = MockProvider("Sorry, I cannot help with that.", name="claude")
        envelope = self._analyze(_request(), ProviderRegistry((provider,)))

        self.assertTrue(envelope.degraded)
        self.assertEqual(envelope.error_code, "parse_error")
        self.assertEqual(envelope.provider, "claude")

    def test_single_spec_failure_returns_uncertain_result(self):
        envelope = self._analyze(_request(AnalysisMode.SINGLE_SPEC), ProviderRegistry())

        self.assertEqual(len(envelope.results), 1)
        r = envelope.results[0]
        self.assertEqual(r.spec_code, "FL-05")
        self.assertEqual(r.result, Verdict.UNCERTAIN)
        self.assertEqual(r.confidence, 0)
        self.assertFalse(r.evidence_valid)

    def test_degraded_run_still_audited(self):
        self._analyze(_request(), ProviderRegistry())
        row = self.db.query(AuditLog).one()
        self.assertEqual(row.error_code, "configuration_missing")
        self.assertIsNone(row.new_value)

    def test_secondary_failure_after_fallback_reported(self):
        primary = MockProvider(name="gemini", error=_rate_limited("gemini"))
        secondary = MockProvider(
            name="openai",
            error=ProviderError(ProviderErrorKind.UNEXPECTED, "500", provider="openai"),
        )
        envelope = self._analyze(_request(), ProviderRegistry((primary, secondary)))

        self.assertTrue(envelope.degraded)
        self.assertEqual(envelope.error_code, "provider_error")
        self.assertTrue(envelope.used_fallback)
        self.assertEqual(len(secondary.calls), 1)

        meta = self.db.query(AuditLog).one().audit_meta
        self.assertTrue(meta["used_fallback"])
        self.assertEqual(
            [(a["provider"], a["outcome"]) for a in meta["attempts"]],
            [("gemini", "rate_limited"), ("openai", "unexpected")],
        )


class AnalyzeInvalidRequestTests(unittest.TestCase):
    def test_unreadable_image_rejected_before_provider_call(self):
        provider = MockProvider()
        request = _request(media=b"not an image")
        with self.assertRaises(InvalidRequest):
            asyncio.run(service.analyze(request, registry=ProviderRegistry((provider,))))
        self.assertEqual(provider.calls, [])

    def test_video_mode_rejects_image_media(self):
        provider = MockProvider()
        request = _request(AnalysisMode.VIDEO, mime_type="image/jpeg")
        with self.assertRaises(InvalidRequest):
            asyncio.run(service.analyze(request, registry=ProviderRegistry((provider,))))
        self.assertEqual(provider.calls, [])

    def test_image_mode_rejects_video_media(self):
        provider = MockProvider()
        request = _request(AnalysisMode.MULTI_SPEC, media=b"\x1aE\xdf\xa3webm", mime_type="video/webm")
        with self.assertRaises(InvalidRequest):
            asyncio.run(service.analyze(request, registry=ProviderRegistry((provider,))))
        self.assertEqual(provider.calls, [])

    def test_request_validation(self):
        for overrides in ({"specs": []}, {"media": b""}, {"language": "fr"}, {"mode": "panorama"}):
            with self.subTest(overrides=overrides):
                with self.assertRaises(InvalidRequest):
                    _request(**overrides)

    def test_language_normalised(self):
        self.assertEqual(_request(language="AR").language, "ar")


class AnalyzeVideoTests(_DbTestCase):
    def test_only_video_capable_providers_used(self):
        still = MockProvider(name="openai", supports_video=False)
        motion = MockProvider(
            _results_json(
                {"specCode": "FL-05", "result": "PASS", "confidence": 85, "evidenceTimestamp": 23.5},
            ),
            name="gemini",
        )
        envelope = asyncio.run(
            service.analyze_video(
                b"\x1aE\xdf\xa3webm",
                SPECS,
                mime_type="video/webm;codecs=vp9",
                frame_timestamps=[10.0],
                registry=ProviderRegistry((still, motion)),
                db=self.db,
            )
        )
        self.db.commit()

        self.assertEqual(still.calls, [])
        self.assertEqual(motion.calls[0]["mime_type"], "video/webm")
        self.assertEqual(envelope.mode, AnalysisMode.VIDEO)
        self.assertEqual(envelope.results[0].evidence_timestamp, 23.5)
        self.assertEqual(envelope.summary.total_specs, 2)
        self.assertEqual(envelope.summary.passed, 1)
        self.assertEqual(envelope.summary.unmatched_specs, ["KT-01"])
        self.assertEqual(self.db.query(AuditLog).one().action, "AI_VISION_VIDEO_ANALYZED")

    def test_no_video_capable_provider_is_configuration_missing(self):
        still = MockProvider(name="openai", supports_video=False)
        envelope = asyncio.run(service.analyze_video(b"video", SPECS, registry=ProviderRegistry((still,))))
        self.assertEqual(envelope.error_code, "configuration_missing")

    @patch.dict(os.environ, {"AI_MAX_VIDEO_BYTES": "10"}, clear=False)
    def test_oversized_video_rejected(self):
        with self.assertRaises(InvalidRequest):
            asyncio.run(service.analyze_video(b"x" * 11, SPECS, registry=ProviderRegistry((MockProvider(),))))
