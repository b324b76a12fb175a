"""Tests for upload session state and the submission gate."""

import base64

import pytest
from unittest.mock import AsyncMock, MagicMock

from mirrify.backends import EncoderBackend, LocalCanvasBackend, NativeResizeBackend
from mirrify.errors import BackendUnavailable, SessionError, UnsupportedFormat
from mirrify.models import (
    BackendUsed,
    NormalizationRequest,
    SlotRole,
    SlotState,
    UploadSession,
)
from mirrify.pipeline import ImageNormalizer

from conftest import decoded_size


class DownBackend(EncoderBackend):
    def __init__(self, name: BackendUsed):
        self.name = name

    async def encode(self, asset, target, request):
        raise BackendUnavailable("down")


@pytest.fixture
def session():
    return UploadSession(ImageNormalizer([NativeResizeBackend(), LocalCanvasBackend()]))


@pytest.fixture
def dead_session():
    normalizer = ImageNormalizer([
        DownBackend(BackendUsed.NATIVE),
        DownBackend(BackendUsed.CLOUD),
        DownBackend(BackendUsed.LOCAL),
    ])
    return UploadSession(normalizer)


class TestSlotIntake:

    def test_add_creates_queued_slot(self, session, make_image):
        slot = session.add(SlotRole.SUBJECT, make_image(100, 100), "me.jpg", "image/jpeg")

        assert slot.state is SlotState.QUEUED
        assert slot.asset is None
        assert slot.original.filename == "me.jpg"
        assert session.get(slot.id) is slot

    def test_rejects_non_image_mime(self, session):
        with pytest.raises(UnsupportedFormat):
            session.add(SlotRole.GARMENT, b"a,b,c", "catalog.csv", "text/csv")

    def test_rejects_unparseable_bytes(self, session, not_an_image):
        with pytest.raises(UnsupportedFormat):
            session.add(SlotRole.GARMENT, not_an_image, "fake.jpg", "image/jpeg")
        assert session.slots == []

    def test_single_subject_mode(self, session, make_image):
        session.add(SlotRole.SUBJECT, make_image(10, 10), "a.jpg", "image/jpeg")
        with pytest.raises(SessionError):
            session.add(SlotRole.SUBJECT, make_image(10, 10), "b.jpg", "image/jpeg")

    def test_multiple_subjects_when_policy_off(self, make_image):
        session = UploadSession(MagicMock(), single_subject=False)
        session.add(SlotRole.SUBJECT, make_image(10, 10), "a.jpg", "image/jpeg")
        session.add(SlotRole.SUBJECT, make_image(10, 10), "b.jpg", "image/jpeg")
        assert len(session.slots_for(SlotRole.SUBJECT)) == 2

    def test_garment_limit(self, session, make_image):
        for i in range(5):
            session.add(SlotRole.GARMENT, make_image(10, 10), f"{i}.jpg", "image/jpeg")
        with pytest.raises(SessionError):
            session.add(SlotRole.GARMENT, make_image(10, 10), "6.jpg", "image/jpeg")

    def test_remove(self, session, make_image):
        slot = session.add(SlotRole.GARMENT, make_image(10, 10), "g.jpg", "image/jpeg")
        session.remove(slot.id)
        assert session.slots == []
        with pytest.raises(SessionError):
            session.remove(slot.id)


class TestNormalization:

    @pytest.mark.asyncio
    async def test_slots_become_ready(self, session, make_image):
        subject = session.add(SlotRole.SUBJECT, make_image(3000, 1500), "me.jpg", "image/jpeg")
        garment = session.add(SlotRole.GARMENT, make_image(400, 300, "PNG"), "g.png", "image/png")

        await session.normalize_pending()

        assert subject.state is SlotState.READY
        assert garment.state is SlotState.READY
        assert subject.result.backend_used is BackendUsed.NATIVE
        assert decoded_size(subject.asset.data) == (2048, 1024)

    @pytest.mark.asyncio
    async def test_exhausted_pipeline_marks_failed_but_usable(self, dead_session, make_image):
        data = make_image(300, 200)
        slot = dead_session.add(SlotRole.SUBJECT, data, "me.jpg", "image/jpeg")

        await dead_session.normalize_pending()

        assert slot.state is SlotState.FAILED
        assert slot.usable
        assert slot.payload_asset.data == data

    @pytest.mark.asyncio
    async def test_unexpected_error_does_not_leave_slot_normalizing(self, make_image):
        normalizer = MagicMock()
        normalizer.normalize = AsyncMock(side_effect=RuntimeError("decoder crashed"))
        session = UploadSession(normalizer)
        slot = session.add(SlotRole.SUBJECT, make_image(10, 10), "me.jpg", "image/jpeg")

        with pytest.raises(RuntimeError):
            await session.normalize_slot(slot)

        assert slot.state is SlotState.FAILED
        assert slot.usable
        assert slot.payload_asset is slot.original

    def test_oversized_upload_rejected_at_intake(self, session, make_image, small_pixel_limit):
        with pytest.raises(UnsupportedFormat):
            session.add(SlotRole.SUBJECT, make_image(100, 100), "huge.jpg", "image/jpeg")
        assert session.slots == []

    @pytest.mark.asyncio
    async def test_state_is_normalizing_during_call(self, make_image):
        observed = {}
        normalizer = MagicMock()

        async def fake_normalize(asset, request):
            observed["state"] = slot.state
            real = ImageNormalizer([LocalCanvasBackend()])
            return await real.normalize(asset, request)

        normalizer.normalize = AsyncMock(side_effect=fake_normalize)
        session = UploadSession(normalizer)
        slot = session.add(SlotRole.GARMENT, make_image(10, 10), "g.jpg", "image/jpeg")

        await session.normalize_pending()

        assert observed["state"] is SlotState.NORMALIZING
        assert slot.state is SlotState.READY

    @pytest.mark.asyncio
    async def test_uses_session_request(self, make_image):
        request = NormalizationRequest(max_dimension=50, output_format="png")
        session = UploadSession(ImageNormalizer([NativeResizeBackend()]), request=request)
        slot = session.add(SlotRole.GARMENT, make_image(200, 100), "g.jpg", "image/jpeg")

        await session.normalize_pending()

        assert slot.asset.mime_type == "image/png"
        assert decoded_size(slot.asset.data) == (100, 50)

    @pytest.mark.asyncio
    async def test_already_normalized_slots_skipped(self, make_image):
        normalizer = ImageNormalizer([LocalCanvasBackend()])
        normalizer.normalize = AsyncMock(wraps=normalizer.normalize)
        session = UploadSession(normalizer)
        session.add(SlotRole.GARMENT, make_image(10, 10), "g.jpg", "image/jpeg")

        await session.normalize_pending()
        await session.normalize_pending()

        assert normalizer.normalize.await_count == 1


class TestSubmissionGate:

    def test_requires_person_image(self, session, make_image):
        session.add(SlotRole.GARMENT, make_image(10, 10), "g.jpg", "image/jpeg")
        with pytest.raises(SessionError, match="person"):
            session.build_prediction_request()

    def test_requires_product_image(self, session, make_image):
        session.add(SlotRole.SUBJECT, make_image(10, 10), "me.jpg", "image/jpeg")
        with pytest.raises(SessionError, match="product"):
            session.build_prediction_request()

    def test_blocks_while_queued(self, session, make_image):
        session.add(SlotRole.SUBJECT, make_image(10, 10), "me.jpg", "image/jpeg")
        session.add(SlotRole.GARMENT, make_image(10, 10), "g.jpg", "image/jpeg")
        assert not session.can_submit
        with pytest.raises(SessionError, match="processing"):
            session.build_prediction_request()

    @pytest.mark.asyncio
    async def test_builds_vertex_payload(self, session, make_image):
        session.add(SlotRole.SUBJECT, make_image(3000, 1500), "me.jpg", "image/jpeg")
        session.add(SlotRole.GARMENT, make_image(100, 100), "g1.jpg", "image/jpeg")
        session.add(SlotRole.GARMENT, make_image(120, 100), "g2.jpg", "image/jpeg")
        await session.normalize_pending()

        assert session.can_submit
        payload = session.build_prediction_request({"sampleCount": 1}).to_payload()

        instance = payload["instances"][0]
        person = base64.b64decode(instance["personImage"]["image"]["bytesBase64Encoded"])
        assert decoded_size(person) == (2048, 1024)
        assert len(instance["productImages"]) == 2
        assert payload["parameters"] == {"sampleCount": 1}

    @pytest.mark.asyncio
    async def test_passthrough_images_still_submitted(self, dead_session, make_image):
        data = make_image(30, 30)
        dead_session.add(SlotRole.SUBJECT, data, "me.jpg", "image/jpeg")
        dead_session.add(SlotRole.GARMENT, make_image(20, 20), "g.jpg", "image/jpeg")
        await dead_session.normalize_pending()

        payload = dead_session.build_prediction_request().to_payload()

        person = payload["instances"][0]["personImage"]["image"]["bytesBase64Encoded"]
        assert base64.b64decode(person) == data
        assert "parameters" not in payload
