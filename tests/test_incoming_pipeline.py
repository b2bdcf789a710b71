"""Tests for the incoming fax pipeline."""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from faxbridge.core.exceptions import SpoolError
from faxbridge.models.domain.outcome import OutcomeStatus
from faxbridge.models.entities.incoming_fax import IncomingFax
from faxbridge.services.incoming_pipeline import IncomingPipeline

SERVER_NAME = "upstream-1"
TIFF_BYTES = b"II*\x00 received image"
RECEIVED_AT = 1709294400  # 2024-03-01T12:00:00Z


def make_pipeline(store, converter, spool, spool_dirs) -> IncomingPipeline:
    return IncomingPipeline(
        store,
        converter,
        spool,
        server_name=SERVER_NAME,
        incoming_dir=spool_dirs["incoming"],
    )


def drop_artifact(spool_dirs, name="fax-1", image=None, write_image=True, **overrides):
    """Write an image plus its JSON sidecar the way the telephony side does."""
    incoming = spool_dirs["incoming"]
    image_path = incoming / f"{name}.tiff"
    if write_image:
        image_path.write_bytes(TIFF_BYTES)
    metadata = {
        "image": image if image is not None else str(image_path),
        "received_at": RECEIVED_AT,
        "from": "+4940111222",
        "to": "+4930123456",
        "tenant_id": 5,
    }
    metadata.update(overrides)
    sidecar = incoming / f"{name}.json"
    sidecar.write_text(json.dumps(metadata))
    return sidecar, image_path


def incoming_rows(session_factory) -> list[IncomingFax]:
    with session_factory() as session:
        return list(session.scalars(select(IncomingFax).order_by(IncomingFax.id)))


class TestIncomingPipeline:

    @pytest.mark.asyncio
    async def test_artifact_is_persisted_and_removed(self, store, seed, session_factory, spool, spool_dirs, converter):
        server = seed.server()
        trunk = seed.trunk(full_number="+4930123456")
        sidecar, image = drop_artifact(spool_dirs)

        report = await make_pipeline(store, converter, spool, spool_dirs).run()

        assert report.succeeded == 1
        [row] = incoming_rows(session_factory)
        assert row.fax_data == b"pdf:" + TIFF_BYTES
        assert row.filename == "fax-1.pdf"
        assert row.state == "unread"
        assert row.sender == "+4940111222"
        assert row.customer_id == 5
        assert row.iaxfriends_id == server
        assert row.incoming_number_id == trunk
        assert row.received_at.replace(tzinfo=timezone.utc) == datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
        assert not sidecar.exists()
        assert not image.exists()
        assert not (spool_dirs["incoming"] / "fax-1.pdf").exists()

    @pytest.mark.asyncio
    async def test_malformed_sidecar_is_quarantined(self, store, seed, session_factory, spool, spool_dirs, converter):
        seed.server()
        seed.trunk()
        sidecar = spool_dirs["incoming"] / "broken.json"
        sidecar.write_text('{"image": "x.tiff", "received_at": ')

        report = await make_pipeline(store, converter, spool, spool_dirs).run()

        [outcome] = report.outcomes
        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.stage == "metadata"
        assert outcome.error["error"] == "META_001"
        assert not sidecar.exists()
        assert (spool_dirs["quarantine"] / "broken.json").exists()
        assert incoming_rows(session_factory) == []
        assert converter.calls == []

    @pytest.mark.asyncio
    async def test_sidecar_missing_required_key_is_malformed(self, store, seed, spool, spool_dirs, converter):
        seed.server()
        seed.trunk()
        drop_artifact(spool_dirs, tenant_id=None)

        report = await make_pipeline(store, converter, spool, spool_dirs).run()

        [outcome] = report.outcomes
        assert outcome.error["error"] == "META_001"

    @pytest.mark.asyncio
    async def test_out_of_range_receipt_time_is_quarantined(self, store, seed, session_factory, spool, spool_dirs, converter):
        seed.server()
        seed.trunk()
        sidecar, image = drop_artifact(spool_dirs, received_at=10**20)

        report = await make_pipeline(store, converter, spool, spool_dirs).run()

        [outcome] = report.outcomes
        assert outcome.stage == "metadata"
        assert outcome.error["error"] == "META_001"
        assert not sidecar.exists()
        assert not image.exists()
        assert (spool_dirs["quarantine"] / "fax-1.json").exists()
        assert (spool_dirs["quarantine"] / "fax-1.tiff").exists()
        assert incoming_rows(session_factory) == []
        assert converter.calls == []

    @pytest.mark.asyncio
    async def test_unparseable_sidecar_quarantines_same_stem_image(self, store, spool, spool_dirs, converter):
        incoming = spool_dirs["incoming"]
        (incoming / "fax-9.json").write_text("not json")
        (incoming / "fax-9.tiff").write_bytes(TIFF_BYTES)
        (incoming / "fax-10.tiff").write_bytes(TIFF_BYTES)

        await make_pipeline(store, converter, spool, spool_dirs).run()

        assert sorted(p.name for p in spool_dirs["quarantine"].iterdir()) == ["fax-9.json", "fax-9.tiff"]
        assert (incoming / "fax-10.tiff").exists()

    @pytest.mark.asyncio
    async def test_repeated_malformed_sidecar_name_keeps_both(self, store, spool, spool_dirs, converter):
        pipeline = make_pipeline(store, converter, spool, spool_dirs)
        sidecar = spool_dirs["incoming"] / "broken.json"

        sidecar.write_text('{"first": true')
        await pipeline.run()
        sidecar.write_text('{"second": true')
        await pipeline.run()

        quarantined = sorted(p.read_text() for p in spool_dirs["quarantine"].iterdir())
        assert quarantined == ['{"first": true', '{"second": true']

    @pytest.mark.asyncio
    async def test_image_outside_inbound_directory_is_not_quarantined(self, store, spool, spool_dirs, converter, tmp_path):
        outside = tmp_path / "elsewhere.tiff"
        outside.write_bytes(TIFF_BYTES)
        (spool_dirs["incoming"] / "fax-1.json").write_text(json.dumps({"image": str(outside), "received_at": -1}))

        await make_pipeline(store, converter, spool, spool_dirs).run()

        assert outside.exists()
        assert [p.name for p in spool_dirs["quarantine"].iterdir()] == ["fax-1.json"]

    @pytest.mark.asyncio
    async def test_missing_image_is_skipped_until_next_poll(self, store, seed, session_factory, spool, spool_dirs, converter):
        seed.server()
        seed.trunk()
        sidecar, _ = drop_artifact(spool_dirs, write_image=False)

        report = await make_pipeline(store, converter, spool, spool_dirs).run()

        [outcome] = report.outcomes
        assert outcome.status == OutcomeStatus.SKIPPED
        assert outcome.stage == "discover"
        assert sidecar.exists()
        assert incoming_rows(session_factory) == []

    @pytest.mark.asyncio
    async def test_unknown_destination_leaves_files_in_place(self, store, seed, session_factory, spool, spool_dirs, converter):
        seed.server()
        seed.trunk(full_number="+4930999999")
        sidecar, image = drop_artifact(spool_dirs)

        report = await make_pipeline(store, converter, spool, spool_dirs).run()

        [outcome] = report.outcomes
        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.stage == "identity"
        assert outcome.error["error"] == "STORE_001"
        assert sidecar.exists()
        assert image.exists()
        assert incoming_rows(session_factory) == []

    @pytest.mark.asyncio
    async def test_destination_in_double_zero_notation(self, store, seed, session_factory, spool, spool_dirs, converter):
        seed.server()
        trunk = seed.trunk(full_number="004930123456")
        drop_artifact(spool_dirs, to="+4930123456")

        report = await make_pipeline(store, converter, spool, spool_dirs).run()

        assert report.succeeded == 1
        [row] = incoming_rows(session_factory)
        assert row.incoming_number_id == trunk

    @pytest.mark.asyncio
    async def test_numeric_sender_is_accepted(self, store, seed, session_factory, spool, spool_dirs, converter):
        seed.server()
        seed.trunk()
        drop_artifact(spool_dirs, **{"from": 4940111222})

        await make_pipeline(store, converter, spool, spool_dirs).run()

        [row] = incoming_rows(session_factory)
        assert row.sender == "4940111222"

    @pytest.mark.asyncio
    async def test_relative_image_path_resolves_against_incoming_dir(self, store, seed, spool, spool_dirs, converter):
        seed.server()
        seed.trunk()
        _, image = drop_artifact(spool_dirs, image="fax-1.tiff")

        report = await make_pipeline(store, converter, spool, spool_dirs).run()

        assert report.succeeded == 1
        assert converter.calls == [(image, "pdf")]

    @pytest.mark.asyncio
    async def test_conversion_failure_keeps_artifact(self, store, seed, session_factory, spool, spool_dirs, converter_factory):
        seed.server()
        seed.trunk()
        sidecar, image = drop_artifact(spool_dirs)
        converter = converter_factory(fail_on={"fax-1.tiff"})

        report = await make_pipeline(store, converter, spool, spool_dirs).run()

        [outcome] = report.outcomes
        assert outcome.stage == "convert"
        assert outcome.error["error"] == "CONV_001"
        assert sidecar.exists()
        assert image.exists()
        assert incoming_rows(session_factory) == []

    @pytest.mark.asyncio
    async def test_cleanup_failure_is_partial_and_not_reingested(self, store, seed, session_factory, spool, spool_dirs, converter):
        seed.server()
        seed.trunk()
        sidecar, _ = drop_artifact(spool_dirs)
        failing_remove = AsyncMock(side_effect=SpoolError("unlink", str(sidecar), "Permission denied"))
        pipeline = make_pipeline(store, converter, spool, spool_dirs)

        with patch.object(spool, "remove", failing_remove):
            first = await pipeline.run()
        second = await pipeline.run()

        assert first.outcomes[0].status == OutcomeStatus.PARTIAL
        assert first.outcomes[0].stage == "cleanup"
        assert second.succeeded == 1
        assert len(incoming_rows(session_factory)) == 1
        assert not sidecar.exists()

    @pytest.mark.asyncio
    async def test_each_artifact_is_handled_independently(self, store, seed, session_factory, spool, spool_dirs, converter):
        seed.server()
        seed.trunk()
        drop_artifact(spool_dirs, name="fax-1")
        drop_artifact(spool_dirs, name="fax-2", to="+4930000000")
        drop_artifact(spool_dirs, name="fax-3")

        report = await make_pipeline(store, converter, spool, spool_dirs).run()

        statuses = {outcome.subject: outcome.status for outcome in report.outcomes}
        assert statuses == {
            "fax-1.json": OutcomeStatus.SUCCEEDED,
            "fax-2.json": OutcomeStatus.FAILED,
            "fax-3.json": OutcomeStatus.SUCCEEDED,
        }
        assert sorted(row.filename for row in incoming_rows(session_factory)) == ["fax-1.pdf", "fax-3.pdf"]

    @pytest.mark.asyncio
    async def test_empty_directory_yields_empty_report(self, store, spool, spool_dirs, converter):
        report = await make_pipeline(store, converter, spool, spool_dirs).run()

        assert report.outcomes == []
