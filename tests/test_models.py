"""Tests for data models."""

import json
from datetime import datetime, timezone

from storage_cli.models import (
    MIB,
    BlobProperties,
    CompletedPart,
    CopyStrategy,
    MultipartSession,
    ObjectInfo,
    Part,
    TransferSettings,
)


class TestPart:
    """Tests for Part dataclass."""

    def test_length_is_inclusive(self):
        assert Part(index=1, start_byte=0, end_byte=9).length == 10

    def test_single_byte(self):
        assert Part(index=3, start_byte=42, end_byte=42).length == 1


class TestCopyStrategy:
    """Tests for CopyStrategy enum."""

    def test_strategy_values(self):
        assert CopyStrategy.SIMPLE.value == "simple"
        assert CopyStrategy.MULTIPART.value == "multipart"


class TestMultipartSession:
    """Tests for MultipartSession dataclass."""

    def test_ordered_parts(self):
        session = MultipartSession(upload_id="u", destination_key="k")
        session.parts.extend([
            CompletedPart(part_number=2, etag="b"),
            CompletedPart(part_number=1, etag="a"),
        ])

        assert [p.etag for p in session.ordered_parts()] == ["a", "b"]

    def test_parts_not_shared_between_sessions(self):
        first = MultipartSession(upload_id="1", destination_key="k")
        first.parts.append(CompletedPart(part_number=1, etag="a"))

        assert MultipartSession(upload_id="2", destination_key="k").parts == []


class TestBlobProperties:
    """Tests for BlobProperties dataclass."""

    def test_from_object_info_strips_etag_quotes(self):
        info = ObjectInfo(
            key="k",
            size=5,
            etag='"abc123"',
            last_modified=datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc),
        )

        props = BlobProperties.from_object_info(info)

        assert props.etag == "abc123"
        assert props.content_length == 5

    def test_to_dict_all_fields(self):
        props = BlobProperties(
            etag="abc123",
            last_modified=datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc),
            content_length=5,
        )

        assert props.to_dict() == {
            "etag": "abc123",
            "last_modified": "2024-05-06T07:08:09+00:00",
            "content_length": 5,
        }

    def test_to_dict_omits_empty_values(self):
        """Empty fields are left out rather than printed as blanks."""
        assert BlobProperties().to_dict() == {}

    def test_to_json_is_indented(self):
        text = BlobProperties(etag="abc", content_length=1).to_json()

        assert json.loads(text) == {"etag": "abc", "content_length": 1}
        assert "\n  " in text


class TestTransferSettings:
    """Tests for TransferSettings dataclass."""

    def test_defaults(self):
        settings = TransferSettings()

        assert settings.upload_part_size == 5 * MIB
        assert settings.multipart_copy_part_size == 100 * MIB
        assert settings.delete_concurrency == 10
        assert settings.timeout_seconds is None

    def test_upload_spec(self):
        settings = TransferSettings(upload_part_size=MIB, upload_concurrency=3, multipart_upload=False)

        spec = settings.upload_spec(10 * MIB)

        assert spec.source_size == 10 * MIB
        assert spec.part_size == MIB
        assert spec.concurrency == 3
        assert spec.multipart_enabled is False

    def test_download_spec(self):
        spec = TransferSettings(download_part_size=2 * MIB, download_concurrency=7).download_spec(100)

        assert spec.part_size == 2 * MIB
        assert spec.concurrency == 7
        assert spec.multipart_enabled is True
