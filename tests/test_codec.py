"""Tests for the .mind archive codec."""

import msgpack
import numpy as np
import pytest

from target_compiler.records import (
    CompiledTarget,
    FeaturePoint,
    GreyImage,
    Keyframe,
    TrackingFeatureSet,
)


def create_test_targets():
    """Two hand-built targets with opaque payloads covering every byte value."""
    point_a = FeaturePoint(x=12.0, y=7.5, scale=1.0, angle=-0.25, response=41.125,
                           maxima=True, descriptors=bytes(range(256)))
    point_b = FeaturePoint(x=3.0, y=19.0, scale=1.0, angle=3.0, response=9.0,
                           maxima=False, descriptors=bytes(reversed(range(32))))
    cluster = {
        "rootNode": {
            "leaf": False,
            "centerPointIndex": None,
            "children": [{"leaf": True, "centerPointIndex": 0, "pointIndexes": [0]}],
        }
    }
    keyframe = Keyframe(
        maxima_points=[point_a],
        minima_points=[point_b],
        maxima_cluster=cluster,
        minima_cluster={"rootNode": {"leaf": True, "centerPointIndex": None, "pointIndexes": [0]}},
        width=40,
        height=30,
        scale=1.0,
    )
    feature_set = TrackingFeatureSet(
        data=np.arange(12 * 10, dtype=np.uint8).reshape(10, 12),
        scale=0.3,
        width=12,
        height=10,
        points=[[1.0, 2.5], [7.0, 8.0]],
    )
    empty_set = TrackingFeatureSet(
        data=np.zeros((5, 6), dtype=np.uint8), scale=0.15, width=6, height=5, points=[]
    )

    return [
        CompiledTarget(image=GreyImage(width=40, height=30),
                       matching_data=[keyframe], tracking_data=[feature_set, empty_set]),
        CompiledTarget(image=GreyImage(width=640, height=480),
                       matching_data=[], tracking_data=[]),
    ]


class TestRoundTrip:
    """Tests for encode/decode round trips."""

    def test_round_trip(self):
        from target_compiler.codec import decode, encode

        targets = create_test_targets()

        assert decode(encode(targets)) == targets

    def test_opaque_payloads_byte_exact(self):
        from target_compiler.codec import decode, encode

        decoded = decode(encode(create_test_targets()))
        keyframe = decoded[0].matching_data[0]

        assert keyframe.maxima_points[0].descriptors == bytes(range(256))
        assert keyframe.maxima_cluster["rootNode"]["children"][0]["pointIndexes"] == [0]
        assert decoded[0].tracking_data[0].data.tobytes() == bytes(range(120))

    def test_image_pixels_not_persisted(self):
        """Only dimensions of the full-resolution image are stored."""
        from target_compiler.codec import decode, encode

        targets = create_test_targets()
        targets[0].image = GreyImage(width=40, height=30, data=np.full((30, 40), 9, dtype=np.uint8))

        content = msgpack.unpackb(encode(targets), raw=False)
        decoded = decode(encode(targets))

        assert content["dataList"][0]["targetImage"] == {"width": 40, "height": 30}
        assert decoded[0].image.data is None
        assert decoded[0].image.width == 40

    def test_wire_layout(self):
        """Archive uses the .mind key names."""
        from target_compiler.codec import CURRENT_VERSION, encode

        content = msgpack.unpackb(encode(create_test_targets()), raw=False)
        keyframe = content["dataList"][0]["matchingData"][0]

        assert content["v"] == CURRENT_VERSION
        assert set(keyframe) == {
            "maximaPoints", "minimaPoints", "maximaPointsCluster", "minimaPointsCluster",
            "width", "height", "scale",
        }
        assert isinstance(content["dataList"][0]["trackingData"][0]["data"], bytes)

    def test_order_preserved(self):
        from target_compiler.codec import decode, encode

        targets = [
            CompiledTarget(image=GreyImage(width=w, height=h), matching_data=[], tracking_data=[])
            for w, h in [(10, 20), (30, 40), (50, 60)]
        ]

        decoded = decode(encode(targets))

        assert [(t.image.width, t.image.height) for t in decoded] == [(10, 20), (30, 40), (50, 60)]

    def test_numpy_scalars_from_custom_collaborators(self):
        """numpy scalar values are written as plain numbers."""
        from target_compiler.codec import decode, encode

        targets = create_test_targets()
        targets[0].tracking_data[0].points = [[np.float32(1.5), np.float64(2.0)]]

        decoded = decode(encode(targets))

        assert decoded[0].tracking_data[0].points == [[1.5, 2.0]]

    def test_opaque_point_payloads_pass_through(self):
        """Tracking points and descriptors keep whatever msgpack-able shape they have."""
        from target_compiler.codec import decode, encode

        targets = create_test_targets()
        targets[0].tracking_data[0].points = [{"x": 1.0, "y": 2.0}, {"x": 4.5, "y": 0.5}]
        targets[0].tracking_data[1].points = [(3.0, 4.0)]
        targets[0].matching_data[0].minima_points[0].descriptors = [7, 1, 255]

        decoded = decode(encode(targets))

        assert decoded == targets
        assert decoded[0].tracking_data[0].points[0] == {"x": 1.0, "y": 2.0}
        assert decoded[0].matching_data[0].minima_points[0].descriptors == [7, 1, 255]


class TestVersioning:
    """Tests for archive version checks."""

    def test_older_version_rejected(self):
        from target_compiler.codec import CURRENT_VERSION, decode, encode
        from target_compiler.errors import VersionMismatch

        blob = encode(create_test_targets(), version=CURRENT_VERSION - 1)

        with pytest.raises(VersionMismatch) as exc_info:
            decode(blob)

        assert exc_info.value.found == CURRENT_VERSION - 1
        assert exc_info.value.expected == CURRENT_VERSION

    def test_missing_version_rejected(self):
        from target_compiler.codec import decode
        from target_compiler.errors import VersionMismatch

        blob = msgpack.packb({"dataList": []})

        with pytest.raises(VersionMismatch):
            decode(blob)

    def test_boolean_version_rejected(self):
        """`True` is not the integer version 1."""
        from target_compiler.codec import decode
        from target_compiler.errors import VersionMismatch

        blob = msgpack.packb({"v": True, "dataList": []})

        with pytest.raises(VersionMismatch):
            decode(blob, version=1)

    def test_explicit_version_threaded_through(self):
        from target_compiler.codec import decode, encode

        targets = create_test_targets()

        assert decode(encode(targets, version=7), version=7) == targets


class TestMalformedArchives:
    """Tests for archives that cannot be decoded."""

    def test_garbage_bytes(self):
        from target_compiler.codec import decode
        from target_compiler.errors import ArchiveError

        with pytest.raises(ArchiveError):
            decode(b"not an archive")

    def test_root_not_a_map(self):
        from target_compiler.codec import decode
        from target_compiler.errors import ArchiveError

        with pytest.raises(ArchiveError, match="not a map"):
            decode(msgpack.packb([1, 2, 3]))

    def test_invalid_target_rejected_whole(self):
        """One bad target fails the whole decode."""
        from target_compiler.codec import CURRENT_VERSION, decode, encode
        from target_compiler.errors import ArchiveError, VersionMismatch

        content = msgpack.unpackb(encode(create_test_targets()), raw=False)
        content["dataList"][1]["targetImage"]["width"] = 0
        blob = msgpack.packb(content, use_bin_type=True)

        with pytest.raises(ArchiveError) as exc_info:
            decode(blob, CURRENT_VERSION)
        assert not isinstance(exc_info.value, VersionMismatch)

    def test_truncated_tracking_buffer(self):
        from target_compiler.codec import decode, encode
        from target_compiler.errors import ArchiveError

        content = msgpack.unpackb(encode(create_test_targets()), raw=False)
        content["dataList"][0]["trackingData"][0]["data"] = b"\x00" * 5
        blob = msgpack.packb(content, use_bin_type=True)

        with pytest.raises(ArchiveError, match="Tracking buffer"):
            decode(blob)

    def test_read_header(self):
        from target_compiler.codec import CURRENT_VERSION, encode, read_header

        version, count = read_header(encode(create_test_targets()))

        assert version == CURRENT_VERSION
        assert count == 2


class TestArchiveValidation:
    """Tests for archive file validation used by the info command."""

    def test_validate_archive(self, tmp_path):
        from target_compiler.codec import CURRENT_VERSION, encode
        from utils.validation import validate_archive

        path = tmp_path / "targets.mind"
        path.write_bytes(encode(create_test_targets()))

        is_valid, info, errors = validate_archive(path, CURRENT_VERSION)

        assert is_valid
        assert len(errors) == 0
        assert info["version"] == CURRENT_VERSION
        assert info["target_count"] == 2
        assert info["targets"][0]["keyframes"] == 1
        assert info["targets"][0]["feature_points"] == 2
        assert info["targets"][0]["tracking_points"] == 2
        assert info["targets"][1]["width"] == 640

    def test_validate_outdated_archive(self, tmp_path):
        from target_compiler.codec import CURRENT_VERSION, encode
        from utils.validation import validate_archive

        path = tmp_path / "old.mind"
        path.write_bytes(encode(create_test_targets(), version=CURRENT_VERSION - 1))

        is_valid, info, errors = validate_archive(path, CURRENT_VERSION)

        assert not is_valid
        assert "does not match" in errors[0]

    def test_validate_missing_archive(self, tmp_path):
        from utils.validation import validate_archive

        is_valid, info, errors = validate_archive(tmp_path / "nonexistent.mind", 2)

        assert not is_valid
        assert len(errors) > 0

    def test_validate_malformed_archive_reports_header(self, tmp_path):
        """Header fields are reported even when a target fails validation."""
        from target_compiler.codec import CURRENT_VERSION, encode
        from utils.validation import validate_archive

        content = msgpack.unpackb(encode(create_test_targets()), raw=False)
        content["dataList"][0]["trackingData"][0]["data"] = b"\x00"
        path = tmp_path / "broken.mind"
        path.write_bytes(msgpack.packb(content, use_bin_type=True))

        is_valid, info, errors = validate_archive(path, CURRENT_VERSION)

        assert not is_valid
        assert info["version"] == CURRENT_VERSION
        assert info["target_count"] == 2
        assert "Tracking buffer" in errors[0]
