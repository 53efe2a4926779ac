import math

import numpy as np
import pytest

from face_presence.types import (
    AttendanceRecord,
    DetectionSample,
    FaceDescriptor,
    Identity,
    Status,
    StatusSnapshot,
    SubmissionOutcome,
    SubmissionRequest,
)


def test_descriptor_is_a_frozen_copy():
    source = np.array([0.1, 0.2, 0.3], dtype=np.float32)
    descriptor = FaceDescriptor.from_array(source)
    source[0] = 9.0

    assert len(descriptor) == 3
    assert descriptor.values[0] == pytest.approx(0.1)
    with pytest.raises(AttributeError):
        descriptor.values = (1.0,)


@pytest.mark.parametrize("values", [(), (0.1, math.nan), (math.inf,)])
def test_descriptor_rejects_invalid_values(values):
    with pytest.raises(ValueError):
        FaceDescriptor(values=values)


def test_absent_sample_carries_no_descriptor(descriptor):
    assert DetectionSample.absent().descriptor is None
    with pytest.raises(ValueError):
        DetectionSample(present=False, descriptor=descriptor)
    with pytest.raises(ValueError):
        DetectionSample(present=True)


def test_identity_rejects_blank_fields():
    with pytest.raises(ValueError):
        Identity(roll=" ", name="A", email="a@example.edu")


def test_request_payload_matches_wire_contract(identity, descriptor):
    request = SubmissionRequest(identity=identity, descriptor=descriptor, image=b"jpeg")

    body = request.payload()

    assert set(body) == {"roll", "name", "email", "vector"}
    assert body["roll"] == "21CS042"
    assert body["vector"] == list(descriptor.values)


def test_outcome_confidence_bounds():
    with pytest.raises(ValueError):
        SubmissionOutcome(recognized=True, confidence=1.2)
    assert SubmissionOutcome(recognized=False, confidence=0.85).status == "absent"


def test_record_row_layout(identity, descriptor):
    request = SubmissionRequest(identity=identity, descriptor=descriptor)
    record = AttendanceRecord.from_outcome(request, SubmissionOutcome(True, 0.92), image_url=None)

    row = record.to_row()

    assert row["status"] == "present"
    assert row["confidence_score"] == 0.92
    assert row["image_url"] is None
    assert row["email"] == "asha@example.edu"
    assert len(row["face_vector"]) == 128


def test_snapshot_display_state():
    assert StatusSnapshot(Status.SCANNING, "x").display_state == "searching"
    assert StatusSnapshot(Status.SCANNING, "x", processing=True).display_state == "processing"
    assert StatusSnapshot(Status.FAILURE, "x").display_state == "failure"
