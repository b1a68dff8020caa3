from datetime import datetime, timezone

from moyaposylka.models import TrackingAnswer, UpstreamError
from moyaposylka.providers.moyaposylka import _TRACKING as _UNION

from conftest import DELIVERED_BODY


def test_success_shape_decodes_as_answer():
    answer = _UNION.validate_python(DELIVERED_BODY)
    assert isinstance(answer, TrackingAnswer)
    assert answer.latest_event.operation == "Delivered"


def test_error_shape_decodes_as_upstream_error():
    err = _UNION.validate_python({"error": "not found", "status": 404})
    assert err == UpstreamError(status=404, error="not found")


def test_decoding_same_payload_twice_is_equal():
    assert _UNION.validate_python(DELIVERED_BODY) == _UNION.validate_python(DELIVERED_BODY)


def test_optional_fields_default_to_empty():
    answer = TrackingAnswer.model_validate(
        {
            "attributes": {"recipient": None},
            "events": [{"eventDate": 1, "operation": "Accepted"}],
        }
    )
    assert answer.recipient == ""
    assert answer.estimated_delivery == ""
    assert answer.delivered is False
    assert answer.events[0].location == ""


def test_events_keep_upstream_order():
    body = {
        "attributes": {},
        "events": [
            {"eventDate": 1700000000000, "operation": "Delivered"},
            {"eventDate": 1600000000000, "operation": "Accepted"},
        ],
    }
    answer = TrackingAnswer.model_validate(body)
    assert [e.operation for e in answer.events] == ["Delivered", "Accepted"]
    assert answer.latest_event.operation == "Delivered"


def test_event_timestamp_is_epoch_millis():
    answer = TrackingAnswer.model_validate(DELIVERED_BODY)
    assert answer.events[0].occurred_at == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)


def test_answer_without_events_has_no_latest():
    answer = TrackingAnswer.model_validate({"attributes": {}, "events": []})
    assert answer.latest_event is None


def test_body_matching_both_shapes_decodes_as_error():
    err = _UNION.validate_python({**DELIVERED_BODY, "status": 500, "error": "partial outage"})
    assert err == UpstreamError(status=500, error="partial outage")
