from datetime import datetime, timedelta, timezone

from core.response import ErrorDetail, error_response, paginated_response, success_response
from shared.codes import BusinessCode


def test_pages_round_up_and_empty_size():
    page = paginated_response(items=[1, 2], total=21, page=3, size=10).data
    assert page.pages == 3
    assert page.items == [1, 2]

    assert paginated_response(items=[], total=5, page=1, size=0).data.pages == 0


def test_error_envelope_has_no_data_and_utc_timestamp():
    body = error_response(
        code=BusinessCode.SYSTEM_ERROR, message="gateway down", error_type="GatewayError", request_id="req-1"
    ).model_dump(mode="json")

    assert body["data"] is None
    assert body["error"]["type"] == "GatewayError"
    assert body["error"]["request_id"] == "req-1"
    assert body["error"]["timestamp"].endswith("Z")


def test_timestamps_are_rendered_in_utc():
    dhaka = timezone(timedelta(hours=6))
    detail = ErrorDetail(type="X", timestamp=datetime(2024, 5, 1, 12, 0, tzinfo=dhaka))
    assert detail.model_dump(mode="json")["timestamp"] == "2024-05-01T06:00:00Z"

    naive = ErrorDetail(type="X", timestamp=datetime(2024, 5, 1, 12, 0))
    assert naive.model_dump(mode="json")["timestamp"] == "2024-05-01T12:00:00Z"


def test_success_envelope_defaults():
    body = success_response({"id": 1}).model_dump()
    assert body["code"] == BusinessCode.SUCCESS
    assert body["message"] == "Success"
    assert body["error"] is None
