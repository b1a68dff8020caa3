import os
import pytest
from dotenv import load_dotenv

from moyaposylka.models import TrackingAnswer
from moyaposylka.providers.base import TrackingError
from moyaposylka.providers.moyaposylka import MoyaposylkaProvider

# Load variables from .env if present
load_dotenv()


@pytest.mark.integration
def test_moyaposylka_integration_resolves_number():
    api_key = os.getenv("MOYAPOSYLKA_API_KEY")
    code = os.getenv("MOYAPOSYLKA_TRACKING_CODE")
    if not api_key or not code:
        pytest.skip(
            "MOYAPOSYLKA_API_KEY / MOYAPOSYLKA_TRACKING_CODE not set; skipping integration test"
        )

    provider = MoyaposylkaProvider(api_key)
    try:
        answer = provider.track(code)
    except TrackingError as exc:
        # Unknown numbers and rate limits are acceptable; auth problems are not.
        if "401" in str(exc) or "403" in str(exc):
            pytest.fail(f"moyaposylka rejected the API key: {exc}")
        pytest.skip(f"moyaposylka could not resolve {code}: {exc}")

    assert isinstance(answer, TrackingAnswer)
    assert isinstance(answer.events, list)
    for ev in answer.events:
        assert isinstance(ev.event_date, int)
        assert isinstance(ev.operation, str)
