"""
Unit tests for direction and disposition inference.
"""

import pytest

from callengine.telephony.events import EventPayload
from callengine.telephony.models import CallDirection, CallDisposition
from callengine.telephony.reconstructor import hangup_cause_of, infer_direction, infer_disposition


class TestInferDisposition:
    """Tests for hangup cause -> disposition mapping."""

    @pytest.mark.parametrize(
        "cause,expected",
        [
            ("NORMAL_CLEARING", CallDisposition.ANSWERED),
            ("normal_clearing", CallDisposition.ANSWERED),
            ("16", CallDisposition.ANSWERED),
            ("ANSWERED", CallDisposition.ANSWERED),
            ("NO_ANSWER", CallDisposition.NOANSWER),
            ("19", CallDisposition.NOANSWER),
            ("USER_BUSY", CallDisposition.BUSY),
            ("17", CallDisposition.BUSY),
            ("ORIGINATOR_CANCEL", CallDisposition.ABANDONED),
            ("487", CallDisposition.ABANDONED),
            ("NETWORK_FAILURE", CallDisposition.FAILED),
            ("SWITCH_CONGESTION", CallDisposition.FAILED),
            ("SOMETHING_ELSE", CallDisposition.MISSED),
            ("", CallDisposition.MISSED),
            (None, CallDisposition.MISSED),
        ],
    )
    def test_mapping(self, cause: str | None, expected: CallDisposition) -> None:
        assert infer_disposition(cause) == expected

    def test_numeric_codes_match_exactly(self) -> None:
        # "160" contains "16" but is not the Q.850 code 16
        assert infer_disposition("160") == CallDisposition.MISSED

    def test_priority_order(self) -> None:
        # Matches both the answered and the busy rule; answered wins.
        assert infer_disposition("NORMAL_CLEARING/USER_BUSY") == CallDisposition.ANSWERED


class TestInferDirection:
    """Tests for dialplan context -> direction."""

    @pytest.mark.parametrize(
        "context,expected",
        [
            ("outbound-allroutes", CallDirection.OUT),
            ("from-internal", CallDirection.OUT),
            ("from-trunk", CallDirection.IN),
            ("ext-queues", CallDirection.IN),
            (None, CallDirection.IN),
        ],
    )
    def test_mapping(self, context: str | None, expected: CallDirection) -> None:
        assert infer_direction(context) == expected


class TestHangupCause:
    def test_prefers_cause_text(self) -> None:
        payload = EventPayload.model_validate({"cause": 16, "causeTxt": "NORMAL_CLEARING"})
        assert hangup_cause_of(payload) == "NORMAL_CLEARING"

    def test_falls_back_to_numeric_cause(self) -> None:
        payload = EventPayload.model_validate({"cause": 19})
        assert hangup_cause_of(payload) == "19"

    def test_missing(self) -> None:
        assert hangup_cause_of(EventPayload()) is None
