"""
Tests for Result Pattern Implementation
"""

from services.common.errors import BusinessError, RecordNotFound, StateConflict
from services.common.result import Result


class TestResultPattern:
    """Test suite for Result pattern"""

    def test_success_result(self):
        """Test creating a successful result"""
        data = {"id": "c1", "status": "draft"}
        result = Result.success(data)

        assert result.is_success is True
        assert result.is_failure is False
        assert result.data == data
        assert result.error is None
        assert result.error_code is None
        assert bool(result) is True

    def test_failure_result(self):
        """Test creating a failure result"""
        result = Result.failure("Campaign not found", code="NOT_FOUND")

        assert result.is_success is False
        assert result.data is None
        assert result.error == "Campaign not found"
        assert result.error_code == "NOT_FOUND"
        assert bool(result) is False

    def test_failure_keeps_partial_data(self):
        result = Result.failure("Registration failed", code="BUSINESS_ERROR", data={"status": "draft"})
        assert result.data == {"status": "draft"}

    def test_repr(self):
        assert repr(Result.success(1)) == "Result.success(data=1)"
        assert repr(Result.failure("bad", code="X")) == "Result.failure(error='bad', code='X')"


class TestResultFromError:
    """Broker exceptions convert to failures carrying their code and details"""

    def test_business_error_details_become_metadata(self):
        error = BusinessError("Gateway rejected create", gateway_code="E000002",
                              gateway_message="발신번호 미등록", http_status=200)

        result = Result.from_error(error)

        assert result.error == "Gateway rejected create"
        assert result.error_code == "BUSINESS_ERROR"
        assert result.metadata["gateway_code"] == "E000002"
        assert result.metadata["http_status"] == 200

    def test_error_without_details_has_no_metadata(self):
        result = Result.from_error(RecordNotFound("Campaign missing not found"))

        assert result.error_code == "NOT_FOUND"
        assert result.metadata is None

    def test_state_conflict_code_override(self):
        result = Result.from_error(StateConflict("busy", code="IN_FLIGHT"))
        assert result.error_code == "IN_FLIGHT"
