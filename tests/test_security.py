import pytest

from app.security_headers import get_security_headers_dict
from app.shared.validators import normalize_coupon_code, validate_email, validate_hhmm, validate_us_phone
from app.utils.sanitization import (
    GENERIC_ERROR_MESSAGE,
    sanitize_error_message,
    sanitize_render_text,
    validate_and_sanitize_input,
)

# ============================================================================
# VALIDATORS
# ============================================================================


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("(407) 555-0100", "+14075550100"),
        ("1-407-555-0100", "+14075550100"),
        ("", ""),
        (None, None),
    ],
)
def test_us_phone(raw, expected):
    assert validate_us_phone(raw) == expected


def test_us_phone_rejects_short_numbers():
    with pytest.raises(ValueError):
        validate_us_phone("555-0100")


def test_email():
    assert validate_email("  Dana@Example.COM ") == "dana@example.com"
    with pytest.raises(ValueError):
        validate_email("dana@example")


def test_hhmm():
    assert validate_hhmm("09:30") == "09:30"
    for bad in ("9:30", "24:00", "12:60"):
        with pytest.raises(ValueError):
            validate_hhmm(bad)


def test_coupon_code():
    assert normalize_coupon_code(" spring-25 ") == "SPRING-25"
    with pytest.raises(ValueError):
        normalize_coupon_code("SPRING 25")


# ============================================================================
# SANITIZATION
# ============================================================================


def test_render_text_strips_markup():
    assert sanitize_render_text("<b>Just</b> Listed &amp; <script>x</script>") == "Just Listed & x"
    assert sanitize_render_text("javascript:alert(1)") == "alert(1)"
    assert sanitize_render_text(None) == ""
    assert len(sanitize_render_text("a" * 20000)) == 10000


def test_error_messages_hidden_outside_development():
    assert sanitize_error_message("connection refused on 10.0.0.4", False) == GENERIC_ERROR_MESSAGE
    assert sanitize_error_message("Template not found", False) == "Template not found"
    assert sanitize_error_message("slides required", False, ["slides required"]) == "slides required"
    assert sanitize_error_message("connection refused", True) == "connection refused"


def test_free_text_input():
    assert validate_and_sanitize_input("  <i>ok</i>\x07 ") == "&lt;i&gt;ok&lt;/i&gt;"
    with pytest.raises(ValueError):
        validate_and_sanitize_input("x" * 11, max_length=10)


# ============================================================================
# APP WIRING
# ============================================================================


def test_security_headers_on_api_responses(client):
    response = client.get("/")
    assert response.json() == {"message": "ASM Portal API is running"}
    for name, value in get_security_headers_dict().items():
        assert response.headers[name] == value
    assert response.headers["X-Frame-Options"] == "DENY"
    assert "frame-ancestors 'none'" in response.headers["Content-Security-Policy"]
    assert "Strict-Transport-Security" not in response.headers


def test_health_is_excluded_from_headers(client):
    response = client.get("/health")
    assert response.json() == {"status": "healthy"}
    assert "Content-Security-Policy" not in response.headers


def test_missing_bearer_token(client):
    response = client.get("/api/qc/queue")
    assert response.status_code == 401
    assert response.json()["detail"].startswith("Not authenticated")


def test_wrong_bearer_token(client):
    response = client.get("/api/qc/queue", headers={"Authorization": "Bearer wrong"})
    assert response.status_code == 401
    assert response.json() == {"detail": "Invalid token"}


def test_validation_errors_keep_detail_envelope(client, staff_headers):
    response = client.post("/api/booking/coupons", json={"code": "X"}, headers=staff_headers)
    assert response.status_code == 422
    assert isinstance(response.json()["detail"], list)

