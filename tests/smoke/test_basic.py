import requests
import pytest


def test_health_check(api_url):
    """
    Verifies the application is running and the /health/ endpoint works.
    """
    endpoint = f"{api_url}/health/"
    print(f"Testing endpoint: {endpoint}")

    try:
        response = requests.get(endpoint, timeout=10)

        assert response.status_code == 200, f"Expected 200, got {response.status_code}"

        json_data = response.json()
        assert json_data.get("status") == "healthy", f"Unexpected response: {json_data}"

    except requests.exceptions.RequestException as e:
        pytest.fail(f"Connection to {endpoint} failed: {str(e)}")


def test_public_api_docs(api_url):
    """
    Verifies that the Swagger/OpenAPI documentation loads.
    This confirms static files and DRF are working.
    """
    endpoint = f"{api_url}/api/docs/"

    try:
        response = requests.get(endpoint, timeout=10)
        assert (
            response.status_code == 200
        ), f"Docs page failed with {response.status_code}"
    except requests.exceptions.RequestException as e:
        pytest.fail(f"Connection to {endpoint} failed: {str(e)}")


def test_unknown_payment_reads_as_pending(api_url):
    """
    A request id the service has never stored is reported as pending.
    """
    endpoint = f"{api_url}/api/v1/payments/status/"

    try:
        response = requests.post(
            endpoint, json={"transaction_request_id": "smoke-test-unknown"}, timeout=10
        )
        assert response.status_code == 200, f"Expected 200, got {response.status_code}"
        assert response.json()["data"]["status"] == "pending"
    except requests.exceptions.RequestException as e:
        pytest.fail(f"Connection to {endpoint} failed: {str(e)}")


def test_preflight_is_allowed(api_url):
    """
    Browsers send OPTIONS before posting the checkout form.
    """
    endpoint = f"{api_url}/api/v1/payments/initiate/"

    try:
        response = requests.options(
            endpoint,
            headers={
                "Origin": "https://shop.example.com",
                "Access-Control-Request-Method": "POST",
            },
            timeout=10,
        )
        assert response.status_code == 200, f"Preflight failed with {response.status_code}"
    except requests.exceptions.RequestException as e:
        pytest.fail(f"Connection to {endpoint} failed: {str(e)}")
