import pytest


@pytest.fixture
def api_url(request):
    """
    Base URL of the deployment under test, without a trailing slash.
    Smoke tests are skipped unless --url is given.
    """
    url = request.config.getoption("--url")
    if not url:
        pytest.skip("smoke tests need --url")
    return url.rstrip("/")
