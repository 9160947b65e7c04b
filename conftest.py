def pytest_addoption(parser):
    """
    Register the custom --url command line option for the smoke tests.
    """
    parser.addoption(
        "--url",
        action="store",
        default=None,
        help="Base URL of a running deployment to smoke test",
    )
