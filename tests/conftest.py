import pytest

from batchload.context import active_context
from tests.mocks.fetchers import RecordingFetch


@pytest.fixture(autouse=True)
def reset_context():
    """
    Make sure every test starts and ends outside of any loader scope.
    """
    token = active_context.set(None)
    yield
    active_context.reset(token)


@pytest.fixture
def fetch() -> RecordingFetch:
    """
    Create a recording fetch over a small lettered data set.

    Returns
    -------
    RecordingFetch
        Fetch double returning ``{1: ["a"], 2: ["b"], 3: ["c"]}`` rows.
    """
    return RecordingFetch({1: ["a"], 2: ["b"], 3: ["c"]})
