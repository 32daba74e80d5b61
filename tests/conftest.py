import pytest

from realtime_client.conversation import RealtimeConversation


@pytest.fixture
def conversation():
    return RealtimeConversation()
