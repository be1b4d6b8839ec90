"""Testing utilities for leadkit.

In-memory fakes of the CRM and Anthropic remotes, mounted through
httpx.MockTransport.
"""

from leadkit.testing.fakeAnthropic import FakeAnthropicServer, FakeReply
from leadkit.testing.fakeCrm import FakeCrmServer, InjectedFailure

__all__ = [
    "FakeCrmServer",
    "InjectedFailure",
    "FakeAnthropicServer",
    "FakeReply",
]
