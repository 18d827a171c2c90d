import pytest

from engagement.database import Database
from engagement.models import SubmitQuoteRequest
from engagement.notifications import Notifier
from engagement.service import EngagementService


class RecordingNotifier(Notifier):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def request_submitted(self, request, provider_email):
        if self.fail:
            raise RuntimeError("mail server down")
        self.sent.append(("request_submitted", request.id, provider_email))

    def provider_replied(self, request, message):
        if self.fail:
            raise RuntimeError("mail server down")
        self.sent.append(("provider_replied", request.id, message.id))


@pytest.fixture
def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'engagement.db'}")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(database, notifier):
    return EngagementService(database=database, notifier=notifier)


@pytest.fixture
def admin(service):
    return service.create_admin("admin@example.com", "Site Admin")


@pytest.fixture
def make_provider(service):
    counter = {"n": 0}

    def _make(balance: int = 0, name: str = None):
        counter["n"] += 1
        n = counter["n"]
        return service.register_provider(
            name or f"Provider {n}",
            f"provider{n}@example.com",
            f"Contact {n}",
            welcome_tokens=balance,
        )

    return _make


@pytest.fixture
def make_request(service):
    counter = {"n": 0}

    def _make(provider_id: str, organizer_email: str = None, actor_user_id: str = None):
        counter["n"] += 1
        details = SubmitQuoteRequest(
            provider_id=provider_id,
            contact_name="Alice Organizer",
            contact_email=organizer_email or f"organizer{counter['n']}@example.com",
            event_type="Wedding",
            guest_count=120,
            message="We are looking for a caterer for 120 guests in June.",
        )
        return service.submit_request(details, actor_user_id)

    return _make
