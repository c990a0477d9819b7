# Filename: tests/conftest.py
import os
import time
from datetime import datetime, timezone, timedelta
from unittest.mock import patch, AsyncMock, MagicMock

import pytest
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.testclient import TestClient

from middleware.auth_middleware import FirebaseAuthMiddleware
from middleware.error_handlers import install_error_handlers
from models.chat import ChatMessage, Conversation
from models.chat_stats import ConversationStats
from models.user_profile import UserProfile, ADMIN_ROLE
from routes import auth_routes, chat_routes, match_routes, user_routes
from schemas.auth_schemas import TokenData
from services.chat_service import ChatService
from services.identity_service import IdentityResolver
from services.match_service import MatchService
from services.presence_service import PresenceTracker
from services.profile_service import ProfileService
from services.stats_service import StatsService
from utils import dependencies

load_dotenv()


# --- Test Data Fixtures ---
@pytest.fixture(scope="session")
def test_user_1_uid() -> str:
    return os.getenv("TEST_USER1_UID_FIXTURE", "fixture-user-1-uid")


@pytest.fixture(scope="session")
def test_user_2_uid() -> str:
    return os.getenv("TEST_USER2_UID_FIXTURE", "fixture-user-2-uid")


@pytest.fixture(scope="session")
def admin_uid() -> str:
    return "fixture-admin-uid"


@pytest.fixture
def test_user_1_token_data(test_user_1_uid) -> TokenData:
    return TokenData(
        uid=test_user_1_uid,
        email="test1@example.com",
        email_verified=True
    )


@pytest.fixture
def sample_user_profile(test_user_1_uid) -> UserProfile:
    """The signed-in regular user."""
    return UserProfile(
        id=test_user_1_uid,
        username="nightowl",
        email="test1@example.com",
        birth_date="1994-03-10",
        age=30,
        gender="Female",
        personality_tag="INTJ",
        bio="Chess on Sundays, novels every other day.",
        hobbies=["chess", "reading"],
        red_flags=["smoking"],
        photos=["https://cdn.example.com/u1/1.jpg"],
        is_online=True,
        last_seen_at=datetime.now(timezone.utc) - timedelta(minutes=1),
    )


@pytest.fixture
def partner_profile(test_user_2_uid) -> UserProfile:
    return UserProfile(
        id=test_user_2_uid,
        username="earlybird",
        email="test2@example.com",
        birth_date="1991-07-01",
        age=33,
        gender="Male",
        personality_tag="ENTP",
        bio="Looking for a chess partner!!",
        hobbies=["chess", "hiking"],
        photos=["https://cdn.example.com/u2/1.jpg", "https://cdn.example.com/u2/2.jpg"],
        is_online=True,
        last_seen_at=datetime.now(timezone.utc) - timedelta(minutes=5),
    )


@pytest.fixture
def admin_profile(admin_uid) -> UserProfile:
    return UserProfile(id=admin_uid, username="Admin", email="admin@example.com",
                       is_privileged=True, role=ADMIN_ROLE)


@pytest.fixture
def sample_conversation(test_user_1_uid, test_user_2_uid) -> Conversation:
    first, second = sorted((test_user_1_uid, test_user_2_uid))
    return Conversation(id=f"chat_{first}_{second}", participants=[first, second],
                        created_at=datetime.now(timezone.utc) - timedelta(days=3))


@pytest.fixture
def sample_message(test_user_2_uid) -> ChatMessage:
    return ChatMessage(id="msg-1", sender_id=test_user_2_uid, type="text", text="Fancy a game tonight?",
                       timestamp=datetime.now(timezone.utc) - timedelta(minutes=2), read_by=[test_user_2_uid])


@pytest.fixture
def sample_stats(sample_conversation) -> ConversationStats:
    return ConversationStats(chat_id=sample_conversation.id, messages_count=21, consecutive_days=3,
                             last_message_date=datetime.now(timezone.utc) - timedelta(hours=1),
                             milestones=["messages_20", "streak_3"])


# --- Mocking Fixtures (Firebase init, token verify) ---
@pytest.fixture(scope="session", autouse=True)
def mock_firebase_admin_init():
    try:
        import firebase_admin
        if firebase_admin._DEFAULT_APP_NAME in firebase_admin._apps:
            yield None
            return
    except ImportError:
        pass
    with patch("firebase_admin.initialize_app") as mock_init:
        yield mock_init


@pytest.fixture
def mock_verify_firebase_token():
    with patch("firebase_admin.auth.verify_id_token") as mock_verify:
        mock_verify.return_value = {
            "uid": "mock_firebase_uid_from_token", "email": "firebase_user@example.com", "email_verified": True,
            "iss": "https://securetoken.google.com/your-project-id", "aud": "your-project-id",
            "auth_time": int(time.time()) - 300, "user_id": "mock_firebase_uid_from_token",
            "sub": "mock_firebase_uid_from_token", "iat": int(time.time()) - 300, "exp": int(time.time()) + 3600,
            "firebase": {"identities": {"email": ["firebase_user@example.com"]}, "sign_in_provider": "password"}
        }
        yield mock_verify


@pytest.fixture
def passthrough_transactions():
    """Run @async_transactional bodies directly against the mocked transaction."""
    def passthrough(fn):
        return fn

    with patch("services.stats_service.async_transactional", passthrough), \
            patch("services.chat_service.async_transactional", passthrough), \
            patch("services.profile_service.async_transactional", passthrough):
        yield


# --- Mock Services ---
@pytest.fixture
def mock_profile_service(sample_user_profile, partner_profile):
    service = MagicMock(spec=ProfileService)
    service.get_profile = AsyncMock(return_value=partner_profile)
    service.get_visible_profile = AsyncMock(return_value=partner_profile)
    service.list_users = AsyncMock(return_value=[partner_profile])
    service.signup = AsyncMock(return_value=sample_user_profile)
    service.admin_create_user = AsyncMock(return_value=partner_profile)
    service.update_profile = AsyncMock(return_value=sample_user_profile)
    service.admin_update_profile = AsyncMock(return_value=partner_profile)
    service.update_privacy_settings = AsyncMock(return_value=sample_user_profile)
    service.track_profile_view = AsyncMock(return_value=None)
    service.get_profile_views = AsyncMock(return_value=[])
    service.consume_api_call = AsyncMock(return_value=True)
    service.delete_profile = AsyncMock(return_value=None)
    return service


@pytest.fixture
def mock_chat_service(sample_conversation, sample_message):
    service = MagicMock(spec=ChatService)
    service.list_chats = AsyncMock(return_value=[sample_conversation])
    service.get_or_create_conversation = AsyncMock(return_value=sample_conversation)
    service.assert_can_access = AsyncMock(return_value=sample_conversation)
    service.get_messages = AsyncMock(return_value=[sample_message])
    service.get_message = AsyncMock(return_value=sample_message)
    service.send_message = AsyncMock(return_value=sample_message)
    service.mark_read = AsyncMock(return_value=1)
    service.update_typing = AsyncMock(return_value=None)
    service.request_translation = AsyncMock(return_value="Shall we schedule a match this evening?")
    service.toggle_reaction = AsyncMock(return_value=sample_message)
    return service


@pytest.fixture
def mock_stats_service(sample_stats):
    service = MagicMock(spec=StatsService)
    service.get_stats = AsyncMock(return_value=sample_stats)
    return service


@pytest.fixture
def mock_match_service(partner_profile):
    service = MagicMock(spec=MatchService)
    service.suggestions = AsyncMock(return_value=[partner_profile])
    return service


@pytest.fixture
def mock_presence_tracker():
    service = MagicMock(spec=PresenceTracker)
    service.set_presence = AsyncMock(return_value=None)
    return service


@pytest.fixture
def mock_identity_resolver(sample_user_profile):
    service = MagicMock(spec=IdentityResolver)
    service.resolve = AsyncMock(return_value=sample_user_profile)
    service.sign_out = AsyncMock(return_value=None)
    return service


# --- Mock Firestore Client ---
@pytest.fixture
def mock_db_client():
    # Mocks without specs for Firestore types, AsyncMock for awaited methods
    doc_snapshot_mock = MagicMock()
    doc_snapshot_mock.exists = True
    doc_snapshot_mock.to_dict.return_value = {"mock_field": "mock_value_from_db"}
    doc_snapshot_mock.id = "mock_doc_id"
    doc_ref_mock = MagicMock()
    doc_ref_mock.id = "new-doc-id"
    doc_ref_mock.get = AsyncMock(return_value=doc_snapshot_mock)
    doc_ref_mock.set = AsyncMock(return_value=None)
    doc_ref_mock.create = AsyncMock(return_value=None)
    doc_ref_mock.update = AsyncMock(return_value=None)
    doc_ref_mock.delete = AsyncMock(return_value=None)
    query_mock = MagicMock()
    query_mock.where.return_value = query_mock
    query_mock.order_by.return_value = query_mock
    query_mock.limit.return_value = query_mock
    query_mock.get = AsyncMock(return_value=[])
    collection_ref_mock = MagicMock()
    collection_ref_mock.document = MagicMock(return_value=doc_ref_mock)
    collection_ref_mock.where.return_value = query_mock
    collection_ref_mock.order_by.return_value = query_mock
    collection_ref_mock.limit.return_value = query_mock
    collection_ref_mock.get = AsyncMock(return_value=[])
    batch_mock = MagicMock()
    batch_mock.commit = AsyncMock(return_value=[])
    transaction_mock = MagicMock()
    db_mock = MagicMock()
    db_mock.collection = MagicMock(return_value=collection_ref_mock)
    db_mock.batch = MagicMock(return_value=batch_mock)
    db_mock.transaction = MagicMock(return_value=transaction_mock)
    yield db_mock


def make_snapshot(doc_id, data):
    """Fake Firestore DocumentSnapshot; data=None means the document does not exist."""
    snap = MagicMock()
    snap.id = doc_id
    snap.exists = data is not None
    snap.to_dict.return_value = data
    return snap


@pytest.fixture
def snapshot_factory():
    return make_snapshot


# --- Test Client Fixtures ---

@pytest.fixture(scope="function")
def app_instance_for_test():
    """Creates a fresh FastAPI app instance for testing."""
    app = FastAPI()
    install_error_handlers(app)
    app.include_router(auth_routes.router)
    app.include_router(user_routes.router)
    app.include_router(chat_routes.router)
    app.include_router(match_routes.router)
    return app


def _override_services(app, profile_service, chat_service, stats_service, match_service, presence_tracker,
                       identity_resolver):
    app.dependency_overrides[dependencies.get_profile_service] = lambda: profile_service
    app.dependency_overrides[dependencies.get_chat_service] = lambda: chat_service
    app.dependency_overrides[dependencies.get_stats_service] = lambda: stats_service
    app.dependency_overrides[dependencies.get_match_service] = lambda: match_service
    app.dependency_overrides[dependencies.get_presence_tracker] = lambda: presence_tracker
    app.dependency_overrides[dependencies.get_identity_resolver] = lambda: identity_resolver


@pytest.fixture
def client(
        app_instance_for_test,
        test_user_1_token_data,
        sample_user_profile,
        mock_profile_service,
        mock_chat_service,
        mock_stats_service,
        mock_match_service,
        mock_presence_tracker,
        mock_identity_resolver,
):
    """
    TestClient WHERE:
    - Auth middleware is NOT added.
    - get_current_user and get_current_profile ARE overridden (regular user 1).
    - Service dependencies ARE overridden.
    """
    app = app_instance_for_test
    _override_services(app, mock_profile_service, mock_chat_service, mock_stats_service, mock_match_service,
                       mock_presence_tracker, mock_identity_resolver)
    app.dependency_overrides[dependencies.get_current_user] = lambda: test_user_1_token_data
    app.dependency_overrides[dependencies.get_current_profile] = lambda: sample_user_profile

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides = {}


@pytest.fixture
def admin_client(
        app_instance_for_test,
        admin_profile,
        mock_profile_service,
        mock_chat_service,
        mock_stats_service,
        mock_match_service,
        mock_presence_tracker,
        mock_identity_resolver,
):
    """Same as client, but the caller resolves to an administrator."""
    app = app_instance_for_test
    _override_services(app, mock_profile_service, mock_chat_service, mock_stats_service, mock_match_service,
                       mock_presence_tracker, mock_identity_resolver)
    app.dependency_overrides[dependencies.get_current_user] = lambda: TokenData(uid=admin_profile.id,
                                                                                email=admin_profile.email)
    app.dependency_overrides[dependencies.get_current_profile] = lambda: admin_profile

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides = {}


@pytest.fixture
def client_no_auth_bypass(
        app_instance_for_test,
        mock_profile_service,
        mock_chat_service,
        mock_stats_service,
        mock_match_service,
        mock_presence_tracker,
        mock_identity_resolver,
):
    """
    TestClient WHERE:
    - Auth middleware IS added.
    - get_current_user / get_current_profile are NOT overridden (the identity resolver is mocked).
    - Service dependencies ARE overridden.
    """
    app = app_instance_for_test
    _override_services(app, mock_profile_service, mock_chat_service, mock_stats_service, mock_match_service,
                       mock_presence_tracker, mock_identity_resolver)

    excluded_paths = [r"^/$", r"^/docs$", r"^/openapi.json$", r"^/redoc$"]
    app.add_middleware(FirebaseAuthMiddleware, exclude_paths=excluded_paths)

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides = {}
