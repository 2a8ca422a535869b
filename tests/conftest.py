"""
Shared fixtures: an in-memory SQLite database, seed helpers and fake
collaborators for email, search and the LLM.
"""

import json
import re
from datetime import date, datetime, timezone
from uuid import UUID, uuid4

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from compliance_tracker.core.config import Settings
from compliance_tracker.models import (
    Base,
    Company,
    EmailPreference,
    EmailQueueItem,
    EmailType,
    RegulatoryRequirement,
    RequirementStatus,
    User,
    UserRole,
    UserRoleType,
)
from compliance_tracker.services.email_sender import EmailSender
from compliance_tracker.services.legal_search import (
    LegalSearchClient,
    SearchResponse,
    SearchResult,
    SearchServiceError,
)
from compliance_tracker.services.llm_client import ChatCompletionClient, LLMServiceError


TEST_SITE_URL = "https://tracker.example.com"
TEST_UNSUBSCRIBE_SECRET = "test-unsubscribe-secret"
TEST_CRON_SECRET = "test-cron-secret"


# =============================================================================
# SETTINGS & DATABASE
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite://",
        site_url=TEST_SITE_URL,
        unsubscribe_secret=TEST_UNSUBSCRIBE_SECRET,
        cron_secret=TEST_CRON_SECRET,
        resend_api_key=None,
        tavily_api_key=None,
        azure_openai_endpoint=None,
        azure_openai_api_key=None,
        kyc_token_id=None,
        kyc_token_secret=None,
    )


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


# =============================================================================
# SEED DATA
# =============================================================================


class Seed:
    """Small factory for rows the pipelines read."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _add(self, obj):
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def company(self, name: str = "Acme Private Limited") -> Company:
        return await self._add(Company(name=name))

    async def user(self, email: str | None = None, full_name: str | None = None) -> User:
        if email is None:
            email = f"user-{uuid4().hex[:8]}@example.com"
        return await self._add(User(email=email, full_name=full_name))

    async def role(
        self,
        user: User,
        company: Company | None,
        role: UserRoleType = UserRoleType.ADMIN,
    ) -> UserRole:
        return await self._add(UserRole(
            user_id=user.id,
            company_id=company.id if company else None,
            role=role,
        ))

    async def admin(self, company: Company, email: str | None = None, full_name: str | None = None) -> User:
        user = await self.user(email, full_name)
        await self.role(user, company, UserRoleType.ADMIN)
        return user

    async def requirement(
        self,
        company: Company,
        name: str = "GSTR-3B",
        due_date: date | None = None,
        status: RequirementStatus = RequirementStatus.PENDING,
        category: str = "GST",
        penalty: str | None = None,
        is_critical: bool = False,
        template_id: UUID | None = None,
    ) -> RegulatoryRequirement:
        return await self._add(RegulatoryRequirement(
            company_id=company.id,
            requirement=name,
            due_date=due_date,
            status=status,
            category=category,
            penalty=penalty,
            is_critical=is_critical,
            template_id=template_id,
        ))

    async def queue_item(
        self,
        user: User,
        company: Company,
        requirement_name: str = "GSTR-3B",
        old_status: str = "pending",
        new_status: str = "completed",
        email_type: EmailType = EmailType.STATUS_CHANGE,
        created_at: datetime | None = None,
    ) -> EmailQueueItem:
        return await self._add(EmailQueueItem(
            user_id=user.id,
            user_email=user.email,
            company_id=company.id,
            company_name=company.name,
            email_type=email_type,
            payload={
                "requirement_id": str(uuid4()),
                "requirement_name": requirement_name,
                "old_status": old_status,
                "new_status": new_status,
                "due_date": None,
                "recipient_name": user.full_name,
            },
            created_at=created_at or datetime.now(timezone.utc),
        ))

    async def preference(self, user: User, **flags) -> EmailPreference:
        return await self._add(EmailPreference(user_id=user.id, **flags))


@pytest.fixture
def seed(session) -> Seed:
    return Seed(session)


# =============================================================================
# FAKE COLLABORATORS
# =============================================================================


class FakeEmailSender(EmailSender):
    """Records sends; can be told to fail for some or all recipients."""

    def __init__(self, fail_for: set[str] | None = None, fail_all: bool = False):
        self.sent: list[dict] = []
        self.attempts: list[str] = []
        self.fail_for = fail_for or set()
        self.fail_all = fail_all

    async def send(self, to: str, subject: str, html: str) -> tuple[bool, str | None]:
        self.attempts.append(to)
        if self.fail_all or to in self.fail_for:
            return False, "Resend API error: 500"
        self.sent.append({"to": to, "subject": subject, "html": html})
        return True, None


class FakeSearchClient(LegalSearchClient):
    """Returns a canned answer for every query and counts calls."""

    def __init__(self, fail: bool = False, fail_queries: set[str] | None = None):
        self.queries: list[str] = []
        self.fail = fail
        self.fail_queries = fail_queries or set()

    async def search(self, query: str, depth: str = "advanced") -> SearchResponse:
        self.queries.append(query)
        if self.fail or query in self.fail_queries:
            raise SearchServiceError("Tavily API error: 503")
        return SearchResponse(
            query=query,
            answer=(
                "Late filing attracts Section 47 of the CGST Act. "
                "A penalty of ₹50/day applies until filing."
            ),
            results=[SearchResult(
                title="Late fee provisions",
                url="https://example.gov.in/late-fee",
                content="Section 47 of the CGST Act prescribes the late fee.",
                score=0.9,
            )],
            raw={"query": query},
        )


_KEY_RE = re.compile(r"KEY: (.+?) \| Category:")


class FakeChatClient(ChatCompletionClient):
    """Answers the impact prompt with an entry for every key it was given."""

    def __init__(self, fail: bool = False, skip_keys: set[str] | None = None):
        self.calls = 0
        self.fail = fail
        self.skip_keys = skip_keys or set()

    async def complete(self, messages, max_tokens=None) -> str:
        self.calls += 1
        if self.fail:
            raise LLMServiceError("Azure OpenAI error: 500")
        keys = _KEY_RE.findall(messages[-1]["content"])
        reply = {
            key: {
                "financial": f"Late fees accrue for {key}.",
                "reputation": "Lenders may view repeated delays negatively.",
                "operations": "Input tax credit for customers may be blocked.",
            }
            for key in keys
            if key not in self.skip_keys
        }
        return f"Here is the analysis:\n```json\n{json.dumps(reply)}\n```"


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def search_client() -> FakeSearchClient:
    return FakeSearchClient()


@pytest.fixture
def chat_client() -> FakeChatClient:
    return FakeChatClient()
