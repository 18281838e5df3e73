import os

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

# In-memory DB and no external API keys for tests
os.environ["OPENAI_API_KEY"] = ""
os.environ["ANTHROPIC_API_KEY"] = ""
os.environ["LLM_PROVIDER"] = "auto"
os.environ["DATABASE_PATH"] = ":memory:"
os.environ["DATABASE_URL"] = ""
os.environ["SEED_DEMO_DATA"] = "false"
os.environ["GCP_PROJECT_ID"] = ""
os.environ["GCP_PUBSUB_TOPIC"] = ""

from app.database import close_db, init_db
from app.main import app
from app.services.alerts import AlertManager, get_alert_manager
from app.services.asr import ASREngineManager, get_asr_manager
from app.services.event_bus import NotificationBus
from app.services.pipeline import VoicePipeline, get_pipeline


@pytest_asyncio.fixture
async def db():
    """Provide a fresh in-memory database for each test."""
    import app.database as db_mod

    if db_mod._db is not None:
        try:
            await db_mod._db.close()
        except Exception:
            pass
    db_mod._db = None

    # Override module-level config directly (avoids fragile importlib.reload)
    db_mod.DATABASE_PATH = ":memory:"
    db_mod.DATABASE_URL = ""
    db_mod.SEED_DEMO_DATA = False

    await init_db()
    database = await db_mod.get_db()
    yield database
    await close_db()


async def add_user(db, user_id: str, full_name: str, role: str = "user") -> None:
    await db.execute(
        "INSERT INTO users (id, full_name, role) VALUES (?, ?, ?)",
        (user_id, full_name, role),
    )
    await db.commit()


async def add_beneficiary(db, beneficiary_id: str, full_name: str, **fields) -> None:
    row = {
        "id": beneficiary_id,
        "full_name": full_name,
        "asha_worker_id": "asha-1",
        "linked_responder_id": None,
        "user_id": None,
        "is_currently_pregnant": 0,
        "current_pregnancy_week": None,
        "is_high_risk": 0,
        "anemia_status": None,
        "previous_complications": None,
        "last_hemoglobin_level": None,
        "location": None,
    }
    row.update(fields)
    columns = ", ".join(row)
    placeholders = ", ".join("?" for _ in row)
    await db.execute(
        f"INSERT INTO beneficiaries ({columns}) VALUES ({placeholders})",
        tuple(row.values()),
    )
    await db.commit()


@pytest.fixture
def bus():
    return NotificationBus()


@pytest.fixture
def alert_manager(bus):
    return AlertManager(bus=bus, dedupe_window_minutes=30)


class StubLLM:
    """Deterministic stand-in for ``LLMClient``: replays canned completions."""

    def __init__(self, *responses: str, error: Exception | None = None) -> None:
        self.responses = list(responses)
        self.error = error
        self.calls: list[dict] = []

    def available(self) -> bool:
        return True

    async def complete_text(self, **kwargs) -> str:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


class FakeWhisper:
    """Callable standing in for a transformers ASR pipeline."""

    def __init__(self, text: str = "namaste") -> None:
        self.text = text
        self.calls: list[dict] = []

    def __call__(self, inputs, generate_kwargs=None):
        self.calls.append({"inputs": inputs, "generate_kwargs": generate_kwargs})
        return {"text": self.text}


@pytest.fixture
def fake_whisper():
    return FakeWhisper()


@pytest.fixture
def asr_manager(fake_whisper):
    return ASREngineManager(loader=lambda: fake_whisper, load_timeout=5, inference_timeout=5)


@pytest.fixture
def client(db):
    """Provide a synchronous TestClient for HTTP endpoint tests."""
    return TestClient(app)


@pytest_asyncio.fixture
async def async_client(db):
    """Provide an async httpx client for async HTTP tests."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def override_pipeline(asr_manager, alert_manager):
    """Install a pipeline built from test doubles; returns a builder taking LLM stubs."""
    from app.services.beneficiary_resolver import BeneficiaryResolver
    from app.services.red_flags import RedFlagClassifier
    from app.services.visit_extractor import VisitExtractor

    def install(extractor_llm=None, classifier_llm=None) -> VoicePipeline:
        pipeline = VoicePipeline(
            asr=asr_manager,
            extractor=VisitExtractor(llm=extractor_llm or StubLLM("{}")),
            resolver=BeneficiaryResolver(),
            classifier=RedFlagClassifier(llm=classifier_llm or StubLLM("{}")),
            alerts=alert_manager,
        )
        app.dependency_overrides[get_pipeline] = lambda: pipeline
        app.dependency_overrides[get_asr_manager] = lambda: asr_manager
        app.dependency_overrides[get_alert_manager] = lambda: alert_manager
        return pipeline

    yield install
    app.dependency_overrides.clear()
