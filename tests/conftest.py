"""Pytest configuration and shared fixtures: file-backed stores under tmp_path plus in-process fakes."""

import pytest

from bvg.billing import CreditLedger, FileCreditStore
from bvg.config import Settings
from bvg.errors import StitchError
from bvg.jobs import FileJobStore
from bvg.orchestrator import BatchService, JobOrchestrator, RenderEventHandler
from bvg.render.base import RenderRequest, RenderState, RenderUpdate
from bvg.schemas.models import BaseConfig, ScenePrompt
from bvg.stitch import StitchPipeline


class FakePromptGenerator:
    """Returns one scene per requested scene unless ``scene_count`` overrides it; can be told to fail."""

    def __init__(self):
        self.calls = []
        self.error: Exception | None = None
        self.scene_count: int | None = None

    def generate_prompts(self, config):
        self.calls.append(config)
        if self.error is not None:
            raise self.error
        count = config.number_of_scenes if self.scene_count is None else self.scene_count
        return [
            ScenePrompt(
                scene_number=i + 1,
                visual_prompt=f"Scene {i + 1}: {config.story_idea}",
                script=f"Line {i + 1} for {config.city or 'everyone'}",
            )
            for i in range(count)
        ]


class FakeRenderProvider:
    name = "fake"

    def __init__(self):
        self.submitted: list[tuple[str, RenderRequest]] = []
        self.extended: list[dict] = []
        self.error: Exception | None = None
        self.statuses: dict[str, RenderUpdate] = {}
        self._count = 0

    def _next_task(self) -> str:
        self._count += 1
        return f"task_{self._count}"

    def submit_render(self, request):
        if self.error is not None:
            raise self.error
        task_id = self._next_task()
        self.submitted.append((task_id, request))
        return task_id

    def extend_render(self, previous_task_id, prompt, duration_seconds, seed=None):
        if self.error is not None:
            raise self.error
        task_id = self._next_task()
        self.extended.append(
            {
                "task_id": task_id,
                "previous_task_id": previous_task_id,
                "prompt": prompt,
                "duration_seconds": duration_seconds,
                "seed": seed,
            }
        )
        return task_id

    def get_task_status(self, task_id):
        return self.statuses.get(task_id, RenderUpdate(task_id=task_id, state=RenderState.RUNNING))

    @staticmethod
    def success(task_id: str, url: str | None = None) -> RenderUpdate:
        return RenderUpdate(
            task_id=task_id,
            state=RenderState.SUCCEEDED,
            video_url=url if url is not None else f"https://cdn.example.com/{task_id}.mp4",
        )

    @staticmethod
    def failure(task_id: str, message: str = "Internal error") -> RenderUpdate:
        return RenderUpdate(task_id=task_id, state=RenderState.FAILED, error_message=message)


class FakeMediaHost:
    def __init__(self):
        self.uploads: list[tuple[str, str]] = []
        self.composed: list[tuple[str, list]] = []
        self.fail_on: str | None = None  # substring of a source URL that fails to download

    def upload_for_transform(self, source_url, public_id):
        if self.fail_on and self.fail_on in source_url:
            raise StitchError(f"HTTP 404 downloading {source_url}", step="download")
        self.uploads.append((source_url, public_id))
        return public_id

    def compose(self, base_asset_id, layers):
        self.composed.append((base_asset_id, layers))
        return f"https://media.example.com/video/upload/{base_asset_id}.mp4"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        bvg_data_dir=str(tmp_path),
        bvg_database_url=None,
        creation_delay_seconds=0.3,
        submission_delay_seconds=2.0,
        retry_delay_seconds=1.5,
        auto_extend=True,
        auto_stitch=True,
    )


@pytest.fixture
def job_store(tmp_path):
    return FileJobStore(tmp_path)


@pytest.fixture
def ledger(tmp_path):
    return CreditLedger(FileCreditStore(tmp_path))


@pytest.fixture
def prompt_generator():
    return FakePromptGenerator()


@pytest.fixture
def render_provider():
    return FakeRenderProvider()


@pytest.fixture
def media_host():
    return FakeMediaHost()


@pytest.fixture
def sleeps():
    """Delays requested by the code under test; nothing actually sleeps."""
    return []


@pytest.fixture
def orchestrator(job_store, ledger, prompt_generator, render_provider, settings, sleeps):
    return JobOrchestrator(
        job_store, ledger, prompt_generator, render_provider, settings=settings, sleep=sleeps.append
    )


@pytest.fixture
def handler(job_store, ledger, render_provider, settings):
    return RenderEventHandler(job_store, ledger, render_provider, settings)


@pytest.fixture
def batch_service(job_store, orchestrator, sleeps):
    return BatchService(job_store, orchestrator, sleep=sleeps.append)


@pytest.fixture
def stitcher(job_store, media_host):
    return StitchPipeline(job_store, media_host)


@pytest.fixture
def base_config():
    return BaseConfig(
        industry="Real Estate",
        city="Austin",
        story_idea="A {avatar_age} agent tours a home in {city}",
        number_of_scenes=1,
    )


@pytest.fixture
def fund(ledger):
    def _fund(user_id: str = "user_1", credits: int = 100):
        ledger.grant(user_id, credits, idempotency_key=f"seed:{user_id}:{credits}")
    return _fund
