from __future__ import annotations

import asyncio
from collections.abc import Mapping
from datetime import timedelta
from typing import Any

import pytest

from mcpauth.client.bff import BffRequestError, ProviderIdentity
from mcpauth.client.callback import (
    CallbackHandler,
    CallbackOutcome,
    CallbackParams,
    NoticeLevel,
    strip_callback_params,
)
from mcpauth.client.session import AUTH_STATE_KEY, SessionService, SessionStatus
from mcpauth.client.storage import (
    OAUTH_STATE_KEY,
    PKCE_VERIFIER_KEY,
    AuthorizationStateStore,
    MemoryStore,
)
from tests.client.conftest import (
    FIXED_NOW,
    CountingStore,
    RecordingNavigator,
    RecordingNotifier,
    StubIdentityLinker,
    StubTokenExchanger,
)

CALLBACK_URL = "http://localhost:3000/client?code=abc123&state=S1"
CLEAN_URL = "http://localhost:3000/client"
IDENTITY = ProviderIdentity(subject="hanko-user-1", email="user@example.net")


class Harness:
    def __init__(
        self,
        session: SessionService,
        state_store: AuthorizationStateStore,
        *,
        exchanger: StubTokenExchanger | None = None,
        linker: StubIdentityLinker | None = None,
    ) -> None:
        self.session = session
        self.exchanger = exchanger or StubTokenExchanger()
        self.linker = linker or StubIdentityLinker()
        self.navigator = RecordingNavigator()
        self.notifier = RecordingNotifier()
        self.handler = CallbackHandler(
            session=session,
            state_store=state_store,
            token_exchanger=self.exchanger,
            identity_linker=self.linker,
            navigator=self.navigator,
            notifier=self.notifier,
        )

    def run(self, url: str, identity: ProviderIdentity | None = IDENTITY) -> CallbackOutcome:
        return asyncio.run(self.handler.handle_url(url, identity=identity))

    @property
    def levels(self) -> list[NoticeLevel]:
        return [notice.level for notice in self.notifier.notices]


@pytest.fixture()
def harness(session: SessionService, state_store: AuthorizationStateStore) -> Harness:
    state_store.save(state="S1", verifier="V1")
    return Harness(session, state_store)


def test_successful_callback_authenticates_and_links(
    harness: Harness,
    pending_store: CountingStore,
    durable_store: MemoryStore,
) -> None:
    outcome = harness.run(CALLBACK_URL)

    assert outcome is CallbackOutcome.AUTHENTICATED
    assert harness.exchanger.calls == [{"code": "abc123", "code_verifier": "V1"}]
    state = harness.session.state
    assert state.status is SessionStatus.AUTHENTICATED
    assert state.access_token == "A1"
    assert state.expires_at == FIXED_NOW + timedelta(seconds=3600)
    assert state.user_id == harness.linker.user_id
    assert harness.linker.calls[0]["access_token"] == "A1"
    assert harness.linker.calls[0]["identity"] == IDENTITY
    assert durable_store.get(AUTH_STATE_KEY) is not None
    assert OAUTH_STATE_KEY not in pending_store
    assert PKCE_VERIFIER_KEY not in pending_store
    assert harness.navigator.replaced == [CLEAN_URL]
    assert harness.levels == [NoticeLevel.SUCCESS]


def test_state_mismatch_never_exchanges_code(
    harness: Harness,
    pending_store: CountingStore,
) -> None:
    outcome = harness.run("http://localhost:3000/client?code=abc123&state=S2")

    assert outcome is CallbackOutcome.FAILED
    assert harness.exchanger.calls == []
    assert harness.session.status is SessionStatus.ERROR
    assert harness.session.state.error == "State mismatch. Authorization process aborted."
    assert harness.levels == [NoticeLevel.SECURITY]
    assert pending_store.deletes.count(OAUTH_STATE_KEY) == 1
    assert pending_store.deletes.count(PKCE_VERIFIER_KEY) == 1
    assert harness.navigator.replaced == [CLEAN_URL]


def test_missing_stored_state_is_a_mismatch(
    session: SessionService,
    state_store: AuthorizationStateStore,
) -> None:
    harness = Harness(session, state_store)

    outcome = harness.run(CALLBACK_URL)

    assert outcome is CallbackOutcome.FAILED
    assert harness.exchanger.calls == []
    assert harness.levels == [NoticeLevel.SECURITY]


def test_missing_verifier_aborts_before_exchange(
    session: SessionService,
    pending_store: CountingStore,
    state_store: AuthorizationStateStore,
) -> None:
    pending_store.set(OAUTH_STATE_KEY, "S1")
    harness = Harness(session, state_store)

    outcome = harness.run(CALLBACK_URL)

    assert outcome is CallbackOutcome.FAILED
    assert harness.exchanger.calls == []
    assert harness.session.state.error == "PKCE verifier missing. Authorization process aborted."


def test_exchange_failure_moves_session_to_error(
    session: SessionService,
    state_store: AuthorizationStateStore,
    pending_store: CountingStore,
) -> None:
    state_store.save(state="S1", verifier="V1")
    exchanger = StubTokenExchanger(
        error=BffRequestError(400, "Authorization code expired.", error="invalid_grant")
    )
    harness = Harness(session, state_store, exchanger=exchanger)

    outcome = harness.run(CALLBACK_URL)

    assert outcome is CallbackOutcome.FAILED
    assert harness.session.state.error == "Token exchange failed: Authorization code expired."
    assert harness.levels == [NoticeLevel.ERROR]
    assert OAUTH_STATE_KEY not in pending_store


def test_exchange_without_access_token_fails(
    session: SessionService,
    state_store: AuthorizationStateStore,
) -> None:
    state_store.save(state="S1", verifier="V1")
    harness = Harness(
        session,
        state_store,
        exchanger=StubTokenExchanger(payload={"token_type": "Bearer"}),
    )

    assert harness.run(CALLBACK_URL) is CallbackOutcome.FAILED
    assert harness.session.status is SessionStatus.ERROR


def test_provider_error_clears_pending_values(
    harness: Harness,
    pending_store: CountingStore,
) -> None:
    outcome = harness.run(
        "http://localhost:3000/client?error=access_denied&error_description=User+said+no&state=S1"
    )

    assert outcome is CallbackOutcome.FAILED
    assert harness.exchanger.calls == []
    assert harness.session.state.error == "Authorization failed: access_denied (User said no)"
    assert harness.levels == [NoticeLevel.ERROR]
    assert OAUTH_STATE_KEY not in pending_store
    assert harness.navigator.replaced == [CLEAN_URL]


def test_provider_error_without_description() -> None:
    params = CallbackParams.from_url("http://localhost/client?error=server_error")

    assert params.error == "server_error"
    assert params.error_description is None
    assert params.has_callback is True


def test_provider_error_is_ignored_while_exchange_in_flight(harness: Harness) -> None:
    harness.session.begin()

    outcome = harness.run("http://localhost:3000/client?error=access_denied")

    assert outcome is CallbackOutcome.IGNORED
    assert harness.session.status is SessionStatus.LOADING


def test_replayed_callback_is_ignored(harness: Harness) -> None:
    assert harness.run(CALLBACK_URL) is CallbackOutcome.AUTHENTICATED

    assert harness.run(CALLBACK_URL) is CallbackOutcome.IGNORED
    assert len(harness.exchanger.calls) == 1
    assert harness.session.status is SessionStatus.AUTHENTICATED


def test_no_callback_parameters_leaves_session_alone(harness: Harness) -> None:
    assert harness.run(CLEAN_URL) is CallbackOutcome.NO_CALLBACK
    assert harness.session.status is SessionStatus.IDLE
    assert harness.navigator.replaced == []


def test_no_callback_resets_previous_error(harness: Harness) -> None:
    harness.session.fail("earlier failure")

    assert harness.run(CLEAN_URL) is CallbackOutcome.NO_CALLBACK
    assert harness.session.status is SessionStatus.IDLE


def test_linking_failure_keeps_session_authenticated(
    session: SessionService,
    state_store: AuthorizationStateStore,
) -> None:
    state_store.save(state="S1", verifier="V1")
    linker = StubIdentityLinker(error=BffRequestError(400, "Mismatch", error="Mismatch Error"))
    harness = Harness(session, state_store, linker=linker)

    outcome = harness.run(CALLBACK_URL)

    assert outcome is CallbackOutcome.AUTHENTICATED
    assert harness.session.status is SessionStatus.AUTHENTICATED
    assert harness.session.state.user_id is None
    assert harness.levels == [NoticeLevel.SUCCESS, NoticeLevel.WARNING]


def test_missing_identity_skips_linking(harness: Harness) -> None:
    outcome = harness.run(CALLBACK_URL, identity=None)

    assert outcome is CallbackOutcome.AUTHENTICATED
    assert harness.linker.calls == []
    assert harness.notifier.notices[-1].title == "Account Not Linked"


def test_strip_callback_params_keeps_unrelated_query() -> None:
    url = "http://localhost:3000/client?tab=data&code=abc&state=S1&error_uri=x#frag"

    assert strip_callback_params(url) == "http://localhost:3000/client?tab=data"


def test_out_of_range_lifetime_still_authenticates(
    session: SessionService,
    state_store: AuthorizationStateStore,
    durable_store: MemoryStore,
) -> None:
    state_store.save(state="S1", verifier="V1")
    harness = Harness(
        session,
        state_store,
        exchanger=StubTokenExchanger(payload={"access_token": "A1", "expires_in": 10**12}),
    )

    outcome = harness.run(CALLBACK_URL)

    assert outcome is CallbackOutcome.AUTHENTICATED
    assert harness.session.state.expires_at is None
    assert durable_store.get(AUTH_STATE_KEY) is not None
    assert harness.navigator.replaced == [CLEAN_URL]


def test_code_callback_while_loading_is_ignored(
    harness: Harness,
    pending_store: CountingStore,
) -> None:
    harness.session.begin()

    outcome = harness.run(CALLBACK_URL)

    assert outcome is CallbackOutcome.IGNORED
    assert harness.exchanger.calls == []
    assert harness.session.status is SessionStatus.LOADING
    assert pending_store.get(OAUTH_STATE_KEY) == "S1"
    assert pending_store.get(PKCE_VERIFIER_KEY) == "V1"
    assert harness.navigator.replaced == []


class GatedTokenExchanger(StubTokenExchanger):
    """Blocks inside the exchange until released."""

    def __init__(self) -> None:
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def exchange_code(self, *, code: str, code_verifier: str) -> Mapping[str, Any]:
        self.calls.append({"code": code, "code_verifier": code_verifier})
        self.started.set()
        await self.release.wait()
        return self.payload


def test_overlapping_callbacks_exchange_once(
    session: SessionService,
    state_store: AuthorizationStateStore,
    pending_store: CountingStore,
) -> None:
    state_store.save(state="S1", verifier="V1")

    async def _scenario() -> tuple[CallbackOutcome, CallbackOutcome, GatedTokenExchanger]:
        exchanger = GatedTokenExchanger()
        harness = Harness(session, state_store, exchanger=exchanger)
        first = asyncio.create_task(harness.handler.handle_url(CALLBACK_URL, identity=IDENTITY))
        await exchanger.started.wait()
        second = await harness.handler.handle_url(CALLBACK_URL, identity=IDENTITY)
        exchanger.release.set()
        return await first, second, exchanger

    first, second, exchanger = asyncio.run(_scenario())

    assert first is CallbackOutcome.AUTHENTICATED
    assert second is CallbackOutcome.IGNORED
    assert exchanger.calls == [{"code": "abc123", "code_verifier": "V1"}]
    assert pending_store.deletes.count(OAUTH_STATE_KEY) == 1
    assert pending_store.deletes.count(PKCE_VERIFIER_KEY) == 1
    assert session.status is SessionStatus.AUTHENTICATED
