"""Shared fixtures: a fake chain and clients wired to it."""

from __future__ import annotations

from typing import Callable, Iterator

import pytest

from reliquary.client import Client
from reliquary.config import ProviderSettings
from reliquary.sigil.eth import KeyAuthority

from fakechain import ALICE_KEY, BOB_KEY, FUNDING, FakeChain, make_config


def _no_sleep(seconds: float) -> None:
    return None


@pytest.fixture()
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture()
def settings() -> ProviderSettings:
    return ProviderSettings(timeout=5.0, retries=3, backoff_factor=0.01, poll_interval=0.0, await_timeout=5.0)


@pytest.fixture()
def make_client(chain: FakeChain, settings: ProviderSettings) -> Iterator[Callable[[str], Client]]:
    """Factory: build a funded client for a hex key against the fake chain."""
    clients: list[Client] = []

    def factory(key_hex: str = ALICE_KEY) -> Client:
        authority = KeyAuthority.from_hex(key_hex)
        chain.fund(authority.address, FUNDING)
        client = Client(
            make_config(),
            authority,
            settings=settings,
            transport=chain.transport(),
            sleep=_no_sleep,
        )
        clients.append(client)
        return client

    yield factory
    for client in clients:
        client.close()


@pytest.fixture()
def alice(make_client) -> Client:
    return make_client(ALICE_KEY)


@pytest.fixture()
def bob(make_client) -> Client:
    return make_client(BOB_KEY)
