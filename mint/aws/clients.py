"""AWS client wiring with dependency injection.

MintAWSModule provides one aioboto3 session and a client factory per
service, bound to the configured region. open_clients() opens every
client one CLI invocation needs and closes them on exit.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import Any

import aioboto3
from injector import Injector, Module, provider, singleton

from mint.config import MintConfig

type ClientFactory = Callable[[], AbstractAsyncContextManager[Any]]


class _ServiceClientFactory:
    """Callable wrapper around a client factory for one AWS service."""

    service: str = ""

    def __init__(self, factory: ClientFactory) -> None:
        self._factory = factory

    def __call__(self) -> AbstractAsyncContextManager[Any]:
        return self._factory()


class EC2ClientFactory(_ServiceClientFactory):
    service = "ec2"


class InstanceConnectClientFactory(_ServiceClientFactory):
    service = "ec2-instance-connect"


class EFSClientFactory(_ServiceClientFactory):
    service = "efs"


class STSClientFactory(_ServiceClientFactory):
    service = "sts"


def _factory_for(session: aioboto3.Session, service: str, config: MintConfig) -> ClientFactory:
    region = config.region or None

    @asynccontextmanager
    async def factory() -> AsyncIterator[Any]:
        async with session.client(service, region_name=region) as client:
            yield client

    return factory


class MintAWSModule(Module):
    """DI module providing AWS client factories.

    Usage:
        >>> injector = Injector([MintAWSModule(config)])
        >>> ec2 = injector.get(EC2ClientFactory)
        >>> async with ec2() as client:
        ...     await client.describe_instances()
    """

    def __init__(self, config: MintConfig) -> None:
        self._config = config

    @singleton
    @provider
    def provide_config(self) -> MintConfig:
        return self._config

    @singleton
    @provider
    def provide_session(self) -> aioboto3.Session:
        """Provide singleton aioboto3 session."""
        return aioboto3.Session()

    @singleton
    @provider
    def provide_ec2(self, session: aioboto3.Session, config: MintConfig) -> EC2ClientFactory:
        return EC2ClientFactory(_factory_for(session, EC2ClientFactory.service, config))

    @singleton
    @provider
    def provide_instance_connect(
        self, session: aioboto3.Session, config: MintConfig
    ) -> InstanceConnectClientFactory:
        return InstanceConnectClientFactory(
            _factory_for(session, InstanceConnectClientFactory.service, config)
        )

    @singleton
    @provider
    def provide_efs(self, session: aioboto3.Session, config: MintConfig) -> EFSClientFactory:
        return EFSClientFactory(_factory_for(session, EFSClientFactory.service, config))

    @singleton
    @provider
    def provide_sts(self, session: aioboto3.Session, config: MintConfig) -> STSClientFactory:
        return STSClientFactory(_factory_for(session, STSClientFactory.service, config))


@dataclass(frozen=True, slots=True)
class AWSClients:
    """Open clients for one invocation."""

    ec2: Any
    instance_connect: Any
    efs: Any
    sts: Any


@asynccontextmanager
async def open_clients(config: MintConfig) -> AsyncIterator[AWSClients]:
    injector = Injector([MintAWSModule(config)])
    async with AsyncExitStack() as stack:
        yield AWSClients(
            ec2=await stack.enter_async_context(injector.get(EC2ClientFactory)()),
            instance_connect=await stack.enter_async_context(
                injector.get(InstanceConnectClientFactory)()
            ),
            efs=await stack.enter_async_context(injector.get(EFSClientFactory)()),
            sts=await stack.enter_async_context(injector.get(STSClientFactory)()),
        )
