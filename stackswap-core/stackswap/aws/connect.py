"""
AWS client stack used by hotswap operations.

This module provides the ``SDK`` handed to every hotswap operation: a cache of boto3 clients which are exposed
as async proxies, running each API call on a worker thread so that the event loop stays responsive while
operations are waiting on AWS.
"""

import logging
import threading
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, Generic, Optional, TypeVar

from boto3.session import Session
from botocore.client import BaseClient
from botocore.config import Config

from stackswap.utils.asyncio import run_sync

LOG = logging.getLogger(__name__)

MAX_POOL_CONNECTIONS = 50

T = TypeVar("T")


def attribute_name_to_service_name(attribute_name):
    """
    Converts a python-compatible attribute name to the boto service name
    :param attribute_name: Python compatible attribute name using the following replacements:
                            a) Add an underscore suffix `_` to any reserved Python keyword (PEP-8).
                            b) Replace any dash `-` with an underscore `_`
    :return:
    """
    if attribute_name.endswith("_"):
        # lambda_ -> lambda
        attribute_name = attribute_name[:-1]
    # replace all _ with -: cognito_idp -> cognito-idp
    return attribute_name.replace("_", "-")


class AsyncClient(Generic[T]):
    """
    Wraps a boto3 client, turning every API call into a coroutine which runs the call in a worker thread.
    Non-callable attributes (e.g. ``exceptions`` or ``meta``) are returned unchanged.
    """

    def __init__(self, client: T):
        self._client = client

    def __getattr__(self, item):
        target = getattr(self._client, item)
        if not isinstance(target, Callable):
            return target

        @wraps(target)
        async def _call(*args, **kwargs):
            return await run_sync(target, *args, **kwargs)

        return _call

    @property
    def client(self) -> T:
        """The wrapped, synchronous boto3 client."""
        return self._client


@dataclass
class AccountInfo:
    account_id: str
    partition: str


class SDK:
    """
    Client factory handed to hotswap operations.

    Clients are created once per service and cached. Every request sent by any of the clients carries the
    currently registered custom user agent markers, which is how operations label the calls made on their
    behalf. Attribute access selects a service, e.g. ``await sdk.lambda_.update_function_code(...)``.
    """

    def __init__(
        self,
        session: Session = None,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        config: Config = None,
    ):
        """
        :param session: Session to be used for client creation. Will create a new session if not provided.
        :param region_name: Name of the AWS region to be associated with the clients.
            If set to None, loads from botocore session.
        :param endpoint_url: Endpoint URL to be used by all clients, e.g. to target an AWS emulator.
        :param config: Config used as default for client creation.
        """
        self._session: Session = session or Session()
        self._region_name = region_name
        self._endpoint_url = endpoint_url
        self._config: Config = config or Config(max_pool_connections=MAX_POOL_CONNECTIONS)
        self._clients: dict[str, AsyncClient] = {}
        self._create_client_lock = threading.RLock()
        self._user_agent_markers: list[str] = []
        self._account: Optional[AccountInfo] = None

    @property
    def region_name(self) -> str:
        return self._region_name or self._session.region_name

    def append_custom_user_agent(self, marker: str) -> None:
        self._user_agent_markers.append(marker)

    def remove_custom_user_agent(self, marker: str) -> None:
        # operations of the same service register the same marker, only remove one occurrence
        try:
            self._user_agent_markers.remove(marker)
        except ValueError:
            LOG.debug("User agent marker %s is not registered", marker)

    def get_client(self, service_name: str) -> AsyncClient:
        with self._create_client_lock:
            client = self._clients.get(service_name)
            if client is None:
                client = AsyncClient(self._create_client(service_name))
                self._clients[service_name] = client
            return client

    def __getattr__(self, service: str) -> AsyncClient:
        if service.startswith("__"):
            raise AttributeError(service)
        return self.get_client(attribute_name_to_service_name(service))

    def _create_client(self, service_name: str) -> BaseClient:
        client = self._session.client(
            service_name=service_name,
            region_name=self.region_name,
            endpoint_url=self._endpoint_url,
            config=self._config,
        )
        client.meta.events.register("before-send.*.*", self._handler_append_user_agent)
        return client

    def _handler_append_user_agent(self, request, **kwargs: Any) -> None:
        if not self._user_agent_markers:
            return
        user_agent = request.headers.get("User-Agent")
        if isinstance(user_agent, bytes):
            user_agent = user_agent.decode("utf-8")
        markers = " ".join(self._user_agent_markers)
        request.headers["User-Agent"] = f"{user_agent} {markers}" if user_agent else markers

    async def current_account(self) -> AccountInfo:
        """Looks up (and caches) the account ID and partition of the caller."""
        if self._account is None:
            identity = await self.sts.get_caller_identity()
            partition = identity["Arn"].split(":")[1]
            self._account = AccountInfo(account_id=identity["Account"], partition=partition)
        return self._account
