"""Kubeconfig store served by an out-of-process plugin over gRPC."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Dict, List, Optional

import grpc

from kubeswitch.shared.config import KubeconfigStoreConfig
from kubeswitch.shared.debug import store_logger
from kubeswitch.shared.errors import PluginError, StoreVerifyError
from kubeswitch.shared.stores.base import BaseStore, SearchResult, StoreKind, Tags
from kubeswitch.shared.stores.plugin import protocol
from kubeswitch.shared.stores.plugin.handshake import parse_handshake, plugin_environment
from kubeswitch.shared.utils import expand_path, terminate_process

RPC_TIMEOUT = 10.0
HANDSHAKE_TIMEOUT = 30.0


class PluginStore(BaseStore):
    """Proxy every store operation to a plugin child process.

    The child is started lazily on first use, prints a go-plugin handshake
    line and is then reached through a ``grpc.aio`` channel. ``target`` may
    point at an already running plugin instead of spawning ``cmdPath``.
    """

    store_kind = StoreKind.PLUGIN

    def __init__(self, store_config, switch_config, target: Optional[str] = None):
        self._remote_id: Optional[str] = None
        super().__init__(store_config, switch_config)
        self.cmd_path = expand_path(str(self.options.get("cmdPath") or ""))
        self.args = [str(a) for a in self.options.get("args") or []]
        self._target = target
        self._process: Optional[asyncio.subprocess.Process] = None
        self._channel: Optional[grpc.aio.Channel] = None
        self._drains: List[asyncio.Task] = []
        self._start_lock = asyncio.Lock()
        self._prefixes: Dict[str, str] = {}

    def id(self) -> str:
        return self._remote_id or super().id()

    async def _drain(self, stream: asyncio.StreamReader, level: int) -> None:
        while True:
            line = await stream.readline()
            if not line:
                return
            self.logger().log(level, "plugin: %s", line.decode(errors="replace").rstrip())

    async def _spawn(self) -> str:
        if not self.cmd_path:
            raise PluginError("plugin store has no 'config.cmdPath'")
        try:
            process = await asyncio.create_subprocess_exec(
                self.cmd_path,
                *self.args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=plugin_environment(),
            )
        except OSError as exc:
            raise PluginError(f"failed to start plugin {self.cmd_path!r}: {exc}") from exc
        self._process = process

        try:
            line = await asyncio.wait_for(process.stdout.readline(), HANDSHAKE_TIMEOUT)
        except asyncio.TimeoutError:
            await terminate_process(process)
            raise PluginError(f"timed out waiting for the handshake of plugin {self.cmd_path!r}")
        if not line:
            stderr = (await process.stderr.read()).decode(errors="replace").strip()
            await terminate_process(process)
            raise PluginError(
                f"plugin {self.cmd_path!r} exited before completing the handshake: {stderr}"
            )

        try:
            handshake = parse_handshake(line.decode(errors="replace"))
        except PluginError:
            await terminate_process(process)
            raise

        self._drains = [
            asyncio.ensure_future(self._drain(process.stdout, logging.DEBUG)),
            asyncio.ensure_future(self._drain(process.stderr, logging.DEBUG)),
        ]
        self.logger().debug("plugin %s listening on %s", self.cmd_path, handshake.target)
        return handshake.target

    async def _ensure_started(self) -> grpc.aio.Channel:
        async with self._start_lock:
            if self._channel is None:
                if self._target is None:
                    self._target = await self._spawn()
                self._channel = grpc.aio.insecure_channel(self._target)
        return self._channel

    async def _call(self, method: str, request):
        channel = await self._ensure_started()
        call = channel.unary_unary(
            protocol.method_path(method),
            request_serializer=protocol.request_class(method).SerializeToString,
            response_deserializer=protocol.response_class(method).FromString,
        )
        try:
            return await call(request, timeout=RPC_TIMEOUT)
        except grpc.aio.AioRpcError as exc:
            raise PluginError(f"plugin {method} failed: {exc.code().name}: {exc.details()}") from exc

    async def verify(self) -> None:
        try:
            response = await self._call("GetID", protocol.GetIDRequest())
            if response.id:
                self._remote_id = response.id
                self._logger = store_logger(self._remote_id)
        except PluginError as exc:
            if self._channel is None:
                raise StoreVerifyError(str(exc)) from exc
            self.logger().debug("falling back to store ID %s: %s", self.id(), exc)

        try:
            await self._call("VerifyKubeconfigPaths", protocol.VerifyKubeconfigPathsRequest())
        except PluginError as exc:
            raise StoreVerifyError(str(exc)) from exc

    def prefix_for(self, key: str) -> str:
        if key in self._prefixes:
            return self._prefixes[key]
        return f"{self.kind()}/{key}"

    async def resolve_context_prefix(self, key: str) -> str:
        if not self._config.show_prefix:
            return ""
        if key not in self._prefixes:
            try:
                response = await self._call(
                    "GetContextPrefix", protocol.GetContextPrefixRequest(path=key)
                )
                self._prefixes[key] = response.prefix
            except PluginError as exc:
                self.logger().debug("no context prefix for %s: %s", key, exc)
                self._prefixes[key] = f"{self.kind()}/{key}"
        return self.prefix_for(key)

    async def start_search(self) -> AsyncIterator[SearchResult]:
        self.logger().debug("Plugin: start search")
        try:
            channel = await self._ensure_started()
        except PluginError as exc:
            yield SearchResult(error=exc)
            return

        stream = channel.unary_stream(
            protocol.method_path("StartSearch"),
            request_serializer=protocol.StartSearchRequest.SerializeToString,
            response_deserializer=protocol.StartSearchResponse.FromString,
        )
        call = stream(protocol.StartSearchRequest())
        try:
            while True:
                try:
                    response = await asyncio.wait_for(call.read(), RPC_TIMEOUT)
                except asyncio.TimeoutError:
                    yield SearchResult(error=PluginError("timed out waiting for the plugin search stream"))
                    return
                except grpc.aio.AioRpcError as exc:
                    yield SearchResult(
                        error=PluginError(f"plugin search stream closed: {exc.code().name}: {exc.details()}")
                    )
                    return
                if response is grpc.aio.EOF:
                    return
                yield SearchResult(key=response.kubeconfig_path, tags=dict(response.tags))
        finally:
            call.cancel()

    async def fetch(self, key: str, tags: Tags) -> bytes:
        self.logger().debug("Plugins: get kubeconfig for path %s", key)
        response = await self._call(
            "GetKubeconfigForPath",
            protocol.GetKubeconfigForPathRequest(path=key, tags=dict(tags)),
        )
        if not response.kubeconfig:
            raise PluginError(f"plugin returned no kubeconfig for {key!r}")
        return response.kubeconfig

    async def close(self) -> None:
        if self._channel is not None:
            await self._channel.close()
            self._channel = None
        if self._process is not None:
            await terminate_process(self._process)
            self._process = None
        for task in self._drains:
            task.cancel()
        self._drains = []


def validate(store_config: KubeconfigStoreConfig) -> List[str]:
    if not (store_config.config or {}).get("cmdPath"):
        return ["config.cmdPath: the path to the plugin executable must be set"]
    return []


STORE_KIND = StoreKind.PLUGIN
STORE_CLASS = PluginStore
