"""Serve a Python kubeconfig store as a kubeswitch plugin."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import sys
import tempfile

import grpc

from kubeswitch.shared.stores.base import KubeconfigStore, PrefixResolver, find_capability
from kubeswitch.shared.stores.plugin import protocol
from kubeswitch.shared.stores.plugin.handshake import (
    APP_PROTOCOL_VERSION,
    CORE_PROTOCOL_VERSION,
    PROTOCOL_GRPC,
    Handshake,
    check_magic_cookie,
)

logger = logging.getLogger("kubeswitch.plugin.server")


def build_handler(store: KubeconfigStore) -> grpc.GenericRpcHandler:
    """Map the ``KubeconfigStoreService`` methods onto ``store``."""

    async def get_id(request, context):
        return protocol.GetIDResponse(id=store.id())

    async def get_context_prefix(request, context):
        resolver = find_capability(store, PrefixResolver)
        if resolver is not None:
            prefix = await resolver.resolve_context_prefix(request.path)
        else:
            prefix = store.context_prefix(request.path)
        return protocol.GetContextPrefixResponse(prefix=prefix)

    async def verify_kubeconfig_paths(request, context):
        try:
            await store.verify()
        except Exception as exc:
            await context.abort(grpc.StatusCode.FAILED_PRECONDITION, str(exc))
        return protocol.VerifyKubeconfigPathsResponse()

    async def start_search(request, context):
        async for result in store.start_search():
            if result.error is not None:
                logger.warning("search error in %s: %s", store.id(), result.error)
                continue
            yield protocol.StartSearchResponse(kubeconfig_path=result.key, tags=result.tags)

    async def get_kubeconfig_for_path(request, context):
        try:
            data = await store.fetch(request.path, dict(request.tags))
        except Exception as exc:
            await context.abort(grpc.StatusCode.UNKNOWN, str(exc))
        return protocol.GetKubeconfigForPathResponse(kubeconfig=data)

    def unary(method, behavior):
        return grpc.unary_unary_rpc_method_handler(
            behavior,
            request_deserializer=protocol.request_class(method).FromString,
            response_serializer=protocol.response_class(method).SerializeToString,
        )

    return grpc.method_handlers_generic_handler(
        protocol.SERVICE_NAME,
        {
            "GetID": unary("GetID", get_id),
            "GetContextPrefix": unary("GetContextPrefix", get_context_prefix),
            "VerifyKubeconfigPaths": unary("VerifyKubeconfigPaths", verify_kubeconfig_paths),
            "StartSearch": grpc.unary_stream_rpc_method_handler(
                start_search,
                request_deserializer=protocol.StartSearchRequest.FromString,
                response_serializer=protocol.StartSearchResponse.SerializeToString,
            ),
            "GetKubeconfigForPath": unary("GetKubeconfigForPath", get_kubeconfig_for_path),
        },
    )


def create_server(store: KubeconfigStore) -> grpc.aio.Server:
    server = grpc.aio.server()
    server.add_generic_rpc_handlers((build_handler(store),))
    return server


async def serve(store: KubeconfigStore) -> None:
    """Serve ``store`` on a unix socket and announce it with the handshake line.

    Runs until the parent terminates the process.
    """

    check_magic_cookie()
    socket_dir = tempfile.mkdtemp(prefix="kubeswitch-plugin-")
    socket_path = os.path.join(socket_dir, "plugin.sock")
    server = create_server(store)
    server.add_insecure_port(f"unix:{socket_path}")
    await server.start()

    handshake = Handshake(
        core_version=CORE_PROTOCOL_VERSION,
        app_version=APP_PROTOCOL_VERSION,
        network="unix",
        address=socket_path,
        protocol=PROTOCOL_GRPC,
    )
    sys.stdout.write(handshake.to_line() + "\n")
    sys.stdout.flush()

    try:
        await server.wait_for_termination()
    finally:
        await server.stop(grace=1.0)
        shutil.rmtree(socket_dir, ignore_errors=True)


def run(store: KubeconfigStore) -> None:
    """Blocking entry point for plugin executables."""

    asyncio.run(serve(store))
