"""Facade over one ``ServerComm`` with an explicit init/start/stop/free life cycle."""

from __future__ import annotations

from typing import List, Optional

from .comm import CallResult, ServerComm
from .protocol import CallbackFunc, CommPorts

DEFAULT_TIMEOUT = 1.0


class ClientOperation:
    """Set up an endpoint, offer functions and call those of peers.

    Timeouts are in seconds.  Using the object before ``init_sdk`` raises
    ``RuntimeError``.
    """

    def __init__(self) -> None:
        self._comm: Optional[ServerComm] = None

    @property
    def comm(self) -> Optional[ServerComm]:
        return self._comm

    def _require(self) -> ServerComm:
        if self._comm is None:
            raise RuntimeError("SDK is not initialised; call init_sdk first")
        return self._comm

    def init_sdk(self, ports: CommPorts) -> None:
        """Create the endpoint for ``ports``, releasing any previous one."""
        self.free_sdk()
        self._comm = ServerComm(ports)

    def free_sdk(self) -> None:
        if self._comm is not None:
            self._comm.stop()
            self._comm = None

    def start_work(self) -> None:
        self._require().start()

    def stop_work(self) -> None:
        self._require().stop()

    def do_action(
        self, ports: CommPorts, name: str, values=(), images=(), timeout: float = DEFAULT_TIMEOUT
    ) -> CallResult:
        """Call ``name`` on a peer; raises ``RemoteCallError`` on failure."""
        return self._require().call_remote(ports, name, images, values, timeout)

    def register_function(self, func: CallbackFunc) -> None:
        self._require().register_local(func)

    def remote_functions(self, ports: CommPorts) -> List[CallbackFunc]:
        return self._require().remote_functions(ports)

    def remote_commports(self) -> List[CommPorts]:
        return self._require().remote_commports()

    def __enter__(self) -> "ClientOperation":
        return self

    def __exit__(self, *exc_info) -> None:
        self.free_sdk()