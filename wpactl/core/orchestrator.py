"""
Connection Orchestrator - one consistent wifi session per interface.

Coordinates the supplicant process, its control commands, the DHCP client,
the supplicant config file and the MAC address so that every request either
ends in a usable connection or leaves nothing half-configured behind.

Request flow:
    MAC/config mutation -> (restart) -> network setup -> state wait -> lease

Every public coroutine returns an OperationResult; failures never escape as
exceptions. Operations on one interface are serialized by a per-interface
lock, so a Hotspot 2.0 connect and a plain connect can never interleave.

Usage:
    orchestrator = ConnectionOrchestrator(config)
    result = await orchestrator.connect("HomeNet", psk="secret123")
    if result.success:
        print(result.status.ip_address)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from ..config import WpactlConfig
from ..domain.models import (
    ConnectionState,
    ConnectionStatus,
    EapAuth,
    EapMethod,
    Hs20Credential,
    MacMode,
    MacPolicy,
    NetworkAuth,
    OpenAuth,
    OperationResult,
    PskAuth,
    StoredCredential,
    TlsAuth,
    TlsCertPaths,
)
from ..infrastructure.creds.store import CredentialProvider, FileCredentialStore, MockCredentialStore
from ..infrastructure.dhcp.lease_manager import LeaseManager, MockLeaseManager
from ..infrastructure.mac.policy_engine import MacPolicyEngine, MockMacPolicyEngine
from ..infrastructure.supplicant.config_file import ConfigMutator
from ..infrastructure.supplicant.control import ControlClient, MockControlClient
from ..infrastructure.supplicant.daemon import LogFilter, MockSupplicantSession, SupplicantSession
from ..tools.proc_utils import CommandRunner, run_command
from .errors import LeaseTimeoutError, StateTimeoutError, WpactlError

logger = logging.getLogger(__name__)


@dataclass
class InterfaceHandle:
    """Components owned for one wireless interface."""

    name: str
    session: SupplicantSession
    control: ControlClient
    lease: LeaseManager
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    mac_mode: MacMode | None = None


class ComponentFactory:
    """Builds the real components from configuration."""

    def __init__(self, config: WpactlConfig, runner: CommandRunner | None = None):
        self.config = config
        self.runner = runner or run_command

    def supplicant_session(self, interface: str) -> SupplicantSession:
        s = self.config.supplicant
        return SupplicantSession(
            interface,
            s.config_path,
            runner=self.runner,
            binary=s.binary,
            debug_level=s.debug_level,
            log_dir=s.log_dir,
            settle_secs=s.settle_secs,
            restart_delay_secs=s.restart_delay_secs,
            stop_grace_secs=s.stop_grace_secs,
            stop_system_service=s.stop_system_service,
            sudo=s.use_sudo,
            command_timeout=self.config.timeouts.command_secs,
        )

    def control_client(self, interface: str) -> ControlClient:
        return ControlClient(
            interface,
            runner=self.runner,
            cli_binary=self.config.supplicant.cli_binary,
            ctrl_dir=self.config.supplicant.ctrl_interface,
            command_timeout=self.config.timeouts.command_secs,
            scan_settle_secs=self.config.timeouts.scan_settle_secs,
            sudo=self.config.supplicant.use_sudo,
        )

    def lease_manager(self) -> LeaseManager:
        return LeaseManager(
            runner=self.runner,
            binary=self.config.dhcp.binary,
            configure_dns=self.config.dhcp.configure_dns,
            poll_interval=self.config.timeouts.poll_interval_secs,
            stop_grace_secs=self.config.dhcp.stop_grace_secs,
            sudo=self.config.supplicant.use_sudo,
            command_timeout=self.config.timeouts.command_secs,
            log_dir=self.config.supplicant.log_dir,
        )

    def mac_engine(self) -> MacPolicyEngine:
        return MacPolicyEngine(
            runner=self.runner,
            sudo=self.config.supplicant.use_sudo,
            command_timeout=self.config.timeouts.command_secs,
        )

    def config_file(self) -> ConfigMutator:
        return ConfigMutator(self.config.supplicant.config_path, self.config.supplicant.ctrl_interface)

    def credential_provider(self) -> CredentialProvider:
        return FileCredentialStore(self.config.credentials.base_dir)


class MockComponentFactory(ComponentFactory):
    """In-memory components; only the config file is real."""

    def supplicant_session(self, interface: str) -> SupplicantSession:
        return MockSupplicantSession(interface, self.config.supplicant.config_path, log_dir=self.config.supplicant.log_dir)

    def control_client(self, interface: str) -> ControlClient:
        return MockControlClient(interface)

    def lease_manager(self) -> LeaseManager:
        return MockLeaseManager()

    def mac_engine(self) -> MacPolicyEngine:
        return MockMacPolicyEngine()

    def credential_provider(self) -> CredentialProvider:
        return MockCredentialStore()


def _coerce_policy(policy: MacPolicy | dict | None) -> MacPolicy | None:
    if policy is None or isinstance(policy, MacPolicy):
        return policy
    return MacPolicy.model_validate(policy)


class ConnectionOrchestrator:
    """Public entry point for every wifi operation."""

    def __init__(
        self,
        config: WpactlConfig | None = None,
        factory: ComponentFactory | None = None,
        credentials: CredentialProvider | None = None,
    ):
        self.config = config or WpactlConfig()
        if factory is None:
            factory = MockComponentFactory(self.config) if self.config.mock_mode else ComponentFactory(self.config)
        self._factory = factory
        self.config_file = factory.config_file()
        self.mac_engine = factory.mac_engine()
        self.credentials = credentials or factory.credential_provider()
        self._handles: dict[str, InterfaceHandle] = {}

    # -------------------------------------------------------------- plumbing

    def handle(self, interface: str | None = None) -> InterfaceHandle:
        name = interface or self.config.interface.name
        handle = self._handles.get(name)
        if handle is None:
            handle = InterfaceHandle(
                name=name,
                session=self._factory.supplicant_session(name),
                control=self._factory.control_client(name),
                lease=self._factory.lease_manager(),
            )
            self._handles[name] = handle
        return handle

    async def _safe_status(self, handle: InterfaceHandle) -> ConnectionStatus | None:
        try:
            return await handle.control.status()
        except Exception as e:
            logger.debug("No status for %s: %s", handle.name, e)
            return None

    async def _run(
        self,
        operation: str,
        interface: str | None,
        body: Callable[[InterfaceHandle], Awaitable[OperationResult]],
    ) -> OperationResult:
        handle = self.handle(interface)
        async with handle.lock:
            try:
                return await body(handle)
            except StateTimeoutError as e:
                logger.error("%s on %s: %s", operation, handle.name, e)
                return OperationResult.failure(e, step=e.step, status=e.status)
            except WpactlError as e:
                logger.error("%s on %s failed: %s", operation, handle.name, e)
                return OperationResult.failure(e, step=e.step or operation, status=await self._safe_status(handle))
            except ValueError as e:
                logger.error("%s on %s rejected: %s", operation, handle.name, e)
                return OperationResult.failure(e, step="validate")
            except Exception as e:
                logger.exception("%s on %s failed unexpectedly", operation, handle.name)
                return OperationResult.failure(e, step=operation)

    async def _ensure_supplicant(self, handle: InterfaceHandle) -> None:
        if await handle.session.is_running():
            return
        self.config_file.ensure_exists()
        await handle.session.start()

    async def _stop_lease_quietly(self, handle: InterfaceHandle) -> None:
        try:
            await handle.lease.stop(handle.name)
        except Exception as e:
            logger.warning("Lease cleanup on %s failed: %s", handle.name, e)

    async def _acquire_lease(self, handle: InterfaceHandle, warnings: list[str]) -> str | None:
        timeout = self.config.timeouts.lease_wait_secs
        await handle.lease.start(handle.name, handle.mac_mode)
        ip = await handle.lease.wait_for_ip(timeout)
        if ip is None:
            warnings.append(str(LeaseTimeoutError(handle.name, timeout)))
        return ip

    async def _final_status(self, handle: InterfaceHandle, ip: str | None) -> ConnectionStatus:
        status = await handle.control.status()
        if ip and not status.ip_address:
            status = status.model_copy(update={"ip_address": ip})
        return status

    async def _wait_completed(self, handle: InterfaceHandle, timeout: float, context: str):
        wait = await handle.control.wait_for_state(
            ConnectionState.COMPLETED,
            timeout=timeout,
            poll_interval=self.config.timeouts.poll_interval_secs,
        )
        if not wait.reached:
            raise StateTimeoutError(ConnectionState.COMPLETED.value, timeout, status=wait.status, context=context)
        return wait.status

    # -------------------------------------------------------- connect flows

    def _leave_hs20(self, handle: InterfaceHandle) -> bool:
        """Drop credentials, global MAC keys and automatic interworking. True when the file changed."""
        if not self.config_file.is_hs20_active():
            return False
        logger.info("Clearing Hotspot 2.0 credentials on %s", handle.name)
        cleared = self.config_file.clear_all_hs20_credentials()
        return self.config_file.disable_auto_interworking() or cleared

    async def _prepare_plain_connect(self, handle: InterfaceHandle, policy: MacPolicy | None) -> None:
        """Leave Hotspot 2.0 mode and apply the device address before a regular connect."""
        restart = self._leave_hs20(handle)
        if policy is not None and policy.mode == MacMode.DEVICE:
            restart = await self.mac_engine.restore_permanent_mac(handle.name) or restart

        if restart and await handle.session.is_running():
            await handle.session.restart()
        else:
            await self._ensure_supplicant(handle)
        await handle.lease.stop(handle.name)

    async def _connect_network(
        self,
        handle: InterfaceHandle,
        ssid: str,
        auth: NetworkAuth,
        policy: MacPolicy | None,
    ) -> OperationResult:
        warnings: list[str] = []
        await self._prepare_plain_connect(handle, policy)

        handle.session.mark_command_start()
        network_id = await handle.control.connect(ssid, auth, policy)
        handle.mac_mode = policy.mode if policy else None

        try:
            await self._wait_completed(handle, self.config.timeouts.state_wait_secs, f"SSID '{ssid}'")
            ip = await self._acquire_lease(handle, warnings)
        except BaseException:
            await self._stop_lease_quietly(handle)
            await handle.control.discard_network(network_id)
            raise

        status = await self._final_status(handle, ip)
        logger.info("Connected %s to '%s' (ip %s)", handle.name, ssid, ip or "none")
        return OperationResult(success=True, status=status, warnings=warnings, data={"network_id": network_id})

    async def connect(
        self,
        ssid: str,
        psk: str | None = None,
        mac_policy: MacPolicy | dict | None = None,
        interface: str | None = None,
    ) -> OperationResult:
        """Connect to an open or WPA-PSK network."""

        async def body(handle: InterfaceHandle) -> OperationResult:
            auth: NetworkAuth = PskAuth(psk=psk) if psk else OpenAuth()
            return await self._connect_network(handle, ssid, auth, _coerce_policy(mac_policy))

        return await self._run("connect", interface, body)

    async def connect_eap(
        self,
        ssid: str,
        identity: str,
        password: str,
        method: EapMethod | str = EapMethod.PEAP,
        phase2: str = "MSCHAPV2",
        mac_policy: MacPolicy | dict | None = None,
        interface: str | None = None,
    ) -> OperationResult:
        """Connect to a WPA enterprise network with a username and password."""

        async def body(handle: InterfaceHandle) -> OperationResult:
            auth = EapAuth(identity=identity, password=password, method=EapMethod(method), phase2=phase2)
            return await self._connect_network(handle, ssid, auth, _coerce_policy(mac_policy))

        return await self._run("connect_eap", interface, body)

    async def _resolve_credential(self, credential_id: str) -> tuple[StoredCredential, str | None]:
        credential = await self.credentials.get(credential_id)
        if credential is None:
            raise ValueError(f"Credential '{credential_id}' not found")
        return credential, await self.credentials.get_key_password(credential_id)

    async def connect_tls(
        self,
        ssid: str,
        identity: str | None = None,
        cert_paths: TlsCertPaths | dict | None = None,
        credential_id: str | None = None,
        key_password: str | None = None,
        mac_policy: MacPolicy | dict | None = None,
        interface: str | None = None,
    ) -> OperationResult:
        """Connect with EAP-TLS using a stored credential or explicit certificate paths."""

        async def body(handle: InterfaceHandle) -> OperationResult:
            if credential_id:
                credential, stored_password = await self._resolve_credential(credential_id)
                auth = TlsAuth(
                    identity=identity or credential.identity,
                    client_cert_path=credential.client_cert_path,
                    private_key_path=credential.private_key_path,
                    ca_cert_path=credential.ca_cert_path,
                    key_password=key_password or stored_password,
                )
            elif cert_paths is not None:
                paths = cert_paths if isinstance(cert_paths, TlsCertPaths) else TlsCertPaths.model_validate(cert_paths)
                if not identity:
                    raise ValueError("identity is required when certificate paths are given")
                auth = TlsAuth(
                    identity=identity,
                    client_cert_path=paths.client_cert_path,
                    private_key_path=paths.private_key_path,
                    ca_cert_path=paths.ca_cert_path,
                    key_password=key_password,
                )
            else:
                raise ValueError("either credential_id or cert_paths is required")
            return await self._connect_network(handle, ssid, auth, _coerce_policy(mac_policy))

        return await self._run("connect_tls", interface, body)

    async def connect_hs20(
        self,
        credential_id: str,
        realm: str,
        domain: str,
        priority: int | None = None,
        timeout_seconds: float | None = None,
        mac_policy: MacPolicy | dict | None = None,
        interface: str | None = None,
    ) -> OperationResult:
        """Connect through Hotspot 2.0 / Passpoint with a stored certificate."""

        async def body(handle: InterfaceHandle) -> OperationResult:
            policy = _coerce_policy(mac_policy)
            stored, key_password = await self._resolve_credential(credential_id)
            credential = Hs20Credential(
                realm=realm,
                domain=domain,
                identity=stored.identity,
                client_cert_path=stored.client_cert_path,
                private_key_path=stored.private_key_path,
                ca_cert_path=stored.ca_cert_path,
                priority=priority,
            )
            timeout = timeout_seconds or self.config.timeouts.hs20_state_wait_secs
            warnings: list[str] = []

            await handle.lease.stop(handle.name)
            handle.session.mark_command_start()
            try:
                self.config_file.ensure_exists()
                self.config_file.ensure_global_feature_flags()
                self.config_file.clear_all_hs20_credentials()
                if policy is not None:
                    self.config_file.set_global_mac_policy(policy)
                self.config_file.add_hs20_credential(credential, key_password=key_password)
                if policy is not None and policy.mode == MacMode.DEVICE:
                    await self.mac_engine.restore_permanent_mac(handle.name)

                await handle.session.restart()
                try:
                    await handle.control.interworking_select()
                except WpactlError as e:
                    # auto_interworking still selects on its own
                    logger.warning("interworking_select on %s failed: %s", handle.name, e)
                    warnings.append(str(e))

                await self._wait_completed(handle, timeout, f"realm '{realm}'")
                handle.mac_mode = policy.mode if policy else None
                ip = await self._acquire_lease(handle, warnings)
            except BaseException:
                await self._rollback_hs20(handle)
                raise

            status = await self._final_status(handle, ip)
            logger.info("Hotspot 2.0 connected on %s via %s (ip %s)", handle.name, realm, ip or "none")
            return OperationResult(
                success=True,
                status=status,
                warnings=warnings,
                data={"realm": realm, "domain": domain, "credential_id": credential_id},
            )

        return await self._run("connect_hs20", interface, body)

    async def _rollback_hs20(self, handle: InterfaceHandle) -> None:
        await self._stop_lease_quietly(handle)
        try:
            self.config_file.clear_all_hs20_credentials()
            self.config_file.disable_auto_interworking()
        except Exception as e:
            logger.error("Could not clear HS20 credentials on %s: %s", handle.name, e)
        try:
            await handle.session.restart()
        except Exception as e:
            logger.error("Supplicant restart after HS20 failure on %s failed: %s", handle.name, e)
        handle.mac_mode = None

    # ------------------------------------------------------- other actions

    async def disconnect(self, interface: str | None = None) -> OperationResult:
        async def body(handle: InterfaceHandle) -> OperationResult:
            await handle.lease.stop(handle.name)
            handle.mac_mode = None
            # credentials left in the file would reconnect on the next start
            left_hs20 = self._leave_hs20(handle)
            if not await handle.session.is_running():
                return OperationResult(success=True, warnings=[f"wpa_supplicant is not running on {handle.name}"])

            handle.session.mark_command_start()
            if left_hs20:
                await handle.session.restart()
            await handle.control.disconnect()
            return OperationResult(success=True, status=await handle.control.status())

        return await self._run("disconnect", interface, body)

    async def reconnect(self, interface: str | None = None) -> OperationResult:
        async def body(handle: InterfaceHandle) -> OperationResult:
            warnings: list[str] = []
            await self._ensure_supplicant(handle)
            handle.session.mark_command_start()
            await handle.control.reconnect()
            await self._wait_completed(handle, self.config.timeouts.state_wait_secs, "reconnect")
            try:
                ip = await self._acquire_lease(handle, warnings)
            except BaseException:
                await self._stop_lease_quietly(handle)
                raise
            return OperationResult(success=True, status=await self._final_status(handle, ip), warnings=warnings)

        return await self._run("reconnect", interface, body)

    async def scan(self, interface: str | None = None) -> OperationResult:
        async def body(handle: InterfaceHandle) -> OperationResult:
            await self._ensure_supplicant(handle)
            handle.session.mark_command_start()
            networks = await handle.control.scan_with_retry(self.config.timeouts.scan_retries)
            return OperationResult(
                success=True,
                data={"networks": [n.model_dump() for n in networks], "count": len(networks)},
            )

        return await self._run("scan", interface, body)

    async def status(self, interface: str | None = None) -> OperationResult:
        async def body(handle: InterfaceHandle) -> OperationResult:
            status = await handle.control.status()
            lease = handle.lease.state
            if lease is not None and lease.ip and not status.ip_address:
                status = status.model_copy(update={"ip_address": lease.ip})
            data: dict[str, Any] = {"interface": handle.name}
            if lease is not None:
                data["lease"] = lease.to_dict()
            if handle.mac_mode is not None:
                data["mac_mode"] = handle.mac_mode.value
            return OperationResult(success=True, status=status, data=data)

        return await self._run("status", interface, body)

    async def list_networks(self, interface: str | None = None) -> OperationResult:
        async def body(handle: InterfaceHandle) -> OperationResult:
            networks = await handle.control.list_networks()
            return OperationResult(
                success=True,
                data={"networks": [n.model_dump() for n in networks], "count": len(networks)},
            )

        return await self._run("list_networks", interface, body)

    async def forget(self, network_id: int, interface: str | None = None) -> OperationResult:
        async def body(handle: InterfaceHandle) -> OperationResult:
            handle.session.mark_command_start()
            await handle.control.remove_network(network_id)
            return OperationResult(success=True, data={"network_id": network_id})

        return await self._run("forget", interface, body)

    async def get_debug_logs(
        self,
        filter: LogFilter | str = LogFilter.ALL,
        since_last_command: bool = True,
        lines: int = 100,
        interface: str | None = None,
    ) -> OperationResult:
        async def body(handle: InterfaceHandle) -> OperationResult:
            logs = await handle.session.filtered_logs(LogFilter(filter), since_last_command, lines)
            return OperationResult(
                success=True,
                data={
                    "logs": logs,
                    "count": len(logs),
                    "filter": LogFilter(filter).value,
                    "log_file": str(handle.session.log_path),
                },
            )

        return await self._run("get_debug_logs", interface, body)

    async def eap_diagnostics(self, interface: str | None = None) -> OperationResult:
        async def body(handle: InterfaceHandle) -> OperationResult:
            diagnostics = await handle.control.eap_diagnostics()
            return OperationResult(success=True, data=diagnostics.model_dump(exclude_none=True))

        return await self._run("eap_diagnostics", interface, body)

    async def hs20_state(self, interface: str | None = None) -> OperationResult:
        async def body(handle: InterfaceHandle) -> OperationResult:
            return OperationResult(success=True, data=self.config_file.get_state().model_dump())

        return await self._run("hs20_state", interface, body)

    async def shutdown(self, interface: str | None = None) -> OperationResult:
        """Release the lease and stop wpa_supplicant."""

        async def body(handle: InterfaceHandle) -> OperationResult:
            await self._stop_lease_quietly(handle)
            await handle.session.stop()
            handle.mac_mode = None
            return OperationResult(success=True)

        return await self._run("shutdown", interface, body)
