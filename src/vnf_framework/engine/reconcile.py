"""Reconciliation engine - detect and correct drift between desired and device state.

A pass for one network:
1. Resolve the appliance and its dictionary
2. Probe reachability (unreachable aborts the pass, zero actions)
3. Observe: list every desired service that has a list operation
4. Classify each rule as missing, extra or present, and correct unless dry-run

Observation completes for all services before the first correction, so a
failed list never leaves a half-corrected device.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Union

from ..appliance.models import Appliance
from ..broker.client import BrokerClient
from ..config.inventory import ApplianceInventory
from ..config.settings import EngineSettings
from ..dictionary.schema import Dictionary, OperationKind
from ..errors import ReconciliationError, VnfError
from ..models import (
    ActionType,
    DeviceRule,
    DomainRule,
    ReconciliationResult,
)
from ..template import to_template_string
from ..utils.audit_log import ChangeTracker
from .builder import RequestBuilder
from .response_parser import ResponseParser

logger = logging.getLogger(__name__)

DesiredRules = Mapping[str, list[DomainRule]]


@dataclass
class ReconcileRequest:
    """One network to reconcile in a batch."""
    network_id: str
    desired_rules: Optional[DesiredRules] = None
    dry_run: bool = False


class ReconciliationEngine:
    """
    Keeps appliance rule sets consistent with the platform's desired rules.

    Usage:
        engine = ReconciliationEngine(inventory, builder, broker, parser)
        result = await engine.reconcile("net-100", dry_run=True)
    """

    def __init__(
        self,
        inventory: ApplianceInventory,
        builder: Optional[RequestBuilder] = None,
        broker: Optional[BrokerClient] = None,
        parser: Optional[ResponseParser] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self.inventory = inventory
        self.settings = settings or inventory.settings
        self.builder = builder or RequestBuilder(self.settings, secrets=inventory.secrets)
        self.broker = broker or BrokerClient(self.settings)
        self.parser = parser or ResponseParser(self.settings.error_body_limit)
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, appliance_id: str) -> asyncio.Lock:
        if appliance_id not in self._locks:
            self._locks[appliance_id] = asyncio.Lock()
        return self._locks[appliance_id]

    def is_running(self, appliance_id: str) -> bool:
        """True while a pass holds the appliance's lock."""
        lock = self._locks.get(appliance_id)
        return lock is not None and lock.locked()

    async def reconcile(
        self,
        network_id: str,
        desired_rules: Optional[DesiredRules] = None,
        dry_run: bool = False,
        wait: bool = True,
    ) -> ReconciliationResult:
        """
        Run one reconciliation pass for ``network_id``.

        Args:
            network_id: Network whose appliance is reconciled
            desired_rules: Service name -> desired rules. Defaults to the
                rules recorded in the inventory.
            dry_run: Classify only; every difference is flagged, nothing sent
            wait: Wait for a running pass on the same appliance; when False
                a concurrent trigger is rejected

        Returns:
            ReconciliationResult (errors are recorded, never raised)
        """
        result = ReconciliationResult(network_id=network_id, dry_run=dry_run)

        appliance = self.inventory.get_appliance_for_network(network_id)
        if appliance is None:
            result.error_message = f"No appliance serves network {network_id}"
            logger.error(result.error_message)
            return result
        result.appliance_id = appliance.id

        lock = self._lock_for(appliance.id)
        if not wait and lock.locked():
            result.error_message = (
                f"Reconciliation already running for appliance {appliance.id}"
            )
            logger.warning(result.error_message)
            return result

        async with lock:
            # Read after acquiring: the previous pass may have recorded new external ids
            try:
                dictionary = self.inventory.get_dictionary_for(appliance)
            except KeyError as e:
                result.error_message = f"Appliance {appliance.id}: {e}"
                logger.error(result.error_message)
                return result
            if desired_rules is None:
                desired_rules = self.inventory.get_desired_rules(network_id)

            logger.info(
                f"Reconciling network {network_id} on {appliance.id}"
                f"{' (dry run)' if dry_run else ''}"
            )
            try:
                await self._run_pass(appliance, dictionary, desired_rules, result)
            except ReconciliationError as e:
                result.error_message = str(e)
                logger.error(f"Reconciliation of {network_id} aborted: {e}")

        if result.success:
            logger.info(
                f"Reconciled {network_id}: checked={result.rules_checked} "
                f"missing={result.missing_rules} extra={result.extra_rules} "
                f"reapplied={result.rules_reapplied} removed={result.rules_removed}"
            )
        return result

    async def reconcile_many(
        self,
        requests: Iterable[Union[ReconcileRequest, str]],
        wait: bool = True,
    ) -> list[ReconciliationResult]:
        """Reconcile several networks concurrently. One failure never stops the others."""
        batch = [
            r if isinstance(r, ReconcileRequest) else ReconcileRequest(network_id=r)
            for r in requests
        ]
        outcomes = await asyncio.gather(
            *(self.reconcile(r.network_id, r.desired_rules, r.dry_run, wait) for r in batch),
            return_exceptions=True,
        )

        results = []
        for request, outcome in zip(batch, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Reconciliation of {request.network_id} failed: {outcome}")
                outcome = ReconciliationResult(
                    network_id=request.network_id,
                    dry_run=request.dry_run,
                    error_message=f"{type(outcome).__name__}: {outcome}",
                )
            results.append(outcome)
        return results

    async def _run_pass(
        self,
        appliance: Appliance,
        dictionary: Dictionary,
        desired_rules: DesiredRules,
        result: ReconciliationResult,
    ) -> None:
        access = dictionary.access
        if not await self.broker.is_reachable(appliance, access.protocol, access.port):
            appliance.record_unreachable()
            raise ReconciliationError(f"Appliance {appliance.id} is unreachable")
        appliance.record_contact()

        observed = await self._observe(appliance, dictionary, desired_rules, result)

        tracker = ChangeTracker(appliance.id, appliance.network_id)
        all_corrected = True
        for service_name, device_rules in observed.items():
            result.services_checked.append(service_name)
            corrected = await self._reconcile_service(
                appliance,
                dictionary,
                service_name,
                list(desired_rules.get(service_name, [])),
                device_rules,
                result,
                tracker,
            )
            all_corrected = all_corrected and corrected

        result.drift_detected = (result.missing_rules + result.extra_rules) > 0
        result.success = all_corrected
        if not all_corrected:
            result.error_message = "One or more corrective actions failed"

    async def _observe(
        self,
        appliance: Appliance,
        dictionary: Dictionary,
        desired_rules: DesiredRules,
        result: ReconciliationResult,
    ) -> dict[str, list[DeviceRule]]:
        """List every reconcilable service. Any failure aborts the pass."""
        observed: dict[str, list[DeviceRule]] = {}
        for service_name in desired_rules:
            if dictionary.get_operation(service_name, OperationKind.LIST.value) is None:
                logger.info(f"{service_name} has no list operation; skipping")
                result.services_skipped.append(service_name)
                continue

            try:
                request = self.builder.build_list_request(dictionary, service_name, appliance)
                response = await self.broker.send_with_retry(appliance, request)
            except VnfError as e:
                raise ReconciliationError(
                    f"Listing {service_name} on {appliance.id} failed: {e}"
                ) from e

            if not self.parser.is_success(response, dictionary, OperationKind.LIST.value, service_name):
                raise ReconciliationError(
                    f"Listing {service_name} on {appliance.id} failed: "
                    f"{self.parser.extract_error_message(response)}"
                )
            observed[service_name] = self.parser.parse_list_response(
                response, dictionary, service_name
            )
        return observed

    async def _reconcile_service(
        self,
        appliance: Appliance,
        dictionary: Dictionary,
        service_name: str,
        desired: list[DomainRule],
        device_rules: list[DeviceRule],
        result: ReconciliationResult,
        tracker: ChangeTracker,
    ) -> bool:
        """Classify and correct one service. False if a correction failed."""
        on_device = {rule.external_id: rule for rule in device_rules}
        desired_ids = {rule.external_id for rule in desired if rule.external_id}
        result.rules_checked += len(desired)
        ok = True
        reapplied: dict[str, str] = {}

        for rule in desired:
            device_rule = on_device.get(rule.external_id) if rule.external_id else None
            if device_rule is not None:
                result.add_action(
                    service_name, ActionType.NO_ACTION, rule.id,
                    f"Present on device as {device_rule.external_id}",
                )
                if self.settings.flag_property_drift:
                    self._flag_property_drift(dictionary, service_name, rule, device_rule, result)
                continue

            result.missing_rules += 1
            if result.dry_run:
                result.add_action(
                    service_name, ActionType.FLAGGED, rule.id,
                    "Missing on device; would reapply",
                )
                continue
            applied, new_id = await self._reapply(appliance, dictionary, service_name, rule, result, tracker)
            if not applied:
                ok = False
            elif new_id:
                reapplied[rule.id] = new_id

        for device_rule in device_rules:
            if device_rule.external_id in desired_ids:
                continue
            result.extra_rules += 1
            if result.dry_run:
                result.add_action(
                    service_name, ActionType.FLAGGED, device_rule.external_id,
                    "Not desired; would remove",
                )
                continue
            if not await self._remove(appliance, dictionary, service_name, device_rule, result, tracker):
                ok = False

        if reapplied:
            result.reapplied_ids.update(reapplied)
            self.inventory.update_external_ids(appliance.network_id, service_name, reapplied)
        return ok

    async def _reapply(
        self,
        appliance: Appliance,
        dictionary: Dictionary,
        service_name: str,
        rule: DomainRule,
        result: ReconciliationResult,
        tracker: ChangeTracker,
    ) -> tuple[bool, Optional[str]]:
        """Recreate a missing rule. Returns (succeeded, new external id)."""
        operation = OperationKind.CREATE.value
        try:
            request = self.builder.build(dictionary, service_name, operation, rule, appliance)
            response = await self.broker.send_with_retry(appliance, request)
        except VnfError as e:
            return self._correction_failed(service_name, operation, rule.id, str(e), result, tracker), None

        if not self.parser.is_success(response, dictionary, operation, service_name):
            error = self.parser.extract_error_message(response)
            return self._correction_failed(service_name, operation, rule.id, error, result, tracker), None

        new_id = self.parser.extract_external_id(response, dictionary, operation, service_name)
        description = f"Recreated as {new_id}" if new_id else "Recreated; no external id returned"
        result.rules_reapplied += 1
        result.add_action(service_name, ActionType.REAPPLIED, rule.id, description)
        tracker.log_change(
            service_name, operation, rule.id, True, trigger="reconcile", external_id=new_id
        )
        return True, new_id

    async def _remove(
        self,
        appliance: Appliance,
        dictionary: Dictionary,
        service_name: str,
        device_rule: DeviceRule,
        result: ReconciliationResult,
        tracker: ChangeTracker,
    ) -> bool:
        """Delete an extra rule keyed by its device id."""
        operation = OperationKind.DELETE.value
        variables = dict(device_rule.properties)
        variables["externalId"] = device_rule.external_id
        try:
            request = self.builder.build(
                dictionary, service_name, operation, appliance=appliance, variables=variables
            )
            response = await self.broker.send_with_retry(appliance, request)
        except VnfError as e:
            return self._correction_failed(
                service_name, operation, device_rule.external_id, str(e), result, tracker
            )

        if not self.parser.is_success(response, dictionary, operation, service_name):
            error = self.parser.extract_error_message(response)
            return self._correction_failed(
                service_name, operation, device_rule.external_id, error, result, tracker
            )

        result.rules_removed += 1
        result.add_action(
            service_name, ActionType.REMOVED, device_rule.external_id, "Removed from device"
        )
        tracker.log_change(
            service_name, operation, device_rule.external_id, True,
            trigger="reconcile", external_id=device_rule.external_id,
        )
        return True

    def _correction_failed(
        self,
        service_name: str,
        operation: str,
        rule_ref: str,
        error: str,
        result: ReconciliationResult,
        tracker: ChangeTracker,
    ) -> bool:
        logger.warning(f"{service_name}.{operation} for {rule_ref} failed: {error}")
        result.add_action(
            service_name, ActionType.FLAGGED, rule_ref, f"{operation} failed: {error}"
        )
        tracker.log_change(
            service_name, operation, rule_ref, False, trigger="reconcile", error=error
        )
        return False

    def _flag_property_drift(
        self,
        dictionary: Dictionary,
        service_name: str,
        rule: DomainRule,
        device_rule: DeviceRule,
        result: ReconciliationResult,
    ) -> None:
        """Flag item fields whose device value differs from the desired rule."""
        operation = dictionary.get_operation(service_name, OperationKind.LIST.value)
        if operation is None:
            return

        desired = rule.variables()
        for field_name in operation.response_mapping.item_paths:
            if field_name == "id" or desired.get(field_name) is None:
                continue
            expected = to_template_string(desired[field_name])
            actual = to_template_string(device_rule.properties.get(field_name))
            if expected != actual:
                result.add_action(
                    service_name, ActionType.FLAGGED, rule.id,
                    f"Property '{field_name}' differs: device={actual!r} desired={expected!r}",
                )
