"""Platform-facing operations: apply, revoke and list rules, check health."""
import logging
from typing import Iterable, Mapping, Optional, Union

from ..appliance.models import Appliance, ConnectivityResult
from ..broker.base import Transport
from ..broker.client import BrokerClient
from ..broker.tokens import HmacTokenIssuer, TokenIssuer
from ..config.inventory import ApplianceInventory
from ..config.secrets import SecretResolver
from ..config.settings import EngineSettings
from ..dictionary.schema import Dictionary, OperationKind
from ..errors import BuildError, CommError
from ..models import (
    DeviceRule,
    DomainRule,
    OperationOutcome,
    ReconciliationResult,
    Response,
)
from ..utils.audit_log import ChangeTracker
from .builder import RequestBuilder
from .reconcile import DesiredRules, ReconcileRequest, ReconciliationEngine
from .response_parser import ResponseParser

logger = logging.getLogger(__name__)


class VnfOperations:
    """Wires builder, broker and parser together for platform calls.

    One token issuer is shared by the builder (which issues tokens) and
    the broker (which validates them).

    Usage:
        ops = VnfOperations.from_inventory(inventory)
        outcome = await ops.apply_rule(appliance, dictionary, rule)
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        secrets: Optional[SecretResolver] = None,
        transports: Union[Mapping[str, Transport], Iterable[Transport], None] = None,
        token_issuer: Optional[TokenIssuer] = None,
        inventory: Optional[ApplianceInventory] = None,
    ):
        self.settings = settings or EngineSettings()
        self.token_issuer = token_issuer or HmacTokenIssuer(self.settings.token_secret)
        self.builder = RequestBuilder(self.settings, self.token_issuer, secrets)
        self.broker = BrokerClient(self.settings, transports, self.token_issuer)
        self.parser = ResponseParser(self.settings.error_body_limit)
        self.inventory = inventory
        self._engine: Optional[ReconciliationEngine] = None

    @classmethod
    def from_inventory(
        cls,
        inventory: ApplianceInventory,
        transports: Union[Mapping[str, Transport], Iterable[Transport], None] = None,
        token_issuer: Optional[TokenIssuer] = None,
    ) -> "VnfOperations":
        return cls(
            settings=inventory.settings,
            secrets=inventory.secrets,
            transports=transports,
            token_issuer=token_issuer,
            inventory=inventory,
        )

    @property
    def engine(self) -> ReconciliationEngine:
        """Reconciliation engine sharing this instance's builder and broker."""
        if self.inventory is None:
            raise ValueError("Reconciliation needs an inventory")
        if self._engine is None:
            self._engine = ReconciliationEngine(
                self.inventory, self.builder, self.broker, self.parser, self.settings
            )
        return self._engine

    async def _execute(
        self,
        appliance: Appliance,
        dictionary: Dictionary,
        service_name: str,
        operation: str,
        rule: DomainRule,
    ) -> tuple[OperationOutcome, Optional[Response]]:
        outcome = OperationOutcome(
            success=False, service=service_name, operation=operation, rule_id=rule.id
        )
        try:
            request = self.builder.build(dictionary, service_name, operation, rule, appliance)
        except BuildError as e:
            outcome.error = str(e)
            outcome.attempts = 0
            return outcome, None

        try:
            response = await self.broker.send_with_retry(appliance, request)
        except CommError as e:
            outcome.error = str(e)
            outcome.status_code = e.status_code
            outcome.attempts = e.attempts
            return outcome, None

        outcome.status_code = response.status_code
        if not self.parser.is_success(response, dictionary, operation, service_name):
            outcome.error = self.parser.extract_error_message(response)
            return outcome, response

        outcome.success = True
        return outcome, response

    async def apply_rule(
        self,
        appliance: Appliance,
        dictionary: Dictionary,
        rule: DomainRule,
        service_name: Optional[str] = None,
    ) -> OperationOutcome:
        """Create ``rule`` on the appliance; the outcome carries the new external id."""
        service_name = service_name or rule.service_name
        operation = OperationKind.CREATE.value
        outcome, response = await self._execute(appliance, dictionary, service_name, operation, rule)

        if outcome.success:
            outcome.external_id = self.parser.extract_external_id(
                response, dictionary, operation, service_name
            )
            if outcome.external_id is None:
                logger.warning(
                    f"{service_name}.{operation} for {rule.id} succeeded without an external id"
                )
        self._audit(appliance, outcome)
        return outcome

    async def revoke_rule(
        self,
        appliance: Appliance,
        dictionary: Dictionary,
        rule: DomainRule,
        service_name: Optional[str] = None,
    ) -> OperationOutcome:
        """Delete ``rule`` (by its external id) from the appliance."""
        service_name = service_name or rule.service_name
        outcome, _ = await self._execute(
            appliance, dictionary, service_name, OperationKind.DELETE.value, rule
        )
        if outcome.success:
            outcome.external_id = rule.external_id
        self._audit(appliance, outcome)
        return outcome

    async def list_rules(
        self,
        appliance: Appliance,
        dictionary: Dictionary,
        service_name: str,
    ) -> list[DeviceRule]:
        """Rules currently on the appliance for ``service_name``.

        Raises:
            BuildError: no list operation for the service
            CommError: the appliance could not be listed
        """
        request = self.builder.build_list_request(dictionary, service_name, appliance)
        response = await self.broker.send_with_retry(appliance, request)
        if not self.parser.is_success(response, dictionary, OperationKind.LIST.value, service_name):
            raise CommError(
                f"Listing {service_name} on {appliance.id} failed: "
                f"{self.parser.extract_error_message(response)}",
                retriable=False,
                status_code=response.status_code,
            )
        return self.parser.parse_list_response(response, dictionary, service_name)

    async def check_health(
        self,
        appliance: Appliance,
        dictionary: Optional[Dictionary] = None,
    ) -> ConnectivityResult:
        """Probe the appliance and apply the health/state transition."""
        if dictionary is None and self.inventory is not None:
            try:
                dictionary = self.inventory.get_dictionary_for(appliance)
            except KeyError:
                dictionary = None

        if dictionary is not None:
            result = await self.broker.test_connectivity(
                appliance, dictionary.access.protocol, dictionary.access.port
            )
        else:
            result = await self.broker.test_connectivity(appliance)

        if result.reachable:
            appliance.record_contact()
        else:
            appliance.record_unreachable()
        return result

    async def reconcile(
        self,
        network_id: str,
        desired_rules: Optional[DesiredRules] = None,
        dry_run: bool = False,
        wait: bool = True,
    ) -> ReconciliationResult:
        return await self.engine.reconcile(network_id, desired_rules, dry_run, wait)

    async def reconcile_many(
        self,
        requests: Iterable[Union[ReconcileRequest, str]],
        wait: bool = True,
    ) -> list[ReconciliationResult]:
        return await self.engine.reconcile_many(requests, wait)

    def _audit(self, appliance: Appliance, outcome: OperationOutcome) -> None:
        ChangeTracker(appliance.id, appliance.network_id).log_change(
            service=outcome.service,
            operation=outcome.operation,
            rule_ref=outcome.rule_id,
            success=outcome.success,
            trigger="platform",
            external_id=outcome.external_id,
            error=outcome.error,
        )

    async def close(self) -> None:
        await self.broker.close()
