"""Request builder - turn a dictionary operation plus a rule into a Request.

Building is pure: no network I/O, no shared mutable state. The only outside
calls are secret resolution and token issuance.
"""
import base64
import logging
from pathlib import Path
from typing import Any, Mapping, Optional

from ..appliance.models import Appliance
from ..broker.tokens import HmacTokenIssuer, TokenIssuer
from ..config.secrets import SecretResolver
from ..config.settings import EngineSettings
from ..dictionary.schema import (
    SERVICE_FIREWALL,
    SERVICE_LOAD_BALANCER,
    SERVICE_NAT,
    AccessConfig,
    AuthType,
    Dictionary,
    OperationKind,
)
from ..errors import BuildError, SecretNotFoundError
from ..models import Credentials, DomainRule, Request
from ..template import (
    TemplateContext,
    has_unresolved_placeholders,
    placeholder_names,
    render,
    to_template_string,
)

logger = logging.getLogger(__name__)


class RequestBuilder:
    """Build transport-ready requests from dictionary templates.

    Usage:
        builder = RequestBuilder(settings, token_issuer, secrets)
        request = builder.build_firewall_request(dictionary, rule, appliance=appliance)
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        token_issuer: Optional[TokenIssuer] = None,
        secrets: Optional[SecretResolver] = None,
    ):
        self.settings = settings or EngineSettings()
        self.token_issuer = token_issuer or HmacTokenIssuer(self.settings.token_secret)
        self.secrets = secrets or SecretResolver()

    # === Category entry points ===

    def build_firewall_request(
        self,
        dictionary: Dictionary,
        rule: DomainRule,
        operation: str = OperationKind.CREATE.value,
        appliance: Optional[Appliance] = None,
    ) -> Request:
        return self.build(dictionary, SERVICE_FIREWALL, operation, rule, appliance)

    def build_nat_request(
        self,
        dictionary: Dictionary,
        rule: DomainRule,
        operation: str = OperationKind.CREATE.value,
        appliance: Optional[Appliance] = None,
    ) -> Request:
        return self.build(dictionary, SERVICE_NAT, operation, rule, appliance)

    def build_load_balancer_request(
        self,
        dictionary: Dictionary,
        rule: DomainRule,
        operation: str = OperationKind.CREATE.value,
        appliance: Optional[Appliance] = None,
    ) -> Request:
        return self.build(dictionary, SERVICE_LOAD_BALANCER, operation, rule, appliance)

    def build_list_request(
        self,
        dictionary: Dictionary,
        service_name: str,
        appliance: Optional[Appliance] = None,
    ) -> Request:
        return self.build(dictionary, service_name, OperationKind.LIST.value, None, appliance)

    # === Generic build ===

    def build_context(
        self,
        dictionary: Dictionary,
        rule: Optional[DomainRule] = None,
        appliance: Optional[Appliance] = None,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> TemplateContext:
        """Template variables: rule, then access/appliance values, then overrides."""
        context = TemplateContext()
        if rule is not None:
            context.update(rule.variables())

        access = dictionary.access
        context.update({
            "accessProtocol": access.protocol,
            "accessPort": access.port,
            "basePath": access.base_path,
            "vendor": dictionary.vendor,
            "product": dictionary.product,
        })
        if appliance is not None:
            context.update({
                "managementIp": appliance.management_ip,
                "guestIp": appliance.guest_ip,
                "applianceId": appliance.id,
                "networkId": appliance.network_id,
            })
            if context.get("publicIp") in (None, ""):
                context.set("publicIp", appliance.public_ip)
        if variables:
            context.update(variables)
        return context

    def build(
        self,
        dictionary: Dictionary,
        service_name: str,
        operation_name: str,
        rule: Optional[DomainRule] = None,
        appliance: Optional[Appliance] = None,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> Request:
        """Build a request for ``service_name.operation_name``.

        Raises:
            BuildError: unknown service/operation, a required endpoint
                placeholder without a value, or an unresolvable secret
        """
        service = dictionary.get_service(service_name)
        if service is None:
            raise BuildError(
                f"Service '{service_name}' not defined in dictionary {dictionary.id}",
                BuildError.UNKNOWN_SERVICE,
            )
        operation = service.get_operation(operation_name)
        if operation is None:
            raise BuildError(
                f"Operation '{operation_name}' not defined for service '{service_name}'",
                BuildError.UNKNOWN_OPERATION,
            )

        scope = f"{service_name}.{operation_name}"
        context = self.build_context(dictionary, rule, appliance, variables)

        for name in placeholder_names(operation.endpoint):
            if to_template_string(context.get(name)) == "":
                raise BuildError(
                    f"{scope} endpoint requires a value for '{name}'",
                    BuildError.UNRESOLVED_PLACEHOLDER,
                )

        access = dictionary.access
        endpoint = render(operation.endpoint, context)
        body = render(operation.body, context) if operation.body else ""
        headers = {name: render(value, context) for name, value in operation.headers.items()}

        if access.is_http and not operation.is_ssh:
            path = access.base_path + ("" if endpoint.startswith("/") else "/") + endpoint
        else:
            path = endpoint

        for part in [path, body, *headers.values()]:
            if has_unresolved_placeholders(part):
                raise BuildError(
                    f"{scope} rendered output still contains a placeholder: {part!r}",
                    BuildError.UNRESOLVED_PLACEHOLDER,
                )

        credentials = self._apply_auth(access, headers, scope)
        if body and access.is_http and not _has_header(headers, "Content-Type"):
            headers["Content-Type"] = "application/json"

        token = None
        target = ""
        if appliance is not None:
            target = appliance.management_ip
            token = self.token_issuer.generate_token(appliance, scope, self.settings.token_expiry)

        request = Request(
            target_address=target,
            protocol=access.protocol,
            port=access.port,
            method=operation.method,
            path=path,
            headers=headers,
            body=body,
            timeout=self.settings.request_timeout,
            token=token,
            service=service_name,
            operation=operation_name,
            credentials=credentials,
        )
        logger.debug(f"Built {scope}: {request.describe()}")
        return request

    def _resolve(self, ref: Optional[str], scope: str, what: str) -> str:
        if not ref:
            raise BuildError(f"{scope} needs a {what} reference", BuildError.MISSING_SECRET)
        try:
            return self.secrets.require(ref)
        except SecretNotFoundError as e:
            raise BuildError(f"{scope}: {e}", BuildError.MISSING_SECRET) from e

    def _apply_auth(
        self,
        access: AccessConfig,
        headers: dict[str, str],
        scope: str,
    ) -> Optional[Credentials]:
        """Add the auth header; return transport credentials for SSH."""
        auth = access.auth_type

        if auth == AuthType.TOKEN:
            token = self._resolve(access.token_ref, scope, "token")
            if access.token_header.lower() == "authorization":
                headers[access.token_header] = f"Bearer {token}"
            else:
                headers[access.token_header] = token
            return None

        if auth == AuthType.BASIC:
            username = self._resolve(access.username_ref, scope, "username")
            password = self._resolve(access.password_ref, scope, "password")
            encoded = base64.b64encode(f"{username}:{password}".encode()).decode()
            headers["Authorization"] = f"Basic {encoded}"
            return None

        if auth == AuthType.SSH_PASSWORD:
            return Credentials(
                username=self._resolve(access.username_ref, scope, "username"),
                password=self._resolve(access.password_ref, scope, "password"),
            )

        if auth == AuthType.SSH_KEY:
            return Credentials(
                username=self._resolve(access.username_ref, scope, "username"),
                private_key=_read_key(self._resolve(access.key_ref, scope, "key")),
            )

        return None


def _has_header(headers: Mapping[str, str], name: str) -> bool:
    return any(k.lower() == name.lower() for k in headers)


def _read_key(value: str) -> str:
    """A key reference may resolve to key text or to a key file path."""
    if "PRIVATE KEY" in value:
        return value
    path = Path(value).expanduser()
    if path.is_file():
        return path.read_text()
    return value
