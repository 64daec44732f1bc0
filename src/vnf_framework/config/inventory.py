"""Appliance inventory loaded from YAML configuration.

```yaml
settings:
  max_retries: 2
secrets_file: secrets.yaml

dictionaries:
  acme-fw: dictionaries/acme-firewall.yaml   # relative to this file

defaults:
  broker_type: direct

appliances:
  vnf-100:
    network: net-100
    dictionary: acme-fw
    management_ip: 10.1.0.5
    public_ip: 203.0.113.10

rules:
  net-100:
    Firewall:
      - id: fw-1
        protocol: tcp
        source_cidrs: [0.0.0.0/0]
        start_port: 22
        external_id: "17"
```
"""
import logging
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from ..appliance.models import Appliance, ApplianceState, BrokerType
from ..dictionary.parser import DictionaryParser
from ..dictionary.schema import Dictionary
from ..dictionary.validator import DictionaryValidator
from ..errors import InventoryError, ParseError
from ..models import DomainRule, rule_from_dict
from .secrets import SecretResolver
from .settings import EngineSettings

logger = logging.getLogger(__name__)


class ApplianceInventory:
    """Appliances, their dictionaries and the desired rules per network.

    At most one non-destroyed appliance serves a network.
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        data: Optional[Mapping[str, Any]] = None,
    ):
        self._appliances: dict[str, Appliance] = {}
        self._dictionaries: dict[str, Dictionary] = {}
        self._aliases: dict[str, str] = {}
        self._rules: dict[str, dict[str, list[DomainRule]]] = {}
        self._parser = DictionaryParser()
        self._validator = DictionaryValidator()

        if data is not None:
            self.config_path: Optional[str] = config_path
            self._base_dir = Path(config_path).parent if config_path else Path.cwd()
            self._config = dict(data)
        else:
            self.config_path = config_path or self._find_config()
            self._base_dir = Path(self.config_path).parent
            self._config = self._read_config(self.config_path)

        self.settings = EngineSettings.from_env(
            EngineSettings.from_mapping(self._config.get("settings"))
        )
        secrets_file = self._config.get("secrets_file")
        self.secrets = SecretResolver(
            values=self._config.get("secrets"),
            secrets_file=self._resolve_path(secrets_file) if secrets_file else None,
        )
        self._load()

    def _find_config(self) -> str:
        """Find the appliances.yaml config file."""
        search_paths = [
            Path.cwd() / "configs" / "appliances.yaml",
            Path.cwd() / "appliances.yaml",
            Path.home() / ".config" / "vnf-framework" / "appliances.yaml",
            Path("/etc/vnf-framework/appliances.yaml"),
        ]

        for path in search_paths:
            if path.exists():
                return str(path)

        raise FileNotFoundError(
            "Could not find appliances.yaml. Create one in ./configs/appliances.yaml"
        )

    @staticmethod
    def _read_config(path: str) -> dict:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, Mapping):
            raise InventoryError(f"{path} must contain a mapping")
        return dict(data)

    def _resolve_path(self, value: str) -> Path:
        path = Path(value).expanduser()
        return path if path.is_absolute() else self._base_dir / path

    def _load(self) -> None:
        for alias, source in (self._config.get("dictionaries") or {}).items():
            self.add_dictionary(str(alias), self._load_dictionary(str(alias), source))

        defaults = self._config.get("defaults") or {}
        for appliance_id, entry in (self._config.get("appliances") or {}).items():
            merged = dict(defaults)
            merged.update(entry or {})
            self.add_appliance(self._build_appliance(str(appliance_id), merged))

        for network_id, services in (self._config.get("rules") or {}).items():
            for service_name, rules in (services or {}).items():
                try:
                    parsed = [rule_from_dict(service_name, r) for r in rules or []]
                except (TypeError, ValueError) as e:
                    raise InventoryError(
                        f"Invalid {service_name} rule for network {network_id}: {e}"
                    ) from e
                self.set_desired_rules(str(network_id), service_name, parsed)

    def _load_dictionary(self, alias: str, source: Any) -> Dictionary:
        try:
            if isinstance(source, Mapping):
                dictionary = self._parser.parse(source)
            else:
                path = self._resolve_path(str(source))
                dictionary = self._parser.parse(path.read_text())
        except ParseError as e:
            raise InventoryError(f"Dictionary '{alias}' is malformed: {e}") from e
        except OSError as e:
            raise InventoryError(f"Dictionary '{alias}' could not be read: {e}") from e

        result = self._validator.validate(dictionary)
        for warning in result.warnings:
            logger.warning(f"Dictionary '{alias}': {warning}")
        if not result.is_valid:
            raise InventoryError(
                f"Dictionary '{alias}' is invalid: " + "; ".join(result.errors)
            )
        return dictionary

    def _build_appliance(self, appliance_id: str, entry: Mapping[str, Any]) -> Appliance:
        for key in ("network", "dictionary", "management_ip"):
            if not entry.get(key):
                raise InventoryError(f"Appliance '{appliance_id}' is missing '{key}'")

        dictionary_ref = str(entry["dictionary"])
        try:
            dictionary = self.get_dictionary(dictionary_ref)
        except KeyError:
            raise InventoryError(
                f"Appliance '{appliance_id}' references unknown dictionary: {dictionary_ref}"
            )

        try:
            broker_type = BrokerType.from_value(entry.get("broker_type"))
            state = ApplianceState(entry.get("state", ApplianceState.DEPLOYING.value))
        except ValueError as e:
            raise InventoryError(f"Appliance '{appliance_id}': {e}") from e

        return Appliance(
            id=appliance_id,
            network_id=str(entry["network"]),
            dictionary_id=dictionary.id,
            management_ip=str(entry["management_ip"]),
            guest_ip=entry.get("guest_ip"),
            public_ip=entry.get("public_ip"),
            name=entry.get("name", appliance_id),
            uuid=str(entry.get("uuid", "")),
            broker_type=broker_type,
            state=state,
        )

    # === Dictionaries ===

    def add_dictionary(self, alias: str, dictionary: Dictionary) -> None:
        """Register ``dictionary`` under ``alias`` and its content id."""
        self._dictionaries[dictionary.id] = dictionary
        self._aliases[alias] = dictionary.id

    def get_dictionary(self, ref: str) -> Dictionary:
        """Look up a dictionary by alias or content id."""
        dictionary_id = self._aliases.get(ref, ref)
        if dictionary_id not in self._dictionaries:
            raise KeyError(f"Unknown dictionary: {ref}")
        return self._dictionaries[dictionary_id]

    def get_dictionary_aliases(self) -> dict[str, str]:
        """Alias -> dictionary id."""
        return dict(self._aliases)

    def get_dictionary_for(self, appliance: Appliance) -> Dictionary:
        return self.get_dictionary(appliance.dictionary_id)

    # === Appliances ===

    def add_appliance(self, appliance: Appliance) -> None:
        """Register an appliance, enforcing one live appliance per network."""
        current = self.get_appliance_for_network(appliance.network_id)
        if current is not None and current.id != appliance.id and not appliance.is_destroyed:
            raise InventoryError(
                f"Network {appliance.network_id} already served by {current.id}; "
                f"cannot add {appliance.id}"
            )
        self._appliances[appliance.id] = appliance

    def get_appliance_ids(self) -> list[str]:
        return list(self._appliances.keys())

    def get_appliance(self, appliance_id: str) -> Appliance:
        if appliance_id not in self._appliances:
            raise KeyError(f"Unknown appliance: {appliance_id}")
        return self._appliances[appliance_id]

    def get_appliances(self) -> list[Appliance]:
        return list(self._appliances.values())

    def get_appliance_for_network(self, network_id: str) -> Optional[Appliance]:
        """The non-destroyed appliance serving ``network_id``, if any."""
        for appliance in self._appliances.values():
            if appliance.network_id == network_id and not appliance.is_destroyed:
                return appliance
        return None

    def get_network_ids(self) -> list[str]:
        networks = {a.network_id for a in self._appliances.values() if not a.is_destroyed}
        return sorted(networks)

    # === Desired rules ===

    def set_desired_rules(self, network_id: str, service_name: str, rules: list[DomainRule]) -> None:
        self._rules.setdefault(network_id, {})[service_name] = list(rules)

    def get_desired_rules(self, network_id: str) -> dict[str, list[DomainRule]]:
        """Service name -> desired rules for a network."""
        return {k: list(v) for k, v in self._rules.get(network_id, {}).items()}

    def update_external_ids(self, network_id: str, service_name: str, external_ids: Mapping[str, str]) -> int:
        """Persist new external ids (rule id -> external id). Returns count updated."""
        rules = self._rules.get(network_id, {}).get(service_name, [])
        updated = 0
        for index, rule in enumerate(rules):
            if rule.id in external_ids:
                rules[index] = rule.with_external_id(external_ids[rule.id])
                updated += 1
        return updated

    def summary(self) -> list[dict]:
        """Appliances with their dictionary and rule counts."""
        rows = []
        for appliance in self._appliances.values():
            dictionary = self._dictionaries.get(appliance.dictionary_id)
            rules = self._rules.get(appliance.network_id, {})
            rows.append({
                **appliance.to_dict(),
                "vendor": dictionary.vendor if dictionary else None,
                "product": dictionary.product if dictionary else None,
                "desired_rules": {k: len(v) for k, v in rules.items()},
            })
        return rows
