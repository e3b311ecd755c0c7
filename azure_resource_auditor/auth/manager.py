"""Authentication manager for Azure services"""

import shutil
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from azure.core.exceptions import ClientAuthenticationError, HttpResponseError
from azure.identity import (
    AzureCliCredential,
    DefaultAzureCredential,
    EnvironmentCredential,
    ManagedIdentityCredential,
)
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.costmanagement import CostManagementClient
from azure.mgmt.monitor import MonitorManagementClient
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.resource import ResourceManagementClient
from azure.mgmt.resourcegraph import ResourceGraphClient
from azure.mgmt.storage import StorageManagementClient
from azure.mgmt.subscription import SubscriptionClient

from ..core.exceptions import AuthorizationError, MissingToolError, ValidationError
from ..utils.logger import setup_logger
from ..utils.retry import RetryPolicy
from ..utils.validation import is_subscription_guid

FORBIDDEN_STATUS_CODES = (401, 403)


@dataclass(frozen=True)
class SubscriptionInfo:
    subscription_id: str
    display_name: str
    state: str = "Enabled"


class AuthenticationManager:
    """Manages Azure authentication, scope validation and client creation"""

    def __init__(
        self,
        auth_method: str = "default",
        retry_policy: Optional[RetryPolicy] = None,
        request_timeout_seconds: float = 120.0,
    ):
        self.logger = setup_logger(self.__class__.__name__)
        self.auth_method = auth_method
        self.retry_policy = retry_policy or RetryPolicy()
        self.request_timeout_seconds = request_timeout_seconds
        self.credential = None
        self._client_cache: Dict[str, Dict[str, Any]] = {}

    def check_prerequisites(self) -> None:
        """The CLI credential shells out to az, so it must be on PATH"""
        if self.auth_method == "cli" and shutil.which("az") is None:
            raise MissingToolError("Azure CLI (az) is required for auth_method 'cli' but was not found on PATH")

    def get_credential(self):
        """Get the current credential, initializing if needed"""
        if self.credential is None:
            if self.auth_method == "cli":
                self.credential = AzureCliCredential()
            elif self.auth_method == "environment":
                self.credential = EnvironmentCredential()
            elif self.auth_method == "managed_identity":
                self.credential = ManagedIdentityCredential()
            else:
                self.credential = DefaultAzureCredential()
            self.logger.debug(f"Credential initialized using {self.auth_method} method")
        return self.credential

    def resolve_subscription(self, subscription: str) -> SubscriptionInfo:
        """Find an enabled subscription by id or display name"""

        subscription_client = SubscriptionClient(self.get_credential(), **self._transport_options())
        try:
            subscriptions = self.retry_policy.call(lambda: list(subscription_client.subscriptions.list()))
        except ClientAuthenticationError as e:
            raise AuthorizationError(f"Unable to authenticate with Azure: {e}")
        except HttpResponseError as e:
            if e.status_code in FORBIDDEN_STATUS_CODES:
                raise AuthorizationError(f"Not authorized to list subscriptions: {e}")
            raise

        wanted = subscription.lower()
        by_id = is_subscription_guid(subscription)
        for sub in subscriptions:
            candidate = sub.subscription_id if by_id else sub.display_name
            if (candidate or "").lower() != wanted:
                continue
            if sub.state != 'Enabled':
                raise AuthorizationError(f"Subscription {subscription} is not enabled (state: {sub.state})")
            self.logger.info(f"Using subscription: {sub.display_name} ({sub.subscription_id})")
            return SubscriptionInfo(
                subscription_id=sub.subscription_id,
                display_name=sub.display_name or sub.subscription_id,
                state=str(sub.state),
            )

        raise AuthorizationError(f"Subscription not found or not accessible: {subscription}")

    def validate_resource_groups(self, subscription_id: str, resource_groups: Iterable[str]) -> List[str]:
        """Every requested group must exist; unknown groups fail the whole request"""

        names = list(resource_groups)
        if not names:
            return []

        resource_client = self.get_clients_for_subscription(subscription_id)['resource']
        missing = []
        for name in names:
            try:
                exists = self.retry_policy.call(resource_client.resource_groups.check_existence, name)
            except ClientAuthenticationError as e:
                raise AuthorizationError(f"Unable to authenticate with Azure: {e}")
            except HttpResponseError as e:
                if e.status_code in FORBIDDEN_STATUS_CODES:
                    raise AuthorizationError(f"Not authorized to access resource group {name}: {e}")
                raise
            if not exists:
                missing.append(name)
            else:
                self.logger.debug(f"Resource group validated: {name}")

        if missing:
            raise ValidationError(
                f"Resource group(s) not found in subscription {subscription_id}: {', '.join(missing)}"
            )
        return names

    def get_clients_for_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """Get Azure service clients for a subscription"""

        if subscription_id in self._client_cache:
            return self._client_cache[subscription_id]

        credential = self.get_credential()
        options = self._transport_options()
        clients = {
            'resource': ResourceManagementClient(credential, subscription_id, **options),
            'compute': ComputeManagementClient(credential, subscription_id, **options),
            'network': NetworkManagementClient(credential, subscription_id, **options),
            'monitor': MonitorManagementClient(credential, subscription_id, **options),
            'storage': StorageManagementClient(credential, subscription_id, **options),
            'cost': CostManagementClient(credential, **options),
            'graph': ResourceGraphClient(credential, **options),
        }

        self._client_cache[subscription_id] = clients
        self.logger.debug(f"Created clients for subscription {subscription_id}")
        return clients

    def _transport_options(self) -> Dict[str, float]:
        """Per-request socket timeouts so a stalled call eventually raises"""
        return {
            'connection_timeout': self.request_timeout_seconds,
            'read_timeout': self.request_timeout_seconds,
        }
