"""
Sameday Client - Shipping carrier API with throttled authentication.

The carrier bans IPs that authenticate too often, so every authentication
attempt (successful or not) starts a cooldown window. A new attempt inside
that window sleeps for the remainder before touching the network. Tokens
are cached until the expiry the carrier reports.
"""

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Type, TypeVar, Union

import httpx
from pydantic import BaseModel

from kitchenoff.errors import AuthenticationError, CarrierApiError
from kitchenoff.models.sameday import (
    AuthToken,
    AwbStatusEntry,
    CarrierService,
    City,
    County,
    CreateAWBRequest,
    CreateAWBResponse,
    PickupPoint,
)
from kitchenoff.utils.config import SamedayConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


class SamedayClient:
    """
    Client for the Sameday courier API.

    Features:
    - Token caching until the carrier-reported expiry
    - Cooldown-gated re-authentication (sleeps instead of hammering the auth endpoint)
    - Reference data: pickup points, services, counties, cities
    - AWB creation, label download and tracking
    """

    def __init__(
        self,
        config: SamedayConfig,
        http_client: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the Sameday client.

        Args:
            config: Carrier credentials, base URL and cooldown
            http_client: Pre-built httpx client (tests inject one with a MockTransport)
            clock: Returns the current time in epoch seconds
            sleep: Blocks for the given number of seconds
        """
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.http = http_client or httpx.Client(timeout=config.timeout)
        self.clock = clock
        self.sleep = sleep

        self.token: Optional[str] = None
        self.token_expiry: Optional[float] = None
        self.last_auth_attempt: Optional[float] = None

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    @property
    def is_authenticated(self) -> bool:
        return (
            self.token is not None
            and self.token_expiry is not None
            and self.clock() < self.token_expiry
        )

    def _wait_for_cooldown(self) -> None:
        if self.last_auth_attempt is None:
            return
        remaining = self.config.auth_cooldown - (self.clock() - self.last_auth_attempt)
        if remaining > 0:
            logger.warning(f"Sameday authentication throttled, waiting {remaining:.0f}s before retrying")
            self.sleep(remaining)

    def _authenticate_at(self, base_url: str) -> AuthToken:
        self._wait_for_cooldown()
        self.last_auth_attempt = self.clock()

        url = f"{base_url}/api/authenticate"
        headers = {
            "X-AUTH-USERNAME": self.config.username,
            "X-AUTH-PASSWORD": self.config.password,
            "Accept": "application/json",
        }
        try:
            response = self.http.post(url, headers=headers)
        except httpx.HTTPError as e:
            raise AuthenticationError(f"Sameday authentication at {base_url} failed: {e}") from e

        if not response.is_success:
            raise AuthenticationError(
                f"Sameday authentication at {base_url} rejected with {response.status_code}: {response.text[:200]}"
            )
        try:
            return AuthToken.model_validate(response.json())
        except ValueError as e:
            raise AuthenticationError(f"Sameday authentication at {base_url} returned an unusable token: {e}") from e

    def authenticate(self) -> str:
        """
        Return a valid token, authenticating only when the cached one expired.

        Raises:
            AuthenticationError: If the carrier refuses the credentials
        """
        if self.is_authenticated:
            return self.token

        try:
            auth = self._authenticate_at(self.base_url)
        except AuthenticationError as e:
            logger.error(str(e))
            raise

        self.token = auth.token
        self.token_expiry = auth.expire_at.timestamp()
        logger.info(f"Sameday authentication successful, token expires {auth.expire_at:%Y-%m-%d %H:%M}")
        return self.token

    def discover_endpoint(self, candidates: Iterable[str]) -> str:
        """
        Diagnostic: find which candidate base URL accepts the credentials.

        Probes are subject to the same cooldown as regular authentication.
        The configured base URL and the cached token are left untouched.

        Returns:
            The first candidate base URL that authenticated

        Raises:
            AuthenticationError: If no candidate authenticated
        """
        failures = []
        for candidate in candidates:
            base_url = candidate.rstrip("/")
            try:
                self._authenticate_at(base_url)
            except AuthenticationError as e:
                logger.info(f"Sameday endpoint candidate failed: {e}")
                failures.append(str(e))
                continue
            logger.info(f"Sameday endpoint {base_url} accepted the credentials")
            return base_url

        raise AuthenticationError("No Sameday endpoint accepted the credentials: " + "; ".join(failures))

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        accept: str = "application/json",
    ) -> httpx.Response:
        token = self.authenticate()
        try:
            response = self.http.request(
                method,
                f"{self.base_url}{endpoint}",
                params=params,
                json=json,
                headers={"X-AUTH-TOKEN": token, "Accept": accept},
            )
        except httpx.HTTPError as e:
            logger.error(f"Sameday {method} {endpoint} failed: {e}")
            raise CarrierApiError(endpoint, None, str(e)) from e

        if response.status_code == 401:
            # Token revoked before its reported expiry
            self.token = None
            self.token_expiry = None
        if not response.is_success:
            logger.error(f"Sameday {method} {endpoint} rejected with {response.status_code}")
            raise CarrierApiError(endpoint, response.status_code, response.text)
        return response

    def _fetch(self, method: str, endpoint: str, parse: Callable[[Any], T], **kwargs) -> T:
        """Send a request and parse its JSON body; unusable bodies raise CarrierApiError."""
        response = self._request(method, endpoint, **kwargs)
        try:
            return parse(response.json())
        except (ValueError, TypeError) as e:
            # ValidationError is a ValueError; TypeError comes from non-list payloads
            logger.error(f"Sameday {method} {endpoint} returned an unexpected body: {e}")
            raise CarrierApiError(endpoint, response.status_code, response.text) from e

    def _get_list(self, endpoint: str, model: Type[M], params: Optional[Dict[str, Any]] = None) -> List[M]:
        def parse(data):
            if isinstance(data, dict):
                data = data.get("data", [])
            return [model.model_validate(row) for row in data]

        return self._fetch("GET", endpoint, parse, params=params)

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------

    def get_pickup_points(self) -> List[PickupPoint]:
        return self._get_list("/api/client/pickup-points", PickupPoint)

    def get_services(self) -> List[CarrierService]:
        return self._get_list("/api/client/services", CarrierService)

    def get_counties(self) -> List[County]:
        return self._get_list("/api/geolocation/county", County)

    def get_cities(self, county: Optional[Union[int, str]] = None) -> List[City]:
        params: Dict[str, Any] = {"countPerPage": 1000}
        if county is not None:
            params["county"] = county
        return self._get_list("/api/geolocation/city", City, params=params)

    # ------------------------------------------------------------------
    # AWB
    # ------------------------------------------------------------------

    def create_awb(self, request: CreateAWBRequest) -> CreateAWBResponse:
        """
        Create a waybill.

        Raises:
            CarrierApiError: If the carrier rejects the request or answers with an unusable body
        """
        logger.debug(f"Creating Sameday AWB for {request.recipient.name} ({len(request.parcels)} parcels)")
        result = self._fetch("POST", "/api/awb", CreateAWBResponse.model_validate, json=request.to_wire())
        logger.info(f"Sameday AWB {result.awb_number} created")
        return result

    def get_awb_label(self, awb_number: str) -> bytes:
        """Download the PDF label of a waybill."""
        return self._request("GET", f"/api/awb/{awb_number}/pdf", accept="application/pdf").content

    def track_awb(self, awb_number: str) -> List[AwbStatusEntry]:
        """Return the status history of a waybill."""
        def parse(data):
            if isinstance(data, dict):
                data = data.get("expeditionHistory") or data.get("data") or []
            return [AwbStatusEntry.model_validate(row) for row in data]

        return self._fetch("GET", f"/api/awb/{awb_number}/status-history", parse)

    def close(self):
        self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()
