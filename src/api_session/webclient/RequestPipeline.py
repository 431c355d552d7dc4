import httpx

from api_session.configs.logging_config import get_logger
from api_session.credentials.store import CredentialStore
from api_session.domain.entities.request import ApiRequest
from api_session.errors import NetworkError

log = get_logger(__name__)


class RequestPipeline:
    """Attach the stored access token and hand the request to httpx."""

    def __init__(self, store: CredentialStore, session: httpx.AsyncClient):
        self.store = store
        self.session = session

    async def prepare(self, request: ApiRequest) -> ApiRequest:
        token = await self.store.get_access_token()
        if not token:
            return request
        return request.with_bearer(token)

    async def send(self, request: ApiRequest) -> httpx.Response:
        log.debug("request.send method=%s url=%s retried=%s", request.method, request.url, request.retried)
        try:
            return await self.session.request(request.method, request.url, **request.build_kwargs())
        except httpx.TimeoutException as exc:
            log.warning("request.timeout method=%s url=%s", request.method, request.url)
            raise NetworkError(f"request timed out: {request.method} {request.url}", timeout=True) from exc
        except httpx.TransportError as exc:
            log.warning("request.network_error method=%s url=%s error=%s", request.method, request.url, exc)
            raise NetworkError(f"backend not reachable: {exc}") from exc
