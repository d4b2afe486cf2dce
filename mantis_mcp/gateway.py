"""
Mantis data gateway.

Single entry point for issue, user and project operations. Reads go through
the request cache; every write clears all caches afterwards, whatever it
touched.
"""

import logging
from typing import Any, List, Optional
from urllib.parse import quote

from .cache import RequestCache, make_cache_key
from .config import Settings
from .errors import ErrorKind, MantisApiError
from .http_client import MantisHttpClient
from .models import Issue, IssueFilter, Project, SearchFilter, User
from .soap_client import MantisSoapClient

logger = logging.getLogger(__name__)

# Username lookups are cached for a fixed 5 minutes, whatever CACHE_TTL_SECONDS says
USERNAME_CACHE_TTL_SECONDS = 300

# User enumeration gives up after this many consecutive 404s
USER_PROBE_MISS_LIMIT = 10


def _unwrap_single(response: Any, envelope: str, what: str) -> Any:
    """
    Single records come back as {"issues": [...]} / {"users": [...]};
    return the first element, or the response itself when it is not wrapped.
    """
    if isinstance(response, dict) and envelope in response:
        if not response[envelope]:
            raise MantisApiError.api(f"{what} not found", 404, response)
        return response[envelope][0]
    return response


class MantisGateway:
    """
    Issue/user/project operations over the Mantis REST API (and SOAP search).

    Collaborators are injectable so tests can swap in fake sessions, clocks
    and caches.
    """

    def __init__(self, http: MantisHttpClient, soap: Optional[MantisSoapClient] = None,
                 cache: Optional[RequestCache] = None,
                 user_cache: Optional[RequestCache] = None):
        self.http = http
        self.soap = soap
        self.cache = cache if cache is not None else RequestCache()
        self.user_cache = user_cache if user_cache is not None else RequestCache(
            enabled=True, ttl_seconds=USERNAME_CACHE_TTL_SECONDS)

    @classmethod
    def from_settings(cls, settings: Settings) -> "MantisGateway":
        http = MantisHttpClient(settings.mantis_api_url, settings.mantis_api_key)
        # Separate session: the REST session's Authorization and JSON
        # Content-Type headers must not ride along on SOAP posts
        soap = MantisSoapClient(settings.mantis_api_url, settings.mantis_api_key)
        cache = RequestCache(enabled=settings.cache_enabled, ttl_seconds=settings.cache_ttl_seconds)
        return cls(http, soap=soap, cache=cache)

    def clear_cache(self) -> None:
        self.cache.clear()
        self.user_cache.clear()

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    def list_issues(self, issue_filter: Optional[IssueFilter] = None) -> List[Issue]:
        """
        Fetch one page of issues matching the filter.

        Args:
            issue_filter: query fields; unset fields are not sent. Defaults to
                page 1 with 50 issues per page.

        Returns:
            list: at most page_size issues
        """
        issue_filter = issue_filter or IssueFilter()
        params = issue_filter.query_params()
        logger.info(f"Fetching issue list: {params}")

        response = self.cache.read_through(
            make_cache_key("issues", **params),
            lambda: self.http.get("/issues", params=params),
        )
        issues = response.get("issues", []) if isinstance(response, dict) else []
        return issues[:params["page_size"]]

    def get_issue(self, issue_id: int) -> Issue:
        logger.info(f"Fetching issue details: issue_id={issue_id}")
        response = self.cache.read_through(
            make_cache_key("issue", id=issue_id),
            lambda: self.http.get(f"/issues/{issue_id}"),
        )

        return _unwrap_single(response, "issues", f"Issue {issue_id}")

    def search_issues(self, search: SearchFilter) -> List[Issue]:
        """Full-text search through the SOAP API."""
        if self.soap is None:
            raise MantisApiError.validation("SOAP search is not available")
        key = make_cache_key(
            "soap-search",
            search=search.search, project_id=search.project_id, status_id=search.status_id,
            handler_id=search.handler_id, reporter_id=search.reporter_id, sort=search.sort,
            sort_direction=search.sort_direction, page=search.page, page_size=search.page_size,
        )
        return self.cache.read_through(key, lambda: self.soap.search_issues(search))

    def create_issue(self, issue_data: dict) -> Issue:
        logger.info(f"Creating issue: {issue_data.get('summary')!r}")
        response = self.http.post("/issues", json=issue_data)
        self.clear_cache()
        if isinstance(response, dict) and "issue" in response:
            return response["issue"]
        return response

    def update_issue(self, issue_id: int, update_data: dict) -> Issue:
        """
        Apply a partial update and return the issue as the server now has it.

        Mantis does not always echo the updated issue, and sometimes reports an
        error after applying the change. In both cases the issue is re-fetched
        so the caller sees the server-side state. Transport failures propagate.
        """
        update_data = {k: v for k, v in update_data.items() if v is not None}
        logger.info(f"Updating issue {issue_id}: fields={sorted(update_data)}")
        return self._patch_with_refetch(issue_id, update_data)

    def change_status(self, issue_id: int, status: str, resolution: Optional[str] = None,
                      note: Optional[str] = None) -> Issue:
        """Move an issue to a new status, posting the explanatory note first."""
        logger.info(f"Changing issue {issue_id} status to {status!r} (resolution={resolution!r})")
        if note:
            self.add_note(issue_id, {"text": note, "view_state": {"name": "public"}})

        update_data = {"status": {"name": status}}
        if resolution:
            update_data["resolution"] = {"name": resolution}
        return self._patch_with_refetch(issue_id, update_data)

    def _patch_with_refetch(self, issue_id: int, update_data: dict) -> Issue:
        try:
            response = self.http.patch(f"/issues/{issue_id}", json=update_data)
        except MantisApiError as e:
            # Only HTTP errors fall back to a refetch; transport and validation errors propagate
            if e.kind is not ErrorKind.API:
                raise
            logger.warning(f"PATCH on issue {issue_id} failed ({e.message}), fetching issue to confirm")
            self.clear_cache()
        else:
            self.clear_cache()
            if isinstance(response, dict) and response.get("issue"):
                return response["issue"]
            logger.debug(f"PATCH on issue {issue_id} did not echo the issue, fetching it")

        return self.get_issue(issue_id)

    def add_note(self, issue_id: int, note_data: dict) -> Any:
        logger.info(f"Adding note to issue {issue_id}")
        response = self.http.post(f"/issues/{issue_id}/notes", json=note_data)
        self.clear_cache()
        return response

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def get_current_user(self) -> User:
        logger.info("Fetching current user info")
        return self.cache.read_through("current-user", lambda: self.http.get("/users/me"))

    def get_user(self, user_id: int) -> User:
        logger.info(f"Fetching user info: user_id={user_id}")
        if not user_id:
            raise MantisApiError.validation("User ID is required")
        response = self.cache.read_through(
            make_cache_key("user", id=user_id),
            lambda: self.http.get(f"/users/{user_id}"),
        )
        return _unwrap_single(response, "users", f"User {user_id}")

    def get_user_by_username(self, username: str) -> User:
        logger.info(f"Fetching user by username: {username}")
        try:
            response = self.user_cache.read_through(
                make_cache_key("user-by-name", username=username),
                lambda: self.http.get(f"/users/username/{quote(username, safe='')}"),
            )
            return _unwrap_single(response, "users", f"User {username!r}")
        except MantisApiError:
            raise
        except Exception as e:
            raise MantisApiError(f"Failed to get user info: {e}") from e

    def enumerate_users(self, max_consecutive_misses: int = USER_PROBE_MISS_LIMIT) -> List[User]:
        """
        Discover users by probing ids 1, 2, 3, ... one at a time.

        A 404 counts as a miss and any hit resets the count; probing stops after
        max_consecutive_misses misses in a row. Other errors propagate.

        Returns:
            list: users in the order they were found
        """
        users = []
        misses = 0
        user_id = 1
        while misses < max_consecutive_misses:
            try:
                users.append(self.get_user(user_id))
                misses = 0
            except MantisApiError as e:
                if not e.is_not_found:
                    raise
                misses += 1
            user_id += 1

        logger.info(f"User enumeration found {len(users)} users (last probed id {user_id - 1})")
        return users

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def list_projects(self) -> List[Project]:
        logger.info("Fetching project list")
        return self.cache.read_through("projects", lambda: self.http.get("/projects"))

    def list_project_users(self, project_id: int) -> List[User]:
        logger.info(f"Fetching all users for project {project_id}")
        return self.cache.read_through(
            make_cache_key("project-users", id=project_id),
            lambda: self.http.get(f"/projects/{project_id}/users"),
        )
