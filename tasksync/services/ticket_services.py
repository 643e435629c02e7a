"""Remote ticket service capability interface and the GitLab-backed adapter"""
import enum
import logging
import time
from typing import Any, Dict, List, Optional, Protocol

import gitlab

from tasksync.config import settings
from tasksync.errors import RemoteError

logger = logging.getLogger(__name__)


class Platform(str, enum.Enum):
    """Remote platforms tickets live on"""
    A = "A"  # task board
    B = "B"  # issue tracker


class TicketService(Protocol):
    """Capabilities the sync runner and rollback engine need from a remote platform.

    Every method raises RemoteError on failure.
    """

    def create_ticket(self, user_id: int, data: Dict[str, Any]) -> str: ...

    def get_ticket(self, user_id: int, ticket_id: str) -> Dict[str, Any]: ...

    def update_ticket_status(self, user_id: int, ticket_id: str, status: str) -> None: ...

    def delete_ticket(self, user_id: int, ticket_id: str) -> None: ...


class GitLabTicketService:
    """TicketService over a GitLab project.

    Ticket ids are issue IIDs. The ticket status is a scoped label
    (``<prefix><status>``); statuses in ``closed_statuses`` also close the issue.
    """

    def __init__(
        self,
        url: str,
        access_token: str,
        project_id: str,
        *,
        platform: Platform,
        status_label_prefix: str = "Status::",
        closed_statuses: Optional[List[str]] = None,
    ):
        self.url = url
        self.project_id = project_id
        self.platform = platform
        self.status_label_prefix = status_label_prefix
        self.closed_statuses = {s.strip().lower() for s in (closed_statuses or []) if s.strip()}
        self.gl = gitlab.Gitlab(url, private_token=access_token)
        self._project = None

    @staticmethod
    def _should_retry(exc: Exception) -> bool:
        """Best-effort retry predicate for transient GitLab failures."""
        rc = getattr(exc, "response_code", None)
        return rc in (429, 500, 502, 503, 504)

    def _with_retries(self, fn, *, max_attempts: int = 3, base_delay_s: float = 0.5):
        """Run callable with small exponential backoff on transient errors."""
        attempt = 1
        while True:
            try:
                return fn()
            except Exception as e:
                if attempt >= max_attempts or not self._should_retry(e):
                    raise
                time.sleep(base_delay_s * (2 ** (attempt - 1)))
                attempt += 1

    def _remote_error(self, action: str, ticket_id: Optional[str], exc: Exception) -> RemoteError:
        target = f" {ticket_id}" if ticket_id else ""
        return RemoteError(
            f"{action} {self.platform.value} ticket{target} failed: {exc}",
            platform=self.platform.value,
            status_code=getattr(exc, "response_code", None),
        )

    def _get_project(self):
        if self._project is None:
            self._project = self._with_retries(lambda: self.gl.projects.get(self.project_id))
        return self._project

    def _status_from_labels(self, labels: List[str]) -> Optional[str]:
        for label in labels or []:
            if label.startswith(self.status_label_prefix):
                return label[len(self.status_label_prefix):]
        return None

    def create_ticket(self, user_id: int, data: Dict[str, Any]) -> str:
        """Create an issue and return its IID as the ticket id"""
        payload = {
            "title": data.get("title") or "Untitled",
            "description": data.get("description") or "",
        }
        labels = [label for label in data.get("labels") or [] if not label.startswith(self.status_label_prefix)]
        if data.get("status"):
            labels.append(f"{self.status_label_prefix}{data['status']}")
        if labels:
            payload["labels"] = ",".join(labels)
        try:
            project = self._get_project()
            issue = self._with_retries(lambda: project.issues.create(payload))
        except Exception as e:
            logger.error(f"Failed to create issue in project {self.project_id}: {e}")
            raise self._remote_error("Creating", None, e) from e
        logger.info(f"Created issue #{issue.iid} in project {self.project_id}")
        return str(issue.iid)

    def get_ticket(self, user_id: int, ticket_id: str) -> Dict[str, Any]:
        """Return a plain snapshot of the issue (used as original_data)"""
        try:
            project = self._get_project()
            issue = self._with_retries(lambda: project.issues.get(int(ticket_id)))
        except Exception as e:
            logger.error(f"Failed to get issue {ticket_id} from project {self.project_id}: {e}")
            raise self._remote_error("Fetching", ticket_id, e) from e
        labels = list(getattr(issue, "labels", []) or [])
        return {
            "id": str(issue.iid),
            "title": getattr(issue, "title", None),
            "state": getattr(issue, "state", None),
            "labels": labels,
            "status": self._status_from_labels(labels),
            "updated_at": getattr(issue, "updated_at", None),
        }

    def update_ticket_status(self, user_id: int, ticket_id: str, status: str) -> None:
        """Swap the scoped status label and open/close the issue to match"""
        try:
            project = self._get_project()
            issue = self._with_retries(lambda: project.issues.get(int(ticket_id)))
            labels = [
                label
                for label in (getattr(issue, "labels", []) or [])
                if not label.startswith(self.status_label_prefix)
            ]
            if status:
                labels.append(f"{self.status_label_prefix}{status}")
            issue.labels = labels
            should_close = (status or "").lower() in self.closed_statuses
            if should_close and getattr(issue, "state", None) != "closed":
                issue.state_event = "close"
            elif not should_close and getattr(issue, "state", None) == "closed":
                issue.state_event = "reopen"
            self._with_retries(lambda: issue.save())
        except Exception as e:
            logger.error(f"Failed to update status of issue {ticket_id} in project {self.project_id}: {e}")
            raise self._remote_error("Updating status of", ticket_id, e) from e
        logger.info(f"Set status of issue #{ticket_id} to '{status}' in project {self.project_id}")

    def delete_ticket(self, user_id: int, ticket_id: str) -> None:
        try:
            project = self._get_project()
            self._with_retries(lambda: project.issues.delete(int(ticket_id)))
        except Exception as e:
            logger.error(f"Failed to delete issue {ticket_id} from project {self.project_id}: {e}")
            raise self._remote_error("Deleting", ticket_id, e) from e
        logger.info(f"Deleted issue #{ticket_id} from project {self.project_id}")


def build_ticket_services() -> Optional[Dict[Platform, TicketService]]:
    """Build both platform services from settings; None if either is unconfigured"""
    closed = (settings.closed_statuses or "").split(",")
    services: Dict[Platform, TicketService] = {}
    for platform, url, token, project_id in (
        (Platform.A, settings.platform_a_url, settings.platform_a_token, settings.platform_a_project_id),
        (Platform.B, settings.platform_b_url, settings.platform_b_token, settings.platform_b_project_id),
    ):
        if not (url and token and project_id):
            logger.warning(f"Remote ticket service for platform {platform.value} is not configured")
            return None
        services[platform] = GitLabTicketService(
            url,
            token,
            project_id,
            platform=platform,
            status_label_prefix=settings.status_label_prefix,
            closed_statuses=closed,
        )
    return services
